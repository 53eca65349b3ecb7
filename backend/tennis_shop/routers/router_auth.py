from typing import Any

from fastapi import APIRouter, Request, Response, status
from fastapi.responses import JSONResponse

from shop_core import Err, Ok

from tennis_shop.config import Settings
from tennis_shop.dependencies import DatabaseDep, PrincipalDep, SettingsDep, client_ip
from tennis_shop.errors import map_shop_error_to_http_exception
from tennis_shop.models.model_io_auth import (
    LoginRequest,
    PasswordChangeRequest,
    RegisterRequest,
    UserProfile,
)
from tennis_shop.security import (
    ACCESS_COOKIE,
    ADMIN_CSRF_COOKIE,
    REFRESH_COOKIE,
    new_csrf_token,
)
from tennis_shop.services.service_auth import (
    IssuedTokens,
    change_password as change_password_service,
    get_me as get_me_service,
    login as login_service,
    refresh as refresh_service,
    register as register_service,
)

router = APIRouter()


def _set_auth_cookies(response: Response, settings: Settings, tokens: IssuedTokens) -> None:
    """
    액세스/리프레시 토큰을 httpOnly 쿠키로 심는다. 관리자에게는 CSRF 쿠키도 준다.
    Set access/refresh tokens as httpOnly cookies; admins also get a CSRF cookie.
    """
    response.set_cookie(
        ACCESS_COOKIE,
        tokens.access_token,
        max_age=settings.access_token_ttl_minutes * 60,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
        path="/",
    )
    response.set_cookie(
        REFRESH_COOKIE,
        tokens.refresh_token,
        max_age=settings.refresh_token_ttl_days * 24 * 60 * 60,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
        path="/",
    )
    if tokens.profile.is_admin:
        # 관리자 화면의 double-submit 용이라 JS 에서 읽을 수 있어야 한다.
        response.set_cookie(
            ADMIN_CSRF_COOKIE,
            new_csrf_token(),
            max_age=settings.access_token_ttl_minutes * 60,
            httponly=False,
            secure=settings.cookie_secure,
            samesite="lax",
            path="/",
        )


def _clear_auth_cookies(response: Response) -> None:
    for name in (ACCESS_COOKIE, REFRESH_COOKIE, ADMIN_CSRF_COOKIE):
        response.delete_cookie(name, path="/")


@router.post(
    "/auth/register",
    summary="회원가입 / Sign up",
    status_code=status.HTTP_201_CREATED,
)
def register_endpoint(
    request: RegisterRequest,
    db: DatabaseDep,
    settings: SettingsDep,
) -> dict[str, Any]:
    result = register_service(db, settings, request)

    match result:
        case Ok(value=profile):
            return {"ok": True, "user": profile.model_dump(by_alias=True)}
        case Err(error=error):
            raise map_shop_error_to_http_exception(error)


@router.post(
    "/auth/login",
    summary="로그인 / Log in",
)
def login_endpoint(
    body: LoginRequest,
    request: Request,
    response: Response,
    db: DatabaseDep,
    settings: SettingsDep,
) -> dict[str, Any]:
    """
    자격 증명을 확인하고 인증 쿠키를 설정한다.
    Verify credentials and set the auth cookies.
    """
    result = login_service(
        db,
        settings,
        body,
        ip=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )

    match result:
        case Ok(value=tokens):
            _set_auth_cookies(response, settings, tokens)
            return {"ok": True, "user": tokens.profile.model_dump(by_alias=True)}
        case Err(error=error):
            raise map_shop_error_to_http_exception(error)


@router.post(
    "/auth/refresh",
    summary="토큰 재발급 / Rotate tokens",
    response_model=None,
)
def refresh_endpoint(
    request: Request,
    response: Response,
    db: DatabaseDep,
    settings: SettingsDep,
) -> dict[str, Any] | JSONResponse:
    result = refresh_service(db, settings, request.cookies.get(REFRESH_COOKIE))

    match result:
        case Ok(value=tokens):
            _set_auth_cookies(response, settings, tokens)
            return {"ok": True}
        case Err(error=error) if error.extra.get("clearCookies"):
            # 탈퇴 계정: 쿠키를 지운 401 응답을 직접 만든다.
            # Deleted account: build the 401 ourselves so the cookies are cleared.
            exc = map_shop_error_to_http_exception(error)
            cleared = JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})
            _clear_auth_cookies(cleared)
            return cleared
        case Err(error=error):
            raise map_shop_error_to_http_exception(error)


@router.post(
    "/auth/logout",
    summary="로그아웃 / Log out",
)
def logout_endpoint(response: Response) -> dict[str, bool]:
    _clear_auth_cookies(response)
    return {"ok": True}


@router.get(
    "/auth/me",
    summary="내 정보 / Current user",
    response_model=UserProfile,
    response_model_by_alias=True,
)
def me_endpoint(
    principal: PrincipalDep,
    db: DatabaseDep,
    settings: SettingsDep,
) -> UserProfile:
    result = get_me_service(db, settings, principal.oid)

    match result:
        case Ok(value=profile):
            return profile
        case Err(error=error):
            raise map_shop_error_to_http_exception(error)


@router.patch(
    "/users/me/password",
    summary="비밀번호 변경 / Change password",
)
def change_password_endpoint(
    request: PasswordChangeRequest,
    principal: PrincipalDep,
    db: DatabaseDep,
) -> dict[str, Any]:
    result = change_password_service(db, principal.oid, request)

    match result:
        case Ok(value=body):
            return body
        case Err(error=error):
            raise map_shop_error_to_http_exception(error)
