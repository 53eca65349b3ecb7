from typing import Annotated

from bson import ObjectId
from fastapi import Depends, Request
from pymongo.database import Database

from shop_core import parse_object_id

from tennis_shop.config import Settings, get_settings
from tennis_shop.db import get_database
from tennis_shop.errors import ShopError, ShopErrorCode, map_shop_error_to_http_exception
from tennis_shop.principal import Principal, principal_from_claims
from tennis_shop.security import (
    ACCESS_COOKIE,
    COMMUNITY_CSRF_COOKIE,
    COMMUNITY_CSRF_HEADER,
    csrf_tokens_match,
    decode_access_token,
)


def get_app_settings() -> Settings:
    """
    FastAPI 의존성으로 사용할 설정 객체를 반환한다.
    Return application settings for FastAPI dependency injection.
    """
    return get_settings()


def get_db() -> Database:
    """
    요청에서 사용할 MongoDB 데이터베이스 핸들.
    MongoDB database handle for the request (overridden in tests).
    """
    return get_database()


SettingsDep = Annotated[Settings, Depends(get_app_settings)]
DatabaseDep = Annotated[Database, Depends(get_db)]


def get_optional_principal(request: Request, settings: SettingsDep) -> Principal | None:
    """
    accessToken 쿠키가 유효하면 Principal, 아니면 None (비회원).
    Principal from a valid accessToken cookie, or None for guests.
    """
    claims = decode_access_token(settings, request.cookies.get(ACCESS_COOKIE))
    if claims is None:
        return None
    return principal_from_claims(settings, claims)


OptionalPrincipalDep = Annotated[Principal | None, Depends(get_optional_principal)]


def require_principal(principal: OptionalPrincipalDep) -> Principal:
    if principal is None:
        raise map_shop_error_to_http_exception(
            ShopError(ShopErrorCode.UNAUTHORIZED, "로그인이 필요합니다."),
        )
    return principal


PrincipalDep = Annotated[Principal, Depends(require_principal)]


def require_admin(principal: PrincipalDep) -> Principal:
    if not principal.is_admin:
        raise map_shop_error_to_http_exception(
            ShopError(ShopErrorCode.FORBIDDEN, "관리자 권한이 필요합니다."),
        )
    return principal


AdminDep = Annotated[Principal, Depends(require_admin)]


def require_community_csrf(request: Request) -> None:
    """
    커뮤니티 변경 요청의 double-submit CSRF 검증.
    Double-submit CSRF check for community mutations.
    """
    if not csrf_tokens_match(
        request.headers.get(COMMUNITY_CSRF_HEADER),
        request.cookies.get(COMMUNITY_CSRF_COOKIE),
    ):
        raise map_shop_error_to_http_exception(
            ShopError(ShopErrorCode.CSRF_FAILED, "CSRF 토큰이 유효하지 않습니다."),
        )


CommunityCsrf = Depends(require_community_csrf)


def parse_path_id(value: str) -> ObjectId:
    """
    경로 파라미터의 ObjectId 를 파싱한다. 형식이 틀리면 400 INVALID_ID.
    Parse an ObjectId path parameter; 400 INVALID_ID when malformed.
    """
    oid = parse_object_id(value)
    if oid is None:
        raise map_shop_error_to_http_exception(
            ShopError(ShopErrorCode.INVALID_ID, "ID 형식이 올바르지 않습니다."),
        )
    return oid


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else ""
