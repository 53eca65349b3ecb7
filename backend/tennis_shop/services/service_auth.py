"""
회원가입 / 로그인 / 토큰 갱신 서비스.

쿠키를 다루는 일은 라우터가 맡고, 여기서는 사용자 문서와 토큰만 다룬다.

Register, login and token refresh. Cookie handling lives in the router;
this module only deals with user documents and tokens.
"""

import logging
from dataclasses import dataclass
from typing import Any

from bson import ObjectId
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

from shop_core import Err, Ok, utc_now

from tennis_shop.config import Settings
from tennis_shop.errors import ShopErrorCode, ShopResult, fail
from tennis_shop.models.model_io_auth import (
    LoginRequest,
    PasswordChangeRequest,
    RegisterRequest,
    UserProfile,
)
from tennis_shop.principal import is_admin_identity
from tennis_shop.security import (
    create_access_token,
    create_refresh_token,
    decode_refresh_token,
    hash_password,
    is_strong_password,
    verify_password,
)
from tennis_shop.services.service_signup_bonus import grant_signup_bonus

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class IssuedTokens:
    """
    로그인/갱신 결과로 발급된 토큰과 사용자 정보.
    Tokens issued by login or refresh, plus the user's profile.
    """

    access_token: str
    refresh_token: str
    profile: UserProfile


def _normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def to_profile(settings: Settings, user: dict[str, Any]) -> UserProfile:
    role = str(user.get("role") or "user")
    return UserProfile(
        id=str(user["_id"]),
        email=user.get("email", ""),
        name=user.get("name"),
        phone=user.get("phone"),
        role=role,
        is_admin=is_admin_identity(settings, role, user.get("email")),
        points_balance=int(user.get("pointsBalance") or 0),
    )


def _issue(settings: Settings, user: dict[str, Any]) -> IssuedTokens:
    user_id = str(user["_id"])
    return IssuedTokens(
        access_token=create_access_token(
            settings,
            user_id,
            user.get("email", ""),
            str(user.get("role") or "user"),
        ),
        refresh_token=create_refresh_token(settings, user_id),
        profile=to_profile(settings, user),
    )


def register(db: Database, settings: Settings, request: RegisterRequest) -> ShopResult[UserProfile]:
    """
    회원가입. 가입 보너스 지급 실패는 가입 자체를 실패시키지 않는다.
    Create a user; a failed signup bonus never fails registration.
    """
    email = _normalize_email(request.email)
    if "@" not in email:
        return fail(ShopErrorCode.INVALID_INPUT, "이메일 형식이 올바르지 않습니다.")
    if not is_strong_password(request.password):
        return fail(ShopErrorCode.INVALID_INPUT, "비밀번호는 8자 이상, 영문과 숫자를 포함해야 합니다.")
    if db.users.find_one({"email": email}, {"_id": 1}):
        return fail(ShopErrorCode.DUPLICATE, "이미 가입된 이메일입니다.")

    user: dict[str, Any] = {
        "email": email,
        "hashedPassword": hash_password(request.password),
        "name": request.name.strip(),
        "phone": request.phone,
        "role": "user",
        "pointsBalance": 0,
        "pointsDebt": 0,
        "isDeleted": False,
        "isSuspended": False,
        "createdAt": utc_now(),
    }
    try:
        user["_id"] = db.users.insert_one(user).inserted_id
    except DuplicateKeyError:
        return fail(ShopErrorCode.DUPLICATE, "이미 가입된 이메일입니다.")

    try:
        bonus = grant_signup_bonus(db, settings, user["_id"])
    except PyMongoError as exc:
        logger.warning("signup bonus failed user=%s: %s", user["_id"], exc)
    else:
        match bonus:
            case Ok(value=outcome) if outcome is not None and outcome.applied:
                user["pointsBalance"] = outcome.amount
            case Ok():
                pass
            case Err(error=error):
                logger.warning("signup bonus failed user=%s: %s", user["_id"], error.message)

    logger.info("user registered id=%s", user["_id"])
    return Ok(to_profile(settings, user))


def login(
    db: Database,
    settings: Settings,
    request: LoginRequest,
    ip: str | None = None,
    user_agent: str | None = None,
) -> ShopResult[IssuedTokens]:
    email = _normalize_email(request.email)
    user = db.users.find_one({"email": email})
    if not user or not verify_password(request.password, user.get("hashedPassword")):
        return fail(ShopErrorCode.INVALID_CREDENTIALS, "이메일 또는 비밀번호가 올바르지 않습니다.")
    if user.get("isDeleted") or user.get("isSuspended"):
        return fail(ShopErrorCode.ACCOUNT_SUSPENDED, "이용이 제한된 계정입니다.")

    now = utc_now()
    db.users.update_one({"_id": user["_id"]}, {"$set": {"lastLoginAt": now}})
    db.user_sessions.insert_one({"userId": user["_id"], "at": now, "ip": ip, "ua": user_agent})
    return Ok(_issue(settings, user))


def refresh(db: Database, settings: Settings, refresh_token: str | None) -> ShopResult[IssuedTokens]:
    """
    refreshToken 으로 두 토큰을 모두 재발급한다.

    - 토큰 없음: 401 / 검증 실패: 403 / 사용자 없음: 404
    - 탈퇴 사용자: 401 (라우터가 쿠키를 지운다) / 정지 사용자: 403
    """
    if not refresh_token:
        return fail(ShopErrorCode.UNAUTHORIZED, "리프레시 토큰이 없습니다.")
    claims = decode_refresh_token(settings, refresh_token)
    sub = (claims or {}).get("sub")
    if not isinstance(sub, str) or not ObjectId.is_valid(sub):
        return fail(ShopErrorCode.FORBIDDEN, "유효하지 않은 리프레시 토큰입니다.")

    user = db.users.find_one({"_id": ObjectId(sub)})
    if not user:
        return fail(ShopErrorCode.USER_NOT_FOUND, "사용자를 찾을 수 없습니다.")
    if user.get("isDeleted"):
        return fail(ShopErrorCode.UNAUTHORIZED, "탈퇴한 계정입니다.", clearCookies=True)
    if user.get("isSuspended"):
        return fail(ShopErrorCode.ACCOUNT_SUSPENDED, "이용이 제한된 계정입니다.")
    return Ok(_issue(settings, user))


def get_me(db: Database, settings: Settings, user_id: ObjectId) -> ShopResult[UserProfile]:
    user = db.users.find_one({"_id": user_id}, {"hashedPassword": 0})
    if not user or user.get("isDeleted"):
        return fail(ShopErrorCode.USER_NOT_FOUND, "사용자를 찾을 수 없습니다.")
    return Ok(to_profile(settings, user))


def change_password(db: Database, user_id: ObjectId, request: PasswordChangeRequest) -> ShopResult[dict[str, Any]]:
    """
    비밀번호 변경.

    - 새 비밀번호가 규칙에 맞지 않으면 INVALID_INPUT
    - passwordMustChange 가 아니면 현재 비밀번호를 확인한다 (틀리면 INVALID_INPUT)
    - 성공 시 passwordMustChange 를 해제한다
    """
    if not is_strong_password(request.new_password):
        return fail(ShopErrorCode.INVALID_INPUT, "비밀번호는 8자 이상, 영문과 숫자를 포함해야 합니다.")

    user = db.users.find_one(
        {"_id": user_id, "isDeleted": {"$ne": True}},
        {"hashedPassword": 1, "passwordMustChange": 1},
    )
    if not user:
        return fail(ShopErrorCode.USER_NOT_FOUND, "사용자를 찾을 수 없습니다.")
    if not user.get("passwordMustChange") and not verify_password(
        request.current_password,
        user.get("hashedPassword"),
    ):
        return fail(ShopErrorCode.INVALID_INPUT, "현재 비밀번호가 올바르지 않습니다.")

    db.users.update_one(
        {"_id": user_id},
        {
            "$set": {
                "hashedPassword": hash_password(request.new_password),
                "passwordMustChange": False,
                "updatedAt": utc_now(),
            },
        },
    )
    logger.info("password changed user=%s", user_id)
    return Ok({"ok": True})
