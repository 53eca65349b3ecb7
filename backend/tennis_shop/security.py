"""
인증/보안 유틸리티: 비밀번호 해시, JWT, CSRF 토큰, HTML 정제.

Auth and security helpers: password hashing, JWT, CSRF tokens and
HTML sanitizing.
"""

import re
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Final

import bcrypt
import jwt
import nh3

from tennis_shop.config import Settings


JWT_ALGORITHM: Final[str] = "HS256"

ACCESS_COOKIE: Final[str] = "accessToken"
REFRESH_COOKIE: Final[str] = "refreshToken"
ADMIN_CSRF_COOKIE: Final[str] = "csrfToken"
COMMUNITY_CSRF_COOKIE: Final[str] = "communityCsrfToken"
COMMUNITY_CSRF_HEADER: Final[str] = "x-community-csrf-token"

_PASSWORD_LETTER = re.compile(r"[A-Za-z]")
_PASSWORD_DIGIT = re.compile(r"\d")


# --- 비밀번호 / Passwords ---


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed: str | None) -> bool:
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # 해시 형식이 깨진 경우 / malformed stored hash
        return False


def is_strong_password(password: str) -> bool:
    """
    8자 이상, 영문자와 숫자를 각각 1개 이상 포함해야 한다.
    At least 8 characters with at least one letter and one digit.
    """
    return (
        len(password) >= 8
        and _PASSWORD_LETTER.search(password) is not None
        and _PASSWORD_DIGIT.search(password) is not None
    )


# --- JWT ---


def _encode(payload: dict[str, Any], secret: str, ttl: timedelta) -> str:
    now = datetime.now(timezone.utc)
    claims = {**payload, "iat": now, "exp": now + ttl}
    return jwt.encode(claims, secret, algorithm=JWT_ALGORITHM)


def create_access_token(settings: Settings, user_id: str, email: str, role: str) -> str:
    return _encode(
        {"sub": user_id, "email": email, "role": role},
        settings.access_token_secret,
        timedelta(minutes=settings.access_token_ttl_minutes),
    )


def create_refresh_token(settings: Settings, user_id: str) -> str:
    return _encode(
        {"sub": user_id},
        settings.refresh_token_secret,
        timedelta(days=settings.refresh_token_ttl_days),
    )


def decode_access_token(settings: Settings, token: str | None) -> dict[str, Any] | None:
    """
    액세스 토큰을 검증한다. 만료/위조/누락이면 None.
    Verify an access token; None when missing, expired or forged.
    """
    if not token:
        return None
    try:
        return jwt.decode(token, settings.access_token_secret, algorithms=[JWT_ALGORITHM])
    except jwt.PyJWTError:
        return None


def decode_refresh_token(settings: Settings, token: str) -> dict[str, Any] | None:
    try:
        return jwt.decode(token, settings.refresh_token_secret, algorithms=[JWT_ALGORITHM])
    except jwt.PyJWTError:
        return None


def new_csrf_token() -> str:
    return secrets.token_urlsafe(32)


def csrf_tokens_match(header_value: str | None, cookie_value: str | None) -> bool:
    """
    double-submit 검증: 헤더와 쿠키가 모두 있고 같아야 한다.
    Double-submit check: both present and equal (constant time).
    """
    if not header_value or not cookie_value:
        return False
    return secrets.compare_digest(header_value, cookie_value)


# --- HTML 정제 / HTML sanitizing ---

_ALLOWED_TAGS: Final[set[str]] = {
    "p", "br", "ul", "ol", "li", "strong", "em", "b", "i", "u",
    "blockquote", "code", "pre", "a", "img", "hr", "span",
}
# rel 은 link_rel 로 강제하므로 허용 속성에서 뺀다.
_ALLOWED_ATTRIBUTES: Final[dict[str, set[str]]] = {
    "a": {"href", "title", "target"},
    "img": {"src", "alt", "width", "height"},
}
# nh3 는 속성값을 항상 큰따옴표로 직렬화한다
_IMG_TAG = re.compile(r"""<img((?:\s+[^\s="'/>]+(?:="[^"]*")?)*)\s*/?>""", re.IGNORECASE)
_ATTR_NAME = re.compile(r"""\s([^\s="'/>]+)(?:="[^"]*")?""")


def _drop_img_without_src(match: re.Match[str]) -> str:
    names = {name.lower() for name in _ATTR_NAME.findall(match.group(1))}
    return match.group(0) if "src" in names else ""


def sanitize_html(html: str) -> str:
    """
    게시글 본문 HTML 을 허용 목록 기반으로 정제한다.

    - http/https 링크만 허용, <a> 에는 rel="noopener noreferrer" 강제
    - src 가 없는 <img> 는 제거

    Allow-list sanitize post HTML (http/https only, forced rel on links,
    images without src dropped).
    """
    cleaned = nh3.clean(
        html or "",
        tags=_ALLOWED_TAGS,
        attributes=_ALLOWED_ATTRIBUTES,
        url_schemes={"http", "https"},
        link_rel="noopener noreferrer",
    )
    return _IMG_TAG.sub(_drop_img_without_src, cleaned)
