from dataclasses import dataclass
from typing import Any

from bson import ObjectId

from tennis_shop.config import Settings


@dataclass(slots=True, frozen=True)
class Principal:
    """
    액세스 토큰에서 복원한 요청 주체.
    Request principal restored from the access token.
    """

    id: str
    email: str
    role: str
    is_admin: bool

    @property
    def oid(self) -> ObjectId:
        return ObjectId(self.id)


def is_admin_identity(settings: Settings, role: str | None, email: str | None) -> bool:
    """
    role == "admin" 이거나 이메일이 화이트리스트에 있으면 관리자.
    Admin when role is "admin" or the e-mail is whitelisted.
    """
    if role == "admin":
        return True
    return (email or "").strip().lower() in settings.admin_emails


def principal_from_claims(settings: Settings, claims: dict[str, Any]) -> Principal | None:
    sub = claims.get("sub")
    if not isinstance(sub, str) or not ObjectId.is_valid(sub):
        return None
    email = str(claims.get("email") or "")
    role = str(claims.get("role") or "user")
    return Principal(
        id=sub,
        email=email,
        role=role,
        is_admin=is_admin_identity(settings, role, email),
    )
