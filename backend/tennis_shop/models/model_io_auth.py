from typing import Annotated

from pydantic import BaseModel, Field


class RegisterRequest(BaseModel):
    """
    회원가입 요청. / Sign-up request.
    """

    email: Annotated[str, Field(min_length=3, max_length=254)]
    password: Annotated[
        str,
        Field(description="8자 이상, 영문+숫자 포함 / 8+ chars with a letter and a digit."),
    ]
    name: Annotated[str, Field(min_length=1, max_length=50)]
    phone: str | None = None


class LoginRequest(BaseModel):
    email: str
    password: str


class UserProfile(BaseModel):
    """
    비밀번호 해시를 제외한 사용자 정보.
    User profile without the password hash.
    """

    id: str
    email: str
    name: str | None = None
    phone: str | None = None
    role: str = "user"
    is_admin: Annotated[bool, Field(serialization_alias="isAdmin")] = False
    points_balance: Annotated[int, Field(serialization_alias="pointsBalance")] = 0


class PasswordChangeRequest(BaseModel):
    """
    비밀번호 변경. passwordMustChange 계정은 현재 비밀번호 없이 바꿀 수 있다.
    Password change; accounts flagged passwordMustChange may omit the current one.
    """

    current_password: Annotated[str, Field(alias="currentPassword")] = ""
    new_password: Annotated[str, Field(alias="newPassword")]
