from functools import lru_cache
from typing import Final

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


APP_TITLE_DEFAULT: Final[str] = "Tennis Shop API"
APP_VERSION_DEFAULT: Final[str] = "0.1.0"
APP_DESCRIPTION_DEFAULT: Final[str] = "Tennis stringing / rental shop backend (FastAPI)"


class Settings(BaseSettings):
    """
    애플리케이션 전역 설정.
    Global application settings.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="BACKEND_",
        extra="ignore",
    )

    app_title: str = APP_TITLE_DEFAULT
    app_version: str = APP_VERSION_DEFAULT
    app_description: str = APP_DESCRIPTION_DEFAULT

    environment: str = Field(
        default="local",
        description=(
            "실행 환경(local/dev/prod/test 등) / "
            "Runtime environment (local/dev/prod/test, etc.)."
        ),
    )
    debug: bool = Field(
        default=False,
        description="디버그 모드 활성화 여부 / Whether to enable debug mode.",
    )
    log_level: str = Field(
        default="INFO",
        description="로그 레벨 / Logging level name.",
    )

    # --- MongoDB ---
    mongodb_uri: str = Field(
        default="mongodb://localhost:27017",
        description="MongoDB 접속 URI / MongoDB connection URI.",
    )
    mongodb_db_name: str = Field(
        default="tennis_shop",
        description="사용할 데이터베이스 이름 / Database name.",
    )

    # --- 인증 / Auth ---
    access_token_secret: str = Field(
        ...,
        description="액세스 토큰 서명 키 / Secret for signing access tokens.",
    )
    refresh_token_secret: str = Field(
        ...,
        description="리프레시 토큰 서명 키 / Secret for signing refresh tokens.",
    )
    access_token_ttl_minutes: int = Field(
        default=60,
        description="액세스 토큰 만료(분) / Access token lifetime in minutes.",
    )
    refresh_token_ttl_days: int = Field(
        default=7,
        description="리프레시 토큰 만료(일) / Refresh token lifetime in days.",
    )
    cookie_secure: bool = Field(
        default=False,
        description="쿠키 Secure 플래그 / Whether auth cookies are Secure.",
    )
    admin_email_whitelist: str = Field(
        default="",
        description=(
            "관리자로 취급할 이메일 목록(쉼표 구분).\n"
            "Comma-separated e-mails treated as administrators."
        ),
    )
    cors_origins: str = Field(
        default="*",
        description="허용할 CORS 오리진(쉼표 구분) / Allowed CORS origins.",
    )

    guest_order_lookup_enabled: bool = Field(
        default=True,
        description="비회원 주문 조회 허용 여부 / Whether guests may look up orders.",
    )

    # --- 가입 보너스 / Signup bonus ---
    signup_bonus_enabled: bool = False
    signup_bonus_points: int = 3000
    signup_bonus_start: str = Field(
        default="",
        description="캠페인 시작일 YYYY-MM-DD (KST) / Campaign start date.",
    )
    signup_bonus_end: str = Field(
        default="",
        description="캠페인 종료일 YYYY-MM-DD (KST, 당일 포함) / Inclusive end date.",
    )
    signup_bonus_campaign_id: str = "signup_bonus"

    # --- 알림 / Notifications ---
    notifications_enabled: bool = Field(
        default=False,
        description="카카오 알림 발송 여부 / Whether to dispatch Kakao memos.",
    )
    kakao_access_token: str = Field(
        default="",
        description="카카오 '나에게 보내기' 액세스 토큰 / Kakao memo access token.",
    )
    notification_link_url: str = ""
    notification_button_title: str = "확인하러 가기"

    @property
    def admin_emails(self) -> set[str]:
        """
        화이트리스트를 소문자 집합으로 반환한다.
        Whitelist as a lower-cased set.
        """
        return {
            email.strip().lower()
            for email in self.admin_email_whitelist.split(",")
            if email.strip()
        }

    @property
    def cors_origin_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


@lru_cache
def get_settings() -> Settings:
    """
    환경 변수 및 .env 파일에서 설정을 로드한다.
    Load settings from environment variables and .env file (cached).
    """
    return Settings()
