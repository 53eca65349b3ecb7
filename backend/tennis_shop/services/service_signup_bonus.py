import logging
from datetime import datetime

from bson import ObjectId
from pymongo.database import Database

from shop_core import Ok, kst_day_end, kst_day_start, utc_now

from tennis_shop.config import Settings
from tennis_shop.errors import ShopResult
from tennis_shop.services.service_points import PointsOutcome, grant_points

logger = logging.getLogger(__name__)


def signup_bonus_ref_key(campaign_id: str, user_id: ObjectId) -> str:
    return f"signup_bonus:{campaign_id}:{user_id}"


def is_signup_bonus_active(settings: Settings, now: datetime | None = None) -> bool:
    """
    캠페인 활성 여부. 시작/종료일은 KST 기준이며 종료일은 당일 23:59:59 까지 포함.
    Whether the signup campaign is active; both bounds are inclusive KST days.
    """
    if not settings.signup_bonus_enabled or settings.signup_bonus_points <= 0:
        return False

    current = now or utc_now()
    start = kst_day_start(settings.signup_bonus_start) if settings.signup_bonus_start else None
    end = kst_day_end(settings.signup_bonus_end) if settings.signup_bonus_end else None

    if start is not None and current < start:
        return False
    if end is not None and current > end:
        return False
    return True


def grant_signup_bonus(
    db: Database,
    settings: Settings,
    user_id: ObjectId,
) -> ShopResult[PointsOutcome | None]:
    """
    가입 보너스를 지급한다. 캠페인이 꺼져 있으면 Ok(None).
    Grant the signup bonus; Ok(None) when the campaign is inactive.
    """
    if not is_signup_bonus_active(settings):
        return Ok(None)

    campaign = settings.signup_bonus_campaign_id or "signup_bonus"
    result = grant_points(
        db,
        user_id,
        settings.signup_bonus_points,
        "signup_bonus",
        ref_key=signup_bonus_ref_key(campaign, user_id),
        reason="회원가입 보너스",
    )
    match result:
        case Ok(value=outcome):
            logger.info("signup bonus granted user=%s amount=%s", user_id, outcome.amount)
            return Ok(outcome)
        case _:
            return result
