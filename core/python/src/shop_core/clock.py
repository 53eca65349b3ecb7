from datetime import date, datetime, time, timedelta, timezone
from typing import Final


# 한국 표준시 (UTC+9, 서머타임 없음) / Korea Standard Time, no DST.
KST: Final[timezone] = timezone(timedelta(hours=9), name="KST")


def utc_now() -> datetime:
    """
    현재 UTC 시각을 naive datetime 으로 반환한다.

    pymongo 기본 codec(tz_aware=False)이 돌려주는 값과 같은 형태라서
    DB 에서 읽은 값과 그대로 비교할 수 있다.

    Current UTC time as a naive datetime, matching what pymongo returns
    with its default codec options.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _parse_ymd(value: str) -> date | None:
    try:
        return date.fromisoformat(value.strip())
    except (AttributeError, ValueError):
        return None


def kst_day_start(value: str) -> datetime | None:
    """
    'YYYY-MM-DD'(KST) 의 00:00:00 을 naive UTC 로 변환한다.
    Start of a KST calendar day, as naive UTC. None when unparsable.
    """
    day = _parse_ymd(value)
    if day is None:
        return None
    local = datetime.combine(day, time.min, tzinfo=KST)
    return local.astimezone(timezone.utc).replace(tzinfo=None)


def kst_day_end(value: str) -> datetime | None:
    """
    'YYYY-MM-DD'(KST) 의 23:59:59.999 를 naive UTC 로 변환한다 (포함 경계).
    Inclusive end of a KST calendar day, as naive UTC.
    """
    day = _parse_ymd(value)
    if day is None:
        return None
    local = datetime.combine(day, time(23, 59, 59, 999000), tzinfo=KST)
    return local.astimezone(timezone.utc).replace(tzinfo=None)
