from typing import Any


def _to_int(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def clamp_page(page: Any, default: int = 1) -> int:
    """
    페이지 번호를 1 이상 정수로 보정한다.
    Coerce a page number into an int >= 1.
    """
    parsed = _to_int(page)
    if parsed is None or parsed < 1:
        return default
    return parsed


def clamp_limit(limit: Any, default: int, maximum: int) -> int:
    """
    페이지 크기를 1..maximum 범위로 보정한다. 숫자가 아니면 default.
    Coerce a page size into 1..maximum, falling back to `default`.
    """
    parsed = _to_int(limit)
    if parsed is None:
        return default
    return max(1, min(maximum, parsed))


def skip_for(page: int, limit: int) -> int:
    """(page, limit) 에 해당하는 skip 값. / Skip offset for a page."""
    return (page - 1) * limit
