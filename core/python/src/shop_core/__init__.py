"""
shop_core 패키지.

백엔드 전반에서 공유하는 Result 타입, 시간/ID/페이지네이션 유틸리티를 제공합니다.

The `shop_core` package.

Provides the shared Result type plus small time, ObjectId and pagination
helpers used across the backend.
"""

from .clock import KST, kst_day_end, kst_day_start, utc_now
from .documents import to_jsonable
from .ids import parse_object_id
from .paging import clamp_limit, clamp_page, skip_for
from .result import Err, Ok, Result, is_err, is_ok, ok_or_none

__all__ = [
    "Ok",
    "Err",
    "Result",
    "is_ok",
    "is_err",
    "ok_or_none",
    "KST",
    "utc_now",
    "kst_day_start",
    "kst_day_end",
    "parse_object_id",
    "clamp_page",
    "clamp_limit",
    "skip_for",
    "to_jsonable",
]
