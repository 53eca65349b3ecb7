"""
알림 아웃박스 관리자 조회/재발송. / Admin view and retry of the notification outbox.
"""

from typing import Any, Final

from bson import ObjectId
from pymongo import DESCENDING
from pymongo.database import Database

from shop_core import Ok, clamp_limit, clamp_page, skip_for, to_jsonable

from tennis_shop.config import Settings
from tennis_shop.errors import ShopErrorCode, ShopResult, fail
from tennis_shop.internal.kakao_notification import dispatch_outbox

OUTBOX_STATUSES: Final[tuple[str, ...]] = ("queued", "failed", "sent")


def list_outbox(
    db: Database,
    status: str = "all",
    page: Any = 1,
    limit: Any = 20,
) -> ShopResult[dict[str, Any]]:
    if status != "all" and status not in OUTBOX_STATUSES:
        return fail(ShopErrorCode.INVALID_INPUT, "status 는 all/queued/failed/sent 중 하나여야 합니다.")

    query: dict[str, Any] = {} if status == "all" else {"status": status}
    page_no = clamp_page(page)
    size = clamp_limit(limit, 20, 100)
    cursor = (
        db.notifications_outbox.find(query)
        .sort([("createdAt", DESCENDING), ("_id", DESCENDING)])
        .skip(skip_for(page_no, size))
        .limit(size)
    )
    return Ok(
        {
            "items": [to_jsonable(doc) for doc in cursor],
            "total": db.notifications_outbox.count_documents(query),
            "page": page_no,
            "limit": size,
        },
    )


def retry_outbox(db: Database, settings: Settings, outbox_id: ObjectId) -> ShopResult[dict[str, Any]]:
    """
    실패한 항목만 다시 발송한다. / Re-dispatch a failed entry.
    """
    entry = db.notifications_outbox.find_one({"_id": outbox_id}, {"status": 1})
    if not entry:
        return fail(ShopErrorCode.NOT_FOUND, "알림을 찾을 수 없습니다.")
    if entry.get("status") != "failed":
        return fail(ShopErrorCode.INVALID_STATE, "실패한 알림만 재발송할 수 있습니다.")

    status = dispatch_outbox(db, settings, outbox_id)
    return Ok({"ok": status == "sent", "status": status})
