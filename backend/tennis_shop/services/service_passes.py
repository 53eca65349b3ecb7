"""
패키지 이용권(횟수권) 서비스.

- 발급: 결제완료 주문/패키지 주문 기준, (orderId, orderItemId) 유니크로 멱등
- 차감: 소비 로그(service_pass_consumptions) 선기록 후 조건부 find_one_and_update
- 복원: 소비 로그를 reverted 로 표시하고 횟수를 되돌림

Package pass (prepaid stringing sessions) service.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Final

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from shop_core import Ok, utc_now

from tennis_shop.errors import ShopErrorCode, ShopResult, fail

logger = logging.getLogger(__name__)


PASS_VALIDITY_DAYS_DEFAULT: Final[int] = 365
PAID_STATUS: Final[str] = "결제완료"


@dataclass(slots=True, frozen=True)
class PackagePlan:
    plan_id: str
    name: str
    sessions: int
    price: int
    validity_days: int = PASS_VALIDITY_DAYS_DEFAULT


PACKAGE_PLANS: Final[dict[str, PackagePlan]] = {
    plan.plan_id: plan
    for plan in (
        PackagePlan("package-10", "10회권", 10, 100_000),
        PackagePlan("package-30", "30회권", 30, 280_000),
        PackagePlan("package-50", "50회권", 50, 450_000),
        PackagePlan("package-100", "100회권", 100, 850_000),
    )
}


@dataclass(slots=True, frozen=True)
class ConsumeOutcome:
    pass_id: ObjectId
    remaining_count: int
    already_consumed: bool = False


@dataclass(slots=True, frozen=True)
class RevertOutcome:
    reverted: bool
    count: int = 0


def serialize_pass(doc: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": str(doc["_id"]),
        "userId": str(doc["userId"]) if doc.get("userId") else None,
        "orderId": str(doc["orderId"]) if doc.get("orderId") else None,
        "orderItemId": doc.get("orderItemId"),
        "packageSize": int(doc.get("packageSize") or 0),
        "usedCount": int(doc.get("usedCount") or 0),
        "remainingCount": int(doc.get("remainingCount") or 0),
        "status": doc.get("status"),
        "purchasedAt": doc.get("purchasedAt"),
        "expiresAt": doc.get("expiresAt"),
        "meta": doc.get("meta") or {},
        "redemptions": [
            {
                "applicationId": str(r.get("applicationId")),
                "usedAt": r.get("usedAt"),
                "count": int(r.get("count") or 1),
                "reverted": bool(r.get("reverted", False)),
            }
            for r in doc.get("redemptions") or []
        ],
    }


def _new_pass_doc(
    user_id: ObjectId,
    order_id: ObjectId,
    order_item_id: str,
    package_size: int,
    validity_days: int,
    now: datetime,
    extra: dict[str, Any] | None = None,
) -> dict[str, Any]:
    doc: dict[str, Any] = {
        "userId": user_id,
        "orderId": order_id,
        "orderItemId": order_item_id,
        "packageSize": package_size,
        "usedCount": 0,
        "remainingCount": package_size,
        "status": "active",
        "purchasedAt": now,
        "expiresAt": now + timedelta(days=validity_days),
        "redemptions": [],
        "createdAt": now,
        "updatedAt": now,
    }
    if extra:
        doc.update(extra)
    return doc


def _insert_pass_once(db: Database, doc: dict[str, Any]) -> ObjectId | None:
    """
    (orderId, orderItemId) 유니크 인덱스로 중복 발급을 막는다.
    Insert unless a pass for (orderId, orderItemId) already exists.
    """
    try:
        return db.service_passes.insert_one(doc).inserted_id
    except DuplicateKeyError:
        return None


def issue_passes_for_paid_order(db: Database, order: dict[str, Any]) -> list[ObjectId]:
    """
    결제완료된 일반 주문에서 service_package 품목마다 패스를 발급한다.
    Issue one pass per `service_package` item of a paid order (idempotent).
    """
    user_id = order.get("userId")
    if not user_id:
        return []

    now = utc_now()
    issued: list[ObjectId] = []
    for index, item in enumerate(order.get("items") or []):
        meta = item.get("meta") or {}
        if meta.get("kind") != "service_package":
            continue
        # 수량과 무관하게 상품에 정의된 회차 수만큼 발급한다
        size = int(meta.get("packageSize") or 0)
        if size <= 0:
            continue
        order_item_id = str(item.get("orderItemId") or item.get("productId") or index)
        validity = int(meta.get("validityDays") or PASS_VALIDITY_DAYS_DEFAULT)

        inserted = _insert_pass_once(
            db,
            _new_pass_doc(
                user_id,
                order["_id"],
                order_item_id,
                size,
                validity,
                now,
                extra={"meta": {"planId": meta.get("planId"), "planTitle": meta.get("planTitle")}},
            ),
        )
        if inserted is not None:
            issued.append(inserted)

    if issued:
        logger.info("issued %d pass(es) for order=%s", len(issued), order["_id"])
    return issued


def issue_passes_for_paid_package_order(db: Database, package_order: dict[str, Any]) -> ObjectId | None:
    """
    결제완료된 패키지 주문에 대해 패스를 1장 발급한다.
    orderItemId = "package:{planId}:{sessions}".
    """
    info = package_order.get("packageInfo") or {}
    sessions = int(info.get("sessions") or 0)
    if sessions <= 0 or not package_order.get("userId"):
        return None

    plan_id = str(info.get("planId") or f"package-{sessions}")
    validity = int(info.get("validityDays") or PASS_VALIDITY_DAYS_DEFAULT)
    now = utc_now()
    doc = _new_pass_doc(
        package_order["userId"],
        package_order["_id"],
        f"package:{plan_id}:{sessions}",
        sessions,
        validity,
        now,
        extra={"source": "package_order", "meta": {"planId": plan_id, "planTitle": info.get("name")}},
    )
    return _insert_pass_once(db, doc)


def find_one_active_pass_for_user(
    db: Database,
    user_id: ObjectId,
    min_remaining: int = 1,
) -> dict[str, Any] | None:
    """
    사용 가능한 패스 중 만료가 가장 빠른 것.
    The usable pass that expires first.
    """
    return db.service_passes.find_one(
        {
            "userId": user_id,
            "status": "active",
            "expiresAt": {"$gt": utc_now()},
            "remainingCount": {"$gte": max(1, min_remaining)},
        },
        sort=[("expiresAt", ASCENDING)],
    )


def consume_pass(
    db: Database,
    pass_id: ObjectId,
    application_id: ObjectId,
    count: int = 1,
) -> ShopResult[ConsumeOutcome]:
    """
    패스에서 count 회를 차감한다.

    1) 패스가 없으면 PASS_NOT_FOUND
    2) 연결된 패키지 주문이 결제완료가 아니면 ORDER_NOT_PAID
    3) 소비 로그 선기록 (같은 신청서로 이미 차감했다면 그대로 Ok,
       되돌려진 기록이면 다시 살려서 차감)
    4) 활성/잔여/만료 조건부로 원자적 차감, 실패 시 로그 삭제 후 PASS_CONSUME_FAILED
    """
    count = max(1, int(count))
    pass_doc = db.service_passes.find_one({"_id": pass_id})
    if not pass_doc:
        return fail(ShopErrorCode.PASS_NOT_FOUND, "패스를 찾을 수 없습니다.")

    if pass_doc.get("source") == "package_order" and pass_doc.get("orderId"):
        package_order = db.packageOrders.find_one(
            {"_id": pass_doc["orderId"]},
            {"paymentStatus": 1},
        )
        if package_order and package_order.get("paymentStatus") != PAID_STATUS:
            return fail(ShopErrorCode.ORDER_NOT_PAID, "결제가 완료되지 않은 패키지입니다.")

    now = utc_now()
    reopened = False
    try:
        log_id = db.service_pass_consumptions.insert_one(
            {
                "passId": pass_id,
                "applicationId": application_id,
                "count": count,
                "usedAt": now,
                "reverted": False,
            },
        ).inserted_id
    except DuplicateKeyError:
        # 취소로 되돌려진 소비 기록은 다시 살려서 차감한다
        previous = db.service_pass_consumptions.find_one_and_update(
            {"passId": pass_id, "applicationId": application_id, "reverted": True},
            {"$set": {"reverted": False, "count": count, "usedAt": now}},
        )
        if previous is None:
            return Ok(
                ConsumeOutcome(
                    pass_id=pass_id,
                    remaining_count=int(pass_doc.get("remainingCount") or 0),
                    already_consumed=True,
                ),
            )
        log_id = previous["_id"]
        reopened = True

    updated = db.service_passes.find_one_and_update(
        {
            "_id": pass_id,
            "status": "active",
            "remainingCount": {"$gte": count},
            "expiresAt": {"$gt": now},
        },
        {
            "$inc": {"usedCount": count, "remainingCount": -count},
            "$push": {
                "redemptions": {
                    "applicationId": application_id,
                    "usedAt": now,
                    "count": count,
                    "reverted": False,
                },
            },
            "$set": {"updatedAt": now},
        },
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        if reopened:
            db.service_pass_consumptions.update_one({"_id": log_id}, {"$set": {"reverted": True}})
        else:
            db.service_pass_consumptions.delete_one({"_id": log_id})
        return fail(
            ShopErrorCode.PASS_CONSUME_FAILED,
            "패스 잔여 횟수가 부족하거나 만료되었습니다.",
        )

    return Ok(
        ConsumeOutcome(
            pass_id=pass_id,
            remaining_count=int(updated.get("remainingCount") or 0),
        ),
    )


def revert_consumption(
    db: Database,
    pass_id: ObjectId,
    application_id: ObjectId,
) -> ShopResult[RevertOutcome]:
    """
    신청서 취소 시 차감했던 횟수를 되돌린다. 소비 기록이 없으면 reverted=False.
    Restore sessions consumed by an application; no-op without a live log.
    """
    now = utc_now()
    log = db.service_pass_consumptions.find_one_and_update(
        {"passId": pass_id, "applicationId": application_id, "reverted": False},
        {"$set": {"reverted": True, "revertedAt": now}},
    )
    if log is None:
        return Ok(RevertOutcome(reverted=False))

    count = int(log.get("count") or 1)
    update: dict[str, Any] = {
        "$inc": {"usedCount": -count, "remainingCount": count},
        "$set": {"updatedAt": now},
    }
    # 재차감된 신청서는 redemptions 에 여러 번 나타나므로 살아 있는 마지막 항목만 표시한다
    pass_doc = db.service_passes.find_one({"_id": pass_id}, {"redemptions": 1}) or {}
    redemptions = pass_doc.get("redemptions") or []
    for index in range(len(redemptions) - 1, -1, -1):
        entry = redemptions[index]
        if entry.get("applicationId") == application_id and not entry.get("reverted"):
            update["$set"][f"redemptions.{index}.reverted"] = True
            break
    db.service_passes.update_one({"_id": pass_id}, update)
    logger.info("reverted %d session(s) pass=%s application=%s", count, pass_id, application_id)
    return Ok(RevertOutcome(reverted=True, count=count))


def list_my_passes(db: Database, user_id: ObjectId) -> list[dict[str, Any]]:
    cursor = db.service_passes.find({"userId": user_id}).sort("createdAt", DESCENDING)
    return [serialize_pass(doc) for doc in cursor]


def extend_pass(
    db: Database,
    pass_id: ObjectId,
    *,
    mode: str,
    days: int | None = None,
    new_expiry: datetime | None = None,
    reason: str = "",
) -> ShopResult[dict[str, Any]]:
    """
    만료일 연장. mode="days" 는 max(현재 만료일, 지금) 기준으로 더하고,
    mode="absolute" 는 지정한 날짜로 바꾼다.
    """
    pass_doc = db.service_passes.find_one({"_id": pass_id})
    if not pass_doc:
        return fail(ShopErrorCode.PASS_NOT_FOUND, "패스를 찾을 수 없습니다.")

    now = utc_now()
    match mode:
        case "days":
            if not days:
                return fail(ShopErrorCode.INVALID_INPUT, "days 는 0 이 아닌 숫자여야 합니다.")
            current = pass_doc.get("expiresAt")
            base = current if current and current > now else now
            next_expiry = base + timedelta(days=days)
        case "absolute":
            if new_expiry is None:
                return fail(ShopErrorCode.INVALID_INPUT, "newExpiry 가 올바르지 않습니다.")
            next_expiry = new_expiry
        case _:
            return fail(ShopErrorCode.INVALID_INPUT, "mode 는 days 또는 absolute 여야 합니다.")

    db.service_passes.update_one(
        {"_id": pass_id},
        {"$set": {"expiresAt": next_expiry, "updatedAt": now}},
    )
    if pass_doc.get("orderId"):
        previous = pass_doc.get("expiresAt")
        db.packageOrders.update_one(
            {"_id": pass_doc["orderId"]},
            {
                "$push": {
                    "history": {
                        "status": "만료연장",
                        "date": now,
                        "description": (
                            f"만료일 {previous.isoformat() if previous else '-'} → "
                            f"{next_expiry.isoformat()} ({reason})"
                        ),
                    },
                },
            },
        )

    fresh = db.service_passes.find_one({"_id": pass_id})
    return Ok(serialize_pass(fresh))


def adjust_pass_sessions(
    db: Database,
    pass_id: ObjectId,
    delta: int,
    reason: str = "",
) -> ShopResult[dict[str, Any]]:
    """
    잔여 횟수를 수동 조정한다. 잔여는 0 미만이 되지 않고, 양수 조정은 총 횟수도 늘린다.
    Manually adjust remaining sessions (never below zero).
    """
    if delta == 0:
        return fail(ShopErrorCode.INVALID_INPUT, "delta 는 0 이 아니어야 합니다.")
    pass_doc = db.service_passes.find_one({"_id": pass_id})
    if not pass_doc:
        return fail(ShopErrorCode.PASS_NOT_FOUND, "패스를 찾을 수 없습니다.")

    remaining = int(pass_doc.get("remainingCount") or 0)
    size = int(pass_doc.get("packageSize") or 0)
    next_remaining = max(0, remaining + delta)
    next_size = size + delta if delta > 0 else size
    now = utc_now()

    db.service_passes.update_one(
        {"_id": pass_id},
        {
            "$set": {
                "remainingCount": next_remaining,
                "packageSize": next_size,
                "updatedAt": now,
            },
            "$push": {
                "adjustments": {"delta": delta, "reason": reason, "at": now},
            },
        },
    )
    fresh = db.service_passes.find_one({"_id": pass_id})
    return Ok(serialize_pass(fresh))


def create_package_order(
    db: Database,
    user_id: ObjectId,
    plan_id: str,
    user_snapshot: dict[str, Any] | None = None,
) -> ShopResult[dict[str, Any]]:
    plan = PACKAGE_PLANS.get(plan_id)
    if plan is None:
        return fail(ShopErrorCode.INVALID_INPUT, "존재하지 않는 패키지입니다.")

    now = utc_now()
    doc = {
        "userId": user_id,
        "userSnapshot": user_snapshot,
        "packageInfo": {
            "planId": plan.plan_id,
            "name": plan.name,
            "sessions": plan.sessions,
            "price": plan.price,
            "validityDays": plan.validity_days,
        },
        "totalPrice": plan.price,
        "paymentStatus": "결제대기",
        "status": "주문접수",
        "history": [{"status": "주문접수", "date": now, "description": "패키지 주문 생성"}],
        "createdAt": now,
        "updatedAt": now,
    }
    inserted = db.packageOrders.insert_one(doc)
    return Ok({"ok": True, "packageOrderId": str(inserted.inserted_id)})


def list_my_package_orders(db: Database, user_id: ObjectId) -> list[dict[str, Any]]:
    cursor = db.packageOrders.find({"userId": user_id}).sort("createdAt", DESCENDING)
    return [
        {
            "id": str(doc["_id"]),
            "packageInfo": doc.get("packageInfo"),
            "totalPrice": doc.get("totalPrice"),
            "paymentStatus": doc.get("paymentStatus"),
            "status": doc.get("status"),
            "createdAt": doc.get("createdAt"),
        }
        for doc in cursor
    ]


def mark_package_order_paid(db: Database, package_order_id: ObjectId) -> ShopResult[dict[str, Any]]:
    """
    패키지 주문을 결제완료로 바꾸고 패스를 발급한다 (재호출 시 발급은 건너뜀).
    Mark a package order paid and issue its pass (issuance is idempotent).
    """
    now = utc_now()
    order = db.packageOrders.find_one_and_update(
        {"_id": package_order_id, "paymentStatus": {"$ne": PAID_STATUS}},
        {
            "$set": {"paymentStatus": PAID_STATUS, "paidAt": now, "updatedAt": now},
            "$push": {"history": {"status": PAID_STATUS, "date": now, "description": "결제 확인"}},
        },
        return_document=ReturnDocument.AFTER,
    )
    if order is None:
        # 이미 결제완료였거나 존재하지 않음 / already paid, or missing
        order = db.packageOrders.find_one({"_id": package_order_id})
        if order is None:
            return fail(ShopErrorCode.NOT_FOUND, "패키지 주문을 찾을 수 없습니다.")

    issued = issue_passes_for_paid_package_order(db, order)
    return Ok(
        {
            "ok": True,
            "issuedPassId": str(issued) if issued else None,
            "alreadyIssued": issued is None,
        },
    )
