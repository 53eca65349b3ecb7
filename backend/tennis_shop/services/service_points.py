"""
포인트(적립금) 원장 서비스.

points_transactions 컬렉션이 원장이며, users.pointsBalance 는 잔액 캐시다.
refKey 유니크 인덱스로 같은 사유의 적립/차감이 두 번 반영되지 않는다.

Points ledger service. `points_transactions` is the ledger and
`users.pointsBalance` is a cached balance. The sparse unique index on
`refKey` keeps grants/deductions for the same reason idempotent.
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Final, Literal

from bson import ObjectId
from pymongo import DESCENDING
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from shop_core import Ok, clamp_limit, clamp_page, skip_for, utc_now

from tennis_shop.errors import ShopErrorCode, ShopResult, fail

logger = logging.getLogger(__name__)


REVIEW_REWARD_POINTS: Final[int] = 50
ORDER_EARN_RATE: Final[float] = 0.01

HISTORY_LIMIT_DEFAULT: Final[int] = 20
HISTORY_LIMIT_MAX: Final[int] = 50

PointsTransactionType = Literal[
    "admin_adjust",
    "review_reward_product",
    "review_reward_service",
    "order_reward",
    "rental_confirm_reward",
    "service_confirm_reward",
    "signup_bonus",
    "spend_on_order",
    "reversal",
    "hold_on_order",
    "release_hold",
]
PointsTransactionStatus = Literal["confirmed", "held", "canceled"]

POINTS_TYPE_LABELS: Final[dict[str, str]] = {
    "admin_adjust": "관리자 조정",
    "review_reward_product": "상품 리뷰 적립",
    "review_reward_service": "서비스 리뷰 적립",
    "order_reward": "구매 적립",
    "rental_confirm_reward": "대여 확정 적립",
    "service_confirm_reward": "교체 확정 적립",
    "signup_bonus": "가입 보너스",
    "spend_on_order": "포인트 사용",
    "reversal": "회수/되돌림",
    "hold_on_order": "주문 보류",
    "release_hold": "보류 해제",
}


@dataclass(slots=True, frozen=True)
class PointsOutcome:
    """
    적립/차감 처리 결과.
    Outcome of a grant/deduct call.

    - applied: 이번 호출로 원장과 잔액이 실제로 변경되었는지
    - duplicated: 같은 refKey 가 이미 반영되어 있어 건너뛰었는지
    """

    applied: bool
    duplicated: bool
    amount: int
    transaction_id: ObjectId | None = None


def calc_order_earn_points(total: float | int | None, rate: float = ORDER_EARN_RATE) -> int:
    """
    결제 금액 기준 적립 포인트 (내림). 0 이하이면 0.
    Points earned for a payment amount (floored); 0 for non-positive totals.
    """
    if total is None or total <= 0:
        return 0
    return math.floor(total * rate)


def points_type_label(tx_type: str) -> str:
    return POINTS_TYPE_LABELS.get(tx_type, tx_type)


def parse_ref_key(ref_key: str | None) -> dict[str, str] | None:
    """
    refKey 를 해석한다.

    - "order:<id>[:suffix]" → {"kind": "order", "orderId", "suffix"}
    - "review:<id>"         → {"kind": "review", "reviewId"}
    """
    if not ref_key:
        return None
    parts = ref_key.split(":")
    match parts:
        case ["order", order_id]:
            return {"kind": "order", "orderId": order_id, "suffix": ""}
        case ["order", order_id, *rest] if rest:
            return {"kind": "order", "orderId": order_id, "suffix": ":".join(rest)}
        case ["review", review_id]:
            return {"kind": "review", "reviewId": review_id}
        case _:
            return None


def _build_tx(
    user_id: ObjectId,
    amount: int,
    tx_type: str,
    status: str,
    ref_key: str | None,
    ref: dict[str, Any] | None,
    reason: str | None,
) -> dict[str, Any]:
    doc: dict[str, Any] = {
        "userId": user_id,
        "amount": amount,
        "type": tx_type,
        "status": status,
        "createdAt": utc_now(),
    }
    # refKey 는 있을 때만 저장한다 (sparse 유니크 인덱스).
    if ref_key:
        doc["refKey"] = ref_key
    if ref:
        doc["ref"] = ref
    if reason:
        doc["reason"] = reason
    return doc


def grant_points(
    db: Database,
    user_id: ObjectId,
    amount: float | int,
    tx_type: str,
    *,
    ref_key: str | None = None,
    ref: dict[str, Any] | None = None,
    reason: str | None = None,
    status: str = "confirmed",
) -> ShopResult[PointsOutcome]:
    """
    포인트를 적립한다.

    1) amount 를 정수로 내림 처리하고 0 이하이면 INVALID_AMOUNT
    2) 원장에 기록 (refKey 중복이면 이미 반영된 것으로 보고 Ok(duplicated=True))
    3) users.pointsBalance 를 $inc, 사용자가 없으면 원장 기록을 되돌리고 USER_NOT_FOUND

    Grant points: ledger insert first, then the cached balance. A duplicate
    refKey is treated as "already applied".
    """
    value = int(amount)
    if value <= 0:
        return fail(ShopErrorCode.INVALID_AMOUNT, "적립 포인트는 1 이상이어야 합니다.")

    doc = _build_tx(user_id, value, tx_type, status, ref_key, ref, reason)
    try:
        inserted = db.points_transactions.insert_one(doc)
    except DuplicateKeyError:
        logger.info("points grant skipped, refKey already applied: %s", ref_key)
        return Ok(PointsOutcome(applied=False, duplicated=True, amount=value))

    updated = db.users.update_one({"_id": user_id}, {"$inc": {"pointsBalance": value}})
    if updated.matched_count == 0:
        db.points_transactions.delete_one({"_id": inserted.inserted_id})
        return fail(ShopErrorCode.USER_NOT_FOUND, "사용자를 찾을 수 없습니다.")

    return Ok(
        PointsOutcome(
            applied=True,
            duplicated=False,
            amount=value,
            transaction_id=inserted.inserted_id,
        ),
    )


def deduct_points(
    db: Database,
    user_id: ObjectId,
    amount: float | int,
    tx_type: str,
    *,
    ref_key: str | None = None,
    ref: dict[str, Any] | None = None,
    reason: str | None = None,
    allow_negative_balance: bool = False,
) -> ShopResult[PointsOutcome]:
    """
    포인트를 차감한다. 원장에는 음수 금액으로 기록된다.

    allow_negative_balance=False 이면 잔액이 amount 이상일 때만 차감되며
    (필드가 없으면 0 으로 간주되어 매칭되지 않는다) 실패 시 원장 기록을 되돌린다.

    Deduct points (stored as a negative amount). Unless negative balances
    are allowed, the balance update is guarded by `pointsBalance >= amount`.
    """
    value = int(amount)
    if value <= 0:
        return fail(ShopErrorCode.INVALID_AMOUNT, "차감 포인트는 1 이상이어야 합니다.")

    doc = _build_tx(user_id, -value, tx_type, "confirmed", ref_key, ref, reason)
    try:
        inserted = db.points_transactions.insert_one(doc)
    except DuplicateKeyError:
        logger.info("points deduct skipped, refKey already applied: %s", ref_key)
        return Ok(PointsOutcome(applied=False, duplicated=True, amount=-value))

    guard: dict[str, Any] = {"_id": user_id}
    if not allow_negative_balance:
        guard["pointsBalance"] = {"$gte": value}

    updated = db.users.update_one(guard, {"$inc": {"pointsBalance": -value}})
    if updated.matched_count == 0:
        db.points_transactions.delete_one({"_id": inserted.inserted_id})
        if db.users.find_one({"_id": user_id}, {"_id": 1}) is None:
            return fail(ShopErrorCode.USER_NOT_FOUND, "사용자를 찾을 수 없습니다.")
        return fail(ShopErrorCode.INSUFFICIENT_POINTS, "포인트 잔액이 부족합니다.")

    return Ok(
        PointsOutcome(
            applied=True,
            duplicated=False,
            amount=-value,
            transaction_id=inserted.inserted_id,
        ),
    )


def get_points_balance(db: Database, user_id: ObjectId) -> int:
    user = db.users.find_one({"_id": user_id}, {"pointsBalance": 1})
    if not user:
        return 0
    return int(user.get("pointsBalance") or 0)


def find_transaction_by_ref_key(db: Database, ref_key: str) -> dict[str, Any] | None:
    return db.points_transactions.find_one({"refKey": ref_key})


def _serialize_tx(doc: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": str(doc["_id"]),
        "amount": int(doc.get("amount") or 0),
        "type": doc.get("type"),
        "typeLabel": points_type_label(str(doc.get("type") or "")),
        "status": doc.get("status", "confirmed"),
        "reason": doc.get("reason"),
        "refKey": doc.get("refKey"),
        "createdAt": doc.get("createdAt"),
    }


def list_point_transactions(
    db: Database,
    user_id: ObjectId,
    page: Any = 1,
    limit: Any = HISTORY_LIMIT_DEFAULT,
) -> dict[str, Any]:
    """
    사용자 포인트 내역 (최신순). limit 는 1..50 으로 보정된다.
    User's ledger entries, newest first; limit clamped to 1..50.
    """
    page_no = clamp_page(page)
    size = clamp_limit(limit, HISTORY_LIMIT_DEFAULT, HISTORY_LIMIT_MAX)
    query = {"userId": user_id}

    cursor = (
        db.points_transactions.find(query, {"userId": 0})
        .sort([("createdAt", DESCENDING), ("_id", DESCENDING)])
        .skip(skip_for(page_no, size))
        .limit(size)
    )
    return {
        "items": [_serialize_tx(doc) for doc in cursor],
        "total": db.points_transactions.count_documents(query),
        "page": page_no,
        "limit": size,
    }


def admin_adjust_points(
    db: Database,
    user_id: ObjectId,
    amount: float | int,
    *,
    admin_id: ObjectId | None = None,
    reason: str | None = None,
    ref_key: str | None = None,
) -> ShopResult[dict[str, Any]]:
    """
    관리자 수동 조정. amount > 0 이면 지급, < 0 이면 차감(잔액 부족 시 실패).
    Manual admin adjustment: positive grants, negative deducts.
    """
    if amount == 0 or not math.isfinite(float(amount)):
        return fail(ShopErrorCode.INVALID_AMOUNT, "조정 금액이 올바르지 않습니다.")
    if db.users.find_one({"_id": user_id}, {"_id": 1}) is None:
        return fail(ShopErrorCode.USER_NOT_FOUND, "사용자를 찾을 수 없습니다.")

    ref = {"adminId": admin_id} if admin_id else None
    if amount > 0:
        result = grant_points(
            db, user_id, amount, "admin_adjust", ref_key=ref_key, ref=ref, reason=reason,
        )
    else:
        result = deduct_points(
            db, user_id, abs(amount), "admin_adjust", ref_key=ref_key, ref=ref, reason=reason,
        )

    match result:
        case Ok(value=outcome):
            return Ok(
                {
                    "ok": True,
                    "userId": str(user_id),
                    "delta": outcome.amount,
                    "duplicated": outcome.duplicated,
                    "balance": get_points_balance(db, user_id),
                },
            )
        case _:
            return result
