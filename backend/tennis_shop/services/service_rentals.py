"""
라켓 대여 서비스.

상태 흐름: pending → paid → out → returned (pending/paid 에서 canceled 가능)
모든 전이는 write_rental_history 로 이력을 남긴다.

Racket rental service. Every transition is recorded through
`write_rental_history`.
"""

import logging
import re
from datetime import timedelta
from typing import Any, Final

from bson import ObjectId
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database

from shop_core import Err, Ok, clamp_limit, clamp_page, skip_for, to_jsonable, utc_now

from tennis_shop.config import Settings
from tennis_shop.errors import ShopErrorCode, ShopResult, fail
from tennis_shop.internal.kakao_notification import notify
from tennis_shop.models.model_io_applications import CancelRequestBody
from tennis_shop.models.model_io_rentals import (
    RentalOutRequest,
    RentalPaymentInput,
    RentalPrepareRequest,
    RentalShippingInput,
)
from tennis_shop.principal import Principal
from tennis_shop.services.service_catalog import racket_display_name, sync_racket_status
from tennis_shop.services.service_orders import BANK_LABELS
from tennis_shop.services.service_points import calc_order_earn_points, grant_points

logger = logging.getLogger(__name__)


RENTAL_DAYS: Final[tuple[int, ...]] = (7, 15, 30)
DEFAULT_FEES: Final[dict[int, int]] = {7: 15_000, 15: 25_000, 30: 40_000}

_POSTAL_CODE = re.compile(r"^\d{5}$")
_PHONE_DIGITS = re.compile(r"^\d{10,11}$")


def write_rental_history(
    db: Database,
    rental_id: ObjectId,
    action: str,
    from_status: str | None,
    to_status: str | None,
    actor: dict[str, Any],
    snapshot: dict[str, Any] | None = None,
) -> None:
    """
    대여 상태 전이 이력을 추가한다. / Append one rental transition record.
    """
    entry: dict[str, Any] = {
        "action": action,
        "from": from_status,
        "to": to_status,
        "actor": actor,
        "at": utc_now(),
    }
    if snapshot:
        entry["snapshot"] = snapshot
    db.rental_orders.update_one({"_id": rental_id}, {"$push": {"history": entry}})


def _actor(principal: Principal) -> dict[str, Any]:
    return {"role": "admin" if principal.is_admin else "user", "id": principal.id}


def _fee_for(racket: dict[str, Any], days: int) -> int:
    fees = racket.get("rentalFeeByDays") or {}
    fee = fees.get(str(days), fees.get(days)) if isinstance(fees, dict) else None
    return int(fee) if fee is not None else DEFAULT_FEES[days]


def _load_owned(db: Database, rental_id: ObjectId, principal: Principal) -> ShopResult[dict[str, Any]]:
    rental = db.rental_orders.find_one({"_id": rental_id})
    if not rental:
        return fail(ShopErrorCode.NOT_FOUND, "대여 내역을 찾을 수 없습니다.")
    if rental.get("userId") != principal.oid:
        return fail(ShopErrorCode.FORBIDDEN, "본인 대여만 처리할 수 있습니다.")
    return Ok(rental)


def _validate_shipping(shipping: RentalShippingInput) -> ShopResult[dict[str, Any]]:
    phone_digits = re.sub(r"\D", "", shipping.phone)
    if not _POSTAL_CODE.match(shipping.postal_code.strip()):
        return fail(ShopErrorCode.INVALID_INPUT, "우편번호는 5자리 숫자여야 합니다.")
    if not _PHONE_DIGITS.match(phone_digits):
        return fail(ShopErrorCode.INVALID_INPUT, "연락처 형식이 올바르지 않습니다.")
    if not shipping.address.strip():
        return fail(ShopErrorCode.INVALID_INPUT, "주소를 입력해 주세요.")
    return Ok(
        {
            "name": shipping.name.strip(),
            "phone": phone_digits,
            "postalCode": shipping.postal_code.strip(),
            "address": shipping.address.strip(),
            "addressDetail": shipping.address_detail,
            "deliveryRequest": shipping.delivery_request,
        },
    )


def _validate_payment(payment: RentalPaymentInput) -> ShopResult[dict[str, Any]]:
    if payment.bank and payment.bank not in BANK_LABELS:
        return fail(ShopErrorCode.INVALID_INPUT, "지원하지 않는 은행입니다.")
    return Ok({"method": payment.method, "bank": payment.bank, "depositor": payment.depositor})


def create_rental(
    db: Database,
    settings: Settings,
    principal: Principal,
    racket_id: ObjectId,
    days: int,
) -> ShopResult[dict[str, Any]]:
    if days not in RENTAL_DAYS:
        return fail(ShopErrorCode.INVALID_INPUT, "대여 기간은 7/15/30일 중 하나여야 합니다.")

    racket = db.used_rackets.find_one({"_id": racket_id})
    if not racket:
        return fail(ShopErrorCode.NOT_FOUND, "라켓을 찾을 수 없습니다.")
    if racket.get("status") in ("inactive", "sold"):
        return fail(ShopErrorCode.INVALID_STATE, "대여할 수 없는 라켓입니다.")

    fee = _fee_for(racket, days)
    deposit = int(racket.get("deposit") or 0)
    now = utc_now()
    doc = {
        "userId": principal.oid,
        "racketId": racket_id,
        "brand": racket.get("brand"),
        "model": racket.get("model"),
        "days": days,
        "status": "pending",
        "amount": {"fee": fee, "deposit": deposit, "total": fee + deposit},
        "cancelRequest": None,
        "history": [],
        "createdAt": now,
        "updatedAt": now,
    }
    rental_id = db.rental_orders.insert_one(doc).inserted_id
    write_rental_history(db, rental_id, "create", None, "pending", _actor(principal))

    notify(
        db,
        settings,
        "rental.created",
        f"{rental_id}:created",
        {"id": str(rental_id), "name": racket_display_name(racket), "status": "pending", "totalPrice": fee + deposit},
    )
    logger.info("rental created id=%s racket=%s days=%d", rental_id, racket_id, days)
    return Ok({"ok": True, "id": str(rental_id), "amount": doc["amount"]})


def prepare_rental(
    db: Database,
    rental_id: ObjectId,
    principal: Principal,
    body: RentalPrepareRequest,
) -> ShopResult[dict[str, Any]]:
    """
    배송지/입금/환불 계좌를 저장한다. 상태는 바꾸지 않는다.
    """
    match _load_owned(db, rental_id, principal):
        case Ok(value=rental):
            pass
        case Err() as err:
            return err
    if rental.get("status") != "pending":
        return fail(ShopErrorCode.INVALID_STATE, "결제 대기 상태에서만 수정할 수 있습니다.")

    updates: dict[str, Any] = {"updatedAt": utc_now()}
    if body.shipping is not None:
        match _validate_shipping(body.shipping):
            case Ok(value=shipping):
                updates["shipping"] = shipping
            case Err() as err:
                return err
    if body.payment is not None:
        match _validate_payment(body.payment):
            case Ok(value=payment):
                updates["payment"] = payment
            case Err() as err:
                return err
    if body.refund_account is not None:
        if body.refund_account.bank not in BANK_LABELS:
            return fail(ShopErrorCode.INVALID_INPUT, "지원하지 않는 은행입니다.")
        updates["refundAccount"] = body.refund_account.model_dump(by_alias=True)

    db.rental_orders.update_one({"_id": rental_id}, {"$set": updates})
    return Ok({"ok": True})


def pay_rental(
    db: Database,
    settings: Settings,
    rental_id: ObjectId,
    principal: Principal,
    payment: RentalPaymentInput | None = None,
    shipping: RentalShippingInput | None = None,
) -> ShopResult[dict[str, Any]]:
    match _load_owned(db, rental_id, principal):
        case Ok(value=rental):
            pass
        case Err() as err:
            return err

    if rental.get("status") == "paid":
        return Ok({"ok": True, "already": True})

    updates: dict[str, Any] = {}
    if payment is not None:
        match _validate_payment(payment):
            case Ok(value=payment_doc):
                updates["payment"] = payment_doc
            case Err() as err:
                return err
    if shipping is not None:
        match _validate_shipping(shipping):
            case Ok(value=shipping_doc):
                updates["shipping"] = shipping_doc
            case Err() as err:
                return err

    if int((rental.get("amount") or {}).get("total") or 0) <= 0:
        return fail(ShopErrorCode.INVALID_AMOUNT, "결제 금액이 올바르지 않습니다.", status_code=409)
    if rental.get("status") != "pending":
        return fail(ShopErrorCode.INVALID_STATE, "결제할 수 없는 상태입니다.")

    now = utc_now()
    updates.update({"status": "paid", "paidAt": now, "updatedAt": now})
    updated = db.rental_orders.find_one_and_update(
        {"_id": rental_id, "status": "pending"},
        {"$set": updates},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        return fail(ShopErrorCode.INVALID_STATE, "결제할 수 없는 상태입니다.")

    write_rental_history(db, rental_id, "pay", "pending", "paid", _actor(principal))
    sync_racket_status(db, rental.get("racketId"), "rented")
    notify(
        db,
        settings,
        "rental.paid",
        f"{rental_id}:paid",
        {"id": str(rental_id), "status": "paid", "totalPrice": updated["amount"].get("total")},
    )
    return Ok({"ok": True, "already": False})


def request_rental_cancel(
    db: Database,
    settings: Settings,
    rental_id: ObjectId,
    principal: Principal,
    body: CancelRequestBody,
) -> ShopResult[dict[str, Any]]:
    match _load_owned(db, rental_id, principal):
        case Ok(value=rental):
            pass
        case Err() as err:
            return err

    status = rental.get("status")
    match status:
        case "canceled":
            return fail(ShopErrorCode.ALREADY_CANCELED, "이미 취소된 대여입니다.")
        case "out" | "returned":
            return fail(ShopErrorCode.INVALID_STATE, "출고 이후에는 취소할 수 없습니다.")
        case "pending" | "paid":
            pass
        case _:
            return fail(ShopErrorCode.INVALID_STATE, "취소할 수 없는 상태입니다.")
    if (rental.get("cancelRequest") or {}).get("status") == "requested":
        return fail(ShopErrorCode.ALREADY_REQUESTED, "이미 취소 요청이 접수되었습니다.")

    now = utc_now()
    db.rental_orders.update_one(
        {"_id": rental_id},
        {
            "$set": {
                "cancelRequest": {
                    "status": "requested",
                    "reasonCode": body.reason_code or "기타",
                    "reasonText": body.reason_text or "",
                    "requestedAt": now,
                },
                "updatedAt": now,
            },
        },
    )
    write_rental_history(db, rental_id, "cancel_request", status, status, _actor(principal))
    notify(
        db,
        settings,
        "rental.cancel_requested",
        f"{rental_id}:cancel-requested:{now.isoformat()}",
        {"id": str(rental_id), "status": "취소요청"},
    )
    return Ok({"ok": True})


def approve_rental_cancel(db: Database, rental_id: ObjectId, admin: Principal) -> ShopResult[dict[str, Any]]:
    rental = db.rental_orders.find_one({"_id": rental_id})
    if not rental:
        return fail(ShopErrorCode.NOT_FOUND, "대여 내역을 찾을 수 없습니다.")

    request = rental.get("cancelRequest") or {}
    if rental.get("status") == "canceled" and request.get("status") == "approved":
        return Ok({"ok": True, "already": True})
    if request.get("status") != "requested":
        return fail(ShopErrorCode.CONFLICT, "대기 중인 취소 요청이 없습니다.")

    now = utc_now()
    updated = db.rental_orders.update_one(
        {"_id": rental_id, "cancelRequest.status": "requested", "status": {"$in": ["pending", "paid"]}},
        {
            "$set": {
                "status": "canceled",
                "cancelRequest.status": "approved",
                "cancelRequest.processedAt": now,
                "cancelRequest.processedByAdminId": admin.oid,
                "canceledAt": now,
                "updatedAt": now,
            },
        },
    )
    if updated.matched_count == 0:
        return fail(ShopErrorCode.CONFLICT, "대여 상태가 변경되어 취소하지 못했습니다.")

    write_rental_history(db, rental_id, "cancel_approve", rental.get("status"), "canceled", _actor(admin))
    sync_racket_status(db, rental.get("racketId"), "available")
    return Ok({"ok": True, "already": False})


def reject_rental_cancel(
    db: Database,
    rental_id: ObjectId,
    admin: Principal,
    memo: str | None = None,
) -> ShopResult[dict[str, Any]]:
    now = utc_now()
    rental = db.rental_orders.find_one_and_update(
        {"_id": rental_id, "cancelRequest.status": "requested"},
        {
            "$set": {
                "cancelRequest.status": "rejected",
                "cancelRequest.processedAt": now,
                "cancelRequest.processedByAdminId": admin.oid,
                "cancelRequest.adminMemo": memo or "",
                "updatedAt": now,
            },
        },
    )
    if rental is None:
        if db.rental_orders.find_one({"_id": rental_id}, {"_id": 1}) is None:
            return fail(ShopErrorCode.NOT_FOUND, "대여 내역을 찾을 수 없습니다.")
        return fail(ShopErrorCode.CONFLICT, "대기 중인 취소 요청이 없습니다.")

    status = rental.get("status")
    write_rental_history(db, rental_id, "cancel_reject", status, status, _actor(admin), {"memo": memo})
    return Ok({"ok": True})


def withdraw_rental_cancel(db: Database, rental_id: ObjectId, principal: Principal) -> ShopResult[dict[str, Any]]:
    match _load_owned(db, rental_id, principal):
        case Ok(value=rental):
            pass
        case Err() as err:
            return err

    result = db.rental_orders.update_one(
        {"_id": rental_id, "userId": principal.oid, "cancelRequest.status": "requested"},
        {"$set": {"cancelRequest": None, "updatedAt": utc_now()}},
    )
    if result.matched_count == 0:
        return fail(ShopErrorCode.NOT_REQUESTED, "철회할 취소 요청이 없습니다.")

    status = rental.get("status")
    write_rental_history(db, rental_id, "cancel_withdraw", status, status, _actor(principal))
    return Ok({"ok": True})


def admin_out_rental(
    db: Database,
    rental_id: ObjectId,
    admin: Principal,
    body: RentalOutRequest,
) -> ShopResult[dict[str, Any]]:
    """
    출고 처리: paid → out, 반납 예정일(dueAt) = 출고 시각 + 대여 기간.
    """
    days = body.days or 7
    if days not in RENTAL_DAYS:
        return fail(ShopErrorCode.INVALID_INPUT, "대여 기간은 7/15/30일 중 하나여야 합니다.")

    rental = db.rental_orders.find_one({"_id": rental_id})
    if not rental:
        return fail(ShopErrorCode.NOT_FOUND, "대여 내역을 찾을 수 없습니다.")
    if rental.get("status") in ("out", "returned"):
        return Ok({"ok": True, "already": True})
    if rental.get("status") != "paid":
        return fail(ShopErrorCode.INVALID_STATE, "결제완료 상태에서만 출고할 수 있습니다.")

    now = utc_now()
    due_at = now + timedelta(days=days)
    outbound = {
        "courier": body.courier,
        "trackingNumber": body.tracking_number,
        "shippedAt": now,
    }
    result = db.rental_orders.update_one(
        {"_id": rental_id, "status": "paid"},
        {
            "$set": {
                "status": "out",
                "outAt": now,
                "dueAt": due_at,
                "shipping.outbound": outbound,
                "updatedAt": now,
            },
        },
    )
    if result.matched_count == 0:
        return fail(ShopErrorCode.INVALID_STATE, "결제완료 상태에서만 출고할 수 있습니다.")

    write_rental_history(db, rental_id, "out", "paid", "out", _actor(admin), {"dueAt": due_at, "days": days})
    sync_racket_status(db, rental.get("racketId"), "rented")
    return Ok({"ok": True, "already": False, "dueAt": due_at})


def admin_return_rental(db: Database, rental_id: ObjectId, admin: Principal) -> ShopResult[dict[str, Any]]:
    rental = db.rental_orders.find_one({"_id": rental_id})
    if not rental:
        return fail(ShopErrorCode.NOT_FOUND, "대여 내역을 찾을 수 없습니다.")
    if rental.get("status") == "returned":
        return Ok({"ok": True, "already": True})

    now = utc_now()
    result = db.rental_orders.update_one(
        {"_id": rental_id, "status": "out"},
        {"$set": {"status": "returned", "returnedAt": now, "updatedAt": now}},
    )
    if result.matched_count == 0:
        return fail(ShopErrorCode.INVALID_STATE, "대여 중인 상태에서만 반납 처리할 수 있습니다.")

    write_rental_history(db, rental_id, "return", "out", "returned", _actor(admin))
    sync_racket_status(db, rental.get("racketId"), "available")
    return Ok({"ok": True, "already": False})


def confirm_rental(db: Database, rental_id: ObjectId, principal: Principal) -> ShopResult[dict[str, Any]]:
    """
    반납 완료된 대여를 사용자가 확정하고 대여료 기준 적립금을 받는다.
    """
    match _load_owned(db, rental_id, principal):
        case Ok(value=rental):
            pass
        case Err() as err:
            return err

    if rental.get("status") != "returned":
        return fail(ShopErrorCode.INVALID_STATE, "반납 완료 후에 확정할 수 있습니다.")
    if rental.get("userConfirmedAt"):
        return Ok({"ok": True, "already": True, "earnedPoints": 0})

    result = db.rental_orders.update_one(
        {"_id": rental_id, "status": "returned", "userConfirmedAt": None},
        {"$set": {"userConfirmedAt": utc_now()}},
    )
    if result.matched_count == 0:
        return Ok({"ok": True, "already": True, "earnedPoints": 0})

    write_rental_history(db, rental_id, "confirm", "returned", "returned", _actor(principal))
    earned = calc_order_earn_points((rental.get("amount") or {}).get("fee") or 0)
    granted = 0
    if earned > 0:
        match grant_points(
            db,
            principal.oid,
            earned,
            "rental_confirm_reward",
            ref_key=f"rental_confirm_reward:{rental_id}",
            ref={"rentalId": rental_id},
            reason="대여 확정 적립",
        ):
            case Ok(value=outcome):
                granted = outcome.amount if outcome.applied else 0
            case _:
                logger.warning("rental confirm reward failed rental=%s", rental_id)
    return Ok({"ok": True, "already": False, "earnedPoints": granted})


def list_my_rentals(db: Database, principal: Principal, page: Any = 1, limit: Any = 10) -> dict[str, Any]:
    page_no = clamp_page(page)
    size = clamp_limit(limit, 10, 50)
    query = {"userId": principal.oid}
    cursor = (
        db.rental_orders.find(query, {"history": 0})
        .sort([("createdAt", DESCENDING), ("_id", DESCENDING)])
        .skip(skip_for(page_no, size))
        .limit(size)
    )
    return {
        "items": [to_jsonable(doc) for doc in cursor],
        "total": db.rental_orders.count_documents(query),
        "page": page_no,
        "limit": size,
    }


def get_rental(db: Database, rental_id: ObjectId, principal: Principal) -> ShopResult[dict[str, Any]]:
    rental = db.rental_orders.find_one({"_id": rental_id})
    if not rental:
        return fail(ShopErrorCode.NOT_FOUND, "대여 내역을 찾을 수 없습니다.")
    if not principal.is_admin and rental.get("userId") != principal.oid:
        return fail(ShopErrorCode.FORBIDDEN, "조회 권한이 없습니다.")
    return Ok(to_jsonable(rental))
