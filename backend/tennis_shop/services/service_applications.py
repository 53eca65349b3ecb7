"""
스트링 교체 서비스 신청서 서비스.

상태 흐름: draft → 검토 중 → 접수완료 → 작업 중 → 교체완료 (또는 취소)

Stringing-service application service.
"""

import logging
from typing import Any, Final

from bson import ObjectId
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database

from shop_core import Ok, clamp_limit, clamp_page, skip_for, to_jsonable, utc_now

from tennis_shop.config import Settings
from tennis_shop.errors import ShopErrorCode, ShopResult, fail
from tennis_shop.internal.kakao_notification import notify
from tennis_shop.models.model_io_applications import (
    ApplicationSubmitRequest,
    ApplicationSubmitResponse,
    CancelRequestBody,
)
from tennis_shop.principal import Principal
from tennis_shop.services.service_passes import (
    consume_pass,
    find_one_active_pass_for_user,
    revert_consumption,
)
from tennis_shop.services.service_points import ORDER_EARN_RATE, calc_order_earn_points, grant_points

logger = logging.getLogger(__name__)


STATUS_DRAFT: Final[str] = "draft"
STATUS_REVIEW: Final[str] = "검토 중"
STATUS_RECEIVED: Final[str] = "접수완료"
STATUS_WORKING: Final[str] = "작업 중"
STATUS_DONE: Final[str] = "교체완료"
STATUS_CANCELED: Final[str] = "취소"

APPLICATION_STATUSES: Final[tuple[str, ...]] = (
    STATUS_DRAFT,
    STATUS_REVIEW,
    STATUS_RECEIVED,
    STATUS_WORKING,
    STATUS_DONE,
    STATUS_CANCELED,
)
FINAL_STATUSES: Final[tuple[str, ...]] = (STATUS_DONE, STATUS_CANCELED)

CUSTOM_STRING_FEE: Final[int] = 15_000
HISTORY_LIMIT_DEFAULT: Final[int] = 5


def _history(status: str, description: str) -> dict[str, Any]:
    return {"status": status, "date": utc_now(), "description": description}


def _can_read(app: dict[str, Any], principal: Principal | None) -> bool:
    if principal is None:
        return False
    return principal.is_admin or app.get("userId") == principal.oid


def _tracking_number(doc: dict[str, Any]) -> str | None:
    invoice = (doc.get("shippingInfo") or {}).get("invoice") or {}
    number = invoice.get("trackingNumber")
    return str(number).strip() if number else None


def _compute_price(db: Database, request: ApplicationSubmitRequest) -> int:
    """
    lines 가 있으면 장착비 합계, 없으면 stringTypes 마다
    custom=15000 / 상품이면 상품의 mountingFee.
    """
    if request.lines:
        return sum(line.mounting_fee for line in request.lines)

    total = 0
    for string_type in request.string_types:
        if string_type == "custom":
            total += CUSTOM_STRING_FEE
            continue
        if not ObjectId.is_valid(string_type):
            continue
        product = db.products.find_one({"_id": ObjectId(string_type)}, {"mountingFee": 1})
        if product:
            total += int(product.get("mountingFee") or 0)
    return total


def create_draft_from_order(db: Database, order: dict[str, Any]) -> ObjectId:
    """
    '스트링 교체 서비스 포함' 주문에 대한 draft 신청서를 만든다 (주문당 1개).
    Create the draft application for an order that includes stringing.
    """
    existing = db.stringing_applications.find_one({"orderId": order["_id"]}, {"_id": 1})
    if existing:
        return existing["_id"]

    shipping = order.get("shippingInfo") or {}
    string_types = [
        str(item["productId"])
        for item in order.get("items") or []
        if item.get("kind") == "product" and int(item.get("mountingFee") or 0) > 0
    ]
    now = utc_now()
    inserted = db.stringing_applications.insert_one(
        {
            "userId": order.get("userId"),
            "orderId": order["_id"],
            "name": shipping.get("name"),
            "phone": shipping.get("phone"),
            "status": STATUS_DRAFT,
            "stringDetails": {"stringTypes": string_types},
            "servicePickupMethod": order.get("servicePickupMethod"),
            "totalPrice": 0,
            "packageApplied": False,
            "history": [],
            "createdAt": now,
            "updatedAt": now,
        },
    )
    return inserted.inserted_id


def submit_application(
    db: Database,
    settings: Settings,
    principal: Principal | None,
    request: ApplicationSubmitRequest,
) -> ShopResult[ApplicationSubmitResponse]:
    """
    신청서를 제출한다.

    - 필수: 이름, 연락처, stringTypes(1개 이상). orderId 와 rentalId 동시 지정 불가.
    - 로그인 사용자이고 packageOptOut 이 아니면 사용 가능한 패스를 먼저 차감한다.
    - 같은 주문의 draft 가 있으면 그 문서를 갱신한다.
    """
    name = request.name.strip()
    phone = request.phone.strip()
    if not name or not phone:
        return fail(ShopErrorCode.INVALID_INPUT, "이름과 연락처는 필수입니다.")
    if not request.string_types:
        return fail(ShopErrorCode.INVALID_INPUT, "스트링을 1개 이상 선택해 주세요.")
    if request.order_id and request.rental_id:
        return fail(ShopErrorCode.INVALID_INPUT, "주문과 대여를 동시에 연결할 수 없습니다.")

    order_oid: ObjectId | None = None
    rental_oid: ObjectId | None = None
    if request.order_id:
        if not ObjectId.is_valid(request.order_id):
            return fail(ShopErrorCode.INVALID_ID, "주문 ID 형식이 올바르지 않습니다.")
        order_oid = ObjectId(request.order_id)
        order = db.orders.find_one({"_id": order_oid}, {"userId": 1})
        if not order:
            return fail(ShopErrorCode.NOT_FOUND, "주문을 찾을 수 없습니다.")
        if order.get("userId") and (principal is None or order["userId"] != principal.oid):
            return fail(ShopErrorCode.FORBIDDEN, "본인 주문에만 신청할 수 있습니다.")
    if request.rental_id:
        if not ObjectId.is_valid(request.rental_id):
            return fail(ShopErrorCode.INVALID_ID, "대여 ID 형식이 올바르지 않습니다.")
        rental_oid = ObjectId(request.rental_id)
        rental = db.rental_orders.find_one({"_id": rental_oid}, {"userId": 1})
        if not rental:
            return fail(ShopErrorCode.NOT_FOUND, "대여 내역을 찾을 수 없습니다.")
        if principal is None or rental.get("userId") != principal.oid:
            return fail(ShopErrorCode.FORBIDDEN, "본인 대여에만 신청할 수 있습니다.")

    draft: dict[str, Any] | None = None
    if order_oid is not None:
        active = db.stringing_applications.find_one(
            {"orderId": order_oid, "status": {"$nin": [STATUS_DRAFT, STATUS_CANCELED]}},
            {"_id": 1},
        )
        if active:
            return fail(ShopErrorCode.CONFLICT, "이미 신청서가 제출된 주문입니다.")
        draft = db.stringing_applications.find_one({"orderId": order_oid, "status": STATUS_DRAFT})

    application_id: ObjectId = draft["_id"] if draft else ObjectId()
    total_price = _compute_price(db, request)
    use_count = len(request.lines) or len(request.string_types)

    package_applied = False
    package_pass_id: ObjectId | None = None
    pass_remaining: int | None = None
    if principal is not None and not request.package_opt_out:
        pass_doc = find_one_active_pass_for_user(db, principal.oid, min_remaining=use_count)
        if pass_doc is not None:
            match consume_pass(db, pass_doc["_id"], application_id, use_count):
                case Ok(value=outcome):
                    package_applied = True
                    package_pass_id = outcome.pass_id
                    pass_remaining = outcome.remaining_count
                    total_price = 0
                case _:
                    logger.info("pass not applied for application=%s", application_id)

    now = utc_now()
    fields: dict[str, Any] = {
        "userId": principal.oid if principal else None,
        "name": name,
        "phone": phone,
        "email": request.email,
        "orderId": order_oid,
        "rentalId": rental_oid,
        "status": STATUS_REVIEW,
        "stringDetails": {
            "stringTypes": request.string_types,
            "lines": [line.model_dump(by_alias=True) for line in request.lines],
            "customStringName": request.custom_string_name,
            "racketType": request.racket_type,
            "preferredDate": request.preferred_date,
            "preferredTime": request.preferred_time,
            "requirements": request.requirements,
        },
        "totalPrice": total_price,
        "packageApplied": package_applied,
        "packagePassId": package_pass_id,
        "submittedAt": now,
        "updatedAt": now,
    }
    first_history = _history(STATUS_REVIEW, "신청서가 접수되었습니다.")

    if draft:
        db.stringing_applications.update_one(
            {"_id": application_id},
            {"$set": fields, "$push": {"history": first_history}},
        )
    else:
        db.stringing_applications.insert_one(
            {"_id": application_id, **fields, "history": [first_history], "createdAt": now},
        )

    link = {"isStringServiceApplied": True, "stringingApplicationId": str(application_id)}
    if order_oid is not None:
        db.orders.update_one({"_id": order_oid}, {"$set": link})
    if rental_oid is not None:
        db.rental_orders.update_one({"_id": rental_oid}, {"$set": link})

    notify(
        db,
        settings,
        "stringing.application_submitted",
        f"{application_id}:submitted",
        {
            "id": str(application_id),
            "name": name,
            "status": STATUS_REVIEW,
            "strings": [line.string_name for line in request.lines] or request.string_types,
            "preferredDate": request.preferred_date,
            "preferredTime": request.preferred_time,
            "totalPrice": total_price,
        },
    )

    return Ok(
        ApplicationSubmitResponse(
            application_id=str(application_id),
            total_price=total_price,
            package_applied=package_applied,
            pass_remaining=pass_remaining,
        ),
    )


def get_application(
    db: Database,
    application_id: ObjectId,
    principal: Principal | None,
) -> ShopResult[dict[str, Any]]:
    app = db.stringing_applications.find_one({"_id": application_id})
    if not app:
        return fail(ShopErrorCode.NOT_FOUND, "신청서를 찾을 수 없습니다.")
    if not _can_read(app, principal):
        return fail(ShopErrorCode.FORBIDDEN, "조회 권한이 없습니다.")
    return Ok(to_jsonable(app))


def _paged(db: Database, query: dict[str, Any], page: Any, limit: Any) -> dict[str, Any]:
    page_no = clamp_page(page)
    size = clamp_limit(limit, 10, 50)
    cursor = (
        db.stringing_applications.find(query, {"history": 0})
        .sort([("createdAt", DESCENDING), ("_id", DESCENDING)])
        .skip(skip_for(page_no, size))
        .limit(size)
    )
    return {
        "items": [to_jsonable(doc) for doc in cursor],
        "total": db.stringing_applications.count_documents(query),
        "page": page_no,
        "limit": size,
    }


def list_my_applications(db: Database, principal: Principal, page: Any = 1, limit: Any = 10) -> dict[str, Any]:
    return _paged(
        db,
        {"userId": principal.oid, "status": {"$ne": STATUS_DRAFT}},
        page,
        limit,
    )


def admin_list_applications(
    db: Database,
    status: str | None = None,
    page: Any = 1,
    limit: Any = 10,
) -> dict[str, Any]:
    query: dict[str, Any] = {"status": status} if status else {"status": {"$ne": STATUS_DRAFT}}
    return _paged(db, query, page, limit)


def update_application_status(
    db: Database,
    settings: Settings,
    application_id: ObjectId,
    status: str,
) -> ShopResult[dict[str, Any]]:
    if status not in APPLICATION_STATUSES:
        return fail(ShopErrorCode.INVALID_INPUT, "허용되지 않는 상태 값입니다.")

    app = db.stringing_applications.find_one_and_update(
        {"_id": application_id},
        {
            "$set": {"status": status, "updatedAt": utc_now()},
            "$push": {"history": _history(status, f"신청서 상태가 [{status}]로 변경되었습니다.")},
        },
        return_document=ReturnDocument.AFTER,
    )
    if app is None:
        return fail(ShopErrorCode.NOT_FOUND, "신청서를 찾을 수 없습니다.")

    notify(
        db,
        settings,
        "stringing.status_updated",
        f"{application_id}:status:{status}",
        {"id": str(application_id), "name": app.get("name"), "status": status},
    )
    return Ok({"ok": True, "status": status})


def request_application_cancel(
    db: Database,
    settings: Settings,
    application_id: ObjectId,
    principal: Principal,
    body: CancelRequestBody,
) -> ShopResult[dict[str, Any]]:
    app = db.stringing_applications.find_one({"_id": application_id})
    if not app:
        return fail(ShopErrorCode.NOT_FOUND, "신청서를 찾을 수 없습니다.")
    if not app.get("userId") or app["userId"] != principal.oid:
        return fail(ShopErrorCode.FORBIDDEN, "본인 신청서만 취소 요청할 수 있습니다.")
    if app.get("status") == STATUS_CANCELED:
        return fail(ShopErrorCode.ALREADY_CANCELED, "이미 취소된 신청서입니다.")
    if app.get("status") == STATUS_DONE:
        return fail(ShopErrorCode.INVALID_INPUT, "교체가 완료된 신청서는 취소할 수 없습니다.")
    if _tracking_number(app):
        return fail(ShopErrorCode.TRACKING_EXISTS, "이미 발송된 신청서는 취소 요청할 수 없습니다.")
    if (app.get("cancelRequest") or {}).get("status") == "requested":
        return fail(ShopErrorCode.ALREADY_REQUESTED, "이미 취소 요청이 접수되었습니다.")

    now = utc_now()
    db.stringing_applications.update_one(
        {"_id": application_id},
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
            "$push": {"history": _history("취소요청", "고객이 신청 취소를 요청했습니다.")},
        },
    )
    notify(
        db,
        settings,
        "stringing.cancel_requested",
        f"{application_id}:cancel-requested:{now.isoformat()}",
        {"id": str(application_id), "name": app.get("name"), "status": "취소요청"},
    )
    return Ok({"ok": True})


def _cancel_application_doc(
    db: Database,
    app: dict[str, Any],
    description: str,
    processed_by: ObjectId | None = None,
) -> bool:
    """
    신청서를 취소 상태로 바꾸고, 패스를 사용했다면 차감분을 되돌린다.
    Cancel an application and restore consumed pass sessions.
    """
    now = utc_now()
    updates: dict[str, Any] = {"status": STATUS_CANCELED, "updatedAt": now}
    if (app.get("cancelRequest") or {}).get("status") == "requested":
        updates["cancelRequest.status"] = "approved"
        updates["cancelRequest.processedAt"] = now
        if processed_by is not None:
            updates["cancelRequest.processedByAdminId"] = processed_by

    result = db.stringing_applications.update_one(
        {"_id": app["_id"], "status": {"$ne": STATUS_CANCELED}},
        {"$set": updates, "$push": {"history": _history(STATUS_CANCELED, description)}},
    )
    if result.matched_count == 0:
        return False

    if app.get("packageApplied") and app.get("packagePassId"):
        match revert_consumption(db, app["packagePassId"], app["_id"]):
            case Ok(value=outcome) if outcome.reverted:
                logger.info("pass restored for canceled application=%s", app["_id"])
            case Ok():
                pass
            case _:
                logger.warning("pass restore failed for application=%s", app["_id"])
    return True


def approve_application_cancel(
    db: Database,
    application_id: ObjectId,
    admin: Principal,
) -> ShopResult[dict[str, Any]]:
    app = db.stringing_applications.find_one({"_id": application_id})
    if not app:
        return fail(ShopErrorCode.NOT_FOUND, "신청서를 찾을 수 없습니다.")
    if app.get("status") == STATUS_CANCELED:
        return Ok({"ok": True, "already": True})

    changed = _cancel_application_doc(db, app, "관리자가 신청 취소를 승인했습니다.", admin.oid)
    return Ok({"ok": True, "already": not changed})


def reject_application_cancel(
    db: Database,
    application_id: ObjectId,
    admin: Principal,
    memo: str | None = None,
) -> ShopResult[dict[str, Any]]:
    now = utc_now()
    result = db.stringing_applications.update_one(
        {"_id": application_id, "cancelRequest.status": "requested"},
        {
            "$set": {
                "cancelRequest.status": "rejected",
                "cancelRequest.processedAt": now,
                "cancelRequest.processedByAdminId": admin.oid,
                "cancelRequest.adminMemo": memo or "",
                "updatedAt": now,
            },
            "$push": {"history": _history("취소요청거절", memo or "취소 요청이 거절되었습니다.")},
        },
    )
    if result.matched_count == 0:
        if db.stringing_applications.find_one({"_id": application_id}, {"_id": 1}) is None:
            return fail(ShopErrorCode.NOT_FOUND, "신청서를 찾을 수 없습니다.")
        return fail(ShopErrorCode.NOT_REQUESTED, "대기 중인 취소 요청이 없습니다.")
    return Ok({"ok": True})


def confirm_application(
    db: Database,
    application_id: ObjectId,
    principal: Principal,
) -> ShopResult[dict[str, Any]]:
    """
    교체완료된 단독 신청서를 사용자가 확정하고 적립금을 받는다.
    주문에 연결된 신청서는 주문 구매확정으로 함께 처리된다.
    """
    app = db.stringing_applications.find_one({"_id": application_id})
    if not app:
        return fail(ShopErrorCode.NOT_FOUND, "신청서를 찾을 수 없습니다.")
    if app.get("userId") != principal.oid:
        return fail(ShopErrorCode.FORBIDDEN, "본인 신청서만 확정할 수 있습니다.")
    if app.get("orderId"):
        return fail(ShopErrorCode.CONFLICT, "주문에 포함된 신청서는 주문 구매확정으로 처리됩니다.")
    if app.get("status") != STATUS_DONE:
        return fail(ShopErrorCode.INVALID_STATE, "교체완료 상태에서만 확정할 수 있습니다.")
    if app.get("userConfirmedAt"):
        return Ok({"ok": True, "already": True, "earnedPoints": 0})

    result = db.stringing_applications.update_one(
        {"_id": application_id, "status": STATUS_DONE, "userConfirmedAt": None},
        {"$set": {"userConfirmedAt": utc_now()}},
    )
    if result.matched_count == 0:
        return Ok({"ok": True, "already": True, "earnedPoints": 0})

    earned = calc_order_earn_points(app.get("totalPrice") or 0, ORDER_EARN_RATE)
    granted = 0
    if earned > 0:
        match grant_points(
            db,
            principal.oid,
            earned,
            "service_confirm_reward",
            ref_key=f"stringing_application_reward:{application_id}",
            ref={"applicationId": application_id},
            reason="교체 서비스 확정 적립",
        ):
            case Ok(value=outcome):
                granted = outcome.amount if outcome.applied else 0
            case _:
                logger.warning("service confirm reward failed application=%s", application_id)

    return Ok({"ok": True, "already": False, "earnedPoints": granted})


def reserved_slots(db: Database, date: str) -> list[str]:
    """
    해당 날짜에 예약된 희망 시간 목록 (draft/취소 제외).
    Preferred times already booked on a date.
    """
    cursor = db.stringing_applications.find(
        {
            "stringDetails.preferredDate": date,
            "status": {"$nin": [STATUS_DRAFT, STATUS_CANCELED]},
        },
        {"stringDetails.preferredTime": 1},
    )
    times = {
        (doc.get("stringDetails") or {}).get("preferredTime")
        for doc in cursor
    }
    return sorted(t for t in times if t)


def application_history(
    db: Database,
    application_id: ObjectId,
    principal: Principal,
    page: Any = 1,
    limit: Any = HISTORY_LIMIT_DEFAULT,
) -> ShopResult[dict[str, Any]]:
    app = db.stringing_applications.find_one({"_id": application_id}, {"history": 1, "userId": 1})
    if not app:
        return fail(ShopErrorCode.NOT_FOUND, "신청서를 찾을 수 없습니다.")
    if not _can_read(app, principal):
        return fail(ShopErrorCode.FORBIDDEN, "조회 권한이 없습니다.")

    page_no = clamp_page(page)
    size = clamp_limit(limit, HISTORY_LIMIT_DEFAULT, 50)
    history = list(reversed(app.get("history") or []))
    start = skip_for(page_no, size)
    return Ok(
        {
            "items": to_jsonable(history[start : start + size]),
            "total": len(history),
            "page": page_no,
            "limit": size,
        },
    )


# --- 주문 연동 / Order integration ---


def count_blocking_applications(db: Database, order_id: ObjectId) -> int:
    """
    구매확정을 막는 연결 신청서 수: draft 제외, 교체완료/취소 아님, 사용자 미확정.
    Linked applications that block order confirmation.
    """
    return db.stringing_applications.count_documents(
        {
            "orderId": order_id,
            "status": {"$nin": [STATUS_DRAFT, *FINAL_STATUSES]},
            "userConfirmedAt": None,
        },
    )


def confirm_applications_for_order(db: Database, order_id: ObjectId) -> int:
    result = db.stringing_applications.update_many(
        {"orderId": order_id, "status": STATUS_DONE, "userConfirmedAt": None},
        {"$set": {"userConfirmedAt": utc_now()}},
    )
    return result.modified_count


def cancel_applications_for_order(db: Database, order_id: ObjectId) -> int:
    canceled = 0
    for app in db.stringing_applications.find(
        {"orderId": order_id, "status": {"$nin": list(FINAL_STATUSES)}},
    ):
        if _cancel_application_doc(db, app, "주문 취소로 신청서가 함께 취소되었습니다."):
            canceled += 1
    return canceled
