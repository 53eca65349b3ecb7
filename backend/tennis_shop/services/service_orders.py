"""
주문 서비스: 생성(재고 차감/금액 재계산), 조회, 배송/상태 관리,
구매확정(적립), 취소 요청/승인/거절/철회.

Order service: creation (stock decrement, server-side totals), lookup,
shipping/status management, purchase confirmation and the cancel flow.
"""

import logging
import re
from collections.abc import Callable
from datetime import timedelta
from typing import Any, Final

from bson import ObjectId
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

from shop_core import Err, Ok, clamp_limit, clamp_page, skip_for, to_jsonable, utc_now

from tennis_shop.config import Settings
from tennis_shop.errors import ShopError, ShopErrorCode, ShopResult, fail
from tennis_shop.internal.kakao_notification import notify
from tennis_shop.models.model_io_applications import CancelRequestBody
from tennis_shop.models.model_io_orders import (
    GuestOrderLookupRequest,
    OrderConfirmResponse,
    OrderCreateRequest,
    OrderItemInput,
)
from tennis_shop.principal import Principal
from tennis_shop.services.service_applications import (
    cancel_applications_for_order,
    confirm_applications_for_order,
    count_blocking_applications,
    create_draft_from_order,
)
from tennis_shop.services.service_catalog import racket_display_name
from tennis_shop.services.service_passes import issue_passes_for_paid_order
from tennis_shop.services.service_points import (
    calc_order_earn_points,
    deduct_points,
    find_transaction_by_ref_key,
    grant_points,
)

logger = logging.getLogger(__name__)


ORDER_STATUSES: Final[tuple[str, ...]] = (
    "대기중",
    "결제완료",
    "배송중",
    "배송완료",
    "구매확정",
    "취소",
    "환불",
)
CONFIRMABLE_STATUSES: Final[tuple[str, ...]] = ("배송완료", "delivered")
CANCELABLE_STATUSES: Final[tuple[str, ...]] = ("대기중", "결제완료")

FREE_SHIPPING_THRESHOLD: Final[int] = 30_000
SHIPPING_FEE: Final[int] = 3_000
PICKUP_METHOD: Final[str] = "방문수령"

GUEST_LOOKUP_WINDOW: Final[timedelta] = timedelta(days=183)
GUEST_LOOKUP_LIMIT: Final[int] = 50
_EMAIL_PATTERN: Final[re.Pattern[str]] = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

BANK_LABELS: Final[dict[str, str]] = {
    "shinhan": "신한은행",
    "kookmin": "국민은행",
    "woori": "우리은행",
}

type Undo = Callable[[], None]


def payment_method_label(payment_info: dict[str, Any] | None) -> str:
    """
    결제수단 표시 문자열. / Human-readable payment method.
    """
    info = payment_info or {}
    provider = str(info.get("provider") or info.get("method") or "").lower()
    match provider:
        case "kakaopay":
            return "카카오페이"
        case "naverpay":
            return "네이버페이"
        case "tosspay":
            return "토스페이"
        case "card":
            return "카드"
        case _:
            bank = BANK_LABELS.get(str(info.get("bank") or ""))
            return f"무통장 입금 ({bank})" if bank else "무통장 입금"


def _history(status: str, description: str) -> dict[str, Any]:
    return {"status": status, "date": utc_now(), "description": description}


def _tracking_number(order: dict[str, Any]) -> str | None:
    invoice = (order.get("shippingInfo") or {}).get("invoice") or {}
    number = invoice.get("trackingNumber")
    return str(number).strip() if number else None


def _rollback(undo: list[Undo]) -> None:
    for step in reversed(undo):
        try:
            step()
        except PyMongoError:
            logger.exception("order rollback step failed")


def _reserve_product(
    db: Database,
    item: OrderItemInput,
    undo: list[Undo],
) -> ShopResult[dict[str, Any]]:
    product_id = ObjectId(item.product_id)
    product = db.products.find_one({"_id": product_id, "isDeleted": {"$ne": True}})
    if not product:
        return fail(ShopErrorCode.NOT_FOUND, "상품을 찾을 수 없습니다.")

    qty = item.quantity
    updated = db.products.update_one(
        {"_id": product_id, "inventory.stock": {"$gte": qty}},
        {"$inc": {"inventory.stock": -qty, "sold": qty}},
    )
    if updated.matched_count == 0:
        return fail(
            ShopErrorCode.INSUFFICIENT_STOCK,
            "재고가 부족합니다.",
            productName=product.get("name"),
            currentStock=int((product.get("inventory") or {}).get("stock") or 0),
        )
    undo.append(
        lambda: db.products.update_one(
            {"_id": product_id},
            {"$inc": {"inventory.stock": qty, "sold": -qty}},
        ),
    )

    snapshot: dict[str, Any] = {
        "productId": product_id,
        "name": product.get("name", "알 수 없는 상품"),
        "brand": product.get("brand"),
        "category": product.get("category"),
        "price": int(product.get("price") or 0),
        "mountingFee": int(product.get("mountingFee") or 0),
        "imageUrl": (product.get("images") or [None])[0],
        "quantity": qty,
        "kind": "product",
    }
    if product.get("meta"):
        snapshot["meta"] = product["meta"]
    return Ok(snapshot)


def _release_stocked_racket(db: Database, racket_id: ObjectId) -> None:
    """재고형 라켓 1개를 되돌린다. 재고 소진으로 sold 가 된 경우만 다시 판매중으로."""
    db.used_rackets.update_one({"_id": racket_id}, {"$inc": {"quantity": 1}})
    db.used_rackets.update_one(
        {"_id": racket_id, "status": "sold", "quantity": {"$gt": 0}},
        {"$set": {"status": "available"}},
    )


def _reserve_racket(
    db: Database,
    item: OrderItemInput,
    undo: list[Undo],
) -> ShopResult[dict[str, Any]]:
    """
    중고 라켓 1점 구매. 대여(paid/out)로 점유된 수량은 판매할 수 없다.
    Buy one used racket; units held by active rentals are not sellable.
    """
    if item.quantity != 1:
        return fail(ShopErrorCode.INVALID_INPUT, "라켓은 1개만 구매할 수 있습니다.")

    racket_id = ObjectId(item.product_id)
    racket = db.used_rackets.find_one({"_id": racket_id})
    if not racket:
        return fail(ShopErrorCode.INVALID_INPUT, "판매 가능한 라켓이 아닙니다.")

    name = racket_display_name(racket)
    reserved = db.rental_orders.count_documents(
        {"racketId": racket_id, "status": {"$in": ["paid", "out"]}},
    )
    stock_qty = int(racket.get("quantity") or 1)
    single = stock_qty <= 1
    base_qty = (1 if racket.get("status") == "available" else 0) if single else stock_qty
    if base_qty - reserved < 1:
        return fail(
            ShopErrorCode.INSUFFICIENT_STOCK,
            "구매 가능한 재고가 없습니다.",
            kind="racket",
            productName=name,
            currentStock=base_qty - reserved,
            reason="RENTAL_RESERVED" if reserved > 0 else "OUT_OF_STOCK",
        )

    now = utc_now()
    if single:
        updated = db.used_rackets.update_one(
            {"_id": racket_id, "status": "available"},
            {"$set": {"status": "sold", "updatedAt": now}},
        )
        if updated.matched_count == 0:
            return fail(
                ShopErrorCode.INSUFFICIENT_STOCK,
                "구매 가능한 재고가 없습니다.",
                kind="racket",
                productName=name,
                currentStock=0,
                reason="CONCURRENT_UPDATE",
            )
        undo.append(
            lambda: db.used_rackets.update_one(
                {"_id": racket_id},
                {"$set": {"status": "available"}},
            ),
        )
    else:
        updated = db.used_rackets.update_one(
            {
                "_id": racket_id,
                "quantity": {"$gte": reserved + 1},
                "status": {"$nin": ["inactive", "비노출"]},
            },
            {"$inc": {"quantity": -1}, "$set": {"updatedAt": now}},
        )
        if updated.matched_count == 0:
            return fail(
                ShopErrorCode.INSUFFICIENT_STOCK,
                "구매 가능한 재고가 없습니다.",
                kind="racket",
                productName=name,
                currentStock=0,
                reason="CONCURRENT_UPDATE",
            )
        db.used_rackets.update_one(
            {"_id": racket_id, "quantity": {"$lte": 0}},
            {"$set": {"status": "sold"}},
        )
        undo.append(lambda: _release_stocked_racket(db, racket_id))

    return Ok(
        {
            "productId": racket_id,
            "name": name,
            "price": int(racket.get("price") or 0),
            "imageUrl": (racket.get("images") or [None])[0],
            "quantity": 1,
            "kind": "racket",
            "stockTracked": not single,
        },
    )


def compute_totals(
    items: list[dict[str, Any]],
    *,
    with_string_service: bool,
    delivery_method: str | None,
) -> dict[str, int]:
    """
    서버 기준 금액 계산.

    - 상품 금액 = Σ 가격 × 수량
    - 서비스비 = 교체 서비스 포함 시 상품 품목의 Σ 장착비 × 수량
    - 배송비 = 상품 금액 0 또는 방문수령이면 0, 30,000원 이상 무료, 그 외 3,000원
    """
    subtotal = sum(int(it.get("price") or 0) * int(it.get("quantity") or 0) for it in items)
    service_fee = 0
    if with_string_service:
        service_fee = sum(
            int(it.get("mountingFee") or 0) * int(it.get("quantity") or 0)
            for it in items
            if it.get("kind") == "product" and int(it.get("mountingFee") or 0) > 0
        )

    if subtotal == 0 or delivery_method == PICKUP_METHOD or subtotal >= FREE_SHIPPING_THRESHOLD:
        shipping_fee = 0
    else:
        shipping_fee = SHIPPING_FEE

    return {
        "subtotal": subtotal,
        "serviceFee": service_fee,
        "shippingFee": shipping_fee,
        "total": subtotal + service_fee + shipping_fee,
    }


def _refund_spent_points(db: Database, user_id: ObjectId, order_id: ObjectId, amount: int) -> None:
    """주문 생성 실패 시 방금 차감한 포인트를 되돌린다."""
    deleted = db.points_transactions.delete_one({"refKey": f"order:{order_id}:spend"})
    if deleted.deleted_count:
        db.users.update_one({"_id": user_id}, {"$inc": {"pointsBalance": amount}})


def create_order(
    db: Database,
    settings: Settings,
    principal: Principal | None,
    request: OrderCreateRequest,
    idem_key: str | None = None,
) -> ShopResult[dict[str, Any]]:
    """
    주문을 생성한다. 클라이언트 금액은 신뢰하지 않고 서버에서 다시 계산한다.

    Idempotency-Key 가 같은 주문이 이미 있으면 그 주문 ID 를 돌려준다
    (응답의 created=False).
    """
    if not request.items:
        return fail(ShopErrorCode.INVALID_INPUT, "주문 상품이 비어있습니다.")
    if request.shipping_info is None:
        return fail(ShopErrorCode.INVALID_INPUT, "배송 정보가 누락되었습니다.")
    if principal is None and request.guest_info is None:
        return fail(ShopErrorCode.INVALID_INPUT, "게스트 주문 정보 누락")

    if idem_key:
        existing = db.orders.find_one({"idemKey": idem_key}, {"_id": 1})
        if existing:
            return Ok({"success": True, "orderId": str(existing["_id"]), "created": False})

    for item in request.items:
        if item.quantity <= 0:
            return fail(ShopErrorCode.INVALID_INPUT, "수량이 잘못되었습니다.")
        if not ObjectId.is_valid(item.product_id):
            return fail(ShopErrorCode.INVALID_ID, "상품 ID 형식이 올바르지 않습니다.")

    undo: list[Undo] = []
    snapshots: list[dict[str, Any]] = []
    for index, item in enumerate(request.items):
        reserve = _reserve_racket if item.kind == "racket" else _reserve_product
        match reserve(db, item, undo):
            case Ok(value=snapshot):
                snapshot["orderItemId"] = f"{snapshot['productId']}:{index}"
                snapshots.append(snapshot)
            case Err() as err:
                _rollback(undo)
                return err

    shipping = request.shipping_info
    totals = compute_totals(
        snapshots,
        with_string_service=shipping.with_string_service,
        delivery_method=shipping.delivery_method,
    )

    order_id = ObjectId()
    points_used = 0
    if principal is not None and request.points_to_use > 0:
        points_used = min(request.points_to_use, totals["total"])
        if points_used > 0:
            match deduct_points(
                db,
                principal.oid,
                points_used,
                "spend_on_order",
                ref_key=f"order:{order_id}:spend",
                ref={"orderId": order_id},
                reason="주문 결제 시 포인트 사용",
            ):
                case Ok():
                    pass
                case Err() as err:
                    _rollback(undo)
                    return err

    now = utc_now()
    bank = (request.payment_info.bank or "").strip() if request.payment_info else ""
    total_price = totals["total"] - points_used
    order: dict[str, Any] = {
        "_id": order_id,
        "items": snapshots,
        "shippingInfo": shipping.model_dump(by_alias=True),
        "guestInfo": None if principal else request.guest_info.model_dump(by_alias=True),
        "totalPrice": total_price,
        "subtotal": totals["subtotal"],
        "shippingFee": totals["shippingFee"],
        "serviceFee": totals["serviceFee"],
        "pointsUsed": points_used,
        "status": "대기중",
        "paymentStatus": "결제대기",
        "paymentInfo": {
            "method": "무통장 입금",
            "status": "pending",
            "total": total_price,
            "bank": bank or None,
            "depositor": request.payment_info.depositor if request.payment_info else None,
            "createdAt": now,
        },
        "servicePickupMethod": request.service_pickup_method,
        "history": [_history("대기중", "주문 생성")],
        "createdAt": now,
        "updatedAt": now,
    }
    if idem_key:
        order["idemKey"] = idem_key
    if principal is not None:
        order["userId"] = principal.oid
        user = db.users.find_one({"_id": principal.oid}, {"name": 1, "email": 1})
        order["userSnapshot"] = {
            "name": (user or {}).get("name") or "(탈퇴한 회원)",
            "email": (user or {}).get("email") or "(탈퇴한 회원)",
        }

    try:
        db.orders.insert_one(order)
    except DuplicateKeyError:
        # 같은 Idempotency-Key 로 동시에 들어온 요청 / concurrent retry
        _rollback(undo)
        if principal is not None and points_used:
            _refund_spent_points(db, principal.oid, order_id, points_used)
        existing = db.orders.find_one({"idemKey": idem_key}, {"_id": 1})
        if existing:
            return Ok({"success": True, "orderId": str(existing["_id"]), "created": False})
        return fail(ShopErrorCode.CONFLICT, "주문 생성이 충돌했습니다.")

    if shipping.with_string_service:
        app_id = create_draft_from_order(db, order)
        db.orders.update_one(
            {"_id": order_id},
            {"$set": {"isStringServiceApplied": True, "stringingApplicationId": str(app_id)}},
        )

    notify(
        db,
        settings,
        "order.created",
        f"{order_id}:created",
        {
            "id": str(order_id),
            "name": (order.get("userSnapshot") or order.get("guestInfo") or {}).get("name"),
            "status": "대기중",
            "totalPrice": total_price,
        },
    )
    logger.info("order created id=%s total=%s items=%d", order_id, total_price, len(snapshots))
    return Ok({"success": True, "orderId": str(order_id), "created": True})


def _load_owned_order(
    db: Database,
    order_id: ObjectId,
    principal: Principal,
    *,
    allow_admin: bool,
) -> ShopResult[dict[str, Any]]:
    order = db.orders.find_one({"_id": order_id})
    if not order:
        return fail(ShopErrorCode.NOT_FOUND, "주문을 찾을 수 없습니다.")
    if allow_admin and principal.is_admin:
        return Ok(order)
    if not order.get("userId") or order["userId"] != principal.oid:
        return fail(ShopErrorCode.FORBIDDEN, "권한이 없습니다.")
    return Ok(order)


def get_order(db: Database, order_id: ObjectId, principal: Principal) -> ShopResult[dict[str, Any]]:
    match _load_owned_order(db, order_id, principal, allow_admin=True):
        case Ok(value=order):
            body = to_jsonable(order)
            body["paymentMethodLabel"] = payment_method_label(order.get("paymentInfo"))
            return Ok(body)
        case Err() as err:
            return err


def _paged_orders(db: Database, query: dict[str, Any], page: Any, limit: Any) -> dict[str, Any]:
    page_no = clamp_page(page)
    size = clamp_limit(limit, 10, 50)
    cursor = (
        db.orders.find(query, {"history": 0})
        .sort([("createdAt", DESCENDING), ("_id", DESCENDING)])
        .skip(skip_for(page_no, size))
        .limit(size)
    )
    return {
        "items": [to_jsonable(doc) for doc in cursor],
        "total": db.orders.count_documents(query),
        "page": page_no,
        "limit": size,
    }


def list_my_orders(db: Database, principal: Principal, page: Any = 1, limit: Any = 10) -> dict[str, Any]:
    return _paged_orders(db, {"userId": principal.oid}, page, limit)


def admin_list_orders(
    db: Database,
    status: str | None = None,
    page: Any = 1,
    limit: Any = 10,
) -> dict[str, Any]:
    return _paged_orders(db, {"status": status} if status else {}, page, limit)


def _guest_order_summary(order: dict[str, Any]) -> dict[str, Any]:
    items = order.get("items") or []
    return to_jsonable(
        {
            "_id": order["_id"],
            "createdAt": order.get("createdAt"),
            "status": order.get("status"),
            "paymentStatus": order.get("paymentStatus"),
            "totalPrice": order.get("totalPrice"),
            "shippingFee": order.get("shippingFee"),
            "itemCount": sum(int(item.get("quantity") or 0) for item in items),
            "items": [
                {"name": item.get("name"), "quantity": item.get("quantity"), "price": item.get("price")}
                for item in items
            ],
            "trackingNumber": _tracking_number(order),
            "cancelRequest": order.get("cancelRequest"),
        },
    )


def lookup_guest_orders(
    db: Database,
    settings: Settings,
    request: GuestOrderLookupRequest,
) -> ShopResult[dict[str, Any]]:
    """
    비회원 주문 조회.

    - guestInfo 의 이름이 정확히 같고, 이메일(대소문자 무시) 또는 전화번호(숫자만 비교)가 맞는 주문
    - 최근 GUEST_LOOKUP_WINDOW 이내, 최신순 최대 GUEST_LOOKUP_LIMIT 건
    - 기능이 꺼져 있으면 NOT_FOUND

    Guest order lookup by name plus email and/or phone, limited to recent orders.
    """
    if not settings.guest_order_lookup_enabled:
        return fail(ShopErrorCode.NOT_FOUND, "비회원 주문 조회를 사용할 수 없습니다.")

    name = request.name.strip()
    email = (request.email or "").strip()
    phone = re.sub(r"\D", "", request.phone or "")
    if not name:
        return fail(ShopErrorCode.INVALID_INPUT, "이름을 입력해주세요.")
    if not email and not phone:
        return fail(ShopErrorCode.INVALID_INPUT, "이메일 또는 전화번호를 입력해주세요.")
    if email and not _EMAIL_PATTERN.match(email):
        return fail(ShopErrorCode.INVALID_INPUT, "이메일 형식이 올바르지 않습니다.")
    if phone and not 10 <= len(phone) <= 11:
        return fail(ShopErrorCode.INVALID_INPUT, "전화번호 형식이 올바르지 않습니다.")

    query: dict[str, Any] = {
        "guestInfo.name": name,
        "createdAt": {"$gte": utc_now() - GUEST_LOOKUP_WINDOW},
    }
    if email:
        query["guestInfo.email"] = {"$regex": f"^{re.escape(email)}$", "$options": "i"}
    if request.order_id:
        if not ObjectId.is_valid(request.order_id):
            return fail(ShopErrorCode.INVALID_ID, "주문 ID 형식이 올바르지 않습니다.")
        query["_id"] = ObjectId(request.order_id)

    cursor = db.orders.find(query, {"history": 0}).sort("createdAt", DESCENDING).limit(GUEST_LOOKUP_LIMIT)
    # 저장된 전화번호의 하이픈 여부와 무관하게 숫자만 비교한다
    orders = [
        _guest_order_summary(order)
        for order in cursor
        if not phone or re.sub(r"\D", "", (order.get("guestInfo") or {}).get("phone") or "") == phone
    ]
    logger.info("guest order lookup matched=%d", len(orders))
    return Ok({"ok": True, "orders": orders})


def admin_update_order_status(db: Database, order_id: ObjectId, status: str) -> ShopResult[dict[str, Any]]:
    """
    관리자 상태 변경. 결제완료로 바뀌면 패키지 품목의 이용권을 발급한다.
    취소는 취소 승인 흐름으로만 처리한다.
    """
    if status not in ORDER_STATUSES:
        return fail(ShopErrorCode.INVALID_INPUT, "허용되지 않는 주문 상태입니다.")
    if status == "취소":
        return fail(ShopErrorCode.INVALID_INPUT, "취소는 취소 승인으로 처리해 주세요.")

    updates: dict[str, Any] = {"status": status, "updatedAt": utc_now()}
    if status == "결제완료":
        updates["paymentStatus"] = "결제완료"
        updates["paymentInfo.status"] = "paid"

    order = db.orders.find_one_and_update(
        {"_id": order_id},
        {"$set": updates, "$push": {"history": _history(status, f"주문 상태가 [{status}]로 변경되었습니다.")}},
        return_document=ReturnDocument.AFTER,
    )
    if order is None:
        return fail(ShopErrorCode.NOT_FOUND, "주문을 찾을 수 없습니다.")

    issued: list[ObjectId] = []
    if status == "결제완료":
        issued = issue_passes_for_paid_order(db, order)
    return Ok({"ok": True, "status": status, "issuedPasses": [str(p) for p in issued]})


def admin_update_shipping(
    db: Database,
    order_id: ObjectId,
    courier: str,
    tracking_number: str,
) -> ShopResult[dict[str, Any]]:
    order = db.orders.find_one({"_id": order_id}, {"status": 1})
    if not order:
        return fail(ShopErrorCode.NOT_FOUND, "주문을 찾을 수 없습니다.")
    if order.get("status") in ("취소", "환불"):
        return fail(ShopErrorCode.INVALID_STATE, "취소/환불된 주문입니다.")

    now = utc_now()
    updates: dict[str, Any] = {
        "shippingInfo.invoice": {
            "courier": courier,
            "trackingNumber": tracking_number.strip(),
            "registeredAt": now,
        },
        "updatedAt": now,
    }
    push: dict[str, Any] = {"history": _history("송장등록", f"{courier} {tracking_number}")}
    if order.get("status") in CANCELABLE_STATUSES:
        updates["status"] = "배송중"
    db.orders.update_one({"_id": order_id}, {"$set": updates, "$push": push})
    return Ok({"ok": True, "status": updates.get("status", order.get("status"))})


def _grant_order_reward(db: Database, order: dict[str, Any], earned: int) -> bool:
    if earned <= 0:
        return True
    result = grant_points(
        db,
        order["userId"],
        earned,
        "order_reward",
        ref_key=f"order_reward:{order['_id']}",
        ref={"orderId": order["_id"]},
        reason=f"구매 확정 적립 ({payment_method_label(order.get('paymentInfo'))})",
    )
    match result:
        case Ok():
            return True
        case Err(error=error):
            logger.warning("order reward grant failed order=%s: %s", order["_id"], error.message)
            return False


def confirm_order(db: Database, order_id: ObjectId, principal: Principal) -> ShopResult[OrderConfirmResponse]:
    """
    사용자 구매확정.

    - 배송완료 상태에서만 가능. 이미 구매확정이면 적립만 재시도(refKey 멱등).
    - 연결된 교체 서비스 신청이 아직 끝나지 않았으면 막는다.
    - 확정 후 결제금액의 1% 를 적립하고, 교체완료 신청서도 함께 확정한다.
    """
    match _load_owned_order(db, order_id, principal, allow_admin=False):
        case Ok(value=order):
            pass
        case Err() as err:
            return err

    earned = calc_order_earn_points(order.get("totalPrice") or 0)

    if order.get("status") == "구매확정":
        granted = _grant_order_reward(db, order, earned)
        return Ok(
            OrderConfirmResponse(
                already=True,
                already_confirmed=True,
                earned_points=0,
                points_granted=granted,
            ),
        )

    if order.get("status") not in CONFIRMABLE_STATUSES:
        return fail(ShopErrorCode.INVALID_INPUT, "배송완료 상태에서만 구매 확정이 가능합니다.")

    blocking = count_blocking_applications(db, order_id)
    if blocking:
        return fail(
            ShopErrorCode.INVALID_INPUT,
            f"교체 서비스가 아직 완료되지 않았습니다. (미완료 {blocking}건) 서비스 완료 후 구매확정이 가능합니다.",
        )

    now = utc_now()
    updated = db.orders.update_one(
        {
            "_id": order_id,
            "userId": principal.oid,
            "status": {"$in": list(CONFIRMABLE_STATUSES)},
            "userConfirmedAt": None,
        },
        {
            "$set": {"status": "구매확정", "userConfirmedAt": now, "updatedAt": now},
            "$push": {"history": _history("구매확정", "사용자 구매 확정")},
        },
    )
    if updated.matched_count == 0:
        return Ok(OrderConfirmResponse(already=True, already_confirmed=True))

    granted = _grant_order_reward(db, order, earned)
    also_confirmed = confirm_applications_for_order(db, order_id)
    return Ok(
        OrderConfirmResponse(
            earned_points=earned if granted else 0,
            points_granted=granted,
            also_confirmed_services=also_confirmed,
        ),
    )


def request_order_cancel(
    db: Database,
    settings: Settings,
    order_id: ObjectId,
    principal: Principal,
    body: CancelRequestBody,
) -> ShopResult[dict[str, Any]]:
    match _load_owned_order(db, order_id, principal, allow_admin=True):
        case Ok(value=order):
            pass
        case Err() as err:
            return err

    if order.get("status") in ("취소", "환불"):
        return fail(ShopErrorCode.ALREADY_CANCELED, "이미 취소/환불된 주문입니다.")
    if _tracking_number(order):
        return fail(ShopErrorCode.TRACKING_EXISTS, "송장이 등록된 주문은 취소 요청할 수 없습니다.")
    if (order.get("cancelRequest") or {}).get("status") == "requested":
        return fail(ShopErrorCode.ALREADY_REQUESTED, "이미 취소 요청이 접수되었습니다.")

    now = utc_now()
    reason_code = body.reason_code or "기타"
    db.orders.update_one(
        {"_id": order_id},
        {
            "$set": {
                "cancelRequest": {
                    "status": "requested",
                    "reasonCode": reason_code,
                    "reasonText": body.reason_text or "",
                    "requestedAt": now,
                },
                "updatedAt": now,
            },
            "$push": {"history": _history("취소요청", f"취소 요청 ({reason_code})")},
        },
    )
    notify(
        db,
        settings,
        "order.cancel_requested",
        f"{order_id}:cancel-requested:{now.isoformat()}",
        {"id": str(order_id), "status": "취소요청"},
    )
    return Ok({"ok": True})


def withdraw_order_cancel(db: Database, order_id: ObjectId, principal: Principal) -> ShopResult[dict[str, Any]]:
    match _load_owned_order(db, order_id, principal, allow_admin=False):
        case Ok():
            pass
        case Err() as err:
            return err

    now = utc_now()
    result = db.orders.update_one(
        {"_id": order_id, "cancelRequest.status": "requested"},
        {
            "$set": {
                "cancelRequest.status": "withdrawn",
                "cancelRequest.withdrawnAt": now,
                "updatedAt": now,
            },
            "$push": {"history": _history("취소요청철회", "고객이 취소 요청을 철회했습니다.")},
        },
    )
    if result.matched_count == 0:
        return fail(ShopErrorCode.NOT_REQUESTED, "철회할 취소 요청이 없습니다.")
    return Ok({"ok": True})


def _restore_points_after_cancel(db: Database, order: dict[str, Any]) -> dict[str, int]:
    """
    취소된 주문의 포인트 정리:
    - 사용 포인트 환급 (refKey order:{id}:spend_reversal)
    - 이미 지급된 구매 적립 회수 (refKey order_reward_revoke:{id}, 음수 잔액 허용)
    """
    user_id = order.get("userId")
    restored = revoked = 0
    if not user_id:
        return {"restored": 0, "revoked": 0}

    order_id = order["_id"]
    spend_tx = find_transaction_by_ref_key(db, f"order:{order_id}:spend")
    spent = abs(int(spend_tx["amount"])) if spend_tx else int(order.get("pointsUsed") or 0)
    if spent > 0:
        match grant_points(
            db,
            user_id,
            spent,
            "reversal",
            ref_key=f"order:{order_id}:spend_reversal",
            ref={"orderId": order_id},
            reason="주문 취소로 사용 포인트 환급",
        ):
            case Ok(value=outcome) if outcome.applied:
                restored = outcome.amount
            case Ok():
                pass
            case Err(error=error):
                logger.warning("spend reversal failed order=%s: %s", order_id, error.message)

    reward_tx = find_transaction_by_ref_key(db, f"order_reward:{order_id}")
    reward = int(reward_tx["amount"]) if reward_tx else 0
    if reward > 0:
        match deduct_points(
            db,
            user_id,
            reward,
            "reversal",
            ref_key=f"order_reward_revoke:{order_id}",
            ref={"orderId": order_id},
            reason="주문 취소로 구매 적립 회수",
            allow_negative_balance=True,
        ):
            case Ok(value=outcome) if outcome.applied:
                revoked = -outcome.amount
            case Ok():
                pass
            case Err(error=error):
                logger.warning("reward revoke failed order=%s: %s", order_id, error.message)

    return {"restored": restored, "revoked": revoked}


def _restore_stock(db: Database, order: dict[str, Any]) -> None:
    for item in order.get("items") or []:
        qty = int(item.get("quantity") or 0)
        if item.get("kind") == "product" and qty > 0:
            db.products.update_one(
                {"_id": item["productId"]},
                {"$inc": {"inventory.stock": qty, "sold": -qty}},
            )
        elif item.get("kind") == "racket" and item.get("stockTracked"):
            _release_stocked_racket(db, item["productId"])
        elif item.get("kind") == "racket":
            db.used_rackets.update_one(
                {"_id": item["productId"], "status": "sold"},
                {"$set": {"status": "available"}},
            )


def approve_order_cancel(
    db: Database,
    order_id: ObjectId,
    admin: Principal,
    body: CancelRequestBody,
) -> ShopResult[dict[str, Any]]:
    """
    관리자 취소 승인. 사유 우선순위: 관리자 입력 > 고객 요청 > '기타'.
    포인트/신청서 정리는 실패해도 승인 자체는 성공으로 처리하고 로그만 남긴다.
    """
    order = db.orders.find_one({"_id": order_id})
    if not order:
        return fail(ShopErrorCode.NOT_FOUND, "주문을 찾을 수 없습니다.")
    if order.get("status") not in CANCELABLE_STATUSES:
        return fail(ShopErrorCode.INVALID_STATE, "취소할 수 없는 주문 상태입니다.")
    if _tracking_number(order):
        return fail(ShopErrorCode.TRACKING_EXISTS, "송장이 등록된 주문은 취소할 수 없습니다.")

    existing = order.get("cancelRequest") or {}
    reason_code = body.reason_code or existing.get("reasonCode") or "기타"
    reason_text = body.reason_text or existing.get("reasonText") or ""
    now = utc_now()

    result = db.orders.update_one(
        {"_id": order_id, "status": {"$in": list(CANCELABLE_STATUSES)}},
        {
            "$set": {
                "status": "취소",
                "paymentStatus": "결제취소",
                "cancelRequest": {
                    **existing,
                    "status": "approved",
                    "reasonCode": reason_code,
                    "reasonText": reason_text,
                    "processedAt": now,
                    "processedByAdminId": admin.oid,
                },
                "cancelReason": reason_code,
                "cancelReasonDetail": reason_text,
                "updatedAt": now,
            },
            "$push": {"history": _history("취소", f"관리자 취소 승인 ({reason_code})")},
        },
    )
    if result.matched_count == 0:
        return fail(ShopErrorCode.CONFLICT, "주문 상태가 변경되어 취소하지 못했습니다.")

    points: dict[str, int] = {"restored": 0, "revoked": 0}
    canceled_apps = 0
    try:
        points = _restore_points_after_cancel(db, order)
    except PyMongoError:
        logger.exception("points cleanup failed for canceled order=%s", order_id)
    try:
        canceled_apps = cancel_applications_for_order(db, order_id)
    except PyMongoError:
        logger.exception("linked application cancel failed for order=%s", order_id)
    try:
        _restore_stock(db, order)
    except PyMongoError:
        logger.exception("stock restore failed for order=%s", order_id)

    return Ok(
        {
            "ok": True,
            "restoredPoints": points["restored"],
            "revokedPoints": points["revoked"],
            "canceledApplications": canceled_apps,
        },
    )


def reject_order_cancel(
    db: Database,
    order_id: ObjectId,
    admin: Principal,
    admin_memo: str | None = None,
) -> ShopResult[dict[str, Any]]:
    now = utc_now()
    result = db.orders.update_one(
        {"_id": order_id, "cancelRequest.status": "requested"},
        {
            "$set": {
                "cancelRequest.status": "rejected",
                "cancelRequest.processedAt": now,
                "cancelRequest.processedByAdminId": admin.oid,
                "cancelRequest.adminMemo": admin_memo or "",
                "updatedAt": now,
            },
            "$push": {
                "history": _history(
                    "취소요청거절",
                    f"취소 요청 거절{f' ({admin_memo})' if admin_memo else ''}",
                ),
            },
        },
    )
    if result.matched_count == 0:
        if db.orders.find_one({"_id": order_id}, {"_id": 1}) is None:
            return fail(ShopErrorCode.NOT_FOUND, "주문을 찾을 수 없습니다.")
        return fail(ShopErrorCode.NOT_REQUESTED, "대기 중인 취소 요청이 없습니다.")
    return Ok({"ok": True})


__all__ = [
    "ORDER_STATUSES",
    "BANK_LABELS",
    "ShopError",
    "payment_method_label",
    "compute_totals",
    "create_order",
    "get_order",
    "list_my_orders",
    "admin_list_orders",
    "admin_update_order_status",
    "admin_update_shipping",
    "confirm_order",
    "request_order_cancel",
    "withdraw_order_cancel",
    "approve_order_cancel",
    "reject_order_cancel",
]
