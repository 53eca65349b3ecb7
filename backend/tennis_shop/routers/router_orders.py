from typing import Annotated, Any

from fastapi import APIRouter, Header, Response, status

from shop_core import Err, Ok

from tennis_shop.dependencies import (
    AdminDep,
    DatabaseDep,
    OptionalPrincipalDep,
    PrincipalDep,
    SettingsDep,
    parse_path_id,
)
from tennis_shop.errors import ShopError, ShopErrorCode, map_shop_error_to_http_exception
from tennis_shop.models.model_io_applications import AdminMemoBody, CancelRequestBody
from tennis_shop.models.model_io_orders import (
    GuestOrderLookupRequest,
    OrderConfirmResponse,
    OrderCreateRequest,
    OrderStatusUpdateRequest,
    ShippingUpdateRequest,
)
from tennis_shop.services import service_orders

router = APIRouter()


def _unwrap(result: Any) -> Any:
    match result:
        case Ok(value=body):
            return body
        case Err(error=error):
            raise map_shop_error_to_http_exception(error)


@router.post(
    "/orders",
    summary="주문 생성 / Create order",
    status_code=status.HTTP_201_CREATED,
)
def create_order_endpoint(
    request: OrderCreateRequest,
    response: Response,
    db: DatabaseDep,
    settings: SettingsDep,
    principal: OptionalPrincipalDep,
    idempotency_key: Annotated[str | None, Header(alias="Idempotency-Key")] = None,
) -> dict[str, Any]:
    """
    주문을 생성한다. 같은 Idempotency-Key 의 재요청은 기존 주문 ID 를 200 으로 돌려준다.
    Create an order; a replay with the same Idempotency-Key answers 200 with the existing id.
    """
    body = _unwrap(
        service_orders.create_order(db, settings, principal, request, idem_key=idempotency_key),
    )
    if not body.pop("created"):
        response.status_code = status.HTTP_200_OK
    return body


@router.get(
    "/orders",
    summary="내 주문 목록 / My orders",
)
def list_my_orders_endpoint(
    principal: PrincipalDep,
    db: DatabaseDep,
    page: int = 1,
    limit: int = 10,
) -> dict[str, Any]:
    return service_orders.list_my_orders(db, principal, page, limit)


@router.get(
    "/orders/{order_id}",
    summary="주문 상세 / Order detail",
)
def get_order_endpoint(order_id: str, principal: PrincipalDep, db: DatabaseDep) -> dict[str, Any]:
    return _unwrap(service_orders.get_order(db, parse_path_id(order_id), principal))


@router.post(
    "/orders/{order_id}/confirm",
    summary="구매확정 / Confirm purchase",
    response_model=OrderConfirmResponse,
    response_model_by_alias=True,
)
def confirm_order_endpoint(
    order_id: str,
    principal: OptionalPrincipalDep,
    db: DatabaseDep,
) -> OrderConfirmResponse:
    """
    배송완료 주문을 구매확정하고 적립금을 지급한다.
    Confirm a delivered order and grant its purchase reward.

    ID 형식 검사(400)가 로그인 검사(401)보다 먼저다.
    """
    oid = parse_path_id(order_id)
    if principal is None:
        raise map_shop_error_to_http_exception(
            ShopError(ShopErrorCode.UNAUTHORIZED, "로그인이 필요합니다."),
        )
    return _unwrap(service_orders.confirm_order(db, oid, principal))


@router.post(
    "/orders/{order_id}/cancel-request",
    summary="주문 취소 요청 / Request order cancellation",
)
def request_order_cancel_endpoint(
    order_id: str,
    principal: PrincipalDep,
    db: DatabaseDep,
    settings: SettingsDep,
    body: CancelRequestBody | None = None,
) -> dict[str, Any]:
    oid = parse_path_id(order_id)
    result = service_orders.request_order_cancel(
        db, settings, oid, principal, body or CancelRequestBody(),
    )
    return _unwrap(result)


@router.post(
    "/orders/{order_id}/cancel-request/withdraw",
    summary="주문 취소 요청 철회 / Withdraw cancel request",
)
def withdraw_order_cancel_endpoint(order_id: str, principal: PrincipalDep, db: DatabaseDep) -> dict[str, Any]:
    return _unwrap(service_orders.withdraw_order_cancel(db, parse_path_id(order_id), principal))


@router.post(
    "/guest-orders/lookup",
    summary="비회원 주문 조회 / Guest order lookup",
)
def lookup_guest_orders_endpoint(
    request: GuestOrderLookupRequest,
    db: DatabaseDep,
    settings: SettingsDep,
) -> dict[str, Any]:
    """
    이름 + 이메일/전화번호로 최근 6개월 비회원 주문을 찾는다.
    Find recent guest orders by name plus email and/or phone.
    """
    return _unwrap(service_orders.lookup_guest_orders(db, settings, request))


# --- 관리자 / Admin ---


@router.get(
    "/admin/orders",
    summary="주문 목록(관리자) / List orders (admin)",
)
def admin_list_orders_endpoint(
    _admin: AdminDep,
    db: DatabaseDep,
    status: str | None = None,
    page: int = 1,
    limit: int = 10,
) -> dict[str, Any]:
    return service_orders.admin_list_orders(db, status, page, limit)


@router.patch(
    "/admin/orders/{order_id}/status",
    summary="주문 상태 변경(관리자) / Update order status (admin)",
)
def admin_update_order_status_endpoint(
    order_id: str,
    request: OrderStatusUpdateRequest,
    _admin: AdminDep,
    db: DatabaseDep,
) -> dict[str, Any]:
    oid = parse_path_id(order_id)
    return _unwrap(service_orders.admin_update_order_status(db, oid, request.status))


@router.patch(
    "/admin/orders/{order_id}/shipping",
    summary="송장 등록(관리자) / Register tracking (admin)",
)
def admin_update_shipping_endpoint(
    order_id: str,
    request: ShippingUpdateRequest,
    _admin: AdminDep,
    db: DatabaseDep,
) -> dict[str, Any]:
    oid = parse_path_id(order_id)
    return _unwrap(
        service_orders.admin_update_shipping(db, oid, request.courier, request.tracking_number),
    )


@router.post(
    "/admin/orders/{order_id}/cancel/approve",
    summary="주문 취소 승인(관리자) / Approve cancellation (admin)",
)
def approve_order_cancel_endpoint(
    order_id: str,
    admin: AdminDep,
    db: DatabaseDep,
    body: CancelRequestBody | None = None,
) -> dict[str, Any]:
    oid = parse_path_id(order_id)
    return _unwrap(service_orders.approve_order_cancel(db, oid, admin, body or CancelRequestBody()))


@router.post(
    "/admin/orders/{order_id}/cancel/reject",
    summary="주문 취소 거절(관리자) / Reject cancellation (admin)",
)
def reject_order_cancel_endpoint(
    order_id: str,
    admin: AdminDep,
    db: DatabaseDep,
    body: AdminMemoBody | None = None,
) -> dict[str, Any]:
    oid = parse_path_id(order_id)
    return _unwrap(service_orders.reject_order_cancel(db, oid, admin, body.admin_memo if body else None))
