from typing import Any

from fastapi import APIRouter, status

from shop_core import Err, Ok

from tennis_shop.dependencies import AdminDep, DatabaseDep, PrincipalDep, SettingsDep, parse_path_id
from tennis_shop.errors import map_shop_error_to_http_exception
from tennis_shop.models.model_io_applications import AdminMemoBody, CancelRequestBody
from tennis_shop.models.model_io_rentals import (
    RentalCreateRequest,
    RentalOutRequest,
    RentalPayRequest,
    RentalPrepareRequest,
)
from tennis_shop.services import service_rentals

router = APIRouter()


def _unwrap(result: Any) -> dict[str, Any]:
    match result:
        case Ok(value=body):
            return body
        case Err(error=error):
            raise map_shop_error_to_http_exception(error)


@router.post(
    "/rentals",
    summary="라켓 대여 신청 / Create rental",
    status_code=status.HTTP_201_CREATED,
)
def create_rental_endpoint(
    request: RentalCreateRequest,
    principal: PrincipalDep,
    db: DatabaseDep,
    settings: SettingsDep,
) -> dict[str, Any]:
    racket_id = parse_path_id(request.racket_id)
    return _unwrap(service_rentals.create_rental(db, settings, principal, racket_id, request.days))


@router.get(
    "/rentals",
    summary="내 대여 목록 / My rentals",
)
def list_my_rentals_endpoint(
    principal: PrincipalDep,
    db: DatabaseDep,
    page: int = 1,
    limit: int = 10,
) -> dict[str, Any]:
    return service_rentals.list_my_rentals(db, principal, page, limit)


@router.get(
    "/rentals/{rental_id}",
    summary="대여 상세 / Rental detail",
)
def get_rental_endpoint(rental_id: str, principal: PrincipalDep, db: DatabaseDep) -> dict[str, Any]:
    return _unwrap(service_rentals.get_rental(db, parse_path_id(rental_id), principal))


@router.post(
    "/rentals/{rental_id}/prepare",
    summary="결제 전 배송/입금 정보 저장 / Save checkout details",
)
def prepare_rental_endpoint(
    rental_id: str,
    request: RentalPrepareRequest,
    principal: PrincipalDep,
    db: DatabaseDep,
) -> dict[str, Any]:
    oid = parse_path_id(rental_id)
    return _unwrap(service_rentals.prepare_rental(db, oid, principal, request))


@router.post(
    "/rentals/{rental_id}/pay",
    summary="대여 결제 처리 / Mark rental paid",
)
def pay_rental_endpoint(
    rental_id: str,
    principal: PrincipalDep,
    db: DatabaseDep,
    settings: SettingsDep,
    request: RentalPayRequest | None = None,
) -> dict[str, Any]:
    """
    pending → paid 원자 전환. 이미 결제된 대여는 already=True.
    Atomic pending to paid transition; already-paid rentals answer already=True.
    """
    oid = parse_path_id(rental_id)
    payment = request.payment if request else None
    shipping = request.shipping if request else None
    return _unwrap(service_rentals.pay_rental(db, settings, oid, principal, payment, shipping))


@router.post(
    "/rentals/{rental_id}/cancel-request",
    summary="대여 취소 요청 / Request rental cancellation",
)
def request_rental_cancel_endpoint(
    rental_id: str,
    principal: PrincipalDep,
    db: DatabaseDep,
    settings: SettingsDep,
    body: CancelRequestBody | None = None,
) -> dict[str, Any]:
    oid = parse_path_id(rental_id)
    result = service_rentals.request_rental_cancel(
        db, settings, oid, principal, body or CancelRequestBody(),
    )
    return _unwrap(result)


@router.post(
    "/rentals/{rental_id}/cancel-request/withdraw",
    summary="대여 취소 요청 철회 / Withdraw rental cancel request",
)
def withdraw_rental_cancel_endpoint(rental_id: str, principal: PrincipalDep, db: DatabaseDep) -> dict[str, Any]:
    return _unwrap(service_rentals.withdraw_rental_cancel(db, parse_path_id(rental_id), principal))


@router.post(
    "/rentals/{rental_id}/confirm",
    summary="대여 확정 / Confirm returned rental",
)
def confirm_rental_endpoint(rental_id: str, principal: PrincipalDep, db: DatabaseDep) -> dict[str, Any]:
    return _unwrap(service_rentals.confirm_rental(db, parse_path_id(rental_id), principal))


# --- 관리자 / Admin ---


@router.post(
    "/admin/rentals/{rental_id}/out",
    summary="대여 출고(관리자) / Ship rental (admin)",
)
def admin_out_rental_endpoint(
    rental_id: str,
    admin: AdminDep,
    db: DatabaseDep,
    request: RentalOutRequest | None = None,
) -> dict[str, Any]:
    oid = parse_path_id(rental_id)
    return _unwrap(service_rentals.admin_out_rental(db, oid, admin, request or RentalOutRequest()))


@router.post(
    "/admin/rentals/{rental_id}/return",
    summary="대여 반납(관리자) / Mark rental returned (admin)",
)
def admin_return_rental_endpoint(rental_id: str, admin: AdminDep, db: DatabaseDep) -> dict[str, Any]:
    return _unwrap(service_rentals.admin_return_rental(db, parse_path_id(rental_id), admin))


@router.post(
    "/admin/rentals/{rental_id}/cancel/approve",
    summary="대여 취소 승인(관리자) / Approve rental cancellation (admin)",
)
def approve_rental_cancel_endpoint(rental_id: str, admin: AdminDep, db: DatabaseDep) -> dict[str, Any]:
    return _unwrap(service_rentals.approve_rental_cancel(db, parse_path_id(rental_id), admin))


@router.post(
    "/admin/rentals/{rental_id}/cancel/reject",
    summary="대여 취소 거절(관리자) / Reject rental cancellation (admin)",
)
def reject_rental_cancel_endpoint(
    rental_id: str,
    admin: AdminDep,
    db: DatabaseDep,
    body: AdminMemoBody | None = None,
) -> dict[str, Any]:
    oid = parse_path_id(rental_id)
    memo = body.admin_memo if body else None
    return _unwrap(service_rentals.reject_rental_cancel(db, oid, admin, memo))
