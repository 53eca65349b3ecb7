from typing import Any

from fastapi import APIRouter, status

from shop_core import Err, Ok

from tennis_shop.dependencies import AdminDep, DatabaseDep, PrincipalDep, parse_path_id
from tennis_shop.errors import map_shop_error_to_http_exception
from tennis_shop.models.model_io_passes import (
    PackageOrderCreateRequest,
    PassAdjustSessionsRequest,
    PassExtendRequest,
)
from tennis_shop.services import service_passes

router = APIRouter()


def _unwrap(result: Any) -> dict[str, Any]:
    match result:
        case Ok(value=body):
            return body
        case Err(error=error):
            raise map_shop_error_to_http_exception(error)


@router.get(
    "/passes/mine",
    summary="내 패키지 이용권 / My package passes",
)
def list_my_passes_endpoint(principal: PrincipalDep, db: DatabaseDep) -> dict[str, Any]:
    return {"items": service_passes.list_my_passes(db, principal.oid)}


@router.post(
    "/package-orders",
    summary="패키지 주문 / Order a package",
    status_code=status.HTTP_201_CREATED,
)
def create_package_order_endpoint(
    request: PackageOrderCreateRequest,
    principal: PrincipalDep,
    db: DatabaseDep,
) -> dict[str, Any]:
    result = service_passes.create_package_order(
        db, principal.oid, request.plan_id, {"email": principal.email},
    )
    return _unwrap(result)


@router.get(
    "/package-orders/mine",
    summary="내 패키지 주문 / My package orders",
)
def list_my_package_orders_endpoint(principal: PrincipalDep, db: DatabaseDep) -> dict[str, Any]:
    return {"items": service_passes.list_my_package_orders(db, principal.oid)}


# --- 관리자 / Admin ---


@router.post(
    "/admin/package-orders/{package_order_id}/mark-paid",
    summary="패키지 결제 확인(관리자) / Mark package order paid (admin)",
)
def mark_package_order_paid_endpoint(
    package_order_id: str,
    _admin: AdminDep,
    db: DatabaseDep,
) -> dict[str, Any]:
    """
    결제완료 처리 후 이용권을 발급한다. 재호출해도 이용권은 한 번만 발급된다.
    Mark paid and issue the pass; repeated calls never issue twice.
    """
    oid = parse_path_id(package_order_id)
    return _unwrap(service_passes.mark_package_order_paid(db, oid))


@router.post(
    "/admin/passes/{pass_id}/extend",
    summary="이용권 만료일 연장(관리자) / Extend pass expiry (admin)",
)
def extend_pass_endpoint(
    pass_id: str,
    request: PassExtendRequest,
    _admin: AdminDep,
    db: DatabaseDep,
) -> dict[str, Any]:
    oid = parse_path_id(pass_id)
    result = service_passes.extend_pass(
        db,
        oid,
        mode=request.mode,
        days=request.days,
        new_expiry=request.parsed_new_expiry(),
        reason=request.reason,
    )
    return _unwrap(result)


@router.post(
    "/admin/passes/{pass_id}/adjust-sessions",
    summary="이용권 잔여 횟수 조정(관리자) / Adjust pass sessions (admin)",
)
def adjust_pass_sessions_endpoint(
    pass_id: str,
    request: PassAdjustSessionsRequest,
    _admin: AdminDep,
    db: DatabaseDep,
) -> dict[str, Any]:
    oid = parse_path_id(pass_id)
    return _unwrap(service_passes.adjust_pass_sessions(db, oid, request.delta, request.reason))
