from typing import Any

from fastapi import APIRouter

from shop_core import Err, Ok

from tennis_shop.dependencies import AdminDep, DatabaseDep, PrincipalDep, parse_path_id
from tennis_shop.errors import map_shop_error_to_http_exception
from tennis_shop.models.model_io_points import AdminPointsAdjustRequest
from tennis_shop.services.service_points import (
    admin_adjust_points,
    get_points_balance,
    list_point_transactions,
)

router = APIRouter()


@router.get(
    "/points/me",
    summary="내 적립금 / My points",
)
def my_points_endpoint(
    principal: PrincipalDep,
    db: DatabaseDep,
    page: int = 1,
    limit: int = 20,
) -> dict[str, Any]:
    """
    현재 잔액과 적립/사용 내역 한 페이지를 돌려준다.
    Current balance plus one page of the transaction history.
    """
    history = list_point_transactions(db, principal.oid, page, limit)
    return {"balance": get_points_balance(db, principal.oid), **history}


@router.post(
    "/admin/points/adjust",
    summary="적립금 수동 조정(관리자) / Adjust points (admin)",
)
def admin_adjust_points_endpoint(
    request: AdminPointsAdjustRequest,
    admin: AdminDep,
    db: DatabaseDep,
) -> dict[str, Any]:
    user_id = parse_path_id(request.user_id)
    result = admin_adjust_points(
        db,
        user_id,
        request.amount,
        admin_id=admin.oid,
        reason=request.reason,
        ref_key=request.ref_key,
    )

    match result:
        case Ok(value=body):
            return body
        case Err(error=error):
            raise map_shop_error_to_http_exception(error)


@router.get(
    "/admin/users/{user_id}/points/history",
    summary="회원 적립금 내역(관리자) / User points history (admin)",
)
def admin_points_history_endpoint(
    user_id: str,
    _admin: AdminDep,
    db: DatabaseDep,
    page: int = 1,
    limit: int = 20,
) -> dict[str, Any]:
    oid = parse_path_id(user_id)
    history = list_point_transactions(db, oid, page, limit)
    return {"userId": user_id, "balance": get_points_balance(db, oid), **history}
