from typing import Any

from fastapi import APIRouter

from shop_core import Err, Ok

from tennis_shop.dependencies import AdminDep, DatabaseDep, SettingsDep, parse_path_id
from tennis_shop.errors import map_shop_error_to_http_exception
from tennis_shop.services.service_notifications import list_outbox, retry_outbox

router = APIRouter()


@router.get(
    "/admin/notifications/outbox",
    summary="알림 아웃박스 조회(관리자) / List notification outbox (admin)",
)
def list_outbox_endpoint(
    _admin: AdminDep,
    db: DatabaseDep,
    status: str = "all",
    page: int = 1,
    limit: int = 20,
) -> dict[str, Any]:
    result = list_outbox(db, status, page, limit)

    match result:
        case Ok(value=body):
            return body
        case Err(error=error):
            raise map_shop_error_to_http_exception(error)


@router.post(
    "/admin/notifications/outbox/{outbox_id}/retry",
    summary="실패 알림 재발송(관리자) / Retry failed notification (admin)",
)
def retry_outbox_endpoint(
    outbox_id: str,
    _admin: AdminDep,
    db: DatabaseDep,
    settings: SettingsDep,
) -> dict[str, Any]:
    """
    failed 상태의 알림만 다시 발송한다.
    Re-dispatch a notification that is in the failed state.
    """
    result = retry_outbox(db, settings, parse_path_id(outbox_id))

    match result:
        case Ok(value=body):
            return body
        case Err(error=error):
            raise map_shop_error_to_http_exception(error)
