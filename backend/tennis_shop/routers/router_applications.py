from typing import Annotated, Any

from fastapi import APIRouter, Query, status

from shop_core import Err, Ok

from tennis_shop.dependencies import (
    AdminDep,
    DatabaseDep,
    OptionalPrincipalDep,
    PrincipalDep,
    SettingsDep,
    parse_path_id,
)
from tennis_shop.errors import map_shop_error_to_http_exception
from tennis_shop.models.model_io_applications import (
    AdminMemoBody,
    ApplicationStatusUpdateRequest,
    ApplicationSubmitRequest,
    ApplicationSubmitResponse,
    CancelRequestBody,
)
from tennis_shop.services import service_applications

router = APIRouter()


def _unwrap(result: Any) -> Any:
    match result:
        case Ok(value=body):
            return body
        case Err(error=error):
            raise map_shop_error_to_http_exception(error)


@router.post(
    "/applications/stringing",
    summary="스트링 교체 신청 / Submit stringing application",
    status_code=status.HTTP_201_CREATED,
    response_model=ApplicationSubmitResponse,
    response_model_by_alias=True,
)
def submit_application_endpoint(
    request: ApplicationSubmitRequest,
    principal: OptionalPrincipalDep,
    db: DatabaseDep,
    settings: SettingsDep,
) -> ApplicationSubmitResponse:
    """
    교체 서비스 신청서를 제출한다. 로그인 사용자는 패키지 이용권이 자동 적용될 수 있다.
    Submit a stringing application; logged-in users may have a package pass applied.
    """
    return _unwrap(service_applications.submit_application(db, settings, principal, request))


@router.get(
    "/applications/stringing/reserved-slots",
    summary="예약된 시간대 / Booked time slots",
)
def reserved_slots_endpoint(
    db: DatabaseDep,
    date: Annotated[str, Query(pattern=r"^\d{4}-\d{2}-\d{2}$")],
) -> dict[str, Any]:
    return {"date": date, "reservedTimes": service_applications.reserved_slots(db, date)}


@router.get(
    "/applications/stringing/mine",
    summary="내 신청서 목록 / My applications",
)
def list_my_applications_endpoint(
    principal: PrincipalDep,
    db: DatabaseDep,
    page: int = 1,
    limit: int = 10,
) -> dict[str, Any]:
    return service_applications.list_my_applications(db, principal, page, limit)


@router.get(
    "/applications/stringing/{application_id}",
    summary="신청서 상세 / Application detail",
)
def get_application_endpoint(
    application_id: str,
    principal: OptionalPrincipalDep,
    db: DatabaseDep,
) -> dict[str, Any]:
    oid = parse_path_id(application_id)
    return _unwrap(service_applications.get_application(db, oid, principal))


@router.get(
    "/applications/stringing/{application_id}/history",
    summary="신청서 처리 이력 / Application history",
)
def application_history_endpoint(
    application_id: str,
    principal: PrincipalDep,
    db: DatabaseDep,
    page: int = 1,
    limit: int = 5,
) -> dict[str, Any]:
    oid = parse_path_id(application_id)
    return _unwrap(service_applications.application_history(db, oid, principal, page, limit))


@router.post(
    "/applications/stringing/{application_id}/cancel-request",
    summary="신청 취소 요청 / Request application cancellation",
)
def request_application_cancel_endpoint(
    application_id: str,
    principal: PrincipalDep,
    db: DatabaseDep,
    settings: SettingsDep,
    body: CancelRequestBody | None = None,
) -> dict[str, Any]:
    oid = parse_path_id(application_id)
    result = service_applications.request_application_cancel(
        db, settings, oid, principal, body or CancelRequestBody(),
    )
    return _unwrap(result)


@router.post(
    "/applications/stringing/{application_id}/confirm",
    summary="교체 확정 / Confirm completed service",
)
def confirm_application_endpoint(
    application_id: str,
    principal: PrincipalDep,
    db: DatabaseDep,
) -> dict[str, Any]:
    oid = parse_path_id(application_id)
    return _unwrap(service_applications.confirm_application(db, oid, principal))


# --- 관리자 / Admin ---


@router.get(
    "/admin/applications/stringing",
    summary="신청서 목록(관리자) / List applications (admin)",
)
def admin_list_applications_endpoint(
    _admin: AdminDep,
    db: DatabaseDep,
    status: str | None = None,
    page: int = 1,
    limit: int = 10,
) -> dict[str, Any]:
    return service_applications.admin_list_applications(db, status, page, limit)


@router.patch(
    "/admin/applications/stringing/{application_id}/status",
    summary="신청서 상태 변경(관리자) / Update application status (admin)",
)
def update_application_status_endpoint(
    application_id: str,
    request: ApplicationStatusUpdateRequest,
    _admin: AdminDep,
    db: DatabaseDep,
    settings: SettingsDep,
) -> dict[str, Any]:
    oid = parse_path_id(application_id)
    return _unwrap(
        service_applications.update_application_status(db, settings, oid, request.status),
    )


@router.post(
    "/admin/applications/stringing/{application_id}/cancel/approve",
    summary="신청 취소 승인(관리자) / Approve application cancellation (admin)",
)
def approve_application_cancel_endpoint(
    application_id: str,
    admin: AdminDep,
    db: DatabaseDep,
) -> dict[str, Any]:
    oid = parse_path_id(application_id)
    return _unwrap(service_applications.approve_application_cancel(db, oid, admin))


@router.post(
    "/admin/applications/stringing/{application_id}/cancel/reject",
    summary="신청 취소 거절(관리자) / Reject application cancellation (admin)",
)
def reject_application_cancel_endpoint(
    application_id: str,
    admin: AdminDep,
    db: DatabaseDep,
    body: AdminMemoBody | None = None,
) -> dict[str, Any]:
    oid = parse_path_id(application_id)
    memo = body.admin_memo if body else None
    return _unwrap(service_applications.reject_application_cancel(db, oid, admin, memo))
