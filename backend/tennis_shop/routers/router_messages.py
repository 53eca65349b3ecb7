from typing import Any

from fastapi import APIRouter, status

from shop_core import Err, Ok

from tennis_shop.dependencies import AdminDep, DatabaseDep, PrincipalDep, parse_path_id
from tennis_shop.errors import map_shop_error_to_http_exception
from tennis_shop.models.model_io_messages import BroadcastRequest, MessageSendRequest
from tennis_shop.services import service_messages

router = APIRouter()


def _unwrap(result: Any) -> dict[str, Any]:
    match result:
        case Ok(value=body):
            return body
        case Err(error=error):
            raise map_shop_error_to_http_exception(error)


@router.post(
    "/messages",
    summary="쪽지 보내기 / Send a message",
    status_code=status.HTTP_201_CREATED,
)
def send_message_endpoint(
    request: MessageSendRequest,
    principal: PrincipalDep,
    db: DatabaseDep,
) -> dict[str, Any]:
    """
    일반 회원끼리는 활동 기준(글/댓글 수)과 발송 빈도 제한이 적용된다.
    Member-to-member messages require community activity and are rate limited.
    """
    return _unwrap(service_messages.send_message(db, principal, request))


@router.get(
    "/messages/inbox",
    summary="받은 쪽지함 / Inbox",
)
def inbox_endpoint(
    principal: PrincipalDep,
    db: DatabaseDep,
    page: int = 1,
    limit: int = 20,
) -> dict[str, Any]:
    return service_messages.list_inbox(db, principal, page, limit)


@router.get(
    "/messages/sent",
    summary="보낸 쪽지함 / Sent messages",
)
def sent_endpoint(
    principal: PrincipalDep,
    db: DatabaseDep,
    page: int = 1,
    limit: int = 20,
) -> dict[str, Any]:
    return service_messages.list_sent(db, principal, page, limit)


@router.get(
    "/messages/{message_id}",
    summary="쪽지 읽기 / Read a message",
)
def get_message_endpoint(message_id: str, principal: PrincipalDep, db: DatabaseDep) -> dict[str, Any]:
    return _unwrap(service_messages.get_message(db, principal, parse_path_id(message_id)))


@router.delete(
    "/messages/{message_id}",
    summary="쪽지 삭제 / Delete a message",
)
def delete_message_endpoint(message_id: str, principal: PrincipalDep, db: DatabaseDep) -> dict[str, Any]:
    return _unwrap(service_messages.delete_message(db, principal, parse_path_id(message_id)))


@router.post(
    "/admin/messages/broadcast",
    summary="전체 쪽지(관리자) / Broadcast (admin)",
)
def broadcast_endpoint(request: BroadcastRequest, admin: AdminDep, db: DatabaseDep) -> dict[str, Any]:
    return _unwrap(service_messages.broadcast(db, admin, request))
