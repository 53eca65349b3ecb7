"""
회원 간 쪽지 서비스. / Member-to-member message service.

- 일반 회원끼리는 게시글 5개 + 댓글 5개 이상부터 보낼 수 있다 (스팸 방지).
- 관리자가 아니면 분당 3회, 하루 20회로 제한된다.
"""

import logging
from datetime import timedelta
from typing import Any, Final

from bson import ObjectId
from pymongo import DESCENDING
from pymongo.database import Database

from shop_core import Err, Ok, clamp_limit, clamp_page, skip_for, to_jsonable, utc_now

from tennis_shop.errors import ShopErrorCode, ShopResult, fail
from tennis_shop.models.model_io_messages import BroadcastRequest, MessageSendRequest
from tennis_shop.principal import Principal

logger = logging.getLogger(__name__)


TITLE_MAX: Final[int] = 100
BODY_MAX: Final[int] = 5000
REQUIRED_POSTS: Final[int] = 5
REQUIRED_COMMENTS: Final[int] = 5
PER_MINUTE_LIMIT: Final[int] = 3
PER_DAY_LIMIT: Final[int] = 20
LIST_LIMIT_DEFAULT: Final[int] = 20
LIST_LIMIT_MAX: Final[int] = 50

_LIST_PROJECTION: Final[dict[str, int]] = {
    "title": 1,
    "body": 1,
    "createdAt": 1,
    "readAt": 1,
    "fromUserId": 1,
    "fromName": 1,
    "toUserId": 1,
    "toName": 1,
    "isAdmin": 1,
    "isBroadcast": 1,
}


def _validate_content(title: str, body: str) -> ShopResult[tuple[str, str]]:
    title = (title or "").strip()
    body = (body or "").strip()
    if not title:
        return fail(ShopErrorCode.INVALID_INPUT, "제목을 입력해주세요.")
    if not body:
        return fail(ShopErrorCode.INVALID_INPUT, "내용을 입력해주세요.")
    if len(title) > TITLE_MAX:
        return fail(ShopErrorCode.INVALID_INPUT, f"제목은 {TITLE_MAX}자 이하로 입력해주세요.")
    if len(body) > BODY_MAX:
        return fail(ShopErrorCode.INVALID_INPUT, f"내용은 {BODY_MAX}자 이하로 입력해주세요.")
    return Ok((title, body))


def _activity_counts(db: Database, user_id: ObjectId) -> tuple[int, int]:
    posts = db.community_posts.count_documents({"userId": user_id, "status": "public"})
    qna = db.board_posts.count_documents(
        {"authorId": str(user_id), "type": "qna", "status": "published"},
    )
    comments = db.community_comments.count_documents({"userId": user_id, "status": "public"})
    return posts + qna, comments


def send_message(
    db: Database,
    sender: Principal,
    request: MessageSendRequest,
) -> ShopResult[dict[str, Any]]:
    if not ObjectId.is_valid(request.to_user_id):
        return fail(ShopErrorCode.INVALID_ID, "받는 사람 ID 형식이 올바르지 않습니다.")
    match _validate_content(request.title, request.body):
        case Ok(value=(title, body)):
            pass
        case Err() as err:
            return err
    if request.to_user_id == sender.id:
        return fail(ShopErrorCode.INVALID_INPUT, "본인에게는 쪽지를 보낼 수 없습니다.")

    to_oid = ObjectId(request.to_user_id)
    recipient = db.users.find_one(
        {"_id": to_oid, "isDeleted": {"$ne": True}},
        {"name": 1, "role": 1},
    )
    if not recipient:
        return fail(ShopErrorCode.NOT_FOUND, "사용자를 찾을 수 없습니다. (탈퇴한 회원)")

    from_oid = sender.oid
    to_admin = recipient.get("role") == "admin"
    if not sender.is_admin and not to_admin:
        posts, comments = _activity_counts(db, from_oid)
        if posts < REQUIRED_POSTS or comments < REQUIRED_COMMENTS:
            return fail(
                ShopErrorCode.FORBIDDEN,
                "쪽지는 게시글 5개 이상 + 댓글 5개 이상부터 이용할 수 있습니다. (스팸 광고 방지)",
                required={"posts": REQUIRED_POSTS, "comments": REQUIRED_COMMENTS},
                current={"posts": posts, "comments": comments},
            )

    now = utc_now()
    if not sender.is_admin:
        last_minute = db.messages.count_documents(
            {"fromUserId": from_oid, "createdAt": {"$gt": now - timedelta(minutes=1)}},
        )
        if last_minute >= PER_MINUTE_LIMIT:
            return fail(ShopErrorCode.RATE_LIMITED, "분당 3회 제한")
        last_day = db.messages.count_documents(
            {"fromUserId": from_oid, "createdAt": {"$gt": now - timedelta(days=1)}},
        )
        if last_day >= PER_DAY_LIMIT:
            return fail(ShopErrorCode.RATE_LIMITED, "하루 20회 제한")

    sender_doc = db.users.find_one({"_id": from_oid}, {"name": 1}) or {}
    inserted = db.messages.insert_one(
        {
            "fromUserId": from_oid,
            "fromName": sender_doc.get("name") or "회원",
            "toUserId": to_oid,
            "toName": recipient.get("name") or "회원",
            "title": title,
            "body": body,
            "createdAt": now,
            "readAt": None,
            "fromDeletedAt": None,
            "toDeletedAt": None,
            "isAdmin": sender.is_admin,
            "isBroadcast": False,
        },
    )
    return Ok({"ok": True, "id": str(inserted.inserted_id)})


def _list(
    db: Database,
    query: dict[str, Any],
    unread_query: dict[str, Any],
    page: Any,
    limit: Any,
) -> dict[str, Any]:
    page_no = clamp_page(page)
    size = clamp_limit(limit, LIST_LIMIT_DEFAULT, LIST_LIMIT_MAX)
    cursor = (
        db.messages.find(query, _LIST_PROJECTION)
        .sort([("createdAt", DESCENDING), ("_id", DESCENDING)])
        .skip(skip_for(page_no, size))
        .limit(size)
    )
    return {
        "items": [to_jsonable(doc) for doc in cursor],
        "total": db.messages.count_documents(query),
        "unreadCount": db.messages.count_documents(unread_query),
        "page": page_no,
        "limit": size,
    }


def list_inbox(db: Database, principal: Principal, page: Any = 1, limit: Any = LIST_LIMIT_DEFAULT) -> dict[str, Any]:
    query = {"toUserId": principal.oid, "toDeletedAt": None}
    return _list(db, query, {**query, "readAt": None}, page, limit)


def list_sent(db: Database, principal: Principal, page: Any = 1, limit: Any = LIST_LIMIT_DEFAULT) -> dict[str, Any]:
    query = {"fromUserId": principal.oid, "fromDeletedAt": None}
    # 보낸함의 unreadCount 는 상대가 아직 읽지 않은 쪽지 수
    return _list(db, query, {**query, "readAt": None}, page, limit)


def get_message(db: Database, principal: Principal, message_id: ObjectId) -> ShopResult[dict[str, Any]]:
    """
    보낸 사람/받는 사람만 열람 가능. 받는 사람이 처음 열면 readAt 을 기록한다.
    """
    message = db.messages.find_one({"_id": message_id})
    if not message:
        return fail(ShopErrorCode.NOT_FOUND, "쪽지를 찾을 수 없습니다.")

    is_sender = message.get("fromUserId") == principal.oid and message.get("fromDeletedAt") is None
    is_recipient = message.get("toUserId") == principal.oid and message.get("toDeletedAt") is None
    if not is_sender and not is_recipient:
        return fail(ShopErrorCode.NOT_FOUND, "쪽지를 찾을 수 없습니다.")

    if is_recipient and message.get("readAt") is None:
        now = utc_now()
        db.messages.update_one({"_id": message_id, "readAt": None}, {"$set": {"readAt": now}})
        message["readAt"] = now
    return Ok(to_jsonable(message))


def delete_message(db: Database, principal: Principal, message_id: ObjectId) -> ShopResult[dict[str, Any]]:
    message = db.messages.find_one({"_id": message_id}, {"fromUserId": 1, "toUserId": 1})
    if not message:
        return fail(ShopErrorCode.NOT_FOUND, "쪽지를 찾을 수 없습니다.")

    updates: dict[str, Any] = {}
    now = utc_now()
    if message.get("fromUserId") == principal.oid:
        updates["fromDeletedAt"] = now
    if message.get("toUserId") == principal.oid:
        updates["toDeletedAt"] = now
    if not updates:
        return fail(ShopErrorCode.FORBIDDEN, "삭제 권한이 없습니다.")

    db.messages.update_one({"_id": message_id}, {"$set": updates})
    return Ok({"ok": True})


def broadcast(db: Database, admin: Principal, request: BroadcastRequest) -> ShopResult[dict[str, Any]]:
    """
    활성 회원 전체에게 같은 쪽지를 한 건씩 저장한다.
    Store one copy of the message per active user.
    """
    match _validate_content(request.title, request.body):
        case Ok(value=(title, body)):
            pass
        case Err() as err:
            return err

    now = utc_now()
    broadcast_id = ObjectId()
    admin_doc = db.users.find_one({"_id": admin.oid}, {"name": 1}) or {}
    docs = [
        {
            "fromUserId": admin.oid,
            "fromName": admin_doc.get("name") or "관리자",
            "toUserId": user["_id"],
            "toName": user.get("name") or "회원",
            "title": title,
            "body": body,
            "createdAt": now,
            "readAt": None,
            "fromDeletedAt": None,
            "toDeletedAt": None,
            "isAdmin": True,
            "isBroadcast": True,
            "broadcastId": broadcast_id,
        }
        for user in db.users.find(
            {"isDeleted": {"$ne": True}, "isSuspended": {"$ne": True}, "_id": {"$ne": admin.oid}},
            {"name": 1},
        )
    ]
    if docs:
        db.messages.insert_many(docs)
    logger.info("broadcast %s sent to %d users", broadcast_id, len(docs))
    return Ok({"ok": True, "broadcastId": str(broadcast_id), "sent": len(docs)})
