"""
커뮤니티 게시판 서비스: 글/댓글/좋아요/신고/조회수 + 관리자 모더레이션.

Community board service: posts, comments, likes, reports, view counting
and admin moderation.
"""

import hashlib
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Final

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from shop_core import Err, Ok, clamp_limit, clamp_page, skip_for, to_jsonable, utc_now

from tennis_shop.errors import ShopErrorCode, ShopResult, fail
from tennis_shop.models.model_io_community import (
    PostCreateRequest,
    PostUpdateRequest,
)
from tennis_shop.principal import Principal
from tennis_shop.security import sanitize_html

logger = logging.getLogger(__name__)


CATEGORIES: Final[tuple[str, ...]] = (
    "general", "info", "qna", "tip", "etc", "racket", "string", "equipment",
    "shoes", "bag", "apparel", "grip", "accessory", "ball", "other",
)
BRAND_REQUIRED_MARKET_CATEGORIES: Final[tuple[str, ...]] = ("racket", "string")

LIST_LIMIT_DEFAULT: Final[int] = 10
LIST_LIMIT_MAX: Final[int] = 50
COMMENT_LIMIT_DEFAULT: Final[int] = 20
COMMENT_LIMIT_MAX: Final[int] = 100
REPORT_COOLDOWN: Final[timedelta] = timedelta(minutes=5)

_SORTS: Final[dict[str, list[tuple[str, int]]]] = {
    "latest": [("createdAt", DESCENDING)],
    "views": [("views", DESCENDING), ("createdAt", DESCENDING)],
    "likes": [("likes", DESCENDING), ("createdAt", DESCENDING)],
    "hot": [("likes", DESCENDING), ("views", DESCENDING), ("createdAt", DESCENDING)],
}


@dataclass(slots=True, frozen=True)
class RateLimitPolicy:
    """
    60초 고정 윈도 기반 요청 제한 정책.
    Fixed-window (60s) request limit policy.
    """

    route_id: str
    per_user: int
    per_anonymous: int
    window_sec: int = 60


RATE_LIMITS: Final[dict[str, RateLimitPolicy]] = {
    "like": RateLimitPolicy("community_like", per_user=60, per_anonymous=120),
    "report": RateLimitPolicy("community_report", per_user=5, per_anonymous=20),
    "view": RateLimitPolicy("community_view", per_user=120, per_anonymous=240),
}


# --- 요청 제한 / Rate limiting ---


def consume_rate_limit(
    db: Database,
    action: str,
    user_id: str | None,
    ip: str | None,
    now: datetime | None = None,
) -> ShopResult[int]:
    """
    현재 윈도의 카운트를 올리고, 한도를 넘으면 RATE_LIMITED.
    Increment the current window's counter; RATE_LIMITED when over.

    로그인 사용자는 사용자 키, 비로그인은 IP 키로 센다.
    """
    policy = RATE_LIMITS[action]
    if user_id:
        key, limit = f"user:{policy.route_id}:{user_id}", policy.per_user
    else:
        key, limit = f"ip:{policy.route_id}:{ip or 'unknown'}", policy.per_anonymous

    current = now or utc_now()
    epoch = int(current.replace(tzinfo=timezone.utc).timestamp())
    window_epoch = epoch - epoch % policy.window_sec
    window_start = datetime.fromtimestamp(window_epoch, tz=timezone.utc).replace(tzinfo=None)

    update = {
        "$setOnInsert": {"expireAt": window_start + timedelta(seconds=policy.window_sec * 2)},
        "$inc": {"count": 1},
        "$set": {"updatedAt": current},
    }
    try:
        doc = db.community_rate_limit_windows.find_one_and_update(
            {"key": key, "windowStart": window_start},
            update,
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
    except DuplicateKeyError:
        # 같은 윈도를 동시에 만든 경우 한 번 더 시도한다. / lost the upsert race
        doc = db.community_rate_limit_windows.find_one_and_update(
            {"key": key, "windowStart": window_start},
            update,
            return_document=ReturnDocument.AFTER,
        )

    count = int((doc or {}).get("count") or 0)
    if count > limit:
        retry_after = max(1, window_epoch + policy.window_sec - epoch)
        return fail(
            ShopErrorCode.RATE_LIMITED,
            "요청이 너무 많습니다. 잠시 후 다시 시도해 주세요.",
            routeId=policy.route_id,
            retryAfterSec=retry_after,
        )
    return Ok(count)


# --- 게시글 / Posts ---


def _display_name(db: Database, principal: Principal) -> str:
    user = db.users.find_one({"_id": principal.oid}, {"name": 1, "nickname": 1}) or {}
    return user.get("name") or user.get("nickname") or principal.email.split("@")[0] or "회원"


def _validate_post_fields(post_type: str, category: str, brand: str | None) -> ShopResult[None]:
    if category not in CATEGORIES:
        return fail(ShopErrorCode.INVALID_INPUT, "카테고리 값이 올바르지 않습니다.")
    if post_type == "market" and category in BRAND_REQUIRED_MARKET_CATEGORIES and not (brand or "").strip():
        return fail(ShopErrorCode.INVALID_INPUT, "라켓/스트링 거래글은 브랜드를 선택해 주세요.")
    return Ok(None)


def _next_post_no(db: Database, post_type: str) -> int:
    counter = db.counters.find_one_and_update(
        {"_id": f"community_{post_type}"},
        {"$inc": {"seq": 1}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return int(counter["seq"])


def serialize_post(doc: dict[str, Any]) -> dict[str, Any]:
    body = to_jsonable(doc)
    body.setdefault("brand", None)
    body.setdefault("category", "general")
    body.setdefault("images", [])
    body.setdefault("views", 0)
    body.setdefault("likes", 0)
    body.setdefault("commentsCount", 0)
    return body


def create_post(db: Database, principal: Principal, request: PostCreateRequest) -> ShopResult[dict[str, Any]]:
    title = request.title.strip()
    content = sanitize_html(request.content).strip()
    if not title or not content:
        return fail(ShopErrorCode.INVALID_INPUT, "제목과 내용을 입력해 주세요.")
    match _validate_post_fields(request.type, request.category, request.brand):
        case Ok():
            pass
        case Err() as err:
            return err

    now = utc_now()
    doc: dict[str, Any] = {
        "type": request.type,
        "postNo": _next_post_no(db, request.type),
        "title": title,
        "content": content,
        "brand": (request.brand or "").strip() or None,
        "category": request.category,
        "images": request.images,
        "userId": principal.oid,
        "nickname": _display_name(db, principal),
        "authorEmail": principal.email,
        "status": "public",
        "views": 0,
        "likes": 0,
        "commentsCount": 0,
        "createdAt": now,
        "updatedAt": now,
    }
    doc["_id"] = db.community_posts.insert_one(doc).inserted_id
    logger.info("community post created id=%s type=%s no=%s", doc["_id"], request.type, doc["postNo"])
    return Ok(serialize_post(doc))


def list_posts(
    db: Database,
    *,
    post_type: str | None = None,
    brand: str | None = None,
    q: str | None = None,
    sort: str = "latest",
    page: Any = 1,
    limit: Any = LIST_LIMIT_DEFAULT,
) -> dict[str, Any]:
    query: dict[str, Any] = {"status": "public"}
    if post_type:
        query["type"] = post_type
    if brand:
        query["brand"] = brand
    if q:
        pattern = re.escape(q.strip())
        query["$or"] = [
            {"title": {"$regex": pattern, "$options": "i"}},
            {"content": {"$regex": pattern, "$options": "i"}},
        ]

    page_no = clamp_page(page)
    size = clamp_limit(limit, LIST_LIMIT_DEFAULT, LIST_LIMIT_MAX)
    cursor = (
        db.community_posts.find(query)
        .sort(_SORTS.get(sort, _SORTS["latest"]))
        .skip(skip_for(page_no, size))
        .limit(size)
    )
    return {
        "items": [serialize_post(doc) for doc in cursor],
        "total": db.community_posts.count_documents(query),
        "page": page_no,
        "limit": size,
    }


def _find_post(db: Database, id_or_no: str, post_type: str | None) -> dict[str, Any] | None:
    if ObjectId.is_valid(id_or_no):
        return db.community_posts.find_one({"_id": ObjectId(id_or_no)})
    if id_or_no.isdigit() and post_type:
        return db.community_posts.find_one({"type": post_type, "postNo": int(id_or_no)})
    return None


def _can_see(post: dict[str, Any], principal: Principal | None) -> bool:
    match post.get("status", "public"):
        case "public":
            return True
        case "hidden":
            return principal is not None and (principal.is_admin or post.get("userId") == principal.oid)
        case _:
            return False


def get_post(
    db: Database,
    id_or_no: str,
    post_type: str | None = None,
    principal: Principal | None = None,
) -> ShopResult[dict[str, Any]]:
    """
    ObjectId 또는 (postNo + type) 으로 글을 조회한다.
    숨김 글은 작성자/관리자에게만 보인다.
    """
    post = _find_post(db, id_or_no, post_type)
    if post is None or not _can_see(post, principal):
        return fail(ShopErrorCode.NOT_FOUND, "게시글을 찾을 수 없습니다.")

    body = serialize_post(post)
    body["likedByMe"] = bool(
        principal
        and db.community_likes.find_one({"postId": post["_id"], "userId": principal.oid}, {"_id": 1}),
    )
    return Ok(body)


def _parse_client_date(value: str) -> datetime | None:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def update_post(
    db: Database,
    principal: Principal,
    post_id: ObjectId,
    request: PostUpdateRequest,
) -> ShopResult[dict[str, Any]]:
    post = db.community_posts.find_one({"_id": post_id, "status": {"$ne": "deleted"}})
    if not post:
        return fail(ShopErrorCode.NOT_FOUND, "게시글을 찾을 수 없습니다.")
    if post.get("userId") != principal.oid:
        return fail(ShopErrorCode.FORBIDDEN, "작성자만 수정할 수 있습니다.")

    if request.client_seen_date:
        seen = _parse_client_date(request.client_seen_date)
        stored = post.get("updatedAt")
        if seen is not None and stored is not None and seen < stored:
            return fail(ShopErrorCode.CONFLICT, "다른 곳에서 글이 수정되었습니다. 새로고침 후 다시 시도해 주세요.")

    updates: dict[str, Any] = {}
    if request.title is not None:
        updates["title"] = request.title.strip()
    if request.content is not None:
        content = sanitize_html(request.content).strip()
        if not content:
            return fail(ShopErrorCode.INVALID_INPUT, "내용을 입력해 주세요.")
        updates["content"] = content
    if request.brand is not None:
        updates["brand"] = request.brand.strip() or None
    if request.category is not None:
        updates["category"] = request.category
    if request.images is not None:
        updates["images"] = request.images

    match _validate_post_fields(
        post.get("type", "free"),
        updates.get("category", post.get("category", "general")),
        updates.get("brand", post.get("brand")),
    ):
        case Ok():
            pass
        case Err() as err:
            return err

    updates["updatedAt"] = utc_now()
    updated = db.community_posts.find_one_and_update(
        {"_id": post_id},
        {"$set": updates},
        return_document=ReturnDocument.AFTER,
    )
    return Ok(serialize_post(updated))


def delete_post(db: Database, principal: Principal, post_id: ObjectId) -> ShopResult[dict[str, Any]]:
    post = db.community_posts.find_one({"_id": post_id, "status": {"$ne": "deleted"}}, {"userId": 1})
    if not post:
        return fail(ShopErrorCode.NOT_FOUND, "게시글을 찾을 수 없습니다.")
    if not principal.is_admin and post.get("userId") != principal.oid:
        return fail(ShopErrorCode.FORBIDDEN, "삭제 권한이 없습니다.")

    now = utc_now()
    db.community_posts.update_one(
        {"_id": post_id},
        {"$set": {"status": "deleted", "deletedAt": now, "updatedAt": now}},
    )
    return Ok({"ok": True})


def toggle_like(db: Database, principal: Principal, post_id: ObjectId) -> ShopResult[dict[str, Any]]:
    """
    좋아요 토글. 유니크 (postId, userId) 삽입이 중복이면 좋아요 취소로 본다.
    Toggle a like; a duplicate insert means the user is unliking.
    """
    post = db.community_posts.find_one({"_id": post_id, "status": "public"}, {"_id": 1})
    if not post:
        return fail(ShopErrorCode.NOT_FOUND, "게시글을 찾을 수 없습니다.")

    try:
        db.community_likes.insert_one({"postId": post_id, "userId": principal.oid, "createdAt": utc_now()})
        liked = True
        db.community_posts.update_one({"_id": post_id}, {"$inc": {"likes": 1}})
    except DuplicateKeyError:
        liked = False
        removed = db.community_likes.delete_one({"postId": post_id, "userId": principal.oid})
        if removed.deleted_count:
            db.community_posts.update_one(
                {"_id": post_id, "likes": {"$gt": 0}},
                {"$inc": {"likes": -1}},
            )

    latest = db.community_posts.find_one({"_id": post_id}, {"likes": 1}) or {}
    return Ok({"ok": True, "liked": liked, "likes": int(latest.get("likes") or 0)})


def report(
    db: Database,
    principal: Principal,
    target_type: str,
    target_id: ObjectId,
    reason: str,
) -> ShopResult[dict[str, Any]]:
    reason = (reason or "").strip()
    if not 10 <= len(reason) <= 500:
        return fail(ShopErrorCode.INVALID_INPUT, "신고 사유는 10자 이상 500자 이하로 입력해 주세요.")

    match target_type:
        case "post":
            target = db.community_posts.find_one({"_id": target_id, "status": {"$ne": "deleted"}}, {"_id": 1})
            post_id = target_id
        case "comment":
            target = db.community_comments.find_one(
                {"_id": target_id, "status": {"$ne": "deleted"}},
                {"postId": 1},
            )
            post_id = target.get("postId") if target else None
        case _:
            return fail(ShopErrorCode.INVALID_INPUT, "신고 대상이 올바르지 않습니다.")
    if not target:
        return fail(ShopErrorCode.NOT_FOUND, "신고 대상을 찾을 수 없습니다.")

    now = utc_now()
    recent = db.community_reports.find_one(
        {
            "reporterId": principal.oid,
            "targetType": target_type,
            "targetId": target_id,
            "createdAt": {"$gte": now - REPORT_COOLDOWN},
        },
        {"_id": 1},
    )
    if recent:
        return fail(ShopErrorCode.RATE_LIMITED, "같은 대상은 5분 후에 다시 신고할 수 있습니다.")

    inserted = db.community_reports.insert_one(
        {
            "targetType": target_type,
            "targetId": target_id,
            "postId": post_id,
            "reporterId": principal.oid,
            "reporterEmail": principal.email,
            "reason": reason,
            "status": "pending",
            "createdAt": now,
        },
    )
    return Ok({"ok": True, "id": str(inserted.inserted_id)})


def viewer_key(principal: Principal | None, ip: str | None, user_agent: str | None, same_origin: bool) -> str | None:
    """
    조회수 중복 제거 키. 로그인: u:{id}, 비로그인 same-origin: ipua:{해시}.
    그 외 비로그인 요청은 세지 않는다 (None).
    """
    if principal is not None:
        return f"u:{principal.id}"
    if not same_origin:
        return None
    digest = hashlib.sha256(f"{ip or ''}|{user_agent or ''}".encode("utf-8")).hexdigest()
    return f"ipua:{digest[:16]}"


def register_view(
    db: Database,
    post_id: ObjectId,
    principal: Principal | None,
    ip: str | None,
    user_agent: str | None,
    same_origin: bool,
) -> ShopResult[dict[str, Any]]:
    post = db.community_posts.find_one({"_id": post_id, "status": "public"}, {"views": 1})
    if not post:
        return fail(ShopErrorCode.NOT_FOUND, "게시글을 찾을 수 없습니다.")

    key = viewer_key(principal, ip, user_agent, same_origin)
    if key is None:
        return Ok({"ok": True, "counted": False, "views": int(post.get("views") or 0)})

    try:
        db.community_post_views.insert_one({"postId": post_id, "viewerKey": key, "createdAt": utc_now()})
        counted = True
    except DuplicateKeyError:
        counted = False

    if counted:
        post = db.community_posts.find_one_and_update(
            {"_id": post_id},
            {"$inc": {"views": 1}},
            projection={"views": 1},
            return_document=ReturnDocument.AFTER,
        )
    return Ok({"ok": True, "counted": counted, "views": int((post or {}).get("views") or 0)})


# --- 댓글 / Comments ---


def list_comments(
    db: Database,
    post_id: ObjectId,
    page: Any = 1,
    limit: Any = COMMENT_LIMIT_DEFAULT,
) -> dict[str, Any]:
    page_no = clamp_page(page)
    size = clamp_limit(limit, COMMENT_LIMIT_DEFAULT, COMMENT_LIMIT_MAX)
    query = {"postId": post_id, "status": "public"}
    cursor = (
        db.community_comments.find(query)
        .sort([("createdAt", ASCENDING), ("_id", ASCENDING)])
        .skip(skip_for(page_no, size))
        .limit(size)
    )
    return {
        "items": [to_jsonable(doc) for doc in cursor],
        "total": db.community_comments.count_documents(query),
        "page": page_no,
        "limit": size,
    }


def create_comment(
    db: Database,
    principal: Principal,
    post_id: ObjectId,
    content: str,
) -> ShopResult[dict[str, Any]]:
    content = (content or "").strip()
    if not 1 <= len(content) <= 1000:
        return fail(ShopErrorCode.INVALID_INPUT, "댓글은 1자 이상 1000자 이하로 입력해 주세요.")
    post = db.community_posts.find_one({"_id": post_id, "status": "public"}, {"_id": 1})
    if not post:
        return fail(ShopErrorCode.NOT_FOUND, "게시글을 찾을 수 없습니다.")

    now = utc_now()
    doc = {
        "postId": post_id,
        "userId": principal.oid,
        "nickname": _display_name(db, principal),
        "content": content,
        "status": "public",
        "createdAt": now,
        "updatedAt": now,
    }
    doc["_id"] = db.community_comments.insert_one(doc).inserted_id
    db.community_posts.update_one({"_id": post_id}, {"$inc": {"commentsCount": 1}})
    return Ok(to_jsonable(doc))


def _mark_comment_deleted(db: Database, comment: dict[str, Any]) -> bool:
    result = db.community_comments.update_one(
        {"_id": comment["_id"], "status": {"$ne": "deleted"}},
        {"$set": {"status": "deleted", "deletedAt": utc_now()}},
    )
    if result.modified_count == 0:
        return False
    db.community_posts.update_one(
        {"_id": comment.get("postId"), "commentsCount": {"$gt": 0}},
        {"$inc": {"commentsCount": -1}},
    )
    return True


def delete_comment(db: Database, principal: Principal, comment_id: ObjectId) -> ShopResult[dict[str, Any]]:
    comment = db.community_comments.find_one({"_id": comment_id, "status": {"$ne": "deleted"}})
    if not comment:
        return fail(ShopErrorCode.NOT_FOUND, "댓글을 찾을 수 없습니다.")
    if not principal.is_admin and comment.get("userId") != principal.oid:
        return fail(ShopErrorCode.FORBIDDEN, "삭제 권한이 없습니다.")
    _mark_comment_deleted(db, comment)
    return Ok({"ok": True})


# --- 관리자 / Admin ---


def list_reports(db: Database, status: str | None = None, page: Any = 1, limit: Any = 20) -> dict[str, Any]:
    query: dict[str, Any] = {"status": status} if status else {}
    page_no = clamp_page(page)
    size = clamp_limit(limit, 20, LIST_LIMIT_MAX)
    cursor = (
        db.community_reports.find(query)
        .sort([("createdAt", DESCENDING), ("_id", DESCENDING)])
        .skip(skip_for(page_no, size))
        .limit(size)
    )
    return {
        "items": [to_jsonable(doc) for doc in cursor],
        "total": db.community_reports.count_documents(query),
        "page": page_no,
        "limit": size,
    }


def update_report_status(
    db: Database,
    admin: Principal,
    report_id: ObjectId,
    action: str,
) -> ShopResult[dict[str, Any]]:
    """
    신고 처리: resolve / reject / resolve_hide_target.
    resolve_hide_target 은 글이면 숨김, 댓글이면 삭제 처리한다.
    """
    report_doc = db.community_reports.find_one({"_id": report_id})
    if not report_doc:
        return fail(ShopErrorCode.NOT_FOUND, "신고를 찾을 수 없습니다.")
    if report_doc.get("status") != "pending":
        return fail(ShopErrorCode.CONFLICT, "이미 처리된 신고입니다.")

    match action:
        case "resolve" | "resolve_hide_target":
            new_status = "resolved"
        case "reject":
            new_status = "rejected"
        case _:
            return fail(ShopErrorCode.INVALID_INPUT, "처리 방식이 올바르지 않습니다.")

    now = utc_now()
    audit = {
        "action": action,
        "adminId": admin.oid,
        "at": now,
        "targetType": report_doc.get("targetType"),
        "targetId": report_doc.get("targetId"),
    }
    result = db.community_reports.update_one(
        {"_id": report_id, "status": "pending"},
        {"$set": {"status": new_status, "resolvedAt": now, "moderationAudit": audit}},
    )
    if result.matched_count == 0:
        return fail(ShopErrorCode.CONFLICT, "이미 처리된 신고입니다.")

    if action == "resolve_hide_target":
        target_id = report_doc.get("targetId")
        if report_doc.get("targetType") == "post":
            db.community_posts.update_one(
                {"_id": target_id, "status": "public"},
                {"$set": {"status": "hidden", "updatedAt": now}},
            )
        else:
            comment = db.community_comments.find_one({"_id": target_id})
            if comment:
                _mark_comment_deleted(db, comment)

    logger.info("report %s processed action=%s admin=%s", report_id, action, admin.id)
    return Ok({"ok": True, "status": new_status})


def admin_list_posts(
    db: Database,
    *,
    status: str | None = None,
    post_type: str | None = None,
    q: str | None = None,
    page: Any = 1,
    limit: Any = 20,
) -> dict[str, Any]:
    query: dict[str, Any] = {}
    if status:
        query["status"] = status
    if post_type:
        query["type"] = post_type
    if q:
        query["title"] = {"$regex": re.escape(q.strip()), "$options": "i"}

    page_no = clamp_page(page)
    size = clamp_limit(limit, 20, LIST_LIMIT_MAX)
    cursor = (
        db.community_posts.find(query)
        .sort([("createdAt", DESCENDING), ("_id", DESCENDING)])
        .skip(skip_for(page_no, size))
        .limit(size)
    )
    return {
        "items": [serialize_post(doc) for doc in cursor],
        "total": db.community_posts.count_documents(query),
        "page": page_no,
        "limit": size,
    }


def admin_update_post(db: Database, post_id: ObjectId, status: str) -> ShopResult[dict[str, Any]]:
    if status not in ("public", "hidden"):
        return fail(ShopErrorCode.INVALID_INPUT, "상태 값이 올바르지 않습니다.")
    updated = db.community_posts.find_one_and_update(
        {"_id": post_id, "status": {"$ne": "deleted"}},
        {"$set": {"status": status, "updatedAt": utc_now()}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        return fail(ShopErrorCode.NOT_FOUND, "게시글을 찾을 수 없습니다.")
    return Ok(serialize_post(updated))


def author_overview(db: Database, user_id: ObjectId) -> ShopResult[dict[str, Any]]:
    user = db.users.find_one({"_id": user_id, "isDeleted": {"$ne": True}}, {"name": 1, "nickname": 1})
    if not user:
        return fail(ShopErrorCode.USER_NOT_FOUND, "사용자를 찾을 수 없습니다.")

    public_posts = {"userId": user_id, "status": "public"}
    recent = (
        db.community_posts.find(public_posts, {"title": 1, "type": 1, "postNo": 1, "createdAt": 1})
        .sort([("createdAt", DESCENDING)])
        .limit(5)
    )
    return Ok(
        {
            "userId": str(user_id),
            "nickname": user.get("nickname") or user.get("name") or "회원",
            "postCount": db.community_posts.count_documents(public_posts),
            "commentCount": db.community_comments.count_documents({"userId": user_id, "status": "public"}),
            "recentPosts": [to_jsonable(doc) for doc in recent],
        },
    )
