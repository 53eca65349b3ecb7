"""
상품/교체 서비스 리뷰.

- 상품 리뷰는 구매한 회원만, 사용자 x 상품 당 1건
- 교체 서비스 리뷰는 본인 신청서에만, 사용자 x 신청서 당 1건
- 작성 시 REVIEW_REWARD_POINTS 적립 (refKey "review:<id>"), 관리자 삭제 시 회수
- 상품 리뷰가 바뀌면 products.ratingAvg / ratingCount 를 다시 계산한다

Product and stringing-service reviews with a one-off points reward.
"""

import logging
import re
from typing import Any, Final

from bson import ObjectId
from pymongo import DESCENDING
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

from shop_core import Err, Ok, clamp_limit, clamp_page, skip_for, to_jsonable, utc_now

from tennis_shop.errors import ShopErrorCode, ShopResult, fail
from tennis_shop.models.model_io_reviews import (
    AdminReviewUpdateRequest,
    ReviewCreateRequest,
    ReviewUpdateRequest,
)
from tennis_shop.principal import Principal
from tennis_shop.services.service_points import REVIEW_REWARD_POINTS, deduct_points, grant_points

logger = logging.getLogger(__name__)


CONTENT_MAX: Final[int] = 2000
PHOTOS_MAX: Final[int] = 5
LIST_LIMIT_DEFAULT: Final[int] = 10
LIST_LIMIT_MAX: Final[int] = 50
SERVICE_STRINGING: Final[str] = "stringing"
REWARD_TYPES: Final[dict[str, str]] = {
    "product": "review_reward_product",
    "service": "review_reward_service",
}
# 취소/환불된 주문으로는 리뷰를 쓸 수 없다
_VOID_ORDER_STATUSES: Final[tuple[str, ...]] = ("취소", "환불")


def _review_kind(doc: dict[str, Any]) -> str:
    return "product" if doc.get("productId") else "service"


def _serialize(doc: dict[str, Any], voted: bool | None = None) -> dict[str, Any]:
    out = to_jsonable(
        {
            "_id": doc["_id"],
            "type": _review_kind(doc),
            "userId": doc.get("userId"),
            "userName": doc.get("userName"),
            "productId": doc.get("productId"),
            "orderId": doc.get("orderId"),
            "service": doc.get("service"),
            "serviceApplicationId": doc.get("serviceApplicationId"),
            "rating": int(doc.get("rating") or 0),
            "content": doc.get("content") or "",
            "photos": doc.get("photos") or [],
            "status": "hidden" if doc.get("status") == "hidden" else "visible",
            "helpfulCount": int(doc.get("helpfulCount") or 0),
            "createdAt": doc.get("createdAt"),
            "updatedAt": doc.get("updatedAt"),
        },
    )
    if voted is not None:
        out["votedByMe"] = voted
    return out


def _clean_photos(photos: list[str]) -> list[str]:
    seen: list[str] = []
    for url in photos:
        url = (url or "").strip()
        if url.startswith(("http://", "https://")) and url not in seen:
            seen.append(url)
    return seen[:PHOTOS_MAX]


def _clean_content(content: str) -> ShopResult[str]:
    content = (content or "").strip()
    if not content:
        return fail(ShopErrorCode.INVALID_INPUT, "리뷰 내용을 입력해주세요.")
    if len(content) > CONTENT_MAX:
        return fail(ShopErrorCode.INVALID_INPUT, f"리뷰는 {CONTENT_MAX}자 이하로 입력해주세요.")
    return Ok(content)


def _validate_body(rating: int, content: str) -> ShopResult[tuple[int, str]]:
    if not 1 <= int(rating or 0) <= 5:
        return fail(ShopErrorCode.INVALID_INPUT, "별점은 1~5 사이여야 합니다.")
    match _clean_content(content):
        case Ok(value=cleaned):
            return Ok((int(rating), cleaned))
        case Err() as err:
            return err


def refresh_product_rating(db: Database, product_id: ObjectId) -> None:
    """
    공개 리뷰 기준으로 상품 별점 평균(소수 첫째 자리)과 리뷰 수를 다시 계산한다.
    Recompute a product's rating average and count from its visible reviews.
    """
    ratings: list[int] = []
    last = None
    for review in db.reviews.find(
        {"productId": product_id, "status": "visible", "isDeleted": {"$ne": True}},
        {"rating": 1, "createdAt": 1},
    ):
        ratings.append(int(review.get("rating") or 0))
        created = review.get("createdAt")
        if created and (last is None or created > last):
            last = created

    if not ratings:
        db.products.update_one(
            {"_id": product_id},
            {"$set": {"ratingAvg": 0, "ratingCount": 0}, "$unset": {"lastReviewAt": ""}},
        )
        return
    db.products.update_one(
        {"_id": product_id},
        {
            "$set": {
                "ratingAvg": round(sum(ratings) / len(ratings), 1),
                "ratingCount": len(ratings),
                "lastReviewAt": last,
            },
        },
    )


def _grant_reward(db: Database, user_id: ObjectId, review_id: ObjectId, kind: str) -> int:
    """
    리뷰 적립금. 실패해도 리뷰 작성은 성공으로 두고 경고만 남긴다.
    """
    try:
        result = grant_points(
            db,
            user_id,
            REVIEW_REWARD_POINTS,
            REWARD_TYPES[kind],
            ref_key=f"review:{review_id}",
            ref={"reviewId": review_id},
            reason="리뷰 작성 적립",
        )
    except PyMongoError as exc:
        logger.warning("review reward failed review=%s: %s", review_id, exc)
        return 0

    match result:
        case Ok(value=outcome) if outcome.applied:
            return outcome.amount
        case Ok():
            return 0
        case Err(error=error):
            logger.warning("review reward failed review=%s: %s", review_id, error.message)
            return 0


def _has_purchased(db: Database, user_id: ObjectId, product_id: ObjectId, order_id: ObjectId | None) -> bool:
    query: dict[str, Any] = {
        "userId": user_id,
        "items.productId": product_id,
        "status": {"$nin": list(_VOID_ORDER_STATUSES)},
    }
    if order_id is not None:
        query["_id"] = order_id
    return db.orders.find_one(query, {"_id": 1}) is not None


def create_review(db: Database, principal: Principal, request: ReviewCreateRequest) -> ShopResult[dict[str, Any]]:
    """
    리뷰 작성.

    1) 별점 1~5, 내용 필수 (INVALID_INPUT)
    2) 상품 리뷰: 구매 이력이 없으면 FORBIDDEN, 이미 작성했으면 DUPLICATE
    3) 서비스 리뷰: 본인 신청서가 아니면 FORBIDDEN, 이미 작성했으면 DUPLICATE
    4) 저장 후 상품 별점 재계산, 적립금 지급
    """
    match _validate_body(request.rating, request.content):
        case Ok(value=(rating, content)):
            pass
        case Err() as err:
            return err

    user_id = principal.oid
    doc: dict[str, Any]
    if request.product_id:
        if not ObjectId.is_valid(request.product_id):
            return fail(ShopErrorCode.INVALID_ID, "상품 ID 형식이 올바르지 않습니다.")
        if request.order_id and not ObjectId.is_valid(request.order_id):
            return fail(ShopErrorCode.INVALID_ID, "주문 ID 형식이 올바르지 않습니다.")
        product_id = ObjectId(request.product_id)
        order_id = ObjectId(request.order_id) if request.order_id else None
        if not _has_purchased(db, user_id, product_id, order_id):
            return fail(ShopErrorCode.FORBIDDEN, "구매한 상품에만 리뷰를 작성할 수 있습니다.", reason="notPurchased")
        if db.reviews.find_one({"userId": user_id, "productId": product_id}, {"_id": 1}):
            return fail(ShopErrorCode.DUPLICATE, "이미 리뷰를 작성한 상품입니다.")
        doc = {"productId": product_id}
        if order_id is not None:
            doc["orderId"] = order_id
    elif request.service:
        if request.service != SERVICE_STRINGING:
            return fail(ShopErrorCode.INVALID_INPUT, "지원하지 않는 서비스입니다.")
        if not request.service_application_id or not ObjectId.is_valid(request.service_application_id):
            return fail(ShopErrorCode.INVALID_ID, "신청서 ID 가 필요합니다.")
        application_id = ObjectId(request.service_application_id)
        application = db.stringing_applications.find_one({"_id": application_id}, {"userId": 1, "status": 1})
        if not application or application.get("userId") != user_id or application.get("status") == "draft":
            return fail(ShopErrorCode.FORBIDDEN, "본인 신청서에만 리뷰를 작성할 수 있습니다.")
        if db.reviews.find_one(
            {"userId": user_id, "service": SERVICE_STRINGING, "serviceApplicationId": application_id},
            {"_id": 1},
        ):
            return fail(ShopErrorCode.DUPLICATE, "이미 리뷰를 작성한 신청서입니다.")
        doc = {"service": SERVICE_STRINGING, "serviceApplicationId": application_id}
    else:
        return fail(ShopErrorCode.INVALID_INPUT, "productId 또는 service 가 필요합니다.")

    user = db.users.find_one({"_id": user_id}, {"name": 1}) or {}
    now = utc_now()
    doc.update(
        {
            "userId": user_id,
            "userName": user.get("name"),
            "rating": rating,
            "content": content,
            "photos": _clean_photos(request.photos),
            "status": "visible",
            "helpfulCount": 0,
            "createdAt": now,
            "updatedAt": now,
        },
    )
    try:
        review_id = db.reviews.insert_one(doc).inserted_id
    except DuplicateKeyError:
        return fail(ShopErrorCode.DUPLICATE, "이미 리뷰를 작성했습니다.")

    kind = _review_kind(doc)
    if kind == "product":
        refresh_product_rating(db, doc["productId"])
    earned = _grant_reward(db, user_id, review_id, kind)
    logger.info("review created id=%s kind=%s user=%s", review_id, kind, user_id)
    return Ok({"ok": True, "id": str(review_id), "earnedPoints": earned})


def review_eligibility(
    db: Database,
    principal: Principal,
    product_id: str | None = None,
    service: str | None = None,
    application_id: str | None = None,
) -> ShopResult[dict[str, Any]]:
    """
    작성 가능 여부. reason 은 notPurchased / already / forbidden 중 하나.
    Whether the user may write a review, with the blocking reason.
    """
    user_id = principal.oid
    if product_id:
        if not ObjectId.is_valid(product_id):
            return fail(ShopErrorCode.INVALID_ID, "상품 ID 형식이 올바르지 않습니다.")
        oid = ObjectId(product_id)
        if not _has_purchased(db, user_id, oid, None):
            return Ok({"eligible": False, "reason": "notPurchased"})
        if db.reviews.find_one({"userId": user_id, "productId": oid}, {"_id": 1}):
            return Ok({"eligible": False, "reason": "already"})
        return Ok({"eligible": True, "reason": None})

    if service == SERVICE_STRINGING:
        applications = list(
            db.stringing_applications.find(
                {"userId": user_id, "status": {"$ne": "draft"}},
                {"_id": 1},
            ).sort("createdAt", DESCENDING),
        )
        if not applications:
            return Ok({"eligible": False, "reason": "notPurchased"})
        reviewed = {
            review.get("serviceApplicationId")
            for review in db.reviews.find(
                {"userId": user_id, "service": SERVICE_STRINGING},
                {"serviceApplicationId": 1},
            )
        }
        if application_id and ObjectId.is_valid(application_id):
            target = ObjectId(application_id)
            if all(app["_id"] != target for app in applications):
                return Ok({"eligible": False, "reason": "forbidden"})
            if target in reviewed:
                return Ok({"eligible": False, "reason": "already"})
            return Ok({"eligible": True, "reason": None})
        candidate = next((app["_id"] for app in applications if app["_id"] not in reviewed), None)
        if candidate is None:
            return Ok({"eligible": False, "reason": "already"})
        return Ok({"eligible": True, "reason": None, "suggestedApplicationId": str(candidate)})

    return fail(ShopErrorCode.INVALID_INPUT, "productId 또는 service 가 필요합니다.")


def list_reviews(
    db: Database,
    principal: Principal | None,
    *,
    product_id: ObjectId | None = None,
    service: str | None = None,
    page: Any = 1,
    limit: Any = LIST_LIMIT_DEFAULT,
) -> dict[str, Any]:
    """공개 리뷰 목록 (최신순). / Visible reviews, newest first."""
    query: dict[str, Any] = {"status": "visible", "isDeleted": {"$ne": True}}
    if product_id is not None:
        query["productId"] = product_id
    elif service:
        query["service"] = service

    page_no = clamp_page(page)
    size = clamp_limit(limit, LIST_LIMIT_DEFAULT, LIST_LIMIT_MAX)
    docs = list(
        db.reviews.find(query)
        .sort([("createdAt", DESCENDING), ("_id", DESCENDING)])
        .skip(skip_for(page_no, size))
        .limit(size),
    )
    voted: set[ObjectId] = set()
    if principal is not None and docs:
        voted = {
            vote["reviewId"]
            for vote in db.review_votes.find(
                {"userId": principal.oid, "reviewId": {"$in": [doc["_id"] for doc in docs]}},
                {"reviewId": 1},
            )
        }
    return {
        "items": [
            _serialize(doc, voted=doc["_id"] in voted if principal is not None else None) for doc in docs
        ],
        "total": db.reviews.count_documents(query),
        "page": page_no,
        "limit": size,
    }


def list_my_reviews(db: Database, principal: Principal, page: Any = 1, limit: Any = LIST_LIMIT_DEFAULT) -> dict[str, Any]:
    query = {"userId": principal.oid, "isDeleted": {"$ne": True}}
    page_no = clamp_page(page)
    size = clamp_limit(limit, LIST_LIMIT_DEFAULT, LIST_LIMIT_MAX)
    cursor = (
        db.reviews.find(query)
        .sort([("createdAt", DESCENDING), ("_id", DESCENDING)])
        .skip(skip_for(page_no, size))
        .limit(size)
    )
    items = []
    for doc in cursor:
        item = _serialize(doc)
        if doc.get("productId"):
            product = db.products.find_one({"_id": doc["productId"]}, {"name": 1, "images": 1}) or {}
            item["target"] = {
                "type": "product",
                "name": product.get("name") or "상품",
                "image": (product.get("images") or [None])[0],
            }
        else:
            item["target"] = {"type": "service", "name": "서비스 리뷰", "image": None}
        items.append(item)
    return {"items": items, "total": db.reviews.count_documents(query), "page": page_no, "limit": size}


def order_review_items(db: Database, principal: Principal, order_id: ObjectId) -> ShopResult[dict[str, Any]]:
    """
    주문의 상품 품목별 리뷰 작성 여부와 다음에 쓸 상품.
    Per-item review status of one of the user's orders.
    """
    order = db.orders.find_one({"_id": order_id, "userId": principal.oid}, {"items": 1})
    if not order:
        return fail(ShopErrorCode.NOT_FOUND, "주문을 찾을 수 없습니다.")

    product_items = [item for item in order.get("items") or [] if item.get("kind", "product") == "product"]
    product_ids = [item["productId"] for item in product_items if item.get("productId")]
    reviewed = {
        review["productId"]
        for review in db.reviews.find(
            {"userId": principal.oid, "productId": {"$in": product_ids}},
            {"productId": 1},
        )
    }
    items = [
        {
            "productId": str(item["productId"]),
            "name": item.get("name") or "상품",
            "image": item.get("imageUrl"),
            "reviewed": item["productId"] in reviewed,
        }
        for item in product_items
        if item.get("productId")
    ]
    done = sum(1 for item in items if item["reviewed"])
    return Ok(
        {
            "ok": True,
            "orderId": str(order_id),
            "items": items,
            "counts": {"total": len(items), "reviewed": done, "remaining": len(items) - done},
            "nextProductId": next((item["productId"] for item in items if not item["reviewed"]), None),
        },
    )


def _apply_update(db: Database, review: dict[str, Any], changes: dict[str, Any]) -> ShopResult[dict[str, Any]]:
    if not changes:
        return fail(ShopErrorCode.INVALID_INPUT, "변경할 내용이 없습니다.")
    if "content" in changes:
        match _clean_content(changes["content"]):
            case Ok(value=content):
                changes["content"] = content
            case Err() as err:
                return err
    if "rating" in changes:
        changes["rating"] = max(1, min(5, int(changes["rating"])))

    changes["updatedAt"] = utc_now()
    db.reviews.update_one({"_id": review["_id"]}, {"$set": changes})
    if review.get("productId") and ("rating" in changes or "status" in changes):
        refresh_product_rating(db, review["productId"])
    return Ok({"ok": True})


def update_my_review(
    db: Database,
    principal: Principal,
    review_id: ObjectId,
    request: ReviewUpdateRequest,
) -> ShopResult[dict[str, Any]]:
    review = db.reviews.find_one({"_id": review_id, "isDeleted": {"$ne": True}})
    if not review or review.get("userId") != principal.oid:
        return fail(ShopErrorCode.FORBIDDEN, "본인 리뷰만 수정할 수 있습니다.")
    return _apply_update(db, review, request.model_dump(exclude_none=True))


def delete_my_review(db: Database, principal: Principal, review_id: ObjectId) -> ShopResult[dict[str, Any]]:
    """
    본인 리뷰 소프트 삭제. 적립금은 회수하지 않는다.
    Soft delete by the author; the reward stays.
    """
    review = db.reviews.find_one({"_id": review_id, "isDeleted": {"$ne": True}}, {"userId": 1, "productId": 1})
    if not review or review.get("userId") != principal.oid:
        return fail(ShopErrorCode.FORBIDDEN, "본인 리뷰만 삭제할 수 있습니다.")
    db.reviews.update_one(
        {"_id": review_id},
        {"$set": {"isDeleted": True, "deletedAt": utc_now(), "status": "hidden"}},
    )
    if review.get("productId"):
        refresh_product_rating(db, review["productId"])
    return Ok({"ok": True})


def toggle_helpful(
    db: Database,
    principal: Principal,
    review_id: ObjectId,
    desired: str | None = None,
) -> ShopResult[dict[str, Any]]:
    """
    "도움돼요" 투표. desired=on/off 면 그 상태를 보장하고, 없으면 토글한다.
    Helpful vote; `desired` makes the call idempotent, otherwise it toggles.
    """
    if not db.reviews.find_one({"_id": review_id, "isDeleted": {"$ne": True}}, {"_id": 1}):
        return fail(ShopErrorCode.NOT_FOUND, "리뷰를 찾을 수 없습니다.")

    key = {"reviewId": review_id, "userId": principal.oid}
    existing = db.review_votes.find_one(key, {"_id": 1})
    if desired in ("on", "off"):
        want = desired == "on"
    else:
        want = existing is None
    if want and existing is None:
        try:
            db.review_votes.insert_one({**key, "createdAt": utc_now()})
        except DuplicateKeyError:
            pass
    elif not want and existing is not None:
        db.review_votes.delete_one(key)

    count = db.review_votes.count_documents({"reviewId": review_id})
    db.reviews.update_one({"_id": review_id}, {"$set": {"helpfulCount": count}})
    return Ok({"ok": True, "voted": want, "helpfulCount": count})


def admin_list_reviews(
    db: Database,
    *,
    status: str | None = None,
    review_type: str | None = None,
    q: str | None = None,
    page: Any = 1,
    limit: Any = LIST_LIMIT_DEFAULT,
) -> dict[str, Any]:
    query: dict[str, Any] = {"isDeleted": {"$ne": True}}
    if status in ("visible", "hidden"):
        query["status"] = status
    if review_type == "product":
        query["productId"] = {"$exists": True}
    elif review_type == "service":
        query["productId"] = {"$exists": False}
    if q and q.strip():
        query["content"] = {"$regex": re.escape(q.strip()), "$options": "i"}

    page_no = clamp_page(page)
    size = clamp_limit(limit, LIST_LIMIT_DEFAULT, LIST_LIMIT_MAX)
    cursor = (
        db.reviews.find(query)
        .sort([("createdAt", DESCENDING), ("_id", DESCENDING)])
        .skip(skip_for(page_no, size))
        .limit(size)
    )
    return {
        "items": [_serialize(doc) for doc in cursor],
        "total": db.reviews.count_documents(query),
        "page": page_no,
        "limit": size,
    }


def admin_update_review(
    db: Database,
    review_id: ObjectId,
    request: AdminReviewUpdateRequest,
) -> ShopResult[dict[str, Any]]:
    review = db.reviews.find_one({"_id": review_id, "isDeleted": {"$ne": True}})
    if not review:
        return fail(ShopErrorCode.NOT_FOUND, "리뷰를 찾을 수 없습니다.")
    changes = request.model_dump(exclude_none=True)
    visibility = changes.pop("visibility", None)
    if visibility:
        changes["status"] = "visible" if visibility == "public" else "hidden"
    return _apply_update(db, review, changes)


def admin_delete_review(db: Database, review_id: ObjectId) -> ShopResult[dict[str, Any]]:
    """
    관리자 삭제: 소프트 삭제 후 작성 적립금을 회수한다 (잔액이 음수가 될 수 있음).
    Admin soft delete; the review reward is clawed back.
    """
    review = db.reviews.find_one({"_id": review_id, "isDeleted": {"$ne": True}}, {"userId": 1, "productId": 1})
    if not review:
        return fail(ShopErrorCode.NOT_FOUND, "리뷰를 찾을 수 없습니다.")

    db.reviews.update_one(
        {"_id": review_id},
        {"$set": {"isDeleted": True, "deletedAt": utc_now(), "status": "hidden"}},
    )

    revoked = 0
    ref_key = f"review:{review_id}"
    earned = db.points_transactions.find_one(
        {"userId": review["userId"], "refKey": ref_key, "status": "confirmed"},
        {"amount": 1, "type": 1},
    )
    if earned and int(earned.get("amount") or 0) > 0:
        try:
            result = deduct_points(
                db,
                review["userId"],
                int(earned["amount"]),
                earned["type"],
                ref_key=f"{ref_key}:revoke",
                ref={"reviewId": review_id},
                reason="리뷰 삭제로 인한 적립 회수",
                allow_negative_balance=True,
            )
        except PyMongoError as exc:
            logger.warning("review reward revoke failed review=%s: %s", review_id, exc)
        else:
            match result:
                case Ok(value=outcome) if outcome.applied:
                    revoked = -outcome.amount
                case Ok():
                    pass
                case Err(error=error):
                    logger.warning("review reward revoke failed review=%s: %s", review_id, error.message)

    if review.get("productId"):
        refresh_product_rating(db, review["productId"])
    logger.info("review deleted by admin id=%s revoked=%d", review_id, revoked)
    return Ok({"ok": True, "revokedPoints": revoked})
