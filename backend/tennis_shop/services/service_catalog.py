"""
상품(스트링/용품) 및 중고 라켓 카탈로그 서비스.
Catalog service for products (strings, gear) and used rackets.
"""

import re
from typing import Any, Final

from bson import ObjectId
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database

from shop_core import Ok, clamp_limit, clamp_page, skip_for, to_jsonable, utc_now

from tennis_shop.errors import ShopErrorCode, ShopResult, fail


PRODUCT_LIMIT_DEFAULT: Final[int] = 12
PRODUCT_LIMIT_MAX: Final[int] = 50
RACKET_STATUSES: Final[tuple[str, ...]] = ("available", "sold", "rented", "inactive")


def list_products(
    db: Database,
    *,
    q: str | None = None,
    category: str | None = None,
    brand: str | None = None,
    page: Any = 1,
    limit: Any = PRODUCT_LIMIT_DEFAULT,
) -> dict[str, Any]:
    page_no = clamp_page(page)
    size = clamp_limit(limit, PRODUCT_LIMIT_DEFAULT, PRODUCT_LIMIT_MAX)

    query: dict[str, Any] = {"isDeleted": {"$ne": True}}
    if category:
        query["category"] = category
    if brand:
        query["brand"] = brand
    if q and q.strip():
        pattern = re.escape(q.strip())
        query["$or"] = [
            {"name": {"$regex": pattern, "$options": "i"}},
            {"brand": {"$regex": pattern, "$options": "i"}},
        ]

    cursor = (
        db.products.find(query)
        .sort([("createdAt", DESCENDING), ("_id", DESCENDING)])
        .skip(skip_for(page_no, size))
        .limit(size)
    )
    return {
        "items": [to_jsonable(doc) for doc in cursor],
        "total": db.products.count_documents(query),
        "page": page_no,
        "limit": size,
    }


def get_product(db: Database, product_id: ObjectId) -> ShopResult[dict[str, Any]]:
    doc = db.products.find_one({"_id": product_id, "isDeleted": {"$ne": True}})
    if not doc:
        return fail(ShopErrorCode.NOT_FOUND, "상품을 찾을 수 없습니다.")
    return Ok(to_jsonable(doc))


def create_product(db: Database, fields: dict[str, Any]) -> dict[str, Any]:
    now = utc_now()
    stock = int(fields.pop("stock", 0) or 0)
    doc = {
        **fields,
        "inventory": {"stock": stock},
        "sold": 0,
        "isDeleted": False,
        "createdAt": now,
        "updatedAt": now,
    }
    inserted = db.products.insert_one(doc)
    doc["_id"] = inserted.inserted_id
    return to_jsonable(doc)


def update_product(
    db: Database,
    product_id: ObjectId,
    fields: dict[str, Any],
) -> ShopResult[dict[str, Any]]:
    updates = {key: value for key, value in fields.items() if value is not None}
    if "stock" in updates:
        updates["inventory.stock"] = int(updates.pop("stock"))
    updates["updatedAt"] = utc_now()

    doc = db.products.find_one_and_update(
        {"_id": product_id, "isDeleted": {"$ne": True}},
        {"$set": updates},
        return_document=ReturnDocument.AFTER,
    )
    if doc is None:
        return fail(ShopErrorCode.NOT_FOUND, "상품을 찾을 수 없습니다.")
    return Ok(to_jsonable(doc))


def delete_product(db: Database, product_id: ObjectId) -> ShopResult[dict[str, Any]]:
    result = db.products.update_one(
        {"_id": product_id, "isDeleted": {"$ne": True}},
        {"$set": {"isDeleted": True, "deletedAt": utc_now()}},
    )
    if result.matched_count == 0:
        return fail(ShopErrorCode.NOT_FOUND, "상품을 찾을 수 없습니다.")
    return Ok({"ok": True})


# --- 중고 라켓 / Used rackets ---


def list_rackets(db: Database, *, page: Any = 1, limit: Any = PRODUCT_LIMIT_DEFAULT) -> dict[str, Any]:
    page_no = clamp_page(page)
    size = clamp_limit(limit, PRODUCT_LIMIT_DEFAULT, PRODUCT_LIMIT_MAX)
    query = {"status": {"$ne": "inactive"}}
    cursor = (
        db.used_rackets.find(query)
        .sort([("createdAt", DESCENDING), ("_id", DESCENDING)])
        .skip(skip_for(page_no, size))
        .limit(size)
    )
    return {
        "items": [to_jsonable(doc) for doc in cursor],
        "total": db.used_rackets.count_documents(query),
        "page": page_no,
        "limit": size,
    }


def get_racket(db: Database, racket_id: ObjectId) -> ShopResult[dict[str, Any]]:
    doc = db.used_rackets.find_one({"_id": racket_id})
    if not doc:
        return fail(ShopErrorCode.NOT_FOUND, "라켓을 찾을 수 없습니다.")
    return Ok(to_jsonable(doc))


def create_racket(db: Database, fields: dict[str, Any]) -> dict[str, Any]:
    now = utc_now()
    doc = {
        "status": "available",
        "quantity": 1,
        **{key: value for key, value in fields.items() if value is not None},
        "createdAt": now,
        "updatedAt": now,
    }
    inserted = db.used_rackets.insert_one(doc)
    doc["_id"] = inserted.inserted_id
    return to_jsonable(doc)


def update_racket(
    db: Database,
    racket_id: ObjectId,
    fields: dict[str, Any],
) -> ShopResult[dict[str, Any]]:
    updates = {key: value for key, value in fields.items() if value is not None}
    if "status" in updates and updates["status"] not in RACKET_STATUSES:
        return fail(ShopErrorCode.INVALID_INPUT, "라켓 상태 값이 올바르지 않습니다.")
    updates["updatedAt"] = utc_now()

    doc = db.used_rackets.find_one_and_update(
        {"_id": racket_id},
        {"$set": updates},
        return_document=ReturnDocument.AFTER,
    )
    if doc is None:
        return fail(ShopErrorCode.NOT_FOUND, "라켓을 찾을 수 없습니다.")
    return Ok(to_jsonable(doc))


def racket_display_name(racket: dict[str, Any] | None) -> str:
    if not racket:
        return "알 수 없는 라켓"
    name = f"{racket.get('brand') or ''} {racket.get('model') or ''}".strip()
    return name or "중고 라켓"


def sync_racket_status(db: Database, racket_id: ObjectId | None, status: str) -> None:
    """
    단품(quantity <= 1) 라켓의 상태를 대여 흐름에 맞춰 바꾼다.
    Sync a single-unit racket's status with the rental flow.
    """
    if racket_id is None:
        return
    db.used_rackets.update_one(
        {
            "_id": racket_id,
            "$or": [{"quantity": {"$lte": 1}}, {"quantity": {"$exists": False}}],
        },
        {"$set": {"status": status, "updatedAt": utc_now()}},
    )
