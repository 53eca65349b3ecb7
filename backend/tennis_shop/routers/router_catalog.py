from typing import Any

from fastapi import APIRouter, status

from shop_core import Err, Ok

from tennis_shop.dependencies import AdminDep, DatabaseDep, parse_path_id
from tennis_shop.errors import map_shop_error_to_http_exception
from tennis_shop.models.model_io_catalog import (
    ProductCreateRequest,
    ProductUpdateRequest,
    RacketCreateRequest,
    RacketUpdateRequest,
)
from tennis_shop.services import service_catalog

router = APIRouter()


def _unwrap(result: Any) -> dict[str, Any]:
    match result:
        case Ok(value=body):
            return body
        case Err(error=error):
            raise map_shop_error_to_http_exception(error)


# --- 상품 / Products ---


@router.get(
    "/products",
    summary="상품 목록 / List products",
)
def list_products_endpoint(
    db: DatabaseDep,
    q: str | None = None,
    category: str | None = None,
    brand: str | None = None,
    page: int = 1,
    limit: int = 12,
) -> dict[str, Any]:
    """
    삭제되지 않은 상품을 검색어/카테고리/브랜드로 조회한다.
    List non-deleted products filtered by keyword, category and brand.
    """
    return service_catalog.list_products(
        db, q=q, category=category, brand=brand, page=page, limit=limit,
    )


@router.get(
    "/products/{product_id}",
    summary="상품 상세 / Product detail",
)
def get_product_endpoint(product_id: str, db: DatabaseDep) -> dict[str, Any]:
    return _unwrap(service_catalog.get_product(db, parse_path_id(product_id)))


@router.post(
    "/admin/products",
    summary="상품 등록(관리자) / Create product (admin)",
    status_code=status.HTTP_201_CREATED,
)
def create_product_endpoint(
    request: ProductCreateRequest,
    _admin: AdminDep,
    db: DatabaseDep,
) -> dict[str, Any]:
    return service_catalog.create_product(db, request.model_dump(by_alias=True, exclude_none=True))


@router.patch(
    "/admin/products/{product_id}",
    summary="상품 수정(관리자) / Update product (admin)",
)
def update_product_endpoint(
    product_id: str,
    request: ProductUpdateRequest,
    _admin: AdminDep,
    db: DatabaseDep,
) -> dict[str, Any]:
    oid = parse_path_id(product_id)
    fields = request.model_dump(by_alias=True, exclude_none=True)
    return _unwrap(service_catalog.update_product(db, oid, fields))


@router.delete(
    "/admin/products/{product_id}",
    summary="상품 삭제(관리자, soft) / Soft-delete product (admin)",
)
def delete_product_endpoint(product_id: str, _admin: AdminDep, db: DatabaseDep) -> dict[str, Any]:
    return _unwrap(service_catalog.delete_product(db, parse_path_id(product_id)))


# --- 중고 라켓 / Used rackets ---


@router.get(
    "/rackets",
    summary="중고 라켓 목록 / List used rackets",
)
def list_rackets_endpoint(db: DatabaseDep, page: int = 1, limit: int = 12) -> dict[str, Any]:
    return service_catalog.list_rackets(db, page=page, limit=limit)


@router.get(
    "/rackets/{racket_id}",
    summary="중고 라켓 상세 / Used racket detail",
)
def get_racket_endpoint(racket_id: str, db: DatabaseDep) -> dict[str, Any]:
    return _unwrap(service_catalog.get_racket(db, parse_path_id(racket_id)))


@router.post(
    "/admin/rackets",
    summary="중고 라켓 등록(관리자) / Create used racket (admin)",
    status_code=status.HTTP_201_CREATED,
)
def create_racket_endpoint(
    request: RacketCreateRequest,
    _admin: AdminDep,
    db: DatabaseDep,
) -> dict[str, Any]:
    return service_catalog.create_racket(db, request.model_dump(by_alias=True, exclude_none=True))


@router.patch(
    "/admin/rackets/{racket_id}",
    summary="중고 라켓 수정(관리자) / Update used racket (admin)",
)
def update_racket_endpoint(
    racket_id: str,
    request: RacketUpdateRequest,
    _admin: AdminDep,
    db: DatabaseDep,
) -> dict[str, Any]:
    oid = parse_path_id(racket_id)
    fields = request.model_dump(by_alias=True, exclude_none=True)
    return _unwrap(service_catalog.update_racket(db, oid, fields))
