from typing import Annotated, Any, Literal

from fastapi import APIRouter, Query, status

from shop_core import Err, Ok

from tennis_shop.dependencies import (
    AdminDep,
    DatabaseDep,
    OptionalPrincipalDep,
    PrincipalDep,
    parse_path_id,
)
from tennis_shop.errors import map_shop_error_to_http_exception
from tennis_shop.models.model_io_reviews import (
    AdminReviewUpdateRequest,
    ReviewCreateRequest,
    ReviewUpdateRequest,
)
from tennis_shop.services import service_reviews

router = APIRouter()


def _unwrap(result: Any) -> dict[str, Any]:
    match result:
        case Ok(value=body):
            return body
        case Err(error=error):
            raise map_shop_error_to_http_exception(error)


@router.post(
    "/reviews",
    summary="리뷰 작성 / Write a review",
    status_code=status.HTTP_201_CREATED,
)
def create_review_endpoint(
    request: ReviewCreateRequest,
    principal: PrincipalDep,
    db: DatabaseDep,
) -> dict[str, Any]:
    """
    구매한 상품 또는 본인 교체 신청서에 리뷰를 남기고 적립금을 받는다.
    Review a purchased product or one's own stringing application; earns points.
    """
    return _unwrap(service_reviews.create_review(db, principal, request))


@router.get(
    "/reviews",
    summary="리뷰 목록 / Review list",
)
def list_reviews_endpoint(
    principal: OptionalPrincipalDep,
    db: DatabaseDep,
    product_id: Annotated[str | None, Query(alias="productId")] = None,
    service: str | None = None,
    page: int = 1,
    limit: int = 10,
) -> dict[str, Any]:
    product_oid = parse_path_id(product_id) if product_id else None
    return service_reviews.list_reviews(
        db,
        principal,
        product_id=product_oid,
        service=service,
        page=page,
        limit=limit,
    )


@router.get(
    "/reviews/mine",
    summary="내 리뷰 / My reviews",
)
def my_reviews_endpoint(
    principal: PrincipalDep,
    db: DatabaseDep,
    page: int = 1,
    limit: int = 10,
) -> dict[str, Any]:
    return service_reviews.list_my_reviews(db, principal, page, limit)


@router.get(
    "/reviews/eligibility",
    summary="리뷰 작성 가능 여부 / Review eligibility",
)
def review_eligibility_endpoint(
    principal: PrincipalDep,
    db: DatabaseDep,
    product_id: Annotated[str | None, Query(alias="productId")] = None,
    service: str | None = None,
    application_id: Annotated[str | None, Query(alias="applicationId")] = None,
) -> dict[str, Any]:
    return _unwrap(
        service_reviews.review_eligibility(
            db,
            principal,
            product_id=product_id,
            service=service,
            application_id=application_id,
        ),
    )


@router.patch(
    "/reviews/{review_id}",
    summary="내 리뷰 수정 / Edit my review",
)
def update_review_endpoint(
    review_id: str,
    request: ReviewUpdateRequest,
    principal: PrincipalDep,
    db: DatabaseDep,
) -> dict[str, Any]:
    oid = parse_path_id(review_id)
    return _unwrap(service_reviews.update_my_review(db, principal, oid, request))


@router.delete(
    "/reviews/{review_id}",
    summary="내 리뷰 삭제 / Delete my review",
)
def delete_review_endpoint(review_id: str, principal: PrincipalDep, db: DatabaseDep) -> dict[str, Any]:
    oid = parse_path_id(review_id)
    return _unwrap(service_reviews.delete_my_review(db, principal, oid))


@router.post(
    "/reviews/{review_id}/helpful",
    summary="도움돼요 / Helpful vote",
)
def helpful_endpoint(
    review_id: str,
    principal: PrincipalDep,
    db: DatabaseDep,
    desired: Literal["on", "off"] | None = None,
) -> dict[str, Any]:
    oid = parse_path_id(review_id)
    return _unwrap(service_reviews.toggle_helpful(db, principal, oid, desired))


@router.get(
    "/orders/{order_id}/review-items",
    summary="주문 품목별 리뷰 작성 현황 / Review status per order item",
)
def order_review_items_endpoint(order_id: str, principal: PrincipalDep, db: DatabaseDep) -> dict[str, Any]:
    oid = parse_path_id(order_id)
    return _unwrap(service_reviews.order_review_items(db, principal, oid))


@router.get(
    "/admin/reviews",
    summary="리뷰 목록(관리자) / Reviews (admin)",
)
def admin_list_reviews_endpoint(
    _admin: AdminDep,
    db: DatabaseDep,
    review_status: Annotated[str | None, Query(alias="status")] = None,
    review_type: Annotated[str | None, Query(alias="type")] = None,
    q: str | None = None,
    page: int = 1,
    limit: int = 10,
) -> dict[str, Any]:
    return service_reviews.admin_list_reviews(
        db,
        status=review_status,
        review_type=review_type,
        q=q,
        page=page,
        limit=limit,
    )


@router.patch(
    "/admin/reviews/{review_id}",
    summary="리뷰 수정/숨김(관리자) / Edit or hide a review (admin)",
)
def admin_update_review_endpoint(
    review_id: str,
    request: AdminReviewUpdateRequest,
    _admin: AdminDep,
    db: DatabaseDep,
) -> dict[str, Any]:
    oid = parse_path_id(review_id)
    return _unwrap(service_reviews.admin_update_review(db, oid, request))


@router.delete(
    "/admin/reviews/{review_id}",
    summary="리뷰 삭제(관리자) / Delete a review (admin)",
)
def admin_delete_review_endpoint(review_id: str, _admin: AdminDep, db: DatabaseDep) -> dict[str, Any]:
    """
    소프트 삭제 후 작성 적립금을 회수한다.
    Soft delete and claw back the review reward.
    """
    oid = parse_path_id(review_id)
    return _unwrap(service_reviews.admin_delete_review(db, oid))
