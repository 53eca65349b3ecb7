from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ReviewCreateRequest(_CamelModel):
    """
    리뷰 작성 요청. productId(상품 리뷰) 또는 service="stringing" +
    serviceApplicationId(교체 서비스 리뷰) 중 하나를 보낸다.

    Review creation: either a product review (`productId`) or a stringing
    service review (`service` + `serviceApplicationId`).
    """

    rating: Annotated[int, Field(description="별점 1~5 / Star rating 1..5.")] = 0
    content: str = ""
    photos: Annotated[list[str], Field(description="사진 URL, 최대 5장 / Up to 5 photo URLs.")] = []
    product_id: str | None = None
    order_id: Annotated[
        str | None,
        Field(description="리뷰를 쓰는 주문 / Order the product review belongs to."),
    ] = None
    service: str | None = None
    service_application_id: str | None = None


class ReviewUpdateRequest(_CamelModel):
    content: str | None = None
    rating: int | None = None
    status: Literal["visible", "hidden"] | None = None


class AdminReviewUpdateRequest(ReviewUpdateRequest):
    """
    관리자 리뷰 수정. visibility 는 status 의 별칭(public=visible, private=hidden).
    """

    visibility: Literal["public", "private"] | None = None
