from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ProductCreateRequest(_CamelModel):
    """
    상품 등록 요청. meta.kind == "service_package" 이면 결제 시 패키지 이용권이 발급된다.
    Product creation; items whose meta.kind is "service_package" issue a pass when paid.
    """

    name: Annotated[str, Field(min_length=1)]
    brand: str | None = None
    category: str | None = None
    price: Annotated[int, Field(ge=0)]
    mounting_fee: Annotated[int, Field(ge=0)] = 0
    images: list[str] = []
    stock: Annotated[int, Field(ge=0)] = 0
    meta: dict[str, Any] | None = None


class ProductUpdateRequest(_CamelModel):
    name: str | None = None
    brand: str | None = None
    category: str | None = None
    price: Annotated[int | None, Field(ge=0)] = None
    mounting_fee: Annotated[int | None, Field(ge=0)] = None
    images: list[str] | None = None
    stock: Annotated[int | None, Field(ge=0)] = None
    meta: dict[str, Any] | None = None


class RacketCreateRequest(_CamelModel):
    brand: str
    model: str
    price: Annotated[int, Field(ge=0)] = 0
    rental_fee_by_days: Annotated[
        dict[str, int] | None,
        Field(description='기간별 대여료 {"7": 15000, ...} / Rental fee per period.'),
    ] = None
    deposit: Annotated[int, Field(ge=0)] = 0
    condition: str | None = None
    status: str = "available"
    quantity: Annotated[int, Field(ge=0)] = 1
    images: list[str] = []


class RacketUpdateRequest(_CamelModel):
    brand: str | None = None
    model: str | None = None
    price: Annotated[int | None, Field(ge=0)] = None
    rental_fee_by_days: dict[str, int] | None = None
    deposit: Annotated[int | None, Field(ge=0)] = None
    condition: str | None = None
    status: str | None = None
    quantity: Annotated[int | None, Field(ge=0)] = None
    images: list[str] | None = None
