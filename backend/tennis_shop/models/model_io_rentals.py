from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RentalCreateRequest(_CamelModel):
    racket_id: str
    days: Annotated[int, Field(description="대여 기간(일): 7, 15, 30 / Rental period in days.")] = 7


class RentalPaymentInput(_CamelModel):
    method: Literal["bank_transfer"] = "bank_transfer"
    bank: str | None = None
    depositor: str | None = None


class RentalShippingInput(_CamelModel):
    name: str
    phone: str
    postal_code: str
    address: str
    address_detail: str | None = None
    delivery_request: str | None = None


class RefundAccountInput(_CamelModel):
    bank: str
    account: str
    holder: str


class RentalPrepareRequest(_CamelModel):
    """
    결제 전 배송지/입금 정보 저장 요청.
    Save shipping and deposit info before payment.
    """

    payment: RentalPaymentInput | None = None
    shipping: RentalShippingInput | None = None
    refund_account: RefundAccountInput | None = None


class RentalPayRequest(_CamelModel):
    payment: RentalPaymentInput | None = None
    shipping: RentalShippingInput | None = None


class RentalOutRequest(_CamelModel):
    days: int | None = None
    courier: str | None = None
    tracking_number: str | None = None
