from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    """
    camelCase JSON 필드를 snake_case 속성으로 받는 공통 베이스.
    Base model accepting camelCase JSON for snake_case attributes.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class OrderItemInput(_CamelModel):
    product_id: Annotated[str, Field(description="상품 또는 중고 라켓 ID / Product or racket id.")]
    quantity: Annotated[int, Field(description="수량 / Quantity.")] = 1
    kind: Annotated[
        Literal["product", "racket"],
        Field(description="품목 종류 / Item kind."),
    ] = "product"


class ShippingInfo(_CamelModel):
    """
    배송 정보. deliveryMethod 가 '방문수령'이면 배송비가 없다.
    Shipping info; '방문수령' (store pickup) waives the shipping fee.
    """

    name: str
    phone: str
    address: str = ""
    address_detail: str | None = None
    postal_code: str | None = None
    delivery_method: str | None = None
    delivery_request: str | None = None
    with_string_service: Annotated[
        bool,
        Field(description="스트링 교체 서비스 포함 여부 / Include stringing service."),
    ] = False


class GuestInfo(_CamelModel):
    name: str
    phone: str
    email: str | None = None


class PaymentInfoInput(_CamelModel):
    bank: str | None = None
    depositor: str | None = None


class OrderCreateRequest(_CamelModel):
    """
    주문 생성 요청. 금액 필드는 서버에서 다시 계산하므로 받지 않는다.
    Order creation request; amounts are always recomputed on the server.
    """

    items: list[OrderItemInput] = []
    shipping_info: ShippingInfo | None = None
    guest_info: GuestInfo | None = None
    payment_info: PaymentInfoInput | None = None
    points_to_use: Annotated[
        int,
        Field(ge=0, description="사용할 적립금 / Points to spend on this order."),
    ] = 0
    service_pickup_method: str | None = None


class OrderStatusUpdateRequest(BaseModel):
    status: str


class ShippingUpdateRequest(_CamelModel):
    courier: str
    tracking_number: str


class OrderConfirmResponse(_CamelModel):
    """
    구매확정 결과. / Result of a purchase confirmation.
    """

    ok: bool = True
    earned_points: int = 0
    already: bool = False
    already_confirmed: bool = False
    points_granted: bool = False
    also_confirmed_services: int = 0


class GuestOrderLookupRequest(_CamelModel):
    """
    비회원 주문 조회. 이름과 함께 이메일 또는 전화번호 중 하나는 있어야 한다.
    Guest order lookup: the name plus an email or a phone number.
    """

    name: Annotated[str, Field(max_length=50)]
    email: Annotated[str | None, Field(max_length=254)] = None
    phone: str | None = None
    order_id: Annotated[
        str | None,
        Field(description="특정 주문만 조회 / Narrow the lookup to one order."),
    ] = None
