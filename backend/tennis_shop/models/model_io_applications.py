from typing import Annotated

from pydantic import BaseModel, Field


class StringLine(BaseModel):
    """
    신청서에 포함된 스트링 한 줄 (라켓 1자루 분량).
    One string line of an application (one racket's worth).
    """

    string_name: Annotated[
        str,
        Field(alias="stringName", description="스트링 이름 / String name."),
    ] = ""
    product_id: Annotated[
        str | None,
        Field(alias="productId", description="스트링 상품 ID / String product id."),
    ] = None
    mounting_fee: Annotated[
        int,
        Field(
            alias="mountingFee",
            ge=0,
            description="장착비(원) / Mounting fee in KRW.",
        ),
    ] = 0

    model_config = {"populate_by_name": True}


class ApplicationSubmitRequest(BaseModel):
    """
    스트링 교체 서비스 신청 요청 본문.
    Request body for submitting a stringing-service application.

    - orderId / rentalId 중 최대 하나만 연결할 수 있다.
    - lines 가 있으면 장착비는 lines 의 합계, 없으면 stringTypes 기준으로 계산한다.
    """

    model_config = {"populate_by_name": True}

    name: str = ""
    phone: str = ""
    email: str | None = None
    order_id: Annotated[str | None, Field(alias="orderId")] = None
    rental_id: Annotated[str | None, Field(alias="rentalId")] = None
    string_types: Annotated[
        list[str],
        Field(
            alias="stringTypes",
            description=(
                "스트링 상품 ID 목록 또는 'custom'.\n"
                "List of string product ids, or 'custom' for a customer-supplied string."
            ),
        ),
    ] = []
    lines: list[StringLine] = []
    custom_string_name: Annotated[str | None, Field(alias="customStringName")] = None
    racket_type: Annotated[str | None, Field(alias="racketType")] = None
    preferred_date: Annotated[
        str | None,
        Field(alias="preferredDate", description="희망 날짜 YYYY-MM-DD / Preferred date."),
    ] = None
    preferred_time: Annotated[
        str | None,
        Field(alias="preferredTime", description="희망 시간 HH:MM / Preferred time."),
    ] = None
    requirements: str | None = None
    package_opt_out: Annotated[
        bool,
        Field(
            alias="packageOptOut",
            description="패키지 이용권을 쓰지 않고 결제 / Skip package-pass usage.",
        ),
    ] = False


class ApplicationSubmitResponse(BaseModel):
    ok: bool = True
    application_id: Annotated[str, Field(serialization_alias="applicationId")]
    total_price: Annotated[int, Field(serialization_alias="totalPrice")]
    package_applied: Annotated[bool, Field(serialization_alias="packageApplied")] = False
    pass_remaining: Annotated[int | None, Field(serialization_alias="passRemaining")] = None


class ApplicationStatusUpdateRequest(BaseModel):
    status: str


class CancelRequestBody(BaseModel):
    """
    취소 요청 본문 (주문/대여/신청서 공용).
    Cancel request body shared by orders, rentals and applications.
    """

    model_config = {"populate_by_name": True}

    reason_code: Annotated[
        str | None,
        Field(alias="reasonCode", description="취소 사유 코드 / Reason code."),
    ] = None
    reason_text: Annotated[
        str | None,
        Field(alias="reasonText", description="상세 사유 / Free-text reason."),
    ] = None


class AdminMemoBody(BaseModel):
    model_config = {"populate_by_name": True}

    admin_memo: Annotated[str | None, Field(alias="adminMemo")] = None
