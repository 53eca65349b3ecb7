from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from fastapi import HTTPException, status

from shop_core import Err, Result


class ShopErrorCode(str, Enum):
    """
    주문/대여/신청서/포인트/커뮤니티 처리 중 발생하는 에러 코드.
    Error codes raised by the shop's domain services.
    """

    INVALID_ID = "INVALID_ID"
    INVALID_INPUT = "INVALID_INPUT"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    ALREADY_CANCELED = "ALREADY_CANCELED"
    ALREADY_REQUESTED = "ALREADY_REQUESTED"
    NOT_REQUESTED = "NOT_REQUESTED"
    INSUFFICIENT_POINTS = "INSUFFICIENT_POINTS"
    INSUFFICIENT_STOCK = "INSUFFICIENT_STOCK"
    TRACKING_EXISTS = "TRACKING_EXISTS"

    UNAUTHORIZED = "UNAUTHORIZED"
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"

    FORBIDDEN = "FORBIDDEN"
    ACCOUNT_SUSPENDED = "ACCOUNT_SUSPENDED"
    CSRF_FAILED = "CSRF_FAILED"

    NOT_FOUND = "NOT_FOUND"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    PASS_NOT_FOUND = "PASS_NOT_FOUND"

    CONFLICT = "CONFLICT"
    INVALID_STATE = "INVALID_STATE"
    DUPLICATE = "DUPLICATE"
    ORDER_NOT_PAID = "ORDER_NOT_PAID"
    PASS_CONSUME_FAILED = "PASS_CONSUME_FAILED"

    RATE_LIMITED = "RATE_LIMITED"

    INTERNAL_ERROR = "INTERNAL_ERROR"


@dataclass(slots=True, frozen=True)
class ShopError:
    """
    서비스 계층의 도메인 에러 표현.
    Domain error representation for the service layer.

    - extra: 응답 본문에 함께 실어 보낼 부가 정보 (예: 재고 부족 상품명)
    - status_code: 코드 기본 상태를 덮어쓸 때만 지정
    """

    code: ShopErrorCode
    message: str
    extra: dict[str, Any] = field(default_factory=dict)
    status_code: int | None = None


type ShopResult[T] = Result[T, ShopError]


def fail(
    code: ShopErrorCode,
    message: str,
    *,
    status_code: int | None = None,
    **extra: Any,
) -> Err[ShopError]:
    """
    `Err(ShopError(...))` 를 짧게 만드는 헬퍼.
    Shorthand for building `Err(ShopError(...))`.
    """
    return Err(ShopError(code=code, message=message, extra=extra, status_code=status_code))


def _status_for(code: ShopErrorCode) -> int:
    match code:
        case (
            ShopErrorCode.INVALID_ID
            | ShopErrorCode.INVALID_INPUT
            | ShopErrorCode.INVALID_AMOUNT
            | ShopErrorCode.ALREADY_CANCELED
            | ShopErrorCode.ALREADY_REQUESTED
            | ShopErrorCode.NOT_REQUESTED
            | ShopErrorCode.INSUFFICIENT_POINTS
            | ShopErrorCode.INSUFFICIENT_STOCK
            | ShopErrorCode.TRACKING_EXISTS
        ):
            return status.HTTP_400_BAD_REQUEST
        case ShopErrorCode.UNAUTHORIZED | ShopErrorCode.INVALID_CREDENTIALS:
            return status.HTTP_401_UNAUTHORIZED
        case (
            ShopErrorCode.FORBIDDEN
            | ShopErrorCode.ACCOUNT_SUSPENDED
            | ShopErrorCode.CSRF_FAILED
        ):
            return status.HTTP_403_FORBIDDEN
        case (
            ShopErrorCode.NOT_FOUND
            | ShopErrorCode.USER_NOT_FOUND
            | ShopErrorCode.PASS_NOT_FOUND
        ):
            return status.HTTP_404_NOT_FOUND
        case (
            ShopErrorCode.CONFLICT
            | ShopErrorCode.INVALID_STATE
            | ShopErrorCode.DUPLICATE
            | ShopErrorCode.ORDER_NOT_PAID
            | ShopErrorCode.PASS_CONSUME_FAILED
        ):
            return status.HTTP_409_CONFLICT
        case ShopErrorCode.RATE_LIMITED:
            return status.HTTP_429_TOO_MANY_REQUESTS
        case _:
            # INTERNAL_ERROR 또는 알 수 없는 코드
            # INTERNAL_ERROR or unknown error code
            return status.HTTP_500_INTERNAL_SERVER_ERROR


def map_shop_error_to_http_exception(error: ShopError) -> HTTPException:
    """
    ShopError 를 HTTPException 으로 변환한다.
    Map a ShopError into an HTTPException.

    응답 본문: {"detail": {"error": <code>, "message": <msg>, ...extra}}
    """
    return HTTPException(
        status_code=error.status_code or _status_for(error.code),
        detail={"error": error.code.value, "message": error.message, **error.extra},
    )
