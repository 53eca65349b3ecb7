from dataclasses import dataclass


@dataclass(slots=True, frozen=True)
class Ok[T]:
    """
    서비스 호출이 성공했을 때의 값을 감싼다.

    Successful branch of a service Result.
    """

    # `case Ok(value=...)` / `case Ok(v)` 양쪽 모두 지원
    # Allow both keyword and positional matching.
    __match_args__ = ("value",)

    value: T


@dataclass(slots=True, frozen=True)
class Err[E]:
    """
    서비스 호출이 실패했을 때의 도메인 에러를 감싼다.

    Failed branch of a service Result, carrying a domain error.
    """

    __match_args__ = ("error",)

    error: E


type Result[T, E] = Ok[T] | Err[E]
"""
서비스 계층 경계에서 주고받는 값/에러 표현.

Value-or-error type returned across the service boundary.

- T: 성공 값 타입 (success type)
- E: 에러 타입 (error type, 보통 ShopError)
"""


def is_ok[T, E](result: Result[T, E]) -> bool:
    """Result 가 Ok 인지 확인한다. / True when the Result is Ok."""
    return isinstance(result, Ok)


def is_err[T, E](result: Result[T, E]) -> bool:
    """Result 가 Err 인지 확인한다. / True when the Result is Err."""
    return isinstance(result, Err)


def ok_or_none[T, E](result: Result[T, E]) -> T | None:
    """
    Ok 이면 값을, Err 이면 None 을 돌려준다.

    부수효과(포인트 적립, 알림 등)의 실패를 무시해도 되는 호출부에서 사용한다.
    Return the Ok value, or None for an Err. Used by callers that tolerate
    a failed side effect (points grant, notification, ...).
    """
    if isinstance(result, Ok):
        return result.value
    return None


__all__ = [
    "Ok",
    "Err",
    "Result",
    "is_ok",
    "is_err",
    "ok_or_none",
]
