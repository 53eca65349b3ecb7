"""
backend 도메인 서비스/유즈케이스 패키지.
Backend domain services and use cases.

HTTP나 FastAPI에 직접 의존하지 않는 비즈니스 로직을 제공한다.
Services return `Ok` / `Err(ShopError)` and leave the HTTP mapping to routers.
"""
