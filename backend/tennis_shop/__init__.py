"""
FastAPI 기반 테니스 샵 backend 애플리케이션 패키지.
Tennis shop backend application package built with FastAPI.

애플리케이션 엔트리(main), 설정(config), 도메인 서비스(services),
HTTP 라우터(routers)를 포함한다.
It contains the application entry (main), configuration, domain services,
and HTTP routers.
"""
