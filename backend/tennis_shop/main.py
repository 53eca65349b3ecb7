import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError

from tennis_shop.config import Settings, get_settings
from tennis_shop.db import ensure_indexes, get_database
from tennis_shop.logging_config import configure_logging
from tennis_shop.routers.router_applications import router as router_applications
from tennis_shop.routers.router_auth import router as router_auth
from tennis_shop.routers.router_catalog import router as router_catalog
from tennis_shop.routers.router_community import router as router_community
from tennis_shop.routers.router_health import router as router_health
from tennis_shop.routers.router_messages import router as router_messages
from tennis_shop.routers.router_notifications import router as router_notifications
from tennis_shop.routers.router_orders import router as router_orders
from tennis_shop.routers.router_passes import router as router_passes
from tennis_shop.routers.router_points import router as router_points
from tennis_shop.routers.router_rentals import router as router_rentals
from tennis_shop.routers.router_reviews import router as router_reviews

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    시작 시 인덱스를 보장한다. 테스트 환경에서는 건너뛴다.
    Ensure indexes at startup; skipped in the test environment.
    """
    settings = get_settings()
    if settings.environment != "test":
        ensure_indexes(get_database())
        logger.info("indexes ensured db=%s", settings.mongodb_db_name)
    yield


async def handle_mongo_error(request: Request, exc: PyMongoError) -> JSONResponse:
    logger.exception("database error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"detail": {"error": "INTERNAL_ERROR", "message": "서버 오류가 발생했습니다."}},
    )


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title=settings.app_title,
        description=settings.app_description,
        version=settings.app_version,
        debug=settings.debug,
        lifespan=lifespan,
    )

    # CORS 설정 / CORS configuration
    # 쿠키 인증이므로 credentials 를 허용한다. 운영에서는 오리진을 좁혀서 쓴다.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(PyMongoError, handle_mongo_error)

    # 도메인 라우터 등록 / Register domain routers
    app.include_router(router_health, tags=["health"])
    app.include_router(router_auth, prefix="/api", tags=["auth"])
    app.include_router(router_catalog, prefix="/api", tags=["catalog"])
    app.include_router(router_orders, prefix="/api", tags=["orders"])
    app.include_router(router_rentals, prefix="/api", tags=["rentals"])
    app.include_router(router_reviews, prefix="/api", tags=["reviews"])
    app.include_router(router_applications, prefix="/api", tags=["applications"])
    app.include_router(router_passes, prefix="/api", tags=["passes"])
    app.include_router(router_points, prefix="/api", tags=["points"])
    app.include_router(router_messages, prefix="/api", tags=["messages"])
    app.include_router(router_community, prefix="/api", tags=["community"])
    app.include_router(router_notifications, prefix="/api", tags=["notifications"])
    return app


app = create_app()
