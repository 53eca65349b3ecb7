"""
테스트 공통 픽스처.

MongoDB 대신 mongomock 데이터베이스를 쓰고, FastAPI 의존성(get_db,
get_app_settings)을 테스트용으로 덮어쓴다.

Shared fixtures: a mongomock database stands in for MongoDB and the
FastAPI dependencies are overridden per test.
"""

import os

# tennis_shop.main 은 import 시점에 Settings() 를 만들므로 먼저 채워 둔다.
os.environ.setdefault("BACKEND_ACCESS_TOKEN_SECRET", "test-access-secret-0123456789abcdef")
os.environ.setdefault("BACKEND_REFRESH_TOKEN_SECRET", "test-refresh-secret-0123456789abcdef")
os.environ.setdefault("BACKEND_ENVIRONMENT", "test")

from collections.abc import Callable, Iterator  # noqa: E402
from typing import Any  # noqa: E402

import mongomock  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from pymongo.database import Database  # noqa: E402

from shop_core import utc_now  # noqa: E402

from tennis_shop.config import Settings  # noqa: E402
from tennis_shop.db import ensure_indexes  # noqa: E402
from tennis_shop.dependencies import get_app_settings, get_db  # noqa: E402
from tennis_shop.main import app  # noqa: E402
from tennis_shop.security import (  # noqa: E402
    ACCESS_COOKIE,
    COMMUNITY_CSRF_COOKIE,
    COMMUNITY_CSRF_HEADER,
    create_access_token,
    hash_password,
)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        access_token_secret="test-access-secret-0123456789abcdef",
        refresh_token_secret="test-refresh-secret-0123456789abcdef",
        environment="test",
        admin_email_whitelist="boss@example.com",
        notifications_enabled=False,
        signup_bonus_enabled=False,
    )


@pytest.fixture
def db() -> Database:
    database = mongomock.MongoClient()["tennis_shop_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def client(settings: Settings, db: Database) -> Iterator[TestClient]:
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_app_settings] = lambda: settings
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db: Database) -> Callable[..., dict[str, Any]]:
    """
    users 컬렉션에 바로 회원을 넣는다. password 를 주면 해시를 저장한다.
    Insert a user document directly; hashes `password` when given.
    """

    def _make(
        email: str = "user@example.com",
        *,
        name: str = "테스터",
        role: str = "user",
        points: int = 0,
        password: str | None = None,
        **extra: Any,
    ) -> dict[str, Any]:
        doc: dict[str, Any] = {
            "email": email,
            "name": name,
            "role": role,
            "pointsBalance": points,
            "isDeleted": False,
            "isSuspended": False,
            "createdAt": utc_now(),
            **extra,
        }
        if password is not None:
            doc["hashedPassword"] = hash_password(password)
        doc["_id"] = db.users.insert_one(doc).inserted_id
        return doc

    return _make


@pytest.fixture
def login_as(client: TestClient, settings: Settings) -> Callable[[dict[str, Any] | None], TestClient]:
    """
    클라이언트 쿠키를 해당 회원의 액세스 토큰으로 바꾼다 (None 이면 비회원).
    Swap the client's cookies for the user's access token (None = guest).
    """

    def _login(user: dict[str, Any] | None) -> TestClient:
        client.cookies.clear()
        if user is not None:
            token = create_access_token(settings, str(user["_id"]), user["email"], user.get("role", "user"))
            client.cookies.set(ACCESS_COOKIE, token)
        return client

    return _login


@pytest.fixture
def community_csrf(client: TestClient) -> Callable[[], dict[str, str]]:
    """
    커뮤니티 CSRF 쿠키를 심고 같은 값의 헤더를 돌려준다.
    Plant the community CSRF cookie and return the matching header.
    """

    def _csrf() -> dict[str, str]:
        token = "community-csrf-test-token"
        client.cookies.set(COMMUNITY_CSRF_COOKIE, token)
        return {COMMUNITY_CSRF_HEADER: token}

    return _csrf


@pytest.fixture
def make_product(db: Database) -> Callable[..., dict[str, Any]]:
    def _make(
        name: str = "럭실론 알루파워",
        *,
        price: int = 20_000,
        stock: int = 10,
        mounting_fee: int = 0,
        **extra: Any,
    ) -> dict[str, Any]:
        doc: dict[str, Any] = {
            "name": name,
            "brand": "Luxilon",
            "category": "string",
            "price": price,
            "mountingFee": mounting_fee,
            "inventory": {"stock": stock},
            "sold": 0,
            "images": [],
            "isDeleted": False,
            "createdAt": utc_now(),
            **extra,
        }
        doc["_id"] = db.products.insert_one(doc).inserted_id
        return doc

    return _make


@pytest.fixture
def make_racket(db: Database) -> Callable[..., dict[str, Any]]:
    def _make(
        *,
        status: str = "available",
        price: int = 150_000,
        deposit: int = 100_000,
        fees: dict[str, int] | None = None,
        quantity: int = 1,
    ) -> dict[str, Any]:
        doc: dict[str, Any] = {
            "brand": "Wilson",
            "model": "Pro Staff 97",
            "price": price,
            "deposit": deposit,
            "rentalFeeByDays": fees if fees is not None else {"7": 20_000, "15": 30_000, "30": 50_000},
            "status": status,
            "quantity": quantity,
            "images": [],
            "createdAt": utc_now(),
        }
        doc["_id"] = db.used_rackets.insert_one(doc).inserted_id
        return doc

    return _make
