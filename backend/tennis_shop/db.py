"""
MongoDB 클라이언트 캐시와 인덱스 부트스트랩.

MongoDB client cache and index bootstrap.
"""

import logging
from functools import lru_cache

from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

from tennis_shop.config import get_settings

logger = logging.getLogger(__name__)


@lru_cache
def get_mongo_client() -> MongoClient:
    """
    프로세스 전역 MongoClient 를 지연 생성한다 (캐시됨).
    Lazily create the process-wide MongoClient (cached).
    """
    settings = get_settings()
    logger.info("connecting to MongoDB db=%s", settings.mongodb_db_name)
    return MongoClient(settings.mongodb_uri)


def get_database() -> Database:
    """설정된 데이터베이스 핸들. / Handle to the configured database."""
    settings = get_settings()
    return get_mongo_client()[settings.mongodb_db_name]


def ensure_indexes(db: Database) -> None:
    """
    서비스가 의존하는 인덱스를 생성한다. 여러 번 호출해도 안전하다.

    유니크 인덱스가 멱등성(포인트 refKey, 패스 발급, 조회수 중복 제거 등)의
    근거이므로 앱 시작 시 반드시 호출한다.

    Create the indexes the services rely on (idempotent). The unique ones
    back the idempotency guarantees, so this runs at startup.
    """
    db.users.create_index([("email", ASCENDING)], unique=True)
    db.user_sessions.create_index([("userId", ASCENDING), ("at", DESCENDING)])

    # 포인트 원장 / points ledger
    db.points_transactions.create_index([("userId", ASCENDING), ("createdAt", DESCENDING)])
    db.points_transactions.create_index(
        [("refKey", ASCENDING)],
        unique=True,
        sparse=True,
    )

    # 패키지 패스 / package passes
    db.service_passes.create_index(
        [("orderId", ASCENDING), ("orderItemId", ASCENDING)],
        unique=True,
    )
    db.service_passes.create_index(
        [("userId", ASCENDING), ("status", ASCENDING), ("expiresAt", ASCENDING)],
    )
    db.service_pass_consumptions.create_index(
        [("passId", ASCENDING), ("applicationId", ASCENDING)],
        unique=True,
    )

    # 주문 / orders
    db.orders.create_index([("idemKey", ASCENDING)], unique=True, sparse=True)
    db.orders.create_index([("userId", ASCENDING), ("createdAt", DESCENDING)])
    db.rental_orders.create_index([("userId", ASCENDING), ("createdAt", DESCENDING)])
    db.stringing_applications.create_index([("orderId", ASCENDING)])
    db.stringing_applications.create_index([("userId", ASCENDING), ("createdAt", DESCENDING)])

    # 리뷰 / reviews
    db.reviews.create_index(
        [("userId", ASCENDING), ("productId", ASCENDING)],
        unique=True,
        partialFilterExpression={"productId": {"$exists": True}},
    )
    db.reviews.create_index(
        [("userId", ASCENDING), ("service", ASCENDING), ("serviceApplicationId", ASCENDING)],
        unique=True,
        partialFilterExpression={"serviceApplicationId": {"$exists": True}},
    )
    db.reviews.create_index([("productId", ASCENDING), ("status", ASCENDING), ("createdAt", DESCENDING)])
    db.review_votes.create_index(
        [("reviewId", ASCENDING), ("userId", ASCENDING)],
        unique=True,
    )

    # 메시지 / messages
    db.messages.create_index([("toUserId", ASCENDING), ("createdAt", DESCENDING)])
    db.messages.create_index([("fromUserId", ASCENDING), ("createdAt", DESCENDING)])

    # 커뮤니티 / community
    db.community_posts.create_index([("type", ASCENDING), ("postNo", ASCENDING)])
    db.community_posts.create_index([("status", ASCENDING), ("createdAt", DESCENDING)])
    db.community_comments.create_index([("postId", ASCENDING), ("createdAt", ASCENDING)])
    db.community_likes.create_index(
        [("postId", ASCENDING), ("userId", ASCENDING)],
        unique=True,
    )
    db.community_post_views.create_index(
        [("postId", ASCENDING), ("viewerKey", ASCENDING)],
        unique=True,
    )
    db.community_reports.create_index(
        [("reporterId", ASCENDING), ("targetId", ASCENDING), ("createdAt", DESCENDING)],
    )
    db.community_rate_limit_windows.create_index(
        [("key", ASCENDING), ("windowStart", ASCENDING)],
        unique=True,
    )

    # 알림 아웃박스 / notification outbox
    db.notifications_outbox.create_index([("dedupeKey", ASCENDING)], unique=True)
    db.notifications_outbox.create_index([("status", ASCENDING), ("createdAt", DESCENDING)])
