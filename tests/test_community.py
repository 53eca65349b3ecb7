from datetime import datetime, timedelta, timezone

from bson import ObjectId

from shop_core import Err, Ok, utc_now

from tennis_shop.errors import ShopErrorCode
from tennis_shop.services.service_community import RATE_LIMITS, consume_rate_limit, viewer_key

POST = {"type": "free", "title": "첫 글", "content": "<p>안녕하세요</p>"}
REASON = "광고성 게시글로 보입니다."


def _create_post(client, csrf, **extra):
    response = client.post("/api/community/posts", json={**POST, **extra}, headers=csrf())
    assert response.status_code == 201, response.text
    return response.json()


def test_csrf_endpoint_sets_readable_cookie(client):
    response = client.get("/api/community/csrf")
    assert response.status_code == 200
    token = response.json()["csrfToken"]
    assert response.cookies.get("communityCsrfToken") == token
    assert "httponly" not in response.headers["set-cookie"].lower()


def test_mutations_require_matching_csrf(login_as, make_user, community_csrf):
    client = login_as(make_user())

    missing = client.post("/api/community/posts", json=POST)
    assert missing.status_code == 403
    assert missing.json()["detail"]["error"] == "CSRF_FAILED"

    community_csrf()
    mismatched = client.post("/api/community/posts", json=POST, headers={"x-community-csrf-token": "other"})
    assert mismatched.status_code == 403

    # CSRF 는 로그인 확인보다 먼저 검사된다
    guest = login_as(None)
    assert guest.post("/api/community/posts", json=POST).status_code == 403
    assert guest.post("/api/community/posts", json=POST, headers=community_csrf()).status_code == 401


def test_create_and_fetch_by_post_number(login_as, make_user, community_csrf):
    client = login_as(make_user(name="작성자"))

    first = _create_post(client, community_csrf, content="<p>본문</p><script>alert(1)</script>")
    second = _create_post(client, community_csrf, title="둘째 글")
    market = _create_post(client, community_csrf, type="market", category="racket", brand="Wilson")

    assert first["postNo"] == 1
    assert second["postNo"] == 2
    assert market["postNo"] == 1
    assert first["nickname"] == "작성자"
    assert "<script" not in first["content"]
    assert "<p>본문</p>" in first["content"]

    by_no = login_as(None).get("/api/community/posts/2", params={"type": "free"})
    assert by_no.json()["id"] == second["id"]
    assert by_no.json()["likedByMe"] is False
    assert client.get("/api/community/posts/2").status_code == 404

    listing = client.get("/api/community/posts", params={"type": "free"}).json()
    assert listing["total"] == 2


def test_post_field_validation(login_as, make_user, community_csrf):
    client = login_as(make_user())

    no_brand = client.post(
        "/api/community/posts",
        json={**POST, "type": "market", "category": "string"},
        headers=community_csrf(),
    )
    assert no_brand.status_code == 400
    bad_category = client.post("/api/community/posts", json={**POST, "category": "politics"}, headers=community_csrf())
    assert bad_category.status_code == 400
    bad_type = client.post("/api/community/posts", json={**POST, "type": "notice"}, headers=community_csrf())
    assert bad_type.status_code == 422


def test_update_conflict_and_permissions(login_as, make_user, community_csrf):
    author = make_user("author@example.com")
    other = make_user("other@example.com")
    post = _create_post(login_as(author), community_csrf)

    client = login_as(author)
    stale = client.patch(
        f"/api/community/posts/{post['id']}",
        json={"title": "수정", "clientSeenDate": "2000-01-01T00:00:00Z"},
        headers=community_csrf(),
    )
    assert stale.status_code == 409

    fresh = client.patch(f"/api/community/posts/{post['id']}", json={"title": "수정"}, headers=community_csrf())
    assert fresh.json()["title"] == "수정"

    client = login_as(other)
    assert client.patch(
        f"/api/community/posts/{post['id']}", json={"title": "x"}, headers=community_csrf(),
    ).status_code == 403
    assert client.delete(f"/api/community/posts/{post['id']}", headers=community_csrf()).status_code == 403

    client = login_as(author)
    assert client.delete(f"/api/community/posts/{post['id']}", headers=community_csrf()).json() == {"ok": True}
    assert client.get(f"/api/community/posts/{post['id']}").status_code == 404


def test_like_toggle(db, login_as, make_user, community_csrf):
    user = make_user()
    client = login_as(user)
    post = _create_post(client, community_csrf)

    liked = client.post(f"/api/community/posts/{post['id']}/like", headers=community_csrf())
    assert liked.json() == {"ok": True, "liked": True, "likes": 1}
    assert client.get(f"/api/community/posts/{post['id']}").json()["likedByMe"] is True

    unliked = client.post(f"/api/community/posts/{post['id']}/like", headers=community_csrf())
    assert unliked.json() == {"ok": True, "liked": False, "likes": 0}
    assert db.community_likes.count_documents({}) == 0


def test_view_counting_per_viewer(login_as, make_user, community_csrf):
    user = make_user()
    post = _create_post(login_as(user), community_csrf)
    url = f"/api/community/posts/{post['id']}/view"

    client = login_as(user)
    assert client.post(url).json() == {"ok": True, "counted": True, "views": 1}
    assert client.post(url).json()["counted"] is False

    guest = login_as(None)
    assert guest.post(url).json()["counted"] is False
    same_origin = guest.post(url, headers={"sec-fetch-site": "same-origin"})
    assert same_origin.json() == {"ok": True, "counted": True, "views": 2}
    cross_site = guest.post(url, headers={"sec-fetch-site": "cross-site"})
    assert cross_site.json()["counted"] is False


def test_viewer_key():
    assert viewer_key(None, "1.2.3.4", "ua", same_origin=False) is None
    guest = viewer_key(None, "1.2.3.4", "ua", same_origin=True)
    assert guest.startswith("ipua:")
    assert guest == viewer_key(None, "1.2.3.4", "ua", same_origin=True)
    assert guest != viewer_key(None, "1.2.3.4", "other-ua", same_origin=True)


def test_report_validation_and_cooldown(db, login_as, make_user, community_csrf):
    author = make_user("author@example.com")
    reporter = make_user("reporter@example.com")
    post = _create_post(login_as(author), community_csrf)

    client = login_as(reporter)
    url = f"/api/community/posts/{post['id']}/report"
    assert client.post(url, json={"reason": "짧음"}, headers=community_csrf()).status_code == 422

    created = client.post(url, json={"reason": REASON}, headers=community_csrf())
    assert created.status_code == 201
    assert db.community_reports.find_one({"_id": ObjectId(created.json()["id"])})["status"] == "pending"

    again = client.post(url, json={"reason": REASON}, headers=community_csrf())
    assert again.status_code == 429
    assert again.json()["detail"]["error"] == "RATE_LIMITED"

    missing = client.post(f"/api/community/posts/{ObjectId()}/report", json={"reason": REASON}, headers=community_csrf())
    assert missing.status_code == 404


def test_comments_keep_post_count(db, login_as, make_user, community_csrf):
    author = make_user("author@example.com")
    commenter = make_user("commenter@example.com")
    admin = make_user("admin@example.com", role="admin")
    post = _create_post(login_as(author), community_csrf)
    comments_url = f"/api/community/posts/{post['id']}/comments"

    client = login_as(commenter)
    created = client.post(comments_url, json={"content": "좋은 정보 감사합니다"}, headers=community_csrf())
    assert created.status_code == 201
    client.post(comments_url, json={"content": "두 번째 댓글"}, headers=community_csrf())
    assert client.post(comments_url, json={"content": ""}, headers=community_csrf()).status_code == 422

    assert client.get(comments_url).json()["total"] == 2
    assert db.community_posts.find_one({"_id": ObjectId(post["id"])})["commentsCount"] == 2

    comment_id = created.json()["id"]
    assert login_as(author).delete(f"/api/community/comments/{comment_id}", headers=community_csrf()).status_code == 403
    assert login_as(admin).delete(f"/api/community/comments/{comment_id}", headers=community_csrf()).status_code == 200
    assert db.community_posts.find_one({"_id": ObjectId(post["id"])})["commentsCount"] == 1


def test_admin_resolves_report_by_hiding_post(db, login_as, make_user, community_csrf):
    author = make_user("author@example.com")
    reporter = make_user("reporter@example.com")
    admin = make_user("admin@example.com", role="admin")
    post = _create_post(login_as(author), community_csrf)

    report_id = login_as(reporter).post(
        f"/api/community/posts/{post['id']}/report",
        json={"reason": REASON},
        headers=community_csrf(),
    ).json()["id"]

    client = login_as(admin)
    assert client.get("/api/admin/community/reports", params={"status": "pending"}).json()["total"] == 1
    resolved = client.patch(
        f"/api/admin/community/reports/{report_id}/status",
        json={"action": "resolve_hide_target"},
    )
    assert resolved.json() == {"ok": True, "status": "resolved"}
    again = client.patch(f"/api/admin/community/reports/{report_id}/status", json={"action": "reject"})
    assert again.status_code == 409

    report = db.community_reports.find_one({"_id": ObjectId(report_id)})
    assert report["moderationAudit"]["action"] == "resolve_hide_target"

    # 숨김 글은 작성자와 관리자만 볼 수 있다
    assert login_as(None).get(f"/api/community/posts/{post['id']}").status_code == 404
    assert login_as(author).get(f"/api/community/posts/{post['id']}").json()["status"] == "hidden"
    assert login_as(reporter).get(f"/api/community/posts/{post['id']}").status_code == 404

    shown = login_as(admin).patch(f"/api/admin/community/posts/{post['id']}", json={"status": "public"})
    assert shown.json()["status"] == "public"
    assert login_as(None).get(f"/api/community/posts/{post['id']}").status_code == 200


def test_author_overview(login_as, make_user, community_csrf):
    author = make_user("author@example.com", nickname="테니스왕")
    client = login_as(author)
    post = _create_post(client, community_csrf)
    _create_post(client, community_csrf, title="둘째")
    client.post(f"/api/community/posts/{post['id']}/comments", json={"content": "셀프 댓글"}, headers=community_csrf())

    overview = client.get(f"/api/community/authors/{author['_id']}/overview").json()
    assert overview["nickname"] == "테니스왕"
    assert overview["postCount"] == 2
    assert overview["commentCount"] == 1
    assert len(overview["recentPosts"]) == 2
    assert client.get(f"/api/community/authors/{ObjectId()}/overview").status_code == 404


def test_rate_limit_window(db):
    now = datetime(2026, 10, 17, 12, 0, 15)
    for _ in range(RATE_LIMITS["report"].per_user):
        assert isinstance(consume_rate_limit(db, "report", "u1", "1.1.1.1", now=now), Ok)

    match consume_rate_limit(db, "report", "u1", "1.1.1.1", now=now):
        case Err(error=error):
            assert error.code is ShopErrorCode.RATE_LIMITED
            assert error.extra["retryAfterSec"] == 45
        case other:
            raise AssertionError(other)

    # 비로그인 요청은 IP 기준으로 따로 센다
    assert isinstance(consume_rate_limit(db, "report", None, "1.1.1.1", now=now), Ok)
    # 다음 윈도에서는 다시 허용된다
    assert isinstance(consume_rate_limit(db, "report", "u1", "1.1.1.1", now=now + timedelta(seconds=60)), Ok)


def test_rate_limited_response_has_retry_after(db, login_as, make_user, community_csrf):
    user = make_user()
    post = _create_post(login_as(user), community_csrf)

    # 현재와 다음 윈도를 모두 가득 채워 둔다
    epoch = int(utc_now().replace(tzinfo=timezone.utc).timestamp())
    for offset in (0, 60):
        start = epoch - epoch % 60 + offset
        db.community_rate_limit_windows.insert_one(
            {
                "key": f"user:community_like:{user['_id']}",
                "windowStart": datetime.fromtimestamp(start, tz=timezone.utc).replace(tzinfo=None),
                "count": 1000,
            },
        )

    response = login_as(user).post(f"/api/community/posts/{post['id']}/like", headers=community_csrf())
    assert response.status_code == 429
    assert int(response.headers["retry-after"]) >= 1
    assert response.json()["detail"]["routeId"] == "community_like"
