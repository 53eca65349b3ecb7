from bson import ObjectId

from shop_core import utc_now

from tennis_shop.internal import kakao_notification
from tennis_shop.internal.cli_show_outbox import _summarize, load_recent_outbox, parse_args
from tennis_shop.internal.kakao_notification import notify, render_text, short_code


def _entry(db, status, **extra):
    doc = {
        "eventType": "order.created",
        "dedupeKey": f"{ObjectId()}:created",
        "rendered": {"text": "[도깨비 테니스] 새 주문 접수\n- 접수번호 : DK-ABCDEF"},
        "status": status,
        "attempts": 0,
        "createdAt": utc_now(),
        **extra,
    }
    doc["_id"] = db.notifications_outbox.insert_one(doc).inserted_id
    return doc


def test_short_code_and_render_text():
    assert short_code(ObjectId("64b7f0c2a1b2c3d4e5f6a7b8")) == "DK-F6A7B8"
    assert short_code(None) == "-"

    text = render_text(
        "stringing.application_submitted",
        {
            "id": "64b7f0c2a1b2c3d4e5f6a7b8",
            "name": "홍길동",
            "strings": ["RPM Blast", "Alu Power"],
            "preferredDate": "2026-10-20",
            "preferredTime": "10:00",
            "totalPrice": 30000,
        },
    )
    lines = text.splitlines()
    assert lines[0] == "[도깨비 테니스] 스트링 교체 신청 접수"
    assert "- 스트링 : RPM Blast, Alu Power" in lines
    assert "- 희망 일시 : 2026-10-20 10:00" in lines
    assert "- 금액 : 30,000원" in lines
    assert lines[-1].startswith("- 발생시각 : ")


def test_notify_records_once_per_dedupe_key(db, settings, monkeypatch):
    sent: list[str] = []
    monkeypatch.setattr(kakao_notification, "send_kakao_memo", lambda _settings, text: sent.append(text) or {"ok": True})
    settings.notifications_enabled = True
    settings.kakao_access_token = "token"

    first = notify(db, settings, "order.created", "abc:created", {"id": "abc", "name": "홍길동"})
    second = notify(db, settings, "order.created", "abc:created", {"id": "abc", "name": "홍길동"})

    assert first is not None
    assert second is None
    assert len(sent) == 1
    entry = db.notifications_outbox.find_one({"_id": first})
    assert entry["status"] == "sent"
    assert entry["attempts"] == 1


def test_failed_dispatch_is_marked(db, settings, monkeypatch):
    monkeypatch.setattr(kakao_notification, "send_kakao_memo", lambda _settings, _text: {"ok": False, "err": "boom"})
    settings.notifications_enabled = True
    settings.kakao_access_token = "token"

    outbox_id = notify(db, settings, "rental.paid", "r1:paid", {"id": "r1"})
    entry = db.notifications_outbox.find_one({"_id": outbox_id})
    assert entry["status"] == "failed"
    assert entry["lastError"] == "boom"


def test_admin_outbox_listing(db, login_as, make_user):
    admin = make_user("admin@example.com", role="admin")
    _entry(db, "queued")
    _entry(db, "failed", lastError="timeout")
    _entry(db, "sent")

    client = login_as(admin)
    assert client.get("/api/admin/notifications/outbox").json()["total"] == 3
    failed = client.get("/api/admin/notifications/outbox", params={"status": "failed"}).json()
    assert failed["total"] == 1
    assert failed["items"][0]["lastError"] == "timeout"

    invalid = client.get("/api/admin/notifications/outbox", params={"status": "lost"})
    assert invalid.status_code == 400

    assert login_as(make_user()).get("/api/admin/notifications/outbox").status_code == 403


def test_admin_retry(db, settings, login_as, make_user, monkeypatch):
    admin = make_user("admin@example.com", role="admin")
    queued = _entry(db, "queued")
    failed = _entry(db, "failed", lastError="timeout")

    client = login_as(admin)
    not_failed = client.post(f"/api/admin/notifications/outbox/{queued['_id']}/retry")
    assert not_failed.status_code == 409
    assert not_failed.json()["detail"]["error"] == "INVALID_STATE"
    assert client.post(f"/api/admin/notifications/outbox/{ObjectId()}/retry").status_code == 404

    # 알림이 꺼져 있으면 상태를 바꾸지 않는다
    assert client.post(f"/api/admin/notifications/outbox/{failed['_id']}/retry").json() == {
        "ok": False,
        "status": "failed",
    }

    monkeypatch.setattr(kakao_notification, "send_kakao_memo", lambda _settings, _text: {"ok": True})
    settings.notifications_enabled = True
    settings.kakao_access_token = "token"
    retried = client.post(f"/api/admin/notifications/outbox/{failed['_id']}/retry")
    assert retried.json() == {"ok": True, "status": "sent"}
    assert db.notifications_outbox.find_one({"_id": failed["_id"]})["sentAt"] is not None


def test_cli_helpers(db):
    _entry(db, "queued")
    _entry(db, "failed", lastError="kakao 401")

    rows = load_recent_outbox(db, limit=10)
    assert len(rows) == 2
    failed_rows = load_recent_outbox(db, limit=10, status="failed")
    assert [row.summary for row in failed_rows] == ["ERR kakao 401"]

    assert _summarize({"rendered": {"text": "첫 줄\n\n둘째 줄\n셋째 줄"}}) == "첫 줄 / 둘째 줄"
    args = parse_args(["--status", "sent", "--limit", "5"])
    assert (args.status, args.limit) == ("sent", 5)
