from datetime import timedelta

from bson import ObjectId

from shop_core import Err, Ok, utc_now

from tennis_shop.errors import ShopErrorCode
from tennis_shop.services.service_passes import (
    consume_pass,
    issue_passes_for_paid_order,
    revert_consumption,
)


def _order_package(login_as, user, plan="package-10"):
    response = login_as(user).post("/api/package-orders", json={"planId": plan})
    assert response.status_code == 201
    return response.json()["packageOrderId"]


def test_package_order_mark_paid_issues_one_pass(db, login_as, make_user):
    user = make_user()
    admin = make_user("admin@example.com", role="admin")

    assert login_as(user).post("/api/package-orders", json={"planId": "package-7"}).status_code == 400
    package_order_id = _order_package(login_as, user, "package-30")

    orders = login_as(user).get("/api/package-orders/mine").json()["items"]
    assert orders[0]["paymentStatus"] == "결제대기"
    assert orders[0]["totalPrice"] == 280_000

    client = login_as(admin)
    first = client.post(f"/api/admin/package-orders/{package_order_id}/mark-paid").json()
    assert first["alreadyIssued"] is False
    second = client.post(f"/api/admin/package-orders/{package_order_id}/mark-paid").json()
    assert second == {"ok": True, "issuedPassId": None, "alreadyIssued": True}
    assert client.post(f"/api/admin/package-orders/{ObjectId()}/mark-paid").status_code == 404

    passes = login_as(user).get("/api/passes/mine").json()["items"]
    assert len(passes) == 1
    assert passes[0]["id"] == first["issuedPassId"]
    assert passes[0]["packageSize"] == 30
    assert passes[0]["remainingCount"] == 30
    assert passes[0]["orderItemId"] == "package:package-30:30"


def test_consume_requires_paid_package_order(db, make_user):
    user = make_user()
    now = utc_now()
    package_order_id = db.packageOrders.insert_one({"userId": user["_id"], "paymentStatus": "결제대기"}).inserted_id
    pass_id = db.service_passes.insert_one(
        {
            "userId": user["_id"],
            "orderId": package_order_id,
            "orderItemId": "package:package-10:10",
            "source": "package_order",
            "packageSize": 10,
            "usedCount": 0,
            "remainingCount": 10,
            "status": "active",
            "expiresAt": now + timedelta(days=30),
            "redemptions": [],
        },
    ).inserted_id

    match consume_pass(db, pass_id, ObjectId()):
        case Err(error=error):
            assert error.code is ShopErrorCode.ORDER_NOT_PAID
        case other:
            raise AssertionError(other)


def test_consume_is_idempotent_per_application(db, make_user):
    user = make_user()
    order = {
        "_id": ObjectId(),
        "userId": user["_id"],
        "items": [{"productId": "pkg", "quantity": 1, "meta": {"kind": "service_package", "packageSize": 2}}],
    }
    [pass_id] = issue_passes_for_paid_order(db, order)
    assert issue_passes_for_paid_order(db, order) == []

    application_id = ObjectId()
    first = consume_pass(db, pass_id, application_id)
    again = consume_pass(db, pass_id, application_id)
    assert isinstance(first, Ok) and first.value.remaining_count == 1
    assert isinstance(again, Ok) and again.value.already_consumed

    too_many = consume_pass(db, pass_id, ObjectId(), count=5)
    assert isinstance(too_many, Err)
    assert too_many.error.code is ShopErrorCode.PASS_CONSUME_FAILED
    # 실패한 차감의 소비 로그는 지워진다
    assert db.service_pass_consumptions.count_documents({"passId": pass_id}) == 1

    reverted = revert_consumption(db, pass_id, application_id)
    assert isinstance(reverted, Ok) and reverted.value.reverted
    assert not revert_consumption(db, pass_id, application_id).value.reverted
    assert db.service_passes.find_one({"_id": pass_id})["remainingCount"] == 2


def test_pass_size_comes_from_package_meta(db, make_user):
    user = make_user()
    order = {
        "_id": ObjectId(),
        "userId": user["_id"],
        "items": [
            {
                "orderItemId": "a",
                "quantity": 1,
                "meta": {"kind": "service_package", "packageSize": 10, "planId": "p10", "planTitle": "10회권"},
            },
            # packageSize 가 없으면 수량이 있어도 발급하지 않는다
            {"orderItemId": "b", "quantity": 3, "meta": {"kind": "service_package"}},
        ],
    }

    [pass_id] = issue_passes_for_paid_order(db, order)
    issued = db.service_passes.find_one({"_id": pass_id})
    assert issued["packageSize"] == 10
    assert issued["remainingCount"] == 10
    assert issued["meta"] == {"planId": "p10", "planTitle": "10회권"}


def test_consume_again_after_revert(db, make_user):
    user = make_user()
    order = {
        "_id": ObjectId(),
        "userId": user["_id"],
        "items": [{"orderItemId": "a", "quantity": 1, "meta": {"kind": "service_package", "packageSize": 3}}],
    }
    [pass_id] = issue_passes_for_paid_order(db, order)
    application_id = ObjectId()

    consume_pass(db, pass_id, application_id)
    revert_consumption(db, pass_id, application_id)
    again = consume_pass(db, pass_id, application_id)

    assert isinstance(again, Ok)
    assert again.value.already_consumed is False
    assert again.value.remaining_count == 2
    log = db.service_pass_consumptions.find_one({"passId": pass_id, "applicationId": application_id})
    assert log["reverted"] is False

    # 두 번째 차감도 다시 되돌릴 수 있다
    assert revert_consumption(db, pass_id, application_id).value.reverted
    stored = db.service_passes.find_one({"_id": pass_id})
    assert stored["remainingCount"] == 3
    assert [entry["reverted"] for entry in stored["redemptions"]] == [True, True]


def test_expired_pass_is_not_applied(db, login_as, make_user):
    user = make_user()
    db.service_passes.insert_one(
        {
            "userId": user["_id"],
            "orderId": ObjectId(),
            "orderItemId": "0",
            "packageSize": 10,
            "usedCount": 0,
            "remainingCount": 10,
            "status": "active",
            "expiresAt": utc_now() - timedelta(days=1),
            "redemptions": [],
        },
    )
    submitted = login_as(user).post(
        "/api/applications/stringing",
        json={"name": "홍길동", "phone": "01012345678", "stringTypes": ["custom"]},
    )
    assert submitted.json()["packageApplied"] is False
    assert submitted.json()["totalPrice"] == 15_000


def test_admin_extend_and_adjust(db, login_as, make_user):
    user = make_user()
    admin = make_user("admin@example.com", role="admin")
    package_order_id = _order_package(login_as, user)
    client = login_as(admin)
    pass_id = client.post(f"/api/admin/package-orders/{package_order_id}/mark-paid").json()["issuedPassId"]
    before = db.service_passes.find_one({"_id": ObjectId(pass_id)})["expiresAt"]

    extended = client.post(f"/api/admin/passes/{pass_id}/extend", json={"days": 30, "reason": "보상"})
    assert extended.status_code == 200
    after = db.service_passes.find_one({"_id": ObjectId(pass_id)})["expiresAt"]
    assert after - before == timedelta(days=30)
    history = db.packageOrders.find_one({"_id": ObjectId(package_order_id)})["history"]
    assert history[-1]["status"] == "만료연장"

    assert client.post(f"/api/admin/passes/{pass_id}/extend", json={"days": 0}).status_code == 400
    assert client.post(f"/api/admin/passes/{pass_id}/extend", json={"mode": "absolute"}).status_code == 400
    absolute = client.post(
        f"/api/admin/passes/{pass_id}/extend",
        json={"mode": "absolute", "newExpiry": "2030-01-01T00:00:00Z"},
    )
    assert absolute.json()["expiresAt"].startswith("2030-01-01")

    plus = client.post(f"/api/admin/passes/{pass_id}/adjust-sessions", json={"delta": 5})
    assert plus.json()["remainingCount"] == 15
    assert plus.json()["packageSize"] == 15
    minus = client.post(f"/api/admin/passes/{pass_id}/adjust-sessions", json={"delta": -100})
    assert minus.json()["remainingCount"] == 0
    assert minus.json()["packageSize"] == 15
    assert client.post(f"/api/admin/passes/{pass_id}/adjust-sessions", json={"delta": 0}).status_code == 400
    assert client.post(f"/api/admin/passes/{ObjectId()}/adjust-sessions", json={"delta": 1}).status_code == 404


def test_passes_require_login(client):
    assert client.get("/api/passes/mine").status_code == 401
    assert client.post("/api/package-orders", json={"planId": "package-10"}).status_code == 401
