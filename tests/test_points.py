from bson import ObjectId

from shop_core import Err, Ok

from tennis_shop.errors import ShopErrorCode
from tennis_shop.services.service_points import (
    calc_order_earn_points,
    deduct_points,
    grant_points,
    parse_ref_key,
)


def test_grant_is_idempotent_per_ref_key(db, make_user):
    user = make_user()

    first = grant_points(db, user["_id"], 500, "order_reward", ref_key="order_reward:abc")
    second = grant_points(db, user["_id"], 500, "order_reward", ref_key="order_reward:abc")

    assert isinstance(first, Ok) and first.value.applied
    assert isinstance(second, Ok) and second.value.duplicated and not second.value.applied
    assert db.users.find_one({"_id": user["_id"]})["pointsBalance"] == 500
    assert db.points_transactions.count_documents({"refKey": "order_reward:abc"}) == 1


def test_grant_floors_and_rejects_non_positive(db, make_user):
    user = make_user()
    match grant_points(db, user["_id"], 0.9, "admin_adjust"):
        case Err(error=error):
            assert error.code is ShopErrorCode.INVALID_AMOUNT
        case other:
            raise AssertionError(other)

    match grant_points(db, user["_id"], 10.7, "admin_adjust"):
        case Ok(value=outcome):
            assert outcome.amount == 10
        case other:
            raise AssertionError(other)


def test_grant_to_missing_user_rolls_back_ledger(db):
    result = grant_points(db, ObjectId(), 100, "admin_adjust", ref_key="ghost")
    assert isinstance(result, Err)
    assert result.error.code is ShopErrorCode.USER_NOT_FOUND
    assert db.points_transactions.count_documents({}) == 0


def test_deduct_guards_balance_unless_negative_allowed(db, make_user):
    user = make_user(points=100)

    short = deduct_points(db, user["_id"], 300, "spend_on_order", ref_key="order:x:spend")
    assert isinstance(short, Err)
    assert short.error.code is ShopErrorCode.INSUFFICIENT_POINTS
    # 실패한 차감은 원장에 남지 않으므로 같은 refKey 로 다시 시도할 수 있다
    assert db.points_transactions.count_documents({}) == 0

    revoke = deduct_points(
        db, user["_id"], 300, "reversal", ref_key="order_reward_revoke:x", allow_negative_balance=True,
    )
    assert isinstance(revoke, Ok) and revoke.value.amount == -300
    assert db.users.find_one({"_id": user["_id"]})["pointsBalance"] == -200


def test_helpers():
    assert calc_order_earn_points(12_345) == 123
    assert calc_order_earn_points(-5) == 0
    assert calc_order_earn_points(None) == 0
    assert parse_ref_key("order:abc:spend") == {"kind": "order", "orderId": "abc", "suffix": "spend"}
    assert parse_ref_key("review:r1") == {"kind": "review", "reviewId": "r1"}
    assert parse_ref_key("weird") is None


def test_my_points_endpoint(db, login_as, make_user):
    user = make_user()
    grant_points(db, user["_id"], 1000, "signup_bonus", ref_key="signup_bonus:x")
    deduct_points(db, user["_id"], 300, "spend_on_order", ref_key="order:y:spend")

    response = login_as(user).get("/api/points/me")
    assert response.status_code == 200
    body = response.json()
    assert body["balance"] == 700
    assert body["total"] == 2
    assert {item["typeLabel"] for item in body["items"]} == {"가입 보너스", "포인트 사용"}


def test_admin_adjust_points(db, login_as, make_user):
    admin = make_user("admin@example.com", role="admin")
    user = make_user("member@example.com", points=50)
    client = login_as(admin)

    granted = client.post(
        "/api/admin/points/adjust",
        json={"userId": str(user["_id"]), "amount": 200, "reason": "이벤트", "refKey": "event:1"},
    )
    assert granted.status_code == 200
    assert granted.json()["balance"] == 250

    replay = client.post(
        "/api/admin/points/adjust",
        json={"userId": str(user["_id"]), "amount": 200, "refKey": "event:1"},
    )
    assert replay.json()["duplicated"] is True
    assert replay.json()["balance"] == 250

    zero = client.post("/api/admin/points/adjust", json={"userId": str(user["_id"]), "amount": 0})
    assert zero.status_code == 400
    assert zero.json()["detail"]["error"] == "INVALID_AMOUNT"

    missing = client.post("/api/admin/points/adjust", json={"userId": str(ObjectId()), "amount": 10})
    assert missing.status_code == 404

    history = client.get(f"/api/admin/users/{user['_id']}/points/history")
    assert history.status_code == 200
    assert history.json()["total"] == 1


def test_admin_routes_reject_regular_users(login_as, make_user):
    user = make_user()
    response = login_as(user).post(
        "/api/admin/points/adjust",
        json={"userId": str(user["_id"]), "amount": 100},
    )
    assert response.status_code == 403
