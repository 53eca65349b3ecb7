from bson import ObjectId

from shop_core import utc_now

SHIPPING = {"name": "홍길동", "phone": "01012345678", "address": "서울시 강남구", "deliveryMethod": "택배"}


def _buy(client, *products) -> str:
    items = [{"productId": str(product["_id"]), "quantity": 1, "kind": "product"} for product in products]
    created = client.post("/api/orders", json={"items": items, "shippingInfo": SHIPPING})
    assert created.status_code == 201
    return created.json()["orderId"]


def _review(client, product, rating=5, content="줄 감이 좋아요", **extra):
    return client.post(
        "/api/reviews",
        json={"productId": str(product["_id"]), "rating": rating, "content": content, **extra},
    )


def test_product_review_rewards_points_once(db, login_as, make_user, make_product):
    user = make_user()
    product = make_product()
    client = login_as(user)
    order_id = _buy(client, product)

    created = _review(client, product, orderId=order_id, photos=["https://cdn.example.com/a.png", "ftp://x"])
    assert created.status_code == 201
    body = created.json()
    assert body["earnedPoints"] == 50

    review = db.reviews.find_one({"_id": ObjectId(body["id"])})
    assert review["photos"] == ["https://cdn.example.com/a.png"]
    assert review["orderId"] == ObjectId(order_id)
    assert db.points_transactions.find_one({"refKey": f"review:{body['id']}"})["amount"] == 50
    assert db.users.find_one({"_id": user["_id"]})["pointsBalance"] == 50

    duplicate = _review(client, product)
    assert duplicate.status_code == 409
    assert duplicate.json()["detail"]["error"] == "DUPLICATE"
    assert db.users.find_one({"_id": user["_id"]})["pointsBalance"] == 50


def test_review_requires_purchase_and_valid_body(login_as, make_user, make_product):
    product = make_product()
    client = login_as(make_user())

    not_bought = _review(client, product)
    assert not_bought.status_code == 403
    assert not_bought.json()["detail"]["reason"] == "notPurchased"

    _buy(client, product)
    assert _review(client, product, rating=0).status_code == 400
    assert _review(client, product, content="   ").status_code == 400
    assert client.post("/api/reviews", json={"rating": 5, "content": "x"}).status_code == 400
    assert login_as(None).post("/api/reviews", json={"productId": str(product["_id"])}).status_code == 401


def test_canceled_order_does_not_count_as_purchase(db, login_as, make_user, make_product):
    product = make_product()
    client = login_as(make_user())
    order_id = _buy(client, product)
    db.orders.update_one({"_id": ObjectId(order_id)}, {"$set": {"status": "취소"}})

    assert _review(client, product).status_code == 403
    eligibility = client.get("/api/reviews/eligibility", params={"productId": str(product["_id"])})
    assert eligibility.json() == {"eligible": False, "reason": "notPurchased"}


def test_rating_summary_follows_visible_reviews(db, login_as, make_user, make_product):
    product = make_product()
    admin = make_user("admin@example.com", role="admin")
    first = make_user("first@example.com")
    second = make_user("second@example.com")

    _buy(login_as(first), product)
    _review(login_as(first), product, rating=5)
    _buy(login_as(second), product)
    second_id = _review(login_as(second), product, rating=2).json()["id"]

    stored = db.products.find_one({"_id": product["_id"]})
    assert stored["ratingAvg"] == 3.5
    assert stored["ratingCount"] == 2

    hidden = login_as(admin).patch(f"/api/admin/reviews/{second_id}", json={"visibility": "private"})
    assert hidden.status_code == 200
    stored = db.products.find_one({"_id": product["_id"]})
    assert stored["ratingAvg"] == 5
    assert stored["ratingCount"] == 1

    listed = login_as(None).get("/api/reviews", params={"productId": str(product["_id"])}).json()
    assert listed["total"] == 1
    assert "votedByMe" not in listed["items"][0]


def test_edit_and_delete_own_review(db, login_as, make_user, make_product):
    owner = make_user("owner@example.com")
    other = make_user("other@example.com")
    product = make_product()
    _buy(login_as(owner), product)
    review_id = _review(login_as(owner), product, rating=4).json()["id"]

    assert login_as(other).patch(f"/api/reviews/{review_id}", json={"rating": 1}).status_code == 403
    assert login_as(owner).patch(f"/api/reviews/{review_id}", json={}).status_code == 400

    edited = login_as(owner).patch(f"/api/reviews/{review_id}", json={"rating": 9, "content": "수정했어요"})
    assert edited.status_code == 200
    review = db.reviews.find_one({"_id": ObjectId(review_id)})
    assert review["rating"] == 5
    assert review["content"] == "수정했어요"

    assert login_as(other).delete(f"/api/reviews/{review_id}").status_code == 403
    assert login_as(owner).delete(f"/api/reviews/{review_id}").status_code == 200
    assert db.reviews.find_one({"_id": ObjectId(review_id)})["isDeleted"] is True
    # 작성자 삭제는 적립금을 회수하지 않는다
    assert db.users.find_one({"_id": owner["_id"]})["pointsBalance"] == 50
    assert login_as(owner).get("/api/reviews/mine").json()["total"] == 0


def test_stringing_service_review_on_own_application(db, login_as, make_user):
    owner = make_user("owner@example.com")
    other = make_user("other@example.com")
    application_id = db.stringing_applications.insert_one(
        {"userId": owner["_id"], "status": "검토 중", "createdAt": utc_now()},
    ).inserted_id
    payload = {
        "service": "stringing",
        "serviceApplicationId": str(application_id),
        "rating": 4,
        "content": "작업이 빨랐어요",
    }

    eligibility = login_as(owner).get("/api/reviews/eligibility", params={"service": "stringing"}).json()
    assert eligibility["eligible"] is True
    assert eligibility["suggestedApplicationId"] == str(application_id)

    assert login_as(other).post("/api/reviews", json=payload).status_code == 403
    created = login_as(owner).post("/api/reviews", json=payload)
    assert created.status_code == 201
    assert created.json()["earnedPoints"] == 50
    assert db.points_transactions.find_one({"refKey": f"review:{created.json()['id']}"})["type"] == "review_reward_service"
    assert login_as(owner).post("/api/reviews", json=payload).status_code == 409

    mine = login_as(owner).get("/api/reviews/mine").json()
    assert mine["items"][0]["type"] == "service"
    assert mine["items"][0]["target"]["type"] == "service"


def test_order_review_items_counts(login_as, make_user, make_product):
    owner = make_user("owner@example.com")
    first = make_product("스트링 A")
    second = make_product("스트링 B")
    client = login_as(owner)
    order_id = _buy(client, first, second)
    _review(client, first, orderId=order_id)

    body = client.get(f"/api/orders/{order_id}/review-items").json()
    assert body["counts"] == {"total": 2, "reviewed": 1, "remaining": 1}
    assert body["nextProductId"] == str(second["_id"])

    assert login_as(make_user("other@example.com")).get(f"/api/orders/{order_id}/review-items").status_code == 404
    assert client.get("/api/orders/not-an-id/review-items").status_code == 400


def test_helpful_vote_toggle_and_desired(db, login_as, make_user, make_product):
    author = make_user("author@example.com")
    reader = make_user("reader@example.com")
    product = make_product()
    _buy(login_as(author), product)
    review_id = _review(login_as(author), product).json()["id"]

    client = login_as(reader)
    assert client.post(f"/api/reviews/{review_id}/helpful").json() == {"ok": True, "voted": True, "helpfulCount": 1}
    assert client.post(f"/api/reviews/{review_id}/helpful?desired=on").json()["helpfulCount"] == 1
    listed = client.get("/api/reviews", params={"productId": str(product["_id"])}).json()
    assert listed["items"][0]["votedByMe"] is True

    assert client.post(f"/api/reviews/{review_id}/helpful").json()["voted"] is False
    assert db.reviews.find_one({"_id": ObjectId(review_id)})["helpfulCount"] == 0
    assert client.post(f"/api/reviews/{ObjectId()}/helpful").status_code == 404


def test_admin_delete_revokes_reward(db, login_as, make_user, make_product):
    user = make_user()
    admin = make_user("admin@example.com", role="admin")
    product = make_product()
    client = login_as(user)
    _buy(client, product)
    review_id = _review(client, product).json()["id"]
    assert db.users.find_one({"_id": user["_id"]})["pointsBalance"] == 50

    assert login_as(user).delete(f"/api/admin/reviews/{review_id}").status_code == 403

    deleted = login_as(admin).delete(f"/api/admin/reviews/{review_id}")
    assert deleted.json() == {"ok": True, "revokedPoints": 50}
    assert db.users.find_one({"_id": user["_id"]})["pointsBalance"] == 0
    assert db.points_transactions.find_one({"refKey": f"review:{review_id}:revoke"})["amount"] == -50
    assert db.products.find_one({"_id": product["_id"]})["ratingCount"] == 0

    assert login_as(admin).delete(f"/api/admin/reviews/{review_id}").status_code == 404
    assert login_as(admin).get("/api/admin/reviews").json()["total"] == 0
