from datetime import timedelta

from bson import ObjectId

from shop_core import utc_now

SHIPPING = {"name": "홍길동", "phone": "01012345678", "address": "서울시 강남구", "deliveryMethod": "택배"}
GUEST = {"name": "비회원", "phone": "01099998888"}


def _payload(*items: dict, **extra) -> dict:
    return {"items": list(items), "shippingInfo": SHIPPING, **extra}


def _item(doc: dict, quantity: int = 1, kind: str = "product") -> dict:
    return {"productId": str(doc["_id"]), "quantity": quantity, "kind": kind}


def test_guest_order_requires_guest_info(client, db, make_product):
    product = make_product(price=20_000, stock=5)

    missing = client.post("/api/orders", json=_payload(_item(product)))
    assert missing.status_code == 400

    created = client.post("/api/orders", json=_payload(_item(product, 2), guestInfo=GUEST))
    assert created.status_code == 201
    order = db.orders.find_one({"_id": ObjectId(created.json()["orderId"])})
    # 40,000원 이상이라 배송비 무료
    assert order["totalPrice"] == 40_000
    assert order["shippingFee"] == 0
    assert order["status"] == "대기중"
    assert order["guestInfo"]["name"] == "비회원"
    assert db.products.find_one({"_id": product["_id"]})["inventory"]["stock"] == 3


def test_shipping_fee_rules(client, db, make_product):
    product = make_product(price=10_000)

    delivered = client.post("/api/orders", json=_payload(_item(product), guestInfo=GUEST)).json()
    assert db.orders.find_one({"_id": ObjectId(delivered["orderId"])})["totalPrice"] == 13_000

    pickup_shipping = {**SHIPPING, "deliveryMethod": "방문수령"}
    pickup = client.post(
        "/api/orders",
        json={"items": [_item(product)], "shippingInfo": pickup_shipping, "guestInfo": GUEST},
    ).json()
    assert db.orders.find_one({"_id": ObjectId(pickup["orderId"])})["totalPrice"] == 10_000


def test_idempotency_key_replays_existing_order(client, db, make_product):
    product = make_product(stock=5)
    headers = {"Idempotency-Key": "idem-1"}

    first = client.post("/api/orders", json=_payload(_item(product), guestInfo=GUEST), headers=headers)
    second = client.post("/api/orders", json=_payload(_item(product), guestInfo=GUEST), headers=headers)

    assert first.status_code == 201
    assert second.status_code == 200
    assert first.json()["orderId"] == second.json()["orderId"]
    assert db.orders.count_documents({}) == 1
    assert db.products.find_one({"_id": product["_id"]})["inventory"]["stock"] == 4


def test_insufficient_stock_rolls_back_earlier_items(client, db, make_product):
    plenty = make_product("그립", stock=5)
    scarce = make_product("볼", stock=1)

    response = client.post(
        "/api/orders",
        json=_payload(_item(plenty, 2), _item(scarce, 3), guestInfo=GUEST),
    )
    assert response.status_code == 400
    detail = response.json()["detail"]
    assert detail["error"] == "INSUFFICIENT_STOCK"
    assert detail["productName"] == "볼"
    assert detail["currentStock"] == 1
    assert db.products.find_one({"_id": plenty["_id"]})["inventory"]["stock"] == 5
    assert db.orders.count_documents({}) == 0


def test_used_racket_purchase_is_single_unit(client, db, make_racket):
    racket = make_racket(price=150_000)

    two = client.post("/api/orders", json=_payload(_item(racket, 2, "racket"), guestInfo=GUEST))
    assert two.status_code == 400

    bought = client.post("/api/orders", json=_payload(_item(racket, 1, "racket"), guestInfo=GUEST))
    assert bought.status_code == 201
    assert db.used_rackets.find_one({"_id": racket["_id"]})["status"] == "sold"

    again = client.post("/api/orders", json=_payload(_item(racket, 1, "racket"), guestInfo=GUEST))
    assert again.status_code == 400
    assert again.json()["detail"]["error"] == "INSUFFICIENT_STOCK"


def test_member_order_spends_points_and_confirm_rewards(db, login_as, make_user, make_product):
    user = make_user(points=5_000)
    admin = make_user("admin@example.com", role="admin")
    product = make_product(price=20_000)

    client = login_as(user)
    created = client.post("/api/orders", json=_payload(_item(product), pointsToUse=5_000))
    assert created.status_code == 201
    order_id = created.json()["orderId"]

    order = db.orders.find_one({"_id": ObjectId(order_id)})
    assert order["pointsUsed"] == 5_000
    assert order["totalPrice"] == 18_000
    assert order["userSnapshot"]["email"] == "user@example.com"
    assert db.users.find_one({"_id": user["_id"]})["pointsBalance"] == 0
    assert db.points_transactions.find_one({"refKey": f"order:{order_id}:spend"})["amount"] == -5_000

    early = client.post(f"/api/orders/{order_id}/confirm")
    assert early.status_code == 400

    assert login_as(admin).patch(f"/api/admin/orders/{order_id}/status", json={"status": "배송완료"}).status_code == 200

    client = login_as(user)
    confirmed = client.post(f"/api/orders/{order_id}/confirm")
    assert confirmed.status_code == 200
    assert confirmed.json()["earnedPoints"] == 180
    assert confirmed.json()["pointsGranted"] is True

    replay = client.post(f"/api/orders/{order_id}/confirm").json()
    assert replay["already"] is True
    assert replay["alreadyConfirmed"] is True
    assert db.users.find_one({"_id": user["_id"]})["pointsBalance"] == 180


def test_confirm_checks_id_before_login(client):
    assert client.post("/api/orders/not-an-id/confirm").status_code == 400
    assert client.post(f"/api/orders/{ObjectId()}/confirm").status_code == 401


def test_orders_are_private(db, login_as, make_user, make_product):
    owner = make_user("owner@example.com")
    other = make_user("other@example.com")
    product = make_product()

    order_id = login_as(owner).post("/api/orders", json=_payload(_item(product))).json()["orderId"]
    assert login_as(owner).get("/api/orders").json()["total"] == 1
    assert login_as(other).get(f"/api/orders/{order_id}").status_code == 403
    assert login_as(other).post(f"/api/orders/{order_id}/confirm").status_code == 403


def test_cancel_request_and_admin_approval(db, login_as, make_user, make_product):
    user = make_user(points=1_000)
    admin = make_user("admin@example.com", role="admin")
    product = make_product(price=20_000, stock=3)

    client = login_as(user)
    order_id = client.post("/api/orders", json=_payload(_item(product), pointsToUse=1_000)).json()["orderId"]
    assert db.users.find_one({"_id": user["_id"]})["pointsBalance"] == 0

    requested = client.post(f"/api/orders/{order_id}/cancel-request", json={"reasonCode": "단순변심"})
    assert requested.status_code == 200
    duplicate = client.post(f"/api/orders/{order_id}/cancel-request")
    assert duplicate.json()["detail"]["error"] == "ALREADY_REQUESTED"

    approved = login_as(admin).post(f"/api/admin/orders/{order_id}/cancel/approve")
    assert approved.status_code == 200
    assert approved.json()["restoredPoints"] == 1_000

    order = db.orders.find_one({"_id": ObjectId(order_id)})
    assert order["status"] == "취소"
    assert order["cancelReason"] == "단순변심"
    assert order["cancelRequest"]["status"] == "approved"
    assert db.users.find_one({"_id": user["_id"]})["pointsBalance"] == 1_000
    assert db.products.find_one({"_id": product["_id"]})["inventory"]["stock"] == 3

    again = login_as(user).post(f"/api/orders/{order_id}/cancel-request")
    assert again.json()["detail"]["error"] == "ALREADY_CANCELED"


def test_cancel_approval_restores_racket_stock(db, login_as, make_user, make_racket):
    user = make_user()
    admin = make_user("admin@example.com", role="admin")
    stocked = make_racket(quantity=3)
    single = make_racket()

    client = login_as(user)
    order_id = client.post(
        "/api/orders",
        json=_payload(_item(stocked, 1, "racket"), _item(single, 1, "racket")),
    ).json()["orderId"]
    assert db.used_rackets.find_one({"_id": stocked["_id"]})["quantity"] == 2
    assert db.used_rackets.find_one({"_id": single["_id"]})["status"] == "sold"

    client.post(f"/api/orders/{order_id}/cancel-request", json={"reasonCode": "단순변심"})
    assert login_as(admin).post(f"/api/admin/orders/{order_id}/cancel/approve").status_code == 200

    restored = db.used_rackets.find_one({"_id": stocked["_id"]})
    assert restored["quantity"] == 3
    assert restored["status"] == "available"
    assert db.used_rackets.find_one({"_id": single["_id"]})["status"] == "available"


def test_failed_order_gives_back_stocked_racket(client, db, make_product, make_racket):
    stocked = make_racket(quantity=2)
    scarce = make_product("볼", stock=0)

    response = client.post(
        "/api/orders",
        json=_payload(_item(stocked, 1, "racket"), _item(scarce), guestInfo=GUEST),
    )
    assert response.status_code == 400
    racket = db.used_rackets.find_one({"_id": stocked["_id"]})
    assert racket["quantity"] == 2
    assert racket["status"] == "available"


def test_tracking_number_blocks_cancel(db, login_as, make_user, make_product):
    user = make_user()
    admin = make_user("admin@example.com", role="admin")
    product = make_product()

    order_id = login_as(user).post("/api/orders", json=_payload(_item(product))).json()["orderId"]

    shipped = login_as(admin).patch(
        f"/api/admin/orders/{order_id}/shipping",
        json={"courier": "CJ", "trackingNumber": "1234-5678"},
    )
    assert shipped.json()["status"] == "배송중"

    blocked = login_as(user).post(f"/api/orders/{order_id}/cancel-request")
    assert blocked.status_code == 400
    assert blocked.json()["detail"]["error"] == "TRACKING_EXISTS"

    approve = login_as(admin).post(f"/api/admin/orders/{order_id}/cancel/approve")
    assert approve.status_code == 409


def test_withdraw_and_reject(db, login_as, make_user, make_product):
    user = make_user()
    admin = make_user("admin@example.com", role="admin")
    product = make_product()
    order_id = login_as(user).post("/api/orders", json=_payload(_item(product))).json()["orderId"]

    assert login_as(admin).post(f"/api/admin/orders/{order_id}/cancel/reject").status_code == 400

    client = login_as(user)
    assert client.post(f"/api/orders/{order_id}/cancel-request/withdraw").status_code == 400
    client.post(f"/api/orders/{order_id}/cancel-request")
    assert client.post(f"/api/orders/{order_id}/cancel-request/withdraw").status_code == 200
    assert db.orders.find_one({"_id": ObjectId(order_id)})["cancelRequest"]["status"] == "withdrawn"

    client.post(f"/api/orders/{order_id}/cancel-request")
    rejected = login_as(admin).post(
        f"/api/admin/orders/{order_id}/cancel/reject",
        json={"adminMemo": "이미 출고 준비 중"},
    )
    assert rejected.status_code == 200
    assert db.orders.find_one({"_id": ObjectId(order_id)})["cancelRequest"]["adminMemo"] == "이미 출고 준비 중"


def test_admin_status_update_rules(db, login_as, make_user, make_product):
    admin = make_user("admin@example.com", role="admin")
    product = make_product()
    order_id = login_as(None).post("/api/orders", json=_payload(_item(product), guestInfo=GUEST)).json()["orderId"]

    client = login_as(admin)
    assert client.patch(f"/api/admin/orders/{order_id}/status", json={"status": "취소"}).status_code == 400
    assert client.patch(f"/api/admin/orders/{order_id}/status", json={"status": "분실"}).status_code == 400

    paid = client.patch(f"/api/admin/orders/{order_id}/status", json={"status": "결제완료"})
    assert paid.status_code == 200
    assert db.orders.find_one({"_id": ObjectId(order_id)})["paymentStatus"] == "결제완료"
    assert client.get("/api/admin/orders", params={"status": "결제완료"}).json()["total"] == 1


def test_order_creation_queues_notification(client, db, make_product):
    product = make_product()
    order_id = client.post("/api/orders", json=_payload(_item(product), guestInfo=GUEST)).json()["orderId"]

    entry = db.notifications_outbox.find_one({"dedupeKey": f"{order_id}:created"})
    assert entry["eventType"] == "order.created"
    # 알림이 꺼져 있으면 발송하지 않고 queued 로 남는다
    assert entry["status"] == "queued"
    assert "새 주문 접수" in entry["rendered"]["text"]


def test_guest_order_lookup(client, db, make_product):
    product = make_product()
    guest = {**GUEST, "email": "Guest@Example.com"}
    order_id = client.post("/api/orders", json=_payload(_item(product), guestInfo=guest)).json()["orderId"]
    client.post("/api/orders", json=_payload(_item(product), guestInfo={**GUEST, "name": "다른사람"}))

    by_phone = client.post("/api/guest-orders/lookup", json={"name": "비회원", "phone": "010-9999-8888"})
    assert by_phone.status_code == 200
    orders = by_phone.json()["orders"]
    assert [order["id"] for order in orders] == [order_id]
    assert orders[0]["itemCount"] == 1
    assert "guestInfo" not in orders[0]

    by_email = client.post("/api/guest-orders/lookup", json={"name": "비회원", "email": "guest@example.com"})
    assert len(by_email.json()["orders"]) == 1

    narrowed = client.post(
        "/api/guest-orders/lookup",
        json={"name": "비회원", "phone": "01099998888", "orderId": str(ObjectId())},
    )
    assert narrowed.json()["orders"] == []
    wrong_phone = client.post("/api/guest-orders/lookup", json={"name": "비회원", "phone": "01000000000"})
    assert wrong_phone.json()["orders"] == []


def test_guest_order_lookup_validation_and_switch(client, settings):
    assert client.post("/api/guest-orders/lookup", json={"name": "비회원"}).status_code == 400
    assert client.post("/api/guest-orders/lookup", json={"name": "비회원", "email": "nope"}).status_code == 400
    assert client.post("/api/guest-orders/lookup", json={"name": "비회원", "phone": "123"}).status_code == 400

    settings.guest_order_lookup_enabled = False
    off = client.post("/api/guest-orders/lookup", json={"name": "비회원", "phone": "01099998888"})
    assert off.status_code == 404


def test_guest_order_lookup_ignores_old_orders(client, db, make_product):
    product = make_product()
    order_id = client.post("/api/orders", json=_payload(_item(product), guestInfo=GUEST)).json()["orderId"]
    db.orders.update_one({"_id": ObjectId(order_id)}, {"$set": {"createdAt": utc_now() - timedelta(days=200)}})

    response = client.post("/api/guest-orders/lookup", json={"name": "비회원", "phone": "01099998888"})
    assert response.json()["orders"] == []
