from bson import ObjectId

SHIPPING = {"name": "홍길동", "phone": "01012345678", "address": "서울시 강남구", "deliveryMethod": "택배"}


def _submit(client, **extra):
    body = {"name": "홍길동", "phone": "010-1234-5678", "stringTypes": ["custom"], **extra}
    return client.post("/api/applications/stringing", json=body)


def _issue_pass(login_as, user, admin, plan="package-10"):
    package_order_id = login_as(user).post("/api/package-orders", json={"planId": plan}).json()["packageOrderId"]
    login_as(admin).post(f"/api/admin/package-orders/{package_order_id}/mark-paid")


def test_submit_validation(client):
    assert _submit(client, name="").status_code == 400
    assert _submit(client, stringTypes=[]).status_code == 400
    both = _submit(client, orderId=str(ObjectId()), rentalId=str(ObjectId()))
    assert both.status_code == 400
    assert _submit(client, orderId="nope").json()["detail"]["error"] == "INVALID_ID"
    assert _submit(client, orderId=str(ObjectId())).status_code == 404


def test_price_from_string_types_and_lines(client, db, make_product):
    product = make_product(mounting_fee=5_000)

    by_types = _submit(client, stringTypes=["custom", str(product["_id"])])
    assert by_types.status_code == 201
    assert by_types.json()["totalPrice"] == 20_000
    assert by_types.json()["packageApplied"] is False

    by_lines = _submit(
        client,
        lines=[
            {"stringName": "RPM Blast", "mountingFee": 7_000},
            {"stringName": "Alu Power", "mountingFee": 8_000},
        ],
    )
    assert by_lines.json()["totalPrice"] == 15_000

    stored = db.stringing_applications.find_one({"_id": ObjectId(by_lines.json()["applicationId"])})
    assert stored["status"] == "검토 중"
    assert stored["userId"] is None
    assert [line["stringName"] for line in stored["stringDetails"]["lines"]] == ["RPM Blast", "Alu Power"]


def test_guest_cannot_read_application(client):
    application_id = _submit(client).json()["applicationId"]
    assert client.get(f"/api/applications/stringing/{application_id}").status_code == 403


def test_pass_is_consumed_and_restored_on_cancel(db, login_as, make_user):
    user = make_user()
    admin = make_user("admin@example.com", role="admin")
    _issue_pass(login_as, user, admin)

    client = login_as(user)
    submitted = _submit(client)
    assert submitted.status_code == 201
    body = submitted.json()
    assert body["packageApplied"] is True
    assert body["totalPrice"] == 0
    assert body["passRemaining"] == 9

    opted_out = _submit(client, packageOptOut=True).json()
    assert opted_out["packageApplied"] is False
    assert opted_out["totalPrice"] == 15_000

    application_id = body["applicationId"]
    assert client.post(f"/api/applications/stringing/{application_id}/cancel-request").status_code == 200
    approved = login_as(admin).post(f"/api/admin/applications/stringing/{application_id}/cancel/approve")
    assert approved.json() == {"ok": True, "already": False}

    service_pass = db.service_passes.find_one({"userId": user["_id"]})
    assert service_pass["remainingCount"] == 10
    assert service_pass["usedCount"] == 0
    assert service_pass["redemptions"][0]["reverted"] is True


def test_reserved_slots_skip_canceled(client, login_as, make_user):
    admin = make_user("admin@example.com", role="admin")
    _submit(client, preferredDate="2026-10-20", preferredTime="10:00")
    canceled_id = _submit(client, preferredDate="2026-10-20", preferredTime="11:00").json()["applicationId"]
    _submit(client, preferredDate="2026-10-21", preferredTime="12:00")

    login_as(admin).patch(
        f"/api/admin/applications/stringing/{canceled_id}/status",
        json={"status": "취소"},
    )

    slots = login_as(None).get("/api/applications/stringing/reserved-slots", params={"date": "2026-10-20"})
    assert slots.json() == {"date": "2026-10-20", "reservedTimes": ["10:00"]}
    assert client.get("/api/applications/stringing/reserved-slots", params={"date": "20261020"}).status_code == 422


def test_cancel_request_errors(db, login_as, make_user):
    owner = make_user("owner@example.com")
    other = make_user("other@example.com")
    admin = make_user("admin@example.com", role="admin")

    application_id = _submit(login_as(owner), packageOptOut=True).json()["applicationId"]
    assert login_as(other).post(f"/api/applications/stringing/{application_id}/cancel-request").status_code == 403

    db.stringing_applications.update_one(
        {"_id": ObjectId(application_id)},
        {"$set": {"shippingInfo": {"invoice": {"trackingNumber": "555"}}}},
    )
    blocked = login_as(owner).post(f"/api/applications/stringing/{application_id}/cancel-request")
    assert blocked.json()["detail"]["error"] == "TRACKING_EXISTS"

    rejected = login_as(admin).post(f"/api/admin/applications/stringing/{application_id}/cancel/reject")
    assert rejected.json()["detail"]["error"] == "NOT_REQUESTED"


def test_confirm_standalone_application_rewards_points(db, login_as, make_user):
    user = make_user()
    admin = make_user("admin@example.com", role="admin")

    application_id = _submit(login_as(user), stringTypes=["custom", "custom"]).json()["applicationId"]
    early = login_as(user).post(f"/api/applications/stringing/{application_id}/confirm")
    assert early.status_code == 409

    bad_status = login_as(admin).patch(
        f"/api/admin/applications/stringing/{application_id}/status",
        json={"status": "보류"},
    )
    assert bad_status.status_code == 400
    login_as(admin).patch(
        f"/api/admin/applications/stringing/{application_id}/status",
        json={"status": "교체완료"},
    )

    client = login_as(user)
    confirmed = client.post(f"/api/applications/stringing/{application_id}/confirm")
    assert confirmed.json() == {"ok": True, "already": False, "earnedPoints": 300}
    assert client.post(f"/api/applications/stringing/{application_id}/confirm").json()["already"] is True
    assert db.users.find_one({"_id": user["_id"]})["pointsBalance"] == 300

    history = client.get(f"/api/applications/stringing/{application_id}/history").json()
    assert history["total"] == 2
    assert history["items"][0]["status"] == "교체완료"


def test_order_with_string_service_links_application(db, login_as, make_user, make_product):
    user = make_user()
    admin = make_user("admin@example.com", role="admin")
    product = make_product(price=20_000, mounting_fee=5_000)

    client = login_as(user)
    created = client.post(
        "/api/orders",
        json={
            "items": [{"productId": str(product["_id"]), "quantity": 1, "kind": "product"}],
            "shippingInfo": {**SHIPPING, "withStringService": True},
        },
    )
    order_id = created.json()["orderId"]
    draft = db.stringing_applications.find_one({"orderId": ObjectId(order_id)})
    assert draft["status"] == "draft"

    # draft 는 내 신청서 목록에 보이지 않는다
    assert client.get("/api/applications/stringing/mine").json()["total"] == 0

    submitted = _submit(client, orderId=order_id, stringTypes=[str(product["_id"])], packageOptOut=True)
    assert submitted.json()["applicationId"] == str(draft["_id"])
    assert _submit(client, orderId=order_id).json()["detail"]["error"] == "CONFLICT"

    login_as(admin).patch(f"/api/admin/orders/{order_id}/status", json={"status": "배송완료"})
    blocked = login_as(user).post(f"/api/orders/{order_id}/confirm")
    assert blocked.status_code == 400

    linked_confirm = login_as(user).post(f"/api/applications/stringing/{draft['_id']}/confirm")
    assert linked_confirm.status_code == 409

    login_as(admin).patch(
        f"/api/admin/applications/stringing/{draft['_id']}/status",
        json={"status": "교체완료"},
    )
    assert login_as(user).post(f"/api/orders/{order_id}/confirm").status_code == 200
    assert db.stringing_applications.find_one({"_id": draft["_id"]})["userConfirmedAt"] is not None
