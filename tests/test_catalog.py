from bson import ObjectId


def test_product_admin_crud_and_public_listing(db, login_as, make_user):
    admin = make_user("admin@example.com", role="admin")
    client = login_as(admin)

    created = client.post(
        "/api/admin/products",
        json={"name": "Babolat RPM Blast", "brand": "Babolat", "category": "string", "price": 18000,
              "mountingFee": 5000, "stock": 4},
    )
    assert created.status_code == 201
    product = created.json()
    assert product["inventory"] == {"stock": 4}
    assert product["mountingFee"] == 5000

    patched = client.patch(f"/api/admin/products/{product['id']}", json={"price": 17000, "stock": 2})
    assert patched.status_code == 200
    assert patched.json()["price"] == 17000
    assert patched.json()["inventory"]["stock"] == 2

    listing = login_as(None).get("/api/products", params={"q": "rpm"})
    assert listing.json()["total"] == 1

    client = login_as(admin)
    assert client.delete(f"/api/admin/products/{product['id']}").status_code == 200
    assert client.get(f"/api/products/{product['id']}").status_code == 404
    assert client.get("/api/products").json()["total"] == 0
    # 소프트 삭제라 문서는 남아 있다
    assert db.products.count_documents({}) == 1


def test_product_filters_and_paging(client, make_product):
    for index in range(5):
        make_product(f"스트링 {index}", brand="Yonex" if index % 2 else "Luxilon")

    yonex = client.get("/api/products", params={"brand": "Yonex"}).json()
    assert yonex["total"] == 2

    page = client.get("/api/products", params={"limit": 2, "page": 3}).json()
    assert page["page"] == 3
    assert len(page["items"]) == 1


def test_racket_admin_and_status_validation(login_as, make_user):
    admin = make_user("admin@example.com", role="admin")
    client = login_as(admin)

    created = client.post(
        "/api/admin/rackets",
        json={"brand": "Head", "model": "Speed MP", "price": 120000, "rentalFeeByDays": {"7": 18000}},
    )
    assert created.status_code == 201
    racket = created.json()
    assert racket["status"] == "available"
    assert racket["rentalFeeByDays"] == {"7": 18000}

    bad = client.patch(f"/api/admin/rackets/{racket['id']}", json={"status": "lost"})
    assert bad.status_code == 400

    hidden = client.patch(f"/api/admin/rackets/{racket['id']}", json={"status": "inactive"})
    assert hidden.json()["status"] == "inactive"
    assert client.get("/api/rackets").json()["total"] == 0


def test_catalog_admin_requires_login(client):
    response = client.post("/api/admin/products", json={"name": "x", "price": 1})
    assert response.status_code == 401
    assert client.get(f"/api/rackets/{ObjectId()}").status_code == 404
