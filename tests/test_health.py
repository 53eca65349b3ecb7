def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["environment"] == "test"


def test_unknown_id_is_rejected_before_lookup(client):
    response = client.get("/api/products/not-an-id")
    assert response.status_code == 400
    assert response.json()["detail"]["error"] == "INVALID_ID"
