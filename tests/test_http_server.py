import pytest
from fastapi.testclient import TestClient

from dropcart_server import http_server


@pytest.fixture
def http(monkeypatch, auth_manager, client):
    monkeypatch.setattr(http_server, "auth_manager", auth_manager, raising=False)
    monkeypatch.setattr(http_server, "dropcart_client", client, raising=False)
    return TestClient(http_server.app)


def test_health(http):
    assert http.get("/health").json() == {"status": "healthy", "configured": True}


def test_bag_lives_in_cookie(http):
    assert http.get("/bag").json()["shopping_bag"] == ""

    response = http.post("/bag/add", json={"product_id": 5, "quantity": 2})
    assert response.status_code == 200
    assert response.json()["shopping_bag"] == "5=2"

    http.post("/bag/add", json={"product_id": 3})
    http.post("/bag/remove", json={"product_id": 5, "quantity": 1})

    body = http.get("/bag").json()
    assert body["shopping_bag"] == "5=1~3=1"
    assert body["item_count"] == 2
    assert body["items"] == [{"product_id": 5, "quantity": 1}, {"product_id": 3, "quantity": 1}]

    http.post("/bag/clear")
    assert http.get("/bag").json()["shopping_bag"] == ""


def test_invalid_quantity_is_bad_request(http):
    response = http.post("/bag/remove", json={"product_id": 5, "quantity": 0})

    assert response.status_code == 400


def test_malformed_bag_cookie_is_bad_request(http):
    response = http.get("/bag", headers={"Cookie": "dropcart_bag=abc"})

    assert response.status_code == 400


def test_remote_failure_is_bad_gateway(http, api):
    api.add("GET", "categories", {"error": "down"}, status=503)

    response = http.get("/categories")

    assert response.status_code == 502
    assert response.json()["context"][-1] == {"code": 503, "body": {"error": "down"}}


def test_no_categories_is_not_found(http, api):
    api.add("GET", "categories", {"data": []})

    assert http.get("/products").status_code == 404


def test_product_endpoints(http, api):
    api.add("GET", "products/search", {"data": [{"id": 2, "name": "Summer tyre"}]})
    api.add("GET", "products/2", {"data": {"id": 2, "name": "Summer tyre", "price": "49.95"}})

    assert http.get("/products/search", params={"query": "summer"}).json()["count"] == 1
    assert http.get("/products/2").json()["price"] == "49.95"


def test_checkout_flow(http, api):
    http.post("/bag/add", json={"product_id": 5, "quantity": 2})

    api.add("POST", "transaction/create", {
        "meta": {"reference": "r1", "checksum": "c1"},
        "data": {"system_status": "PARTIAL"},
    })
    created = http.post("/transaction").json()
    assert created["status"] == "PARTIAL"
    assert created["reference"] == "r1"
    assert api.last_request.url.params["shopping_bag"] == "5=2"

    assert http.post("/transaction/confirm", json={"consent": True}).status_code == 409

    api.add("POST", "transaction/update", {
        "meta": {"reference": "r1", "checksum": "c2"},
        "data": {"system_status": "FINAL"},
    })
    updated = http.post("/transaction/update", json={"customer_details": {"email": "jan@example.com"}}).json()
    assert updated["status"] == "FINAL"
    assert api.last_request.url.params["checksum"] == "c1"

    assert http.post("/transaction/confirm", json={"consent": False}).status_code == 400

    api.add("POST", "transaction/confirm", {"meta": {"redirect": "https://pay.example/r1"}})
    confirmed = http.post("/transaction/confirm", json={"consent": True}).json()
    assert confirmed["redirect"] == "https://pay.example/r1"
    assert api.last_request.url.params["checksum"] == "c2"


def test_create_transaction_with_empty_bag(http):
    assert http.post("/transaction").status_code == 400


def test_update_without_transaction(http):
    http.post("/bag/add", json={"product_id": 5})

    assert http.post("/transaction/update", json={"customer_details": {}}).status_code == 409


def test_update_with_non_text_details_is_bad_request(http, api):
    http.post("/bag/add", json={"product_id": 5})
    api.add("POST", "transaction/create", {"meta": {"reference": "r1", "checksum": "c1"}})
    http.post("/transaction")

    response = http.post("/transaction/update", json={"customer_details": {"email": {"x": 1}}})

    assert response.status_code == 400
    assert "email" in response.json()["detail"]
    assert api.last_request.url.path == "/v2/transaction/create"


def test_update_without_status_reopens_final_gate(http, api):
    http.post("/bag/add", json={"product_id": 5})
    api.add("POST", "transaction/create", {
        "meta": {"reference": "r1", "checksum": "c1"},
        "data": {"system_status": "FINAL"},
    })
    assert http.post("/transaction").json()["status"] == "FINAL"

    api.add("POST", "transaction/update", {
        "meta": {"reference": "r1", "checksum": "c2", "missing_customer_details": ["email"]},
    })
    assert http.post("/transaction/update", json={"customer_details": {}}).json()["status"] is None

    api.add("POST", "transaction/confirm", {"meta": {"redirect": "https://pay.example/r1"}})
    response = http.post("/transaction/confirm", json={"consent": True})

    assert response.status_code == 409
    assert api.last_request.url.path == "/v2/transaction/update"


def test_catalog_requires_credentials(http, auth_manager):
    auth_manager.credentials = None

    response = http.get("/categories")

    assert response.status_code == 401
    assert response.json() == {"detail": "DROPCART_PUBLIC_KEY not configured"}
