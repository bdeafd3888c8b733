import asyncio

import pytest

from dropcart_server import server
from dropcart_server.models import TransactionState


@pytest.fixture
def tools(monkeypatch, auth_manager, client):
    monkeypatch.setattr(server, "auth_manager", auth_manager, raising=False)
    monkeypatch.setattr(server, "dropcart_client", client, raising=False)
    return server.handle_tool


def call(name, arguments=None):
    contents = asyncio.run(server.call_tool(name, arguments or {}))
    return contents[0].text


def test_bag_tools(tools, auth_manager):
    assert "2 item(s)" in tools("dropcart_add_to_bag", {"product_id": 5, "quantity": 2})
    tools("dropcart_add_to_bag", {"product_id": 3})
    assert auth_manager.get_bag() == "5=2~3=1"

    tools("dropcart_remove_from_bag", {"product_id": 5, "quantity": 1})
    assert auth_manager.get_bag() == "5=1~3=1"

    tools("dropcart_remove_from_bag", {"product_id": 5})
    assert auth_manager.get_bag() == "3=1"

    assert tools("dropcart_clear_bag", {}) == "Shopping bag cleared"
    assert auth_manager.get_bag() == ""


def test_invalid_quantity_is_reported(tools, auth_manager):
    text = call("dropcart_add_to_bag", {"product_id": 5, "quantity": 0})

    assert text.startswith("Error:")
    assert auth_manager.get_bag() == ""


def test_remote_failure_includes_context(tools, api):
    api.add("GET", "categories", {"error": "boom"}, status=500)

    text = call("dropcart_list_categories")

    assert "Context:" in text
    assert '"code": 500' in text


def test_catalog_requires_credentials(tools, auth_manager):
    auth_manager.credentials = None

    assert tools("dropcart_list_categories", {}) == server.NOT_CONFIGURED


def test_search_products(tools, api):
    api.add("GET", "products/search", {"data": [{"id": 2, "name": "Summer tyre", "price": "49.95"}]})

    text = tools("dropcart_search_products", {"query": "summer"})

    assert "Summer tyre" in text
    assert "€49.95" in text


def test_checkout_flow(tools, api, auth_manager):
    tools("dropcart_add_to_bag", {"product_id": 5, "quantity": 2})

    api.add("POST", "transaction/create", {
        "meta": {"reference": "r1", "checksum": "c1", "missing_customer_details": ["email"]},
        "data": {"system_status": "PARTIAL"},
    })
    text = tools("dropcart_create_transaction", {})
    assert "Checkout state: PARTIAL" in text
    assert "email" in text

    refused = tools("dropcart_confirm_transaction", {"consent": True})
    assert refused.startswith("Error: Transaction is not ready")

    api.add("POST", "transaction/update", {
        "meta": {"reference": "r1", "checksum": "c2"},
        "data": {"system_status": "FINAL"},
    })
    text = tools("dropcart_update_transaction", {"customer_details": {"email": "jan@example.com", "shoe_size": "44"}})
    assert "Checkout state: FINAL" in text
    assert api.last_request.url.params["checksum"] == "c1"

    no_consent = tools("dropcart_confirm_transaction", {"consent": False})
    assert no_consent.startswith("Error: The customer must explicitly consent")

    api.add("POST", "transaction/confirm", {"meta": {"redirect": "https://pay.example/r1"}})
    text = tools("dropcart_confirm_transaction", {"consent": True})
    assert "https://pay.example/r1" in text
    assert api.last_request.url.params["checksum"] == "c2"
    assert auth_manager.get_session().state == TransactionState.CONFIRMED


def test_create_transaction_with_empty_bag(tools):
    assert tools("dropcart_create_transaction", {}) == "Error: Shopping bag is empty"


def test_update_without_transaction(tools):
    tools("dropcart_add_to_bag", {"product_id": 5})

    assert tools("dropcart_update_transaction", {"customer_details": {}}).startswith("Error: No open transaction")


def test_renegotiated_bag_is_stored(tools, api, auth_manager):
    tools("dropcart_add_to_bag", {"product_id": 5, "quantity": 4})
    api.add("POST", "transaction/create", {
        "meta": {"shopping_bag": "5=1", "reference": "r1", "checksum": "c1", "warnings": ["Only 1 in stock"]},
    })

    text = tools("dropcart_create_transaction", {})

    assert auth_manager.get_bag() == "5=1"
    assert "Only 1 in stock" in text
    assert auth_manager.get_session().reference == "r1"


def test_unknown_tool(tools):
    assert tools("dropcart_nope", {}) == "Unknown tool: dropcart_nope"


def test_update_with_non_text_details_is_reported(tools, api, auth_manager):
    tools("dropcart_add_to_bag", {"product_id": 5})
    api.add("POST", "transaction/create", {"meta": {"reference": "r1", "checksum": "c1"}})
    tools("dropcart_create_transaction", {})

    text = call("dropcart_update_transaction", {"customer_details": {"email": ["a@b.example"]}})

    assert text.startswith("Error: Invalid customer details: email")
    assert auth_manager.get_session().checksum == "c1"
