import pytest

from dropcart_server.exceptions import InvalidCustomerDetailsError, NoResultError
from dropcart_server.models import TransactionStatus
from dropcart_server.transaction import build_transaction_result, filter_customer_details


def test_empty_data_is_not_promoted():
    result = build_transaction_result({"meta": {"reference": "r1", "checksum": "c1"}, "data": {}})

    assert result.reference == "r1"
    assert result.checksum == "c1"
    assert "transaction" not in result.model_fields_set
    assert result.transaction is None


def test_empty_envelope_is_no_result():
    with pytest.raises(NoResultError):
        build_transaction_result({})


def test_envelope_with_only_empty_data_is_no_result():
    with pytest.raises(NoResultError):
        build_transaction_result({"data": {}, "meta": {}})


def test_non_mapping_envelope_is_no_result():
    with pytest.raises(NoResultError):
        build_transaction_result(["unexpected"])


def test_only_present_meta_fields_are_set():
    result = build_transaction_result({"meta": {"warnings": [], "unrelated": 1}})

    assert result.model_fields_set == {"warnings"}
    assert result.warnings == []


def test_all_fields_projected():
    envelope = {
        "meta": {
            "shopping_bag": "1=2",
            "reference": "r1",
            "checksum": "c1",
            "missing_customer_details": ["email"],
            "warnings": ["stock low"],
            "errors": ["out of stock"],
            "redirect": "https://pay.example/1",
        },
        "data": {"system_status": "FINAL", "total": "10.00"},
    }

    result = build_transaction_result(envelope)

    assert result.model_fields_set == {
        "shopping_bag",
        "reference",
        "checksum",
        "missing_customer_details",
        "warnings",
        "errors",
        "redirect",
        "transaction",
    }
    assert result.transaction == {"system_status": "FINAL", "total": "10.00"}
    assert result.status == TransactionStatus.FINAL
    assert result.is_final
    assert result.has_errors


def test_status_partial_and_unknown():
    partial = build_transaction_result({"data": {"system_status": "PARTIAL"}})
    unknown = build_transaction_result({"data": {"system_status": "WEIRD"}})

    assert partial.status == TransactionStatus.PARTIAL
    assert not partial.is_final
    assert unknown.status is None


def test_filter_customer_details_drops_unknown_keys():
    details = {
        "first_name": "Jan",
        "email": "jan@example.com",
        "shipping_postcode": 1234,
        "password": "secret",
        "is_admin": True,
    }

    assert filter_customer_details(details) == {
        "first_name": "Jan",
        "email": "jan@example.com",
        "shipping_postcode": "1234",
    }


def test_filter_customer_details_keeps_any_subset():
    assert filter_customer_details({"telephone": "+31 6 12312345"}) == {"telephone": "+31 6 12312345"}
    assert filter_customer_details({}) == {}
    assert filter_customer_details(None) == {}


def test_non_string_meta_values_are_kept_verbatim():
    result = build_transaction_result({"meta": {"redirect": {"url": "https://pay.example/r1"}, "shopping_bag": 0}})

    assert result.redirect == {"url": "https://pay.example/r1"}
    assert result.shopping_bag == 0
    assert result.model_fields_set == {"redirect", "shopping_bag"}


@pytest.mark.parametrize("value", [["a@b.example"], {"x": 1}])
def test_filter_customer_details_rejects_non_text_values(value):
    with pytest.raises(InvalidCustomerDetailsError) as excinfo:
        filter_customer_details({"email": value, "first_name": "Jan"})

    assert "email" in str(excinfo.value)
    assert isinstance(excinfo.value, ValueError)
