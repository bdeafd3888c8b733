"""Checkout transaction helpers shared by create, update and confirm."""

import logging
from collections.abc import Mapping
from typing import Any, Optional

from pydantic import ValidationError

from .exceptions import InvalidCustomerDetailsError, NoResultError
from .models import CustomerDetails, TransactionResult

logger = logging.getLogger(__name__)

# Fields copied from the envelope's ``meta`` object when present.
META_FIELDS = (
    "shopping_bag",
    "reference",
    "checksum",
    "missing_customer_details",
    "warnings",
    "errors",
    "redirect",
)


def build_transaction_result(envelope: Any) -> TransactionResult:
    """
    Project a ``{data, meta}`` envelope onto a TransactionResult.

    Each meta field is copied only if present. Non-empty ``data`` becomes
    ``transaction``.

    Raises:
        NoResultError: If none of the fields are present
    """
    fields: dict[str, Any] = {}

    if isinstance(envelope, Mapping):
        meta = envelope.get("meta")
        if isinstance(meta, Mapping):
            for key in META_FIELDS:
                if key in meta:
                    fields[key] = meta[key]

        data = envelope.get("data")
        if data:
            fields["transaction"] = data

    if not fields:
        raise NoResultError("Transaction response contained neither data nor meta fields")

    logger.debug(f"Transaction result fields: {sorted(fields)}")
    return TransactionResult(**fields)


def filter_customer_details(details: Optional[Mapping[str, Any]]) -> dict[str, str]:
    """
    Keep only the allow-listed customer fields that were supplied.

    Raises:
        InvalidCustomerDetailsError: If details is not a mapping or an allowed
            field holds something other than a string or number
    """
    if not details:
        return {}
    if not isinstance(details, Mapping):
        raise InvalidCustomerDetailsError(f"Customer details must be a mapping, got {type(details).__name__}")

    try:
        allowed = CustomerDetails.model_validate(dict(details))
    except ValidationError as e:
        fields = sorted({str(error["loc"][0]) for error in e.errors() if error["loc"]})
        raise InvalidCustomerDetailsError(f"Invalid customer details: {', '.join(fields)}") from e
    filtered = allowed.model_dump(exclude_unset=True, exclude_none=True)

    dropped = set(details) - set(CustomerDetails.model_fields)
    if dropped:
        logger.info(f"Ignoring unknown customer fields: {sorted(dropped)}")
    return filtered
