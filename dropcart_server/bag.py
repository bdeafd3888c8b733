"""
Shopping bag encoding.

A bag is kept by callers as a compact string such as ``"12=1~7=3"``:
``product=quantity`` pairs joined by ``~``. The empty string is the empty
bag. Every function here is pure; nothing talks to the API.
"""

import logging
import re
from collections.abc import Mapping
from typing import Any, Union

from .exceptions import (
    InvalidBagEncodingError,
    InvalidBagEntryError,
    InvalidProductError,
    InvalidQuantityError,
)
from .models import BagEntry, Product

logger = logging.getLogger(__name__)

ENTRY_SEPARATOR = "~"
PAIR_SEPARATOR = "="
REMOVE_ALL = -1

_BAG_PATTERN = re.compile(r"[0-9]+=[0-9]+(?:~[0-9]+=[0-9]+)*")

# An integer id, a mapping with an "id" key, or an object with an ``id``
# attribute (e.g. a Product returned by the client).
ProductRef = Union[int, Mapping[str, Any], Product]


def decode(coding: str) -> list[BagEntry]:
    """
    Parse an encoded bag.

    The result is normalized and validated.

    Raises:
        InvalidBagEncodingError: If the string does not follow the bag grammar
    """
    if not isinstance(coding, str):
        raise InvalidBagEncodingError(f"Bag coding must be a string, got {type(coding).__name__}")
    if coding == "":
        return []
    if not _BAG_PATTERN.fullmatch(coding):
        raise InvalidBagEncodingError(f"Malformed bag coding: {coding!r}")

    bag = []
    for segment in coding.split(ENTRY_SEPARATOR):
        tokens = segment.split(PAIR_SEPARATOR)
        if len(tokens) != 2:
            raise InvalidBagEncodingError(f"Malformed bag segment: {segment!r}")
        try:
            product_id, quantity = int(tokens[0]), int(tokens[1])
        except ValueError as e:
            raise InvalidBagEncodingError(f"Malformed bag segment: {segment!r}") from e
        bag.append(BagEntry(product_id=product_id, quantity=quantity))

    bag = normalize(bag)
    validate(bag)
    return bag


def encode(bag: list[BagEntry]) -> str:
    """Serialize a bag. The bag must already be normalized."""
    return ENTRY_SEPARATOR.join(
        f"{entry.product_id}{PAIR_SEPARATOR}{entry.quantity}" for entry in bag
    )


def normalize(bag: list[BagEntry]) -> list[BagEntry]:
    """
    Merge duplicate products, then drop non-positive quantities.

    The first occurrence of a product keeps its position and accumulates the
    quantities of later occurrences. Pruning only happens once all merges are
    done, so ``[1=5, 1=-5, 1=3]`` becomes ``[1=3]``.
    """
    merged: dict[int, int] = {}
    for entry in bag:
        merged[entry.product_id] = merged.get(entry.product_id, 0) + entry.quantity

    return [
        BagEntry(product_id=product_id, quantity=quantity)
        for product_id, quantity in merged.items()
        if quantity > 0
    ]


def validate(bag: list[BagEntry]) -> None:
    """
    Check a normalized bag.

    Raises:
        InvalidBagEntryError: On a negative product id or a non-positive quantity
    """
    for entry in bag:
        if entry.product_id < 0:
            raise InvalidBagEntryError(f"Invalid product id {entry.product_id}")
        if entry.quantity <= 0:
            raise InvalidBagEntryError(
                f"Invalid quantity {entry.quantity} for product {entry.product_id}"
            )


def canonicalize(coding: str) -> str:
    """Decode and re-encode, yielding the canonical form of a bag."""
    return encode(decode(coding))


def bag_size(coding: str) -> int:
    """Total number of items in an encoded bag."""
    return sum(entry.quantity for entry in decode(coding))


def resolve_product_id(product: ProductRef) -> int:
    """
    Turn a product reference into its integer id.

    Raises:
        InvalidProductError: If no integer id can be extracted
    """
    if isinstance(product, Mapping):
        if "id" not in product:
            raise InvalidProductError("Product mapping has no 'id' key")
        value = product["id"]
    elif isinstance(product, (bool, str, bytes, float)):
        raise InvalidProductError(f"Cannot use {product!r} as a product")
    elif isinstance(product, int):
        value = product
    elif hasattr(product, "id"):
        value = product.id
    else:
        raise InvalidProductError(f"Cannot use {type(product).__name__} as a product")

    if isinstance(value, bool):
        raise InvalidProductError(f"Invalid product id {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.isascii() and value.isdigit():
        return int(value)
    raise InvalidProductError(f"Invalid product id {value!r}")


def _check_quantity(quantity: Any) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise InvalidQuantityError(f"Quantity must be an integer, got {quantity!r}")


def add_to_bag(coding: str, product: ProductRef, quantity: int = 1) -> str:
    """
    Add ``quantity`` of a product to an encoded bag.

    Returns:
        The new encoded bag

    Raises:
        InvalidQuantityError: If quantity is not positive
    """
    _check_quantity(quantity)
    if quantity <= 0:
        raise InvalidQuantityError(f"Quantity to add must be positive, got {quantity}")

    product_id = resolve_product_id(product)
    bag = decode(coding)
    bag.append(BagEntry(product_id=product_id, quantity=quantity))
    bag = normalize(bag)
    validate(bag)

    logger.debug(f"Added {quantity} x product {product_id} to bag")
    return encode(bag)


def remove_from_bag(coding: str, product: ProductRef, quantity: int = REMOVE_ALL) -> str:
    """
    Remove a product from an encoded bag.

    With the default ``REMOVE_ALL`` the product's entry is deleted outright;
    removing a product that is not in the bag is a no-op. A positive
    quantity is subtracted and the entry disappears once it reaches zero.

    Raises:
        InvalidQuantityError: If quantity is neither -1 nor positive
    """
    _check_quantity(quantity)
    if quantity != REMOVE_ALL and quantity <= 0:
        raise InvalidQuantityError(f"Quantity to remove must be -1 or positive, got {quantity}")

    product_id = resolve_product_id(product)
    bag = decode(coding)

    if quantity == REMOVE_ALL:
        for index, entry in enumerate(bag):
            if entry.product_id == product_id:
                del bag[index]
                break
        return encode(bag)

    bag.append(BagEntry(product_id=product_id, quantity=-quantity))
    bag = normalize(bag)
    validate(bag)

    logger.debug(f"Removed {quantity} x product {product_id} from bag")
    return encode(bag)
