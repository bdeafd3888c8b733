"""Data models for Dropcart entities."""

from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class BagEntry(BaseModel):
    """A single product/quantity pair of a shopping bag."""

    model_config = ConfigDict(frozen=True)

    product_id: int = Field(description="Dropcart product ID")
    quantity: int = Field(description="Quantity; may be transiently non-positive while normalizing")


class Category(BaseModel):
    """Represents a store category."""

    model_config = ConfigDict(extra="allow")

    id: int = Field(description="Category ID")
    name: Optional[str] = Field(None, description="Category name")


class Product(BaseModel):
    """Represents a product for sale. Unknown server fields are kept."""

    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    id: int = Field(description="Product ID")
    name: Optional[str] = Field(None, description="Product name")
    description: Optional[str] = Field(None, description="Product description")
    brand: Optional[str] = Field(None, description="Product brand")
    ean: Optional[str] = Field(None, description="EAN/barcode")
    price: Optional[Decimal] = Field(None, description="Product price in EUR")
    image: Optional[str] = Field(None, description="Product image URL")


class BagLine(BaseModel):
    """A shopping bag entry resolved against the product catalog."""

    product: Product
    quantity: int = Field(gt=0, description="Quantity of the product")


class TransactionStatus(str, Enum):
    """Server-side status of a transaction."""

    PARTIAL = "PARTIAL"
    FINAL = "FINAL"


class TransactionState(str, Enum):
    """Client-side position in the checkout flow."""

    NONE = "NONE"
    QUOTE = "QUOTE"
    PARTIAL = "PARTIAL"
    FINAL = "FINAL"
    CONFIRMED = "CONFIRMED"


class TransactionResult(BaseModel):
    """
    Result of a create, update or confirm call.

    Every field is optional; only the fields the server actually sent are
    set (see ``model_fields_set``).
    """

    shopping_bag: Optional[Any] = Field(None, description="Bag coding as renegotiated by the server")
    reference: Optional[Any] = Field(None, description="Opaque transaction reference")
    checksum: Optional[Any] = Field(None, description="Opaque transaction checksum")
    missing_customer_details: Optional[Any] = Field(None, description="Customer fields still required")
    warnings: Optional[Any] = Field(None, description="Non-fatal remarks from the server")
    errors: Optional[Any] = Field(None, description="Reasons the transaction cannot proceed")
    redirect: Optional[Any] = Field(None, description="Payment redirect URL after confirmation")
    transaction: Optional[Any] = Field(None, description="Transaction data")

    @property
    def status(self) -> Optional[TransactionStatus]:
        if not isinstance(self.transaction, dict):
            return None
        try:
            return TransactionStatus(self.transaction.get("system_status"))
        except ValueError:
            return None

    @property
    def is_final(self) -> bool:
        return self.status == TransactionStatus.FINAL

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)


class CustomerDetails(BaseModel):
    """Customer fields accepted by the transaction update call. Unknown keys are dropped."""

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    telephone: Optional[str] = None

    shipping_first_name: Optional[str] = None
    shipping_last_name: Optional[str] = None
    shipping_company: Optional[str] = None
    shipping_address_1: Optional[str] = None
    shipping_address_2: Optional[str] = None
    shipping_city: Optional[str] = None
    shipping_postcode: Optional[str] = None
    shipping_country: Optional[str] = None

    billing_first_name: Optional[str] = None
    billing_last_name: Optional[str] = None
    billing_company: Optional[str] = None
    billing_address_1: Optional[str] = None
    billing_address_2: Optional[str] = None
    billing_city: Optional[str] = None
    billing_postcode: Optional[str] = None
    billing_country: Optional[str] = None


class AuthCredentials(BaseModel):
    """Store credentials."""

    public_key: str
    country: str = "NL"


class SessionData(BaseModel):
    """Persisted shopping session."""

    shopping_bag: str = Field(default="", description="Encoded shopping bag")
    reference: Optional[Any] = Field(None, description="Current transaction reference")
    checksum: Optional[Any] = Field(None, description="Current transaction checksum")
    state: TransactionState = Field(default=TransactionState.NONE, description="Checkout progress")
    redirect: Optional[str] = Field(None, description="Payment redirect after confirmation")
