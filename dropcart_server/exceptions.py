"""Errors raised by the Dropcart client."""

from typing import Any, Optional


class RequestContext:
    """
    Diagnostic log for a single client operation.

    Every request URL is appended as ``{"url": ...}`` and every response as
    ``{"code": ..., "body": ...}``. One context is created per operation and
    attached to any error it raises.
    """

    def __init__(self) -> None:
        self.entries: list[dict[str, Any]] = []

    def add_url(self, url: str) -> None:
        self.entries.append({"url": url})

    def add_response(self, code: int, body: Any) -> None:
        self.entries.append({"code": code, "body": body})


class DropcartError(Exception):
    """
    Base class of every error raised by this package.

    Catching it handles all errors. The ``context`` attribute lists what was
    attempted when the error occurred and is useful for troubleshooting.
    """

    default_message = "An error occurred"

    def __init__(self, message: Optional[str] = None, context: Optional[list[dict[str, Any]]] = None) -> None:
        super().__init__(message or self.default_message)
        self.context: list[dict[str, Any]] = list(context) if context else []

    def attach(self, context: RequestContext) -> "DropcartError":
        """Attach a request context unless one is already present."""
        if not self.context:
            self.context = list(context.entries)
        return self


class BagError(DropcartError, ValueError):
    """Invalid shopping bag input."""


class InvalidBagEncodingError(BagError):
    default_message = "Malformed shopping bag encoding"


class InvalidBagEntryError(BagError):
    default_message = "Shopping bag contains an invalid entry"


class InvalidQuantityError(BagError):
    default_message = "Invalid quantity"


class InvalidProductError(BagError):
    default_message = "Product reference has no integer id"


class NoResultError(DropcartError):
    default_message = "The server returned no usable result"


class RemoteFailureError(DropcartError):
    default_message = "Request to the Dropcart API failed"


class InvalidCustomerDetailsError(DropcartError, ValueError):
    default_message = "Invalid customer details"
