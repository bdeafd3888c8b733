"""Dropcart API client."""

import logging
import os
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from . import bag as bagcodec
from .auth import AuthManager
from .exceptions import DropcartError, NoResultError, RemoteFailureError, RequestContext
from .models import BagLine, Category, Product, TransactionResult
from .transaction import build_transaction_result, filter_customer_details

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://api.dropcart.nl"
API_VERSION = "v2"


class DropcartClient:
    """
    Client for the Dropcart catalog and checkout API.

    Every method blocks on one or more HTTP requests. Each call keeps its own
    RequestContext and attaches it to any DropcartError it raises. An
    instance should not be used from several threads at once; the category
    cache is shared.
    """

    def __init__(
        self,
        auth_manager: AuthManager,
        endpoint: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        """
        Initialize the Dropcart client.

        Args:
            auth_manager: Authentication manager instance
            endpoint: API base URL without trailing slash. Defaults to
                DROPCART_ENDPOINT or https://api.dropcart.nl
            timeout: Request timeout in seconds
            transport: Optional httpx transport, mainly for tests
        """
        self.auth_manager = auth_manager
        self.endpoint = (endpoint or os.environ.get("DROPCART_ENDPOINT") or DEFAULT_ENDPOINT).rstrip("/")
        self.client = httpx.Client(
            base_url=f"{self.endpoint}/{API_VERSION}/",
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )
        self._categories: Optional[list[Category]] = None

    def close(self) -> None:
        self.client.close()

    def _send(
        self,
        context: RequestContext,
        method: str,
        path: str,
        params: Optional[dict[str, Any]] = None,
        json: Optional[dict[str, Any]] = None,
    ) -> Any:
        """
        Perform one request and return the decoded JSON envelope.

        Raises:
            RemoteFailureError: On transport errors and on any status other than 200/201
        """
        query = {"country": self.auth_manager.get_country()}
        if params:
            query.update({key: value for key, value in params.items() if value is not None})

        headers = {}
        if self.auth_manager.is_authenticated():
            headers["Authorization"] = f"Bearer {self.auth_manager.get_token()}"

        request = self.client.build_request(method, path, params=query, json=json, headers=headers)
        context.add_url(str(request.url))
        logger.info(f"{method} {request.url.path}")

        try:
            response = self.client.send(request)
        except httpx.HTTPError as e:
            logger.error(f"Request to {request.url.path} failed: {e}")
            raise RemoteFailureError(f"Request failed: {e}", context.entries) from e

        try:
            body = response.json()
        except ValueError:
            body = response.text
        context.add_response(response.status_code, body)
        logger.info(f"Response: status={response.status_code}")

        if response.status_code not in (200, 201):
            raise RemoteFailureError(
                f"Dropcart API returned status {response.status_code}", context.entries
            )
        return body

    def _data(self, context: RequestContext, envelope: Any) -> Any:
        if not isinstance(envelope, Mapping) or "data" not in envelope:
            raise NoResultError("Response envelope has no data", context.entries)
        return envelope["data"]

    @contextmanager
    def _operation(self) -> Iterator[RequestContext]:
        """Give one operation its RequestContext and attach it to any error."""
        context = RequestContext()
        try:
            yield context
        except DropcartError as e:
            raise e.attach(context)
        except httpx.HTTPError as e:
            raise RemoteFailureError(str(e), context.entries) from e
        except ValidationError as e:
            raise NoResultError(f"Unexpected response content: {e}", context.entries) from e

    def auth(self, public_key: str, country: str) -> None:
        """
        Authenticate with the store's public key and country of origin.

        Only the first call has any effect. Categories are loaded eagerly so
        that bad credentials fail here.
        """
        if not self.auth_manager.set_credentials(public_key, country):
            return
        self.get_categories()

    def get_categories(self) -> list[Category]:
        """Retrieve the store categories. Cached after the first call."""
        if self._categories is not None:
            return self._categories

        with self._operation() as context:
            data = self._data(context, self._send(context, "GET", "categories"))
            self._categories = [Category.model_validate(item) for item in data or []]

        logger.info(f"Loaded {len(self._categories)} categories")
        return self._categories

    def _default_category(self, context: RequestContext) -> int:
        categories = self.get_categories()
        if not categories:
            raise NoResultError("Store has no categories", context.entries)
        return categories[0].id

    def get_product_listing(self, category: Optional[Any] = None) -> list[Product]:
        """
        Retrieve the products for sale in a category.

        Without a category the top-most category is used.

        Raises:
            NoResultError: If no category is given and the store has none
        """
        with self._operation() as context:
            category_id = (
                self._default_category(context) if category is None else bagcodec.resolve_product_id(category)
            )
            data = self._data(
                context,
                self._send(context, "GET", "products", params={"category_id": category_id}),
            )
            return [Product.model_validate(item) for item in data or []]

    def get_product_info(self, product: bagcodec.ProductRef) -> Product:
        """Retrieve a single product."""
        with self._operation() as context:
            product_id = bagcodec.resolve_product_id(product)
            data = self._data(context, self._send(context, "GET", f"products/{product_id}"))
            if not data:
                raise NoResultError(f"Product {product_id} not found", context.entries)
            return Product.model_validate(data)

    def find_product_listing(self, query: str, category: Optional[Any] = None) -> list[Product]:
        """Search products by a free-text query."""
        logger.info(f"=== SEARCH: query='{query}' ===")

        with self._operation() as context:
            params: dict[str, Any] = {"query": query}
            if category is not None:
                params["category_id"] = bagcodec.resolve_product_id(category)
            data = self._data(context, self._send(context, "GET", "products/search", params=params))
            products = [Product.model_validate(item) for item in data or []]

        logger.info(f"Found {len(products)} products")
        return products

    def read_shopping_bag(self, coding: str) -> list[BagLine]:
        """Decode a bag and look up every product in it."""
        with self._operation():
            entries = bagcodec.decode(coding)

        return [
            BagLine(product=self.get_product_info(entry.product_id), quantity=entry.quantity)
            for entry in entries
        ]

    def add_shopping_bag(self, coding: str, product: bagcodec.ProductRef, quantity: int = 1) -> str:
        """Add a product to an encoded bag. No request is made."""
        with self._operation():
            return bagcodec.add_to_bag(coding, product, quantity)

    def remove_shopping_bag(
        self, coding: str, product: bagcodec.ProductRef, quantity: int = bagcodec.REMOVE_ALL
    ) -> str:
        """Remove a product from an encoded bag. No request is made."""
        with self._operation():
            return bagcodec.remove_from_bag(coding, product, quantity)

    def _transaction_call(
        self,
        action: str,
        coding: str,
        params: Optional[dict[str, Any]] = None,
        body: Optional[dict[str, Any]] = None,
    ) -> TransactionResult:
        with self._operation() as context:
            shopping_bag = bagcodec.canonicalize(coding)
            query = {"shopping_bag": shopping_bag}
            query.update(params or {})
            envelope = self._send(context, "POST", f"transaction/{action}", params=query, json=body)
            result = build_transaction_result(envelope)

        if result.has_errors:
            logger.warning(f"Transaction {action} reported errors: {result.errors}")
        if result.warnings:
            logger.info(f"Transaction {action} warnings: {result.warnings}")
        return result

    def create_transaction(self, coding: str) -> TransactionResult:
        """
        Create a transaction quote for a bag.

        Returns:
            The result, normally carrying a reference and checksum for later calls
        """
        logger.info(f"=== CREATE TRANSACTION: bag='{coding}' ===")
        return self._transaction_call("create", coding)

    def update_transaction(
        self,
        coding: str,
        reference: Any,
        checksum: Any,
        customer_details: Optional[Mapping[str, Any]] = None,
    ) -> TransactionResult:
        """
        Send customer details for an open transaction.

        Unknown detail fields are dropped. Fields the server still needs are
        reported in ``missing_customer_details``.

        Raises:
            InvalidCustomerDetailsError: If an allowed field is not a string or number
        """
        logger.info(f"=== UPDATE TRANSACTION: reference={reference} ===")
        with self._operation():
            details = filter_customer_details(customer_details)
        return self._transaction_call(
            "update",
            coding,
            params={"reference": reference, "checksum": checksum},
            body=details,
        )

    def confirm_transaction(self, coding: str, reference: Any, checksum: Any) -> TransactionResult:
        """
        Confirm a transaction.

        Only call this after the customer gave explicit consent and a previous
        response reported FINAL status. The result carries the payment redirect.
        """
        logger.info(f"=== CONFIRM TRANSACTION: reference={reference} ===")
        return self._transaction_call(
            "confirm",
            coding,
            params={"reference": reference, "checksum": checksum},
        )
