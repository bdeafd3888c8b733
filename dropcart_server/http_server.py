"""HTTP server for Dropcart MCP Server."""

import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from . import bag as bagcodec
from .auth import AuthManager
from .dropcart_client import DropcartClient
from .exceptions import BagError, DropcartError, InvalidCustomerDetailsError, NoResultError
from .models import TransactionResult, TransactionStatus

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("dropcart-http-server")

BAG_COOKIE = "dropcart_bag"
REFERENCE_COOKIE = "dropcart_reference"
CHECKSUM_COOKIE = "dropcart_checksum"
STATUS_COOKIE = "dropcart_status"
TRANSACTION_COOKIES = (REFERENCE_COOKIE, CHECKSUM_COOKIE, STATUS_COOKIE)

# Global state
auth_manager: AuthManager
dropcart_client: DropcartClient


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown."""
    global auth_manager, dropcart_client

    # Startup
    logger.info("Starting Dropcart HTTP Server...")
    auth_manager = AuthManager()
    dropcart_client = DropcartClient(auth_manager)
    if not auth_manager.is_authenticated():
        logger.warning("No credentials found in environment variables (DROPCART_PUBLIC_KEY)")

    yield

    # Shutdown
    logger.info("Shutting down Dropcart HTTP Server...")
    dropcart_client.close()


app = FastAPI(
    title="Dropcart MCP Server",
    description="HTTP API for browsing a Dropcart store and checking out a shopping bag",
    version="0.1.0",
    lifespan=lifespan,
)


# Request/Response Models
class BagItemRequest(BaseModel):
    product_id: int
    quantity: int = 1


class RemoveFromBagRequest(BaseModel):
    product_id: int
    quantity: int = bagcodec.REMOVE_ALL


class UpdateTransactionRequest(BaseModel):
    customer_details: dict[str, Any] = {}


class ConfirmTransactionRequest(BaseModel):
    consent: bool = False


@app.exception_handler(BagError)
async def bag_error_handler(request: Request, exc: BagError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(InvalidCustomerDetailsError)
async def customer_details_error_handler(request: Request, exc: InvalidCustomerDetailsError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(NoResultError)
async def no_result_handler(request: Request, exc: NoResultError):
    return JSONResponse(status_code=404, content={"detail": str(exc), "context": exc.context})


@app.exception_handler(DropcartError)
async def dropcart_error_handler(request: Request, exc: DropcartError):
    logger.error(f"Dropcart error on {request.url.path}: {exc} (context: {exc.context})")
    return JSONResponse(status_code=502, content={"detail": str(exc), "context": exc.context})


def require_credentials() -> None:
    if not auth_manager.is_authenticated():
        raise HTTPException(status_code=401, detail="DROPCART_PUBLIC_KEY not configured")


def open_transaction(request: Request) -> tuple[str, str]:
    reference = request.cookies.get(REFERENCE_COOKIE)
    checksum = request.cookies.get(CHECKSUM_COOKIE)
    if reference is None or checksum is None:
        raise HTTPException(status_code=409, detail="No open transaction")
    return reference, checksum


def current_bag(request: Request) -> str:
    return request.cookies.get(BAG_COOKIE, "")


def bag_payload(coding: str) -> dict[str, Any]:
    entries = bagcodec.decode(coding)
    return {
        "shopping_bag": coding,
        "item_count": sum(entry.quantity for entry in entries),
        "items": [entry.model_dump() for entry in entries],
    }


def store_bag(response: Response, previous: str, coding: str) -> None:
    """Store a new bag cookie; a changed bag invalidates the open transaction."""
    response.set_cookie(BAG_COOKIE, coding, httponly=True, samesite="lax")
    if coding != previous:
        for name in TRANSACTION_COOKIES:
            response.delete_cookie(name)


def store_transaction(response: Response, result: TransactionResult) -> None:
    fields = result.model_fields_set
    if "shopping_bag" in fields and result.shopping_bag is not None:
        response.set_cookie(BAG_COOKIE, bagcodec.canonicalize(result.shopping_bag), httponly=True, samesite="lax")
    if result.redirect:
        # Confirmed; the transaction is closed
        for name in TRANSACTION_COOKIES:
            response.delete_cookie(name)
        return
    if "reference" in fields and result.reference is not None:
        response.set_cookie(REFERENCE_COOKIE, str(result.reference), httponly=True, samesite="lax")
    if "checksum" in fields and result.checksum is not None:
        response.set_cookie(CHECKSUM_COOKIE, str(result.checksum), httponly=True, samesite="lax")
    # Every result restates the status; without one the transaction is not FINAL
    if result.status:
        response.set_cookie(STATUS_COOKIE, result.status.value, httponly=True, samesite="lax")
    else:
        response.delete_cookie(STATUS_COOKIE)


def transaction_payload(result: TransactionResult) -> dict[str, Any]:
    payload = result.model_dump(exclude_unset=True)
    payload["status"] = result.status.value if result.status else None
    return payload


# Root endpoint
@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "name": "Dropcart MCP Server",
        "version": "0.1.0",
        "description": "HTTP API for browsing a Dropcart store and checking out a shopping bag",
        "endpoints": {
            "docs": "/docs",
            "health": "/health",
            "catalog": {
                "categories": "GET /categories",
                "products": "GET /products",
                "product": "GET /products/{product_id}",
                "search": "GET /products/search?query=...",
            },
            "bag": {
                "get": "GET /bag",
                "details": "GET /bag/details",
                "add": "POST /bag/add",
                "remove": "POST /bag/remove",
                "clear": "POST /bag/clear",
            },
            "transaction": {
                "create": "POST /transaction",
                "update": "POST /transaction/update",
                "confirm": "POST /transaction/confirm",
            },
        },
        "configured": auth_manager.is_authenticated(),
    }


# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "configured": auth_manager.is_authenticated()}


# Catalog endpoints
@app.get("/categories")
def list_categories():
    """List the store categories."""
    try:
        require_credentials()
        categories = dropcart_client.get_categories()
        return {"count": len(categories), "categories": [c.model_dump() for c in categories]}
    except (HTTPException, DropcartError):
        raise
    except Exception as e:
        logger.error(f"List categories error: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/products")
def list_products(category_id: Optional[int] = None):
    """List products in a category, the top-most one by default."""
    try:
        require_credentials()
        products = dropcart_client.get_product_listing(category_id)
        return {"count": len(products), "products": [p.model_dump(mode="json") for p in products]}
    except (HTTPException, DropcartError):
        raise
    except Exception as e:
        logger.error(f"List products error: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/products/search")
def search_products(query: str, category_id: Optional[int] = None):
    """Search for products."""
    try:
        require_credentials()
        products = dropcart_client.find_product_listing(query, category_id)
        return {"count": len(products), "products": [p.model_dump(mode="json") for p in products]}
    except (HTTPException, DropcartError):
        raise
    except Exception as e:
        logger.error(f"Search error: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/products/{product_id}")
def get_product(product_id: int):
    """Get a single product."""
    try:
        require_credentials()
        return dropcart_client.get_product_info(product_id).model_dump(mode="json")
    except (HTTPException, DropcartError):
        raise
    except Exception as e:
        logger.error(f"Get product error: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


# Bag endpoints
@app.get("/bag")
async def get_bag(request: Request):
    """Get the bag stored in the cookie."""
    return bag_payload(current_bag(request))


@app.get("/bag/details")
def get_bag_details(request: Request):
    """Get the bag with product details."""
    try:
        require_credentials()
        lines = dropcart_client.read_shopping_bag(current_bag(request))
        return {
            "item_count": sum(line.quantity for line in lines),
            "lines": [line.model_dump(mode="json") for line in lines],
        }
    except (HTTPException, DropcartError):
        raise
    except Exception as e:
        logger.error(f"Bag details error: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


@app.post("/bag/add")
async def add_to_bag(item: BagItemRequest, request: Request, response: Response):
    """Add a product to the bag."""
    previous = current_bag(request)
    coding = dropcart_client.add_shopping_bag(previous, item.product_id, item.quantity)
    store_bag(response, previous, coding)
    return bag_payload(coding)


@app.post("/bag/remove")
async def remove_from_bag(item: RemoveFromBagRequest, request: Request, response: Response):
    """Remove a product from the bag, entirely by default."""
    previous = current_bag(request)
    coding = dropcart_client.remove_shopping_bag(previous, item.product_id, item.quantity)
    store_bag(response, previous, coding)
    return bag_payload(coding)


@app.post("/bag/clear")
async def clear_bag(request: Request, response: Response):
    """Empty the bag."""
    store_bag(response, current_bag(request), "")
    return bag_payload("")


# Transaction endpoints
@app.post("/transaction")
def create_transaction(request: Request, response: Response):
    """Create a transaction for the bag in the cookie."""
    try:
        require_credentials()
        coding = current_bag(request)
        if not coding:
            raise HTTPException(status_code=400, detail="Shopping bag is empty")

        for name in TRANSACTION_COOKIES:
            response.delete_cookie(name)
        result = dropcart_client.create_transaction(coding)
        store_transaction(response, result)
        return transaction_payload(result)
    except (HTTPException, DropcartError):
        raise
    except Exception as e:
        logger.error(f"Create transaction error: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


@app.post("/transaction/update")
def update_transaction(body: UpdateTransactionRequest, request: Request, response: Response):
    """Send customer details for the open transaction."""
    try:
        require_credentials()
        reference, checksum = open_transaction(request)

        result = dropcart_client.update_transaction(current_bag(request), reference, checksum, body.customer_details)
        store_transaction(response, result)
        return transaction_payload(result)
    except (HTTPException, DropcartError):
        raise
    except Exception as e:
        logger.error(f"Update transaction error: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


@app.post("/transaction/confirm")
def confirm_transaction(body: ConfirmTransactionRequest, request: Request, response: Response):
    """Confirm the open transaction. Needs explicit consent and FINAL status."""
    try:
        require_credentials()
        if not body.consent:
            raise HTTPException(status_code=400, detail="Explicit customer consent is required")
        reference, checksum = open_transaction(request)
        if request.cookies.get(STATUS_COOKIE) != TransactionStatus.FINAL.value:
            raise HTTPException(status_code=409, detail="Transaction is not FINAL yet")

        result = dropcart_client.confirm_transaction(current_bag(request), reference, checksum)
        store_transaction(response, result)
        return transaction_payload(result)
    except (HTTPException, DropcartError):
        raise
    except Exception as e:
        logger.error(f"Confirm transaction error: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


def run_http_server(host: str = "0.0.0.0", port: int = 8000):
    """Run the HTTP server."""
    import uvicorn

    uvicorn.run(app, host=host, port=port, log_level="info")


if __name__ == "__main__":
    run_http_server()
