"""MCP Server for Dropcart stores."""

import asyncio
import json
import logging
from typing import Any

from mcp.server import Server
from mcp.types import Resource, Tool, TextContent
from pydantic import AnyUrl

from . import bag as bagcodec
from .auth import AuthManager
from .dropcart_client import DropcartClient
from .exceptions import BagError, DropcartError, InvalidCustomerDetailsError
from .models import Product, TransactionResult, TransactionState

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("dropcart-mcp-server")

# Initialize server
app = Server("dropcart-mcp-server")

# Global state
auth_manager: AuthManager
dropcart_client: DropcartClient

NOT_CONFIGURED = "Error: Not configured. Please set DROPCART_PUBLIC_KEY in the MCP settings."

CUSTOMER_DETAILS_SCHEMA = {
    "type": "object",
    "description": "Customer fields (first_name, last_name, email, telephone, shipping_*/billing_* address fields). Unknown fields are ignored.",
    "additionalProperties": {"type": "string"},
}


def format_products(products: list[Product]) -> str:
    result_lines = [f"Found {len(products)} product(s):\n"]
    for i, product in enumerate(products, 1):
        result_lines.append(f"\n{i}. {product.name or '(unnamed)'}")
        result_lines.append(f"   ID: {product.id}")
        if product.brand:
            result_lines.append(f"   Brand: {product.brand}")
        if product.ean:
            result_lines.append(f"   EAN: {product.ean}")
        if product.price is not None:
            result_lines.append(f"   Price: €{product.price}")
    return "\n".join(result_lines)


def format_transaction(result: TransactionResult) -> str:
    """Render a transaction result together with the stored checkout state."""
    session = auth_manager.get_session()
    result_lines = [f"Checkout state: {session.state.value}"]

    if result.status:
        result_lines.append(f"Server status: {result.status.value}")
    if session.reference is not None:
        result_lines.append(f"Reference: {session.reference}")
    if "shopping_bag" in result.model_fields_set:
        result_lines.append(f"Shopping bag: {session.shopping_bag or '(empty)'}")
    if result.missing_customer_details:
        result_lines.append(f"Missing customer details: {json.dumps(result.missing_customer_details)}")
    if result.warnings:
        result_lines.append(f"Warnings: {json.dumps(result.warnings, default=str)}")
    if result.errors:
        result_lines.append(f"Errors: {json.dumps(result.errors, default=str)}")
    if result.redirect:
        result_lines.append(f"Complete payment at: {result.redirect}")
    if result.transaction:
        result_lines.append(f"\nTransaction:\n{json.dumps(result.transaction, indent=2, default=str)}")

    return "\n".join(result_lines)


@app.list_resources()
async def list_resources() -> list[Resource]:
    """List available resources."""
    return [
        Resource(
            uri=AnyUrl("dropcart://bag"),
            name="Shopping Bag",
            mimeType="application/json",
            description="Current shopping bag and checkout state",
        ),
    ]


@app.read_resource()
async def read_resource(uri: AnyUrl) -> str:
    """Read a resource by URI."""
    if str(uri) == "dropcart://bag":
        return auth_manager.get_session().model_dump_json(indent=2)

    raise ValueError(f"Unknown resource: {uri}")


@app.list_tools()
async def list_tools() -> list[Tool]:
    """List available tools."""
    return [
        Tool(
            name="dropcart_list_categories",
            description="List the store's product categories",
            inputSchema={"type": "object", "properties": {}},
        ),
        Tool(
            name="dropcart_list_products",
            description="List products for sale in a category (top-most category by default)",
            inputSchema={
                "type": "object",
                "properties": {
                    "category_id": {
                        "type": "integer",
                        "description": "Category ID (optional)",
                    },
                },
            },
        ),
        Tool(
            name="dropcart_get_product",
            description="Get details of a single product",
            inputSchema={
                "type": "object",
                "properties": {
                    "product_id": {"type": "integer", "description": "Product ID"},
                },
                "required": ["product_id"],
            },
        ),
        Tool(
            name="dropcart_search_products",
            description="Search for products by name",
            inputSchema={
                "type": "object",
                "properties": {
                    "query": {"type": "string", "description": "Search term"},
                    "category_id": {
                        "type": "integer",
                        "description": "Restrict to a category (optional)",
                    },
                },
                "required": ["query"],
            },
        ),
        Tool(
            name="dropcart_get_bag",
            description="Show the shopping bag with product details",
            inputSchema={"type": "object", "properties": {}},
        ),
        Tool(
            name="dropcart_add_to_bag",
            description="Add a product to the shopping bag",
            inputSchema={
                "type": "object",
                "properties": {
                    "product_id": {"type": "integer", "description": "Product ID to add"},
                    "quantity": {
                        "type": "integer",
                        "description": "Quantity to add (default: 1)",
                        "default": 1,
                    },
                },
                "required": ["product_id"],
            },
        ),
        Tool(
            name="dropcart_remove_from_bag",
            description="Remove a product from the shopping bag, entirely or partially",
            inputSchema={
                "type": "object",
                "properties": {
                    "product_id": {"type": "integer", "description": "Product ID to remove"},
                    "quantity": {
                        "type": "integer",
                        "description": "Quantity to remove; -1 removes the product entirely (default: -1)",
                        "default": -1,
                    },
                },
                "required": ["product_id"],
            },
        ),
        Tool(
            name="dropcart_clear_bag",
            description="Empty the shopping bag and forget any open transaction",
            inputSchema={"type": "object", "properties": {}},
        ),
        Tool(
            name="dropcart_create_transaction",
            description="Start checkout: create a transaction quote for the current bag",
            inputSchema={"type": "object", "properties": {}},
        ),
        Tool(
            name="dropcart_update_transaction",
            description="Send customer details for the open transaction",
            inputSchema={
                "type": "object",
                "properties": {"customer_details": CUSTOMER_DETAILS_SCHEMA},
                "required": ["customer_details"],
            },
        ),
        Tool(
            name="dropcart_confirm_transaction",
            description="Confirm the open transaction. Requires FINAL status and the customer's explicit consent.",
            inputSchema={
                "type": "object",
                "properties": {
                    "consent": {
                        "type": "boolean",
                        "description": "Must be true: the customer explicitly agreed to place the order",
                    },
                },
                "required": ["consent"],
            },
        ),
        Tool(
            name="dropcart_transaction_status",
            description="Show the stored checkout state",
            inputSchema={"type": "object", "properties": {}},
        ),
    ]


def handle_tool(name: str, arguments: dict[str, Any]) -> str:
    """Run a tool and return its text output."""
    if name == "dropcart_add_to_bag":
        coding = dropcart_client.add_shopping_bag(
            auth_manager.get_bag(), arguments["product_id"], arguments.get("quantity", 1)
        )
        auth_manager.set_bag(coding)
        return f"Added product {arguments['product_id']} to bag. Bag now holds {bagcodec.bag_size(coding)} item(s)."

    elif name == "dropcart_remove_from_bag":
        coding = dropcart_client.remove_shopping_bag(
            auth_manager.get_bag(), arguments["product_id"], arguments.get("quantity", bagcodec.REMOVE_ALL)
        )
        auth_manager.set_bag(coding)
        return f"Removed product {arguments['product_id']} from bag. Bag now holds {bagcodec.bag_size(coding)} item(s)."

    elif name == "dropcart_clear_bag":
        auth_manager.clear_session()
        return "Shopping bag cleared"

    elif name == "dropcart_transaction_status":
        session = auth_manager.get_session()
        return session.model_dump_json(indent=2)

    # Everything below talks to the API
    if not auth_manager.is_authenticated():
        return NOT_CONFIGURED

    if name == "dropcart_list_categories":
        categories = dropcart_client.get_categories()
        if not categories:
            return "The store has no categories"
        result_lines = [f"Found {len(categories)} categories:\n"]
        for category in categories:
            result_lines.append(f"- {category.name or '(unnamed)'} (ID: {category.id})")
        return "\n".join(result_lines)

    elif name == "dropcart_list_products":
        products = dropcart_client.get_product_listing(arguments.get("category_id"))
        if not products:
            return "No products for sale in this category"
        return format_products(products)

    elif name == "dropcart_get_product":
        product = dropcart_client.get_product_info(arguments["product_id"])
        return product.model_dump_json(indent=2)

    elif name == "dropcart_search_products":
        query = arguments["query"]
        products = dropcart_client.find_product_listing(query, arguments.get("category_id"))
        if not products:
            return f"No products found for: {query}"
        return format_products(products)

    elif name == "dropcart_get_bag":
        lines = dropcart_client.read_shopping_bag(auth_manager.get_bag())
        if not lines:
            return "Your shopping bag is empty"
        result_lines = [f"Shopping Bag ({sum(line.quantity for line in lines)} items):\n"]
        for i, line in enumerate(lines, 1):
            result_lines.append(f"\n{i}. {line.product.name or '(unnamed)'}")
            result_lines.append(f"   Product ID: {line.product.id}")
            if line.product.price is not None:
                result_lines.append(f"   Price: €{line.product.price}")
            result_lines.append(f"   Quantity: {line.quantity}")
        return "\n".join(result_lines)

    elif name == "dropcart_create_transaction":
        coding = auth_manager.get_bag()
        if not coding:
            return "Error: Shopping bag is empty"
        auth_manager.reset_transaction()
        result = dropcart_client.create_transaction(coding)
        auth_manager.record_transaction(result)
        return format_transaction(result)

    elif name == "dropcart_update_transaction":
        session = auth_manager.get_session()
        if session.state not in (TransactionState.PARTIAL, TransactionState.FINAL):
            return "Error: No open transaction. Use dropcart_create_transaction first."
        result = dropcart_client.update_transaction(
            session.shopping_bag, session.reference, session.checksum, arguments.get("customer_details") or {}
        )
        auth_manager.record_transaction(result)
        return format_transaction(result)

    elif name == "dropcart_confirm_transaction":
        if arguments.get("consent") is not True:
            return "Error: The customer must explicitly consent before the order is confirmed."
        session = auth_manager.get_session()
        if session.state != TransactionState.FINAL:
            return f"Error: Transaction is not ready for confirmation (state: {session.state.value})."
        result = dropcart_client.confirm_transaction(session.shopping_bag, session.reference, session.checksum)
        auth_manager.record_transaction(result)
        return format_transaction(result)

    return f"Unknown tool: {name}"


@app.call_tool()
async def call_tool(name: str, arguments: Any) -> list[TextContent]:
    """Handle tool calls."""
    try:
        text = handle_tool(name, arguments or {})
    except (BagError, InvalidCustomerDetailsError) as e:
        logger.warning(f"Invalid input to {name}: {e}")
        text = f"Error: {e}"
    except DropcartError as e:
        logger.error(f"Error executing tool {name}: {e} (context: {e.context})")
        text = f"Error: {e}\n\nContext:\n{json.dumps(e.context, indent=2, default=str)}"
    except Exception as e:
        logger.error(f"Error executing tool {name}: {e}", exc_info=True)
        text = f"Error: {str(e)}"

    return [TextContent(type="text", text=text)]


async def main() -> None:
    """Main entry point for the MCP server."""
    global auth_manager, dropcart_client

    # Initialize authentication manager and client
    auth_manager = AuthManager()
    dropcart_client = DropcartClient(auth_manager)

    if auth_manager.is_authenticated():
        logger.info(f"Credentials loaded from environment (country: {auth_manager.get_country()})")
    else:
        logger.warning("No credentials found in environment variables (DROPCART_PUBLIC_KEY)")
        logger.warning("Catalog and checkout operations will be unavailable")

    logger.info("Starting Dropcart MCP Server...")

    # Import and run the server
    from mcp.server.stdio import stdio_server

    async with stdio_server() as (read_stream, write_stream):
        await app.run(
            read_stream,
            write_stream,
            app.create_initialization_options(),
        )


if __name__ == "__main__":
    asyncio.run(main())
