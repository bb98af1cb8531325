"""MCP Server for the foodtruck storefront."""

import asyncio
import json
import logging
import mimetypes
import os
from pathlib import Path
from typing import Any, Optional

from mcp.server import Server
from mcp.types import Resource, TextContent, Tool
from pydantic import AnyUrl

from .context import AppContext
from .models import CartSummary, ImageUpload, Order, OrderStatus, Product
from .settings import Settings

# Configure logging
logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger("foodtruck-mcp-server")

# Initialize server
app = Server("foodtruck-mcp-server")

# Global state
context: AppContext

NOT_AUTHENTICATED = (
    "Error: Not authenticated. Use foodtruck_login or configure "
    "FOODTRUCK_EMAIL and FOODTRUCK_PASSWORD in the MCP settings."
)


async def ensure_authenticated() -> bool:
    """Ensure a user is signed in, auto-login if credentials are available."""
    try:
        return await context.ensure_authenticated()
    except Exception as e:
        logger.error(f"Auto-login error: {e}")
        return False


def _money(value: Any) -> str:
    return f"R$ {value:.2f}"


def _reply(text: str) -> list[TextContent]:
    """Reply text followed by the notices raised while handling the call."""
    notices = context.notifier.drain()
    if notices:
        text += "\n\nNotifications:\n" + "\n".join(f"- [{n.level}] {n.message}" for n in notices)
    return [TextContent(type="text", text=text)]


def _format_product(index: int, product: Product) -> list[str]:
    lines = [f"\n{index}. {product.name}", f"   ID: {product.id}", f"   Price: {_money(product.price)}"]
    if product.description:
        lines.append(f"   Description: {product.description}")
    if not product.available:
        lines.append("   Unavailable")
    return lines


def _format_cart(cart: CartSummary) -> str:
    if not cart.items:
        return "Your cart is empty"
    lines = [f"Shopping Cart ({cart.item_count} items):\n"]
    for i, line in enumerate(cart.items, 1):
        lines.append(f"\n{i}. {line.name}")
        lines.append(f"   Product ID: {line.product_id}")
        lines.append(f"   Price: {_money(line.unit_price)}")
        lines.append(f"   Quantity: {line.quantity}")
        if line.note:
            lines.append(f"   Note: {line.note}")
        lines.append(f"   Subtotal: {_money(line.subtotal)}")
    lines.append(f"\n{'=' * 50}")
    lines.append(f"Items: {_money(cart.total)}")
    lines.append(f"Delivery fee: {_money(context.checkout.delivery_fee)}")
    lines.append(f"Total: {_money(cart.total + context.checkout.delivery_fee)}")
    return "\n".join(lines)


def _format_order(index: int, order: Order) -> list[str]:
    lines = [f"\n{index}. Order #{order.id}", f"   Status: {order.status.label}"]
    if order.customer_name:
        lines.append(f"   Customer: {order.customer_name}")
    if order.created_at:
        lines.append(f"   Date: {order.created_at.strftime('%Y-%m-%d %H:%M')}")
    lines.append(f"   Total: {_money(order.total)}")
    lines.append(f"   Delivery address: {order.delivery_address}")
    if order.items:
        lines.append(f"   Items ({len(order.items)}):")
        for item in order.items:
            lines.append(f"     - {item.product_name or item.product_id} x{item.quantity} ({_money(item.subtotal)})")
    return lines


def _read_image(path: Optional[str]) -> Optional[ImageUpload]:
    if not path:
        return None
    file_path = Path(path).expanduser()
    content_type = mimetypes.guess_type(file_path.name)[0] or "application/octet-stream"
    return ImageUpload(filename=file_path.name, content=file_path.read_bytes(), content_type=content_type)


def _dump(items: list[Any]) -> str:
    return json.dumps([item.model_dump(mode="json") for item in items], indent=2)


@app.list_resources()
async def list_resources() -> list[Resource]:
    """List available resources."""
    resources = [
        Resource(
            uri=AnyUrl("foodtruck://cart"),
            name="Shopping Cart",
            mimeType="application/json",
            description="Current shopping cart contents",
        )
    ]

    # Orders and profile belong to the signed-in user
    if context.auth_manager.user is not None:
        resources.extend(
            [
                Resource(
                    uri=AnyUrl("foodtruck://orders"),
                    name="Orders",
                    mimeType="application/json",
                    description="User's orders",
                ),
                Resource(
                    uri=AnyUrl("foodtruck://profile"),
                    name="Profile",
                    mimeType="application/json",
                    description="Signed-in user's profile",
                ),
            ]
        )

    return resources


@app.read_resource()
async def read_resource(uri: AnyUrl) -> str:
    """Read a resource by URI."""
    uri_str = str(uri)

    if uri_str == "foodtruck://cart":
        return context.cart.snapshot().model_dump_json(indent=2)

    elif uri_str == "foodtruck://orders":
        if not await ensure_authenticated():
            return NOT_AUTHENTICATED
        return _dump(await context.history.list_orders())

    elif uri_str == "foodtruck://profile":
        if not await ensure_authenticated():
            return NOT_AUTHENTICATED
        return context.auth_manager.state.model_dump_json(indent=2, include={"user", "profile", "is_admin"})

    raise ValueError(f"Unknown resource: {uri}")


def _schema(properties: Optional[dict[str, Any]] = None, required: Optional[list[str]] = None) -> dict[str, Any]:
    schema: dict[str, Any] = {"type": "object", "properties": properties or {}}
    if required:
        schema["required"] = required
    return schema


_STRING = {"type": "string"}
_ID = {"type": "string", "description": "Row ID"}
_ADDRESS_PROPERTIES = {
    "street": _STRING,
    "number": _STRING,
    "complement": {"type": "string", "description": "Optional"},
    "district": _STRING,
    "city": _STRING,
    "state": _STRING,
    "postal_code": _STRING,
}
_SPONSOR_PROPERTIES = {
    "name": _STRING,
    "logo_url": _STRING,
    "website": _STRING,
    "active": {"type": "boolean", "default": True},
}


@app.list_tools()
async def list_tools() -> list[Tool]:
    """List available tools."""
    return [
        Tool(
            name="foodtruck_login",
            description="Sign in. Uses credentials from environment (FOODTRUCK_EMAIL, FOODTRUCK_PASSWORD) if not provided.",
            inputSchema=_schema(
                {
                    "email": {"type": "string", "description": "User email address (optional if FOODTRUCK_EMAIL is configured)"},
                    "password": {"type": "string", "description": "User password (optional if FOODTRUCK_PASSWORD is configured)"},
                }
            ),
        ),
        Tool(name="foodtruck_logout", description="Sign out and clear the session", inputSchema=_schema()),
        Tool(
            name="foodtruck_register",
            description="Create an account. Phone must look like (00) 00000-0000.",
            inputSchema=_schema(
                {
                    "email": _STRING,
                    "password": _STRING,
                    "confirm_password": _STRING,
                    "name": _STRING,
                    "phone": _STRING,
                },
                ["email", "password", "confirm_password", "name", "phone"],
            ),
        ),
        Tool(
            name="foodtruck_reset_password",
            description="Send a password recovery email",
            inputSchema=_schema({"email": _STRING}, ["email"]),
        ),
        Tool(name="foodtruck_get_profile", description="Show the signed-in user's profile", inputSchema=_schema()),
        Tool(
            name="foodtruck_update_profile",
            description="Change the signed-in user's name and phone",
            inputSchema=_schema({"name": _STRING, "phone": _STRING}, ["name", "phone"]),
        ),
        Tool(name="foodtruck_list_categories", description="List menu categories", inputSchema=_schema()),
        Tool(
            name="foodtruck_featured_products",
            description="List featured products",
            inputSchema=_schema({"limit": {"type": "integer", "default": 5}}),
        ),
        Tool(
            name="foodtruck_list_products",
            description="List the available products of a category",
            inputSchema=_schema({"category_id": _ID}, ["category_id"]),
        ),
        Tool(
            name="foodtruck_get_product",
            description="Show one product",
            inputSchema=_schema({"product_id": _ID}, ["product_id"]),
        ),
        Tool(name="foodtruck_list_sponsors", description="List active sponsors", inputSchema=_schema()),
        Tool(name="foodtruck_get_config", description="Show the application configuration", inputSchema=_schema()),
        Tool(
            name="foodtruck_add_to_cart",
            description="Add a product to the shopping cart",
            inputSchema=_schema(
                {
                    "product_id": _ID,
                    "quantity": {"type": "integer", "description": "Quantity to add", "default": 1},
                    "note": {"type": "string", "description": "Note for the kitchen (optional)"},
                },
                ["product_id"],
            ),
        ),
        Tool(
            name="foodtruck_remove_from_cart",
            description="Remove a product from the shopping cart",
            inputSchema=_schema({"product_id": _ID}, ["product_id"]),
        ),
        Tool(
            name="foodtruck_update_cart_quantity",
            description="Set the quantity of a product in the cart (0 removes it)",
            inputSchema=_schema({"product_id": _ID, "quantity": {"type": "integer"}}, ["product_id", "quantity"]),
        ),
        Tool(name="foodtruck_get_cart", description="Show the shopping cart", inputSchema=_schema()),
        Tool(name="foodtruck_clear_cart", description="Empty the shopping cart", inputSchema=_schema()),
        Tool(name="foodtruck_list_addresses", description="List delivery addresses", inputSchema=_schema()),
        Tool(
            name="foodtruck_add_address",
            description="Add a delivery address",
            inputSchema=_schema(_ADDRESS_PROPERTIES, ["street", "number", "district", "city", "state", "postal_code"]),
        ),
        Tool(
            name="foodtruck_update_address",
            description="Change a delivery address",
            inputSchema=_schema(
                {"address_id": _ID, **_ADDRESS_PROPERTIES},
                ["address_id", "street", "number", "district", "city", "state", "postal_code"],
            ),
        ),
        Tool(
            name="foodtruck_place_order",
            description="Order the cart contents for delivery to an address",
            inputSchema=_schema({"address_id": _ID}, ["address_id"]),
        ),
        Tool(name="foodtruck_get_orders", description="List your orders, newest first", inputSchema=_schema()),
        Tool(
            name="foodtruck_get_order_details",
            description="Show one of your orders",
            inputSchema=_schema({"order_id": _ID}, ["order_id"]),
        ),
        Tool(name="foodtruck_admin_dashboard", description="Admin: sales and order summary", inputSchema=_schema()),
        Tool(
            name="foodtruck_admin_list_orders",
            description="Admin: list orders",
            inputSchema=_schema({"status": {"type": "string", "enum": [s.value for s in OrderStatus]}}),
        ),
        Tool(
            name="foodtruck_admin_get_order",
            description="Admin: show an order with its items",
            inputSchema=_schema({"order_id": _ID}, ["order_id"]),
        ),
        Tool(
            name="foodtruck_admin_update_order_status",
            description="Admin: change the status of an order",
            inputSchema=_schema(
                {"order_id": _ID, "status": {"type": "string", "enum": [s.value for s in OrderStatus]}},
                ["order_id", "status"],
            ),
        ),
        Tool(name="foodtruck_admin_list_products", description="Admin: list all products", inputSchema=_schema()),
        Tool(
            name="foodtruck_admin_save_product",
            description="Admin: create a product, or update it when product_id is given",
            inputSchema=_schema(
                {
                    "product_id": _ID,
                    "name": _STRING,
                    "description": _STRING,
                    "price": {"type": "number"},
                    "category_id": _ID,
                    "available": {"type": "boolean", "default": True},
                    "featured": {"type": "boolean", "default": False},
                    "image_url": {"type": "string", "description": "Existing image URL"},
                    "image_path": {"type": "string", "description": "Local image file to upload"},
                },
                ["name", "description", "price", "category_id"],
            ),
        ),
        Tool(
            name="foodtruck_admin_toggle_product",
            description="Admin: flip a product's availability or featured flag",
            inputSchema=_schema(
                {"product_id": _ID, "field": {"type": "string", "enum": ["available", "featured"]}},
                ["product_id", "field"],
            ),
        ),
        Tool(
            name="foodtruck_admin_delete_product",
            description="Admin: delete a product",
            inputSchema=_schema({"product_id": _ID}, ["product_id"]),
        ),
        Tool(name="foodtruck_admin_list_categories", description="Admin: list categories", inputSchema=_schema()),
        Tool(
            name="foodtruck_admin_create_category",
            description="Admin: create a category with an image",
            inputSchema=_schema({"name": _STRING, "image_path": _STRING}, ["name", "image_path"]),
        ),
        Tool(
            name="foodtruck_admin_update_category",
            description="Admin: rename a category, optionally replacing its image",
            inputSchema=_schema({"category_id": _ID, "name": _STRING, "image_path": _STRING}, ["category_id", "name"]),
        ),
        Tool(
            name="foodtruck_admin_delete_category",
            description="Admin: delete a category",
            inputSchema=_schema({"category_id": _ID}, ["category_id"]),
        ),
        Tool(name="foodtruck_admin_list_users", description="Admin: list user profiles", inputSchema=_schema()),
        Tool(
            name="foodtruck_admin_toggle_admin",
            description="Admin: grant or revoke administrator access",
            inputSchema=_schema({"profile_id": _ID}, ["profile_id"]),
        ),
        Tool(
            name="foodtruck_admin_delete_user",
            description="Admin: delete a user profile",
            inputSchema=_schema({"profile_id": _ID}, ["profile_id"]),
        ),
        Tool(name="foodtruck_admin_list_sponsors", description="Admin: list all sponsors", inputSchema=_schema()),
        Tool(
            name="foodtruck_admin_add_sponsor",
            description="Admin: add a sponsor at the end of the list",
            inputSchema=_schema(_SPONSOR_PROPERTIES, ["name", "logo_url", "website"]),
        ),
        Tool(
            name="foodtruck_admin_update_sponsor",
            description="Admin: change a sponsor",
            inputSchema=_schema({"sponsor_id": _ID, **_SPONSOR_PROPERTIES}, ["sponsor_id", "name", "logo_url", "website"]),
        ),
        Tool(
            name="foodtruck_admin_toggle_sponsor",
            description="Admin: show or hide a sponsor",
            inputSchema=_schema({"sponsor_id": _ID}, ["sponsor_id"]),
        ),
        Tool(
            name="foodtruck_admin_delete_sponsor",
            description="Admin: delete a sponsor",
            inputSchema=_schema({"sponsor_id": _ID}, ["sponsor_id"]),
        ),
        Tool(
            name="foodtruck_admin_move_sponsor",
            description="Admin: move a sponsor up or down the list",
            inputSchema=_schema(
                {"sponsor_id": _ID, "direction": {"type": "string", "enum": ["up", "down"]}},
                ["sponsor_id", "direction"],
            ),
        ),
        Tool(
            name="foodtruck_admin_save_settings",
            description="Admin: save the application name, logo and colors",
            inputSchema=_schema(
                {
                    "app_name": _STRING,
                    "logo_url": _STRING,
                    "primary_color": {"type": "string", "default": "#ff0000"},
                    "secondary_color": {"type": "string", "default": "#ffffff"},
                },
                ["app_name"],
            ),
        ),
    ]


def _address_fields(arguments: dict[str, Any]) -> dict[str, Any]:
    return {key: arguments.get(key) for key in _ADDRESS_PROPERTIES}


@app.call_tool()
async def call_tool(name: str, arguments: Any) -> list[TextContent]:
    """Handle tool calls."""
    arguments = arguments or {}
    auth_manager = context.auth_manager
    admin = context.admin

    try:
        if name == "foodtruck_login":
            email = arguments.get("email")
            password = arguments.get("password")

            if not email or not password:
                credentials = context.settings.credentials
                if not credentials:
                    return _reply(
                        "Error: No credentials provided and none configured. "
                        "Please provide email and password, or configure FOODTRUCK_EMAIL and FOODTRUCK_PASSWORD."
                    )
                email, password = credentials.email, credentials.password

            result = await auth_manager.sign_in(email, password)
            if result.errors:
                return _reply("Login failed: " + "; ".join(result.errors.values()))
            if result.success:
                role = "administrator" if auth_manager.is_admin else "customer"
                return _reply(f"{result.message} ({role})")
            return _reply(f"Login failed: {result.message}")

        elif name == "foodtruck_logout":
            result = await auth_manager.sign_out()
            return _reply(result.message)

        elif name == "foodtruck_register":
            result = await auth_manager.sign_up(
                arguments["email"],
                arguments["password"],
                arguments["confirm_password"],
                arguments["name"],
                arguments["phone"],
            )
            if result.errors:
                return _reply("Registration failed:\n" + "\n".join(f"- {f}: {m}" for f, m in result.errors.items()))
            return _reply(result.message if result.success else f"Registration failed: {result.message}")

        elif name == "foodtruck_reset_password":
            result = await auth_manager.reset_password(arguments["email"])
            if result.errors:
                return _reply("Error: " + "; ".join(result.errors.values()))
            return _reply(result.message)

        elif name == "foodtruck_get_profile":
            if not await ensure_authenticated():
                return _reply(NOT_AUTHENTICATED)
            user = auth_manager.user
            profile = auth_manager.profile
            lines = [f"Email: {user.email}"]
            if profile:
                lines.append(f"Name: {profile.name or '-'}")
                lines.append(f"Phone: {profile.phone or '-'}")
            lines.append(f"Administrator: {'yes' if auth_manager.is_admin else 'no'}")
            return _reply("\n".join(lines))

        elif name == "foodtruck_update_profile":
            if not await ensure_authenticated():
                return _reply(NOT_AUTHENTICATED)
            result = await auth_manager.update_profile(arguments["name"], arguments["phone"])
            if result.errors:
                return _reply("Error: " + "; ".join(result.errors.values()))
            return _reply(result.message)

        elif name == "foodtruck_list_categories":
            categories = await context.menu.list_categories()
            if not categories:
                return _reply("No categories found")
            lines = [f"Found {len(categories)} categories:\n"]
            for i, category in enumerate(categories, 1):
                lines.append(f"{i}. {category.name} (ID: {category.id})")
            return _reply("\n".join(lines))

        elif name == "foodtruck_featured_products":
            products = await context.menu.featured_products(int(arguments.get("limit", 5)))
            if not products:
                return _reply("No featured products")
            lines = [f"Featured products ({len(products)}):"]
            for i, product in enumerate(products, 1):
                lines.extend(_format_product(i, product))
            return _reply("\n".join(lines))

        elif name == "foodtruck_list_products":
            category_id = arguments["category_id"]
            category = await context.menu.get_category(category_id)
            if category is None:
                return _reply(f"Category {category_id} not found")
            products = await context.menu.products_by_category(category_id)
            if not products:
                return _reply(f"No products available in {category.name}")
            lines = [f"{category.name} ({len(products)} products):"]
            for i, product in enumerate(products, 1):
                lines.extend(_format_product(i, product))
            return _reply("\n".join(lines))

        elif name == "foodtruck_get_product":
            product = await context.menu.get_product(arguments["product_id"])
            if product is None:
                return _reply(f"Product {arguments['product_id']} not found")
            lines = _format_product(1, product)[1:]
            lines.insert(0, product.name)
            in_cart = context.cart.quantity_of(product.id)
            if in_cart:
                lines.append(f"   In cart: {in_cart}")
            return _reply("\n".join(lines))

        elif name == "foodtruck_list_sponsors":
            sponsors = await context.menu.list_sponsors()
            if not sponsors:
                return _reply("No sponsors")
            return _reply("\n".join(f"{i}. {s.name} - {s.website}" for i, s in enumerate(sponsors, 1)))

        elif name == "foodtruck_get_config":
            config = context.config.current or await context.config.fetch()
            return _reply(config.model_dump_json(indent=2))

        elif name == "foodtruck_add_to_cart":
            product_id = arguments["product_id"]
            quantity = int(arguments.get("quantity", 1))

            product = await context.menu.get_product(product_id)
            if product is None:
                return _reply(f"Product {product_id} not found")
            if not product.available:
                return _reply(f"{product.name} is not available right now")

            context.cart.add(product, quantity, arguments.get("note"))
            return _reply(
                f"Added {product.name} (quantity: {quantity}). "
                f"Now {context.cart.quantity_of(product_id)} in cart"
            )

        elif name == "foodtruck_remove_from_cart":
            product_id = arguments["product_id"]
            if not context.cart.quantity_of(product_id):
                return _reply(f"Product {product_id} is not in the cart")
            context.cart.remove(product_id)
            return _reply(f"Successfully removed product {product_id} from cart")

        elif name == "foodtruck_update_cart_quantity":
            product_id = arguments["product_id"]
            quantity = int(arguments["quantity"])
            if not context.cart.quantity_of(product_id):
                return _reply(f"Product {product_id} is not in the cart")
            context.cart.set_quantity(product_id, quantity)
            return _reply(f"Successfully updated product {product_id} to quantity {max(quantity, 0)}")

        elif name == "foodtruck_get_cart":
            return _reply(_format_cart(context.cart.snapshot()))

        elif name == "foodtruck_clear_cart":
            context.cart.clear()
            return _reply("Cart cleared")

        elif name == "foodtruck_list_addresses":
            if not await ensure_authenticated():
                return _reply(NOT_AUTHENTICATED)
            addresses = await context.addresses.list()
            if not addresses:
                return _reply("No addresses saved")
            lines = []
            for i, address in enumerate(addresses, 1):
                default = " (default)" if address.is_default else ""
                lines.append(f"{i}. {address.format()}{default}\n   ID: {address.id}")
            return _reply("\n".join(lines))

        elif name == "foodtruck_add_address":
            if not await ensure_authenticated():
                return _reply(NOT_AUTHENTICATED)
            address = await context.addresses.add(_address_fields(arguments))
            return _reply(f"Address saved: {address.format()}\nID: {address.id}")

        elif name == "foodtruck_update_address":
            if not await ensure_authenticated():
                return _reply(NOT_AUTHENTICATED)
            address = await context.addresses.update(arguments["address_id"], _address_fields(arguments))
            return _reply(f"Address updated: {address.format()}")

        elif name == "foodtruck_place_order":
            if not await ensure_authenticated():
                return _reply(NOT_AUTHENTICATED)
            order = await context.checkout.place_order(arguments["address_id"])
            if order is None:
                return _reply("Order was not placed")
            return _reply("\n".join(["Order placed:"] + _format_order(1, order)))

        elif name == "foodtruck_get_orders":
            if not await ensure_authenticated():
                return _reply(NOT_AUTHENTICATED)
            orders = await context.history.list_orders()
            if not orders:
                return _reply("No orders found")
            lines = [f"Found {len(orders)} order(s):"]
            for i, order in enumerate(orders, 1):
                lines.extend(_format_order(i, order))
            return _reply("\n".join(lines))

        elif name == "foodtruck_get_order_details":
            if not await ensure_authenticated():
                return _reply(NOT_AUTHENTICATED)
            order = await context.history.get_order(arguments["order_id"])
            if order is None:
                return _reply(f"Order {arguments['order_id']} not found")
            return _reply("\n".join(_format_order(1, order)))

        # Everything below needs an administrator; AdminService raises PermissionError otherwise
        elif name.startswith("foodtruck_admin_") and not await ensure_authenticated():
            return _reply(NOT_AUTHENTICATED)

        elif name == "foodtruck_admin_dashboard":
            stats = await admin.dashboard()
            lines = [
                f"Total sales: {_money(stats.total_sales)}",
                f"Orders: {stats.total_orders}",
                f"Users: {stats.total_users}",
                f"Pending orders: {stats.pending_orders}",
                "\nRecent orders:",
            ]
            for i, order in enumerate(stats.recent_orders, 1):
                lines.extend(_format_order(i, order))
            return _reply("\n".join(lines))

        elif name == "foodtruck_admin_list_orders":
            status = arguments.get("status")
            orders = await admin.list_orders(OrderStatus(status) if status else None)
            if not orders:
                return _reply("No orders found")
            lines = [f"Found {len(orders)} order(s):"]
            for i, order in enumerate(orders, 1):
                lines.extend(_format_order(i, order))
            return _reply("\n".join(lines))

        elif name == "foodtruck_admin_get_order":
            order = await admin.get_order(arguments["order_id"])
            if order is None:
                return _reply(f"Order {arguments['order_id']} not found")
            return _reply("\n".join(_format_order(1, order)))

        elif name == "foodtruck_admin_update_order_status":
            status = OrderStatus(arguments["status"])
            await admin.update_order_status(arguments["order_id"], status)
            return _reply(f"Order {arguments['order_id']} is now {status.label}")

        elif name == "foodtruck_admin_list_products":
            products = await admin.list_products()
            lines = [f"{len(products)} products:"]
            for i, product in enumerate(products, 1):
                lines.extend(_format_product(i, product))
                if product.featured:
                    lines.append("   Featured")
            return _reply("\n".join(lines))

        elif name == "foodtruck_admin_save_product":
            product = await admin.save_product(
                name=arguments["name"],
                description=arguments["description"],
                price=arguments["price"],
                category_id=arguments["category_id"],
                available=arguments.get("available", True),
                featured=arguments.get("featured", False),
                image_url=arguments.get("image_url"),
                image=_read_image(arguments.get("image_path")),
                product_id=arguments.get("product_id"),
            )
            return _reply(f"Saved product {product.name} (ID: {product.id})")

        elif name == "foodtruck_admin_toggle_product":
            if arguments["field"] == "featured":
                product = await admin.toggle_product_featured(arguments["product_id"])
            else:
                product = await admin.toggle_product_available(arguments["product_id"])
            return _reply(f"{product.name}: available={product.available}, featured={product.featured}")

        elif name == "foodtruck_admin_delete_product":
            await admin.delete_product(arguments["product_id"])
            return _reply(f"Deleted product {arguments['product_id']}")

        elif name == "foodtruck_admin_list_categories":
            categories = await admin.list_categories()
            return _reply("\n".join(f"{c.position}. {c.name} (ID: {c.id})" for c in categories) or "No categories")

        elif name == "foodtruck_admin_create_category":
            category = await admin.create_category(arguments["name"], _read_image(arguments.get("image_path")))
            return _reply(f"Created category {category.name} (ID: {category.id})")

        elif name == "foodtruck_admin_update_category":
            category = await admin.update_category(
                arguments["category_id"], arguments["name"], _read_image(arguments.get("image_path"))
            )
            return _reply(f"Updated category {category.name}")

        elif name == "foodtruck_admin_delete_category":
            await admin.delete_category(arguments["category_id"])
            return _reply(f"Deleted category {arguments['category_id']}")

        elif name == "foodtruck_admin_list_users":
            users = await admin.list_users()
            lines = []
            for i, user in enumerate(users, 1):
                role = "admin" if user.is_admin else "customer"
                lines.append(f"{i}. {user.name or '-'} {user.phone} [{role}] (ID: {user.id})")
            return _reply("\n".join(lines) or "No users")

        elif name == "foodtruck_admin_toggle_admin":
            profile = await admin.toggle_admin(arguments["profile_id"])
            return _reply(f"{profile.name}: administrator={profile.is_admin}")

        elif name == "foodtruck_admin_delete_user":
            await admin.delete_user(arguments["profile_id"])
            return _reply(f"Deleted user {arguments['profile_id']}")

        elif name == "foodtruck_admin_list_sponsors":
            sponsors = await admin.list_sponsors()
            lines = [
                f"{s.position}. {s.name} - {s.website} [{'active' if s.active else 'hidden'}] (ID: {s.id})"
                for s in sponsors
            ]
            return _reply("\n".join(lines) or "No sponsors")

        elif name == "foodtruck_admin_add_sponsor":
            sponsor = await admin.add_sponsor(
                arguments["name"], arguments["logo_url"], arguments["website"], arguments.get("active", True)
            )
            return _reply(f"Added sponsor {sponsor.name} at position {sponsor.position}")

        elif name == "foodtruck_admin_update_sponsor":
            sponsor = await admin.update_sponsor(
                arguments["sponsor_id"],
                arguments["name"],
                arguments["logo_url"],
                arguments["website"],
                arguments.get("active", True),
            )
            return _reply(f"Updated sponsor {sponsor.name}")

        elif name == "foodtruck_admin_toggle_sponsor":
            sponsor = await admin.toggle_sponsor(arguments["sponsor_id"])
            return _reply(f"{sponsor.name}: active={sponsor.active}")

        elif name == "foodtruck_admin_delete_sponsor":
            await admin.delete_sponsor(arguments["sponsor_id"])
            return _reply(f"Deleted sponsor {arguments['sponsor_id']}")

        elif name == "foodtruck_admin_move_sponsor":
            sponsors = await admin.move_sponsor(arguments["sponsor_id"], arguments["direction"])
            return _reply("\n".join(f"{s.position}. {s.name}" for s in sponsors))

        elif name == "foodtruck_admin_save_settings":
            config = await admin.save_settings(
                arguments["app_name"],
                arguments.get("logo_url", ""),
                arguments.get("primary_color", "#ff0000"),
                arguments.get("secondary_color", "#ffffff"),
            )
            return _reply(config.model_dump_json(indent=2))

        else:
            return [TextContent(type="text", text=f"Unknown tool: {name}")]

    except Exception as e:
        logger.error(f"Error executing tool {name}: {e}", exc_info=True)
        return _reply(f"Error: {str(e)}")


async def main(settings: Optional[Settings] = None) -> None:
    """Main entry point for the MCP server."""
    global context

    settings = settings or Settings.from_env()
    context = AppContext.create(settings)
    await context.start()

    if settings.credentials:
        logger.info(f"Credentials loaded from environment for: {settings.email}")
    else:
        logger.warning("No credentials found in environment variables (FOODTRUCK_EMAIL, FOODTRUCK_PASSWORD)")
        logger.warning("Account operations will require manual login via foodtruck_login tool")

    logger.info("Starting Foodtruck MCP Server...")

    from mcp.server.stdio import stdio_server

    try:
        async with stdio_server() as (read_stream, write_stream):
            await app.run(
                read_stream,
                write_stream,
                app.create_initialization_options(),
            )
    finally:
        await context.close()


if __name__ == "__main__":
    asyncio.run(main())
