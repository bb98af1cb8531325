"""HTTP server for the foodtruck storefront."""

import base64
import logging
import os
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Any, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .auth import NotAuthenticatedError
from .backend import BackendError, NotFoundError
from .context import AppContext
from .models import ImageUpload, OrderStatus, User
from .settings import Settings
from .validators import ValidationError

# Configure logging
logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger("foodtruck-http-server")


# Request/Response Models
class LoginRequest(BaseModel):
    email: str
    password: str


class RegisterRequest(BaseModel):
    email: str
    password: str
    confirm_password: str
    name: str
    phone: str


class ResetPasswordRequest(BaseModel):
    email: str


class ProfileRequest(BaseModel):
    name: str
    phone: str


class AddToCartRequest(BaseModel):
    product_id: str
    quantity: int = 1
    note: Optional[str] = None


class RemoveFromCartRequest(BaseModel):
    product_id: str


class UpdateCartRequest(BaseModel):
    product_id: str
    quantity: int


class AddressRequest(BaseModel):
    street: str = ""
    number: str = ""
    complement: Optional[str] = None
    district: str = ""
    city: str = ""
    state: str = ""
    postal_code: str = ""


class CheckoutRequest(BaseModel):
    address_id: str


class OrderStatusRequest(BaseModel):
    status: OrderStatus


class ImageRequest(BaseModel):
    filename: str
    content_base64: str
    content_type: str = "application/octet-stream"

    def to_upload(self) -> ImageUpload:
        return ImageUpload(
            filename=self.filename,
            content=base64.b64decode(self.content_base64),
            content_type=self.content_type,
        )


class ProductRequest(BaseModel):
    name: str
    description: str
    price: Decimal
    category_id: str
    available: bool = True
    featured: bool = False
    image_url: Optional[str] = None
    image: Optional[ImageRequest] = None


class CategoryRequest(BaseModel):
    name: str
    image: Optional[ImageRequest] = None


class SponsorRequest(BaseModel):
    name: str
    logo_url: str
    website: str
    active: bool = True


class MoveRequest(BaseModel):
    direction: str


class SettingsRequest(BaseModel):
    app_name: str
    logo_url: str = ""
    primary_color: str = "#ff0000"
    secondary_color: str = "#ffffff"


def get_context(request: Request) -> AppContext:
    return request.app.state.context


async def current_user(ctx: AppContext = Depends(get_context)) -> User:
    await ctx.ensure_authenticated()
    return ctx.auth_manager.require_user()


async def current_admin(ctx: AppContext = Depends(get_context)) -> User:
    await ctx.ensure_authenticated()
    return ctx.auth_manager.require_admin()


def _with_notices(ctx: AppContext, payload: dict[str, Any]) -> dict[str, Any]:
    """Attach the notices raised while handling the request."""
    payload["notifications"] = [notice.model_dump(mode="json") for notice in ctx.notifier.drain()]
    return payload


def _dump(items: list[Any]) -> list[dict[str, Any]]:
    return [item.model_dump(mode="json") for item in items]


def _error(status_code: int, detail: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": detail, **extra})


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ValidationError)
    async def validation_error(request: Request, exc: ValidationError) -> JSONResponse:
        return _error(422, str(exc), errors=exc.errors)

    @app.exception_handler(NotAuthenticatedError)
    async def not_authenticated(request: Request, exc: NotAuthenticatedError) -> JSONResponse:
        return _error(401, str(exc))

    @app.exception_handler(PermissionError)
    async def forbidden(request: Request, exc: PermissionError) -> JSONResponse:
        return _error(403, str(exc))

    @app.exception_handler(NotFoundError)
    async def not_found(request: Request, exc: NotFoundError) -> JSONResponse:
        return _error(404, exc.message)

    @app.exception_handler(BackendError)
    async def backend_error(request: Request, exc: BackendError) -> JSONResponse:
        logger.error(f"Backend error on {request.url.path}: {exc}", exc_info=True)
        return _error(502, exc.message)

    @app.exception_handler(ValueError)
    async def bad_request(request: Request, exc: ValueError) -> JSONResponse:
        return _error(400, str(exc))

    @app.exception_handler(Exception)
    async def internal_error(request: Request, exc: Exception) -> JSONResponse:
        logger.error(f"Unhandled error on {request.url.path}: {exc}", exc_info=True)
        return _error(500, str(exc))


def create_app(context: Optional[AppContext] = None, settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the HTTP API.

    Args:
        context: Services to serve; built from settings at startup when omitted
        settings: Settings used when building the context

    Returns:
        The FastAPI application
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan context manager for startup and shutdown."""
        # Startup
        logger.info("Starting Foodtruck HTTP Server...")
        ctx = context or AppContext.create(settings)
        await ctx.start(watch_storage=context is None)
        app.state.context = ctx

        yield

        # Shutdown
        logger.info("Shutting down Foodtruck HTTP Server...")
        await ctx.close()

    app = FastAPI(
        title="Foodtruck MCP Server",
        description="HTTP API for the foodtruck storefront",
        version="0.1.0",
        lifespan=lifespan,
    )
    _register_error_handlers(app)

    # Root endpoint
    @app.get("/")
    async def root(ctx: AppContext = Depends(get_context)):
        """Root endpoint with API information."""
        return {
            "name": "Foodtruck MCP Server",
            "version": "0.1.0",
            "description": "HTTP API for the foodtruck storefront",
            "mcp_compatible": True,
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "auth": {
                    "login": "POST /auth/login",
                    "logout": "POST /auth/logout",
                    "register": "POST /auth/register",
                    "reset_password": "POST /auth/reset-password",
                    "status": "GET /auth/status",
                },
                "profile": {"get": "GET /profile", "update": "PUT /profile"},
                "menu": {
                    "categories": "GET /categories",
                    "products": "GET /categories/{id}/products",
                    "featured": "GET /products/featured",
                    "product": "GET /products/{id}",
                    "sponsors": "GET /sponsors",
                    "config": "GET /config",
                },
                "cart": {
                    "get": "GET /cart",
                    "add": "POST /cart/add",
                    "remove": "POST /cart/remove",
                    "update": "POST /cart/update",
                    "clear": "DELETE /cart",
                },
                "addresses": {"list": "GET /addresses", "add": "POST /addresses", "update": "PUT /addresses/{id}"},
                "orders": {"checkout": "POST /checkout", "list": "GET /orders", "get": "GET /orders/{id}"},
                "admin": "/admin/*",
            },
            "authenticated": ctx.auth_manager.user is not None,
        }

    # Health check endpoint
    @app.get("/health")
    async def health_check(ctx: AppContext = Depends(get_context)):
        """Health check endpoint."""
        return {
            "status": "healthy",
            "authenticated": ctx.auth_manager.user is not None,
            "loading": ctx.auth_manager.state.loading,
        }

    # Authentication endpoints
    @app.post("/auth/login")
    async def login(request: LoginRequest, ctx: AppContext = Depends(get_context)):
        """Sign in."""
        result = await ctx.auth_manager.sign_in(request.email, request.password)
        if result.errors:
            raise ValidationError(result.errors)
        return _with_notices(ctx, result.model_dump())

    @app.post("/auth/logout")
    async def logout(ctx: AppContext = Depends(get_context)):
        """Sign out."""
        result = await ctx.auth_manager.sign_out()
        return _with_notices(ctx, result.model_dump())

    @app.post("/auth/register")
    async def register(request: RegisterRequest, ctx: AppContext = Depends(get_context)):
        """Create an account."""
        result = await ctx.auth_manager.sign_up(
            request.email, request.password, request.confirm_password, request.name, request.phone
        )
        if result.errors:
            raise ValidationError(result.errors)
        return _with_notices(ctx, result.model_dump())

    @app.post("/auth/reset-password")
    async def reset_password(request: ResetPasswordRequest, ctx: AppContext = Depends(get_context)):
        """Send a password recovery email."""
        result = await ctx.auth_manager.reset_password(request.email)
        if result.errors:
            raise ValidationError(result.errors)
        return _with_notices(ctx, result.model_dump())

    @app.get("/auth/status")
    async def auth_status(ctx: AppContext = Depends(get_context)):
        """Get authentication status."""
        user = ctx.auth_manager.user
        return {
            "authenticated": user is not None,
            "email": user.email if user else None,
            "is_admin": ctx.auth_manager.is_admin,
            "loading": ctx.auth_manager.state.loading,
        }

    # Profile endpoints
    @app.get("/profile")
    async def get_profile(user: User = Depends(current_user), ctx: AppContext = Depends(get_context)):
        """Get the signed-in user's profile."""
        profile = ctx.auth_manager.profile
        return {
            "user": user.model_dump(mode="json"),
            "profile": profile.model_dump(mode="json") if profile else None,
            "is_admin": ctx.auth_manager.is_admin,
        }

    @app.put("/profile")
    async def update_profile(
        request: ProfileRequest, user: User = Depends(current_user), ctx: AppContext = Depends(get_context)
    ):
        """Change name and phone."""
        result = await ctx.auth_manager.update_profile(request.name, request.phone)
        if result.errors:
            raise ValidationError(result.errors)
        return _with_notices(ctx, result.model_dump())

    # Menu endpoints
    @app.get("/categories")
    async def list_categories(ctx: AppContext = Depends(get_context)):
        categories = await ctx.menu.list_categories()
        return {"count": len(categories), "categories": _dump(categories)}

    @app.get("/categories/{category_id}/products")
    async def products_by_category(category_id: str, ctx: AppContext = Depends(get_context)):
        """Available products of a category."""
        category = await ctx.menu.get_category(category_id)
        if category is None:
            raise NotFoundError(f"Category {category_id} not found")
        products = await ctx.menu.products_by_category(category_id)
        return {
            "category": category.model_dump(mode="json"),
            "count": len(products),
            "products": _dump(products),
        }

    @app.get("/products/featured")
    async def featured_products(limit: int = 5, ctx: AppContext = Depends(get_context)):
        products = await ctx.menu.featured_products(limit)
        return {"count": len(products), "products": _dump(products)}

    @app.get("/products/{product_id}")
    async def get_product(product_id: str, ctx: AppContext = Depends(get_context)):
        product = await ctx.menu.get_product(product_id)
        if product is None:
            raise NotFoundError(f"Product {product_id} not found")
        return {**product.model_dump(mode="json"), "in_cart": ctx.cart.quantity_of(product_id)}

    @app.get("/sponsors")
    async def list_sponsors(ctx: AppContext = Depends(get_context)):
        sponsors = await ctx.menu.list_sponsors()
        return {"count": len(sponsors), "sponsors": _dump(sponsors)}

    @app.get("/config")
    async def get_config(ctx: AppContext = Depends(get_context)):
        config = ctx.config.current or await ctx.config.fetch()
        return config.model_dump(mode="json")

    # Cart endpoints
    @app.get("/cart")
    async def get_cart(ctx: AppContext = Depends(get_context)):
        """Get current shopping cart."""
        cart = ctx.cart.snapshot()
        return {
            **cart.model_dump(mode="json"),
            "delivery_fee": str(ctx.checkout.delivery_fee),
            "order_total": str(ctx.checkout.order_total()),
        }

    @app.post("/cart/add")
    async def add_to_cart(request: AddToCartRequest, ctx: AppContext = Depends(get_context)):
        """Add a product to the cart."""
        product = await ctx.menu.get_product(request.product_id)
        if product is None:
            raise NotFoundError(f"Product {request.product_id} not found")
        if not product.available:
            raise ValueError(f"{product.name} is not available right now")
        ctx.cart.add(product, request.quantity, request.note)
        return _with_notices(
            ctx,
            {
                "success": True,
                "message": f"Added product {request.product_id} (quantity: {request.quantity}) to cart",
                "quantity": ctx.cart.quantity_of(request.product_id),
            },
        )

    @app.post("/cart/remove")
    async def remove_from_cart(request: RemoveFromCartRequest, ctx: AppContext = Depends(get_context)):
        """Remove a product from the cart."""
        ctx.cart.remove(request.product_id)
        return _with_notices(ctx, {"success": True, "message": f"Removed product {request.product_id} from cart"})

    @app.post("/cart/update")
    async def update_cart(request: UpdateCartRequest, ctx: AppContext = Depends(get_context)):
        """Set the quantity of a cart line; zero removes it."""
        ctx.cart.set_quantity(request.product_id, request.quantity)
        return _with_notices(
            ctx, {"success": True, "quantity": ctx.cart.quantity_of(request.product_id)}
        )

    @app.delete("/cart")
    async def clear_cart(ctx: AppContext = Depends(get_context)):
        ctx.cart.clear()
        return {"success": True, "message": "Cart cleared"}

    # Address endpoints
    @app.get("/addresses")
    async def list_addresses(user: User = Depends(current_user), ctx: AppContext = Depends(get_context)):
        addresses = await ctx.addresses.list()
        return {"count": len(addresses), "addresses": _dump(addresses)}

    @app.post("/addresses")
    async def add_address(
        request: AddressRequest, user: User = Depends(current_user), ctx: AppContext = Depends(get_context)
    ):
        address = await ctx.addresses.add(request.model_dump())
        return _with_notices(ctx, {"address": address.model_dump(mode="json")})

    @app.put("/addresses/{address_id}")
    async def update_address(
        address_id: str,
        request: AddressRequest,
        user: User = Depends(current_user),
        ctx: AppContext = Depends(get_context),
    ):
        address = await ctx.addresses.update(address_id, request.model_dump())
        return _with_notices(ctx, {"address": address.model_dump(mode="json")})

    # Order endpoints
    @app.post("/checkout")
    async def checkout(
        request: CheckoutRequest, user: User = Depends(current_user), ctx: AppContext = Depends(get_context)
    ):
        """Order the cart contents."""
        order = await ctx.checkout.place_order(request.address_id)
        return _with_notices(
            ctx,
            {"success": order is not None, "order": order.model_dump(mode="json") if order else None},
        )

    @app.get("/orders")
    async def get_orders(user: User = Depends(current_user), ctx: AppContext = Depends(get_context)):
        """Get user's orders."""
        orders = await ctx.history.list_orders()
        return {"count": len(orders), "orders": _dump(orders)}

    @app.get("/orders/{order_id}")
    async def get_order(order_id: str, user: User = Depends(current_user), ctx: AppContext = Depends(get_context)):
        order = await ctx.history.get_order(order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        return order.model_dump(mode="json")

    # Admin endpoints
    @app.get("/admin/dashboard")
    async def admin_dashboard(admin: User = Depends(current_admin), ctx: AppContext = Depends(get_context)):
        stats = await ctx.admin.dashboard()
        return stats.model_dump(mode="json")

    @app.get("/admin/orders")
    async def admin_list_orders(
        status: Optional[OrderStatus] = None,
        admin: User = Depends(current_admin),
        ctx: AppContext = Depends(get_context),
    ):
        orders = await ctx.admin.list_orders(status)
        return {"count": len(orders), "orders": _dump(orders)}

    @app.get("/admin/orders/{order_id}")
    async def admin_get_order(order_id: str, admin: User = Depends(current_admin), ctx: AppContext = Depends(get_context)):
        order = await ctx.admin.get_order(order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        return order.model_dump(mode="json")

    @app.put("/admin/orders/{order_id}/status")
    async def admin_update_order_status(
        order_id: str,
        request: OrderStatusRequest,
        admin: User = Depends(current_admin),
        ctx: AppContext = Depends(get_context),
    ):
        await ctx.admin.update_order_status(order_id, request.status)
        return _with_notices(ctx, {"success": True, "status": request.status.value})

    @app.get("/admin/products")
    async def admin_list_products(admin: User = Depends(current_admin), ctx: AppContext = Depends(get_context)):
        products = await ctx.admin.list_products()
        return {"count": len(products), "products": _dump(products)}

    async def _save_product(ctx: AppContext, request: ProductRequest, product_id: Optional[str] = None):
        product = await ctx.admin.save_product(
            name=request.name,
            description=request.description,
            price=request.price,
            category_id=request.category_id,
            available=request.available,
            featured=request.featured,
            image_url=request.image_url,
            image=request.image.to_upload() if request.image else None,
            product_id=product_id,
        )
        return _with_notices(ctx, {"product": product.model_dump(mode="json")})

    @app.post("/admin/products")
    async def admin_create_product(
        request: ProductRequest, admin: User = Depends(current_admin), ctx: AppContext = Depends(get_context)
    ):
        return await _save_product(ctx, request)

    @app.put("/admin/products/{product_id}")
    async def admin_update_product(
        product_id: str,
        request: ProductRequest,
        admin: User = Depends(current_admin),
        ctx: AppContext = Depends(get_context),
    ):
        return await _save_product(ctx, request, product_id)

    @app.post("/admin/products/{product_id}/toggle-available")
    async def admin_toggle_available(
        product_id: str, admin: User = Depends(current_admin), ctx: AppContext = Depends(get_context)
    ):
        product = await ctx.admin.toggle_product_available(product_id)
        return _with_notices(ctx, {"product": product.model_dump(mode="json")})

    @app.post("/admin/products/{product_id}/toggle-featured")
    async def admin_toggle_featured(
        product_id: str, admin: User = Depends(current_admin), ctx: AppContext = Depends(get_context)
    ):
        product = await ctx.admin.toggle_product_featured(product_id)
        return _with_notices(ctx, {"product": product.model_dump(mode="json")})

    @app.delete("/admin/products/{product_id}")
    async def admin_delete_product(
        product_id: str, admin: User = Depends(current_admin), ctx: AppContext = Depends(get_context)
    ):
        await ctx.admin.delete_product(product_id)
        return _with_notices(ctx, {"success": True})

    @app.get("/admin/categories")
    async def admin_list_categories(admin: User = Depends(current_admin), ctx: AppContext = Depends(get_context)):
        categories = await ctx.admin.list_categories()
        return {"count": len(categories), "categories": _dump(categories)}

    @app.post("/admin/categories")
    async def admin_create_category(
        request: CategoryRequest, admin: User = Depends(current_admin), ctx: AppContext = Depends(get_context)
    ):
        category = await ctx.admin.create_category(
            request.name, request.image.to_upload() if request.image else None
        )
        return _with_notices(ctx, {"category": category.model_dump(mode="json")})

    @app.put("/admin/categories/{category_id}")
    async def admin_update_category(
        category_id: str,
        request: CategoryRequest,
        admin: User = Depends(current_admin),
        ctx: AppContext = Depends(get_context),
    ):
        category = await ctx.admin.update_category(
            category_id, request.name, request.image.to_upload() if request.image else None
        )
        return _with_notices(ctx, {"category": category.model_dump(mode="json")})

    @app.delete("/admin/categories/{category_id}")
    async def admin_delete_category(
        category_id: str, admin: User = Depends(current_admin), ctx: AppContext = Depends(get_context)
    ):
        await ctx.admin.delete_category(category_id)
        return _with_notices(ctx, {"success": True})

    @app.get("/admin/users")
    async def admin_list_users(admin: User = Depends(current_admin), ctx: AppContext = Depends(get_context)):
        users = await ctx.admin.list_users()
        return {"count": len(users), "users": _dump(users)}

    @app.post("/admin/users/{profile_id}/toggle-admin")
    async def admin_toggle_admin(
        profile_id: str, admin: User = Depends(current_admin), ctx: AppContext = Depends(get_context)
    ):
        profile = await ctx.admin.toggle_admin(profile_id)
        return _with_notices(ctx, {"user": profile.model_dump(mode="json")})

    @app.delete("/admin/users/{profile_id}")
    async def admin_delete_user(
        profile_id: str, admin: User = Depends(current_admin), ctx: AppContext = Depends(get_context)
    ):
        await ctx.admin.delete_user(profile_id)
        return _with_notices(ctx, {"success": True})

    @app.get("/admin/sponsors")
    async def admin_list_sponsors(admin: User = Depends(current_admin), ctx: AppContext = Depends(get_context)):
        sponsors = await ctx.admin.list_sponsors()
        return {"count": len(sponsors), "sponsors": _dump(sponsors)}

    @app.post("/admin/sponsors")
    async def admin_add_sponsor(
        request: SponsorRequest, admin: User = Depends(current_admin), ctx: AppContext = Depends(get_context)
    ):
        sponsor = await ctx.admin.add_sponsor(request.name, request.logo_url, request.website, request.active)
        return _with_notices(ctx, {"sponsor": sponsor.model_dump(mode="json")})

    @app.put("/admin/sponsors/{sponsor_id}")
    async def admin_update_sponsor(
        sponsor_id: str,
        request: SponsorRequest,
        admin: User = Depends(current_admin),
        ctx: AppContext = Depends(get_context),
    ):
        sponsor = await ctx.admin.update_sponsor(
            sponsor_id, request.name, request.logo_url, request.website, request.active
        )
        return _with_notices(ctx, {"sponsor": sponsor.model_dump(mode="json")})

    @app.post("/admin/sponsors/{sponsor_id}/toggle")
    async def admin_toggle_sponsor(
        sponsor_id: str, admin: User = Depends(current_admin), ctx: AppContext = Depends(get_context)
    ):
        sponsor = await ctx.admin.toggle_sponsor(sponsor_id)
        return _with_notices(ctx, {"sponsor": sponsor.model_dump(mode="json")})

    @app.delete("/admin/sponsors/{sponsor_id}")
    async def admin_delete_sponsor(
        sponsor_id: str, admin: User = Depends(current_admin), ctx: AppContext = Depends(get_context)
    ):
        await ctx.admin.delete_sponsor(sponsor_id)
        return _with_notices(ctx, {"success": True})

    @app.post("/admin/sponsors/{sponsor_id}/move")
    async def admin_move_sponsor(
        sponsor_id: str,
        request: MoveRequest,
        admin: User = Depends(current_admin),
        ctx: AppContext = Depends(get_context),
    ):
        sponsors = await ctx.admin.move_sponsor(sponsor_id, request.direction)
        return {"sponsors": _dump(sponsors)}

    @app.put("/admin/settings")
    async def admin_save_settings(
        request: SettingsRequest, admin: User = Depends(current_admin), ctx: AppContext = Depends(get_context)
    ):
        config = await ctx.admin.save_settings(
            request.app_name, request.logo_url, request.primary_color, request.secondary_color
        )
        return _with_notices(ctx, {"config": config.model_dump(mode="json")})

    # MCP Tools endpoint (for compatibility with MCP clients over HTTP)
    @app.get("/mcp/tools")
    async def list_mcp_tools():
        """List available MCP tools."""
        from .server import list_tools

        tools = await list_tools()
        return {
            "tools": [
                {"name": tool.name, "description": tool.description, "input_schema": tool.inputSchema}
                for tool in tools
            ]
        }

    return app


app = create_app()


def run_http_server(host: str = "0.0.0.0", port: int = 8000, settings: Optional[Settings] = None) -> None:
    """Run the HTTP server."""
    import uvicorn

    uvicorn.run(create_app(settings=settings) if settings else app, host=host, port=port)
