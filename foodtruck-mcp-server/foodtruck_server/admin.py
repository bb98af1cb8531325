"""Back-office operations. Every operation requires an administrator."""

import logging
import secrets
import time
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Awaitable, Optional, TypeVar

from .auth import AuthManager
from .backend import BackendClient, BackendError, NotFoundError, in_, neq
from .models import (
    AppConfig,
    Category,
    DashboardStats,
    ImageUpload,
    Order,
    OrderStatus,
    Product,
    Profile,
    Sponsor,
)
from .notifications import Notifier
from .orders import attach_items
from .site_config import ConfigService
from .validators import ValidationError

logger = logging.getLogger(__name__)

T = TypeVar("T")

IMAGE_BUCKET = "imagens"
RECENT_ORDERS = 5


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class AdminService:
    """Dashboard, orders, products, categories, users, sponsors and settings."""

    def __init__(
        self,
        backend: BackendClient,
        auth_manager: AuthManager,
        config: ConfigService,
        notifier: Optional[Notifier] = None,
    ) -> None:
        """
        Initialize the back-office service.

        Args:
            backend: Backend client
            auth_manager: Used to check the administrator flag
            config: Application configuration
            notifier: Receives the outcome of every change
        """
        self.auth_manager = auth_manager
        self.config = config
        self.notifier = notifier or auth_manager.notifier
        self.orders = backend.table("pedidos")
        self.order_items = backend.table("itens_pedido")
        self.products = backend.table("produtos")
        self.categories = backend.table("categorias")
        self.profiles = backend.table("perfis")
        self.sponsors = backend.table("patrocinadores")
        self.images = backend.bucket(IMAGE_BUCKET)

    async def _guarded(self, failure: str, action: Awaitable[T]) -> T:
        """Await a backend call; on failure notify ``failure`` and re-raise."""
        try:
            return await action
        except BackendError as e:
            logger.error(f"{failure}: {e}")
            self.notifier.error(failure)
            raise

    async def _upload_image(self, folder: str, image: ImageUpload) -> str:
        """
        Store an image under a unique name.

        Returns:
            Public URL of the image
        """
        extension = image.filename.rsplit(".", 1)[-1].lower() if "." in image.filename else "bin"
        path = f"{folder}/{int(time.time() * 1000)}-{secrets.token_hex(5)}.{extension}"
        await self._guarded(
            "Could not upload image",
            self.images.upload(path, image.content, image.content_type, cache_control="3600", upsert=False),
        )
        return self.images.get_public_url(path)

    async def _attach_customers(self, orders: list[Order]) -> list[Order]:
        user_ids = sorted({order.user_id for order in orders})
        if not user_ids:
            return orders
        rows = await self.profiles.select("user_id, nome", filters={"user_id": in_(user_ids)})
        names = {row["user_id"]: row.get("nome") for row in rows}
        for order in orders:
            order.customer_name = names.get(order.user_id)
        return orders

    # Dashboard

    async def dashboard(self) -> DashboardStats:
        """Sales of non-cancelled orders, counts and the most recent orders."""
        self.auth_manager.require_admin()
        sales = await self.orders.select("total", filters={"status": neq(OrderStatus.CANCELLED.value)})
        recent = await self.orders.select(order="created_at", descending=True, limit=RECENT_ORDERS)
        recent_orders = await self._attach_customers([Order.model_validate(row) for row in recent])
        return DashboardStats(
            total_sales=sum((Decimal(str(row["total"])) for row in sales), Decimal("0")),
            total_orders=await self.orders.count(),
            total_users=await self.profiles.count(),
            pending_orders=await self.orders.count(filters={"status": OrderStatus.PENDING.value}),
            recent_orders=recent_orders,
        )

    # Orders

    async def list_orders(self, status: Optional[OrderStatus] = None) -> list[Order]:
        self.auth_manager.require_admin()
        filters = {"status": OrderStatus(status).value} if status else None
        rows = await self._guarded(
            "Could not load orders",
            self.orders.select(filters=filters, order="created_at", descending=True),
        )
        return await self._attach_customers([Order.model_validate(row) for row in rows])

    async def get_order(self, order_id: str) -> Optional[Order]:
        self.auth_manager.require_admin()
        row = await self.orders.select_maybe_one(filters={"id": order_id})
        if row is None:
            return None
        orders = await attach_items(self.order_items, self.products, [Order.model_validate(row)])
        await self._attach_customers(orders)
        return orders[0]

    async def update_order_status(self, order_id: str, status: OrderStatus) -> None:
        self.auth_manager.require_admin()
        status = OrderStatus(status)
        await self._guarded(
            "Could not update order status",
            self.orders.update({"status": status.value, "updated_at": _now()}, filters={"id": order_id}),
        )
        logger.info(f"Order {order_id} is now {status.value}")
        self.notifier.success(f"Status updated to {status.label}")

    # Products

    async def list_products(self) -> list[Product]:
        self.auth_manager.require_admin()
        rows = await self._guarded("Could not load products", self.products.select(order="nome"))
        return [Product.model_validate(row) for row in rows]

    async def save_product(
        self,
        name: str,
        description: str,
        price: Any,
        category_id: str,
        available: bool = True,
        featured: bool = False,
        image_url: Optional[str] = None,
        image: Optional[ImageUpload] = None,
        product_id: Optional[str] = None,
    ) -> Product:
        """
        Create a product, or update it when ``product_id`` is given.

        Args:
            name: Product name
            description: Product description
            price: Unit price
            category_id: Category of the product
            available: Whether it can be ordered
            featured: Whether it is shown on the home page
            image_url: Existing image URL to keep
            image: New image to upload, replaces ``image_url``
            product_id: Product to update

        Raises:
            ValidationError: If a required field is missing
            BackendError: If the upload or the write fails
        """
        self.auth_manager.require_admin()

        errors: dict[str, str] = {}
        if not (name or "").strip():
            errors["name"] = "Name is required"
        if not (description or "").strip():
            errors["description"] = "Description is required"
        if not category_id:
            errors["category_id"] = "Category is required"
        try:
            price = Decimal(str(price))
            if price <= 0:
                errors["price"] = "Price must be greater than zero"
        except (InvalidOperation, ValueError):
            errors["price"] = "Price is required"
        if errors:
            self.notifier.error("Fill in all required fields")
            raise ValidationError(errors)

        if image is not None:
            image_url = await self._upload_image("produtos", image)

        row = {
            "nome": name.strip(),
            "descricao": description.strip(),
            "preco": str(price),
            "imagem_url": image_url,
            "categoria_id": category_id,
            "disponivel": available,
            "destaque": featured,
        }
        if product_id:
            rows = await self._guarded("Could not save product", self.products.update(row, filters={"id": product_id}))
            if not rows:
                self.notifier.error("Product not found")
                raise NotFoundError(f"Product {product_id} not found")
            self.notifier.success("Product updated successfully")
        else:
            rows = await self._guarded("Could not save product", self.products.insert(row))
            self.notifier.success("Product created successfully")

        return Product.model_validate(rows[0])

    async def _get_product(self, product_id: str) -> Product:
        row = await self.products.select_one(filters={"id": product_id})
        return Product.model_validate(row)

    async def toggle_product_available(self, product_id: str) -> Product:
        self.auth_manager.require_admin()
        product = await self._get_product(product_id)
        rows = await self._guarded(
            "Could not update product availability",
            self.products.update({"disponivel": not product.available}, filters={"id": product_id}),
        )
        self.notifier.success(f"Product {'enabled' if not product.available else 'disabled'} successfully")
        return Product.model_validate(rows[0]) if rows else product

    async def toggle_product_featured(self, product_id: str) -> Product:
        self.auth_manager.require_admin()
        product = await self._get_product(product_id)
        rows = await self._guarded(
            "Could not update featured product",
            self.products.update({"destaque": not product.featured}, filters={"id": product_id}),
        )
        self.notifier.success(
            "Product featured successfully" if not product.featured else "Product removed from featured"
        )
        return Product.model_validate(rows[0]) if rows else product

    async def delete_product(self, product_id: str) -> None:
        self.auth_manager.require_admin()
        await self._guarded("Could not delete product", self.products.delete(filters={"id": product_id}))
        self.notifier.success("Product deleted successfully")

    # Categories

    async def list_categories(self) -> list[Category]:
        self.auth_manager.require_admin()
        rows = await self.categories.select(order="ordem")
        return [Category.model_validate(row) for row in rows]

    async def create_category(self, name: str, image: Optional[ImageUpload]) -> Category:
        """New categories always carry an image."""
        self.auth_manager.require_admin()
        errors: dict[str, str] = {}
        if not (name or "").strip():
            errors["name"] = "Name is required"
        if image is None:
            errors["image"] = "Image is required"
        if errors:
            self.notifier.error("Fill in the name and pick an image")
            raise ValidationError(errors)

        image_url = await self._upload_image("categorias", image)
        rows = await self._guarded(
            "Could not create category",
            self.categories.insert({"nome": name.strip(), "imagem_url": image_url}),
        )
        self.notifier.success("Category created")
        return Category.model_validate(rows[0])

    async def update_category(self, category_id: str, name: str, image: Optional[ImageUpload] = None) -> Category:
        self.auth_manager.require_admin()
        if not (name or "").strip():
            raise ValidationError({"name": "Name is required"})

        patch: dict[str, Any] = {"nome": name.strip()}
        if image is not None:
            patch["imagem_url"] = await self._upload_image("categorias", image)
        rows = await self._guarded(
            "Could not update category",
            self.categories.update(patch, filters={"id": category_id}),
        )
        if not rows:
            raise NotFoundError(f"Category {category_id} not found")
        self.notifier.success("Category updated")
        return Category.model_validate(rows[0])

    async def delete_category(self, category_id: str) -> None:
        self.auth_manager.require_admin()
        await self._guarded("Could not delete category", self.categories.delete(filters={"id": category_id}))
        self.notifier.success("Category deleted")

    # Users

    async def list_users(self) -> list[Profile]:
        self.auth_manager.require_admin()
        rows = await self._guarded("Could not load users", self.profiles.select(order="nome"))
        return [Profile.model_validate(row) for row in rows]

    async def toggle_admin(self, profile_id: str) -> Profile:
        self.auth_manager.require_admin()
        profile = Profile.model_validate(await self.profiles.select_one(filters={"id": profile_id}))
        rows = await self._guarded(
            "Could not update user permissions",
            self.profiles.update({"is_admin": not profile.is_admin}, filters={"id": profile_id}),
        )
        if profile.is_admin:
            self.notifier.success(f"User {profile.name} is no longer an administrator")
        else:
            self.notifier.success(f"User {profile.name} promoted to administrator")
        return Profile.model_validate(rows[0]) if rows else profile

    async def delete_user(self, profile_id: str) -> None:
        self.auth_manager.require_admin()
        await self._guarded("Could not delete user", self.profiles.delete(filters={"id": profile_id}))
        self.notifier.success("User deleted successfully")

    # Sponsors

    async def list_sponsors(self) -> list[Sponsor]:
        self.auth_manager.require_admin()
        rows = await self._guarded("Could not load sponsors", self.sponsors.select(order="ordem"))
        return [Sponsor.model_validate(row) for row in rows]

    @staticmethod
    def _check_sponsor(name: str, logo_url: str, website: str) -> None:
        errors = {
            field: f"{label} is required"
            for field, label, value in (
                ("name", "Name", name),
                ("logo_url", "Logo URL", logo_url),
                ("website", "Website", website),
            )
            if not (value or "").strip()
        }
        if errors:
            raise ValidationError(errors)

    async def add_sponsor(self, name: str, logo_url: str, website: str, active: bool = True) -> Sponsor:
        """Add a sponsor after the last one."""
        self.auth_manager.require_admin()
        try:
            self._check_sponsor(name, logo_url, website)
        except ValidationError:
            self.notifier.error("Fill in all required fields")
            raise

        existing = await self.list_sponsors()
        position = max((sponsor.position for sponsor in existing), default=0) + 1
        sponsor = Sponsor(name=name.strip(), logo_url=logo_url.strip(), website=website.strip(), active=active, position=position)
        rows = await self._guarded("Could not add sponsor", self.sponsors.insert(sponsor.to_row(exclude={"id"})))
        self.notifier.success("Sponsor added successfully!")
        return Sponsor.model_validate(rows[0]) if rows else sponsor

    async def update_sponsor(self, sponsor_id: str, name: str, logo_url: str, website: str, active: bool = True) -> Sponsor:
        self.auth_manager.require_admin()
        self._check_sponsor(name, logo_url, website)
        rows = await self._guarded(
            "Could not update sponsor",
            self.sponsors.update(
                {"nome": name.strip(), "logo_url": logo_url.strip(), "website": website.strip(), "ativo": active},
                filters={"id": sponsor_id},
            ),
        )
        if not rows:
            raise NotFoundError(f"Sponsor {sponsor_id} not found")
        self.notifier.success("Sponsor updated successfully!")
        return Sponsor.model_validate(rows[0])

    async def toggle_sponsor(self, sponsor_id: str) -> Sponsor:
        self.auth_manager.require_admin()
        sponsor = Sponsor.model_validate(await self.sponsors.select_one(filters={"id": sponsor_id}))
        rows = await self._guarded(
            "Could not update sponsor",
            self.sponsors.update({"ativo": not sponsor.active}, filters={"id": sponsor_id}),
        )
        self.notifier.success(f"Sponsor {'enabled' if not sponsor.active else 'disabled'}")
        return Sponsor.model_validate(rows[0]) if rows else sponsor

    async def delete_sponsor(self, sponsor_id: str) -> None:
        self.auth_manager.require_admin()
        await self._guarded("Could not delete sponsor", self.sponsors.delete(filters={"id": sponsor_id}))
        self.notifier.success("Sponsor deleted")

    async def move_sponsor(self, sponsor_id: str, direction: str) -> list[Sponsor]:
        """
        Swap a sponsor's position with its neighbour.

        Args:
            sponsor_id: Sponsor to move
            direction: "up" or "down"

        Returns:
            Sponsors in their new order; unchanged at either end of the list
        """
        if direction not in ("up", "down"):
            raise ValueError(f"direction must be 'up' or 'down', got {direction!r}")

        sponsors = await self.list_sponsors()
        index = next((i for i, sponsor in enumerate(sponsors) if sponsor.id == sponsor_id), None)
        if index is None:
            raise NotFoundError(f"Sponsor {sponsor_id} not found")

        other = index - 1 if direction == "up" else index + 1
        if other < 0 or other >= len(sponsors):
            return sponsors

        current, neighbour = sponsors[index], sponsors[other]
        current.position, neighbour.position = neighbour.position, current.position
        for sponsor in (current, neighbour):
            await self._guarded(
                "Could not reorder sponsors",
                self.sponsors.update({"ordem": sponsor.position}, filters={"id": sponsor.id}),
            )
        sponsors[index], sponsors[other] = neighbour, current
        return sponsors

    # Settings

    async def save_settings(
        self,
        app_name: str,
        logo_url: str = "",
        primary_color: str = "#ff0000",
        secondary_color: str = "#ffffff",
    ) -> AppConfig:
        self.auth_manager.require_admin()
        config = await self._guarded(
            "Could not save settings",
            self.config.save(app_name, logo_url, primary_color, secondary_color),
        )
        self.notifier.success("Settings saved!")
        return config
