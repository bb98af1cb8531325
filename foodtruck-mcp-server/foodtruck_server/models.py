"""Data models for the foodtruck storefront.

Backend rows use Portuguese column names (``nome``, ``preco``, ...). Each model
maps them to attribute names through field aliases, so ``Model.model_validate(row)``
is the adapter from a table row and ``to_row()`` is the adapter back.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field


class Row(BaseModel):
    """Base for models that are read from and written to backend tables."""

    model_config = ConfigDict(populate_by_name=True)

    def to_row(self, exclude: Optional[set[str]] = None) -> dict[str, Any]:
        """Serialize to a backend row using column names."""
        return self.model_dump(
            mode="json", by_alias=True, exclude_none=True, exclude=exclude
        )


class Product(Row):
    """A menu item."""

    id: str = Field(description="Product ID")
    name: str = Field(alias="nome", description="Product name")
    description: Optional[str] = Field("", alias="descricao", description="Product description")
    price: Decimal = Field(alias="preco", description="Unit price")
    image_url: Optional[str] = Field(None, alias="imagem_url", description="Product image URL")
    category_id: Optional[str] = Field(None, alias="categoria_id", description="Category ID")
    available: bool = Field(default=True, alias="disponivel", description="Product availability")
    featured: bool = Field(default=False, alias="destaque", description="Shown on the home page")
    created_at: Optional[datetime] = None


class Category(Row):
    """A menu category."""

    id: str
    name: str = Field(alias="nome")
    image_url: Optional[str] = Field(None, alias="imagem_url")
    position: int = Field(default=0, alias="ordem")
    created_at: Optional[datetime] = None


class CartLineItem(BaseModel):
    """One product-plus-quantity entry in the cart."""

    model_config = ConfigDict(populate_by_name=True)

    product: Product
    quantity: int = Field(ge=1, description="Quantity of the product")
    note: Optional[str] = Field(None, alias="observacao", description="Free text for the kitchen")

    @property
    def subtotal(self) -> Decimal:
        return self.product.price * self.quantity


class CartLine(BaseModel):
    """A cart line as shown to the user."""

    product_id: str
    name: str
    unit_price: Decimal
    quantity: int
    note: Optional[str] = None
    subtotal: Decimal


class CartSummary(BaseModel):
    """Read-only view of the cart with derived totals."""

    items: list[CartLine] = Field(default_factory=list)
    item_count: int = 0
    total: Decimal = Decimal("0")


class User(BaseModel):
    """Authentication identity."""

    model_config = ConfigDict(extra="allow")

    id: str
    email: Optional[str] = None


class Session(BaseModel):
    """Token bundle issued by the auth service."""

    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "bearer"
    expires_at: Optional[int] = None
    user: User


class Profile(Row):
    """Application-level user record, distinct from the auth identity."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: Optional[str] = None
    user_id: str
    name: str = Field(default="", alias="nome")
    phone: str = Field(default="", alias="telefone")
    is_admin: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class AuthState(BaseModel):
    """Current session, identity and profile."""

    session: Optional[Session] = None
    user: Optional[User] = None
    profile: Optional[Profile] = None
    loading: bool = False

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_admin(self) -> bool:
        return bool(self.profile and self.profile.is_admin)


class AuthResult(BaseModel):
    """Outcome of a sign-in/up/out or reset request."""

    success: bool
    message: str
    redirect: Optional[str] = None
    errors: dict[str, str] = Field(default_factory=dict)


class AuthCredentials(BaseModel):
    """Authentication credentials."""

    email: str
    password: str


class Address(Row):
    """A delivery address of a user."""

    id: Optional[str] = None
    user_id: Optional[str] = None
    street: str = Field(alias="rua")
    number: str = Field(alias="numero")
    complement: Optional[str] = Field(None, alias="complemento")
    district: str = Field(alias="bairro")
    city: str = Field(alias="cidade")
    state: str = Field(alias="estado")
    postal_code: str = Field(alias="cep")
    is_default: bool = Field(default=False, alias="padrao")
    created_at: Optional[datetime] = None

    def format(self) -> str:
        """One-line form stored on the order."""
        text = (
            f"{self.street}, {self.number}, {self.district}, "
            f"{self.city} - {self.state}, {self.postal_code}"
        )
        if self.complement:
            text += f" ({self.complement})"
        return text


class OrderStatus(str, Enum):
    """Order lifecycle states."""

    PENDING = "pending"
    PREPARING = "preparing"
    DELIVERY = "delivery"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def label(self) -> str:
        return {
            "pending": "Pending",
            "preparing": "Preparing",
            "delivery": "Out for delivery",
            "completed": "Delivered",
            "cancelled": "Cancelled",
        }[self.value]


class OrderItem(Row):
    """Represents an item in an order."""

    id: Optional[str] = None
    order_id: Optional[str] = Field(None, alias="pedido_id")
    product_id: str = Field(alias="produto_id")
    product_name: Optional[str] = None
    quantity: int = Field(alias="quantidade")
    unit_price: Decimal = Field(alias="preco_unitario")
    note: Optional[str] = Field(None, alias="observacao")

    @property
    def subtotal(self) -> Decimal:
        return self.unit_price * self.quantity


class Order(Row):
    """Represents an order."""

    id: Optional[str] = None
    user_id: str
    status: OrderStatus = OrderStatus.PENDING
    total: Decimal
    delivery_address: str = Field(alias="endereco_entrega")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    customer_name: Optional[str] = None
    items: list[OrderItem] = Field(default_factory=list)

    def to_row(self, exclude: Optional[set[str]] = None) -> dict[str, Any]:
        return super().to_row(exclude=(exclude or set()) | {"items", "customer_name"})


class Sponsor(Row):
    """A sponsor shown on the storefront."""

    id: Optional[str] = None
    name: str = Field(alias="nome")
    logo_url: str = ""
    website: str = ""
    active: bool = Field(default=True, alias="ativo")
    position: int = Field(default=0, alias="ordem")


class AppConfig(Row):
    """Application-wide configuration row."""

    id: str = "config-unica"
    app_name: str = Field(default="", alias="nome_app")
    logo_url: str = ""
    primary_color: str = Field(default="#ff0000", alias="cor_primaria")
    secondary_color: str = Field(default="#ffffff", alias="cor_secundaria")


class DashboardStats(BaseModel):
    """Back-office summary figures."""

    total_sales: Decimal = Decimal("0")
    total_orders: int = 0
    total_users: int = 0
    pending_orders: int = 0
    recent_orders: list[Order] = Field(default_factory=list)


class ImageUpload(BaseModel):
    """An image file to push to object storage."""

    filename: str
    content: bytes
    content_type: str = "application/octet-stream"
