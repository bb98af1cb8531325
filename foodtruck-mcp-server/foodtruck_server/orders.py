"""Delivery addresses, checkout and order history."""

import logging
from decimal import Decimal
from typing import Any, Mapping, Optional

from .auth import AuthManager
from .backend import BackendClient, BackendError, NotFoundError, Table, in_
from .cart import CartStore
from .models import Address, Order, OrderItem, OrderStatus
from .notifications import Notifier
from .validators import ADDRESS_FIELDS, validate_address

logger = logging.getLogger(__name__)

ADDRESS_COLUMNS = ADDRESS_FIELDS + ("complement",)


async def attach_items(items_table: Table, products_table: Table, orders: list[Order]) -> list[Order]:
    """
    Load the line items of orders, with product names.

    Args:
        items_table: The ``itens_pedido`` table
        products_table: The ``produtos`` table
        orders: Orders to fill in

    Returns:
        The same orders, each with its ``items`` set
    """
    order_ids = [order.id for order in orders if order.id]
    if not order_ids:
        return orders

    rows = await items_table.select(filters={"pedido_id": in_(order_ids)})
    items = [OrderItem.model_validate(row) for row in rows]

    product_ids = sorted({item.product_id for item in items})
    names: dict[str, str] = {}
    if product_ids:
        products = await products_table.select("id, nome", filters={"id": in_(product_ids)})
        names = {row["id"]: row["nome"] for row in products}

    by_order: dict[str, list[OrderItem]] = {}
    for item in items:
        item.product_name = names.get(item.product_id)
        by_order.setdefault(item.order_id or "", []).append(item)

    for order in orders:
        order.items = by_order.get(order.id or "", [])
    return orders


def _address_values(fields: Mapping[str, Any]) -> dict[str, Any]:
    values = {key: fields.get(key) for key in ADDRESS_COLUMNS}
    return {key: value.strip() if isinstance(value, str) else value for key, value in values.items()}


class AddressBook:
    """Delivery addresses of the signed-in user."""

    def __init__(self, backend: BackendClient, auth_manager: AuthManager, notifier: Optional[Notifier] = None) -> None:
        self.table = backend.table("enderecos")
        self.auth_manager = auth_manager
        self.notifier = notifier or auth_manager.notifier

    async def list(self) -> list[Address]:
        """Addresses of the current user, default address first."""
        user = self.auth_manager.require_user()
        rows = await self.table.select(filters={"user_id": user.id}, order="padrao", descending=True)
        return [Address.model_validate(row) for row in rows]

    async def get(self, address_id: str) -> Optional[Address]:
        user = self.auth_manager.require_user()
        row = await self.table.select_maybe_one(filters={"id": address_id, "user_id": user.id})
        return Address.model_validate(row) if row else None

    async def add(self, fields: Mapping[str, Any]) -> Address:
        """
        Save a new address. The first address of a user becomes the default.

        Args:
            fields: street, number, complement, district, city, state, postal_code

        Raises:
            ValidationError: If a required field is empty
            BackendError: If the backend rejects the address
        """
        user = self.auth_manager.require_user()
        validate_address(fields)

        try:
            is_first = await self.table.count(filters={"user_id": user.id}) == 0
            address = Address(user_id=user.id, is_default=is_first, **_address_values(fields))
            rows = await self.table.insert(address.to_row(exclude={"id", "created_at"}))
        except BackendError as e:
            logger.error(f"Could not add address for user {user.id}: {e}")
            self.notifier.error(e.message or "Could not add address")
            raise

        self.notifier.success("Address added successfully!")
        return Address.model_validate(rows[0]) if rows else address

    async def update(self, address_id: str, fields: Mapping[str, Any]) -> Address:
        """Replace the fields of one of the user's addresses."""
        user = self.auth_manager.require_user()
        validate_address(fields)

        patch = {
            Address.model_fields[key].alias or key: value
            for key, value in _address_values(fields).items()
        }
        try:
            rows = await self.table.update(patch, filters={"id": address_id, "user_id": user.id})
        except BackendError as e:
            logger.error(f"Could not update address {address_id}: {e}")
            self.notifier.error(e.message or "Could not update address")
            raise

        if not rows:
            self.notifier.error("Address not found")
            raise NotFoundError(f"Address {address_id} not found")

        self.notifier.success("Address updated!")
        return Address.model_validate(rows[0])


class CheckoutService:
    """Turns the cart into an order."""

    def __init__(
        self,
        backend: BackendClient,
        auth_manager: AuthManager,
        cart: CartStore,
        addresses: AddressBook,
        notifier: Optional[Notifier] = None,
        delivery_fee: Decimal = Decimal("5"),
    ) -> None:
        """
        Initialize the checkout.

        Args:
            backend: Backend client
            auth_manager: Signed-in identity
            cart: Cart to order from
            addresses: Address book of the user
            notifier: Receives the outcome
            delivery_fee: Flat fee added to every order
        """
        self.orders = backend.table("pedidos")
        self.items = backend.table("itens_pedido")
        self.auth_manager = auth_manager
        self.cart = cart
        self.addresses = addresses
        self.notifier = notifier or auth_manager.notifier
        self.delivery_fee = delivery_fee

    def order_total(self) -> Decimal:
        return self.cart.total_price() + self.delivery_fee

    async def place_order(self, address_id: str) -> Optional[Order]:
        """
        Create an order from the cart and empty the cart.

        Args:
            address_id: Delivery address of the current user

        Returns:
            The created order, or None if it could not be placed
        """
        user = self.auth_manager.require_user()
        logger.info(f"=== PLACE ORDER: user={user.id}, address={address_id} ===")

        if self.cart.is_empty:
            self.notifier.error("Your cart is empty")
            return None

        try:
            address = await self.addresses.get(address_id)
        except BackendError as e:
            logger.error(f"Could not read address {address_id}: {e}")
            self.notifier.error(e.message or "Could not place order")
            return None
        if address is None:
            self.notifier.error("Select a delivery address")
            return None

        lines = self.cart.items
        order = Order(
            user_id=user.id,
            status=OrderStatus.PENDING,
            total=self.order_total(),
            delivery_address=address.format(),
        )

        try:
            rows = await self.orders.insert(order.to_row(exclude={"id", "created_at", "updated_at"}))
            if not rows:
                raise BackendError("Order was not created")
            created = Order.model_validate(rows[0])
        except BackendError as e:
            logger.error(f"Could not create order: {e}")
            self.notifier.error(e.message or "Could not place order")
            return None

        items = [
            OrderItem(
                order_id=created.id,
                product_id=line.product.id,
                product_name=line.product.name,
                quantity=line.quantity,
                unit_price=line.product.price,
                note=line.note or None,
            )
            for line in lines
        ]
        try:
            await self.items.insert([item.to_row(exclude={"id", "product_name"}) for item in items])
        except BackendError as e:
            logger.error(f"Could not add items to order {created.id}: {e}")
            try:
                await self.orders.delete(filters={"id": created.id})
            except BackendError as cleanup_error:
                logger.error(f"Could not remove incomplete order {created.id}: {cleanup_error}")
            self.notifier.error(e.message or "Could not place order")
            return None

        self.cart.clear()
        self.notifier.success("Order placed successfully!")
        logger.info(f"Order {created.id} placed, total {created.total}")
        created.items = items
        return created


class OrderHistory:
    """Past orders of the signed-in user."""

    def __init__(self, backend: BackendClient, auth_manager: AuthManager) -> None:
        self.orders = backend.table("pedidos")
        self.items = backend.table("itens_pedido")
        self.products = backend.table("produtos")
        self.auth_manager = auth_manager

    async def list_orders(self) -> list[Order]:
        """Orders newest first, with their items."""
        user = self.auth_manager.require_user()
        rows = await self.orders.select(filters={"user_id": user.id}, order="created_at", descending=True)
        orders = [Order.model_validate(row) for row in rows]
        return await attach_items(self.items, self.products, orders)

    async def get_order(self, order_id: str) -> Optional[Order]:
        user = self.auth_manager.require_user()
        row = await self.orders.select_maybe_one(filters={"id": order_id, "user_id": user.id})
        if row is None:
            return None
        orders = await attach_items(self.items, self.products, [Order.model_validate(row)])
        return orders[0]
