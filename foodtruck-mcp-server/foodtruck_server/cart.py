"""Shopping cart kept on this device."""

import logging
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from .models import CartLine, CartLineItem, CartSummary, Product, User
from .notifications import Notifier
from .storage import LocalStorage, PersistentValue

if TYPE_CHECKING:
    from .auth import AuthManager

logger = logging.getLogger(__name__)


class CartStore:
    """Line items in first-added order, written through to local storage.

    There is at most one line per product id and every quantity is >= 1.
    """

    STORAGE_KEY = "foodtruck_cart"

    def __init__(self, storage: LocalStorage, notifier: Optional[Notifier] = None) -> None:
        """
        Initialize the cart and load the saved copy.

        Args:
            storage: Durable storage holding the cart
            notifier: Receives add/remove confirmations
        """
        self.storage = storage
        self.notifier = notifier or Notifier()
        self._lines: PersistentValue[list[CartLineItem]] = PersistentValue(
            storage, self.STORAGE_KEY, [], list[CartLineItem], discard_invalid=True
        )
        if self._items:
            logger.info(f"Loaded cart with {len(self._items)} line(s)")

    @property
    def _items(self) -> list[CartLineItem]:
        return self._lines.get()

    def _index_of(self, product_id: str) -> Optional[int]:
        for index, item in enumerate(self._items):
            if item.product.id == product_id:
                return index
        return None

    @property
    def items(self) -> list[CartLineItem]:
        return [item.model_copy() for item in self._items]

    @property
    def is_empty(self) -> bool:
        return not self._items

    def add(self, product: Product, quantity: int = 1, note: Optional[str] = None) -> None:
        """
        Add a product to the cart.

        An existing line for the same product gets its quantity increased; its
        note is replaced only when a new note is given.

        Args:
            product: Product snapshot to store in the line
            quantity: Quantity to add
            note: Optional note for the kitchen

        Raises:
            ValueError: If quantity is lower than 1
        """
        if quantity < 1:
            raise ValueError("quantity must be at least 1")

        self._lines.refresh()
        items = list(self._items)
        index = self._index_of(product.id)
        if index is not None:
            current = items[index]
            items[index] = current.model_copy(
                update={
                    "quantity": current.quantity + quantity,
                    "note": note or current.note,
                }
            )
            message = "Product updated in cart!"
        else:
            items.append(CartLineItem(product=product, quantity=quantity, note=note))
            message = "Product added to cart!"

        self._lines.set(items)
        self.notifier.success(message)

    def remove(self, product_id: str) -> None:
        """Remove the line for a product, if there is one."""
        self._lines.refresh()
        index = self._index_of(product_id)
        if index is None:
            return
        items = list(self._items)
        del items[index]
        self._lines.set(items)
        self.notifier.success("Product removed from cart!")

    def set_quantity(self, product_id: str, quantity: int) -> None:
        """Overwrite the quantity of a line; zero or less removes it."""
        if quantity <= 0:
            self.remove(product_id)
            return

        self._lines.refresh()
        index = self._index_of(product_id)
        if index is None:
            return
        items = list(self._items)
        items[index] = items[index].model_copy(update={"quantity": quantity})
        self._lines.set(items)

    def clear(self) -> None:
        """Empty the cart and erase the saved copy."""
        self._lines.remove()

    def total_item_count(self) -> int:
        return sum(item.quantity for item in self._items)

    def total_price(self) -> Decimal:
        return sum((item.product.price * item.quantity for item in self._items), Decimal("0"))

    def quantity_of(self, product_id: str) -> int:
        index = self._index_of(product_id)
        return 0 if index is None else self._items[index].quantity

    def snapshot(self) -> CartSummary:
        return CartSummary(
            items=[
                CartLine(
                    product_id=item.product.id,
                    name=item.product.name,
                    unit_price=item.product.price,
                    quantity=item.quantity,
                    note=item.note,
                    subtotal=item.subtotal,
                )
                for item in self._items
            ],
            item_count=self.total_item_count(),
            total=self.total_price(),
        )

    def bind(self, auth_manager: "AuthManager") -> None:
        """Clear the cart whenever the signed-in identity goes away."""
        auth_manager.add_identity_listener(self._on_identity_change)

    def close(self) -> None:
        self._lines.close()

    def _on_identity_change(self, user: Optional[User]) -> None:
        if user is None:
            logger.info("No signed-in user, clearing cart")
            self.clear()
