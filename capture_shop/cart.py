from __future__ import annotations
import logging
from typing import Any, Optional

from .errors import NotFound
from .schemas import CartItem

logger = logging.getLogger(__name__)


class Cart:
    """Line items keyed by product id. One entry per product."""

    def __init__(self, items: Optional[list[CartItem]] = None):
        self.items: list[CartItem] = list(items or [])

    def _find(self, product_id: str) -> Optional[CartItem]:
        for item in self.items:
            if item.id == product_id:
                return item
        return None

    def add_to_cart(self, product: dict[str, Any]) -> CartItem:
        item = self._find(product["id"])
        if item is not None:
            item.quantity += 1
            return item
        images = product.get("image_urls") or []
        item = CartItem(
            id=product["id"],
            name=product["name"],
            price=float(product["price"]),
            image=images[0] if images else None,
        )
        self.items.append(item)
        return item

    def remove_from_cart(self, product_id: str) -> None:
        self.items = [item for item in self.items if item.id != product_id]

    def set_quantity(self, product_id: str, quantity: int) -> None:
        # Zero or less drops the line rather than keeping an empty one
        item = self._find(product_id)
        if item is None:
            raise NotFound(f"cart item {product_id}")
        if quantity <= 0:
            self.remove_from_cart(product_id)
        else:
            item.quantity = quantity

    def calculate_total(self) -> float:
        return sum(item.price * item.quantity for item in self.items)

    def item_count(self) -> int:
        return sum(item.quantity for item in self.items)

    def clear_cart(self) -> None:
        self.items = []

    def snapshot(self) -> list[CartItem]:
        return [item.model_copy() for item in self.items]

    def __len__(self) -> int:
        return len(self.items)


class CartRegistry:
    """In-memory carts for HTTP clients, keyed by the client's cart id.

    Only carts holding items are kept; reads of an unknown id see an empty
    cart without registering one.
    """

    def __init__(self) -> None:
        self._carts: dict[str, Cart] = {}

    def __len__(self) -> int:
        return len(self._carts)

    def get(self, cart_id: str) -> Cart:
        cart = self._carts.get(cart_id)
        if cart is None:
            cart = self._carts[cart_id] = Cart()
            logger.debug(f"Opened cart {cart_id}")
        return cart

    def find(self, cart_id: str) -> Cart:
        cart = self._carts.get(cart_id)
        return cart if cart is not None else Cart()

    def release(self, cart_id: str) -> None:
        """Forget the cart once it is empty."""
        cart = self._carts.get(cart_id)
        if cart is not None and not cart.items:
            self.drop(cart_id)

    def drop(self, cart_id: str) -> None:
        if self._carts.pop(cart_id, None) is not None:
            logger.debug(f"Dropped cart {cart_id}")
