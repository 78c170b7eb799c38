"""Per-identity carts. Checkout re-prices every line from the catalog."""

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

from app.helpers import format_money, line_subtotal, round_money


def _now():
    return datetime.now(timezone.utc)


@dataclass
class CartItem:
    product_id: str
    name: str
    slug: str
    price: object
    image: Optional[str]
    quantity: int


@dataclass
class Cart:
    items: List[CartItem] = field(default_factory=list)
    updated_at: datetime = field(default_factory=_now)

    def find(self, product_id: str) -> Optional[CartItem]:
        for item in self.items:
            if item.product_id == product_id:
                return item
        return None

    def touch(self):
        self.updated_at = _now()


class CartStore:
    def __init__(self):
        self._carts: Dict[str, Cart] = {}
        self._lock = threading.Lock()

    def get(self, identity_id: str) -> Cart:
        with self._lock:
            cart = self._carts.get(identity_id)
            if cart is None:
                cart = self._carts[identity_id] = Cart()
            return cart

    def add_item(self, identity_id: str, product, quantity: int) -> Cart:
        cart = self.get(identity_id)
        existing = cart.find(product.id)
        if existing:
            existing.quantity += quantity
        else:
            images = product.images or []
            cart.items.append(
                CartItem(
                    product_id=product.id,
                    name=product.name,
                    slug=product.slug,
                    price=round_money(product.price),
                    image=images[0] if images else None,
                    quantity=quantity,
                )
            )
        cart.touch()
        return cart

    def update_item(self, identity_id: str, product_id: str, quantity: int) -> Optional[Cart]:
        """Set a line's quantity, dropping it when ``quantity <= 0``.

        Returns ``None`` when the product is not in the cart.
        """
        cart = self.get(identity_id)
        item = cart.find(product_id)
        if item is None:
            return None

        if quantity <= 0:
            cart.items.remove(item)
        else:
            item.quantity = quantity
        cart.touch()
        return cart

    def remove_item(self, identity_id: str, product_id: str) -> Cart:
        cart = self.get(identity_id)
        cart.items = [i for i in cart.items if i.product_id != product_id]
        cart.touch()
        return cart

    def clear(self, identity_id: str) -> None:
        with self._lock:
            self._carts[identity_id] = Cart()

    def discard_purchased(self, identity_id: str, purchased: Dict[str, int]) -> None:
        """Take checked-out quantities off the cart, keeping anything added since."""
        with self._lock:
            cart = self._carts.get(identity_id)
            if cart is None:
                return
            kept = []
            for item in cart.items:
                left = item.quantity - purchased.get(item.product_id, 0)
                if left > 0:
                    item.quantity = left
                    kept.append(item)
            cart.items = kept
            cart.touch()


def calculate_totals(cart: Cart) -> dict:
    subtotal = round_money(sum((line_subtotal(i.price, i.quantity) for i in cart.items), 0))
    return {
        "items": [
            {
                "productId": i.product_id,
                "name": i.name,
                "slug": i.slug,
                "price": format_money(i.price),
                "image": i.image,
                "quantity": i.quantity,
            }
            for i in cart.items
        ],
        "subtotal": format_money(subtotal),
        "itemCount": sum(i.quantity for i in cart.items),
        "updatedAt": cart.updated_at.isoformat(),
    }
