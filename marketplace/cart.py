"""
Session-backed shopping cart.

The cart is an ordered list of line items persisted as a whole to the session
after every mutation. Lines are keyed by product id, or ``"<product>:<variant>"``
when a variant is selected.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from decimal import Decimal, InvalidOperation
from typing import Iterator, List, MutableMapping, Optional

logger = logging.getLogger(__name__)

CART_SESSION_KEY = "cart"


class OutOfStock(ValueError):
    """Raised when adding an item that has no stock left."""


def line_key(product_id, variant_id=None) -> str:
    if variant_id is None:
        return str(product_id)
    return f"{product_id}:{variant_id}"


@dataclass
class CartItem:
    id: str
    product_id: int
    name: str
    price: Decimal
    quantity: int
    stock: int
    seller_id: Optional[int] = None
    variant_id: Optional[int] = None
    image_url: str = ""

    @property
    def subtotal(self) -> Decimal:
        return self.price * self.quantity

    @classmethod
    def from_product(cls, product, quantity: int = 1, variant=None) -> "CartItem":
        """Build a line from a Product (and optional ProductVariant)."""
        from .variants import get_variant_display_image, variant_price

        name = product.name
        if variant is not None and variant.options:
            name = f"{name} ({', '.join(variant.options.values())})"
        return cls(
            id=line_key(product.pk, variant.pk if variant is not None else None),
            product_id=product.pk,
            variant_id=variant.pk if variant is not None else None,
            name=name,
            price=Decimal(variant_price(variant, product)),
            quantity=quantity,
            stock=variant.stock if variant is not None else product.stock,
            seller_id=product.store.vendor_id,
            image_url=get_variant_display_image(variant, product.image_url) or "",
        )

    def to_dict(self) -> dict:
        data = asdict(self)
        data["price"] = str(self.price)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "CartItem":
        return cls(
            id=str(data["id"]),
            product_id=int(data["product_id"]),
            name=data["name"],
            price=Decimal(data["price"]),
            quantity=int(data["quantity"]),
            stock=int(data["stock"]),
            seller_id=data.get("seller_id"),
            variant_id=data.get("variant_id"),
            image_url=data.get("image_url") or "",
        )


class Cart:
    """Ordered cart over a mutable mapping (normally ``request.session``)."""

    def __init__(self, storage: MutableMapping, key: str = CART_SESSION_KEY):
        self.storage = storage
        self.key = key
        self._items: List[CartItem] = self._load()

    # ---- persistence ----

    def _load(self) -> List[CartItem]:
        raw = self.storage.get(self.key)
        if not raw:
            return []
        try:
            return [CartItem.from_dict(entry) for entry in raw]
        except (TypeError, ValueError, KeyError, InvalidOperation) as exc:
            logger.warning("Discarding unreadable cart data: %s", exc)
            return []

    def _save(self) -> None:
        self.storage[self.key] = [item.to_dict() for item in self._items]
        # Sessions only persist nested changes when flagged.
        if hasattr(self.storage, "modified"):
            self.storage.modified = True

    # ---- reads ----

    @property
    def items(self) -> List[CartItem]:
        return list(self._items)

    def __iter__(self) -> Iterator[CartItem]:
        return iter(list(self._items))

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)

    def get(self, item_id) -> Optional[CartItem]:
        item_id = str(item_id)
        return next((i for i in self._items if i.id == item_id), None)

    @property
    def total_items(self) -> int:
        return sum(item.quantity for item in self._items)

    @property
    def total_price(self) -> Decimal:
        return sum((item.subtotal for item in self._items), Decimal("0.00"))

    # ---- mutations ----

    def add_item(self, item: CartItem) -> CartItem:
        """
        Upsert a line by id. Existing lines grow by ``item.quantity``; the
        result is clamped to the latest known stock.
        """
        if item.stock <= 0:
            raise OutOfStock(f"{item.name} is out of stock.")

        quantity = max(1, item.quantity)
        existing = self.get(item.id)
        if existing is not None:
            existing.stock = item.stock
            existing.quantity = min(existing.quantity + quantity, item.stock)
            line = existing
        else:
            item.quantity = min(quantity, item.stock)
            self._items.append(item)
            line = item
        self._save()
        return line

    def remove_item(self, item_id) -> bool:
        item_id = str(item_id)
        before = len(self._items)
        self._items = [i for i in self._items if i.id != item_id]
        if len(self._items) == before:
            return False
        self._save()
        return True

    def update_quantity(self, item_id, quantity: int) -> Optional[CartItem]:
        """Set a line's quantity; <= 0 removes it. Returns the line or None."""
        if quantity <= 0:
            self.remove_item(item_id)
            return None
        item = self.get(item_id)
        if item is None:
            return None
        item.quantity = min(quantity, item.stock)
        self._save()
        return item

    def clear(self) -> None:
        self._items = []
        self._save()
