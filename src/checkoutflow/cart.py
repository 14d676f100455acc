"""Shopping cart storage for checkoutflow."""

import json
import logging
import os
import tempfile
from decimal import Decimal
from pathlib import Path

from .errors import InvalidSchemaVersionError, ValidationError
from .models import CartItem

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1
CART_FILE = "cart.json"


class CartStore:
    """
    The session's single cart.

    Mutated only through add/update/remove/clear. When constructed with a path
    the cart is persisted after every mutation.
    """

    def __init__(self, path: Path | None = None):
        """
        Initialize CartStore.

        Args:
            path: JSON file to persist the cart in. In-memory only when None.
        """
        self.path = path
        self._items: list[CartItem] = []
        if path is not None and path.exists():
            self._items = self._load()

    def _load(self) -> list[CartItem]:
        """
        Load cart items from disk.

        Raises:
            InvalidSchemaVersionError: If schema version is unsupported.
        """
        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)

        version = data.get("schema_version", 0)
        if version != SCHEMA_VERSION:
            raise InvalidSchemaVersionError(version, SCHEMA_VERSION)

        return [CartItem.from_dict(i) for i in data.get("items", [])]

    def _save(self) -> None:
        """
        Save the cart to disk atomically.

        Uses write-to-temp-then-rename for atomicity.
        """
        if self.path is None:
            return

        self.path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "schema_version": SCHEMA_VERSION,
            "items": [i.to_dict() for i in self._items],
        }
        fd, temp_path = tempfile.mkstemp(dir=self.path.parent, prefix=".cart_", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
                f.write("\n")
            os.replace(temp_path, self.path)
        except Exception:
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            raise

    @property
    def items(self) -> list[CartItem]:
        """A copy of the cart lines; mutate through the store's methods."""
        return list(self._items)

    def is_empty(self) -> bool:
        return not self._items

    def get_item(self, product_id: str, color_id: str, size: str) -> CartItem | None:
        for item in self._items:
            if item.key == (product_id, color_id, size):
                return item
        return None

    def contains(self, product_id: str, color_id: str, size: str) -> bool:
        return self.get_item(product_id, color_id, size) is not None

    def add(self, item: CartItem) -> CartItem:
        """
        Add a line, merging into an existing line for the same product variant.

        Returns:
            The cart line as stored.

        Raises:
            ValidationError: If quantity < 1 or the price is negative.
        """
        if item.quantity < 1:
            raise ValidationError("quantity", "must be at least 1")
        if item.unit_price < 0:
            raise ValidationError("price", "must be >= 0")

        existing = self.get_item(*item.key)
        if existing is not None:
            existing.quantity += item.quantity
            self._save()
            logger.debug("Cart line %s now x%d", item.key, existing.quantity)
            return existing

        self._items.append(item)
        self._save()
        logger.debug("Cart line %s added x%d", item.key, item.quantity)
        return item

    def update_quantity(self, product_id: str, color_id: str, size: str, quantity: int) -> bool:
        """
        Set a line's quantity. Quantities below 1 are ignored.

        Returns:
            True if a line was updated.
        """
        if quantity < 1:
            return False
        item = self.get_item(product_id, color_id, size)
        if item is None:
            return False
        item.quantity = quantity
        self._save()
        return True

    def remove(self, product_id: str, color_id: str, size: str) -> bool:
        """Remove a line. Returns True if a line was removed."""
        before = len(self._items)
        self._items = [i for i in self._items if i.key != (product_id, color_id, size)]
        if len(self._items) == before:
            return False
        self._save()
        return True

    def clear(self) -> None:
        """Empty the cart. Only a successful order placement should call this during checkout."""
        self._items = []
        self._save()
        logger.info("Cart cleared")

    def subtotal(self) -> Decimal:
        return sum((i.line_total for i in self._items), Decimal("0"))

    def item_count(self) -> int:
        return sum(i.quantity for i in self._items)
