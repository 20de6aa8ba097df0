"""
Cart Store

Owns the session's cart lines and mirrors them to durable storage after every
mutation. In-memory state is authoritative for the running session: a failed
write is logged and never rolls the mutation back.
"""

import json
import logging
import uuid
from decimal import Decimal
from typing import Callable, Optional, TYPE_CHECKING

from pydantic import ValidationError

from ..core.errors import StorageError, StorefrontError
from ..models.cart import CartLineItem, CartSummary, CustomPropertySelection, selection_key
from ..models.product import Product
from ..storage.kv_store import KeyValueStore
from . import pricing

if TYPE_CHECKING:
    from .cart_validator import CartValidator

logger = logging.getLogger(__name__)


def new_line_id() -> str:
    return f"line-{uuid.uuid4().hex}"


class CartStore:
    """Ordered cart lines with merge-on-match adds"""

    def __init__(
        self,
        store: KeyValueStore,
        storage_key: str = "storefront-cart",
        id_factory: Callable[[], str] = new_line_id,
    ):
        self.store = store
        self.storage_key = storage_key
        self._id_factory = id_factory
        self._lines: list[CartLineItem] = []

    # ==================== Read model ====================

    @property
    def lines(self) -> list[CartLineItem]:
        return list(self._lines)

    def get_line(self, line_id: str) -> Optional[CartLineItem]:
        return next((line for line in self._lines if line.id == line_id), None)

    @property
    def summary(self) -> CartSummary:
        return pricing.order_summary(self._lines)

    @property
    def subtotal(self) -> Decimal:
        return pricing.subtotal(self._lines)

    @property
    def delivery_total(self) -> Decimal:
        return pricing.delivery_total(self._lines)

    @property
    def total(self) -> Decimal:
        return pricing.total(self._lines)

    @property
    def item_count(self) -> int:
        return pricing.item_count(self._lines)

    # ==================== Mutations ====================

    def add_item(
        self,
        product: Product,
        quantity: int = 1,
        selections: Optional[list[CustomPropertySelection]] = None,
    ) -> CartLineItem:
        """
        Add a product to the cart.

        A line for the same product with the same selections (in any order)
        absorbs the quantity; otherwise a new line with a fresh id is created.
        """
        if quantity < 1:
            raise ValueError(f"Quantity must be at least 1, got {quantity}")

        key = selection_key(selections)
        index = next(
            (
                i for i, line in enumerate(self._lines)
                if line.product.id == product.id and line.selection_key() == key
            ),
            None,
        )

        if index is not None:
            existing = self._lines[index]
            line = existing.model_copy(update={"quantity": existing.quantity + quantity})
            self._lines[index] = line
        else:
            line = CartLineItem(
                id=self._id_factory(),
                product=product.model_copy(deep=True),
                quantity=quantity,
                custom_selections=[s.model_copy() for s in selections] if selections else None,
            )
            self._lines.append(line)

        self._persist()
        return line

    def remove_line(self, line_id: str) -> bool:
        """Remove the one line with this id"""
        return self._remove(lambda line: line.id == line_id) > 0

    def remove_product(self, product_id: str) -> int:
        """Remove every line (all variants) for a product"""
        return self._remove(lambda line: line.product.id == product_id)

    def remove_item(self, line_id_or_product_id: str) -> int:
        """
        Remove by line id or by product id.

        Kept for callers written before lines had their own ids. A product id
        removes every variant of that product; to drop one customized line,
        pass its line id or use remove_line().
        """
        return self._remove(
            lambda line: line.id == line_id_or_product_id
            or line.product.id == line_id_or_product_id
        )

    def update_line_quantity(self, line_id: str, quantity: int) -> bool:
        if quantity <= 0:
            return self.remove_line(line_id)
        return self._set_quantity(lambda line: line.id == line_id, quantity) > 0

    def update_product_quantity(self, product_id: str, quantity: int) -> int:
        if quantity <= 0:
            return self.remove_product(product_id)
        return self._set_quantity(lambda line: line.product.id == product_id, quantity)

    def update_quantity(self, line_id_or_product_id: str, quantity: int) -> int:
        """Set quantity by line id or product id; zero or less removes (see remove_item)"""
        if quantity <= 0:
            return self.remove_item(line_id_or_product_id)
        return self._set_quantity(
            lambda line: line.id == line_id_or_product_id
            or line.product.id == line_id_or_product_id,
            quantity,
        )

    def update_selections(
        self,
        line_id: str,
        selections: Optional[list[CustomPropertySelection]],
    ) -> bool:
        """Replace the selections on one line"""
        for i, line in enumerate(self._lines):
            if line.id == line_id:
                copied = [s.model_copy() for s in selections] if selections else None
                self._lines[i] = line.model_copy(update={"custom_selections": copied})
                self._persist()
                return True
        return False

    def replace_lines(self, lines: list[CartLineItem]) -> None:
        """Commit a recomputed line list (e.g. after validator cleanup)"""
        self._lines = list(lines)
        self._persist()

    def clear_cart(self) -> None:
        """Empty the cart and remove its durable entry"""
        self._lines = []
        try:
            self.store.delete(self.storage_key)
        except StorageError as e:
            logger.error(f"Error clearing cart from storage: {e}")

    def _remove(self, matches: Callable[[CartLineItem], bool]) -> int:
        kept = [line for line in self._lines if not matches(line)]
        removed = len(self._lines) - len(kept)
        if removed:
            self._lines = kept
            self._persist()
        return removed

    def _set_quantity(self, matches: Callable[[CartLineItem], bool], quantity: int) -> int:
        updated = 0
        for i, line in enumerate(self._lines):
            if matches(line):
                self._lines[i] = line.model_copy(update={"quantity": quantity})
                updated += 1
        if updated:
            self._persist()
        return updated

    # ==================== Persistence ====================

    def load(self) -> list[CartLineItem]:
        """Read the cart from durable storage, discarding it if corrupt"""
        try:
            raw = self.store.get(self.storage_key)
        except StorageError as e:
            logger.warning(f"Error loading cart from storage, starting empty: {e}")
            self._lines = []
            return self.lines

        if raw is None:
            self._lines = []
            return self.lines

        try:
            payload = json.loads(raw)
            if not isinstance(payload, list):
                raise ValueError(f"expected a list, got {type(payload).__name__}")
            self._lines = [CartLineItem.model_validate(item) for item in payload]
        except (ValueError, ValidationError) as e:
            logger.warning(f"Discarding corrupt cart data: {e}")
            self._lines = []
            try:
                self.store.delete(self.storage_key)
            except StorageError as delete_error:
                logger.error(f"Error clearing corrupt cart data: {delete_error}")

        logger.debug(f"Loaded {len(self._lines)} cart lines")
        return self.lines

    def _persist(self) -> None:
        payload = [line.model_dump(mode="json", by_alias=True) for line in self._lines]
        try:
            self.store.set(self.storage_key, json.dumps(payload))
        except StorageError as e:
            logger.error(f"Error saving cart to storage: {e}")

    # ==================== Validation ====================

    async def cleanup(self, validator: "CartValidator") -> int:
        """Drop lines whose products no longer validate; returns how many went"""
        checked = self.lines
        if not checked:
            return 0
        try:
            result = await validator.cleanup(checked)
        except StorefrontError as e:
            logger.warning(f"Cart cleanup skipped, products could not be checked: {e}")
            return 0

        # Lines may have changed while validating; drop only the pruned ones
        kept_ids = {line.id for line in result.lines}
        pruned_ids = {line.id for line in checked} - kept_ids
        removed = self._remove(lambda line: line.id in pruned_ids)
        if removed:
            logger.info(f"Cart cleanup removed {removed} invalid items")
        return removed
