"""
Inventory ledger: per-item stock counts on the `menuitem` collection.

Every stock mutation is a single-document update, so MongoDB's per-document
atomicity is what serializes concurrent reservations. A reservation is a
conditional decrement (`stock >= quantity` in the filter), never a read
followed by a write.
"""
import logging
from typing import List, Optional

from pymongo import ASCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import PyMongoError

from database import create_document, serialize, to_oid, utcnow
from errors import InsufficientStock, ItemUnavailable, NotFound, ValidationFailed
from schemas import MenuItem

logger = logging.getLogger(__name__)

COLLECTION = "menuitem"


def reservation_filter(oid, quantity: int) -> dict:
    """Matches the item only while it can still give `quantity` units."""
    return {"_id": oid, "is_available": True, "stock": {"$gte": quantity}}


class InventoryLedger:
    def __init__(self, database: Database):
        self.db = database
        self.items = database[COLLECTION]

    # ----- reads -----

    def get_menu_item(self, item_id: str) -> dict:
        doc = self.items.find_one({"_id": to_oid(item_id)})
        if not doc:
            raise NotFound("Menu item not found")
        return serialize(doc)

    def list_menu_items(self, category: Optional[str] = None, available_only: bool = False) -> List[dict]:
        filt = {}
        if category:
            filt["category"] = category
        if available_only:
            filt["is_available"] = True
        cursor = self.items.find(filt).sort([("category", ASCENDING), ("name", ASCENDING)])
        return [serialize(doc) for doc in cursor]

    def list_categories(self) -> List[str]:
        return sorted(self.items.distinct("category"))

    def create_menu_item(self, item: MenuItem) -> dict:
        inserted_id = create_document(COLLECTION, item, database=self.db)
        return self.get_menu_item(inserted_id)

    # ----- mutations -----

    def reserve(self, item_id: str, quantity: int) -> dict:
        """Take `quantity` units of an available item, or fail without touching stock.

        Returns the item as it was before the decrement, so callers can
        snapshot name and price from the same read that won the stock.
        """
        if quantity < 1:
            raise ValidationFailed("Quantity must be at least 1")
        oid = to_oid(item_id)
        doc = self.items.find_one_and_update(
            reservation_filter(oid, quantity),
            {"$inc": {"stock": -quantity}, "$set": {"updated_at": utcnow()}},
            return_document=ReturnDocument.BEFORE,
        )
        if doc is not None:
            logger.debug("Reserved %s x %s (stock %s -> %s)", quantity, doc["name"], doc["stock"], doc["stock"] - quantity)
            return serialize(doc)
        self._raise_reserve_failure(oid, quantity)

    def _raise_reserve_failure(self, oid, quantity: int):
        current = self.items.find_one({"_id": oid})
        if current is None:
            raise NotFound(f"Menu item {oid} not found")
        if not current.get("is_available", False):
            raise ItemUnavailable(f"Menu item {current['name']} is not available")
        raise InsufficientStock(current["name"], current.get("stock", 0), quantity, item_id=str(oid))

    def release(self, item_id: str, quantity: int) -> bool:
        """Give `quantity` units back. Best effort: failures are logged, not raised."""
        try:
            result = self.items.update_one(
                {"_id": to_oid(item_id)},
                {"$inc": {"stock": quantity}, "$set": {"updated_at": utcnow()}},
            )
        except (PyMongoError, ValidationFailed):
            logger.exception("Failed to release %s unit(s) of menu item %s", quantity, item_id)
            return False
        if result.matched_count == 0:
            logger.warning("Could not release %s unit(s): menu item %s no longer exists", quantity, item_id)
            return False
        return True

    def adjust_stock(self, item_id: str, delta: int) -> dict:
        """Manual stock correction. Negative delta takes stock, positive gives it back."""
        if delta == 0:
            raise ValidationFailed("Stock adjustment must be non-zero")
        oid = to_oid(item_id)
        filt = {"_id": oid}
        if delta < 0:
            filt["stock"] = {"$gte": -delta}
        doc = self.items.find_one_and_update(
            filt,
            {"$inc": {"stock": delta}, "$set": {"updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            current = self.items.find_one({"_id": oid})
            if current is None:
                raise NotFound("Menu item not found")
            raise InsufficientStock(current["name"], current.get("stock", 0), -delta, item_id=str(oid))
        logger.info("Stock for %s adjusted by %+d to %s", doc["name"], delta, doc["stock"])
        return serialize(doc)
