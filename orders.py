"""
Order lifecycle engine.

Creating an order reserves every line against the inventory ledger first and
persists the order only once all reservations are held; a failure on any
line gives back what was already taken. Status changes are compare-and-set
on the current status, so the expiry sweep, a cancellation and an admin
update racing on the same order cannot both win, and stock is released by
exactly one of them.
"""
import logging
import random
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

from database import create_document, get_documents, serialize, to_oid, to_utc_naive, utcnow
from errors import (
    AlreadyTerminal,
    InternalFailure,
    InvalidTransition,
    NotFound,
    ValidationFailed,
)
from inventory import InventoryLedger
from schemas import PAYMENT_METHODS, PAYMENT_STATUSES, Order, OrderItem

logger = logging.getLogger(__name__)

COLLECTION = "order"

ORDER_STATUSES = ("pending", "confirmed", "preparing", "ready", "picked_up", "cancelled", "expired")
CLIENT_STATUSES = ("pending", "confirmed", "preparing", "ready", "picked_up", "cancelled")
TERMINAL_STATUSES = ("cancelled", "expired", "picked_up")
EXPIRABLE_STATUSES = ("pending", "confirmed")
REVENUE_STATUSES = ("ready", "picked_up")

TRANSITIONS = {
    "pending": ("confirmed", "cancelled"),
    "confirmed": ("preparing", "cancelled"),
    "preparing": ("ready", "cancelled"),
    "ready": ("picked_up", "cancelled"),
}

RESTOCK_POLICIES = {
    "always": ("pending", "confirmed", "preparing", "ready"),
    "before_preparation": ("pending", "confirmed"),
}

MAX_ORDER_NUMBER_ATTEMPTS = 5
MAX_STATUS_ATTEMPTS = 3


def generate_order_number() -> str:
    timestamp = str(int(time.time() * 1000))[-8:]
    return f"ORD-{timestamp}-{random.randint(0, 999):03d}"


def cancellable_filter(oid) -> dict:
    return {"_id": oid, "status": {"$nin": list(TERMINAL_STATUSES)}}


@dataclass
class SweepReport:
    expired: int = 0
    release_failures: int = 0
    errors: int = 0


class OrderEngine:
    def __init__(
        self,
        database: Database,
        ledger: Optional[InventoryLedger] = None,
        hold_minutes: int = 15,
        pickup_grace_seconds: int = 60,
        cancel_restock_policy: str = "always",
        clock: Callable[[], datetime] = utcnow,
    ):
        if cancel_restock_policy not in RESTOCK_POLICIES:
            raise ValueError(f"Unknown cancel restock policy: {cancel_restock_policy}")
        self.db = database
        self.orders = database[COLLECTION]
        self.ledger = ledger or InventoryLedger(database)
        self.hold = timedelta(minutes=hold_minutes)
        self.pickup_grace = timedelta(seconds=pickup_grace_seconds)
        self.restock_statuses = RESTOCK_POLICIES[cancel_restock_policy]
        self.clock = clock

    # ----- create -----

    def create_order(
        self,
        lines: Iterable[Any],
        customer_name: str,
        customer_phone: str,
        pickup_time: Any,
        payment_method: Optional[str] = "cash",
        notes: Optional[str] = None,
    ) -> dict:
        requested = self._normalize_lines(lines)
        customer_name = (customer_name or "").strip()
        customer_phone = (customer_phone or "").strip()
        if not customer_name or len(customer_name) > 100:
            raise ValidationFailed("Customer name is required")
        if not customer_phone:
            raise ValidationFailed("Customer phone is required")
        pickup_at = self._parse_pickup_time(pickup_time)
        payment_method = payment_method or "cash"
        if payment_method not in PAYMENT_METHODS:
            raise ValidationFailed("Invalid payment method")
        if notes is not None and len(notes) > 500:
            raise ValidationFailed("Notes cannot exceed 500 characters")

        # everything reserved here is given back if anything below raises
        reserved: List[Tuple[str, int]] = []
        order_items: List[OrderItem] = []
        try:
            for item_id, quantity in requested:
                menu_item = self.ledger.reserve(item_id, quantity)
                reserved.append((item_id, quantity))
                price = float(menu_item["price"])
                order_items.append(OrderItem(
                    menu_item_id=item_id,
                    name=menu_item["name"],
                    price=price,
                    quantity=quantity,
                    total_price=price * quantity,
                ))

            now = self.clock()
            total_amount = sum(line.total_price for line in order_items)
            order_id = self._insert_order(lambda number: Order(
                order_number=number,
                items=order_items,
                total_amount=total_amount,
                customer_name=customer_name,
                customer_phone=customer_phone,
                pickup_time=pickup_at,
                order_time=now,
                payment_method=payment_method,
                notes=notes,
                expires_at=now + self.hold,
            ))
        except PyMongoError as exc:
            self._rollback(reserved)
            raise InternalFailure("Failed to create order. Please try again.") from exc
        except Exception:
            self._rollback(reserved)
            raise

        order = self.get_order(order_id)
        logger.info("Created order %s (%d line(s), total %.2f)", order["order_number"], len(order_items), total_amount)
        return order

    def _normalize_lines(self, lines: Iterable[Any]) -> List[Tuple[str, int]]:
        normalized = []
        for line in lines or []:
            if isinstance(line, dict):
                item_id, quantity = line.get("menu_item_id"), line.get("quantity")
            else:
                item_id, quantity = line.menu_item_id, line.quantity
            if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
                raise ValidationFailed("Quantity must be at least 1")
            if not item_id:
                raise ValidationFailed("Invalid menu item ID")
            to_oid(item_id)
            normalized.append((str(item_id), quantity))
        if not normalized:
            raise ValidationFailed("At least one item is required")
        return normalized

    def _parse_pickup_time(self, value: Any) -> datetime:
        if isinstance(value, str):
            try:
                value = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
            except ValueError:
                raise ValidationFailed("Valid pickup time is required")
        if not isinstance(value, datetime):
            raise ValidationFailed("Valid pickup time is required")
        value = to_utc_naive(value)
        if value < self.clock() - self.pickup_grace:
            raise ValidationFailed("Pickup time cannot be in the past")
        return value

    def _insert_order(self, build: Callable[[str], Order]) -> str:
        for attempt in range(1, MAX_ORDER_NUMBER_ATTEMPTS + 1):
            order = build(generate_order_number())
            try:
                return create_document(COLLECTION, order, database=self.db)
            except DuplicateKeyError:
                logger.warning("Order number %s already taken (attempt %d)", order.order_number, attempt)
            except PyMongoError as exc:
                logger.exception("Failed to persist order")
                raise InternalFailure("Failed to create order. Please try again.") from exc
        raise InternalFailure("Could not allocate a unique order number")

    def _rollback(self, reserved: List[Tuple[str, int]]) -> None:
        for item_id, quantity in reserved:
            if not self.ledger.release(item_id, quantity):
                logger.error("Rollback left %s unit(s) of menu item %s reserved; reconcile manually", quantity, item_id)

    # ----- reads -----

    def get_order(self, order_id: str) -> dict:
        doc = self.orders.find_one({"_id": to_oid(order_id)})
        if not doc:
            raise NotFound("Order not found")
        return self._populate(doc)

    def get_order_by_number(self, order_number: str) -> dict:
        doc = self.orders.find_one({"order_number": order_number})
        if not doc:
            raise NotFound("Order not found")
        return self._populate(doc)

    def list_orders(self, status: Optional[str] = None, customer_phone: Optional[str] = None) -> List[dict]:
        filt: Dict[str, Any] = {}
        if status:
            if status not in ORDER_STATUSES:
                raise ValidationFailed(f"Invalid status: {status}")
            filt["status"] = status
        if customer_phone:
            filt["customer_phone"] = customer_phone
        docs = get_documents(COLLECTION, filt, sort=[("created_at", DESCENDING)], database=self.db)
        return self._populate_many(docs)

    def list_orders_by_customer_phone(self, phone: str) -> List[dict]:
        return self.list_orders(customer_phone=phone)

    def get_order_stats(self) -> dict:
        breakdown = self.orders.aggregate([
            {"$group": {"_id": "$status", "count": {"$sum": 1}, "total_amount": {"$sum": "$total_amount"}}},
            {"$sort": {"_id": 1}},
        ])
        revenue = list(self.orders.aggregate([
            {"$match": {"status": {"$in": list(REVENUE_STATUSES)}}},
            {"$group": {"_id": None, "total": {"$sum": "$total_amount"}}},
        ]))
        return {
            "status_breakdown": [
                {"status": row["_id"], "count": row["count"], "total_amount": round(float(row["total_amount"]), 2)}
                for row in breakdown
            ],
            "total_orders": self.orders.count_documents({}),
            "total_revenue": round(float(revenue[0]["total"]), 2) if revenue else 0,
        }

    def _populate(self, doc: dict) -> dict:
        return self._populate_many([doc])[0]

    def _populate_many(self, docs: List[dict]) -> List[dict]:
        """Attach live catalog fields to each line next to its snapshot."""
        ids = {line["menu_item_id"] for doc in docs for line in doc.get("items", [])}
        catalog = {}
        if ids:
            cursor = self.ledger.items.find(
                {"_id": {"$in": [to_oid(i) for i in ids]}},
                {"name": 1, "price": 1, "description": 1, "image": 1},
            )
            catalog = {str(item["_id"]): serialize(item) for item in cursor}
        for doc in docs:
            for line in doc.get("items", []):
                line["menu_item"] = catalog.get(line["menu_item_id"])
            serialize(doc)
        return docs

    # ----- transitions -----

    def cancel_order(self, order_id: str) -> dict:
        """Cancel a live order and give its stock back.

        Returns the order as it was before cancelling.
        """
        oid = to_oid(order_id)
        before = self.orders.find_one_and_update(
            cancellable_filter(oid),
            {"$set": {"status": "cancelled", "updated_at": self.clock()}},
            return_document=ReturnDocument.BEFORE,
        )
        if before is None:
            existing = self.orders.find_one({"_id": oid}, {"status": 1})
            if existing is None:
                raise NotFound("Order not found")
            if existing["status"] == "picked_up":
                raise AlreadyTerminal("Order has already been picked up")
            raise AlreadyTerminal("Order is already cancelled or expired")

        if before["status"] in self.restock_statuses:
            self._release_order(before, "cancelled")
        else:
            logger.info("Order %s cancelled while %s; stock kept as consumed", before["order_number"], before["status"])
        logger.info("Cancelled order %s", before["order_number"])
        return self._populate(before)

    def update_order_status(self, order_id: str, status: str) -> dict:
        if status not in CLIENT_STATUSES:
            raise ValidationFailed(f"Invalid status: {status}")
        if status == "cancelled":
            self.cancel_order(order_id)
            return self.get_order(order_id)

        oid = to_oid(order_id)
        for _ in range(MAX_STATUS_ATTEMPTS):
            current = self.orders.find_one({"_id": oid}, {"status": 1})
            if current is None:
                raise NotFound("Order not found")
            self._check_transition(current["status"], status)
            updated = self.orders.find_one_and_update(
                {"_id": oid, "status": current["status"]},
                {"$set": {"status": status, "updated_at": self.clock()}},
                return_document=ReturnDocument.AFTER,
            )
            if updated is not None:
                logger.info("Order %s moved %s -> %s", updated["order_number"], current["status"], status)
                return self._populate(updated)
        raise InvalidTransition("Order status changed concurrently, please retry")

    @staticmethod
    def _check_transition(current: str, target: str) -> None:
        if current in TERMINAL_STATUSES:
            raise AlreadyTerminal(f"Order is already {current}")
        if target not in TRANSITIONS.get(current, ()):
            raise InvalidTransition(f"Cannot move order from {current} to {target}")

    def update_payment_status(self, order_id: str, payment_status: str) -> dict:
        if payment_status not in PAYMENT_STATUSES:
            raise ValidationFailed("Invalid payment status")
        updated = self.orders.find_one_and_update(
            {"_id": to_oid(order_id)},
            {"$set": {"payment_status": payment_status, "updated_at": self.clock()}},
            return_document=ReturnDocument.AFTER,
        )
        if updated is None:
            raise NotFound("Order not found")
        return self._populate(updated)

    # ----- expiry -----

    def expire_due_orders(self, now: Optional[datetime] = None) -> SweepReport:
        """One sweep: expire every pending/confirmed order past its hold and restock it."""
        now = now or self.clock()
        report = SweepReport()
        due = [doc["_id"] for doc in self.orders.find(
            {"status": {"$in": list(EXPIRABLE_STATUSES)}, "expires_at": {"$lt": now}},
            {"_id": 1},
        )]
        logger.info("Found %d expired order(s) to release", len(due))

        for oid in due:
            try:
                claimed = self.orders.find_one_and_update(
                    {"_id": oid, "status": {"$in": list(EXPIRABLE_STATUSES)}, "expires_at": {"$lt": now}},
                    {"$set": {"status": "expired", "updated_at": now}},
                    return_document=ReturnDocument.BEFORE,
                )
                if claimed is None:
                    # cancelled or advanced since the scan
                    continue
                report.expired += 1
                report.release_failures += self._release_order(claimed, "expired")
                logger.info("Expired order %s and restored stock", claimed["order_number"])
            except PyMongoError:
                report.errors += 1
                logger.exception("Failed to expire order %s", oid)
        return report

    def _release_order(self, order: dict, outcome: str) -> int:
        failures = 0
        for line in order.get("items", []):
            if not self.ledger.release(line["menu_item_id"], line["quantity"]):
                failures += 1
                logger.error(
                    "Stock for %s x%d not restored after order %s was %s; reconcile manually",
                    line.get("name"), line["quantity"], order.get("order_number"), outcome,
                )
        return failures
