from datetime import datetime, timedelta

import mongomock
import pytest

from database import ensure_indexes, utcnow
from inventory import InventoryLedger
from orders import OrderEngine
from schemas import MenuItem


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def db():
    database = mongomock.MongoClient().canteen_test
    ensure_indexes(database)
    return database


@pytest.fixture
def clock():
    return FakeClock(utcnow().replace(microsecond=0))


@pytest.fixture
def ledger(db):
    return InventoryLedger(db)


@pytest.fixture
def engine(db, ledger, clock):
    return OrderEngine(db, ledger=ledger, clock=clock)


@pytest.fixture
def make_item(ledger):
    def _make(name="Veg Thali", price=80.0, stock=10, category="Lunch", is_available=True):
        return ledger.create_menu_item(MenuItem(
            name=name,
            description=f"{name} of the day",
            price=price,
            stock=stock,
            category=category,
            is_available=is_available,
        ))
    return _make


@pytest.fixture
def place_order(engine, clock):
    def _place(*lines, phone="9876543210"):
        return engine.create_order(
            [{"menu_item_id": item["_id"], "quantity": qty} for item, qty in lines],
            customer_name="Asha",
            customer_phone=phone,
            pickup_time=clock.now + timedelta(minutes=30),
        )
    return _place


@pytest.fixture
def stock_of(ledger):
    def _stock(item):
        return ledger.get_menu_item(item["_id"])["stock"]
    return _stock
