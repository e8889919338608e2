import pytest
from bson import ObjectId

from errors import InsufficientStock, ItemUnavailable, NotFound, ValidationFailed
from inventory import reservation_filter


def test_reserve_decrements_and_returns_item_before_decrement(ledger, make_item, stock_of):
    item = make_item(stock=5)
    reserved = ledger.reserve(item["_id"], 2)
    assert reserved["stock"] == 5
    assert reserved["name"] == "Veg Thali"
    assert stock_of(item) == 3


def test_reserve_exact_stock_reaches_zero(ledger, make_item, stock_of):
    item = make_item(stock=3)
    ledger.reserve(item["_id"], 3)
    assert stock_of(item) == 0


def test_reserve_insufficient_stock_leaves_stock_untouched(ledger, make_item, stock_of):
    item = make_item(name="Masala Dosa", stock=2)
    with pytest.raises(InsufficientStock) as exc:
        ledger.reserve(item["_id"], 3)
    assert exc.value.available == 2
    assert exc.value.requested == 3
    assert "Masala Dosa" in exc.value.message
    assert "Available: 2" in exc.value.message
    assert "Requested: 3" in exc.value.message
    assert stock_of(item) == 2


def test_reserve_unavailable_item(ledger, make_item, stock_of):
    item = make_item(stock=5, is_available=False)
    with pytest.raises(ItemUnavailable):
        ledger.reserve(item["_id"], 1)
    assert stock_of(item) == 5


def test_reserve_missing_item(ledger):
    with pytest.raises(NotFound):
        ledger.reserve(str(ObjectId()), 1)


def test_reserve_rejects_bad_id_and_quantity(ledger, make_item):
    item = make_item()
    with pytest.raises(ValidationFailed):
        ledger.reserve("not-an-id", 1)
    with pytest.raises(ValidationFailed):
        ledger.reserve(item["_id"], 0)


def test_repeated_reservations_never_drive_stock_negative(ledger, make_item, stock_of):
    item = make_item(stock=4)
    outcomes = []
    for _ in range(6):
        try:
            ledger.reserve(item["_id"], 1)
            outcomes.append(True)
        except InsufficientStock:
            outcomes.append(False)
    assert outcomes.count(True) == 4
    assert stock_of(item) == 0


def test_racing_reservations_for_the_last_unit_only_one_matches(db, make_item, stock_of):
    item = make_item(stock=1)
    # both callers read stock=1 and issue the same conditional decrement
    claim = reservation_filter(ObjectId(item["_id"]), 1)
    update = {"$inc": {"stock": -1}}

    winner = db["menuitem"].find_one_and_update(claim, update)
    loser = db["menuitem"].find_one_and_update(claim, update)

    assert winner["stock"] == 1
    assert loser is None
    assert stock_of(item) == 0


def test_release_adds_stock_back(ledger, make_item, stock_of):
    item = make_item(stock=1)
    assert ledger.release(item["_id"], 4) is True
    assert stock_of(item) == 5


def test_release_on_deleted_item_is_not_fatal(db, ledger, make_item):
    item = make_item()
    db["menuitem"].delete_one({"_id": ObjectId(item["_id"])})
    assert ledger.release(item["_id"], 2) is False


def test_release_ignores_availability(ledger, make_item, stock_of):
    item = make_item(stock=0, is_available=False)
    assert ledger.release(item["_id"], 2) is True
    assert stock_of(item) == 2


def test_adjust_stock(ledger, make_item):
    item = make_item(stock=5, is_available=False)
    assert ledger.adjust_stock(item["_id"], -5)["stock"] == 0
    assert ledger.adjust_stock(item["_id"], 7)["stock"] == 7
    with pytest.raises(InsufficientStock):
        ledger.adjust_stock(item["_id"], -8)
    with pytest.raises(ValidationFailed):
        ledger.adjust_stock(item["_id"], 0)
    with pytest.raises(NotFound):
        ledger.adjust_stock(str(ObjectId()), 1)


def test_list_menu_items_filters_and_sorts(ledger, make_item):
    make_item(name="Tea", category="Beverages")
    make_item(name="Samosa", category="Snacks", is_available=False)
    make_item(name="Coffee", category="Beverages")
    names = [i["name"] for i in ledger.list_menu_items()]
    assert names == ["Coffee", "Tea", "Samosa"]
    assert [i["name"] for i in ledger.list_menu_items(available_only=True)] == ["Coffee", "Tea"]
    assert [i["name"] for i in ledger.list_menu_items(category="Snacks")] == ["Samosa"]
    assert ledger.list_categories() == ["Beverages", "Snacks"]
