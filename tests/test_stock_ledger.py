import threading
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import sessionmaker

from restaurant_admin.core.errors import (
    InsufficientStock,
    InvalidMovement,
    NotFound,
    StoreUnavailable,
    ValidationError,
)
from restaurant_admin.db.base import Base
from restaurant_admin.core.money import QTY_MAX, to_money, to_quantity
from restaurant_admin.db.unit_of_work import atomic
from restaurant_admin.models.inventory import InventoryItem, StockMovement
from restaurant_admin.models.product import Product
from restaurant_admin.services.inventory_service import (
    adjust,
    create_inventory_item,
    is_low_stock,
    signed_qty_change,
)
from restaurant_admin.services.notification_relay import ChangeNotificationRelay
from restaurant_admin.services.stock_ledger import get_stock, list_movements, record_movement, replay_ledger


def _stocked_item(db, relay, *, initial_qty=None, reorder_level=0) -> InventoryItem:
    product = Product(name={"th": "กุ้ง", "en": "Shrimp"}, price=Decimal("120.00"))
    db.add(product)
    db.commit()
    return create_inventory_item(
        db,
        relay,
        product_id=product.id,
        unit="kg",
        reorder_level=reorder_level,
        initial_qty=initial_qty,
    )


def _movement_count(db, item_id: int) -> int:
    return db.execute(
        select(func.count(StockMovement.id)).where(StockMovement.inventory_item_id == item_id)
    ).scalar_one()


def test_stock_in_then_out_moves_cached_level_and_ledger(db, relay):
    item = _stocked_item(db, relay)
    assert get_stock(db, item.id) == Decimal("0.000")

    adjust(db, relay, inventory_item_id=item.id, raw_qty=10, movement_type="IN")
    result = adjust(db, relay, inventory_item_id=item.id, raw_qty=5, movement_type="OUT", notes="lunch prep")

    assert result.item.stock_qty == Decimal("5")
    assert result.movement.qty_change == Decimal("-5")
    assert result.movement.movement_type == "OUT"
    assert result.movement.notes == "lunch prep"

    replay = replay_ledger(db, item.id)
    assert replay.movement_count == 2
    assert replay.ledger_sum == Decimal("5.000")
    assert replay.consistent


def test_reorder_scenario_flags_low_stock_and_refuses_overdraw(db, relay):
    item = _stocked_item(db, relay, initial_qty=10, reorder_level=5)

    first = adjust(db, relay, inventory_item_id=item.id, raw_qty=3, movement_type="OUT")
    assert first.item.stock_qty == Decimal("7")
    assert not is_low_stock(first.item)

    second = adjust(db, relay, inventory_item_id=item.id, raw_qty=5, movement_type="OUT")
    assert second.item.stock_qty == Decimal("2")
    assert is_low_stock(second.item)

    with pytest.raises(InsufficientStock):
        adjust(db, relay, inventory_item_id=item.id, raw_qty=10, movement_type="OUT")
    assert get_stock(db, item.id) == Decimal("2.000")
    assert replay_ledger(db, item.id).consistent


def test_out_beyond_available_is_rejected_without_side_effects(db, relay):
    item = _stocked_item(db, relay, initial_qty=5)

    with pytest.raises(InsufficientStock) as exc_info:
        adjust(db, relay, inventory_item_id=item.id, raw_qty=10, movement_type="OUT")

    assert exc_info.value.available == Decimal("5.000")
    assert exc_info.value.requested == Decimal("10.000")
    assert "available 5.000" in exc_info.value.message
    assert get_stock(db, item.id) == Decimal("5.000")
    assert _movement_count(db, item.id) == 1


def test_draining_stock_to_exactly_zero_is_allowed(db, relay):
    item = _stocked_item(db, relay, initial_qty=3)

    adjust(db, relay, inventory_item_id=item.id, raw_qty=3, movement_type="OUT")

    assert get_stock(db, item.id) == Decimal("0.000")
    with pytest.raises(InsufficientStock):
        adjust(db, relay, inventory_item_id=item.id, raw_qty="0.001", movement_type="OUT")


def test_fractional_stock_drains_to_exactly_zero(db, relay):
    item = _stocked_item(db, relay, initial_qty="0.3")

    adjust(db, relay, inventory_item_id=item.id, raw_qty="0.1", movement_type="OUT")
    adjust(db, relay, inventory_item_id=item.id, raw_qty="0.2", movement_type="OUT")

    assert get_stock(db, item.id) == Decimal("0.000")
    replay = replay_ledger(db, item.id)
    assert replay.consistent
    assert replay.movement_count == 3
    with pytest.raises(InsufficientStock):
        adjust(db, relay, inventory_item_id=item.id, raw_qty="0.001", movement_type="OUT")


def test_stock_level_cannot_exceed_column_capacity(db, relay):
    item = _stocked_item(db, relay, initial_qty=QTY_MAX)

    with pytest.raises(InvalidMovement):
        adjust(db, relay, inventory_item_id=item.id, raw_qty="0.001", movement_type="IN")

    assert get_stock(db, item.id) == QTY_MAX
    assert _movement_count(db, item.id) == 1


def test_out_of_range_amounts_are_validation_errors():
    assert to_quantity("999999999.999") == QTY_MAX
    assert to_money("9999999999.99") == Decimal("9999999999.99")
    for raw in ("1e30", "1000000000", Decimal("1E+400")):
        with pytest.raises(ValidationError):
            to_quantity(raw)
    for raw in ("1e30", "10000000000", "-1e30"):
        with pytest.raises(ValidationError):
            to_money(raw)


def test_adjust_keeps_its_sign_and_counts_toward_ledger(db, relay):
    item = _stocked_item(db, relay, initial_qty=10)

    adjust(db, relay, inventory_item_id=item.id, raw_qty="-2.5", movement_type="ADJUST", notes="stock count")
    adjust(db, relay, inventory_item_id=item.id, raw_qty="0.5", movement_type="ADJUST")

    assert get_stock(db, item.id) == Decimal("8.000")
    assert replay_ledger(db, item.id).consistent


@pytest.mark.parametrize("raw_qty", [0, "0.0", "nan", "inf", "abc", True, "1e30", "-1e30"])
def test_invalid_quantities_are_rejected(db, relay, raw_qty):
    item = _stocked_item(db, relay, initial_qty=4)

    with pytest.raises(ValidationError):
        adjust(db, relay, inventory_item_id=item.id, raw_qty=raw_qty, movement_type="IN")

    assert get_stock(db, item.id) == Decimal("4.000")
    assert _movement_count(db, item.id) == 1


def test_signed_qty_change_rules():
    assert signed_qty_change(3, "IN") == Decimal("3.000")
    assert signed_qty_change(3, "OUT") == Decimal("-3.000")
    assert signed_qty_change(-3, "ADJUST") == Decimal("-3.000")
    with pytest.raises(ValidationError):
        signed_qty_change(-3, "IN")
    with pytest.raises(ValidationError):
        signed_qty_change(3, "WASTE")


def test_record_movement_rejects_sign_that_contradicts_type(db, relay):
    item = _stocked_item(db, relay, initial_qty=4)

    with pytest.raises(InvalidMovement):
        record_movement(db, inventory_item_id=item.id, qty_change=2, movement_type="OUT")
    with pytest.raises(InvalidMovement):
        record_movement(db, inventory_item_id=item.id, qty_change=-2, movement_type="IN")
    db.rollback()

    assert get_stock(db, item.id) == Decimal("4.000")


def test_unknown_item_is_not_found(db, relay):
    with pytest.raises(NotFound):
        adjust(db, relay, inventory_item_id=9999, raw_qty=1, movement_type="IN")
    with pytest.raises(NotFound):
        get_stock(db, 9999)


def test_movements_cannot_be_edited_or_deleted(db, relay):
    item = _stocked_item(db, relay, initial_qty=4)
    movement = db.execute(
        select(StockMovement).where(StockMovement.inventory_item_id == item.id)
    ).scalar_one()

    movement.qty_change = Decimal("40")
    with pytest.raises(InvalidMovement):
        db.commit()
    db.rollback()

    db.delete(movement)
    with pytest.raises(InvalidMovement):
        db.commit()
    db.rollback()

    assert replay_ledger(db, item.id).ledger_sum == Decimal("4.000")


def test_cached_stock_cannot_be_written_directly(db, relay):
    item = _stocked_item(db, relay, initial_qty=4)

    item.stock_qty = Decimal("400")
    with pytest.raises(InvalidMovement):
        db.commit()
    db.rollback()

    assert get_stock(db, item.id) == Decimal("4.000")


def test_list_movements_is_newest_first_and_paginated(db, relay):
    item = _stocked_item(db, relay, initial_qty=10)
    for qty in (1, 2, 3):
        adjust(db, relay, inventory_item_id=item.id, raw_qty=qty, movement_type="OUT")

    rows, total = list_movements(db, item.id, limit=2, offset=0)
    assert total == 4
    assert [row.qty_change for row in rows] == [Decimal("-3"), Decimal("-2")]

    rows, _ = list_movements(db, item.id, limit=2, offset=2)
    assert [row.qty_change for row in rows] == [Decimal("-1"), Decimal("10")]


def test_adjust_publishes_ledger_and_item_changes(db, relay):
    item = _stocked_item(db, relay, initial_qty=2)
    seen = []
    relay.subscribe("stock_movements", seen.append)
    relay.subscribe("inventory_items", seen.append, event="UPDATE")

    adjust(db, relay, inventory_item_id=item.id, raw_qty=1, movement_type="OUT")

    assert [(change.schema, change.table, change.event_type) for change in seen] == [
        ("erp", "stock_movements", "INSERT"),
        ("erp", "inventory_items", "UPDATE"),
    ]


def test_rejected_adjust_publishes_nothing(db, relay):
    item = _stocked_item(db, relay, initial_qty=1)
    seen = []
    relay.subscribe("stock_movements", seen.append)

    with pytest.raises(InsufficientStock):
        adjust(db, relay, inventory_item_id=item.id, raw_qty=2, movement_type="OUT")

    assert seen == []


def test_concurrent_outs_never_oversell(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'ledger.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    relay = ChangeNotificationRelay()

    setup = factory()
    try:
        item_id = _stocked_item(setup, relay, initial_qty=5).id
    finally:
        setup.close()

    outcomes: list[str] = []
    outcomes_lock = threading.Lock()
    start = threading.Barrier(8)

    def worker():
        session = factory()
        try:
            start.wait()
            try:
                adjust(session, relay, inventory_item_id=item_id, raw_qty=1, movement_type="OUT")
                outcome = "ok"
            except InsufficientStock:
                outcome = "insufficient"
        finally:
            session.close()
        with outcomes_lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    check = factory()
    try:
        replay = replay_ledger(check, item_id)
    finally:
        check.close()
    engine.dispose()

    assert outcomes.count("ok") == 5
    assert outcomes.count("insufficient") == 3
    assert replay.stock_qty == Decimal("0.000")
    assert replay.consistent


def test_atomic_maps_store_failures(db):
    with pytest.raises(StoreUnavailable):
        with atomic(db):
            raise OperationalError("UPDATE inventory_items", {}, Exception("connection lost"))

    with pytest.raises(ValidationError):
        with atomic(db):
            raise IntegrityError("INSERT INTO orders", {}, Exception("duplicate key"))
