import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from restaurant_admin.core.errors import NotFound, ServiceError, ValidationError
from restaurant_admin.core.money import to_quantity
from restaurant_admin.core.observability import log_event
from restaurant_admin.core.time_utils import utc_now
from restaurant_admin.db.unit_of_work import atomic
from restaurant_admin.models.inventory import (
    MOVEMENT_ADJUST,
    MOVEMENT_IN,
    MOVEMENT_OUT,
    MOVEMENT_TYPES,
    InventoryItem,
    StockMovement,
)
from restaurant_admin.models.product import Product
from restaurant_admin.services.notification_relay import INSERT, UPDATE, ChangeNotificationRelay, change_event
from restaurant_admin.services.stock_ledger import record_movement

logger = logging.getLogger("restaurant_admin.inventory")


@dataclass(frozen=True)
class AdjustResult:
    item: InventoryItem
    movement: StockMovement


def is_low_stock(item: InventoryItem) -> bool:
    return to_quantity(item.stock_qty) <= to_quantity(item.reorder_level)


def get_inventory_item(db: Session, inventory_item_id: int) -> InventoryItem:
    item = db.get(InventoryItem, inventory_item_id)
    if item is None:
        raise NotFound("Inventory item not found")
    return item


def signed_qty_change(raw_qty: Decimal | int | float | str, movement_type: str) -> Decimal:
    """
    Turn a caller-supplied quantity into the signed ledger change.

    IN and OUT take a positive magnitude. ADJUST keeps the sign it was given,
    since a manual correction can go either way.
    """
    if movement_type not in MOVEMENT_TYPES:
        allowed = ", ".join(MOVEMENT_TYPES)
        raise ValidationError(f"Invalid movement type. Allowed: {allowed}")
    qty = to_quantity(raw_qty)
    if movement_type == MOVEMENT_ADJUST:
        if qty == 0:
            raise ValidationError("qty cannot be zero")
        return qty
    if qty <= 0:
        raise ValidationError("qty must be greater than zero")
    return qty if movement_type == MOVEMENT_IN else -qty


def raw_qty_from_signed(qty_change: Decimal | int | float | str, movement_type: str) -> Decimal:
    """Inverse of ``signed_qty_change`` for payloads that arrive pre-signed."""
    change = to_quantity(qty_change, field="qty_change")
    if change == 0:
        raise ValidationError("qty_change cannot be zero")
    if movement_type == MOVEMENT_IN and change < 0:
        raise ValidationError("qty_change must be positive for IN movements")
    if movement_type == MOVEMENT_OUT and change > 0:
        raise ValidationError("qty_change must be negative for OUT movements")
    if movement_type == MOVEMENT_OUT:
        return -change
    return change


def adjust(
    db: Session,
    relay: ChangeNotificationRelay,
    *,
    inventory_item_id: int,
    raw_qty: Decimal | int | float | str,
    movement_type: str,
    notes: str | None = None,
) -> AdjustResult:
    """The only sanctioned way to change an item's stock level."""
    qty_change = signed_qty_change(raw_qty, movement_type)
    try:
        with atomic(db):
            movement = record_movement(
                db,
                inventory_item_id=inventory_item_id,
                qty_change=qty_change,
                movement_type=movement_type,
                notes=notes,
            )
    except ServiceError as exc:
        log_event(
            logger,
            "inventory.adjust_rejected",
            level=logging.WARNING,
            inventory_item_id=inventory_item_id,
            qty_change=qty_change,
            movement_type=movement_type,
            code=exc.code,
            error=exc.message,
        )
        raise

    item = get_inventory_item(db, inventory_item_id)
    db.refresh(item)
    log_event(
        logger,
        "inventory.adjusted",
        inventory_item_id=item.id,
        movement_id=movement.id,
        movement_type=movement_type,
        qty_change=qty_change,
        stock_qty=item.stock_qty,
    )
    relay.publish_many(
        [
            change_event("stock_movements", INSERT, movement.id),
            change_event("inventory_items", UPDATE, item.id),
        ]
    )
    return AdjustResult(item=item, movement=movement)


def create_inventory_item(
    db: Session,
    relay: ChangeNotificationRelay,
    *,
    product_id: int,
    unit: str,
    reorder_level: Decimal | int | str = 0,
    initial_qty: Decimal | int | str | None = None,
    notes: str | None = None,
) -> InventoryItem:
    if db.get(Product, product_id) is None:
        raise NotFound("Product not found")
    existing = db.execute(
        select(InventoryItem.id).where(InventoryItem.product_id == product_id)
    ).scalar_one_or_none()
    if existing is not None:
        raise ValidationError("Product is already stocked", details=[{"inventory_item_id": existing}])

    level = to_quantity(reorder_level, field="reorder_level")
    if level < 0:
        raise ValidationError("reorder_level cannot be negative")
    opening = signed_qty_change(initial_qty, MOVEMENT_IN) if initial_qty is not None else None

    now = utc_now()
    with atomic(db):
        item = InventoryItem(
            product_id=product_id,
            unit=unit.strip(),
            stock_qty=Decimal("0"),
            reorder_level=level,
            created_at=now,
            updated_at=now,
        )
        db.add(item)
        db.flush()
        movement = None
        if opening is not None:
            movement = record_movement(
                db,
                inventory_item_id=item.id,
                qty_change=opening,
                movement_type=MOVEMENT_IN,
                notes=notes or "Opening stock",
            )

    db.refresh(item)
    log_event(logger, "inventory.item_created", inventory_item_id=item.id, product_id=product_id, stock_qty=item.stock_qty)
    changes = [change_event("inventory_items", INSERT, item.id)]
    if movement is not None:
        changes.append(change_event("stock_movements", INSERT, movement.id))
    relay.publish_many(changes)
    return item


def update_inventory_item(
    db: Session,
    relay: ChangeNotificationRelay,
    *,
    inventory_item_id: int,
    unit: str | None = None,
    reorder_level: Decimal | int | str | None = None,
) -> InventoryItem:
    with atomic(db):
        item = get_inventory_item(db, inventory_item_id)
        if unit is not None:
            item.unit = unit.strip()
        if reorder_level is not None:
            level = to_quantity(reorder_level, field="reorder_level")
            if level < 0:
                raise ValidationError("reorder_level cannot be negative")
            item.reorder_level = level
        item.updated_at = utc_now()

    db.refresh(item)
    relay.publish(change_event("inventory_items", UPDATE, item.id))
    return item
