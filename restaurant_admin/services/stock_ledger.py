from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from restaurant_admin.core.errors import InsufficientStock, InvalidMovement, NotFound
from restaurant_admin.core.money import QTY_MAX, ZERO_QTY, to_quantity
from restaurant_admin.core.time_utils import utc_now
from restaurant_admin.models.inventory import (
    MOVEMENT_IN,
    MOVEMENT_OUT,
    MOVEMENT_TYPES,
    InventoryItem,
    StockMovement,
)


@dataclass(frozen=True)
class LedgerReplay:
    inventory_item_id: int
    stock_qty: Decimal
    ledger_sum: Decimal
    movement_count: int

    @property
    def consistent(self) -> bool:
        return self.stock_qty == self.ledger_sum


def validate_movement(qty_change: Decimal, movement_type: str) -> None:
    if movement_type not in MOVEMENT_TYPES:
        allowed = ", ".join(MOVEMENT_TYPES)
        raise InvalidMovement(f"Invalid movement type. Allowed: {allowed}")
    if qty_change == 0:
        raise InvalidMovement("qty_change cannot be zero")
    if movement_type == MOVEMENT_IN and qty_change < 0:
        raise InvalidMovement("IN movements must have a positive qty_change")
    if movement_type == MOVEMENT_OUT and qty_change > 0:
        raise InvalidMovement("OUT movements must have a negative qty_change")


def get_stock(db: Session, inventory_item_id: int) -> Decimal:
    stock = db.execute(
        select(InventoryItem.stock_qty).where(InventoryItem.id == inventory_item_id)
    ).scalar_one_or_none()
    if stock is None:
        raise NotFound("Inventory item not found")
    return to_quantity(stock)


def record_movement(
    db: Session,
    *,
    inventory_item_id: int,
    qty_change: Decimal | int | str,
    movement_type: str,
    notes: str | None = None,
) -> StockMovement:
    """
    Append one movement and move the cached stock level by the same amount.

    Runs inside the caller's transaction; the caller commits. The cached level
    is changed by a single conditional UPDATE so the non-negative check and
    the write cannot be split by another writer. The sum is rounded to three
    places in SQL because SQLite keeps Numeric columns as REAL.
    """
    change = to_quantity(qty_change, field="qty_change")
    validate_movement(change, movement_type)

    new_stock = func.round(InventoryItem.stock_qty + change, 3)
    result = db.execute(
        update(InventoryItem)
        .where(
            InventoryItem.id == inventory_item_id,
            new_stock >= 0,
            new_stock <= QTY_MAX,
        )
        .values(stock_qty=new_stock, updated_at=utc_now())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        available = db.execute(
            select(InventoryItem.stock_qty).where(InventoryItem.id == inventory_item_id)
        ).scalar_one_or_none()
        if available is None:
            raise NotFound("Inventory item not found")
        available = to_quantity(available)
        if available + change > QTY_MAX:
            raise InvalidMovement(f"Stock level cannot exceed {QTY_MAX}")
        raise InsufficientStock(
            f"Insufficient stock: available {available}, requested {abs(change)}",
            available=available,
            requested=abs(change),
        )

    movement = StockMovement(
        inventory_item_id=inventory_item_id,
        qty_change=change,
        movement_type=movement_type,
        notes=notes.strip() if notes and notes.strip() else None,
        created_at=utc_now(),
    )
    db.add(movement)
    db.flush()
    return movement


def replay_ledger(db: Session, inventory_item_id: int) -> LedgerReplay:
    stock_qty = get_stock(db, inventory_item_id)
    total, count = db.execute(
        select(
            func.coalesce(func.sum(StockMovement.qty_change), 0),
            func.count(StockMovement.id),
        ).where(StockMovement.inventory_item_id == inventory_item_id)
    ).one()
    return LedgerReplay(
        inventory_item_id=inventory_item_id,
        stock_qty=stock_qty,
        ledger_sum=to_quantity(total) if count else ZERO_QTY,
        movement_count=int(count),
    )


def list_movements(
    db: Session,
    inventory_item_id: int,
    *,
    limit: int,
    offset: int,
) -> tuple[list[StockMovement], int]:
    total = int(
        db.execute(
            select(func.count(StockMovement.id)).where(StockMovement.inventory_item_id == inventory_item_id)
        ).scalar_one()
    )
    rows = db.execute(
        select(StockMovement)
        .where(StockMovement.inventory_item_id == inventory_item_id)
        .order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
        .offset(offset)
        .limit(limit)
    ).scalars().all()
    return list(rows), total
