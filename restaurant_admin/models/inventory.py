from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, Numeric, String, event, inspect
from sqlalchemy.orm import Mapped, mapped_column

from restaurant_admin.core.errors import InvalidMovement
from restaurant_admin.core.time_utils import utc_now
from restaurant_admin.db.base import Base

MOVEMENT_IN = "IN"
MOVEMENT_OUT = "OUT"
MOVEMENT_ADJUST = "ADJUST"
MOVEMENT_TYPES = (MOVEMENT_IN, MOVEMENT_OUT, MOVEMENT_ADJUST)


class InventoryItem(Base):
    """
    Stock position for one product. ``stock_qty`` is a cached projection of the
    ledger and is only ever changed together with a new StockMovement row.
    """
    __tablename__ = "inventory_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    product_id: Mapped[int] = mapped_column(Integer, ForeignKey("products.id"), nullable=False, unique=True)
    unit: Mapped[str] = mapped_column(String(30), nullable=False)

    stock_qty: Mapped[Decimal] = mapped_column(Numeric(12, 3), nullable=False, default=Decimal("0"), server_default="0")
    reorder_level: Mapped[Decimal] = mapped_column(
        Numeric(12, 3), nullable=False, default=Decimal("0"), server_default="0"
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utc_now)

    __table_args__ = (
        CheckConstraint("stock_qty >= 0", name="ck_inventory_items_stock_non_negative"),
        CheckConstraint("reorder_level >= 0", name="ck_inventory_items_reorder_non_negative"),
        Index("ix_inventory_items_updated_at", "updated_at"),
    )


class StockMovement(Base):
    """
    One row per stock movement. IN is positive, OUT is negative, ADJUST is either.
    Rows are append-only: corrections are new movements.
    """
    __tablename__ = "stock_movements"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    inventory_item_id: Mapped[int] = mapped_column(Integer, ForeignKey("inventory_items.id"), nullable=False)
    qty_change: Mapped[Decimal] = mapped_column(Numeric(12, 3), nullable=False)
    movement_type: Mapped[str] = mapped_column(String(10), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utc_now)

    __table_args__ = (
        CheckConstraint("qty_change <> 0", name="ck_stock_movements_nonzero"),
        CheckConstraint(
            "movement_type IN ('IN', 'OUT', 'ADJUST')",
            name="ck_stock_movements_type",
        ),
        CheckConstraint(
            "(movement_type <> 'IN' OR qty_change > 0) AND (movement_type <> 'OUT' OR qty_change < 0)",
            name="ck_stock_movements_sign_matches_type",
        ),
        Index("ix_stock_movements_item_created_at", "inventory_item_id", "created_at"),
    )


@event.listens_for(StockMovement, "before_update")
def _reject_movement_update(mapper, connection, target):
    raise InvalidMovement("Stock movements are immutable; record a correcting movement instead")


@event.listens_for(StockMovement, "before_delete")
def _reject_movement_delete(mapper, connection, target):
    raise InvalidMovement("Stock movements cannot be deleted")


@event.listens_for(InventoryItem, "before_update")
def _reject_direct_stock_write(mapper, connection, target):
    if inspect(target).attrs.stock_qty.history.has_changes():
        raise InvalidMovement("stock_qty can only change through a stock movement")
