from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import JSON, CheckConstraint, DateTime, ForeignKey, Index, Integer, Numeric, String, event
from sqlalchemy.orm import Mapped, mapped_column

from restaurant_admin.core.errors import ValidationError
from restaurant_admin.core.money import to_money
from restaurant_admin.core.time_utils import utc_now
from restaurant_admin.db.base import Base

ORDER_STATUSES = ("pending", "confirmed", "preparing", "ready", "completed", "cancelled")
TERMINAL_ORDER_STATUSES = frozenset({"completed", "cancelled"})


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_number: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending", server_default="pending")

    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    discount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    tax: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    note: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utc_now)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'confirmed', 'preparing', 'ready', 'completed', 'cancelled')",
            name="ck_orders_status",
        ),
        CheckConstraint("subtotal >= 0 AND discount >= 0 AND tax >= 0", name="ck_orders_amounts_non_negative"),
        Index("ix_orders_created_at_id", "created_at", "id"),
        Index("ix_orders_status_created_at", "status", "created_at"),
    )

    def expected_total(self) -> Decimal:
        return to_money(to_money(self.subtotal) - to_money(self.discount or 0) + to_money(self.tax or 0))


class OrderItem(Base):
    """Line snapshot taken at order creation; later product edits do not touch it."""
    __tablename__ = "order_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    product_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("products.id", ondelete="SET NULL"), nullable=True, index=True
    )
    name: Mapped[dict] = mapped_column(JSON, nullable=False)
    qty: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    line_total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)


class OrderStatusEvent(Base):
    __tablename__ = "order_status_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(Integer, ForeignKey("orders.id"), nullable=False)
    from_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    to_status: Mapped[str] = mapped_column(String(20), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utc_now)

    __table_args__ = (
        Index("ix_order_status_events_order_created_at", "order_id", "created_at"),
    )


@event.listens_for(Order, "before_insert")
@event.listens_for(Order, "before_update")
def _check_order_totals(mapper, connection, target: Order) -> None:
    if to_money(target.total) != target.expected_total():
        raise ValidationError(
            f"Order total {to_money(target.total)} does not equal subtotal - discount + tax "
            f"({target.expected_total()})"
        )
