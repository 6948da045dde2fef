import logging
import threading
from datetime import datetime
from typing import Callable

from sqlalchemy import func, select, text
from sqlalchemy.orm import Session

from restaurant_admin.core.config import settings
from restaurant_admin.core.money import ZERO_MONEY, to_money
from restaurant_admin.core.observability import log_event
from restaurant_admin.core.time_utils import as_utc, local_now, localize, start_of_day, utc_now
from restaurant_admin.models.inventory import InventoryItem
from restaurant_admin.models.order import Order
from restaurant_admin.models.product import Product
from restaurant_admin.services.notification_relay import (
    CATALOG_SCHEMA,
    INVENTORY_SCHEMA,
    ORDERS_SCHEMA,
    ChangeEvent,
    ChangeNotificationRelay,
)
from restaurant_admin.services.order_service import order_items_by_order, serialize_order

logger = logging.getLogger("restaurant_admin.dashboard")


def _begin_snapshot(db: Session) -> bool:
    """Open a repeatable-read transaction where the store supports one.

    Returns True when this call started the transaction and should end it.
    """
    if db.in_transaction():
        return False
    if db.get_bind().dialect.name == "postgresql":
        db.execute(text("SET TRANSACTION ISOLATION LEVEL REPEATABLE READ"))
        return True
    return False


def compute_dashboard(
    db: Session,
    as_of: datetime | None = None,
    *,
    tz_name: str | None = None,
    recent_limit: int | None = None,
) -> dict:
    zone = tz_name or settings.business_timezone
    as_of_value = localize(as_of, zone) if as_of is not None else local_now(zone)
    day_start = start_of_day(as_of_value, zone)
    limit = settings.dashboard_recent_orders_limit if recent_limit is None else recent_limit

    started = _begin_snapshot(db)
    try:
        # Sales and count come from one statement so they always agree.
        sales_total, order_count = db.execute(
            select(
                func.coalesce(func.sum(Order.total), 0),
                func.count(Order.id),
            ).where(Order.created_at >= day_start)
        ).one()

        low_stock_count = db.execute(
            select(func.count(InventoryItem.id)).where(InventoryItem.stock_qty <= InventoryItem.reorder_level)
        ).scalar_one()

        active_products = db.execute(
            select(func.count(Product.id)).where(Product.is_active.is_(True))
        ).scalar_one()

        recent = list(
            db.execute(
                select(Order).order_by(Order.created_at.desc(), Order.id.desc()).limit(limit)
            ).scalars().all()
        )
        items = order_items_by_order(db, [order.id for order in recent])
        recent_orders = [serialize_order(order, items.get(order.id, [])) for order in recent]
    finally:
        if started:
            db.rollback()

    return {
        "as_of": as_utc(as_of_value),
        "day_start": day_start,
        "today_sales": float(to_money(sales_total or ZERO_MONEY)),
        "today_orders": int(order_count),
        "low_stock_items": int(low_stock_count),
        "total_products": int(active_products),
        "recent_orders": recent_orders,
    }


class DashboardWatcher:
    """
    Keeps a dashboard snapshot fresh from the change feed.

    Events only mark the snapshot stale; the next read recomputes it from the
    store, so a missed event costs staleness, never correctness.
    """

    WATCHED_TABLES = (
        (ORDERS_SCHEMA, "orders"),
        (INVENTORY_SCHEMA, "inventory_items"),
        (CATALOG_SCHEMA, "products"),
    )

    def __init__(
        self,
        relay: ChangeNotificationRelay,
        session_factory: Callable[[], Session],
        *,
        tz_name: str | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._relay = relay
        self._session_factory = session_factory
        self._tz_name = tz_name or settings.business_timezone
        self._clock = clock or (lambda: local_now(self._tz_name))
        self._tokens: list[str] = []
        self._state_lock = threading.Lock()
        self._compute_lock = threading.Lock()
        self._generation = 0
        self._computed_generation = -1
        self._latest: dict | None = None
        self._refresh_count = 0

    @property
    def running(self) -> bool:
        return bool(self._tokens)

    @property
    def refresh_count(self) -> int:
        with self._state_lock:
            return self._refresh_count

    def start(self) -> None:
        if self._tokens:
            return
        for schema, table in self.WATCHED_TABLES:
            self._tokens.append(self._relay.subscribe(table, self._on_change, schema=schema))
        self.invalidate()

    def stop(self) -> None:
        for token in self._tokens:
            self._relay.unsubscribe(token)
        self._tokens = []

    def __enter__(self) -> "DashboardWatcher":
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()

    def invalidate(self) -> None:
        with self._state_lock:
            self._generation += 1

    def _on_change(self, change: ChangeEvent) -> None:
        self.invalidate()

    def _is_current(self, now: datetime) -> bool:
        if self._latest is None:
            return False
        if self._computed_generation != self._generation:
            return False
        return self._latest["day_start"] == start_of_day(now, self._tz_name)

    def snapshot(self) -> dict:
        with self._compute_lock:
            now = self._clock()
            with self._state_lock:
                fresh = self._is_current(now)
                generation = self._generation
            if fresh:
                return self._latest

            db = self._session_factory()
            try:
                data = compute_dashboard(db, now, tz_name=self._tz_name)
            finally:
                db.close()

            with self._state_lock:
                self._refresh_count += 1
                self._latest = {**data, "computed_at": utc_now(), "refresh_count": self._refresh_count}
                self._computed_generation = generation
                latest = self._latest
            log_event(
                logger,
                "dashboard.refreshed",
                generation=generation,
                today_orders=data["today_orders"],
                low_stock_items=data["low_stock_items"],
            )
            return latest
