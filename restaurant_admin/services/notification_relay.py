"""
In-process change feed.

Writers publish one ChangeEvent per committed row change; listeners subscribe
by schema and table. An event only says *that* something changed: listeners
must re-read the store for the current values. Delivery is fire-and-forget;
a failing listener is logged and never fails the writer.
"""
import logging
import threading
import uuid
from dataclasses import dataclass, field
from typing import Callable

from restaurant_admin.core.observability import log_event

logger = logging.getLogger("restaurant_admin.relay")

INSERT = "INSERT"
UPDATE = "UPDATE"
DELETE = "DELETE"
EVENT_TYPES = (INSERT, UPDATE, DELETE)
ANY_EVENT = "*"

INVENTORY_SCHEMA = "erp"
ORDERS_SCHEMA = "pos"
CATALOG_SCHEMA = "public"

TABLE_SCHEMAS: dict[str, str] = {
    "inventory_items": INVENTORY_SCHEMA,
    "stock_movements": INVENTORY_SCHEMA,
    "orders": ORDERS_SCHEMA,
    "order_items": ORDERS_SCHEMA,
    "order_status_events": ORDERS_SCHEMA,
    "products": CATALOG_SCHEMA,
    "categories": CATALOG_SCHEMA,
}


@dataclass(frozen=True)
class ChangeEvent:
    schema: str
    table: str
    event_type: str
    record_id: int | None = None


ChangeHandler = Callable[[ChangeEvent], None]


@dataclass(frozen=True)
class _Subscription:
    token: str
    schema: str
    table: str
    event: str
    handler: ChangeHandler = field(compare=False)

    def matches(self, change: ChangeEvent) -> bool:
        return (
            self.schema == change.schema
            and self.table == change.table
            and self.event in (ANY_EVENT, change.event_type)
        )


def change_event(table: str, event_type: str, record_id: int | None = None) -> ChangeEvent:
    return ChangeEvent(
        schema=TABLE_SCHEMAS.get(table, CATALOG_SCHEMA),
        table=table,
        event_type=event_type,
        record_id=record_id,
    )


class ChangeNotificationRelay:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscriptions: dict[str, _Subscription] = {}

    def subscribe(
        self,
        table: str,
        handler: ChangeHandler,
        *,
        schema: str | None = None,
        event: str = ANY_EVENT,
    ) -> str:
        if event != ANY_EVENT and event not in EVENT_TYPES:
            raise ValueError(f"Unknown event type '{event}'")
        token = str(uuid.uuid4())
        subscription = _Subscription(
            token=token,
            schema=schema or TABLE_SCHEMAS.get(table, CATALOG_SCHEMA),
            table=table,
            event=event,
            handler=handler,
        )
        with self._lock:
            self._subscriptions[token] = subscription
        return token

    def unsubscribe(self, token: str) -> bool:
        with self._lock:
            return self._subscriptions.pop(token, None) is not None

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def publish(self, change: ChangeEvent) -> int:
        with self._lock:
            targets = [sub for sub in self._subscriptions.values() if sub.matches(change)]

        delivered = 0
        for sub in targets:
            try:
                sub.handler(change)
            except Exception as exc:
                log_event(
                    logger,
                    "relay.handler_failed",
                    level=logging.WARNING,
                    schema=change.schema,
                    table=change.table,
                    event_type=change.event_type,
                    record_id=change.record_id,
                    token=sub.token,
                    error=str(exc),
                )
                continue
            delivered += 1
        return delivered

    def publish_many(self, changes: list[ChangeEvent]) -> int:
        return sum(self.publish(change) for change in changes)
