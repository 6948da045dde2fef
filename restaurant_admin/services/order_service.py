import logging
from collections.abc import Sequence
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from restaurant_admin.core.config import settings
from restaurant_admin.core.errors import InvalidTransition, NotFound, StoreUnavailable, ValidationError
from restaurant_admin.core.id_utils import generate_order_number
from restaurant_admin.core.money import ZERO_MONEY, to_money
from restaurant_admin.core.observability import log_event
from restaurant_admin.core.time_utils import as_utc, utc_now
from restaurant_admin.db.unit_of_work import atomic
from restaurant_admin.models.order import (
    ORDER_STATUSES,
    TERMINAL_ORDER_STATUSES,
    Order,
    OrderItem,
    OrderStatusEvent,
)
from restaurant_admin.models.product import Product
from restaurant_admin.services.notification_relay import INSERT, UPDATE, ChangeNotificationRelay, change_event

logger = logging.getLogger("restaurant_admin.orders")

ORDER_FLOW = ("pending", "confirmed", "preparing", "ready", "completed")
_ORDER_NUMBER_ATTEMPTS = 5


def _normalize_order_status(status: str) -> str:
    normalized = (status or "").strip().lower()
    if normalized not in ORDER_STATUSES:
        allowed = ", ".join(ORDER_STATUSES)
        raise ValidationError(f"Invalid order status. Allowed: {allowed}")
    return normalized


def allowed_next_statuses(current_status: str, *, strict: bool) -> set[str]:
    if current_status in TERMINAL_ORDER_STATUSES:
        return set()
    if not strict:
        return set(ORDER_STATUSES) - {current_status}
    position = ORDER_FLOW.index(current_status)
    return {ORDER_FLOW[position + 1], "cancelled"}


def ensure_transition_allowed(current_status: str, next_status: str, *, strict: bool) -> None:
    if current_status in TERMINAL_ORDER_STATUSES:
        raise InvalidTransition(
            f"Order is already '{current_status}' and cannot change status",
            current_status=current_status,
            requested_status=next_status,
        )
    if current_status == next_status:
        return
    if next_status not in allowed_next_statuses(current_status, strict=strict):
        raise InvalidTransition(
            f"Cannot transition order from '{current_status}' to '{next_status}'",
            current_status=current_status,
            requested_status=next_status,
        )


def get_order(db: Session, order_id: int) -> Order:
    order = db.get(Order, order_id)
    if order is None:
        raise NotFound("Order not found")
    return order


def order_items_by_order(db: Session, order_ids: Sequence[int]) -> dict[int, list[OrderItem]]:
    grouped: dict[int, list[OrderItem]] = {order_id: [] for order_id in order_ids}
    if not order_ids:
        return grouped
    rows = db.execute(
        select(OrderItem).where(OrderItem.order_id.in_(list(order_ids))).order_by(OrderItem.id.asc())
    ).scalars().all()
    for row in rows:
        grouped.setdefault(row.order_id, []).append(row)
    return grouped


def order_history(db: Session, order_id: int) -> list[OrderStatusEvent]:
    return list(
        db.execute(
            select(OrderStatusEvent)
            .where(OrderStatusEvent.order_id == order_id)
            .order_by(OrderStatusEvent.created_at.asc(), OrderStatusEvent.id.asc())
        ).scalars().all()
    )


def list_orders(db: Session, *, status: str | None = None, limit: int | None = None) -> list[Order]:
    stmt = select(Order)
    if status:
        stmt = stmt.where(Order.status == _normalize_order_status(status))
    stmt = stmt.order_by(Order.created_at.desc(), Order.id.desc()).limit(limit or settings.order_history_limit)
    return list(db.execute(stmt).scalars().all())


def _unused_order_number(db: Session, created_at) -> str:
    for _ in range(_ORDER_NUMBER_ATTEMPTS):
        candidate = generate_order_number(settings.order_number_prefix, created_at)
        taken = db.execute(select(Order.id).where(Order.order_number == candidate)).scalar_one_or_none()
        if taken is None:
            return candidate
    raise StoreUnavailable("Could not allocate a unique order number; retry")


def create_order(
    db: Session,
    relay: ChangeNotificationRelay,
    *,
    lines: Sequence[tuple[int, int]],
    discount: Decimal | int | str = 0,
    tax: Decimal | int | str = 0,
    total: Decimal | int | str | None = None,
    order_number: str | None = None,
    note: str | None = None,
) -> Order:
    """
    Book a new pending order. Line names and prices are copied from the
    catalog now, so later product edits leave the order untouched.
    """
    if not lines:
        raise ValidationError("Order must contain at least one item")

    quantity_by_product: dict[int, int] = {}
    for product_id, qty in lines:
        if int(qty) <= 0:
            raise ValidationError("Item qty must be greater than zero")
        quantity_by_product[product_id] = quantity_by_product.get(product_id, 0) + int(qty)

    products = {
        product.id: product
        for product in db.execute(
            select(Product).where(Product.id.in_(list(quantity_by_product)))
        ).scalars().all()
    }
    for product_id in quantity_by_product:
        product = products.get(product_id)
        if product is None:
            raise NotFound(f"Product not found: {product_id}")
        if not product.is_active:
            raise ValidationError(f"Product is not active: {product_id}")

    subtotal = ZERO_MONEY
    snapshots: list[dict] = []
    for product_id, qty in quantity_by_product.items():
        product = products[product_id]
        unit_price = to_money(product.price)
        line_total = to_money(unit_price * qty)
        subtotal += line_total
        snapshots.append(
            {
                "product_id": product_id,
                "name": dict(product.name),
                "qty": qty,
                "unit_price": unit_price,
                "line_total": line_total,
            }
        )

    discount_money = to_money(discount)
    tax_money = to_money(tax)
    if discount_money < 0 or tax_money < 0:
        raise ValidationError("discount and tax cannot be negative")
    if discount_money > subtotal:
        raise ValidationError("discount cannot exceed subtotal")
    expected_total = to_money(subtotal - discount_money + tax_money)
    if total is not None and to_money(total) != expected_total:
        raise ValidationError(
            f"total must equal subtotal - discount + tax ({expected_total})",
            details=[{"subtotal": str(subtotal), "expected_total": str(expected_total), "total": str(to_money(total))}],
        )

    created_at = utc_now()
    if order_number:
        number = order_number.strip()
        taken = db.execute(select(Order.id).where(Order.order_number == number)).scalar_one_or_none()
        if taken is not None:
            raise ValidationError(f"Order number already exists: {number}")
    else:
        number = _unused_order_number(db, created_at)

    with atomic(db):
        order = Order(
            order_number=number,
            status="pending",
            subtotal=subtotal,
            discount=discount_money,
            tax=tax_money,
            total=expected_total,
            note=note,
            created_at=created_at,
            updated_at=created_at,
        )
        db.add(order)
        db.flush()
        for snapshot in snapshots:
            db.add(OrderItem(order_id=order.id, **snapshot))
        db.add(OrderStatusEvent(order_id=order.id, from_status=None, to_status="pending", created_at=created_at))

    log_event(logger, "orders.created", order_id=order.id, order_number=number, total=expected_total)
    relay.publish_many(
        [
            change_event("orders", INSERT, order.id),
            change_event("order_items", INSERT, order.id),
        ]
    )
    return order


def transition(
    db: Session,
    relay: ChangeNotificationRelay,
    *,
    order_id: int,
    new_status: str,
    strict: bool | None = None,
) -> Order:
    """
    Move an order to ``new_status``.

    Terminal orders (completed, cancelled) never move. Otherwise any status is
    reachable unless strict mode limits moves to the next step or cancellation.
    The write is a compare-and-set on the status read just before it, so two
    concurrent transitions on one order serialize.
    """
    next_status = _normalize_order_status(new_status)
    strict_mode = settings.order_strict_transitions if strict is None else strict

    for attempt in range(1, settings.order_transition_max_attempts + 1):
        current_status = db.execute(select(Order.status).where(Order.id == order_id)).scalar_one_or_none()
        if current_status is None:
            raise NotFound("Order not found")
        ensure_transition_allowed(current_status, next_status, strict=strict_mode)
        if current_status == next_status:
            order = get_order(db, order_id)
            db.refresh(order)
            return order

        now = utc_now()
        with atomic(db):
            result = db.execute(
                update(Order)
                .where(Order.id == order_id, Order.status == current_status)
                .values(status=next_status, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            swapped = result.rowcount == 1
            if swapped:
                db.add(
                    OrderStatusEvent(
                        order_id=order_id,
                        from_status=current_status,
                        to_status=next_status,
                        created_at=now,
                    )
                )
        if swapped:
            break
        log_event(logger, "orders.transition_retry", order_id=order_id, attempt=attempt, to_status=next_status)
    else:
        raise StoreUnavailable("Order status kept changing concurrently; retry")

    order = get_order(db, order_id)
    db.refresh(order)
    log_event(
        logger,
        "orders.status_changed",
        order_id=order_id,
        from_status=current_status,
        to_status=next_status,
    )
    relay.publish_many(
        [
            change_event("orders", UPDATE, order_id),
            change_event("order_status_events", INSERT, order_id),
        ]
    )
    return order


def serialize_order(
    order: Order,
    items: Sequence[OrderItem] = (),
    history: Sequence[OrderStatusEvent] | None = None,
) -> dict:
    out = {
        "id": order.id,
        "order_number": order.order_number,
        "status": order.status,
        "subtotal": float(to_money(order.subtotal)),
        "discount": float(to_money(order.discount)),
        "tax": float(to_money(order.tax)),
        "total": float(to_money(order.total)),
        "note": order.note,
        "created_at": as_utc(order.created_at),
        "updated_at": as_utc(order.updated_at),
        "items": [
            {
                "id": item.id,
                "product_id": item.product_id,
                "name": item.name,
                "qty": item.qty,
                "unit_price": float(to_money(item.unit_price)),
                "line_total": float(to_money(item.line_total)),
            }
            for item in items
        ],
    }
    if history is not None:
        out["history"] = [
            {
                "from_status": event.from_status,
                "to_status": event.to_status,
                "created_at": as_utc(event.created_at),
            }
            for event in history
        ]
    return out
