from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from restaurant_admin.core.api_docs import error_responses
from restaurant_admin.core.deps import get_db, get_relay
from restaurant_admin.schemas.order import (
    OrderCreate,
    OrderDetailOut,
    OrderListOut,
    OrderOut,
    OrderStatus,
    OrderStatusUpdateIn,
)
from restaurant_admin.services.notification_relay import ChangeNotificationRelay
from restaurant_admin.services.order_service import (
    create_order,
    get_order,
    list_orders,
    order_history,
    order_items_by_order,
    serialize_order,
    transition,
)

router = APIRouter(prefix="/orders", tags=["orders"])


def _order_detail(db: Session, order_id: int) -> dict:
    order = get_order(db, order_id)
    items = order_items_by_order(db, [order.id]).get(order.id, [])
    return serialize_order(order, items, order_history(db, order.id))


@router.post(
    "",
    response_model=OrderDetailOut,
    summary="Create order",
    responses=error_responses(404, 422, 500, 503),
)
def create(
    payload: OrderCreate,
    db: Session = Depends(get_db),
    relay: ChangeNotificationRelay = Depends(get_relay),
):
    order = create_order(
        db,
        relay,
        lines=[(item.product_id, item.qty) for item in payload.items],
        discount=payload.discount,
        tax=payload.tax,
        total=payload.total,
        order_number=payload.order_number,
        note=payload.note,
    )
    return _order_detail(db, order.id)


@router.get(
    "",
    response_model=OrderListOut,
    summary="List recent orders",
    responses=error_responses(422, 500),
)
def list_recent_orders(
    status: OrderStatus | None = Query(default=None),
    limit: int | None = Query(default=None, ge=1, le=1000),
    db: Session = Depends(get_db),
):
    orders = list_orders(db, status=status, limit=limit)
    items = order_items_by_order(db, [order.id for order in orders])
    return OrderListOut(
        status=status,
        items=[OrderOut(**serialize_order(order, items.get(order.id, []))) for order in orders],
    )


@router.get(
    "/{order_id}",
    response_model=OrderDetailOut,
    summary="Get order",
    responses=error_responses(404, 422, 500),
)
def get_one(order_id: int, db: Session = Depends(get_db)):
    return _order_detail(db, order_id)


@router.patch(
    "/{order_id}/status",
    response_model=OrderDetailOut,
    summary="Update order status",
    responses=error_responses(404, 409, 422, 500, 503),
)
def update_status(
    order_id: int,
    payload: OrderStatusUpdateIn,
    db: Session = Depends(get_db),
    relay: ChangeNotificationRelay = Depends(get_relay),
):
    transition(db, relay, order_id=order_id, new_status=payload.status)
    return _order_detail(db, order_id)
