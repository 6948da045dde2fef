from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.orm import Session

from restaurant_admin.core.api_docs import error_responses
from restaurant_admin.core.deps import get_db, get_relay
from restaurant_admin.core.time_utils import as_utc
from restaurant_admin.models.inventory import InventoryItem, StockMovement
from restaurant_admin.models.product import Product
from restaurant_admin.schemas.common import PaginationMeta
from restaurant_admin.schemas.inventory import (
    InventoryAdjustIn,
    InventoryAdjustOut,
    InventoryItemCreate,
    InventoryItemListOut,
    InventoryItemOut,
    InventoryItemUpdate,
    LedgerReconcileOut,
    StockMovementListOut,
    StockMovementOut,
)
from restaurant_admin.services.inventory_service import (
    adjust,
    create_inventory_item,
    get_inventory_item,
    is_low_stock,
    raw_qty_from_signed,
    update_inventory_item,
)
from restaurant_admin.services.notification_relay import ChangeNotificationRelay
from restaurant_admin.services.stock_ledger import list_movements, replay_ledger

router = APIRouter(prefix="/inventory", tags=["inventory"])


def _item_out(item: InventoryItem, product_name: dict | None = None) -> InventoryItemOut:
    return InventoryItemOut(
        id=item.id,
        product_id=item.product_id,
        product_name=product_name,
        unit=item.unit,
        stock_qty=float(item.stock_qty),
        reorder_level=float(item.reorder_level),
        is_low_stock=is_low_stock(item),
        updated_at=as_utc(item.updated_at),
    )


def _movement_out(movement: StockMovement) -> StockMovementOut:
    return StockMovementOut(
        id=movement.id,
        inventory_item_id=movement.inventory_item_id,
        qty_change=float(movement.qty_change),
        movement_type=movement.movement_type,
        notes=movement.notes,
        created_at=as_utc(movement.created_at),
    )


def _product_name(db: Session, product_id: int) -> dict | None:
    return db.execute(select(Product.name).where(Product.id == product_id)).scalar_one_or_none()


@router.post(
    "/items",
    response_model=InventoryItemOut,
    summary="Start stocking a product",
    responses=error_responses(404, 422, 500, 503),
)
def create_item(
    payload: InventoryItemCreate,
    db: Session = Depends(get_db),
    relay: ChangeNotificationRelay = Depends(get_relay),
):
    item = create_inventory_item(
        db,
        relay,
        product_id=payload.product_id,
        unit=payload.unit,
        reorder_level=payload.reorder_level,
        initial_qty=payload.initial_qty,
        notes=payload.notes,
    )
    return _item_out(item, _product_name(db, item.product_id))


@router.get(
    "/items",
    response_model=InventoryItemListOut,
    summary="List inventory items",
)
def list_items(
    low_stock_only: bool = Query(default=False, description="Only items at or below their reorder level"),
    db: Session = Depends(get_db),
):
    stmt = (
        select(InventoryItem, Product.name)
        .join(Product, Product.id == InventoryItem.product_id)
        .order_by(InventoryItem.updated_at.desc(), InventoryItem.id.desc())
    )
    if low_stock_only:
        stmt = stmt.where(InventoryItem.stock_qty <= InventoryItem.reorder_level)
    rows = db.execute(stmt).all()
    return InventoryItemListOut(items=[_item_out(item, name) for item, name in rows])


@router.get(
    "/items/{inventory_item_id}",
    response_model=InventoryItemOut,
    summary="Get inventory item",
    responses=error_responses(404, 422, 500),
)
def get_item(inventory_item_id: int, db: Session = Depends(get_db)):
    item = get_inventory_item(db, inventory_item_id)
    return _item_out(item, _product_name(db, item.product_id))


@router.patch(
    "/items/{inventory_item_id}",
    response_model=InventoryItemOut,
    summary="Update unit or reorder level",
    responses=error_responses(404, 422, 500, 503),
)
def update_item(
    inventory_item_id: int,
    payload: InventoryItemUpdate,
    db: Session = Depends(get_db),
    relay: ChangeNotificationRelay = Depends(get_relay),
):
    item = update_inventory_item(
        db,
        relay,
        inventory_item_id=inventory_item_id,
        unit=payload.unit,
        reorder_level=payload.reorder_level,
    )
    return _item_out(item, _product_name(db, item.product_id))


@router.post(
    "/adjust",
    response_model=InventoryAdjustOut,
    summary="Record a stock movement",
    responses=error_responses(404, 409, 422, 500, 503),
)
def adjust_stock(
    payload: InventoryAdjustIn,
    db: Session = Depends(get_db),
    relay: ChangeNotificationRelay = Depends(get_relay),
):
    result = adjust(
        db,
        relay,
        inventory_item_id=payload.inventory_item_id,
        raw_qty=raw_qty_from_signed(payload.qty_change, payload.movement_type),
        movement_type=payload.movement_type,
        notes=payload.notes,
    )
    return InventoryAdjustOut(
        item=_item_out(result.item, _product_name(db, result.item.product_id)),
        movement=_movement_out(result.movement),
    )


@router.get(
    "/items/{inventory_item_id}/movements",
    response_model=StockMovementListOut,
    summary="List the stock ledger for an item",
    responses=error_responses(404, 422, 500),
)
def list_item_movements(
    inventory_item_id: int,
    limit: int = Query(default=50, ge=1, le=200, description="Page size"),
    offset: int = Query(default=0, ge=0, description="Pagination offset"),
    db: Session = Depends(get_db),
):
    get_inventory_item(db, inventory_item_id)
    rows, total = list_movements(db, inventory_item_id, limit=limit, offset=offset)
    items = [_movement_out(row) for row in rows]
    count = len(items)
    return StockMovementListOut(
        items=items,
        pagination=PaginationMeta(
            total=total,
            limit=limit,
            offset=offset,
            count=count,
            has_next=(offset + count) < total,
        ),
    )


@router.get(
    "/items/{inventory_item_id}/reconcile",
    response_model=LedgerReconcileOut,
    summary="Replay the ledger against the cached stock level",
    responses=error_responses(404, 422, 500),
)
def reconcile_item(inventory_item_id: int, db: Session = Depends(get_db)):
    replay = replay_ledger(db, inventory_item_id)
    return LedgerReconcileOut(
        inventory_item_id=replay.inventory_item_id,
        stock_qty=float(replay.stock_qty),
        ledger_sum=float(replay.ledger_sum),
        movement_count=replay.movement_count,
        consistent=replay.consistent,
    )
