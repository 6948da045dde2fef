from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.orm import Session

from restaurant_admin.core.api_docs import error_responses
from restaurant_admin.core.deps import get_db, get_relay
from restaurant_admin.core.money import to_money
from restaurant_admin.core.time_utils import as_utc, utc_now
from restaurant_admin.db.unit_of_work import atomic
from restaurant_admin.models.inventory import InventoryItem
from restaurant_admin.models.product import Category, Product
from restaurant_admin.schemas.product import (
    CategoryCreate,
    CategoryOut,
    ProductCreate,
    ProductOut,
    ProductUpdate,
)
from restaurant_admin.services.notification_relay import (
    DELETE,
    INSERT,
    UPDATE,
    ChangeNotificationRelay,
    change_event,
)

router = APIRouter(tags=["products"])


def _product_out(product: Product) -> ProductOut:
    return ProductOut(
        id=product.id,
        name=product.name,
        description=product.description,
        price=float(to_money(product.price)),
        sku=product.sku,
        category_id=product.category_id,
        image_url=product.image_url,
        is_active=bool(product.is_active),
        created_at=as_utc(product.created_at),
        updated_at=as_utc(product.updated_at),
    )


def _get_product(db: Session, product_id: int) -> Product:
    product = db.get(Product, product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


def _ensure_category_exists(db: Session, category_id: int | None) -> None:
    if category_id is not None and db.get(Category, category_id) is None:
        raise HTTPException(status_code=404, detail="Category not found")


def _ensure_sku_available(db: Session, sku: str | None, *, exclude_product_id: int | None = None) -> None:
    if not sku:
        return
    stmt = select(Product.id).where(Product.sku == sku)
    if exclude_product_id is not None:
        stmt = stmt.where(Product.id != exclude_product_id)
    if db.execute(stmt).scalar_one_or_none() is not None:
        raise HTTPException(status_code=409, detail="SKU already in use")


@router.post(
    "/categories",
    response_model=CategoryOut,
    summary="Create category",
    responses=error_responses(422, 500),
)
def create_category(
    payload: CategoryCreate,
    db: Session = Depends(get_db),
    relay: ChangeNotificationRelay = Depends(get_relay),
):
    with atomic(db):
        category = Category(
            name=payload.name,
            sort_order=payload.sort_order,
            is_active=payload.is_active,
            created_at=utc_now(),
        )
        db.add(category)
    db.refresh(category)
    relay.publish(change_event("categories", INSERT, category.id))
    return category


@router.get(
    "/categories",
    response_model=list[CategoryOut],
    summary="List active categories",
)
def list_categories(db: Session = Depends(get_db)):
    return db.execute(
        select(Category)
        .where(Category.is_active.is_(True))
        .order_by(Category.sort_order.asc(), Category.id.asc())
    ).scalars().all()


@router.post(
    "/products",
    response_model=ProductOut,
    summary="Create product",
    responses=error_responses(404, 409, 422, 500),
)
def create_product(
    payload: ProductCreate,
    db: Session = Depends(get_db),
    relay: ChangeNotificationRelay = Depends(get_relay),
):
    _ensure_category_exists(db, payload.category_id)
    _ensure_sku_available(db, payload.sku)

    now = utc_now()
    with atomic(db):
        product = Product(
            name=payload.name,
            description=payload.description,
            price=to_money(payload.price),
            sku=payload.sku,
            category_id=payload.category_id,
            image_url=payload.image_url,
            is_active=payload.is_active,
            created_at=now,
            updated_at=now,
        )
        db.add(product)
    db.refresh(product)
    relay.publish(change_event("products", INSERT, product.id))
    return _product_out(product)


@router.get(
    "/products",
    response_model=list[ProductOut],
    summary="List products",
)
def list_products(
    active: bool | None = Query(default=None, description="Filter by active flag"),
    category_id: int | None = Query(default=None),
    db: Session = Depends(get_db),
):
    stmt = select(Product)
    if active is not None:
        stmt = stmt.where(Product.is_active.is_(active))
    if category_id is not None:
        stmt = stmt.where(Product.category_id == category_id)
    rows = db.execute(stmt.order_by(Product.created_at.desc(), Product.id.desc())).scalars().all()
    return [_product_out(row) for row in rows]


@router.get(
    "/products/{product_id}",
    response_model=ProductOut,
    summary="Get product",
    responses=error_responses(404, 422, 500),
)
def get_product(product_id: int, db: Session = Depends(get_db)):
    return _product_out(_get_product(db, product_id))


@router.patch(
    "/products/{product_id}",
    response_model=ProductOut,
    summary="Update product",
    responses=error_responses(404, 409, 422, 500),
)
def update_product(
    product_id: int,
    payload: ProductUpdate,
    db: Session = Depends(get_db),
    relay: ChangeNotificationRelay = Depends(get_relay),
):
    product = _get_product(db, product_id)
    changes = payload.model_dump(exclude_unset=True)
    if "category_id" in changes:
        _ensure_category_exists(db, changes["category_id"])
    if changes.get("sku"):
        changes["sku"] = changes["sku"].strip() or None
        _ensure_sku_available(db, changes["sku"], exclude_product_id=product_id)
    if "name" in changes and changes["name"] is None:
        raise HTTPException(status_code=422, detail="name cannot be null")
    if "price" in changes:
        if changes["price"] is None:
            raise HTTPException(status_code=422, detail="price cannot be null")
        changes["price"] = to_money(changes["price"])

    with atomic(db):
        for field, value in changes.items():
            setattr(product, field, value)
        product.updated_at = utc_now()
    db.refresh(product)
    relay.publish(change_event("products", UPDATE, product.id))
    return _product_out(product)


@router.delete(
    "/products/{product_id}",
    summary="Delete product",
    responses=error_responses(404, 409, 500),
)
def delete_product(
    product_id: int,
    db: Session = Depends(get_db),
    relay: ChangeNotificationRelay = Depends(get_relay),
):
    product = _get_product(db, product_id)
    stocked = db.execute(
        select(InventoryItem.id).where(InventoryItem.product_id == product_id)
    ).scalar_one_or_none()
    if stocked is not None:
        raise HTTPException(
            status_code=409,
            detail="Product has an inventory ledger; deactivate it instead of deleting",
        )
    with atomic(db):
        db.delete(product)
    relay.publish(change_event("products", DELETE, product_id))
    return {"ok": True}
