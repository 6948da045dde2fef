"""create restaurant schema

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261019_0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _table_exists(inspector: sa.Inspector, table_name: str) -> bool:
    return table_name in inspector.get_table_names()


def _index_exists(inspector: sa.Inspector, table_name: str, index_name: str) -> bool:
    return index_name in {index["name"] for index in inspector.get_indexes(table_name)}


def _timestamp(name: str) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if not _table_exists(inspector, "categories"):
        op.create_table(
            "categories",
            sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
            sa.Column("name", sa.JSON(), nullable=False),
            sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            _timestamp("created_at"),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "products"):
        op.create_table(
            "products",
            sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
            sa.Column("name", sa.JSON(), nullable=False),
            sa.Column("description", sa.JSON(), nullable=True),
            sa.Column("price", sa.Numeric(12, 2), nullable=False),
            sa.Column("sku", sa.String(length=100), nullable=True),
            sa.Column("category_id", sa.Integer(), nullable=True),
            sa.Column("image_url", sa.String(length=500), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            _timestamp("created_at"),
            _timestamp("updated_at"),
            sa.CheckConstraint("price >= 0", name="ck_products_price_non_negative"),
            sa.ForeignKeyConstraint(["category_id"], ["categories.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("sku"),
        )

    if not _table_exists(inspector, "inventory_items"):
        op.create_table(
            "inventory_items",
            sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
            sa.Column("product_id", sa.Integer(), nullable=False),
            sa.Column("unit", sa.String(length=30), nullable=False),
            sa.Column("stock_qty", sa.Numeric(12, 3), nullable=False, server_default="0"),
            sa.Column("reorder_level", sa.Numeric(12, 3), nullable=False, server_default="0"),
            _timestamp("created_at"),
            _timestamp("updated_at"),
            sa.CheckConstraint("stock_qty >= 0", name="ck_inventory_items_stock_non_negative"),
            sa.CheckConstraint("reorder_level >= 0", name="ck_inventory_items_reorder_non_negative"),
            sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("product_id"),
        )

    if not _table_exists(inspector, "stock_movements"):
        op.create_table(
            "stock_movements",
            sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
            sa.Column("inventory_item_id", sa.Integer(), nullable=False),
            sa.Column("qty_change", sa.Numeric(12, 3), nullable=False),
            sa.Column("movement_type", sa.String(length=10), nullable=False),
            sa.Column("notes", sa.String(length=500), nullable=True),
            _timestamp("created_at"),
            sa.CheckConstraint("qty_change <> 0", name="ck_stock_movements_nonzero"),
            sa.CheckConstraint("movement_type IN ('IN', 'OUT', 'ADJUST')", name="ck_stock_movements_type"),
            sa.CheckConstraint(
                "(movement_type <> 'IN' OR qty_change > 0) AND (movement_type <> 'OUT' OR qty_change < 0)",
                name="ck_stock_movements_sign_matches_type",
            ),
            sa.ForeignKeyConstraint(["inventory_item_id"], ["inventory_items.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "orders"):
        op.create_table(
            "orders",
            sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
            sa.Column("order_number", sa.String(length=40), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("subtotal", sa.Numeric(12, 2), nullable=False),
            sa.Column("discount", sa.Numeric(12, 2), nullable=False, server_default="0"),
            sa.Column("tax", sa.Numeric(12, 2), nullable=False, server_default="0"),
            sa.Column("total", sa.Numeric(12, 2), nullable=False),
            sa.Column("note", sa.String(length=255), nullable=True),
            _timestamp("created_at"),
            _timestamp("updated_at"),
            sa.CheckConstraint(
                "status IN ('pending', 'confirmed', 'preparing', 'ready', 'completed', 'cancelled')",
                name="ck_orders_status",
            ),
            sa.CheckConstraint(
                "subtotal >= 0 AND discount >= 0 AND tax >= 0",
                name="ck_orders_amounts_non_negative",
            ),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("order_number"),
        )

    if not _table_exists(inspector, "order_items"):
        op.create_table(
            "order_items",
            sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
            sa.Column("order_id", sa.Integer(), nullable=False),
            sa.Column("product_id", sa.Integer(), nullable=True),
            sa.Column("name", sa.JSON(), nullable=False),
            sa.Column("qty", sa.Integer(), nullable=False),
            sa.Column("unit_price", sa.Numeric(12, 2), nullable=False),
            sa.Column("line_total", sa.Numeric(12, 2), nullable=False),
            sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
            sa.ForeignKeyConstraint(["product_id"], ["products.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "order_status_events"):
        op.create_table(
            "order_status_events",
            sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
            sa.Column("order_id", sa.Integer(), nullable=False),
            sa.Column("from_status", sa.String(length=20), nullable=True),
            sa.Column("to_status", sa.String(length=20), nullable=False),
            _timestamp("created_at"),
            sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    inspector = sa.inspect(bind)
    indexes = (
        ("products", "ix_products_category_id", ["category_id"]),
        ("products", "ix_products_is_active", ["is_active"]),
        ("products", "ix_products_created_at", ["created_at"]),
        ("inventory_items", "ix_inventory_items_updated_at", ["updated_at"]),
        ("stock_movements", "ix_stock_movements_item_created_at", ["inventory_item_id", "created_at"]),
        ("orders", "ix_orders_created_at_id", ["created_at", "id"]),
        ("orders", "ix_orders_status_created_at", ["status", "created_at"]),
        ("order_items", "ix_order_items_order_id", ["order_id"]),
        ("order_items", "ix_order_items_product_id", ["product_id"]),
        ("order_status_events", "ix_order_status_events_order_created_at", ["order_id", "created_at"]),
    )
    for table_name, index_name, columns in indexes:
        if not _index_exists(inspector, table_name, index_name):
            op.create_index(index_name, table_name, columns, unique=False)


def downgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    for table_name in (
        "order_status_events",
        "order_items",
        "orders",
        "stock_movements",
        "inventory_items",
        "products",
        "categories",
    ):
        if _table_exists(inspector, table_name):
            op.drop_table(table_name)
