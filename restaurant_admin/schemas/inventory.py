from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from restaurant_admin.schemas.common import PaginationMeta

MovementType = Literal["IN", "OUT", "ADJUST"]


class InventoryItemCreate(BaseModel):
    product_id: int
    unit: str = Field(min_length=1, max_length=30)
    reorder_level: Decimal = Field(default=Decimal("0"), ge=0, max_digits=12, decimal_places=3)
    initial_qty: Decimal | None = Field(default=None, gt=0, allow_inf_nan=False, max_digits=12, decimal_places=3)
    notes: str | None = Field(default=None, max_length=500)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "product_id": 1,
                "unit": "kg",
                "reorder_level": 5,
                "initial_qty": 10,
                "notes": "Opening stock",
            }
        }
    )


class InventoryItemUpdate(BaseModel):
    unit: str | None = Field(default=None, min_length=1, max_length=30)
    reorder_level: Decimal | None = Field(default=None, ge=0, max_digits=12, decimal_places=3)


class InventoryAdjustIn(BaseModel):
    inventory_item_id: int
    qty_change: Decimal = Field(
        ...,
        allow_inf_nan=False,
        max_digits=12,
        decimal_places=3,
        description="Signed change. Positive for IN, negative for OUT, either sign for ADJUST. Cannot be zero.",
    )
    movement_type: MovementType
    notes: str | None = Field(default=None, max_length=500)

    @field_validator("qty_change")
    @classmethod
    def validate_non_zero_qty_change(cls, value: Decimal) -> Decimal:
        if value == 0:
            raise ValueError("qty_change cannot be zero")
        return value

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "inventory_item_id": 1,
                "qty_change": -3,
                "movement_type": "OUT",
                "notes": "Used for lunch service",
            }
        }
    )


class InventoryItemOut(BaseModel):
    id: int
    product_id: int
    product_name: dict[str, str] | None = None
    unit: str
    stock_qty: float
    reorder_level: float
    is_low_stock: bool
    updated_at: datetime


class StockMovementOut(BaseModel):
    id: int
    inventory_item_id: int
    qty_change: float
    movement_type: MovementType
    notes: str | None = None
    created_at: datetime


class InventoryAdjustOut(BaseModel):
    item: InventoryItemOut
    movement: StockMovementOut


class InventoryItemListOut(BaseModel):
    items: list[InventoryItemOut]


class StockMovementListOut(BaseModel):
    items: list[StockMovementOut]
    pagination: PaginationMeta


class LedgerReconcileOut(BaseModel):
    inventory_item_id: int
    stock_qty: float
    ledger_sum: float
    movement_count: int
    consistent: bool
