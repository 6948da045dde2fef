from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

OrderStatus = Literal["pending", "confirmed", "preparing", "ready", "completed", "cancelled"]


class OrderItemIn(BaseModel):
    product_id: int
    qty: int = Field(gt=0)


class OrderCreate(BaseModel):
    order_number: str | None = Field(default=None, min_length=1, max_length=40)
    items: list[OrderItemIn] = Field(min_length=1)
    discount: Decimal = Field(default=Decimal("0"), ge=0, allow_inf_nan=False, max_digits=12, decimal_places=2)
    tax: Decimal = Field(default=Decimal("0"), ge=0, allow_inf_nan=False, max_digits=12, decimal_places=2)
    total: Decimal | None = Field(
        default=None,
        allow_inf_nan=False,
        max_digits=12,
        decimal_places=2,
        description="Optional client-computed total; rejected when it differs from subtotal - discount + tax.",
    )
    note: str | None = Field(default=None, max_length=255)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "items": [{"product_id": 1, "qty": 2}],
                "discount": 10,
                "tax": 7,
                "note": "Table 4",
            }
        }
    )


class OrderStatusUpdateIn(BaseModel):
    status: OrderStatus

    model_config = ConfigDict(json_schema_extra={"example": {"status": "confirmed"}})


class OrderItemOut(BaseModel):
    id: int
    product_id: int | None = None
    name: dict[str, str]
    qty: int
    unit_price: float
    line_total: float


class OrderStatusEventOut(BaseModel):
    from_status: str | None = None
    to_status: str
    created_at: datetime


class OrderOut(BaseModel):
    id: int
    order_number: str
    status: OrderStatus
    subtotal: float
    discount: float
    tax: float
    total: float
    note: str | None = None
    created_at: datetime
    updated_at: datetime
    items: list[OrderItemOut] = Field(default_factory=list)


class OrderDetailOut(OrderOut):
    history: list[OrderStatusEventOut] = Field(default_factory=list)


class OrderListOut(BaseModel):
    status: OrderStatus | None = None
    items: list[OrderOut]
