from datetime import datetime

from pydantic import BaseModel

from restaurant_admin.schemas.order import OrderOut


class DashboardOut(BaseModel):
    as_of: datetime
    day_start: datetime
    today_sales: float
    today_orders: int
    low_stock_items: int
    total_products: int
    recent_orders: list[OrderOut]


class DashboardLiveOut(DashboardOut):
    computed_at: datetime
    refresh_count: int
