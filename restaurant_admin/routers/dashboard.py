from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from restaurant_admin.core.api_docs import error_responses
from restaurant_admin.core.deps import get_dashboard_watcher, get_db
from restaurant_admin.schemas.dashboard import DashboardLiveOut, DashboardOut
from restaurant_admin.services.dashboard_service import DashboardWatcher, compute_dashboard

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


@router.get(
    "/summary",
    response_model=DashboardOut,
    summary="Get today's KPIs",
    responses={
        200: {
            "description": "Dashboard summary",
            "content": {
                "application/json": {
                    "example": {
                        "as_of": "2026-10-19T05:00:00Z",
                        "day_start": "2026-10-18T17:00:00Z",
                        "today_sales": 1250.0,
                        "today_orders": 14,
                        "low_stock_items": 3,
                        "total_products": 42,
                        "recent_orders": [],
                    }
                }
            },
        },
        **error_responses(422, 500),
    },
)
def summary(
    as_of: datetime | None = Query(
        default=None,
        description="Instant to compute for. Naive values are read in the business timezone.",
    ),
    db: Session = Depends(get_db),
):
    return compute_dashboard(db, as_of)


@router.get(
    "/live",
    response_model=DashboardLiveOut,
    summary="Get the change-feed maintained dashboard snapshot",
    responses=error_responses(500),
)
def live(watcher: DashboardWatcher = Depends(get_dashboard_watcher)):
    return watcher.snapshot()
