from collections.abc import Iterator

from fastapi import Request
from sqlalchemy.orm import Session

from restaurant_admin.db.session import SessionLocal
from restaurant_admin.services.dashboard_service import DashboardWatcher
from restaurant_admin.services.notification_relay import ChangeNotificationRelay


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_relay(request: Request) -> ChangeNotificationRelay:
    return request.app.state.relay


def get_dashboard_watcher(request: Request) -> DashboardWatcher:
    return request.app.state.dashboard_watcher
