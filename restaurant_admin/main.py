from contextlib import asynccontextmanager

from sqlalchemy import text

from restaurant_admin.core.observability import (
    http_exception_handler,
    request_logging_middleware,
    service_error_handler,
    setup_observability,
    unhandled_exception_handler,
    validation_exception_handler,
)
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from restaurant_admin.core.config import settings
from restaurant_admin.core.errors import ServiceError
from restaurant_admin.db.session import SessionLocal, engine
from restaurant_admin.routers import dashboard, inventory, orders, products
from restaurant_admin.services.dashboard_service import DashboardWatcher
from restaurant_admin.services.notification_relay import ChangeNotificationRelay


@asynccontextmanager
async def lifespan(app: FastAPI):
    relay = ChangeNotificationRelay()
    # Tests point the watcher at their own engine through app.state.session_factory.
    session_factory = getattr(app.state, "session_factory", SessionLocal)
    watcher = DashboardWatcher(relay, session_factory)
    app.state.relay = relay
    app.state.dashboard_watcher = watcher
    watcher.start()
    try:
        yield
    finally:
        watcher.stop()


app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    description=(
        "Back-office API for a restaurant.\n\n"
        "Stock is kept as an append-only movement ledger with a cached level per item, "
        "orders move through a status workflow, and the dashboard summarizes the current business day."
    ),
    lifespan=lifespan,
    swagger_ui_parameters={
        "displayRequestDuration": True,
        "defaultModelsExpandDepth": 1,
    },
    openapi_tags=[
        {"name": "health", "description": "Service status and quick links."},
        {"name": "products", "description": "Menu categories and products."},
        {"name": "inventory", "description": "Stock movements and stock levels."},
        {"name": "orders", "description": "Order creation and status workflow."},
        {"name": "dashboard", "description": "Business-day KPIs and recent orders."},
    ],
)

setup_observability()
app.middleware("http")(request_logging_middleware)
app.add_exception_handler(ServiceError, service_error_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)


def _cors_options() -> dict:
    origins = settings.cors_origins or ["http://localhost:5173"]
    allow_all = "*" in origins
    origin_regex = settings.cors_origin_regex
    if not origin_regex and settings.env.lower().strip() in {"dev", "development", "staging", "stage"}:
        # Admin frontends in dev run on whatever localhost port the bundler picks.
        origin_regex = r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$"
    return {
        "allow_origins": ["*"] if allow_all else origins,
        "allow_origin_regex": origin_regex,
        "allow_credentials": not allow_all,
        "allow_methods": ["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        "allow_headers": ["*"],
        "expose_headers": ["X-Request-ID"],
    }


app.add_middleware(CORSMiddleware, **_cors_options())

app.include_router(products.router)
app.include_router(inventory.router)
app.include_router(orders.router)
app.include_router(dashboard.router)


@app.get("/", tags=["health"])
def root():
    return {
        "app": settings.app_name,
        "docs": "/docs",
        "redoc": "/redoc",
        "health": "/health",
        "ready": "/ready",
    }


@app.get("/health", tags=["health"])
def health():
    return {"ok": True}


@app.get("/ready", tags=["health"])
def ready(request: Request):
    watcher = getattr(request.app.state, "dashboard_watcher", None)
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception:
        return {"ok": False, "database": False}
    return {"ok": True, "database": True, "dashboard_watcher": bool(watcher and watcher.running)}
