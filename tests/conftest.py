import pytest
import os
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite://")

import restaurant_admin.models  # noqa: F401
from restaurant_admin.core.deps import get_db
from restaurant_admin.db.base import Base
from restaurant_admin.main import app
from restaurant_admin.services.notification_relay import ChangeNotificationRelay


def _memory_engine():
    return create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )


@pytest.fixture()
def test_context():
    engine = _memory_engine()
    session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    def override_get_db():
        db = session_local()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.state.session_factory = session_local

    with TestClient(app) as client:
        yield client, session_local

    app.dependency_overrides.clear()
    del app.state.session_factory
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def session_local():
    engine = _memory_engine()
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)
    yield factory
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db(session_local):
    session = session_local()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def relay():
    return ChangeNotificationRelay()
