import uuid
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, select, update
from sqlalchemy.orm import sessionmaker

from restaurant_admin.core.config import settings
from restaurant_admin.core.errors import InvalidTransition, StoreUnavailable, ValidationError
from restaurant_admin.db.base import Base
from restaurant_admin.models.order import Order, OrderStatusEvent
from restaurant_admin.models.product import Product
from restaurant_admin.services import order_service
from restaurant_admin.services.order_service import (
    allowed_next_statuses,
    create_order,
    ensure_transition_allowed,
    transition,
)


def _create_product(client, *, price: float = 50.0) -> int:
    res = client.post(
        "/products",
        json={
            "name": {"th": "ต้มยำกุ้ง", "en": "Tom Yum Goong"},
            "price": price,
            "sku": f"TY-{uuid.uuid4().hex[:8]}",
        },
    )
    assert res.status_code == 200, res.text
    return res.json()["id"]


def _create_order(client, product_id: int, **extra):
    payload = {"items": [{"product_id": product_id, "qty": 2}], **extra}
    return client.post("/orders", json=payload)


def _set_status(client, order_id: int, status: str):
    return client.patch(f"/orders/{order_id}/status", json={"status": status})


@pytest.fixture()
def strict_transitions():
    original = settings.order_strict_transitions
    settings.order_strict_transitions = True
    yield
    settings.order_strict_transitions = original


def test_create_order_computes_totals_and_snapshots_lines(test_context):
    client, _ = test_context
    product_id = _create_product(client)

    res = _create_order(client, product_id, discount=10, tax=7, note="Table 4")

    assert res.status_code == 200, res.text
    body = res.json()
    assert body["status"] == "pending"
    assert body["subtotal"] == 100.0
    assert body["discount"] == 10.0
    assert body["tax"] == 7.0
    assert body["total"] == 97.0
    assert body["note"] == "Table 4"
    assert body["order_number"].startswith(f"{settings.order_number_prefix}-")
    (line,) = body["items"]
    assert line == {
        "id": line["id"],
        "product_id": product_id,
        "name": {"th": "ต้มยำกุ้ง", "en": "Tom Yum Goong"},
        "qty": 2,
        "unit_price": 50.0,
        "line_total": 100.0,
    }
    assert [(event["from_status"], event["to_status"]) for event in body["history"]] == [(None, "pending")]


def test_create_order_rejects_inconsistent_money(test_context):
    client, session_local = test_context
    product_id = _create_product(client)

    wrong_total = _create_order(client, product_id, discount=10, tax=7, total=100)
    assert wrong_total.status_code == 422, wrong_total.text
    assert wrong_total.json()["details"] == [{"subtotal": "100.00", "expected_total": "97.00", "total": "100.00"}]

    big_discount = _create_order(client, product_id, discount=150)
    assert big_discount.status_code == 422, big_discount.text

    negative_tax = _create_order(client, product_id, tax=-1)
    assert negative_tax.status_code == 422, negative_tax.text

    huge_tax = _create_order(client, product_id, tax="1e30")
    assert huge_tax.status_code == 422, huge_tax.text
    assert huge_tax.json()["code"] == "validation_error"

    huge_total = _create_order(client, product_id, total="99999999999")
    assert huge_total.status_code == 422, huge_total.text

    sub_cent_discount = _create_order(client, product_id, discount="0.005")
    assert sub_cent_discount.status_code == 422, sub_cent_discount.text

    matching = _create_order(client, product_id, discount=10, tax=7, total=97)
    assert matching.status_code == 200, matching.text

    db = session_local()
    try:
        assert len(db.execute(select(Order)).scalars().all()) == 1
    finally:
        db.close()


def test_create_order_requires_known_active_products(test_context):
    client, _ = test_context
    product_id = _create_product(client)

    unknown = _create_order(client, 9999)
    assert unknown.status_code == 404, unknown.text

    assert client.patch(f"/products/{product_id}", json={"is_active": False}).status_code == 200
    inactive = _create_order(client, product_id)
    assert inactive.status_code == 422, inactive.text

    empty = client.post("/orders", json={"items": []})
    assert empty.status_code == 422, empty.text


def test_order_number_must_be_unique(test_context):
    client, _ = test_context
    product_id = _create_product(client)

    first = _create_order(client, product_id, order_number="T4-001")
    assert first.status_code == 200, first.text
    assert first.json()["order_number"] == "T4-001"

    duplicate = _create_order(client, product_id, order_number="T4-001")
    assert duplicate.status_code == 422, duplicate.text


def test_order_lines_survive_product_edits(test_context):
    client, _ = test_context
    product_id = _create_product(client, price=50)
    order_id = _create_order(client, product_id).json()["id"]

    edit = client.patch(
        f"/products/{product_id}",
        json={"price": 65, "name": {"th": "ต้มยำ", "en": "Tom Yum"}},
    )
    assert edit.status_code == 200, edit.text

    (line,) = client.get(f"/orders/{order_id}").json()["items"]
    assert line["unit_price"] == 50.0
    assert line["name"]["en"] == "Tom Yum Goong"


def test_permissive_transitions_allow_skipping_ahead(test_context):
    client, _ = test_context
    order_id = _create_order(client, _create_product(client)).json()["id"]

    res = _set_status(client, order_id, "ready")

    assert res.status_code == 200, res.text
    body = res.json()
    assert body["status"] == "ready"
    assert [(event["from_status"], event["to_status"]) for event in body["history"]] == [
        (None, "pending"),
        ("pending", "ready"),
    ]


def test_terminal_orders_never_change(test_context):
    client, _ = test_context
    order_id = _create_order(client, _create_product(client)).json()["id"]
    assert _set_status(client, order_id, "completed").status_code == 200

    back = _set_status(client, order_id, "pending")
    assert back.status_code == 409, back.text
    assert back.json()["code"] == "invalid_transition"

    same = _set_status(client, order_id, "completed")
    assert same.status_code == 409, same.text

    current = client.get(f"/orders/{order_id}").json()
    assert current["status"] == "completed"
    assert len(current["history"]) == 2


def test_cancelled_orders_never_change(test_context):
    client, _ = test_context
    order_id = _create_order(client, _create_product(client)).json()["id"]
    assert _set_status(client, order_id, "cancelled").status_code == 200

    res = _set_status(client, order_id, "confirmed")

    assert res.status_code == 409, res.text
    assert client.get(f"/orders/{order_id}").json()["status"] == "cancelled"


def test_same_status_on_open_order_is_a_no_op(test_context):
    client, _ = test_context
    order_id = _create_order(client, _create_product(client)).json()["id"]

    res = _set_status(client, order_id, "pending")

    assert res.status_code == 200, res.text
    assert len(res.json()["history"]) == 1


def test_strict_transitions_follow_the_kitchen_flow(test_context, strict_transitions):
    client, _ = test_context
    order_id = _create_order(client, _create_product(client)).json()["id"]

    skip = _set_status(client, order_id, "ready")
    assert skip.status_code == 409, skip.text

    for status in ("confirmed", "preparing", "ready", "completed"):
        res = _set_status(client, order_id, status)
        assert res.status_code == 200, res.text

    other_id = _create_order(client, _create_product(client)).json()["id"]
    assert _set_status(client, other_id, "cancelled").status_code == 200


def test_status_update_validation(test_context):
    client, _ = test_context
    order_id = _create_order(client, _create_product(client)).json()["id"]

    unknown_status = _set_status(client, order_id, "done")
    assert unknown_status.status_code == 422, unknown_status.text

    missing = _set_status(client, 9999, "confirmed")
    assert missing.status_code == 404, missing.text
    assert missing.json()["code"] == "not_found"


def test_list_orders_newest_first_with_status_filter(test_context):
    client, _ = test_context
    product_id = _create_product(client)
    first = _create_order(client, product_id).json()["id"]
    second = _create_order(client, product_id).json()["id"]
    third = _create_order(client, product_id).json()["id"]
    assert _set_status(client, second, "preparing").status_code == 200

    everything = client.get("/orders")
    assert everything.status_code == 200, everything.text
    assert [row["id"] for row in everything.json()["items"]] == [third, second, first]

    preparing = client.get("/orders", params={"status": "preparing"}).json()
    assert preparing["status"] == "preparing"
    assert [row["id"] for row in preparing["items"]] == [second]

    limited = client.get("/orders", params={"limit": 1}).json()
    assert [row["id"] for row in limited["items"]] == [third]


def test_transition_rules():
    assert allowed_next_statuses("completed", strict=False) == set()
    assert allowed_next_statuses("pending", strict=True) == {"confirmed", "cancelled"}
    assert "pending" in allowed_next_statuses("ready", strict=False)

    ensure_transition_allowed("ready", "pending", strict=False)
    with pytest.raises(InvalidTransition) as exc_info:
        ensure_transition_allowed("ready", "pending", strict=True)
    assert exc_info.value.current_status == "ready"
    assert exc_info.value.requested_status == "pending"


def test_transition_publishes_order_change(db, relay):
    seen = []
    relay.subscribe("orders", seen.append, event="UPDATE")

    product = Product(name={"th": "ชา", "en": "Tea"}, price=30)
    db.add(product)
    db.commit()
    order = create_order(db, relay, lines=[(product.id, 1)])
    transition(db, relay, order_id=order.id, new_status="confirmed")
    with pytest.raises(ValidationError):
        transition(db, relay, order_id=order.id, new_status="shipped")

    assert [(change.schema, change.table, change.record_id) for change in seen] == [("pos", "orders", order.id)]


@pytest.fixture()
def file_session_local(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'orders.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


def _seed_order(session_local, relay) -> int:
    session = session_local()
    try:
        product = Product(name={"th": "ชา", "en": "Tea"}, price=30)
        session.add(product)
        session.commit()
        return create_order(session, relay, lines=[(product.id, 1)]).id
    finally:
        session.close()


def _status_trail(session_local, order_id: int) -> tuple[str, list[tuple[str | None, str]]]:
    session = session_local()
    try:
        status = session.execute(select(Order.status).where(Order.id == order_id)).scalar_one()
        events = session.execute(
            select(OrderStatusEvent.from_status, OrderStatusEvent.to_status)
            .where(OrderStatusEvent.order_id == order_id)
            .order_by(OrderStatusEvent.id)
        ).all()
        return status, [tuple(row) for row in events]
    finally:
        session.close()


def test_transition_that_loses_to_a_cancel_is_rejected(file_session_local, relay, monkeypatch):
    order_id = _seed_order(file_session_local, relay)
    updates = []
    relay.subscribe("orders", updates.append, event="UPDATE")
    original_check = order_service.ensure_transition_allowed
    cancelled_underneath = False

    def cancel_between_read_and_write(current_status, next_status, *, strict):
        nonlocal cancelled_underneath
        if not cancelled_underneath:
            cancelled_underneath = True
            rival = file_session_local()
            try:
                transition(rival, relay, order_id=order_id, new_status="cancelled")
            finally:
                rival.close()
        original_check(current_status, next_status, strict=strict)

    monkeypatch.setattr(order_service, "ensure_transition_allowed", cancel_between_read_and_write)

    loser = file_session_local()
    try:
        with pytest.raises(InvalidTransition) as exc_info:
            transition(loser, relay, order_id=order_id, new_status="ready")
    finally:
        loser.close()

    assert exc_info.value.current_status == "cancelled"
    assert exc_info.value.requested_status == "ready"
    status, events = _status_trail(file_session_local, order_id)
    assert status == "cancelled"
    assert events == [(None, "pending"), ("pending", "cancelled")]
    assert len(updates) == 1


def test_transition_gives_up_when_status_keeps_changing(file_session_local, relay, monkeypatch):
    order_id = _seed_order(file_session_local, relay)
    monkeypatch.setattr(settings, "order_transition_max_attempts", 3)
    original_check = order_service.ensure_transition_allowed
    flips = iter(["confirmed", "preparing", "confirmed"])

    def move_between_read_and_write(current_status, next_status, *, strict):
        original_check(current_status, next_status, strict=strict)
        rival = file_session_local()
        try:
            rival.execute(update(Order).where(Order.id == order_id).values(status=next(flips)))
            rival.commit()
        finally:
            rival.close()

    monkeypatch.setattr(order_service, "ensure_transition_allowed", move_between_read_and_write)

    session = file_session_local()
    try:
        with pytest.raises(StoreUnavailable):
            transition(session, relay, order_id=order_id, new_status="ready")
    finally:
        session.close()

    status, events = _status_trail(file_session_local, order_id)
    assert status == "confirmed"
    assert events == [(None, "pending")]


def test_flush_rejects_order_whose_total_disagrees(db):
    db.add(
        Order(
            order_number="DIRECT-1",
            subtotal=Decimal("100.00"),
            discount=Decimal("0.00"),
            tax=Decimal("7.00"),
            total=Decimal("100.00"),
        )
    )

    with pytest.raises(ValidationError) as exc_info:
        db.flush()
    db.rollback()

    assert "107.00" in exc_info.value.message
    assert db.execute(select(Order)).scalars().all() == []


def test_flush_rejects_discount_edit_without_new_total(db):
    order = Order(
        order_number="DIRECT-2",
        subtotal=Decimal("100.00"),
        discount=Decimal("10.00"),
        tax=Decimal("7.00"),
        total=Decimal("97.00"),
    )
    db.add(order)
    db.commit()
    order_id = order.id

    order.discount = Decimal("20.00")
    with pytest.raises(ValidationError):
        db.flush()
    db.rollback()

    stored = db.get(Order, order_id)
    assert stored.discount == Decimal("10.00")
    assert stored.total == Decimal("97.00")

    stored.discount = Decimal("20.00")
    stored.total = Decimal("87.00")
    db.commit()
    assert db.get(Order, order_id).total == Decimal("87.00")
