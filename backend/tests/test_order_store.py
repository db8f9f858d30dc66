import pytest
from sqlalchemy.exc import OperationalError

from resale_sync.errors import PersistenceError
from resale_sync.models_sqlalchemy.models import InventoryItem, Order, OrderLine, RawPayload
from resale_sync.seed_data import seed_data
from resale_sync.services.order_mapper import map_order

from conftest import FROZEN_NOW, PRINCIPAL


def _raw(order_id="ORD-1", lines=None, total="10.00"):
    return {
        "orderId": order_id,
        "creationDate": "2025-09-10T10:00:00.000Z",
        "buyer": {"username": "buyer"},
        "pricingSummary": {"total": {"value": total, "currency": "USD"}},
        "lineItems": lines if lines is not None else [
            {"lineItemId": "L-1", "sku": "INV-2509-AAA001", "quantity": 1, "lineItemCost": {"value": "10.00"}},
        ],
    }


def _persist(store, raw):
    return store.persist_order(PRINCIPAL, "fixture.getOrders", raw, map_order(raw), FROZEN_NOW)


def test_first_persist_creates_then_updates(store, session_factory):
    seed_data(session_factory)

    first = _persist(store, _raw())
    second = _persist(store, _raw(total="12.00"))

    assert first.order_created is True
    assert (first.lines_created, first.lines_updated, first.lines_matched) == (1, 0, 1)
    assert second.order_created is False
    assert (second.lines_created, second.lines_updated) == (0, 1)
    assert second.order_id == first.order_id

    db = session_factory()
    try:
        assert db.query(Order).count() == 1
        assert db.query(OrderLine).count() == 1
        assert db.query(RawPayload).count() == 2
        order = db.query(Order).one()
        assert order.total_cents == 1200
        assert order.raw_payload_id == second.raw_payload_id
        assert db.get(RawPayload, first.raw_payload_id).payload["pricingSummary"]["total"]["value"] == "10.00"
    finally:
        db.close()


def test_sku_miss_leaves_line_unmatched(store, session_factory):
    outcome = _persist(store, _raw(lines=[{"lineItemId": "L-1", "sku": "UNKNOWN-SKU"}]))

    assert outcome.lines_matched == 0
    db = session_factory()
    try:
        assert db.query(OrderLine).one().inventory_item_id is None
    finally:
        db.close()


def test_existing_link_is_never_cleared(store, session_factory):
    seed_data(session_factory)
    _persist(store, _raw())

    db = session_factory()
    try:
        db.query(InventoryItem).filter(InventoryItem.sku == "INV-2509-AAA001").delete()
        db.query(OrderLine).update({"inventory_item_id": 999})
        db.commit()
    finally:
        db.close()

    outcome = _persist(store, _raw())

    assert outcome.lines_matched == 0
    db = session_factory()
    try:
        assert db.query(OrderLine).one().inventory_item_id == 999
    finally:
        db.close()


def test_lines_without_id_converge_on_positional_key(store, session_factory):
    raw = _raw(lines=[{"sku": None, "quantity": 2}, {"sku": None}])

    _persist(store, raw)
    again = _persist(store, raw)

    assert (again.lines_created, again.lines_updated) == (0, 2)
    db = session_factory()
    try:
        keys = sorted(line.ebay_line_id for line in db.query(OrderLine))
        assert keys == ["#0", "#1"]
    finally:
        db.close()


def test_persist_requires_order_id(store):
    with pytest.raises(ValueError):
        _persist(store, {"lineItems": []})


def test_storage_failure_becomes_persistence_error(store, monkeypatch):
    def broken(*args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    monkeypatch.setattr(store, "_lookup_inventory_item_id", broken)

    with pytest.raises(PersistenceError) as excinfo:
        _persist(store, _raw())

    assert excinfo.value.retryable is True


def test_failed_order_write_is_rolled_back(store, session_factory, monkeypatch):
    def broken(*args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("boom"))

    monkeypatch.setattr(store, "_lookup_inventory_item_id", broken)
    with pytest.raises(PersistenceError):
        _persist(store, _raw())

    db = session_factory()
    try:
        assert db.query(Order).count() == 0
        assert db.query(RawPayload).count() == 0
    finally:
        db.close()


def test_seed_data_is_idempotent(session_factory):
    assert seed_data(session_factory) == 2
    assert seed_data(session_factory) == 0


def test_find_inventory_item_id(store, session_factory):
    seed_data(session_factory)

    assert store.find_inventory_item_id("INV-2509-AAA002") is not None
    assert store.find_inventory_item_id("NOPE") is None
    assert store.find_inventory_item_id(None) is None


def test_active_run_goes_stale_without_heartbeat(store, clock):
    run, active = store.start_run(PRINCIPAL, window_from=clock(), window_to=clock(), now=clock(), stale_minutes=10)
    assert active is None

    clock.advance(minutes=9)
    assert store.get_active_run(PRINCIPAL, clock(), 10).id == run.id
    store.heartbeat_run(run.id, clock())

    clock.advance(minutes=9)
    assert store.get_active_run(PRINCIPAL, clock(), 10).id == run.id

    clock.advance(minutes=2)
    assert store.get_active_run(PRINCIPAL, clock(), 10) is None
    assert store.get_active_run("someone-else", clock(), 10) is None
