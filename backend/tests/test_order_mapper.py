from datetime import datetime, timezone

import pytest

from resale_sync.services.ebay_client.fixture import ORDERS_FIXTURE
from resale_sync.services.order_mapper import map_order, parse_datetime, to_minor_units


@pytest.mark.parametrize("value, expected", [
    ("42.50", 4250),
    ("3.50", 350),
    ("0.00", 0),
    ("120", 12000),
    (19.99, 1999),
    (5, 500),
    ("0.005", 1),    # half-up, not banker's rounding
    ("0.015", 2),
    ("2.675", 268),
    ("-1.005", -101),
])
def test_to_minor_units_rounds_half_up(value, expected):
    assert to_minor_units(value) == expected


@pytest.mark.parametrize("value", [None, "", "   ", "abc", "NaN", "Infinity", "-inf", {}, [], True])
def test_to_minor_units_degrades_to_zero(value):
    assert to_minor_units(value) == 0


def test_maps_first_fixture_order():
    result = map_order(ORDERS_FIXTURE[0])

    order = result.order
    assert order.ebay_order_id == "MOCK-ORDER-1001"
    assert order.order_created_at == datetime(2025, 8, 31, 14, 12, 3, tzinfo=timezone.utc)
    assert order.buyer_username == "buyer_one"
    assert (order.total_cents, order.tax_cents, order.shipping_cents) == (4250, 350, 500)
    assert order.currency == "USD"

    assert len(result.lines) == 1
    line = result.lines[0]
    assert line.ebay_line_id == "LI-1001-1"
    assert line.line_key == "LI-1001-1"
    assert line.sku == "INV-2509-AAA001"
    assert line.ebay_item_id == "MOCK-ITEM-9001"
    assert line.quantity == 1
    assert line.item_price_cents == 3400


def test_maps_second_fixture_order_with_null_sku():
    result = map_order(ORDERS_FIXTURE[1])

    assert (result.order.total_cents, result.order.tax_cents, result.order.shipping_cents) == (12000, 0, 0)
    first, second = result.lines
    assert first.sku is None
    assert first.quantity == 2
    assert first.item_price_cents == 5000
    assert second.sku == "INV-2509-AAA002"
    assert second.item_price_cents == 2000


def test_quantity_falls_back_to_one():
    raw = {
        "orderId": "O-1",
        "lineItems": [
            {"lineItemId": "a", "quantity": 0},
            {"lineItemId": "b", "quantity": "1.5"},
            {"lineItemId": "c", "quantity": None},
            {"lineItemId": "d", "quantity": "3"},
            {"lineItemId": "e", "quantity": -2},
        ],
    }
    assert [line.quantity for line in map_order(raw).lines] == [1, 1, 1, 3, 1]


def test_missing_line_id_uses_position_key():
    raw = {"orderId": "O-2", "lineItems": [{"lineItemId": "L-1"}, {"sku": "X"}]}

    lines = map_order(raw).lines

    assert lines[1].ebay_line_id is None
    assert lines[1].line_key == "#1"
    assert lines[1].item_price_cents == 0


def test_unparseable_creation_date_is_none():
    assert map_order({"orderId": "O-3", "creationDate": "yesterday"}).order.order_created_at is None


def test_parse_datetime_normalizes_to_utc():
    parsed = parse_datetime("2025-09-01T11:47:55+02:00")
    assert parsed == datetime(2025, 9, 1, 9, 47, 55, tzinfo=timezone.utc)
    assert parsed.tzinfo is not None


@pytest.mark.parametrize("raw", [None, "order", 42, [], {"lineItems": "nope"}])
def test_malformed_input_never_raises(raw):
    result = map_order(raw)

    assert result.order.ebay_order_id is None
    assert result.order.total_cents == 0
    assert result.lines == []


def test_mapping_does_not_mutate_input():
    raw = {"orderId": "O-4", "pricingSummary": {"total": {"value": "1.00"}}, "lineItems": [{"lineItemId": "x"}]}
    before = repr(raw)

    map_order(raw)

    assert repr(raw) == before
