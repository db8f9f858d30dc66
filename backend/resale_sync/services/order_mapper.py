"""Pure transform from an eBay Fulfillment order payload to DB-ready values.

Nothing here touches the network or the database and nothing here raises:
malformed input degrades to empty/zero values so a single odd order can never
abort a sync run.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from functools import reduce
from typing import Any, Dict, List, Optional

from dateutil import parser as date_parser

from resale_sync.utils.logger import logger


_CENT = Decimal("1")
_HUNDRED = Decimal("100")


@dataclass
class MappedOrderLine:
    ebay_line_id: Optional[str]
    position: int
    sku: Optional[str]
    ebay_item_id: Optional[str]
    title: Optional[str]
    quantity: int
    item_price_cents: int

    @property
    def line_key(self) -> str:
        """Unique key of the line within its order.

        Lines without a marketplace id fall back to their position so that a
        re-sync of the same payload lands on the same row.
        """
        return self.ebay_line_id or f"#{self.position}"


@dataclass
class MappedOrder:
    ebay_order_id: Optional[str]
    order_created_at: Optional[datetime]
    buyer_username: Optional[str]
    total_cents: int
    tax_cents: int
    shipping_cents: int
    currency: Optional[str] = None
    payment_status: Optional[str] = None
    fulfillment_status: Optional[str] = None


@dataclass
class MappedOrderResult:
    order: MappedOrder
    lines: List[MappedOrderLine] = field(default_factory=list)


def _safe_get(data: Any, *keys):
    """Safely get nested dict/list values"""
    def accessor(obj, key):
        if obj is None:
            return None
        if isinstance(obj, dict):
            return obj.get(key)
        if isinstance(obj, list) and isinstance(key, int) and 0 <= key < len(obj):
            return obj[key]
        return None
    return reduce(accessor, keys, data)


def _as_str(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list, bool)):
        return None
    text = str(value).strip()
    return text or None


def to_minor_units(value: Any) -> int:
    """Convert a decimal currency amount to integer minor units (cents).

    Rounds half-up: ``"0.005"`` -> 1, ``"42.50"`` -> 4250. ``None``, empty
    strings, non-numeric, NaN and infinite values all map to 0.
    """

    if value is None or isinstance(value, bool):
        return 0
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return 0
    if not amount.is_finite():
        return 0
    try:
        return int((amount * _HUNDRED).quantize(_CENT, rounding=ROUND_HALF_UP))
    except InvalidOperation:
        # exceeds the decimal context precision
        return 0


def _parse_quantity(value: Any) -> int:
    if value is None or isinstance(value, bool):
        return 1
    try:
        qty = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return 1
    if not qty.is_finite() or qty != qty.to_integral_value() or qty < 1:
        return 1
    return int(qty)


def parse_datetime(dt_string: Any) -> Optional[datetime]:
    """Parse ISO 8601 datetime to UTC"""
    if not dt_string or not isinstance(dt_string, str):
        return None
    try:
        parsed = date_parser.isoparse(dt_string)
    except (ValueError, OverflowError):
        logger.warning(f"Failed to parse datetime: {dt_string}")
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def map_order_line(line_data: Dict[str, Any], position: int) -> MappedOrderLine:
    return MappedOrderLine(
        ebay_line_id=_as_str(line_data.get("lineItemId")),
        position=position,
        sku=_as_str(line_data.get("sku")),
        ebay_item_id=_as_str(line_data.get("itemId")),
        title=_as_str(line_data.get("title")),
        quantity=_parse_quantity(line_data.get("quantity")),
        item_price_cents=to_minor_units(_safe_get(line_data, "lineItemCost", "value")),
    )


def map_order(order_data: Any) -> MappedOrderResult:
    """Map one raw ``getOrders`` order object to an order plus its lines."""

    if not isinstance(order_data, dict):
        order_data = {}

    order = MappedOrder(
        ebay_order_id=_as_str(order_data.get("orderId")),
        order_created_at=parse_datetime(order_data.get("creationDate")),
        buyer_username=_as_str(_safe_get(order_data, "buyer", "username")),
        total_cents=to_minor_units(_safe_get(order_data, "pricingSummary", "total", "value")),
        tax_cents=to_minor_units(_safe_get(order_data, "pricingSummary", "tax", "value")),
        shipping_cents=to_minor_units(_safe_get(order_data, "pricingSummary", "deliveryCost", "value")),
        currency=_as_str(_safe_get(order_data, "pricingSummary", "total", "currency")),
        payment_status=_as_str(order_data.get("orderPaymentStatus")),
        fulfillment_status=_as_str(order_data.get("orderFulfillmentStatus")),
    )

    items = order_data.get("lineItems")
    if not isinstance(items, list):
        items = []

    lines = [
        map_order_line(li, position)
        for position, li in enumerate(items)
        if isinstance(li, dict)
    ]
    return MappedOrderResult(order=order, lines=lines)
