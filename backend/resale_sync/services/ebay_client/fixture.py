"""Deterministic, network-free eBay client used for local development and tests.

Serves a two-order / three-line dataset shaped like a real Fulfillment
``getOrders`` response and pages it with continuation tokens (the token is the
index of the next order as a string).
"""

from __future__ import annotations

import asyncio
import copy
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence

from resale_sync.errors import AuthExchangeError, PermanentFetchError, TokenRefreshError
from resale_sync.services.ebay_client.base import (
    EbayClient,
    OrdersPage,
    OrdersPageRequest,
    RefreshedToken,
    TokenGrant,
    now_utc,
)
from resale_sync.services.order_mapper import parse_datetime
from resale_sync.services.pagination import TokenCursor
from resale_sync.utils.logger import ebay_logger, logger


FIXTURE_ACCESS_TOKEN = "mock_access_token"
FIXTURE_REFRESH_TOKEN = "mock_refresh_token"
FIXTURE_EXTERNAL_USER_ID = "mock_seller_123"
FIXTURE_TOKEN_LIFETIME = timedelta(minutes=55)

ORDERS_FIXTURE: List[Dict[str, Any]] = [
    {
        "orderId": "MOCK-ORDER-1001",
        "creationDate": "2025-08-31T14:12:03.000Z",
        "buyer": {"username": "buyer_one"},
        "pricingSummary": {
            "total": {"value": "42.50", "currency": "USD"},
            "deliveryCost": {"value": "5.00", "currency": "USD"},
            "tax": {"value": "3.50", "currency": "USD"},
        },
        "lineItems": [
            {
                "lineItemId": "LI-1001-1",
                "sku": "INV-2509-AAA001",
                "itemId": "MOCK-ITEM-9001",
                "quantity": 1,
                "lineItemCost": {"value": "34.00", "currency": "USD"},
            }
        ],
    },
    {
        "orderId": "MOCK-ORDER-1002",
        "creationDate": "2025-09-01T09:47:55.000Z",
        "buyer": {"username": "buyer_two"},
        "pricingSummary": {
            "total": {"value": "120.00", "currency": "USD"},
            "deliveryCost": {"value": "0.00", "currency": "USD"},
            "tax": {"value": "0.00", "currency": "USD"},
        },
        "lineItems": [
            {
                "lineItemId": "LI-1002-1",
                "sku": None,
                "itemId": "MOCK-ITEM-9002",
                "quantity": 2,
                "lineItemCost": {"value": "50.00", "currency": "USD"},
            },
            {
                "lineItemId": "LI-1002-2",
                "sku": "INV-2509-AAA002",
                "itemId": "MOCK-ITEM-9003",
                "quantity": 1,
                "lineItemCost": {"value": "20.00", "currency": "USD"},
            },
        ],
    },
]


class FixtureEbayClient(EbayClient):
    payload_source = "fixture.getOrders"

    def __init__(
        self,
        *,
        authorize_base_url: str,
        client_id: Optional[str] = None,
        redirect_uri: Optional[str] = None,
        default_scopes: Sequence[str] = (),
        orders: Optional[List[Dict[str, Any]]] = None,
        latency_seconds: float = 0.0,
        clock: Callable[[], datetime] = now_utc,
    ):
        super().__init__(default_scopes=default_scopes, clock=clock)
        self.authorize_base_url = authorize_base_url
        self.client_id = client_id or "mock"
        self.redirect_uri = redirect_uri or "mock"
        self.latency_seconds = latency_seconds
        self._orders = copy.deepcopy(orders if orders is not None else ORDERS_FIXTURE)

    def build_authorize_url(self, scopes: Optional[Sequence[str]], state: str) -> str:
        return self._compose_authorize_url(
            self.authorize_base_url,
            {
                "client_id": self.client_id,
                "redirect_uri": self.redirect_uri,
                "response_type": "code",
                "scope": " ".join(self.resolve_scopes(scopes)),
                "state": state,
            },
        )

    async def exchange_authorization_code(self, code: str) -> TokenGrant:
        if not code:
            raise AuthExchangeError("Authorization code is required", status_code=400)
        ebay_logger.log_ebay_event(
            "token_exchange_success",
            "Issued fixture tokens",
            request_data={"code": code},
            status="success",
        )
        return TokenGrant(
            access_token=FIXTURE_ACCESS_TOKEN,
            refresh_token=FIXTURE_REFRESH_TOKEN,
            access_token_expires_at=self.clock() + FIXTURE_TOKEN_LIFETIME,
            external_user_id=FIXTURE_EXTERNAL_USER_ID,
        )

    async def refresh_access_token(
        self, refresh_token: str, scopes: Optional[Sequence[str]] = None
    ) -> RefreshedToken:
        if not refresh_token:
            raise TokenRefreshError("Refresh token is required", status_code=400)
        return RefreshedToken(
            access_token=f"{FIXTURE_ACCESS_TOKEN}_refreshed",
            access_token_expires_at=self.clock() + FIXTURE_TOKEN_LIFETIME,
        )

    def _in_window(self, order: Dict[str, Any], created_from: Optional[datetime], created_to: Optional[datetime]) -> bool:
        created = parse_datetime(order.get("creationDate"))
        if created is None:
            return created_from is None and created_to is None
        if created_from is not None and created < created_from:
            return False
        if created_to is not None and created >= created_to:
            return False
        return True

    async def fetch_orders_page(self, request: OrdersPageRequest) -> OrdersPage:
        cursor = request.cursor
        if cursor is not None and not isinstance(cursor, TokenCursor):
            raise ValueError(f"FixtureEbayClient pages with TokenCursor, got {type(cursor).__name__}")
        if request.page_size < 1:
            raise ValueError("page_size must be >= 1")

        start = 0
        if cursor is not None:
            try:
                start = int(cursor.token)
            except ValueError:
                raise PermanentFetchError(f"Unknown continuation token {cursor.token!r}", status_code=400)
            if start < 0:
                raise PermanentFetchError(f"Unknown continuation token {cursor.token!r}", status_code=400)

        filtered = [
            order for order in self._orders
            if self._in_window(order, request.created_from, request.created_to)
        ]
        end = min(start + request.page_size, len(filtered))
        next_cursor = TokenCursor(str(end)) if end < len(filtered) else None

        if self.latency_seconds:
            await asyncio.sleep(self.latency_seconds)

        page = [copy.deepcopy(order) for order in filtered[start:end]]
        logger.info(
            f"Fixture getOrders: start={start} returned={len(page)} "
            f"total={len(filtered)} next={next_cursor.token if next_cursor else None}"
        )
        return OrdersPage(orders=page, next_cursor=next_cursor, total=len(filtered))
