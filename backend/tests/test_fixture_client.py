from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

import pytest

from resale_sync.config import Settings
from resale_sync.errors import AuthExchangeError, MarketplaceConfigError, PermanentFetchError
from resale_sync.services.ebay_client import FixtureEbayClient, LiveEbayClient, create_ebay_client
from resale_sync.services.ebay_client.base import OrdersPageRequest
from resale_sync.services.pagination import OffsetCursor, TokenCursor, describe_cursor

from conftest import FROZEN_NOW, FULFILLMENT_SCOPE


WINDOW_FROM = FROZEN_NOW - timedelta(days=90)


def _request(cursor=None, page_size=1, created_from=WINDOW_FROM, created_to=FROZEN_NOW):
    return OrdersPageRequest(
        access_token="mock_access_token",
        created_from=created_from,
        created_to=created_to,
        cursor=cursor,
        page_size=page_size,
    )


@pytest.mark.asyncio
async def test_pages_with_continuation_tokens(fixture_client):
    first = await fixture_client.fetch_orders_page(_request())
    assert [o["orderId"] for o in first.orders] == ["MOCK-ORDER-1001"]
    assert first.next_cursor == TokenCursor("1")

    second = await fixture_client.fetch_orders_page(_request(cursor=first.next_cursor))
    assert [o["orderId"] for o in second.orders] == ["MOCK-ORDER-1002"]
    assert second.next_cursor is None


@pytest.mark.asyncio
async def test_single_page_when_page_size_covers_all(fixture_client):
    page = await fixture_client.fetch_orders_page(_request(page_size=50))

    assert len(page.orders) == 2
    assert page.next_cursor is None
    assert page.total == 2


@pytest.mark.asyncio
async def test_window_is_inclusive_from_exclusive_to(fixture_client):
    created = datetime(2025, 8, 31, 14, 12, 3, tzinfo=timezone.utc)

    inclusive = await fixture_client.fetch_orders_page(
        _request(page_size=10, created_from=created, created_to=created + timedelta(seconds=1))
    )
    exclusive = await fixture_client.fetch_orders_page(
        _request(page_size=10, created_from=created - timedelta(days=1), created_to=created)
    )

    assert [o["orderId"] for o in inclusive.orders] == ["MOCK-ORDER-1001"]
    assert exclusive.orders == []


@pytest.mark.asyncio
async def test_rejects_offset_cursor(fixture_client):
    with pytest.raises(ValueError):
        await fixture_client.fetch_orders_page(_request(cursor=OffsetCursor(1)))


@pytest.mark.asyncio
async def test_rejects_garbage_token(fixture_client):
    with pytest.raises(PermanentFetchError):
        await fixture_client.fetch_orders_page(_request(cursor=TokenCursor("not-a-number")))


@pytest.mark.asyncio
async def test_returned_orders_are_copies(fixture_client):
    page = await fixture_client.fetch_orders_page(_request(page_size=10))
    page.orders[0]["orderId"] = "CHANGED"

    again = await fixture_client.fetch_orders_page(_request(page_size=10))
    assert again.orders[0]["orderId"] == "MOCK-ORDER-1001"


@pytest.mark.asyncio
async def test_exchange_and_refresh_are_deterministic(fixture_client):
    grant = await fixture_client.exchange_authorization_code("any-code")
    assert grant.access_token == "mock_access_token"
    assert grant.refresh_token == "mock_refresh_token"
    assert grant.external_user_id == "mock_seller_123"
    assert grant.access_token_expires_at == FROZEN_NOW + timedelta(minutes=55)

    refreshed = await fixture_client.refresh_access_token("mock_refresh_token")
    assert refreshed.access_token == "mock_access_token_refreshed"
    assert refreshed.access_token_expires_at > FROZEN_NOW


@pytest.mark.asyncio
async def test_exchange_requires_code(fixture_client):
    with pytest.raises(AuthExchangeError):
        await fixture_client.exchange_authorization_code("")


def test_authorize_url_encodes_scopes_with_percent_20(fixture_client):
    url = fixture_client.build_authorize_url(["scope/a", "scope/b"], "state-123")

    assert "scope=scope%2Fa%20scope%2Fb" in url
    assert "+" not in url
    query = parse_qs(urlparse(url).query)
    assert query["client_id"] == ["test-client-id"]
    assert query["redirect_uri"] == ["Test-RuName"]
    assert query["response_type"] == ["code"]
    assert query["state"] == ["state-123"]


def test_authorize_url_falls_back_to_default_scopes(fixture_client):
    url = fixture_client.build_authorize_url([], "s")

    assert parse_qs(urlparse(url).query)["scope"] == [FULFILLMENT_SCOPE]


def test_cursor_variants():
    assert describe_cursor(None) == "start"
    assert describe_cursor(OffsetCursor(50)) == "offset=50"
    assert OffsetCursor(10) == OffsetCursor(10)
    assert OffsetCursor(10) != TokenCursor("10")
    with pytest.raises(ValueError):
        OffsetCursor(-1)
    with pytest.raises(ValueError):
        TokenCursor("")


def test_factory_selects_client_by_setting():
    fixture = create_ebay_client(Settings(MARKETPLACE_CLIENT="fixture"))
    live = create_ebay_client(Settings(MARKETPLACE_CLIENT="live", EBAY_SANDBOX_CLIENT_ID="id"))

    assert isinstance(fixture, FixtureEbayClient)
    assert fixture.payload_source == "fixture.getOrders"
    assert isinstance(live, LiveEbayClient)
    assert live.payload_source == "ebay.getOrders"
    assert live.api_base_url == "https://api.sandbox.ebay.com"

    with pytest.raises(MarketplaceConfigError):
        create_ebay_client(Settings(MARKETPLACE_CLIENT="carrier-pigeon"))
