import base64
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs

import httpx
import pytest

from resale_sync.errors import (
    AuthExchangeError,
    MarketplaceConfigError,
    PermanentFetchError,
    TokenRefreshError,
    TransientFetchError,
)
from resale_sync.services.ebay_client.base import OrdersPageRequest
from resale_sync.services.ebay_client.live import (
    LiveEbayClient,
    build_creation_date_filter,
    parse_orders_response,
)
from resale_sync.services.pagination import OffsetCursor, TokenCursor

from conftest import FROZEN_NOW, FULFILLMENT_SCOPE


class Recorder:
    """MockTransport handler replaying queued responses and recording requests."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def _client(handler, clock=lambda: FROZEN_NOW, **overrides):
    kwargs = dict(
        client_id="client-id",
        cert_id="cert-secret",
        runame="My-RuName",
        api_base_url="https://api.sandbox.ebay.com",
        auth_base_url="https://auth.sandbox.ebay.com",
        default_scopes=[FULFILLMENT_SCOPE],
        retry_delay_seconds=0,
        transport=httpx.MockTransport(handler),
        clock=clock,
    )
    kwargs.update(overrides)
    return LiveEbayClient(**kwargs)


def _orders_request(cursor=None):
    return OrdersPageRequest(
        access_token="user-token",
        created_from=datetime(2025, 6, 17, 12, 0, tzinfo=timezone.utc),
        created_to=datetime(2025, 9, 15, 12, 0, tzinfo=timezone.utc),
        cursor=cursor,
        page_size=50,
    )


def test_authorize_url_uses_runame_and_percent_20():
    client = _client(Recorder())

    url = client.build_authorize_url(["https://api.ebay.com/oauth/api_scope", FULFILLMENT_SCOPE], "st")

    assert url.startswith("https://auth.sandbox.ebay.com/oauth2/authorize?")
    assert "redirect_uri=My-RuName" in url
    assert "%20" in url
    assert "+" not in url


def test_authorize_url_requires_configuration():
    client = _client(Recorder(), client_id=None)

    with pytest.raises(MarketplaceConfigError):
        client.build_authorize_url(None, "st")


@pytest.mark.asyncio
async def test_exchange_posts_form_with_basic_auth():
    recorder = Recorder(httpx.Response(200, json={
        "access_token": "v^1.1#access",
        "refresh_token": "v^1.1#refresh",
        "expires_in": 7200,
        "token_type": "User Access Token",
    }))
    client = _client(recorder)

    grant = await client.exchange_authorization_code("the-code")

    assert grant.access_token == "v^1.1#access"
    assert grant.refresh_token == "v^1.1#refresh"
    assert grant.access_token_expires_at == FROZEN_NOW + timedelta(seconds=7200)

    request = recorder.requests[0]
    assert str(request.url) == "https://api.sandbox.ebay.com/identity/v1/oauth2/token"
    expected_auth = "Basic " + base64.b64encode(b"client-id:cert-secret").decode()
    assert request.headers["Authorization"] == expected_auth
    form = parse_qs(request.content.decode())
    assert form == {
        "grant_type": ["authorization_code"],
        "code": ["the-code"],
        "redirect_uri": ["My-RuName"],
    }


@pytest.mark.asyncio
async def test_missing_expires_in_defaults_to_3000_seconds():
    client = _client(Recorder(httpx.Response(200, json={"access_token": "a", "refresh_token": "r"})))

    grant = await client.exchange_authorization_code("c")

    assert grant.access_token_expires_at == FROZEN_NOW + timedelta(seconds=3000)


@pytest.mark.asyncio
async def test_non_positive_expires_in_is_rejected():
    client = _client(Recorder(httpx.Response(200, json={"access_token": "a", "expires_in": 0})))

    with pytest.raises(AuthExchangeError):
        await client.exchange_authorization_code("c")


@pytest.mark.asyncio
async def test_exchange_failure_carries_status_and_body():
    client = _client(Recorder(httpx.Response(400, json={"error": "invalid_grant"})))

    with pytest.raises(AuthExchangeError) as excinfo:
        await client.exchange_authorization_code("bad")

    assert excinfo.value.status_code == 400
    assert excinfo.value.body == {"error": "invalid_grant"}


@pytest.mark.asyncio
async def test_refresh_sends_scopes():
    recorder = Recorder(httpx.Response(200, json={"access_token": "fresh", "expires_in": 7200}))
    client = _client(recorder)

    refreshed = await client.refresh_access_token("v^1.1#refresh", ["scope-a", "scope-b"])

    assert refreshed.access_token == "fresh"
    form = parse_qs(recorder.requests[0].content.decode())
    assert form["grant_type"] == ["refresh_token"]
    assert form["refresh_token"] == ["v^1.1#refresh"]
    assert form["scope"] == ["scope-a scope-b"]


@pytest.mark.asyncio
async def test_refresh_transport_error_is_token_refresh_error():
    client = _client(Recorder(httpx.ConnectError("boom")))

    with pytest.raises(TokenRefreshError):
        await client.refresh_access_token("r")


@pytest.mark.asyncio
async def test_fetch_builds_request_and_next_offset():
    recorder = Recorder(httpx.Response(200, json={
        "total": 120,
        "orders": [{"orderId": "A"}, {"orderId": "B"}],
    }))
    client = _client(recorder)

    page = await client.fetch_orders_page(_orders_request())

    assert [o["orderId"] for o in page.orders] == ["A", "B"]
    assert page.next_cursor == OffsetCursor(50)

    request = recorder.requests[0]
    assert request.url.path == "/sell/fulfillment/v1/order"
    assert request.headers["Authorization"] == "Bearer user-token"
    assert request.headers["X-EBAY-C-MARKETPLACE-ID"] == "EBAY_US"
    params = request.url.params
    assert params["limit"] == "50"
    assert params["offset"] == "0"
    assert params["fieldGroups"] == "TAX_BREAKDOWN"
    assert params["filter"] == "creationdate:[2025-06-17T12:00:00.000Z..2025-09-15T11:59:59.999Z]"


@pytest.mark.asyncio
async def test_fetch_last_page_has_no_cursor():
    client = _client(Recorder(httpx.Response(200, json={"total": 120, "orders": []})))

    page = await client.fetch_orders_page(_orders_request(cursor=OffsetCursor(100)))

    assert page.next_cursor is None


@pytest.mark.asyncio
async def test_fetch_retries_once_on_429():
    recorder = Recorder(
        httpx.Response(429, json={"errors": []}),
        httpx.Response(200, json={"total": 1, "orders": [{"orderId": "A"}]}),
    )
    client = _client(recorder)

    page = await client.fetch_orders_page(_orders_request())

    assert len(recorder.requests) == 2
    assert len(page.orders) == 1


@pytest.mark.asyncio
async def test_fetch_retries_once_on_transport_error():
    recorder = Recorder(
        httpx.ReadTimeout("slow"),
        httpx.Response(200, json={"total": 0, "orders": []}),
    )
    client = _client(recorder)

    page = await client.fetch_orders_page(_orders_request())

    assert len(recorder.requests) == 2
    assert page.orders == []


@pytest.mark.asyncio
async def test_fetch_second_5xx_is_transient_error():
    recorder = Recorder(httpx.Response(503, text="busy"), httpx.Response(500, text="still busy"))
    client = _client(recorder)

    with pytest.raises(TransientFetchError) as excinfo:
        await client.fetch_orders_page(_orders_request())

    assert excinfo.value.status_code == 500
    assert excinfo.value.retryable is True
    assert len(recorder.requests) == 2


@pytest.mark.asyncio
async def test_fetch_4xx_is_permanent_without_retry():
    recorder = Recorder(httpx.Response(400, json={"errors": [{"message": "bad filter"}]}))
    client = _client(recorder)

    with pytest.raises(PermanentFetchError) as excinfo:
        await client.fetch_orders_page(_orders_request())

    assert excinfo.value.status_code == 400
    assert len(recorder.requests) == 1


@pytest.mark.asyncio
async def test_fetch_retry_then_4xx_is_permanent():
    recorder = Recorder(httpx.Response(502), httpx.Response(401, json={"errors": []}))
    client = _client(recorder)

    with pytest.raises(PermanentFetchError):
        await client.fetch_orders_page(_orders_request())


@pytest.mark.asyncio
async def test_fetch_non_json_body_is_permanent():
    client = _client(Recorder(httpx.Response(200, text="<html>maintenance</html>")))

    with pytest.raises(PermanentFetchError):
        await client.fetch_orders_page(_orders_request())


@pytest.mark.asyncio
async def test_fetch_rejects_token_cursor():
    client = _client(Recorder())

    with pytest.raises(ValueError):
        await client.fetch_orders_page(_orders_request(cursor=TokenCursor("1")))


def test_next_link_fallback_when_total_missing():
    page = parse_orders_response(
        {"orders": [{}], "next": "https://api.ebay.com/sell/fulfillment/v1/order?limit=50&offset=150"},
        limit=50,
        offset=100,
    )
    assert page.next_cursor == OffsetCursor(150)

    assert parse_orders_response({"orders": []}, limit=50, offset=0).next_cursor is None


def test_creation_date_filter_bounds():
    start = datetime(2025, 1, 1, tzinfo=timezone.utc)

    assert build_creation_date_filter(None, None) is None
    assert build_creation_date_filter(start, None) == "creationdate:[2025-01-01T00:00:00.000Z..]"
    assert build_creation_date_filter(None, start) == "creationdate:[..2024-12-31T23:59:59.999Z]"
