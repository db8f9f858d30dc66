"""eBay OAuth + Fulfillment ``getOrders`` client over httpx."""

from __future__ import annotations

import asyncio
import base64
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Sequence, Type
from urllib.parse import parse_qs, urlparse

import httpx
from pydantic import ValidationError

from resale_sync.errors import (
    AuthExchangeError,
    MarketplaceConfigError,
    MarketplaceHTTPError,
    PermanentFetchError,
    TokenRefreshError,
    TransientFetchError,
)
from resale_sync.models.marketplace import EbayTokenResponse
from resale_sync.services.ebay_client.base import (
    EbayClient,
    OrdersPage,
    OrdersPageRequest,
    RefreshedToken,
    TokenGrant,
    expiry_from_expires_in,
    now_utc,
)
from resale_sync.services.pagination import OffsetCursor
from resale_sync.utils.logger import ebay_logger, logger


def _is_transient_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


def _format_filter_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def build_creation_date_filter(created_from: Optional[datetime], created_to: Optional[datetime]) -> Optional[str]:
    """``creationdate:[from..to]`` filter; eBay's range is inclusive, so the
    exclusive upper bound is sent as ``to - 1ms``."""

    if created_from is None and created_to is None:
        return None
    lower = _format_filter_timestamp(created_from) if created_from else ""
    upper = _format_filter_timestamp(created_to - timedelta(milliseconds=1)) if created_to else ""
    return f"creationdate:[{lower}..{upper}]"


def parse_orders_response(payload: Dict[str, Any], limit: int, offset: int) -> OrdersPage:
    orders = payload.get("orders")
    if not isinstance(orders, list):
        orders = []

    total = payload.get("total")
    if isinstance(total, bool) or not isinstance(total, int):
        total = None

    next_cursor = None
    if total is not None:
        next_offset = offset + limit
        if next_offset < total:
            next_cursor = OffsetCursor(next_offset)
    elif isinstance(payload.get("next"), str):
        # Fallback: read the offset param of the "next" link
        values = parse_qs(urlparse(payload["next"]).query).get("offset")
        if values:
            try:
                next_cursor = OffsetCursor(int(values[0]))
            except ValueError:
                logger.warning(f"Ignoring unparseable next link: {payload['next']}")

    return OrdersPage(orders=orders, next_cursor=next_cursor, total=total)


def _response_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


class LiveEbayClient(EbayClient):
    payload_source = "ebay.getOrders"

    def __init__(
        self,
        *,
        client_id: Optional[str],
        cert_id: Optional[str],
        runame: Optional[str],
        api_base_url: str,
        auth_base_url: str,
        default_scopes: Sequence[str],
        marketplace_id: str = "EBAY_US",
        timeout_seconds: float = 30.0,
        retry_delay_seconds: float = 0.5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], datetime] = now_utc,
    ):
        super().__init__(default_scopes=default_scopes, clock=clock)
        self.client_id = client_id
        self.cert_id = cert_id
        self.runame = runame
        self.api_base_url = api_base_url.rstrip("/")
        self.auth_base_url = auth_base_url.rstrip("/")
        self.marketplace_id = marketplace_id
        self.timeout_seconds = timeout_seconds
        self.retry_delay_seconds = retry_delay_seconds
        self.transport = transport

    @property
    def authorize_url(self) -> str:
        return f"{self.auth_base_url}/oauth2/authorize"

    @property
    def token_url(self) -> str:
        return f"{self.api_base_url}/identity/v1/oauth2/token"

    @property
    def orders_url(self) -> str:
        return f"{self.api_base_url}/sell/fulfillment/v1/order"

    def _http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport, timeout=self.timeout_seconds)

    def _require_app_credentials(self, event_type: str) -> None:
        missing = [
            name for name, value in (
                ("client_id", self.client_id),
                ("cert_id", self.cert_id),
                ("runame", self.runame),
            )
            if not value
        ]
        if missing:
            ebay_logger.log_ebay_event(
                event_type,
                "eBay credentials not configured",
                status="error",
                error=f"missing: {', '.join(missing)}",
            )
            raise MarketplaceConfigError(f"eBay credentials not configured (missing {', '.join(missing)})")

    def build_authorize_url(self, scopes: Optional[Sequence[str]], state: str) -> str:
        if not self.client_id or not self.runame:
            ebay_logger.log_ebay_event(
                "authorization_url_error",
                "eBay Client ID or RuName not configured",
                status="error",
            )
            raise MarketplaceConfigError("eBay Client ID / RuName not configured")

        return self._compose_authorize_url(
            self.authorize_url,
            {
                "client_id": self.client_id,
                "redirect_uri": self.runame,
                "response_type": "code",
                "scope": " ".join(self.resolve_scopes(scopes)),
                "state": state,
            },
        )

    async def _token_request(
        self,
        data: Dict[str, str],
        error_cls: Type[MarketplaceHTTPError],
        event_prefix: str,
    ) -> EbayTokenResponse:
        self._require_app_credentials(f"{event_prefix}_error")

        encoded_credentials = base64.b64encode(f"{self.client_id}:{self.cert_id}".encode()).decode()
        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
            "Authorization": f"Basic {encoded_credentials}",
        }

        ebay_logger.log_ebay_event(
            f"{event_prefix}_request",
            f"POST {self.token_url} grant_type={data.get('grant_type')}",
            request_data=data,
        )

        try:
            async with self._http_client() as client:
                response = await client.post(self.token_url, headers=headers, data=data)
        except httpx.RequestError as e:
            error_msg = f"HTTP request failed: {str(e)}"
            ebay_logger.log_ebay_event(
                f"{event_prefix}_error",
                "HTTP request error on token endpoint",
                status="error",
                error=error_msg,
            )
            logger.error(error_msg)
            raise error_cls(error_msg)

        body = _response_body(response)
        ebay_logger.log_ebay_event(
            f"{event_prefix}_response",
            f"Token endpoint answered {response.status_code}",
            response_data={"status_code": response.status_code, "response_body": body},
            status="success" if response.status_code == 200 else "error",
        )

        if response.status_code != 200:
            raise error_cls("eBay token endpoint rejected the request", status_code=response.status_code, body=body)
        if not isinstance(body, dict):
            raise error_cls("eBay token endpoint returned a non-JSON body", status_code=response.status_code, body=body)

        try:
            token = EbayTokenResponse(**body)
        except ValidationError as e:
            raise error_cls(f"Malformed token response: {e.errors()}", status_code=response.status_code)
        if token.expires_in is not None and token.expires_in <= 0:
            raise error_cls(f"Non-positive expires_in {token.expires_in}", status_code=response.status_code)
        return token

    async def exchange_authorization_code(self, code: str) -> TokenGrant:
        token = await self._token_request(
            {"grant_type": "authorization_code", "code": code, "redirect_uri": self.runame or ""},
            AuthExchangeError,
            "token_exchange",
        )
        logger.info("Successfully exchanged authorization code for eBay access token")
        return TokenGrant(
            access_token=token.access_token,
            refresh_token=token.refresh_token,
            access_token_expires_at=expiry_from_expires_in(token.expires_in, self.clock()),
            # getOrders does not need the seller id; resolving it takes an Identity API call.
            external_user_id=None,
        )

    async def refresh_access_token(
        self, refresh_token: str, scopes: Optional[Sequence[str]] = None
    ) -> RefreshedToken:
        if not refresh_token:
            raise TokenRefreshError("Refresh token is required")
        token = await self._token_request(
            {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "scope": " ".join(self.resolve_scopes(scopes)),
            },
            TokenRefreshError,
            "token_refresh",
        )
        logger.info("Refreshed eBay access token")
        return RefreshedToken(
            access_token=token.access_token,
            access_token_expires_at=expiry_from_expires_in(token.expires_in, self.clock()),
        )

    async def _get_with_retry(self, url: str, headers: Dict[str, str], params: Dict[str, Any]) -> httpx.Response:
        """GET with exactly one retry on 429/5xx/transport failure."""

        for attempt in (1, 2):
            try:
                async with self._http_client() as client:
                    response = await client.get(url, headers=headers, params=params)
            except httpx.RequestError as e:
                error_msg = f"HTTP request failed: {str(e)}"
                if attempt == 1:
                    logger.warning(f"getOrders transport error, retrying in {self.retry_delay_seconds}s: {error_msg}")
                    await asyncio.sleep(self.retry_delay_seconds)
                    continue
                ebay_logger.log_ebay_event("fetch_orders_error", "HTTP request error during orders fetch", status="error", error=error_msg)
                raise TransientFetchError(error_msg)

            if _is_transient_status(response.status_code):
                if attempt == 1:
                    logger.warning(f"getOrders returned {response.status_code}, retrying in {self.retry_delay_seconds}s")
                    await asyncio.sleep(self.retry_delay_seconds)
                    continue
                body = _response_body(response)
                ebay_logger.log_ebay_event(
                    "fetch_orders_failed",
                    f"Failed to fetch orders after retry: {response.status_code}",
                    response_data={"error": body},
                    status="error",
                )
                raise TransientFetchError("getOrders retry failed", status_code=response.status_code, body=body)

            if not response.is_success:
                body = _response_body(response)
                ebay_logger.log_ebay_event(
                    "fetch_orders_failed",
                    f"Failed to fetch orders: {response.status_code}",
                    response_data={"error": body},
                    status="error",
                )
                raise PermanentFetchError("getOrders failed", status_code=response.status_code, body=body)

            return response

        raise AssertionError("unreachable")

    async def fetch_orders_page(self, request: OrdersPageRequest) -> OrdersPage:
        cursor = request.cursor
        if cursor is not None and not isinstance(cursor, OffsetCursor):
            raise ValueError(f"LiveEbayClient pages with OffsetCursor, got {type(cursor).__name__}")
        if not request.access_token:
            raise PermanentFetchError("getOrders requires an access token", status_code=401)

        offset = cursor.offset if cursor is not None else 0
        params: Dict[str, Any] = {
            "limit": request.page_size,
            "offset": offset,
            "fieldGroups": "TAX_BREAKDOWN",
        }
        creation_filter = build_creation_date_filter(request.created_from, request.created_to)
        if creation_filter:
            params["filter"] = creation_filter

        headers = {
            "Authorization": f"Bearer {request.access_token}",
            "Accept": "application/json",
            "Content-Type": "application/json",
            "X-EBAY-C-MARKETPLACE-ID": self.marketplace_id,
        }

        ebay_logger.log_ebay_event(
            "fetch_orders_request",
            f"Fetching orders from eBay ({self.api_base_url})",
            request_data={"api_url": self.orders_url, "params": params},
        )

        response = await self._get_with_retry(self.orders_url, headers, params)

        try:
            payload = response.json()
        except ValueError:
            raise PermanentFetchError("getOrders returned a non-JSON body", status_code=response.status_code, body=response.text)
        if not isinstance(payload, dict):
            raise PermanentFetchError("getOrders returned an unexpected body", status_code=response.status_code, body=payload)

        page = parse_orders_response(payload, request.page_size, offset)
        ebay_logger.log_ebay_event(
            "fetch_orders_success",
            f"Fetched {len(page.orders)} orders (total={page.total})",
            response_data={"total_orders": page.total, "orders_count": len(page.orders)},
            status="success",
        )
        return page
