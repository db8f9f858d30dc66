"""Marketplace client capability shared by the fixture and live variants."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence
from urllib.parse import quote, urlencode

from resale_sync.services.pagination import Cursor
from resale_sync.utils.logger import ebay_logger


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class TokenGrant:
    """Result of an authorization-code exchange."""

    access_token: str
    refresh_token: Optional[str]
    access_token_expires_at: datetime
    external_user_id: Optional[str] = None


@dataclass
class RefreshedToken:
    access_token: str
    access_token_expires_at: datetime


@dataclass
class OrdersPageRequest:
    access_token: str
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None
    cursor: Optional[Cursor] = None
    page_size: int = 50


@dataclass
class OrdersPage:
    orders: List[Dict[str, Any]] = field(default_factory=list)
    next_cursor: Optional[Cursor] = None
    total: Optional[int] = None


def expiry_from_expires_in(expires_in: Any, now: datetime) -> datetime:
    """Compute an absolute expiry; ``None`` defaults to 3000s, <= 0 is rejected."""

    if expires_in is None:
        expires_in = 3000
    seconds = int(expires_in)
    if seconds <= 0:
        raise ValueError(f"expires_in must be positive, got {expires_in!r}")
    return now + timedelta(seconds=seconds)


class EbayClient(ABC):
    """Abstract eBay capability used by the credential manager and sync engine.

    Implementations must be safe to call from a single event loop; they hold no
    per-principal state.
    """

    #: tag stored on every RawPayload row produced from this client's pages
    payload_source: str = "ebay.getOrders"

    def __init__(
        self,
        *,
        default_scopes: Sequence[str],
        clock: Callable[[], datetime] = now_utc,
    ):
        self.default_scopes = list(default_scopes)
        self.clock = clock

    def resolve_scopes(self, scopes: Optional[Sequence[str]]) -> List[str]:
        cleaned = [s.strip() for s in (scopes or []) if s and s.strip()]
        return cleaned or list(self.default_scopes)

    def _compose_authorize_url(self, base_url: str, params: Dict[str, Any]) -> str:
        # eBay rejects "+" as scope delimiter; force %20.
        query = urlencode({k: v for k, v in params.items() if v is not None}, quote_via=quote)
        auth_url = f"{base_url}?{query}"
        ebay_logger.log_ebay_event(
            "authorization_url_generated",
            f"Generated authorization URL ({type(self).__name__})",
            request_data={
                "redirect_uri": params.get("redirect_uri"),
                "scopes": params.get("scope"),
                "state": params.get("state"),
            },
            status="success",
        )
        return auth_url

    @abstractmethod
    def build_authorize_url(self, scopes: Optional[Sequence[str]], state: str) -> str:
        """Consent URL the principal is redirected to. No network."""

    @abstractmethod
    async def exchange_authorization_code(self, code: str) -> TokenGrant:
        """Exchange a consent ``code``; raises ``AuthExchangeError``."""

    @abstractmethod
    async def refresh_access_token(
        self, refresh_token: str, scopes: Optional[Sequence[str]] = None
    ) -> RefreshedToken:
        """Mint a new access token; raises ``TokenRefreshError``."""

    @abstractmethod
    async def fetch_orders_page(self, request: OrdersPageRequest) -> OrdersPage:
        """Fetch one page of orders; raises Transient/PermanentFetchError."""
