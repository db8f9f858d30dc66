from datetime import datetime
from typing import Callable

from resale_sync.config import Settings
from resale_sync.errors import MarketplaceConfigError
from resale_sync.services.ebay_client.base import (
    EbayClient,
    OrdersPage,
    OrdersPageRequest,
    RefreshedToken,
    TokenGrant,
    now_utc,
)
from resale_sync.services.ebay_client.fixture import FixtureEbayClient
from resale_sync.services.ebay_client.live import LiveEbayClient
from resale_sync.utils.logger import logger


def create_ebay_client(settings: Settings, clock: Callable[[], datetime] = now_utc) -> EbayClient:
    """Build the client selected by ``MARKETPLACE_CLIENT`` (``fixture`` or ``live``)."""

    kind = (settings.MARKETPLACE_CLIENT or "").strip().lower()
    if kind == "fixture":
        logger.info("Using fixture eBay client (no network access)")
        return FixtureEbayClient(
            authorize_base_url=settings.FIXTURE_AUTHORIZE_URL,
            client_id=settings.ebay_client_id,
            redirect_uri=settings.ebay_runame,
            default_scopes=settings.oauth_scopes,
            clock=clock,
        )
    if kind == "live":
        logger.info(f"Using live eBay client ({settings.EBAY_ENVIRONMENT})")
        return LiveEbayClient(
            client_id=settings.ebay_client_id,
            cert_id=settings.ebay_cert_id,
            runame=settings.ebay_runame,
            api_base_url=settings.ebay_api_base_url,
            auth_base_url=settings.ebay_auth_base_url,
            default_scopes=settings.oauth_scopes,
            marketplace_id=settings.EBAY_MARKETPLACE_ID,
            timeout_seconds=settings.HTTP_TIMEOUT_SECONDS,
            retry_delay_seconds=settings.FETCH_RETRY_DELAY_SECONDS,
            clock=clock,
        )
    raise MarketplaceConfigError(f"Unknown MARKETPLACE_CLIENT {settings.MARKETPLACE_CLIENT!r}; expected 'fixture' or 'live'")


__all__ = [
    "EbayClient",
    "FixtureEbayClient",
    "LiveEbayClient",
    "OrdersPage",
    "OrdersPageRequest",
    "RefreshedToken",
    "TokenGrant",
    "create_ebay_client",
]
