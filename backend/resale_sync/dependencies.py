"""Process-wide service instances for the HTTP layer.

Each getter builds its object once and is used as a FastAPI dependency, so
tests can swap any of them via ``app.dependency_overrides``.
"""

from functools import lru_cache

from resale_sync.config import settings
from resale_sync.models_sqlalchemy import SessionLocal
from resale_sync.services.credential_manager import CredentialManager
from resale_sync.services.ebay_client import EbayClient, create_ebay_client
from resale_sync.services.oauth_state import OAuthStateStore
from resale_sync.services.order_store import OrderStore
from resale_sync.services.sync_engine import SyncEngine
from resale_sync.services.sync_runs import SyncRunRegistry


@lru_cache()
def get_order_store() -> OrderStore:
    return OrderStore(SessionLocal)


@lru_cache()
def get_marketplace_client() -> EbayClient:
    return create_ebay_client(settings)


@lru_cache()
def get_credential_manager() -> CredentialManager:
    return CredentialManager(
        get_order_store(),
        get_marketplace_client(),
        refresh_threshold_seconds=settings.TOKEN_REFRESH_THRESHOLD_SECONDS,
    )


@lru_cache()
def get_sync_run_registry() -> SyncRunRegistry:
    return SyncRunRegistry(get_order_store(), stale_minutes=settings.SYNC_RUN_STALE_MINUTES)


@lru_cache()
def get_sync_engine() -> SyncEngine:
    return SyncEngine(
        client=get_marketplace_client(),
        credentials=get_credential_manager(),
        store=get_order_store(),
        runs=get_sync_run_registry(),
        page_size=settings.ORDERS_PAGE_LIMIT,
        max_pages=settings.SYNC_MAX_PAGES,
        default_window_days=settings.SYNC_DEFAULT_WINDOW_DAYS,
    )


@lru_cache()
def get_oauth_state_store() -> OAuthStateStore:
    return OAuthStateStore(ttl_seconds=settings.OAUTH_STATE_TTL_SECONDS)
