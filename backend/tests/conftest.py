import os
from datetime import datetime, timedelta, timezone

# Must be set before resale_sync.config is imported anywhere.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("MARKETPLACE_CLIENT", "fixture")
os.environ.setdefault("SECRET_KEY", "test-secret-key")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from resale_sync.models_sqlalchemy import Base
from resale_sync.models_sqlalchemy import models  # noqa: F401 - registers tables
from resale_sync.services.credential_manager import CredentialManager
from resale_sync.services.ebay_client.base import TokenGrant
from resale_sync.services.ebay_client.fixture import FixtureEbayClient
from resale_sync.services.oauth_state import OAuthStateStore
from resale_sync.services.order_store import OrderStore
from resale_sync.services.sync_engine import SyncEngine
from resale_sync.services.sync_runs import SyncRunRegistry


# The fixture orders were created on 2025-08-31 and 2025-09-01; freezing "now"
# two weeks later keeps both inside the default 90-day window.
FROZEN_NOW = datetime(2025, 9, 15, 12, 0, 0, tzinfo=timezone.utc)
FULFILLMENT_SCOPE = "https://api.ebay.com/oauth/api_scope/sell.fulfillment.readonly"
PRINCIPAL = "principal-1"


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock(FROZEN_NOW)


@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def store(session_factory):
    return OrderStore(session_factory)


@pytest.fixture
def fixture_client(clock):
    return FixtureEbayClient(
        authorize_base_url="http://localhost:8000/mock/ebay/authorize",
        client_id="test-client-id",
        redirect_uri="Test-RuName",
        default_scopes=[FULFILLMENT_SCOPE],
        clock=clock,
    )


@pytest.fixture
def credentials(store, fixture_client, clock):
    return CredentialManager(store, fixture_client, clock=clock)


@pytest.fixture
def runs(store, clock):
    return SyncRunRegistry(store, clock=clock)


@pytest.fixture
def sync_engine(fixture_client, credentials, store, runs, clock):
    # page_size=1 forces one page per fixture order
    return SyncEngine(
        client=fixture_client,
        credentials=credentials,
        store=store,
        runs=runs,
        page_size=1,
        clock=clock,
    )


@pytest.fixture
def oauth_states(clock):
    return OAuthStateStore(ttl_seconds=600, clock=clock)


@pytest.fixture
def authorize(store, clock):
    """Store a credential for a principal, expiring ``expires_in`` seconds from now."""

    def _authorize(principal_id=PRINCIPAL, *, expires_in=3300, refresh_token="mock_refresh_token",
                   access_token="mock_access_token"):
        grant = TokenGrant(
            access_token=access_token,
            refresh_token=refresh_token,
            access_token_expires_at=clock() + timedelta(seconds=expires_in),
            external_user_id="mock_seller_123",
        )
        return store.save_authorization(principal_id, grant, [FULFILLMENT_SCOPE], clock())

    return _authorize
