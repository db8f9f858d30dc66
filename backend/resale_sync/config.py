from pydantic_settings import BaseSettings
from typing import List, Optional
import os
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    SECRET_KEY: str = "your-secret-key-change-in-production"
    DEBUG: bool = False

    # DATABASE_URL should point at Postgres in production. The local SQLite
    # file is only meant for development and the fixture client.
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./resale_sync.db")

    # "fixture" serves the built-in two-order dataset without any network
    # access; "live" talks to the real eBay OAuth + Fulfillment endpoints.
    MARKETPLACE_CLIENT: str = "fixture"

    EBAY_ENVIRONMENT: str = "sandbox"

    EBAY_SANDBOX_CLIENT_ID: Optional[str] = None
    EBAY_SANDBOX_CERT_ID: Optional[str] = None
    EBAY_SANDBOX_RUNAME: Optional[str] = None

    EBAY_PRODUCTION_CLIENT_ID: Optional[str] = None
    EBAY_PRODUCTION_CERT_ID: Optional[str] = None
    EBAY_PRODUCTION_RUNAME: Optional[str] = None

    # Space-separated list of scopes requested on consent and refresh.
    EBAY_OAUTH_SCOPES: str = "https://api.ebay.com/oauth/api_scope/sell.fulfillment.readonly"
    EBAY_MARKETPLACE_ID: str = "EBAY_US"

    FIXTURE_AUTHORIZE_URL: str = "http://localhost:8000/mock/ebay/authorize"

    ORDERS_PAGE_LIMIT: int = 50
    SYNC_DEFAULT_WINDOW_DAYS: int = 90
    # Safety limit to prevent infinite pagination loops
    SYNC_MAX_PAGES: int = 200
    # A running sync without heartbeat for this long no longer blocks new runs
    SYNC_RUN_STALE_MINUTES: int = 10

    TOKEN_REFRESH_THRESHOLD_SECONDS: int = 60
    FETCH_RETRY_DELAY_SECONDS: float = 0.5
    HTTP_TIMEOUT_SECONDS: float = 30.0
    OAUTH_STATE_TTL_SECONDS: int = 600

    ALLOWED_ORIGINS: str = "http://localhost:5173,http://localhost:3000"

    class Config:
        env_file = None
        env_file_encoding = "utf-8"
        extra = "ignore"

    @property
    def secret_key(self) -> str:
        return self.SECRET_KEY

    @property
    def ebay_client_id(self) -> Optional[str]:
        if self.EBAY_ENVIRONMENT == "sandbox":
            return self.EBAY_SANDBOX_CLIENT_ID
        return self.EBAY_PRODUCTION_CLIENT_ID

    @property
    def ebay_cert_id(self) -> Optional[str]:
        if self.EBAY_ENVIRONMENT == "sandbox":
            return self.EBAY_SANDBOX_CERT_ID
        return self.EBAY_PRODUCTION_CERT_ID

    @property
    def ebay_runame(self) -> Optional[str]:
        if self.EBAY_ENVIRONMENT == "sandbox":
            return self.EBAY_SANDBOX_RUNAME
        return self.EBAY_PRODUCTION_RUNAME

    @property
    def ebay_api_base_url(self) -> str:
        if self.EBAY_ENVIRONMENT == "sandbox":
            return "https://api.sandbox.ebay.com"
        return "https://api.ebay.com"

    @property
    def ebay_auth_base_url(self) -> str:
        if self.EBAY_ENVIRONMENT == "sandbox":
            return "https://auth.sandbox.ebay.com"
        return "https://auth.ebay.com"

    @property
    def oauth_scopes(self) -> List[str]:
        return [s for s in self.EBAY_OAUTH_SCOPES.split() if s]


settings = Settings()
