from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime


class EbayTokenResponse(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    # None falls back to 3000s when the expiry is computed
    expires_in: Optional[int] = None
    token_type: Optional[str] = None
    refresh_token_expires_in: Optional[int] = None


class EbayAuthStartRequest(BaseModel):
    principal_id: str = Field(..., min_length=1)
    scopes: Optional[List[str]] = None


class EbayAuthStartResponse(BaseModel):
    authorization_url: str
    state: str


class EbayAuthCallbackResponse(BaseModel):
    principal_id: str
    external_user_id: Optional[str] = None
    expires_at: Optional[datetime] = None
    scopes: Optional[List[str]] = None


class SyncOrdersRequest(BaseModel):
    principal_id: str = Field(..., min_length=1)
    window_days: int = Field(90, ge=1)


class SyncOrdersResponse(BaseModel):
    run_id: str
    principal_id: str
    orders_processed: int
    lines_processed: int
    orders_created: int
    orders_updated: int
    lines_created: int
    lines_updated: int
    lines_matched: int
    orders_skipped: int
    pages_fetched: int
    window_from: datetime
    window_to: datetime


class SyncCancelResponse(BaseModel):
    run_id: str
    cancelled: bool
