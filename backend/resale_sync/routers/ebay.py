from fastapi import APIRouter, Depends, Query

from resale_sync.models.marketplace import (
    EbayAuthCallbackResponse,
    EbayAuthStartRequest,
    EbayAuthStartResponse,
)
from resale_sync.dependencies import (
    get_credential_manager,
    get_marketplace_client,
    get_oauth_state_store,
)
from resale_sync.services.credential_manager import CredentialManager
from resale_sync.services.ebay_client import EbayClient
from resale_sync.services.oauth_state import OAuthStateStore
from resale_sync.utils.logger import logger

router = APIRouter(prefix="/ebay", tags=["ebay"])


@router.post("/auth/start", response_model=EbayAuthStartResponse)
async def start_ebay_auth(
    auth_request: EbayAuthStartRequest,
    client: EbayClient = Depends(get_marketplace_client),
    states: OAuthStateStore = Depends(get_oauth_state_store),
):
    """Start the eBay consent flow for a principal.

    Returns the URL to send the principal to and the anti-forgery ``state``
    that the callback must echo back.
    """
    scopes = client.resolve_scopes(auth_request.scopes)
    state = states.issue(auth_request.principal_id, scopes)
    authorization_url = client.build_authorize_url(scopes, state)
    logger.info(f"Starting eBay OAuth for principal: {auth_request.principal_id} ({len(scopes)} scopes)")
    return EbayAuthStartResponse(authorization_url=authorization_url, state=state)


@router.get("/auth/callback", response_model=EbayAuthCallbackResponse)
async def ebay_auth_callback(
    code: str = Query(..., min_length=1),
    state: str = Query(..., min_length=1),
    states: OAuthStateStore = Depends(get_oauth_state_store),
    credentials: CredentialManager = Depends(get_credential_manager),
):
    entry = states.consume(state)
    credential = await credentials.complete_authorization(entry.principal_id, code, entry.scopes)
    return EbayAuthCallbackResponse(
        principal_id=credential.principal_id,
        external_user_id=credential.external_user_id,
        expires_at=credential.access_token_expires_at,
        scopes=credential.scopes,
    )
