"""Per-principal access token lifecycle.

``ensure_fresh_access_token`` is the single code path every caller uses to get
a usable eBay access token:

1. Reuse the stored token while it has more than the refresh threshold left.
2. Otherwise refresh with the stored refresh token and persist the result.
3. Surface clear, typed errors (no credential / re-auth required / refresh
   failed) that the HTTP layer can map to a status code.

Tokens are never logged in clear text.
"""

from __future__ import annotations

import asyncio
import hashlib
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Sequence

from resale_sync.errors import NoCredentialError, PersistenceError, ReauthRequiredError
from resale_sync.services.ebay_client.base import EbayClient, now_utc
from resale_sync.services.order_store import OrderStore, StoredCredential
from resale_sync.utils.logger import logger


# How many seconds before expiry we should consider refreshing
TOKEN_REFRESH_THRESHOLD_SECONDS = 60


def _token_hash(token: Optional[str]) -> str:
    if not token:
        return "none"
    return hashlib.sha256(token.encode("utf-8")).hexdigest()[:12]


class CredentialManager:
    def __init__(
        self,
        store: OrderStore,
        client: EbayClient,
        *,
        refresh_threshold_seconds: int = TOKEN_REFRESH_THRESHOLD_SECONDS,
        clock: Callable[[], datetime] = now_utc,
    ):
        self.store = store
        self.client = client
        self.refresh_threshold = timedelta(seconds=refresh_threshold_seconds)
        self.clock = clock
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, principal_id: str) -> asyncio.Lock:
        lock = self._locks.get(principal_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[principal_id] = lock
        return lock

    def needs_refresh(self, credential: StoredCredential, now: datetime) -> bool:
        """True when the token is missing, has no expiry, or expires within the threshold."""
        if not credential.access_token or credential.access_token_expires_at is None:
            return True
        return credential.access_token_expires_at - now <= self.refresh_threshold

    async def ensure_fresh_access_token(self, principal_id: str) -> str:
        if not principal_id:
            raise ValueError("principal_id is required")

        async with self._lock_for(principal_id):
            credential = self.store.get_credential(principal_id)
            if credential is None:
                raise NoCredentialError(principal_id)

            now = self.clock()
            if not self.needs_refresh(credential, now):
                return credential.access_token

            if not credential.refresh_token:
                raise ReauthRequiredError(principal_id)

            logger.info(
                f"Refreshing access token for principal={principal_id} "
                f"expires_at={credential.access_token_expires_at} "
                f"old_hash={_token_hash(credential.access_token)}"
            )
            refreshed = await self.client.refresh_access_token(
                credential.refresh_token,
                credential.scopes or None,
            )

            try:
                self.store.update_access_token(
                    principal_id,
                    refreshed.access_token,
                    refreshed.access_token_expires_at,
                    self.clock(),
                )
            except PersistenceError as e:
                # The refreshed token is valid regardless; the next call refreshes again.
                logger.warning(f"Could not persist refreshed token for principal={principal_id}: {e.message}")

            logger.info(
                f"Access token refreshed for principal={principal_id} "
                f"new_hash={_token_hash(refreshed.access_token)} "
                f"expires_at={refreshed.access_token_expires_at}"
            )
            return refreshed.access_token

    async def complete_authorization(
        self,
        principal_id: str,
        code: str,
        scopes: Optional[Sequence[str]] = None,
    ) -> StoredCredential:
        """Exchange a consent code and store the resulting credential."""

        if not principal_id:
            raise ValueError("principal_id is required")

        granted_scopes: List[str] = self.client.resolve_scopes(scopes)
        async with self._lock_for(principal_id):
            grant = await self.client.exchange_authorization_code(code)
            credential = self.store.save_authorization(principal_id, grant, granted_scopes, self.clock())

        logger.info(
            f"Authorization complete for principal={principal_id} "
            f"external_user_id={credential.external_user_id} expires_at={credential.access_token_expires_at}"
        )
        return credential
