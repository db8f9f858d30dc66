from __future__ import annotations

import secrets
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Sequence

from resale_sync.errors import InvalidOAuthStateError
from resale_sync.services.ebay_client.base import now_utc
from resale_sync.utils.logger import logger


@dataclass
class OAuthStateEntry:
    state: str
    principal_id: str
    scopes: List[str] = field(default_factory=list)
    created_at: Optional[datetime] = None


class OAuthStateStore:
    """In-process anti-forgery tokens for the OAuth consent round trip.

    A state is issued on ``/ebay/auth/start`` and consumed exactly once on the
    callback. Entries older than ``ttl_seconds`` are evicted on every access.
    """

    def __init__(self, ttl_seconds: int = 600, clock: Callable[[], datetime] = now_utc):
        self.ttl = timedelta(seconds=ttl_seconds)
        self.clock = clock
        self._entries: Dict[str, OAuthStateEntry] = {}
        self._lock = threading.Lock()

    def _evict_expired(self, now: datetime) -> None:
        expired = [key for key, entry in self._entries.items() if now - entry.created_at >= self.ttl]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug(f"Evicted {len(expired)} expired OAuth state(s)")

    def issue(self, principal_id: str, scopes: Optional[Sequence[str]] = None) -> str:
        if not principal_id:
            raise ValueError("principal_id is required")
        now = self.clock()
        state = secrets.token_urlsafe(32)
        with self._lock:
            self._evict_expired(now)
            self._entries[state] = OAuthStateEntry(
                state=state,
                principal_id=principal_id,
                scopes=list(scopes or []),
                created_at=now,
            )
        return state

    def consume(self, state: Optional[str]) -> OAuthStateEntry:
        if not state:
            raise InvalidOAuthStateError("missing state")
        with self._lock:
            self._evict_expired(self.clock())
            entry = self._entries.pop(state, None)
        if entry is None:
            logger.warning("Rejected OAuth callback with unknown, expired or reused state")
            raise InvalidOAuthStateError()
        return entry

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
