"""Typed errors raised by the order sync pipeline.

Every error carries a machine-readable ``code`` and a ``retryable`` flag so the
HTTP layer and callers can branch on type instead of message text:

    ResaleSyncError
    +-- MarketplaceConfigError   credentials/RuName missing      not retryable
    +-- NoCredentialError        principal never authorized      not retryable
    +-- ReauthRequiredError      refresh token missing/revoked   not retryable
    +-- InvalidOAuthStateError   unknown/expired/reused state    not retryable
    +-- MarketplaceHTTPError     (status_code + body)
    |   +-- AuthExchangeError    code exchange failed            retryable
    |   +-- TokenRefreshError    refresh grant failed            retryable
    |   +-- TransientFetchError  429/5xx after one retry         retryable
    |   +-- PermanentFetchError  any other failure               not retryable
    +-- PersistenceError         storage failure                 retryable
    +-- SyncInProgressError      principal already syncing       retryable
    +-- SyncCancelledError       run cancelled between pages     retryable
"""

from typing import Any, Optional


class ResaleSyncError(Exception):
    code = "resale_sync_error"
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message, "retryable": self.retryable}


class MarketplaceConfigError(ResaleSyncError):
    code = "marketplace_config_error"


class NoCredentialError(ResaleSyncError):
    code = "no_credential"

    def __init__(self, principal_id: str):
        super().__init__(
            f"No marketplace credential for principal {principal_id!r}; "
            "complete the OAuth connect flow first"
        )
        self.principal_id = principal_id


class ReauthRequiredError(ResaleSyncError):
    code = "reauth_required"

    def __init__(self, principal_id: str, reason: str = "no refresh token stored"):
        super().__init__(f"Re-authorization required for principal {principal_id!r}: {reason}")
        self.principal_id = principal_id


class InvalidOAuthStateError(ResaleSyncError):
    code = "invalid_oauth_state"

    def __init__(self, reason: str = "unknown or expired state"):
        super().__init__(f"Invalid OAuth state: {reason}")


class MarketplaceHTTPError(ResaleSyncError):
    """Upstream failure; keeps the status and body for diagnosis."""

    code = "marketplace_http_error"

    def __init__(self, message: str, status_code: Optional[int] = None, body: Any = None):
        detail = message
        if status_code is not None:
            detail = f"{message} (status={status_code})"
        if body:
            detail = f"{detail}: {str(body)[:2000]}"
        super().__init__(detail)
        self.status_code = status_code
        self.body = body

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["upstream_status"] = self.status_code
        return data


class AuthExchangeError(MarketplaceHTTPError):
    code = "auth_exchange_failed"
    retryable = True


class TokenRefreshError(MarketplaceHTTPError):
    code = "token_refresh_failed"
    retryable = True


class TransientFetchError(MarketplaceHTTPError):
    code = "transient_fetch_failed"
    retryable = True


class PermanentFetchError(MarketplaceHTTPError):
    code = "permanent_fetch_failed"


class PersistenceError(ResaleSyncError):
    code = "persistence_failed"
    retryable = True


class SyncInProgressError(ResaleSyncError):
    code = "sync_in_progress"
    retryable = True

    def __init__(self, principal_id: str, run_id: Optional[str] = None):
        super().__init__(f"A sync is already running for principal {principal_id!r} (run_id={run_id})")
        self.principal_id = principal_id
        self.run_id = run_id


class SyncCancelledError(ResaleSyncError):
    code = "sync_cancelled"
    retryable = True

    def __init__(self, run_id: str):
        super().__init__(f"Sync run {run_id} was cancelled")
        self.run_id = run_id
