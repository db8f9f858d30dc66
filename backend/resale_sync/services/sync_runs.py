"""Bookkeeping for sync runs: at most one in flight per principal, plus
cooperative cancellation by run id.

The in-process registry rejects a concurrent request immediately; the
``sync_runs`` table (a fresh ``running`` row) covers other processes.
Cancellation is recorded both in memory and on the run row so a run started in
another worker also observes it on its next page boundary.
"""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Set

from resale_sync.errors import ResaleSyncError, SyncInProgressError
from resale_sync.models_sqlalchemy.models import SyncRunStatus
from resale_sync.services.ebay_client.base import now_utc
from resale_sync.services.order_store import OrderStore, SyncRunRecord
from resale_sync.utils.logger import logger


RUN_STALE_MINUTES = 10  # after this, running run without heartbeat is considered stale


class SyncRunRegistry:
    def __init__(
        self,
        store: OrderStore,
        *,
        stale_minutes: int = RUN_STALE_MINUTES,
        clock: Callable[[], datetime] = now_utc,
    ):
        self.store = store
        self.stale_minutes = stale_minutes
        self.clock = clock
        self._active_by_principal: Dict[str, str] = {}
        self._cancelled_run_ids: Set[str] = set()
        self._lock = threading.Lock()

    def begin(self, principal_id: str, *, window_from: datetime, window_to: datetime) -> SyncRunRecord:
        """Register a new run or raise :class:`SyncInProgressError`."""

        with self._lock:
            active_run_id = self._active_by_principal.get(principal_id)
            if active_run_id is not None:
                raise SyncInProgressError(principal_id, active_run_id or None)
            # Reserve the slot before touching the DB so a second caller in this
            # process cannot slip in between the check and the insert.
            self._active_by_principal[principal_id] = ""

        try:
            run, active = self.store.start_run(
                principal_id,
                window_from=window_from,
                window_to=window_to,
                now=self.clock(),
                stale_minutes=self.stale_minutes,
            )
        except BaseException:
            self._release(principal_id)
            raise

        if run is None:
            self._release(principal_id)
            raise SyncInProgressError(principal_id, active.id if active else None)

        with self._lock:
            self._active_by_principal[principal_id] = run.id
        return run

    def _release(self, principal_id: str) -> None:
        with self._lock:
            self._active_by_principal.pop(principal_id, None)

    def heartbeat(self, run_id: str, summary: Optional[Dict[str, Any]] = None) -> None:
        self.store.heartbeat_run(run_id, self.clock(), summary)

    def complete(self, run: SyncRunRecord, summary: Dict[str, Any]) -> None:
        try:
            self.store.finish_run(run.id, status=SyncRunStatus.completed, now=self.clock(), summary=summary)
        finally:
            self._finish(run)

    def fail(self, run: SyncRunRecord, error: BaseException, summary: Optional[Dict[str, Any]] = None) -> None:
        """Mark the run failed or cancelled; never masks the original error."""

        status = SyncRunStatus.failed
        code = error.code if isinstance(error, ResaleSyncError) else error.__class__.__name__
        if code == "sync_cancelled":
            status = SyncRunStatus.cancelled
        try:
            self.store.finish_run(
                run.id,
                status=status,
                now=self.clock(),
                summary=summary,
                error_code=code,
                error_message=str(error),
            )
        except ResaleSyncError as e:
            logger.error(f"Could not record {status.value} status for run id={run.id}: {e}")
        finally:
            self._finish(run)

    def _finish(self, run: SyncRunRecord) -> None:
        with self._lock:
            if self._active_by_principal.get(run.principal_id) == run.id:
                del self._active_by_principal[run.principal_id]
            self._cancelled_run_ids.discard(run.id)

    def cancel_run(self, run_id: str) -> bool:
        """Flag ``run_id`` for cancellation. Returns False if it is not running."""

        with self._lock:
            in_process = run_id in self._active_by_principal.values()
            if in_process:
                self._cancelled_run_ids.add(run_id)

        record = self.store.get_run(run_id)
        if record is None or record.status != SyncRunStatus.running.value:
            return in_process

        self.store.finish_run(
            run_id,
            status=SyncRunStatus.cancelled,
            now=self.clock(),
            error_code="sync_cancelled",
            error_message="cancel requested",
        )
        with self._lock:
            self._cancelled_run_ids.add(run_id)
        logger.info(f"Cancellation requested for sync run id={run_id}")
        return True

    def is_cancelled(self, run_id: str) -> bool:
        """Check if a sync run has been cancelled"""
        with self._lock:
            if run_id in self._cancelled_run_ids:
                return True
        record = self.store.get_run(run_id)
        if record is not None and record.status == SyncRunStatus.cancelled.value:
            with self._lock:
                self._cancelled_run_ids.add(run_id)
            return True
        return False
