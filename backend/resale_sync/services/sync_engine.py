from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, Set

from resale_sync.errors import PermanentFetchError, SyncCancelledError
from resale_sync.services.credential_manager import CredentialManager
from resale_sync.services.ebay_client.base import EbayClient, OrdersPageRequest, now_utc
from resale_sync.services.order_mapper import map_order
from resale_sync.services.order_store import OrderStore, PersistOrderOutcome
from resale_sync.services.pagination import Cursor, describe_cursor
from resale_sync.services.sync_runs import SyncRunRegistry
from resale_sync.utils.logger import logger


ORDERS_PAGE_LIMIT = 50
MAX_PAGES = 200  # Safety limit to prevent infinite loops


@dataclass
class SyncResult:
    run_id: str
    principal_id: str
    window_from: datetime
    window_to: datetime
    orders_processed: int = 0
    lines_processed: int = 0
    orders_created: int = 0
    orders_updated: int = 0
    lines_created: int = 0
    lines_updated: int = 0
    lines_matched: int = 0
    orders_skipped: int = 0
    pages_fetched: int = 0

    def record(self, outcome: PersistOrderOutcome) -> None:
        self.orders_processed += 1
        if outcome.order_created:
            self.orders_created += 1
        else:
            self.orders_updated += 1
        self.lines_created += outcome.lines_created
        self.lines_updated += outcome.lines_updated
        self.lines_processed += outcome.lines_created + outcome.lines_updated
        self.lines_matched += outcome.lines_matched

    def summary(self) -> Dict[str, Any]:
        data = asdict(self)
        data["window_from"] = self.window_from.isoformat()
        data["window_to"] = self.window_to.isoformat()
        return data


class SyncEngine:
    """Pulls a window of orders page by page and upserts them locally.

    One run is a straight sequence of awaited steps: check cancellation, get a
    fresh token, fetch a page, then map and persist each order of that page.
    The first error aborts the run; orders committed before it stay.
    """

    def __init__(
        self,
        *,
        client: EbayClient,
        credentials: CredentialManager,
        store: OrderStore,
        runs: SyncRunRegistry,
        page_size: int = ORDERS_PAGE_LIMIT,
        max_pages: int = MAX_PAGES,
        default_window_days: int = 90,
        clock: Callable[[], datetime] = now_utc,
    ):
        if page_size < 1:
            raise ValueError("page_size must be >= 1")
        self.client = client
        self.credentials = credentials
        self.store = store
        self.runs = runs
        self.page_size = page_size
        self.max_pages = max_pages
        self.default_window_days = default_window_days
        self.clock = clock

    def cancel_run(self, run_id: str) -> bool:
        return self.runs.cancel_run(run_id)

    async def synchronize(self, principal_id: str, window_days: Optional[int] = None) -> SyncResult:
        if not principal_id:
            raise ValueError("principal_id is required")
        if window_days is None:
            window_days = self.default_window_days
        if isinstance(window_days, bool) or not isinstance(window_days, int) or window_days < 1:
            raise ValueError(f"window_days must be an integer >= 1, got {window_days!r}")

        window_to = self.clock()
        window_from = window_to - timedelta(days=window_days)

        run = self.runs.begin(principal_id, window_from=window_from, window_to=window_to)
        result = SyncResult(
            run_id=run.id,
            principal_id=principal_id,
            window_from=window_from,
            window_to=window_to,
        )
        logger.info(
            f"Starting orders sync run_id={run.id} principal={principal_id} "
            f"window={window_from.isoformat()}..{window_to.isoformat()}"
        )

        try:
            await self._run_pages(principal_id, run.id, result)
        except asyncio.CancelledError:
            self.runs.fail(run, SyncCancelledError(run.id), result.summary())
            raise
        except Exception as exc:
            self.runs.fail(run, exc, result.summary())
            raise

        self.runs.complete(run, result.summary())
        logger.info(
            f"Orders sync completed run_id={run.id}: {result.orders_processed} orders "
            f"({result.orders_created} new), {result.lines_processed} lines "
            f"({result.lines_matched} matched), {result.pages_fetched} pages"
        )
        return result

    async def _run_pages(self, principal_id: str, run_id: str, result: SyncResult) -> None:
        cursor: Optional[Cursor] = None
        seen_cursors: Set[Cursor] = set()

        while True:
            if self.runs.is_cancelled(run_id):
                logger.info(f"Orders sync cancelled run_id={run_id} before {describe_cursor(cursor)}")
                raise SyncCancelledError(run_id)
            if result.pages_fetched >= self.max_pages:
                raise PermanentFetchError(f"Pagination exceeded {self.max_pages} pages")

            access_token = await self.credentials.ensure_fresh_access_token(principal_id)
            page = await self.client.fetch_orders_page(
                OrdersPageRequest(
                    access_token=access_token,
                    created_from=result.window_from,
                    created_to=result.window_to,
                    cursor=cursor,
                    page_size=self.page_size,
                )
            )
            result.pages_fetched += 1
            logger.info(
                f"Orders page {result.pages_fetched} ({describe_cursor(cursor)}): "
                f"{len(page.orders)} orders"
            )

            for raw_order in page.orders:
                mapped = map_order(raw_order)
                if not mapped.order.ebay_order_id:
                    logger.warning("Skipping order without orderId")
                    result.orders_skipped += 1
                    continue
                outcome = self.store.persist_order(
                    principal_id,
                    self.client.payload_source,
                    raw_order,
                    mapped,
                    self.clock(),
                )
                result.record(outcome)

            self.runs.heartbeat(run_id, result.summary())

            next_cursor = page.next_cursor
            if next_cursor is None:
                return
            if next_cursor in seen_cursors:
                raise PermanentFetchError(f"Pagination cursor did not advance ({describe_cursor(next_cursor)})")
            seen_cursors.add(next_cursor)
            cursor = next_cursor
