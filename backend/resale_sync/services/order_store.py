"""SQLAlchemy-backed persistence for credentials, orders and sync runs.

Every public method opens its own short-lived session and either commits or
rolls back before returning. Any ``SQLAlchemyError`` is re-raised as
:class:`~resale_sync.errors.PersistenceError`, so callers never see driver
exceptions.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from resale_sync.errors import PersistenceError
from resale_sync.models_sqlalchemy.models import (
    InventoryItem,
    MarketplaceCredential,
    Order,
    OrderLine,
    RawPayload,
    SyncRun,
    SyncRunStatus,
)
from resale_sync.services.ebay_client.base import TokenGrant
from resale_sync.services.order_mapper import MappedOrderResult
from resale_sync.utils.logger import logger


def _to_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything we write is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass
class StoredCredential:
    principal_id: str
    access_token: Optional[str]
    refresh_token: Optional[str]
    access_token_expires_at: Optional[datetime]
    external_user_id: Optional[str] = None
    scopes: List[str] = field(default_factory=list)
    last_refreshed_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: MarketplaceCredential) -> "StoredCredential":
        return cls(
            principal_id=row.principal_id,
            access_token=row.access_token,
            refresh_token=row.refresh_token,
            access_token_expires_at=_to_utc(row.access_token_expires_at),
            external_user_id=row.external_user_id,
            scopes=list(row.scopes or []),
            last_refreshed_at=_to_utc(row.last_refreshed_at),
        )


@dataclass
class PersistOrderOutcome:
    order_id: int
    raw_payload_id: int
    order_created: bool
    lines_created: int = 0
    lines_updated: int = 0
    lines_matched: int = 0


@dataclass
class SyncRunRecord:
    id: str
    principal_id: str
    status: str
    window_from: Optional[datetime]
    window_to: Optional[datetime]
    started_at: Optional[datetime]
    heartbeat_at: Optional[datetime]
    finished_at: Optional[datetime]
    summary: Optional[Dict[str, Any]]
    error_code: Optional[str]
    error_message: Optional[str]

    @classmethod
    def from_row(cls, row: SyncRun) -> "SyncRunRecord":
        return cls(
            id=row.id,
            principal_id=row.principal_id,
            status=row.status,
            window_from=_to_utc(row.window_from),
            window_to=_to_utc(row.window_to),
            started_at=_to_utc(row.started_at),
            heartbeat_at=_to_utc(row.heartbeat_at),
            finished_at=_to_utc(row.finished_at),
            summary=row.summary_json,
            error_code=row.error_code,
            error_message=row.error_message,
        )


class OrderStore:
    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    @contextmanager
    def _session(self, operation: str) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Persistence failure during {operation}: {e}")
            raise PersistenceError(f"{operation} failed: {e.__class__.__name__}: {e}") from e
        finally:
            db.close()

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def get_credential(self, principal_id: str) -> Optional[StoredCredential]:
        with self._session("get_credential") as db:
            row = (
                db.query(MarketplaceCredential)
                .filter(MarketplaceCredential.principal_id == principal_id)
                .first()
            )
            return StoredCredential.from_row(row) if row else None

    def save_authorization(
        self,
        principal_id: str,
        grant: TokenGrant,
        scopes: List[str],
        now: datetime,
    ) -> StoredCredential:
        """Create or update the principal's credential after a code exchange."""

        with self._session("save_authorization") as db:
            row = (
                db.query(MarketplaceCredential)
                .filter(MarketplaceCredential.principal_id == principal_id)
                .first()
            )
            if row is None:
                row = MarketplaceCredential(id=str(uuid4()), principal_id=principal_id)
                db.add(row)
                action = "Created"
            else:
                action = "Updated"

            row.access_token = grant.access_token
            if grant.refresh_token:
                row.refresh_token = grant.refresh_token
            row.access_token_expires_at = grant.access_token_expires_at
            if grant.external_user_id:
                row.external_user_id = grant.external_user_id
            row.scopes = list(scopes)
            row.last_refreshed_at = now
            row.updated_at = now

            db.commit()
            db.refresh(row)
            logger.info(f"{action} marketplace credential for principal: {principal_id}")
            return StoredCredential.from_row(row)

    def update_access_token(
        self,
        principal_id: str,
        access_token: str,
        expires_at: datetime,
        now: datetime,
    ) -> None:
        with self._session("update_access_token") as db:
            row = (
                db.query(MarketplaceCredential)
                .filter(MarketplaceCredential.principal_id == principal_id)
                .with_for_update()
                .first()
            )
            if row is None:
                raise PersistenceError(f"Credential for principal {principal_id!r} disappeared during refresh")
            row.access_token = access_token
            row.access_token_expires_at = expires_at
            row.last_refreshed_at = now
            row.updated_at = now
            db.commit()

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    @staticmethod
    def _lookup_inventory_item_id(db: Session, sku: str) -> Optional[int]:
        row = db.query(InventoryItem.id).filter(InventoryItem.sku == sku).first()
        return row[0] if row else None

    def find_inventory_item_id(self, sku: Optional[str]) -> Optional[int]:
        if not sku:
            return None
        with self._session("find_inventory_item_id") as db:
            return self._lookup_inventory_item_id(db, sku)

    def persist_order(
        self,
        principal_id: str,
        source: str,
        raw_order: Any,
        mapped: MappedOrderResult,
        received_at: datetime,
    ) -> PersistOrderOutcome:
        """Store one observed order atomically.

        Appends the raw payload, upserts the order by marketplace order id,
        upserts each line by (order, line key) and links lines to inventory by
        SKU. Either everything for this order is committed or nothing is.
        """

        ebay_order_id = mapped.order.ebay_order_id
        if not ebay_order_id:
            raise ValueError("persist_order requires a marketplace order id")

        with self._session("persist_order") as db:
            raw = RawPayload(
                source=source,
                principal_id=principal_id,
                payload=raw_order,
                received_at=received_at,
            )
            db.add(raw)
            db.flush()

            order = db.query(Order).filter(Order.ebay_order_id == ebay_order_id).first()
            order_created = order is None
            if order_created:
                order = Order(ebay_order_id=ebay_order_id, rec_created=received_at)
                db.add(order)

            values = mapped.order
            order.principal_id = principal_id
            order.order_created_at = values.order_created_at
            order.buyer_username = values.buyer_username
            order.total_cents = values.total_cents
            order.tax_cents = values.tax_cents
            order.shipping_cents = values.shipping_cents
            order.currency = values.currency
            order.payment_status = values.payment_status
            order.fulfillment_status = values.fulfillment_status
            order.raw_payload_id = raw.id
            order.rec_updated = received_at
            db.flush()

            outcome = PersistOrderOutcome(
                order_id=order.id,
                raw_payload_id=raw.id,
                order_created=order_created,
            )

            existing_lines: Dict[str, OrderLine] = {}
            if not order_created:
                for line in db.query(OrderLine).filter(OrderLine.order_id == order.id):
                    existing_lines[line.ebay_line_id] = line

            sku_cache: Dict[str, Optional[int]] = {}
            for mapped_line in mapped.lines:
                key = mapped_line.line_key
                line = existing_lines.get(key)
                if line is None:
                    line = OrderLine(order_id=order.id, ebay_line_id=key, rec_created=received_at)
                    db.add(line)
                    existing_lines[key] = line
                    outcome.lines_created += 1
                else:
                    outcome.lines_updated += 1

                line.sku = mapped_line.sku
                line.ebay_item_id = mapped_line.ebay_item_id
                line.title = mapped_line.title
                line.quantity = mapped_line.quantity
                line.item_price_cents = mapped_line.item_price_cents
                line.rec_updated = received_at

                # A null SKU never matches; a miss leaves any earlier link in place.
                if mapped_line.sku:
                    if mapped_line.sku not in sku_cache:
                        sku_cache[mapped_line.sku] = self._lookup_inventory_item_id(db, mapped_line.sku)
                    inventory_item_id = sku_cache[mapped_line.sku]
                    if inventory_item_id is not None:
                        line.inventory_item_id = inventory_item_id
                        outcome.lines_matched += 1

            db.commit()

        logger.debug(
            f"Persisted order {ebay_order_id}: created={outcome.order_created} "
            f"lines +{outcome.lines_created} ~{outcome.lines_updated} matched={outcome.lines_matched}"
        )
        return outcome

    # ------------------------------------------------------------------
    # Sync runs
    # ------------------------------------------------------------------

    def get_active_run(self, principal_id: str, now: datetime, stale_minutes: int) -> Optional[SyncRunRecord]:
        """Return the newest ``running`` run whose heartbeat is still fresh."""

        with self._session("get_active_run") as db:
            return self._active_run(db, principal_id, now, stale_minutes)

    @staticmethod
    def _active_run(db: Session, principal_id: str, now: datetime, stale_minutes: int) -> Optional[SyncRunRecord]:
        cutoff = now - timedelta(minutes=stale_minutes)
        run = (
            db.query(SyncRun)
            .filter(
                SyncRun.principal_id == principal_id,
                SyncRun.status == SyncRunStatus.running.value,
            )
            .order_by(SyncRun.started_at.desc())
            .first()
        )
        if run and _to_utc(run.heartbeat_at or run.started_at) >= cutoff:
            return SyncRunRecord.from_row(run)
        return None

    def start_run(
        self,
        principal_id: str,
        *,
        window_from: datetime,
        window_to: datetime,
        now: datetime,
        stale_minutes: int,
    ) -> tuple:
        """Insert a ``running`` row unless a fresh one exists.

        Returns ``(run, None)`` on success or ``(None, active_run)`` when a
        fresh run already holds the principal.
        """

        with self._session("start_run") as db:
            active = self._active_run(db, principal_id, now, stale_minutes)
            if active:
                logger.info(f"Sync run already active for principal={principal_id} run_id={active.id}")
                return None, active

            run = SyncRun(
                id=str(uuid4()),
                principal_id=principal_id,
                status=SyncRunStatus.running.value,
                window_from=window_from,
                window_to=window_to,
                started_at=now,
                heartbeat_at=now,
            )
            db.add(run)
            db.commit()
            db.refresh(run)
            logger.info(f"Started sync run id={run.id} principal={principal_id}")
            return SyncRunRecord.from_row(run), None

    def heartbeat_run(self, run_id: str, now: datetime, summary: Optional[Dict[str, Any]] = None) -> None:
        with self._session("heartbeat_run") as db:
            run = db.get(SyncRun, run_id)
            if run is None:
                return
            run.heartbeat_at = now
            if summary is not None:
                run.summary_json = summary
            db.commit()

    def finish_run(
        self,
        run_id: str,
        *,
        status: SyncRunStatus,
        now: datetime,
        summary: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> None:
        with self._session("finish_run") as db:
            run = db.get(SyncRun, run_id)
            if run is None:
                logger.warning(f"finish_run: unknown run id={run_id}")
                return
            run.status = status.value
            run.finished_at = now
            run.heartbeat_at = now
            if summary is not None:
                run.summary_json = summary
            run.error_code = error_code
            run.error_message = error_message[:2000] if error_message else None
            db.commit()

        if status == SyncRunStatus.completed:
            logger.info(f"Completed sync run id={run_id} status=completed")
        else:
            logger.error(f"Sync run id={run_id} ended with status={status.value}: {error_message}")

    def get_run(self, run_id: str) -> Optional[SyncRunRecord]:
        with self._session("get_run") as db:
            run = db.get(SyncRun, run_id)
            return SyncRunRecord.from_row(run) if run else None
