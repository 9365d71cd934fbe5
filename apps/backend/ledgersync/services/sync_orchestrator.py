"""
Sync orchestrator

One run of a bank connection, start to finish:

    lock -> audit row -> fetch (or upload) -> parse -> resolve accounts
         -> reconcile -> classify new rows -> finalize audit -> release lock

Every failure after the lock is taken ends as a failed audit row and an
``error`` connection status. Ledger writes of a run commit together, so a
failed run leaves no rows behind. The lock is always released.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, TypeVar

from sqlalchemy.orm import Session, sessionmaker

from ledgersync import models, schemas
from ledgersync.core.config import settings
from ledgersync.core.database import SessionLocal
from ledgersync.errors import (
    AdapterAuthError,
    AdapterError,
    AdapterTimeoutError,
    ConnectionNotFoundError,
    ParseError,
    UnmappedAccountError,
)
from ledgersync.ingest import parse
from ledgersync.schemas import CanonicalTransaction
from ledgersync.scrapers import Credentials, RawPayload, get_variant
from ledgersync.services.account_resolver import AccountResolver
from ledgersync.services.connection_lock import ConnectionLock
from ledgersync.services.connection_service import load_credentials
from ledgersync.services.reconciliation_service import ReconcileResult, ReconciliationService
from ledgersync.services.rule_engine import RuleEngine

logger = logging.getLogger(__name__)

T = TypeVar("T")


def call_with_timeout(fn: Callable[..., T], *args: Any, timeout: float) -> T:
    """Run ``fn`` on a helper thread and give up after ``timeout`` seconds.

    A timed-out call is abandoned, not interrupted; its thread finishes on
    its own.
    """
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="ledgersync-adapter")
    try:
        future = executor.submit(fn, *args)
        try:
            return future.result(timeout=timeout)
        except FutureTimeoutError:
            raise AdapterTimeoutError(f"Adapter call timed out after {timeout:g}s")
    finally:
        executor.shutdown(wait=False, cancel_futures=True)


def describe_error(exc: BaseException) -> str:
    if isinstance(exc, ParseError):
        return f"Import failed: {exc}"
    if isinstance(exc, AdapterError):
        return str(exc)
    return f"{type(exc).__name__}: {exc}"


def group_by_account(records: Sequence[CanonicalTransaction]) -> Dict[str, List[CanonicalTransaction]]:
    grouped: Dict[str, List[CanonicalTransaction]] = {}
    for rec in records:
        grouped.setdefault(rec.account_ref, []).append(rec)
    return grouped


@dataclass
class RunStats:
    inserts: int = 0
    duplicates: int = 0
    skipped: int = 0


class SyncOrchestrator:
    def __init__(
        self,
        session_factory: sessionmaker | Callable[[], Session] = SessionLocal,
        adapter_timeout: float | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.adapter_timeout = adapter_timeout or settings.ADAPTER_TIMEOUT_SECONDS

    # ---- connection runs -------------------------------------------------

    def run_sync(
        self,
        connection_id: int,
        upload: Optional[Sequence[RawPayload]] = None,
        *,
        lock_held: bool = False,
    ) -> models.AuditLogEntry:
        """
        Execute one run and return its finalized audit entry

        Args:
            connection_id: connection to run
            upload: payloads to ingest instead of calling the adapter
            lock_held: the caller already acquired the run lock

        Raises:
            AlreadyRunningError: another run holds the lock
            ConnectionNotFoundError: no such connection
        """
        db = self.session_factory()
        try:
            lock = ConnectionLock(db)
            if not lock_held:
                lock.acquire(connection_id)

            error: Optional[str] = "Run aborted before completion"
            audit: Optional[models.AuditLogEntry] = None
            try:
                audit = models.AuditLogEntry(
                    connection_id=connection_id,
                    status=models.AuditStatus.RUNNING,
                    start_time=models.now_local_naive(),
                )
                db.add(audit)
                db.commit()

                try:
                    stats = self._execute(db, connection_id, upload)
                except Exception as exc:
                    db.rollback()
                    error = describe_error(exc)
                    logger.warning(f"Run for connection {connection_id} failed: {error}", exc_info=True)
                    self._finalize(db, audit, models.AuditStatus.FAILED, RunStats(), error)
                else:
                    error = None
                    self._finalize(db, audit, models.AuditStatus.SUCCESS, stats, None)
                    logger.info(
                        f"Run for connection {connection_id} finished: inserts={stats.inserts} "
                        f"duplicates={stats.duplicates} skipped={stats.skipped}"
                    )
            finally:
                lock.release(connection_id, error=error)

            db.refresh(audit)
            db.expunge(audit)
            return audit
        finally:
            db.close()

    def _execute(
        self,
        db: Session,
        connection_id: int,
        upload: Optional[Sequence[RawPayload]],
    ) -> RunStats:
        connection = db.get(models.BankConnection, connection_id)
        if connection is None:
            raise ConnectionNotFoundError(connection_id)
        variant = get_variant(connection.scraper_slug)

        if upload is None:
            credentials = load_credentials(connection, variant)
            adapter = variant.build(connection.id)
            mapped = list(connection.mapped_account_ids())
            # a single mapping also claims exports whose name matches nothing
            account_filter = mapped if len(mapped) > 1 else None
            payloads = call_with_timeout(
                adapter.fetch_transactions, credentials, account_filter, timeout=self.adapter_timeout
            )
        else:
            payloads = list(upload)

        date_format = variant.date_format or connection.date_format
        resolver = AccountResolver(db)
        reconciler = ReconciliationService(db)
        stats = RunStats()
        new_ids: List[int] = []
        acks: List[Callable[[], None]] = []

        for payload in payloads:
            result = parse(payload.content, payload.format, date_format, account_ref=payload.account_ref)
            for warning in result.warnings:
                logger.warning(f"{payload.source_name or payload.format}: {warning}")
            records = result.records
            if payload.account_ref:
                records = [r.model_copy(update={"account_ref": payload.account_ref}) for r in records]

            # export file names are loose; scraper labels must match a mapping key
            from_file = payload.format != "scraper"
            for ref, batch in group_by_account(records).items():
                try:
                    account_id = resolver.resolve(
                        connection,
                        ref,
                        prefix_match=from_file,
                        single_mapping_fallback=from_file,
                    )
                except UnmappedAccountError as e:
                    stats.skipped += len(batch)
                    logger.warning(f"Connection {connection.id}: {e}; skipped {len(batch)} record(s)")
                    continue
                outcome: ReconcileResult = reconciler.reconcile(account_id, batch)
                stats.inserts += outcome.inserted
                stats.duplicates += outcome.duplicates
                new_ids.extend(outcome.inserted_ids)

            if payload.ack:
                acks.append(payload.ack)

        if new_ids:
            RuleEngine(db, connection.user_id).classify_ids(new_ids)
        # one commit per run; a failing payload rolls back the earlier ones too
        db.commit()
        for ack in acks:
            ack()
        return stats

    @staticmethod
    def _finalize(
        db: Session,
        audit: models.AuditLogEntry,
        status: models.AuditStatus,
        stats: RunStats,
        error: Optional[str],
    ) -> None:
        audit.status = status
        audit.inserts = stats.inserts
        audit.duplicates = stats.duplicates
        audit.skipped = stats.skipped
        audit.error_message = error
        audit.end_time = models.now_local_naive()
        db.commit()

    # ---- login check -----------------------------------------------------

    def test_connection(
        self,
        scraper_slug: str,
        username: str,
        password: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> List[str]:
        """
        Log in without persisting anything and list the remote accounts

        Raises:
            AdapterNotFoundError: unknown scraper slug
            AdapterAuthError: institution rejected the login
            AdapterTimeoutError: login did not finish in time
        """
        variant = get_variant(scraper_slug)
        credentials = Credentials(
            username=username,
            password=password,
            metadata=variant.validate_metadata(metadata),
        )
        adapter = variant.build(None)
        login = call_with_timeout(adapter.test_login, credentials, timeout=self.adapter_timeout)
        if not login.ok:
            raise AdapterAuthError(login.error or "Login failed")
        return AccountResolver.remote_identifiers(login.accounts)

    # ---- uploads ---------------------------------------------------------

    def import_file(
        self,
        db: Session,
        user_id: int,
        content: bytes | str,
        format: str,
        date_format: Optional[str] = None,
        account_id: Optional[int] = None,
    ) -> schemas.ImportResult:
        """
        Ingest an uploaded export file

        Without ``account_id`` each remote account in the file is matched to
        (or creates) an ``Imported Account <ref>``.

        Raises:
            ParseError: malformed file or zero records
            LookupError: ``account_id`` is not one of the user's accounts
        """
        if account_id is not None:
            target = db.get(models.Account, account_id)
            if not target or target.user_id != user_id:
                raise LookupError(f"Account {account_id} not found")

        result = parse(content, format, date_format)
        resolver = AccountResolver(db)
        reconciler = ReconciliationService(db)
        summaries: List[schemas.ImportAccountResult] = []
        new_ids: List[int] = []

        try:
            for ref, batch in group_by_account(result.records).items():
                local_id = account_id if account_id is not None else resolver.find_or_create(user_id, ref).id
                outcome = reconciler.reconcile(local_id, batch)
                new_ids.extend(outcome.inserted_ids)
                summaries.append(
                    schemas.ImportAccountResult(
                        account_id=local_id,
                        account_ref=ref,
                        inserted=outcome.inserted,
                        skipped=outcome.duplicates,
                    )
                )
            if new_ids:
                RuleEngine(db, user_id).classify_ids(new_ids)
            db.commit()
        except Exception:
            db.rollback()
            raise

        logger.info(
            f"Imported {format} file for user {user_id}: "
            + ", ".join(f"{s.account_ref}={s.inserted}/{s.inserted + s.skipped}" for s in summaries)
        )
        return schemas.ImportResult(accounts=summaries, warnings=result.warnings)
