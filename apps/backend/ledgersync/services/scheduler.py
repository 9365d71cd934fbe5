"""
Connection scheduler

A coordinator thread wakes every ``SCHEDULER_TICK_SECONDS``, picks the
connections that are due and hands each run to a bounded worker pool. Runs of
different connections proceed in parallel; the run lock serializes runs of the
same connection. A failed run is not retried until its next due period.
"""

from __future__ import annotations

import datetime as dt
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, List, Optional, Set

from sqlalchemy.orm import Session

from ledgersync import models
from ledgersync.core.config import settings
from ledgersync.core.database import SessionLocal
from ledgersync.errors import AlreadyRunningError
from ledgersync.services.connection_lock import ConnectionLock, recover_stuck_connections
from ledgersync.services.sync_orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)


def period_start(frequency: models.SyncFrequency, local_today: dt.date) -> Optional[dt.date]:
    if frequency == models.SyncFrequency.DAILY:
        return local_today
    if frequency == models.SyncFrequency.WEEKLY:
        # ISO week, Monday first
        return local_today - dt.timedelta(days=local_today.weekday())
    if frequency == models.SyncFrequency.MONTHLY:
        return local_today.replace(day=1)
    return None


def is_due(
    connection: models.BankConnection,
    now: dt.datetime,
    last_attempt: Optional[dt.datetime] = None,
) -> bool:
    """
    Decide whether a connection should run at ``now``

    The current period (local day, ISO week or month in the connection's
    timezone) triggers at its first date plus ``preferred_time`` (midnight when
    unset). Due once ``now`` passes the trigger, unless an attempt already
    happened at or after it.

    Naive datetimes are read in the application timezone.
    """
    if not connection.is_active or connection.frequency == models.SyncFrequency.MANUAL:
        return False

    zone = connection.zone
    if now.tzinfo is None:
        now = now.replace(tzinfo=models.LOCAL_ZONE)
    local_now = now.astimezone(zone)

    start = period_start(connection.frequency, local_now.date())
    if start is None:
        return False
    trigger = dt.datetime.combine(start, connection.preferred_time or dt.time(0, 0), tzinfo=zone)
    if local_now < trigger:
        return False

    last = last_attempt if last_attempt is not None else connection.last_run_at
    if last is None:
        return True
    if last.tzinfo is None:
        last = last.replace(tzinfo=models.LOCAL_ZONE)
    return last < trigger


class SyncScheduler:
    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        orchestrator: SyncOrchestrator | None = None,
        max_workers: int | None = None,
        tick_seconds: float | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.orchestrator = orchestrator or SyncOrchestrator(session_factory)
        self.max_workers = max_workers or settings.SCHEDULER_MAX_WORKERS
        self.tick_seconds = tick_seconds or settings.SCHEDULER_TICK_SECONDS
        self._executor: Optional[ThreadPoolExecutor] = None
        self._executor_lock = threading.Lock()
        self._pending: Set[Future] = set()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # ---- worker pool -----------------------------------------------------

    def _pool(self) -> ThreadPoolExecutor:
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.max_workers,
                    thread_name_prefix="ledgersync-sync",
                )
            return self._executor

    def trigger(self, connection_id: int) -> Future:
        """
        Take the run lock now and run the connection on the worker pool

        Raises:
            AlreadyRunningError: the connection is already running
            ConnectionNotFoundError: no such connection
        """
        db = self.session_factory()
        try:
            ConnectionLock(db).acquire(connection_id)
        finally:
            db.close()
        try:
            future = self._pool().submit(self._run, connection_id)
        except RuntimeError:
            # pool shut down between acquire and submit
            db = self.session_factory()
            try:
                ConnectionLock(db).release(connection_id, error="Scheduler stopped before the run started")
            finally:
                db.close()
            raise
        with self._executor_lock:
            self._pending.add(future)
        future.add_done_callback(self._discard)
        return future

    def _discard(self, future: Future) -> None:
        with self._executor_lock:
            self._pending.discard(future)

    def _run(self, connection_id: int) -> Optional[models.AuditLogEntry]:
        try:
            return self.orchestrator.run_sync(connection_id, lock_held=True)
        except Exception:
            logger.exception(f"Run for connection {connection_id} crashed")
            raise

    def drain(self, timeout: float | None = None) -> None:
        """Wait for the runs submitted so far."""
        with self._executor_lock:
            pending = list(self._pending)
        for future in pending:
            try:
                future.result(timeout=timeout)
            except Exception:
                # already logged by the worker
                continue

    # ---- selection -------------------------------------------------------

    def due_connection_ids(self, now: dt.datetime) -> List[int]:
        db = self.session_factory()
        try:
            candidates = (
                db.query(models.BankConnection)
                .filter(
                    models.BankConnection.is_active.is_(True),
                    models.BankConnection.frequency != models.SyncFrequency.MANUAL,
                    models.BankConnection.status != models.ConnectionStatus.RUNNING,
                )
                .order_by(models.BankConnection.id)
                .all()
            )
            return [c.id for c in candidates if is_due(c, now)]
        finally:
            db.close()

    def tick(self, now: dt.datetime | None = None) -> List[int]:
        """Submit every due connection; returns the ids that were submitted."""
        now = now or dt.datetime.now(dt.timezone.utc)
        submitted: List[int] = []
        for connection_id in self.due_connection_ids(now):
            try:
                self.trigger(connection_id)
            except AlreadyRunningError:
                logger.info(f"Connection {connection_id} is already running; skipping this tick")
                continue
            submitted.append(connection_id)
        if submitted:
            logger.info(f"Scheduler tick submitted connections {submitted}")
        return submitted

    def run_all(self, user_id: int) -> List[int]:
        """Trigger every active connection of a user regardless of schedule."""
        db = self.session_factory()
        try:
            ids = [
                row[0]
                for row in db.query(models.BankConnection.id)
                .filter(
                    models.BankConnection.user_id == user_id,
                    models.BankConnection.is_active.is_(True),
                )
                .order_by(models.BankConnection.id)
                .all()
            ]
        finally:
            db.close()

        started: List[int] = []
        for connection_id in ids:
            try:
                self.trigger(connection_id)
            except AlreadyRunningError:
                logger.info(f"Connection {connection_id} is already running; not triggered")
                continue
            started.append(connection_id)
        return started

    # ---- lifecycle -------------------------------------------------------

    def recover(self) -> int:
        db = self.session_factory()
        try:
            return recover_stuck_connections(db)
        finally:
            db.close()

    def _loop(self) -> None:
        logger.info(f"Scheduler started (tick={self.tick_seconds}s, workers={self.max_workers})")
        while not self._stop.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("Scheduler tick failed")
            self._stop.wait(self.tick_seconds)
        logger.info("Scheduler stopped")

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="ledgersync-scheduler", daemon=True)
        self._thread.start()

    def stop(self, wait: bool = True) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=self.tick_seconds + 1)
            self._thread = None
        with self._executor_lock:
            executor, self._executor = self._executor, None
        if executor:
            executor.shutdown(wait=wait)


scheduler = SyncScheduler()
