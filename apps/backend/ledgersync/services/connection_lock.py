"""
Per-connection run lock

``status`` doubles as the lock: a single conditional UPDATE flips it to
``running`` only when it is not already running. The statement is atomic in
the shared store, so the lock also holds across processes.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from ledgersync import models
from ledgersync.errors import AlreadyRunningError, ConnectionNotFoundError

logger = logging.getLogger(__name__)

STARTUP_INTERRUPTED_MESSAGE = "System restart: execution interrupted"


class ConnectionLock:
    def __init__(self, db: Session) -> None:
        self.db = db

    def acquire(self, connection_id: int) -> None:
        """Mark the connection running or raise ``AlreadyRunningError``."""
        result = self.db.execute(
            update(models.BankConnection)
            .where(
                models.BankConnection.id == connection_id,
                models.BankConnection.status != models.ConnectionStatus.RUNNING,
            )
            .values(status=models.ConnectionStatus.RUNNING, last_error=None)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            self.db.rollback()
            if self.db.get(models.BankConnection, connection_id) is None:
                raise ConnectionNotFoundError(connection_id)
            raise AlreadyRunningError(connection_id)
        self.db.commit()
        logger.debug(f"Acquired run lock for connection {connection_id}")

    def release(self, connection_id: int, error: Optional[str] = None) -> None:
        """Return the connection to ``idle`` (or ``error`` with a message)."""
        status = models.ConnectionStatus.ERROR if error else models.ConnectionStatus.IDLE
        self.db.execute(
            update(models.BankConnection)
            .where(models.BankConnection.id == connection_id)
            .values(
                status=status,
                last_error=error,
                last_run_at=models.now_local_naive(),
            )
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        logger.debug(f"Released run lock for connection {connection_id} ({status.value})")


def recover_stuck_connections(db: Session) -> int:
    """Fail connections left ``running`` by a crashed process. Call once at startup."""
    result = db.execute(
        update(models.BankConnection)
        .where(models.BankConnection.status == models.ConnectionStatus.RUNNING)
        .values(status=models.ConnectionStatus.ERROR, last_error=STARTUP_INTERRUPTED_MESSAGE)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    if result.rowcount:
        logger.warning(f"Reset {result.rowcount} connection(s) stuck in running state")
    return result.rowcount
