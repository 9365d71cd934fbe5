from __future__ import annotations

from fastapi import Depends
from sqlalchemy.orm import Session

from ledgersync.core.database import get_db
from ledgersync import models
from ledgersync.services.scheduler import SyncScheduler, scheduler
from ledgersync.services.sync_orchestrator import SyncOrchestrator


def get_current_user(db: Session = Depends(get_db)) -> models.User:
    """Very lightweight current user resolver.

    Authentication lives outside this service. Returns the first user (creates
    a demo one if none). Tests may override this dependency to simulate
    different users.
    """
    user = db.query(models.User).order_by(models.User.id).first()
    if not user:
        user = models.User(email="demo@example.com", is_active=True)
        db.add(user)
        db.commit()
        db.refresh(user)
    return user


def get_scheduler() -> SyncScheduler:
    """Scheduler owning the sync worker pool; overridden in tests."""
    return scheduler


def get_orchestrator() -> SyncOrchestrator:
    return scheduler.orchestrator
