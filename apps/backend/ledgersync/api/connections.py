from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import ValidationError
from sqlalchemy.orm import Session

from ledgersync import models
from ledgersync.core.database import get_db
from ledgersync.core.deps import get_current_user, get_orchestrator, get_scheduler
from ledgersync.errors import (
    AdapterError,
    AdapterNotFoundError,
    AlreadyRunningError,
    ConnectionNotFoundError,
    EncryptionError,
)
from ledgersync.schemas import (
    AuditLogOut,
    ConnectionCreate,
    ConnectionOut,
    ConnectionTestIn,
    ConnectionTestOut,
    ConnectionUpdate,
    RunTriggerOut,
    ScheduleUpdate,
)
from ledgersync.services.connection_service import ConnectionService
from ledgersync.services.scheduler import SyncScheduler
from ledgersync.services.sync_orchestrator import SyncOrchestrator


router = APIRouter(prefix="/connections", tags=["connections"])


def _service(db: Session, user: models.User) -> ConnectionService:
    return ConnectionService(db, user.id)


@router.get("", response_model=list[ConnectionOut])
def list_connections(db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    svc = _service(db, current_user)
    try:
        return [svc.to_out(c) for c in svc.list_connections()]
    except EncryptionError as exc:
        raise HTTPException(status_code=500, detail=str(exc))


@router.post("", response_model=ConnectionOut, status_code=201)
def create_connection(payload: ConnectionCreate, db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    svc = _service(db, current_user)
    try:
        connection = svc.create(payload)
    except AdapterNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.errors(include_url=False))
    except EncryptionError as exc:
        raise HTTPException(status_code=500, detail=str(exc))
    return svc.to_out(connection)


# declared before "/{connection_id}" routes so the literal paths win
@router.post("/test", response_model=ConnectionTestOut)
def test_connection(payload: ConnectionTestIn, orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    try:
        accounts = orchestrator.test_connection(
            payload.scraper_slug, payload.username, payload.password, payload.metadata
        )
    except AdapterNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.errors(include_url=False))
    except AdapterError as exc:
        return ConnectionTestOut(success=False, error=str(exc))
    return ConnectionTestOut(success=True, accounts=accounts)


@router.post("/run-all", response_model=RunTriggerOut, status_code=202)
def run_all_connections(current_user=Depends(get_current_user), scheduler: SyncScheduler = Depends(get_scheduler)):
    started = scheduler.run_all(current_user.id)
    return RunTriggerOut(message=f"Triggered {len(started)} connection(s)", connection_ids=started)


@router.put("/{connection_id}", response_model=ConnectionOut)
def update_connection(
    connection_id: int,
    payload: ConnectionUpdate,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    svc = _service(db, current_user)
    try:
        connection = svc.update(connection_id, payload)
    except ConnectionNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.errors(include_url=False))
    except EncryptionError as exc:
        raise HTTPException(status_code=500, detail=str(exc))
    return svc.to_out(connection)


@router.delete("/{connection_id}", status_code=204)
def delete_connection(connection_id: int, db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    svc = _service(db, current_user)
    try:
        connection = svc.get(connection_id)
    except ConnectionNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    if connection.status == models.ConnectionStatus.RUNNING:
        raise HTTPException(status_code=409, detail="Connection is running")
    svc.delete(connection_id)
    return None


@router.post("/{connection_id}/schedule", response_model=ConnectionOut)
def update_schedule(
    connection_id: int,
    payload: ScheduleUpdate,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    svc = _service(db, current_user)
    try:
        connection = svc.update_schedule(connection_id, payload)
    except ConnectionNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return svc.to_out(connection)


@router.post("/{connection_id}/run", response_model=RunTriggerOut, status_code=202)
def run_connection(
    connection_id: int,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
    scheduler: SyncScheduler = Depends(get_scheduler),
):
    try:
        _service(db, current_user).get(connection_id)
        scheduler.trigger(connection_id)
    except ConnectionNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except AlreadyRunningError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return RunTriggerOut(message="Scraper started", connection_ids=[connection_id])


@router.get("/{connection_id}/logs", response_model=list[AuditLogOut])
def list_connection_logs(connection_id: int, db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    try:
        return _service(db, current_user).list_logs(connection_id)
    except ConnectionNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
