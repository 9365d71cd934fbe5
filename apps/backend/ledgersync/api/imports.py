from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from sqlalchemy.orm import Session

from ledgersync.core.database import get_db
from ledgersync.core.deps import get_current_user, get_orchestrator
from ledgersync.errors import ParseError
from ledgersync.models import DateFormat
from ledgersync.schemas import ImportResult, UploadFormat
from ledgersync.services.sync_orchestrator import SyncOrchestrator


router = APIRouter(prefix="/imports", tags=["imports"])


@router.post("", response_model=ImportResult)
def import_file(
    file: UploadFile = File(...),
    format: UploadFormat = Form(...),
    date_format: Optional[DateFormat] = Form(None),
    account_id: Optional[int] = Form(None),
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    content = file.file.read()
    if not content:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")
    try:
        return orchestrator.import_file(
            db,
            current_user.id,
            content,
            format,
            date_format=date_format.value if date_format else None,
            account_id=account_id,
        )
    except ParseError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
