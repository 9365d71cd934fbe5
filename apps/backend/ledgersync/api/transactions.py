from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from ledgersync import models
from ledgersync.core.database import get_db
from ledgersync.core.deps import get_current_user
from ledgersync.schemas import TransactionOut


router = APIRouter(prefix="/transactions", tags=["transactions"])


@router.get("", response_model=list[TransactionOut])
def list_transactions(
    response: Response,
    account_id: Optional[int] = Query(None),
    uncategorized: bool = Query(False, description="Only rows without a category"),
    status: Optional[models.TransactionStatus] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    q = (
        db.query(models.Transaction)
        .join(models.Account, models.Account.id == models.Transaction.account_id)
        .filter(models.Account.user_id == current_user.id)
    )
    if account_id is not None:
        q = q.filter(models.Transaction.account_id == account_id)
    if uncategorized:
        q = q.filter(models.Transaction.category_id.is_(None))
    if status is not None:
        q = q.filter(models.Transaction.status == status)

    response.headers["X-Total-Count"] = str(q.count())
    return (
        q.order_by(models.Transaction.date.desc(), models.Transaction.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
