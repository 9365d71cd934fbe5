from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ledgersync.core.database import get_db
from ledgersync.core.deps import get_current_user
from ledgersync.errors import CategoryNotFoundError, RuleNotFoundError
from ledgersync.schemas import ClassifyOut, RuleCreate, RuleOut, RuleUpdate
from ledgersync.services.rule_engine import RuleEngine
from ledgersync.services.rule_service import RuleService


router = APIRouter(prefix="/rules", tags=["rules"])


@router.get("", response_model=list[RuleOut])
def list_rules(db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    return RuleService(db, current_user.id).list_rules()


@router.post("", response_model=RuleOut, status_code=201)
def create_rule(payload: RuleCreate, db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    try:
        return RuleService(db, current_user.id).create(payload)
    except CategoryNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))


# declared before "/{rule_id}" so the literal path wins
@router.post("/apply", response_model=ClassifyOut)
def apply_rules(db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    result = RuleEngine(db, current_user.id).classify_uncategorized()
    db.commit()
    return ClassifyOut(categorized=result.categorized, residual=len(result.residual))


@router.put("/{rule_id}", response_model=RuleOut)
def update_rule(rule_id: int, payload: RuleUpdate, db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    try:
        return RuleService(db, current_user.id).update(rule_id, payload)
    except (RuleNotFoundError, CategoryNotFoundError) as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))


@router.delete("/{rule_id}", status_code=204)
def delete_rule(rule_id: int, db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    try:
        RuleService(db, current_user.id).delete(rule_id)
    except RuleNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return None
