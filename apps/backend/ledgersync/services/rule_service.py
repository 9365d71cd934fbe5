from __future__ import annotations

import logging
from typing import List

from sqlalchemy.orm import Session

from ledgersync import models, schemas
from ledgersync.errors import CategoryNotFoundError, RuleNotFoundError

logger = logging.getLogger(__name__)


class RuleService:
    """CRUD for classification rules, scoped to one user."""

    def __init__(self, db: Session, user_id: int) -> None:
        self.db = db
        self.user_id = user_id

    def list_rules(self) -> List[models.ClassificationRule]:
        return (
            self.db.query(models.ClassificationRule)
            .filter(models.ClassificationRule.user_id == self.user_id)
            .order_by(
                models.ClassificationRule.priority.asc(),
                models.ClassificationRule.created_at.desc(),
            )
            .all()
        )

    def get(self, rule_id: int) -> models.ClassificationRule:
        rule = (
            self.db.query(models.ClassificationRule)
            .filter(
                models.ClassificationRule.id == rule_id,
                models.ClassificationRule.user_id == self.user_id,
            )
            .first()
        )
        if not rule:
            raise RuleNotFoundError(f"Rule {rule_id} not found")
        return rule

    def _check_category(self, category_id: int) -> None:
        category = self.db.get(models.Category, category_id)
        if not category or category.user_id != self.user_id:
            raise CategoryNotFoundError(category_id)

    @staticmethod
    def _conditions(payload: schemas.RuleCreate | schemas.RuleUpdate) -> list[dict]:
        if payload.conditions:
            return [c.model_dump(mode="json") for c in payload.conditions]
        if payload.match_value:
            match_type = payload.match_type or models.MatchType.CONTAINS
            return [{"match_type": match_type.value, "match_value": payload.match_value}]
        return []

    def create(self, payload: schemas.RuleCreate) -> models.ClassificationRule:
        self._check_category(payload.category_id)
        conditions = self._conditions(payload)
        if not conditions:
            raise ValueError("A rule needs at least one condition")
        rule = models.ClassificationRule(
            user_id=self.user_id,
            name=payload.name,
            priority=payload.priority,
            conditions=conditions,
            category_id=payload.category_id,
            is_active=payload.is_active,
        )
        self.db.add(rule)
        self.db.commit()
        self.db.refresh(rule)
        return rule

    def update(self, rule_id: int, payload: schemas.RuleUpdate) -> models.ClassificationRule:
        rule = self.get(rule_id)
        data = payload.model_dump(exclude_unset=True)
        if "category_id" in data and data["category_id"] is not None:
            self._check_category(data["category_id"])
            rule.category_id = data["category_id"]
        for attr in ("name", "priority", "is_active"):
            if data.get(attr) is not None:
                setattr(rule, attr, data[attr])
        if "conditions" in data or "match_value" in data:
            conditions = self._conditions(payload)
            if not conditions:
                raise ValueError("A rule needs at least one condition")
            rule.conditions = conditions
            rule.match_type = None
            rule.match_value = None
        self.db.commit()
        self.db.refresh(rule)
        return rule

    def delete(self, rule_id: int) -> None:
        rule = self.get(rule_id)
        self.db.delete(rule)
        self.db.commit()


def migrate_legacy_rules(db: Session, user_id: int | None = None) -> int:
    """Copy legacy ``match_type/match_value`` pairs into ``conditions``.

    Rules that already carry conditions are left alone. Returns the number of
    rules migrated.
    """
    query = db.query(models.ClassificationRule).filter(models.ClassificationRule.match_value.isnot(None))
    if user_id is not None:
        query = query.filter(models.ClassificationRule.user_id == user_id)
    migrated = 0
    for rule in query.all():
        if rule.conditions:
            continue
        rule.conditions = rule.effective_conditions()
        migrated += 1
    if migrated:
        db.commit()
        logger.info(f"Migrated {migrated} legacy rule(s) to conditions")
    return migrated
