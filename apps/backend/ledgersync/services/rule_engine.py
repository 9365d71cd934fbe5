"""
Rule engine

Assigns categories to transactions with user-defined rules. Rules are tried
in ascending priority; the first rule whose conditions all match wins.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from ledgersync import models
from ledgersync.core.config import settings
from ledgersync.errors import InvalidPatternError

logger = logging.getLogger(__name__)

Matcher = Callable[[str], bool]


def compile_condition(match_type: str | None, match_value: str | None) -> Matcher:
    """Build a case-insensitive predicate over a description.

    Raises:
        InvalidPatternError: regex does not compile, or unknown match type
    """
    kind = (match_type or models.MatchType.CONTAINS.value).lower()
    value = match_value or ""
    needle = value.casefold()

    if kind == models.MatchType.CONTAINS.value:
        return lambda text: needle in text.casefold()
    if kind == models.MatchType.EXACT.value:
        return lambda text: text.casefold() == needle
    if kind == models.MatchType.STARTS_WITH.value:
        return lambda text: text.casefold().startswith(needle)
    if kind == models.MatchType.REGEX.value:
        try:
            pattern = re.compile(value, re.IGNORECASE)
        except re.error as e:
            raise InvalidPatternError(value, str(e))
        return lambda text: pattern.search(text) is not None
    raise InvalidPatternError(value, f"unknown match type {match_type!r}")


@dataclass
class ClassificationResult:
    categorized: int = 0
    # transaction id -> winning rule id (None when nothing matched)
    results: Dict[int, Optional[int]] = field(default_factory=dict)
    residual: List[models.Transaction] = field(default_factory=list)


class RuleEngine:
    def __init__(self, db: Session, user_id: int):
        self.db = db
        self.user_id = user_id

    def load_rules(self) -> List[models.ClassificationRule]:
        rules = (
            self.db.query(models.ClassificationRule)
            .filter(
                models.ClassificationRule.user_id == self.user_id,
                models.ClassificationRule.is_active.is_(True),
            )
            .all()
        )
        return sorted(rules, key=lambda r: (r.priority, r.created_at, r.id))

    def _compiled_rules(self) -> List[Tuple[models.ClassificationRule, List[Matcher]]]:
        compiled = []
        for rule in self.load_rules():
            conditions = rule.effective_conditions()
            if not conditions:
                continue
            try:
                matchers = [compile_condition(c.get("match_type"), c.get("match_value")) for c in conditions]
            except InvalidPatternError as e:
                logger.warning(f"Skipping rule {rule.id} ({rule.name}): {e}")
                continue
            compiled.append((rule, matchers))
        return compiled

    def classify(self, transactions: Iterable[models.Transaction]) -> ClassificationResult:
        """
        Apply the first matching rule to each transaction

        Rules are loaded and compiled once per call. Matched transactions get
        the rule's category; the rest are returned as ``residual`` for an
        external classifier.
        """
        result = ClassificationResult()
        compiled = self._compiled_rules()

        for txn in transactions:
            description = txn.description or ""
            winner = next(
                (rule for rule, matchers in compiled if all(m(description) for m in matchers)),
                None,
            )
            result.results[txn.id] = winner.id if winner else None
            if winner is None:
                result.residual.append(txn)
                continue
            txn.category_id = winner.category_id
            result.categorized += 1

        if result.categorized:
            self.db.flush()
        return result

    def classify_uncategorized(self, limit: int | None = None) -> ClassificationResult:
        rows = (
            self.db.query(models.Transaction)
            .join(models.Account, models.Account.id == models.Transaction.account_id)
            .filter(
                models.Account.user_id == self.user_id,
                models.Transaction.category_id.is_(None),
            )
            .order_by(models.Transaction.date.desc(), models.Transaction.id.desc())
            .limit(limit or settings.CLASSIFY_BATCH_LIMIT)
            .all()
        )
        return self.classify(rows)

    def classify_ids(self, transaction_ids: Iterable[int]) -> ClassificationResult:
        """Classify the given rows that are still uncategorized."""
        ids = list(transaction_ids)
        if not ids:
            return ClassificationResult()
        rows = (
            self.db.query(models.Transaction)
            .filter(
                models.Transaction.id.in_(ids),
                models.Transaction.category_id.is_(None),
            )
            .order_by(models.Transaction.id)
            .all()
        )
        return self.classify(rows)
