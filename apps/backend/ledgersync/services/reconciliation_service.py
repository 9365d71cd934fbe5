"""
Reconciliation service

Merges canonical records into the ledger without duplicating rows.

Duplicate tiers:
1. external_id present: same (account_id, external_id) already stored
2. external_id absent: same (account_id, date, amount) with a description
   equal after case folding and whitespace collapse

Records earlier in the same batch count as already stored.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Iterator, List, Set, Tuple

from sqlalchemy.orm import Session

from ledgersync import models
from ledgersync.schemas import CanonicalTransaction
from ledgersync.services.transaction_service import AccountBalanceService
from ledgersync.utils.normalization import normalize_description

logger = logging.getLogger(__name__)

_AMOUNT_QUANTUM = Decimal("0.0001")

NaturalKey = Tuple[object, Decimal, str]


@dataclass
class ReconcileResult:
    inserted: int = 0
    duplicates: int = 0
    inserted_ids: List[int] = field(default_factory=list)


def _amount_key(value) -> Decimal:
    return Decimal(str(value)).quantize(_AMOUNT_QUANTUM)


def natural_key(date, amount, description: str | None) -> NaturalKey:
    return (date, _amount_key(amount), normalize_description(description))


class ReconciliationService:
    """
    Insert-if-new engine for one account at a time

    All writes of one ``reconcile`` call share a single database transaction;
    a SAVEPOINT is used when the caller already holds one, so either the whole
    batch becomes visible or none of it does.
    """

    def __init__(self, db: Session, balance_service: AccountBalanceService | None = None):
        self.db = db
        self.balance_service = balance_service or AccountBalanceService(db)

    def reconcile(self, account_id: int, records: Iterable[CanonicalTransaction]) -> ReconcileResult:
        """
        Insert new records for ``account_id``

        Args:
            account_id: local account receiving the records
            records: canonical records in received order

        Returns:
            ReconcileResult with inserted/duplicate counts and new row ids
        """
        batch = list(records)
        result = ReconcileResult()
        if not batch:
            return result

        with self._transaction():
            seen_external = self._existing_external_ids(account_id, batch)
            seen_natural = self._existing_natural_keys(account_id, batch)

            created: List[models.Transaction] = []
            for rec in batch:
                if rec.external_id:
                    if rec.external_id in seen_external:
                        result.duplicates += 1
                        continue
                    seen_external.add(rec.external_id)
                    status = models.TransactionStatus.CLEARED
                else:
                    key = natural_key(rec.date, rec.amount, rec.description)
                    if key in seen_natural:
                        result.duplicates += 1
                        continue
                    seen_natural.add(key)
                    status = models.TransactionStatus.PENDING

                txn = models.Transaction(
                    account_id=account_id,
                    date=rec.date,
                    description=rec.description,
                    amount=rec.amount,
                    status=status,
                    external_id=rec.external_id,
                )
                self.db.add(txn)
                created.append(txn)
                self.balance_service.apply_signed_delta(account_id, rec.amount)

            self.db.flush()
            result.inserted = len(created)
            result.inserted_ids = [t.id for t in created]

        logger.info(
            f"Reconciled account {account_id}: inserted={result.inserted} duplicates={result.duplicates}"
        )
        return result

    # ==================== Private Methods ====================

    @contextmanager
    def _transaction(self) -> Iterator[None]:
        if self.db.in_transaction():
            with self.db.begin_nested():
                yield
        else:
            with self.db.begin():
                yield

    def _existing_external_ids(self, account_id: int, batch: List[CanonicalTransaction]) -> Set[str]:
        ext_ids = {r.external_id for r in batch if r.external_id}
        if not ext_ids:
            return set()
        rows = (
            self.db.query(models.Transaction.external_id)
            .filter(
                models.Transaction.account_id == account_id,
                models.Transaction.external_id.in_(ext_ids),
            )
            .all()
        )
        return {row[0] for row in rows if row[0]}

    def _existing_natural_keys(self, account_id: int, batch: List[CanonicalTransaction]) -> Set[NaturalKey]:
        dates = {r.date for r in batch if not r.external_id}
        if not dates:
            return set()
        rows = (
            self.db.query(
                models.Transaction.date,
                models.Transaction.amount,
                models.Transaction.description,
            )
            .filter(
                models.Transaction.account_id == account_id,
                models.Transaction.date.in_(dates),
            )
            .all()
        )
        return {natural_key(d, amt, desc) for d, amt, desc in rows}
