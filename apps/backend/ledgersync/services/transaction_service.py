from __future__ import annotations

from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from ledgersync import models


class AccountBalanceService:
    """Keep ``Account.balance`` in step with inserted transactions."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def apply_signed_delta(self, account_id: Optional[int], delta: Decimal | float | int) -> None:
        """Add a signed amount to an account balance. Negative is money out."""
        if account_id is None:
            return
        signed = Decimal(str(delta or 0))
        if signed == 0:
            return
        self._apply_delta(account_id, signed)

    def revert_signed_delta(self, account_id: Optional[int], delta: Decimal | float | int) -> None:
        """Undo a previously applied delta, e.g. when a transaction is deleted."""
        self.apply_signed_delta(account_id, -Decimal(str(delta or 0)))

    def _apply_delta(self, account_id: int, delta: Decimal) -> None:
        account = (
            self.db.query(models.Account)
            .filter(models.Account.id == account_id)
            .first()
        )
        if not account:
            return
        current = Decimal(str(account.balance or 0))
        account.balance = current + delta
