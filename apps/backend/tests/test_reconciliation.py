"""
ReconciliationService tests
"""

from datetime import date
from decimal import Decimal

import pytest

from ledgersync import models
from ledgersync.schemas import CanonicalTransaction
from ledgersync.services.reconciliation_service import ReconciliationService


def _rec(external_id=None, day=1, amount="-10.00", description="Coffee", account_ref="Checking"):
    return CanonicalTransaction(
        external_id=external_id,
        account_ref=account_ref,
        date=date(2024, 3, day),
        description=description,
        amount=Decimal(amount),
    )


class TestReconciliationService:
    @pytest.fixture
    def account(self, make_account):
        return make_account("Everyday")

    @pytest.fixture
    def service(self, db_session):
        return ReconciliationService(db_session)

    def test_idempotent(self, db_session, service, account):
        batch = [_rec("X1"), _rec("X2", day=2), _rec(None, day=3, description="Bakery")]

        first = service.reconcile(account.id, batch)
        second = service.reconcile(account.id, batch)

        assert first.inserted == 3
        assert second.inserted == 0
        assert second.duplicates == 3
        assert db_session.query(models.Transaction).count() == 3

    def test_existing_external_id_counts_as_duplicate(self, db_session, service, account):
        service.reconcile(account.id, [_rec("B")])
        db_session.commit()

        result = service.reconcile(account.id, [_rec("A"), _rec("B"), _rec("C")])

        assert (result.inserted, result.duplicates) == (2, 1)

    def test_external_id_does_not_overwrite(self, db_session, service, account):
        service.reconcile(account.id, [_rec("A", description="First")])
        service.reconcile(account.id, [_rec("A", description="Changed", amount="-99")])

        row = db_session.query(models.Transaction).one()
        assert row.description == "First"
        assert row.amount == Decimal("-10.0000")

    def test_fallback_description_normalized(self, db_session, service, account):
        service.reconcile(account.id, [_rec(None, description="Corner  Store")])
        result = service.reconcile(account.id, [_rec(None, description="  corner store ")])
        assert result.duplicates == 1
        assert result.inserted == 0

    def test_fallback_different_amount_inserts(self, service, account):
        service.reconcile(account.id, [_rec(None)])
        result = service.reconcile(account.id, [_rec(None, amount="-10.01")])
        assert result.inserted == 1

    def test_first_seen_wins_within_batch(self, db_session, service, account):
        result = service.reconcile(
            account.id,
            [_rec("Z", description="first"), _rec("Z", description="second"), _rec(None), _rec(None)],
        )
        assert (result.inserted, result.duplicates) == (2, 2)
        assert db_session.query(models.Transaction).filter_by(external_id="Z").one().description == "first"

    def test_status_by_tier(self, db_session, service, account):
        service.reconcile(account.id, [_rec("E"), _rec(None, day=9)])
        rows = {t.external_id: t.status for t in db_session.query(models.Transaction).all()}
        assert rows["E"] == models.TransactionStatus.CLEARED
        assert rows[None] == models.TransactionStatus.PENDING

    def test_balance_follows_inserts(self, db_session, service, account):
        service.reconcile(account.id, [_rec("P", amount="100"), _rec("Q", amount="-30")])
        service.reconcile(account.id, [_rec("P", amount="100")])
        db_session.refresh(account)
        assert Decimal(str(account.balance)) == Decimal("70")

    def test_same_external_id_in_other_account_is_new(self, service, account, make_account):
        other = make_account("Savings")
        service.reconcile(account.id, [_rec("SHARED")])
        result = service.reconcile(other.id, [_rec("SHARED")])
        assert result.inserted == 1

    def test_batch_is_atomic(self, db_session, service, account):
        with pytest.raises(Exception):
            service.reconcile(999999, [_rec("ok")])
        db_session.rollback()
        assert db_session.query(models.Transaction).count() == 0
