"""
RuleEngine / RuleService tests
"""

from datetime import date, datetime, timedelta
from unittest.mock import MagicMock

import pytest

from ledgersync import models, schemas
from ledgersync.errors import CategoryNotFoundError, InvalidPatternError
from ledgersync.services.rule_engine import RuleEngine, compile_condition
from ledgersync.services.rule_service import RuleService, migrate_legacy_rules


@pytest.fixture
def categories(db_session, user):
    names = ["Groceries", "Dining", "Transport", "Fallback"]
    cats = {}
    for name in names:
        cat = models.Category(user_id=user.id, name=name)
        db_session.add(cat)
        cats[name] = cat
    db_session.commit()
    return cats


@pytest.fixture
def txn_factory(db_session, make_account):
    account = make_account("Everyday")

    def _make(description: str) -> models.Transaction:
        txn = models.Transaction(account_id=account.id, date=date(2024, 5, 1), description=description, amount=-5)
        db_session.add(txn)
        db_session.commit()
        return txn

    return _make


def _rule(db_session, user, category, priority, conditions=None, match_type=None, match_value=None, **kwargs):
    rule = models.ClassificationRule(
        user_id=user.id,
        name=kwargs.pop("name", f"rule-{priority}"),
        priority=priority,
        conditions=conditions or [],
        match_type=match_type,
        match_value=match_value,
        category_id=category.id,
        **kwargs,
    )
    db_session.add(rule)
    db_session.commit()
    return rule


class TestConditions:
    @pytest.mark.parametrize(
        "match_type,value,text,expected",
        [
            ("contains", "WOOL", "Woolworths Metro", True),
            ("contains", "coles", "Woolworths", False),
            ("exact", "uber", "UBER", True),
            ("exact", "uber", "UBER EATS", False),
            ("starts_with", "uber", "Uber Eats", True),
            ("starts_with", "eats", "Uber Eats", False),
            ("regex", r"^uber\s+(eats|trip)", "UBER TRIP 123", True),
        ],
    )
    def test_match_types_case_insensitive(self, match_type, value, text, expected):
        assert compile_condition(match_type, value)(text) is expected

    def test_invalid_regex_raises(self):
        with pytest.raises(InvalidPatternError):
            compile_condition("regex", "([unclosed")


class TestRuleEngine:
    def test_lowest_priority_wins(self, db_session, user, categories, txn_factory):
        _rule(db_session, user, categories["Groceries"], 10, [{"match_type": "contains", "match_value": "mart"}])
        winner = _rule(db_session, user, categories["Dining"], 5, [{"match_type": "contains", "match_value": "mart"}])
        _rule(db_session, user, categories["Transport"], 20, [{"match_type": "contains", "match_value": "mart"}])
        txn = txn_factory("K-MART 042")

        result = RuleEngine(db_session, user.id).classify([txn])

        assert result.results[txn.id] == winner.id
        assert txn.category_id == categories["Dining"].id

    def test_equal_priority_uses_creation_order(self, db_session, user, categories, txn_factory):
        older = _rule(
            db_session, user, categories["Groceries"], 1,
            [{"match_type": "contains", "match_value": "shop"}],
            created_at=datetime(2024, 1, 1),
        )
        _rule(
            db_session, user, categories["Dining"], 1,
            [{"match_type": "contains", "match_value": "shop"}],
            created_at=datetime(2024, 1, 1) + timedelta(days=1),
        )
        txn = txn_factory("Shop")

        result = RuleEngine(db_session, user.id).classify([txn])
        assert result.results[txn.id] == older.id

    def test_conditions_are_anded(self, db_session, user, categories, txn_factory):
        _rule(
            db_session, user, categories["Transport"], 1,
            [
                {"match_type": "starts_with", "match_value": "uber"},
                {"match_type": "contains", "match_value": "trip"},
            ],
        )
        trip = txn_factory("UBER TRIP")
        eats = txn_factory("UBER EATS")

        result = RuleEngine(db_session, user.id).classify([trip, eats])

        assert trip.category_id == categories["Transport"].id
        assert eats.category_id is None
        assert result.residual == [eats]
        assert result.categorized == 1

    def test_invalid_regex_rule_skipped(self, db_session, user, categories, txn_factory):
        _rule(db_session, user, categories["Groceries"], 1, [{"match_type": "regex", "match_value": "([bad"}])
        fallback = _rule(db_session, user, categories["Fallback"], 2, [{"match_type": "contains", "match_value": "bad"}])
        txn = txn_factory("a bad day")

        result = RuleEngine(db_session, user.id).classify([txn])

        assert result.results[txn.id] == fallback.id
        assert txn.category_id == categories["Fallback"].id

    def test_legacy_single_condition(self, db_session, user, categories, txn_factory):
        legacy = _rule(db_session, user, categories["Groceries"], 1, match_type="contains", match_value="aldi")
        txn = txn_factory("ALDI STORES")

        result = RuleEngine(db_session, user.id).classify([txn])
        assert result.results[txn.id] == legacy.id

    def test_inactive_rules_ignored(self, db_session, user, categories, txn_factory):
        _rule(db_session, user, categories["Groceries"], 1, [{"match_type": "contains", "match_value": "x"}], is_active=False)
        txn = txn_factory("x")
        result = RuleEngine(db_session, user.id).classify([txn])
        assert result.results[txn.id] is None

    def test_classify_uncategorized_limit(self, db_session, user, categories, txn_factory):
        _rule(db_session, user, categories["Dining"], 1, [{"match_type": "contains", "match_value": "cafe"}])
        for i in range(3):
            txn_factory(f"cafe {i}")

        result = RuleEngine(db_session, user.id).classify_uncategorized(limit=2)
        assert result.categorized == 2


class TestRuleService:
    def test_list_order_priority_then_newest(self, db_session, user, categories):
        svc = RuleService(db_session, user.id)
        a = _rule(db_session, user, categories["Dining"], 5, [{"match_type": "contains", "match_value": "a"}], created_at=datetime(2024, 1, 1))
        b = _rule(db_session, user, categories["Dining"], 5, [{"match_type": "contains", "match_value": "b"}], created_at=datetime(2024, 2, 1))
        c = _rule(db_session, user, categories["Dining"], 1, [{"match_type": "contains", "match_value": "c"}])

        assert [r.id for r in svc.list_rules()] == [c.id, b.id, a.id]

    def test_create_from_legacy_payload(self, db_session, user, categories):
        rule = RuleService(db_session, user.id).create(
            schemas.RuleCreate(name="Fuel", match_type="starts_with", match_value="bp ", category_id=categories["Transport"].id)
        )
        assert rule.conditions == [{"match_type": "starts_with", "match_value": "bp "}]

    def test_unknown_category_rejected(self, db_session, user):
        with pytest.raises(CategoryNotFoundError):
            RuleService(db_session, user.id).create(
                schemas.RuleCreate(name="Fuel", match_value="bp", category_id=9999)
            )
        assert db_session.query(models.ClassificationRule).count() == 0

    def test_migrate_legacy_rules(self, db_session, user, categories):
        legacy = _rule(db_session, user, categories["Groceries"], 1, match_type="exact", match_value="IGA")
        modern = _rule(db_session, user, categories["Dining"], 2, [{"match_type": "contains", "match_value": "x"}])

        assert migrate_legacy_rules(db_session) == 1
        db_session.refresh(legacy)
        db_session.refresh(modern)
        assert legacy.conditions == [{"match_type": "exact", "match_value": "IGA"}]
        assert modern.conditions == [{"match_type": "contains", "match_value": "x"}]
        assert migrate_legacy_rules(db_session) == 0


def test_classify_without_database():
    db = MagicMock()
    rules = [
        models.ClassificationRule(
            id=i, name=f"r{i}", priority=p, category_id=100 + i, created_at=datetime(2024, 1, 1),
            conditions=[{"match_type": "contains", "match_value": "fuel"}],
        )
        for i, p in ((1, 10), (2, 5), (3, 20))
    ]
    db.query.return_value.filter.return_value.all.return_value = rules
    txn = models.Transaction(id=7, description="BP FUEL 123")

    result = RuleEngine(db, user_id=1).classify([txn])

    assert result.results == {7: 2}
    assert txn.category_id == 102
    db.flush.assert_called_once()
