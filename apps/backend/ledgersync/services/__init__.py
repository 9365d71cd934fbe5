"""
Services package

Business logic for the sync pipeline.
"""

from .account_resolver import AccountResolver
from .connection_lock import ConnectionLock, recover_stuck_connections
from .connection_service import ConnectionService, load_credentials
from .reconciliation_service import ReconcileResult, ReconciliationService
from .rule_engine import ClassificationResult, RuleEngine
from .rule_service import RuleService, migrate_legacy_rules
from .scheduler import SyncScheduler, is_due
from .sync_orchestrator import SyncOrchestrator
from .transaction_service import AccountBalanceService

__all__ = [
    "AccountBalanceService",
    "AccountResolver",
    "ClassificationResult",
    "ConnectionLock",
    "ConnectionService",
    "ReconcileResult",
    "ReconciliationService",
    "RuleEngine",
    "RuleService",
    "SyncOrchestrator",
    "SyncScheduler",
    "is_due",
    "load_credentials",
    "migrate_legacy_rules",
    "recover_stuck_connections",
]
