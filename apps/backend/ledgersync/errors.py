"""
Exception taxonomy for the sync pipeline.

Recoverability is decided by the caller:
- ParseError: fatal only when a payload yields zero records
- UnmappedAccountError: skip the affected records, keep running
- AlreadyRunningError: reject the trigger, no state change
- AdapterAuthError / AdapterTimeoutError: fatal for the run
- InvalidPatternError: skip the offending rule only
"""

from __future__ import annotations


class LedgerSyncError(Exception):
    """Base exception for all ledgersync errors"""
    pass


class ParseError(LedgerSyncError):
    """Raised when source data is malformed or yields no records"""

    def __init__(self, message: str, warnings: list[str] | None = None):
        super().__init__(message)
        self.warnings = list(warnings or [])


class UnmappedAccountError(LedgerSyncError):
    """Raised when a remote account identifier has no local mapping"""

    def __init__(self, remote_identifier: str):
        super().__init__(f"No local account mapped for remote account '{remote_identifier}'")
        self.remote_identifier = remote_identifier


class AlreadyRunningError(LedgerSyncError):
    """Raised when a run is triggered for a connection that is already running"""

    def __init__(self, connection_id: int):
        super().__init__(f"Connection {connection_id} is already running")
        self.connection_id = connection_id


class ConnectionNotFoundError(LedgerSyncError):
    """Raised when a bank connection does not exist"""

    def __init__(self, connection_id: int):
        super().__init__(f"Connection {connection_id} not found")
        self.connection_id = connection_id


class RuleNotFoundError(LedgerSyncError):
    """Raised when a rule does not exist"""
    pass


class CategoryNotFoundError(LedgerSyncError):
    """Raised when a rule points at a category the user does not own"""

    def __init__(self, category_id: int):
        super().__init__(f"Category {category_id} not found")
        self.category_id = category_id


class AdapterError(LedgerSyncError):
    """Base exception for scraper adapter failures"""
    pass


class AdapterNotFoundError(AdapterError):
    """Raised when no scraper variant is registered for a slug"""
    pass


class AdapterAuthError(AdapterError):
    """Raised when the institution rejects the credentials"""
    pass


class AdapterTimeoutError(AdapterError):
    """Raised when an adapter call exceeds its timeout"""
    pass


class InvalidPatternError(LedgerSyncError):
    """Raised when a stored regex condition does not compile"""

    def __init__(self, pattern: str, reason: str):
        super().__init__(f"Invalid regex pattern {pattern!r}: {reason}")
        self.pattern = pattern


class EncryptionError(LedgerSyncError):
    """Base exception for encryption errors"""
    pass


class KeyNotConfiguredError(EncryptionError):
    """Raised when encryption key is not configured"""
    pass


class DecryptionError(EncryptionError):
    """Raised when decryption fails"""
    pass
