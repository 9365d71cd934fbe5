from __future__ import annotations

import datetime as dt
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
from enum import Enum
from typing import Any

from sqlalchemy import (
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    Time,
    UniqueConstraint,
    Index,
    Boolean,
    JSON,
    event,
    inspect,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.ext.mutable import MutableDict, MutableList

from .core.config import settings
from .core.database import Base


try:
    LOCAL_ZONE = ZoneInfo(getattr(settings, "TIMEZONE", "UTC"))
except (ZoneInfoNotFoundError, ValueError):
    LOCAL_ZONE = ZoneInfo("UTC")


def now_local_naive() -> dt.datetime:
    """Return naive datetime normalized to configured local timezone."""
    return dt.datetime.now(LOCAL_ZONE).replace(tzinfo=None)


class TimestampMixin:
    created_at: Mapped[dt.datetime] = mapped_column(DateTime, default=now_local_naive, nullable=False)
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime, default=now_local_naive, onupdate=now_local_naive, nullable=False)


class User(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)

    accounts: Mapped[list["Account"]] = relationship(back_populates="user")
    connections: Mapped[list["BankConnection"]] = relationship(back_populates="user")


class AccountType(str, Enum):
    CHECKING = "checking"
    SAVINGS = "savings"
    CREDIT = "credit"
    LOAN = "loan"
    OTHER = "other"


class Account(Base, TimestampMixin):
    """Local ledger account that remote accounts are mapped onto."""

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("user.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[AccountType] = mapped_column(
        SAEnum(AccountType, name="account_type", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=AccountType.CHECKING,
    )
    institution: Mapped[str | None] = mapped_column(String(120))
    # ACCTID of an uploaded statement; lets re-uploads find the auto-created account
    provider_account_id: Mapped[str | None] = mapped_column(String(128))
    balance: Mapped[float] = mapped_column(Numeric(18, 4), default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    user: Mapped[User] = relationship(back_populates="accounts")
    transactions: Mapped[list["Transaction"]] = relationship(back_populates="account")

    __table_args__ = (
        UniqueConstraint("user_id", "name", name="uq_account_name"),
        Index("ix_account_provider_ref", "user_id", "provider_account_id"),
    )


class Category(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("user.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "name", name="uq_category_name"),
    )


class TransactionStatus(str, Enum):
    PENDING = "pending"
    CLEARED = "cleared"
    FAILED = "failed"


class Transaction(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    account_id: Mapped[int] = mapped_column(ForeignKey("account.id", ondelete="CASCADE"), nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    amount: Mapped[float] = mapped_column(Numeric(18, 4), nullable=False)
    category_id: Mapped[int | None] = mapped_column(ForeignKey("category.id", ondelete="SET NULL"))
    status: Mapped[TransactionStatus] = mapped_column(
        SAEnum(TransactionStatus, name="txn_status", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=TransactionStatus.PENDING,
    )
    external_id: Mapped[str | None] = mapped_column(String(255))
    transfer_id: Mapped[int | None] = mapped_column(Integer)

    account: Mapped[Account] = relationship(back_populates="transactions")
    category: Mapped[Category | None] = relationship()

    __table_args__ = (
        # NULL external ids never collide, so fallback rows are unaffected
        UniqueConstraint("account_id", "external_id", name="uq_txn_account_external_id"),
        Index("ix_txn_natural_key", "account_id", "date", "amount"),
    )


class ConnectionStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    ERROR = "error"


class SyncFrequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    MANUAL = "manual"


class DateFormat(str, Enum):
    ISO = "YYYY-MM-DD"
    DAY_FIRST = "DD/MM/YYYY"
    MONTH_FIRST = "MM/DD/YYYY"


class BankConnection(Base, TimestampMixin):
    """A credentialed link to one institution's scraper adapter."""

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("user.id"), nullable=False)
    scraper_slug: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    encrypted_credentials: Mapped[str] = mapped_column(Text, nullable=False)
    encrypted_metadata: Mapped[str | None] = mapped_column(Text)
    status: Mapped[ConnectionStatus] = mapped_column(
        SAEnum(ConnectionStatus, name="connection_status", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=ConnectionStatus.IDLE,
    )
    date_format: Mapped[str] = mapped_column(String(16), nullable=False, default=DateFormat.ISO.value)
    accounts_map: Mapped[dict[str, Any]] = mapped_column(MutableDict.as_mutable(JSON), default=dict, nullable=False)
    frequency: Mapped[SyncFrequency] = mapped_column(
        SAEnum(SyncFrequency, name="sync_frequency", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=SyncFrequency.MANUAL,
    )
    preferred_time: Mapped[dt.time | None] = mapped_column(Time)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="UTC")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_run_at: Mapped[dt.datetime | None] = mapped_column(DateTime)
    last_error: Mapped[str | None] = mapped_column(Text)

    user: Mapped[User] = relationship(back_populates="connections")
    audit_logs: Mapped[list["AuditLogEntry"]] = relationship(
        back_populates="connection",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def zone(self) -> ZoneInfo:
        try:
            return ZoneInfo(self.timezone or "UTC")
        except (ZoneInfoNotFoundError, ValueError):
            return ZoneInfo("UTC")

    def mapped_account_ids(self) -> dict[str, int]:
        """``accounts_map`` with blank entries dropped and ids coerced to int."""
        out: dict[str, int] = {}
        for remote, local in (self.accounts_map or {}).items():
            if local is None or local == "":
                continue
            try:
                out[remote] = int(local)
            except (TypeError, ValueError):
                continue
        return out


class AuditStatus(str, Enum):
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class AuditLogEntry(Base):
    """One row per run. Immutable once ``end_time`` is set."""

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    connection_id: Mapped[int] = mapped_column(ForeignKey("bankconnection.id", ondelete="CASCADE"), nullable=False)
    start_time: Mapped[dt.datetime] = mapped_column(DateTime, default=now_local_naive, nullable=False)
    end_time: Mapped[dt.datetime | None] = mapped_column(DateTime)
    status: Mapped[AuditStatus] = mapped_column(
        SAEnum(AuditStatus, name="audit_status", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=AuditStatus.RUNNING,
    )
    inserts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    duplicates: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # records dropped because their remote account is not mapped
    skipped: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_message: Mapped[str | None] = mapped_column(Text)

    connection: Mapped[BankConnection] = relationship(back_populates="audit_logs")

    __table_args__ = (
        Index("ix_audit_connection_start", "connection_id", "start_time"),
    )

    @property
    def is_finalized(self) -> bool:
        return self.end_time is not None


@event.listens_for(AuditLogEntry, "before_update")
def _reject_finalized_audit_update(mapper, connection, target: AuditLogEntry) -> None:  # type: ignore[override]
    history = inspect(target).attrs.end_time.history
    previous = list(history.deleted or ()) + list(history.unchanged or ())
    if any(value is not None for value in previous):
        raise ValueError(f"AuditLogEntry {target.id} is finalized and cannot be modified")


class MatchType(str, Enum):
    CONTAINS = "contains"
    EXACT = "exact"
    STARTS_WITH = "starts_with"
    REGEX = "regex"


class ClassificationRule(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("user.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # [{"match_type": "...", "match_value": "..."}], AND-ed
    conditions: Mapped[list[dict[str, Any]]] = mapped_column(MutableList.as_mutable(JSON), default=list, nullable=False)
    # legacy single-condition columns, honoured when ``conditions`` is empty
    match_type: Mapped[str | None] = mapped_column(String(20))
    match_value: Mapped[str | None] = mapped_column(Text)
    category_id: Mapped[int] = mapped_column(ForeignKey("category.id", ondelete="CASCADE"), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    category: Mapped[Category] = relationship()

    def effective_conditions(self) -> list[dict[str, str]]:
        if self.conditions:
            return [dict(c) for c in self.conditions]
        if self.match_value is not None:
            return [{"match_type": self.match_type or MatchType.CONTAINS.value, "match_value": self.match_value}]
        return []
