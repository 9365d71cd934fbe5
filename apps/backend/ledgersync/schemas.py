from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import Any, Literal, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)

from .models import (
    AuditStatus,
    ConnectionStatus,
    DateFormat,
    MatchType,
    SyncFrequency,
    TransactionStatus,
)


SourceFormat = Literal["ofx", "qif", "scraper"]
UploadFormat = Literal["ofx", "qfx", "qif"]


class CanonicalTransaction(BaseModel):
    """Normalized record produced by every format adapter.

    ``amount`` is signed: negative is a debit/expense, positive a credit/income.
    """

    model_config = ConfigDict(frozen=True)

    external_id: Optional[str] = None
    account_ref: str
    date: dt.date
    description: str = ""
    amount: Decimal
    raw_type: Optional[str] = None

    @field_validator("external_id")
    @classmethod
    def _blank_external_id(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None

    @field_validator("description")
    @classmethod
    def _strip_description(cls, v: str) -> str:
        return (v or "").strip()


class ParseResult(BaseModel):
    records: list[CanonicalTransaction] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @property
    def accounts(self) -> list[str]:
        """Distinct account refs in first-seen order."""
        seen: dict[str, None] = {}
        for rec in self.records:
            seen.setdefault(rec.account_ref, None)
        return list(seen)


class ScrapedRecord(BaseModel):
    """Shape of an already-structured record handed over by a live adapter."""

    external_id: Optional[str] = Field(default=None, alias="id")
    account: str = Field(..., min_length=1)
    date: dt.date
    description: str = ""
    amount: Decimal
    type: Optional[str] = None
    direction: Optional[Literal["debit", "credit"]] = None

    # live adapters often send numeric ids and account numbers
    model_config = ConfigDict(extra="ignore", populate_by_name=True, coerce_numbers_to_str=True)


# ---- Rules ---------------------------------------------------------------

class ConditionIn(BaseModel):
    match_type: MatchType = MatchType.CONTAINS
    match_value: str = Field(..., min_length=1)


class RuleCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    priority: int = 0
    conditions: list[ConditionIn] = Field(default_factory=list)
    # legacy single-condition payload
    match_type: Optional[MatchType] = None
    match_value: Optional[str] = None
    category_id: int
    is_active: bool = True


class RuleUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    priority: Optional[int] = None
    conditions: Optional[list[ConditionIn]] = None
    match_type: Optional[MatchType] = None
    match_value: Optional[str] = None
    category_id: Optional[int] = None
    is_active: Optional[bool] = None


class RuleOut(BaseModel):
    id: int
    name: str
    priority: int
    conditions: list[dict[str, Any]]
    match_type: Optional[str] = None
    match_value: Optional[str] = None
    category_id: int
    is_active: bool
    created_at: dt.datetime

    model_config = ConfigDict(from_attributes=True)


class ClassifyOut(BaseModel):
    categorized: int
    residual: int


# ---- Connections ---------------------------------------------------------

class ScraperOut(BaseModel):
    slug: str
    name: str
    requires_security_pin: bool


class ConnectionCreate(BaseModel):
    scraper_slug: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=255)
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)
    metadata: dict[str, Any] = Field(default_factory=dict)
    date_format: DateFormat = DateFormat.ISO
    accounts_map: dict[str, Optional[int]] = Field(default_factory=dict)


class ConnectionUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    username: Optional[str] = None
    password: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None
    date_format: Optional[DateFormat] = None
    accounts_map: Optional[dict[str, Optional[int]]] = None


class ScheduleUpdate(BaseModel):
    frequency: SyncFrequency
    preferred_time: Optional[dt.time] = None
    timezone: str = "UTC"
    is_active: bool = True

    @field_validator("timezone")
    @classmethod
    def _known_zone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {v}")
        return v


class ConnectionOut(BaseModel):
    id: int
    name: str
    scraper_slug: str
    status: ConnectionStatus
    date_format: str
    accounts_map: dict[str, Any]
    metadata: dict[str, Any] = Field(default_factory=dict)
    frequency: SyncFrequency
    preferred_time: Optional[dt.time] = None
    timezone: str
    is_active: bool
    last_run_at: Optional[dt.datetime] = None
    last_error: Optional[str] = None


class ConnectionTestIn(BaseModel):
    scraper_slug: str = Field(..., min_length=1)
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)
    metadata: dict[str, Any] = Field(default_factory=dict)


class ConnectionTestOut(BaseModel):
    success: bool
    accounts: list[str] = Field(default_factory=list)
    error: Optional[str] = None


class RunTriggerOut(BaseModel):
    message: str
    connection_ids: list[int] = Field(default_factory=list)


class AuditLogOut(BaseModel):
    id: int
    connection_id: int
    status: AuditStatus
    start_time: dt.datetime
    end_time: Optional[dt.datetime] = None
    inserts: int
    duplicates: int
    skipped: int
    error_message: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


# ---- Imports / transactions ---------------------------------------------

class ImportAccountResult(BaseModel):
    account_id: int
    account_ref: str
    inserted: int
    skipped: int


class ImportResult(BaseModel):
    accounts: list[ImportAccountResult] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class TransactionOut(BaseModel):
    id: int
    account_id: int
    date: dt.date
    description: str
    amount: Decimal
    category_id: Optional[int] = None
    status: TransactionStatus
    external_id: Optional[str] = None
    transfer_id: Optional[int] = None
    created_at: dt.datetime

    model_config = ConfigDict(from_attributes=True, json_encoders={Decimal: lambda v: str(v)})
