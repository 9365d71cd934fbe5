from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Literal, Optional, Protocol, Sequence, runtime_checkable

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class ScraperMetadata(BaseModel):
    """Adapter settings shared by every institution.

    Unknown keys are rejected so a typo never silently disables a setting.
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    security_number: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("security_number", "securityNumber"),
        description="Extra PIN some institutions ask for after the password",
    )


class GreaterBankMetadata(ScraperMetadata):
    enable_loan_redraw: bool = Field(
        default=False,
        validation_alias=AliasChoices("enable_loan_redraw", "enableLoanRedraw"),
        description="Expose the redraw balance of loan products as a virtual account",
    )


@dataclass
class Credentials:
    username: str
    password: str = field(repr=False)
    metadata: ScraperMetadata = field(default_factory=ScraperMetadata)


@dataclass
class RemoteAccount:
    name: str
    number: Optional[str] = None


@dataclass
class LoginResult:
    ok: bool
    accounts: list[RemoteAccount] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class RawPayload:
    """One unit of data returned by ``fetch_transactions``.

    ``content`` is file text for ``ofx``/``qif`` and a list of dicts for
    ``scraper``. ``account_ref``, when set, overrides whatever account the
    content itself names. ``ack`` is called once the payload is reconciled.
    """

    format: Literal["ofx", "qif", "scraper"]
    content: Any
    account_ref: Optional[str] = None
    source_name: Optional[str] = None
    ack: Optional[Callable[[], None]] = field(default=None, repr=False)


@runtime_checkable
class ScraperAdapter(Protocol):
    def test_login(self, credentials: Credentials) -> LoginResult:
        ...

    def fetch_transactions(
        self,
        credentials: Credentials,
        account_filter: Optional[Sequence[str]] = None,
    ) -> list[RawPayload]:
        ...
