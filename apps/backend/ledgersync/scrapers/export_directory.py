"""Default driver: consumes statement files dropped by browser automation.

The automation process logs into the institution and downloads
``<slug>_<Account_Name>.ofx|qfx|qif`` into a per-connection directory. This
driver reads those files back and deletes each one once it is reconciled.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Optional, Sequence, TYPE_CHECKING

from ledgersync.errors import AdapterAuthError, AdapterError
from ledgersync.ingest import decode_payload
from ledgersync.scrapers.base import Credentials, LoginResult, RawPayload, RemoteAccount
from ledgersync.utils.normalization import normalize_account_token

if TYPE_CHECKING:
    from ledgersync.scrapers.registry import ScraperVariant

logger = logging.getLogger(__name__)

_EXTENSIONS = {".ofx": "ofx", ".qfx": "ofx", ".qif": "qif"}


class ExportDirectoryDriver:
    def __init__(self, variant: "ScraperVariant", export_dir: Path) -> None:
        self.variant = variant
        self.export_dir = Path(export_dir)

    def _account_ref_for(self, path: Path) -> str:
        prefix = re.compile(rf"^{re.escape(self.variant.slug)}_", re.IGNORECASE)
        return prefix.sub("", path.stem) or path.stem

    def _export_files(self) -> list[Path]:
        if not self.export_dir.is_dir():
            return []
        slug = self.variant.slug.lower()
        return sorted(
            p
            for p in self.export_dir.iterdir()
            if p.is_file() and p.suffix.lower() in _EXTENSIONS and slug in p.name.lower()
        )

    def test_login(self, credentials: Credentials) -> LoginResult:
        if not credentials.username or not credentials.password:
            raise AdapterAuthError("Username and password are required")
        if self.variant.requires_security_pin and not credentials.metadata.security_number:
            raise AdapterAuthError(f"{self.variant.name} requires a security number")
        accounts = [RemoteAccount(name=self._account_ref_for(p)) for p in self._export_files()]
        return LoginResult(ok=True, accounts=accounts)

    def fetch_transactions(
        self,
        credentials: Credentials,
        account_filter: Optional[Sequence[str]] = None,
    ) -> list[RawPayload]:
        self.test_login(credentials)
        wanted = {normalize_account_token(a) for a in account_filter or ()}
        files = self._export_files()
        if not files:
            raise AdapterError("No data file found. Check scraper logs/credentials.")

        payloads: list[RawPayload] = []
        for path in files:
            account_ref = self._account_ref_for(path)
            token = normalize_account_token(account_ref)
            if wanted and not any(token.startswith(w) for w in wanted):
                continue
            logger.info(f"Reading export {path.name} for {self.variant.slug}")
            payloads.append(
                RawPayload(
                    format=_EXTENSIONS[path.suffix.lower()],  # type: ignore[arg-type]
                    content=decode_payload(path.read_bytes()),
                    account_ref=account_ref,
                    source_name=path.name,
                    ack=lambda p=path: p.unlink(missing_ok=True),
                )
            )
        return payloads
