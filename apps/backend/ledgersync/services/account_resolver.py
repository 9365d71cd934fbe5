"""
Account resolver

Maps remote account identifiers (export file names, OFX ACCTIDs, scraper
account labels) onto local ledger accounts.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy.orm import Session

from ledgersync import models
from ledgersync.errors import UnmappedAccountError
from ledgersync.schemas import CanonicalTransaction
from ledgersync.scrapers.base import RemoteAccount
from ledgersync.utils.normalization import normalize_account_token

logger = logging.getLogger(__name__)

IMPORTED_ACCOUNT_PREFIX = "Imported Account"


class AccountResolver:
    def __init__(self, db: Session):
        self.db = db
        self._valid: Dict[int, bool] = {}

    def resolve(
        self,
        connection: models.BankConnection,
        remote_identifier: str,
        *,
        prefix_match: bool = False,
        single_mapping_fallback: bool = False,
    ) -> int:
        """
        Look up the local account for ``remote_identifier``

        Lookup order: exact key, normalized key, then with ``prefix_match``
        the longest mapping key that prefixes the normalized identifier (export
        file names often append a number to the account name). With
        ``single_mapping_fallback`` a connection that maps exactly one account
        claims any whole-file export that matched nothing.

        Raises:
            UnmappedAccountError: no usable mapping
        """
        mapping = connection.mapped_account_ids()
        account_id = self._lookup(mapping, remote_identifier, prefix_match)
        if account_id is None and single_mapping_fallback and len(mapping) == 1:
            account_id = next(iter(mapping.values()))
            logger.info(
                f"No mapping matched '{remote_identifier}' on connection {connection.id}; using its only mapped account"
            )
        if account_id is None or not self._is_usable(connection.user_id, account_id):
            raise UnmappedAccountError(remote_identifier)
        return account_id

    @staticmethod
    def discover(records: Iterable[CanonicalTransaction]) -> List[str]:
        """Distinct remote identifiers in first-seen order; touches nothing."""
        seen: Dict[str, None] = {}
        for rec in records:
            seen.setdefault(rec.account_ref, None)
        return list(seen)

    @staticmethod
    def remote_identifiers(accounts: Sequence[RemoteAccount]) -> List[str]:
        """
        Build stable identifiers for the accounts a login reported

        Plain name when unique; ``"name (…1234)"`` when two accounts share a
        name and a number is available to tell them apart.
        """
        counts = Counter(normalize_account_token(a.name) for a in accounts)
        out: List[str] = []
        for acc in accounts:
            if counts[normalize_account_token(acc.name)] > 1 and acc.number:
                out.append(f"{acc.name} (…{acc.number[-4:]})")
            else:
                out.append(acc.name)
        return out

    def find_or_create(
        self,
        user_id: int,
        remote_identifier: str,
        *,
        institution: Optional[str] = None,
    ) -> models.Account:
        """Return the account previously created for ``remote_identifier`` or create one."""
        account = (
            self.db.query(models.Account)
            .filter(
                models.Account.user_id == user_id,
                models.Account.provider_account_id == remote_identifier,
            )
            .first()
        )
        if account:
            return account

        name = f"{IMPORTED_ACCOUNT_PREFIX} {remote_identifier}"
        account = (
            self.db.query(models.Account)
            .filter(models.Account.user_id == user_id, models.Account.name == name)
            .first()
        )
        if account:
            account.provider_account_id = remote_identifier
            return account

        account = models.Account(
            user_id=user_id,
            name=name,
            type=models.AccountType.CHECKING,
            institution=institution,
            provider_account_id=remote_identifier,
        )
        self.db.add(account)
        self.db.flush()
        logger.info(f"Created account '{name}' (id={account.id}) for user {user_id}")
        return account

    # ==================== Private Methods ====================

    @staticmethod
    def _lookup(mapping: Dict[str, int], remote_identifier: str, prefix_match: bool = False) -> Optional[int]:
        if remote_identifier in mapping:
            return mapping[remote_identifier]
        wanted = normalize_account_token(remote_identifier)
        if not wanted:
            return None
        normalized = {normalize_account_token(k): v for k, v in mapping.items()}
        if wanted in normalized:
            return normalized[wanted]
        if not prefix_match:
            return None
        # longest key first so "Everyday Plus" beats "Everyday"
        for key in sorted(normalized, key=len, reverse=True):
            if key and wanted.startswith(key):
                return normalized[key]
        return None

    def _is_usable(self, user_id: int, account_id: int) -> bool:
        if account_id not in self._valid:
            account = self.db.get(models.Account, account_id)
            self._valid[account_id] = bool(account and account.user_id == user_id and account.is_active)
            if not self._valid[account_id]:
                logger.warning(f"Mapped account {account_id} is missing or inactive")
        return self._valid[account_id]
