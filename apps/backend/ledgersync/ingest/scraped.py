"""Adapter for records handed over already structured by a live scraper.

No text parsing happens here, only shape validation and sign normalisation:
a record flagged ``direction="debit"`` always ends up negative and one
flagged ``"credit"`` always positive.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import ValidationError

from ledgersync.errors import ParseError
from ledgersync.ingest.utils import clean_text
from ledgersync.schemas import CanonicalTransaction, ParseResult, ScrapedRecord


def _coerce_rows(content: str | bytes | Iterable[Mapping[str, Any]]) -> list[Any]:
    if isinstance(content, (str, bytes)):
        try:
            loaded = json.loads(content)
        except ValueError as e:
            raise ParseError(f"Scraper payload is not valid JSON: {e}")
        if isinstance(loaded, Mapping):
            loaded = loaded.get("transactions", [])
        if not isinstance(loaded, list):
            raise ParseError("Scraper payload must be a list of records")
        return loaded
    return list(content)


def parse_scraped(content: str | bytes | Iterable[Mapping[str, Any]]) -> ParseResult:
    result = ParseResult()
    for idx, row in enumerate(_coerce_rows(content)):
        try:
            rec = ScrapedRecord.model_validate(row)
        except ValidationError as e:
            result.warnings.append(f"record {idx}: {e.errors()[0].get('msg', 'invalid')}")
            continue
        amount = rec.amount
        if rec.direction == "debit":
            amount = -abs(amount)
        elif rec.direction == "credit":
            amount = abs(amount)
        result.records.append(
            CanonicalTransaction(
                external_id=rec.external_id,
                account_ref=clean_text(rec.account),
                date=rec.date,
                description=clean_text(rec.description),
                amount=amount,
                raw_type=rec.type,
            )
        )
    if not result.records:
        raise ParseError("No valid records in scraper payload", result.warnings)
    return result


__all__ = ["parse_scraped"]
