"""Adapter for QIF (Quicken Interchange Format) exports.

QIF is line-oriented: each line starts with a one-letter tag and records end
with ``^``. Recognised tags inside a transaction list:

- ``D`` date, read according to the date-format hint
- ``T`` / ``U`` amount (``T`` wins when both are present)
- ``P`` payee, ``M`` memo -> description ``"payee - memo"``
- ``N`` check number; purely numeric values become the external id

An ``!Account`` block (``N`` = account name) switches the account ref for the
records that follow. QIF writes debits negative, so amounts keep their sign.
"""

from __future__ import annotations

import re
from datetime import date

from ledgersync.errors import ParseError
from ledgersync.ingest.utils import clean_text, parse_amount
from ledgersync.models import DateFormat
from ledgersync.schemas import CanonicalTransaction, ParseResult

DEFAULT_ACCOUNT_REF = "qif-default"


def parse_qif_date(raw: str, hint: str | None = None) -> date:
    """Parse a QIF date using the connection's date-format hint.

    Four-digit leading components are always read as ``YYYY-MM-DD``. Otherwise
    ``DD/MM/YYYY`` reads day first and anything else month first. Two-digit
    years above 70 are 19xx.

    Raises:
        ValueError: on anything that is not a valid calendar date
    """
    parts = [p for p in re.split(r"[/'\-.]", raw.replace(" ", "")) if p]
    if len(parts) != 3 or not all(p.isdigit() for p in parts):
        raise ValueError(f"unparseable date {raw!r}")
    if len(parts[0]) == 4:
        year, month, day = parts
    elif hint == DateFormat.DAY_FIRST.value:
        day, month, year = parts
    else:
        month, day, year = parts
    if len(year) == 2:
        year = f"19{year}" if int(year) > 70 else f"20{year}"
    return date(int(year), int(month), int(day))


def _description(payee: str, memo: str) -> str:
    if payee and memo:
        return f"{payee} - {memo}"
    return payee or memo


def parse_qif(data: str, date_format_hint: str | None = None, account_ref: str | None = None) -> ParseResult:
    """Parse QIF text into canonical records.

    Raises:
        ParseError: when no transaction parses
    """
    result = ParseResult()
    current_ref = account_ref or DEFAULT_ACCOUNT_REF
    in_account_block = False
    account_name: str | None = None
    tx: dict[str, str] = {}
    index = 0

    def _flush() -> None:
        nonlocal index
        if not tx:
            return
        label = f"record {index}"
        index += 1
        if "D" not in tx or ("T" not in tx and "U" not in tx):
            result.warnings.append(f"{label}: missing date or amount")
            return
        try:
            posted = parse_qif_date(tx["D"], date_format_hint)
        except ValueError as e:
            result.warnings.append(f"{label}: {e}")
            return
        try:
            amount = parse_amount(tx.get("T") or tx.get("U"))
        except ValueError as e:
            result.warnings.append(f"{label}: {e}")
            return
        number = tx.get("N", "").strip()
        result.records.append(
            CanonicalTransaction(
                external_id=f"qif-chk-{number}" if number.isdigit() else None,
                account_ref=current_ref,
                date=posted,
                description=_description(clean_text(tx.get("P")), clean_text(tx.get("M"))),
                amount=amount,
                raw_type=number if number and not number.isdigit() else None,
            )
        )

    for raw_line in data.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        if line.startswith("!"):
            header = line.split(":", 1)[0].lower()
            if header == "!account":
                in_account_block = True
                account_name = None
            elif header == "!type":
                in_account_block = False
            tx = {}
            continue
        if line == "^":
            if in_account_block:
                if account_name and not account_ref:
                    current_ref = account_name
                in_account_block = False
            else:
                _flush()
            tx = {}
            continue
        code, value = line[0], line[1:]
        if in_account_block:
            if code == "N":
                account_name = clean_text(value)
            continue
        # split lines (S/E/$) are ignored; the parent amount is authoritative
        if code in ("D", "T", "U", "P", "M", "N") and code not in tx:
            tx[code] = value

    # trailing record without terminating caret
    _flush()

    if not result.records:
        raise ParseError("No transactions found in QIF file", result.warnings)
    return result


__all__ = ["parse_qif", "parse_qif_date", "DEFAULT_ACCOUNT_REF"]
