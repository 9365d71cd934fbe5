"""Adapter for OFX/QFX statement downloads (SGML 1.x and XML 2.x).

OFX 1.x is SGML: leaf elements such as ``<TRNAMT>-12.50`` are never closed.
The text is rewritten into well-formed XML (one element per line, leaves
closed, stray ``&`` escaped) and then walked with ElementTree.

Mapping per ``STMTTRN``:
- ``external_id``: ``FITID``
- ``date``: first 8 chars of ``DTPOSTED`` (``YYYYMMDD``)
- ``amount``: ``TRNAMT``
- ``description``: ``MEMO``, falling back to ``NAME``
- ``raw_type``: ``TRNTYPE``
- ``account_ref``: ``ACCTID`` of the enclosing ``BANKACCTFROM``/``CCACCTFROM``
"""

from __future__ import annotations

import re
import xml.etree.ElementTree as ET
from datetime import datetime

from ledgersync.errors import ParseError
from ledgersync.ingest.utils import clean_text, parse_amount
from ledgersync.schemas import CanonicalTransaction, ParseResult

# Bank TRNTYPEs that always move money out of the account
DEBIT_TYPES = frozenset(
    {"DEBIT", "CHECK", "ATM", "POS", "FEE", "SRVCHG", "DIRECTDEBIT", "PAYMENT", "WITHDRAWAL"}
)

# Tags that contain other elements; any other bare ``<TAG>`` is an empty leaf
AGGREGATE_TAGS = frozenset(
    {
        "OFX",
        "SONRS",
        "STATUS",
        "FI",
        "BANKACCTFROM",
        "CCACCTFROM",
        "BANKACCTTO",
        "CCACCTTO",
        "BANKTRANLIST",
        "STMTTRN",
        "LEDGERBAL",
        "AVAILBAL",
        "BALLIST",
        "BAL",
        "PAYEE",
        "CURRENCY",
        "ORIGCURRENCY",
    }
)
_AGGREGATE_SUFFIXES = ("MSGSRSV1", "MSGSRQV1", "TRNRS", "STMTRS")

_CLOSE_RE = re.compile(r"^</([A-Za-z0-9_.]+)>$")
_OPEN_RE = re.compile(r"^<([A-Za-z0-9_.]+)>$")
_LEAF_RE = re.compile(r"^<([A-Za-z0-9_.]+)>(.*)$")
_BARE_AMP_RE = re.compile(r"&(?!(amp|lt|gt|apos|quot|#\d+);)")


def _is_aggregate(tag: str) -> bool:
    return tag in AGGREGATE_TAGS or tag.endswith(_AGGREGATE_SUFFIXES)


def sgml_to_xml(data: str) -> str:
    """Convert loose OFX SGML (or OFX XML) starting at ``<OFX>`` into XML.

    Close tags that do not match an open aggregate are dropped and aggregates
    left open at the end are closed, so the output is always well formed.
    """
    start = data.upper().find("<OFX>")
    if start == -1:
        raise ParseError("Not a valid OFX/QFX file (no <OFX> tag found)")
    body = re.sub(r"\s*<", "\n<", data[start:])

    out: list[str] = []
    open_tags: list[str] = []
    last_leaf: str | None = None
    for raw_line in body.split("\n"):
        line = raw_line.strip()
        if not line:
            continue
        m = _CLOSE_RE.match(line)
        if m:
            tag = m.group(1).upper()
            # the leaf was already closed when its value line was emitted
            if tag != last_leaf and tag in open_tags:
                while open_tags:
                    closed = open_tags.pop()
                    out.append(f"</{closed}>")
                    if closed == tag:
                        break
            last_leaf = None
            continue
        m = _OPEN_RE.match(line)
        if m:
            tag = m.group(1).upper()
            if _is_aggregate(tag):
                out.append(f"<{tag}>")
                open_tags.append(tag)
                last_leaf = None
            else:
                out.append(f"<{tag}></{tag}>")
                last_leaf = tag
            continue
        m = _LEAF_RE.match(line)
        if m:
            tag = m.group(1).upper()
            value = _BARE_AMP_RE.sub("&amp;", m.group(2).strip())
            out.append(f"<{tag}>{value}</{tag}>")
            last_leaf = tag
            continue
        # processing instructions / stray text
        last_leaf = None
    out.extend(f"</{tag}>" for tag in reversed(open_tags))
    return "\n".join(out)


def _parse_ofx_date(raw: str | None):
    s = (raw or "").strip()[:8]
    return datetime.strptime(s, "%Y%m%d").date()


def _iter_statements(root: ET.Element):
    for stmt in root.iter("STMTRS"):
        yield stmt, stmt.findtext("BANKACCTFROM/ACCTID"), True
    for stmt in root.iter("CCSTMTRS"):
        yield stmt, stmt.findtext("CCACCTFROM/ACCTID"), False


def parse_ofx(data: str) -> ParseResult:
    """Parse OFX/QFX text into canonical records.

    Raises:
        ParseError: when the document is not OFX or no transaction parses
    """
    xml_data = sgml_to_xml(data)
    try:
        root = ET.fromstring(xml_data)
    except ET.ParseError as e:
        raise ParseError(f"Malformed OFX document: {e}")

    result = ParseResult()
    for stmt, acct_id, is_bank in _iter_statements(root):
        acct_ref = clean_text(acct_id)
        if not acct_ref:
            result.warnings.append("Skipped statement without ACCTID")
            continue
        for idx, trn in enumerate(stmt.iter("STMTTRN")):
            fitid = trn.findtext("FITID")
            try:
                posted = _parse_ofx_date(trn.findtext("DTPOSTED"))
            except ValueError:
                result.warnings.append(f"{acct_ref}#{idx}: unparseable DTPOSTED {trn.findtext('DTPOSTED')!r}")
                continue
            raw_amount = (trn.findtext("TRNAMT") or "").strip()
            try:
                amount = parse_amount(raw_amount)
            except ValueError as e:
                result.warnings.append(f"{acct_ref}#{idx}: {e}")
                continue
            trntype = clean_text(trn.findtext("TRNTYPE")).upper() or None
            # some banks write unsigned debits; card statements are trusted as-is
            if (
                is_bank
                and trntype in DEBIT_TYPES
                and amount > 0
                and not raw_amount.startswith("+")
            ):
                amount = -amount
            description = clean_text(trn.findtext("MEMO")) or clean_text(trn.findtext("NAME"))
            result.records.append(
                CanonicalTransaction(
                    external_id=fitid,
                    account_ref=acct_ref,
                    date=posted,
                    description=description,
                    amount=amount,
                    raw_type=trntype,
                )
            )

    if not result.records:
        raise ParseError("No transactions found in OFX/QFX file", result.warnings)
    return result


__all__ = ["parse_ofx", "sgml_to_xml", "DEBIT_TYPES"]
