"""
Ingest package

Format adapters turning bank exports and scraper output into
``CanonicalTransaction`` records.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from ledgersync.errors import ParseError
from ledgersync.schemas import ParseResult

from .ofx import parse_ofx
from .qif import parse_qif
from .scraped import parse_scraped

SUPPORTED_FORMATS = ("ofx", "qfx", "qif", "scraper")


def decode_payload(raw: bytes | str) -> str:
    """Decode an uploaded payload; OFX 1.x files are frequently CP1252."""
    if isinstance(raw, str):
        return raw
    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        return raw.decode("cp1252", errors="replace")


def parse(
    raw_input: bytes | str | Iterable[Mapping[str, Any]],
    format: str,
    date_format_hint: str | None = None,
    *,
    account_ref: str | None = None,
) -> ParseResult:
    """Parse ``raw_input`` in ``format`` into canonical records.

    Args:
        raw_input: file bytes/text, or structured rows for ``scraper``
        format: one of ``ofx``/``qfx``, ``qif``, ``scraper``
        date_format_hint: ``YYYY-MM-DD``, ``DD/MM/YYYY`` or ``MM/DD/YYYY`` (QIF only)
        account_ref: account ref for formats that carry none (QIF)

    Raises:
        ParseError: malformed input, unknown format, or zero parsed records
    """
    fmt = (format or "").strip().lower()
    if fmt in ("ofx", "qfx"):
        return parse_ofx(decode_payload(raw_input))  # type: ignore[arg-type]
    if fmt == "qif":
        return parse_qif(decode_payload(raw_input), date_format_hint, account_ref)  # type: ignore[arg-type]
    if fmt == "scraper":
        return parse_scraped(raw_input)
    raise ParseError(f"Unsupported format: {format!r}")


__all__ = ["parse", "decode_payload", "parse_ofx", "parse_qif", "parse_scraped", "SUPPORTED_FORMATS"]
