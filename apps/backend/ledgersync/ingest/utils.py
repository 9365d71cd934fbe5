"""Helpers shared by the format adapters."""

from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation


def clean_text(value: str | None) -> str:
    """Collapse internal whitespace/newlines and strip."""
    if value is None:
        return ""
    return re.sub(r"\s+", " ", value.replace("\r", " ").replace("\n", " ")).strip()


def parse_amount(raw: str | None) -> Decimal:
    """Parse a bank amount string into an exact ``Decimal``.

    Accepts thousand separators, a leading currency symbol, a trailing minus
    (``12.50-``) and accounting parentheses (``(12.50)``).

    Raises:
        ValueError: when nothing numeric remains
    """
    if raw is None:
        raise ValueError("missing amount")
    s = raw.strip().replace(",", "").replace(" ", "")
    negative = False
    if s.startswith("(") and s.endswith(")"):
        negative = True
        s = s[1:-1]
    if s.endswith("-"):
        negative = not negative
        s = s[:-1]
    s = re.sub(r"^[^\d+\-.]+", "", s)
    if not s:
        raise ValueError(f"invalid amount: {raw!r}")
    try:
        value = Decimal(s)
    except InvalidOperation:
        raise ValueError(f"invalid amount: {raw!r}")
    if not value.is_finite():
        raise ValueError(f"invalid amount: {raw!r}")
    return -value if negative else value


__all__ = ["clean_text", "parse_amount"]
