"""
Normalization helpers

Account names and descriptions arrive with inconsistent case, spacing and
punctuation depending on the institution and export format.
"""

import re
import unicodedata


def normalize_account_token(value: str | None) -> str:
    """
    Normalize a remote account name for lookup

    - NFKC normalization
    - case folding
    - strip whitespace and punctuation

    Example:
        >>> normalize_account_token("Everyday_Account")
        "everydayaccount"
        >>> normalize_account_token("Everyday Account (…1234)")
        "everydayaccount1234"
    """
    if not value:
        return ""

    normalized = unicodedata.normalize("NFKC", value)
    normalized = normalized.casefold()
    # underscores count as word chars for \W; exported file names use them as spaces
    normalized = re.sub(r"[\W_]+", "", normalized, flags=re.UNICODE)
    return normalized


def normalize_description(value: str | None) -> str:
    """Case-fold and collapse runs of whitespace; used for duplicate detection."""
    if not value:
        return ""
    return " ".join(unicodedata.normalize("NFKC", value).casefold().split())
