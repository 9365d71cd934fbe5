"""
Utils package
"""

from .normalization import normalize_account_token, normalize_description

__all__ = [
    "normalize_account_token",
    "normalize_description",
]
