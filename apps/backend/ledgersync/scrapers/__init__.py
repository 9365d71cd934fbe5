"""
Scrapers package

Capability interface for per-institution adapters and the slug registry.
"""

from .base import (
    Credentials,
    GreaterBankMetadata,
    LoginResult,
    RawPayload,
    RemoteAccount,
    ScraperAdapter,
    ScraperMetadata,
)
from .registry import (
    ScraperVariant,
    get_variant,
    list_variants,
    register_driver,
    register_variant,
)

__all__ = [
    "Credentials",
    "GreaterBankMetadata",
    "LoginResult",
    "RawPayload",
    "RemoteAccount",
    "ScraperAdapter",
    "ScraperMetadata",
    "ScraperVariant",
    "get_variant",
    "list_variants",
    "register_driver",
    "register_variant",
]
