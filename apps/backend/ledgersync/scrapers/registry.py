"""Registry of scraper variants, one per institution slug.

Every variant exposes the same capability interface
(:class:`~ledgersync.scrapers.base.ScraperAdapter`). What differs per
institution is data: display name, whether a security PIN is required, the
metadata model accepted at the boundary, a forced QIF date format, and the
driver that talks to the institution.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional

from pydantic import ValidationError

from ledgersync.core.config import settings
from ledgersync.errors import AdapterNotFoundError
from ledgersync.models import DateFormat
from ledgersync.scrapers.base import GreaterBankMetadata, ScraperAdapter, ScraperMetadata
from ledgersync.scrapers.export_directory import ExportDirectoryDriver

DriverFactory = Callable[["ScraperVariant", Optional[int]], ScraperAdapter]


def export_directory_factory(variant: "ScraperVariant", connection_id: Optional[int]) -> ScraperAdapter:
    base = Path(settings.SCRAPER_EXPORT_DIR)
    return ExportDirectoryDriver(variant, base / str(connection_id) if connection_id is not None else base)


@dataclass
class ScraperVariant:
    slug: str
    name: str
    requires_security_pin: bool = False
    metadata_model: type[ScraperMetadata] = ScraperMetadata
    date_format: Optional[str] = None
    driver_factory: DriverFactory = field(default=export_directory_factory, repr=False)

    def build(self, connection_id: Optional[int] = None) -> ScraperAdapter:
        return self.driver_factory(self, connection_id)

    def validate_metadata(self, metadata: dict[str, Any] | None) -> ScraperMetadata:
        """Validate adapter metadata; raises pydantic ``ValidationError``."""
        return self.metadata_model.model_validate(metadata or {})


_REGISTRY: dict[str, ScraperVariant] = {}


def register_variant(variant: ScraperVariant) -> ScraperVariant:
    _REGISTRY[variant.slug.lower()] = variant
    return variant


def register_driver(slug: str, factory: DriverFactory) -> None:
    """Plug a concrete driver (browser automation, API client, fake) into a variant."""
    get_variant(slug).driver_factory = factory


def get_variant(slug: str) -> ScraperVariant:
    try:
        return _REGISTRY[(slug or "").lower()]
    except KeyError:
        raise AdapterNotFoundError(f"Scraper {slug} is not registered")


def list_variants() -> list[ScraperVariant]:
    return sorted(_REGISTRY.values(), key=lambda v: v.name)


def is_valid_metadata(slug: str, metadata: dict[str, Any] | None) -> bool:
    try:
        get_variant(slug).validate_metadata(metadata)
    except ValidationError:
        return False
    return True


register_variant(ScraperVariant(slug="anz", name="ANZ Bank"))
register_variant(ScraperVariant(slug="bom", name="Bank of Melbourne", requires_security_pin=True))
register_variant(ScraperVariant(slug="greater", name="Greater Bank", metadata_model=GreaterBankMetadata))
# Amex QIF exports are always day-first regardless of the connection setting
register_variant(ScraperVariant(slug="amex", name="American Express", date_format=DateFormat.DAY_FIRST.value))
register_variant(ScraperVariant(slug="wbc", name="Westpac"))
