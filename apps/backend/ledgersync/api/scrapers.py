from __future__ import annotations

from fastapi import APIRouter

from ledgersync.schemas import ScraperOut
from ledgersync.scrapers import list_variants


router = APIRouter(prefix="/scrapers", tags=["scrapers"])


@router.get("", response_model=list[ScraperOut])
def list_scrapers():
    return [
        ScraperOut(slug=v.slug, name=v.name, requires_security_pin=v.requires_security_pin)
        for v in list_variants()
    ]
