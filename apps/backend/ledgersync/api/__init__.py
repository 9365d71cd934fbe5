"""Router aggregation for the HTTP surface."""

from fastapi import FastAPI

from . import connections, imports, rules, scrapers, transactions


def register_routers(app: FastAPI) -> None:
    """Attach all API routes to the FastAPI application."""

    app.include_router(scrapers.router, prefix="/api")
    app.include_router(connections.router, prefix="/api")
    app.include_router(imports.router, prefix="/api")
    app.include_router(rules.router, prefix="/api")
    app.include_router(transactions.router, prefix="/api")
