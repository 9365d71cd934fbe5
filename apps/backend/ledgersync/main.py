import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api import register_routers
from .core.config import settings
from .core.database import SessionLocal
from .core.logging import configure_logging
from .services.rule_service import migrate_legacy_rules
from .services.scheduler import scheduler

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.LOG_LEVEL)
    # connections left running by a previous process can never finish
    scheduler.recover()
    db = SessionLocal()
    try:
        migrate_legacy_rules(db)
    finally:
        db.close()
    if settings.SCHEDULER_ENABLED:
        scheduler.start()
    logger.info(f"{settings.APP_NAME} started (env={settings.ENV})")
    try:
        yield
    finally:
        scheduler.stop(wait=False)


app = FastAPI(title=settings.APP_NAME, version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Total-Count"],
)


@app.get("/health")
def health():
    return {"status": "ok"}


register_routers(app)
