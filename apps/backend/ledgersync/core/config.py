from pydantic_settings import BaseSettings, SettingsConfigDict
from pathlib import Path


class Settings(BaseSettings):
    APP_NAME: str = "LedgerSync Backend"
    ENV: str = "dev"

    # Absolute path to apps/backend/db.sqlite3 so the CWD does not matter
    _backend_dir = Path(__file__).resolve().parents[2]
    DATABASE_URL: str = f"sqlite:///{_backend_dir / 'db.sqlite3'}"

    CORS_ORIGINS: list[str] = ["*"]
    TIMEZONE: str = "UTC"
    LOG_LEVEL: str = "INFO"

    # Fernet key (urlsafe base64, 32 bytes) for credentials at rest
    ENCRYPTION_KEY: str | None = None

    # Exports dropped by browser automation, one sub-directory per connection
    SCRAPER_EXPORT_DIR: str = str(_backend_dir / "exports")

    SCHEDULER_ENABLED: bool = False
    SCHEDULER_TICK_SECONDS: int = 60
    SCHEDULER_MAX_WORKERS: int = 4
    ADAPTER_TIMEOUT_SECONDS: float = 300.0

    CLASSIFY_BATCH_LIMIT: int = 100

    model_config = SettingsConfigDict(env_file=(".env",), env_prefix="LEDGERSYNC_", case_sensitive=False)


settings = Settings()
