from __future__ import annotations

import os
import shutil
import tempfile
from typing import Generator, Any

import pytest
from cryptography.fernet import Fernet

# Point the application at throwaway storage before ledgersync is imported
_fd, _TEST_DB_PATH = tempfile.mkstemp(prefix="ledgersync_test_", suffix=".sqlite3")
os.close(_fd)
_EXPORT_DIR = tempfile.mkdtemp(prefix="ledgersync_exports_")
os.environ["LEDGERSYNC_DATABASE_URL"] = f"sqlite:///{_TEST_DB_PATH}"
os.environ["LEDGERSYNC_ENCRYPTION_KEY"] = Fernet.generate_key().decode()
os.environ["LEDGERSYNC_SCRAPER_EXPORT_DIR"] = _EXPORT_DIR
os.environ["LEDGERSYNC_SCHEDULER_ENABLED"] = "false"

from sqlalchemy.orm import sessionmaker  # noqa: E402

from ledgersync.core.database import Base, engine as app_engine, get_db  # noqa: E402
from ledgersync.core.encryption import clear_fernet_cache, encrypt_payload  # noqa: E402
from ledgersync.main import app  # noqa: E402
from ledgersync import models  # noqa: E402
from ledgersync.scrapers import registry  # noqa: E402
from ledgersync.services.scheduler import scheduler  # noqa: E402


@pytest.fixture(scope="session")
def engine() -> Generator[Any, Any, Any]:
    clear_fernet_cache()
    Base.metadata.create_all(app_engine)
    yield app_engine
    scheduler.stop(wait=True)
    app_engine.dispose()
    for suffix in ("", "-wal", "-shm"):
        try:
            os.remove(_TEST_DB_PATH + suffix)
        except OSError:
            pass
    shutil.rmtree(_EXPORT_DIR, ignore_errors=True)


@pytest.fixture(scope="session")
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture(scope="function")
def db_session(engine, session_factory) -> Generator[Any, Any, Any]:
    session = session_factory()
    # every test starts from one demo user
    user = models.User(email="demo@example.com", is_active=True)
    session.add(user)
    session.commit()

    try:
        yield session
    finally:
        scheduler.drain(timeout=10)
        session.close()
        with engine.connect() as conn:
            # SQLite ignores foreign_keys pragmas inside a transaction
            if engine.dialect.name == "sqlite":
                conn.exec_driver_sql("PRAGMA foreign_keys=OFF")
                conn.commit()
            for tbl in reversed(Base.metadata.sorted_tables):
                conn.execute(tbl.delete())
            conn.commit()
            if engine.dialect.name == "sqlite":
                conn.exec_driver_sql("PRAGMA foreign_keys=ON")
                conn.commit()


@pytest.fixture(autouse=True)
def override_dependency(db_session):
    # FastAPI DI override
    def _get_db_override():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = _get_db_override
    yield
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def restore_drivers():
    factories = {slug: v.driver_factory for slug, v in registry._REGISTRY.items()}
    yield
    for slug, factory in factories.items():
        registry._REGISTRY[slug].driver_factory = factory


@pytest.fixture()
def client(db_session):
    from fastapi.testclient import TestClient
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def user(db_session) -> models.User:
    return db_session.query(models.User).order_by(models.User.id).first()


@pytest.fixture()
def export_dir() -> str:
    return _EXPORT_DIR


@pytest.fixture()
def make_account(db_session, user):
    def _make(name: str, **kwargs) -> models.Account:
        account = models.Account(user_id=user.id, name=name, **kwargs)
        db_session.add(account)
        db_session.commit()
        return account

    return _make


@pytest.fixture()
def make_connection(db_session, user):
    def _make(
        slug: str = "anz",
        accounts_map: dict | None = None,
        metadata: dict | None = None,
        **kwargs,
    ) -> models.BankConnection:
        connection = models.BankConnection(
            user_id=user.id,
            scraper_slug=slug,
            name=kwargs.pop("name", f"{slug} connection"),
            encrypted_credentials=encrypt_payload({"username": "jane", "password": "s3cret"}, "credentials"),
            encrypted_metadata=encrypt_payload(metadata or {}, "metadata"),
            accounts_map=accounts_map or {},
            **kwargs,
        )
        db_session.add(connection)
        db_session.commit()
        return connection

    return _make
