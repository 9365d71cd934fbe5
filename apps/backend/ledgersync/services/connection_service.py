"""
Connection configuration service

Create, update and delete bank connections. Credentials and adapter metadata
are stored encrypted and never returned to clients.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from sqlalchemy.orm import Session

from ledgersync import models, schemas
from ledgersync.core.encryption import decrypt_payload, encrypt_payload, sanitize_metadata
from ledgersync.errors import ConnectionNotFoundError
from ledgersync.scrapers import Credentials, ScraperVariant, get_variant

logger = logging.getLogger(__name__)

AUDIT_LOG_LIMIT = 50


def load_credentials(connection: models.BankConnection, variant: ScraperVariant | None = None) -> Credentials:
    """Decrypt a connection's secrets into the form adapters expect."""
    variant = variant or get_variant(connection.scraper_slug)
    creds = decrypt_payload(connection.encrypted_credentials, "credentials")
    metadata = decrypt_payload(connection.encrypted_metadata, "metadata")
    return Credentials(
        username=creds.get("username", ""),
        password=creds.get("password", ""),
        metadata=variant.validate_metadata(metadata),
    )


class ConnectionService:
    def __init__(self, db: Session, user_id: int) -> None:
        self.db = db
        self.user_id = user_id

    def list_connections(self) -> List[models.BankConnection]:
        return (
            self.db.query(models.BankConnection)
            .filter(models.BankConnection.user_id == self.user_id)
            .order_by(models.BankConnection.created_at.desc(), models.BankConnection.id.desc())
            .all()
        )

    def get(self, connection_id: int) -> models.BankConnection:
        connection = (
            self.db.query(models.BankConnection)
            .filter(
                models.BankConnection.id == connection_id,
                models.BankConnection.user_id == self.user_id,
            )
            .first()
        )
        if not connection:
            raise ConnectionNotFoundError(connection_id)
        return connection

    def create(self, payload: schemas.ConnectionCreate) -> models.BankConnection:
        variant = get_variant(payload.scraper_slug)
        metadata = variant.validate_metadata(payload.metadata)
        connection = models.BankConnection(
            user_id=self.user_id,
            scraper_slug=variant.slug,
            name=payload.name,
            encrypted_credentials=encrypt_payload(
                {"username": payload.username, "password": payload.password}, "credentials"
            ),
            encrypted_metadata=encrypt_payload(metadata.model_dump(exclude_none=True), "metadata"),
            date_format=payload.date_format.value,
            accounts_map=dict(payload.accounts_map),
        )
        self.db.add(connection)
        self.db.commit()
        self.db.refresh(connection)
        logger.info(f"Created connection {connection.id} ({variant.slug}) for user {self.user_id}")
        return connection

    def update(self, connection_id: int, payload: schemas.ConnectionUpdate) -> models.BankConnection:
        connection = self.get(connection_id)
        variant = get_variant(connection.scraper_slug)
        data = payload.model_dump(exclude_unset=True)

        if data.get("name"):
            connection.name = data["name"]
        if data.get("date_format"):
            connection.date_format = payload.date_format.value  # type: ignore[union-attr]
        if data.get("accounts_map") is not None:
            connection.accounts_map = dict(data["accounts_map"])

        if data.get("username") or data.get("password"):
            current = decrypt_payload(connection.encrypted_credentials, "credentials")
            if data.get("username"):
                current["username"] = data["username"]
            if data.get("password"):
                current["password"] = data["password"]
            connection.encrypted_credentials = encrypt_payload(current, "credentials")

        if data.get("metadata") is not None:
            connection.encrypted_metadata = encrypt_payload(
                self._merge_metadata(connection, variant, data["metadata"]), "metadata"
            )

        self.db.commit()
        self.db.refresh(connection)
        return connection

    @staticmethod
    def _merge_metadata(
        connection: models.BankConnection,
        variant: ScraperVariant,
        incoming: Dict[str, Any],
    ) -> Dict[str, Any]:
        """Merge new settings over stored ones.

        Clients never see the stored security number, so an update that omits
        it (or sends it blank) keeps the existing value.
        """
        stored = variant.validate_metadata(decrypt_payload(connection.encrypted_metadata, "metadata"))
        update = variant.validate_metadata(incoming)
        merged = {**stored.model_dump(exclude_none=True), **update.model_dump(exclude_unset=True, exclude_none=True)}
        if not update.security_number and stored.security_number:
            merged["security_number"] = stored.security_number
        return merged

    def update_schedule(self, connection_id: int, payload: schemas.ScheduleUpdate) -> models.BankConnection:
        connection = self.get(connection_id)
        connection.frequency = payload.frequency
        connection.preferred_time = payload.preferred_time
        connection.timezone = payload.timezone
        connection.is_active = payload.is_active
        self.db.commit()
        self.db.refresh(connection)
        return connection

    def delete(self, connection_id: int) -> None:
        connection = self.get(connection_id)
        self.db.delete(connection)
        self.db.commit()

    def list_logs(self, connection_id: int, limit: int = AUDIT_LOG_LIMIT) -> List[models.AuditLogEntry]:
        self.get(connection_id)
        return (
            self.db.query(models.AuditLogEntry)
            .filter(models.AuditLogEntry.connection_id == connection_id)
            .order_by(models.AuditLogEntry.start_time.desc(), models.AuditLogEntry.id.desc())
            .limit(limit)
            .all()
        )

    def to_out(self, connection: models.BankConnection) -> schemas.ConnectionOut:
        """Serialize a connection with secrets stripped."""
        metadata = decrypt_payload(connection.encrypted_metadata, "metadata")
        return schemas.ConnectionOut(
            id=connection.id,
            name=connection.name,
            scraper_slug=connection.scraper_slug,
            status=connection.status,
            date_format=connection.date_format,
            accounts_map=dict(connection.accounts_map or {}),
            metadata=sanitize_metadata(metadata),
            frequency=connection.frequency,
            preferred_time=connection.preferred_time,
            timezone=connection.timezone,
            is_active=connection.is_active,
            last_run_at=connection.last_run_at,
            last_error=connection.last_error,
        )
