"""
API tests: connections and scrapers
"""

from ledgersync import models
from ledgersync.core.encryption import decrypt_payload
from ledgersync.scrapers import LoginResult, RawPayload, RemoteAccount, registry
from ledgersync.services.scheduler import scheduler


class StaticDriver:
    def __init__(self, rows):
        self.rows = rows

    def test_login(self, credentials):
        return LoginResult(ok=True, accounts=[RemoteAccount("Everyday", "0001")])

    def fetch_transactions(self, credentials, account_filter=None):
        return [RawPayload(format="scraper", content=self.rows)]


def _create(client, **overrides):
    body = {
        "scraper_slug": "bom",
        "name": "Bank of Melbourne",
        "username": "jane",
        "password": "s3cret",
        "metadata": {"securityNumber": "4321"},
    }
    body.update(overrides)
    return client.post("/api/connections", json=body)


def test_list_scrapers(client):
    r = client.get("/api/scrapers")
    assert r.status_code == 200
    slugs = {s["slug"]: s for s in r.json()}
    assert {"anz", "bom", "greater", "amex", "wbc"} <= set(slugs)
    assert slugs["bom"]["requires_security_pin"] is True


def test_create_and_list_hides_secrets(client):
    r = _create(client)
    assert r.status_code == 201, r.text
    body = r.json()
    assert body["status"] == "idle"
    assert "security_number" not in body["metadata"]
    assert "password" not in body
    assert "username" not in body

    listed = client.get("/api/connections").json()
    assert [c["id"] for c in listed] == [body["id"]]
    assert "s3cret" not in str(listed)
    assert "4321" not in str(listed)


def test_create_rejects_unknown_scraper_and_metadata(client):
    assert _create(client, scraper_slug="nope").status_code == 404
    assert _create(client, metadata={"securityNumbr": "1"}).status_code == 422


def test_update_keeps_stored_security_number(client, db_session):
    conn_id = _create(client).json()["id"]

    r = client.put(
        f"/api/connections/{conn_id}",
        json={"name": "Renamed", "metadata": {}, "accounts_map": {"Everyday": None}},
    )
    assert r.status_code == 200, r.text
    assert r.json()["name"] == "Renamed"
    assert r.json()["accounts_map"] == {"Everyday": None}

    db_session.expire_all()
    stored = db_session.get(models.BankConnection, conn_id)
    assert decrypt_payload(stored.encrypted_metadata)["security_number"] == "4321"
    assert decrypt_payload(stored.encrypted_credentials)["password"] == "s3cret"


def test_update_replaces_password(client, db_session):
    conn_id = _create(client).json()["id"]
    client.put(f"/api/connections/{conn_id}", json={"password": "n3w"})
    db_session.expire_all()
    stored = db_session.get(models.BankConnection, conn_id)
    assert decrypt_payload(stored.encrypted_credentials) == {"username": "jane", "password": "n3w"}


def test_schedule(client):
    conn_id = _create(client).json()["id"]
    r = client.post(
        f"/api/connections/{conn_id}/schedule",
        json={"frequency": "weekly", "preferred_time": "06:30:00", "timezone": "Australia/Sydney"},
    )
    assert r.status_code == 200, r.text
    body = r.json()
    assert (body["frequency"], body["preferred_time"], body["timezone"]) == ("weekly", "06:30:00", "Australia/Sydney")

    bad = client.post(f"/api/connections/{conn_id}/schedule", json={"frequency": "daily", "timezone": "Mars/Base"})
    assert bad.status_code == 422


def test_run_and_logs(client, db_session, make_account, make_connection):
    acct = make_account("Everyday")
    conn = make_connection(accounts_map={"Everyday": acct.id})
    rows = [{"id": "x-1", "account": "Everyday", "date": "2024-01-02", "description": "Tea", "amount": "-3"}]
    registry.register_driver("anz", lambda variant, connection_id: StaticDriver(rows))

    r = client.post(f"/api/connections/{conn.id}/run")
    assert r.status_code == 202
    scheduler.drain(timeout=10)

    logs = client.get(f"/api/connections/{conn.id}/logs").json()
    assert len(logs) == 1
    assert logs[0]["status"] == "success"
    assert logs[0]["inserts"] == 1

    db_session.expire_all()
    assert db_session.get(models.BankConnection, conn.id).status == models.ConnectionStatus.IDLE


def test_run_conflict_and_missing(client, make_connection):
    busy = make_connection(status=models.ConnectionStatus.RUNNING)
    assert client.post(f"/api/connections/{busy.id}/run").status_code == 409
    assert client.delete(f"/api/connections/{busy.id}").status_code == 409
    assert client.post("/api/connections/98765/run").status_code == 404
    assert client.get("/api/connections/98765/logs").status_code == 404


def test_logs_are_newest_first_and_capped(client, db_session, make_connection):
    conn = make_connection()
    for minute in range(55):
        db_session.add(
            models.AuditLogEntry(
                connection_id=conn.id,
                status=models.AuditStatus.SUCCESS,
                start_time=models.now_local_naive().replace(hour=10, minute=minute, second=0, microsecond=0),
            )
        )
    db_session.commit()

    logs = client.get(f"/api/connections/{conn.id}/logs").json()
    assert len(logs) == 50
    assert logs[0]["start_time"] > logs[-1]["start_time"]


def test_run_all(client, make_connection):
    idle = make_connection(slug="wbc")
    make_connection(slug="amex", status=models.ConnectionStatus.RUNNING)

    r = client.post("/api/connections/run-all")
    assert r.status_code == 202
    assert r.json()["connection_ids"] == [idle.id]
    scheduler.drain(timeout=10)


def test_delete(client, db_session):
    conn_id = _create(client).json()["id"]
    assert client.delete(f"/api/connections/{conn_id}").status_code == 204
    assert client.get("/api/connections").json() == []


def test_connection_test_endpoint(client):
    registry.register_driver("anz", lambda variant, connection_id: StaticDriver([]))
    r = client.post("/api/connections/test", json={"scraper_slug": "anz", "username": "a", "password": "b"})
    assert r.json() == {"success": True, "accounts": ["Everyday"], "error": None}

    failed = client.post("/api/connections/test", json={"scraper_slug": "bom", "username": "a", "password": "b"})
    assert failed.status_code == 200
    assert failed.json()["success"] is False
    assert "security number" in failed.json()["error"]
