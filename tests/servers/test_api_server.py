"""Route tests for servers.api_server using TestClient and in-memory adapters."""

import datetime
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from dumpy.core.config import ServerConfig
from dumpy.core.models import EngineKind
from dumpy.servers.api_server import create_app

BODY = {
    "host": "localhost",
    "port": 3306,
    "database": "app",
    "username": "root",
    "password": "secret",
    "ssl": False,
}


@pytest.fixture
def client(manager):
    app = create_app(ServerConfig(), manager=manager)
    with TestClient(app) as test_client:
        yield test_client


def _connect(client: TestClient, connection_id: str = "conn-1", db_type: str = "mysql"):
    return client.post(f"/api/{db_type}/connect", json={**BODY, "id": connection_id})


# --- health / type validation ---


def test_health(client) -> None:
    response = client.get("/api/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["uptime"] >= 0
    assert data["timestamp"]


def test_invalid_db_type(client) -> None:
    response = client.post("/api/sqlite/test-connection", json=BODY)

    assert response.status_code == 400
    assert response.json() == {
        "success": False,
        "error": "Invalid database type",
        "validTypes": ["mysql", "postgresql", "mongodb", "sqlserver", "oracle"],
    }


def test_invalid_db_type_on_query(client) -> None:
    response = client.post(
        "/api/redis/query", json={"connection": {"id": "x"}, "query": "GET k"}
    )

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid database type"


# --- test-connection ---


def test_test_connection_success(client) -> None:
    response = client.post("/api/mysql/test-connection", json=BODY)

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert isinstance(data["duration"], int)
    assert client.get("/api/connections").json()["connections"] == []


def test_test_connection_auth_failure_is_200(client, fake_mysql) -> None:
    fake_mysql.open_error = Exception("Access denied for user 'root'@'localhost'")

    response = client.post("/api/mysql/test-connection", json=BODY)

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is False
    assert data["error"] == "AUTH_FAILED"
    assert "Access denied" in data["message"]


def test_test_connection_invalid_config(client) -> None:
    response = client.post("/api/postgresql/test-connection", json={**BODY, "host": ""})

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is False
    assert data["error"] == "INVALID_CONFIG"
    assert "Host is required" in data["message"]


def test_test_connection_malformed_pooling(client) -> None:
    response = client.post(
        "/api/mysql/test-connection", json={**BODY, "pooling": {"max": "lots"}}
    )

    assert response.status_code == 200
    assert response.json()["error"] == "INVALID_CONFIG"


# --- generic /api/connections/test ---


def test_generic_test_success(client) -> None:
    response = client.post("/api/connections/test", json={**BODY, "type": "postgresql"})

    assert response.status_code == 200
    assert response.json()["success"] is True


@pytest.mark.parametrize(
    "error,status,kind",
    [
        (ConnectionRefusedError("connect ECONNREFUSED"), 503, "CONN_REFUSED"),
        (TimeoutError("timed out"), 503, "TIMEOUT"),
        (Exception("password authentication failed"), 400, "AUTH_FAILED"),
        (Exception('database "x" does not exist'), 400, "DB_NOT_FOUND"),
        (Exception("SSL connection is required"), 400, "SSL_REQUIRED"),
    ],
)
def test_generic_test_status_by_kind(client, adapters, error, status, kind) -> None:
    adapters[EngineKind.POSTGRESQL].open_error = error

    response = client.post("/api/connections/test", json={**BODY, "type": "postgresql"})

    assert response.status_code == status
    data = response.json()
    assert data["success"] is False
    assert data["error"] == kind


def test_generic_test_invalid_config(client) -> None:
    response = client.post("/api/connections/test", json={**BODY, "type": "mysql", "port": "abc"})

    assert response.status_code == 400
    assert response.json()["error"] == "INVALID_CONFIG"


def test_generic_test_unknown_type(client) -> None:
    response = client.post("/api/connections/test", json={**BODY, "type": "db2"})

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid database type"


# --- connect / query / disconnect ---


def test_connect_query_disconnect(client, fake_mysql) -> None:
    response = _connect(client)
    assert response.status_code == 200
    assert response.json()["success"] is True
    assert response.json()["id"] == "conn-1"

    response = client.post(
        "/api/mysql/query",
        json={
            "connection": {"id": "conn-1", "type": "mysql", "database": "app"},
            "query": "SELECT ? AS n",
            "params": [1],
        },
    )
    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["rows"] == [{"n": 1}]
    assert fake_mysql.queries == [("SELECT ? AS n", [1])]

    response = client.post("/api/mysql/disconnect", json={"connection": {"id": "conn-1"}})
    assert response.json() == {"success": True}

    response = client.post(
        "/api/mysql/query", json={"connection": {"id": "conn-1"}, "query": "SELECT 1"}
    )
    assert response.status_code == 404
    assert response.json()["error"] == "Connection not found"


def test_connect_requires_id(client) -> None:
    response = client.post("/api/mysql/connect", json=BODY)

    assert response.status_code == 400
    assert response.json()["error"] == "INVALID_CONFIG"


def test_connect_refused(client, fake_mysql) -> None:
    fake_mysql.open_error = ConnectionRefusedError("connect ECONNREFUSED 127.0.0.1:3306")

    response = _connect(client)

    assert response.status_code == 503
    assert response.json()["error"] == "CONN_REFUSED"


def test_query_accepts_bare_id(client) -> None:
    _connect(client)

    response = client.post("/api/mysql/query", json={"connection": "conn-1", "query": "SELECT 1"})

    assert response.status_code == 200


def test_query_on_other_engine_is_rejected(client, fake_mysql) -> None:
    _connect(client)

    response = client.post(
        "/api/oracle/query", json={"connection": {"id": "conn-1"}, "query": "SELECT 1 FROM DUAL"}
    )

    assert response.status_code == 400
    data = response.json()
    assert data["error"] == "Database type mismatch"
    assert "mysql" in data["message"]
    assert fake_mysql.queries == []


def test_query_failure_is_500(client, fake_mysql) -> None:
    _connect(client)
    fake_mysql.query_error = RuntimeError("Table 'app.nope' doesn't exist")

    response = client.post(
        "/api/mysql/query", json={"connection": {"id": "conn-1"}, "query": "SELECT * FROM nope"}
    )

    assert response.status_code == 500
    data = response.json()
    assert data["success"] is False
    assert data["error"] == "Query execution failed: Table 'app.nope' doesn't exist"
    assert "duration" in data


def test_query_rows_are_json_encoded(client, fake_mysql) -> None:
    _connect(client)
    fake_mysql.rows = [{
        "created": datetime.datetime(2024, 1, 2, 3, 4, 5),
        "price": Decimal("9.50"),
        "blob": b"\x01\x02",
    }]

    response = client.post(
        "/api/mysql/query", json={"connection": {"id": "conn-1"}, "query": "SELECT 1"}
    )

    row = response.json()["rows"][0]
    assert row["created"] == "2024-01-02T03:04:05"
    assert row["price"] == 9.5
    assert row["blob"] == "0102"


def test_query_missing_fields_is_422(client) -> None:
    response = client.post("/api/mysql/query", json={"query": "SELECT 1"})

    assert response.status_code == 422
    assert response.json()["success"] is False


def test_disconnect_unknown_is_ok(client) -> None:
    response = client.post("/api/oracle/disconnect", json={"connection": {"id": "ghost"}})

    assert response.status_code == 200
    assert response.json() == {"success": True}


# --- listing ---


def test_list_connections_hides_password(client) -> None:
    _connect(client, "a")
    _connect(client, "b")

    response = client.get("/api/connections")

    data = response.json()
    assert data["stats"]["connections"] == 2
    assert sorted(entry["id"] for entry in data["connections"]) == ["a", "b"]
    assert "secret" not in response.text


def test_shutdown_closes_connections(manager, fake_mysql) -> None:
    app = create_app(ServerConfig(), manager=manager)
    with TestClient(app) as test_client:
        _connect(test_client)
        assert len(manager) == 1

    assert len(manager) == 0
    assert len(fake_mysql.closed) == 1
