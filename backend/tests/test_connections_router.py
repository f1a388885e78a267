# backend/tests/test_connections_router.py

import json
from http.cookies import SimpleCookie
from urllib.parse import parse_qs, urlparse

from fastapi.testclient import TestClient

from app.connections import service as connection_service_module
from app.connections.router import get_connection_service
from app.connections.service import ConnectionService
from app.connections.store import (
    APP_CREDENTIALS_COOKIE,
    CONNECTIONS_COOKIE,
    OAUTH_STATE_COOKIE,
    PROPERTY_MAPPING_COOKIE,
)
from app.main import create_app
from app.notion.client import NotionAPIError
from app.notion.config import NotionConfig

CONFIG = NotionConfig(
    api_base_url="https://api.notion.com/v1",
    api_version="2022-06-28",
    timeout_seconds=5.0,
    max_concurrency=2,
    query_page_size=50,
)


def _db(database_id, title):
    return {"object": "database", "id": database_id, "title": [{"plain_text": title}]}


class FakeNotionClient:
    def __init__(self, databases=None, me=None, schema=None, search_error=None):
        self.config = CONFIG
        self._databases = databases or []
        self._me = me
        self._schema = schema or {}
        self._search_error = search_error

    def get_me(self):
        if self._me is None:
            raise NotionAPIError("Could not resolve bot user.", 404)
        return self._me

    def search_databases(self, page_size=100):
        if self._search_error is not None:
            raise self._search_error
        return self._databases

    def retrieve_database(self, database_id):
        return self._schema


def create_test_client(fake_client=None) -> TestClient:
    app = create_app()
    fake_client = fake_client or FakeNotionClient()
    service = ConnectionService(client_factory=lambda token: fake_client, config=CONFIG)
    app.dependency_overrides[get_connection_service] = lambda: service
    return TestClient(app)


def _set_json_cookie(client: TestClient, name: str, value) -> None:
    client.cookies.set(name, json.dumps(value, separators=(",", ":")))


def _response_cookies(resp):
    jar = SimpleCookie()
    for header in resp.headers.get_list("set-cookie"):
        jar.load(header)
    return jar


def _stored_json(resp, name):
    return json.loads(_response_cookies(resp)[name].value)


def _connection(workspace_id, **extra):
    data = {
        "workspaceId": workspace_id,
        "workspaceName": workspace_id.title(),
        "accessToken": f"tok-{workspace_id}",
        "tasksDbId": "db-tasks",
    }
    data.update(extra)
    return data


# --- /notion/connections -------------------------------------------------


def test_list_connections_hides_tokens():
    client = create_test_client()
    _set_json_cookie(
        client,
        CONNECTIONS_COOKIE,
        [_connection("alpha", connectedAt=1700000000000), {"workspaceId": "broken"}],
    )

    resp = client.get("/notion/connections")

    assert resp.status_code == 200
    assert resp.json() == {
        "ok": True,
        "connections": [
            {
                "workspaceId": "alpha",
                "workspaceName": "Alpha",
                "tasksDbId": "db-tasks",
                "projectsDbId": "",
                "sprintsDbId": "",
                "connectedAt": 1700000000000,
            }
        ],
    }


def test_connect_with_token_detects_databases():
    fake = FakeNotionClient(
        databases=[
            _db("db-1", "Team Tasks"),
            _db("db-2", "Projects"),
            _db("db-3", "Iterations"),
            _db("db-4", "Notes"),
        ],
        me={"id": "bot-1", "bot": {"workspace_name": "Acme"}},
    )
    client = create_test_client(fake)
    _set_json_cookie(client, CONNECTIONS_COOKIE, [_connection("other")])

    resp = client.post("/notion/connections", json={"accessToken": "secret_abc"})

    assert resp.status_code == 200
    assert resp.json() == {
        "ok": True,
        "workspaceName": "Acme",
        "detected": {"tasksDbId": "db-1", "projectsDbId": "db-2", "sprintsDbId": "db-3"},
    }
    stored = _stored_json(resp, CONNECTIONS_COOKIE)
    assert [c["workspaceId"] for c in stored] == ["bot-1", "other"]
    assert stored[0]["accessToken"] == "secret_abc"
    assert "shared" not in stored[0]


def test_connect_with_token_uses_defaults_when_identity_fails():
    fake = FakeNotionClient(
        databases=[_db("t", "todo"), _db("p", "project"), _db("s", "cycle")],
    )
    client = create_test_client(fake)

    resp = client.post("/notion/connections", json={"accessToken": "secret_abc"})

    assert resp.status_code == 200
    assert resp.json()["workspaceName"] == "Notion Workspace"
    assert _stored_json(resp, CONNECTIONS_COOKIE)[0]["workspaceId"] == "workspace"


def test_connect_with_token_requires_all_three_databases():
    fake = FakeNotionClient(databases=[_db("db-1", "Tasks")], me={"id": "bot-1"})
    client = create_test_client(fake)

    resp = client.post("/notion/connections", json={"accessToken": "secret_abc"})

    assert resp.status_code == 400
    assert resp.json()["ok"] is False
    assert "Could not auto-detect" in resp.json()["message"]


def test_connect_with_token_missing_token():
    client = create_test_client()

    resp = client.post("/notion/connections", json={})

    assert resp.status_code == 400
    assert resp.json() == {"ok": False, "message": "accessToken is required"}


def test_connect_with_token_upstream_failure():
    fake = FakeNotionClient(
        me={"id": "bot-1"},
        search_error=NotionAPIError("API token is invalid.", 401),
    )
    client = create_test_client(fake)

    resp = client.post("/notion/connections", json={"accessToken": "bad"})

    assert resp.status_code == 500
    assert resp.json()["message"] == "API token is invalid."


def test_update_connection_sets_databases():
    client = create_test_client()
    _set_json_cookie(client, CONNECTIONS_COOKIE, [_connection("alpha"), _connection("beta")])

    resp = client.put(
        "/notion/connections",
        json={
            "workspaceId": "beta",
            "tasksDbId": "new-tasks",
            "projectsDbId": "new-projects",
            "sprintsDbId": "",
        },
    )

    assert resp.status_code == 200
    assert resp.json() == {"ok": True}
    stored = {c["workspaceId"]: c for c in _stored_json(resp, CONNECTIONS_COOKIE)}
    assert stored["alpha"]["tasksDbId"] == "db-tasks"
    assert stored["beta"]["tasksDbId"] == "new-tasks"
    assert stored["beta"]["projectsDbId"] == "new-projects"


def test_update_connection_requires_all_fields():
    client = create_test_client()

    resp = client.put("/notion/connections", json={"workspaceId": "beta", "tasksDbId": "x"})

    assert resp.status_code == 400
    assert resp.json()["ok"] is False


def test_delete_connection():
    client = create_test_client()
    _set_json_cookie(client, CONNECTIONS_COOKIE, [_connection("alpha"), _connection("beta")])

    resp = client.delete("/notion/connections", params={"workspaceId": "alpha"})

    assert resp.status_code == 200
    assert [c["workspaceId"] for c in _stored_json(resp, CONNECTIONS_COOKIE)] == ["beta"]


def test_delete_last_connection_clears_cookie():
    client = create_test_client()
    _set_json_cookie(client, CONNECTIONS_COOKIE, [_connection("alpha")])

    resp = client.delete("/notion/connections", params={"workspaceId": "alpha"})

    morsel = _response_cookies(resp)[CONNECTIONS_COOKIE]
    assert morsel.value == ""
    assert morsel["max-age"] == "0"


def test_delete_connection_requires_workspace_id():
    client = create_test_client()

    resp = client.delete("/notion/connections")

    assert resp.status_code == 400


# --- /notion/property-mapping -------------------------------------------


def test_update_property_mapping_sanitizes_values():
    client = create_test_client()
    _set_json_cookie(client, PROPERTY_MAPPING_COOKIE, {"alpha": {"status": "Stage"}})

    resp = client.put(
        "/notion/property-mapping",
        json={
            "workspaceId": "beta",
            "mapping": {
                "status": "  Phase ",
                "sprint": "",
                "plannedEstimate": 5,
                "unknownKey": "ignored",
                "taskId": "Ticket",
            },
        },
    )

    assert resp.status_code == 200
    assert resp.json() == {"ok": True, "mapping": {"status": "Phase", "taskId": "Ticket"}}
    assert _stored_json(resp, PROPERTY_MAPPING_COOKIE) == {
        "alpha": {"status": "Stage"},
        "beta": {"status": "Phase", "taskId": "Ticket"},
    }


def test_update_property_mapping_requires_mapping():
    client = create_test_client()

    resp = client.put("/notion/property-mapping", json={"workspaceId": "beta"})

    assert resp.status_code == 400


def test_get_property_mapping():
    client = create_test_client()
    _set_json_cookie(client, PROPERTY_MAPPING_COOKIE, {"alpha": {"status": "Stage"}})

    single = client.get("/notion/property-mapping", params={"workspaceId": "alpha"})
    missing = client.get("/notion/property-mapping", params={"workspaceId": "zeta"})
    everything = client.get("/notion/property-mapping")

    assert single.json() == {"ok": True, "mapping": {"status": "Stage"}}
    assert missing.json() == {"ok": True, "mapping": {}}
    assert everything.json() == {"ok": True, "mappings": {"alpha": {"status": "Stage"}}}


# --- /notion/databases, /notion/properties ------------------------------


def test_list_databases():
    fake = FakeNotionClient(databases=[_db("db-1", "Tasks"), {"id": "db-2", "title": []}, {}])
    client = create_test_client(fake)
    _set_json_cookie(client, CONNECTIONS_COOKIE, [_connection("alpha")])

    resp = client.get("/notion/databases", params={"workspaceId": "alpha"})

    assert resp.status_code == 200
    assert resp.json() == {
        "ok": True,
        "databases": [{"id": "db-1", "title": "Tasks"}, {"id": "db-2", "title": "Untitled"}],
    }


def test_list_databases_never_reports_failure_with_success_status():
    fake = FakeNotionClient(
        search_error=NotionAPIError("Unexpected Notion API response format", 200)
    )
    client = create_test_client(fake)
    _set_json_cookie(client, CONNECTIONS_COOKIE, [_connection("alpha")])

    resp = client.get("/notion/databases", params={"workspaceId": "alpha"})

    assert resp.status_code == 500
    assert resp.json()["ok"] is False


def test_list_databases_unknown_workspace():
    client = create_test_client()

    assert client.get("/notion/databases").status_code == 400
    assert client.get("/notion/databases", params={"workspaceId": "nope"}).status_code == 404


def test_list_properties():
    fake = FakeNotionClient(
        schema={
            "properties": {
                "Name": {"type": "title"},
                "Status": {"type": "status"},
                "Weird": "not-a-dict",
            }
        }
    )
    client = create_test_client(fake)
    _set_json_cookie(client, CONNECTIONS_COOKIE, [_connection("alpha")])

    resp = client.get("/notion/properties", params={"workspaceId": "alpha"})

    assert resp.status_code == 200
    assert resp.json()["properties"] == [
        {"name": "Name", "type": "title"},
        {"name": "Status", "type": "status"},
        {"name": "Weird", "type": "unknown"},
    ]


def test_list_properties_requires_tasks_database():
    client = create_test_client()
    _set_json_cookie(client, CONNECTIONS_COOKIE, [_connection("alpha", tasksDbId=None)])

    resp = client.get("/notion/properties", params={"workspaceId": "alpha"})

    assert resp.status_code == 404


# --- /notion/auth/* -------------------------------------------------------


def test_auth_credentials_status_from_env(monkeypatch):
    client = create_test_client()

    assert client.get("/notion/auth/credentials").json() == {
        "ok": True,
        "hasCredentials": False,
        "redirectUri": None,
    }

    monkeypatch.setenv("NOTION_CLIENT_ID", "cid")
    monkeypatch.setenv("NOTION_CLIENT_SECRET", "csecret")
    monkeypatch.setenv("NOTION_REDIRECT_URI", "http://localhost/cb")

    body = client.get("/notion/auth/credentials").json()
    assert body["hasCredentials"] is True
    assert body["redirectUri"] == "http://localhost/cb"
    assert "csecret" not in json.dumps(body)


def test_save_app_credentials():
    client = create_test_client()

    resp = client.post(
        "/notion/auth/credentials",
        json={"clientId": "cid", "clientSecret": "csecret", "redirectUri": "http://x/cb"},
    )

    assert resp.status_code == 200
    assert _stored_json(resp, APP_CREDENTIALS_COOKIE) == {
        "clientId": "cid",
        "clientSecret": "csecret",
        "redirectUri": "http://x/cb",
    }


def test_save_app_credentials_requires_all_fields():
    client = create_test_client()

    resp = client.post("/notion/auth/credentials", json={"clientId": "cid"})

    assert resp.status_code == 400


def test_auth_start_without_credentials():
    client = create_test_client()

    resp = client.get("/notion/auth/start", follow_redirects=False)

    assert resp.status_code == 500
    assert resp.json()["ok"] is False


def test_auth_start_redirects_with_state():
    client = create_test_client()
    _set_json_cookie(
        client,
        APP_CREDENTIALS_COOKIE,
        {"clientId": "cid", "clientSecret": "csecret", "redirectUri": "http://x/cb"},
    )

    resp = client.get("/notion/auth/start", follow_redirects=False)

    assert resp.status_code in (302, 307)
    location = urlparse(resp.headers["location"])
    query = parse_qs(location.query)
    assert location.netloc == "api.notion.com"
    assert query["client_id"] == ["cid"]
    assert query["redirect_uri"] == ["http://x/cb"]
    assert query["owner"] == ["workspace"]
    assert query["response_type"] == ["code"]

    state_cookie = _response_cookies(resp)[OAUTH_STATE_COOKIE]
    assert query["state"] == [state_cookie.value]
    assert state_cookie["max-age"] == "600"
    assert state_cookie["httponly"]


def test_auth_callback_rejects_state_mismatch():
    client = create_test_client()
    client.cookies.set(OAUTH_STATE_COOKIE, "expected")

    resp = client.get(
        "/notion/auth/callback",
        params={"code": "c", "state": "forged"},
        follow_redirects=False,
    )

    assert resp.status_code == 400
    assert resp.json()["message"] == "Invalid OAuth state"


def test_auth_callback_reports_provider_error():
    client = create_test_client()

    resp = client.get(
        "/notion/auth/callback",
        params={"error": "access_denied"},
        follow_redirects=False,
    )

    assert resp.status_code == 400
    assert resp.json()["message"] == "Notion OAuth error: access_denied"


def test_auth_callback_requires_code_and_state():
    client = create_test_client()

    resp = client.get("/notion/auth/callback", params={"code": "c"}, follow_redirects=False)

    assert resp.status_code == 400


def test_auth_callback_adds_connection(monkeypatch):
    captured = {}

    def fake_exchange(code, *, client_id, client_secret, redirect_uri, config=None):
        captured.update(code=code, client_id=client_id, redirect_uri=redirect_uri)
        return {
            "access_token": "oauth-token",
            "workspace_id": "ws-new",
            "workspace_name": "New Space",
            "bot_id": "bot-9",
        }

    monkeypatch.setattr(connection_service_module, "exchange_oauth_code", fake_exchange)
    monkeypatch.setenv("NOTION_CLIENT_ID", "cid")
    monkeypatch.setenv("NOTION_CLIENT_SECRET", "csecret")
    monkeypatch.setenv("NOTION_REDIRECT_URI", "http://localhost/cb")

    client = create_test_client()
    client.cookies.set(OAUTH_STATE_COOKIE, "state-123")
    _set_json_cookie(client, CONNECTIONS_COOKIE, [_connection("ws-new"), _connection("alpha")])

    resp = client.get(
        "/notion/auth/callback",
        params={"code": "the-code", "state": "state-123"},
        follow_redirects=False,
    )

    assert resp.status_code in (302, 307)
    assert resp.headers["location"] == "/connections"
    assert captured == {"code": "the-code", "client_id": "cid", "redirect_uri": "http://localhost/cb"}

    cookies = _response_cookies(resp)
    stored = json.loads(cookies[CONNECTIONS_COOKIE].value)
    assert [c["workspaceId"] for c in stored] == ["ws-new", "alpha"]
    assert stored[0]["accessToken"] == "oauth-token"
    assert stored[0]["botId"] == "bot-9"
    assert cookies[OAUTH_STATE_COOKIE].value == ""


def test_auth_callback_exchange_failure(monkeypatch):
    def failing_exchange(code, **kwargs):
        raise NotionAPIError("invalid_grant", 400)

    monkeypatch.setattr(connection_service_module, "exchange_oauth_code", failing_exchange)
    client = create_test_client()
    client.cookies.set(OAUTH_STATE_COOKIE, "s")
    _set_json_cookie(
        client,
        APP_CREDENTIALS_COOKIE,
        {"clientId": "cid", "clientSecret": "csecret", "redirectUri": "http://x/cb"},
    )

    resp = client.get(
        "/notion/auth/callback",
        params={"code": "bad", "state": "s"},
        follow_redirects=False,
    )

    assert resp.status_code == 400
    assert resp.json()["message"] == "invalid_grant"


# --- /role/verify ---------------------------------------------------------


def test_role_verify(monkeypatch):
    client = create_test_client()

    assert client.post("/role/verify", json={}).status_code == 400
    assert client.post("/role/verify", json={"secret": "x"}).status_code == 500

    monkeypatch.setenv("MANAGER_SECRET", "let-me-in")

    wrong = client.post("/role/verify", json={"secret": "nope"})
    right = client.post("/role/verify", json={"secret": "let-me-in"})

    assert wrong.status_code == 401
    assert wrong.json() == {"ok": False, "message": "Invalid manager secret"}
    assert right.status_code == 200
    assert right.json() == {"ok": True}
