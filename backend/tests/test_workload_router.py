# backend/tests/test_workload_router.py

import json
from unittest.mock import patch

from fastapi.testclient import TestClient

from app.connections.store import CONNECTIONS_COOKIE, PROPERTY_MAPPING_COOKIE
from app.main import create_app
from app.notion.client import NotionAPIError
from app.notion.config import NotionConfig
from app.workload.router import get_workload_service
from app.workload.service import NO_CONNECTIONS_MESSAGE, WorkloadService

CONFIG = NotionConfig(
    api_base_url="https://api.notion.com/v1",
    api_version="2022-06-28",
    timeout_seconds=5.0,
    max_concurrency=2,
    query_page_size=50,
)


class StubClient:
    def __init__(self, result):
        self.config = CONFIG
        self._result = result

    def query_database(self, database_id, page_size=None):
        if isinstance(self._result, Exception):
            raise self._result
        return self._result

    def retrieve_page(self, page_id):
        return {"id": page_id, "properties": {}}


def _row(page_id, title, assignee=None):
    props = {
        "Name": {"type": "title", "title": [{"plain_text": title}]},
        "Status": {"type": "status", "status": {"name": "Doing"}},
        "Stage": {"type": "select", "select": {"name": "Review"}},
        "Estimate": {"type": "number", "number": 2},
    }
    if assignee:
        props["Assignee"] = {"type": "people", "people": [assignee]}
    return {"id": page_id, "properties": props}


def create_test_client(results_by_token) -> TestClient:
    app = create_app()
    service = WorkloadService(
        client_factory=lambda token: StubClient(results_by_token[token]),
        config=CONFIG,
    )
    app.dependency_overrides[get_workload_service] = lambda: service
    return TestClient(app)


def _set_connections(client: TestClient, *connections) -> None:
    client.cookies.set(CONNECTIONS_COOKIE, json.dumps(list(connections), separators=(",", ":")))


def _connection(workspace_id, token, tasks_db_id="db-1"):
    return {
        "workspaceId": workspace_id,
        "workspaceName": workspace_id.title(),
        "accessToken": token,
        "tasksDbId": tasks_db_id,
    }


def test_tasks_without_connections_returns_400():
    client = create_test_client({})

    resp = client.get("/notion/tasks")

    assert resp.status_code == 400
    assert resp.json() == {
        "ok": False,
        "message": NO_CONNECTIONS_MESSAGE,
        "tasks": [],
        "errors": [],
    }


def test_tasks_returns_camel_case_tasks():
    client = create_test_client({"tok-a": [_row("p1", "Ship it")]})
    _set_connections(client, _connection("alpha", "tok-a"))

    resp = client.get("/notion/tasks")

    assert resp.status_code == 200
    body = resp.json()
    assert body["ok"] is True
    task = body["tasks"][0]
    assert task["pageId"] == "p1"
    assert task["taskId"] == "p1"
    assert task["title"] == "Ship it"
    assert task["status"] == "Doing"
    assert task["project"] == "Alpha"
    assert task["sprint"] == "No Sprint added"
    assert task["plannedEstimate"] == 2
    assert task["workspaceName"] == "Alpha"
    assert task["databaseId"] == "db-1"
    assert "accessToken" not in json.dumps(body)


def test_tasks_apply_mapping_cookie():
    client = create_test_client({"tok-a": [_row("p1", "Ship it")]})
    _set_connections(client, _connection("alpha", "tok-a"))
    client.cookies.set(
        PROPERTY_MAPPING_COOKIE,
        json.dumps({"alpha": {"status": "Stage"}}, separators=(",", ":")),
    )

    resp = client.get("/notion/tasks")

    assert resp.json()["tasks"][0]["status"] == "Review"


def test_tasks_upstream_failure_passes_status_and_message():
    client = create_test_client(
        {"tok-a": NotionAPIError("API token is invalid.", 401)}
    )
    _set_connections(client, _connection("alpha", "tok-a"))

    resp = client.get("/notion/tasks")

    assert resp.status_code == 401
    assert resp.json()["ok"] is False
    assert resp.json()["message"] == "API token is invalid."


def test_tasks_isolated_mode_from_query_parameter():
    client = create_test_client(
        {
            "tok-a": [_row("p1", "Healthy")],
            "tok-b": NotionAPIError("Could not find database.", 404),
        }
    )
    _set_connections(client, _connection("alpha", "tok-a"), _connection("beta", "tok-b"))

    resp = client.get("/notion/tasks", params={"failureMode": "isolated"})

    assert resp.status_code == 200
    body = resp.json()
    assert [t["title"] for t in body["tasks"]] == ["Healthy"]
    assert body["errors"] == [
        {"workspaceId": "beta", "workspaceName": "Beta", "message": "Could not find database."}
    ]


def test_invalid_failure_mode_is_rejected():
    client = create_test_client({})

    resp = client.get("/notion/tasks", params={"failureMode": "sometimes"})

    assert resp.status_code == 422


def test_people_groups_by_assignee():
    ana = {"id": "u1", "name": "Ana"}
    client = create_test_client(
        {"tok-a": [_row("p1", "One", ana), _row("p2", "Two", ana), _row("p3", "Three")]}
    )
    _set_connections(client, _connection("alpha", "tok-a"))

    resp = client.get("/notion/people")

    assert resp.status_code == 200
    people = {p["id"]: p for p in resp.json()["people"]}
    assert set(people) == {"u1", "unassigned"}
    assert people["u1"]["name"] == "Ana"
    assert people["u1"]["load"] == "light"
    assert people["u1"]["role"] == "Member"
    assert people["u1"]["spaces"] == ["Alpha"]
    assert [t["title"] for t in people["u1"]["tasks"]] == ["One", "Two"]
    assert people["u1"]["tasks"][0]["plannedEstimate"] == 2
    assert people["unassigned"]["name"] == "Unassigned"


def test_people_without_connections_returns_400():
    client = create_test_client({})
    _set_connections(client, _connection("alpha", "tok-a", tasks_db_id=None))

    resp = client.get("/notion/people")

    assert resp.status_code == 400
    assert resp.json()["ok"] is False
    assert resp.json()["people"] == []


def test_malformed_connections_cookie_is_ignored():
    client = create_test_client({})
    client.cookies.set(CONNECTIONS_COOKIE, "not-json")

    resp = client.get("/notion/tasks")

    assert resp.status_code == 400
    assert resp.json()["message"] == NO_CONNECTIONS_MESSAGE


def test_people_unexpected_error_returns_500():
    client = create_test_client({})
    _set_connections(client, _connection("alpha", "tok-a"))

    # 集計中の想定外の例外は 500 と固定メッセージになる
    with patch(
        "app.workload.service.WorkloadService.aggregate",
        side_effect=Exception("unexpected error"),
    ):
        resp = client.get("/notion/people")

    assert resp.status_code == 500
    assert resp.json()["ok"] is False
    assert resp.json()["message"] == "Unknown error querying Notion"
