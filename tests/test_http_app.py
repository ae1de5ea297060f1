# tests/test_http_app.py
"""
HTTP contract tests for the admin app: routes, envelope, error mapping.

Services are built on in-memory fakes and injected with
``dependency_overrides``; lifespan (database pool) is never entered.
"""
from __future__ import annotations

import json

import pytest
from fastapi.testclient import TestClient

from cdadmin.admin.dispatch_service import get_dispatch_service
from cdadmin.admin.user_service import get_user_service
from cdadmin.config import settings
from cdadmin.transport.http_app import app

TOKEN = "aB3cD5eF7gH9iJ1kL3mN5oP7qR9sT1uX"

CALLER_HEADERS = {
    "Authorization": f"Bearer {TOKEN}",
    "X-User-Id": "u-member",
    "X-Org-Id": "org-member",
    "X-Org-Name": "acme",
}


@pytest.fixture
def client(monkeypatch, dispatch_service, user_service):
    monkeypatch.setattr(settings, "admin_token", TOKEN)
    monkeypatch.setattr(settings, "app_env", "dev")
    app.dependency_overrides[get_dispatch_service] = lambda: dispatch_service
    app.dependency_overrides[get_user_service] = lambda: user_service
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


class TestHealth:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}


class TestMetricsRoute:
    def test_requires_admin_token(self, client):
        assert client.get("/metrics").status_code == 401

    def test_reports_dispatch_counters(self, client, transport):
        from cdadmin.infra.metrics import get_metrics_collector

        get_metrics_collector().reset()
        client.post(
            "/admin/dispatch/manual",
            json={"appId": "app1", "ref": "refs/heads/main", "commitId": "c1"},
            headers=CALLER_HEADERS,
        )

        resp = client.get("/metrics", headers={"Authorization": f"Bearer {TOKEN}"})

        assert resp.status_code == 200
        assert resp.json()["counters"]["dispatch_manual_total{provider=github}"] == 1


class TestAuth:
    def test_missing_admin_token(self, client):
        headers = {k: v for k, v in CALLER_HEADERS.items() if k != "Authorization"}
        resp = client.post("/admin/dispatch/manual", json={"appId": "app1", "ref": "main"}, headers=headers)
        assert resp.status_code == 401
        assert resp.json()["success"] is False
        assert resp.json()["code"] == 401

    def test_missing_caller_headers(self, client):
        resp = client.post(
            "/admin/dispatch/manual",
            json={"appId": "app1", "ref": "main"},
            headers={"Authorization": f"Bearer {TOKEN}"},
        )
        assert resp.status_code == 401


class TestDispatchRoutes:
    def test_manual(self, client, transport):
        transport.request_id = "fc-req-1"
        resp = client.post(
            "/admin/dispatch/manual",
            json={"appId": "app1", "ref": "main", "commitId": "c1", "envName": "prod"},
            headers=CALLER_HEADERS,
        )

        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["data"]["x-fc-request-id"] == "fc-req-1"
        sent = json.loads(transport.invoke_calls[0][2])
        assert body["data"]["taskId"] == sent["taskId"]
        assert sent["authorization"]["secrets"] == {"K": "1", "X": "9"}

    def test_manual_missing_app_id(self, client, transport):
        resp = client.post("/admin/dispatch/manual", json={"ref": "main"}, headers=CALLER_HEADERS)

        assert resp.status_code == 400
        assert resp.json() == {"success": False, "code": 400, "message": "appId is required"}
        assert transport.invoke_calls == []

    def test_manual_bad_field_type(self, client):
        resp = client.post("/admin/dispatch/manual", json={"appId": 123, "ref": "main"}, headers=CALLER_HEADERS)
        assert resp.status_code == 400

    def test_manual_unknown_app(self, client):
        resp = client.post("/admin/dispatch/manual", json={"appId": "nope", "ref": "main"}, headers=CALLER_HEADERS)
        assert resp.status_code == 404
        assert resp.json()["success"] is False

    def test_manual_worker_unreachable(self, client, transport):
        transport.invoke_outcomes = [OSError("a"), OSError("b")]
        resp = client.post(
            "/admin/dispatch/manual",
            json={"appId": "app1", "ref": "main", "commitId": "c1"},
            headers=CALLER_HEADERS,
        )
        assert resp.status_code == 502

    def test_redeploy(self, client, transport):
        resp = client.post(
            "/admin/dispatch/redeploy",
            json={"taskId": "task-orig", "appId": "app1"},
            headers=CALLER_HEADERS,
        )

        assert resp.status_code == 200
        assert resp.json()["data"]["taskId"] != "task-orig"
        assert json.loads(transport.invoke_calls[0][2])["redelivery"] == "task-orig"

    def test_cancel(self, client, repos):
        resp = client.post("/admin/dispatch/cancel", json={"taskId": "task-orig"}, headers=CALLER_HEADERS)

        assert resp.status_code == 200
        assert resp.json() == {"success": True, "data": None}
        assert repos["tasks"].updates[0][1]["status"] == "cancel"

    def test_cancel_already_stopped(self, client, transport, repos):
        from cdadmin.infra.fc_client import FcError

        transport.put_outcomes = [FcError(412), FcError(412)]
        resp = client.post("/admin/dispatch/cancel", json={"taskId": "task-orig"}, headers=CALLER_HEADERS)

        assert resp.status_code == 400
        assert resp.json()["message"] == "Task has already been stopped"
        assert repos["tasks"].updates == []


class TestUserRoutes:
    def test_user_info(self, client):
        resp = client.get("/admin/user/info", headers=CALLER_HEADERS)

        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["id"] == "u-member"
        assert data["listOrgs"][0]["id"] == "org-member"
        assert "third_part" not in data

    def test_list_orgs(self, client):
        resp = client.get("/admin/user/listOrgs", headers=CALLER_HEADERS)
        assert [o["id"] for o in resp.json()["data"]] == ["org-member"]

    def test_bind_token_requires_owner(self, client, repos):
        resp = client.put(
            "/admin/user/token",
            json={"data": {"provider": "github", "token": "t"}},
            headers=CALLER_HEADERS,
        )
        assert resp.status_code == 403
        assert repos["users"].updates == []

    def test_bind_token_as_owner(self, client, repos):
        headers = dict(CALLER_HEADERS, **{"X-User-Id": "u-owner", "X-Org-Id": "org-owner"})
        resp = client.put(
            "/admin/user/token",
            json={"data": {"provider": "gitee", "token": "gitee-tok"}},
            headers=headers,
        )
        assert resp.status_code == 200
        assert repos["users"].updates[0][0] == "u-owner"
        assert repos["users"].updates[0][1]["third_part"]["gitee"] == {"access_token": "gitee-tok"}

    def test_bind_token_flat_body(self, client, repos):
        headers = dict(CALLER_HEADERS, **{"X-User-Id": "u-owner", "X-Org-Id": "org-owner"})
        resp = client.put(
            "/admin/user/token",
            json={"provider": "gitee", "token": "gitee-tok"},
            headers=headers,
        )
        assert resp.status_code == 200
        assert repos["users"].updates[0][0] == "u-owner"

    def test_bind_token_unknown_provider(self, client):
        resp = client.put(
            "/admin/user/token",
            json={"data": {"provider": "svn", "token": "t"}},
            headers=CALLER_HEADERS,
        )
        assert resp.status_code == 400
