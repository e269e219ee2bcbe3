"""
HTTP API tests for the staging, preview, commit and execute endpoints.
"""

import pytest
from fastapi.testclient import TestClient

from shadowstage.api import main
from shadowstage.core import config
from shadowstage.core.workspace import set_workspace

from conftest import PRICING_HTML, stage_raw


def caller(key, actor="alice"):
    return {"X-Actor": actor, "Idempotency-Key": key}


class TestStagingAPI:

    @pytest.fixture
    def client(self, workspace):
        set_workspace(workspace)
        with TestClient(main.app) as test_client:
            yield test_client

    def test_health(self, client, workspace):
        workspace.stage_write("a.html", "x")
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["db_health"] is True
        assert data["staged_count"] == 1
        assert data["version"] == config.VERSION

    @pytest.mark.parametrize("headers", [{}, {"X-Actor": "alice"}, {"Idempotency-Key": "k1"},
                                         {"X-Actor": "alice", "Idempotency-Key": "x" * 201}])
    def test_mutations_require_actor_and_key(self, client, headers):
        response = client.post("/api/fs/write", json={"path": "a.html", "content": "x"}, headers=headers)
        assert response.status_code == 400

    def test_write_then_replay(self, client, workspace):
        first = client.post("/api/fs/write", json={"path": "/pricing.html", "content": "<p>v2</p>"},
                            headers=caller("w1"))
        assert first.status_code == 200
        data = first.json()
        assert data["ok"] is True
        assert data["staged"]["path"] == "pricing.html"
        assert data["whatChanged"] == ["Staged shadow edit: pricing.html"]

        second = client.post("/api/fs/write", json={"path": "/pricing.html", "content": "<p>v3</p>"},
                             headers=caller("w1"))
        assert second.headers["Idempotent-Replayed"] == "true"
        assert second.content == first.content
        assert workspace.resolve("pricing.html").content == "<p>v2</p>"

    def test_protected_write_is_refused_and_recorded(self, client, workspace):
        response = client.post("/api/fs/write", json={"path": "worker.js", "content": "x"}, headers=caller("w1"))
        assert response.status_code == 403
        assert response.json()["error"]["kind"] == "ProtectedPath"
        assert workspace.ledger.lookup("fs.write", "w1").status == 403
        assert workspace.list_staged() == []

    def test_invalid_path_is_400(self, client):
        response = client.post("/api/fs/write", json={"path": "../etc/passwd", "content": "x"},
                               headers=caller("w1"))
        assert response.status_code == 400
        assert response.json()["error"]["kind"] == "InvalidPath"

    def test_read_reports_source(self, client, workspace):
        assert client.get("/api/fs/read", params={"path": "pricing.html"}).json() == {
            "ok": True, "path": "pricing.html", "source": "remote", "content": PRICING_HTML,
        }
        assert client.get("/api/fs/read", params={"path": "robots.txt"}).json()["source"] == "assets"

        workspace.stage_write("pricing.html", "<p>staged</p>")
        data = client.get("/api/fs/read", params={"path": "pricing.html"}).json()
        assert data["source"] == "overlay"
        assert data["content"] == "<p>staged</p>"

    def test_read_errors(self, client, workspace):
        assert client.get("/api/fs/read", params={"path": ""}).status_code == 400
        assert client.get("/api/fs/read", params={"path": "missing.html"}).status_code == 404

        response = client.post("/api/fs/delete", json={"path": "old.html"}, headers=caller("d1"))
        assert response.json()["whatChanged"] == ["Staged shadow delete: old.html"]
        gone = client.get("/api/fs/read", params={"path": "old.html"})
        assert gone.status_code == 410
        assert gone.json()["error"]["kind"] == "Gone"

    def test_tree_merges_overlay(self, client, workspace):
        workspace.stage_write("blog/new.html", "x")
        workspace.stage_delete("old.html")
        data = client.get("/api/fs/tree").json()
        assert "blog/new.html" in data["files"]
        assert "old.html" not in data["files"]
        assert data["shadowCount"] == 2

    def test_search(self, client):
        data = client.get("/api/fs/search", params={"q": "pricing"}).json()
        assert data["pathMatches"] == ["pricing.html"]
        assert client.get("/api/fs/search", params={"q": " "}).status_code == 400

    def test_preview_page(self, client, workspace):
        workspace.stage_write("pricing.html", "<html><head></head><body><p>staged</p></body></html>")
        response = client.get("/preview/pricing", params={"shadow": "1"})
        assert response.status_code == 200
        assert response.headers["cache-control"] == "no-store"
        assert "noindex,nofollow" in response.text
        assert "<p>staged</p>" in response.text

        assert client.get("/preview/pricing").status_code == 404
        assert client.get("/preview/nowhere", params={"shadow": "1"}).status_code == 404

    def test_preview_build(self, client):
        data = client.post("/api/preview/build", json={"files": ["pricing.html"], "showZones": True}).json()
        assert data["previewRoutes"] == ["/pricing"]
        assert "&zones=1" in data["previews"][0]["url"]

    def test_status_and_commit(self, client, workspace, remote):
        workspace.stage_write("pricing.html", "<p>v2</p>")
        status = client.get("/api/repo/status").json()
        assert status["total"] == 1
        assert status["confirmationPhrase"] == config.CONFIRMATION_PHRASE
        assert "worker.js" in status["protectedPaths"]

        response = client.post("/api/repo/commit", json={"message": "Ship pricing"}, headers=caller("c1"))
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "fully-applied"
        assert data["whatChanged"] == ["update: pricing.html"]
        assert remote.snapshot()["pricing.html"] == "<p>v2</p>"

        replay = client.post("/api/repo/commit", json={"message": "Ship pricing"}, headers=caller("c1"))
        assert replay.headers["Idempotent-Replayed"] == "true"
        assert len(remote.commits) == 1

    @pytest.mark.parametrize("flag", ["yes", "true", 1])
    def test_protected_override_flag_must_be_boolean(self, client, workspace, remote, flag):
        stage_raw(workspace.overlay, "worker.js", "export default {}")
        response = client.post("/api/repo/commit",
                               json={"allowProtected": flag, "confirmation": config.CONFIRMATION_PHRASE},
                               headers=caller("c1"))
        assert response.status_code == 422
        assert remote.commits == []
        assert "worker.js" in workspace.overlay.list()
        assert workspace.ledger.lookup("repo.commit", "c1") is None

    def test_commit_outage_is_not_recorded(self, client, workspace, remote):
        workspace.stage_write("pricing.html", "<p>v2</p>")
        remote.unavailable = True
        response = client.post("/api/repo/commit", json={}, headers=caller("c1"))
        assert response.status_code == 503
        assert response.json()["error"]["retryable"] is True
        assert workspace.ledger.lookup("repo.commit", "c1") is None

    def test_audit_requires_debug(self, client, workspace, monkeypatch):
        workspace.stage_write("pricing.html", "<p>v2</p>")
        monkeypatch.setenv("DEBUG", "true")
        events = client.get("/api/audit", params={"action": "fs.write"}).json()["events"]
        assert [e["action"] for e in events] == ["fs.write"]

        monkeypatch.setenv("DEBUG", "false")
        assert client.get("/api/audit").status_code == 403


class TestExecuteAPI:

    @pytest.fixture
    def client(self, workspace):
        set_workspace(workspace)
        with TestClient(main.app) as test_client:
            yield test_client

    def test_preview_then_apply(self, client, planner, remote):
        planner.outputs["apply"] = {"actions": [{"op": "write", "path": "pricing.html", "content": "<p>new</p>"}]}

        preview = client.post("/api/execute", json={"action": "preview", "idempotencyKey": "k1",
                                                    "command": "Update pricing"},
                              headers={"X-Trace-Id": "trace-abc"})
        assert preview.status_code == 200
        assert preview.headers["X-Trace-Id"] == "trace-abc"
        token = preview.json()["result"]["confirmToken"]

        apply = client.post("/api/execute", json={"action": "apply", "idempotencyKey": "k1",
                                                  "command": "Update pricing", "confirmToken": token},
                            headers={"X-Actor": "voice-bot"})
        assert apply.status_code == 200
        assert "Idempotent-Replayed" not in apply.headers
        assert remote.snapshot()["pricing.html"] == "<p>new</p>"

        replay = client.post("/api/execute", json={"action": "apply", "idempotencyKey": "k1",
                                                   "command": "Update pricing", "confirmToken": token})
        assert replay.headers["Idempotent-Replayed"] == "true"
        assert replay.content == apply.content

    def test_invalid_payload(self, client):
        response = client.post("/api/execute", json={"action": "explode"})
        assert response.status_code == 400
        assert response.json()["error"]["kind"] == "InvalidAction"

    def test_oversized_body(self, client):
        response = client.post("/api/execute", json={"action": "status", "idempotencyKey": "k",
                                                     "pad": "x" * (config.MAX_REQUEST_BYTES + 1)})
        assert response.status_code == 413
