"""
Integration tests for the HTTP and websocket surface.

The full service container is built from configuration with a scripted
completion client; browser and network access are never needed because the
web and tool requests exercised here are rejected before any I/O.
"""

import os

import pytest
from fastapi.testclient import TestClient

from morpheus.api.server import create_app
from morpheus.lib.config import EditorConfig, MorpheusConfig, TerminalConfig, WebConfig
from morpheus.services.container import ServiceContainer


@pytest.fixture
def sandbox_root(tmp_path):
    root = tmp_path / "sandbox"
    root.mkdir()
    return str(root)


@pytest.fixture
def container(tmp_path, sandbox_root, scripted):
    config = MorpheusConfig(
        terminal=TerminalConfig(sandbox_root=sandbox_root, timeout_seconds=5),
        editor=EditorConfig(sandbox_root=sandbox_root),
        web=WebConfig(screenshot_dir=str(tmp_path / "shots"))
    )
    # the classifier never returns JSON, so routing always uses the fallback rules
    return ServiceContainer(config, completion=scripted(default="Happy to help."))


@pytest.fixture
def client(container):
    with TestClient(create_app(container, initialize_agents=False)) as test_client:
        yield test_client


def create_session(client, user_id=None):
    response = client.post("/api/sessions", json={"user_id": user_id})
    assert response.status_code == 201
    return response.json()


class TestSessionsApi:
    """Test session endpoints."""

    def test_health(self, client):
        response = client.get("/api/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert {agent["name"] for agent in body["agents"]} == {
            "Terminal Agent", "Editor Agent", "Web Agent", "Planner Agent", "Tool Agent"
        }

    def test_session_crud(self, client):
        session = create_session(client, "alice")
        create_session(client, "bob")

        fetched = client.get(f"/api/sessions/{session['id']}")
        assert fetched.status_code == 200
        assert fetched.json()["user_id"] == "alice"
        assert fetched.json()["messages"] == []

        listed = client.get("/api/sessions", params={"user_id": "alice"}).json()
        assert [s["id"] for s in listed] == [session["id"]]

        deleted = client.delete(f"/api/sessions/{session['id']}")
        assert deleted.json() == {"deleted": True, "session_id": session["id"]}
        assert client.get(f"/api/sessions/{session['id']}").status_code == 404
        assert client.delete(f"/api/sessions/{session['id']}").status_code == 404

    def test_post_message_routes_and_records(self, client):
        session = create_session(client)

        response = client.post(f"/api/sessions/{session['id']}/messages", json={"content": "!exec echo hello"})

        assert response.status_code == 200
        body = response.json()
        assert body["response"]["success"] is True
        assert body["response"]["content"].startswith("[Terminal Agent]: hello")
        assert body["message"]["role"] == "agent"

        stored = client.get(f"/api/sessions/{session['id']}").json()
        assert [m["role"] for m in stored["messages"]] == ["user", "agent"]
        assert stored["routed_messages"][0]["routed_agent_name"] == "Terminal Agent"
        assert stored["metadata"]["active_agent"] == "Terminal Agent"

    def test_delete_session_drops_dispatch_lock(self, client, container):
        session = create_session(client)
        client.post(f"/api/sessions/{session['id']}/messages", json={"content": "!exec echo hi"})

        assert client.delete(f"/api/sessions/{session['id']}").status_code == 200
        assert session["id"] not in container.supervisor._session_locks

    def test_post_message_direct_answer(self, client):
        session = create_session(client)

        body = client.post(f"/api/sessions/{session['id']}/messages", json={"content": "good morning"}).json()

        assert body["response"]["content"] == "Happy to help."
        stored = client.get(f"/api/sessions/{session['id']}").json()
        assert stored["routed_messages"] == []

    def test_post_message_validation(self, client):
        session = create_session(client)

        assert client.post(f"/api/sessions/{session['id']}/messages", json={}).status_code == 422
        assert client.post(f"/api/sessions/{session['id']}/messages", json={"content": ""}).status_code == 422

    def test_post_message_unknown_session(self, client):
        assert client.post("/api/sessions/missing/messages", json={"content": "hi"}).status_code == 404

    def test_user_control(self, client):
        session = create_session(client)

        response = client.post(f"/api/sessions/{session['id']}/user-control", json={})

        assert response.json() == {"session_id": session["id"], "user_control_mode": True}
        assert client.post("/api/sessions/missing/user-control", json={}).status_code == 404


class TestWorkerApi:
    """Test direct worker endpoints."""

    def test_terminal_blocked(self, client):
        body = client.post("/api/terminal/execute", json={"command": "sudo rm -rf /"}).json()

        assert body["success"] is False
        assert body["error"] == "command_blocked"

    def test_terminal_exchange_recorded(self, client):
        session = create_session(client)

        body = client.post(
            "/api/terminal/execute", json={"command": "echo recorded", "session_id": session["id"]}
        ).json()

        assert body["success"] is True
        messages = client.get(f"/api/sessions/{session['id']}").json()["messages"]
        assert messages[0]["content"] == "!exec echo recorded"

    def test_editor_create_and_read(self, client, sandbox_root):
        created = client.post(
            "/api/editor/execute", json={"type": "create", "path": "notes.md", "content": "# Notes"}
        ).json()
        read = client.post("/api/editor/execute", json={"type": "read", "path": "notes.md"}).json()

        assert created["success"] is True
        assert read["data"]["content"] == "# Notes"
        assert os.path.isfile(os.path.join(sandbox_root, "notes.md"))

    def test_editor_escape(self, client):
        body = client.post(
            "/api/editor/execute", json={"type": "write", "path": "../../evil.txt", "content": "x"}
        ).json()
        assert body["error"] == "path_violation"

    def test_web_blocked(self, client, container):
        body = client.post("/api/web/browse", json={"url": "http://127.0.0.1:9000"}).json()

        assert body["error"] == "domain_blocked"
        assert container.web.browser is None

    def test_web_extract_without_page(self, client):
        assert client.post("/api/web/extract", json={}).json()["error"] == "no_active_page"

    def test_tools(self, client):
        listed = client.get("/api/tool/list").json()
        assert {tool["name"] for tool in listed["data"]["tools"]} == {"weather", "news", "dictionary"}

        missing = client.post("/api/tool/execute", json={"tool_name": "ghost", "params": {}}).json()
        assert missing["error"] == "tool_not_found"

        no_key = client.post("/api/tool/execute", json={"tool_name": "weather", "params": {"location": "Oslo"}}).json()
        assert no_key["error"] == "missing_credential"

    def test_tool_apikey_is_masked_in_session(self, client):
        session = create_session(client)

        body = client.post(
            "/api/tool/apikey",
            json={"tool_name": "weather", "api_key": "super-secret", "session_id": session["id"]}
        ).json()

        assert body["success"] is True
        messages = client.get(f"/api/sessions/{session['id']}").json()["messages"]
        assert all("super-secret" not in m["content"] for m in messages)

    def test_planner_endpoints(self, client):
        assert client.get("/api/planner/list").json()["data"] == {"plans": []}
        assert client.get("/api/planner/plan/plan-missing").json()["error"] == "plan_not_found"


class TestSessionWebsocket:
    """Test real-time session events."""

    def test_toggle_over_websocket(self, client):
        session = create_session(client)

        with client.websocket_connect(f"/ws/sessions/{session['id']}") as websocket:
            assert websocket.receive_json()["event"] == "joined"

            websocket.send_json({"type": "toggle_user_control", "enabled": True})
            event = websocket.receive_json()

        assert event["event"] == "user_control_changed"
        assert event["payload"] == {"user_control_mode": True}
        stored = client.get(f"/api/sessions/{session['id']}").json()
        assert stored["metadata"]["user_control_mode"] is True

    def test_malformed_frames_keep_connection_open(self, client):
        session = create_session(client)

        with client.websocket_connect(f"/ws/sessions/{session['id']}") as websocket:
            websocket.receive_json()

            websocket.send_text("not json")
            assert websocket.receive_json()["event"] == "error"
            websocket.send_json([])
            assert websocket.receive_json()["event"] == "error"

            websocket.send_json({"type": "toggle_user_control", "enabled": True})
            assert websocket.receive_json()["event"] == "user_control_changed"

    def test_new_message_is_pushed(self, client):
        session = create_session(client)

        with client.websocket_connect(f"/ws/sessions/{session['id']}") as websocket:
            websocket.receive_json()
            client.post(f"/api/sessions/{session['id']}/messages", json={"content": "!exec echo pushed"})
            event = websocket.receive_json()

        assert event["event"] == "new_message"
        assert "pushed" in event["payload"]["content"]

    def test_unknown_session(self, client):
        with client.websocket_connect("/ws/sessions/missing") as websocket:
            assert websocket.receive_json()["event"] == "error"
