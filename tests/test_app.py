"""
End-to-end tests for the FastAPI application over a real WebSocket.
"""

import asyncio
import time

from fastapi.testclient import TestClient

from insight_agent import __version__
from insight_agent.agent.base import AgentStep, TextDelta
from insight_agent.config import Settings
from insight_agent.server.app import create_app, new_session_id

from conftest import AgentFactoryStub, ScriptedAgent, ScriptedRun, text_run, tool_run


def make_client(runs=None, **settings) -> tuple[TestClient, ScriptedAgent]:
    agent = ScriptedAgent(runs or [])
    app = create_app(Settings(**settings), agent_factory=AgentFactoryStub(agent))
    return TestClient(app), agent


def receive_until_done(ws) -> list[dict]:
    messages = []
    while True:
        message = ws.receive_json()
        messages.append(message)
        if message["type"] in ("done", "error"):
            return messages


def test_new_session_id_format():
    """Test generated session ids."""
    session_id = new_session_id()
    assert session_id.startswith("session-")
    assert session_id != new_session_id()


def test_health_check():
    """Test the health endpoint."""
    client, _ = make_client()

    with client:
        response = client.get("/api/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["version"] == __version__
    assert data["ws_path"] == "/ws"
    assert data["sessions"] == 0


def test_query_streams_text_then_done():
    """Test a query streams the answer and finishes with done."""
    client, _ = make_client([text_run("Hello from the agent")])

    with client, client.websocket_connect("/ws") as ws:
        ws.send_json({"type": "query", "payload": {"content": "hi"}})
        messages = receive_until_done(ws)

    assert [m["type"] for m in messages] == ["text", "done"]
    assert messages[0]["payload"]["content"] == "Hello from the agent"
    session_id = messages[0]["payload"]["sessionId"]
    assert session_id.startswith("session-")
    assert messages[1]["payload"]["sessionId"] == session_id


def test_explicit_session_id_is_echoed_and_reused():
    """Test a client-chosen session id is used and keeps history across queries."""
    client, agent = make_client([tool_run(result="3 files"), text_run("Second")])

    with client, client.websocket_connect("/ws") as ws:
        ws.send_json({"type": "query", "payload": {"content": "first", "sessionId": "my-session"}})
        first = receive_until_done(ws)
        ws.send_json({"type": "query", "payload": {"content": "second", "sessionId": "my-session"}})
        second = receive_until_done(ws)

    assert [m["type"] for m in first] == ["tool_call", "tool_result", "text", "done"]
    assert all(m["payload"]["sessionId"] == "my-session" for m in first + second)
    assert len(agent.calls[1][1]) == 3


def test_client_history_is_used():
    """Test history sent with the query reaches the agent."""
    client, agent = make_client([text_run()])
    history = [{"role": "user", "content": "before"}, {"role": "assistant", "content": "ok"}]

    with client, client.websocket_connect("/ws") as ws:
        ws.send_json({"type": "query", "payload": {"content": "now", "history": history}})
        receive_until_done(ws)

    query, messages = agent.calls[0]
    assert query == "now"
    assert [m.content for m in messages] == ["before", "ok"]


def test_invalid_query_payload():
    """Test a query without string content is rejected with an error."""
    client, agent = make_client()

    with client, client.websocket_connect("/ws") as ws:
        ws.send_json({"type": "query", "payload": {"sessionId": "s1"}})
        reply = ws.receive_json()

    assert reply["type"] == "error"
    assert "content" in reply["payload"]["message"]
    assert agent.calls == []


def test_unconfigured_agent_factory():
    """Test queries fail cleanly when no agent factory is configured."""
    app = create_app(Settings(agent_factory=""))

    with TestClient(app) as client, client.websocket_connect("/ws") as ws:
        ws.send_json({"type": "query", "payload": {"content": "hi", "sessionId": "s1"}})
        reply = ws.receive_json()

    assert reply["type"] == "error"
    assert reply["payload"]["message"].startswith("Query failed: No agent factory configured")
    assert reply["payload"]["sessionId"] == "s1"


def test_cancel_running_query():
    """Test cancel emits done and the session accepts the next query."""
    gate = asyncio.Event()
    slow = ScriptedRun(
        events=[TextDelta("thinking"), TextDelta(" more")],
        steps=[AgentStep(text="thinking more")],
        gate=gate,
    )
    client, _ = make_client([slow, text_run("fresh")])

    with client, client.websocket_connect("/ws") as ws:
        ws.send_json({"type": "query", "payload": {"content": "slow", "sessionId": "s1"}})
        assert ws.receive_json()["type"] == "text"

        ws.send_json({"type": "cancel", "payload": {"sessionId": "s1"}})
        assert ws.receive_json() == {"type": "done", "payload": {"sessionId": "s1"}}

        client.portal.call(gate.set)
        session = client.app.state.sessions.get_session("s1")
        deadline = time.monotonic() + 2
        while session.executing and time.monotonic() < deadline:
            time.sleep(0.01)
        assert session.history == []

        ws.send_json({"type": "query", "payload": {"content": "again", "sessionId": "s1"}})
        messages = receive_until_done(ws)

    assert [m["type"] for m in messages] == ["text", "done"]
    assert messages[0]["payload"]["content"] == "fresh"


def test_cancel_without_session_id_uses_connection():
    """Test cancel falls back to the connection's session."""
    gate = asyncio.Event()
    slow = ScriptedRun(events=[TextDelta("a"), TextDelta("b")], steps=[AgentStep(text="ab")], gate=gate)
    client, _ = make_client([slow])

    with client, client.websocket_connect("/ws") as ws:
        ws.send_json({"type": "query", "payload": {"content": "slow", "sessionId": "s2"}})
        ws.receive_json()

        ws.send_json({"type": "cancel", "payload": {}})
        assert ws.receive_json()["type"] == "done"
        client.portal.call(gate.set)


def test_cancel_unknown_session_is_ignored():
    """Test cancelling a session that does not exist sends nothing."""
    client, _ = make_client()

    with client, client.websocket_connect("/ws") as ws:
        ws.send_json({"type": "cancel", "payload": {"sessionId": "nope"}})
        ws.send_text("not json")
        reply = ws.receive_json()

    assert reply["type"] == "error"
    assert "Invalid JSON" in reply["payload"]["message"]


def test_disconnect_removes_session():
    """Test the session is removed when its client disconnects."""
    client, _ = make_client([text_run()])

    with client:
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "query", "payload": {"content": "hi", "sessionId": "gone"}})
            receive_until_done(ws)
            assert client.app.state.sessions.session_count == 1

        assert client.app.state.sessions.get_session("gone") is None
        assert client.get("/api/health").json()["sessions"] == 0


def test_queries_without_session_id_share_one_session():
    """Test a client that never sends a session id keeps one session and its history."""
    client, agent = make_client([text_run("one"), text_run("two"), text_run("three")])

    with client:
        with client.websocket_connect("/ws") as ws:
            session_ids = set()
            for content in ("first", "second", "third"):
                ws.send_json({"type": "query", "payload": {"content": content}})
                session_ids |= {m["payload"]["sessionId"] for m in receive_until_done(ws)}
            assert client.app.state.sessions.session_count == 1

        assert client.app.state.sessions.session_count == 0

    assert len(session_ids) == 1
    assert [len(messages) for _, messages in agent.calls] == [0, 2, 4]


def test_disconnect_removes_every_session_of_connection():
    """Test sessions opened under several ids on one connection are all removed."""
    client, _ = make_client([text_run(), text_run()])

    with client:
        with client.websocket_connect("/ws") as ws:
            for session_id in ("a", "b"):
                ws.send_json({"type": "query", "payload": {"content": "hi", "sessionId": session_id}})
                receive_until_done(ws)
            assert client.app.state.sessions.session_count == 2

        assert client.app.state.sessions.session_count == 0


def test_compaction_settings_reach_sessions():
    """Test compaction settings are handed to every session."""
    client, _ = make_client(compaction_enabled=False, compaction_keep_first=1, compaction_keep_last=3)

    config = client.app.state.sessions.compaction_config

    assert config.enabled is False
    assert config.keep_first_n == 1
    assert config.keep_last_n == 3


def test_custom_ws_path():
    """Test the endpoint follows the configured path."""
    client, _ = make_client([text_run("ok")], ws_path="agent")

    with client, client.websocket_connect("/agent") as ws:
        ws.send_json({"type": "query", "payload": {"content": "hi"}})
        messages = receive_until_done(ws)

    assert messages[-1]["type"] == "done"
