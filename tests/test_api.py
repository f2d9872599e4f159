"""Tests for the webhook API."""
import pytest
from fastapi.testclient import TestClient

from conftest import RecordingMessenger, ScriptedAutomation
from api.main import build_components, create_app
from config.settings import Settings
from core import messages


@pytest.fixture
def components(tmp_path):
    settings = Settings(commands_file=str(tmp_path / "missing.json"))
    settings.flow.attachments_dir = str(tmp_path / "attachments")
    return build_components(settings, messenger=RecordingMessenger(), automation=ScriptedAutomation())


@pytest.fixture
def client(components):
    with TestClient(create_app(components)) as client:
        yield client


def chat(client, content, **extra):
    payload = {"user_id": "u1", "channel_id": "dm-1", "content": content, "is_dm": True, **extra}
    return client.post("/webhooks/chat", json=payload)


def test_health(client):
    body = client.get("/health").json()
    assert body["status"] == "healthy"
    assert body["mode"] == "guided"
    assert body["sessions"] == 0


def test_webhook_runs_a_full_request(client, components):
    for text in ["new maintenance request", "https://portal.example", "alex", "hunter2",
                 "Heater broken", "skip", "yes"]:
        assert chat(client, text).json() == {"status": "accepted"}

    assert components.messenger.last == messages.REQUEST_SUBMITTED
    assert client.get("/health").json()["sessions"] == 0

    [listed] = client.get("/requests/u1").json()
    assert listed["issue_description"] == "Heater broken"
    assert listed["status"] == "OPEN"
    assert client.get("/requests/u1", params={"filter": "resolved"}).json() == []


def test_unknown_filter_rejected(client):
    assert client.get("/requests/u1", params={"filter": "closed"}).status_code == 400


def test_invalid_event_rejected(client):
    assert client.post("/webhooks/chat", json={"content": "hi"}).status_code == 422


def test_bot_events_accepted_but_ignored(client, components):
    chat(client, "new maintenance request", author_is_bot=True)
    assert components.messenger.messages == []
