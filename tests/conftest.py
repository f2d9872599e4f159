"""Shared test fixtures for the maintenance intake bot."""
import pytest
import httpx
from typing import Any
from unittest.mock import AsyncMock

from backend.automation import AutomationHandler
from channels.base import ChannelError, Messenger, OutboundFile
from core.attachments import AttachmentManager
from core.flow import SessionFlow
from core.router import CommandRouter
from database.request_store import RequestStore
from database.session_store import SessionStore
from models.schemas import AutomationResult, FlowMode, Stage


class RecordingMessenger(Messenger):
    """Captures every outbound call instead of talking to a chat service."""

    channel_name = "test"

    def __init__(self, dm_channel_id: str = "dm-1"):
        self.messages: list[tuple[str, str]] = []
        self.images: list[tuple[str, str, str]] = []
        self.files: list[tuple[str, list[OutboundFile], str]] = []
        self.dm_channel_id = dm_channel_id
        self.fail_dm = False
        self.fail_sends = False

    async def send_message(self, channel_id: str, text: str) -> dict[str, Any]:
        if self.fail_sends:
            raise ChannelError("send failed", self.channel_name)
        self.messages.append((channel_id, text))
        return {"status": "sent"}

    async def send_image(self, channel_id: str, image: str, caption: str = "") -> dict[str, Any]:
        self.images.append((channel_id, image, caption))
        return {"status": "sent"}

    async def send_files(self, channel_id: str, files: list[OutboundFile], caption: str = "") -> dict[str, Any]:
        self.files.append((channel_id, files, caption))
        return {"status": "sent"}

    async def open_dm(self, user_id: str) -> str:
        if self.fail_dm:
            raise ChannelError("cannot DM user", self.channel_name)
        return self.dm_channel_id

    @property
    def texts(self) -> list[str]:
        return [text for _, text in self.messages]

    @property
    def last(self) -> str:
        return self.messages[-1][1] if self.messages else ""


class ScriptedAutomation(AutomationHandler):
    """Automation handler whose run/bulk_intake are AsyncMocks the test scripts."""

    def __init__(self, bulk: bool = False):
        self.run = AsyncMock(return_value=AutomationResult(success=True, raw={"status": "COMPLETED"}))
        self.bulk_intake = AsyncMock()
        self._bulk = bulk

    async def run(self, session_data: dict[str, Any]) -> AutomationResult:  # replaced in __init__
        raise NotImplementedError

    @property
    def supports_bulk_intake(self) -> bool:
        return self._bulk


def failed_block(**lines: str) -> AutomationResult:
    """AutomationResult whose final message is a structured block built from keyword lines."""
    text = "\n".join(f"{key.upper()}: {value}" for key, value in lines.items())
    return AutomationResult(success=False, raw={"message": text})


def attachment_transport(routes: dict[str, tuple[int, bytes]]) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        status, body = routes.get(str(request.url), (404, b""))
        return httpx.Response(status, content=body)
    return httpx.MockTransport(handler)


@pytest.fixture
def messenger():
    return RecordingMessenger()


@pytest.fixture
def automation():
    return ScriptedAutomation()


@pytest.fixture
def bulk_automation():
    return ScriptedAutomation(bulk=True)


@pytest.fixture
def session_store():
    return SessionStore()


@pytest.fixture
def request_store():
    return RequestStore()


@pytest.fixture
def attachment_routes():
    return {
        "https://cdn.test/leak.jpg": (200, b"jpeg-bytes"),
        "https://cdn.test/missing.png": (404, b""),
        "https://cdn.test/lease.pdf": (200, b"pdf-bytes"),
    }


@pytest.fixture
def attachment_manager(tmp_path, attachment_routes):
    client = httpx.AsyncClient(transport=attachment_transport(attachment_routes))
    return AttachmentManager(str(tmp_path / "attachments"), client=client)


@pytest.fixture
def flow(session_store, automation, messenger, attachment_manager, request_store):
    return SessionFlow(
        session_store, automation, messenger,
        attachments=attachment_manager,
        requests=request_store,
        mode=FlowMode.GUIDED,
        max_remediation_rounds=5,
    )


@pytest.fixture
def bulk_flow(bulk_automation, messenger, attachment_manager, request_store):
    return SessionFlow(
        SessionStore(initial_stage=Stage.INTAKE), bulk_automation, messenger,
        attachments=attachment_manager,
        requests=request_store,
        mode=FlowMode.BULK,
    )


@pytest.fixture
def router(messenger, request_store):
    return CommandRouter(messenger, requests=request_store)
