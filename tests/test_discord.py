"""Tests for the Discord REST messenger."""
import base64
import json
import pytest

import httpx
from tenacity import wait_none

from channels.base import ChannelError, OutboundFile
from channels.discord_adapter import DiscordMessenger


class DiscordStub:
    """Records requests and answers from a queue of (status, json) responses."""

    def __init__(self, *responses):
        self.requests: list[httpx.Request] = []
        self.responses = list(responses) or [(200, {"id": "m1"})]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status, body = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        return httpx.Response(status, json=body)


def messenger_for(stub):
    client = httpx.AsyncClient(transport=httpx.MockTransport(stub), base_url="https://discord.test/api")
    return DiscordMessenger(bot_token="token", client=client)


class TestMockMode:
    @pytest.mark.asyncio
    async def test_no_token_logs_instead_of_sending(self):
        messenger = DiscordMessenger()
        assert messenger.is_mock
        assert (await messenger.send_message("c1", "hi"))["status"] == "mock_sent"
        assert (await messenger.send_files("c1", [OutboundFile(b"x", "a.txt")]))["status"] == "mock_sent"
        assert await messenger.open_dm("u1") == "dm-u1"

    @pytest.mark.asyncio
    async def test_channel_required(self):
        with pytest.raises(ChannelError):
            await DiscordMessenger().send_message("", "hi")


class TestRest:
    @pytest.mark.asyncio
    async def test_send_message(self):
        stub = DiscordStub()
        await messenger_for(stub).send_message("c1", "Send your portal URL")
        [request] = stub.requests
        assert request.url.path == "/api/channels/c1/messages"
        assert json.loads(request.content) == {"content": "Send your portal URL"}

    @pytest.mark.asyncio
    async def test_image_url_sent_as_embed(self):
        stub = DiscordStub()
        await messenger_for(stub).send_image("c1", "https://img.test/c.png", "Confirmation image")
        body = json.loads(stub.requests[0].content)
        assert body["embeds"] == [{"image": {"url": "https://img.test/c.png"}}]
        assert body["content"] == "Confirmation image"

    @pytest.mark.asyncio
    async def test_data_uri_uploaded_as_file(self):
        stub = DiscordStub()
        data_uri = "data:image/png;base64," + base64.b64encode(b"png-bytes").decode()
        await messenger_for(stub).send_image("c1", data_uri, "Confirmation image")
        [request] = stub.requests
        assert request.headers["content-type"].startswith("multipart/form-data")
        assert b"confirmation.png" in request.content
        assert b"png-bytes" in request.content

    @pytest.mark.asyncio
    async def test_send_files_payload(self):
        stub = DiscordStub()
        files = [OutboundFile(b"one", "leak.jpg", "image/jpeg"), OutboundFile(b"two", "lease.pdf")]
        await messenger_for(stub).send_files("c1", files, "Echoing saved attachments.")
        content = stub.requests[0].content
        assert b'name="files[0]"' in content
        assert b'name="files[1]"' in content
        assert b"Echoing saved attachments." in content

    @pytest.mark.asyncio
    async def test_error_status_raises(self):
        stub = DiscordStub((403, {"message": "Missing Access"}))
        with pytest.raises(ChannelError, match="Missing Access") as exc:
            await messenger_for(stub).send_message("c1", "hi")
        assert not exc.value.retryable

    @pytest.mark.asyncio
    async def test_open_dm_retries_server_errors(self, monkeypatch):
        monkeypatch.setattr(DiscordMessenger.open_dm.retry, "wait", wait_none())
        stub = DiscordStub((502, {"message": "Bad Gateway"}), (200, {"id": "dm-99"}))
        assert await messenger_for(stub).open_dm("u1") == "dm-99"
        assert len(stub.requests) == 2
        assert json.loads(stub.requests[-1].content) == {"recipient_id": "u1"}
