"""
Discord Messenger — outbound messages over the Discord REST API.

Provides:
- Plain text messages
- Images by URL (embed) or data URI (file upload)
- Multi-file uploads with a caption
- DM channel creation for moving a conversation out of a guild channel
- Mock mode when no bot token is configured (logs instead of sending)
"""
from __future__ import annotations

import base64
import json
import re
import uuid
from typing import Any, Optional

import httpx
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from channels.base import ChannelError, Messenger, OutboundFile

logger = structlog.get_logger()

_DATA_URI = re.compile(r"^data:(image/[a-zA-Z0-9.+-]+);base64,(.+)$", re.DOTALL)


class DiscordMessenger(Messenger):
    """Discord REST client implementing the Messenger interface."""

    channel_name = "discord"

    def __init__(self, bot_token: str = "", base_url: str = "https://discord.com/api/v10",
                 client: Optional[httpx.AsyncClient] = None):
        self._token = bot_token
        self._base_url = base_url
        self._client = client

    @property
    def is_mock(self) -> bool:
        return not self._token

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                headers={"Authorization": f"Bot {self._token}"},
                timeout=30.0,
            )
        return self._client

    async def _post(self, path: str, **kwargs) -> dict[str, Any]:
        try:
            response = await self._get_client().post(path, **kwargs)
        except httpx.HTTPError as e:
            raise ChannelError(f"Discord request failed: {e}", self.channel_name, retryable=True) from e
        if response.status_code >= 400:
            try:
                detail = response.json().get("message", response.text)
            except ValueError:
                detail = response.text
            raise ChannelError(
                f"Discord error {response.status_code}: {detail}",
                self.channel_name,
                retryable=response.status_code >= 500 or response.status_code == 429,
            )
        return response.json() if response.content else {}

    def _mock(self, kind: str, channel_id: str, **fields) -> dict[str, Any]:
        msg_id = uuid.uuid4().hex[:18]
        logger.info("discord_mock_sent", kind=kind, channel_id=channel_id, msg_id=msg_id, **fields)
        return {"status": "mock_sent", "id": msg_id}

    # ── Send ──────────────────────────────────────────────────

    async def send_message(self, channel_id: str, text: str) -> dict[str, Any]:
        if not channel_id:
            raise ChannelError("Channel ID is required.", self.channel_name)
        if self.is_mock:
            return self._mock("text", channel_id, length=len(text))
        return await self._post(f"/channels/{channel_id}/messages", json={"content": text})

    async def send_image(self, channel_id: str, image: str, caption: str = "") -> dict[str, Any]:
        if not channel_id:
            raise ChannelError("Channel ID is required.", self.channel_name)
        if not image:
            raise ChannelError("Image is required.", self.channel_name)

        if image.startswith("http"):
            if self.is_mock:
                return self._mock("image_url", channel_id)
            return await self._post(
                f"/channels/{channel_id}/messages",
                json={"content": caption, "embeds": [{"image": {"url": image}}]},
            )

        match = _DATA_URI.match(image)
        if not match:
            return await self.send_message(
                channel_id, caption or "Confirmation image is available but could not be attached."
            )
        mime_type = match.group(1)
        try:
            buffer = base64.b64decode(match.group(2))
        except ValueError as e:
            raise ChannelError(f"Invalid image data: {e}", self.channel_name) from e
        ext = mime_type.split("/")[1] or "png"
        return await self.send_files(
            channel_id, [OutboundFile(buffer=buffer, filename=f"confirmation.{ext}", content_type=mime_type)],
            caption,
        )

    async def send_files(self, channel_id: str, files: list[OutboundFile], caption: str = "") -> dict[str, Any]:
        if not channel_id:
            raise ChannelError("Channel ID is required.", self.channel_name)
        if not files:
            raise ChannelError("At least one file is required.", self.channel_name)
        if self.is_mock:
            return self._mock("files", channel_id, count=len(files))

        payload = {
            "content": caption,
            "attachments": [{"id": i, "filename": f.filename} for i, f in enumerate(files)],
        }
        multipart = {
            f"files[{i}]": (f.filename, f.buffer, f.content_type or "application/octet-stream")
            for i, f in enumerate(files)
        }
        return await self._post(
            f"/channels/{channel_id}/messages",
            data={"payload_json": json.dumps(payload)},
            files=multipart,
        )

    # ── DM ────────────────────────────────────────────────────

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, max=10),
        retry=retry_if_exception_type(ChannelError),
        reraise=True,
    )
    async def open_dm(self, user_id: str) -> str:
        if self.is_mock:
            return f"dm-{user_id}"
        payload = await self._post("/users/@me/channels", json={"recipient_id": user_id})
        channel_id = payload.get("id")
        if not channel_id:
            raise ChannelError("Discord did not return a DM channel id", self.channel_name)
        return str(channel_id)

    async def shutdown(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
