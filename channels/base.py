"""
Channel base — the Messenger interface every chat transport implements.

Provides:
- ChannelError: transport failure raised by any send
- OutboundFile: a file payload for send_files
- Messenger: abstract outbound interface used by the session flow
"""
from __future__ import annotations

import abc
from dataclasses import dataclass
from typing import Any, Optional


# ══════════════════════════════════════════════════════════════
#  ERRORS
# ══════════════════════════════════════════════════════════════

class ChannelError(Exception):
    """Base exception for all channel operations."""

    def __init__(self, message: str, channel: str = "", retryable: bool = False):
        self.channel = channel
        self.retryable = retryable
        super().__init__(message)


# ══════════════════════════════════════════════════════════════
#  PAYLOADS
# ══════════════════════════════════════════════════════════════

@dataclass
class OutboundFile:
    buffer: bytes
    filename: str
    content_type: Optional[str] = None


# ══════════════════════════════════════════════════════════════
#  MESSENGER: Abstract Base
# ══════════════════════════════════════════════════════════════

class Messenger(abc.ABC):
    """
    Outbound side of a chat transport.

    Every method returns the transport's acknowledgement and raises
    ChannelError when delivery fails. Callers decide whether a failure is
    fatal; the messenger never retries a send on its own.
    """

    channel_name: str = ""

    @abc.abstractmethod
    async def send_message(self, channel_id: str, text: str) -> dict[str, Any]:
        ...

    @abc.abstractmethod
    async def send_image(self, channel_id: str, image: str, caption: str = "") -> dict[str, Any]:
        """`image` is an http(s) URL or a `data:image/...;base64,` URI."""
        ...

    @abc.abstractmethod
    async def send_files(self, channel_id: str, files: list[OutboundFile], caption: str = "") -> dict[str, Any]:
        ...

    async def open_dm(self, user_id: str) -> str:
        """Return the id of a direct-message channel with `user_id`."""
        raise ChannelError("Direct messages are not supported", self.channel_name)

    async def shutdown(self) -> None:
        pass
