"""Chat transports: the Messenger interface, the Discord REST messenger and the dispatch gateway."""
from channels.base import ChannelError, Messenger, OutboundFile
from channels.discord_adapter import DiscordMessenger
from channels.gateway import ChatGateway, load_triggers, strip_mention

__all__ = [
    "ChannelError", "Messenger", "OutboundFile",
    "DiscordMessenger",
    "ChatGateway", "load_triggers", "strip_mention",
]
