"""
Command Router — `status` commands handled outside the intake dialogue.

Local mode answers from the RequestStore. Live mode asks the automation
agent to read statuses from the portal, which needs a portal login: when the
session has none, the router asks for `portal_url, username, password` and
keeps `statusLookupPending` set until a well-formed reply arrives.
"""
from __future__ import annotations

from typing import Any, Optional

import structlog

from backend.automation import AutomationHandler
from channels.base import Messenger
from core import messages
from core.commands import Intent, match_global, parse_status_command, parse_status_credentials
from core.goals import build_status_goal
from database.request_store import RequestStore, format_status_detail, format_status_list
from models.schemas import AutomationResult, InboundMessage, Session, StatusCommand

logger = structlog.get_logger()


def extract_status_message(result: Optional[AutomationResult]) -> Optional[str]:
    """The agent's user-facing summary from a status lookup run."""
    if result is None or not isinstance(result.raw, dict):
        return None
    raw = result.raw
    result_json = raw.get("resultJson")
    if isinstance(result_json, dict):
        for key in ("message", "result"):
            if isinstance(result_json.get(key), str):
                return result_json[key]
    if isinstance(raw.get("message"), str):
        return raw["message"]
    return None


def has_portal_login(data: dict[str, Any]) -> bool:
    return all(data.get(k) for k in ("portalUrl", "username", "password"))


class CommandRouter:
    def __init__(
        self,
        messenger: Messenger,
        requests: RequestStore = None,
        automation: AutomationHandler = None,
        live_lookup: bool = False,
    ):
        if messenger is None:
            raise ValueError("messenger is required.")
        if live_lookup and automation is None:
            raise ValueError("automation is required for live status lookups.")
        self.messenger = messenger
        self.requests = requests or RequestStore()
        self.automation = automation
        self.live_lookup = live_lookup

    async def maybe_handle(self, session: Optional[Session], user_id: str, message: InboundMessage) -> bool:
        """Handle the message if it belongs to the router. Returns True when consumed."""
        if session is not None and session.data.get("statusLookupPending"):
            if match_global(message.text) == Intent.CANCEL:
                session.data["statusLookupPending"] = False
                return False
            creds = parse_status_credentials(message.text)
            if not creds:
                await self.messenger.send_message(message.channel_id, messages.STATUS_CREDENTIALS_PROMPT)
                return True
            session.data.update(creds)
            session.data["statusLookupPending"] = False
            await self._run_live_lookup(session, message.channel_id)
            return True

        command = parse_status_command(message.text)
        if command is None:
            return False
        await self.handle_status_command(command, user_id, message.channel_id, session)
        return True

    async def handle_status_command(self, command: StatusCommand, user_id: str, channel_id: str,
                                    session: Session = None) -> None:
        logger.info("status_command", user_id=user_id, type=command.type, live=self.live_lookup)
        if not self.live_lookup:
            await self.messenger.send_message(channel_id, self.answer_locally(command, user_id))
            return

        if session is None:
            raise ValueError("live status lookups need a session.")
        session.data["statusCommand"] = command.model_dump()
        if not has_portal_login(session.data):
            session.data["statusLookupPending"] = True
            await self.messenger.send_message(channel_id, messages.STATUS_CREDENTIALS_PROMPT)
            return
        await self._run_live_lookup(session, channel_id)

    def answer_locally(self, command: StatusCommand, user_id: str) -> str:
        if command.type == "list":
            filter = command.filter or "open"
            return format_status_list(filter, self.requests.list(user_id, filter))
        request = self.requests.find_by_id(user_id, command.query)
        if request is None:
            return messages.STATUS_NOT_FOUND
        return format_status_detail(request)

    async def _run_live_lookup(self, session: Session, channel_id: str) -> None:
        stored = session.data.get("statusCommand") or {}
        command = StatusCommand(**stored) if stored else StatusCommand(type="list", filter="open")
        text = None
        try:
            result = await self.automation.run({
                "portalUrl": session.data.get("portalUrl"),
                "goal": build_status_goal(session.data, command),
            })
            text = extract_status_message(result)
        except Exception as e:
            logger.error("status_lookup_failed", user_id=session.user_id, error=str(e))
        finally:
            session.data["statusCommand"] = None
        await self.messenger.send_message(channel_id, text or messages.STATUS_LOOKUP_FAILED)
