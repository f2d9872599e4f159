"""
Chat Gateway — Decides what to do with each inbound chat event.

The gateway sits between the transport (a webhook, a bot client) and the
session flow. It owns the dispatch rules:

- bot authors are ignored; guild traffic outside the configured channel too
- trigger phrases start a session (in a DM) or ask to restart one
- `status` goes to the command router, `attach` may open a session
- everything else from a user with a session goes to the flow

One user's events are handled under that user's lock, so turns never
interleave.
"""
from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Optional

import structlog

from channels.base import ChannelError
from core import messages
from core.commands import DEFAULT_TRIGGERS, Intent, build_trigger, match_global, parse_status_command
from core.flow import SessionFlow
from core.router import CommandRouter
from models.schemas import InboundEvent, InboundMessage, Session, Stage

logger = structlog.get_logger()


def load_triggers(path: Optional[str]) -> list[re.Pattern]:
    """Trigger phrases from a JSON list of {"phrase": ...}; defaults when missing or empty."""
    if not path:
        return list(DEFAULT_TRIGGERS)
    try:
        definitions = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.warning("commands_file_unavailable", path=path, error=str(e))
        return list(DEFAULT_TRIGGERS)
    phrases = [d.get("phrase") for d in definitions if isinstance(d, dict)] if isinstance(definitions, list) else []
    triggers = [build_trigger(p.strip()) for p in phrases if isinstance(p, str) and p.strip()]
    return triggers or list(DEFAULT_TRIGGERS)


def strip_mention(content: str, bot_user_id: Optional[str]) -> str:
    if not bot_user_id:
        return content.strip()
    return re.sub(rf"<@!?{re.escape(bot_user_id)}>", "", content, flags=re.IGNORECASE).strip()


class ChatGateway:
    def __init__(
        self,
        flow: SessionFlow,
        router: CommandRouter,
        triggers: list[re.Pattern] = None,
        allowed_channel_id: str = "",
        bot_user_id: str = None,
    ):
        self.flow = flow
        self.router = router
        self.sessions = flow.sessions
        self.messenger = flow.messenger
        self.triggers = triggers or list(DEFAULT_TRIGGERS)
        self.allowed_channel_id = allowed_channel_id or ""
        self.bot_user_id = bot_user_id

    def _is_trigger(self, text: str) -> bool:
        return any(t.match(text) for t in self.triggers)

    async def handle_event(self, event: InboundEvent) -> None:
        if event.author_is_bot:
            return
        if self.allowed_channel_id and not event.is_dm and event.channel_id != self.allowed_channel_id:
            return

        async with self.sessions.turn(event.user_id):
            try:
                await self._dispatch(event)
            except ChannelError as e:
                logger.error("turn_failed", user_id=event.user_id, channel_id=event.channel_id, error=str(e))

    async def _dispatch(self, event: InboundEvent) -> None:
        user_id = event.user_id
        text = strip_mention(event.content or "", self.bot_user_id)
        is_trigger = self._is_trigger(text)
        existing = self.sessions.peek(user_id)
        if existing is not None and is_trigger and existing.data.get("statusOnly"):
            self.sessions.remove(user_id)
        running = self.sessions.has(user_id)
        is_attach = match_global(text) == Intent.ATTACH
        status_command = parse_status_command(text)
        addressed = event.is_dm or event.bot_mentioned or bool(self.allowed_channel_id)

        if not (is_trigger or running or is_attach or status_command):
            if event.bot_mentioned and not text:
                await self.messenger.send_message(event.channel_id, messages.YES_PROMPT)
            return

        if status_command:
            if not addressed:
                return
            await self._handle_status(event, status_command)
            return

        if not running and is_attach and not event.is_dm:
            if not addressed:
                return
            session = self.sessions.get(user_id)
            session.stage = Stage.ATTACHMENTS.value
            session.channel_id = event.channel_id
            await self.messenger.send_message(event.channel_id, messages.ATTACHMENT_SEND_PROMPT)
            return

        if running and is_trigger:
            await self._request_restart(event, self.sessions.get(user_id))
            return

        if not running and is_trigger:
            if event.is_dm:
                session = self.sessions.get(user_id)
                await self.flow.start(session, event.channel_id)
            elif addressed:
                await self._start_dm_session(event)
            return

        if not running and not event.is_dm and not event.bot_mentioned:
            return

        session = self.sessions.get(user_id)
        if session.channel_id and event.channel_id != session.channel_id:
            await self.messenger.send_message(event.channel_id, messages.DM_CONTINUE)
            return
        if not session.channel_id and event.is_dm:
            session.channel_id = event.channel_id

        self.sessions.record_user_message(session, event.content, len(event.attachments))
        message = InboundMessage(channel_id=event.channel_id, text=text, attachments=event.attachments)

        if await self.router.maybe_handle(session, user_id, message):
            self._release_status_session(session)
            return
        await self.flow.handle_input(session, message)

    # ── Status ────────────────────────────────────────────────

    async def _handle_status(self, event: InboundEvent, command) -> None:
        session = None
        if self.router.live_lookup:
            created = not self.sessions.has(event.user_id)
            session = self.sessions.get(event.user_id)
            if created:
                session.channel_id = event.channel_id
                session.data["statusOnly"] = True
        await self.router.handle_status_command(command, event.user_id, event.channel_id, session)
        if session is not None:
            self._release_status_session(session)

    def _release_status_session(self, session: Session) -> None:
        if session.data.get("statusOnly") and not session.data.get("statusLookupPending"):
            self.sessions.remove(session.user_id)

    # ── Session start / restart ───────────────────────────────

    async def _request_restart(self, event: InboundEvent, session: Session) -> None:
        if not session.channel_id and event.is_dm:
            session.channel_id = event.channel_id
        session.pending_restart = True
        target = session.channel_id or event.channel_id
        await self.messenger.send_message(target, messages.RESTART_PROMPT)
        if target != event.channel_id:
            await self.messenger.send_message(event.channel_id, messages.DM_CONTINUE)

    async def _start_dm_session(self, event: InboundEvent) -> None:
        try:
            dm_channel_id = await self.messenger.open_dm(event.user_id)
        except ChannelError as e:
            logger.warning("dm_open_failed", user_id=event.user_id, error=str(e))
            await self.messenger.send_message(event.channel_id, messages.DM_FAILED)
            return

        session = self.sessions.get(event.user_id)
        greeting = f"{messages.DM_START_BULK}\n{messages.BULK_PROMPT}" if self.flow.is_bulk else messages.DM_START
        await self.flow.start(session, dm_channel_id, greeting)
        if dm_channel_id != event.channel_id:
            await self.messenger.send_message(event.channel_id, messages.DM_CONTINUE)
