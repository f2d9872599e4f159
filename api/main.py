"""
FastAPI Application — Webhook entry point for the maintenance intake bot.

Provides:
- POST /webhooks/chat: inbound chat events from the transport bridge
- GET /requests/{user_id}: a user's submitted request history
- GET /health: liveness and session count
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone

import structlog

# Load .env before any config is read
from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI, HTTPException, Query

from backend.automation import AutomationHandler, create_automation_handler
from channels.base import Messenger
from channels.discord_adapter import DiscordMessenger
from channels.gateway import ChatGateway, load_triggers
from config.settings import Settings, get_settings
from core.attachments import AttachmentManager
from core.flow import SessionFlow
from core.router import CommandRouter
from database.request_store import RequestStore
from database.session_store import SessionStore
from models.schemas import FlowMode, InboundEvent

logger = structlog.get_logger()

REQUEST_FILTERS = ("open", "all", "resolved", "cancelled", "canceled")


# ──────────────────────────────────────────────────────────────
#  Bootstrap
# ──────────────────────────────────────────────────────────────

@dataclass
class Components:
    sessions: SessionStore
    requests: RequestStore
    messenger: Messenger
    automation: AutomationHandler
    attachments: AttachmentManager
    flow: SessionFlow
    router: CommandRouter
    gateway: ChatGateway


def build_components(settings: Settings, messenger: Messenger = None,
                     automation: AutomationHandler = None) -> Components:
    discord = settings.channels.get("discord")
    discord_creds = discord.credentials if discord else {}
    if messenger is None:
        messenger = DiscordMessenger(bot_token=discord_creds.get("bot_token") or "")
    if automation is None:
        automation = create_automation_handler(settings.automation)

    mode = FlowMode(settings.flow.mode)
    sessions = SessionStore()
    requests = RequestStore()
    attachments = AttachmentManager(settings.flow.attachments_dir, timeout=settings.flow.download_timeout)
    flow = SessionFlow(
        sessions, automation, messenger,
        attachments=attachments,
        requests=requests,
        mode=mode,
        max_remediation_rounds=settings.flow.max_remediation_rounds,
    )
    sessions.initial_stage = flow.initial_stage
    router = CommandRouter(messenger, requests=requests, automation=automation,
                           live_lookup=settings.status.live_lookup)
    bot_user_id = discord_creds.get("bot_user_id") or None
    if bot_user_id and bot_user_id.startswith("${"):
        bot_user_id = None
    gateway = ChatGateway(
        flow, router,
        triggers=load_triggers(settings.commands_file),
        allowed_channel_id=settings.allowed_channel_id,
        bot_user_id=bot_user_id,
    )
    return Components(sessions, requests, messenger, automation, attachments, flow, router, gateway)


def create_app(components: Components = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "components", None) is None:
            app.state.components = build_components(get_settings())
        c = app.state.components
        logger.info("intake_bot_started", mode=c.flow.mode.value, live_status=c.router.live_lookup)
        yield
        await c.attachments.close()
        await c.messenger.shutdown()
        runner = getattr(c.automation, "runner", None)
        if runner is not None:
            await runner.close()
        logger.info("intake_bot_stopped")

    app = FastAPI(
        title="Maintenance Intake API",
        description="Conversational intake of property maintenance requests",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.components = components

    @app.get("/health")
    async def health():
        c: Components = app.state.components
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "mode": c.flow.mode.value,
            "sessions": c.sessions.count,
        }

    @app.post("/webhooks/chat")
    async def receive_chat_event(event: InboundEvent):
        await app.state.components.gateway.handle_event(event)
        return {"status": "accepted"}

    @app.get("/requests/{user_id}")
    async def list_requests(user_id: str, filter: str = Query("open")):
        if filter.lower() not in REQUEST_FILTERS:
            raise HTTPException(400, f"Unknown filter: {filter}")
        requests = app.state.components.requests.list(user_id, filter)
        return [r.model_dump(mode="json") for r in requests]

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
