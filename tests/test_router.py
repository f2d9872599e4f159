"""Tests for status commands: local history and live portal lookups."""
import pytest

from conftest import ScriptedAutomation
from core import messages
from core.router import CommandRouter, extract_status_message
from models.schemas import AutomationResult, InboundMessage, Session

CHANNEL = "dm-1"


def msg(text):
    return InboundMessage(channel_id=CHANNEL, text=text)


class TestLocalStatus:
    @pytest.mark.asyncio
    async def test_non_status_text_not_consumed(self, router, messenger):
        assert not await router.maybe_handle(Session(user_id="u1"), "u1", msg("hello"))
        assert messenger.messages == []

    @pytest.mark.asyncio
    async def test_list_open(self, router, messenger, request_store):
        request_store.record_success("u1", "https://p", "Leak")
        assert await router.maybe_handle(None, "u1", msg("status"))
        assert messenger.last.startswith("Open requests (showing 1 of 1):")

    @pytest.mark.asyncio
    async def test_list_empty_filter(self, router, messenger):
        await router.maybe_handle(None, "u1", msg("status resolved"))
        assert messenger.last.startswith("No resolved requests on record.")

    @pytest.mark.asyncio
    async def test_detail_by_suffix(self, router, messenger, request_store):
        request = request_store.record_success("u1", "https://p", "Leak", confirmation_id="WO-5")
        await router.maybe_handle(None, "u1", msg(f"request status {request.id[-6:]}"))
        assert messenger.last.startswith(f"Request {request.id}")
        assert "Confirmation: WO-5" in messenger.last

    @pytest.mark.asyncio
    async def test_detail_not_found(self, router, messenger):
        await router.maybe_handle(None, "u1", msg("status REQ-NOPE"))
        assert messenger.last == messages.STATUS_NOT_FOUND

    @pytest.mark.asyncio
    async def test_other_users_requests_hidden(self, router, messenger, request_store):
        request_store.record_success("u2", "https://p", "Leak")
        await router.maybe_handle(None, "u1", msg("status all"))
        assert messenger.last.startswith("No all requests on record.")


class TestLiveStatus:
    @pytest.fixture
    def live_automation(self):
        automation = ScriptedAutomation()
        automation.run.return_value = AutomationResult(
            success=True, raw={"resultJson": {"message": "You have 2 open requests."}})
        return automation

    @pytest.fixture
    def live_router(self, messenger, live_automation):
        return CommandRouter(messenger, automation=live_automation, live_lookup=True)

    def test_live_lookup_needs_automation(self, messenger):
        with pytest.raises(ValueError):
            CommandRouter(messenger, live_lookup=True)

    @pytest.mark.asyncio
    async def test_prompts_for_credentials_then_looks_up(self, live_router, live_automation, messenger):
        session = Session(user_id="u1")
        assert await live_router.maybe_handle(session, "u1", msg("status all"))
        assert session.data["statusLookupPending"] is True
        assert messenger.last == messages.STATUS_CREDENTIALS_PROMPT

        assert await live_router.maybe_handle(session, "u1", msg("https://p.example, alex"))
        assert messenger.last == messages.STATUS_CREDENTIALS_PROMPT
        live_automation.run.assert_not_awaited()

        assert await live_router.maybe_handle(session, "u1", msg("https://p.example, alex, hunter2"))
        payload = live_automation.run.await_args.args[0]
        assert payload["portalUrl"] == "https://p.example"
        assert "List the all requests" in payload["goal"]
        assert "Password: hunter2" in payload["goal"]
        assert messenger.last == "You have 2 open requests."
        assert session.data["statusLookupPending"] is False
        assert session.data["statusCommand"] is None

    @pytest.mark.asyncio
    async def test_known_login_runs_immediately(self, live_router, live_automation, messenger):
        session = Session(user_id="u1")
        session.data.update({"portalUrl": "https://p.example", "username": "alex", "password": "hunter2"})
        await live_router.maybe_handle(session, "u1", msg("status WO-12"))
        assert "Search for the request matching: WO-12." in live_automation.run.await_args.args[0]["goal"]
        assert messenger.last == "You have 2 open requests."

    @pytest.mark.asyncio
    async def test_lookup_failure_message(self, live_router, live_automation, messenger):
        live_automation.run.side_effect = RuntimeError("agent offline")
        session = Session(user_id="u1")
        session.data.update({"portalUrl": "https://p.example", "username": "alex", "password": "hunter2"})
        await live_router.maybe_handle(session, "u1", msg("status"))
        assert messenger.last == messages.STATUS_LOOKUP_FAILED

    @pytest.mark.asyncio
    async def test_empty_answer_is_failure(self, live_router, live_automation, messenger):
        live_automation.run.return_value = AutomationResult(success=True, raw={"status": "COMPLETED"})
        session = Session(user_id="u1")
        session.data.update({"portalUrl": "https://p.example", "username": "alex", "password": "hunter2"})
        await live_router.maybe_handle(session, "u1", msg("status"))
        assert messenger.last == messages.STATUS_LOOKUP_FAILED

    @pytest.mark.asyncio
    async def test_cancel_releases_pending_lookup(self, live_router, messenger):
        session = Session(user_id="u1")
        await live_router.maybe_handle(session, "u1", msg("status"))
        assert not await live_router.maybe_handle(session, "u1", msg("cancel"))
        assert session.data["statusLookupPending"] is False


class TestExtractStatusMessage:
    def test_sources(self):
        assert extract_status_message(AutomationResult(raw={"resultJson": {"result": "2 open"}})) == "2 open"
        assert extract_status_message(AutomationResult(raw={"message": "none open"})) == "none open"
        assert extract_status_message(AutomationResult(raw="text")) is None
        assert extract_status_message(None) is None
