"""Tests for data models."""
import pytest
from models.schemas import (
    STAGE_VALUES, InboundEvent, Outcome, Session, Stage, StoredRequest, RequestStatus,
    ensure_session_data, new_session_data,
)


class TestSessionData:
    def test_new_session_has_empty_lists(self):
        session = Session(user_id="u1")
        assert session.stage == Stage.PORTAL.value
        assert session.data == new_session_data()
        assert session.remediation is None

    def test_session_ids_are_unique(self):
        assert Session(user_id="u1").id != Session(user_id="u1").id

    def test_repair_restores_dropped_lists(self):
        data = {"portalUrl": "https://portal.example", "attachments": "oops"}
        repaired = ensure_session_data(data)
        assert repaired["attachments"] == []
        assert repaired["history"] == []
        assert repaired["portalUrl"] == "https://portal.example"

    @pytest.mark.parametrize("data", [None, "text", ["a"]])
    def test_repair_replaces_non_dict(self, data):
        assert ensure_session_data(data) == new_session_data()

    def test_remediation_property(self):
        session = Session(user_id="u1")
        session.data["remediation"] = {"state": "collecting"}
        assert session.remediation == {"state": "collecting"}

    def test_stage_values(self):
        assert "intake" in STAGE_VALUES
        assert "remediation" in STAGE_VALUES
        assert "done" not in STAGE_VALUES


class TestOutcome:
    def test_success(self):
        outcome = Outcome(status="SUCCESS")
        assert outcome.succeeded
        assert not outcome.needs_user

    @pytest.mark.parametrize("action", ["NEEDS_INFO", "USER_ACTION_REQUIRED"])
    def test_remediation_actions_need_user(self, action):
        assert Outcome(status="FAILED", action=action).needs_user

    @pytest.mark.parametrize("action", ["RETRY_LATER", "BLOCKED", "UNKNOWN", None])
    def test_other_actions_do_not(self, action):
        assert not Outcome(status="FAILED", action=action).needs_user

    def test_user_message_prefers_prompt(self):
        assert Outcome(status="FAILED", reason="r", prompt="p").user_message == "p"
        assert Outcome(status="FAILED", reason="r").user_message == "r"
        assert Outcome(status="FAILED").user_message is None


class TestEventsAndRequests:
    def test_inbound_event_defaults(self):
        event = InboundEvent(user_id="u1", channel_id="c1")
        assert event.content == ""
        assert event.attachments == []
        assert not event.is_dm
        assert not event.author_is_bot

    def test_attachment_coercion(self):
        event = InboundEvent(user_id="u1", channel_id="c1",
                             attachments=[{"url": "https://cdn.test/a.jpg", "filename": "a.jpg"}])
        assert event.attachments[0].filename == "a.jpg"

    def test_stored_request_defaults_open(self):
        request = StoredRequest(id="r1", user_id="u1")
        assert request.status == RequestStatus.OPEN
        assert request.confirmation_id is None
