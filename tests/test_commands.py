"""Tests for the keyword command grammar."""
import pytest

from core.commands import (
    BULK_CONFIRM, DEFAULT_TRIGGERS, LIST_OPTIONS, RESTART_CONFIRM, RESTART_KEEP, SKIP_ATTACHMENTS,
    Intent, build_trigger, match_global, matches, parse_bulk_shorthand,
    parse_status_command, parse_status_credentials,
)


class TestGlobalCommands:
    @pytest.mark.parametrize("text", ["cancel", "ABORT", " stop ", "quit", "Exit"])
    def test_cancel_words(self, text):
        assert match_global(text) == Intent.CANCEL

    def test_attach_and_more_info(self):
        assert match_global("attach") == Intent.ATTACH
        assert match_global("More Info") == Intent.MORE_INFO

    def test_whole_message_only(self):
        assert match_global("please cancel") is None
        assert match_global("cancel it") is None
        assert match_global("") is None
        assert match_global(None) is None


class TestStagePatterns:
    def test_restart_choices(self):
        assert matches("start over", RESTART_CONFIRM)
        assert matches("YES", RESTART_CONFIRM)
        assert matches("keep going", RESTART_KEEP)
        assert matches("no", RESTART_KEEP)
        assert not matches("maybe", RESTART_CONFIRM)

    def test_skip_and_done(self):
        assert matches("skip", SKIP_ATTACHMENTS)
        assert matches("Done", SKIP_ATTACHMENTS)
        assert not matches("skipping", SKIP_ATTACHMENTS)

    def test_options_and_bulk_confirm(self):
        assert matches("list", LIST_OPTIONS)
        assert matches("ok", BULK_CONFIRM)
        assert matches("submit", BULK_CONFIRM)


class TestTriggers:
    def test_default_triggers(self):
        assert any(t.match("make a maintenance request") for t in DEFAULT_TRIGGERS)
        assert any(t.match("Make maintenance request") for t in DEFAULT_TRIGGERS)
        assert any(t.match("new maintenance request") for t in DEFAULT_TRIGGERS)
        assert not any(t.match("make a request") for t in DEFAULT_TRIGGERS)

    def test_build_trigger_escapes_phrase(self):
        trigger = build_trigger("fix it (now)?")
        assert trigger.match("FIX IT (NOW)?")
        assert not trigger.match("fix it now")


class TestStatusCommand:
    def test_bare_status(self):
        command = parse_status_command("status")
        assert (command.type, command.filter) == ("list", "open")

    def test_request_status_prefix(self):
        command = parse_status_command("Request Status all")
        assert (command.type, command.filter) == ("list", "all")

    def test_canceled_normalized(self):
        assert parse_status_command("status canceled").filter == "cancelled"

    def test_detail_query(self):
        command = parse_status_command("status REQ-20240101T10-AB12")
        assert command.type == "detail"
        assert command.query == "REQ-20240101T10-AB12"

    def test_not_a_status_command(self):
        assert parse_status_command("what is the status") is None
        assert parse_status_command("statusquo") is None
        assert parse_status_command(None) is None


class TestCredentialReplies:
    def test_three_parts(self):
        assert parse_status_credentials("https://p.example, alex, s3cret") == {
            "portalUrl": "https://p.example", "username": "alex", "password": "s3cret",
        }

    @pytest.mark.parametrize("text", ["https://p.example, alex", "a, b, c, d", ", , ", ""])
    def test_wrong_shape(self, text):
        assert parse_status_credentials(text) is None


class TestBulkShorthand:
    def test_issue_keeps_commas(self):
        parsed = parse_bulk_shorthand("https://p.example, alex@email.com, pass123, AC not cooling, bedroom, urgent")
        assert parsed == {
            "portalUrl": "https://p.example",
            "username": "alex@email.com",
            "password": "pass123",
            "issueDescription": "AC not cooling, bedroom, urgent",
        }

    def test_too_few_parts(self):
        assert parse_bulk_shorthand("https://p.example, alex, pass123") is None
        assert parse_bulk_shorthand("my sink is leaking") is None
