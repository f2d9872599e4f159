"""
Command grammar — whole-message keyword commands recognized by the bot.

Commands are matched against the trimmed message, case-insensitively, and
must span the whole message. Global commands are evaluated in table order
before any stage-specific handling, so the first row wins.
"""
from __future__ import annotations

import re
from enum import Enum
from typing import Optional

from models.schemas import StatusCommand


class Intent(str, Enum):
    CANCEL = "cancel"
    ATTACH = "attach"
    MORE_INFO = "more_info"


def _whole(pattern: str) -> re.Pattern:
    return re.compile(rf"^(?:{pattern})$", re.IGNORECASE)


# Ordered: priority is the row order.
GLOBAL_COMMANDS: list[tuple[re.Pattern, Intent]] = [
    (_whole(r"cancel|abort|stop|quit|exit"), Intent.CANCEL),
    (_whole(r"attach"), Intent.ATTACH),
    (_whole(r"more info"), Intent.MORE_INFO),
]

RESTART_CONFIRM = _whole(r"start over|yes")
RESTART_KEEP = _whole(r"continue|keep going|no")
SKIP_ATTACHMENTS = _whole(r"skip|done")
YES = _whole(r"yes")
NO = _whole(r"no")
DONE = _whole(r"done")
LIST_OPTIONS = _whole(r"options|list")
BULK_CONFIRM = _whole(r"yes|submit|ok")

STATUS_COMMAND = re.compile(r"^(?:request\s+status|status)(?:\s+(.*))?$", re.IGNORECASE)
STATUS_FILTERS = ("open", "all", "resolved", "cancelled", "canceled")

DEFAULT_TRIGGERS = [
    _whole(r"make (a )?maintenance request"),
    _whole(r"new maintenance request"),
]


def matches(text: Optional[str], pattern: re.Pattern) -> bool:
    if not text:
        return False
    return bool(pattern.match(text.strip()))


def match_global(text: Optional[str]) -> Optional[Intent]:
    for pattern, intent in GLOBAL_COMMANDS:
        if matches(text, pattern):
            return intent
    return None


def build_trigger(phrase: str) -> re.Pattern:
    return _whole(re.escape(phrase))


# ──────────────────────────────────────────────────────────────
#  Status command
# ──────────────────────────────────────────────────────────────

def parse_status_command(text: Optional[str]) -> Optional[StatusCommand]:
    if not text:
        return None
    match = STATUS_COMMAND.match(text.strip())
    if not match:
        return None
    arg = (match.group(1) or "").strip()
    if not arg:
        return StatusCommand(type="list", filter="open")
    lower = arg.lower()
    if lower in STATUS_FILTERS:
        return StatusCommand(type="list", filter="cancelled" if lower == "canceled" else lower)
    return StatusCommand(type="detail", query=arg)


def parse_status_credentials(text: Optional[str]) -> Optional[dict[str, str]]:
    """`portal_url, username, password` — exactly three non-empty parts."""
    if not text:
        return None
    parts = [p.strip() for p in text.split(",") if p.strip()]
    if len(parts) != 3:
        return None
    portal_url, username, password = parts
    return {"portalUrl": portal_url, "username": username, "password": password}


# ──────────────────────────────────────────────────────────────
#  Bulk-intake shorthand
# ──────────────────────────────────────────────────────────────

def parse_bulk_shorthand(text: Optional[str]) -> Optional[dict[str, str]]:
    """`portal_url, username, password, issue` — the issue may itself contain commas."""
    if not text:
        return None
    parts = [p.strip() for p in text.split(",") if p.strip()]
    if len(parts) < 4:
        return None
    portal_url, username, password, *issue_parts = parts
    return {
        "portalUrl": portal_url,
        "username": username,
        "password": password,
        "issueDescription": ", ".join(issue_parts).strip(),
    }
