"""
Core data models for the maintenance intake bot.
These are the universal types shared across all modules.
"""
from __future__ import annotations

import random
import string
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _session_token() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=6))
    return f"{int(time.time() * 1000)}-{suffix}"


# ──────────────────────────────────────────────────────────────
#  Enums
# ──────────────────────────────────────────────────────────────

class Stage(str, Enum):
    PORTAL = "portal"
    USERNAME = "username"
    PASSWORD = "password"
    ISSUE = "issue"
    ATTACHMENTS = "attachments"
    CONFIRM = "confirm"
    REMEDIATION = "remediation"
    INTAKE = "intake"                 # bulk-mode collection stage


STAGE_VALUES = frozenset(s.value for s in Stage)


class FlowMode(str, Enum):
    GUIDED = "guided"
    BULK = "bulk"


class RemediationState(str, Enum):
    COLLECTING = "collecting"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    AWAITING_OPTION = "awaiting_option"


class OutcomeStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class OutcomeAction(str, Enum):
    USER_ACTION_REQUIRED = "USER_ACTION_REQUIRED"
    NEEDS_INFO = "NEEDS_INFO"
    RETRY_LATER = "RETRY_LATER"
    BLOCKED = "BLOCKED"
    UNKNOWN = "UNKNOWN"


REMEDIATION_ACTIONS = frozenset({
    OutcomeAction.USER_ACTION_REQUIRED.value,
    OutcomeAction.NEEDS_INFO.value,
})


class RequestStatus(str, Enum):
    OPEN = "OPEN"
    RESOLVED = "RESOLVED"
    CANCELLED = "CANCELLED"


# ──────────────────────────────────────────────────────────────
#  Session: per-user dialogue state
# ──────────────────────────────────────────────────────────────

class AttachmentRef(BaseModel):
    """An attachment as announced by the chat transport (not yet downloaded)."""
    url: str = ""
    filename: Optional[str] = None
    content_type: Optional[str] = None
    size: Optional[int] = None


def new_session_data() -> dict[str, Any]:
    return {
        "attachments": [],
        "extras": [],
        "responses": [],
        "history": [],
    }


def ensure_session_data(data: Any) -> dict[str, Any]:
    """Repair a field bag whose list slots were dropped or overwritten."""
    if not isinstance(data, dict):
        return new_session_data()
    for key in ("attachments", "extras", "responses", "history"):
        if not isinstance(data.get(key), list):
            data[key] = []
    return data


class Session(BaseModel):
    """
    One in-progress maintenance request dialogue, keyed by user id.

    `data` is a free-form field bag: collected answers (portalUrl, username,
    password, issueDescription), attachments, remediation notes, the audit
    trail, plus any extra field the automation agent asks for. It is handed
    to the automation handler as-is.
    """
    id: str = Field(default_factory=_session_token)
    user_id: str
    stage: str = Stage.PORTAL.value               # always a Stage value once normalized
    channel_id: Optional[str] = None
    pending_restart: bool = False
    temp_dir: Optional[str] = None
    remediation_rounds: int = 0
    data: dict[str, Any] = Field(default_factory=new_session_data)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def remediation(self) -> Optional[dict[str, Any]]:
        return self.data.get("remediation")


class InboundMessage(BaseModel):
    """A chat message normalized for the session flow."""
    channel_id: str
    text: str = ""
    attachments: list[AttachmentRef] = []


class InboundEvent(BaseModel):
    """A raw chat event as delivered by the transport, before dispatch rules."""
    user_id: str
    channel_id: str
    content: str = ""
    attachments: list[AttachmentRef] = []
    is_dm: bool = False
    bot_mentioned: bool = False
    author_is_bot: bool = False


# ──────────────────────────────────────────────────────────────
#  Automation: request, result, parsed outcome
# ──────────────────────────────────────────────────────────────

class AutomationRequest(BaseModel):
    portal_url: str
    goal: str                                     # natural-language instruction for the agent


class AutomationResult(BaseModel):
    success: bool = False
    confirmation: Optional[str] = None            # URL or data-URI image
    raw: Any = None                               # agent's final event / message
    events: list[dict[str, Any]] = []


class Outcome(BaseModel):
    """Normalized classification of one automation attempt."""
    status: str
    action: Optional[str] = None
    reason: Optional[str] = None
    prompt: Optional[str] = None
    fields: Any = None                            # decoded JSON when valid, else the raw text
    proposal: Any = None
    options: Any = None
    extra: dict[str, str] = {}                    # unrecognized KEY: value lines

    @property
    def succeeded(self) -> bool:
        return self.status == OutcomeStatus.SUCCESS.value

    @property
    def needs_user(self) -> bool:
        return self.action in REMEDIATION_ACTIONS

    @property
    def user_message(self) -> Optional[str]:
        return self.prompt or self.reason


# ──────────────────────────────────────────────────────────────
#  Request history
# ──────────────────────────────────────────────────────────────

class StoredRequest(BaseModel):
    id: str
    user_id: str
    portal_url: Optional[str] = None
    issue_description: Optional[str] = None
    confirmation: Optional[str] = None
    confirmation_id: Optional[str] = None
    channel_id: Optional[str] = None
    status: RequestStatus = RequestStatus.OPEN
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class StatusCommand(BaseModel):
    type: str                                     # list | detail
    filter: str = "open"
    query: str = ""


# ──────────────────────────────────────────────────────────────
#  Credentials
# ──────────────────────────────────────────────────────────────

class Credential(BaseModel):
    id: str
    portal_url: str = ""
    username: str = ""
    password: str = ""
