"""
Goal builders — natural-language instructions handed to the automation agent.

Every goal embeds the structured-response contract so the agent's final
message can be classified by core.outcome.
"""
from __future__ import annotations

import json
from typing import Any, Optional

from models.schemas import StatusCommand

REQUIRED_FIELDS: list[tuple[str, str]] = [
    ("portalUrl", "portal URL"),
    ("username", "username"),
    ("password", "password"),
    ("issueDescription", "issue description"),
]
REQUIRED_FIELD_KEYS = [key for key, _ in REQUIRED_FIELDS]
REQUIRED_FIELD_LABELS = {key: label for key, label in REQUIRED_FIELDS}

# Keys of the session field bag that are bookkeeping, not request fields.
_INTERNAL_KEYS = {
    "portalUrl", "username", "password", "issueDescription", "attachments",
    "extras", "responses", "history", "remediation", "missing",
    "statusLookupPending", "statusCommand", "statusOnly",
}

RESPONSE_CONTRACT = (
    "If submission fails, respond with a structured block exactly like:\n"
    "STATUS: FAILED\n"
    "REASON: <short reason>\n"
    "ACTION: <USER_ACTION_REQUIRED | RETRY_LATER | BLOCKED | UNKNOWN | NEEDS_INFO>\n"
    "SUGGESTED_PROMPT: <message for the user>\n"
    "FIELDS: [<optional list of fields or corrections>]\n"
    "PROPOSAL: {<field>: <proposed value>}\n"
    "OPTIONS: {<field>: [<allowed option 1>, <allowed option 2>]}\n"
    "If submission succeeds, respond with: STATUS: SUCCESS"
)


def build_maintenance_goal(data: dict[str, Any]) -> str:
    parts = ["Submit a maintenance request."]
    if data.get("issueDescription"):
        parts.append(f"Issue: {data['issueDescription']}")
    for key, value in data.items():
        if key in _INTERNAL_KEYS or value in (None, "") or isinstance(value, (list, dict)):
            continue
        parts.append(f"{key}: {value}")
    if data.get("username"):
        parts.append(f"Portal username: {data['username']}")
    if data.get("password"):
        parts.append(f"Portal password: {data['password']}")

    saved = [a for a in data.get("attachments") or [] if a.get("path")]
    if saved:
        names = ", ".join(a.get("filename") or "attachment" for a in saved)
        parts.append(f"Attachments available to upload: {names}.")
    extras = [e.get("content") for e in data.get("extras") or [] if e.get("content")]
    if extras:
        parts.append("Additional details from the user: " + " | ".join(extras))

    parts.append(
        "After submitting, verify success by locating a confirmation ID or the new request in the requests list."
    )
    parts.append("Report the confirmation ID/status or the exact list entry details as proof of submission.")
    parts.append(RESPONSE_CONTRACT)
    return " ".join(parts)


def build_status_goal(data: dict[str, Any], command: StatusCommand) -> str:
    parts = [
        "Log in to the portal and retrieve maintenance request statuses.",
        f"Portal URL: {data.get('portalUrl')}",
        f"Username: {data.get('username')}",
        f"Password: {data.get('password')}",
    ]
    if command.type == "detail":
        parts.append(f"Search for the request matching: {command.query}.")
        parts.append("Match by case/request number, description, title, or other identifying details.")
        parts.append(
            "If you cannot find an exact match, respond with a clear not-found message "
            "and include the top 5 most recent requests."
        )
    else:
        parts.append(f"List the {command.filter or 'open'} requests (top 5 most recent if not specified).")
    parts.append("Reply with a clear, user-facing summary.")
    return " ".join(parts)


# ──────────────────────────────────────────────────────────────
#  Bulk intake
# ──────────────────────────────────────────────────────────────

def build_bulk_intake_system_prompt() -> str:
    labels = ", ".join(label for _, label in REQUIRED_FIELDS)
    return "\n".join([
        "You are extracting required fields from a user message for a maintenance request.",
        f"Required fields: {labels}.",
        "You will also receive FIELDS_SO_FAR (previously captured values).",
        "Only ask for fields that are missing or empty in the combined result.",
        "Return a structured block with:",
        "STATUS: SUCCESS or FAILED",
        "ACTION: NEEDS_INFO or USER_ACTION_REQUIRED when required fields are missing",
        'FIELDS: {"portalUrl":"...","username":"...","password":"...","issueDescription":"..."} '
        "(include any confident values; leave missing fields empty)",
        "REASON: short reason if fields are missing",
        "SUGGESTED_PROMPT: a concise question that asks only for the missing fields "
        "(do not ask for fields already present)",
        "Always return FIELDS as a JSON object, even when incomplete.",
    ])


def build_bulk_intake_goal(message: str, attachments: list[dict[str, Any]],
                           fields_so_far: Optional[dict[str, Any]] = None) -> str:
    lines = [f"- {a.get('filename') or a.get('url') or 'attachment'}" for a in attachments or []]
    attachment_block = "ATTACHMENTS:\n" + "\n".join(lines) if lines else "ATTACHMENTS: none"
    return "\n".join([
        build_bulk_intake_system_prompt(),
        f"FIELDS_SO_FAR: {json.dumps(fields_so_far or {})}",
        "USER_MESSAGE:",
        message or "",
        attachment_block,
    ])


def normalize_extracted_fields(fields: Any) -> dict[str, Any]:
    """Keep only required keys with non-empty values; strings are trimmed."""
    if not isinstance(fields, dict):
        return {}
    normalized = {}
    for key in REQUIRED_FIELD_KEYS:
        value = fields.get(key)
        if isinstance(value, str):
            if value.strip():
                normalized[key] = value.strip()
        elif value:
            normalized[key] = value
    return normalized


def missing_required_fields(data: dict[str, Any]) -> list[str]:
    return [key for key in REQUIRED_FIELD_KEYS if data.get(key) in (None, "")]


def format_bulk_summary(data: dict[str, Any]) -> str:
    lines = []
    if data.get("portalUrl"):
        lines.append(f"Portal URL: {data['portalUrl']}")
    if data.get("username"):
        lines.append(f"Username: {data['username']}")
    if data.get("password"):
        lines.append("Password: (captured)")
    if data.get("issueDescription"):
        lines.append(f"Issue: {data['issueDescription']}")
    return "\n".join(lines) if lines else "No details were captured yet."
