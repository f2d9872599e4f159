"""
Outcome Parser — Interprets the automation agent's final response.

The agent is instructed to close every run with a line-oriented block:

    STATUS: FAILED
    REASON: <short reason>
    ACTION: <USER_ACTION_REQUIRED | RETRY_LATER | BLOCKED | UNKNOWN | NEEDS_INFO>
    SUGGESTED_PROMPT: <message for the user>
    FIELDS: [<field names>] or {"field": "value", ...}
    PROPOSAL: {<field>: <proposed value>}
    OPTIONS: {<field>: [<option1>, <option2>, ...]}

or `STATUS: SUCCESS`. The block can appear in several places of the raw
result; each location is read by a small extraction strategy. Every function
here is total: malformed input degrades to an opaque value, never an error.
"""
from __future__ import annotations

import json
import re
from typing import Any, Callable, Optional

from models.schemas import AutomationResult, Outcome, OutcomeAction, OutcomeStatus

_BLOCK_LINE = re.compile(r"^([A-Z_]+):\s*(.+)$")
_LINE_SPLIT = re.compile(r"\r?\n")

_TEXT_KEYS = {
    "STATUS": "status",
    "ACTION": "action",
    "REASON": "reason",
    "SUGGESTED_PROMPT": "prompt",
}
_JSON_KEYS = {
    "FIELDS": "fields",
    "PROPOSAL": "proposal",
    "OPTIONS": "options",
}


# ──────────────────────────────────────────────────────────────
#  Text-source extraction strategies
# ──────────────────────────────────────────────────────────────

def _result_json(raw: dict[str, Any]) -> Any:
    return raw.get("resultJson")


def _from_message(raw: dict[str, Any]) -> list[str]:
    value = raw.get("message")
    return [value] if isinstance(value, str) else []


def _from_result_json_text(raw: dict[str, Any]) -> list[str]:
    value = _result_json(raw)
    return [value] if isinstance(value, str) else []


def _from_result_json_object(raw: dict[str, Any]) -> list[str]:
    value = _result_json(raw)
    if not isinstance(value, dict):
        return []
    return [value[k] for k in ("message", "status", "result") if isinstance(value.get(k), str)]


TEXT_STRATEGIES: list[Callable[[dict[str, Any]], list[str]]] = [
    _from_message,
    _from_result_json_text,
    _from_result_json_object,
]


def collect_text_sources(raw: Any) -> list[str]:
    """Run every extraction strategy in order; non-dict payloads yield nothing."""
    if not isinstance(raw, dict):
        return []
    sources: list[str] = []
    for strategy in TEXT_STRATEGIES:
        sources.extend(strategy(raw))
    return sources


# ──────────────────────────────────────────────────────────────
#  Structured block
# ──────────────────────────────────────────────────────────────

def _loads_or_raw(value: str) -> Any:
    try:
        return json.loads(value)
    except (ValueError, RecursionError):
        return value


def parse_structured_block(text: Optional[str]) -> dict[str, Any]:
    """
    Parse `KEY: value` lines into a dict.

    Every matched key is kept verbatim under its upper-case name; recognized
    keys are also mapped to their Outcome attribute names. Later lines win.
    """
    if not text:
        return {}
    data: dict[str, Any] = {}
    for line in _LINE_SPLIT.split(text):
        match = _BLOCK_LINE.match(line)
        if not match:
            continue
        data[match.group(1)] = match.group(2).strip()

    for key, attr in _TEXT_KEYS.items():
        if data.get(key):
            data[attr] = data[key]
    for key, attr in _JSON_KEYS.items():
        if data.get(key):
            data[attr] = _loads_or_raw(data[key])
    return data


def _block_to_outcome(block: dict[str, Any]) -> Outcome:
    known = set(_TEXT_KEYS) | set(_JSON_KEYS)
    return Outcome(
        status=block["status"],
        action=block.get("action"),
        reason=block.get("reason"),
        prompt=block.get("prompt"),
        fields=block.get("fields"),
        proposal=block.get("proposal"),
        options=block.get("options"),
        extra={k: v for k, v in block.items() if k.isupper() and k not in known},
    )


def parse_outcome(result: Optional[AutomationResult]) -> Outcome:
    """Classify an automation result. The agent's structured block outranks `success`."""
    if result is None:
        return Outcome(
            status=OutcomeStatus.FAILED.value,
            action=OutcomeAction.UNKNOWN.value,
            reason="Unknown failure.",
        )

    block = parse_structured_block("\n".join(collect_text_sources(result.raw)))
    if block.get("status"):
        return _block_to_outcome(block)

    if result.success:
        return Outcome(status=OutcomeStatus.SUCCESS.value)
    return Outcome(
        status=OutcomeStatus.FAILED.value,
        action=OutcomeAction.UNKNOWN.value,
        reason="Submission failed.",
    )


# ──────────────────────────────────────────────────────────────
#  Remediation helpers
# ──────────────────────────────────────────────────────────────

def first_field(fields: Any) -> Optional[str]:
    """First named field of a FIELDS value (list, object, or bare string)."""
    if isinstance(fields, list):
        for item in fields:
            if isinstance(item, str) and item.strip():
                return item.strip()
        return None
    if isinstance(fields, dict):
        return next(iter(fields), None)
    if isinstance(fields, str) and fields.strip():
        return fields.strip()
    return None


def keyed_value(container: Any, field: Optional[str]) -> Any:
    """Look up `field` in a PROPOSAL/OPTIONS object; single-entry objects match any field."""
    if not isinstance(container, dict) or not container:
        return None
    if field and field in container:
        return container[field]
    if len(container) == 1:
        return next(iter(container.values()))
    return None


# ──────────────────────────────────────────────────────────────
#  Confirmation details
# ──────────────────────────────────────────────────────────────

_ID_BLOCK_KEYS = ("CONFIRMATION_ID", "CASE_ID", "REQUEST_ID")
_ID_HINTS = ("confirmation", "case", "request")


def _find_id_in_object(obj: Any, seen: Optional[set[int]] = None) -> Optional[str]:
    if not isinstance(obj, dict):
        return None
    seen = seen if seen is not None else set()
    if id(obj) in seen:
        return None
    seen.add(id(obj))
    for key, value in obj.items():
        if isinstance(value, str):
            if any(h in str(key).lower() for h in _ID_HINTS):
                return value
        elif isinstance(value, dict):
            nested = _find_id_in_object(value, seen)
            if nested:
                return nested
    return None


def extract_confirmation_details(result: Optional[AutomationResult]) -> Optional[dict[str, Any]]:
    """
    Recover a confirmation/case id from a successful run.

    Looks at the structured block first, then well-known resultJson keys,
    then any string under a key mentioning confirmation/case/request.
    """
    raw = result.raw if result else None
    if not isinstance(raw, dict):
        return None
    result_json = raw.get("resultJson")
    if not isinstance(result_json, dict):
        return None

    texts = [raw.get("message"), result_json.get("message"), result_json.get("result")]
    block = parse_structured_block("\n".join(t for t in texts if isinstance(t, str)))
    details = result_json.get("request_details")
    from_block = next((block[k] for k in _ID_BLOCK_KEYS if block.get(k)), None)
    if from_block:
        return {"confirmation_id": from_block, "details": details}

    confirmation_id = result_json.get("confirmation_id") or result_json.get("confirmationId")
    if not confirmation_id and isinstance(details, dict):
        confirmation_id = details.get("case_id") or details.get("caseId")
    if not confirmation_id:
        confirmation_id = _find_id_in_object(result_json)
    if not confirmation_id and not details:
        return None
    return {"confirmation_id": confirmation_id, "details": details}
