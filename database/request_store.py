"""
RequestStore — In-memory history of submitted maintenance requests.

Requests are kept per user, most recent first. Nothing in the dialogue moves
a request to RESOLVED or CANCELLED; update_status() exists for manual or
future use.
"""
from __future__ import annotations

import random
import string
from collections import defaultdict
from datetime import datetime, timezone
from typing import Optional

import structlog

from models.schemas import RequestStatus, StoredRequest

logger = structlog.get_logger()

OPEN_LIST_LIMIT = 5
OTHER_LIST_LIMIT = 10


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_request_id() -> str:
    stamp = _utcnow().strftime("%Y%m%dT%H")
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=4))
    return f"REQ-{stamp}-{suffix}"


def normalize_status(value: Optional[str]) -> RequestStatus:
    upper = str(value or "").upper()
    if upper == RequestStatus.RESOLVED.value:
        return RequestStatus.RESOLVED
    if upper in (RequestStatus.CANCELLED.value, "CANCELED"):
        return RequestStatus.CANCELLED
    return RequestStatus.OPEN


class RequestStore:
    def __init__(self):
        self._requests: dict[str, list[StoredRequest]] = defaultdict(list)

    def record_success(
        self,
        user_id: str,
        portal_url: str = None,
        issue_description: str = None,
        confirmation: str = None,
        channel_id: str = None,
        confirmation_id: str = None,
    ) -> Optional[StoredRequest]:
        if not user_id:
            return None
        existing = {r.id for r in self._requests[user_id]}
        request_id = _new_request_id()
        while request_id in existing:
            request_id = _new_request_id()
        request = StoredRequest(
            id=request_id,
            user_id=user_id,
            portal_url=portal_url or None,
            issue_description=issue_description or None,
            confirmation=confirmation or None,
            confirmation_id=confirmation_id or None,
            channel_id=channel_id or None,
        )
        self._requests[user_id].insert(0, request)
        logger.info("request_recorded", request_id=request.id, user_id=user_id)
        return request

    def list(self, user_id: str, filter: str = "open") -> list[StoredRequest]:
        if not user_id:
            return []
        requests = self._requests.get(user_id, [])
        normalized = (filter or "open").upper()
        if normalized == "ALL":
            return list(requests)
        target = normalize_status(normalized)
        return [r for r in requests if r.status == target]

    def find_by_id(self, user_id: str, query: str) -> Optional[StoredRequest]:
        """Exact id match (case-insensitive), else the single id ending with `query`."""
        if not user_id or not query:
            return None
        requests = self._requests.get(user_id, [])
        normalized = query.strip().upper()
        if not normalized:
            return None
        for request in requests:
            if request.id == normalized:
                return request
        suffix_matches = [r for r in requests if r.id.endswith(normalized)]
        if len(suffix_matches) == 1:
            return suffix_matches[0]
        return None

    def update_status(self, user_id: str, request_id: str, status: str) -> Optional[StoredRequest]:
        if not user_id or not request_id:
            return None
        normalized_id = request_id.strip().upper()
        request = next((r for r in self._requests.get(user_id, []) if r.id == normalized_id), None)
        if not request:
            return None
        request.status = normalize_status(status)
        request.updated_at = _utcnow()
        logger.info("request_status_updated", request_id=request.id, status=request.status.value)
        return request


# ──────────────────────────────────────────────────────────────
#  Formatting
# ──────────────────────────────────────────────────────────────

def _truncate(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return f"{text[: max_length - 3].strip()}..."


def format_status_line(request: StoredRequest) -> str:
    issue = _truncate(request.issue_description, 48) if request.issue_description else "No issue description"
    return f"- {request.id} — {issue} (submitted {request.created_at.date().isoformat()})"


def format_status_list(filter: str, requests: list[StoredRequest]) -> str:
    normalized = (filter or "open").lower()
    if not requests:
        return (
            f"No {normalized} requests on record. Reply `status all` to view everything "
            "or `status resolved` / `status cancelled` to filter."
        )
    limit = OPEN_LIST_LIMIT if normalized == "open" else OTHER_LIST_LIMIT
    visible = requests[:limit]
    header = f"{normalized.capitalize()} requests (showing {len(visible)} of {len(requests)}):"
    lines = "\n".join(format_status_line(r) for r in visible)
    hint = "Reply `status <request-id>` for details, or use `status all`, `status resolved`, or `status cancelled`."
    return f"{header}\n{lines}\n{hint}"


def format_status_detail(request: StoredRequest) -> str:
    return "\n".join([
        f"Request {request.id}",
        f"Status: {request.status.value}",
        f"Submitted: {request.created_at.date().isoformat()}",
        f"Last updated: {request.updated_at.date().isoformat()}",
        f"Portal: {request.portal_url or 'No portal URL recorded.'}",
        f"Issue: {request.issue_description or 'No issue description provided.'}",
        *([f"Confirmation: {request.confirmation_id}"] if request.confirmation_id else []),
    ])
