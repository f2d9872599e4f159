"""
Automation backend — the browser-automation agent behind the intake bot.

The agent receives a portal URL and a natural-language goal, drives a
browser, and streams progress as server-sent events until a COMPLETE event
carries its final message. This module provides:

- AutomationHandler: the interface the session flow depends on
- TinyFishRunner: SSE client for the hosted agent
- AgentAutomationHandler: turns session data into goals for the runner
- submit_maintenance_request: one-shot submission from a stored credential
"""
from __future__ import annotations

import abc
import json
from typing import Any, Callable, Optional

import httpx
import structlog

from config.settings import AutomationConfig, get_settings
from core.goals import build_maintenance_goal
from database.credentials import CredentialStore
from models.schemas import AutomationRequest, AutomationResult

logger = structlog.get_logger()


class AutomationError(Exception):
    """The agent could not be reached or rejected the run."""


def validate_automation_request(request: Any) -> AutomationRequest:
    if not isinstance(request, AutomationRequest):
        raise AutomationError("Automation request must be an AutomationRequest.")
    if not request.portal_url:
        raise AutomationError("Automation request requires portalUrl.")
    if not request.goal:
        raise AutomationError("Automation request requires goal.")
    return request


# ──────────────────────────────────────────────────────────────
#  Handler interface
# ──────────────────────────────────────────────────────────────

class AutomationHandler(abc.ABC):
    """What the session flow and command router call."""

    @abc.abstractmethod
    async def run(self, session_data: dict[str, Any]) -> AutomationResult:
        """Perform the portal interaction described by the session's field bag."""
        ...

    @property
    def supports_bulk_intake(self) -> bool:
        return False

    async def bulk_intake(self, message: str, attachments: list[dict[str, Any]], prompt: str) -> AutomationResult:
        """Extract request fields from a free-text message (bulk mode only)."""
        raise NotImplementedError("bulk intake is not supported by this handler")


# ──────────────────────────────────────────────────────────────
#  TinyFish SSE runner
# ──────────────────────────────────────────────────────────────

_IMAGE_KEYS = (
    "confirmation", "confirmationImage", "confirmation_image",
    "screenshot", "screenshotUrl", "screenshot_url",
    "imageUrl", "image_url", "artifactUrl", "artifact_url", "url",
)
_IMAGE_EVENT_HINTS = ("SCREENSHOT", "CONFIRM", "ARTIFACT")


def _pick_image_candidate(obj: dict[str, Any]) -> Optional[str]:
    for key in _IMAGE_KEYS:
        value = obj.get(key)
        if not isinstance(value, str):
            continue
        if not value.startswith(("http://", "https://", "data:image/")):
            continue
        event_type = obj.get("type")
        if isinstance(event_type, str) and not any(h in event_type.upper() for h in _IMAGE_EVENT_HINTS):
            continue
        return value
    return None


def extract_confirmation(event: Any) -> Optional[str]:
    """Find a confirmation screenshot URL/data URI on an event or its data/payload."""
    if not isinstance(event, dict):
        return None
    for candidate in (event, event.get("data"), event.get("payload")):
        if isinstance(candidate, dict):
            found = _pick_image_candidate(candidate)
            if found:
                return found
    return None


def parse_sse_lines(lines: list[str]) -> list[dict[str, Any]]:
    """Decode the `data: {json}` lines of one SSE block; bad JSON becomes a PARSE_ERROR event."""
    events = []
    for line in lines:
        if not line.startswith("data: "):
            continue
        payload = line[6:].strip()
        if not payload:
            continue
        try:
            events.append(json.loads(payload))
        except ValueError:
            events.append({"type": "PARSE_ERROR", "raw": payload})
    return events


class TinyFishRunner:
    """Runs one automation job and waits for its COMPLETE event."""

    def __init__(self, api_key: str, base_url: str = "https://agent.tinyfish.ai",
                 timeout: float = 600.0, client: Optional[httpx.AsyncClient] = None):
        if not api_key:
            raise AutomationError("TinyFish apiKey is required.")
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(30.0, read=self._timeout))
        return self._client

    async def run(self, request: AutomationRequest,
                  on_event: Optional[Callable[[dict[str, Any]], None]] = None) -> AutomationResult:
        validate_automation_request(request)
        events: list[dict[str, Any]] = []
        confirmation: Optional[str] = None
        block: list[str] = []

        def consume(lines: list[str]) -> Optional[AutomationResult]:
            nonlocal confirmation
            for event in parse_sse_lines(lines):
                events.append(event)
                if on_event:
                    on_event(event)
                candidate = extract_confirmation(event)
                if candidate:
                    confirmation = candidate
                if isinstance(event, dict) and event.get("type") == "COMPLETE":
                    logger.info("automation_complete", status=event.get("status"), events=len(events))
                    return AutomationResult(
                        success=event.get("status") == "COMPLETED",
                        confirmation=confirmation,
                        raw=event,
                        events=events,
                    )
            return None

        try:
            async with self._get_client().stream(
                "POST",
                f"{self._base_url}/v1/automation/run-sse",
                headers={"X-API-Key": self._api_key},
                json={"url": request.portal_url, "goal": request.goal},
            ) as response:
                if response.status_code >= 400:
                    raise AutomationError(f"TinyFish HTTP {response.status_code}")
                async for line in response.aiter_lines():
                    if line:
                        block.append(line)
                        continue
                    result = consume(block)
                    block = []
                    if result:
                        return result
        except httpx.HTTPError as e:
            raise AutomationError(f"TinyFish request failed: {e}") from e

        result = consume(block)
        if result:
            return result
        logger.warning("automation_stream_ended", events=len(events))
        return AutomationResult(success=False, confirmation=confirmation,
                                raw={"type": "END_OF_STREAM"}, events=events)

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()


# ──────────────────────────────────────────────────────────────
#  Session-level handler
# ──────────────────────────────────────────────────────────────

class AgentAutomationHandler(AutomationHandler):
    """
    Bridges the session field bag to the runner.

    A field bag carrying its own `goal` (status lookups) is sent as-is;
    otherwise the maintenance-submission goal is built from the bag.
    """

    def __init__(self, runner: TinyFishRunner, intake_portal_url: str = "https://example.invalid"):
        self.runner = runner
        self.intake_portal_url = intake_portal_url

    async def run(self, session_data: dict[str, Any]) -> AutomationResult:
        goal = session_data.get("goal") or build_maintenance_goal(session_data)
        request = AutomationRequest(portal_url=session_data.get("portalUrl") or "", goal=goal)
        return await self.runner.run(request)

    @property
    def supports_bulk_intake(self) -> bool:
        return True

    async def bulk_intake(self, message: str, attachments: list[dict[str, Any]], prompt: str) -> AutomationResult:
        if not prompt:
            raise AutomationError("bulk intake requires a prompt.")
        return await self.runner.run(AutomationRequest(portal_url=self.intake_portal_url, goal=prompt))


def create_automation_handler(config: AutomationConfig = None) -> AgentAutomationHandler:
    config = config or get_settings().automation
    runner = TinyFishRunner(api_key=config.api_key, base_url=config.base_url, timeout=config.timeout)
    return AgentAutomationHandler(runner, intake_portal_url=config.intake_portal_url)


async def submit_maintenance_request(
    runner: TinyFishRunner,
    credentials: CredentialStore,
    portal_url: str,
    credential_id: str,
    issue: dict[str, Any],
) -> AutomationResult:
    """
    Submit a request for a stored credential without a chat dialogue.

    `issue` may carry description, location, urgency and category.
    """
    if not portal_url:
        raise AutomationError("submit_maintenance_request requires portalUrl.")
    if not credential_id:
        raise AutomationError("submit_maintenance_request requires credentialId.")
    credential = credentials.get_credential_by_id(credential_id)
    if credential is None:
        raise AutomationError(f"Credential not found: {credential_id}")

    data = {
        "issueDescription": issue.get("description"),
        "location": issue.get("location"),
        "urgency": issue.get("urgency"),
        "category": issue.get("category"),
        "username": credential.username,
        "password": credential.password,
    }
    goal = build_maintenance_goal({k: v for k, v in data.items() if v})
    logger.info("maintenance_submission_started", credential_id=credential_id, portal_url=portal_url)
    return await runner.run(AutomationRequest(portal_url=portal_url, goal=goal))
