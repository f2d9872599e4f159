"""
Session Flow — The intake dialogue state machine.

Guided mode collects one field per turn:

    portal → username → password → issue → attachments → confirm → (run)

Bulk mode collects everything from one free-text message (or the
`portal_url, username, password, issue` shorthand), asks the automation
agent to extract the fields, then goes to confirm.

Either mode falls into `remediation` when the agent reports missing or
ambiguous data. Remediation is a small sub-machine:

    collecting ──(agent proposes a value)──▶ awaiting_confirmation
        │                                      │ no + options
        │                                      ▼
        └──────(agent lists options)──────▶ awaiting_option

Global commands (restart overlay, cancel, attach, more info) are checked
before stage dispatch. Every inbound message maps to one awaited call of
handle_input(); all outbound text goes through the Messenger.

Transport failures: prompts that keep the dialogue going propagate (the
turn aborts and the caller logs it); notifications on terminal paths are
best-effort so cleanup always runs.
"""
from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Optional

import structlog

from backend.automation import AutomationHandler
from channels.base import ChannelError, Messenger, OutboundFile
from core import messages
from core.attachments import AttachmentManager, format_attachment_summary, saved_attachments
from core.commands import (
    BULK_CONFIRM, DONE, LIST_OPTIONS, NO, RESTART_CONFIRM, RESTART_KEEP,
    SKIP_ATTACHMENTS, YES, Intent, match_global, matches, parse_bulk_shorthand,
)
from core.goals import (
    REQUIRED_FIELD_KEYS, REQUIRED_FIELD_LABELS, build_bulk_intake_goal,
    format_bulk_summary, missing_required_fields, normalize_extracted_fields,
)
from core.outcome import extract_confirmation_details, first_field, keyed_value, parse_outcome
from database.request_store import RequestStore
from database.session_store import SessionStore
from models.schemas import (
    AutomationResult, FlowMode, InboundMessage, Outcome, OutcomeAction,
    OutcomeStatus, RemediationState, Session, Stage, ensure_session_data,
    new_session_data,
)

logger = structlog.get_logger()

GUIDED_STAGES = frozenset({
    Stage.PORTAL.value, Stage.USERNAME.value, Stage.PASSWORD.value, Stage.ISSUE.value,
    Stage.ATTACHMENTS.value, Stage.CONFIRM.value, Stage.REMEDIATION.value,
})
BULK_STAGES = frozenset({
    Stage.INTAKE.value, Stage.ATTACHMENTS.value, Stage.CONFIRM.value, Stage.REMEDIATION.value,
})

# stage → (field captured, next stage, prompt for next stage)
_GUIDED_CAPTURE = {
    Stage.PORTAL.value: ("portalUrl", Stage.USERNAME, messages.USERNAME_PROMPT),
    Stage.USERNAME.value: ("username", Stage.PASSWORD, messages.PASSWORD_PROMPT),
    Stage.PASSWORD.value: ("password", Stage.ISSUE, messages.ISSUE_PROMPT),
    Stage.ISSUE.value: ("issueDescription", Stage.ATTACHMENTS, messages.ATTACHMENT_PROMPT),
}

_KIND_SUBMISSION = "submission"
_KIND_INTAKE = "intake"

_OPTION_SEPARATORS = re.compile(r"[_\-]+")
_WHITESPACE = re.compile(r"\s+")


def normalize_option(value: Any) -> str:
    text = _OPTION_SEPARATORS.sub(" ", str(value).lower())
    return _WHITESPACE.sub(" ", text).strip()


def match_option(text: str, options: list[Any]) -> Optional[Any]:
    """Return the original option whose normalized form equals the normalized input."""
    wanted = normalize_option(text)
    if not wanted:
        return None
    return next((o for o in options if normalize_option(o) == wanted), None)


class SessionFlow:
    """Drives one user's session through the intake dialogue."""

    def __init__(
        self,
        sessions: SessionStore,
        automation: AutomationHandler,
        messenger: Messenger,
        attachments: AttachmentManager = None,
        requests: RequestStore = None,
        mode: FlowMode = FlowMode.GUIDED,
        max_remediation_rounds: int = 5,
    ):
        if sessions is None:
            raise ValueError("sessions is required.")
        if automation is None:
            raise ValueError("automation is required.")
        if messenger is None:
            raise ValueError("messenger is required.")
        self.sessions = sessions
        self.automation = automation
        self.messenger = messenger
        self.attachments = attachments or AttachmentManager()
        self.requests = requests
        self.mode = FlowMode(mode)
        self.max_remediation_rounds = max_remediation_rounds

    # ── Mode ──────────────────────────────────────────────────

    @property
    def is_bulk(self) -> bool:
        return self.mode == FlowMode.BULK

    @property
    def initial_stage(self) -> Stage:
        return Stage.INTAKE if self.is_bulk else Stage.PORTAL

    @property
    def start_prompt(self) -> str:
        return messages.BULK_PROMPT if self.is_bulk else messages.PORTAL_PROMPT

    def normalize_session(self, session: Session) -> Session:
        valid = BULK_STAGES if self.is_bulk else GUIDED_STAGES
        if session.stage not in valid:
            logger.warning("session_stage_reset", session_id=session.id, stage=session.stage)
            session.stage = self.initial_stage.value
        session.data = ensure_session_data(session.data)
        return session

    # ── Outbound ──────────────────────────────────────────────

    async def _say(self, channel_id: str, text: str) -> None:
        await self.messenger.send_message(channel_id, text)

    async def _notify(self, channel_id: str, text: str) -> None:
        try:
            await self.messenger.send_message(channel_id, text)
        except ChannelError as e:
            logger.warning("notification_failed", channel_id=channel_id, error=str(e))

    async def _notify_image(self, channel_id: str, image: str, caption: str) -> None:
        try:
            await self.messenger.send_image(channel_id, image, caption)
        except ChannelError as e:
            logger.warning("confirmation_image_failed", channel_id=channel_id, error=str(e))

    # ── Entry points ──────────────────────────────────────────

    def reset(self, session: Session) -> None:
        """Drop collected data and files, back to the initial stage."""
        self.attachments.cleanup(session)
        session.stage = self.initial_stage.value
        session.data = new_session_data()
        session.pending_restart = False
        session.remediation_rounds = 0

    async def start(self, session: Session, channel_id: str, greeting: str = None) -> None:
        self.reset(session)
        session.channel_id = channel_id
        await self._say(channel_id, greeting or self.start_prompt)

    async def handle_input(self, session: Session, message: InboundMessage) -> None:
        self.normalize_session(session)
        channel_id = message.channel_id

        if session.pending_restart:
            await self._handle_restart_choice(session, message)
            return

        intent = match_global(message.text)
        if intent == Intent.CANCEL:
            await self.cancel(session, channel_id)
            return
        if intent == Intent.ATTACH:
            session.stage = Stage.ATTACHMENTS.value
            await self._say(channel_id, messages.ATTACHMENT_SEND_PROMPT)
            return
        if intent == Intent.MORE_INFO:
            session.stage = Stage.REMEDIATION.value
            self._remediation(session)
            await self._say(channel_id, messages.MORE_INFO_PROMPT)
            return

        stage = session.stage
        if stage in _GUIDED_CAPTURE:
            await self._handle_capture(session, message)
        elif stage == Stage.INTAKE.value:
            await self._handle_intake(session, message)
        elif stage == Stage.ATTACHMENTS.value:
            await self._handle_attachments(session, message)
        elif stage == Stage.CONFIRM.value:
            await self._handle_confirm(session, message)
        elif stage == Stage.REMEDIATION.value:
            await self._handle_remediation(session, message)

    async def cancel(self, session: Session, channel_id: str) -> None:
        logger.info("session_cancelled", session_id=session.id, stage=session.stage)
        self._finish(session)
        await self._notify(channel_id, messages.CANCELLED)

    def _finish(self, session: Session) -> None:
        self.attachments.cleanup(session)
        self.sessions.remove(session.user_id)

    # ── Restart overlay ───────────────────────────────────────

    async def _handle_restart_choice(self, session: Session, message: InboundMessage) -> None:
        if matches(message.text, RESTART_CONFIRM):
            self.reset(session)
            logger.info("session_restarted", session_id=session.id)
            text = f"{messages.START_OVER_BULK}\n{messages.BULK_PROMPT}" if self.is_bulk else messages.START_OVER
            await self._say(message.channel_id, text)
        elif matches(message.text, RESTART_KEEP):
            session.pending_restart = False
            await self._say(message.channel_id, messages.prompt_for_stage(session.stage))
        else:
            await self._say(message.channel_id, messages.RESTART_HELP)

    # ── Guided collection ─────────────────────────────────────

    async def _handle_capture(self, session: Session, message: InboundMessage) -> None:
        text = (message.text or "").strip()
        if not text:
            await self._say(message.channel_id, messages.prompt_for_stage(session.stage))
            return
        field, next_stage, prompt = _GUIDED_CAPTURE[session.stage]
        session.data[field] = text
        session.stage = next_stage.value
        await self._say(message.channel_id, prompt)

    # ── Attachments ───────────────────────────────────────────

    async def _handle_attachments(self, session: Session, message: InboundMessage) -> None:
        refs = [a for a in message.attachments if a.url]
        if refs:
            await self.attachments.persist(session, refs)
            summary = ", ".join(r.filename or "attachment" for r in refs)
            await self._say(message.channel_id, messages.attachment_saved(len(refs), summary))
            return
        if matches(message.text, SKIP_ATTACHMENTS):
            await self._echo_attachments(session, message.channel_id)
            await self._after_attachments(session, message.channel_id)
            return
        await self._say(message.channel_id, messages.ATTACHMENT_AWAIT)

    async def _echo_attachments(self, session: Session, channel_id: str) -> None:
        """Send saved files back so the user can see what will be uploaded."""
        if not session.data.get("attachments"):
            return
        files = []
        for item in saved_attachments(session):
            try:
                buffer = Path(item["path"]).read_bytes()
            except OSError as e:
                logger.warning("attachment_echo_read_failed", path=item["path"], error=str(e))
                continue
            files.append(OutboundFile(
                buffer=buffer,
                filename=item.get("filename") or Path(item["path"]).name,
                content_type=item.get("contentType"),
            ))
        if not files:
            await self._say(channel_id, messages.ATTACHMENT_ECHO_MISSING)
            return
        await self.messenger.send_files(channel_id, files, messages.ATTACHMENT_ECHO_CAPTION)

    async def _after_attachments(self, session: Session, channel_id: str) -> None:
        if self.is_bulk:
            await self._check_intake_complete(session, channel_id, None)
            return
        session.stage = Stage.CONFIRM.value
        summary = format_attachment_summary(session)
        if summary:
            await self._say(channel_id, f"{summary}\n{messages.CONFIRM_PROMPT}")
        else:
            await self._say(channel_id, messages.ATTACHMENT_NONE_SAVED)

    # ── Confirm ───────────────────────────────────────────────

    async def _handle_confirm(self, session: Session, message: InboundMessage) -> None:
        accept = BULK_CONFIRM if self.is_bulk else YES
        if matches(message.text, accept):
            await self.run_automation(session, message.channel_id)
            return
        hint = messages.BULK_CONFIRM_READY_PROMPT if self.is_bulk else messages.CONFIRM_READY_PROMPT
        await self._say(message.channel_id, hint)

    # ── Bulk intake ───────────────────────────────────────────

    async def _handle_intake(self, session: Session, message: InboundMessage) -> None:
        refs = [a for a in message.attachments if a.url]
        if refs:
            await self.attachments.persist(session, refs)
        text = (message.text or "").strip()
        if not text:
            await self._say(message.channel_id, messages.BULK_ATTACHMENT_ONLY if refs else messages.BULK_PROMPT)
            return
        await self._run_intake(session, message.channel_id, text)

    async def _run_intake(self, session: Session, channel_id: str, text: str) -> None:
        shorthand = parse_bulk_shorthand(text)
        if shorthand:
            session.data.update(shorthand)
            await self._check_intake_complete(session, channel_id, None)
            return

        if not self.automation.supports_bulk_intake:
            session.stage = Stage.INTAKE.value
            labels = [REQUIRED_FIELD_LABELS[k] for k in missing_required_fields(session.data)]
            await self._say(channel_id, f"{messages.bulk_missing(labels)}\n{messages.BULK_PROMPT}")
            return

        fields_so_far = {k: session.data[k] for k in REQUIRED_FIELD_KEYS if session.data.get(k)}
        attachments = session.data.get("attachments") or []
        prompt = build_bulk_intake_goal(text, attachments, fields_so_far)
        try:
            result = await self.automation.bulk_intake(message=text, attachments=attachments, prompt=prompt)
        except Exception as e:
            logger.error("bulk_intake_failed", session_id=session.id, error=str(e))
            await self._notify(channel_id, f"Error: {e}")
            self._finish(session)
            return

        outcome = parse_outcome(result)
        extracted = normalize_extracted_fields(outcome.fields)
        session.data.update(extracted)
        logger.info("bulk_fields_extracted", session_id=session.id, fields=sorted(extracted))
        await self._check_intake_complete(session, channel_id, outcome)

    async def _check_intake_complete(self, session: Session, channel_id: str,
                                     outcome: Optional[Outcome]) -> None:
        missing = missing_required_fields(session.data)
        if not missing:
            session.data.pop("remediation", None)
            session.stage = Stage.CONFIRM.value
            await self._say(channel_id, "\n".join([
                messages.BULK_CONFIRM_PROMPT,
                format_bulk_summary(session.data),
                messages.BULK_CONFIRM_READY_PROMPT,
            ]))
            return

        if outcome is None or not outcome.needs_user:
            labels = [REQUIRED_FIELD_LABELS[k] for k in missing]
            outcome = Outcome(
                status=OutcomeStatus.FAILED.value,
                action=OutcomeAction.NEEDS_INFO.value,
                fields=missing,
                prompt=(outcome.user_message if outcome else None) or messages.bulk_missing(labels),
            )
        await self._enter_remediation(session, channel_id, outcome, kind=_KIND_INTAKE, field=missing[0])

    # ── Remediation ───────────────────────────────────────────

    def _remediation(self, session: Session) -> dict[str, Any]:
        rem = session.data.get("remediation")
        if not isinstance(rem, dict) or rem.get("state") not in {s.value for s in RemediationState}:
            kind = _KIND_INTAKE if self.is_bulk and missing_required_fields(session.data) else _KIND_SUBMISSION
            rem = {"state": RemediationState.COLLECTING.value, "kind": kind}
            session.data["remediation"] = rem
        return rem

    async def _handle_remediation(self, session: Session, message: InboundMessage) -> None:
        rem = self._remediation(session)
        channel_id = message.channel_id
        text = (message.text or "").strip()

        refs = [a for a in message.attachments if a.url]
        if refs:
            await self.attachments.persist(session, refs)
            await self._say(channel_id, messages.attachment_saved_remediation(len(refs)))
            return

        if matches(text, DONE):
            await self._resume(session, channel_id, rem.get("kind"))
            return

        options = rem.get("options")
        if options and matches(text, LIST_OPTIONS):
            await self._say(channel_id, messages.remediation_options(rem.get("field"), options))
            return

        state = rem["state"]
        if state == RemediationState.AWAITING_CONFIRMATION.value:
            await self._handle_proposal_reply(session, rem, channel_id, text)
        elif state == RemediationState.AWAITING_OPTION.value:
            await self._handle_option_reply(session, rem, channel_id, text)
        elif not text:
            await self._say(channel_id, messages.REMEDIATION_PROMPT)
        elif rem.get("kind") == _KIND_INTAKE:
            await self._run_intake(session, channel_id, text)
        else:
            self.sessions.record_extra(session, text)
            await self._say(channel_id, messages.REMEDIATION_NOTED)

    async def _handle_proposal_reply(self, session: Session, rem: dict[str, Any],
                                     channel_id: str, text: str) -> None:
        field = rem.get("field")
        if matches(text, YES):
            session.data[field] = rem.get("proposal")
            session.data.pop("remediation", None)
            logger.info("remediation_proposal_accepted", session_id=session.id, field=field)
            await self._resume(session, channel_id, rem.get("kind"))
        elif matches(text, NO):
            if rem.get("options"):
                rem["state"] = RemediationState.AWAITING_OPTION.value
                rem.pop("proposal", None)
                await self._say(channel_id, messages.remediation_options(field, rem["options"]))
            else:
                session.data["remediation"] = {
                    "state": RemediationState.COLLECTING.value,
                    "kind": rem.get("kind"),
                    "field": field,
                }
                await self._say(channel_id, messages.remediation_free_text(field))
        else:
            await self._say(channel_id, messages.REMEDIATION_CONFIRM_HINT)

    async def _handle_option_reply(self, session: Session, rem: dict[str, Any],
                                   channel_id: str, text: str) -> None:
        field = rem.get("field")
        chosen = match_option(text, rem.get("options") or [])
        if chosen is None:
            await self._say(channel_id, f"{messages.REMEDIATION_INVALID_OPTION} {messages.REMEDIATION_OPTIONS_HINT}")
            return
        session.data[field] = chosen
        session.data.pop("remediation", None)
        logger.info("remediation_option_chosen", session_id=session.id, field=field)
        await self._resume(session, channel_id, rem.get("kind"))

    async def _resume(self, session: Session, channel_id: str, kind: Optional[str]) -> None:
        if kind == _KIND_INTAKE:
            await self._check_intake_complete(session, channel_id, None)
        else:
            await self.run_automation(session, channel_id)

    async def _enter_remediation(self, session: Session, channel_id: str, outcome: Outcome,
                                 kind: str = _KIND_SUBMISSION, field: str = None) -> None:
        session.remediation_rounds += 1
        if self.max_remediation_rounds and session.remediation_rounds > self.max_remediation_rounds:
            logger.warning("remediation_limit_reached", session_id=session.id,
                           rounds=session.remediation_rounds)
            self._finish(session)
            await self._notify(channel_id, messages.REMEDIATION_LIMIT)
            return

        field = field or first_field(outcome.fields) or _single_key(outcome.proposal) or _single_key(outcome.options)
        proposal = keyed_value(outcome.proposal, field)
        options = outcome.options if isinstance(outcome.options, list) else keyed_value(outcome.options, field)
        if not isinstance(options, list) or not options:
            options = None

        rem: dict[str, Any] = {"state": RemediationState.COLLECTING.value, "kind": kind, "field": field}
        if proposal is not None and field:
            rem["state"] = RemediationState.AWAITING_CONFIRMATION.value
            rem["proposal"] = proposal
            text = messages.remediation_proposal(field, proposal)
        elif options and field:
            rem["state"] = RemediationState.AWAITING_OPTION.value
            text = messages.remediation_options(field, options)
        else:
            text = outcome.user_message or messages.REMEDIATION_PROMPT
        if options:
            rem["options"] = options

        session.stage = Stage.REMEDIATION.value
        session.data["missing"] = outcome.fields or outcome.reason
        session.data["remediation"] = rem
        logger.info("remediation_started", session_id=session.id, kind=kind, field=field,
                    state=rem["state"], round=session.remediation_rounds)
        await self._say(channel_id, text)

    # ── Automation ────────────────────────────────────────────

    async def run_automation(self, session: Session, channel_id: str) -> None:
        logger.info("automation_started", session_id=session.id, stage=session.stage)
        try:
            result = await self.automation.run(session.data)
        except Exception as e:
            logger.error("automation_failed", session_id=session.id, error=str(e))
            await self._notify(channel_id, f"Error: {e}")
            self._finish(session)
            return

        outcome = parse_outcome(result)
        logger.info("automation_outcome", session_id=session.id,
                    status=outcome.status, action=outcome.action)

        if outcome.succeeded or (result is not None and result.success):
            await self._complete(session, channel_id, result)
            return
        if outcome.needs_user:
            await self._enter_remediation(session, channel_id, outcome)
            return

        self._finish(session)
        await self._notify(channel_id, outcome.user_message or messages.AUTOMATION_FAILED)

    async def _complete(self, session: Session, channel_id: str, result: AutomationResult) -> None:
        details = extract_confirmation_details(result)
        confirmation_id = details.get("confirmation_id") if details else None
        await self._notify(channel_id, messages.request_submitted(confirmation_id))
        if result is not None and result.confirmation:
            await self._notify_image(channel_id, result.confirmation, messages.CONFIRMATION_IMAGE_LABEL)
        if self.requests is not None:
            self.requests.record_success(
                user_id=session.user_id,
                portal_url=session.data.get("portalUrl"),
                issue_description=session.data.get("issueDescription"),
                confirmation=result.confirmation if result is not None else None,
                channel_id=channel_id,
                confirmation_id=confirmation_id,
            )
        self._finish(session)


def _single_key(container: Any) -> Optional[str]:
    if isinstance(container, dict) and len(container) == 1:
        return next(iter(container))
    return None
