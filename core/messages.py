"""User-facing strings for the intake dialogue."""
from __future__ import annotations

from models.schemas import Stage

YES_PROMPT = "yes?"
DM_START = "Thanks—let’s continue in a DM. Send your portal URL to get started."
DM_START_BULK = "Thanks—let’s continue in a DM."
DM_CONTINUE = "I sent you a DM to continue this request."
DM_FAILED = "I could not open a DM. Please send me a direct message to continue."

PORTAL_PROMPT = "Send your portal URL to get started."
USERNAME_PROMPT = "Great—what is your portal username?"
PASSWORD_PROMPT = "Now send the password (it will be encrypted)."
ISSUE_PROMPT = "Describe the maintenance issue."
ATTACHMENT_PROMPT = (
    "If you have photos or documents to attach, send them now. "
    "Type `skip` to continue without attachments."
)
ATTACHMENT_SEND_PROMPT = "Send any photos/documents to attach, or type `skip` to continue without attachments."
ATTACHMENT_NONE_SAVED = "No attachments saved. Type `yes` to submit the request or `cancel` to abort."
ATTACHMENT_AWAIT = "Please attach images/documents, or type `skip` to continue."
ATTACHMENT_ECHO_MISSING = "No saved attachments were available to echo."
ATTACHMENT_ECHO_CAPTION = "Echoing saved attachments."

CONFIRM_PROMPT = "Thanks! Type `yes` to submit the request or `cancel` to abort."
CONFIRM_READY_PROMPT = "Type `yes` when you’re ready or `cancel` to stop."

RESTART_PROMPT = "You already have a request in progress. Type `start over` to restart or `continue` to keep going."
RESTART_HELP = "Type `start over` to restart or `continue` to keep your current request."
START_OVER = "Okay, starting over. Send your portal URL to get started."
START_OVER_BULK = "Okay, starting over."
CANCELLED = "Session cancelled. Send “new request” to restart."

REMEDIATION_PROMPT = (
    "Hey! I still need a bit more info to finish the request. Please share the missing "
    "details or attachments. Type `done` when finished."
)
MORE_INFO_PROMPT = "Please provide the extra information requested. Type `done` when finished."
REMEDIATION_NOTED = "Got it. Send any other details or type `done` when finished."
REMEDIATION_INVALID_OPTION = "That option isn’t in the list I can accept."
REMEDIATION_OPTIONS_HINT = "Reply with one of the listed options or type `options` to see them again."
REMEDIATION_CONFIRM_HINT = "Reply `yes` to accept or `no` to choose another option."
REMEDIATION_LIMIT = (
    "I still couldn't complete the request after several rounds of follow-up questions. "
    "Please start a new request when you have all the details."
)

REQUEST_SUBMITTED = "Request submitted successfully."
AUTOMATION_FAILED = "Unable to submit the request. Please try again later."
CONFIRMATION_IMAGE_LABEL = "Confirmation image"

STATUS_CREDENTIALS_PROMPT = (
    "To check request status I need your portal login. Reply in this format:\n"
    "portal_url, username, password"
)
STATUS_LOOKUP_FAILED = "I couldn't retrieve request status right now. Please try again later."
STATUS_NOT_FOUND = (
    "I could not find that request. Reply `status` to see open requests or `status all` to list everything."
)

BULK_PROMPT = (
    "Hey! I can file the maintenance request for you. Please reply in this exact format:\n"
    "portal_url, username, password, issue\n"
    "Example: https://example.com, alex@email.com, pass123, AC not cooling"
)
BULK_ATTACHMENT_ONLY = "The only response I got was a picture. Please answer the questions."
BULK_CONFIRM_PROMPT = "I got this info from you. Ready to submit it?"
BULK_CONFIRM_READY_PROMPT = "Reply `yes`, `submit`, or `ok` to submit, or `cancel` to abort."


def attachment_saved(count: int, summary: str) -> str:
    return f"Saved {count} attachment(s): {summary}. Send more or type `done` to continue."


def attachment_saved_remediation(count: int) -> str:
    return f"Saved {count} attachment(s). Send more or type `done` to continue."


def remediation_proposal(field: str, value: object) -> str:
    return (
        f'I wasn\'t given {field}. I think it should be "{value}". '
        "Reply `yes` to accept or `no` to choose another option."
    )


def remediation_options(field: str, options: list) -> str:
    return f"Please choose a value for {field}. Options: {', '.join(str(o) for o in options)}."


def remediation_free_text(field: str) -> str:
    return f"Okay. Please type the value you want to use for {field}, or type `done` when finished."


def request_submitted(confirmation_id: str = None) -> str:
    if confirmation_id:
        return f"{REQUEST_SUBMITTED} Confirmation: {confirmation_id}"
    return REQUEST_SUBMITTED


def bulk_missing(labels: list[str]) -> str:
    return f"I still need: {', '.join(labels)}."


def prompt_for_stage(stage: str) -> str:
    """Re-prompt for the current stage (used after `continue` on the restart overlay)."""
    prompts = {
        Stage.PORTAL.value: PORTAL_PROMPT,
        Stage.USERNAME.value: "What is your portal username?",
        Stage.PASSWORD.value: "Send the password when you are ready.",
        Stage.ISSUE.value: ISSUE_PROMPT,
        Stage.ATTACHMENTS.value: "Send any photos or type `skip` to continue.",
        Stage.CONFIRM.value: CONFIRM_PROMPT,
        Stage.REMEDIATION.value: REMEDIATION_PROMPT,
        Stage.INTAKE.value: BULK_PROMPT,
    }
    return prompts.get(stage, PORTAL_PROMPT)
