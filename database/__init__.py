"""
Storage layer — in-process stores for the intake bot.

Stores:
  - SessionStore     (per-user dialogue sessions, with per-user locks)
  - RequestStore     (history of submitted requests, most recent first)
  - CredentialStore  (read-only portal logins: plaintext JSON or Fernet vault)

Quick start:
  from database import SessionStore, RequestStore
  sessions = SessionStore()
  session = sessions.get("user-1")
"""
from database.session_store import SessionStore
from database.request_store import (
    RequestStore, format_status_detail, format_status_line, format_status_list, normalize_status,
)
from database.credentials import (
    CredentialNotFoundError, CredentialStore, CredentialVault, JsonCredentialStore, fernet_for,
)

__all__ = [
    # Sessions
    "SessionStore",
    # Request history
    "RequestStore", "normalize_status",
    "format_status_line", "format_status_list", "format_status_detail",
    # Credentials
    "CredentialNotFoundError", "CredentialStore", "JsonCredentialStore", "CredentialVault", "fernet_for",
]
