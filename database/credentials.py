"""
Credential stores — read-only lookup of portal logins by id.

Implementations:
  - JsonCredentialStore  (plaintext JSON file: {"records": [...]})
  - CredentialVault      (same document, Fernet-encrypted at rest)

Both raise CredentialNotFoundError when the backing file is missing or
malformed; an unknown id returns None.
"""
from __future__ import annotations

import abc
import base64
import hashlib
import json
from pathlib import Path
from typing import Any, Optional

import structlog
from cryptography.fernet import Fernet, InvalidToken

from models.schemas import Credential

logger = structlog.get_logger()


class CredentialNotFoundError(Exception):
    """The credential source is missing, unreadable, or malformed."""


def _to_credential(record: dict[str, Any]) -> Credential:
    return Credential(
        id=str(record["id"]),
        portal_url=record.get("portalUrl") or record.get("portal_url") or "",
        username=record.get("username", ""),
        password=record.get("password", ""),
    )


def _records_from(document: Any) -> list[dict[str, Any]]:
    if not isinstance(document, dict) or not isinstance(document.get("records"), list):
        raise CredentialNotFoundError("Credentials file must contain a records array.")
    return [r for r in document["records"] if isinstance(r, dict)]


class CredentialStore(abc.ABC):
    @abc.abstractmethod
    def load_records(self) -> list[dict[str, Any]]:
        ...

    def get_credential_by_id(self, credential_id: str) -> Optional[Credential]:
        if not credential_id:
            raise ValueError("Credential id is required.")
        for record in self.load_records():
            if record.get("id") == credential_id:
                return _to_credential(record)
        return None


class JsonCredentialStore(CredentialStore):
    def __init__(self, path: str = "./data/credentials.json"):
        self.path = Path(path)

    def load_records(self) -> list[dict[str, Any]]:
        if not self.path.exists():
            raise CredentialNotFoundError(f"Credentials file not found: {self.path}")
        try:
            document = json.loads(self.path.read_text(encoding="utf-8"))
        except ValueError as e:
            raise CredentialNotFoundError("Credentials file contains invalid JSON.") from e
        return _records_from(document)


def fernet_for(master_key: str) -> Fernet:
    """Accept a ready Fernet key, or derive one deterministically from any secret."""
    if not master_key:
        raise CredentialNotFoundError("A master key is required for the credential vault.")
    key = master_key.encode()
    if len(key) != 44:
        key = base64.urlsafe_b64encode(hashlib.sha256(key).digest())
    return Fernet(key)


class CredentialVault(CredentialStore):
    """Encrypted credential document. Missing vault file means no records."""

    def __init__(self, path: str = "./data/credentials.enc", master_key: str = ""):
        self.path = Path(path)
        self._master_key = master_key

    def load_records(self) -> list[dict[str, Any]]:
        if not self.path.exists():
            return []
        token = self.path.read_bytes().strip()
        if not token:
            return []
        try:
            document = json.loads(fernet_for(self._master_key).decrypt(token))
        except (InvalidToken, ValueError) as e:
            raise CredentialNotFoundError("Credential vault could not be decrypted.") from e
        return _records_from(document)

    def put(self, record: dict[str, Any]) -> None:
        if not record.get("id"):
            raise ValueError("Credential record requires an id.")
        records = [r for r in self.load_records() if r.get("id") != record["id"]]
        records.append(record)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps({"records": records}).encode()
        self.path.write_bytes(fernet_for(self._master_key).encrypt(payload))
        logger.info("credential_saved", credential_id=record["id"])
