"""
Attachment handling — download, persist, and release per-session files.

Each session owns one temp directory, created on the first download and
removed recursively when the session ends. Downloads in a batch run
concurrently; results keep the batch's input order. A failed download is
recorded on its own entry and never fails the batch.
"""
from __future__ import annotations

import asyncio
import re
import shutil
import time
from pathlib import Path
from typing import Any, Optional

import httpx
import structlog

from models.schemas import AttachmentRef, Session

logger = structlog.get_logger()

_UNSAFE_CHARS = re.compile(r"[^\w.\-]+", re.ASCII)


def safe_filename(filename: Optional[str]) -> str:
    name = filename or f"attachment-{int(time.time() * 1000)}"
    return _UNSAFE_CHARS.sub("_", name)


def attachment_entry(ref: AttachmentRef, path: Optional[str] = None, error: Optional[str] = None) -> dict[str, Any]:
    return {
        "url": ref.url,
        "filename": ref.filename,
        "contentType": ref.content_type,
        "size": ref.size,
        "path": path,
        "error": error,
    }


class AttachmentManager:
    """Downloads chat attachments into session-scoped temp directories."""

    def __init__(self, base_dir: str = "./tmp/attachments",
                 client: Optional[httpx.AsyncClient] = None, timeout: float = 30.0):
        self.base_dir = Path(base_dir)
        self._client = client
        self._timeout = timeout

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self._timeout, follow_redirects=True)
        return self._client

    def ensure_temp_dir(self, session: Session) -> Path:
        if not session.temp_dir:
            session.temp_dir = str(self.base_dir / session.id)
        path = Path(session.temp_dir)
        path.mkdir(parents=True, exist_ok=True)
        return path

    async def persist(self, session: Session, refs: list[AttachmentRef]) -> list[dict[str, Any]]:
        """Download a batch and append the entries to `session.data['attachments']` in input order."""
        refs = [r for r in refs if r.url]
        if not refs:
            return []
        temp_dir = self.ensure_temp_dir(session)
        entries = await asyncio.gather(*(self.download(temp_dir, ref) for ref in refs))
        session.data.setdefault("attachments", []).extend(entries)
        logger.info("attachments_persisted",
                    session_id=session.id,
                    count=len(entries),
                    failed=sum(1 for e in entries if e["error"]))
        return list(entries)

    async def download(self, temp_dir: Path, ref: AttachmentRef) -> dict[str, Any]:
        file_path = temp_dir / safe_filename(ref.filename)
        client = self._get_client()
        try:
            async with client.stream("GET", ref.url) as response:
                if not response.is_success:
                    return attachment_entry(ref, error=f"HTTP {response.status_code}")
                with open(file_path, "wb") as fh:
                    async for chunk in response.aiter_bytes():
                        fh.write(chunk)
        except (httpx.HTTPError, OSError) as e:
            logger.warning("attachment_download_failed", url=ref.url, error=str(e))
            return attachment_entry(ref, error=str(e) or e.__class__.__name__)
        return attachment_entry(ref, path=str(file_path))

    def cleanup(self, session: Session) -> None:
        """Remove the session's temp directory. Failures are logged, not raised."""
        if not session.temp_dir:
            return
        try:
            shutil.rmtree(session.temp_dir)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("temp_dir_cleanup_failed", temp_dir=session.temp_dir, error=str(e))
        session.temp_dir = None

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()


def saved_attachments(session: Session) -> list[dict[str, Any]]:
    return [a for a in session.data.get("attachments") or [] if a.get("path")]


def format_attachment_summary(session: Session) -> str:
    attachments = session.data.get("attachments") or []
    if not attachments:
        return ""
    lines = []
    for item in attachments:
        label = item.get("filename") or (Path(item["path"]).name if item.get("path") else "") or "attachment"
        location = f"saved at {item['path']}" if item.get("path") else "save failed"
        lines.append(f"- {label}: {location}")
    return "Saved attachments:\n" + "\n".join(lines)
