"""Tests for attachment download, persistence and cleanup."""
import re
import pytest
from pathlib import Path

import httpx

from core.attachments import (
    AttachmentManager, format_attachment_summary, safe_filename, saved_attachments,
)
from models.schemas import AttachmentRef, Session


def refs():
    return [
        AttachmentRef(url="https://cdn.test/leak.jpg", filename="leak photo.jpg", content_type="image/jpeg"),
        AttachmentRef(url="https://cdn.test/missing.png", filename="missing.png"),
        AttachmentRef(url="https://cdn.test/lease.pdf", filename="lease.pdf", content_type="application/pdf"),
    ]


class TestSafeFilename:
    def test_unsafe_runs_replaced(self):
        assert safe_filename("leak photo (1).jpg") == "leak_photo_1_.jpg"
        assert safe_filename("../../etc/passwd") == ".._.._etc_passwd"

    def test_missing_name(self):
        assert re.fullmatch(r"attachment-\d+", safe_filename(None))


class TestPersist:
    @pytest.mark.asyncio
    async def test_batch_order_and_partial_failure(self, attachment_manager):
        session = Session(user_id="u1")
        entries = await attachment_manager.persist(session, refs())

        assert [e["url"] for e in entries] == [r.url for r in refs()]
        ok, missing, lease = entries
        assert ok["error"] is None
        assert Path(ok["path"]).read_bytes() == b"jpeg-bytes"
        assert Path(ok["path"]).name == "leak_photo.jpg"
        assert ok["contentType"] == "image/jpeg"
        assert missing["path"] is None
        assert missing["error"] == "HTTP 404"
        assert Path(lease["path"]).read_bytes() == b"pdf-bytes"
        assert session.data["attachments"] == entries

    @pytest.mark.asyncio
    async def test_temp_dir_scoped_to_session(self, attachment_manager, tmp_path):
        session = Session(user_id="u1")
        await attachment_manager.persist(session, refs()[:1])
        assert Path(session.temp_dir) == tmp_path / "attachments" / session.id
        assert Path(session.temp_dir).is_dir()

    @pytest.mark.asyncio
    async def test_refs_without_url_skipped(self, attachment_manager):
        session = Session(user_id="u1")
        assert await attachment_manager.persist(session, [AttachmentRef(url="")]) == []
        assert session.temp_dir is None

    @pytest.mark.asyncio
    async def test_network_error_recorded(self, tmp_path):
        def boom(request):
            raise httpx.ConnectError("connection refused", request=request)

        manager = AttachmentManager(str(tmp_path), client=httpx.AsyncClient(transport=httpx.MockTransport(boom)))
        session = Session(user_id="u1")
        [entry] = await manager.persist(session, refs()[:1])
        assert entry["path"] is None
        assert "connection refused" in entry["error"]


class TestCleanup:
    @pytest.mark.asyncio
    async def test_cleanup_removes_directory(self, attachment_manager):
        session = Session(user_id="u1")
        await attachment_manager.persist(session, refs())
        temp_dir = Path(session.temp_dir)
        attachment_manager.cleanup(session)
        assert not temp_dir.exists()
        assert session.temp_dir is None

    def test_cleanup_tolerates_missing_dir(self, attachment_manager, tmp_path):
        session = Session(user_id="u1", temp_dir=str(tmp_path / "gone"))
        attachment_manager.cleanup(session)
        assert session.temp_dir is None


class TestSummary:
    @pytest.mark.asyncio
    async def test_summary_lines(self, attachment_manager):
        session = Session(user_id="u1")
        await attachment_manager.persist(session, refs())
        summary = format_attachment_summary(session)
        assert summary.startswith("Saved attachments:")
        assert "- leak photo.jpg: saved at " in summary
        assert "- missing.png: save failed" in summary
        assert len(saved_attachments(session)) == 2

    def test_no_attachments(self):
        assert format_attachment_summary(Session(user_id="u1")) == ""
