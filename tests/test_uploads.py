"""Tests for upload registration."""

from pathlib import Path

import pytest

from quizbank.errors import ContentError, UnsupportedFileTypeError
from quizbank.ingestion.uploads import register_upload, storage_subdir, validate_filename
from quizbank.models import BusinessKind, DocumentStatus


def test_register_from_path(tmp_db, upload_dir, tmp_path):
    """Test that a local file is copied and a pending document created."""
    source = tmp_path / "chapter1.txt"
    source.write_text("1. What is 2 + 2?", encoding="utf-8")

    document = register_upload(tmp_db, upload_dir, source, owner_id=3)

    stored = Path(document.file_path)
    assert stored.read_text(encoding="utf-8") == "1. What is 2 + 2?"
    assert stored.parent == upload_dir / "question_bank" / "documents" / "text"
    assert stored.name.startswith("file-")
    assert document.name == "chapter1"
    assert document.original_filename == "chapter1.txt"
    assert document.status == DocumentStatus.PENDING.value
    assert document.created_by == 3
    assert document.file_size == len("1. What is 2 + 2?")
    assert document.mime_type == "text/plain"


def test_register_from_bytes(tmp_db, upload_dir):
    document = register_upload(
        tmp_db,
        upload_dir,
        b"%PDF-1.4",
        owner_id=1,
        original_filename="Scan.PDF",
        name="Scanned quiz",
        business_kind=BusinessKind.KNOWLEDGE_BASE,
    )

    assert document.name == "Scanned quiz"
    assert document.business_kind == "knowledge_base"
    assert Path(document.file_path).parent == upload_dir / "knowledge_base" / "documents" / "pdf"
    assert document.mime_type == "application/pdf"


def test_bytes_require_filename(tmp_db, upload_dir):
    with pytest.raises(UnsupportedFileTypeError):
        register_upload(tmp_db, upload_dir, b"data", owner_id=1)


def test_unsupported_type_writes_nothing(tmp_db, upload_dir):
    """Test that rejected uploads leave no file and no document behind."""
    with pytest.raises(UnsupportedFileTypeError):
        register_upload(tmp_db, upload_dir, b"MZ", owner_id=1, original_filename="setup.exe")

    assert list(upload_dir.rglob("*")) == []
    assert tmp_db.list_documents() == []


def test_missing_source(tmp_db, upload_dir, tmp_path):
    with pytest.raises(ContentError):
        register_upload(tmp_db, upload_dir, tmp_path / "absent.txt", owner_id=1)


def test_failed_insert_removes_file(tmp_db, upload_dir, monkeypatch):
    """Test that a database failure does not leave an orphaned file."""

    def fail(**kwargs):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(tmp_db, "create_document", fail)

    with pytest.raises(RuntimeError):
        register_upload(tmp_db, upload_dir, b"text", owner_id=1, original_filename="q.txt")

    assert [p for p in upload_dir.rglob("*") if p.is_file()] == []


@pytest.mark.parametrize("filename", ["", "   ", "noextension", "archive.zip"])
def test_validate_filename_rejects(filename):
    with pytest.raises(UnsupportedFileTypeError):
        validate_filename(filename)


def test_validate_filename_normalizes_extension():
    assert validate_filename(" Photo.JPEG ") == ("Photo.JPEG", ".jpeg")


def test_storage_subdir():
    assert storage_subdir(BusinessKind.QUESTION_BANK, ".png") == Path("question_bank/images")
    assert storage_subdir(BusinessKind.QUESTION_BANK, ".json") == Path("question_bank/others")
