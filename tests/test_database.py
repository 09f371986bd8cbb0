"""Tests for the storage handle."""

import pytest
from sqlalchemy import inspect

from quizbank.errors import DocumentNotFoundError, ProviderConfigError
from quizbank.models import (
    DocumentStatus,
    ParseOutcome,
    ParsePromptSetting,
    ProviderFamily,
    SettingKey,
)
from quizbank.storage.chapters import ChapterStore
from quizbank.storage.database import QuestionBankDatabase, serialize_payload
from quizbank.storage.models import Document, SystemSetting


@pytest.fixture
def document(tmp_db):
    return tmp_db.create_document(
        name="Algebra quiz",
        original_filename="algebra.pdf",
        file_path="/tmp/algebra.pdf",
        file_size=1024,
        created_by=7,
    )


def test_create_tables(tmp_db):
    """Test that every table is created."""
    tables = set(inspect(tmp_db.engine).get_table_names())

    assert {
        "documents",
        "parse_logs",
        "question_chapters",
        "questions",
        "provider_configs",
        "system_settings",
    } <= tables


class TestDocuments:
    def test_create_and_get(self, tmp_db, document):
        """Test that new documents start pending with no questions."""
        fetched = tmp_db.get_document(document.id)

        assert fetched.status == DocumentStatus.PENDING.value
        assert fetched.total_questions == 0
        assert fetched.created_by == 7
        assert fetched.business_kind == "question_bank"

    def test_get_missing(self, tmp_db):
        assert tmp_db.get_document(999) is None
        with pytest.raises(DocumentNotFoundError):
            tmp_db.require_document(999)

    def test_list_filters(self, tmp_db, document):
        other = tmp_db.create_document("Other", "o.txt", "/tmp/o.txt", 10, created_by=8)
        tmp_db.mark_failed(other.id)

        assert [d.id for d in tmp_db.list_documents(owner_id=7)] == [document.id]
        assert [d.id for d in tmp_db.list_documents(status="failed")] == [other.id]
        assert len(tmp_db.list_documents()) == 2

    def test_claim_is_exclusive(self, tmp_db, document, openai_provider):
        """Test that only the first claim moves the document to parsing."""
        assert tmp_db.claim_for_parsing(document.id, openai_provider.id, "gpt-4o") is True
        assert tmp_db.claim_for_parsing(document.id, openai_provider.id, "gpt-4o") is False

        claimed = tmp_db.get_document(document.id)
        assert claimed.status == DocumentStatus.PARSING.value
        assert claimed.provider_id == openai_provider.id
        assert claimed.model_name == "gpt-4o"

    def test_claim_from_failed_but_not_completed(self, tmp_db, document, openai_provider):
        tmp_db.mark_failed(document.id)
        assert tmp_db.claim_for_parsing(document.id, openai_provider.id, "m") is True

        tmp_db.mark_completed(document.id, 0, "openai/m", None)
        assert tmp_db.claim_for_parsing(document.id, openai_provider.id, "m") is False

    def test_release_claim(self, tmp_db, document, openai_provider):
        """Test that a released claim restores the previous status."""
        tmp_db.claim_for_parsing(document.id, openai_provider.id, "gpt-4o")

        assert tmp_db.release_claim(document.id, DocumentStatus.PENDING.value) is True
        assert tmp_db.get_document(document.id).status == DocumentStatus.PENDING.value
        assert tmp_db.release_claim(document.id, DocumentStatus.PENDING.value) is False

    def test_mark_completed(self, tmp_db, document):
        tmp_db.mark_completed(document.id, 12, "openai/gpt-4o", "/tmp/backup.json")

        updated = tmp_db.get_document(document.id)
        assert updated.status == DocumentStatus.COMPLETED.value
        assert updated.total_questions == 12
        assert updated.parse_method == "openai/gpt-4o"
        assert updated.parse_json_path == "/tmp/backup.json"

    def test_set_status_missing_document(self, tmp_db):
        with pytest.raises(DocumentNotFoundError):
            tmp_db.set_status(42, DocumentStatus.PENDING)

    def test_delete_cascades(self, tmp_db, document, sample_questions):
        """Test that deleting a document removes its chapters, questions and logs."""
        ChapterStore(tmp_db).persist_questions(document.id, sample_questions)
        tmp_db.log_parse(document.id, ParseOutcome.SUCCESS, "openai/gpt-4o")

        tmp_db.delete_document(document.id)

        assert tmp_db.get_document(document.id) is None
        assert tmp_db.count_questions(document.id) == 0
        assert ChapterStore(tmp_db).list_chapters(document.id) == []
        assert tmp_db.get_parse_logs(document.id) == []


class TestParseLogs:
    def test_logs_newest_first(self, tmp_db, document):
        first = tmp_db.log_parse(document.id, ParseOutcome.FAILED, "openai/m", error_message="boom")
        second = tmp_db.log_parse(
            document.id,
            ParseOutcome.SUCCESS,
            "openai/m",
            total_pages=3,
            parsed_pages=3,
            processing_time_ms=1500,
            request_data={"model": "m"},
            response_data={"status_code": 200},
        )

        logs = tmp_db.get_parse_logs(document.id)

        assert [log["id"] for log in logs] == [second, first]
        assert logs[0]["request_data"] == {"model": "m"}
        assert logs[0]["total_pages"] == 3
        assert logs[1]["error_message"] == "boom"
        assert tmp_db.get_latest_parse_log(document.id)["id"] == second

    def test_payload_truncated(self, tmp_path):
        """Test that oversized payloads are bounded and still retrievable."""
        db = QuestionBankDatabase(f"sqlite:///{tmp_path / 'small.db'}", max_log_payload_chars=50)
        db.create_tables()
        doc = db.create_document("d", "d.txt", "/tmp/d.txt", 1, created_by=1)

        db.log_parse(doc.id, ParseOutcome.FAILED, "m", response_data={"body": "x" * 500})
        stored = db.get_latest_parse_log(doc.id)["response_data"]
        db.close()

        assert isinstance(stored, str)
        assert stored.endswith("... [TRUNCATED]")
        assert len(stored) == 50 + len("... [TRUNCATED]")

    def test_serialize_none(self):
        assert serialize_payload(None) is None
        assert serialize_payload({"a": "é"}) == '{"a": "é"}'


class TestProviders:
    def test_crud(self, tmp_db):
        provider = tmp_db.add_provider(
            "gemini-main", ProviderFamily.GEMINI, "https://g.example.com", "key", description=""
        )

        assert provider.family == ProviderFamily.GEMINI
        assert provider.is_active is True
        assert provider.description is None
        assert tmp_db.get_provider_config_by_id(provider.id) == provider

        disabled = tmp_db.set_provider_active(provider.id, False)
        assert disabled.is_active is False

        tmp_db.delete_provider(provider.id)
        assert tmp_db.get_provider_config_by_id(provider.id) is None
        assert tmp_db.list_providers() == []

    def test_duplicate_name(self, tmp_db, openai_provider):
        """Test that provider names are unique."""
        with pytest.raises(ProviderConfigError):
            tmp_db.add_provider("openai-test", ProviderFamily.QWEN, "https://q.example.com", "k")

    def test_missing_provider(self, tmp_db):
        assert tmp_db.get_provider_config_by_id(5) is None
        with pytest.raises(ProviderConfigError):
            tmp_db.set_provider_active(5, True)

    def test_delete_provider_detaches_documents(self, tmp_db, document, openai_provider):
        tmp_db.claim_for_parsing(document.id, openai_provider.id, "gpt-4o")

        tmp_db.delete_provider(openai_provider.id)

        assert tmp_db.get_document(document.id).provider_id is None


class TestSettings:
    def test_round_trip(self, tmp_db):
        tmp_db.save_prompt_setting(
            SettingKey.KNOWLEDGE_FORMAT, ParsePromptSetting(prompt="Extract facts."), updated_by=3
        )

        assert tmp_db.get_prompt_setting(SettingKey.KNOWLEDGE_FORMAT).prompt == "Extract facts."
        assert tmp_db.get_prompt_setting(SettingKey.QUESTION_PARSE_FORMAT) is None

    def test_overwrite(self, tmp_db):
        key = SettingKey.QUESTION_PARSE_FORMAT
        tmp_db.save_prompt_setting(key, ParsePromptSetting(prompt="v1"))
        tmp_db.save_prompt_setting(key, ParsePromptSetting(prompt="v2"))

        assert tmp_db.get_prompt_setting(key).prompt == "v2"

    def test_malformed_payload_is_absent(self, tmp_db):
        """Test that an unparseable stored payload reads as no setting."""
        session = tmp_db.session_factory()
        session.add(SystemSetting(key=SettingKey.QUESTION_PARSE_FORMAT.value, payload="{not json"))
        session.commit()
        session.close()

        assert tmp_db.get_prompt_setting(SettingKey.QUESTION_PARSE_FORMAT) is None

    def test_unknown_fields_ignored(self, tmp_db):
        session = tmp_db.session_factory()
        session.add(
            SystemSetting(
                key=SettingKey.QUESTION_PARSE_FORMAT.value,
                payload='{"prompt": "Custom", "version": 2}',
            )
        )
        session.commit()
        session.close()

        assert tmp_db.get_prompt_setting(SettingKey.QUESTION_PARSE_FORMAT).prompt == "Custom"


def test_verify_counts(tmp_db, document, sample_questions):
    """Test that count drift on completed documents is reported."""
    ChapterStore(tmp_db).persist_questions(document.id, sample_questions)
    tmp_db.mark_completed(document.id, 3, "openai/m", None)
    assert tmp_db.verify_counts() == []

    session = tmp_db.session_factory()
    session.get(Document, document.id).total_questions = 5
    session.commit()
    session.close()

    assert tmp_db.verify_counts() == [
        {"document_id": document.id, "total_questions": 5, "question_rows": 3, "chapter_sum": 3}
    ]
    assert tmp_db.verify_counts(document_ids=[document.id + 1]) == []
