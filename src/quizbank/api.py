"""Public API facade over the question bank ingestion pipeline."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import text

from quizbank.errors import InvalidStateError
from quizbank.ingestion.orchestrator import ParseOrchestrator, ensure_can_manage
from quizbank.ingestion.uploads import register_upload
from quizbank.ingestion.worker import ParseTaskQueue
from quizbank.models import (
    Actor,
    BusinessKind,
    DocumentStatus,
    ParsedQuestion,
    ParsePromptSetting,
    ParseStatusReport,
    ParseTriggerResult,
    ProviderConfig,
    ProviderFamily,
    SettingKey,
)
from quizbank.storage.chapters import ChapterStore
from quizbank.storage.database import QuestionBankDatabase
from quizbank.storage.models import Chapter, Document, Question

logger = logging.getLogger(__name__)


@dataclass
class QuizBankConfig:
    """Configuration for the QuizBank pipeline."""

    database_url: str = field(
        default_factory=lambda: os.getenv("QUIZBANK_DATABASE_URL", "sqlite:///quizbank.db")
    )
    upload_dir: str = field(default_factory=lambda: os.getenv("QUIZBANK_UPLOAD_DIR", "uploads"))
    request_timeout: float = field(
        default_factory=lambda: float(os.getenv("QUIZBANK_REQUEST_TIMEOUT", "300"))
    )
    max_workers: int = field(default_factory=lambda: int(os.getenv("QUIZBANK_MAX_WORKERS", "2")))
    max_pending: int = field(default_factory=lambda: int(os.getenv("QUIZBANK_MAX_PENDING", "16")))
    pdf_render_scale: float = field(
        default_factory=lambda: float(os.getenv("QUIZBANK_PDF_RENDER_SCALE", "2.0"))
    )
    max_log_payload_chars: int = field(
        default_factory=lambda: int(os.getenv("QUIZBANK_MAX_LOG_PAYLOAD_CHARS", "200000"))
    )

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> "QuizBankConfig":
        """Create config from dictionary."""
        return cls(**{k: v for k, v in config.items() if k in cls.__dataclass_fields__})


class QuizBankAPI:
    """Unified API facade for uploads, parsing, providers and chapters.

    Example:
        >>> api = QuizBankAPI({"database_url": "sqlite:///quizbank.db"})
        >>> api.init_db()
        >>> doc = api.upload("exam.pdf", owner=Actor(user_id=1))
        >>> api.trigger_parse(doc.id, provider_id=1, model_name="gpt-4o")
    """

    def __init__(
        self,
        config: Optional[Union[QuizBankConfig, Dict[str, Any]]] = None,
        lazy_init: bool = False,
    ):
        """Initialize the QuizBank API.

        Args:
            config: Configuration object or dictionary. Uses environment variables if None.
            lazy_init: If True, defer component initialization until first use.
        """
        if config is None:
            self.config = QuizBankConfig()
        elif isinstance(config, dict):
            self.config = QuizBankConfig.from_dict(config)
        else:
            self.config = config

        self._database: Optional[QuestionBankDatabase] = None
        self._queue: Optional[ParseTaskQueue] = None
        self._chapters: Optional[ChapterStore] = None
        self._orchestrator: Optional[ParseOrchestrator] = None
        self._initialized = False

        if not lazy_init:
            self._initialize_components()

    def _initialize_components(self) -> None:
        """Initialize storage, task queue and orchestrator."""
        if self._initialized:
            return

        logger.info("Initializing QuizBank API components...")

        self._database = QuestionBankDatabase(
            self.config.database_url,
            max_log_payload_chars=self.config.max_log_payload_chars,
        )
        self._queue = ParseTaskQueue(
            max_workers=self.config.max_workers,
            max_pending=self.config.max_pending,
        )
        self._chapters = ChapterStore(self._database)
        self._orchestrator = ParseOrchestrator(
            database=self._database,
            queue=self._queue,
            upload_dir=self.config.upload_dir,
            chapter_store=self._chapters,
            request_timeout=self.config.request_timeout,
            render_scale=self.config.pdf_render_scale,
        )

        self._initialized = True
        logger.info("QuizBank API initialized successfully")

    @property
    def database(self) -> QuestionBankDatabase:
        """Get the storage handle."""
        if not self._initialized:
            self._initialize_components()
        return self._database

    @property
    def queue(self) -> ParseTaskQueue:
        if not self._initialized:
            self._initialize_components()
        return self._queue

    @property
    def chapters(self) -> ChapterStore:
        if not self._initialized:
            self._initialize_components()
        return self._chapters

    @property
    def orchestrator(self) -> ParseOrchestrator:
        """Get the parse orchestrator."""
        if not self._initialized:
            self._initialize_components()
        return self._orchestrator

    def init_db(self) -> None:
        """Create all tables."""
        self.database.create_tables()

    # === Documents ===

    def upload(
        self,
        source: Union[str, Path, bytes],
        owner: Actor,
        original_filename: Optional[str] = None,
        name: Optional[str] = None,
        description: Optional[str] = None,
        business_kind: BusinessKind = BusinessKind.QUESTION_BANK,
    ) -> Document:
        """Store a file and register it as a pending document."""
        return register_upload(
            self.database,
            self.config.upload_dir,
            source,
            owner_id=owner.user_id,
            original_filename=original_filename,
            name=name,
            description=description,
            business_kind=business_kind,
        )

    def get_document(self, document_id: int) -> Document:
        return self.database.require_document(document_id)

    def list_documents(
        self, status: Optional[str] = None, owner_id: Optional[int] = None
    ) -> List[Document]:
        return self.database.list_documents(status=status, owner_id=owner_id)

    def delete_document(self, document_id: int, actor: Actor) -> None:
        """Delete a document, its chapters, questions, logs and stored files.

        Raises:
            PermissionDeniedError: If the actor is neither owner nor elevated
            InvalidStateError: If the document is being parsed
        """
        document = self.database.require_document(document_id)
        ensure_can_manage(document, actor)
        if document.status == DocumentStatus.PARSING.value:
            raise InvalidStateError(f"Document {document_id} is being parsed and cannot be deleted")

        self.database.delete_document(document_id)
        for path in (document.file_path, document.parse_json_path):
            if path:
                try:
                    Path(path).unlink(missing_ok=True)
                except OSError as e:
                    logger.warning(f"Could not remove {path}: {e}")

    # === Parsing ===

    def trigger_parse(
        self, document_id: int, provider_id: int, model_name: str
    ) -> ParseTriggerResult:
        """Start parsing a document in the background."""
        return self.orchestrator.trigger_parse(document_id, provider_id, model_name)

    def retry_parse(self, document_id: int) -> ParseTriggerResult:
        return self.orchestrator.retry_parse(document_id)

    def wait_for_parse(
        self, document_id: int, timeout: Optional[float] = None
    ) -> ParseStatusReport:
        """Block until the document's current task finishes, then report status."""
        self.queue.wait(document_id, timeout=timeout)
        return self.get_parse_status(document_id)

    def get_parse_status(self, document_id: int) -> ParseStatusReport:
        return self.orchestrator.get_parse_status(document_id)

    def override_status(
        self, document_id: int, status: Union[DocumentStatus, str], actor: Actor
    ) -> Document:
        return self.orchestrator.override_status(document_id, status, actor)

    # === Providers ===

    def add_provider(
        self,
        name: str,
        family: Union[ProviderFamily, str],
        endpoint: str,
        api_key: str,
        description: Optional[str] = None,
        is_active: bool = True,
    ) -> ProviderConfig:
        return self.database.add_provider(
            name=name,
            family=ProviderFamily(family),
            endpoint=endpoint,
            api_key=api_key,
            description=description,
            is_active=is_active,
        )

    def list_providers(self) -> List[ProviderConfig]:
        return self.database.list_providers()

    def get_provider(self, provider_id: int) -> Optional[ProviderConfig]:
        return self.database.get_provider_config_by_id(provider_id)

    def set_provider_active(self, provider_id: int, is_active: bool) -> ProviderConfig:
        return self.database.set_provider_active(provider_id, is_active)

    def delete_provider(self, provider_id: int) -> None:
        self.database.delete_provider(provider_id)

    # === Prompt settings ===

    def get_prompt(self, kind: BusinessKind = BusinessKind.QUESTION_BANK) -> Optional[str]:
        """Return the custom system prompt for a business kind, if one is stored."""
        setting = self.database.get_prompt_setting(SettingKey.for_kind(BusinessKind(kind)))
        return setting.prompt if setting else None

    def set_prompt(
        self,
        prompt: Optional[str],
        kind: BusinessKind = BusinessKind.QUESTION_BANK,
        actor: Optional[Actor] = None,
    ) -> ParsePromptSetting:
        """Store (or clear, with None) the custom system prompt for a business kind."""
        return self.database.save_prompt_setting(
            SettingKey.for_kind(BusinessKind(kind)),
            ParsePromptSetting(prompt=prompt or None),
            updated_by=actor.user_id if actor else None,
        )

    # === Chapters and questions ===

    def list_chapters(self, document_id: int) -> List[Chapter]:
        return self.chapters.list_chapters(document_id)

    def get_chapter_stats(self, document_id: int) -> Dict[str, Any]:
        return self.chapters.get_chapter_stats(document_id)

    def get_questions(
        self, document_id: int, chapter_id: Optional[int] = None
    ) -> List[ParsedQuestion]:
        return self.chapters.get_questions(document_id, chapter_id=chapter_id)

    def list_question_rows(
        self, document_id: int, chapter_id: Optional[int] = None
    ) -> List[Question]:
        """Return stored question rows (with ids) for editing."""
        return self.chapters.list_question_rows(document_id, chapter_id=chapter_id)

    def delete_chapter(self, chapter_id: int) -> int:
        return self.chapters.delete_chapter(chapter_id)

    def delete_question(self, question_id: int) -> None:
        self.chapters.delete_question(question_id)

    def update_question(
        self, question_id: int, question: ParsedQuestion, chapter_id: Optional[int] = None
    ) -> None:
        self.chapters.update_question(question_id, question, chapter_id=chapter_id)

    # === Health and lifecycle ===

    def health_check(self) -> Dict[str, bool]:
        """Quick health check of the database and upload directory.

        Returns:
            Dictionary with boolean status for each dependency
        """
        health = {}

        try:
            with self.database.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            health["database"] = True
        except Exception:
            health["database"] = False

        upload_dir = Path(self.config.upload_dir)
        health["upload_dir"] = upload_dir.is_dir() and os.access(upload_dir, os.W_OK)

        health["all_healthy"] = all(v for k, v in health.items() if k != "all_healthy")
        return health

    def close(self) -> None:
        """Wait for running tasks and release connections."""
        if self._queue:
            self._queue.shutdown(wait=True)
        if self._database:
            self._database.close()
        self._initialized = False
        logger.info("QuizBank API closed")

    def __enter__(self) -> "QuizBankAPI":
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        self.close()
