"""Parse orchestration: document status machine, provider call and persistence."""

import json
import logging
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

import httpx

from quizbank.errors import (
    InvalidStateError,
    PermissionDeniedError,
    ProviderConfigError,
    UnsupportedProviderError,
)
from quizbank.ingestion.worker import ParseTaskQueue
from quizbank.models import (
    Actor,
    DocumentStatus,
    ParseOutcome,
    ParseResult,
    ParseStatusReport,
    ParseTriggerResult,
    ProviderConfig,
)
from quizbank.parsing.content_reader import DEFAULT_RENDER_SCALE, read_file_content
from quizbank.providers import STRATEGIES, get_parse_strategy
from quizbank.providers.base import DEFAULT_TIMEOUT
from quizbank.storage.chapters import ChapterStore
from quizbank.storage.database import QuestionBankDatabase
from quizbank.storage.models import Document

logger = logging.getLogger(__name__)

BACKUP_DIRNAME = "parse_results"


def ensure_can_manage(document: Document, actor: Actor) -> None:
    """Allow the document owner or an elevated role, refuse everyone else.

    Raises:
        PermissionDeniedError: If the actor may not manage the document
    """
    if actor.is_elevated or document.created_by == actor.user_id:
        return
    raise PermissionDeniedError(
        f"User {actor.user_id} may not manage document {document.id}"
    )


def parse_method_label(provider: ProviderConfig, model_name: Optional[str]) -> str:
    """Label recorded on documents and parse logs, e.g. ``openai/gpt-4o``."""
    return f"{provider.family.value}/{model_name}"


class ParseOrchestrator:
    """Drives documents through pending -> parsing -> completed | failed.

    ``trigger_parse`` validates the provider and claims the document
    synchronously, then hands ``run_parse_task`` to the task queue. The task
    never lets an exception escape without first recording the failure on
    the document and in the parse log.
    """

    def __init__(
        self,
        database: QuestionBankDatabase,
        queue: ParseTaskQueue,
        upload_dir: Union[str, Path],
        chapter_store: Optional[ChapterStore] = None,
        strategy_factory: Callable = get_parse_strategy,
        request_timeout: float = DEFAULT_TIMEOUT,
        render_scale: float = DEFAULT_RENDER_SCALE,
        http_client: Optional[httpx.Client] = None,
    ):
        """Initialize the orchestrator.

        Args:
            database: Storage handle
            queue: Task queue that runs parse tasks
            upload_dir: Base upload directory; backups go to its parse_results/
            chapter_store: Chapter persistence, built from database if None
            strategy_factory: Callable with the signature of get_parse_strategy
            request_timeout: Provider HTTP timeout in seconds
            render_scale: PDF rasterization scale
            http_client: Optional shared httpx client for provider calls
        """
        self.database = database
        self.queue = queue
        self.upload_dir = Path(upload_dir)
        self.chapter_store = chapter_store or ChapterStore(database)
        self.strategy_factory = strategy_factory
        self.request_timeout = request_timeout
        self.render_scale = render_scale
        self.http_client = http_client

    # === Triggering ===

    def resolve_provider(self, provider_id: Optional[int]) -> ProviderConfig:
        """Load a provider that can be parsed against.

        Raises:
            ProviderConfigError: If the provider is missing or inactive
            UnsupportedProviderError: If its family has no parsing strategy
        """
        provider = (
            self.database.get_provider_config_by_id(provider_id) if provider_id else None
        )
        if provider is None:
            raise ProviderConfigError(f"Provider {provider_id} not found")
        if not provider.is_active:
            raise ProviderConfigError(f"Provider {provider.name} is inactive")
        if provider.family not in STRATEGIES:
            raise UnsupportedProviderError(
                f"Provider family {provider.family.value} does not support automatic parsing"
            )
        return provider

    def trigger_parse(
        self, document_id: int, provider_id: int, model_name: str
    ) -> ParseTriggerResult:
        """Start parsing a document in the background.

        The claim is reverted whenever the task cannot be queued.

        Args:
            document_id: Document to parse
            provider_id: Provider to parse with
            model_name: Model name sent to the provider

        Returns:
            ParseTriggerResult; ``started`` is False when the document is
            already parsing or completed

        Raises:
            DocumentNotFoundError: If the document does not exist
            ProviderConfigError: If the provider is missing, inactive or unsupported
            QueueFullError: If the task queue is full
            RuntimeError: If the task queue has been shut down
        """
        document = self.database.require_document(document_id)
        if not model_name or not model_name.strip():
            raise ProviderConfigError("Model name is required")
        provider = self.resolve_provider(provider_id)

        if document.status == DocumentStatus.PARSING.value:
            return ParseTriggerResult(started=False, message="Document is already being parsed")
        if document.status == DocumentStatus.COMPLETED.value:
            return ParseTriggerResult(started=False, message="Document has already been parsed")

        previous_status = document.status
        if not self.database.claim_for_parsing(document_id, provider.id, model_name):
            logger.info(f"Lost claim race for document {document_id}")
            return ParseTriggerResult(started=False, message="Document is already being parsed")

        task_id = f"task_{document_id}_{int(time.time() * 1000)}"
        try:
            self.queue.submit(task_id, document_id, self.run_parse_task)
        except Exception as e:
            self.database.release_claim(document_id, previous_status)
            logger.warning(
                f"Could not queue document {document_id} ({e}), returned to {previous_status}"
            )
            raise

        logger.info(
            f"Started parse of document {document_id} with {provider.name}/{model_name} "
            f"({task_id})"
        )
        return ParseTriggerResult(started=True, message="Parsing started", task_id=task_id)

    def retry_parse(self, document_id: int) -> ParseTriggerResult:
        """Re-trigger a failed document with its last provider and model.

        Raises:
            InvalidStateError: If the document is not failed or has no recorded provider
        """
        document = self.database.require_document(document_id)
        if document.status != DocumentStatus.FAILED.value:
            raise InvalidStateError(
                f"Only failed documents can be retried (document {document_id} is {document.status})"
            )
        if not document.provider_id or not document.model_name:
            raise InvalidStateError(f"Document {document_id} has no recorded provider")
        return self.trigger_parse(document_id, document.provider_id, document.model_name)

    # === Background task ===

    def run_parse_task(self, document_id: int) -> Dict[str, Any]:
        """Adapt, parse and persist one claimed document.

        Args:
            document_id: Document previously claimed by trigger_parse

        Returns:
            Dictionary with status ("success" or "failed") and details
        """
        started = time.monotonic()
        method = None
        page_count = 0
        persisted = False
        try:
            document = self.database.require_document(document_id)
            provider = self.resolve_provider(document.provider_id)
            method = parse_method_label(provider, document.model_name)

            strategy = self.strategy_factory(
                provider,
                document.model_name,
                business_kind=document.business_kind,
                settings=self.database,
                timeout=self.request_timeout,
                client=self.http_client,
            )
            content = read_file_content(document.file_path, provider.family, self.render_scale)
            page_count = content.page_count

            result = strategy.parse(content, document.original_filename)
            if not result.success:
                self.database.mark_failed(document_id, method)
                self.database.log_parse(
                    document_id,
                    ParseOutcome.FAILED,
                    method,
                    error_message=result.error,
                    total_pages=page_count,
                    processing_time_ms=self._elapsed_ms(started),
                    request_data=result.request_payload,
                    response_data=result.response_payload,
                )
                logger.warning(f"Parse of document {document_id} failed: {result.error}")
                return {"status": "failed", "document_id": document_id, "error": result.error}

            backup_path = self.write_backup(document, provider, result)
            chapters = self.chapter_store.persist_questions(document_id, result.questions)
            persisted = True
            self.database.mark_completed(
                document_id, result.total_questions, method, str(backup_path)
            )
            self.database.log_parse(
                document_id,
                ParseOutcome.SUCCESS,
                method,
                total_pages=page_count,
                parsed_pages=page_count,
                processing_time_ms=self._elapsed_ms(started),
                request_data=result.request_payload,
                response_data=result.response_payload,
            )
            return {
                "status": "success",
                "document_id": document_id,
                "total_questions": result.total_questions,
                "chapters": len(chapters),
                "parse_json_path": str(backup_path),
            }

        except Exception as e:
            logger.error(f"Parse task for document {document_id} crashed: {e}", exc_info=True)
            if persisted:
                self.chapter_store.clear_questions(document_id)
            self.database.mark_failed(document_id, method)
            self.database.log_parse(
                document_id,
                ParseOutcome.FAILED,
                method,
                error_message=str(e),
                total_pages=page_count,
                processing_time_ms=self._elapsed_ms(started),
            )
            return {"status": "failed", "document_id": document_id, "error": str(e)}

    def write_backup(
        self, document: Document, provider: ProviderConfig, result: ParseResult
    ) -> Path:
        """Write the parsed questions to a standalone JSON file.

        Returns:
            Path of the backup file
        """
        backup_dir = self.upload_dir / BACKUP_DIRNAME
        backup_dir.mkdir(parents=True, exist_ok=True)
        backup_path = backup_dir / f"document_{document.id}_{int(time.time() * 1000)}.json"

        payload = {
            "document_id": document.id,
            "file_name": document.original_filename,
            "provider": provider.name,
            "model": document.model_name,
            "parsed_at": datetime.utcnow().isoformat(),
            "total_questions": result.total_questions,
            "questions": [q.model_dump(mode="json") for q in result.questions],
        }
        with open(backup_path, "w", encoding="utf-8") as f:
            json.dump(payload, f, ensure_ascii=False, indent=2)

        logger.info(f"Wrote parse backup for document {document.id} to {backup_path}")
        return backup_path

    def _elapsed_ms(self, started: float) -> int:
        return int((time.monotonic() - started) * 1000)

    # === Status ===

    def get_parse_status(self, document_id: int) -> ParseStatusReport:
        """Return status, question total, method and the latest parse log."""
        document = self.database.require_document(document_id)
        return ParseStatusReport(
            document_id=document.id,
            status=DocumentStatus(document.status),
            total_questions=document.total_questions or 0,
            parse_method=document.parse_method,
            latest_log=self.database.get_latest_parse_log(document_id),
        )

    def override_status(
        self, document_id: int, status: Union[DocumentStatus, str], actor: Actor
    ) -> Document:
        """Set a document's status directly for manual recovery.

        Raises:
            PermissionDeniedError: If the actor is neither owner nor elevated
            ValueError: If status is not a known document status
        """
        status = DocumentStatus(status)
        document = self.database.require_document(document_id)
        ensure_can_manage(document, actor)
        updated = self.database.set_status(document_id, status)
        logger.info(
            f"User {actor.user_id} ({actor.role}) set document {document_id} "
            f"from {document.status} to {status.value}"
        )
        return updated
