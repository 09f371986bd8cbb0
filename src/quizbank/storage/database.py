"""Storage handle for documents, parse logs, providers and settings."""

import json
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError
from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from quizbank.errors import DocumentNotFoundError, ProviderConfigError
from quizbank.models import (
    DocumentStatus,
    ParseOutcome,
    ParsePromptSetting,
    ProviderConfig,
    ProviderFamily,
    SettingKey,
)
from quizbank.storage.models import (
    Base,
    Chapter,
    Document,
    ParseLog,
    ProviderConfigRecord,
    Question,
    SystemSetting,
)

logger = logging.getLogger(__name__)

# Statuses a document may be claimed for parsing from
CLAIMABLE_STATUSES = (DocumentStatus.PENDING.value, DocumentStatus.FAILED.value)

DEFAULT_MAX_LOG_PAYLOAD_CHARS = 200_000


def serialize_payload(payload: Any, max_chars: int = DEFAULT_MAX_LOG_PAYLOAD_CHARS) -> Optional[str]:
    """Serialize an audit payload to JSON text, truncated to ``max_chars``.

    Args:
        payload: JSON-compatible payload, or None
        max_chars: Maximum stored length

    Returns:
        JSON string, or None if payload is None
    """
    if payload is None:
        return None
    serialized = json.dumps(payload, ensure_ascii=False, default=str)
    if len(serialized) > max_chars:
        logger.debug(f"Truncating audit payload from {len(serialized)} to {max_chars} chars")
        serialized = serialized[:max_chars] + "... [TRUNCATED]"
    return serialized


def _load_payload(raw: Optional[str]) -> Any:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        # Truncated payloads are kept as text
        return raw


class QuestionBankDatabase:
    """Explicitly constructed storage handle shared by all pipeline components.

    Every method opens and closes its own session, so no transaction spans
    more than one logical operation.
    """

    def __init__(
        self,
        database_url: str,
        max_log_payload_chars: int = DEFAULT_MAX_LOG_PAYLOAD_CHARS,
    ):
        """Initialize the storage handle.

        Args:
            database_url: SQLAlchemy database URL (e.g. ``sqlite:///quizbank.db``)
            max_log_payload_chars: Size bound for stored request/response payloads
        """
        self.database_url = database_url
        self.max_log_payload_chars = max_log_payload_chars
        self.engine = create_engine(database_url)
        self.session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)

    def create_tables(self) -> None:
        """Create all database tables if they don't exist."""
        Base.metadata.create_all(self.engine)

    def close(self) -> None:
        """Dispose of pooled connections."""
        self.engine.dispose()

    # === Documents ===

    def create_document(
        self,
        name: str,
        original_filename: str,
        file_path: str,
        file_size: int,
        created_by: int,
        business_kind: str = "question_bank",
        description: Optional[str] = None,
        mime_type: Optional[str] = None,
    ) -> Document:
        """Insert a new document in ``pending`` status.

        Returns:
            The created Document (detached)
        """
        session = self.session_factory()
        try:
            document = Document(
                name=name,
                description=description,
                business_kind=business_kind,
                original_filename=original_filename,
                file_path=file_path,
                file_size=file_size,
                mime_type=mime_type,
                status=DocumentStatus.PENDING.value,
                total_questions=0,
                created_by=created_by,
            )
            session.add(document)
            session.commit()
            session.expunge(document)
            logger.info(f"Created document {document.id} ({original_filename})")
            return document
        finally:
            session.close()

    def get_document(self, document_id: int) -> Optional[Document]:
        """Retrieve a document by ID.

        Args:
            document_id: Document identifier

        Returns:
            Document if found, None otherwise
        """
        session = self.session_factory()
        try:
            result = session.get(Document, document_id)
            if result:
                session.expunge(result)
            return result
        finally:
            session.close()

    def require_document(self, document_id: int) -> Document:
        """Like :meth:`get_document` but raise if the document is missing."""
        document = self.get_document(document_id)
        if document is None:
            raise DocumentNotFoundError(f"Document {document_id} not found")
        return document

    def list_documents(
        self, status: Optional[str] = None, owner_id: Optional[int] = None
    ) -> List[Document]:
        """List documents, newest first, optionally filtered by status and owner."""
        session = self.session_factory()
        try:
            query = session.query(Document)
            if status:
                query = query.filter(Document.status == status)
            if owner_id is not None:
                query = query.filter(Document.created_by == owner_id)
            results = query.order_by(Document.created_at.desc(), Document.id.desc()).all()
            for result in results:
                session.expunge(result)
            return results
        finally:
            session.close()

    def claim_for_parsing(self, document_id: int, provider_id: int, model_name: str) -> bool:
        """Atomically move a document from pending/failed to parsing.

        The update only applies when the stored status is still claimable,
        so of two concurrent callers at most one wins.

        Returns:
            True if this caller claimed the document
        """
        session = self.session_factory()
        try:
            updated = (
                session.query(Document)
                .filter(Document.id == document_id, Document.status.in_(CLAIMABLE_STATUSES))
                .update(
                    {
                        Document.status: DocumentStatus.PARSING.value,
                        Document.provider_id: provider_id,
                        Document.model_name: model_name,
                        Document.updated_at: datetime.utcnow(),
                    },
                    synchronize_session=False,
                )
            )
            session.commit()
            return updated == 1
        finally:
            session.close()

    def release_claim(self, document_id: int, previous_status: str) -> bool:
        """Return a document from parsing to ``previous_status`` if still parsing."""
        session = self.session_factory()
        try:
            updated = (
                session.query(Document)
                .filter(
                    Document.id == document_id,
                    Document.status == DocumentStatus.PARSING.value,
                )
                .update(
                    {Document.status: previous_status, Document.updated_at: datetime.utcnow()},
                    synchronize_session=False,
                )
            )
            session.commit()
            return updated == 1
        finally:
            session.close()

    def mark_completed(
        self,
        document_id: int,
        total_questions: int,
        parse_method: Optional[str],
        parse_json_path: Optional[str],
    ) -> None:
        """Record a successful parse on the document."""
        self._update_document(
            document_id,
            status=DocumentStatus.COMPLETED.value,
            total_questions=total_questions,
            parse_method=parse_method,
            parse_json_path=parse_json_path,
        )
        logger.info(f"Document {document_id} completed with {total_questions} questions")

    def mark_failed(self, document_id: int, parse_method: Optional[str] = None) -> None:
        """Record a failed parse on the document."""
        fields: Dict[str, Any] = {"status": DocumentStatus.FAILED.value}
        if parse_method:
            fields["parse_method"] = parse_method
        self._update_document(document_id, **fields)
        logger.info(f"Document {document_id} marked failed")

    def set_status(self, document_id: int, status: DocumentStatus) -> Document:
        """Set a document's status directly (manual recovery)."""
        return self._update_document(document_id, status=DocumentStatus(status).value)

    def _update_document(self, document_id: int, **fields: Any) -> Document:
        session = self.session_factory()
        try:
            document = session.get(Document, document_id)
            if document is None:
                raise DocumentNotFoundError(f"Document {document_id} not found")
            for key, value in fields.items():
                setattr(document, key, value)
            document.updated_at = datetime.utcnow()
            session.commit()
            session.expunge(document)
            return document
        finally:
            session.close()

    def delete_document(self, document_id: int) -> Document:
        """Delete a document with its chapters, questions and parse logs.

        Returns:
            The deleted Document (detached)
        """
        session = self.session_factory()
        try:
            document = session.get(Document, document_id)
            if document is None:
                raise DocumentNotFoundError(f"Document {document_id} not found")
            session.query(Question).filter(Question.document_id == document_id).delete(
                synchronize_session=False
            )
            session.query(Chapter).filter(Chapter.document_id == document_id).delete(
                synchronize_session=False
            )
            session.query(ParseLog).filter(ParseLog.document_id == document_id).delete(
                synchronize_session=False
            )
            session.delete(document)
            session.commit()
            logger.info(f"Deleted document {document_id}")
            return document
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # === Parse logs ===

    def log_parse(
        self,
        document_id: int,
        status: ParseOutcome,
        method: Optional[str],
        error_message: Optional[str] = None,
        total_pages: int = 0,
        parsed_pages: int = 0,
        processing_time_ms: int = 0,
        request_data: Any = None,
        response_data: Any = None,
    ) -> int:
        """Append a parse log entry.

        Args:
            document_id: Document the attempt belongs to
            status: Outcome of the attempt
            method: Provider/method label
            error_message: Error text for failed attempts
            total_pages: Pages in the adapted content
            parsed_pages: Pages successfully processed
            processing_time_ms: Wall time of the attempt
            request_data: Outbound request payload for forensic replay
            response_data: Inbound response payload

        Returns:
            ID of the new log entry
        """
        session = self.session_factory()
        try:
            entry = ParseLog(
                document_id=document_id,
                status=ParseOutcome(status).value,
                method=method,
                error_message=error_message,
                total_pages=total_pages,
                parsed_pages=parsed_pages,
                processing_time_ms=processing_time_ms,
                request_data=serialize_payload(request_data, self.max_log_payload_chars),
                response_data=serialize_payload(response_data, self.max_log_payload_chars),
            )
            session.add(entry)
            session.commit()
            return entry.id
        finally:
            session.close()

    def get_parse_logs(self, document_id: int) -> List[Dict]:
        """Return all parse logs of a document, newest first."""
        session = self.session_factory()
        try:
            entries = (
                session.query(ParseLog)
                .filter(ParseLog.document_id == document_id)
                .order_by(ParseLog.created_at.desc(), ParseLog.id.desc())
                .all()
            )
            return [self._log_to_dict(entry) for entry in entries]
        finally:
            session.close()

    def get_latest_parse_log(self, document_id: int) -> Optional[Dict]:
        """Return the most recent parse log of a document, if any."""
        logs = self.get_parse_logs(document_id)
        return logs[0] if logs else None

    def _log_to_dict(self, entry: ParseLog) -> Dict:
        return {
            "id": entry.id,
            "document_id": entry.document_id,
            "status": entry.status,
            "method": entry.method,
            "total_pages": entry.total_pages,
            "parsed_pages": entry.parsed_pages,
            "processing_time_ms": entry.processing_time_ms,
            "error_message": entry.error_message,
            "request_data": _load_payload(entry.request_data),
            "response_data": _load_payload(entry.response_data),
            "created_at": entry.created_at.isoformat() if entry.created_at else None,
        }

    # === Provider registry ===

    def add_provider(
        self,
        name: str,
        family: ProviderFamily,
        endpoint: str,
        api_key: str,
        description: Optional[str] = None,
        is_active: bool = True,
    ) -> ProviderConfig:
        """Register a provider.

        Raises:
            ProviderConfigError: If a provider with the same name exists
        """
        session = self.session_factory()
        try:
            record = ProviderConfigRecord(
                name=name,
                family=ProviderFamily(family).value,
                endpoint=endpoint,
                api_key=api_key,
                description=description or None,
                is_active=is_active,
            )
            session.add(record)
            session.commit()
            logger.info(f"Registered provider {record.id} ({name}, {record.family})")
            return self._provider_to_model(record)
        except IntegrityError as e:
            session.rollback()
            raise ProviderConfigError(f"Provider name already exists: {name}") from e
        finally:
            session.close()

    def get_provider_config_by_id(self, provider_id: int) -> Optional[ProviderConfig]:
        """Return a provider configuration, or None if it does not exist."""
        session = self.session_factory()
        try:
            record = session.get(ProviderConfigRecord, provider_id)
            return self._provider_to_model(record) if record else None
        finally:
            session.close()

    def list_providers(self) -> List[ProviderConfig]:
        session = self.session_factory()
        try:
            records = session.query(ProviderConfigRecord).order_by(ProviderConfigRecord.id).all()
            return [self._provider_to_model(record) for record in records]
        finally:
            session.close()

    def set_provider_active(self, provider_id: int, is_active: bool) -> ProviderConfig:
        """Activate or deactivate a provider."""
        session = self.session_factory()
        try:
            record = session.get(ProviderConfigRecord, provider_id)
            if record is None:
                raise ProviderConfigError(f"Provider {provider_id} not found")
            record.is_active = is_active
            session.commit()
            return self._provider_to_model(record)
        finally:
            session.close()

    def delete_provider(self, provider_id: int) -> None:
        session = self.session_factory()
        try:
            record = session.get(ProviderConfigRecord, provider_id)
            if record is None:
                raise ProviderConfigError(f"Provider {provider_id} not found")
            session.query(Document).filter(Document.provider_id == provider_id).update(
                {Document.provider_id: None}, synchronize_session=False
            )
            session.delete(record)
            session.commit()
            logger.info(f"Deleted provider {provider_id}")
        finally:
            session.close()

    def _provider_to_model(self, record: ProviderConfigRecord) -> ProviderConfig:
        return ProviderConfig(
            id=record.id,
            name=record.name,
            family=ProviderFamily(record.family),
            endpoint=record.endpoint,
            api_key=record.api_key,
            description=record.description,
            is_active=bool(record.is_active),
        )

    # === Settings ===

    def get_prompt_setting(self, key: SettingKey) -> Optional[ParsePromptSetting]:
        """Return the stored prompt setting for a key.

        An unparseable payload is treated as absent.
        """
        session = self.session_factory()
        try:
            record = session.get(SystemSetting, SettingKey(key).value)
            if record is None or not record.payload:
                return None
            try:
                return ParsePromptSetting.model_validate_json(record.payload)
            except ValidationError as e:
                logger.warning(f"Ignoring malformed setting payload for {record.key}: {e}")
                return None
        finally:
            session.close()

    def save_prompt_setting(
        self, key: SettingKey, setting: ParsePromptSetting, updated_by: Optional[int] = None
    ) -> ParsePromptSetting:
        """Insert or replace the prompt setting for a key."""
        session = self.session_factory()
        try:
            key_value = SettingKey(key).value
            record = session.get(SystemSetting, key_value)
            if record is None:
                record = SystemSetting(key=key_value)
                session.add(record)
            record.payload = setting.model_dump_json()
            record.updated_by = updated_by
            record.updated_at = datetime.utcnow()
            session.commit()
            logger.info(f"Saved setting {key_value}")
            return setting
        finally:
            session.close()

    # === Invariant checks ===

    def count_questions(self, document_id: int) -> int:
        session = self.session_factory()
        try:
            return session.query(Question).filter(Question.document_id == document_id).count()
        finally:
            session.close()

    def verify_counts(self, document_ids: Optional[Iterable[int]] = None) -> List[Dict]:
        """Check chapter, document and question counts of completed documents.

        Returns:
            One dict per inconsistent document with the three counts
        """
        session = self.session_factory()
        try:
            query = session.query(Document).filter(
                Document.status == DocumentStatus.COMPLETED.value
            )
            if document_ids is not None:
                query = query.filter(Document.id.in_(list(document_ids)))

            mismatches = []
            for document in query.all():
                question_rows = (
                    session.query(Question).filter(Question.document_id == document.id).count()
                )
                chapter_sum = sum(
                    chapter.question_count or 0
                    for chapter in session.query(Chapter).filter(
                        Chapter.document_id == document.id
                    )
                )
                if not (document.total_questions == question_rows == chapter_sum):
                    mismatches.append(
                        {
                            "document_id": document.id,
                            "total_questions": document.total_questions,
                            "question_rows": question_rows,
                            "chapter_sum": chapter_sum,
                        }
                    )
            return mismatches
        finally:
            session.close()
