"""SQLAlchemy ORM models for question bank storage."""

from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class Document(Base):
    """Uploaded source document and its parse lifecycle."""

    __tablename__ = "documents"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    business_kind = Column(String(20), nullable=False, default="question_bank")
    original_filename = Column(String(500), nullable=False)
    file_path = Column(String(1000), nullable=False)
    file_size = Column(Integer, default=0)
    mime_type = Column(String(100))
    status = Column(String(20), nullable=False, default="pending", index=True)
    provider_id = Column(Integer, ForeignKey("provider_configs.id", ondelete="SET NULL"))
    model_name = Column(String(100))
    parse_method = Column(String(100))
    total_questions = Column(Integer, default=0)
    parse_json_path = Column(String(1000))
    created_by = Column(Integer, nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class ParseLog(Base):
    """Append-only audit record of one parse attempt."""

    __tablename__ = "parse_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    document_id = Column(
        Integer, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True
    )
    status = Column(String(20), nullable=False)
    method = Column(String(100))
    total_pages = Column(Integer, default=0)
    parsed_pages = Column(Integer, default=0)
    processing_time_ms = Column(Integer, default=0)
    error_message = Column(Text)
    request_data = Column(Text)
    response_data = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)


class Chapter(Base):
    """Named, ordered group of questions within a document."""

    __tablename__ = "question_chapters"

    id = Column(Integer, primary_key=True, autoincrement=True)
    document_id = Column(
        Integer, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True
    )
    chapter_name = Column(String(255), nullable=False)
    chapter_order = Column(Integer, nullable=False)
    question_count = Column(Integer, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("document_id", "chapter_name", name="uq_document_chapter"),
    )


class Question(Base):
    """Persisted question belonging to one chapter of one document."""

    __tablename__ = "questions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    document_id = Column(
        Integer, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True
    )
    chapter_id = Column(
        Integer, ForeignKey("question_chapters.id", ondelete="CASCADE"), nullable=False, index=True
    )
    question_no = Column(String(50))
    type = Column(String(20), nullable=False)
    content = Column(Text, nullable=False)
    options = Column(Text)  # JSON array
    answer = Column(Text, nullable=False)
    explanation = Column(Text)
    difficulty = Column(Integer, default=1)
    tags = Column(Text)  # JSON array
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class ProviderConfigRecord(Base):
    """Registered AI provider endpoint and credential."""

    __tablename__ = "provider_configs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False, unique=True)
    family = Column(String(20), nullable=False)
    endpoint = Column(String(500), nullable=False)
    api_key = Column(String(500), nullable=False)
    description = Column(Text)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class SystemSetting(Base):
    """Key-value settings store with a JSON payload."""

    __tablename__ = "system_settings"

    key = Column(String(50), primary_key=True)
    payload = Column(Text)
    updated_by = Column(Integer)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
