"""Pydantic models for QuizBank data structures."""

from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field

# Roles allowed to act on documents they do not own
ELEVATED_ROLES = ("admin", "super_admin")


class ProviderFamily(str, Enum):
    """Enumeration of supported AI provider families."""

    OPENAI = "openai"
    GEMINI = "gemini"
    QWEN = "qwen"
    CUSTOM = "custom"


class DocumentStatus(str, Enum):
    """Parse lifecycle of an uploaded document."""

    PENDING = "pending"
    PARSING = "parsing"
    COMPLETED = "completed"
    FAILED = "failed"


class BusinessKind(str, Enum):
    """What an uploaded document is meant to become."""

    QUESTION_BANK = "question_bank"
    KNOWLEDGE_BASE = "knowledge_base"


class QuestionType(str, Enum):
    """Closed set of question types."""

    SINGLE = "single"
    MULTIPLE = "multiple"
    JUDGE = "judge"
    FILL = "fill"
    ESSAY = "essay"


class ParseOutcome(str, Enum):
    """Outcome recorded on a parse log entry."""

    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class ContentKind(str, Enum):
    """Shape of adapted file content handed to a provider."""

    TEXT = "text"
    BASE64 = "base64"
    BASE64_ARRAY = "base64_array"


class SettingKey(str, Enum):
    """Known keys of the settings store."""

    QUESTION_PARSE_FORMAT = "question_parse_format"
    KNOWLEDGE_FORMAT = "knowledge_format"

    @classmethod
    def for_kind(cls, kind: BusinessKind) -> "SettingKey":
        """Return the prompt setting key used for a business kind."""
        if kind == BusinessKind.KNOWLEDGE_BASE:
            return cls.KNOWLEDGE_FORMAT
        return cls.QUESTION_PARSE_FORMAT


class ParsedQuestion(BaseModel):
    """Canonical, provider-agnostic question record."""

    type: QuestionType = Field(..., description="Question type")
    content: str = Field(..., description="Question stem")
    options: Optional[List[str]] = Field(default=None, description="Ordered answer options")
    answer: str = Field(default="", description="Answer text")
    explanation: Optional[str] = Field(default=None, description="Explanation of the answer")
    difficulty: int = Field(default=1, ge=1, le=3, description="Difficulty from 1 (easy) to 3 (hard)")
    tags: Optional[List[str]] = Field(default=None, description="Tags; the first one names the chapter")
    question_no: Optional[str] = Field(default=None, description="Human-facing question number")


class ContentResult(BaseModel):
    """File content adapted for a provider."""

    kind: ContentKind = Field(..., description="Content shape")
    content: Union[str, List[str]] = Field(..., description="Text, base64 blob, or list of blobs")
    mime_type: Optional[str] = Field(default=None, description="MIME type of the content")

    @property
    def page_count(self) -> int:
        """Number of pages or images represented by this content."""
        if self.kind == ContentKind.BASE64_ARRAY:
            return len(self.content)
        return 1


class ParseResult(BaseModel):
    """Outcome of a strategy parse call, including audit payloads."""

    success: bool
    questions: List[ParsedQuestion] = Field(default_factory=list)
    total_questions: int = 0
    error: Optional[str] = None
    request_payload: Optional[Dict[str, Any]] = None
    response_payload: Optional[Dict[str, Any]] = None

    @classmethod
    def failure(
        cls,
        error: str,
        request_payload: Optional[Dict[str, Any]] = None,
        response_payload: Optional[Dict[str, Any]] = None,
    ) -> "ParseResult":
        """Build a failed result."""
        return cls(
            success=False,
            error=error,
            request_payload=request_payload,
            response_payload=response_payload,
        )


class ProviderConfig(BaseModel):
    """Read-only view of a registered AI provider."""

    id: int
    name: str
    family: ProviderFamily
    endpoint: str
    api_key: str
    description: Optional[str] = None
    is_active: bool = True


class ParsePromptSetting(BaseModel):
    """Stored custom system prompt for one business kind.

    Unknown payload fields are ignored; a missing or empty ``prompt`` means
    the built-in default prompt is used.
    """

    prompt: Optional[str] = Field(default=None, description="Custom system prompt")


class Actor(BaseModel):
    """Caller identity for ownership- and role-gated operations."""

    user_id: int
    role: str = "user"

    @property
    def is_elevated(self) -> bool:
        return self.role in ELEVATED_ROLES


class ParseTriggerResult(BaseModel):
    """Response to a parse request."""

    started: bool
    message: str
    task_id: str = ""


class ChapterGroup(BaseModel):
    """Questions sharing a chapter name, with their assigned order."""

    name: str
    order: int
    questions: List[ParsedQuestion] = Field(default_factory=list)


class ParseStatusReport(BaseModel):
    """Current parse state of a document."""

    document_id: int
    status: DocumentStatus
    total_questions: int
    parse_method: Optional[str] = None
    latest_log: Optional[Dict[str, Any]] = None
