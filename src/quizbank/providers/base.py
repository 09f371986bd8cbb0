"""Shared request/response handling for provider parsing strategies."""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

import httpx

from quizbank.errors import QuizBankError
from quizbank.models import (
    BusinessKind,
    ContentKind,
    ContentResult,
    ParseResult,
    ProviderConfig,
    ProviderFamily,
    SettingKey,
)
from quizbank.validation.extractor import extract_questions
from quizbank.validation.normalizer import normalize_questions

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 300.0

# Longest text kept verbatim in audit payloads
MAX_LOGGED_TEXT = 500

QUESTION_BANK_PROMPT = """You are a professional question bank parsing assistant. Parse the file content into structured question data.
Requirements:
1. Identify the question type: single choice (single), multiple choice (multiple), true/false (judge), fill in the blank (fill), essay (essay)
2. Extract the question content, options, answer, explanation and related information
3. Return JSON in the following format:
{
  "questions": [
    {
      "type": "single",
      "question_no": "1",
      "content": "Question text",
      "options": ["Option A", "Option B", "Option C", "Option D"],
      "answer": "A",
      "explanation": "Explanation",
      "difficulty": 1,
      "tags": ["Chapter 1", "Tag 2"]
    }
  ]
}

Notes:
- type must be one of: single, multiple, judge, fill, essay
- single and multiple choice questions must have an options array
- the answer of a judge question is "true" or "false"
- difficulty is 1-3, meaning easy, medium, hard
- the first tag names the chapter the question belongs to"""

KNOWLEDGE_BASE_PROMPT = """You are a professional knowledge base parsing assistant. Parse the file content into structured knowledge data.

Requirements:
1. Extract knowledge point titles and content
2. Identify the hierarchy of knowledge points
3. Return JSON in the following format:
{
  "questions": [
    {
      "type": "essay",
      "content": "Knowledge point title",
      "answer": "Detailed knowledge point content",
      "explanation": "Additional notes",
      "tags": ["Tag 1", "Tag 2"]
    }
  ]
}

Notes:
- knowledge entries always use the essay type
- content is the knowledge point title
- answer is the detailed knowledge point content
- make sure the response is valid JSON"""


def sanitize_payload(payload: Any, max_text: int = MAX_LOGGED_TEXT) -> Any:
    """Copy a request payload with base64 blobs replaced by length markers.

    Inline ``data`` blobs and ``data:`` URLs become
    ``[BASE64_DATA_LENGTH: n]``; other strings longer than ``max_text`` are
    truncated.
    """
    if isinstance(payload, dict):
        sanitized = {}
        for key, value in payload.items():
            if key == "data" and isinstance(value, str):
                sanitized[key] = f"[BASE64_DATA_LENGTH: {len(value)}]"
            else:
                sanitized[key] = sanitize_payload(value, max_text)
        return sanitized
    if isinstance(payload, list):
        return [sanitize_payload(item, max_text) for item in payload]
    if isinstance(payload, str):
        if payload.startswith("data:") and ";base64," in payload:
            header, data = payload.split(",", 1)
            return f"{header},[BASE64_DATA_LENGTH: {len(data)}]"
        if len(payload) > max_text:
            return payload[:max_text] + "... [TRUNCATED]"
    return payload


def describe_content(content: ContentResult, file_name: str) -> str:
    """Return the user instruction that accompanies binary content."""
    if content.kind == ContentKind.BASE64_ARRAY:
        return (
            f"Please parse the questions in the following PDF document, "
            f"file name: {file_name}, {content.page_count} pages"
        )
    mime_type = content.mime_type or "image/jpeg"
    source = "PDF document" if "pdf" in mime_type else "image"
    return f"Please parse the questions in the following {source}, file name: {file_name}"


def text_prompt(content: ContentResult, file_name: str) -> str:
    """Return the user prompt that inlines text content."""
    return (
        f"Please parse the following file content:\n\n"
        f"File name: {file_name}\n"
        f"File content:\n"
        f"{content.content}\n\n"
        f"Return the result in JSON format."
    )


def blobs_of(content: ContentResult) -> List[str]:
    if content.kind == ContentKind.BASE64_ARRAY:
        return list(content.content)
    return [content.content]


class ProviderRequestError(QuizBankError):
    """Provider call failed; carries the upstream detail for the error message."""


class ParseStrategy(ABC):
    """Turns adapted file content into questions through one provider family.

    Subclasses build the family's request envelope and pull the model text
    out of its response; everything else (prompt resolution, HTTP, JSON
    extraction, normalization and audit payloads) lives here.
    """

    family: ProviderFamily
    display_name: str

    def __init__(
        self,
        provider: ProviderConfig,
        model_name: str,
        business_kind: BusinessKind = BusinessKind.QUESTION_BANK,
        settings=None,
        timeout: float = DEFAULT_TIMEOUT,
        client: Optional[httpx.Client] = None,
    ):
        """Initialize the strategy.

        Args:
            provider: Provider configuration (endpoint and credential)
            model_name: Model to request
            business_kind: Selects the prompt setting and default prompt
            settings: Object with ``get_prompt_setting(key)``, usually the database
            timeout: HTTP timeout in seconds
            client: Optional shared httpx client; one is created per call otherwise
        """
        self.provider = provider
        self.model_name = model_name
        self.business_kind = BusinessKind(business_kind)
        self.settings = settings
        self.timeout = timeout
        self.client = client

    @abstractmethod
    def build_request(
        self, system_prompt: str, content: ContentResult, file_name: str
    ) -> Tuple[str, Dict[str, str], Dict[str, Any]]:
        """Return (url, headers, json body) for the provider call."""

    @abstractmethod
    def extract_text(self, response_data: Dict[str, Any]) -> str:
        """Return the model's text output from a decoded response body."""

    def default_prompt(self) -> str:
        if self.business_kind == BusinessKind.KNOWLEDGE_BASE:
            return KNOWLEDGE_BASE_PROMPT
        return QUESTION_BANK_PROMPT

    def build_system_prompt(self) -> str:
        """Return the stored custom prompt for the business kind, else the default."""
        if self.settings is None:
            return self.default_prompt()

        key = SettingKey.for_kind(self.business_kind)
        try:
            setting = self.settings.get_prompt_setting(key)
        except Exception as e:
            logger.error(f"Failed to load prompt setting {key.value}, using default: {e}")
            return self.default_prompt()

        if setting is not None and setting.prompt:
            logger.info(f"Using custom prompt from {key.value}")
            return setting.prompt

        logger.info(f"Using default prompt for {self.business_kind.value}")
        return self.default_prompt()

    def parse(self, content: ContentResult, file_name: str) -> ParseResult:
        """Send content to the provider and return normalized questions.

        Never raises: any failure is returned as ``success=False`` with the
        request and response payloads attached.

        Args:
            content: Adapted file content
            file_name: Original file name, quoted in the prompt

        Returns:
            ParseResult
        """
        request_payload: Dict[str, Any] = {
            "content_kind": content.kind.value,
            "mime_type": content.mime_type,
            "file_name": file_name,
            "provider": self.provider.name,
            "model": self.model_name,
        }
        response_payload: Dict[str, Any] = {}

        try:
            system_prompt = self.build_system_prompt()
            url, headers, body = self.build_request(system_prompt, content, file_name)
            request_payload["endpoint"] = url
            request_payload["body"] = sanitize_payload(body)
            logger.info(
                f"{self.display_name} request: model={self.model_name}, "
                f"content={content.kind.value}, pages={content.page_count}"
            )

            response = self._post(url, headers, body)
            response_data = self._decode_body(response)
            response_payload = {"status_code": response.status_code, "body": response_data}

            if response.is_error:
                raise ProviderRequestError(self._http_error_detail(response, response_data))
            if not isinstance(response_data, dict):
                raise ProviderRequestError(
                    f"Response body is not JSON (HTTP {response.status_code})"
                )

            text = self.extract_text(response_data)
            raw_questions = extract_questions(text)
            questions = normalize_questions(raw_questions)

            logger.info(
                f"{self.display_name} parse succeeded: provider={self.provider.name}, "
                f"model={self.model_name}, questions={len(questions)}"
            )
            return ParseResult(
                success=True,
                questions=questions,
                total_questions=len(questions),
                request_payload=request_payload,
                response_payload=response_payload,
            )

        except httpx.TimeoutException as e:
            return self._failure(
                f"request timed out after {self.timeout}s ({e})",
                request_payload,
                response_payload,
            )
        except httpx.HTTPError as e:
            return self._failure(f"{type(e).__name__}: {e}", request_payload, response_payload)
        except Exception as e:
            return self._failure(str(e), request_payload, response_payload)

    def _post(self, url: str, headers: Dict[str, str], body: Dict[str, Any]) -> httpx.Response:
        if self.client is not None:
            return self.client.post(url, headers=headers, json=body, timeout=self.timeout)
        with httpx.Client(timeout=self.timeout) as client:
            return client.post(url, headers=headers, json=body)

    def _decode_body(self, response: httpx.Response) -> Any:
        try:
            return response.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return response.text[:MAX_LOGGED_TEXT * 4]

    def _http_error_detail(self, response: httpx.Response, response_data: Any) -> str:
        if isinstance(response_data, dict):
            error_payload = response_data.get("error")
            if isinstance(error_payload, dict):
                message = error_payload.get("message")
                if isinstance(message, str) and message.strip():
                    return message.strip()
            message = response_data.get("message")
            if isinstance(message, str) and message.strip():
                return message.strip()
        return f"HTTP {response.status_code}"

    def _failure(
        self,
        detail: str,
        request_payload: Dict[str, Any],
        response_payload: Dict[str, Any],
    ) -> ParseResult:
        error = f"{self.display_name} parse failed: {detail}"
        logger.error(f"{error} (provider={self.provider.name}, model={self.model_name})")
        response_payload = dict(response_payload)
        response_payload["error"] = detail
        return ParseResult.failure(error, request_payload, response_payload)


def chat_user_message(content: ContentResult, file_name: str) -> Dict[str, Any]:
    """Build a chat-completions style user message with image_url parts."""
    if content.kind == ContentKind.TEXT:
        return {"role": "user", "content": text_prompt(content, file_name)}

    default_mime = "image/png" if content.kind == ContentKind.BASE64_ARRAY else "image/jpeg"
    mime_type = content.mime_type or default_mime
    parts: List[Dict[str, Any]] = [{"type": "text", "text": describe_content(content, file_name)}]
    for blob in blobs_of(content):
        parts.append(
            {"type": "image_url", "image_url": {"url": f"data:{mime_type};base64,{blob}"}}
        )
    return {"role": "user", "content": parts}


def collect_text_parts(content: Any) -> Optional[str]:
    """Join message content that is a string or a list of text parts."""
    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        return None

    collected = []
    for part in content:
        if isinstance(part, str) and part.strip():
            collected.append(part.strip())
        elif isinstance(part, dict):
            text = part.get("text")
            if isinstance(text, str) and text.strip():
                collected.append(text.strip())
    return "\n".join(collected) if collected else None
