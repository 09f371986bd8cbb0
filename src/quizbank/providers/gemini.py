"""Generate-content style provider strategy."""

from typing import Any, Dict, List, Tuple

from quizbank.errors import ExtractionError
from quizbank.models import ContentKind, ContentResult, ProviderFamily
from quizbank.providers.base import ParseStrategy, blobs_of, describe_content, text_prompt


class GeminiParseStrategy(ParseStrategy):
    """Posts ``contents[].parts`` to ``models/{model}:generateContent``.

    The system prompt is prepended to the first text part; binary content is
    attached as ``inline_data`` parts.
    """

    family = ProviderFamily.GEMINI
    display_name = "Gemini"

    generation_config = {
        "temperature": 0.3,
        "topK": 1,
        "topP": 1,
        "maxOutputTokens": 8192,
    }

    def build_parts(
        self, system_prompt: str, content: ContentResult, file_name: str
    ) -> List[Dict[str, Any]]:
        if content.kind == ContentKind.TEXT:
            return [{"text": f"{system_prompt}\n\n{text_prompt(content, file_name)}"}]

        default_mime = "image/png" if content.kind == ContentKind.BASE64_ARRAY else "image/jpeg"
        mime_type = content.mime_type or default_mime
        parts: List[Dict[str, Any]] = [
            {"text": f"{system_prompt}\n\n{describe_content(content, file_name)}"}
        ]
        for blob in blobs_of(content):
            parts.append({"inline_data": {"mime_type": mime_type, "data": blob}})
        return parts

    def build_request(
        self, system_prompt: str, content: ContentResult, file_name: str
    ) -> Tuple[str, Dict[str, str], Dict[str, Any]]:
        url = f"{self.provider.endpoint.rstrip('/')}/v1beta/models/{self.model_name}:generateContent"
        headers = {
            "Content-Type": "application/json",
            "x-goog-api-key": self.provider.api_key,
        }
        body = {
            "contents": [{"parts": self.build_parts(system_prompt, content, file_name)}],
            "generationConfig": dict(self.generation_config),
        }
        return url, headers, body

    def extract_text(self, response_data: Dict[str, Any]) -> str:
        candidates = response_data.get("candidates") or []
        if not candidates or not isinstance(candidates[0], dict):
            raise ExtractionError("Response has no candidates")

        parts = (candidates[0].get("content") or {}).get("parts") or []
        texts = [
            part["text"]
            for part in parts
            if isinstance(part, dict) and isinstance(part.get("text"), str)
        ]
        if not texts:
            raise ExtractionError("Response candidate has no text")
        return "\n".join(texts)
