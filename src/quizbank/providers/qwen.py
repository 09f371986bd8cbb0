"""Input/parameters envelope provider strategy."""

from typing import Any, Dict, Tuple

from quizbank.errors import ExtractionError
from quizbank.models import ContentResult, ProviderFamily
from quizbank.providers.base import ParseStrategy, chat_user_message, collect_text_parts


class QwenParseStrategy(ParseStrategy):
    """Posts chat messages wrapped in ``input``, reads ``output.choices``."""

    family = ProviderFamily.QWEN
    display_name = "Qwen"

    def build_request(
        self, system_prompt: str, content: ContentResult, file_name: str
    ) -> Tuple[str, Dict[str, str], Dict[str, Any]]:
        headers = {
            "Authorization": f"Bearer {self.provider.api_key}",
            "Content-Type": "application/json",
        }
        body = {
            "model": self.model_name,
            "input": {
                "messages": [
                    {"role": "system", "content": system_prompt},
                    chat_user_message(content, file_name),
                ],
            },
            "parameters": {
                "temperature": 0.3,
                "result_format": "message",
            },
        }
        return self.provider.endpoint, headers, body

    def extract_text(self, response_data: Dict[str, Any]) -> str:
        output = response_data.get("output") or {}
        choices = output.get("choices") or []
        if not choices or not isinstance(choices[0], dict):
            raise ExtractionError("Response has no output choices")
        message = choices[0].get("message") or {}
        text = collect_text_parts(message.get("content"))
        if text is None:
            raise ExtractionError("Response message has no content")
        return text
