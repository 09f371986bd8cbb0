"""Extraction of the question payload from provider response text."""

import json
import logging
import re
from typing import Any, Dict, List

from quizbank.errors import ExtractionError

logger = logging.getLogger(__name__)

_FENCED_JSON = re.compile(r"```json\s*([\s\S]*?)\s*```")
_OUTERMOST_OBJECT = re.compile(r"\{[\s\S]*\}")


def extract_json_object(text: str) -> Dict[str, Any]:
    """Pull a JSON object out of model output.

    Accepts a bare JSON document, a markdown ```json fence, or an object
    embedded in surrounding prose (outermost braces).

    Args:
        text: Raw model output

    Returns:
        Parsed JSON object

    Raises:
        ExtractionError: If no JSON object can be found or decoded
    """
    if not isinstance(text, str) or not text.strip():
        raise ExtractionError("Response contains no text")

    stripped = text.strip()
    try:
        data = json.loads(stripped)
    except json.JSONDecodeError:
        match = _FENCED_JSON.search(stripped) or _OUTERMOST_OBJECT.search(stripped)
        if not match:
            raise ExtractionError("No JSON object found in response text")
        candidate = match.group(1) if match.re is _FENCED_JSON else match.group(0)
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError as e:
            raise ExtractionError(f"Response JSON is malformed: {e}") from e

    if not isinstance(data, dict):
        raise ExtractionError(f"Expected a JSON object, got {type(data).__name__}")
    return data


def extract_questions(text: str) -> List[Any]:
    """Return the raw ``questions`` list from model output.

    Raises:
        ExtractionError: If the payload has no ``questions`` list
    """
    data = extract_json_object(text)
    questions = data.get("questions")
    if not isinstance(questions, list):
        raise ExtractionError("Invalid response format: missing questions array")
    logger.debug(f"Extracted {len(questions)} raw questions")
    return questions
