"""Normalization of raw provider question objects into ParsedQuestion models."""

import logging
from typing import Any, List, Optional

from pydantic import ValidationError

from quizbank.models import ParsedQuestion, QuestionType

logger = logging.getLogger(__name__)

# Spellings models commonly use for the canonical question types
TYPE_ALIASES = {
    "single_choice": QuestionType.SINGLE,
    "multiple_choice": QuestionType.MULTIPLE,
    "multi": QuestionType.MULTIPLE,
    "true_false": QuestionType.JUDGE,
    "judgement": QuestionType.JUDGE,
    "judgment": QuestionType.JUDGE,
    "blank": QuestionType.FILL,
    "fill_blank": QuestionType.FILL,
    "short_answer": QuestionType.ESSAY,
}


def normalize_type(value: Any) -> Optional[QuestionType]:
    """Map a raw type value to a QuestionType, or None if unrecognized."""
    if not isinstance(value, str):
        return None
    key = value.strip().lower()
    try:
        return QuestionType(key)
    except ValueError:
        return TYPE_ALIASES.get(key)


def normalize_string_list(raw: Any, field_name: str) -> Optional[List[str]]:
    """Coerce a string or list value into a list of strings.

    Args:
        raw: Raw field value
        field_name: Field name for log messages

    Returns:
        List of non-empty strings, or None if nothing usable remains
    """
    if raw is None or raw == "" or raw == []:
        return None
    if isinstance(raw, str):
        logger.debug(f"Converting {field_name} string to list: {raw[:50]}")
        separator = "," if field_name == "tags" else "\n"
        items = [part.strip() for part in raw.split(separator)]
    elif isinstance(raw, list):
        items = [str(item).strip() for item in raw if item is not None]
    else:
        logger.warning(f"Ignoring {field_name} with unexpected type: {type(raw)}")
        return None
    items = [item for item in items if item]
    return items or None


def normalize_difficulty(raw: Any) -> int:
    """Clamp a raw difficulty into the 1..3 range, defaulting to 1."""
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return 1
    return min(max(value, 1), 3)


def normalize_answer(raw: Any) -> str:
    if raw is None:
        return ""
    if isinstance(raw, list):
        return "".join(str(item) for item in raw)
    if isinstance(raw, bool):
        return "true" if raw else "false"
    return str(raw)


def normalize_question(raw: Any) -> Optional[ParsedQuestion]:
    """Build a ParsedQuestion from one raw question object.

    Args:
        raw: Raw question dict from a provider response

    Returns:
        ParsedQuestion, or None if the object is unusable
    """
    if not isinstance(raw, dict):
        logger.warning(f"Removed non-dict object from questions: {type(raw)}")
        return None

    question_type = normalize_type(raw.get("type"))
    content = raw.get("content")
    if question_type is None or not isinstance(content, str) or not content.strip():
        logger.warning(
            f"Removed malformed question object (type={raw.get('type')!r}, "
            f"has_content={bool(content)})"
        )
        return None

    question_no = raw.get("question_no", raw.get("questionNo"))
    explanation = raw.get("explanation")

    try:
        return ParsedQuestion(
            type=question_type,
            content=content.strip(),
            options=normalize_string_list(raw.get("options"), "options"),
            answer=normalize_answer(raw.get("answer")),
            explanation=str(explanation) if explanation not in (None, "") else None,
            difficulty=normalize_difficulty(raw.get("difficulty")),
            tags=normalize_string_list(raw.get("tags"), "tags"),
            question_no=str(question_no) if question_no not in (None, "") else None,
        )
    except ValidationError as e:
        logger.warning(f"Removed question failing validation: {e}")
        return None


def normalize_questions(raw_questions: List[Any]) -> List[ParsedQuestion]:
    """Normalize a raw questions array, dropping malformed entries.

    Args:
        raw_questions: Raw ``questions`` list from a provider response

    Returns:
        Cleaned list of ParsedQuestion models, in input order
    """
    questions = []
    for raw in raw_questions:
        question = normalize_question(raw)
        if question is not None:
            questions.append(question)

    removed_count = len(raw_questions) - len(questions)
    if removed_count > 0:
        logger.info(
            f"Cleaned questions array: removed {removed_count} malformed objects, "
            f"kept {len(questions)} valid questions"
        )
    return questions
