"""Grouping of parsed questions into ordered chapters."""

import logging
import re
from functools import cmp_to_key
from typing import Dict, List

from quizbank.models import ChapterGroup, ParsedQuestion

logger = logging.getLogger(__name__)

UNCLASSIFIED_CHAPTER = "unclassified"

_DIGIT_RUN = re.compile(r"\d+")


def chapter_name_for(question: ParsedQuestion) -> str:
    """Return the chapter a question belongs to: its first tag, or unclassified."""
    if question.tags:
        name = str(question.tags[0]).strip()
        if name:
            return name
    return UNCLASSIFIED_CHAPTER


def compare_chapter_names(a: str, b: str) -> int:
    """Compare chapter names in natural order.

    When both names contain a digit run, the first runs are compared
    numerically ("Chapter 2" before "Chapter 10"); equal numbers and names
    without digits fall back to plain string comparison.

    Returns:
        Negative, zero or positive like a classic cmp function
    """
    match_a = _DIGIT_RUN.search(a)
    match_b = _DIGIT_RUN.search(b)
    if match_a and match_b:
        num_a = int(match_a.group())
        num_b = int(match_b.group())
        if num_a != num_b:
            return -1 if num_a < num_b else 1
    if a == b:
        return 0
    return -1 if a < b else 1


def segment_questions(questions: List[ParsedQuestion]) -> List[ChapterGroup]:
    """Group questions by chapter name and assign 1-based chapter orders.

    Questions keep their input order inside each chapter.

    Args:
        questions: Flat list of parsed questions

    Returns:
        Chapter groups sorted by chapter order
    """
    grouped: Dict[str, List[ParsedQuestion]] = {}
    for question in questions:
        grouped.setdefault(chapter_name_for(question), []).append(question)

    names = sorted(grouped, key=cmp_to_key(compare_chapter_names))
    groups = [
        ChapterGroup(name=name, order=index, questions=grouped[name])
        for index, name in enumerate(names, start=1)
    ]

    logger.debug(f"Segmented {len(questions)} questions into {len(groups)} chapters")
    return groups


def flatten_groups(groups: List[ChapterGroup]) -> List[ParsedQuestion]:
    """Concatenate chapter groups back into a flat list in chapter order."""
    flattened = []
    for group in sorted(groups, key=lambda g: g.order):
        flattened.extend(group.questions)
    return flattened
