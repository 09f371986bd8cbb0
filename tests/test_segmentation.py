"""Tests for chapter segmentation."""

from quizbank.models import ParsedQuestion
from quizbank.parsing.segmentation import (
    UNCLASSIFIED_CHAPTER,
    chapter_name_for,
    compare_chapter_names,
    flatten_groups,
    segment_questions,
)


def make_question(content, tags=None):
    return ParsedQuestion(type="single", content=content, answer="A", tags=tags)


def test_numeric_chapter_ordering():
    """Test that chapter numbers are compared numerically."""
    questions = [
        make_question("q1", ["第2章"]),
        make_question("q2", ["第10章"]),
        make_question("q3", ["第1章"]),
    ]

    groups = segment_questions(questions)
    orders = {g.name: g.order for g in groups}

    assert orders == {"第1章": 1, "第2章": 2, "第10章": 3}


def test_untagged_questions_are_unclassified():
    """Test that missing, empty and blank tags fall into the unclassified chapter."""
    assert chapter_name_for(make_question("a")) == UNCLASSIFIED_CHAPTER
    assert chapter_name_for(make_question("b", [])) == UNCLASSIFIED_CHAPTER
    assert chapter_name_for(make_question("c", ["  "])) == UNCLASSIFIED_CHAPTER
    assert chapter_name_for(make_question("d", [" Unit1 ", "x"])) == "Unit1"


def test_lexicographic_fallback():
    """Test that names without digits sort as plain strings."""
    assert compare_chapter_names("Algebra", "Geometry") < 0
    assert compare_chapter_names("Geometry", "Algebra") > 0
    assert compare_chapter_names("Unit1", "unclassified") < 0
    assert compare_chapter_names("Chapter 2", "Chapter 10") < 0
    assert compare_chapter_names("Part 3", "Part 3") == 0


def test_equal_numbers_break_ties_lexicographically():
    """Test that names with the same first number are still ordered deterministically."""
    assert compare_chapter_names("Chapter 1 Intro", "Chapter 1 Basics") > 0


def test_orders_are_contiguous_and_insertion_order_kept():
    """Test 1-based contiguous orders and stable order inside a chapter."""
    questions = [
        make_question("u1-a", ["Unit1"]),
        make_question("none"),
        make_question("u1-b", ["Unit1"]),
        make_question("u3", ["Unit3"]),
    ]

    groups = segment_questions(questions)

    assert [g.order for g in groups] == [1, 2, 3]
    assert [g.name for g in groups] == ["Unit1", "Unit3", UNCLASSIFIED_CHAPTER]
    assert [q.content for q in groups[0].questions] == ["u1-a", "u1-b"]


def test_flatten_preserves_membership(sample_questions):
    """Test that segmenting then flattening keeps every question."""
    groups = segment_questions(sample_questions)
    flattened = flatten_groups(groups)

    assert len(flattened) == len(sample_questions)
    assert {q.content for q in flattened} == {q.content for q in sample_questions}


def test_empty_input():
    """Test that no questions produce no chapters."""
    assert segment_questions([]) == []
