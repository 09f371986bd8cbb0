"""Chapter and question persistence for parsed documents."""

import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from quizbank.errors import (
    ChapterNotFoundError,
    DocumentNotFoundError,
    QuestionNotFoundError,
)
from quizbank.models import ChapterGroup, ParsedQuestion
from quizbank.parsing.segmentation import segment_questions
from quizbank.storage.database import QuestionBankDatabase
from quizbank.storage.models import Chapter, Document, Question

logger = logging.getLogger(__name__)


def _dump_list(values: Optional[List[str]]) -> Optional[str]:
    if values is None:
        return None
    return json.dumps(values, ensure_ascii=False)


def _load_list(raw: Optional[str]) -> Optional[List[str]]:
    if not raw:
        return None
    try:
        values = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning(f"Stored list is not valid JSON: {raw[:50]}")
        return None
    return values if isinstance(values, list) else None


def question_from_row(row: Question) -> ParsedQuestion:
    """Convert a stored question row back to the canonical model."""
    return ParsedQuestion(
        type=row.type,
        content=row.content,
        options=_load_list(row.options),
        answer=row.answer or "",
        explanation=row.explanation,
        difficulty=row.difficulty or 1,
        tags=_load_list(row.tags),
        question_no=row.question_no,
    )


class ChapterStore:
    """Persists segmented questions and keeps chapter/document counts in sync."""

    def __init__(self, database: QuestionBankDatabase):
        self.database = database
        self.session_factory = database.session_factory

    def persist_questions(
        self, document_id: int, questions: List[ParsedQuestion]
    ) -> List[Dict[str, Any]]:
        """Segment questions into chapters and persist them.

        Chapters and questions are written in one transaction, reusing
        chapters whose name already exists for the document and dropping
        chapters absent from this parse. Re-running never duplicates rows,
        and a failed write leaves the previous state untouched.

        Args:
            document_id: Owning document
            questions: Parsed questions in response order

        Returns:
            List of dicts with chapter_id, chapter_name, chapter_order and
            question_count, in chapter order
        """
        groups = segment_questions(questions)
        try:
            summary, removed = self._replace_questions(document_id, groups)
        except IntegrityError:
            # Another writer created one of the chapters first; reuse it
            logger.warning(f"Chapter name collision for document {document_id}, retrying")
            summary, removed = self._replace_questions(document_id, groups)

        if removed:
            logger.info(f"Removed {removed} stale chapters from document {document_id}")
        logger.info(
            f"Persisted {len(questions)} questions in {len(groups)} chapters "
            f"for document {document_id}"
        )
        return summary

    def _replace_questions(self, document_id: int, groups: List[ChapterGroup]):
        session = self.session_factory()
        try:
            existing = {
                chapter.chapter_name: chapter
                for chapter in session.query(Chapter).filter(Chapter.document_id == document_id)
            }
            session.query(Question).filter(Question.document_id == document_id).delete(
                synchronize_session=False
            )

            summary = []
            for group in groups:
                chapter = existing.get(group.name)
                if chapter is None:
                    chapter = Chapter(document_id=document_id, chapter_name=group.name)
                    session.add(chapter)
                else:
                    logger.debug(
                        f"Reusing chapter {chapter.id} ({group.name}) of document {document_id}"
                    )
                chapter.chapter_order = group.order
                chapter.question_count = len(group.questions)
                chapter.updated_at = datetime.utcnow()
                session.flush()

                session.add_all(
                    [self._question_row(document_id, chapter.id, q) for q in group.questions]
                )
                summary.append(
                    {
                        "chapter_id": chapter.id,
                        "chapter_name": group.name,
                        "chapter_order": group.order,
                        "question_count": len(group.questions),
                    }
                )

            # Chapters left over from a previous run
            kept = {group.name for group in groups}
            removed = 0
            for name, chapter in existing.items():
                if name not in kept:
                    session.delete(chapter)
                    removed += 1

            session.commit()
            return summary, removed
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _question_row(
        self, document_id: int, chapter_id: int, question: ParsedQuestion
    ) -> Question:
        return Question(
            document_id=document_id,
            chapter_id=chapter_id,
            question_no=question.question_no or None,
            type=question.type.value,
            content=question.content,
            options=_dump_list(question.options),
            answer=question.answer,
            explanation=question.explanation,
            difficulty=question.difficulty or 1,
            tags=_dump_list(question.tags),
        )

    # === Chapter queries ===

    def list_chapters(self, document_id: int) -> List[Chapter]:
        """Return a document's chapters in chapter order."""
        session = self.session_factory()
        try:
            chapters = (
                session.query(Chapter)
                .filter(Chapter.document_id == document_id)
                .order_by(Chapter.chapter_order, Chapter.id)
                .all()
            )
            for chapter in chapters:
                session.expunge(chapter)
            return chapters
        finally:
            session.close()

    def get_chapter_stats(self, document_id: int) -> Dict[str, Any]:
        """Summarize a document's chapters.

        Returns:
            Dict with total_chapters, total_questions and a chapters list of
            name/order/question_count entries
        """
        chapters = self.list_chapters(document_id)
        return {
            "document_id": document_id,
            "total_chapters": len(chapters),
            "total_questions": sum(c.question_count or 0 for c in chapters),
            "chapters": [
                {
                    "chapter_id": c.id,
                    "chapter_name": c.chapter_name,
                    "chapter_order": c.chapter_order,
                    "question_count": c.question_count or 0,
                }
                for c in chapters
            ],
        }

    def list_question_rows(
        self, document_id: int, chapter_id: Optional[int] = None
    ) -> List[Question]:
        """Return stored question rows in chapter order, then insertion order."""
        session = self.session_factory()
        try:
            query = (
                session.query(Question)
                .join(Chapter, Question.chapter_id == Chapter.id)
                .filter(Question.document_id == document_id)
            )
            if chapter_id is not None:
                query = query.filter(Question.chapter_id == chapter_id)
            rows = query.order_by(Chapter.chapter_order, Question.id).all()
            for row in rows:
                session.expunge(row)
            return rows
        finally:
            session.close()

    def get_questions(
        self, document_id: int, chapter_id: Optional[int] = None
    ) -> List[ParsedQuestion]:
        """Return questions as canonical models, in chapter order."""
        return [
            question_from_row(row)
            for row in self.list_question_rows(document_id, chapter_id=chapter_id)
        ]

    # === Count maintenance ===

    def recalculate_chapter_count(self, chapter_id: int) -> int:
        """Reset a chapter's cached count from its question rows.

        Returns:
            The recalculated count
        """
        session = self.session_factory()
        try:
            chapter = session.get(Chapter, chapter_id)
            if chapter is None:
                raise ChapterNotFoundError(f"Chapter {chapter_id} not found")
            count = session.query(Question).filter(Question.chapter_id == chapter_id).count()
            chapter.question_count = count
            chapter.updated_at = datetime.utcnow()
            session.commit()
            return count
        finally:
            session.close()

    def refresh_document_total(self, document_id: int) -> int:
        """Reset a document's total_questions from its question rows."""
        session = self.session_factory()
        try:
            document = session.get(Document, document_id)
            if document is None:
                raise DocumentNotFoundError(f"Document {document_id} not found")
            total = (
                session.query(func.count(Question.id))
                .filter(Question.document_id == document_id)
                .scalar()
            )
            document.total_questions = total
            document.updated_at = datetime.utcnow()
            session.commit()
            return total
        finally:
            session.close()

    # === Edits ===

    def delete_chapter(self, chapter_id: int) -> int:
        """Delete a chapter with its questions and refresh the document total.

        Returns:
            Number of questions removed
        """
        session = self.session_factory()
        try:
            chapter = session.get(Chapter, chapter_id)
            if chapter is None:
                raise ChapterNotFoundError(f"Chapter {chapter_id} not found")
            document_id = chapter.document_id
            removed = (
                session.query(Question)
                .filter(Question.chapter_id == chapter_id)
                .delete(synchronize_session=False)
            )
            session.delete(chapter)
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

        self.refresh_document_total(document_id)
        logger.info(f"Deleted chapter {chapter_id} with {removed} questions")
        return removed

    def clear_questions(self, document_id: int) -> int:
        """Remove all of a document's chapters and questions and zero its total.

        Returns:
            Number of questions removed
        """
        session = self.session_factory()
        try:
            removed = (
                session.query(Question)
                .filter(Question.document_id == document_id)
                .delete(synchronize_session=False)
            )
            session.query(Chapter).filter(Chapter.document_id == document_id).delete(
                synchronize_session=False
            )
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

        self.refresh_document_total(document_id)
        logger.info(f"Cleared {removed} questions from document {document_id}")
        return removed

    def delete_question(self, question_id: int) -> None:
        """Delete one question, keeping chapter and document counts correct."""
        session = self.session_factory()
        try:
            row = session.get(Question, question_id)
            if row is None:
                raise QuestionNotFoundError(f"Question {question_id} not found")
            chapter_id, document_id = row.chapter_id, row.document_id
            session.delete(row)
            session.commit()
        finally:
            session.close()

        self.recalculate_chapter_count(chapter_id)
        self.refresh_document_total(document_id)

    def update_question(
        self,
        question_id: int,
        question: ParsedQuestion,
        chapter_id: Optional[int] = None,
    ) -> None:
        """Replace a question's fields, optionally moving it to another chapter.

        Raises:
            QuestionNotFoundError: If the question does not exist
            ChapterNotFoundError: If the target chapter is missing or belongs
                to another document
        """
        session = self.session_factory()
        try:
            row = session.get(Question, question_id)
            if row is None:
                raise QuestionNotFoundError(f"Question {question_id} not found")
            previous_chapter_id = row.chapter_id
            if chapter_id is not None and chapter_id != previous_chapter_id:
                target = session.get(Chapter, chapter_id)
                if target is None or target.document_id != row.document_id:
                    raise ChapterNotFoundError(
                        f"Chapter {chapter_id} not found in document {row.document_id}"
                    )
                row.chapter_id = chapter_id

            row.question_no = question.question_no or None
            row.type = question.type.value
            row.content = question.content
            row.options = _dump_list(question.options)
            row.answer = question.answer
            row.explanation = question.explanation
            row.difficulty = question.difficulty
            row.tags = _dump_list(question.tags)
            row.updated_at = datetime.utcnow()
            session.commit()
            moved_to = row.chapter_id
        finally:
            session.close()

        if moved_to != previous_chapter_id:
            self.recalculate_chapter_count(previous_chapter_id)
            self.recalculate_chapter_count(moved_to)
