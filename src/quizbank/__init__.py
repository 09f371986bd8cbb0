"""QuizBank - AI-assisted question bank ingestion pipeline."""

from quizbank.api import QuizBankAPI, QuizBankConfig
from quizbank.models import Actor, BusinessKind, DocumentStatus, ProviderFamily

__all__ = [
    "QuizBankAPI",
    "QuizBankConfig",
    "Actor",
    "BusinessKind",
    "DocumentStatus",
    "ProviderFamily",
]
