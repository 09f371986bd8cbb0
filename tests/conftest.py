"""Pytest configuration and fixtures for QuizBank tests."""

import json
from pathlib import Path
from typing import Callable, Generator, List

import httpx
import pytest

from quizbank.ingestion.worker import ParseTaskQueue
from quizbank.models import ParsedQuestion, ProviderConfig, ProviderFamily
from quizbank.storage.database import QuestionBankDatabase


@pytest.fixture
def tmp_db(tmp_path: Path) -> Generator[QuestionBankDatabase, None, None]:
    """Create a temporary file-backed database for testing."""
    db = QuestionBankDatabase(f"sqlite:///{tmp_path / 'test_quizbank.db'}")
    db.create_tables()
    yield db
    db.close()


@pytest.fixture
def upload_dir(tmp_path: Path) -> Path:
    """Return an empty upload directory."""
    path = tmp_path / "uploads"
    path.mkdir()
    return path


@pytest.fixture
def task_queue() -> Generator[ParseTaskQueue, None, None]:
    """Provide a small task queue that is shut down after the test."""
    queue = ParseTaskQueue(max_workers=2, max_pending=4)
    yield queue
    queue.shutdown(wait=True)


@pytest.fixture
def sample_raw_questions() -> List[dict]:
    """Three raw questions: two tagged Unit1, one without tags."""
    return [
        {
            "type": "single",
            "question_no": "1",
            "content": "What is 2 + 2?",
            "options": ["3", "4", "5", "6"],
            "answer": "B",
            "explanation": "Basic addition",
            "difficulty": 1,
            "tags": ["Unit1", "arithmetic"],
        },
        {
            "type": "judge",
            "content": "The earth is flat.",
            "answer": "false",
            "difficulty": 2,
            "tags": ["Unit1"],
        },
        {
            "type": "essay",
            "content": "Describe the water cycle.",
            "answer": "Evaporation, condensation, precipitation.",
        },
    ]


@pytest.fixture
def sample_questions(sample_raw_questions) -> List[ParsedQuestion]:
    """Canonical versions of sample_raw_questions."""
    return [ParsedQuestion(**q) for q in sample_raw_questions]


@pytest.fixture
def openai_provider(tmp_db: QuestionBankDatabase) -> ProviderConfig:
    """Register an active OpenAI-style provider."""
    return tmp_db.add_provider(
        name="openai-test",
        family=ProviderFamily.OPENAI,
        endpoint="https://api.example.com/v1/chat/completions",
        api_key="sk-test",
    )


@pytest.fixture
def mock_http_client() -> Callable[[Callable[[httpx.Request], httpx.Response]], httpx.Client]:
    """Factory building an httpx client backed by a MockTransport handler."""
    clients = []

    def factory(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.Client:
        client = httpx.Client(transport=httpx.MockTransport(handler))
        clients.append(client)
        return client

    yield factory

    for client in clients:
        client.close()


def chat_completion(content: str) -> dict:
    """Build a chat-completions response body whose message is ``content``."""
    return {
        "id": "chatcmpl-test",
        "model": "gpt-test",
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": content},
                "finish_reason": "stop",
            }
        ],
        "usage": {"prompt_tokens": 10, "completion_tokens": 20},
    }


def questions_json(questions: List[dict]) -> str:
    return json.dumps({"questions": questions}, ensure_ascii=False)
