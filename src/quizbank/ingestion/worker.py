"""Bounded background queue for parse tasks."""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional

from quizbank.errors import QueueFullError

logger = logging.getLogger(__name__)


class TaskState(str, Enum):
    """Lifecycle of a queued parse task."""

    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class TaskRecord:
    """Observable record of one submitted task."""

    task_id: str
    document_id: int
    state: TaskState = TaskState.QUEUED
    error: Optional[str] = None
    submitted_at: datetime = field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    future: Optional[Future] = field(default=None, repr=False)

    @property
    def done(self) -> bool:
        return self.state in (TaskState.SUCCEEDED, TaskState.FAILED)


class ParseTaskQueue:
    """Thread pool with a cap on queued plus running tasks.

    Task failures are captured on the TaskRecord instead of being lost with
    the future, so callers can inspect and retry them. Only the most recent
    ``history`` finished records are kept.
    """

    def __init__(self, max_workers: int = 2, max_pending: int = 16, history: int = 100):
        """Initialize the queue.

        Args:
            max_workers: Number of worker threads
            max_pending: Maximum number of unfinished tasks accepted at once
            history: Number of finished task records retained for inspection
        """
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        if max_pending < 1:
            raise ValueError("max_pending must be at least 1")
        if history < 0:
            raise ValueError("history must not be negative")

        self.max_workers = max_workers
        self.max_pending = max_pending
        self.history = history
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="quizbank-parse"
        )
        self._lock = threading.Lock()
        self._records: List[TaskRecord] = []
        self._latest: Dict[int, TaskRecord] = {}
        self._unfinished = 0

    @property
    def pending_count(self) -> int:
        """Number of tasks queued or running."""
        with self._lock:
            return self._unfinished

    def records(self) -> List[TaskRecord]:
        """Return the retained task records, oldest first."""
        with self._lock:
            return list(self._records)

    def submit(
        self, task_id: str, document_id: int, fn: Callable[[int], object]
    ) -> TaskRecord:
        """Schedule ``fn(document_id)`` on the pool.

        Raises:
            QueueFullError: If ``max_pending`` unfinished tasks already exist
            RuntimeError: If the queue has been shut down
        """
        with self._lock:
            if self._unfinished >= self.max_pending:
                raise QueueFullError(
                    f"Parse queue is full ({self._unfinished}/{self.max_pending} tasks pending)"
                )
            record = TaskRecord(task_id=task_id, document_id=document_id)
            record.future = self._executor.submit(self._run, record, fn)
            self._unfinished += 1
            self._records.append(record)
            self._latest[document_id] = record

        logger.info(f"Queued task {task_id} for document {document_id}")
        return record

    def _run(self, record: TaskRecord, fn: Callable[[int], object]) -> None:
        record.state = TaskState.RUNNING
        record.started_at = datetime.utcnow()
        try:
            fn(record.document_id)
            state = TaskState.SUCCEEDED
        except Exception as e:
            logger.error(f"Task {record.task_id} failed: {e}", exc_info=True)
            record.error = str(e)
            state = TaskState.FAILED

        with self._lock:
            record.finished_at = datetime.utcnow()
            record.state = state
            self._unfinished -= 1
            self._prune()

    def _prune(self) -> None:
        """Drop the oldest finished records beyond ``history``. Caller holds the lock."""
        finished = [r for r in self._records if r.done]
        excess = len(finished) - self.history
        if excess <= 0:
            return
        dropped = finished[:excess]
        dropped_ids = {id(r) for r in dropped}
        self._records = [r for r in self._records if id(r) not in dropped_ids]
        for record in dropped:
            if self._latest.get(record.document_id) is record:
                del self._latest[record.document_id]
        logger.debug(f"Pruned {excess} finished task records")

    def get(self, document_id: int) -> Optional[TaskRecord]:
        """Return the most recent task record for a document."""
        with self._lock:
            return self._latest.get(document_id)

    def wait(self, document_id: int, timeout: Optional[float] = None) -> Optional[TaskRecord]:
        """Block until the latest task for a document finishes.

        Returns:
            The task record, or None if no task is retained for the document
        """
        record = self.get(document_id)
        if record is not None and record.future is not None:
            wait_futures([record.future], timeout=timeout)
        return record

    def wait_all(self, timeout: Optional[float] = None) -> None:
        """Block until every submitted task has finished."""
        with self._lock:
            futures = [r.future for r in self._records if r.future is not None]
        wait_futures(futures, timeout=timeout)

    def failed_tasks(self) -> List[TaskRecord]:
        with self._lock:
            return [r for r in self._records if r.state == TaskState.FAILED]

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting tasks and optionally wait for running ones."""
        self._executor.shutdown(wait=wait)
        logger.debug("Parse task queue shut down")
