"""
Job registry and progress observers for indexing runs.

The registry is owned by the coordinator. Each status transition swaps in a
new frozen `IndexStatus` and pushes it to every registered listener.
"""
from __future__ import annotations

import asyncio
import dataclasses
import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Optional

from ...config import JOB_HISTORY_MAX
from ...shared import get_logger
from .types import IndexStatus

logger = get_logger(__name__)

ProgressListener = Callable[[IndexStatus], Any]


@dataclass
class IndexJob:
    status: IndexStatus
    run_token: int
    cancel_requested: bool = False
    task: Optional[asyncio.Task] = None

    @property
    def job_id(self) -> str:
        return self.status.job_id

    @property
    def is_terminal(self) -> bool:
        return self.status.phase.is_terminal


class ProgressEmitter:
    """Explicit observer list; listener errors are logged and never propagate."""

    def __init__(self):
        self._listeners: list[ProgressListener] = []
        self._lock = threading.Lock()

    def subscribe(self, listener: ProgressListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                try:
                    self._listeners.remove(listener)
                except ValueError:
                    pass

        return unsubscribe

    def emit(self, status: IndexStatus) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(status)
            except Exception as exc:
                logger.warning("Progress listener failed: %s", exc)

    def __len__(self) -> int:
        with self._lock:
            return len(self._listeners)


class JobRegistry:
    """
    Jobs keyed by id, in creation order.

    At most `max_history` terminal jobs are retained; the oldest terminal jobs
    are evicted first and active jobs are never evicted.
    """

    def __init__(self, max_history: int = JOB_HISTORY_MAX, emitter: Optional[ProgressEmitter] = None):
        self._jobs: "OrderedDict[str, IndexJob]" = OrderedDict()
        self._max_history = max(1, int(max_history))
        self.emitter = emitter or ProgressEmitter()

    def add(self, job: IndexJob) -> None:
        self._jobs[job.job_id] = job
        self.emitter.emit(job.status)

    def get(self, job_id: str) -> Optional[IndexJob]:
        return self._jobs.get(str(job_id or ""))

    def jobs(self) -> list[IndexJob]:
        return list(self._jobs.values())

    def update(self, job: IndexJob, **changes: Any) -> IndexStatus:
        """Replace the job snapshot and notify listeners."""
        job.status = dataclasses.replace(job.status, **changes)
        self.emitter.emit(job.status)
        if job.is_terminal:
            self._evict_terminal()
        return job.status

    def _evict_terminal(self) -> None:
        terminal = [job_id for job_id, job in self._jobs.items() if job.is_terminal]
        overflow = len(terminal) - self._max_history
        for job_id in terminal[: max(0, overflow)]:
            self._jobs.pop(job_id, None)

    def __len__(self) -> int:
        return len(self._jobs)

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._jobs
