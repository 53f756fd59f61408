"""
Enrichment scheduler - refines ambiguous rows with the full extraction tier.

A single background task drains the queue, so at most one enrichment task runs
at a time. Tasks are invalidated through per-root generation tokens: a bump
after enqueue turns the task into a silent no-op at its next claim or flush.
"""
from __future__ import annotations

import asyncio
from typing import Callable, Optional

from ...config import ENRICH_CONCURRENCY, INDEX_BATCH_SIZE, LAST_ERROR_MAX_CHARS
from ...path_utils import normalize_fs_path
from ...shared import IndexingError, get_logger, ms
from .extractor import MetadataExtractor
from .tokens import GenerationTokens
from .types import EnrichmentTarget, EnrichmentTask, ExtractedMetadata, PhotoMetadataPatch
from .worker_pool import JobCancelledError, map_with_concurrency_batched

logger = get_logger(__name__)

_CANCEL_MESSAGE = "Enrichment cancelled"
FAILED_MESSAGE = "enrichment failed"


def _dedupe_targets(targets: list[EnrichmentTarget]) -> list[EnrichmentTarget]:
    unique: dict[str, EnrichmentTarget] = {}
    for target in targets or []:
        key = normalize_fs_path(target.path)
        if not key or key in unique:
            continue
        unique[key] = EnrichmentTarget(root_id=target.root_id, path=key, media_type=target.media_type)
    return list(unique.values())


class EnrichmentScheduler:
    """
    Serialized background queue of `EnrichmentTask`s.

    Failures are logged and surfaced on the originating job as
    "enrichment failed"; nothing is retried.
    """

    def __init__(
        self,
        photos_repo,
        extractor: MetadataExtractor,
        tokens: Optional[GenerationTokens] = None,
        *,
        set_job_message: Optional[Callable[[Optional[str], Optional[str]], None]] = None,
        on_data_changed: Optional[Callable[[], None]] = None,
        concurrency: int = ENRICH_CONCURRENCY,
        batch_size: int = INDEX_BATCH_SIZE,
    ):
        self._photos = photos_repo
        self._extractor = extractor
        self._tokens = tokens or GenerationTokens()
        self._set_job_message = set_job_message
        self._on_data_changed = on_data_changed
        self._concurrency = max(1, int(concurrency))
        self._batch_size = max(1, int(batch_size))
        self._lock = asyncio.Lock()
        self._queue: list[EnrichmentTask] = []
        self._task: asyncio.Task[None] | None = None

    @property
    def tokens(self) -> GenerationTokens:
        return self._tokens

    def get_queue_length(self) -> int:
        return len(self._queue)

    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def enqueue(self, root_path: str, targets: list[EnrichmentTarget], job_id: Optional[str] = None) -> Optional[EnrichmentTask]:
        """
        Queue `targets` for full-tier refinement.

        Bumps the root's enrichment token, which supersedes any task already
        queued or running for the same root. Returns the queued task, or None
        when there was nothing to enrich.
        """
        unique = _dedupe_targets(targets)
        if not unique:
            return None
        root = normalize_fs_path(root_path)
        # Bump before the first await so the token check in the caller stays atomic.
        token = self._tokens.bump(root)
        task = EnrichmentTask(root_path=root, token=token, job_id=job_id, targets=unique)
        async with self._lock:
            self._queue.append(task)
            self._ensure_worker_started_locked()
        return task

    def _ensure_worker_started_locked(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.create_task(self._drain())

    async def stop(self, clear_queue: bool = True) -> None:
        """Cancel the draining task and optionally drop pending tasks."""
        task: asyncio.Task[None] | None = None
        async with self._lock:
            task = self._task
            self._task = None
            if clear_queue:
                self._queue.clear()
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as exc:
                logger.debug("Enrichment task ended with %s during stop", exc)

    async def wait_idle(self) -> None:
        """Wait until the queue is drained."""
        while True:
            task = self._task
            if task is None or task.done():
                if not self._queue:
                    return
                async with self._lock:
                    if self._queue:
                        self._ensure_worker_started_locked()
                continue
            await asyncio.wait({task})

    def _is_stale(self, task: EnrichmentTask) -> bool:
        return not self._tokens.is_current(task.root_path, task.token)

    async def _drain(self) -> None:
        try:
            while True:
                async with self._lock:
                    if not self._queue:
                        self._task = None
                        return
                    task = self._queue.pop(0)
                if self._is_stale(task):
                    logger.debug("Skipping superseded enrichment for %s", task.root_path)
                    continue
                await self._run_task(task)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("Enrichment worker failed: %s", exc)
            async with self._lock:
                self._task = None

    async def _extract_patch(self, target: EnrichmentTarget) -> PhotoMetadataPatch:
        try:
            metadata = await self._extractor.extract_full(target.path, target.media_type)
            error = None
        except Exception as exc:
            metadata = ExtractedMetadata()
            error = (str(exc) or "Metadata enrichment failed")[:LAST_ERROR_MAX_CHARS]
        return PhotoMetadataPatch(
            root_id=target.root_id,
            path=target.path,
            metadata=metadata,
            last_indexed_at_ms=ms(),
            last_error=error,
        )

    def _message(self, job_id: Optional[str], message: Optional[str]) -> None:
        if self._set_job_message is None or not job_id:
            return
        try:
            self._set_job_message(job_id, message)
        except Exception as exc:
            logger.debug("Failed to update job message: %s", exc)

    async def _run_task(self, task: EnrichmentTask) -> None:
        total = len(task.targets)
        processed = 0
        self._message(task.job_id, f"enriching 0/{total}")

        def on_item_done(_index: int) -> None:
            nonlocal processed
            processed += 1
            if not self._is_stale(task):
                self._message(task.job_id, f"enriching {processed}/{total}")

        async def on_batch(batch: list[PhotoMetadataPatch]) -> None:
            if self._is_stale(task):
                raise JobCancelledError(_CANCEL_MESSAGE)
            res = await self._photos.patch_metadata_batch(batch)
            if not res.ok:
                raise IndexingError(res.error or "Failed to save enriched metadata", res.code or "DB_ERROR")

        try:
            await map_with_concurrency_batched(
                task.targets,
                self._concurrency,
                lambda target, _index: self._extract_patch(target),
                batch_size=self._batch_size,
                on_batch=on_batch,
                is_cancelled=lambda: self._is_stale(task),
                on_item_done=on_item_done,
                cancel_message=_CANCEL_MESSAGE,
            )
        except JobCancelledError:
            logger.debug("Enrichment for %s superseded after %s/%s", task.root_path, processed, total)
            self._message(task.job_id, None)
            return
        except Exception as exc:
            logger.warning("Enrichment for %s failed: %s", task.root_path, exc)
            self._message(task.job_id, FAILED_MESSAGE)
            return

        if self._is_stale(task):
            self._message(task.job_id, None)
            return
        logger.info("Enriched %s rows for %s", total, task.root_path)
        self._message(task.job_id, None)
        if self._on_data_changed is not None:
            self._on_data_changed()
