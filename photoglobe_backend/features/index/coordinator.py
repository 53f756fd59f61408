"""
Index coordinator - the indexing job state machine.

idle -> scanning -> extracting -> saving -> complete | cancelled | error

Jobs for the same root may overlap; only background enrichment is made safe
by per-root generation tokens.
"""
from __future__ import annotations

import asyncio
import hashlib
import inspect
import uuid
from typing import Any, Callable, Optional

from ...config import ENRICH_CONCURRENCY, INDEX_BATCH_SIZE, INDEX_CONCURRENCY, JOB_HISTORY_MAX, LAST_ERROR_MAX_CHARS
from ...path_utils import dedupe_paths, normalize_fs_path, paths_under_root
from ...shared import ErrorCode, IndexingError, Result, get_logger, log_success, ms, sanitize_error_message
from .enricher import EnrichmentScheduler
from .extractor import MetadataExtractor
from .incremental import create_delta_plan, create_incremental_plan
from .job_registry import IndexJob, JobRegistry, ProgressListener
from .scanner import MediaScanner
from .tokens import GenerationTokens
from .types import (
    EnrichmentTarget,
    ExistingSnapshot,
    ExtractedMetadata,
    IncrementalPlan,
    IndexPhase,
    IndexStatus,
    PhotoUpsertInput,
    ScanFile,
    WatcherDelta,
)
from .worker_pool import JobCancelledError, map_with_concurrency_batched

logger = get_logger(__name__)


def needs_enrichment(row: PhotoUpsertInput) -> bool:
    """True when the quick pass left a gap the full pass may fill."""
    meta = row.metadata
    if meta.lat is None or meta.lng is None or meta.taken_at_ms is None or meta.width is None or meta.height is None:
        return True
    if not meta.camera_model or not meta.camera_model.strip():
        return True
    return row.media_type == "video" and meta.duration_ms is None


def extracting_percent(processed: int, total: int) -> int:
    if total <= 0:
        return 90
    return max(10, min(90, round(processed / total * 90)))


def _path_hash(path: str) -> str:
    return hashlib.sha1(path.encode("utf-8", errors="surrogatepass")).hexdigest()


def _unwrap(result: Result[Any], fallback: str) -> Any:
    if not result.ok:
        raise IndexingError(result.error or fallback, result.code or ErrorCode.INDEX_FAILED)
    return result.data


class IndexCoordinator:
    """
    Starts, tracks and cancels indexing jobs.

    Owns the job registry and both per-root token maps: the run token decides
    which job may schedule enrichment, the enrichment token invalidates
    background refinement whenever a newer job starts for the root.
    """

    def __init__(
        self,
        photos_repo,
        roots_repo,
        settings,
        extractor: MetadataExtractor,
        scanner: Optional[MediaScanner] = None,
        *,
        on_data_changed: Optional[Callable[[], Any]] = None,
        concurrency: int = INDEX_CONCURRENCY,
        batch_size: int = INDEX_BATCH_SIZE,
        history_max: int = JOB_HISTORY_MAX,
        enrich_concurrency: Optional[int] = None,
    ):
        self._photos = photos_repo
        self._roots = roots_repo
        self._settings = settings
        self._extractor = extractor
        self._scanner = scanner or MediaScanner()
        self._on_data_changed = on_data_changed
        self._concurrency = max(1, int(concurrency))
        self._batch_size = max(1, int(batch_size))
        self._registry = JobRegistry(max_history=history_max)
        self._run_tokens = GenerationTokens()
        self._enrichment_tokens = GenerationTokens()
        self._background: set[asyncio.Future] = set()
        self.enricher = EnrichmentScheduler(
            photos_repo,
            extractor,
            self._enrichment_tokens,
            set_job_message=self._set_job_message,
            on_data_changed=self._notify_data_changed,
            concurrency=enrich_concurrency or ENRICH_CONCURRENCY,
            batch_size=self._batch_size,
        )

    # ------------------------------------------------------------------ public

    def start(self, root_path: str) -> str:
        return self.start_full(root_path)

    def start_full(self, root_path: str) -> str:
        root = normalize_fs_path(root_path)
        if not root:
            raise IndexingError("Root path is empty", ErrorCode.INVALID_INPUT)
        self._enrichment_tokens.bump(root)
        run_token = self._run_tokens.bump(root)
        return self._create_and_run(root, run_token, "full", None)

    def start_delta(self, root_path: str, delta: WatcherDelta) -> str:
        """
        Process a watcher delta; an overflowing delta is a plain full rescan.

        Paths outside `root_path` are dropped before the job is created.
        """
        root = normalize_fs_path(root_path)
        if delta.overflow:
            return self.start_full(root)
        if not root:
            raise IndexingError("Root path is empty", ErrorCode.INVALID_INPUT)
        self._enrichment_tokens.bump(root)
        run_token = self._run_tokens.bump(root)
        normalized = WatcherDelta(
            root_path=root,
            added_or_changed_paths=tuple(paths_under_root(delta.added_or_changed_paths, root)),
            removed_paths=tuple(paths_under_root(delta.removed_paths, root)),
            overflow=False,
        )
        dropped = (
            len(dedupe_paths(delta.added_or_changed_paths)) + len(dedupe_paths(delta.removed_paths))
            - len(normalized.added_or_changed_paths) - len(normalized.removed_paths)
        )
        if dropped > 0:
            logger.warning("Ignoring %d delta path(s) outside %s", dropped, root)
        return self._create_and_run(root, run_token, "delta", normalized)

    def cancel(self, job_id: str) -> bool:
        job = self._registry.get(job_id)
        if job is None:
            return False
        job.cancel_requested = True
        return True

    def get_status(self, job_id: str) -> Optional[IndexStatus]:
        job = self._registry.get(job_id)
        return job.status if job is not None else None

    def list_jobs(self) -> list[IndexStatus]:
        return [job.status for job in self._registry.jobs()]

    def on_progress(self, listener: ProgressListener) -> Callable[[], None]:
        return self._registry.emitter.subscribe(listener)

    async def wait_for_job(self, job_id: str, timeout: Optional[float] = None) -> Optional[IndexStatus]:
        job = self._registry.get(job_id)
        if job is None:
            return None
        if job.task is not None and not job.task.done():
            await asyncio.wait({job.task}, timeout=timeout)
        return job.status

    async def dispose(self) -> None:
        """Cancel running jobs, stop enrichment and release the extractor."""
        for job in self._registry.jobs():
            job.cancel_requested = True
        tasks = [job.task for job in self._registry.jobs() if job.task is not None and not job.task.done()]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self.enricher.stop(clear_queue=True)
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
        await self._extractor.shutdown()

    # ------------------------------------------------------------------ job plumbing

    def _create_and_run(self, root: str, run_token: int, mode: str, delta: Optional[WatcherDelta]) -> str:
        job_id = str(uuid.uuid4())
        status = IndexStatus(job_id=job_id, root_path=root, mode=mode, started_at_ms=ms())
        job = IndexJob(status=status, run_token=run_token)
        self._registry.add(job)
        logger.info("Index job %s started (%s) for %s", job_id, mode, root)
        job.task = asyncio.get_running_loop().create_task(self._run_job(job, delta))
        return job_id

    def _update(self, job: IndexJob, **changes: Any) -> IndexStatus:
        return self._registry.update(job, **changes)

    def _set_phase(self, job: IndexJob, phase: IndexPhase) -> None:
        self._update(job, phase=phase)

    def _complete(self, job: IndexJob, phase: IndexPhase, message: Optional[str] = None) -> None:
        percent = 100 if phase is IndexPhase.COMPLETE else job.status.percent
        self._update(job, phase=phase, percent=percent, finished_at_ms=ms(), message=message)

    @staticmethod
    def _raise_if_cancelled(job: IndexJob) -> None:
        if job.cancel_requested:
            raise JobCancelledError()

    def _set_job_message(self, job_id: Optional[str], message: Optional[str]) -> None:
        job = self._registry.get(job_id or "")
        if job is None:
            return
        self._update(job, message=message)

    def _notify_data_changed(self) -> None:
        """Fire-and-forget; coroutine results are scheduled, never awaited."""
        callback = self._on_data_changed
        if callback is None:
            return
        try:
            outcome = callback()
        except Exception as exc:
            logger.warning("Data-changed callback failed: %s", exc)
            return
        if inspect.isawaitable(outcome):
            future = asyncio.ensure_future(outcome)
            self._background.add(future)
            future.add_done_callback(self._on_background_done)

    def _on_background_done(self, future: asyncio.Future) -> None:
        self._background.discard(future)
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.warning("Data-changed callback failed: %s", exc)

    async def _update_recent_roots(self, root: str) -> None:
        res = await self._settings.add_recent_root(root)
        if not res.ok:
            logger.warning("Could not update recent roots: %s", res.error)

    # ------------------------------------------------------------------ run

    async def _build_plan(
        self,
        job: IndexJob,
        delta: Optional[WatcherDelta],
        existing: dict[str, ExistingSnapshot],
    ) -> tuple[IncrementalPlan, int]:
        root = job.status.root_path
        if job.status.mode == "full" or delta is None or delta.overflow:
            scanned = await self._scanner.scan(root)
            return create_incremental_plan(scanned, existing), len(scanned)

        scan_targets = dedupe_paths(delta.added_or_changed_paths)
        removed_targets = dedupe_paths(delta.removed_paths)
        scanned = await self._scanner.scan_specific(scan_targets)
        scanned_keys = {normalize_fs_path(f.path) for f in scanned}
        # A requested path that no longer scans is gone from disk.
        missing = [p for p in scan_targets if p not in scanned_keys]
        plan = create_delta_plan(scanned, [*removed_targets, *missing], existing)
        return plan, len(scan_targets) + len(removed_targets)

    async def _extract_quick(self, root_id: int, file: ScanFile) -> PhotoUpsertInput:
        error: Optional[str] = None
        try:
            metadata = await self._extractor.extract_quick(file.path, file.media_type)
        except Exception as exc:
            logger.debug("Quick extraction failed for %s: %s", file.path, exc)
            metadata = ExtractedMetadata()
            error = (str(exc) or "Metadata extraction failed")[:LAST_ERROR_MAX_CHARS]
        return PhotoUpsertInput(
            root_id=root_id,
            path=file.path,
            path_hash=_path_hash(file.path),
            size_bytes=file.size_bytes,
            mtime_ms=file.mtime_ms,
            media_type=file.media_type,
            mime=file.mime,
            metadata=metadata,
            last_indexed_at_ms=ms(),
            last_error=error,
        )

    async def _run_job(self, job: IndexJob, delta: Optional[WatcherDelta]) -> None:
        root_path = job.status.root_path
        try:
            root = _unwrap(await self._roots.ensure(root_path), "Failed to register root")
            await self._update_recent_roots(root_path)

            self._set_phase(job, IndexPhase.SCANNING)
            existing = _unwrap(await self._photos.get_existing_by_root(root.id), "Failed to load catalog") or {}
            plan, scanned_count = await self._build_plan(job, delta, existing)
            self._update(
                job,
                scanned=scanned_count,
                queued=len(plan.to_process),
                skipped=plan.unchanged_count,
            )

            self._raise_if_cancelled(job)
            self._set_phase(job, IndexPhase.EXTRACTING)

            targets: list[EnrichmentTarget] = []
            seen_targets: set[str] = set()

            def on_item_done(_index: int) -> None:
                processed = job.status.processed + 1
                self._update(job, processed=processed, percent=extracting_percent(processed, job.status.queued))

            async def on_batch(batch: list[PhotoUpsertInput]) -> None:
                _unwrap(await self._photos.upsert_batch(batch), "Failed to save batch")
                errored = sum(1 for row in batch if row.last_error)
                self._update(
                    job,
                    indexed=job.status.indexed + len(batch) - errored,
                    errored=job.status.errored + errored,
                )
                for row in batch:
                    if needs_enrichment(row) and row.path not in seen_targets:
                        seen_targets.add(row.path)
                        targets.append(EnrichmentTarget(root_id=row.root_id, path=row.path, media_type=row.media_type))

            if plan.to_process:
                await map_with_concurrency_batched(
                    plan.to_process,
                    self._concurrency,
                    lambda file, _index: self._extract_quick(root.id, file),
                    batch_size=self._batch_size,
                    on_batch=on_batch,
                    is_cancelled=lambda: job.cancel_requested,
                    on_item_done=on_item_done,
                )
            else:
                self._update(job, percent=90)

            self._raise_if_cancelled(job)
            self._set_phase(job, IndexPhase.SAVING)

            now_ms = ms()
            if plan.to_restore:
                _unwrap(await self._photos.restore_by_paths(plan.to_restore, now_ms), "Failed to restore rows")
            if plan.to_delete:
                _unwrap(await self._photos.mark_deleted_by_paths(root.id, plan.to_delete, now_ms), "Failed to mark deletions")
            self._update(job, percent=99)

            _unwrap(await self._roots.set_last_scan(root.id, ms()), "Failed to update last scan")
            self._notify_data_changed()
            self._complete(job, IndexPhase.COMPLETE)
            log_success(
                logger,
                f"Index job {job.job_id} complete: {job.status.indexed} indexed, "
                f"{job.status.errored} errored, {job.status.skipped} unchanged, {len(plan.to_delete)} removed",
            )
        except asyncio.CancelledError:
            self._complete(job, IndexPhase.CANCELLED)
            raise
        except Exception as exc:
            if isinstance(exc, JobCancelledError) or job.cancel_requested:
                logger.info("Index job %s cancelled", job.job_id)
                self._complete(job, IndexPhase.CANCELLED)
                return
            logger.error("Index job %s failed: %s", job.job_id, exc)
            self._complete(job, IndexPhase.ERROR, sanitize_error_message(exc, "Indexing failed"))
            return

        if not self._run_tokens.is_current(root_path, job.run_token):
            logger.debug("Index job %s superseded; skipping enrichment", job.job_id)
            return
        try:
            await self.enricher.enqueue(root_path, targets, job.job_id)
        except Exception as exc:
            logger.warning("Failed to queue enrichment for %s: %s", root_path, exc)
