"""
File system watcher producing debounced per-root deltas.

watchdog delivers events on its observer thread. Each root gets its own
handler that coalesces events per path (last write wins) and, once the
debounce window has elapsed without new events, emits a single
`WatcherDelta` on the asyncio loop.
"""
import asyncio
import inspect
import os
from collections.abc import Callable, Iterable
from threading import Lock
from typing import Any

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from ...config import WATCHER_DEBOUNCE_MS, WATCHER_OVERFLOW_THRESHOLD
from ...path_utils import dedupe_paths, is_under_path, normalize_fs_path
from ...shared import detect_media_type, get_logger
from .scanner import is_ignored_name
from .types import WatcherDelta

logger = get_logger(__name__)

_ADDED = "added"
_REMOVED = "removed"

DeltaCallback = Callable[[WatcherDelta], Any]


class DebouncedDeltaHandler(FileSystemEventHandler):
    """
    Collects events for one root.

    - Ignores directories, hidden/system folders and non-media files
    - Created/modified/moved-in paths count as added; deleted/moved-out as removed
    - A later event for the same path replaces the earlier one
    """

    def __init__(
        self,
        root_path: str,
        on_delta: DeltaCallback,
        loop: asyncio.AbstractEventLoop,
        debounce_ms: int = WATCHER_DEBOUNCE_MS,
        overflow_threshold: int = WATCHER_OVERFLOW_THRESHOLD,
    ):
        super().__init__()
        self.root_path = normalize_fs_path(root_path)
        self._on_delta = on_delta
        self._loop = loop
        self._debounce_s = max(0, int(debounce_ms)) / 1000.0
        self._overflow_threshold = max(0, int(overflow_threshold))
        self._lock = Lock()
        self._pending: dict[str, str] = {}
        self._flush_timer: asyncio.TimerHandle | None = None
        self._closed = False
        self._background: set[asyncio.Future] = set()

    def _is_ignored_path(self, path: str) -> bool:
        rel = os.path.relpath(path, self.root_path) if is_under_path(path, self.root_path) else None
        if rel is None or rel in (os.curdir, os.pardir) or rel.startswith(os.pardir + os.sep):
            return True
        return any(is_ignored_name(part) for part in rel.split(os.sep))

    def _is_supported(self, path: str) -> bool:
        return detect_media_type(path) is not None

    def on_created(self, event):
        if not event.is_directory:
            self._record(event.src_path, _ADDED)

    def on_modified(self, event):
        if not event.is_directory:
            self._record(event.src_path, _ADDED)

    def on_deleted(self, event):
        if not event.is_directory:
            self._record(event.src_path, _REMOVED)

    def on_moved(self, event):
        if event.is_directory:
            return
        self._record(event.src_path, _REMOVED)
        self._record(getattr(event, "dest_path", ""), _ADDED)

    def _record(self, raw_path: Any, kind: str) -> None:
        if isinstance(raw_path, bytes):
            raw_path = os.fsdecode(raw_path)
        key = normalize_fs_path(str(raw_path or ""))
        if not key or self._is_ignored_path(key) or not self._is_supported(key):
            return
        with self._lock:
            if self._closed:
                return
            self._pending.pop(key, None)
            self._pending[key] = kind
        try:
            self._loop.call_soon_threadsafe(self._schedule_flush)
        except RuntimeError:
            # Loop already closed during shutdown
            pass

    def _schedule_flush(self) -> None:
        with self._lock:
            if self._closed:
                return
            if self._flush_timer:
                self._flush_timer.cancel()
            self._flush_timer = self._loop.call_later(self._debounce_s, self._flush)

    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def drain(self) -> WatcherDelta | None:
        """Take every pending change as one delta, or None when nothing is pending."""
        with self._lock:
            pending = self._pending
            self._pending = {}
            self._flush_timer = None
        if not pending:
            return None
        added = tuple(path for path, kind in pending.items() if kind == _ADDED)
        removed = tuple(path for path, kind in pending.items() if kind == _REMOVED)
        return WatcherDelta(
            root_path=self.root_path,
            added_or_changed_paths=added,
            removed_paths=removed,
            overflow=len(added) + len(removed) > self._overflow_threshold,
        )

    def _flush(self) -> None:
        delta = self.drain()
        if delta is None:
            return
        logger.debug(
            "Watcher delta for %s: %d added, %d removed%s",
            delta.root_path,
            len(delta.added_or_changed_paths),
            len(delta.removed_paths),
            " (overflow)" if delta.overflow else "",
        )
        try:
            outcome = self._on_delta(delta)
        except Exception as exc:
            logger.warning("Watcher callback failed for %s: %s", delta.root_path, exc)
            return
        if inspect.isawaitable(outcome):
            future = asyncio.ensure_future(outcome, loop=self._loop)
            self._background.add(future)
            future.add_done_callback(self._on_callback_done)

    def _on_callback_done(self, future: asyncio.Future) -> None:
        self._background.discard(future)
        if not future.cancelled() and future.exception() is not None:
            logger.warning("Watcher callback failed for %s: %s", self.root_path, future.exception())

    def cancel(self) -> None:
        """Drop pending changes and the debounce timer; later events are ignored."""
        with self._lock:
            self._closed = True
            self._pending.clear()
            timer = self._flush_timer
            self._flush_timer = None
        if timer:
            timer.cancel()


class FileWatcherService:
    """
    Keeps one recursive watch per requested root.

    Usage:
        watcher = FileWatcherService(on_change)
        await watcher.sync(["/photos", "/videos"])
        ...
        await watcher.stop()
    """

    def __init__(
        self,
        on_change: DeltaCallback,
        *,
        debounce_ms: int = WATCHER_DEBOUNCE_MS,
        overflow_threshold: int = WATCHER_OVERFLOW_THRESHOLD,
        loop: asyncio.AbstractEventLoop | None = None,
    ):
        self._on_change = on_change
        self._debounce_ms = debounce_ms
        self._overflow_threshold = overflow_threshold
        self._loop = loop
        self._observer: Any | None = None
        self._watches: dict[str, tuple[Any, DebouncedDeltaHandler]] = {}
        self._lock = Lock()

    @property
    def is_running(self) -> bool:
        return self._observer is not None

    @property
    def watched_roots(self) -> list[str]:
        return list(self._watches.keys())

    def handler_for(self, root_path: str) -> DebouncedDeltaHandler | None:
        entry = self._watches.get(normalize_fs_path(root_path))
        return entry[1] if entry else None

    def _resolve_loop(self) -> asyncio.AbstractEventLoop:
        return self._loop or asyncio.get_running_loop()

    def _ensure_observer(self) -> Any:
        if self._observer is None:
            self._observer = Observer()
            self._observer.start()
            logger.info("File watcher started")
        return self._observer

    def _unwatch_locked(self, root: str) -> None:
        watch, handler = self._watches.pop(root)
        handler.cancel()
        try:
            if self._observer is not None:
                self._observer.unschedule(watch)
        except Exception as exc:
            logger.debug("Failed to unschedule watch for %s: %s", root, exc)
        logger.info("Watcher removed: %s", root)

    async def sync(self, root_paths: Iterable[str]) -> list[str]:
        """Watch exactly `root_paths`; returns the roots now being watched."""
        wanted = dedupe_paths(root_paths or ())
        wanted_set = set(wanted)
        loop = self._resolve_loop()
        with self._lock:
            for root in [r for r in self._watches if r not in wanted_set]:
                self._unwatch_locked(root)

            for root in wanted:
                if root in self._watches:
                    continue
                if not os.path.isdir(root):
                    logger.warning("Watcher skipping missing directory: %s", root)
                    continue
                handler = DebouncedDeltaHandler(
                    root,
                    self._on_change,
                    loop,
                    debounce_ms=self._debounce_ms,
                    overflow_threshold=self._overflow_threshold,
                )
                try:
                    watch = self._ensure_observer().schedule(handler, root, recursive=True)
                except Exception as exc:
                    logger.warning("Failed to watch %s: %s", root, exc)
                    continue
                self._watches[root] = (watch, handler)
                logger.info("Watcher started for: %s", root)

            if not self._watches:
                self._stop_observer_locked()
            return list(self._watches.keys())

    async def start(self, root_path: str) -> list[str]:
        return await self.sync([root_path])

    def _stop_observer_locked(self) -> None:
        observer = self._observer
        self._observer = None
        if observer is None:
            return
        try:
            observer.stop()
            observer.join(timeout=2)
        except Exception as exc:
            logger.debug("Watcher stop error: %s", exc)
        logger.info("File watcher stopped")

    async def stop(self) -> None:
        """Stop watching every root and discard pending changes."""
        with self._lock:
            for _, handler in self._watches.values():
                handler.cancel()
            self._watches.clear()
            self._stop_observer_locked()
