"""
Per-root generation counters.

A task captures the current value when it is created and treats any later
bump as a silent cancellation.
"""
from __future__ import annotations

import threading

from ...path_utils import normalize_fs_path


class GenerationTokens:
    """Monotonic counter per normalized root, safe to touch from any thread."""

    def __init__(self):
        self._tokens: dict[str, int] = {}
        self._lock = threading.Lock()

    def bump(self, root_path: str) -> int:
        key = normalize_fs_path(root_path)
        with self._lock:
            value = self._tokens.get(key, 0) + 1
            self._tokens[key] = value
            return value

    def current(self, root_path: str) -> int:
        key = normalize_fs_path(root_path)
        with self._lock:
            return self._tokens.get(key, 0)

    def is_current(self, root_path: str, token: int) -> bool:
        return self.current(root_path) == int(token)
