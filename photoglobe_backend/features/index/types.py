"""
Records flowing through the indexing pipeline.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Optional

from ...shared import IndexMode, MediaType


@dataclass(frozen=True)
class ScanFile:
    """One candidate media file from a scan (never persisted as-is)."""
    path: str  # normalized
    size_bytes: int
    mtime_ms: int
    media_type: MediaType
    mime: Optional[str] = None


@dataclass(frozen=True)
class ExistingSnapshot:
    """Catalog projection of one row, fetched once per job."""
    id: int
    path: str
    mtime_ms: int
    size_bytes: int
    is_deleted: bool = False


@dataclass
class IncrementalPlan:
    """Work partition produced by the planner; the three path lists are disjoint."""
    to_process: list[ScanFile] = field(default_factory=list)
    to_restore: list[str] = field(default_factory=list)
    to_delete: list[str] = field(default_factory=list)
    unchanged_count: int = 0


@dataclass(frozen=True)
class ExtractedMetadata:
    lat: Optional[float] = None
    lng: Optional[float] = None
    alt: Optional[float] = None
    taken_at_ms: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None
    duration_ms: Optional[int] = None
    camera_model: Optional[str] = None


@dataclass
class PhotoUpsertInput:
    """Quick-pass record: replaces the catalog row for `path`."""
    root_id: int
    path: str
    path_hash: str
    size_bytes: int
    mtime_ms: int
    media_type: MediaType
    mime: Optional[str]
    metadata: ExtractedMetadata
    last_indexed_at_ms: int
    last_error: Optional[str] = None


@dataclass
class PhotoMetadataPatch:
    """Full-pass refinement: only metadata columns are written."""
    root_id: int
    path: str
    metadata: ExtractedMetadata
    last_indexed_at_ms: int
    last_error: Optional[str] = None


class IndexPhase(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    EXTRACTING = "extracting"
    SAVING = "saving"
    COMPLETE = "complete"
    CANCELLED = "cancelled"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (IndexPhase.COMPLETE, IndexPhase.CANCELLED, IndexPhase.ERROR)


@dataclass(frozen=True)
class IndexStatus:
    """Immutable job snapshot; every transition produces a new one."""
    job_id: str
    root_path: str
    mode: IndexMode
    phase: IndexPhase = IndexPhase.IDLE
    scanned: int = 0
    queued: int = 0
    processed: int = 0
    indexed: int = 0
    skipped: int = 0
    errored: int = 0
    percent: int = 0
    started_at_ms: int = 0
    finished_at_ms: Optional[int] = None
    message: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["phase"] = self.phase.value
        return payload


@dataclass(frozen=True)
class EnrichmentTarget:
    root_id: int
    path: str
    media_type: MediaType


@dataclass
class EnrichmentTask:
    root_path: str
    token: int
    job_id: Optional[str]
    targets: list[EnrichmentTarget]


@dataclass(frozen=True)
class WatcherDelta:
    """Coalesced filesystem changes for one root and one debounce window."""
    root_path: str
    added_or_changed_paths: tuple[str, ...] = ()
    removed_paths: tuple[str, ...] = ()
    overflow: bool = False


@dataclass(frozen=True)
class RootRecord:
    id: int
    path: str
    last_scan_at_ms: Optional[int]
    created_at_ms: int
    updated_at_ms: int
