"""
Two-tier metadata extraction.

- quick tier: Pillow for plain JPEG/PNG files, otherwise ExifTool with `-fast2`
- full tier: ExifTool without shortcuts

Both tiers return an `ExtractedMetadata` or raise; the coordinator turns a
raised error into a soft row failure.
"""
from __future__ import annotations

import asyncio
import math
import os
import re
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Protocol

from ...adapters.tools import ExifTool
from ...config import EXIF_POOL_SIZE
from ...shared import ErrorCode, IndexingError, MediaType, get_logger
from .types import ExtractedMetadata

logger = get_logger(__name__)

PILLOW_EXTENSIONS = frozenset({".jpg", ".jpeg", ".png"})

_EXIF_IFD = 0x8769
_GPS_IFD = 0x8825
_TAG_MODEL = 0x0110
_TAG_DATETIME = 0x0132
_TAG_DATETIME_ORIGINAL = 0x9003

_TAKEN_AT_TAGS = ("DateTimeOriginal", "CreateDate", "MediaCreateDate", "TrackCreateDate", "FileModifyDate")
_WIDTH_TAGS = ("ImageWidth", "ExifImageWidth", "SourceImageWidth", "VideoFrameWidth")
_HEIGHT_TAGS = ("ImageHeight", "ExifImageHeight", "SourceImageHeight", "VideoFrameHeight")

_HHMMSS_RE = re.compile(r"^(\d+):(\d{1,2}):(\d{1,2}(?:\.\d+)?)$")
_SECONDS_RE = re.compile(r"([\d.]+)\s*s", re.IGNORECASE)
_EXIF_DATE_RE = re.compile(r"^(\d{4}):(\d{2}):(\d{2})")


class MetadataExtractor(Protocol):
    async def extract_quick(self, path: str, media_type: MediaType) -> ExtractedMetadata: ...

    async def extract_full(self, path: str, media_type: MediaType) -> ExtractedMetadata: ...

    async def shutdown(self) -> None: ...


def parse_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if isinstance(value, str):
        try:
            parsed = float(value.strip())
        except ValueError:
            return None
        return parsed if math.isfinite(parsed) else None
    return None


def _parse_int(value: Any) -> Optional[int]:
    number = parse_number(value)
    return int(round(number)) if number is not None else None


def parse_date_ms(value: Any) -> Optional[int]:
    """
    Parse an EXIF or ISO date into epoch milliseconds.

    Accepts "YYYY:MM:DD HH:MM:SS[.fff][+HH:MM]", ISO 8601 strings, datetimes and
    numeric epoch milliseconds. Naive values are read as UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, bool):
        return None
    elif isinstance(value, (int, float)):
        return int(value) if math.isfinite(value) else None
    elif isinstance(value, str):
        text = _EXIF_DATE_RE.sub(r"\1-\2-\3", value.strip(), count=1)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    try:
        return int(dt.timestamp() * 1000)
    except (OverflowError, OSError, ValueError):
        return None


def _parse_duration_text(value: str) -> Optional[int]:
    try:
        return int(round(float(value) * 1000))
    except ValueError:
        pass
    match = _HHMMSS_RE.match(value)
    if match:
        hours, minutes, seconds = int(match.group(1)), int(match.group(2)), float(match.group(3))
        return int(round((hours * 3600 + minutes * 60 + seconds) * 1000))
    match = _SECONDS_RE.search(value)
    if match:
        seconds = parse_number(match.group(1))
        if seconds is not None:
            return int(round(seconds * 1000))
    return None


def parse_duration_ms(value: Any) -> Optional[int]:
    """Duration in ms from seconds, "h:mm:ss(.f)", "N s" or a {"seconds": N} mapping."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(round(value * 1000)) if math.isfinite(value) else None
    if isinstance(value, str):
        return _parse_duration_text(value.strip())
    if isinstance(value, Mapping) and "seconds" in value:
        seconds = parse_number(value.get("seconds"))
        return int(round(seconds * 1000)) if seconds is not None else None
    return None


def _first(tags: Mapping[str, Any], names: tuple[str, ...], parse) -> Any:
    for name in names:
        parsed = parse(tags.get(name))
        if parsed is not None:
            return parsed
    return None


def tags_to_metadata(tags: Mapping[str, Any], media_type: MediaType) -> ExtractedMetadata:
    model = tags.get("Model")
    if isinstance(model, (int, float)) and not isinstance(model, bool):
        # ExifTool's JSON output emits numeric-looking strings as numbers
        model = str(model)
    return ExtractedMetadata(
        lat=parse_number(tags.get("GPSLatitude")),
        lng=parse_number(tags.get("GPSLongitude")),
        alt=parse_number(tags.get("GPSAltitude")),
        taken_at_ms=_first(tags, _TAKEN_AT_TAGS, parse_date_ms),
        width=_first(tags, _WIDTH_TAGS, _parse_int),
        height=_first(tags, _HEIGHT_TAGS, _parse_int),
        duration_ms=parse_duration_ms(tags.get("Duration")) if media_type == "video" else None,
        camera_model=(model.strip() or None) if isinstance(model, str) else None,
    )


def _rational(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError, ZeroDivisionError):
        return None


def _dms_to_degrees(dms: Any, ref: Any) -> Optional[float]:
    if not isinstance(dms, (tuple, list)) or len(dms) != 3:
        return None
    parts = [_rational(p) for p in dms]
    if any(p is None or not math.isfinite(p) for p in parts):
        return None
    degrees = parts[0] + parts[1] / 60.0 + parts[2] / 3600.0
    ref_text = ref.decode("ascii", errors="ignore") if isinstance(ref, bytes) else str(ref or "")
    if ref_text.strip().upper() in ("S", "W"):
        degrees = -degrees
    return degrees


def _read_with_pillow(path: str) -> dict[str, Any]:
    """Map the few EXIF fields Pillow exposes onto ExifTool tag names."""
    from PIL import Image

    tags: dict[str, Any] = {}
    with Image.open(path) as img:
        tags["ImageWidth"], tags["ImageHeight"] = img.size
        exif = img.getexif()
        if not exif:
            return tags
        model = exif.get(_TAG_MODEL)
        if isinstance(model, str):
            tags["Model"] = model.strip("\x00 ")
        exif_ifd = exif.get_ifd(_EXIF_IFD) or {}
        taken = exif_ifd.get(_TAG_DATETIME_ORIGINAL) or exif.get(_TAG_DATETIME)
        if isinstance(taken, str):
            tags["DateTimeOriginal"] = taken.strip("\x00 ")
        gps = exif.get_ifd(_GPS_IFD) or {}
        if gps:
            # 1/2: lat ref/value, 3/4: lng ref/value, 5/6: alt ref/value
            tags["GPSLatitude"] = _dms_to_degrees(gps.get(2), gps.get(1))
            tags["GPSLongitude"] = _dms_to_degrees(gps.get(4), gps.get(3))
            alt = _rational(gps.get(6))
            if alt is not None and gps.get(5) in (1, b"\x01"):
                alt = -alt
            tags["GPSAltitude"] = alt
    return tags


class ExifMetadataExtractor:
    """ExifTool-backed extractor with a Pillow shortcut for the quick tier."""

    def __init__(self, exiftool: Optional[ExifTool] = None, pool_size: int = EXIF_POOL_SIZE):
        self._exiftool = exiftool or ExifTool()
        self._semaphore = asyncio.Semaphore(max(1, int(pool_size)))

    def is_available(self) -> bool:
        return self._exiftool.is_available()

    async def _read_tags(self, path: str, fast: bool) -> dict[str, Any]:
        async with self._semaphore:
            result = await self._exiftool.aread(path, fast=fast)
        if not result.ok:
            raise IndexingError(result.error or "ExifTool read failed", result.code or ErrorCode.METADATA_FAILED)
        return result.data or {}

    async def extract_quick(self, path: str, media_type: MediaType) -> ExtractedMetadata:
        ext = os.path.splitext(path)[1].lower()
        if media_type == "photo" and ext in PILLOW_EXTENSIONS:
            try:
                async with self._semaphore:
                    tags = await asyncio.to_thread(_read_with_pillow, path)
            except Exception as exc:
                logger.debug("Pillow could not read %s: %s", path, exc)
                tags = None
            if tags is not None and (tags.get("DateTimeOriginal") or not self.is_available()):
                return tags_to_metadata(tags, media_type)
        return tags_to_metadata(await self._read_tags(path, fast=True), media_type)

    async def extract_full(self, path: str, media_type: MediaType) -> ExtractedMetadata:
        return tags_to_metadata(await self._read_tags(path, fast=False), media_type)

    async def shutdown(self) -> None:
        # One subprocess per read; nothing stays open.
        return None
