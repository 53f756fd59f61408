"""
ExifTool adapter for reading metadata.
"""
import asyncio
import json
import os
import shutil
import subprocess
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from ...config import EXIFTOOL_TIMEOUT
from ...shared import ErrorCode, Result, get_logger

logger = get_logger(__name__)

# Tags the indexer consumes; keeps ExifTool output small.
METADATA_TAGS: Tuple[str, ...] = (
    "GPSLatitude",
    "GPSLongitude",
    "GPSAltitude",
    "DateTimeOriginal",
    "CreateDate",
    "MediaCreateDate",
    "TrackCreateDate",
    "FileModifyDate",
    "ImageWidth",
    "ImageHeight",
    "ExifImageWidth",
    "ExifImageHeight",
    "SourceImageWidth",
    "SourceImageHeight",
    "VideoFrameWidth",
    "VideoFrameHeight",
    "Duration",
    "Model",
)


def _decode_bytes_best_effort(blob: Optional[bytes]) -> str:
    """Decode subprocess bytes, falling back to cp1252 and then lossy UTF-8."""
    if not blob:
        return ""
    raw = bytes(blob)
    for enc in ("utf-8", "utf-8-sig"):
        try:
            return raw.decode(enc, errors="strict")
        except UnicodeDecodeError:
            pass
    try:
        return raw.decode("cp1252", errors="strict")
    except UnicodeDecodeError:
        return raw.decode("utf-8", errors="replace")


class ExifTool:
    """
    ExifTool wrapper for metadata reads.

    Never raises exceptions - always returns Result.
    """

    def __init__(self, bin_name: str = "exiftool", timeout: Optional[float] = None):
        """
        Args:
            bin_name: ExifTool binary name or path
            timeout: Command timeout in seconds
        """
        self.bin = bin_name
        self.timeout = float(timeout) if timeout is not None else float(EXIFTOOL_TIMEOUT)
        self._available = self._check_available()

    @staticmethod
    def _is_safe_executable_name(raw: str) -> bool:
        if not raw:
            return False
        if "\x00" in raw or "\n" in raw or "\r" in raw:
            return False
        return not any(ch in raw for ch in ("&", "|", ";", ">", "<"))

    def _check_available(self) -> bool:
        """Resolve the executable from PATH or an explicit file path."""
        raw = (self.bin or "").strip()
        if not self._is_safe_executable_name(raw):
            return False
        resolved = shutil.which(raw)
        if not resolved:
            candidate = Path(raw)
            if not candidate.is_file():
                return False
            resolved = str(candidate.resolve())
        self.bin = resolved
        return True

    def is_available(self) -> bool:
        return self._available

    def _build_read_command(self, path: str, tags: List[str], fast: bool) -> List[str]:
        # -n: numeric values (signed decimal GPS, seconds for Duration)
        cmd = [self.bin, "-j", "-n", "-s"]
        if fast:
            cmd.append("-fast2")
        cmd.extend(f"-{tag}" for tag in tags)
        if os.name == "nt":
            cmd.extend(["-charset", "filename=utf8"])
        cmd.extend(["--", str(path)])
        return cmd

    @staticmethod
    def _parse_read_process(process: subprocess.CompletedProcess, path: str) -> Result[Dict[str, Any]]:
        stdout = _decode_bytes_best_effort(process.stdout)
        stderr = _decode_bytes_best_effort(process.stderr)

        if process.returncode != 0:
            stderr_msg = stderr.strip()
            logger.debug("ExifTool error for %s: %s", path, stderr_msg)
            return Result.Err(
                ErrorCode.EXIFTOOL_ERROR,
                stderr_msg or "ExifTool command failed",
                return_code=int(process.returncode),
            )
        if not stdout.strip():
            return Result.Err(ErrorCode.PARSE_ERROR, "ExifTool returned empty output")
        try:
            data = json.loads(stdout)
        except json.JSONDecodeError as exc:
            return Result.Err(ErrorCode.PARSE_ERROR, f"Failed to parse ExifTool output: {exc}")
        if isinstance(data, list) and data and isinstance(data[0], dict):
            return Result.Ok(data[0])
        return Result.Err(ErrorCode.PARSE_ERROR, "No metadata found")

    def read(self, path: str, tags: Optional[List[str]] = None, fast: bool = False) -> Result[Dict[str, Any]]:
        """
        Read metadata from a file.

        Args:
            path: File path
            tags: Tags to read (defaults to METADATA_TAGS)
            fast: Use `-fast2` (skip trailers and maker notes) for the quick tier

        Returns:
            Result with a flat tag dict or error
        """
        if not self._available:
            return Result.Err(ErrorCode.TOOL_MISSING, "ExifTool not found in PATH")
        if not path or "\x00" in str(path):
            return Result.Err(ErrorCode.INVALID_INPUT, "Invalid file path")
        cmd = self._build_read_command(path, list(tags or METADATA_TAGS), fast)
        try:
            process = subprocess.run(cmd, capture_output=True, check=False, timeout=self.timeout, shell=False)
        except subprocess.TimeoutExpired:
            logger.warning("ExifTool timeout for %s", path)
            return Result.Err(ErrorCode.TIMEOUT, f"ExifTool timeout after {self.timeout}s")
        except OSError as exc:
            logger.error("ExifTool failed to start: %s", exc)
            return Result.Err(ErrorCode.EXIFTOOL_ERROR, str(exc))
        return self._parse_read_process(process, path)

    async def aread(self, path: str, tags: Optional[List[str]] = None, fast: bool = False) -> Result[Dict[str, Any]]:
        """Async wrapper running `read` in a worker thread."""
        return await asyncio.to_thread(self.read, path, tags, fast)
