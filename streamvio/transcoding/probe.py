"""
Media probing via ffprobe.
"""

import asyncio
import json
import logging
import os
from collections import OrderedDict
from typing import Any, Dict, Optional, Tuple

from .models import MediaInfo, StreamInfo

logger = logging.getLogger(__name__)


def parse_frame_rate(value: Optional[str]) -> Optional[float]:
    """Parse an ffprobe rate such as '24000/1001' or '25' into fps."""
    if not value:
        return None
    try:
        if "/" in value:
            num, den = value.split("/", 1)
            den_f = float(den)
            if den_f == 0:
                return None
            fps = float(num) / den_f
        else:
            fps = float(value)
    except ValueError:
        return None
    if fps <= 0:
        return None
    return round(fps, 3)


def _to_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _to_float(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def parse_probe_output(path: str, data: Dict[str, Any]) -> MediaInfo:
    """Build MediaInfo from ffprobe's JSON output."""
    fmt = data.get("format") or {}
    streams = []
    for raw in data.get("streams") or []:
        codec_type = raw.get("codec_type", "")
        stream = StreamInfo(
            index=_to_int(raw.get("index")) or 0,
            codec_type=codec_type,
            codec=raw.get("codec_name", ""),
            bit_rate=_to_int(raw.get("bit_rate")),
        )
        if codec_type == "video":
            stream.width = _to_int(raw.get("width"))
            stream.height = _to_int(raw.get("height"))
            stream.frame_rate = parse_frame_rate(raw.get("avg_frame_rate")) or parse_frame_rate(raw.get("r_frame_rate"))
            stream.attached_pic = bool((raw.get("disposition") or {}).get("attached_pic"))
        elif codec_type == "audio":
            stream.channels = _to_int(raw.get("channels"))
            stream.sample_rate = _to_int(raw.get("sample_rate"))
        streams.append(stream)

    duration = _to_float(fmt.get("duration"))
    if duration is not None and duration <= 0:
        duration = None

    return MediaInfo(
        path=path,
        duration=duration,
        format_name=fmt.get("format_name", ""),
        bit_rate=_to_int(fmt.get("bit_rate")),
        streams=streams,
    )


class MediaProbe:
    """
    Runs ffprobe against input files. Probe failures return None.

    Results are cached per (path, size, mtime) so a file is probed once
    while it stays unchanged; cached() reads that cache without probing.
    """

    def __init__(self, ffprobe_path: str = "ffprobe", timeout: float = 30.0, cache_size: int = 256):
        self.ffprobe_path = ffprobe_path
        self.timeout = timeout
        self.cache_size = cache_size
        self._cache: "OrderedDict[Tuple[str, int, int], MediaInfo]" = OrderedDict()

    @staticmethod
    def _cache_key(path: str) -> Optional[Tuple[str, int, int]]:
        try:
            stat = os.stat(path)
        except OSError:
            return None
        return path, stat.st_size, stat.st_mtime_ns

    def cached(self, path: str) -> Optional[MediaInfo]:
        """Cached probe result for an unchanged file, without running ffprobe."""
        key = self._cache_key(path)
        if key is None:
            return None
        return self._cache.get(key)

    async def probe(self, path: str) -> Optional[MediaInfo]:
        key = self._cache_key(path)
        if key is not None and key in self._cache:
            self._cache.move_to_end(key)
            return self._cache[key]

        info = await self._run_ffprobe(path)
        if info is not None and key is not None and self.cache_size > 0:
            self._cache[key] = info
            if len(self._cache) > self.cache_size:
                self._cache.popitem(last=False)
        return info

    async def _run_ffprobe(self, path: str) -> Optional[MediaInfo]:
        cmd = [
            self.ffprobe_path,
            "-v", "quiet",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            path,
        ]
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.warning(f"[Probe] Cannot run {self.ffprobe_path}: {e}")
            return None

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            logger.warning(f"[Probe] Timed out probing {path}")
            return None

        if process.returncode != 0:
            logger.warning(
                f"[Probe] ffprobe exited with code {process.returncode} for {path}: "
                f"{stderr.decode('utf-8', errors='ignore').strip()[:200]}"
            )
            return None

        try:
            data = json.loads(stdout.decode("utf-8", errors="ignore") or "{}")
        except json.JSONDecodeError as e:
            logger.warning(f"[Probe] Unreadable ffprobe output for {path}: {e}")
            return None

        return parse_probe_output(path, data)
