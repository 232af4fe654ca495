"""
Hardware acceleration detection for StreamVio.

The encoder toolchain is asked for its encoder list once; the first
backend found in priority order is cached for the life of the detector.
"""

import asyncio
import logging
from typing import List, Optional, Tuple

from .models import DETECTION_PRIORITY, HardwareCapability, HWAccelType

logger = logging.getLogger(__name__)

__all__ = [
    "HWAccelType",
    "HardwareCapability",
    "HardwareDetector",
    "DETECTION_PRIORITY",
    "parse_encoder_list",
    "get_hardware_detector",
    "set_hardware_detector",
]


async def _run_command(cmd: List[str], timeout: float = 10.0) -> Tuple[int, str, str]:
    """Run a command and return (returncode, stdout, stderr)."""
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        return -1, "", f"Cannot run {cmd[0]}: {e}"

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        return -1, "", "Command timed out"

    return proc.returncode, stdout.decode("utf-8", errors="ignore"), stderr.decode("utf-8", errors="ignore")


def parse_encoder_list(output: str) -> List[str]:
    """Extract video encoder names from `ffmpeg -encoders` output."""
    encoders = []
    for line in output.splitlines():
        line = line.strip()
        # Format: "V....D h264_nvenc  NVIDIA NVENC H.264 encoder"
        if not line.startswith("V"):
            continue
        parts = line.split()
        if len(parts) >= 2 and parts[1] != "=":
            encoders.append(parts[1])
    return encoders


def _pick_backend(encoders: List[str]) -> HWAccelType:
    for backend in DETECTION_PRIORITY:
        if any(backend.value in name for name in encoders):
            return backend
    return HWAccelType.NONE


class HardwareDetector:
    """Detects and caches the usable hardware acceleration backend."""

    def __init__(self, ffmpeg_path: str = "ffmpeg", timeout: float = 10.0):
        self.ffmpeg_path = ffmpeg_path
        self.timeout = timeout
        self._capability: Optional[HardwareCapability] = None
        self._lock = asyncio.Lock()

    @property
    def cached(self) -> Optional[HardwareCapability]:
        return self._capability

    async def detect(self, force_refresh: bool = False) -> HWAccelType:
        capability = await self.get_capability(force_refresh=force_refresh)
        return capability.backend

    async def get_capability(self, force_refresh: bool = False) -> HardwareCapability:
        async with self._lock:
            if self._capability is None or force_refresh:
                self._capability = await self._probe()
            return self._capability

    async def _probe(self) -> HardwareCapability:
        returncode, stdout, stderr = await _run_command(
            [self.ffmpeg_path, "-hide_banner", "-encoders"],
            timeout=self.timeout,
        )
        if returncode != 0:
            reason = stderr.strip().splitlines()[-1] if stderr.strip() else f"exit code {returncode}"
            logger.warning(f"[Hardware] Encoder query failed, using software encoding: {reason}")
            return HardwareCapability(backend=HWAccelType.NONE, error=reason)

        encoders = parse_encoder_list(stdout)
        backend = _pick_backend(encoders)
        logger.info(f"[Hardware] Detected acceleration: {backend.value}")
        return HardwareCapability(backend=backend, encoders=encoders)

    async def resolve(self, mode: str) -> HWAccelType:
        """Map a configured mode (auto, none or a backend name) to a backend."""
        mode = (mode or "none").strip().lower()
        if mode == "auto":
            return await self.detect()
        if mode in ("none", "software", "off"):
            return HWAccelType.NONE
        try:
            return HWAccelType(mode)
        except ValueError:
            logger.warning(f"[Hardware] Unknown acceleration mode '{mode}', using software encoding")
            return HWAccelType.NONE


# Global detector instance
_detector: Optional[HardwareDetector] = None


def get_hardware_detector(ffmpeg_path: Optional[str] = None) -> HardwareDetector:
    """Get the global hardware detector, creating it on first use."""
    global _detector
    if _detector is None:
        _detector = HardwareDetector(ffmpeg_path or "ffmpeg")
    return _detector


def set_hardware_detector(detector: Optional[HardwareDetector]) -> None:
    """Set the global hardware detector instance."""
    global _detector
    _detector = detector
