"""
Encoder selection for the detected hardware acceleration backend.
Tracks hardware encoder failures so later jobs fall back to software.
"""

import logging
import time
from typing import Dict, List, Optional, Tuple

from ..config import HardwareConfig
from ..hardware import HWAccelType

logger = logging.getLogger(__name__)


# Hardware encoder names per codec family
HW_ENCODERS: Dict[str, Dict[HWAccelType, str]] = {
    "h264": {
        HWAccelType.NVENC: "h264_nvenc",
        HWAccelType.QSV: "h264_qsv",
        HWAccelType.VAAPI: "h264_vaapi",
        HWAccelType.VIDEOTOOLBOX: "h264_videotoolbox",
    },
    "hevc": {
        HWAccelType.NVENC: "hevc_nvenc",
        HWAccelType.QSV: "hevc_qsv",
        HWAccelType.VAAPI: "hevc_vaapi",
        HWAccelType.VIDEOTOOLBOX: "hevc_videotoolbox",
    },
}

SOFTWARE_ENCODERS = {
    "h264": "libx264",
    "hevc": "libx265",
}

CODEC_FAMILIES = {
    "h264": "h264",
    "libx264": "h264",
    "avc": "h264",
    "h265": "hevc",
    "hevc": "hevc",
    "libx265": "hevc",
}

# Encoders that take a -preset option named like x264's
PRESET_ENCODERS = frozenset({"libx264", "libx265", "h264_qsv", "hevc_qsv"})

FAILURES_BEFORE_DISABLE = 3


class EncoderSelector:
    """Selects video encoders and hardware input args for a backend."""

    def __init__(self, hw_config: Optional[HardwareConfig] = None):
        self.hw_config = hw_config or HardwareConfig()
        self._failed_encoders: set = set()
        self._failure_counts: Dict[str, int] = {}
        self._last_failure_time: Dict[str, float] = {}
        self._cooldown_seconds = 300

    def get_video_encoder(
        self,
        codec: str,
        accel: HWAccelType,
        preset: Optional[str] = None
    ) -> Tuple[str, List[str], HWAccelType]:
        """
        Pick the encoder for a profile codec.

        Returns (encoder, extra args, backend actually used). Codecs with
        no hardware mapping, or a hardware encoder currently disabled after
        repeated failures, use the software encoder.
        """
        if codec == "copy":
            return "copy", [], HWAccelType.NONE

        family = CODEC_FAMILIES.get(codec.lower())
        software = SOFTWARE_ENCODERS.get(family, codec) if family else codec

        if accel.is_hardware and family:
            encoder = HW_ENCODERS[family].get(accel)
            if encoder and self.is_encoder_available(encoder):
                return encoder, self._hw_args(accel, preset), accel
            if encoder and not self.hw_config.fallback_to_software:
                return encoder, self._hw_args(accel, preset), accel
            if encoder:
                logger.info(f"[Encoder] {encoder} disabled after failures, using {software}")

        args = ["-preset", preset] if preset and software in PRESET_ENCODERS else []
        return software, args, HWAccelType.NONE

    def _hw_args(self, accel: HWAccelType, preset: Optional[str]) -> List[str]:
        if accel == HWAccelType.NVENC:
            return ["-preset", self.hw_config.nvenc_preset, "-tune", "hq", "-rc", "vbr", "-spatial-aq", "1"]
        if accel == HWAccelType.QSV:
            return ["-preset", preset or self.hw_config.qsv_preset, "-look_ahead", "1"]
        if accel == HWAccelType.VAAPI:
            return ["-rc_mode", "VBR"]
        if accel == HWAccelType.VIDEOTOOLBOX:
            return ["-realtime", "0"]
        return []

    def get_hw_input_args(self, accel: HWAccelType) -> List[str]:
        """Input-side args for hardware decoding/upload. Frames stay in system memory for CPU filters."""
        if accel == HWAccelType.NVENC:
            return ["-hwaccel", "cuda"]
        if accel == HWAccelType.QSV:
            return ["-hwaccel", "qsv"]
        if accel == HWAccelType.VAAPI:
            return ["-vaapi_device", self.hw_config.vaapi_device]
        if accel == HWAccelType.VIDEOTOOLBOX:
            return ["-hwaccel", "videotoolbox"]
        return []

    def get_upload_filter(self, accel: HWAccelType) -> Optional[str]:
        """Filter appended after scaling so VAAPI encoders receive GPU surfaces."""
        if accel == HWAccelType.VAAPI:
            return "format=nv12,hwupload"
        return None

    def mark_hw_failed(self, encoder: str) -> None:
        """Record a hardware encoder failure; disable it after repeated failures."""
        self._failure_counts[encoder] = self._failure_counts.get(encoder, 0) + 1
        self._last_failure_time[encoder] = time.time()

        failures = self._failure_counts[encoder]
        logger.warning(f"[Encoder] Encoder {encoder} failed (count: {failures})")

        if failures >= FAILURES_BEFORE_DISABLE:
            self._failed_encoders.add(encoder)
            logger.warning(f"[Encoder] Disabled {encoder} after {failures} failures")

    def is_encoder_available(self, encoder: str) -> bool:
        """Check if encoder is available (considering cooldown)."""
        if encoder not in self._failed_encoders:
            return True

        last_failure = self._last_failure_time.get(encoder, 0)
        failures = self._failure_counts.get(encoder, 0)

        # 5 min after the third failure, doubling each time, capped at 1 hour
        cooldown = min(self._cooldown_seconds * (2 ** (failures - FAILURES_BEFORE_DISABLE)), 3600)

        if time.time() - last_failure > cooldown:
            self._failed_encoders.discard(encoder)
            logger.info(f"[Encoder] Re-enabling {encoder} after {cooldown}s cooldown")
            return True

        return False

    def reset_encoder(self, encoder: str) -> None:
        """Reset failure state for an encoder after a successful encode."""
        if encoder in self._failure_counts:
            logger.debug(f"[Encoder] Reset failure state for {encoder}")
        self._failed_encoders.discard(encoder)
        self._failure_counts.pop(encoder, None)
        self._last_failure_time.pop(encoder, None)
