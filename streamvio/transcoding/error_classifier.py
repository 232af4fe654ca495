"""
Classification of encoder failures from the diagnostic stream tail.

Used to turn a bare exit code into a readable failure reason and to
detect hardware encoder failures.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass
class EncoderError:
    """A known class of encoder failure."""
    pattern: str
    category: str  # 'hardware', 'input', 'output', 'resource', 'codec'
    description: str


# First match wins, so specific patterns come before generic ones
ENCODER_ERROR_MAP: List[EncoderError] = [
    # Hardware encoders
    EncoderError("no nvenc capable devices", "hardware", "No NVENC capable GPU"),
    EncoderError("openencodesessionex failed", "hardware", "NVENC session init failed"),
    EncoderError("encodesessionlimitexceeded", "hardware", "NVENC session limit reached"),
    EncoderError("cuda error", "hardware", "CUDA error"),
    EncoderError("mfx_err", "hardware", "Intel QSV error"),
    EncoderError("qsv init failed", "hardware", "Intel QSV initialization failed"),
    EncoderError("failed to initialise vaapi", "hardware", "VAAPI initialization failed"),
    EncoderError("vaapi", "hardware", "VAAPI error"),
    EncoderError("/dev/dri", "hardware", "DRI device error"),
    EncoderError("videotoolbox", "hardware", "VideoToolbox error"),
    EncoderError("nvenc", "hardware", "NVENC error"),
    EncoderError("hw_frames_ctx", "hardware", "Hardware frame context error"),
    EncoderError("hwupload", "hardware", "Hardware upload failed"),
    EncoderError("device creation failed", "hardware", "Hardware device creation failed"),

    # Input problems
    EncoderError("no such file or directory", "input", "File not found"),
    EncoderError("invalid data found when processing input", "input", "Invalid input data"),
    EncoderError("moov atom not found", "input", "Invalid MP4 file"),
    EncoderError("does not contain any stream", "input", "No usable streams in input"),
    EncoderError("stream map", "input", "Requested stream not present in input"),

    # Output problems
    EncoderError("permission denied", "output", "Permission denied"),
    EncoderError("no space left", "output", "No disk space"),
    EncoderError("disk quota", "output", "Disk quota exceeded"),
    EncoderError("read-only file system", "output", "Read-only file system"),

    # Resources
    EncoderError("out of memory", "resource", "Out of memory"),
    EncoderError("cannot allocate memory", "resource", "Memory allocation failed"),
    EncoderError("too many open files", "resource", "File descriptor limit"),

    # Codec setup
    EncoderError("unknown encoder", "codec", "Encoder not available"),
    EncoderError("encoder not found", "codec", "Encoder not available"),
    EncoderError("error while opening encoder", "codec", "Encoder rejected its parameters"),
    EncoderError("no such filter", "codec", "Filter not available"),
]


class ErrorClassifier:
    """Matches encoder output against known failure patterns."""

    def __init__(self, error_map: Optional[List[EncoderError]] = None):
        self.error_map = error_map or ENCODER_ERROR_MAP

    def classify(self, error_output: str) -> Tuple[Optional[EncoderError], str]:
        """Return (matched error, category); category is 'unknown' if nothing matches."""
        error_lower = error_output.lower()

        for error in self.error_map:
            if error.pattern in error_lower:
                return error, error.category

        return None, "unknown"


_classifier: Optional[ErrorClassifier] = None


def get_error_classifier() -> ErrorClassifier:
    """Get the shared classifier instance."""
    global _classifier
    if _classifier is None:
        _classifier = ErrorClassifier()
    return _classifier
