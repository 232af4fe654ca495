"""
Hardware acceleration models for StreamVio
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

from ..models import utcnow


class HWAccelType(str, Enum):
    NVENC = "nvenc"
    QSV = "qsv"
    VAAPI = "vaapi"
    VIDEOTOOLBOX = "videotoolbox"
    NONE = "none"

    @property
    def is_hardware(self) -> bool:
        return self is not HWAccelType.NONE


# Checked in this order; the first backend with an encoder present wins
DETECTION_PRIORITY = (
    HWAccelType.NVENC,
    HWAccelType.QSV,
    HWAccelType.VAAPI,
    HWAccelType.VIDEOTOOLBOX,
)


@dataclass
class HardwareCapability:
    backend: HWAccelType = HWAccelType.NONE
    encoders: List[str] = field(default_factory=list)
    detected_at: datetime = field(default_factory=utcnow)
    error: Optional[str] = None
