"""
Transcoding package for StreamVio: profiles, ladders, ffmpeg commands
and process orchestration.
"""

from .models import MediaInfo, StreamInfo, Rendition, TranscodeProfile
from .constants import PROFILES, STANDARD_HEIGHTS, DEFAULT_RENDITION
from .profiles import (
    resolve_profile,
    get_available_profiles,
    build_ladder,
    parse_ladder,
    select_profile,
    calculate_bitrate,
    parse_bitrate,
)
from .progress import parse_progress, parse_timestamp
from .probe import MediaProbe, parse_frame_rate
from .encoders import EncoderSelector
from .error_classifier import ErrorClassifier, get_error_classifier
from .commands import CommandBuilder, EncoderCommand
from .engine import TranscodeEngine

__all__ = [
    # Models
    "MediaInfo",
    "StreamInfo",
    "Rendition",
    "TranscodeProfile",
    # Constants
    "PROFILES",
    "STANDARD_HEIGHTS",
    "DEFAULT_RENDITION",
    # Profiles and ladders
    "resolve_profile",
    "get_available_profiles",
    "build_ladder",
    "parse_ladder",
    "select_profile",
    "calculate_bitrate",
    "parse_bitrate",
    # Progress
    "parse_progress",
    "parse_timestamp",
    # Classes
    "MediaProbe",
    "parse_frame_rate",
    "EncoderSelector",
    "ErrorClassifier",
    "get_error_classifier",
    "CommandBuilder",
    "EncoderCommand",
    "TranscodeEngine",
]
