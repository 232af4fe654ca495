"""
Constants and presets for transcoding operations.
"""

from typing import Dict, Tuple

from .models import Rendition, TranscodeProfile


# Built-in single-file profiles
PROFILES: Dict[str, TranscodeProfile] = {
    "mobile": TranscodeProfile(
        name="mobile",
        description="Low bandwidth 360p for phones and slow connections",
        video_codec="libx264",
        audio_codec="aac",
        video_bitrate=800,
        audio_bitrate=96,
        width=640,
        height=360,
        preset="fast",
    ),
    "standard": TranscodeProfile(
        name="standard",
        description="720p H.264 for most browsers",
        video_codec="libx264",
        audio_codec="aac",
        video_bitrate=2000,
        audio_bitrate=192,
        width=1280,
        height=720,
        preset="medium",
    ),
    "high": TranscodeProfile(
        name="high",
        description="1080p H.264 at a high bitrate",
        video_codec="libx264",
        audio_codec="aac",
        video_bitrate=4000,
        audio_bitrate=320,
        width=1920,
        height=1080,
        preset="slow",
    ),
    "audio_high": TranscodeProfile(
        name="audio_high",
        description="Audio only, Vorbis 320k at 48 kHz",
        video_codec=None,
        audio_codec="libvorbis",
        audio_bitrate=320,
        audio_sample_rate=48000,
        container="ogg",
        extension="ogg",
    ),
}

DEFAULT_PROFILE = "standard"

# Profiles with no file-name suffix in their default output path
UNSUFFIXED_PROFILES = frozenset({"standard"})


# Adaptive ladder
STANDARD_HEIGHTS: Tuple[int, ...] = (360, 480, 720, 1080)
ASSUMED_FRAME_RATE = 30
MAX_RATE_FACTOR = 1.5
BUFFER_SIZE_FACTOR = 2.0

# (max height, bits per pixel); taller renditions need more bits per pixel
BPP_TIERS: Tuple[Tuple[int, float], ...] = (
    (360, 0.07),
    (480, 0.08),
    (720, 0.10),
    (1080, 0.12),
)
BPP_ABOVE_1080 = 0.15

# Used when the source dimensions are unknown
DEFAULT_RENDITION = Rendition(width=640, height=360, bitrate=800, max_bitrate=1000, buffer_size=1200)

HLS_AUDIO_BITRATE = 128  # kbps
HLS_MASTER_PLAYLIST = "master.m3u8"
HLS_VARIANT_PLAYLIST = "stream_%v.m3u8"
HLS_SEGMENT_PATTERN = "segment_%v_%03d.ts"
HLS_DIR_SUFFIX = "_hls"

HLS_PLAYLIST_EXTENSION = ".m3u8"

THUMBNAIL_DIR = "thumbnails"
THUMBNAIL_SUFFIX = "_thumb.jpg"
STORYBOARD_SUFFIX = "_storyboard"
STORYBOARD_FRAME_NAME = "{base}_thumb_{index}.jpg"

# Client bandwidth thresholds in kbps for picking a profile
SLOW_BANDWIDTH = 1500
HIGH_BANDWIDTH = 10000

# Stderr lines kept for failure messages
STDERR_TAIL_LINES = 100
