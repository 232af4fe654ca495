"""
Data classes shared by the transcoding modules.
"""

import dataclasses
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class StreamInfo:
    index: int
    codec_type: str  # "video", "audio", "subtitle", ...
    codec: str = ""
    width: Optional[int] = None
    height: Optional[int] = None
    frame_rate: Optional[float] = None
    channels: Optional[int] = None
    sample_rate: Optional[int] = None
    bit_rate: Optional[int] = None
    attached_pic: bool = False


@dataclass
class MediaInfo:
    """Probe result for one input file."""
    path: str
    duration: Optional[float] = None
    format_name: str = ""
    bit_rate: Optional[int] = None
    streams: List[StreamInfo] = field(default_factory=list)

    @property
    def video_stream(self) -> Optional[StreamInfo]:
        for stream in self.streams:
            if stream.codec_type == "video" and not stream.attached_pic:
                return stream
        return None

    @property
    def audio_stream(self) -> Optional[StreamInfo]:
        for stream in self.streams:
            if stream.codec_type == "audio":
                return stream
        return None

    @property
    def width(self) -> Optional[int]:
        video = self.video_stream
        return video.width if video else None

    @property
    def height(self) -> Optional[int]:
        video = self.video_stream
        return video.height if video else None

    @property
    def has_video(self) -> bool:
        return self.video_stream is not None

    @property
    def has_audio(self) -> bool:
        return self.audio_stream is not None


@dataclass(frozen=True)
class Rendition:
    """One rung of an adaptive bitrate ladder. Bitrates are in kbps."""
    width: int
    height: int
    bitrate: int
    max_bitrate: int
    buffer_size: int

    @property
    def name(self) -> str:
        return f"{self.height}p"

    @property
    def resolution(self) -> str:
        return f"{self.width}x{self.height}"

    def to_dict(self) -> Dict[str, int]:
        return dataclasses.asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Rendition":
        return cls(
            width=int(data["width"]),
            height=int(data["height"]),
            bitrate=int(data["bitrate"]),
            max_bitrate=int(data["max_bitrate"]),
            buffer_size=int(data["buffer_size"]),
        )


@dataclass(frozen=True)
class TranscodeProfile:
    """Concrete encoder parameters. Bitrates are in kbps; video_codec None means audio only."""
    name: str
    description: str = ""
    video_codec: Optional[str] = "libx264"
    audio_codec: str = "aac"
    video_bitrate: Optional[int] = None
    audio_bitrate: int = 128
    width: Optional[int] = None
    height: Optional[int] = None
    preset: Optional[str] = None
    audio_channels: int = 2
    audio_sample_rate: Optional[int] = None
    container: str = "mp4"
    extension: str = "mp4"

    @property
    def has_video(self) -> bool:
        return bool(self.video_codec)
