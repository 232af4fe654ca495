"""
FFmpeg command building for single-file, HLS, thumbnail and storyboard jobs.
"""

import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from ..hardware import HWAccelType
from ..models import TranscodeJob
from .constants import (
    HLS_AUDIO_BITRATE,
    HLS_SEGMENT_PATTERN,
    HLS_VARIANT_PLAYLIST,
    STORYBOARD_FRAME_NAME,
)
from .encoders import EncoderSelector
from .models import MediaInfo, Rendition, TranscodeProfile

logger = logging.getLogger(__name__)


@dataclass
class EncoderCommand:
    """A ready-to-spawn argument list plus the video encoder it uses."""
    args: List[str]
    encoder: Optional[str] = None
    accel: HWAccelType = HWAccelType.NONE


def format_timestamp(seconds: float) -> str:
    seconds = max(0.0, seconds)
    hours, rem = divmod(seconds, 3600)
    minutes, secs = divmod(rem, 60)
    return f"{int(hours):02d}:{int(minutes):02d}:{secs:06.3f}"


def storyboard_offsets(duration: float, count: int) -> List[int]:
    """Whole-second offsets of count frames spread evenly inside duration."""
    interval = duration / (count + 1)
    return [math.floor(interval * i) for i in range(1, count + 1)]


def storyboard_frame_path(output_dir: str, input_path: str, index: int) -> str:
    name = STORYBOARD_FRAME_NAME.format(base=Path(input_path).stem, index=index)
    return str(Path(output_dir) / name)


class CommandBuilder:
    """Builds encoder argument lists."""

    def __init__(
        self,
        ffmpeg_path: str,
        encoder_selector: EncoderSelector,
        max_bitrate: int = 8000,
        segment_duration: int = 2,
        thumbnail_width: int = 320,
        storyboard_width: int = 160
    ):
        self.ffmpeg_path = ffmpeg_path
        self.encoder_selector = encoder_selector
        self.max_bitrate = max_bitrate
        self.segment_duration = segment_duration
        self.thumbnail_width = thumbnail_width
        self.storyboard_width = storyboard_width

    def _base(self) -> List[str]:
        return [self.ffmpeg_path, "-hide_banner", "-y"]

    def _target_height(
        self,
        profile: TranscodeProfile,
        media_info: Optional[MediaInfo],
        max_height: Optional[int]
    ) -> Optional[int]:
        """Profile height, never above the source or the caller's cap."""
        candidates = [h for h in (profile.height, max_height) if h]
        if media_info and media_info.height:
            candidates.append(media_info.height)
        if not candidates:
            return None
        height = min(candidates)
        return height - height % 2

    def build_transcode_command(
        self,
        job: TranscodeJob,
        profile: TranscodeProfile,
        media_info: Optional[MediaInfo],
        accel: HWAccelType
    ) -> EncoderCommand:
        """Single-file re-encode to the profile's container."""
        with_video = profile.has_video and (media_info is None or media_info.has_video)

        encoder = None
        used_accel = HWAccelType.NONE
        video_args: List[str] = []
        if with_video:
            encoder, encoder_args, used_accel = self.encoder_selector.get_video_encoder(
                profile.video_codec, accel, profile.preset
            )
            video_args = ["-map", "0:v:0", "-c:v", encoder, *encoder_args]

            if encoder != "copy":
                if profile.video_bitrate:
                    video_args.extend(["-b:v", f"{min(profile.video_bitrate, self.max_bitrate)}k"])

                filters = []
                max_height = job.options.get("max_height")
                height = self._target_height(profile, media_info, int(max_height) if max_height else None)
                if height:
                    filters.append(f"scale=-2:{height}")
                upload = self.encoder_selector.get_upload_filter(used_accel)
                if upload:
                    filters.append(upload)
                else:
                    video_args.extend(["-pix_fmt", "yuv420p"])
                if filters:
                    video_args.extend(["-vf", ",".join(filters)])

        cmd = self._base()
        if used_accel.is_hardware:
            cmd.extend(self.encoder_selector.get_hw_input_args(used_accel))
        cmd.extend(["-i", job.input_path])

        if with_video:
            cmd.extend(video_args)
        else:
            cmd.append("-vn")

        cmd.extend(["-map", "0:a:0?", "-c:a", profile.audio_codec])
        if profile.audio_codec != "copy":
            cmd.extend(["-b:a", f"{profile.audio_bitrate}k", "-ac", str(profile.audio_channels)])
            if profile.audio_sample_rate:
                cmd.extend(["-ar", str(profile.audio_sample_rate)])

        if profile.container == "mp4":
            cmd.extend(["-movflags", "+faststart"])

        cmd.extend(["-f", profile.container, job.output_path])
        return EncoderCommand(args=cmd, encoder=encoder, accel=used_accel)

    def build_hls_command(
        self,
        job: TranscodeJob,
        renditions: List[Rendition],
        media_info: Optional[MediaInfo],
        accel: HWAccelType
    ) -> EncoderCommand:
        """Multi-rendition HLS with one variant playlist per rung and a master playlist."""
        output_dir = Path(job.output_path).parent
        has_audio = media_info.has_audio if media_info else True

        encoder, encoder_args, used_accel = self.encoder_selector.get_video_encoder("h264", accel, "medium")
        upload = self.encoder_selector.get_upload_filter(used_accel)

        count = len(renditions)
        labels = [f"v{i}" for i in range(count)]
        scales = []
        for i, rendition in enumerate(renditions):
            chain = f"scale={rendition.width}:{rendition.height}"
            if upload:
                chain += f",{upload}"
            source = f"[{labels[i]}]" if count > 1 else "[0:v]"
            scales.append(f"{source}{chain}[{labels[i]}out]")
        if count > 1:
            split = "[0:v]split=" + str(count) + "".join(f"[{label}]" for label in labels)
            filter_complex = ";".join([split, *scales])
        else:
            filter_complex = scales[0]

        cmd = self._base()
        if used_accel.is_hardware:
            cmd.extend(self.encoder_selector.get_hw_input_args(used_accel))
        cmd.extend(["-i", job.input_path, "-filter_complex", filter_complex])

        stream_maps = []
        for i, rendition in enumerate(renditions):
            cmd.extend([
                "-map", f"[{labels[i]}out]",
                f"-c:v:{i}", encoder,
                f"-b:v:{i}", f"{rendition.bitrate}k",
                f"-maxrate:v:{i}", f"{rendition.max_bitrate}k",
                f"-bufsize:v:{i}", f"{rendition.buffer_size}k",
            ])
            stream_maps.append(f"v:{i},a:{i}" if has_audio else f"v:{i}")

        cmd.extend(encoder_args)
        if encoder == "libx264":
            cmd.extend(["-profile:v", "main", "-sc_threshold", "0"])
        if not upload:
            cmd.extend(["-pix_fmt", "yuv420p"])
        # Keyframe at every segment boundary so renditions switch cleanly
        cmd.extend(["-force_key_frames", f"expr:gte(t,n_forced*{self.segment_duration})"])

        if has_audio:
            for _ in renditions:
                cmd.extend(["-map", "0:a:0"])
            cmd.extend(["-c:a", "aac", "-b:a", f"{HLS_AUDIO_BITRATE}k", "-ac", "2"])

        # Forward slashes work for ffmpeg on every platform
        segment_path = str(output_dir / HLS_SEGMENT_PATTERN).replace("\\", "/")
        playlist_path = str(output_dir / HLS_VARIANT_PLAYLIST).replace("\\", "/")

        cmd.extend([
            "-f", "hls",
            "-hls_time", str(self.segment_duration),
            "-hls_list_size", "0",
            "-hls_playlist_type", "vod",
            "-hls_flags", "independent_segments",
            "-hls_segment_filename", segment_path,
            "-master_pl_name", Path(job.output_path).name,
            "-var_stream_map", " ".join(stream_maps),
            playlist_path,
        ])
        return EncoderCommand(args=cmd, encoder=encoder, accel=used_accel)

    def build_thumbnail_command(
        self,
        job: TranscodeJob,
        time_offset: float,
        media_info: Optional[MediaInfo] = None
    ) -> EncoderCommand:
        """Grab one scaled JPEG frame at time_offset seconds."""
        if media_info and media_info.duration and time_offset >= media_info.duration:
            time_offset = media_info.duration / 2
        cmd = self._base()
        cmd.extend([
            "-ss", format_timestamp(time_offset),
            "-i", job.input_path,
            "-vframes", "1",
            "-vf", f"scale={self.thumbnail_width}:-2",
            "-q:v", "2",
            job.output_path,
        ])
        return EncoderCommand(args=cmd)

    def build_storyboard_command(self, job: TranscodeJob, offsets: List[int]) -> EncoderCommand:
        """
        Grab one small JPEG per offset in a single ffmpeg run.

        Each offset gets its own fast-seeking input of the same file, and
        frame i is written as <base>_thumb_<i>.jpg inside job.output_path.
        """
        cmd = self._base()
        for offset in offsets:
            cmd.extend(["-ss", format_timestamp(offset), "-i", job.input_path])
        for i in range(len(offsets)):
            cmd.extend([
                "-map", f"{i}:v:0",
                "-frames:v", "1",
                "-vf", f"scale={self.storyboard_width}:-2",
                "-q:v", "2",
                storyboard_frame_path(job.output_path, job.input_path, i + 1),
            ])
        return EncoderCommand(args=cmd)
