"""
Profile resolution and adaptive bitrate ladder construction.
"""

import dataclasses
import logging
import math
import re
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from .constants import (
    ASSUMED_FRAME_RATE,
    BPP_ABOVE_1080,
    BPP_TIERS,
    BUFFER_SIZE_FACTOR,
    DEFAULT_PROFILE,
    DEFAULT_RENDITION,
    HIGH_BANDWIDTH,
    MAX_RATE_FACTOR,
    PROFILES,
    SLOW_BANDWIDTH,
    STANDARD_HEIGHTS,
)
from .models import Rendition, TranscodeProfile

logger = logging.getLogger(__name__)

_BITRATE_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([kKmM]?)\s*(?:bps)?\s*$")
_RESOLUTION_RE = re.compile(r"^\s*(\d+)\s*[xX:]\s*(\d+)\s*$")

_INT_FIELDS = ("width", "height", "audio_channels", "audio_sample_rate")
_BITRATE_FIELDS = ("video_bitrate", "audio_bitrate")
_OVERRIDABLE = frozenset(f.name for f in dataclasses.fields(TranscodeProfile)) - {"name"}


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def parse_bitrate(value: Union[str, int, float, None]) -> Optional[int]:
    """Parse '2M', '800k', '800' or a number into kbps."""
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return int(value)
    match = _BITRATE_RE.match(value)
    if not match:
        raise ValueError(f"Invalid bitrate: {value!r}")
    number, unit = float(match.group(1)), match.group(2).lower()
    if unit == "m":
        number *= 1000
    return int(number)


def _normalize_overrides(overrides: Mapping[str, Any]) -> Dict[str, Any]:
    changes: Dict[str, Any] = {}
    for key, value in overrides.items():
        if key == "resolution" and isinstance(value, str):
            match = _RESOLUTION_RE.match(value)
            if not match:
                raise ValueError(f"Invalid resolution: {value!r}")
            changes["width"], changes["height"] = int(match.group(1)), int(match.group(2))
            continue
        if key not in _OVERRIDABLE:
            continue
        if key in _BITRATE_FIELDS:
            value = parse_bitrate(value)
        elif key in _INT_FIELDS and value is not None:
            value = int(value)
        changes[key] = value
    return changes


def resolve_profile(name: Optional[str], overrides: Optional[Mapping[str, Any]] = None) -> TranscodeProfile:
    """
    Look up a built-in profile and apply caller overrides on top.

    Unknown profile names fall back to the standard profile. Override keys
    that are not profile fields are ignored; a "resolution" override of the
    form "WxH" sets both width and height.
    """
    key = name or DEFAULT_PROFILE
    base = PROFILES.get(key)
    if base is None:
        logger.warning(f"[Profiles] Unknown profile '{key}', using {DEFAULT_PROFILE}")
        base = PROFILES[DEFAULT_PROFILE]

    if not overrides:
        return base
    return dataclasses.replace(base, **_normalize_overrides(overrides))


def get_available_profiles() -> List[Dict[str, str]]:
    return [{"name": p.name, "description": p.description} for p in PROFILES.values()]


def bits_per_pixel(height: int) -> float:
    for max_height, bpp in BPP_TIERS:
        if height <= max_height:
            return bpp
    return BPP_ABOVE_1080


def calculate_bitrate(
    width: int,
    height: int,
    max_bitrate: int,
    frame_rate: float = ASSUMED_FRAME_RATE
) -> Tuple[int, int, int]:
    """Return (nominal, max rate, buffer size) in kbps for one rendition."""
    nominal = round_half_up(width * height * bits_per_pixel(height) * frame_rate / 1000)
    peak = round_half_up(nominal * MAX_RATE_FACTOR)
    buffer_size = round_half_up(nominal * BUFFER_SIZE_FACTOR)
    return min(nominal, max_bitrate), min(peak, max_bitrate), min(buffer_size, max_bitrate)


def _even_width(height: int, aspect: float) -> int:
    return max(2, round_half_up(height * aspect / 2) * 2)


def _rendition(width: int, height: int, max_bitrate: int) -> Rendition:
    bitrate, peak, buffer_size = calculate_bitrate(width, height, max_bitrate)
    return Rendition(width=width, height=height, bitrate=bitrate, max_bitrate=peak, buffer_size=buffer_size)


def build_ladder(
    source_width: Optional[int],
    source_height: Optional[int],
    max_height: int,
    max_bitrate: int = 8000
) -> List[Rendition]:
    """
    Build an HLS ladder sized to the source, ascending by height.

    Every standard height that fits under both the source height and
    max_height gets a rung. Sources below the smallest standard height get
    one rung at their own (capped) size, and unknown dimensions get the
    fixed default rung.
    """
    if not source_width or not source_height or source_width <= 0 or source_height <= 0:
        return [DEFAULT_RENDITION]

    aspect = source_width / source_height
    ladder = [
        _rendition(_even_width(height, aspect), height, max_bitrate)
        for height in STANDARD_HEIGHTS
        if height <= max_height and height <= source_height
    ]
    if ladder:
        return ladder

    height = min(source_height, max_height) if max_height > 0 else source_height
    height = max(2, height - height % 2)
    return [_rendition(_even_width(height, aspect), height, max_bitrate)]


def parse_ladder(raw: Any) -> List[Rendition]:
    """
    Turn a caller-supplied list of rendition dicts into a ladder sorted by
    height. Raises ValueError for anything an encoder could not use.
    """
    if not isinstance(raw, (list, tuple)):
        raise ValueError(f"renditions must be a list, got {raw!r}")
    ladder = []
    for index, entry in enumerate(raw):
        if not isinstance(entry, Mapping):
            raise ValueError(f"rendition {index} must be an object, got {entry!r}")
        try:
            rendition = Rendition.from_dict(entry)
        except KeyError as e:
            raise ValueError(f"rendition {index} is missing {e.args[0]}") from e
        except (TypeError, ValueError) as e:
            raise ValueError(f"rendition {index} has a non-numeric field: {e}") from e
        if min(rendition.width, rendition.height, rendition.bitrate, rendition.max_bitrate, rendition.buffer_size) <= 0:
            raise ValueError(f"rendition {index} sizes and bitrates must be positive")
        if rendition.width % 2 or rendition.height % 2:
            raise ValueError(f"rendition {index} must have even dimensions, got {rendition.resolution}")
        ladder.append(rendition)
    return sorted(ladder, key=lambda r: r.height)


def ladder_from_options(options: Mapping[str, Any]) -> Optional[List[Rendition]]:
    """Rebuild a ladder stored in job options, if one is present."""
    raw = options.get("renditions")
    if not raw:
        return None
    return parse_ladder(raw)


_HANDHELD_RE = re.compile(r"mobile|android|iphone|ipad|ipod", re.IGNORECASE)


def select_profile(
    user_agent: Optional[str],
    connection_type: Optional[str] = None,
    bandwidth: Optional[float] = None
) -> str:
    """
    Pick a built-in profile for a client from its user agent, connection
    type ("3g", "4g", "wifi") and measured bandwidth in kbps.

    Phones and tablets on a slow link get mobile, on anything faster
    standard. Desktops get high once bandwidth reaches HIGH_BANDWIDTH.
    """
    bandwidth = bandwidth or 0
    slow = (connection_type or "").lower() in ("2g", "3g") or 0 < bandwidth < SLOW_BANDWIDTH

    if _HANDHELD_RE.search(user_agent or ""):
        return "mobile" if slow else DEFAULT_PROFILE
    if bandwidth >= HIGH_BANDWIDTH:
        return "high"
    return DEFAULT_PROFILE
