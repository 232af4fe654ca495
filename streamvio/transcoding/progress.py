"""
Encoder progress parsing.

ffmpeg reports encoding status on its diagnostic stream with lines like::

    frame=  240 fps= 48 q=28.0 size=    1024kB time=00:00:08.00 bitrate=1048.6kbits/s speed=1.6x

The elapsed output time appears as ``time=HH:MM:SS`` with an optional
fractional part. Anything else on the line is ignored.
"""

import re
from typing import Optional

TIME_PATTERN = re.compile(r"time=\s*(\d+):([0-5]?\d):([0-5]?\d(?:\.\d+)?)(?![\d:])")


def parse_timestamp(line: str) -> Optional[float]:
    """Return the elapsed seconds from a status line, or None if there is no marker."""
    match = TIME_PATTERN.search(line)
    if not match:
        return None
    hours, minutes, seconds = match.groups()
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


def parse_progress(line: str, duration: Optional[float]) -> Optional[int]:
    """
    Convert one encoder status line into a completion percentage.

    Returns ``min(round(elapsed / duration * 100), 100)``, or None when the
    line carries no time marker or the source duration is unknown, zero or
    negative.
    """
    if not duration or duration <= 0:
        return None
    elapsed = parse_timestamp(line)
    if elapsed is None:
        return None
    return min(int(elapsed / duration * 100 + 0.5), 100)
