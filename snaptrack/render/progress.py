"""Decoder for ffmpeg's streamed progress output.

Two encodings are understood:

- ``out_time_us=<microseconds>`` lines written by ``-progress pipe:1``
- ``time=HH:MM:SS.ff`` fragments in ffmpeg's human readable stderr stats

Progress is capped at 99% because the final step belongs to process exit,
when ffmpeg has finished writing the container index.
"""

import re
import time
from dataclasses import dataclass
from typing import Callable, Optional

PROGRESS_CAP = 0.99
ETA_MIN_FRACTION = 0.05

_OUT_TIME_US_RE = re.compile(r"^out_time_us=(-?\d+)\s*$")
_STATS_TIME_RE = re.compile(r"(?<!\w)time=(\d+):(\d{2}):(\d{2}(?:\.\d+)?)")


@dataclass(frozen=True)
class ProgressUpdate:
    progress: int  # percent, 0-99
    eta: int  # seconds
    processed_s: float


def parse_processed_seconds(line: str) -> Optional[float]:
    """Extract processed media time from one progress line, if present."""
    line = line.strip()
    match = _OUT_TIME_US_RE.match(line)
    if match:
        return max(int(match.group(1)), 0) / 1_000_000

    match = _STATS_TIME_RE.search(line)
    if match:
        hours, minutes, seconds = match.groups()
        return int(hours) * 3600 + int(minutes) * 60 + float(seconds)
    return None


class ProgressParser:
    """Turns engine progress lines into ``{progress, eta}`` for one render."""

    def __init__(self, duration_s: float, clock: Callable[[], float] = time.monotonic):
        if duration_s <= 0:
            raise ValueError("duration_s must be positive")
        self.duration_s = duration_s
        self._clock = clock
        self._started_at = clock()
        self._fraction = 0.0
        self.is_end = False

    def feed(self, line: str | bytes) -> Optional[ProgressUpdate]:
        """Consume one line; returns an update when the line carried a time."""
        if isinstance(line, bytes):
            line = line.decode("utf-8", errors="replace")

        if line.strip() == "progress=end":
            self.is_end = True
            return None

        processed_s = parse_processed_seconds(line)
        if processed_s is None:
            return None

        fraction = min(processed_s / self.duration_s, PROGRESS_CAP)
        self._fraction = max(self._fraction, fraction)

        elapsed = self._clock() - self._started_at
        eta = 0
        if self._fraction > ETA_MIN_FRACTION:
            eta = round(elapsed / self._fraction - elapsed)

        return ProgressUpdate(
            progress=round(self._fraction * 100),
            eta=max(eta, 0),
            processed_s=processed_s,
        )
