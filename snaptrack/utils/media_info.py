"""Media file information utilities using FFprobe."""

import json
import subprocess

from snaptrack.config import get_settings
from snaptrack.exceptions import MediaProbeError


def _get_settings():
    """Get settings lazily to avoid import issues in tests."""
    return get_settings()


def _run_ffprobe(file_path: str, *args) -> dict:
    """Run ffprobe and return parsed JSON."""
    settings = _get_settings()
    cmd = [
        settings.ffprobe_path,
        "-v", "error",
        "-print_format", "json",
        *args,
        file_path,
    ]

    try:
        result = subprocess.run(cmd, capture_output=True, text=True)
    except OSError as e:
        raise MediaProbeError(f"ffprobe could not be started: {e}")
    if result.returncode != 0:
        raise MediaProbeError(f"ffprobe failed: {result.stderr.strip()}")

    try:
        return json.loads(result.stdout)
    except json.JSONDecodeError as e:
        raise MediaProbeError(f"Failed to parse ffprobe output: {e}")


def get_media_duration(file_path: str) -> float:
    """
    Get media file duration in seconds.

    Args:
        file_path: Path to media file

    Returns:
        Duration in seconds

    Raises:
        MediaProbeError: If ffprobe fails or duration not found
    """
    data = _run_ffprobe(file_path, "-show_entries", "format=duration")
    format_info = data.get("format", {})

    try:
        duration = float(format_info["duration"])
    except (KeyError, TypeError, ValueError):
        raise MediaProbeError(f"Duration not found in: {file_path}")

    if duration <= 0:
        raise MediaProbeError(f"Non-positive duration in: {file_path}")
    return duration

