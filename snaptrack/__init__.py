"""SnapTrack render service: chunked uploads, ffmpeg renders, polled progress."""

__version__ = "18.0.0"
