import json
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Application
    app_name: str = "SnapTrack Render Engine"
    app_version: str = "18.0.0"
    environment: Literal["development", "staging", "production"] = "development"
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 6011

    # Storage (RAM disk by default; everything under it is transient)
    ram_path: str = "/dev/shm/snaptrack"
    upload_dir_name: str = "uploads"
    public_dir_name: str = "public"
    # Optional directory holding the web client, served at "/"
    web_root: str = ""

    @computed_field
    @property
    def upload_dir(self) -> Path:
        return Path(self.ram_path) / self.upload_dir_name

    @computed_field
    @property
    def public_dir(self) -> Path:
        return Path(self.ram_path) / self.public_dir_name

    # CORS - stored as string, parsed via computed property
    cors_origins_raw: str = "*"

    @computed_field
    @property
    def cors_origins(self) -> list[str]:
        """Parse CORS origins from a comma-separated string or JSON array."""
        v = self.cors_origins_raw
        if v.startswith("["):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                pass
        return [origin.strip() for origin in v.split(",") if origin.strip()]

    # FFmpeg
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"

    # Render settings
    render_output_width: int = 1280
    render_output_height: int = 720
    render_fps: int = 30
    render_ffmpeg_threads: int = 8
    render_video_preset: str = "superfast"
    render_video_tune: str = "fastdecode"
    render_video_crf: int = 28
    render_audio_bitrate: str = "96k"
    render_audio_sample_rate: int = 44100
    render_audio_gain: float = 2.0
    # Background blur for music mode: downscale, blur, upscale
    render_blur_width: int = 320
    render_blur_height: int = 180
    render_blur_radius: int = 10
    render_background_gain: float = 1.15
    # Empty = let drawtext pick the fontconfig default
    render_font_file: str = ""

    # Orchestration
    render_default_duration_s: float = 300.0
    render_timeout_s: float = 3600.0  # 0 disables the timeout
    render_max_concurrent_jobs: int = 2
    cleanup_grace_s: float = 5.0


@lru_cache
def get_settings() -> Settings:
    return Settings()
