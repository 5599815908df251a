from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# ffmpeg color names, 0xRRGGBB or #RRGGBB, with optional @alpha
COLOR_PATTERN = r"^[A-Za-z0-9#]+(@[0-9.]+)?$"


class RenderRequest(BaseModel):
    mode: Literal["video", "music"] = "video"
    video_filename: Optional[str] = None  # required in video mode
    image_filename: Optional[str] = None  # required in music mode
    audio_filename: str

    # Trim window in seconds; end=None renders to the end of the audio
    start: float = Field(default=0.0, ge=0)
    end: Optional[float] = Field(default=None, gt=0)
    fade_in: float = Field(default=0.0, ge=0)
    fade_out: float = Field(default=0.0, ge=0)

    # Watermark (always rendered), centre position in percent
    watermark: str = "SnapTrack"
    x: float = Field(default=50.0, ge=0, le=100)
    y: float = Field(default=90.0, ge=0, le=100)
    font_size: int = Field(default=32, gt=0)
    font_color: str = Field(default="white", pattern=COLOR_PATTERN)

    # Title (music mode only), may span several lines
    title: Optional[str] = None
    title_x: float = Field(default=50.0, ge=0, le=100)
    title_y: float = Field(default=20.0, ge=0, le=100)
    title_font_size: int = Field(default=40, gt=0)
    title_color: str = Field(default="white", pattern=COLOR_PATTERN)

    # Foreground image justification (music mode only)
    bg_x: float = Field(default=50.0, ge=0, le=100)
    bg_y: float = Field(default=50.0, ge=0, le=100)

    @field_validator("watermark")
    @classmethod
    def _default_watermark(cls, v: str) -> str:
        return v if v.strip() else "SnapTrack"

    @model_validator(mode="after")
    def _check_trim(self) -> "RenderRequest":
        if self.end is not None and self.end <= self.start:
            raise ValueError("end must be greater than start")
        return self

    @property
    def visual_filename(self) -> Optional[str]:
        return self.video_filename if self.mode == "video" else self.image_filename


class RenderJobCreated(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(serialization_alias="jobId")


class JobSnapshot(BaseModel):
    status: str
    progress: Optional[int] = None
    eta: Optional[int] = None
    url: Optional[str] = None
    error: Optional[str] = None


class UploadAck(BaseModel):
    status: str = "ok"
    filename: str
    size: int


class ArtifactInfo(BaseModel):
    filename: str
    size: int
