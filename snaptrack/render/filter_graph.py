"""
Filter graph compiler for SnapTrack renders.

Maps one render intent to a complete ffmpeg argument list:

1. Input selection (uploaded video, or a looped still image for music mode)
2. Visual base (letterboxed 16:9 frame, or blurred background + foreground)
3. Text layers (watermark always, title in music mode) via drawtext textfiles
4. Fades on both the video and audio branches
5. Single-pass H.264/AAC encode bounded to the render duration

Compilation is pure: text content is returned alongside the arguments and
written to disk by the caller before the engine starts.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from snaptrack.config import Settings, get_settings


class RenderMode(str, Enum):
    VIDEO = "video"
    MUSIC = "music"


@dataclass
class TextLayer:
    """One drawtext layer, positioned by its centre in percent of the frame."""

    text: str
    x_pct: float = 50.0
    y_pct: float = 50.0
    font_size: int = 32
    font_color: str = "white"


@dataclass
class RenderParams:
    """Fully resolved render intent (paths on disk, duration in seconds)."""

    mode: RenderMode
    visual_path: Path  # video in video mode, image in music mode
    audio_path: Path
    duration_s: float
    start_s: float = 0.0
    fade_in_s: float = 0.0
    fade_out_s: float = 0.0
    watermark: TextLayer = field(default_factory=lambda: TextLayer(text="SnapTrack", y_pct=90.0))
    title: Optional[TextLayer] = None
    bg_x_pct: float = 50.0
    bg_y_pct: float = 50.0


@dataclass
class CompiledInvocation:
    """ffmpeg invocation plus the side-files it reads."""

    global_args: list[str]
    input_args: list[str]
    filter_graph: str
    output_args: list[str]
    text_files: dict[Path, str] = field(default_factory=dict)

    def to_args(self) -> list[str]:
        """Arguments for the engine, without the executable itself."""
        return [
            *self.global_args,
            *self.input_args,
            "-filter_complex", self.filter_graph,
            *self.output_args,
        ]


def render_duration(audio_duration_s: float, start_s: float = 0.0, end_s: Optional[float] = None) -> float:
    """Effective render length: trim window over the audio, at least 1 second."""
    end = audio_duration_s if end_s is None else min(end_s, audio_duration_s)
    return max(end - start_s, 1.0)


def escape_filter_value(value: str) -> str:
    """Quote a value for use inside a filtergraph option."""
    escaped = value.replace("'", "'\\''")
    return f"'{escaped}'"


def _fmt(seconds: float) -> str:
    return f"{seconds:.3f}".rstrip("0").rstrip(".") or "0"


class FilterGraphCompiler:
    """Builds ffmpeg invocations for watermark/title renders."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.width = self.settings.render_output_width
        self.height = self.settings.render_output_height
        self.fps = self.settings.render_fps

    def compile(self, params: RenderParams, *, output_path: Path, work_dir: Path) -> CompiledInvocation:
        duration = params.duration_s
        text_files: dict[Path, str] = {}

        input_args = self._build_inputs(params)

        filters: list[str] = []
        filters.extend(self._build_base(params, "base"))

        watermark_file = work_dir / "watermark.txt"
        text_files[watermark_file] = params.watermark.text
        label = "wm"
        filters.append(f"[base]{self._build_drawtext(params.watermark, watermark_file)}[{label}]")

        if params.mode is RenderMode.MUSIC and params.title and params.title.text:
            title_file = work_dir / "title.txt"
            text_files[title_file] = params.title.text
            filters.append(f"[{label}]{self._build_drawtext(params.title, title_file)}[titled]")
            label = "titled"

        video_tail = self._build_fades("fade", params.fade_in_s, params.fade_out_s, duration)
        video_tail.append("format=yuv420p")
        filters.append(f"[{label}]{','.join(video_tail)}[vout]")

        audio_chain = []
        if self.settings.render_audio_gain != 1.0:
            audio_chain.append(f"volume={self.settings.render_audio_gain}")
        audio_chain.append(f"aresample={self.settings.render_audio_sample_rate}")
        audio_chain.extend(self._build_fades("afade", params.fade_in_s, params.fade_out_s, duration))
        filters.append(f"[1:a]{','.join(audio_chain)}[aout]")

        return CompiledInvocation(
            global_args=[
                "-nostdin", "-y",
                "-threads", str(self.settings.render_ffmpeg_threads),
                "-progress", "pipe:1",
                "-nostats",
            ],
            input_args=input_args,
            filter_graph=";".join(filters),
            output_args=self._build_output(duration, output_path),
            text_files=text_files,
        )

    def _build_inputs(self, params: RenderParams) -> list[str]:
        seek = ["-ss", _fmt(params.start_s)] if params.start_s > 0 else []
        if params.mode is RenderMode.VIDEO:
            visual = [*seek, "-i", str(params.visual_path)]
        else:
            visual = [
                "-loop", "1",
                "-framerate", str(self.fps),
                "-t", _fmt(params.duration_s),
                "-i", str(params.visual_path),
            ]
        return [*visual, *seek, "-i", str(params.audio_path)]

    def _build_base(self, params: RenderParams, out_label: str) -> list[str]:
        w, h = self.width, self.height
        if params.mode is RenderMode.VIDEO:
            return [
                f"[0:v]scale={w}:{h}:force_original_aspect_ratio=decrease,"
                f"pad={w}:{h}:(ow-iw)/2:(oh-ih)/2:color=black,"
                f"setsar=1,fps={self.fps}[{out_label}]"
            ]

        # Blurring a thumbnail and upscaling is far cheaper than a full-size blur.
        bw, bh = self.settings.render_blur_width, self.settings.render_blur_height
        gain = self.settings.render_background_gain
        bx = params.bg_x_pct / 100
        by = params.bg_y_pct / 100
        return [
            "[0:v]split=2[bgsrc][fgsrc]",
            f"[bgsrc]scale={bw}:{bh}:force_original_aspect_ratio=increase,crop={bw}:{bh},"
            f"boxblur={self.settings.render_blur_radius}:2,scale={w}:{h},"
            f"colorchannelmixer=rr={gain}:gg={gain}:bb={gain}[bg]",
            f"[fgsrc]scale={w}:{h}:force_original_aspect_ratio=decrease[fg]",
            f"[bg][fg]overlay=x=(W-w)*{bx}:y=(H-h)*{by},setsar=1,fps={self.fps}[{out_label}]",
        ]

    def _build_drawtext(self, layer: TextLayer, text_file: Path) -> str:
        params = [f"drawtext=textfile={escape_filter_value(str(text_file))}"]
        if self.settings.render_font_file:
            params.append(f"fontfile={escape_filter_value(self.settings.render_font_file)}")
        params.extend([
            f"fontsize={layer.font_size}",
            f"fontcolor={layer.font_color}",
            f"x=(w*{layer.x_pct / 100}-tw/2)",
            f"y=(h*{layer.y_pct / 100}-th/2)",
            "shadowcolor=black@0.5",
            "shadowx=2",
            "shadowy=2",
            # Text is literal; no %{...} functions or backslash escapes
            "expansion=none",
        ])
        return ":".join(params)

    def _build_fades(self, name: str, fade_in_s: float, fade_out_s: float, duration_s: float) -> list[str]:
        fades = []
        if fade_in_s > 0:
            fades.append(f"{name}=t=in:st=0:d={_fmt(min(fade_in_s, duration_s))}")
        if fade_out_s > 0:
            fade_out = min(fade_out_s, duration_s)
            start = max(duration_s - fade_out, 0.0)
            fades.append(f"{name}=t=out:st={_fmt(start)}:d={_fmt(fade_out)}")
        return fades

    def _build_output(self, duration_s: float, output_path: Path) -> list[str]:
        s = self.settings
        return [
            "-map", "[vout]",
            "-map", "[aout]",
            "-t", _fmt(duration_s),
            "-c:v", "libx264",
            "-preset", s.render_video_preset,
            "-tune", s.render_video_tune,
            "-crf", str(s.render_video_crf),
            "-pix_fmt", "yuv420p",
            "-movflags", "+faststart",
            "-c:a", "aac",
            "-b:a", s.render_audio_bitrate,
            "-shortest",
            str(output_path),
        ]
