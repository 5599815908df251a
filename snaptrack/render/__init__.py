from snaptrack.render.filter_graph import (
    CompiledInvocation,
    FilterGraphCompiler,
    RenderMode,
    RenderParams,
    TextLayer,
    render_duration,
)
from snaptrack.render.progress import ProgressParser, ProgressUpdate
from snaptrack.render.supervisor import RenderInputs, RenderSupervisor

__all__ = [
    "CompiledInvocation",
    "FilterGraphCompiler",
    "RenderMode",
    "RenderParams",
    "TextLayer",
    "render_duration",
    "ProgressParser",
    "ProgressUpdate",
    "RenderInputs",
    "RenderSupervisor",
]
