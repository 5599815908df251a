from snaptrack.schemas.render import (
    ArtifactInfo,
    JobSnapshot,
    RenderJobCreated,
    RenderRequest,
    UploadAck,
)

__all__ = [
    "RenderRequest",
    "RenderJobCreated",
    "JobSnapshot",
    "UploadAck",
    "ArtifactInfo",
]
