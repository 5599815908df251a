"""Rendered artifact metadata and ranged streaming."""

from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse

from snaptrack.api.deps import Store
from snaptrack.exceptions import ArtifactNotFoundError, InvalidRangeError
from snaptrack.schemas.render import ArtifactInfo

router = APIRouter()

MEDIA_TYPES = {
    ".mp4": "video/mp4",
    ".m4a": "audio/mp4",
    ".mp3": "audio/mpeg",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
}


def parse_range(range_header: str, file_size: int) -> tuple[int, int]:
    """Parse a single ``bytes=start-end`` range into inclusive bounds."""
    try:
        unit, byte_range = range_header.split("=", 1)
        if unit.strip().lower() != "bytes" or "," in byte_range:
            raise ValueError
        start_s, end_s = byte_range.strip().split("-", 1)
        if start_s:
            start = int(start_s)
            end = int(end_s) if end_s else file_size - 1
        else:
            # Suffix range: the last N bytes
            length = int(end_s)
            if length <= 0:
                raise ValueError
            start = max(file_size - length, 0)
            end = file_size - 1
    except ValueError:
        raise InvalidRangeError(f"Invalid Range header: {range_header}", file_size=file_size)

    end = min(end, file_size - 1)
    if start < 0 or start > end:
        raise InvalidRangeError(f"Range not satisfiable: {range_header}", file_size=file_size)
    return start, end


@router.get("/stream/{filename}/info", response_model=ArtifactInfo)
async def get_artifact_info(filename: str, store: Store) -> ArtifactInfo:
    path = store.public_path(filename)
    return ArtifactInfo(filename=path.name, size=store.file_size(path))


@router.get("/stream/{filename}")
async def stream_artifact(filename: str, request: Request, store: Store) -> StreamingResponse:
    """Serve a rendered file, honouring a single byte Range."""
    path = store.public_path(filename)
    if not store.file_exists(path):
        raise ArtifactNotFoundError(filename)

    file_size = store.file_size(path)
    media_type = MEDIA_TYPES.get(path.suffix.lower(), "application/octet-stream")
    range_header = request.headers.get("range")

    if range_header:
        start, end = parse_range(range_header, file_size)
        headers = {
            "Content-Range": f"bytes {start}-{end}/{file_size}",
            "Accept-Ranges": "bytes",
            "Content-Length": str(end - start + 1),
        }
        return StreamingResponse(
            store.read_range(path, start, end),
            status_code=206,
            headers=headers,
            media_type=media_type,
        )

    headers = {
        "Accept-Ranges": "bytes",
        "Content-Length": str(file_size),
    }
    return StreamingResponse(
        store.read_range(path, 0, file_size - 1),
        status_code=200,
        headers=headers,
        media_type=media_type,
    )
