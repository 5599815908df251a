"""Custom exceptions for the SnapTrack render service.

Every error carries a machine-readable code and the HTTP status it maps to,
so the API layer can turn it into a response without special casing.
"""


class SnapTrackError(Exception):
    """Base exception for all SnapTrack application errors."""

    code: str = "INTERNAL_ERROR"
    status_code: int = 500
    message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        status_code: int | None = None,
    ):
        self.message = message or self.__class__.message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        super().__init__(self.message)

    def to_dict(self) -> dict[str, str]:
        return {"detail": self.message, "code": self.code}

    @property
    def headers(self) -> dict[str, str]:
        """Extra response headers for this error."""
        return {}


# =============================================================================
# Request Errors (4xx)
# =============================================================================


class InputMissingError(SnapTrackError):
    """A required upload is absent when a render is requested."""

    code = "INPUT_MISSING"
    status_code = 400
    message = "Required input file is missing"

    def __init__(self, filename: str | None = None, role: str | None = None):
        if filename:
            message = f"Missing {role or 'input'} upload: {filename}"
        elif role:
            message = f"No {role} file given"
        else:
            message = self.message
        super().__init__(message)


class InvalidFilenameError(SnapTrackError):
    """Client-supplied filename would escape the upload directory."""

    code = "INVALID_FILENAME"
    status_code = 400
    message = "Invalid filename"

    def __init__(self, filename: str | None = None):
        message = f"Invalid filename: {filename!r}" if filename is not None else self.message
        super().__init__(message)


class InvalidChunkError(SnapTrackError):
    code = "INVALID_CHUNK"
    status_code = 400
    message = "Invalid chunk index"


class ArtifactNotFoundError(SnapTrackError):
    """Output artifact not found."""

    code = "ARTIFACT_NOT_FOUND"
    status_code = 404
    message = "Artifact not found"

    def __init__(self, name: str | None = None):
        message = f"Artifact not found: {name}" if name else self.message
        super().__init__(message)


class InvalidRangeError(SnapTrackError):
    code = "INVALID_RANGE"
    status_code = 416
    message = "Requested range not satisfiable"

    def __init__(self, message: str | None = None, *, file_size: int | None = None):
        self.file_size = file_size
        super().__init__(message)

    @property
    def headers(self) -> dict[str, str]:
        if self.file_size is None:
            return {}
        return {"Content-Range": f"bytes */{self.file_size}"}


# =============================================================================
# Server Errors (5xx)
# =============================================================================


class StorageWriteError(SnapTrackError):
    """The media store could not be written."""

    code = "STORAGE_WRITE_FAILED"
    status_code = 500
    message = "Failed to write to media store"


class MediaProbeError(SnapTrackError):
    """ffprobe could not determine media information."""

    code = "MEDIA_PROBE_FAILED"
    status_code = 500
    message = "Failed to probe media"
