import logging
import shutil
import uuid
from collections.abc import Iterator
from pathlib import Path
from typing import BinaryIO

from snaptrack.config import Settings, get_settings
from snaptrack.exceptions import ArtifactNotFoundError, InvalidFilenameError, StorageWriteError

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 1024 * 1024


def safe_filename(filename: str) -> str:
    """Reject names that are not a single path component."""
    name = (filename or "").strip()
    if not name or name in (".", "..") or "/" in name or "\\" in name or "\x00" in name:
        raise InvalidFilenameError(filename)
    return name


class LocalStorageService:
    """Byte store for uploads and rendered outputs on the local (RAM) disk."""

    def __init__(self, settings: Settings | None = None) -> None:
        settings = settings or get_settings()
        self.upload_dir = Path(settings.upload_dir)
        self.public_dir = Path(settings.public_dir)

    def ensure_dirs(self) -> None:
        for directory in (self.upload_dir, self.public_dir):
            directory.mkdir(parents=True, exist_ok=True)

    def upload_path(self, filename: str) -> Path:
        return self.upload_dir / safe_filename(filename)

    def public_path(self, filename: str) -> Path:
        return self.public_dir / safe_filename(filename)

    def stage_chunk(self, file_obj: BinaryIO) -> Path:
        """Spool an incoming chunk to a temporary file in the upload dir."""
        chunk_path = self.upload_dir / f".chunk-{uuid.uuid4().hex}"
        try:
            self.upload_dir.mkdir(parents=True, exist_ok=True)
            with open(chunk_path, "wb") as out:
                shutil.copyfileobj(file_obj, out, READ_CHUNK_SIZE)
        except OSError as e:
            self.delete_file(chunk_path)
            raise StorageWriteError(f"Failed to stage chunk: {e}")
        return chunk_path

    def append_file(self, target: Path, source: Path) -> int:
        """Append the bytes of ``source`` to ``target``; returns the new size."""
        try:
            with open(source, "rb") as src, open(target, "ab") as dst:
                shutil.copyfileobj(src, dst, READ_CHUNK_SIZE)
            return target.stat().st_size
        except OSError as e:
            raise StorageWriteError(f"Failed to append to {target.name}: {e}")

    def write_text(self, path: Path, content: str) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")
        except OSError as e:
            raise StorageWriteError(f"Failed to write {path.name}: {e}")

    def delete_file(self, path: Path) -> bool:
        """Delete file if present."""
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning(f"[STORAGE] Could not delete {path}: {e}")
            return False

    def file_exists(self, path: Path) -> bool:
        return path.is_file()

    def file_size(self, path: Path) -> int:
        try:
            return path.stat().st_size
        except FileNotFoundError:
            raise ArtifactNotFoundError(path.name)

    def read_range(self, path: Path, start: int, end: int) -> Iterator[bytes]:
        """Yield bytes ``start..end`` (inclusive) of ``path``."""
        with open(path, "rb") as f:
            f.seek(start)
            remaining = end - start + 1
            while remaining > 0:
                data = f.read(min(READ_CHUNK_SIZE, remaining))
                if not data:
                    break
                remaining -= len(data)
                yield data
