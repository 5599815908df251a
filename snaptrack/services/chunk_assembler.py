"""Reassembly of chunked uploads.

Chunks are trusted to arrive in index order. Index 0 starts the upload over,
so a retried upload never keeps the tail of an earlier attempt.
"""

import logging
from dataclasses import dataclass
from pathlib import Path

from snaptrack.exceptions import InvalidChunkError
from snaptrack.services.storage_service import LocalStorageService

logger = logging.getLogger(__name__)


@dataclass
class UploadTarget:
    """An upload being reassembled."""

    filename: str
    path: Path
    size: int


class ChunkAssembler:
    def __init__(self, store: LocalStorageService):
        self.store = store

    def append_chunk(self, filename: str, chunk_index: int, chunk_path: Path) -> UploadTarget:
        """Append a staged chunk to the upload named ``filename``.

        The staged chunk file is always removed, whether or not the append
        succeeded.
        """
        try:
            if chunk_index < 0:
                raise InvalidChunkError(f"Invalid chunk index: {chunk_index}")

            target = self.store.upload_path(filename)
            if chunk_index == 0 and self.store.delete_file(target):
                logger.info(f"[UPLOAD] Restarting upload {target.name}")

            size = self.store.append_file(target, chunk_path)
        finally:
            self.store.delete_file(chunk_path)

        logger.debug(f"[UPLOAD] {target.name} chunk={chunk_index} size={size}")
        return UploadTarget(filename=target.name, path=target, size=size)
