"""Chunked upload endpoint."""

import asyncio
import logging

from fastapi import APIRouter, File, Form, UploadFile

from snaptrack.api.deps import Assembler, Store
from snaptrack.schemas.render import UploadAck

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/upload", response_model=UploadAck)
async def upload_chunk(
    store: Store,
    assembler: Assembler,
    chunk: UploadFile = File(...),
    filename: str = Form(...),
    chunk_index: int = Form(..., alias="chunkIndex"),
) -> UploadAck:
    """Append one chunk to an upload. Chunk 0 restarts the upload."""
    try:
        chunk_path = await asyncio.to_thread(store.stage_chunk, chunk.file)
    finally:
        await chunk.close()

    target = await asyncio.to_thread(assembler.append_chunk, filename, chunk_index, chunk_path)
    return UploadAck(filename=target.filename, size=target.size)
