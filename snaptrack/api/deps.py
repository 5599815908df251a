from typing import Annotated

from fastapi import Depends, Request

from snaptrack.render.supervisor import RenderSupervisor
from snaptrack.services.chunk_assembler import ChunkAssembler
from snaptrack.services.job_registry import JobRegistry
from snaptrack.services.storage_service import LocalStorageService


def get_store(request: Request) -> LocalStorageService:
    return request.app.state.store


def get_assembler(request: Request) -> ChunkAssembler:
    return request.app.state.assembler


def get_registry(request: Request) -> JobRegistry:
    return request.app.state.registry


def get_supervisor(request: Request) -> RenderSupervisor:
    return request.app.state.supervisor


Store = Annotated[LocalStorageService, Depends(get_store)]
Assembler = Annotated[ChunkAssembler, Depends(get_assembler)]
Registry = Annotated[JobRegistry, Depends(get_registry)]
Supervisor = Annotated[RenderSupervisor, Depends(get_supervisor)]
