"""Render API endpoints - asynchronous rendering with polled progress."""

import logging

from fastapi import APIRouter, HTTPException, Response, status

from snaptrack.api.deps import Registry, Store, Supervisor
from snaptrack.exceptions import InputMissingError
from snaptrack.render.supervisor import RenderInputs
from snaptrack.schemas.render import JobSnapshot, RenderJobCreated, RenderRequest

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post(
    "/process",
    response_model=RenderJobCreated,
    status_code=status.HTTP_202_ACCEPTED,
)
async def start_render(
    render_request: RenderRequest,
    store: Store,
    supervisor: Supervisor,
) -> RenderJobCreated:
    """
    Start a render job.

    Returns as soon as the job exists; poll /progress/{job_id} for status.
    """
    visual_role = "video" if render_request.mode == "video" else "image"
    visual_name = render_request.visual_filename
    if not visual_name:
        raise InputMissingError(role=visual_role)

    visual_path = store.upload_path(visual_name)
    audio_path = store.upload_path(render_request.audio_filename)
    if not store.file_exists(visual_path):
        raise InputMissingError(visual_name, role=visual_role)
    if not store.file_exists(audio_path):
        raise InputMissingError(render_request.audio_filename, role="audio")

    job_id = await supervisor.submit(
        render_request,
        RenderInputs(visual_path=visual_path, audio_path=audio_path),
    )
    return RenderJobCreated(job_id=job_id)


@router.get(
    "/progress/{job_id}",
    response_model=JobSnapshot,
    response_model_exclude_none=True,
)
async def get_progress(job_id: str, registry: Registry) -> JobSnapshot:
    """Current job snapshot, or status "not_found" for unknown ids."""
    return JobSnapshot(**registry.get(job_id).to_dict())


@router.delete("/progress/{job_id}", status_code=status.HTTP_204_NO_CONTENT)
async def cancel_render(job_id: str, supervisor: Supervisor) -> Response:
    """Cancel a queued or running render."""
    if not await supervisor.cancel(job_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No active render for this job",
        )
    logger.info(f"[RENDER] job={job_id} cancelled by client")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
