"""
Render supervisor: owns the engine subprocess for each job.

Per job:
1. Probe the audio duration (falls back to a default when probing fails)
2. Compile the filter graph and write the text side-files
3. Launch ffmpeg and stream its progress into a private event queue
4. Apply queued events to the job registry (the only writer for that job)
5. On exit, finalize the job and schedule cleanup of its inputs

The control loop never blocks on a render; every job runs as its own task.
"""

import asyncio
import logging
import shutil
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Optional, Union

from snaptrack.config import Settings, get_settings
from snaptrack.exceptions import MediaProbeError
from snaptrack.render.filter_graph import (
    CompiledInvocation,
    FilterGraphCompiler,
    RenderMode,
    RenderParams,
    TextLayer,
    render_duration,
)
from snaptrack.render.progress import ProgressParser
from snaptrack.schemas.render import RenderRequest
from snaptrack.services.job_registry import JobRegistry, JobStatus
from snaptrack.services.storage_service import LocalStorageService
from snaptrack.utils.media_info import get_media_duration

logger = logging.getLogger(__name__)

ProbeFn = Callable[[str], float]
Launcher = Callable[[list[str]], Awaitable[asyncio.subprocess.Process]]

STDERR_TAIL_LINES = 20


@dataclass
class RenderInputs:
    """Assembled uploads a render consumes (and deletes afterwards)."""

    visual_path: Path
    audio_path: Path


@dataclass(frozen=True)
class ProgressEvent:
    progress: int
    eta: int


@dataclass(frozen=True)
class ExitEvent:
    returncode: int


RenderEvent = Union[ProgressEvent, ExitEvent]


def build_render_params(request: RenderRequest, inputs: RenderInputs, duration_s: float) -> RenderParams:
    """Resolve a request into compiler parameters."""
    mode = RenderMode(request.mode)
    title = None
    if mode is RenderMode.MUSIC and request.title:
        title = TextLayer(
            text=request.title,
            x_pct=request.title_x,
            y_pct=request.title_y,
            font_size=request.title_font_size,
            font_color=request.title_color,
        )
    return RenderParams(
        mode=mode,
        visual_path=inputs.visual_path,
        audio_path=inputs.audio_path,
        duration_s=duration_s,
        start_s=request.start,
        fade_in_s=request.fade_in,
        fade_out_s=request.fade_out,
        watermark=TextLayer(
            text=request.watermark,
            x_pct=request.x,
            y_pct=request.y,
            font_size=request.font_size,
            font_color=request.font_color,
        ),
        title=title,
        bg_x_pct=request.bg_x,
        bg_y_pct=request.bg_y,
    )


class RenderSupervisor:
    """Launches and tracks ffmpeg renders, one asyncio task per job."""

    def __init__(
        self,
        registry: JobRegistry,
        store: LocalStorageService,
        settings: Optional[Settings] = None,
        *,
        compiler: Optional[FilterGraphCompiler] = None,
        probe: Optional[ProbeFn] = None,
        launcher: Optional[Launcher] = None,
    ):
        self.registry = registry
        self.store = store
        self.settings = settings or get_settings()
        self.compiler = compiler or FilterGraphCompiler(self.settings)
        self._probe = probe or get_media_duration
        self._launcher = launcher or self._launch_engine
        self._slots = asyncio.Semaphore(max(1, self.settings.render_max_concurrent_jobs))
        self._tasks: dict[str, asyncio.Task] = {}
        self._cleanups: dict[str, asyncio.Task] = {}

    async def _launch_engine(self, args: list[str]) -> asyncio.subprocess.Process:
        return await asyncio.create_subprocess_exec(
            self.settings.ffmpeg_path,
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )

    async def probe_duration(self, audio_path: Path) -> float:
        """Audio duration in seconds, or the configured default if unknown."""
        try:
            return await asyncio.to_thread(self._probe, str(audio_path))
        except MediaProbeError as e:
            default = self.settings.render_default_duration_s
            logger.warning(f"[PROBE] {audio_path.name}: {e}; using default duration {default}s")
            return default

    async def submit(self, request: RenderRequest, inputs: RenderInputs) -> str:
        """Create a job and start rendering it in the background.

        Returns once the job exists and its duration is known; the render
        itself runs as a separate task.
        """
        job_id = self.registry.issue_id()
        self.registry.create(job_id)

        work_dir = self.store.upload_dir / f"job_{job_id}"
        output_path = self.store.public_path(f"final_{job_id}.mp4")
        cleanup_paths = [inputs.visual_path, inputs.audio_path, work_dir]

        try:
            audio_s = await self.probe_duration(inputs.audio_path)
            duration = render_duration(audio_s, request.start, request.end)
            params = build_render_params(request, inputs, duration)
            invocation = self.compiler.compile(params, output_path=output_path, work_dir=work_dir)
        except Exception as e:
            logger.exception(f"[RENDER] job={job_id} could not be prepared")
            self.registry.fail(job_id, str(e))
            self._schedule_cleanup(job_id, cleanup_paths)
            return job_id

        logger.info(
            f"[RENDER] job={job_id} mode={request.mode} audio={audio_s:.2f}s "
            f"duration={duration:.2f}s"
        )
        task = asyncio.create_task(
            self._run(job_id, invocation, duration, output_path, cleanup_paths),
            name=f"render-{job_id}",
        )
        self._tasks[job_id] = task
        task.add_done_callback(lambda _t, jid=job_id: self._tasks.pop(jid, None))
        return job_id

    async def cancel(self, job_id: str) -> bool:
        """Abort a queued or running render. The job ends in ``error``."""
        task = self._tasks.get(job_id)
        if task is None or task.done():
            return False
        task.cancel()
        await asyncio.wait([task])
        return True

    async def wait(self, job_id: str) -> None:
        """Wait until the job's render and its cleanup have finished."""
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.wait([task])
        cleanup = self._cleanups.get(job_id)
        if cleanup is not None:
            await asyncio.wait([cleanup])

    async def shutdown(self) -> None:
        """Cancel running renders and run pending cleanups now."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.wait(tasks)

        cleanups = list(self._cleanups.values())
        for task in cleanups:
            task.cancel()
        if cleanups:
            await asyncio.wait(cleanups)

    async def _run(
        self,
        job_id: str,
        invocation: CompiledInvocation,
        duration_s: float,
        output_path: Path,
        cleanup_paths: list[Path],
    ) -> None:
        try:
            async with self._slots:
                await self._execute(job_id, invocation, duration_s, output_path)
        except asyncio.CancelledError:
            logger.info(f"[RENDER] job={job_id} cancelled")
            self.registry.fail(job_id, "cancelled")
            raise
        except Exception as e:
            logger.exception(f"[RENDER] job={job_id} failed")
            self.registry.fail(job_id, str(e))
        finally:
            if self.registry.get(job_id).status is not JobStatus.COMPLETED:
                self.store.delete_file(output_path)
            self._schedule_cleanup(job_id, cleanup_paths)

    async def _execute(
        self,
        job_id: str,
        invocation: CompiledInvocation,
        duration_s: float,
        output_path: Path,
    ) -> None:
        for path, content in invocation.text_files.items():
            self.store.write_text(path, content)

        args = invocation.to_args()
        logger.info(f"[RENDER] job={job_id} engine args: {' '.join(args)}")
        try:
            proc = await self._launcher(args)
        except OSError as e:
            logger.error(f"[RENDER] job={job_id} engine failed to start: {e}")
            self.registry.fail(job_id, f"engine failed to start: {e}")
            return

        self.registry.mark_rendering(job_id)
        events: asyncio.Queue[RenderEvent] = asyncio.Queue()
        stderr_tail: deque[str] = deque(maxlen=STDERR_TAIL_LINES)
        parser = ProgressParser(duration_s)

        readers = [
            asyncio.create_task(self._read_progress(proc.stdout, parser, events)),
            asyncio.create_task(self._read_stderr(proc.stderr, stderr_tail)),
        ]
        waiter = asyncio.create_task(self._wait_exit(proc, readers, events))

        url = f"/stream/{output_path.name}"
        timeout = self.settings.render_timeout_s or None
        try:
            await asyncio.wait_for(self._consume(job_id, events, url, stderr_tail), timeout)
        except asyncio.TimeoutError:
            logger.error(f"[RENDER] job={job_id} timed out after {timeout}s")
            self.registry.fail(job_id, "timeout")
        finally:
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
            for task in (*readers, waiter):
                task.cancel()

    async def _consume(
        self,
        job_id: str,
        events: "asyncio.Queue[RenderEvent]",
        url: str,
        stderr_tail: deque,
    ) -> None:
        """Apply this job's events to the registry, in arrival order."""
        while True:
            event = await events.get()
            if isinstance(event, ProgressEvent):
                self.registry.update_progress(job_id, event.progress, event.eta)
                continue

            if event.returncode == 0:
                self.registry.complete(job_id, url)
                logger.info(f"[RENDER] job={job_id} completed: {url}")
            else:
                self.registry.fail(job_id, f"engine exited with code {event.returncode}")
                logger.error(
                    f"[RENDER] job={job_id} engine exited with code {event.returncode}:\n"
                    + "\n".join(stderr_tail)
                )
            return

    async def _read_progress(
        self,
        stream: asyncio.StreamReader,
        parser: ProgressParser,
        events: "asyncio.Queue[RenderEvent]",
    ) -> None:
        async for raw_line in stream:
            update = parser.feed(raw_line)
            if update is not None:
                events.put_nowait(ProgressEvent(update.progress, update.eta))

    async def _read_stderr(self, stream: asyncio.StreamReader, tail: deque) -> None:
        async for raw_line in stream:
            line = raw_line.decode("utf-8", errors="replace").rstrip()
            if line:
                tail.append(line)

    async def _wait_exit(
        self,
        proc: asyncio.subprocess.Process,
        readers: list[asyncio.Task],
        events: "asyncio.Queue[RenderEvent]",
    ) -> None:
        # Drain both pipes first so every progress line is queued before exit.
        await asyncio.gather(*readers, return_exceptions=True)
        returncode = await proc.wait()
        events.put_nowait(ExitEvent(returncode))

    def _schedule_cleanup(self, job_id: str, paths: list[Path]) -> None:
        task = asyncio.create_task(self._cleanup_later(job_id, paths), name=f"cleanup-{job_id}")
        self._cleanups[job_id] = task
        task.add_done_callback(lambda _t, jid=job_id: self._cleanups.pop(jid, None))

    async def _cleanup_later(self, job_id: str, paths: list[Path]) -> None:
        """Delete a job's inputs after the grace period (immediately if cancelled)."""
        try:
            await asyncio.sleep(self.settings.cleanup_grace_s)
        finally:
            for path in paths:
                if path.is_dir():
                    shutil.rmtree(path, ignore_errors=True)
                else:
                    self.store.delete_file(path)
            logger.debug(f"[CLEANUP] job={job_id} removed {len(paths)} input paths")
