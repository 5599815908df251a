"""
Tests for the render supervisor.

The engine is the fake script from conftest, run as a real subprocess, so the
pipes, exit codes, kill and timeout paths are the real asyncio ones.

Test cases:
1. Video mode end to end (chunked uploads, trim window, cleanup)
2. Music mode with title layer
3. Probe failure falls back to the default duration
4. Engine failures: non-zero exit, launch error, timeout
5. Cancellation and admission control
"""

import asyncio
import io
from pathlib import Path

import pytest

from snaptrack.exceptions import MediaProbeError
from snaptrack.render.supervisor import RenderInputs, RenderSupervisor
from snaptrack.schemas.render import RenderRequest
from snaptrack.services.job_registry import JobStatus


async def _wait_for_status(registry, job_id: str, status: JobStatus, timeout: float = 10.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while registry.get(job_id).status is not status:
        if loop.time() > deadline:
            raise AssertionError(f"job {job_id} never reached {status.value}: {registry.get(job_id)}")
        await asyncio.sleep(0.02)


def _arg_after(args: list[str], flag: str) -> str:
    return args[args.index(flag) + 1]


@pytest.fixture
def video_inputs(store, assembler) -> RenderInputs:
    """clip.mp4 uploaded as two chunks, plus a single-chunk song.mp3."""
    assembler.append_chunk("clip.mp4", 0, store.stage_chunk(io.BytesIO(b"A" * 64)))
    clip = assembler.append_chunk("clip.mp4", 1, store.stage_chunk(io.BytesIO(b"B" * 64)))
    song = assembler.append_chunk("song.mp3", 0, store.stage_chunk(io.BytesIO(b"ID3" + b"\x00" * 32)))
    return RenderInputs(visual_path=clip.path, audio_path=song.path)


@pytest.fixture
def music_inputs(write_upload) -> RenderInputs:
    return RenderInputs(
        visual_path=write_upload("cover.jpg", b"\xff\xd8\xff"),
        audio_path=write_upload("song.mp3", b"ID3"),
    )


def _video_request(**overrides) -> RenderRequest:
    data = dict(
        mode="video",
        video_filename="clip.mp4",
        audio_filename="song.mp3",
        start=2,
        end=8,
        watermark="Hi",
        x=50,
        y=90,
        font_size=32,
    )
    data.update(overrides)
    return RenderRequest(**data)


class TestVideoRender:
    @pytest.mark.asyncio
    async def test_trimmed_render_completes(self, registry, store, make_launcher, make_supervisor, engine_call, video_inputs):
        """Progress rises while rendering, then the job completes with a url."""
        assert video_inputs.visual_path.read_bytes() == b"A" * 64 + b"B" * 64
        launcher = make_launcher(out_times=[1_000_000, 3_000_000, 6_000_000, 7_000_000])
        supervisor = make_supervisor(launcher)

        job_id = await supervisor.submit(_video_request(), video_inputs)
        await supervisor.wait(job_id)

        job = registry.get(job_id)
        assert job.status is JobStatus.COMPLETED
        assert job.progress == 100
        assert job.url == f"/stream/final_{job_id}.mp4"

        seen = [progress for jid, progress, _eta in registry.progress_log if jid == job_id]
        assert seen, "no progress was reported while rendering"
        assert seen == sorted(seen)
        assert max(seen) == 99

        args = engine_call(launcher)["args"]
        assert args[args.index("-i") - 2:args.index("-i")] == ["-ss", "2"]
        assert _arg_after(args, "-t") == "6"
        assert args[-1] == str(store.public_path(f"final_{job_id}.mp4"))

    @pytest.mark.asyncio
    async def test_watermark_read_from_side_file(self, make_launcher, make_supervisor, engine_call, video_inputs):
        launcher = make_launcher()
        supervisor = make_supervisor(launcher)

        job_id = await supervisor.submit(_video_request(watermark="It's: 100%"), video_inputs)
        await supervisor.wait(job_id)

        text_files = engine_call(launcher)["text_files"]
        assert list(text_files.values()) == ["It's: 100%"]
        assert Path(next(iter(text_files))).name == "watermark.txt"

    @pytest.mark.asyncio
    async def test_blank_watermark_uses_default_text(self, make_launcher, make_supervisor, engine_call, video_inputs):
        launcher = make_launcher()
        supervisor = make_supervisor(launcher)

        job_id = await supervisor.submit(_video_request(watermark="  "), video_inputs)
        await supervisor.wait(job_id)

        assert list(engine_call(launcher)["text_files"].values()) == ["SnapTrack"]

    @pytest.mark.asyncio
    async def test_inputs_removed_output_kept(self, store, make_launcher, make_supervisor, video_inputs):
        supervisor = make_supervisor(make_launcher())

        job_id = await supervisor.submit(_video_request(), video_inputs)
        await supervisor.wait(job_id)

        assert not video_inputs.visual_path.exists()
        assert not video_inputs.audio_path.exists()
        assert not (store.upload_dir / f"job_{job_id}").exists()
        assert store.public_path(f"final_{job_id}.mp4").exists()

    @pytest.mark.asyncio
    async def test_cleanup_waits_for_grace_period(self, make_launcher, make_supervisor, video_inputs):
        supervisor = make_supervisor(make_launcher(), cleanup_grace_s=30.0)

        job_id = await supervisor.submit(_video_request(), video_inputs)
        await _wait_for_status(supervisor.registry, job_id, JobStatus.COMPLETED)
        await asyncio.sleep(0.1)

        assert video_inputs.visual_path.exists()

        await supervisor.shutdown()

        assert not video_inputs.visual_path.exists()


class TestMusicRender:
    @pytest.mark.asyncio
    async def test_title_layer_rendered(self, registry, make_launcher, make_supervisor, engine_call, music_inputs):
        launcher = make_launcher(out_times=[5_000_000])
        supervisor = make_supervisor(launcher)
        request = RenderRequest(
            mode="music",
            image_filename="cover.jpg",
            audio_filename="song.mp3",
            title="Line1\nLine2",
            bg_x=0,
        )

        job_id = await supervisor.submit(request, music_inputs)
        await supervisor.wait(job_id)

        assert registry.get(job_id).status is JobStatus.COMPLETED
        call = engine_call(launcher)
        args = call["args"]
        assert "-loop" in args
        graph = _arg_after(args, "-filter_complex")
        assert "boxblur" in graph
        assert "overlay=x=(W-w)*0.0" in graph
        assert "[titled]" in graph
        assert sorted(call["text_files"].values()) == ["Line1\nLine2", "SnapTrack"]


class TestDurationFallback:
    @pytest.mark.asyncio
    async def test_probe_failure_uses_default_duration(self, registry, make_launcher, make_supervisor, engine_call, video_inputs):
        def failing_probe(path):
            raise MediaProbeError("ffprobe failed: moov atom not found")

        launcher = make_launcher(out_times=[150_000_000])
        supervisor = make_supervisor(launcher, probe=failing_probe)

        job_id = await supervisor.submit(_video_request(start=0, end=None), video_inputs)
        await supervisor.wait(job_id)

        assert registry.get(job_id).status is JobStatus.COMPLETED
        assert _arg_after(engine_call(launcher)["args"], "-t") == "300"
        assert [p for _jid, p, _eta in registry.progress_log] == [50]


class TestEngineFailures:
    @pytest.mark.asyncio
    async def test_non_zero_exit(self, registry, store, make_launcher, make_supervisor, video_inputs):
        inner = make_launcher(exit_code=1, out_times=[1_000_000])

        async def launcher(args):
            # Simulate a partially written output
            Path(args[-1]).write_bytes(b"partial")
            return await inner(args)

        supervisor = make_supervisor(launcher)

        job_id = await supervisor.submit(_video_request(), video_inputs)
        await supervisor.wait(job_id)

        job = registry.get(job_id)
        assert job.status is JobStatus.ERROR
        assert "code 1" in job.error
        assert job.url is None
        assert not store.public_path(f"final_{job_id}.mp4").exists()
        assert not video_inputs.visual_path.exists()

    @pytest.mark.asyncio
    async def test_launch_failure(self, registry, make_supervisor, video_inputs):
        async def launcher(args):
            raise FileNotFoundError("ffmpeg")

        supervisor = make_supervisor(launcher)

        job_id = await supervisor.submit(_video_request(), video_inputs)
        await supervisor.wait(job_id)

        job = registry.get(job_id)
        assert job.status is JobStatus.ERROR
        assert job.error.startswith("engine failed to start")
        assert not video_inputs.audio_path.exists()

    @pytest.mark.asyncio
    async def test_timeout_kills_engine(self, registry, store, make_launcher, make_supervisor, video_inputs):
        supervisor = make_supervisor(make_launcher(sleep=30), render_timeout_s=0.5)

        job_id = await supervisor.submit(_video_request(), video_inputs)
        await asyncio.wait_for(supervisor.wait(job_id), 10)

        job = registry.get(job_id)
        assert job.status is JobStatus.ERROR
        assert job.error == "timeout"
        assert not store.public_path(f"final_{job_id}.mp4").exists()

    @pytest.mark.asyncio
    async def test_preparation_failure(self, registry, store, settings, video_inputs):
        class BrokenCompiler:
            def compile(self, *args, **kwargs):
                raise RuntimeError("bad graph")

        supervisor = RenderSupervisor(
            registry, store, settings, compiler=BrokenCompiler(), probe=lambda p: 10.0
        )

        job_id = await supervisor.submit(_video_request(), video_inputs)
        await supervisor.wait(job_id)

        job = registry.get(job_id)
        assert job.status is JobStatus.ERROR
        assert job.error == "bad graph"
        assert not video_inputs.visual_path.exists()

    @pytest.mark.asyncio
    async def test_failed_job_does_not_affect_others(self, registry, make_launcher, make_supervisor, store, assembler):
        ok = make_launcher(record=False)
        bad = make_launcher(exit_code=2, record=False)

        async def launcher(args):
            chosen = bad if "bad.mp4" in " ".join(args) else ok
            return await chosen(args)

        supervisor = make_supervisor(launcher)
        job_ids = {}
        for name in ("bad.mp4", "good.mp4"):
            audio = f"{name}.mp3"
            assembler.append_chunk(name, 0, store.stage_chunk(io.BytesIO(b"v")))
            assembler.append_chunk(audio, 0, store.stage_chunk(io.BytesIO(b"a")))
            inputs = RenderInputs(store.upload_path(name), store.upload_path(audio))
            job_ids[name] = await supervisor.submit(
                _video_request(video_filename=name, audio_filename=audio), inputs
            )

        for job_id in job_ids.values():
            await supervisor.wait(job_id)

        assert registry.get(job_ids["bad.mp4"]).status is JobStatus.ERROR
        assert registry.get(job_ids["good.mp4"]).status is JobStatus.COMPLETED


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_running_render(self, registry, store, make_launcher, make_supervisor, video_inputs):
        supervisor = make_supervisor(make_launcher(sleep=30))

        job_id = await supervisor.submit(_video_request(), video_inputs)
        await _wait_for_status(registry, job_id, JobStatus.RENDERING)

        assert await supervisor.cancel(job_id) is True
        await supervisor.wait(job_id)

        job = registry.get(job_id)
        assert job.status is JobStatus.ERROR
        assert job.error == "cancelled"
        assert not video_inputs.visual_path.exists()
        assert not store.public_path(f"final_{job_id}.mp4").exists()

    @pytest.mark.asyncio
    async def test_cancel_finished_or_unknown(self, make_launcher, make_supervisor, video_inputs):
        supervisor = make_supervisor(make_launcher())

        job_id = await supervisor.submit(_video_request(), video_inputs)
        await supervisor.wait(job_id)

        assert await supervisor.cancel(job_id) is False
        assert await supervisor.cancel("unknown") is False

    @pytest.mark.asyncio
    async def test_queued_jobs_wait_for_a_slot(self, registry, store, assembler, make_launcher, make_supervisor):
        supervisor = make_supervisor(make_launcher(sleep=30), render_max_concurrent_jobs=1)
        job_ids = []
        for n in range(2):
            assembler.append_chunk(f"v{n}.mp4", 0, store.stage_chunk(io.BytesIO(b"v")))
            assembler.append_chunk(f"a{n}.mp3", 0, store.stage_chunk(io.BytesIO(b"a")))
            inputs = RenderInputs(store.upload_path(f"v{n}.mp4"), store.upload_path(f"a{n}.mp3"))
            job_ids.append(
                await supervisor.submit(
                    _video_request(video_filename=f"v{n}.mp4", audio_filename=f"a{n}.mp3"), inputs
                )
            )

        await _wait_for_status(registry, job_ids[0], JobStatus.RENDERING)
        await asyncio.sleep(0.2)
        assert registry.get(job_ids[1]).status is JobStatus.INITIALIZING

        await supervisor.shutdown()

        for job_id in job_ids:
            job = registry.get(job_id)
            assert job.status is JobStatus.ERROR
            assert job.error == "cancelled"
