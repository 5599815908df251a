"""
Pytest fixtures for SnapTrack tests.

The transcoding engine is replaced by a small Python script run as a real
subprocess. It understands a few options before ``--`` and treats everything
after it as the ffmpeg argument list:

    fake_engine.py --exit 0 --out-times 1000000,2000000 --sleep 0 -- <ffmpeg args>

On exit code 0 it writes a few bytes to the output path (the last argument).
"""

import asyncio
import json
import sys
import textwrap
from pathlib import Path

import pytest

from snaptrack.config import Settings
from snaptrack.render.supervisor import RenderSupervisor
from snaptrack.services.chunk_assembler import ChunkAssembler
from snaptrack.services.job_registry import JobRegistry
from snaptrack.services.storage_service import LocalStorageService

FAKE_ENGINE_SOURCE = textwrap.dedent(
    """
    import json
    import sys
    import time

    argv = sys.argv[1:]
    split = argv.index("--")
    opts, engine_args = argv[:split], argv[split + 1:]
    options = dict(zip(opts[::2], opts[1::2]))

    record = options.get("--record")
    if record:
        text_files = {}
        for arg in engine_args:
            for part in arg.split(":"):
                marker = part.find("drawtext=textfile=")
                if marker >= 0:
                    path = part[marker + len("drawtext=textfile="):].strip("'")
                    with open(path, encoding="utf-8") as f:
                        text_files[path] = f.read()
        with open(record, "w", encoding="utf-8") as f:
            json.dump({"args": engine_args, "text_files": text_files}, f)

    for value in filter(None, options.get("--out-times", "").split(",")):
        print("frame=1")
        print(f"out_time_us={value}")
        print("progress=continue", flush=True)
        time.sleep(0.01)

    time.sleep(float(options.get("--sleep", "0")))
    print("progress=end", flush=True)
    sys.stderr.write("fake engine finished\\n")

    exit_code = int(options.get("--exit", "0"))
    if exit_code == 0:
        with open(engine_args[-1], "wb") as f:
            f.write(b"\\x00\\x00\\x00\\x18ftypmp42")
    sys.exit(exit_code)
    """
)


class RecordingRegistry(JobRegistry):
    """JobRegistry that remembers every progress update it accepted."""

    def __init__(self) -> None:
        super().__init__()
        self.progress_log: list[tuple[str, int, int]] = []

    def update_progress(self, job_id: str, progress: int, eta: int) -> bool:
        applied = super().update_progress(job_id, progress, eta)
        if applied:
            self.progress_log.append((job_id, progress, eta))
        return applied


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        ram_path=str(tmp_path / "ram"),
        cleanup_grace_s=0.0,
        render_timeout_s=30.0,
        render_max_concurrent_jobs=4,
        render_default_duration_s=300.0,
    )


@pytest.fixture
def store(settings: Settings) -> LocalStorageService:
    service = LocalStorageService(settings)
    service.ensure_dirs()
    return service


@pytest.fixture
def assembler(store: LocalStorageService) -> ChunkAssembler:
    return ChunkAssembler(store)


@pytest.fixture
def registry() -> RecordingRegistry:
    return RecordingRegistry()


@pytest.fixture
def fake_engine(tmp_path: Path) -> Path:
    path = tmp_path / "fake_engine.py"
    path.write_text(FAKE_ENGINE_SOURCE, encoding="utf-8")
    return path


@pytest.fixture
def make_launcher(fake_engine: Path, tmp_path: Path):
    """Build a launcher running the fake engine with the given behaviour."""

    def factory(exit_code: int = 0, out_times=(), sleep: float = 0.0, record: bool = True):
        record_path = tmp_path / "engine_call.json"

        async def launcher(args: list[str]) -> asyncio.subprocess.Process:
            opts = [
                "--exit", str(exit_code),
                "--out-times", ",".join(str(t) for t in out_times),
                "--sleep", str(sleep),
            ]
            if record:
                opts += ["--record", str(record_path)]
            return await asyncio.create_subprocess_exec(
                sys.executable, str(fake_engine), *opts, "--", *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )

        launcher.record_path = record_path
        return launcher

    return factory


@pytest.fixture
def make_supervisor(registry, store, settings):
    def factory(launcher, probe=lambda path: 10.0, **overrides) -> RenderSupervisor:
        effective = settings.model_copy(update=overrides) if overrides else settings
        return RenderSupervisor(registry, store, effective, probe=probe, launcher=launcher)

    return factory


@pytest.fixture
def engine_call():
    """Read back what the fake engine was invoked with."""

    def read(launcher) -> dict:
        return json.loads(Path(launcher.record_path).read_text(encoding="utf-8"))

    return read


@pytest.fixture
def write_upload(store: LocalStorageService):
    """Place an already assembled upload in the upload dir."""

    def write(filename: str, data: bytes) -> Path:
        path = store.upload_path(filename)
        path.write_bytes(data)
        return path

    return write
