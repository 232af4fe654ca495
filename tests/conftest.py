"""
StreamVio Test Configuration and Fixtures

Provides:
- Per-test configuration with temp output and database locations
- A SQLite job store in the test's temp directory
- A fake prober and a scripted fake encoder engine for scheduler tests
- Optional synthetic media generated with FFmpeg for integration tests
"""

import asyncio
import shutil
import subprocess
from pathlib import Path
from typing import Callable, Dict, Generator, List, Optional, Set

import pytest
from fastapi.testclient import TestClient

from streamvio.api import create_app
from streamvio.config import (
    DatabaseConfig,
    HardwareConfig,
    LoggingConfig,
    StreamVioConfig,
    TranscodingConfig,
    set_config,
)
from streamvio.events import EventBus, JobCompleted, JobEvent, JobFailed, JobProgress, JobStarted
from streamvio.jobs import JobScheduler
from streamvio.models import TranscodeJob
from streamvio.store import JobStore
from streamvio.transcoding.models import MediaInfo, StreamInfo


# =============================================================================
# TEST MEDIA GENERATION
# =============================================================================

class SampleMediaGenerator:
    """
    Generates test media files using FFmpeg.
    No external downloads - creates synthetic test videos.
    """

    def __init__(self, output_dir: Path):
        self.output_dir = output_dir
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self._ffmpeg = shutil.which("ffmpeg")

    @property
    def has_ffmpeg(self) -> bool:
        return self._ffmpeg is not None

    def generate_test_video(
        self,
        name: str = "test_video",
        duration: int = 2,
        width: int = 640,
        height: int = 360,
        fps: int = 25,
        audio: bool = True
    ) -> Optional[Path]:
        """Color bars plus an optional sine tone. Returns None without FFmpeg."""
        if not self.has_ffmpeg:
            return None

        output_path = self.output_dir / f"{name}.mp4"
        cmd = [
            self._ffmpeg, "-y",
            "-f", "lavfi",
            "-i", f"testsrc=duration={duration}:size={width}x{height}:rate={fps}",
        ]
        if audio:
            cmd.extend(["-f", "lavfi", "-i", f"sine=frequency=440:duration={duration}"])
        cmd.extend(["-c:v", "libx264", "-preset", "ultrafast", "-pix_fmt", "yuv420p"])
        if audio:
            cmd.extend(["-c:a", "aac", "-b:a", "128k"])
        cmd.append(str(output_path))

        try:
            result = subprocess.run(cmd, capture_output=True, timeout=60)
        except subprocess.TimeoutExpired:
            return None
        if result.returncode == 0 and output_path.exists():
            return output_path
        return None


@pytest.fixture(scope="session")
def test_media_dir(tmp_path_factory) -> Path:
    """Session-scoped temp directory for generated media."""
    return tmp_path_factory.mktemp("streamvio_test_media")


@pytest.fixture(scope="session")
def quick_test_video(test_media_dir) -> Path:
    """Two-second 360p clip with audio, generated once per session."""
    generator = SampleMediaGenerator(test_media_dir)
    if not generator.has_ffmpeg:
        pytest.skip("FFmpeg not available for test media generation")
    path = generator.generate_test_video("test_quick")
    if path is None:
        pytest.skip("Failed to generate test video")
    return path


# =============================================================================
# CONFIGURATION AND STORE
# =============================================================================

@pytest.fixture
def test_config(tmp_path) -> Generator[StreamVioConfig, None, None]:
    """
    Configuration rooted in the test's temp directory.
    Hardware acceleration is off so no encoder query is made.
    """
    config = StreamVioConfig(
        transcoding=TranscodingConfig(
            output_directory=str(tmp_path / "output"),
            max_concurrent_jobs=2,
        ),
        hardware=HardwareConfig(acceleration="none"),
        database=DatabaseConfig(url=f"sqlite+aiosqlite:///{tmp_path / 'streamvio.db'}"),
        logging=LoggingConfig(level="WARNING"),
    )
    set_config(config)
    yield config
    set_config(None)


@pytest.fixture
async def store(tmp_path):
    job_store = JobStore(f"sqlite+aiosqlite:///{tmp_path / 'jobs.db'}")
    await job_store.init()
    yield job_store
    await job_store.close()


@pytest.fixture
def media_file(tmp_path) -> Path:
    """An input file for jobs that never reach a real encoder."""
    path = tmp_path / "media" / "movie.mkv"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"\x00" * 64)
    return path


# =============================================================================
# FAKES
# =============================================================================

def make_media_info(
    path: str = "movie.mkv",
    width: int = 1920,
    height: int = 1080,
    duration: Optional[float] = 120.0,
    audio: bool = True
) -> MediaInfo:
    streams = [StreamInfo(index=0, codec_type="video", codec="h264", width=width, height=height, frame_rate=24.0)]
    if audio:
        streams.append(StreamInfo(index=1, codec_type="audio", codec="aac", channels=2, sample_rate=48000))
    return MediaInfo(path=path, duration=duration, format_name="matroska,webm", streams=streams)


class FakeProber:
    """Returns the same probe result for every path. Set gate to hold probes."""

    def __init__(self, media_info: Optional[MediaInfo] = None):
        self.media_info = media_info if media_info is not None else make_media_info()
        self.calls: List[str] = []
        self.gate: Optional[asyncio.Event] = None

    def cached(self, path: str) -> Optional[MediaInfo]:
        return self.media_info if path in self.calls else None

    async def probe(self, path: str) -> Optional[MediaInfo]:
        self.calls.append(path)
        if self.gate is not None:
            await self.gate.wait()
        return self.media_info


class FakeEngine:
    """
    Stands in for TranscodeEngine.

    Each job reports started and 50% progress, then waits until the test
    releases it. A released job completes unless an outcome string was
    given, which becomes its failure reason.
    """

    def __init__(self, auto_release: bool = False):
        self.auto_release = auto_release
        self.started: List[str] = []
        self.commands: Dict[str, List[str]] = {}
        self.terminated: List[str] = []
        self.running: Set[str] = set()
        self.max_running = 0
        self._gates: Dict[str, asyncio.Event] = {}
        self._outcomes: Dict[str, Optional[str]] = {}

    def _gate(self, job_id: str) -> asyncio.Event:
        if job_id not in self._gates:
            self._gates[job_id] = asyncio.Event()
        return self._gates[job_id]

    def release(self, job_id: str, failure: Optional[str] = None) -> None:
        self._outcomes[job_id] = failure
        self._gate(job_id).set()

    async def run(self, job: TranscodeJob, args: List[str], duration: Optional[float] = None):
        self.started.append(job.id)
        self.commands[job.id] = list(args)
        self.running.add(job.id)
        self.max_running = max(self.max_running, len(self.running))
        try:
            yield JobStarted(job.id, job.media_id)
            yield JobProgress(job.id, job.media_id, percent=50)
            if not self.auto_release:
                await self._gate(job.id).wait()
            else:
                await asyncio.sleep(0.01)

            if job.id in self.terminated:
                yield JobFailed(job.id, job.media_id, reason="Encoder terminated on request", category="cancelled")
                return
            failure = self._outcomes.get(job.id)
            if failure:
                yield JobFailed(job.id, job.media_id, reason=failure)
                return
            yield JobProgress(job.id, job.media_id, percent=100)
            yield JobCompleted(job.id, job.media_id, output_path=job.output_path)
        finally:
            self.running.discard(job.id)

    def is_running(self, job_id: str) -> bool:
        return job_id in self.running

    async def terminate(self, job_id: str) -> bool:
        if job_id not in self.running:
            return False
        self.terminated.append(job_id)
        self._gate(job_id).set()
        return True

    async def terminate_all(self) -> None:
        for job_id in list(self.running):
            await self.terminate(job_id)


class EventRecorder:
    """Event bus subscriber that keeps everything it sees."""

    def __init__(self):
        self.events: List[JobEvent] = []

    def __call__(self, event: JobEvent) -> None:
        self.events.append(event)

    def types_for(self, job_id: str) -> List[str]:
        return [e.event_type.value for e in self.events if e.job_id == job_id]


async def wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> None:
    """Poll until predicate() is true or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("Timed out waiting for condition")
        await asyncio.sleep(0.01)


@pytest.fixture
def fake_engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def fake_prober() -> FakeProber:
    return FakeProber()


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def recorder(event_bus) -> EventRecorder:
    rec = EventRecorder()
    event_bus.subscribe(rec)
    return rec


@pytest.fixture
async def scheduler(test_config, store, event_bus, fake_engine, fake_prober):
    """Started scheduler wired to the fake engine and prober."""
    sched = JobScheduler(
        store,
        event_bus=event_bus,
        config=test_config,
        engine=fake_engine,
        prober=fake_prober,
    )
    await sched.start()
    yield sched
    if fake_prober.gate is not None:
        fake_prober.gate.set()
    await sched.stop(cancel_running=True)


# =============================================================================
# API CLIENT
# =============================================================================

@pytest.fixture
def api_client(test_config, tmp_path) -> Generator[TestClient, None, None]:
    """
    Test client for API endpoints.
    The lifespan builds a real scheduler against the temp config. Encoder
    binaries point at a missing path, so submitted jobs fail at spawn.
    """
    test_config.transcoding.ffmpeg_path = str(tmp_path / "bin" / "ffmpeg")
    test_config.transcoding.ffprobe_path = str(tmp_path / "bin" / "ffprobe")
    app = create_app(test_config)
    with TestClient(app) as client:
        yield client


# =============================================================================
# SKIP CONDITIONS
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "requires_ffmpeg: marks tests that require FFmpeg"
    )


@pytest.fixture
def requires_ffmpeg():
    """Skip test if FFmpeg not available."""
    if not shutil.which("ffmpeg"):
        pytest.skip("FFmpeg not available")
