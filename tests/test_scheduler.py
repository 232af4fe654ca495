"""
Tests for the job scheduler: concurrency, ordering, cancellation and
the end-to-end job lifecycle against a scripted encoder.
"""

import asyncio
import json
import logging
import sys
from pathlib import Path

import httpx
import pytest

from conftest import EventRecorder, FakeProber, make_media_info, wait_until
from streamvio.events import EventBus, EventType
from streamvio.exceptions import JobValidationError
from streamvio.jobs import INTERRUPTED_REASON, JobScheduler
from streamvio.models import JobStatus, TranscodeJob, TranscodeRequest
from streamvio.transcoding.engine import TranscodeEngine


def make_request(media_file, job_id=None, **kwargs):
    kwargs.setdefault("media_id", "media-1")
    return TranscodeRequest(job_id=job_id, input_path=str(media_file), **kwargs)


def output_root(config) -> Path:
    return Path(config.transcoding.output_directory).resolve()


def arg_after(args, flag):
    return args[args.index(flag) + 1]


class TestSubmission:
    async def test_standard_job_lifecycle(self, scheduler, fake_engine, recorder, store, media_file, test_config):
        fake_engine.auto_release = True
        job = await scheduler.submit(make_request(media_file, "job-1"))

        assert job.profile == "standard"
        assert job.output_path == str(output_root(test_config) / "movie.mp4")
        assert job.status == JobStatus.PROCESSING

        await wait_until(lambda: scheduler.get_active_count() == 0)

        assert job.status == JobStatus.COMPLETED
        assert job.progress == 100
        assert recorder.types_for("job-1") == ["started", "progress", "progress", "completed"]

        stored = await store.get("job-1")
        assert stored.status == JobStatus.COMPLETED
        assert stored.progress == 100
        assert stored.started_at is not None
        assert stored.completed_at >= stored.started_at

        args = fake_engine.commands["job-1"]
        assert arg_after(args, "-i") == str(media_file)
        assert arg_after(args, "-vf") == "scale=-2:720"
        assert args[-1] == job.output_path

    async def test_output_names_follow_profile(self, scheduler, media_file, test_config):
        root = output_root(test_config)
        mobile = await scheduler.submit(make_request(media_file, profile="mobile"))
        audio = await scheduler.submit(make_request(media_file, profile="audio_high"))
        assert mobile.output_path == str(root / "movie_mobile.mp4")
        assert audio.output_path == str(root / "movie_audio_high.ogg")

    async def test_unknown_profile_uses_default(self, scheduler, media_file, test_config):
        job = await scheduler.submit(make_request(media_file, profile="ultra"))
        assert job.profile == "standard"
        assert job.output_path == str(output_root(test_config) / "movie.mp4")

    async def test_explicit_output_inside_root(self, scheduler, media_file, test_config):
        target = output_root(test_config) / "custom" / "cut.mp4"
        job = await scheduler.submit(make_request(media_file, output_path=str(target)))
        assert job.output_path == str(target)

    async def test_relative_output_is_under_root(self, scheduler, media_file, test_config):
        job = await scheduler.submit(make_request(media_file, output_path="shows/ep1.mp4"))
        assert job.output_path == str(output_root(test_config) / "shows" / "ep1.mp4")

    @pytest.mark.parametrize("output_path", ["../escape.mp4", "/etc/passwd", "shows/../../escape.mp4"])
    async def test_output_outside_root_rejected(self, scheduler, store, media_file, output_path):
        with pytest.raises(JobValidationError):
            await scheduler.submit(make_request(media_file, output_path=output_path))
        assert await store.list() == []

    @pytest.mark.parametrize("field", ["media_id", "input_path"])
    async def test_missing_required_field(self, scheduler, store, media_file, field):
        request = make_request(media_file).model_copy(update={field: None})
        with pytest.raises(JobValidationError):
            await scheduler.submit(request)
        assert scheduler.get_queue_length() == 0
        assert scheduler.get_active_count() == 0
        assert await store.list() == []

    @pytest.mark.parametrize("options", [
        {"video_bitrate": "fast"},
        {"resolution": "wide"},
        {"max_height": "tall"},
        {"max_height": 0},
        {"time_offset": "later"},
        {"count": 0},
        {"count": "many"},
    ])
    async def test_invalid_options_rejected(self, scheduler, store, media_file, options):
        with pytest.raises(JobValidationError):
            await scheduler.submit(make_request(media_file, options=options))
        assert await store.list() == []

    async def test_transcoding_disabled(self, scheduler, media_file, test_config):
        test_config.transcoding.enabled = False
        with pytest.raises(JobValidationError):
            await scheduler.submit(make_request(media_file))

    async def test_duplicate_active_job_id(self, scheduler, media_file):
        await scheduler.submit(make_request(media_file, "job-1"))
        with pytest.raises(JobValidationError):
            await scheduler.submit(make_request(media_file, "job-1"))

    async def test_numeric_media_id(self, scheduler, media_file):
        job = await scheduler.submit(TranscodeRequest(media_id=42, input_path=str(media_file)))
        assert job.media_id == "42"

    async def test_failure(self, scheduler, fake_engine, recorder, store, media_file):
        job = await scheduler.submit(make_request(media_file, "job-1"))
        await wait_until(lambda: "job-1" in fake_engine.running)
        fake_engine.release("job-1", failure="Encoder exited with code 1")
        await wait_until(lambda: scheduler.get_active_count() == 0)

        assert job.status == JobStatus.FAILED
        assert job.error == "Encoder exited with code 1"
        assert recorder.types_for("job-1")[-1] == "failed"
        assert (await store.get("job-1")).status == JobStatus.FAILED
        assert scheduler.stats.failed_jobs == 1


class TestConcurrency:
    async def test_limit_and_queue(self, scheduler, fake_engine, media_file):
        jobs = [await scheduler.submit(make_request(media_file, f"job-{i}")) for i in range(4)]

        assert [j.status for j in jobs] == [
            JobStatus.PROCESSING, JobStatus.PROCESSING, JobStatus.PENDING, JobStatus.PENDING
        ]
        assert scheduler.get_active_count() == 2
        assert scheduler.queued_job_ids() == ["job-2", "job-3"]

        await wait_until(lambda: len(fake_engine.started) == 2)
        fake_engine.release("job-0")
        await wait_until(lambda: jobs[2].status == JobStatus.PROCESSING)
        assert jobs[3].status == JobStatus.PENDING
        assert scheduler.get_active_count() == 2

        for job_id in ("job-1", "job-2", "job-3"):
            fake_engine.release(job_id)
        await wait_until(lambda: all(j.status == JobStatus.COMPLETED for j in jobs))

        assert fake_engine.max_running == 2
        assert fake_engine.started == ["job-0", "job-1", "job-2", "job-3"]

    async def test_fifo_with_single_slot(self, scheduler, fake_engine, media_file):
        scheduler.max_concurrent_jobs = 1
        for job_id in ("a", "b", "c"):
            await scheduler.submit(make_request(media_file, job_id))

        await wait_until(lambda: fake_engine.started == ["a"])
        fake_engine.release("a")
        await wait_until(lambda: fake_engine.started == ["a", "b"])
        fake_engine.release("b")
        await wait_until(lambda: fake_engine.started == ["a", "b", "c"])
        fake_engine.release("c")
        await wait_until(lambda: scheduler.get_active_count() == 0)

    async def test_queued_event_reports_position(self, scheduler, recorder, media_file):
        for i in range(4):
            await scheduler.submit(make_request(media_file, f"job-{i}"))

        queued = [e for e in recorder.events if e.event_type == EventType.QUEUED]
        assert [(e.job_id, e.position) for e in queued] == [("job-2", 1), ("job-3", 2)]

    async def test_burst_never_exceeds_limit(self, scheduler, fake_engine, media_file):
        fake_engine.auto_release = True
        jobs = await asyncio.gather(*(
            scheduler.submit(make_request(media_file, f"job-{i}")) for i in range(8)
        ))
        await wait_until(lambda: all(j.status == JobStatus.COMPLETED for j in jobs))
        await wait_until(lambda: scheduler.get_active_count() == 0)

        assert fake_engine.max_running <= 2
        assert sorted(fake_engine.started) == sorted(j.id for j in jobs)
        assert scheduler.get_queue_length() == 0


class TestCancellation:
    async def test_cancel_queued_job(self, scheduler, fake_engine, recorder, store, media_file):
        scheduler.max_concurrent_jobs = 1
        await scheduler.submit(make_request(media_file, "job-a"))
        queued = await scheduler.submit(make_request(media_file, "job-b"))

        result = await scheduler.cancel("job-b")

        assert result.success
        assert queued.status == JobStatus.CANCELLED
        assert scheduler.get_queue_length() == 0
        assert (await store.get("job-b")).status == JobStatus.CANCELLED

        fake_engine.release("job-a")
        await wait_until(lambda: scheduler.get_active_count() == 0)
        assert fake_engine.started == ["job-a"]
        assert recorder.types_for("job-b") == ["queued", "cancelled"]

    async def test_cancel_running_job_is_cosmetic(self, scheduler, fake_engine, recorder, store, media_file):
        job = await scheduler.submit(make_request(media_file, "job-a"))
        await wait_until(lambda: "job-a" in fake_engine.running)

        result = await scheduler.cancel("job-a")

        assert result.success
        assert "run to completion" in result.message
        assert job.status == JobStatus.CANCELLED
        assert fake_engine.terminated == []
        assert scheduler.get_active_count() == 1

        fake_engine.release("job-a")
        await wait_until(lambda: scheduler.get_active_count() == 0)

        assert job.status == JobStatus.CANCELLED
        assert (await store.get("job-a")).status == JobStatus.CANCELLED
        types = recorder.types_for("job-a")
        assert "completed" not in types
        assert types[-1] == "cancelled"

    async def test_cancelled_slot_is_reused_after_encoder_exits(self, scheduler, fake_engine, media_file):
        scheduler.max_concurrent_jobs = 1
        await scheduler.submit(make_request(media_file, "job-a"))
        waiting = await scheduler.submit(make_request(media_file, "job-b"))
        await wait_until(lambda: "job-a" in fake_engine.running)

        await scheduler.cancel("job-a")
        assert waiting.status == JobStatus.PENDING

        fake_engine.release("job-a")
        await wait_until(lambda: waiting.status == JobStatus.PROCESSING)

    async def test_cancel_with_terminate(self, scheduler, fake_engine, store, media_file):
        job = await scheduler.submit(make_request(media_file, "job-a"))
        await wait_until(lambda: "job-a" in fake_engine.running)

        result = await scheduler.cancel("job-a", terminate=True)

        assert result.success
        assert "encoder stopped" in result.message
        assert fake_engine.terminated == ["job-a"]
        await wait_until(lambda: scheduler.get_active_count() == 0)
        assert job.status == JobStatus.CANCELLED
        assert (await store.get("job-a")).status == JobStatus.CANCELLED

    async def test_terminate_on_cancel_config(self, scheduler, fake_engine, media_file, test_config):
        test_config.transcoding.terminate_on_cancel = True
        await scheduler.submit(make_request(media_file, "job-a"))
        await wait_until(lambda: "job-a" in fake_engine.running)

        await scheduler.cancel("job-a")
        assert fake_engine.terminated == ["job-a"]

    async def test_cancel_before_encoder_starts(self, scheduler, fake_engine, fake_prober, store, media_file):
        fake_prober.gate = asyncio.Event()
        job = await scheduler.submit(make_request(media_file, "job-a"))
        await wait_until(lambda: len(fake_prober.calls) == 1)

        result = await scheduler.cancel("job-a", terminate=True)
        assert result.success
        assert "no encoder was running" in result.message

        fake_prober.gate.set()
        await wait_until(lambda: scheduler.get_active_count() == 0)
        assert fake_engine.started == []
        assert job.status == JobStatus.CANCELLED
        assert (await store.get("job-a")).status == JobStatus.CANCELLED

    async def test_cancel_finished_job(self, scheduler, fake_engine, media_file):
        fake_engine.auto_release = True
        await scheduler.submit(make_request(media_file, "job-a"))
        await wait_until(lambda: scheduler.get_active_count() == 0)

        result = await scheduler.cancel("job-a")
        assert not result.success
        assert result.job.status == JobStatus.COMPLETED
        assert "already completed" in result.message

    async def test_cancel_unknown_job(self, scheduler):
        result = await scheduler.cancel("nope")
        assert not result.success
        assert result.job is None
        assert result.message == "Job not found"

    async def test_cancel_twice(self, scheduler, fake_engine, media_file):
        await scheduler.submit(make_request(media_file, "job-a"))
        await wait_until(lambda: "job-a" in fake_engine.running)
        assert (await scheduler.cancel("job-a")).success

        second = await scheduler.cancel("job-a")
        assert not second.success
        assert "already cancelled" in second.message


def rung(width, height, bitrate):
    return {"width": width, "height": height, "bitrate": bitrate, "max_bitrate": bitrate * 3 // 2, "buffer_size": bitrate * 2}


def heights(job):
    return [r["height"] for r in job.options["renditions"]]


class TestAdaptiveStreaming:
    async def test_hls_job(self, scheduler, fake_engine, fake_prober, event_bus, store, media_file, test_config):
        fake_engine.auto_release = True
        job = await scheduler.submit_hls(make_request(media_file, "hls-1", options={"max_height": 720}))

        assert job.profile == "hls"
        assert job.output_path == str(output_root(test_config) / "movie_hls" / "master.m3u8")

        await wait_until(lambda: scheduler.get_active_count() == 0)
        await event_bus.drain()

        assert job.status == JobStatus.COMPLETED
        assert heights(job) == [360, 480, 720]
        assert [r["width"] for r in job.options["renditions"]] == [640, 854, 1280]
        assert str(media_file) in fake_prober.calls
        assert await store.get_media_hls_path("media-1") == job.output_path
        assert heights(await store.get("hls-1")) == [360, 480, 720]

        args = fake_engine.commands["hls-1"]
        assert arg_after(args, "-var_stream_map") == "v:0,a:0 v:1,a:1 v:2,a:2"
        assert arg_after(args, "-hls_time") == str(test_config.transcoding.segment_duration)
        assert arg_after(args, "-master_pl_name") == "master.m3u8"

    async def test_hls_submit_returns_before_source_is_inspected(self, scheduler, fake_engine, fake_prober, media_file):
        fake_prober.gate = asyncio.Event()
        job = await scheduler.submit_hls(make_request(media_file, "hls-1"))

        assert job.status == JobStatus.PROCESSING
        assert "renditions" not in job.options

        fake_prober.gate.set()
        await wait_until(lambda: "hls-1" in fake_engine.running)
        assert heights(job) == [360, 480, 720, 1080]

    async def test_hls_ladder_from_cached_media_info(self, scheduler, fake_prober, media_file):
        await fake_prober.probe(str(media_file))
        job = await scheduler.submit_hls(make_request(media_file, options={"max_height": 720}))
        assert heights(job) == [360, 480, 720]

    async def test_hls_unreadable_source(self, scheduler, fake_engine, fake_prober, media_file):
        fake_prober.media_info = None
        job = await scheduler.submit_hls(make_request(media_file, "hls-1"))
        await wait_until(lambda: "hls-1" in fake_engine.running)
        assert job.options["renditions"] == [
            {"width": 640, "height": 360, "bitrate": 800, "max_bitrate": 1000, "buffer_size": 1200}
        ]

    async def test_custom_master_playlist_name(self, scheduler, fake_engine, event_bus, store, media_file, test_config):
        fake_engine.auto_release = True
        job = await scheduler.submit_hls(make_request(media_file, "hls-1", output_path="custom/stream.m3u8"))
        assert job.output_path == str(output_root(test_config) / "custom" / "stream.m3u8")

        await wait_until(lambda: scheduler.get_active_count() == 0)
        await event_bus.drain()

        args = fake_engine.commands["hls-1"]
        assert arg_after(args, "-master_pl_name") == "stream.m3u8"
        assert Path(args[-1]).parent == Path(job.output_path).parent
        assert await store.get_media_hls_path("media-1") == job.output_path

    async def test_hls_output_must_be_playlist(self, scheduler, store, media_file):
        with pytest.raises(JobValidationError, match="m3u8"):
            await scheduler.submit_hls(make_request(media_file, output_path="custom/stream.mp4"))
        assert await store.list() == []

    async def test_caller_ladder_is_sorted(self, scheduler, fake_engine, media_file):
        fake_engine.auto_release = True
        options = {"renditions": [rung(1280, 720, 2765), rung(640, 360, 484)]}
        job = await scheduler.submit(make_request(media_file, "hls-1", profile="hls", options=options))

        assert heights(job) == [360, 720]
        await wait_until(lambda: scheduler.get_active_count() == 0)
        assert job.status == JobStatus.COMPLETED
        assert "[v0]scale=640:360[v0out]" in arg_after(fake_engine.commands["hls-1"], "-filter_complex")

    @pytest.mark.parametrize("renditions, message", [
        ([rung(641, 361, 800)], "even dimensions"),
        (["720p"], "must be an object"),
        ([{"width": 640, "height": 360}], "missing bitrate"),
        ([rung(640, 360, 0)], "must be positive"),
        ([{"width": 640, "height": 360, "bitrate": "fast", "max_bitrate": 1200, "buffer_size": 1600}], "non-numeric"),
        ("720p", "must be a list"),
    ])
    async def test_invalid_ladder_rejected(self, scheduler, fake_engine, store, media_file, renditions, message):
        options = {"renditions": renditions}
        with pytest.raises(JobValidationError, match=message):
            await scheduler.submit(make_request(media_file, "hls-1", profile="hls", options=options))
        with pytest.raises(JobValidationError, match=message):
            await scheduler.submit_hls(make_request(media_file, "hls-2", options=options))
        assert await store.list() == []
        assert fake_engine.started == []

    async def test_failed_hls_job_leaves_media_path(self, scheduler, fake_engine, event_bus, store, media_file):
        await scheduler.submit_hls(make_request(media_file, "hls-1"))
        await wait_until(lambda: "hls-1" in fake_engine.running)
        fake_engine.release("hls-1", failure="boom")
        await wait_until(lambda: scheduler.get_active_count() == 0)
        await event_bus.drain()
        assert await store.get_media_hls_path("media-1") is None

    async def test_thumbnail_job(self, scheduler, fake_engine, media_file, test_config):
        fake_engine.auto_release = True
        job = await scheduler.submit_thumbnail(make_request(media_file, "thumb-1"))

        assert job.profile == "thumbnail"
        assert job.output_path == str(output_root(test_config) / "thumbnails" / "movie_thumb.jpg")
        await wait_until(lambda: scheduler.get_active_count() == 0)
        assert arg_after(fake_engine.commands["thumb-1"], "-ss") == "00:00:10.000"

    async def test_storyboard_job(self, scheduler, fake_engine, media_file, test_config):
        fake_engine.auto_release = True
        job = await scheduler.submit_storyboard(make_request(media_file, "sb-1", options={"count": 3}))

        storyboard_dir = output_root(test_config) / "thumbnails" / "movie_storyboard"
        assert job.profile == "storyboard"
        assert job.output_path == str(storyboard_dir)

        await wait_until(lambda: scheduler.get_active_count() == 0)

        assert job.status == JobStatus.COMPLETED
        assert storyboard_dir.is_dir()
        # 120 s source, 3 frames: one every 30 s
        assert [frame["time_offset"] for frame in job.options["frames"]] == [30, 60, 90]
        assert job.options["frames"][0]["path"] == str(storyboard_dir / "movie_thumb_1.jpg")

        args = fake_engine.commands["sb-1"]
        seeks = [args[i + 1] for i, arg in enumerate(args) if arg == "-ss"]
        assert seeks == ["00:00:30.000", "00:01:00.000", "00:01:30.000"]
        assert args[-1] == str(storyboard_dir / "movie_thumb_3.jpg")

    async def test_storyboard_default_count(self, scheduler, fake_engine, media_file, test_config):
        job = await scheduler.submit_storyboard(make_request(media_file, "sb-1"))
        await wait_until(lambda: "sb-1" in fake_engine.running)
        assert job.options["count"] == test_config.transcoding.storyboard_count
        assert len(job.options["frames"]) == test_config.transcoding.storyboard_count

    async def test_storyboard_needs_duration(self, scheduler, fake_engine, fake_prober, media_file):
        fake_prober.media_info = make_media_info(duration=None)
        job = await scheduler.submit_storyboard(make_request(media_file, "sb-1"))
        await wait_until(lambda: scheduler.get_active_count() == 0)

        assert job.status == JobStatus.FAILED
        assert "duration" in job.error
        assert fake_engine.started == []


class CallbackReceiver:
    """Answers callback POSTs through an httpx mock transport."""

    def __init__(self, status_code: int = 200):
        self.status_code = status_code
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append((str(request.url), json.loads(request.content)))
        return httpx.Response(self.status_code)


@pytest.fixture
def callback_receiver(monkeypatch):
    receiver = CallbackReceiver()
    real_client = httpx.AsyncClient

    def make_client(**kwargs):
        return real_client(transport=httpx.MockTransport(receiver), **kwargs)

    monkeypatch.setattr("streamvio.jobs.httpx.AsyncClient", make_client)
    return receiver


class TestCallbacks:
    async def test_completed_job_posts_status(self, scheduler, fake_engine, callback_receiver, media_file):
        fake_engine.auto_release = True
        await scheduler.submit(make_request(media_file, "job-1", callback_url="http://hooks.test/done"))
        await wait_until(lambda: callback_receiver.requests)

        url, payload = callback_receiver.requests[0]
        assert url == "http://hooks.test/done"
        assert payload["job_id"] == "job-1"
        assert payload["status"] == "completed"
        assert payload["progress"] == 100

    async def test_cancelled_queued_job_posts_status(self, scheduler, fake_engine, callback_receiver, media_file):
        scheduler.max_concurrent_jobs = 1
        await scheduler.submit(make_request(media_file, "job-a"))
        await scheduler.submit(make_request(media_file, "job-b", callback_url="http://hooks.test/b"))

        assert (await scheduler.cancel("job-b")).success
        await wait_until(lambda: callback_receiver.requests)
        assert callback_receiver.requests[0][1]["status"] == "cancelled"

    async def test_no_callback_without_url(self, scheduler, fake_engine, callback_receiver, media_file):
        fake_engine.auto_release = True
        await scheduler.submit(make_request(media_file, "job-1"))
        await wait_until(lambda: scheduler.get_active_count() == 0)
        await scheduler.stop()
        assert callback_receiver.requests == []

    async def test_rejected_callback_is_logged(self, scheduler, fake_engine, callback_receiver, store, media_file, caplog):
        callback_receiver.status_code = 500
        fake_engine.auto_release = True
        caplog.set_level(logging.ERROR, logger="streamvio.jobs")

        await scheduler.submit(make_request(media_file, "job-1", callback_url="http://hooks.test/done"))
        await wait_until(lambda: callback_receiver.requests)
        await scheduler.stop()

        assert "Callback for job job-1" in caplog.text
        assert (await store.get("job-1")).status == JobStatus.COMPLETED
        assert (await store.get("job-1")).callback_url == "http://hooks.test/done"


class TestQueriesAndLifecycle:
    async def test_get_job_prefers_live_record(self, scheduler, fake_engine, media_file):
        job = await scheduler.submit(make_request(media_file, "job-a"))
        await wait_until(lambda: job.progress == 50)
        assert await scheduler.get_job("job-a") is job

        listed = await scheduler.list_jobs()
        assert listed[0] is job

    async def test_get_job_from_store(self, scheduler, fake_engine, media_file):
        fake_engine.auto_release = True
        await scheduler.submit(make_request(media_file, "job-a"))
        await wait_until(lambda: scheduler.get_active_count() == 0)

        loaded = await scheduler.get_job("job-a")
        assert loaded.status == JobStatus.COMPLETED
        assert await scheduler.get_job("missing") is None

    async def test_find_playable_requires_output_file(self, scheduler, fake_engine, media_file):
        fake_engine.auto_release = True
        job = await scheduler.submit(make_request(media_file, "job-a"))
        await wait_until(lambda: scheduler.get_active_count() == 0)

        assert await scheduler.find_playable("media-1", "standard") is None
        Path(job.output_path).write_bytes(b"\x00")
        assert (await scheduler.find_playable("media-1", "standard")).id == "job-a"

    async def test_start_fails_interrupted_jobs(self, scheduler, store, media_file):
        await store.create(TranscodeJob(
            id="stale",
            media_id="media-1",
            input_path=str(media_file),
            output_path="/tmp/stale.mp4",
            status=JobStatus.PROCESSING,
        ))
        await scheduler.start()

        stale = await store.get("stale")
        assert stale.status == JobStatus.FAILED
        assert stale.error == INTERRUPTED_REASON

    async def test_stop_terminates_running_and_drops_queue(self, scheduler, fake_engine, store, media_file):
        scheduler.max_concurrent_jobs = 1
        running = await scheduler.submit(make_request(media_file, "job-a"))
        await scheduler.submit(make_request(media_file, "job-b"))
        await wait_until(lambda: "job-a" in fake_engine.running)

        await scheduler.stop(cancel_running=True)

        assert fake_engine.terminated == ["job-a"]
        assert running.status == JobStatus.FAILED
        assert scheduler.get_queue_length() == 0
        assert fake_engine.started == ["job-a"]
        assert (await store.get("job-b")).status == JobStatus.PENDING

    async def test_completed_output_is_reused(self, scheduler, fake_engine, media_file):
        fake_engine.auto_release = True
        first = await scheduler.submit(make_request(media_file, "job-a"))
        await wait_until(lambda: scheduler.get_active_count() == 0)
        Path(first.output_path).parent.mkdir(parents=True, exist_ok=True)
        Path(first.output_path).write_bytes(b"\x00")

        again = await scheduler.submit(make_request(media_file))

        assert again.id == "job-a"
        assert again.status == JobStatus.COMPLETED
        assert fake_engine.started == ["job-a"]

    async def test_force_regenerate_starts_new_job(self, scheduler, fake_engine, media_file):
        fake_engine.auto_release = True
        first = await scheduler.submit(make_request(media_file, "job-a"))
        await wait_until(lambda: scheduler.get_active_count() == 0)
        Path(first.output_path).parent.mkdir(parents=True, exist_ok=True)
        Path(first.output_path).write_bytes(b"\x00")

        again = await scheduler.submit(make_request(media_file, "job-b", options={"force_regenerate": True}))
        await wait_until(lambda: scheduler.get_active_count() == 0)

        assert again.id == "job-b"
        assert fake_engine.started == ["job-a", "job-b"]


ENCODER_SCRIPT = """#!{python}
import sys
from pathlib import Path

sys.stderr.write("frame=  100 fps=25 size=512kB time=00:01:00.00 bitrate=69.9kbits/s speed=2x\\n")
sys.stderr.flush()
Path(sys.argv[-1]).write_bytes(b"encoded")
"""


@pytest.mark.skipif(sys.platform == "win32", reason="Stand-in encoder relies on a shebang script")
async def test_job_through_encoder_process(test_config, store, media_file, tmp_path):
    encoder = tmp_path / "bin" / "fake-ffmpeg"
    encoder.parent.mkdir()
    encoder.write_text(ENCODER_SCRIPT.format(python=sys.executable))
    encoder.chmod(0o755)
    test_config.transcoding.ffmpeg_path = str(encoder)
    test_config.transcoding.max_concurrent_jobs = 1

    bus = EventBus()
    recorder = EventRecorder()
    bus.subscribe(recorder)
    sched = JobScheduler(
        store,
        event_bus=bus,
        config=test_config,
        engine=TranscodeEngine(),
        prober=FakeProber(),
    )
    await sched.start()
    try:
        job = await sched.submit(make_request(media_file, "job-1"))
        await wait_until(lambda: sched.get_active_count() == 0, timeout=15.0)
    finally:
        await sched.stop(cancel_running=True)

    assert job.status == JobStatus.COMPLETED, job.error
    assert job.output_path.endswith(".mp4")
    assert Path(job.output_path).read_bytes() == b"encoded"
    progress = [e.percent for e in recorder.events if e.event_type == EventType.PROGRESS]
    assert progress == [50, 100]
    assert recorder.types_for("job-1")[-1] == "completed"
    assert (await store.get("job-1")).status == JobStatus.COMPLETED
