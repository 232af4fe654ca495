"""
Job scheduling for StreamVio: a bounded set of running jobs plus a FIFO
queue, owned by one JobScheduler.
"""

import asyncio
import logging
import os
from collections import deque
from datetime import datetime
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional, Set, Tuple

import httpx

from .config import StreamVioConfig, get_config, resolve_binary
from .events import (
    EventBus,
    EventType,
    JobCancelled,
    JobCompleted,
    JobEvent,
    JobFailed,
    JobProgress,
    JobQueued,
    JobStarted,
    get_event_bus,
)
from .exceptions import JobPreparationError, JobStoreError, JobValidationError
from .hardware import HardwareDetector, HWAccelType
from .models import (
    HLS_PROFILE,
    STORYBOARD_PROFILE,
    THUMBNAIL_PROFILE,
    CancelResult,
    JobStatus,
    TranscodeJob,
    TranscodeRequest,
    new_job_id,
    utcnow,
)
from .store import JobStore
from .transcoding.commands import CommandBuilder, EncoderCommand, storyboard_frame_path, storyboard_offsets
from .transcoding.constants import (
    HLS_DIR_SUFFIX,
    HLS_MASTER_PLAYLIST,
    HLS_PLAYLIST_EXTENSION,
    PROFILES,
    STORYBOARD_SUFFIX,
    THUMBNAIL_DIR,
    THUMBNAIL_SUFFIX,
    UNSUFFIXED_PROFILES,
)
from .transcoding.encoders import EncoderSelector
from .transcoding.engine import TranscodeEngine
from .transcoding.models import MediaInfo, Rendition
from .transcoding.probe import MediaProbe
from .transcoding.profiles import build_ladder, ladder_from_options, parse_ladder, resolve_profile

logger = logging.getLogger(__name__)

# Progress is written to the store every this many percent
PROGRESS_PERSIST_STEP = 10

INTERRUPTED_REASON = "Interrupted by service restart"

# Profiles that name an output kind rather than a PROFILES entry
OUTPUT_KIND_PROFILES = (HLS_PROFILE, THUMBNAIL_PROFILE, STORYBOARD_PROFILE)


def _check_option(options: Dict[str, Any], key: str, convert, accept, expected: str) -> None:
    value = options.get(key)
    if value is None:
        return
    try:
        valid = accept(convert(value))
    except (TypeError, ValueError):
        valid = False
    if not valid:
        raise JobValidationError(f"{key} must be {expected}, got {value!r}")


class JobStats:
    """Statistics for job processing."""

    def __init__(self):
        self.submitted_jobs: int = 0
        self.successful_jobs: int = 0
        self.failed_jobs: int = 0
        self.cancelled_jobs: int = 0
        self.persistence_errors: int = 0
        self.total_transcode_time: float = 0.0
        self.hw_accel_usage: Dict[str, int] = {}
        self.start_time: datetime = utcnow()

    def record_finished(self, job: TranscodeJob) -> None:
        if job.status == JobStatus.COMPLETED:
            self.successful_jobs += 1
            if job.started_at and job.completed_at:
                self.total_transcode_time += (job.completed_at - job.started_at).total_seconds()
        elif job.status == JobStatus.FAILED:
            self.failed_jobs += 1

    def record_accel(self, accel: HWAccelType) -> None:
        self.hw_accel_usage[accel.value] = self.hw_accel_usage.get(accel.value, 0) + 1

    @property
    def average_transcode_time(self) -> float:
        if self.successful_jobs > 0:
            return self.total_transcode_time / self.successful_jobs
        return 0.0

    @property
    def uptime_seconds(self) -> float:
        return (utcnow() - self.start_time).total_seconds()


class JobScheduler:
    """
    Accepts transcode requests and runs at most max_concurrent_jobs at once.

    The scheduler is the only owner of the running set and the FIFO queue.
    Starting and draining happen under a single lock, so concurrent job
    completions can neither exceed the limit nor pop the same queue head
    twice.

    Cancelling a pending job is authoritative: it leaves the queue and
    never starts. Cancelling a processing job only marks the record
    cancelled; the encoder keeps running to completion and its late
    outcome does not change the cancelled status. Passing terminate=True
    (or setting transcoding.terminate_on_cancel) additionally signals the
    encoder process to stop.
    """

    def __init__(
        self,
        store: JobStore,
        event_bus: Optional[EventBus] = None,
        config: Optional[StreamVioConfig] = None,
        engine: Optional[TranscodeEngine] = None,
        prober: Optional[MediaProbe] = None,
        hardware: Optional[HardwareDetector] = None,
        encoder_selector: Optional[EncoderSelector] = None,
    ):
        self.config = config or get_config()
        tc = self.config.transcoding
        ffmpeg_path = resolve_binary(tc.ffmpeg_path, "ffmpeg")

        self.max_concurrent_jobs = tc.max_concurrent_jobs
        self.output_root = Path(tc.output_directory).expanduser().resolve()
        self.store = store
        self.event_bus = event_bus or get_event_bus()
        self.engine = engine or TranscodeEngine()
        self.prober = prober or MediaProbe(resolve_binary(tc.ffprobe_path, "ffprobe"), timeout=tc.probe_timeout)
        self.hardware = hardware or HardwareDetector(ffmpeg_path, timeout=self.config.hardware.detect_timeout)
        self.encoder_selector = encoder_selector or EncoderSelector(self.config.hardware)
        self.command_builder = CommandBuilder(
            ffmpeg_path,
            self.encoder_selector,
            max_bitrate=tc.max_bitrate,
            segment_duration=tc.segment_duration,
            thumbnail_width=tc.thumbnail_width,
            storyboard_width=tc.storyboard_width,
        )
        self.stats = JobStats()

        self._jobs: Dict[str, TranscodeJob] = {}  # pending and processing jobs
        self._queue: Deque[str] = deque()
        self._running: Dict[str, asyncio.Task] = {}
        self._lock = asyncio.Lock()
        # Serializes job record updates; each write reads the job state when it runs
        self._write_lock = asyncio.Lock()
        self._callbacks: Set[asyncio.Task] = set()
        self._unsubscribe = self.event_bus.subscribe(self._on_job_completed, [EventType.COMPLETED])

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Prepare the store and fail jobs a previous process left unfinished."""
        self.output_root.mkdir(parents=True, exist_ok=True)
        await self.store.init()
        interrupted = await self.store.fail_interrupted(INTERRUPTED_REASON)
        if interrupted:
            logger.warning(f"[Scheduler] Marked {interrupted} interrupted job(s) as failed")
        logger.info(
            f"[Scheduler] Ready: max {self.max_concurrent_jobs} concurrent job(s), output root {self.output_root}"
        )

    async def stop(self, cancel_running: bool = True) -> None:
        """Stop starting new jobs and wind down running ones."""
        async with self._lock:
            dropped = len(self._queue)
            self._queue.clear()
        if dropped:
            logger.info(f"[Scheduler] {dropped} queued job(s) left pending for the next start")

        if cancel_running:
            await self.engine.terminate_all()
        if self._running:
            await asyncio.gather(*list(self._running.values()), return_exceptions=True)
        if self._callbacks:
            await asyncio.gather(*list(self._callbacks), return_exceptions=True)

        self._unsubscribe()
        await self.event_bus.drain()
        logger.info("[Scheduler] Stopped")

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def _resolve_output_path(self, path: str) -> str:
        candidate = Path(path).expanduser()
        if not candidate.is_absolute():
            candidate = self.output_root / candidate
        resolved = candidate.resolve()
        if not resolved.is_relative_to(self.output_root):
            raise JobValidationError(f"Output path must be inside {self.output_root}")
        return str(resolved)

    def default_output_path(self, input_path: str, profile: str) -> str:
        """Output location derived from the input name and profile."""
        base = Path(input_path).stem
        if profile == HLS_PROFILE:
            return str(self.output_root / f"{base}{HLS_DIR_SUFFIX}" / HLS_MASTER_PLAYLIST)
        if profile == THUMBNAIL_PROFILE:
            return str(self.output_root / THUMBNAIL_DIR / f"{base}{THUMBNAIL_SUFFIX}")
        if profile == STORYBOARD_PROFILE:
            return str(self.output_root / THUMBNAIL_DIR / f"{base}{STORYBOARD_SUFFIX}")
        extension = resolve_profile(profile).extension
        suffix = "" if profile in UNSUFFIXED_PROFILES else f"_{profile}"
        return str(self.output_root / f"{base}{suffix}.{extension}")

    def _validate(self, request: TranscodeRequest) -> None:
        if not self.config.transcoding.enabled:
            raise JobValidationError("Transcoding is disabled")
        if not request.input_path:
            raise JobValidationError("input_path is required")
        if not request.media_id:
            raise JobValidationError("media_id is required")
        _check_option(request.options, "max_height", int, lambda v: v > 0, "a positive integer")
        _check_option(request.options, "time_offset", float, lambda v: v >= 0, "a non-negative number")
        _check_option(request.options, "count", int, lambda v: v > 0, "a positive integer")

    @staticmethod
    def _check_hls(output_path: str, options: Dict[str, Any]) -> None:
        """Reject unusable HLS requests and store a caller ladder sorted by height."""
        if not output_path.endswith(HLS_PLAYLIST_EXTENSION):
            raise JobValidationError(f"HLS output_path must be a {HLS_PLAYLIST_EXTENSION} master playlist, got {output_path}")
        if options.get("renditions") is None:
            return
        try:
            ladder = parse_ladder(options["renditions"])
        except ValueError as e:
            raise JobValidationError(f"Invalid renditions: {e}") from e
        options["renditions"] = [r.to_dict() for r in ladder]

    def _build_job(self, request: TranscodeRequest) -> TranscodeJob:
        self._validate(request)

        profile = request.profile or self.config.transcoding.default_profile
        if profile not in PROFILES and profile not in OUTPUT_KIND_PROFILES:
            logger.warning(f"[Scheduler] Unknown profile '{profile}', using {self.config.transcoding.default_profile}")
            profile = self.config.transcoding.default_profile
        if profile in PROFILES:
            try:
                resolve_profile(profile, request.options)
            except (TypeError, ValueError) as e:
                raise JobValidationError(f"Invalid profile options: {e}") from e

        input_path = os.path.abspath(os.path.expanduser(request.input_path))
        output_path = self._resolve_output_path(request.output_path or self.default_output_path(input_path, profile))
        options = dict(request.options)
        if profile == HLS_PROFILE:
            self._check_hls(output_path, options)

        return TranscodeJob(
            id=request.job_id or new_job_id(),
            media_id=request.media_id,
            user_id=request.user_id,
            input_path=input_path,
            output_path=output_path,
            profile=profile,
            options=options,
            callback_url=request.callback_url,
        )

    async def submit(self, request: TranscodeRequest) -> TranscodeJob:
        """
        Create a job and either start it or queue it.

        A completed job that already produced the same output file is
        returned instead, unless options["force_regenerate"] is set.

        Raises JobValidationError for unusable requests and JobStoreError
        when the new record cannot be saved; neither enters the queue.
        """
        job = self._build_job(request)
        if job.id in self._jobs:
            raise JobValidationError(f"Job {job.id} already exists")

        if not job.options.get("force_regenerate"):
            existing = await self.find_playable(job.media_id, job.profile)
            if existing is not None and existing.output_path == job.output_path:
                logger.info(f"[Scheduler] Reusing completed output for media {job.media_id}: {existing.output_path}")
                return existing

        try:
            await self.store.create(job)
        except JobStoreError:
            logger.exception(f"[Scheduler] Could not save new job {job.id}")
            raise
        self.stats.submitted_jobs += 1

        async with self._lock:
            self._jobs[job.id] = job
            self._queue.append(job.id)
            self._drain_locked()
            position = self._queue.index(job.id) + 1 if job.status == JobStatus.PENDING else 0

        if position:
            logger.info(f"[Scheduler] Job {job.id} queued at position {position}")
            self.event_bus.publish(JobQueued(job.id, job.media_id, position=position))
        return job

    def _ladder_for(self, media_info: Optional[MediaInfo], max_height: int) -> List[Rendition]:
        return build_ladder(
            media_info.width if media_info else None,
            media_info.height if media_info else None,
            max_height,
            self.config.transcoding.max_bitrate,
        )

    async def submit_hls(self, request: TranscodeRequest) -> TranscodeJob:
        """
        Submit an HLS job with a rendition ladder sized to the source.

        A caller-supplied options["renditions"] is kept. Otherwise the ladder
        is built now if the source's probe result is already cached, or when
        the job starts, so submitting never waits on ffprobe.
        """
        self._validate(request)
        options = dict(request.options)
        options["max_height"] = int(options.get("max_height") or self.config.transcoding.hls_max_height)

        if options.get("renditions") is None:
            media_info = self.prober.cached(os.path.abspath(os.path.expanduser(request.input_path)))
            if media_info is not None:
                ladder = self._ladder_for(media_info, options["max_height"])
                options["renditions"] = [r.to_dict() for r in ladder]
                logger.info(f"[Scheduler] HLS ladder for media {request.media_id}: {[r.name for r in ladder]}")

        return await self.submit(request.model_copy(update={"profile": HLS_PROFILE, "options": options}))

    async def submit_thumbnail(self, request: TranscodeRequest) -> TranscodeJob:
        options = dict(request.options)
        options.setdefault("time_offset", self.config.transcoding.thumbnail_offset)
        return await self.submit(request.model_copy(update={"profile": THUMBNAIL_PROFILE, "options": options}))

    async def submit_storyboard(self, request: TranscodeRequest) -> TranscodeJob:
        """Submit a job that grabs options["count"] evenly spaced preview frames into one directory."""
        options = dict(request.options)
        options.setdefault("count", self.config.transcoding.storyboard_count)
        return await self.submit(request.model_copy(update={"profile": STORYBOARD_PROFILE, "options": options}))

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def _drain_locked(self) -> None:
        """Start queued jobs in order while slots are free. Caller holds the lock."""
        while self._queue and len(self._running) < self.max_concurrent_jobs:
            job_id = self._queue.popleft()
            job = self._jobs.get(job_id)
            if job is None or job.status != JobStatus.PENDING:
                continue
            self._start_locked(job)

    def _start_locked(self, job: TranscodeJob) -> None:
        job.status = JobStatus.PROCESSING
        job.started_at = utcnow()
        self._running[job.id] = asyncio.create_task(self._run_job(job), name=f"transcode-{job.id}")
        logger.info(f"[Scheduler] Started job {job.id} ({job.profile}) [{len(self._running)}/{self.max_concurrent_jobs}]")

    async def _on_job_finished(self, job_id: str) -> None:
        async with self._lock:
            self._running.pop(job_id, None)
            job = self._jobs.get(job_id)
            if job is not None and job.is_terminal:
                del self._jobs[job_id]
            self._drain_locked()

    async def _run_job(self, job: TranscodeJob) -> None:
        try:
            await self._persist(job)
            command, duration = await self._prepare(job)
            if job.status == JobStatus.CANCELLED:
                logger.info(f"[Scheduler] Job {job.id} cancelled before the encoder started")
                return
            async for event in self.engine.run(job, command.args, duration):
                await self._handle_event(job, event, command)
            if job.status == JobStatus.PROCESSING:
                await self._fail(job, "Encoder ended without reporting an outcome")
        except asyncio.CancelledError:
            if job.status == JobStatus.PROCESSING:
                job.status = JobStatus.FAILED
                job.error = "Job task was cancelled"
                job.completed_at = utcnow()
            raise
        except JobPreparationError as e:
            if job.status == JobStatus.PROCESSING:
                await self._fail(job, str(e))
        except Exception as e:
            logger.exception(f"[Scheduler] Job {job.id} crashed: {e}")
            if job.status == JobStatus.PROCESSING:
                await self._fail(job, f"Internal error: {e}")
        finally:
            await self._on_job_finished(job.id)

    async def _prepare(self, job: TranscodeJob) -> Tuple[EncoderCommand, Optional[float]]:
        """Probe the input and build the encoder command for a job."""
        media_info: Optional[MediaInfo] = await self.prober.probe(job.input_path)
        if media_info is None:
            logger.warning(f"[Scheduler] Could not probe {job.input_path}; progress will not be reported")
        duration = media_info.duration if media_info else None

        if job.profile == THUMBNAIL_PROFILE:
            offset = float(job.options.get("time_offset", self.config.transcoding.thumbnail_offset))
            return self.command_builder.build_thumbnail_command(job, offset, media_info), None
        if job.profile == STORYBOARD_PROFILE:
            return self._prepare_storyboard(job, duration), None

        accel = await self.hardware.resolve(self.config.hardware.acceleration)

        if job.is_hls:
            ladder = ladder_from_options(job.options)
            if ladder is None:
                max_height = int(job.options.get("max_height") or self.config.transcoding.hls_max_height)
                ladder = self._ladder_for(media_info, max_height)
                job.options["renditions"] = [r.to_dict() for r in ladder]
                logger.info(f"[Scheduler] HLS ladder for job {job.id}: {[r.name for r in ladder]}")
            command = self.command_builder.build_hls_command(job, ladder, media_info, accel)
        else:
            profile = resolve_profile(job.profile, job.options)
            command = self.command_builder.build_transcode_command(job, profile, media_info, accel)

        if command.encoder:
            self.stats.record_accel(command.accel)
        return command, duration

    def _prepare_storyboard(self, job: TranscodeJob, duration: Optional[float]) -> EncoderCommand:
        if not duration:
            raise JobPreparationError("Could not determine the video duration for a storyboard")
        count = int(job.options.get("count", self.config.transcoding.storyboard_count))
        offsets = storyboard_offsets(duration, count)
        try:
            Path(job.output_path).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise JobPreparationError(f"Cannot create storyboard directory: {e}") from e
        job.options["frames"] = [
            {"index": i, "time_offset": offset, "path": storyboard_frame_path(job.output_path, job.input_path, i)}
            for i, offset in enumerate(offsets, start=1)
        ]
        return self.command_builder.build_storyboard_command(job, offsets)

    async def _handle_event(self, job: TranscodeJob, event: JobEvent, command: EncoderCommand) -> None:
        if job.status == JobStatus.CANCELLED:
            if event.is_terminal:
                logger.info(
                    f"[Scheduler] Cancelled job {job.id} encoder finished ({event.event_type.value}); status stays cancelled"
                )
            return

        if isinstance(event, JobStarted):
            self.event_bus.publish(event)

        elif isinstance(event, JobProgress):
            if event.percent <= job.progress:
                return
            previous = job.progress
            job.progress = event.percent
            self.event_bus.publish(event)
            if event.percent // PROGRESS_PERSIST_STEP > previous // PROGRESS_PERSIST_STEP and event.percent < 100:
                await self._persist(job)

        elif isinstance(event, JobCompleted):
            job.status = JobStatus.COMPLETED
            job.progress = 100
            job.error = None
            job.completed_at = utcnow()
            if command.encoder:
                self.encoder_selector.reset_encoder(command.encoder)
            await self._persist(job)
            self.stats.record_finished(job)
            logger.info(f"[Scheduler] Job {job.id} completed: {job.output_path}")
            self.event_bus.publish(event)
            self._schedule_callback(job)

        elif isinstance(event, JobFailed):
            if event.category == "hardware" and command.accel.is_hardware and command.encoder:
                self.encoder_selector.mark_hw_failed(command.encoder)
            await self._fail(job, event.reason, event)

    async def _fail(self, job: TranscodeJob, reason: str, event: Optional[JobFailed] = None) -> None:
        job.status = JobStatus.FAILED
        job.error = reason
        job.completed_at = utcnow()
        await self._persist(job)
        self.stats.record_finished(job)
        logger.error(f"[Scheduler] Job {job.id} failed: {reason}")
        self.event_bus.publish(event or JobFailed(job.id, job.media_id, reason=reason))
        self._schedule_callback(job)

    async def _write(self, job: TranscodeJob) -> None:
        async with self._write_lock:
            await self.store.update(job)

    async def _persist(self, job: TranscodeJob) -> bool:
        """Write a job update; failures are logged and counted, not raised."""
        try:
            await self._write(job)
            return True
        except JobStoreError:
            self.stats.persistence_errors += 1
            logger.exception(f"[Scheduler] Could not persist job {job.id} ({job.status.value})")
            return False

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    async def cancel(self, job_id: str, terminate: Optional[bool] = None) -> CancelResult:
        """
        Cancel a job.

        Pending jobs are removed from the queue. Processing jobs are marked
        cancelled; their encoder is only stopped when terminate is true.
        Terminal or unknown jobs yield an unsuccessful result. Raises
        JobStoreError if the cancelled status cannot be saved.
        """
        if terminate is None:
            terminate = self.config.transcoding.terminate_on_cancel

        was_running = False
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is not None and job.status == JobStatus.PENDING:
                try:
                    self._queue.remove(job_id)
                except ValueError:
                    pass
                del self._jobs[job_id]
            elif job is not None and job.status == JobStatus.PROCESSING:
                was_running = True
            elif job is not None:
                return CancelResult(False, f"Job is already {job.status.value}", job)

            if job is not None:
                job.status = JobStatus.CANCELLED
                job.completed_at = utcnow()

        if job is None:
            stored = await self.store.get(job_id)
            if stored is None:
                return CancelResult(False, "Job not found")
            if stored.is_terminal:
                return CancelResult(False, f"Job is already {stored.status.value}", stored)
            return CancelResult(False, "Job is not active in this process", stored)

        self.stats.cancelled_jobs += 1
        logger.info(f"[Scheduler] Cancelled job {job_id} ({'running' if was_running else 'queued'})")
        self.event_bus.publish(JobCancelled(job.id, job.media_id))

        message = "Job cancelled"
        if was_running:
            if terminate:
                stopped = await self.engine.terminate(job_id)
                message = "Job cancelled and encoder stopped" if stopped else "Job cancelled; no encoder was running"
            else:
                message = "Job marked cancelled; the encoder will run to completion"

        try:
            await self._write(job)
        except JobStoreError:
            self.stats.persistence_errors += 1
            logger.exception(f"[Scheduler] Could not persist cancellation of job {job_id}")
            raise
        self._schedule_callback(job)
        return CancelResult(True, message, job)

    # ------------------------------------------------------------------
    # Callbacks
    # ------------------------------------------------------------------

    def _schedule_callback(self, job: TranscodeJob) -> None:
        if not job.callback_url:
            return
        payload = job.to_status_response().model_dump(mode="json")
        task = asyncio.create_task(self._send_callback(job.callback_url, payload))
        self._callbacks.add(task)
        task.add_done_callback(self._callbacks.discard)

    async def _send_callback(self, url: str, payload: Dict[str, Any]) -> None:
        """POST a finished job's status to the caller-supplied URL."""
        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(url, json=payload, timeout=self.config.transcoding.callback_timeout)
                response.raise_for_status()
            logger.info(f"[Scheduler] Callback for job {payload['job_id']} sent to {url}")
        except httpx.HTTPError as e:
            logger.error(f"[Scheduler] Callback for job {payload['job_id']} to {url} failed: {e!r}")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_job(self, job_id: str) -> Optional[TranscodeJob]:
        job = self._jobs.get(job_id)
        if job is not None:
            return job
        return await self.store.get(job_id)

    async def list_jobs(
        self,
        status: Optional[JobStatus] = None,
        media_id: Optional[str] = None,
        limit: int = 20,
        offset: int = 0
    ) -> List[TranscodeJob]:
        jobs = await self.store.list(status=status, media_id=media_id, limit=limit, offset=offset)
        # In-memory records carry progress newer than the last store write
        return [self._jobs.get(job.id, job) for job in jobs]

    async def find_playable(self, media_id: str, profile: str) -> Optional[TranscodeJob]:
        """Latest completed output for a media item whose file still exists."""
        job = await self.store.find_completed(media_id, profile)
        if job and Path(job.output_path).exists():
            return job
        return None

    def get_queue_length(self) -> int:
        return len(self._queue)

    def get_active_count(self) -> int:
        return len(self._running)

    def queued_job_ids(self) -> List[str]:
        return list(self._queue)

    # ------------------------------------------------------------------
    # Derived media records
    # ------------------------------------------------------------------

    def _on_job_completed(self, event: JobEvent):
        job = self._jobs.get(event.job_id)
        if job is None or not job.is_hls:
            return None
        return self._record_hls_stream(job)

    async def _record_hls_stream(self, job: TranscodeJob) -> None:
        try:
            await self.store.set_media_hls_path(job.media_id, job.output_path, job.id)
        except JobStoreError:
            self.stats.persistence_errors += 1
            logger.exception(f"[Scheduler] Could not update HLS path for media {job.media_id}")


# Global scheduler instance
_scheduler: Optional[JobScheduler] = None


def get_job_scheduler() -> JobScheduler:
    """Get the global job scheduler instance."""
    if _scheduler is None:
        raise RuntimeError("Job scheduler not initialized")
    return _scheduler


def set_job_scheduler(scheduler: Optional[JobScheduler]) -> None:
    """Set the global job scheduler instance."""
    global _scheduler
    _scheduler = scheduler
