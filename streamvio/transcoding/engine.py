"""
Encoder process orchestration.

Each job runs as one coroutine: spawn the encoder, follow its diagnostic
stream for progress, wait for exit and report a single terminal event.
"""

import asyncio
import codecs
import logging
import re
import signal
import subprocess
import sys
from collections import deque
from pathlib import Path
from typing import Any, AsyncIterator, Deque, Dict, List, Optional, Set

from ..events import JobCompleted, JobEvent, JobFailed, JobProgress, JobStarted
from ..models import TranscodeJob
from .constants import STDERR_TAIL_LINES
from .error_classifier import ErrorClassifier, get_error_classifier
from .progress import parse_progress

logger = logging.getLogger(__name__)

# Running progress stays below 100 until the encoder exits cleanly
RUNNING_PROGRESS_CAP = 99

_LINE_SPLIT = re.compile(r"\r\n|\r|\n")


async def iter_output_lines(stream: asyncio.StreamReader, chunk_size: int = 4096) -> AsyncIterator[str]:
    """Yield lines from an encoder stream, treating a bare CR as a line end."""
    decoder = codecs.getincrementaldecoder("utf-8")(errors="ignore")
    buffer = ""
    while True:
        chunk = await stream.read(chunk_size)
        if not chunk:
            break
        buffer += decoder.decode(chunk)
        parts = _LINE_SPLIT.split(buffer)
        buffer = parts.pop()
        for part in parts:
            if part.strip():
                yield part
    buffer += decoder.decode(b"", final=True)
    if buffer.strip():
        yield buffer


class TranscodeEngine:
    """Runs encoder processes and reports their lifecycle as job events."""

    def __init__(
        self,
        error_classifier: Optional[ErrorClassifier] = None,
        terminate_timeout: float = 5.0
    ):
        self.error_classifier = error_classifier or get_error_classifier()
        self.terminate_timeout = terminate_timeout
        self._processes: Dict[str, asyncio.subprocess.Process] = {}
        self._terminated: Set[str] = set()

    @property
    def running_processes(self) -> int:
        return len(self._processes)

    def is_running(self, job_id: str) -> bool:
        process = self._processes.get(job_id)
        return process is not None and process.returncode is None

    async def run(
        self,
        job: TranscodeJob,
        args: List[str],
        duration: Optional[float] = None
    ) -> AsyncIterator[JobEvent]:
        """
        Spawn the encoder for a job and yield its events.

        Yields JobStarted, then JobProgress events with strictly increasing
        percentages, then exactly one terminal event: JobCompleted on exit
        code 0, otherwise JobFailed. Progress needs a known source duration;
        without one the job goes straight from started to its outcome.
        """
        try:
            Path(job.output_path).parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"[Engine] Cannot create output directory for job {job.id}: {e}")
            yield JobFailed(job.id, job.media_id, reason=f"Cannot create output directory: {e}", category="output")
            return

        logger.info(f"[Engine] Starting job {job.id}: {' '.join(args[:12])}{' ...' if len(args) > 12 else ''}")

        kwargs: Dict[str, Any] = {
            "stdout": asyncio.subprocess.PIPE,
            "stderr": asyncio.subprocess.PIPE,
        }
        if sys.platform == "win32":
            kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP

        try:
            process = await asyncio.create_subprocess_exec(*args, **kwargs)
        except (OSError, ValueError) as e:
            logger.error(f"[Engine] Failed to start encoder for job {job.id}: {e}")
            yield JobFailed(job.id, job.media_id, reason=f"Failed to start encoder: {e}", category="spawn")
            return

        self._processes[job.id] = process
        yield JobStarted(job.id, job.media_id)

        stderr_tail: Deque[str] = deque(maxlen=STDERR_TAIL_LINES)
        stdout_task = asyncio.create_task(self._drain(process.stdout))
        last_percent = job.progress
        returncode: Optional[int] = None
        try:
            async for line in iter_output_lines(process.stderr):
                stderr_tail.append(line)
                percent = parse_progress(line, duration)
                if percent is None:
                    continue
                percent = min(percent, RUNNING_PROGRESS_CAP)
                if percent > last_percent:
                    last_percent = percent
                    yield JobProgress(job.id, job.media_id, percent=percent)

            returncode = await process.wait()
            await stdout_task
        finally:
            if process.returncode is None:
                # The consumer went away before the encoder finished
                await self._graceful_terminate(process)
            if not stdout_task.done():
                stdout_task.cancel()
            self._processes.pop(job.id, None)
            terminated = job.id in self._terminated
            self._terminated.discard(job.id)

        if returncode == 0:
            logger.info(f"[Engine] Job {job.id} completed: {job.output_path}")
            yield JobProgress(job.id, job.media_id, percent=100)
            yield JobCompleted(job.id, job.media_id, output_path=job.output_path)
            return

        reason, category = self._failure_reason(returncode, stderr_tail, terminated)
        logger.error(f"[Engine] Job {job.id} failed: {reason}")
        yield JobFailed(job.id, job.media_id, reason=reason, category=category)

    async def terminate(self, job_id: str) -> bool:
        """Stop the encoder of a running job. Returns False if none is running."""
        process = self._processes.get(job_id)
        if process is None or process.returncode is not None:
            return False
        self._terminated.add(job_id)
        logger.info(f"[Engine] Terminating encoder for job {job_id}")
        await self._graceful_terminate(process)
        return True

    async def terminate_all(self) -> None:
        for job_id in list(self._processes):
            await self.terminate(job_id)

    def _failure_reason(self, returncode: Optional[int], stderr_tail: Deque[str], terminated: bool):
        if terminated:
            return "Encoder terminated on request", "cancelled"

        if returncode is not None and returncode < 0:
            message = f"Encoder was killed by signal {-returncode}"
        else:
            message = f"Encoder exited with code {returncode}"

        error_output = "\n".join(stderr_tail)
        error, category = self.error_classifier.classify(error_output)
        if error:
            message += f" ({error.description})"

        last_line = next((line.strip() for line in reversed(stderr_tail) if line.strip()), "")
        if last_line:
            message += f": {last_line[:200]}"
        return message, category

    @staticmethod
    async def _drain(stream: Optional[asyncio.StreamReader]) -> None:
        """Read stdout in a separate task to prevent pipe blocking."""
        if stream is None:
            return
        while await stream.read(4096):
            pass

    async def _graceful_terminate(self, process: asyncio.subprocess.Process) -> None:
        """
        Stop an encoder, letting it finalize output first.

        Sends SIGINT (CTRL_BREAK_EVENT on Windows), then escalates to
        SIGTERM and finally SIGKILL if the process does not exit.
        """
        if process.returncode is not None:
            return

        try:
            if sys.platform == "win32":
                process.send_signal(signal.CTRL_BREAK_EVENT)
            else:
                process.send_signal(signal.SIGINT)
        except (ProcessLookupError, OSError):
            pass

        try:
            await asyncio.wait_for(process.wait(), timeout=self.terminate_timeout)
            logger.debug("[Engine] Encoder stopped gracefully")
            return
        except asyncio.TimeoutError:
            pass

        try:
            process.terminate()
            await asyncio.wait_for(process.wait(), timeout=3.0)
            logger.debug("[Engine] Encoder stopped with SIGTERM")
            return
        except (asyncio.TimeoutError, ProcessLookupError, OSError):
            pass

        try:
            process.kill()
            await process.wait()
            logger.warning("[Engine] Encoder killed forcefully")
        except (ProcessLookupError, OSError):
            pass
