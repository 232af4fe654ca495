"""
Job and API models for StreamVio
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what the job store round-trips."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_job_id() -> str:
    return uuid.uuid4().hex


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})

HLS_PROFILE = "hls"
THUMBNAIL_PROFILE = "thumbnail"
STORYBOARD_PROFILE = "storyboard"


@dataclass
class TranscodeJob:
    """A single request to produce one output from one input file."""
    media_id: str
    input_path: str
    output_path: str
    profile: str = "standard"
    id: str = field(default_factory=new_job_id)
    user_id: Optional[str] = None
    status: JobStatus = JobStatus.PENDING
    progress: int = 0
    options: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    callback_url: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_hls(self) -> bool:
        return self.profile == HLS_PROFILE

    def to_status_response(self) -> "JobStatusResponse":
        return JobStatusResponse(
            job_id=self.id,
            media_id=self.media_id,
            status=self.status,
            progress=self.progress,
            profile=self.profile,
            output_path=self.output_path,
            error=self.error,
            created_at=self.created_at,
            started_at=self.started_at,
            completed_at=self.completed_at,
        )


@dataclass
class CancelResult:
    success: bool
    message: str
    job: Optional[TranscodeJob] = None


class TranscodeRequest(BaseModel):
    """Caller-supplied description of a transcode. Required fields are checked at submit."""
    media_id: Optional[str] = None
    input_path: Optional[str] = None
    output_path: Optional[str] = None
    profile: Optional[str] = None
    user_id: Optional[str] = None
    job_id: Optional[str] = None
    callback_url: Optional[str] = None  # POSTed the job status once the job finishes
    options: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("media_id", "user_id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


class JobStatusResponse(BaseModel):
    job_id: str
    media_id: str
    status: JobStatus
    progress: int = 0
    profile: str
    output_path: Optional[str] = None
    error: Optional[str] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class JobListResponse(BaseModel):
    jobs: List[JobStatusResponse] = Field(default_factory=list)
    limit: int
    offset: int


class CancelResponse(BaseModel):
    job_id: str
    success: bool
    message: str
    status: Optional[JobStatus] = None


class ProfileInfo(BaseModel):
    name: str
    description: str


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str
    uptime_seconds: float
    transcoding_enabled: bool
    current_jobs: int
    queued_jobs: int


class CapabilitiesResponse(BaseModel):
    hw_accel: str
    mode: str
    ffmpeg_path: str
    max_concurrent_jobs: int
    max_bitrate: int
    encoders: List[str] = Field(default_factory=list)


class StatsResponse(BaseModel):
    submitted_jobs: int
    successful_jobs: int
    failed_jobs: int
    cancelled_jobs: int
    persistence_errors: int
    current_queue_length: int
    active_jobs: int
    average_transcode_time: float
    uptime_seconds: float
    hw_accel_usage: Dict[str, int] = Field(default_factory=dict)
