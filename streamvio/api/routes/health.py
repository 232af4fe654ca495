"""
Health, stats and capability routes for StreamVio
"""

import time
from typing import List, Optional

from fastapi import APIRouter, Header, Query

from ... import __version__
from ...config import get_config, resolve_binary
from ...jobs import get_job_scheduler
from ...models import CapabilitiesResponse, HealthResponse, ProfileInfo, StatsResponse
from ...transcoding import PROFILES, get_available_profiles, select_profile

router = APIRouter()

# Start time - set by lifespan
start_time: float = 0


def set_start_time(t: float) -> None:
    """Set the server start time."""
    global start_time
    start_time = t


@router.get("/api/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    scheduler = get_job_scheduler()

    return HealthResponse(
        status="healthy",
        version=__version__,
        uptime_seconds=time.time() - start_time,
        transcoding_enabled=get_config().transcoding.enabled,
        current_jobs=scheduler.get_active_count(),
        queued_jobs=scheduler.get_queue_length(),
    )


@router.get("/api/capabilities", response_model=CapabilitiesResponse)
async def get_capabilities(refresh: bool = Query(False)):
    """Hardware acceleration and encoder limits."""
    config = get_config()
    scheduler = get_job_scheduler()
    mode = config.hardware.acceleration
    capability = await scheduler.hardware.get_capability(force_refresh=refresh)
    accel = await scheduler.hardware.resolve(mode)

    return CapabilitiesResponse(
        hw_accel=accel.value,
        mode=mode,
        ffmpeg_path=resolve_binary(config.transcoding.ffmpeg_path, "ffmpeg"),
        max_concurrent_jobs=scheduler.max_concurrent_jobs,
        max_bitrate=config.transcoding.max_bitrate,
        encoders=capability.encoders,
    )


@router.get("/api/profiles", response_model=List[ProfileInfo])
async def list_profiles():
    """Built-in transcoding profiles."""
    return [ProfileInfo(**p) for p in get_available_profiles()]


@router.get("/api/profiles/select", response_model=ProfileInfo)
async def choose_profile(
    connection_type: Optional[str] = None,
    bandwidth: Optional[float] = Query(None, ge=0),
    user_agent: Optional[str] = Header(None),
):
    """Built-in profile suited to the calling device and its connection (bandwidth in kbps)."""
    profile = PROFILES[select_profile(user_agent, connection_type, bandwidth)]
    return ProfileInfo(name=profile.name, description=profile.description)


@router.get("/api/stats", response_model=StatsResponse)
async def get_stats():
    """Job counters since the scheduler started."""
    scheduler = get_job_scheduler()
    stats = scheduler.stats

    return StatsResponse(
        submitted_jobs=stats.submitted_jobs,
        successful_jobs=stats.successful_jobs,
        failed_jobs=stats.failed_jobs,
        cancelled_jobs=stats.cancelled_jobs,
        persistence_errors=stats.persistence_errors,
        current_queue_length=scheduler.get_queue_length(),
        active_jobs=scheduler.get_active_count(),
        average_transcode_time=stats.average_transcode_time,
        uptime_seconds=stats.uptime_seconds,
        hw_accel_usage=stats.hw_accel_usage,
    )
