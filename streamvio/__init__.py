"""
StreamVio - transcoding and adaptive streaming job engine
"""

__version__ = "0.4.0"
__author__ = "StreamVio Contributors"

from .config import StreamVioConfig, load_config, get_config, set_config
from .models import JobStatus, TranscodeJob, TranscodeRequest
from .events import EventBus, get_event_bus
from .jobs import JobScheduler, get_job_scheduler, set_job_scheduler

__all__ = [
    "__version__",
    "StreamVioConfig",
    "load_config",
    "get_config",
    "set_config",
    "JobStatus",
    "TranscodeJob",
    "TranscodeRequest",
    "EventBus",
    "get_event_bus",
    "JobScheduler",
    "get_job_scheduler",
    "set_job_scheduler",
]
