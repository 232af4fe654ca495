"""
Typed job events and the in-process event bus.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Callable, ClassVar, Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

from .models import utcnow

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    QUEUED = "queued"
    STARTED = "started"
    PROGRESS = "progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class JobEvent:
    job_id: str
    media_id: str
    timestamp: datetime = field(default_factory=utcnow, kw_only=True)

    event_type: ClassVar[EventType]

    @property
    def is_terminal(self) -> bool:
        return self.event_type in (EventType.COMPLETED, EventType.FAILED, EventType.CANCELLED)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return {"type": self.event_type.value, **data}


@dataclass
class JobQueued(JobEvent):
    position: int
    event_type: ClassVar[EventType] = EventType.QUEUED


@dataclass
class JobStarted(JobEvent):
    event_type: ClassVar[EventType] = EventType.STARTED


@dataclass
class JobProgress(JobEvent):
    percent: int
    event_type: ClassVar[EventType] = EventType.PROGRESS


@dataclass
class JobCompleted(JobEvent):
    output_path: str
    event_type: ClassVar[EventType] = EventType.COMPLETED


@dataclass
class JobFailed(JobEvent):
    reason: str
    category: str = "unknown"
    event_type: ClassVar[EventType] = EventType.FAILED


@dataclass
class JobCancelled(JobEvent):
    event_type: ClassVar[EventType] = EventType.CANCELLED


Subscriber = Callable[[JobEvent], Any]


class EventBus:
    """
    Publish/subscribe channel for job events.

    Subscribers are plain callables invoked in subscription order. A
    subscriber that returns an awaitable has it scheduled on the running
    loop. Exceptions raised by a subscriber are logged and never reach
    the publisher or other subscribers.
    """

    def __init__(self):
        self._subscribers: List[Tuple[Subscriber, Optional[FrozenSet[EventType]]]] = []
        self._pending: Set[asyncio.Task] = set()

    def subscribe(
        self,
        callback: Subscriber,
        event_types: Optional[Iterable[EventType]] = None
    ) -> Callable[[], None]:
        """Register a subscriber; returns a callable that unsubscribes it."""
        wanted = frozenset(event_types) if event_types is not None else None
        self._subscribers.append((callback, wanted))
        return lambda: self.unsubscribe(callback)

    def unsubscribe(self, callback: Subscriber) -> bool:
        for i, (cb, _) in enumerate(self._subscribers):
            if cb == callback:
                del self._subscribers[i]
                return True
        return False

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, event: JobEvent) -> None:
        for callback, wanted in self._subscribers[:]:
            if wanted is not None and event.event_type not in wanted:
                continue
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._pending.add(task)
                    task.add_done_callback(self._on_task_done)
            except Exception:
                logger.exception(f"[EventBus] Subscriber failed handling {event.event_type.value} for job {event.job_id}")

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"[EventBus] Async subscriber failed: {exc!r}")

    async def drain(self) -> None:
        """Wait for async subscriber work scheduled so far."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


# Global event bus instance
_event_bus: Optional[EventBus] = None


def get_event_bus() -> EventBus:
    """Get the global event bus instance."""
    global _event_bus
    if _event_bus is None:
        _event_bus = EventBus()
    return _event_bus


def set_event_bus(bus: EventBus) -> None:
    """Set the global event bus instance."""
    global _event_bus
    _event_bus = bus
