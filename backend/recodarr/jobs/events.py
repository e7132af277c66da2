"""
Queue event surface.

Observers (HTTP layer, UI bridges, tests) subscribe to queue events.
Events are observational: they report what the queue manager did and
never gate it. A failing subscriber is logged and skipped.
"""

import logging
import threading
from datetime import datetime
from enum import Enum
from typing import Callable, Iterable, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from .models import Job

logger = logging.getLogger(__name__)


class QueueEventType(str, Enum):
    """Queue manager event types."""

    JOB_ADDED = "job_added"
    JOB_STARTED = "job_started"
    JOB_PROGRESS = "job_progress"
    JOB_COMPLETED = "job_completed"
    JOB_FAILED = "job_failed"
    JOB_REMOVED = "job_removed"
    QUEUE_STARTED = "queue_started"
    QUEUE_PAUSED = "queue_paused"
    QUEUE_EMPTY = "queue_empty"


class QueueEvent(BaseModel):
    """
    Single queue event.

    Job events carry a snapshot of the mutated job; removal events carry
    only the id since the job no longer exists.
    """

    model_config = ConfigDict(extra="forbid")

    event_type: QueueEventType
    timestamp: datetime = Field(default_factory=datetime.now)
    job_id: Optional[str] = None
    job: Optional[Job] = None
    message: Optional[str] = None

    def __str__(self) -> str:
        parts = [f"[{self.timestamp.isoformat()}]", self.event_type.value]
        if self.job_id:
            parts.append(f"(job: {self.job_id})")
        if self.message:
            parts.append(f"- {self.message}")
        return " ".join(parts)


QueueEventCallback = Callable[[QueueEvent], None]


class QueueEventBus:
    """
    Fan-out of queue events to subscribers.

    Usage:
        bus = QueueEventBus()
        unsubscribe = bus.subscribe(print, [QueueEventType.JOB_COMPLETED])
        ...
        unsubscribe()
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: List[Tuple[QueueEventCallback, Optional[frozenset]]] = []

    def subscribe(
        self,
        callback: QueueEventCallback,
        event_types: Optional[Iterable[QueueEventType]] = None,
    ) -> Callable[[], None]:
        """
        Register a callback.

        Args:
            callback: Called with each matching QueueEvent
            event_types: Restrict to these types (all events if None)

        Returns:
            Function that removes this subscription
        """
        entry = (callback, frozenset(event_types) if event_types is not None else None)
        with self._lock:
            self._subscribers.append(entry)

        def unsubscribe() -> None:
            with self._lock:
                if entry in self._subscribers:
                    self._subscribers.remove(entry)

        return unsubscribe

    def emit(
        self,
        event_type: QueueEventType,
        job: Optional[Job] = None,
        job_id: Optional[str] = None,
        message: Optional[str] = None,
    ) -> QueueEvent:
        """Build an event and deliver it to every matching subscriber."""
        event = QueueEvent(
            event_type=event_type,
            job_id=job_id or (job.id if job else None),
            job=job.model_copy(deep=True) if job else None,
            message=message,
        )

        with self._lock:
            subscribers = list(self._subscribers)

        for callback, types in subscribers:
            if types is not None and event_type not in types:
                continue
            try:
                callback(event)
            except Exception:
                logger.exception(f"[Events] Subscriber failed on {event_type.value}")

        return event
