"""
Job queue: models, lifecycle rules and events for encoding jobs.

The queue manager itself lives in recodarr.jobs.manager and is imported
from there, since it depends on the execution layer.
"""

from .errors import (
    JobError,
    JobNotFoundError,
    InvalidStateTransitionError,
    AdmissionError,
)
from .models import (
    JobStatus,
    HardwareAcceleration,
    EncodingOptions,
    JobResult,
    QueueConfig,
    JobSpec,
    Job,
)
from .state import (
    TERMINAL_JOB_STATES,
    is_job_terminal,
    can_transition_job,
    validate_job_transition,
)
from .events import QueueEvent, QueueEventBus, QueueEventType

__all__ = [
    # Errors
    "JobError",
    "JobNotFoundError",
    "InvalidStateTransitionError",
    "AdmissionError",
    # Models
    "JobStatus",
    "HardwareAcceleration",
    "EncodingOptions",
    "JobResult",
    "QueueConfig",
    "JobSpec",
    "Job",
    # State validation
    "TERMINAL_JOB_STATES",
    "is_job_terminal",
    "can_transition_job",
    "validate_job_transition",
    # Events
    "QueueEvent",
    "QueueEventBus",
    "QueueEventType",
]
