"""
State transition validation for jobs.

Job lifecycle:
    queued → processing → verifying → completed | failed
    processing → failed        (encode error, verification skipped)
    queued → cancelled         (removed before it ran)

INVARIANT: Terminal job states (COMPLETED, FAILED, CANCELLED) are immutable.
Once a job enters a terminal state, no state transition is allowed.
Nothing re-enters QUEUED; a retry is a new job.
"""

from typing import FrozenSet, Set, Tuple

from .models import JobStatus
from .errors import InvalidStateTransitionError


TERMINAL_JOB_STATES: FrozenSet[JobStatus] = frozenset({
    JobStatus.COMPLETED,
    JobStatus.FAILED,
    JobStatus.CANCELLED,
})


def is_job_terminal(status: JobStatus) -> bool:
    """
    Check if a job status is terminal (immutable).

    Args:
        status: The job status to check

    Returns:
        True if the status is terminal, False otherwise
    """
    return status in TERMINAL_JOB_STATES


_JOB_TRANSITIONS: Set[Tuple[JobStatus, JobStatus]] = {
    # Admission
    (JobStatus.QUEUED, JobStatus.PROCESSING),

    # Removal before the job ever ran
    (JobStatus.QUEUED, JobStatus.CANCELLED),

    # Encoder exited cleanly, output is being committed
    (JobStatus.PROCESSING, JobStatus.VERIFYING),

    # Encode error, spawn failure, or restart interruption
    (JobStatus.PROCESSING, JobStatus.FAILED),

    # Finalization outcome (or restart interruption mid-finalize)
    (JobStatus.VERIFYING, JobStatus.COMPLETED),
    (JobStatus.VERIFYING, JobStatus.FAILED),
}


def can_transition_job(from_status: JobStatus, to_status: JobStatus) -> bool:
    """
    Check if a job state transition is legal.

    INVARIANT: Terminal states cannot transition to any other state.

    Args:
        from_status: Current job status
        to_status: Target job status

    Returns:
        True if the transition is allowed, False otherwise
    """
    # Allow staying in same state (idempotent operations)
    if from_status == to_status:
        return True

    if is_job_terminal(from_status):
        return False

    return (from_status, to_status) in _JOB_TRANSITIONS


def validate_job_transition(job_id: str, from_status: JobStatus, to_status: JobStatus) -> None:
    """
    Validate a job state transition, raising an exception if illegal.

    Raises:
        InvalidStateTransitionError: If the transition is not allowed
    """
    if not can_transition_job(from_status, to_status):
        raise InvalidStateTransitionError(job_id, from_status.value, to_status.value)
