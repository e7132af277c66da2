"""
Job-specific error types.

All errors inherit from JobError for easy catching.
Errors are explicit and provide actionable messages.
"""


class JobError(Exception):
    """Base exception for all job-related failures."""
    pass


class JobNotFoundError(JobError):
    """Raised when a job cannot be found in the queue."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}")


class InvalidStateTransitionError(JobError):
    """Raised when attempting an illegal state transition."""

    def __init__(self, job_id: str, current_state: str, target_state: str):
        self.job_id = job_id
        self.current_state = current_state
        self.target_state = target_state
        super().__init__(
            f"Invalid job state transition for {job_id}: "
            f"{current_state} -> {target_state}"
        )


class AdmissionError(JobError):
    """
    Raised when a job cannot be admitted into the queue.

    Admission errors happen before any encoder process exists:
    - Input path missing
    - Output path missing
    """

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Job rejected: {reason}")
