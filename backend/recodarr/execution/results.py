"""
Execution result models.

Structured representation of a single job's encode and finalize outcome.
Results are machine-readable and human-readable.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


BYTES_PER_MB = 1024 * 1024


class FailureKind(str, Enum):
    """
    Where a failed run went wrong.

    SETUP: Failed before the encoder was spawned (unreadable input, bad options)
    ENCODE: Encoder exited non-zero, could not be spawned, or I/O broke mid-run
    FINALIZE: Encode succeeded but the output could not be committed
    CANCELLED: Run was terminated on request
    """

    SETUP = "setup"
    ENCODE = "encode"
    FINALIZE = "finalize"
    CANCELLED = "cancelled"


class EncodingResult(BaseModel):
    """
    Result of one driver run.

    Returned exactly once per job. This model is the single source of
    truth for the run's outcome.
    """

    model_config = ConfigDict(extra="forbid")

    success: bool
    job_id: Optional[str] = None

    output_path: Optional[str] = None
    """Final path of the committed output (success only)."""

    initial_size_mb: Optional[float] = None
    final_size_mb: Optional[float] = None
    reduction_percent: Optional[float] = None

    error: Optional[str] = None
    """Human-readable failure reason (failure only)."""

    error_kind: Optional[FailureKind] = None

    log_path: Optional[str] = None
    """Per-job log artifact for this run."""

    @classmethod
    def failed(
        cls,
        error: str,
        kind: FailureKind,
        job_id: Optional[str] = None,
        log_path: Optional[str] = None,
    ) -> "EncodingResult":
        return cls(success=False, error=error, error_kind=kind, job_id=job_id, log_path=log_path)

    def summary(self) -> str:
        """Human-readable summary of the result."""
        if self.success:
            reduction = (
                f" ({self.reduction_percent:.2f}% smaller)"
                if self.reduction_percent is not None else ""
            )
            return f"SUCCESS: {self.output_path}{reduction}"
        kind = self.error_kind.value.upper() if self.error_kind else "UNKNOWN"
        return f"FAILED [{kind}]: {self.error}"


class FinalizeResult(BaseModel):
    """Outcome of committing a temporary output to its final location."""

    model_config = ConfigDict(extra="forbid")

    success: bool
    final_path: Optional[str] = None
    error: Optional[str] = None
    backup_path: Optional[str] = None
    """Backup that was created (and removed again on success)."""


def bytes_to_mb(size_bytes: int) -> Optional[float]:
    """Size in MB rounded to two decimals, None for empty/unknown sizes."""
    if size_bytes <= 0:
        return None
    return round(size_bytes / BYTES_PER_MB, 2)


def reduction_percent(initial_bytes: int, final_bytes: int) -> Optional[float]:
    """Percentage saved by the encode, None when either size is unknown."""
    if initial_bytes <= 0 or final_bytes <= 0:
        return None
    return round((1 - final_bytes / initial_bytes) * 100, 2)
