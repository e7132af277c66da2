"""
Execution pipeline for encoding jobs.

FFmpeg is the only encoder. A run goes through:
- pre-flight checks and probing
- one ffmpeg process writing a temp output, with progress estimation
- finalization into the target path (backup, move, verify, rollback)
"""

from .errors import (
    ExecutionError,
    PreFlightCheckError,
    EncodeError,
    FinalizeError,
    RetryExhaustedError,
)
from .results import (
    EncodingResult,
    FinalizeResult,
    FailureKind,
)
from .retry import RetryPolicy, NO_RETRY
from .progress import (
    RawProgress,
    ProgressSample,
    ProgressEstimator,
    LivenessWatchdog,
    parse_stats_line,
)
from .options import build_ffmpeg_args
from .finalize import finalize
from .ffmpeg import TranscodeDriver

__all__ = [
    # Errors
    "ExecutionError",
    "PreFlightCheckError",
    "EncodeError",
    "FinalizeError",
    "RetryExhaustedError",
    # Results
    "EncodingResult",
    "FinalizeResult",
    "FailureKind",
    # Retry
    "RetryPolicy",
    "NO_RETRY",
    # Progress
    "RawProgress",
    "ProgressSample",
    "ProgressEstimator",
    "LivenessWatchdog",
    "parse_stats_line",
    # Encoding
    "build_ffmpeg_args",
    "finalize",
    "TranscodeDriver",
]
