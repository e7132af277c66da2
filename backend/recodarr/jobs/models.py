"""
Job data models.

A Job is one requested transcode: one input file, one output target,
one encoder invocation. Jobs are mutated in place by the queue manager
while they run and become immutable once they reach a terminal state.

All models use Pydantic for validation.
State transitions are validated externally (see state.py).
"""

import secrets
import time
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any

from pydantic import BaseModel, ConfigDict, Field


class JobStatus(str, Enum):
    """
    Job lifecycle status.

    queued → processing → verifying → completed | failed
    processing → failed (encode error, no verification)
    queued → cancelled (removed before it ran)
    """

    QUEUED = "queued"  # Waiting for a free slot
    PROCESSING = "processing"  # Encoder process is running
    VERIFYING = "verifying"  # Encoder finished, output is being finalized
    COMPLETED = "completed"  # Output committed to its final location
    FAILED = "failed"  # Encode, finalize or restart failure
    CANCELLED = "cancelled"  # Removed while still queued


class HardwareAcceleration(str, Enum):
    """Decoder hardware acceleration modes passed to -hwaccel."""

    AUTO = "auto"
    QSV = "qsv"
    NVENC = "nvenc"
    CUDA = "cuda"
    VAAPI = "vaapi"
    VIDEOTOOLBOX = "videotoolbox"
    NONE = "none"


class EncodingOptions(BaseModel):
    """
    Encoder options for one job.

    Built by the preset/track-selection collaborator before the job is
    queued. The driver only maps these onto encoder arguments; it never
    chooses codecs or tracks itself.
    """

    model_config = ConfigDict(extra="forbid")

    # Video
    map_video: Optional[str] = None  # e.g. "0:v:0"
    video_codec: Optional[str] = None
    video_preset: Optional[str] = None
    video_quality: Optional[str] = None  # crf / global_quality value
    look_ahead: Optional[int] = None
    pixel_format: Optional[str] = None
    resolution: Optional[str] = None  # e.g. "1920x1080"
    video_filter: Optional[str] = None

    # Audio: map_audio may hold several maps separated by ';'
    map_audio: Optional[str] = None
    audio_codec: Optional[str] = None
    audio_bitrate: Optional[str] = None
    audio_filter: Optional[str] = None
    audio_options: List[str] = Field(default_factory=list)

    # Subtitles
    map_subtitle: List[str] = Field(default_factory=list)
    subtitle_codec: Optional[str] = None

    # General
    hw_accel: Optional[HardwareAcceleration] = None
    duration: Optional[float] = None  # Limit output to N seconds

    def audio_maps(self) -> List[str]:
        """Audio stream maps in output order, empty entries dropped."""
        if not self.map_audio:
            return []
        return [m.strip() for m in self.map_audio.split(";") if m.strip()]


class JobResult(BaseModel):
    """Size summary recorded when a job completes."""

    model_config = ConfigDict(extra="forbid")

    final_path: str
    initial_size_mb: Optional[float] = None
    final_size_mb: Optional[float] = None
    reduction_percent: Optional[float] = None


class QueueConfig(BaseModel):
    """Queue-wide settings persisted alongside the jobs."""

    model_config = ConfigDict(extra="forbid")

    max_parallel_jobs: int = Field(default=2, ge=1)
    auto_start: bool = True


class JobSpec(BaseModel):
    """
    Caller-supplied description of a job to enqueue.

    The queue manager rejects a spec at admission when a path is empty or
    the input is not a readable file, so such a job never reaches
    processing.
    """

    model_config = ConfigDict(extra="forbid")

    input_path: str
    output_path: str
    overwrite_input: bool = False
    options: EncodingOptions = Field(default_factory=EncodingOptions)
    preset_ref: Optional[str] = None
    track_selections: Dict[str, Any] = Field(default_factory=dict)


def generate_job_id() -> str:
    """Return a new job id of the form job_<epoch ms>_<random>."""
    return f"job_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


class Job(BaseModel):
    """
    A single transcode job.

    Identity and paths are fixed at admission. Status, progress and
    telemetry change while the job runs.
    """

    model_config = ConfigDict(extra="forbid")

    # Identity
    id: str = Field(default_factory=generate_job_id)

    # Paths
    input_path: str
    output_path: str
    overwrite_input: bool = False

    # Ordering
    priority: int = 0
    added_at: datetime = Field(default_factory=datetime.now)

    # State
    status: JobStatus = JobStatus.QUEUED
    progress: float = Field(default=0.0, ge=0.0, le=100.0)

    # Telemetry
    fps: Optional[float] = None
    frame: Optional[int] = None
    total_frames: Optional[int] = None
    status_text: Optional[str] = None

    # Outcome
    error: Optional[str] = None
    result: Optional[JobResult] = None
    log_path: Optional[str] = None

    # Timing
    processing_start_time: Optional[datetime] = None
    processing_end_time: Optional[datetime] = None

    # Consumed when building encoder arguments
    options: EncodingOptions = Field(default_factory=EncodingOptions)
    preset_ref: Optional[str] = None
    track_selections: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_spec(cls, spec: JobSpec, priority: int = 0) -> "Job":
        """Create a queued job from a caller spec."""
        return cls(
            input_path=spec.input_path,
            output_path=spec.output_path,
            overwrite_input=spec.overwrite_input,
            priority=priority,
            options=spec.options.model_copy(deep=True),
            preset_ref=spec.preset_ref,
            track_selections=dict(spec.track_selections),
        )

    @property
    def final_target_path(self) -> str:
        """Where the finished output ends up."""
        return self.input_path if self.overwrite_input else self.output_path

    @property
    def is_in_flight(self) -> bool:
        """True while an encoder process or finalization owns this job."""
        return self.status in (JobStatus.PROCESSING, JobStatus.VERIFYING)
