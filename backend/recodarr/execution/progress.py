"""
FFmpeg progress parsing and estimation.

FFmpeg reports progress on stderr in this format:
    frame=   24 fps= 12 q=28.0 size=       0kB time=00:00:01.00 bitrate=   0.0kbits/s

Those reports are noisy and incomplete: frame counts are missing for
audio-only outputs, time= is N/A until the first packet is muxed, and no
total is ever printed. ProgressEstimator turns whatever is available into
one bounded, non-decreasing percentage per job:

1. Engine percent (time= against the probed duration), if within [0, 100]
2. frame / total frames (probed duration × fps, or an engine total)
3. Wall-clock elapsed / probed duration, capped at 99.9
4. A 0.1 floor, purely to show the job is alive

All estimation state lives on the per-job estimator instance. Nothing is
shared between concurrently running jobs.
"""

import logging
import re
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)


# Matches: time=00:00:01.00, time=01:23:45.678, time=-00:00:00.02
TIME_PATTERN = re.compile(r'time=\s*(-?)(\d+):(\d{2}):(\d{2})(?:\.(\d+))?')

# Regex to extract frame count
FRAME_PATTERN = re.compile(r'frame=\s*(\d+)')

# Regex to extract fps (encoding speed)
FPS_PATTERN = re.compile(r'fps=\s*([\d.]+)')

# Regex to extract current size (ffmpeg prints kB or KiB depending on version)
SIZE_PATTERN = re.compile(r'size=\s*([\d.]+)(?:kB|KiB)')

# Highest time-based estimate before the encoder reports completion
TIME_BASED_CAP = 99.9

# Liveness floor emitted when no signal is usable
PROGRESS_FLOOR = 0.1

# Floor and watchdog values never rise above this
PROVISIONAL_CEILING = 1.0

# Used when the probe found a duration but no frame rate
DEFAULT_FPS = 30.0

DEFAULT_STATUS_TEXT = "Encoding..."


@dataclass
class RawProgress:
    """
    One progress report from the encoder, as loosely shaped as it arrives.

    Every field is optional; ProgressEstimator.update() is the only place
    that interprets them.
    """

    percent: Optional[float] = None
    frames: Optional[int] = None
    frames_total: Optional[int] = None
    fps: Optional[float] = None
    current_fps: Optional[float] = None
    timemark: Optional[float] = None  # Seconds of output written
    size_bytes: Optional[int] = None

    @property
    def has_frame_data(self) -> bool:
        """True if the report carries a real position (frame or percent)."""
        return self.frames is not None or self.percent is not None


class ProgressSample(BaseModel):
    """
    Normalized progress for one job.

    Produced by ProgressEstimator, consumed by the queue manager.
    """

    model_config = ConfigDict(extra="forbid")

    job_id: str
    percent: float
    fps: Optional[float] = None
    frame: Optional[int] = None
    total_frames: Optional[int] = None
    status_text: Optional[str] = None
    synthetic: bool = False
    """True for watchdog ticks and liveness floors."""


def parse_timemark(text: str) -> Optional[float]:
    """
    Convert an ffmpeg timemark (HH:MM:SS.ss) to seconds.

    Returns:
        Seconds, or None if the text holds no timemark
    """
    match = TIME_PATTERN.search(text if text.startswith("time=") else f"time={text}")
    if not match:
        return None

    sign, hours, minutes, seconds, fraction = match.groups()
    value = int(hours) * 3600 + int(minutes) * 60 + int(seconds)
    if fraction:
        value += int(fraction) / (10 ** len(fraction))
    return -value if sign else float(value)


def parse_stats_line(line: str, duration: Optional[float] = None) -> Optional[RawProgress]:
    """
    Parse a single line of ffmpeg stderr output.

    Args:
        line: Single line from ffmpeg stderr
        duration: Probed input duration in seconds, used to derive percent

    Returns:
        RawProgress if the line is a stats line, None otherwise
    """
    frame_match = FRAME_PATTERN.search(line)
    time_match = TIME_PATTERN.search(line)
    if not frame_match and not time_match:
        return None

    raw = RawProgress()

    if frame_match:
        raw.frames = int(frame_match.group(1))

    fps_match = FPS_PATTERN.search(line)
    if fps_match:
        try:
            raw.fps = float(fps_match.group(1))
        except ValueError:
            raw.fps = None

    size_match = SIZE_PATTERN.search(line)
    if size_match:
        raw.size_bytes = int(float(size_match.group(1)) * 1024)

    if time_match:
        raw.timemark = parse_timemark(time_match.group(0))
        if raw.timemark is not None and raw.timemark >= 0 and duration and duration > 0:
            raw.percent = raw.timemark / duration * 100.0

    return raw


def estimate_total_frames(duration: Optional[float], fps: Optional[float]) -> Optional[int]:
    """Initial total-frame estimate from probe data."""
    if not duration or duration <= 0:
        return None
    rate = fps if fps and fps > 0 else DEFAULT_FPS
    return round(duration * rate)


class ProgressEstimator:
    """
    Calibrated progress for a single job.

    Usage:
        estimator = ProgressEstimator(job_id="abc", duration=120.0, fps=25.0)
        estimator.start()
        for line in ffmpeg_stderr:
            raw = parse_stats_line(line, estimator.duration)
            if raw:
                publish(estimator.update(raw))
        publish(estimator.complete())
    """

    def __init__(
        self,
        job_id: str,
        duration: Optional[float] = None,
        fps: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            job_id: Job the samples belong to
            duration: Probed media duration in seconds (None if unknown)
            fps: Probed frame rate (None if unknown)
            clock: Monotonic clock, injectable for tests
        """
        self.job_id = job_id
        self.duration = duration if duration and duration > 0 else None
        self.total_frames: Optional[int] = estimate_total_frames(self.duration, fps)
        self._clock = clock
        self._started_at: Optional[float] = None
        self._last_percent = 0.0
        self._last_fps: Optional[float] = None
        self._last_frame: Optional[int] = None
        self._completed = False
        self._lock = threading.Lock()

    @property
    def last_percent(self) -> float:
        return self._last_percent

    @property
    def completed(self) -> bool:
        return self._completed

    def start(self) -> None:
        """Mark the start of the encode for time-based estimates."""
        self._started_at = self._clock()

    def elapsed(self) -> Optional[float]:
        if self._started_at is None:
            return None
        return max(0.0, self._clock() - self._started_at)

    def _time_based_percent(self) -> Optional[float]:
        elapsed = self.elapsed()
        if elapsed is None or elapsed <= 0 or self.duration is None:
            return None
        return min(TIME_BASED_CAP, elapsed / self.duration * 100.0)

    def _candidate(self, raw: RawProgress) -> tuple:
        """Pick the best available signal. Returns (percent, provisional)."""
        if raw.percent is not None and 0.0 <= raw.percent <= 100.0:
            return raw.percent, False

        if raw.frames is not None and self.total_frames and self.total_frames > 0:
            return raw.frames / self.total_frames * 100.0, False

        time_based = self._time_based_percent()
        if time_based is not None and time_based >= PROGRESS_FLOOR:
            return time_based, False

        return PROGRESS_FLOOR, True

    def _report(self, percent: float, provisional: bool) -> float:
        if provisional:
            percent = min(percent, PROVISIONAL_CEILING)
        percent = round(max(0.0, min(100.0, percent)), 1)
        # Clamp rather than regress
        self._last_percent = max(self._last_percent, percent)
        return self._last_percent

    def update(self, raw: RawProgress, status_text: str = DEFAULT_STATUS_TEXT) -> ProgressSample:
        """
        Fold one encoder report into the job's progress.

        An engine-reported total supersedes the probed estimate.
        """
        with self._lock:
            if raw.frames_total is not None and raw.frames_total > 0:
                self.total_frames = raw.frames_total

            fps = raw.fps if raw.fps is not None and raw.fps > 0 else raw.current_fps
            if fps is not None and fps > 0:
                self._last_fps = round(fps, 1)
            if raw.frames is not None:
                self._last_frame = raw.frames

            percent, provisional = self._candidate(raw)
            reported = self._report(percent, provisional)

            return ProgressSample(
                job_id=self.job_id,
                percent=reported,
                fps=self._last_fps,
                frame=self._last_frame,
                total_frames=self.total_frames,
                status_text=status_text,
                synthetic=provisional,
            )

    def tick(self, status_text: str = DEFAULT_STATUS_TEXT) -> ProgressSample:
        """
        Synthetic liveness sample for silent periods.

        Grows with elapsed time but stays below PROVISIONAL_CEILING, so it
        never outranks a real report.
        """
        with self._lock:
            time_based = self._time_based_percent()
            percent = max(PROGRESS_FLOOR, time_based or 0.0)
            reported = self._report(percent, provisional=True)
            return ProgressSample(
                job_id=self.job_id,
                percent=reported,
                fps=self._last_fps,
                frame=self._last_frame,
                total_frames=self.total_frames,
                status_text=status_text,
                synthetic=True,
            )

    def complete(self, status_text: str = "Complete") -> ProgressSample:
        """Terminal sample: the encode finished, report 100%."""
        with self._lock:
            self._completed = True
            self._last_percent = 100.0
            return ProgressSample(
                job_id=self.job_id,
                percent=100.0,
                fps=self._last_fps,
                frame=self._last_frame,
                total_frames=self.total_frames,
                status_text=status_text,
            )


class LivenessWatchdog:
    """
    Emits synthetic ticks while an encode is silent.

    After `grace` seconds without a frame-bearing sample, calls on_tick
    every `interval` seconds. Stops on the first real sample, on stop(),
    or once `max_duration` seconds have passed since start().
    """

    def __init__(
        self,
        on_tick: Callable[[], None],
        grace: float = 10.0,
        interval: float = 5.0,
        max_duration: float = 600.0,
        name: str = "watchdog",
    ):
        self._on_tick = on_tick
        self.grace = grace
        self.interval = interval
        self.max_duration = max_duration
        self._halt = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._name = name
        self.tick_count = 0

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
        self._thread.start()

    def notify_real_sample(self) -> None:
        """A real frame/percent report arrived; no more synthetic ticks."""
        self._halt.set()

    def stop(self, timeout: Optional[float] = 1.0) -> None:
        self._halt.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    def _run(self) -> None:
        deadline = time.monotonic() + self.max_duration
        if self._halt.wait(self.grace):
            return
        while not self._halt.is_set() and time.monotonic() < deadline:
            try:
                self._on_tick()
                self.tick_count += 1
            except Exception:
                logger.exception(f"[Watchdog] {self._name} tick failed")
            if self._halt.wait(self.interval):
                return
