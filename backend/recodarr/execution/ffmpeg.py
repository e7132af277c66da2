"""
Transcode driver.

Runs one ffmpeg process per job and reports what happened.

Design rules:
- One subprocess per run, always writing to a temp sibling of the target
- Pre-flight checks fail the run before anything is spawned
- Stderr stats lines feed a per-job ProgressEstimator
- Every other stderr line goes to the per-job log
- Non-zero exit = encode failure, temp output deleted, no finalization
- Zero exit = verifying, then finalization commits the temp output
- SIGTERM → SIGKILL escalation for cancellation
- On every failed outcome the temp output no longer exists

Each run executes on a worker thread and resolves a Future with exactly
one EncodingResult. Unexpected exceptions are converted into a failed
result, never raised through the Future.
"""

import logging
import os
import subprocess
import threading
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from functools import partial
from pathlib import Path
from typing import Callable, Deque, Dict, Optional, Set

from ..jobs.models import Job
from ..metadata import MediaProbe, ProbeError, probe_media
from ..observability import JobLog
from .errors import PreFlightCheckError
from .finalize import finalize
from .options import build_ffmpeg_args
from .paths import file_size, temp_output_path
from .progress import (
    LivenessWatchdog,
    ProgressEstimator,
    ProgressSample,
    RawProgress,
    parse_stats_line,
)
from .results import EncodingResult, FailureKind, bytes_to_mb, reduction_percent
from .retry import RetryPolicy

logger = logging.getLogger(__name__)


ProgressCallback = Callable[[ProgressSample], None]
VerifyingCallback = Callable[[], None]
Prober = Callable[[str], MediaProbe]

# Seconds to wait after SIGTERM before escalating to SIGKILL
TERMINATE_TIMEOUT = 5.0

# Non-stats stderr lines kept for the failure message
STDERR_TAIL_LINES = 5


class TranscodeDriver:
    """
    Runs ffmpeg for queued jobs.

    Usage:
        driver = TranscodeDriver(log_dir=Path("~/.recodarr/logs").expanduser())
        future = driver.run(job, on_progress=print)
        result = future.result()

    The popen and prober arguments exist so tests can substitute fake
    processes and probe data.
    """

    def __init__(
        self,
        log_dir: Path,
        ffmpeg_path: str = "ffmpeg",
        ffprobe_path: str = "ffprobe",
        retry: Optional[RetryPolicy] = None,
        max_workers: int = 32,
        watchdog_grace: float = 10.0,
        watchdog_interval: float = 5.0,
        watchdog_max: float = 600.0,
        popen: Callable[..., subprocess.Popen] = subprocess.Popen,
        prober: Optional[Prober] = None,
    ):
        self.log_dir = Path(log_dir)
        self.ffmpeg_path = ffmpeg_path
        self.retry = retry or RetryPolicy()
        self.watchdog_grace = watchdog_grace
        self.watchdog_interval = watchdog_interval
        self.watchdog_max = watchdog_max
        self._popen = popen
        self._prober = prober or partial(probe_media, ffprobe_path=ffprobe_path)

        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="transcode"
        )
        self._active_processes: Dict[str, subprocess.Popen] = {}
        self._pending: Set[str] = set()
        self._cancelled: Set[str] = set()
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def run(
        self,
        job: Job,
        on_progress: Optional[ProgressCallback] = None,
        on_verifying: Optional[VerifyingCallback] = None,
    ) -> "Future[EncodingResult]":
        """
        Start encoding a job.

        The job is snapshotted; later mutations by the caller do not
        affect the run.

        Returns:
            Future resolving to the run's EncodingResult
        """
        snapshot = job.model_copy(deep=True)
        with self._lock:
            self._pending.add(snapshot.id)
        return self._executor.submit(self._run_safely, snapshot, on_progress, on_verifying)

    def cancel(self, job_id: str) -> bool:
        """
        Cancel a run.

        Uses SIGTERM first, escalates to SIGKILL after timeout. A run
        cancelled before its process spawned never spawns one.

        Returns:
            True if the job had a run in progress
        """
        with self._lock:
            if job_id not in self._pending:
                return False
            self._cancelled.add(job_id)
            process = self._active_processes.get(job_id)

        logger.info(f"[FFmpeg] Cancelling job {job_id}")
        if process is not None:
            self._terminate(process)
        return True

    def is_running(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._pending

    def shutdown(self, wait: bool = True, cancel_running: bool = False) -> None:
        """Stop accepting runs; optionally cancel the ones in progress."""
        if cancel_running:
            with self._lock:
                pending = list(self._pending)
            for job_id in pending:
                self.cancel(job_id)
        self._executor.shutdown(wait=wait)

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def _run_safely(
        self,
        job: Job,
        on_progress: Optional[ProgressCallback],
        on_verifying: Optional[VerifyingCallback],
    ) -> EncodingResult:
        try:
            return self._run(job, on_progress, on_verifying)
        except Exception as e:
            logger.exception(f"[FFmpeg] Unexpected error running job {job.id}: {e}")
            self._remove_temp(temp_output_path(job.final_target_path), job.id)
            return EncodingResult.failed(
                f"Unexpected error: {e}", FailureKind.SETUP, job_id=job.id
            )
        finally:
            with self._lock:
                self._pending.discard(job.id)
                self._cancelled.discard(job.id)
                self._active_processes.pop(job.id, None)

    def _run(
        self,
        job: Job,
        on_progress: Optional[ProgressCallback],
        on_verifying: Optional[VerifyingCallback],
    ) -> EncodingResult:
        final_path = Path(job.final_target_path)
        temp_path = temp_output_path(final_path)

        with JobLog(job.id, self.log_dir) as job_log:
            log_path = str(job_log.path)

            def fail(message: str, kind: FailureKind) -> EncodingResult:
                job_log.write(f"FAILED [{kind.value}]: {message}")
                logger.error(f"[FFmpeg] Job {job.id} failed ({kind.value}): {message}")
                return EncodingResult.failed(message, kind, job_id=job.id, log_path=log_path)

            job_log.write(f"Job {job.id}: {job.input_path} -> {final_path}")

            try:
                self._preflight(job)
            except PreFlightCheckError as e:
                return fail(str(e), FailureKind.SETUP)

            initial_size = file_size(job.input_path)
            self._remove_temp(temp_path, job.id, stale=True)

            probe = self._probe(job, job_log)
            duration = probe.duration if probe else None
            if job.options.duration and (duration is None or job.options.duration < duration):
                duration = job.options.duration
            estimator = ProgressEstimator(job.id, duration=duration, fps=probe.fps if probe else None)
            if estimator.total_frames:
                job_log.write(f"Estimated total frames: {estimator.total_frames}")

            cmd = build_ffmpeg_args(job.options, job.input_path, str(temp_path), self.ffmpeg_path)
            cmd_string = " ".join(cmd)
            job_log.write(f"Starting FFmpeg: {cmd_string}")
            logger.info(f"[FFmpeg] Executing: {cmd_string}")

            if self._is_cancelled(job.id):
                return fail("Cancelled before start", FailureKind.CANCELLED)

            try:
                temp_path.parent.mkdir(parents=True, exist_ok=True)
                process = self._popen(
                    cmd,
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.PIPE,
                    text=True,
                    errors="replace",
                )
            except OSError as e:
                self._remove_temp(temp_path, job.id)
                return fail(f"Failed to start FFmpeg: {e}", FailureKind.ENCODE)

            with self._lock:
                self._active_processes[job.id] = process
                cancelled_early = job.id in self._cancelled
            if cancelled_early:
                self._terminate(process)

            logger.info(f"[FFmpeg] Started PID {process.pid} for job {job.id}")
            job_log.write(f"Started PID {process.pid}")

            exit_code, io_error, stderr_tail = self._watch(
                job, process, estimator, job_log, on_progress
            )

            with self._lock:
                self._active_processes.pop(job.id, None)

            job_log.write(f"FFmpeg exited with code {exit_code}")
            logger.info(f"[FFmpeg] PID {process.pid} exited with code {exit_code}")

            if self._is_cancelled(job.id):
                self._remove_temp(temp_path, job.id)
                return fail("Cancelled", FailureKind.CANCELLED)

            if io_error is not None:
                self._remove_temp(temp_path, job.id)
                return fail(f"I/O error while reading FFmpeg output: {io_error}", FailureKind.ENCODE)

            if exit_code != 0:
                self._remove_temp(temp_path, job.id)
                reason = f"FFmpeg exited with code {exit_code}"
                if stderr_tail:
                    reason = f"{reason}: {stderr_tail[-1]}"
                return fail(reason, FailureKind.ENCODE)

            if not temp_path.is_file():
                return fail("Output file was not created", FailureKind.ENCODE)

            self._publish(on_progress, estimator.complete(), job.id)
            if on_verifying is not None:
                on_verifying()

            job_log.write(f"Finalizing {temp_path} -> {final_path}")
            finalized = finalize(
                temp_path,
                final_path,
                job.id,
                is_overwrite=job.overwrite_input,
                original_path=job.input_path,
                retry=self.retry,
            )
            if not finalized.success:
                return fail(finalized.error or "Finalize error: unknown", FailureKind.FINALIZE)

            final_size = file_size(final_path)
            result = EncodingResult(
                success=True,
                job_id=job.id,
                output_path=str(final_path),
                initial_size_mb=bytes_to_mb(initial_size),
                final_size_mb=bytes_to_mb(final_size),
                reduction_percent=reduction_percent(initial_size, final_size),
                log_path=log_path,
            )
            job_log.write(result.summary())
            logger.info(f"[FFmpeg] Completed: {final_path}")
            return result

    def _watch(
        self,
        job: Job,
        process: subprocess.Popen,
        estimator: ProgressEstimator,
        job_log: JobLog,
        on_progress: Optional[ProgressCallback],
    ):
        """
        Consume stderr until the process exits.

        Returns:
            (exit_code, io_error, stderr_tail)
        """
        stderr_tail: Deque[str] = deque(maxlen=STDERR_TAIL_LINES)
        watchdog = LivenessWatchdog(
            on_tick=lambda: self._publish(on_progress, estimator.tick(), job.id),
            grace=self.watchdog_grace,
            interval=self.watchdog_interval,
            max_duration=self.watchdog_max,
            name=f"watchdog-{job.id}",
        )

        estimator.start()
        self._publish(on_progress, estimator.update(RawProgress()), job.id)
        watchdog.start()

        io_error: Optional[BaseException] = None
        try:
            for line in process.stderr:
                line = line.rstrip()
                if not line:
                    continue
                raw = parse_stats_line(line, estimator.duration)
                if raw is None:
                    stderr_tail.append(line)
                    job_log.write(line)
                    continue
                if raw.has_frame_data:
                    watchdog.notify_real_sample()
                self._publish(on_progress, estimator.update(raw), job.id)
        except (OSError, ValueError) as e:
            io_error = e
            self._terminate(process)
        finally:
            watchdog.stop()

        exit_code = process.wait()
        return exit_code, io_error, list(stderr_tail)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _preflight(self, job: Job) -> None:
        """
        Raises:
            PreFlightCheckError: If the input cannot be read
        """
        if not job.input_path:
            raise PreFlightCheckError("Input path is empty")
        source = Path(job.input_path)
        if not source.is_file():
            raise PreFlightCheckError(f"Input file does not exist: {source}")
        if not os.access(source, os.R_OK):
            raise PreFlightCheckError(f"Input file is not readable: {source}")
        if not job.output_path and not job.overwrite_input:
            raise PreFlightCheckError("Output path is empty")

    def _probe(self, job: Job, job_log: JobLog) -> Optional[MediaProbe]:
        try:
            probe = self._prober(job.input_path)
        except ProbeError as e:
            logger.warning(f"[FFmpeg] Probe failed for job {job.id}, progress will be estimated: {e}")
            job_log.write(f"Probe failed: {e}")
            return None
        job_log.write(f"Probe: duration={probe.duration} fps={probe.fps} streams={len(probe.streams)}")
        return probe

    def _publish(
        self,
        on_progress: Optional[ProgressCallback],
        sample: ProgressSample,
        job_id: str,
    ) -> None:
        if on_progress is None:
            return
        try:
            on_progress(sample)
        except Exception:
            logger.exception(f"[FFmpeg] Progress callback failed for job {job_id}")

    def _is_cancelled(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._cancelled

    def _terminate(self, process: subprocess.Popen) -> None:
        logger.info(f"[FFmpeg] Sending SIGTERM to PID {process.pid}")
        try:
            process.terminate()
            try:
                process.wait(timeout=TERMINATE_TIMEOUT)
            except subprocess.TimeoutExpired:
                logger.warning(f"[FFmpeg] PID {process.pid} did not terminate, sending SIGKILL")
                process.kill()
                process.wait()
        except ProcessLookupError:
            pass  # Process already dead

    def _remove_temp(self, temp_path: Path, job_id: str, stale: bool = False) -> None:
        try:
            if temp_path.exists():
                temp_path.unlink()
                what = "stale temp output" if stale else "temp output"
                logger.info(f"[FFmpeg] Removed {what} {temp_path} for job {job_id}")
        except OSError as e:
            logger.warning(f"[FFmpeg] Could not remove temp output {temp_path}: {e}")
