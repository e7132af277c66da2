"""
Queue manager: persistent priority queue of encoding jobs.

Owns the job list and the queue config, decides which queued jobs run,
hands them to the TranscodeDriver and applies the outcome.

Design rules:
- Every mutation of jobs, config and in-flight bookkeeping happens under
  one lock
- Admission order: priority (high first), then added_at, then insertion
- At most max_parallel_jobs jobs are in flight
- Admission passes only fill free slots, so overlapping passes are safe
- Every status change is persisted immediately; progress-only changes
  are debounced
- A job's failure is local; a new admission pass follows every terminal
  transition
- Removing an in-flight job terminates its encoder process
- Jobs found mid-run at load time are failed, never re-queued

Events are emitted while the lock is held so observers see them in the
order the state changed. Subscribers must not block.
"""

import logging
import os
import threading
from concurrent.futures import CancelledError, Future
from datetime import datetime
from functools import partial
from pathlib import Path
from typing import Dict, List, Optional

from ..execution.ffmpeg import TranscodeDriver
from ..execution.progress import ProgressSample
from ..execution.results import EncodingResult, FailureKind
from ..observability import job_log_path, read_job_log
from ..persistence import JobStore, PersistenceError
from .errors import AdmissionError, JobNotFoundError
from .events import QueueEventBus, QueueEventType
from .models import Job, JobResult, JobSpec, JobStatus, QueueConfig
from .state import validate_job_transition

logger = logging.getLogger(__name__)


INTERRUPTED_ERROR = "Interrupted by application restart"

# Seconds to coalesce progress-only saves
DEFAULT_PROGRESS_SAVE_DELAY = 2.0


class QueueManager:
    """
    Persistent job queue with bounded parallelism.

    Usage:
        manager = QueueManager(store, driver, log_dir)
        manager.load()
        job = manager.add_job(JobSpec(input_path=..., output_path=...))
        manager.wait_until_idle()
        manager.shutdown()
    """

    def __init__(
        self,
        store: JobStore,
        driver: TranscodeDriver,
        log_dir: Path,
        events: Optional[QueueEventBus] = None,
        progress_save_delay: float = DEFAULT_PROGRESS_SAVE_DELAY,
    ):
        self.store = store
        self.driver = driver
        self.log_dir = Path(log_dir)
        self.events = events or QueueEventBus()
        self.progress_save_delay = progress_save_delay

        self._jobs: Dict[str, Job] = {}
        self._config = QueueConfig()
        self._is_processing = False
        self._in_flight: Dict[str, Future] = {}
        self._shutting_down = False

        self._lock = threading.RLock()
        self._changed = threading.Condition(self._lock)
        self._save_timer: Optional[threading.Timer] = None

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    def load(self) -> List[Job]:
        """
        Load the persisted queue and recover from an unclean stop.

        Jobs that were processing or verifying when the previous process
        died are marked failed. Processing starts afterwards if auto_start
        is on and queued jobs remain.

        Returns:
            The jobs that were failed as interrupted

        Raises:
            LoadError: If the queue file exists but cannot be read
        """
        document = self.store.load()

        with self._lock:
            self._jobs = {job.id: job for job in document.jobs}
            self._config = document.config
            self._in_flight.clear()

            interrupted = []
            for job in self._jobs.values():
                if job.is_in_flight:
                    self._transition(job, JobStatus.FAILED)
                    job.error = INTERRUPTED_ERROR
                    job.status_text = None
                    job.processing_end_time = datetime.now()
                    interrupted.append(job.model_copy(deep=True))
                    self.events.emit(QueueEventType.JOB_FAILED, job=job, message=INTERRUPTED_ERROR)

            if interrupted:
                logger.warning(
                    f"[Queue] Marked {len(interrupted)} interrupted job(s) as failed: "
                    f"{', '.join(j.id for j in interrupted)}"
                )
                self._save_now()

            should_start = self._config.auto_start and self._next_queued() is not None

        logger.info(f"[Queue] Loaded {len(self._jobs)} job(s), config={self._config.model_dump()}")

        if should_start:
            self.start_processing()

        return interrupted

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def add_job(self, spec: JobSpec, priority: int = 0) -> Job:
        """
        Enqueue a job.

        Rejected jobs are never stored and never reach processing.

        Raises:
            AdmissionError: If a path is empty or the input is not a readable file
        """
        if not spec.input_path or not spec.input_path.strip():
            raise AdmissionError("input path is empty")
        if not spec.output_path or not spec.output_path.strip():
            raise AdmissionError("output path is empty")
        source = Path(spec.input_path)
        if not source.is_file():
            raise AdmissionError(f"input file does not exist: {source}")
        if not os.access(source, os.R_OK):
            raise AdmissionError(f"input file is not readable: {source}")

        job = Job.from_spec(spec, priority=priority)
        job.log_path = str(job_log_path(self.log_dir, job.id))

        with self._lock:
            self._jobs[job.id] = job
            self._save_now()
            snapshot = job.model_copy(deep=True)
            logger.info(f"[Queue] Added job {job.id} (priority {priority}): {job.input_path}")
            self.events.emit(QueueEventType.JOB_ADDED, job=job)
            start = self._config.auto_start and not self._is_processing

        if start:
            self.start_processing()
        else:
            self.run_admission_pass()

        return snapshot

    def remove_job(self, job_id: str) -> bool:
        """
        Remove a job in any state.

        Queued jobs are cancelled. In-flight jobs have their encoder
        process terminated. Terminal jobs are dropped from history.

        Returns:
            False if the job does not exist
        """
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return False

            was_in_flight = job.is_in_flight
            if job.status == JobStatus.QUEUED:
                self._transition(job, JobStatus.CANCELLED)

            del self._jobs[job_id]
            self._in_flight.pop(job_id, None)
            self._save_now()

            logger.info(f"[Queue] Removed job {job_id} ({job.status.value})")
            self.events.emit(QueueEventType.JOB_REMOVED, job=job, message=job.status.value)

        if was_in_flight:
            self.driver.cancel(job_id)

        self.run_admission_pass()
        self._notify()
        return True

    def clear_queue(self) -> int:
        """
        Remove every queued job. In-flight and finished jobs are kept.

        Returns:
            Number of jobs removed
        """
        with self._lock:
            queued = [job for job in self._jobs.values() if job.status == JobStatus.QUEUED]
            for job in queued:
                self._transition(job, JobStatus.CANCELLED)
                del self._jobs[job.id]
                self.events.emit(QueueEventType.JOB_REMOVED, job=job, message=job.status.value)

            if queued:
                self._save_now()
            logger.info(f"[Queue] Cleared {len(queued)} queued job(s)")

            if not self._in_flight:
                self.events.emit(QueueEventType.QUEUE_EMPTY)

        self._notify()
        return len(queued)

    def get_job(self, job_id: str) -> Optional[Job]:
        """Snapshot of a job, or None."""
        with self._lock:
            job = self._jobs.get(job_id)
            return job.model_copy(deep=True) if job else None

    def get_job_or_raise(self, job_id: str) -> Job:
        """
        Raises:
            JobNotFoundError: If the job does not exist
        """
        job = self.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def list_jobs(self, status: Optional[JobStatus] = None) -> List[Job]:
        """Snapshots of all jobs in insertion order, optionally filtered."""
        with self._lock:
            return [
                job.model_copy(deep=True)
                for job in self._jobs.values()
                if status is None or job.status == status
            ]

    def get_job_log(self, job_id: str) -> Optional[str]:
        """Contents of the job's log file, None if it has none."""
        return read_job_log(self.log_dir, job_id)

    # ------------------------------------------------------------------
    # Queue control
    # ------------------------------------------------------------------

    def start_processing(self) -> None:
        """Allow admission. Emits queue_started on the first call."""
        with self._lock:
            if not self._is_processing:
                self._is_processing = True
                logger.info("[Queue] Processing started")
                self.events.emit(QueueEventType.QUEUE_STARTED)
        self.run_admission_pass()

    def pause_processing(self) -> None:
        """Stop admitting jobs. Running jobs are left to finish."""
        with self._lock:
            if self._is_processing:
                self._is_processing = False
                logger.info("[Queue] Processing paused")
                self.events.emit(QueueEventType.QUEUE_PAUSED)
        self._notify()

    def update_config(
        self,
        max_parallel_jobs: Optional[int] = None,
        auto_start: Optional[bool] = None,
    ) -> QueueConfig:
        """
        Change queue settings and persist them.

        Raises:
            pydantic.ValidationError: If max_parallel_jobs < 1
        """
        with self._lock:
            updated = self._config.model_dump()
            if max_parallel_jobs is not None:
                updated["max_parallel_jobs"] = max_parallel_jobs
            if auto_start is not None:
                updated["auto_start"] = auto_start
            self._config = QueueConfig.model_validate(updated)
            self._save_now()
            logger.info(f"[Queue] Config updated: {self._config.model_dump()}")
            config = self._config.model_copy()

        self.run_admission_pass()
        return config

    def get_config(self) -> QueueConfig:
        with self._lock:
            return self._config.model_copy()

    @property
    def is_processing(self) -> bool:
        with self._lock:
            return self._is_processing

    @property
    def in_flight_count(self) -> int:
        with self._lock:
            return len(self._in_flight)

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    def _next_queued(self) -> Optional[Job]:
        queued = [job for job in self._jobs.values() if job.status == JobStatus.QUEUED]
        if not queued:
            return None
        # sorted() is stable, so insertion order breaks remaining ties
        return sorted(queued, key=lambda j: (-j.priority, j.added_at))[0]

    def run_admission_pass(self) -> List[Job]:
        """
        Start queued jobs until every slot is taken.

        Safe to call at any time: with no free slot or no queued job it
        does nothing.

        Returns:
            Snapshots of the jobs admitted by this pass
        """
        admitted: List[Job] = []
        with self._lock:
            if not self._is_processing or self._shutting_down:
                return admitted

            # Recomputed every iteration; a run finishing synchronously
            # re-enters through its completion callback.
            while len(self._in_flight) < self._config.max_parallel_jobs:
                job = self._next_queued()
                if job is None:
                    break
                self._admit(job)
                admitted.append(job.model_copy(deep=True))

        return admitted

    def _admit(self, job: Job) -> None:
        self._transition(job, JobStatus.PROCESSING)
        job.processing_start_time = datetime.now()
        job.progress = 0.0
        job.status_text = "Starting..."
        job.error = None

        try:
            future = self.driver.run(
                job,
                on_progress=partial(self._on_progress, job.id),
                on_verifying=partial(self._on_verifying, job.id),
            )
        except RuntimeError as e:
            logger.error(f"[Queue] Could not start job {job.id}: {e}")
            self._transition(job, JobStatus.FAILED)
            job.error = f"Could not start encoder: {e}"
            job.processing_end_time = datetime.now()
            self._save_now()
            self.events.emit(QueueEventType.JOB_FAILED, job=job, message=job.error)
            return

        self._in_flight[job.id] = future
        self._save_now()
        logger.info(f"[Queue] Started job {job.id} ({len(self._in_flight)}/{self._config.max_parallel_jobs})")
        self.events.emit(QueueEventType.JOB_STARTED, job=job)

        future.add_done_callback(partial(self._on_run_done, job.id))

    # ------------------------------------------------------------------
    # Driver callbacks
    # ------------------------------------------------------------------

    def _on_progress(self, job_id: str, sample: ProgressSample) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status != JobStatus.PROCESSING:
                return

            # Clamp rather than regress
            job.progress = max(job.progress, min(100.0, max(0.0, sample.percent)))
            if sample.fps is not None:
                job.fps = sample.fps
            if sample.frame is not None:
                job.frame = sample.frame
            if sample.total_frames is not None:
                job.total_frames = sample.total_frames
            if sample.status_text:
                job.status_text = sample.status_text

            self._schedule_save()
            self.events.emit(QueueEventType.JOB_PROGRESS, job=job)

    def _on_verifying(self, job_id: str) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status != JobStatus.PROCESSING:
                return
            self._transition(job, JobStatus.VERIFYING)
            job.status_text = "Verifying..."
            self._save_now()
            logger.info(f"[Queue] Job {job_id} verifying output")
            self.events.emit(QueueEventType.JOB_PROGRESS, job=job, message="verifying")

    def _on_run_done(self, job_id: str, future: Future) -> None:
        try:
            result = future.result()
        except (Exception, CancelledError) as e:
            logger.exception(f"[Queue] Run for job {job_id} raised: {e}")
            result = EncodingResult.failed(f"Unexpected error: {e}", FailureKind.SETUP, job_id=job_id)

        with self._lock:
            if self._in_flight.get(job_id) is future:
                del self._in_flight[job_id]

            job = self._jobs.get(job_id)
            if job is None or not job.is_in_flight:
                logger.info(f"[Queue] Ignoring result for removed job {job_id}")
            else:
                self._apply_result(job, result)

        self.run_admission_pass()

        with self._lock:
            if not self._in_flight and self._next_queued() is None:
                logger.info("[Queue] Queue empty")
                self.events.emit(QueueEventType.QUEUE_EMPTY)
        self._notify()

    def _apply_result(self, job: Job, result: EncodingResult) -> None:
        job.processing_end_time = datetime.now()
        if result.log_path:
            job.log_path = result.log_path

        if result.success:
            if job.status == JobStatus.PROCESSING:
                self._transition(job, JobStatus.VERIFYING)
            self._transition(job, JobStatus.COMPLETED)
            job.progress = 100.0
            job.status_text = "Completed"
            job.error = None
            job.result = JobResult(
                final_path=result.output_path or job.final_target_path,
                initial_size_mb=result.initial_size_mb,
                final_size_mb=result.final_size_mb,
                reduction_percent=result.reduction_percent,
            )
            self._save_now()
            logger.info(f"[Queue] Job {job.id} completed: {result.summary()}")
            self.events.emit(QueueEventType.JOB_COMPLETED, job=job)
        else:
            self._transition(job, JobStatus.FAILED)
            job.error = result.error or "Unknown error"
            job.status_text = "Failed"
            self._save_now()
            logger.error(f"[Queue] Job {job.id} failed: {job.error}")
            self.events.emit(QueueEventType.JOB_FAILED, job=job, message=job.error)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _transition(self, job: Job, target: JobStatus) -> None:
        validate_job_transition(job.id, job.status, target)
        job.status = target

    def _save_now(self) -> None:
        with self._lock:
            if self._save_timer is not None:
                self._save_timer.cancel()
                self._save_timer = None
            try:
                self.store.save(list(self._jobs.values()), self._config)
            except PersistenceError as e:
                logger.error(f"[Queue] Failed to save queue: {e}")

    def _schedule_save(self) -> None:
        if self.progress_save_delay <= 0:
            self._save_now()
            return
        with self._lock:
            if self._save_timer is not None:
                return
            self._save_timer = threading.Timer(self.progress_save_delay, self._flush_save)
            self._save_timer.daemon = True
            self._save_timer.start()

    def _flush_save(self) -> None:
        with self._lock:
            self._save_timer = None
            self._save_now()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _notify(self) -> None:
        with self._changed:
            self._changed.notify_all()

    def _is_idle(self) -> bool:
        if self._in_flight:
            return False
        return not self._is_processing or self._next_queued() is None

    def wait_until_idle(self, timeout: Optional[float] = None) -> bool:
        """
        Block until nothing runs and nothing admissible is queued.

        Returns:
            False if the timeout expired first
        """
        with self._changed:
            return self._changed.wait_for(self._is_idle, timeout=timeout)

    def shutdown(self, cancel_running: bool = False) -> None:
        """Stop admitting, flush pending saves and stop the driver."""
        with self._lock:
            self._shutting_down = True
            self._save_now()
        logger.info("[Queue] Shutting down")
        self.driver.shutdown(wait=True, cancel_running=cancel_running)
        self._save_now()
