"""
Tests for per-job log artifacts and the queue event bus.
"""

import logging
import re
from datetime import datetime

from recodarr.jobs.events import QueueEventBus, QueueEventType
from recodarr.jobs.models import Job, JobSpec
from recodarr.observability.job_log import JOB_LOGGER_NAME, JobLog, job_log_path, read_job_log


LINE_PATTERN = re.compile(r"^\[(?P<ts>[^\]]+)\] (?P<msg>.*)$")


class TestJobLog:

    def test_lines_are_timestamped(self, tmp_path):
        with JobLog("job_1", tmp_path) as job_log:
            job_log.write("Starting FFmpeg: ffmpeg -i in.mkv out.mkv")
            job_log.write("Stream mapping:\n")

        lines = read_job_log(tmp_path, "job_1").splitlines()

        assert len(lines) == 2
        match = LINE_PATTERN.match(lines[0])
        assert match is not None
        datetime.fromisoformat(match.group("ts"))
        assert match.group("msg") == "Starting FFmpeg: ffmpeg -i in.mkv out.mkv"
        assert LINE_PATTERN.match(lines[1]).group("msg") == "Stream mapping:"

    def test_jobs_get_separate_files(self, tmp_path):
        with JobLog("job_a", tmp_path) as first, JobLog("job_b", tmp_path) as second:
            first.write("from a")
            second.write("from b")

        assert "from b" not in read_job_log(tmp_path, "job_a")
        assert "from a" not in read_job_log(tmp_path, "job_b")
        assert job_log_path(tmp_path, "job_a").name == "job_a.log"

    def test_rerun_appends(self, tmp_path):
        with JobLog("job_1", tmp_path) as job_log:
            job_log.write("first run")
        with JobLog("job_1", tmp_path) as job_log:
            job_log.write("second run")

        text = read_job_log(tmp_path, "job_1")
        assert "first run" in text
        assert "second run" in text

    def test_unknown_job_has_no_log(self, tmp_path):
        assert read_job_log(tmp_path, "job_missing") is None

    def test_job_lines_stay_out_of_service_log(self, tmp_path, caplog):
        with JobLog("job_quiet", tmp_path) as job_log:
            job_log.write("noisy encoder output")

        assert "noisy encoder output" not in caplog.text

    def test_runs_do_not_register_loggers(self, tmp_path):
        """
        GIVEN: Fifty job runs, each with its own log file
        WHEN: Every run has written and closed its log
        THEN: No logger was registered for any of the jobs
        """
        for index in range(50):
            with JobLog(f"job_{index}", tmp_path) as job_log:
                job_log.write("frame=1")

        registered = [name for name in logging.Logger.manager.loggerDict if name.startswith(JOB_LOGGER_NAME)]
        assert registered == []
        assert "frame=1" in read_job_log(tmp_path, "job_49")


class TestQueueEventBus:

    def _job(self) -> Job:
        return Job.from_spec(JobSpec(input_path="/m/a.mkv", output_path="/o/a.mkv"))

    def test_filtered_subscription(self):
        bus = QueueEventBus()
        received = []
        bus.subscribe(received.append, [QueueEventType.JOB_COMPLETED])

        bus.emit(QueueEventType.JOB_STARTED, job=self._job())
        bus.emit(QueueEventType.JOB_COMPLETED, job=self._job())

        assert [e.event_type for e in received] == [QueueEventType.JOB_COMPLETED]

    def test_unsubscribe(self):
        bus = QueueEventBus()
        received = []
        unsubscribe = bus.subscribe(received.append)

        bus.emit(QueueEventType.QUEUE_STARTED)
        unsubscribe()
        bus.emit(QueueEventType.QUEUE_PAUSED)

        assert len(received) == 1

    def test_failing_subscriber_is_isolated(self):
        """
        GIVEN: Two subscribers, the first raises
        WHEN: An event is emitted
        THEN: The second subscriber still receives it
        """
        bus = QueueEventBus()
        received = []

        def broken(event):
            raise RuntimeError("observer bug")

        bus.subscribe(broken)
        bus.subscribe(received.append)

        bus.emit(QueueEventType.QUEUE_EMPTY)

        assert len(received) == 1

    def test_event_carries_job_snapshot(self):
        bus = QueueEventBus()
        received = []
        bus.subscribe(received.append)
        job = self._job()

        bus.emit(QueueEventType.JOB_PROGRESS, job=job)
        job.progress = 50.0

        assert received[0].job_id == job.id
        assert received[0].job.progress == 0.0

    def test_removal_event_has_only_id(self):
        bus = QueueEventBus()

        event = bus.emit(QueueEventType.JOB_REMOVED, job_id="job_9")

        assert event.job_id == "job_9"
        assert event.job is None
        assert "job_removed" in str(event)
