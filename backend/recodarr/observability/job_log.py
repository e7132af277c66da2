"""
Per-job log artifact.

Written to <log_dir>/<job_id>.log, one line per event:
    [2024-06-10T12:00:00.123456] Starting FFmpeg: ffmpeg -nostdin -i ...

Records go straight to a per-job FileHandler without passing through the
logger hierarchy, so encoder stderr never floods the service log and no
logger is registered per job.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

JOB_LOGGER_NAME = "recodarr.joblog"


class _IsoFormatter(logging.Formatter):
    def formatTime(self, record, datefmt=None):
        return datetime.fromtimestamp(record.created).isoformat()


def job_log_path(log_dir: Path, job_id: str) -> Path:
    """Location of a job's log file."""
    return Path(log_dir) / f"{job_id}.log"


class JobLog:
    """
    Append-only log for a single job run.

    Usage:
        with JobLog(job_id, log_dir) as job_log:
            job_log.write("Starting FFmpeg: ...")
    """

    def __init__(self, job_id: str, log_dir: Path):
        self.job_id = job_id
        self.path = job_log_path(log_dir, job_id)
        self.path.parent.mkdir(parents=True, exist_ok=True)

        self._handler = logging.FileHandler(self.path, mode="a", encoding="utf-8")
        self._handler.setFormatter(_IsoFormatter("[%(asctime)s] %(message)s"))

    def write(self, message: str) -> None:
        record = logging.makeLogRecord({
            "name": JOB_LOGGER_NAME,
            "msg": message.rstrip("\n"),
            "levelno": logging.INFO,
            "levelname": "INFO",
        })
        self._handler.handle(record)

    def close(self) -> None:
        self._handler.close()

    def __enter__(self) -> "JobLog":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def read_job_log(log_dir: Path, job_id: str) -> Optional[str]:
    """
    Return a job's log text, or None if no log exists.
    """
    path = job_log_path(log_dir, job_id)
    if not path.exists():
        return None
    try:
        return path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        logger.error(f"[JobLog] Failed to read log for {job_id}: {e}")
        return None
