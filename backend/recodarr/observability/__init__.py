"""
Observability for Recodarr jobs.

One append-only log file per job, holding the encoder command line,
its stderr and lifecycle milestones. Logs outlive the job record so a
failure can be diagnosed after the job is removed from the queue.
"""

from .job_log import JobLog, job_log_path, read_job_log

__all__ = ["JobLog", "job_log_path", "read_job_log"]
