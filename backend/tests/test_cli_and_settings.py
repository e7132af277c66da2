"""
Tests for settings resolution and the operator CLI.
"""

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from recodarr.cli import EXIT_EXECUTION, EXIT_OK, EXIT_SYSTEM, EXIT_VALIDATION, main
from recodarr.jobs.models import Job, JobSpec, JobStatus, QueueConfig
from recodarr.persistence import JobStore
from recodarr.settings import ServiceSettings, load_settings


@pytest.fixture
def data_dir(tmp_path, monkeypatch):
    """Point every RECODARR_* default at a temp directory."""
    path = tmp_path / "data"
    monkeypatch.setenv("RECODARR_DATA_DIR", str(path))
    monkeypatch.delenv("RECODARR_QUEUE_FILE", raising=False)
    monkeypatch.delenv("RECODARR_LOG_DIR", raising=False)
    return path


class TestSettings:

    def test_defaults_derive_from_data_dir(self):
        settings = ServiceSettings(data_dir=Path("/srv/recodarr"))

        assert settings.queue_path == Path("/srv/recodarr/queue.json")
        assert settings.job_log_dir == Path("/srv/recodarr/logs")

    def test_environment_overrides(self):
        settings = load_settings(environ={
            "RECODARR_DATA_DIR": "/srv/recodarr",
            "RECODARR_LOG_DIR": "/var/log/recodarr",
            "RECODARR_RETRY_ATTEMPTS": "5",
            "RECODARR_FFMPEG_PATH": "/opt/ffmpeg/bin/ffmpeg",
        })

        assert settings.queue_path == Path("/srv/recodarr/queue.json")
        assert settings.job_log_dir == Path("/var/log/recodarr")
        assert settings.retry_attempts == 5
        assert settings.ffmpeg_path == "/opt/ffmpeg/bin/ffmpeg"

    def test_keyword_overrides_win(self):
        settings = load_settings(environ={"RECODARR_LOG_LEVEL": "WARNING"}, log_level="DEBUG")

        assert settings.log_level == "DEBUG"

    def test_invalid_values_raise(self):
        with pytest.raises(ValidationError):
            load_settings(environ={"RECODARR_RETRY_ATTEMPTS": "0"})


class TestListCommand:

    def test_prints_persisted_jobs(self, data_dir, capsys):
        job = Job.from_spec(JobSpec(input_path="/media/a.mkv", output_path="/out/a.mkv")).model_copy(
            update={"status": JobStatus.FAILED, "error": "Interrupted by application restart"}
        )
        JobStore(data_dir / "queue.json").save([job], QueueConfig(max_parallel_jobs=3))

        exit_code = main(["list"])

        out = capsys.readouterr().out
        assert exit_code == EXIT_OK
        assert "max_parallel_jobs=3" in out
        assert job.id in out
        assert "failed" in out
        assert "Interrupted by application restart" in out

    def test_json_output(self, data_dir, capsys):
        JobStore(data_dir / "queue.json").save([], QueueConfig())

        assert main(["list", "--json"]) == EXIT_OK

        document = json.loads(capsys.readouterr().out)
        assert document["jobs"] == []
        assert document["config"]["auto_start"] is True

    def test_corrupt_queue_file(self, data_dir, capsys):
        data_dir.mkdir(parents=True)
        (data_dir / "queue.json").write_text("{broken")

        assert main(["list"]) == EXIT_SYSTEM
        assert "ERROR" in capsys.readouterr().err


class TestLogCommand:

    def test_prints_job_log(self, data_dir, capsys):
        log_dir = data_dir / "logs"
        log_dir.mkdir(parents=True)
        (log_dir / "job_1.log").write_text("[2024-06-10T12:00:00] Starting FFmpeg: ffmpeg\n")

        assert main(["log", "job_1"]) == EXIT_OK
        assert "Starting FFmpeg" in capsys.readouterr().out

    def test_unknown_job(self, data_dir):
        assert main(["log", "job_missing"]) == EXIT_SYSTEM


class TestFinalizeCommand:

    def test_commits_output(self, data_dir, tmp_path, capsys):
        temp = tmp_path / "movie_tmp.mkv"
        temp.write_bytes(b"encoded")
        final = tmp_path / "movie.mkv"

        exit_code = main(["finalize", str(temp), str(final), "--job-id", "job_7"])

        assert exit_code == EXIT_OK
        assert final.read_bytes() == b"encoded"
        assert json.loads(capsys.readouterr().out)["success"] is True

    def test_missing_temp(self, data_dir, tmp_path, capsys):
        exit_code = main(["finalize", str(tmp_path / "gone_tmp.mkv"), str(tmp_path / "gone.mkv")])

        assert exit_code == EXIT_EXECUTION
        assert json.loads(capsys.readouterr().out)["success"] is False


class TestAddCommand:

    def test_missing_input_is_rejected(self, data_dir, tmp_path, capsys):
        """
        GIVEN: An input file that does not exist
        WHEN: It is added from the CLI
        THEN: Exit code 1 and nothing is queued
        """
        exit_code = main(["add", str(tmp_path / "missing.mkv"), str(tmp_path / "out.mkv")])

        assert exit_code == EXIT_VALIDATION
        assert "does not exist" in capsys.readouterr().err
        assert JobStore(data_dir / "queue.json").load().jobs == []
