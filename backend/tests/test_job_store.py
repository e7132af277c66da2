"""
Tests for the JSON queue document store.
"""

import json

import pytest

from recodarr.jobs.models import Job, JobResult, JobSpec, JobStatus, QueueConfig
from recodarr.persistence import JobStore, LoadError, SaveError


def _job(name: str, **fields) -> Job:
    job = Job.from_spec(JobSpec(input_path=f"/media/{name}.mkv", output_path=f"/out/{name}.mkv"))
    return job.model_copy(update=fields)


class TestLoad:

    def test_missing_file_yields_defaults(self, tmp_path):
        store = JobStore(tmp_path / "queue.json")

        document = store.load()

        assert document.jobs == []
        assert document.config == QueueConfig()
        assert not store.exists()

    @pytest.mark.parametrize("content", ["{not json", "[1, 2, 3]", '{"jobs": [{"id": 5}]}'])
    def test_unreadable_documents_raise(self, tmp_path, content):
        path = tmp_path / "queue.json"
        path.write_text(content)

        with pytest.raises(LoadError):
            JobStore(path).load()

    def test_unknown_top_level_keys_are_ignored(self, tmp_path):
        path = tmp_path / "queue.json"
        path.write_text(json.dumps({"jobs": [], "config": {"max_parallel_jobs": 3}, "version": 7}))

        document = JobStore(path).load()

        assert document.config.max_parallel_jobs == 3
        assert document.config.auto_start is True


class TestSave:

    def test_round_trip_preserves_jobs_and_config(self, tmp_path):
        """
        GIVEN: Jobs in several states and a non-default config
        WHEN: Saved then loaded by a fresh store
        THEN: Order, status, progress, result and config survive
        """
        path = tmp_path / "queue.json"
        jobs = [
            _job("a", status=JobStatus.COMPLETED, progress=100.0,
                 result=JobResult(final_path="/out/a.mkv", initial_size_mb=10.0, final_size_mb=4.0, reduction_percent=60.0)),
            _job("b", status=JobStatus.PROCESSING, progress=42.5, priority=3),
            _job("c"),
        ]
        config = QueueConfig(max_parallel_jobs=4, auto_start=False)

        JobStore(path).save(jobs, config)
        document = JobStore(path).load()

        assert [j.id for j in document.jobs] == [j.id for j in jobs]
        assert document.jobs[0].result.reduction_percent == 60.0
        assert document.jobs[1].status == JobStatus.PROCESSING
        assert document.jobs[1].progress == 42.5
        assert document.jobs[1].priority == 3
        assert document.config == config
        assert document.saved_at is not None

    def test_save_creates_parent_directory(self, tmp_path):
        path = tmp_path / "nested" / "data" / "queue.json"

        JobStore(path).save([], QueueConfig())

        assert path.exists()

    def test_no_temp_files_left_behind(self, tmp_path):
        path = tmp_path / "queue.json"
        store = JobStore(path)

        for i in range(3):
            store.save([_job(f"x{i}")], QueueConfig())

        assert [p.name for p in tmp_path.iterdir()] == ["queue.json"]

    def test_failed_replace_raises_and_keeps_previous_document(self, tmp_path, monkeypatch):
        """
        GIVEN: A saved queue document and a replace that fails
        WHEN: Saving again
        THEN: SaveError is raised, the previous document is intact and no temp file remains
        """
        path = tmp_path / "queue.json"
        store = JobStore(path)
        store.save([_job("kept")], QueueConfig())

        def failing_replace(src, dst):
            raise PermissionError("read-only share")

        monkeypatch.setattr("recodarr.persistence.store.os.replace", failing_replace)

        with pytest.raises(SaveError, match="Failed to write queue file"):
            store.save([_job("lost")], QueueConfig())

        assert [job.input_path for job in store.load().jobs] == ["/media/kept.mkv"]
        assert [p.name for p in tmp_path.iterdir()] == ["queue.json"]

    def test_saved_file_is_plain_json(self, tmp_path):
        path = tmp_path / "queue.json"
        job = _job("a")

        JobStore(path).save([job], QueueConfig())
        data = json.loads(path.read_text())

        assert data["jobs"][0]["id"] == job.id
        assert data["jobs"][0]["status"] == "queued"
        assert data["config"] == {"max_parallel_jobs": 2, "auto_start": True}

    def test_save_snapshots_jobs(self, tmp_path):
        path = tmp_path / "queue.json"
        job = _job("a")
        store = JobStore(path)

        store.save([job], QueueConfig())
        job.progress = 77.0

        assert store.load().jobs[0].progress == 0.0
