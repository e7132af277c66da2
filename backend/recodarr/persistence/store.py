"""
JSON document store for the job queue.

Document layout:
    {
        "jobs": [ {...Job...}, ... ],
        "config": {"max_parallel_jobs": 2, "auto_start": true},
        "saved_at": "2024-06-10T12:00:00"
    }

Writes go to a temporary sibling first and are swapped in with
os.replace, so a crash mid-save leaves the previous document intact.
"""

import json
import logging
import os
import tempfile
import threading
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..jobs.models import Job, QueueConfig
from .errors import LoadError, SaveError

logger = logging.getLogger(__name__)


class StoreDocument(BaseModel):
    """Everything persisted for the queue."""

    model_config = ConfigDict(extra="ignore")

    jobs: List[Job] = Field(default_factory=list)
    config: QueueConfig = Field(default_factory=QueueConfig)
    saved_at: Optional[datetime] = None


class JobStore:
    """
    Loads and saves the queue document.

    Thread-safe: concurrent save() calls are serialized.

    Usage:
        store = JobStore(Path("~/.recodarr/queue.json").expanduser())
        doc = store.load()
        store.save(doc.jobs, doc.config)
    """

    def __init__(self, path: Path):
        """
        Args:
            path: Location of the JSON document
        """
        self.path = Path(path)
        self._lock = threading.Lock()

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> StoreDocument:
        """
        Read the document.

        A missing file yields an empty document with default config.

        Raises:
            LoadError: If the file cannot be read or does not parse
        """
        if not self.path.exists():
            logger.info(f"[Store] No queue file at {self.path}, starting empty")
            return StoreDocument()

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise LoadError(f"Failed to read queue file {self.path}: {e}") from e

        if not isinstance(data, dict):
            raise LoadError(f"Queue file {self.path} does not hold a JSON object")

        try:
            document = StoreDocument.model_validate(data)
        except ValidationError as e:
            raise LoadError(f"Queue file {self.path} is invalid: {e}") from e

        logger.info(f"[Store] Loaded {len(document.jobs)} job(s) from {self.path}")
        return document

    def save(self, jobs: List[Job], config: QueueConfig) -> StoreDocument:
        """
        Write the whole document atomically.

        Raises:
            SaveError: If the document cannot be written
        """
        document = StoreDocument(
            jobs=[job.model_copy(deep=True) for job in jobs],
            config=config.model_copy(),
            saved_at=datetime.now(),
        )
        payload = document.model_dump_json(indent=2)

        with self._lock:
            tmp_name = None
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                fd, tmp_name = tempfile.mkstemp(
                    prefix=f".{self.path.name}.", suffix=".tmp", dir=str(self.path.parent)
                )
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(payload)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_name, self.path)
                tmp_name = None
            except OSError as e:
                raise SaveError(f"Failed to write queue file {self.path}: {e}") from e
            finally:
                if tmp_name is not None and os.path.exists(tmp_name):
                    os.unlink(tmp_name)

        logger.debug(f"[Store] Saved {len(jobs)} job(s) to {self.path}")
        return document
