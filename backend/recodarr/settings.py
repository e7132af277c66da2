"""
Service configuration.

Defaults cover a single-user install under ~/.recodarr. Each setting can
be overridden with a RECODARR_* environment variable:

    RECODARR_DATA_DIR             Base directory (default ~/.recodarr)
    RECODARR_QUEUE_FILE           Queue document (default <data>/queue.json)
    RECODARR_LOG_DIR              Per-job logs (default <data>/logs)
    RECODARR_FFMPEG_PATH          ffmpeg binary
    RECODARR_FFPROBE_PATH         ffprobe binary
    RECODARR_PROGRESS_SAVE_DELAY  Seconds to coalesce progress saves
    RECODARR_RETRY_ATTEMPTS       Finalize retry attempts
    RECODARR_RETRY_DELAY          Seconds between finalize retries
    RECODARR_WATCHDOG_GRACE       Seconds of silence before liveness ticks
    RECODARR_WATCHDOG_INTERVAL    Seconds between liveness ticks
    RECODARR_WATCHDOG_MAX         Seconds after which ticks stop
    RECODARR_LOG_LEVEL            Service log level (default INFO)
"""

import logging
import os
from pathlib import Path
from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

ENV_PREFIX = "RECODARR_"

DEFAULT_DATA_DIR = Path.home() / ".recodarr"

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class ServiceSettings(BaseModel):
    """Resolved settings for one service or CLI process."""

    model_config = ConfigDict(extra="forbid")

    data_dir: Path = DEFAULT_DATA_DIR
    queue_file: Optional[Path] = None
    log_dir: Optional[Path] = None

    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"

    progress_save_delay: float = Field(default=2.0, ge=0.0)
    retry_attempts: int = Field(default=3, ge=1)
    retry_delay: float = Field(default=0.5, ge=0.0)

    watchdog_grace: float = Field(default=10.0, ge=0.0)
    watchdog_interval: float = Field(default=5.0, gt=0.0)
    watchdog_max: float = Field(default=600.0, ge=0.0)

    log_level: str = "INFO"

    @property
    def queue_path(self) -> Path:
        return self.queue_file or self.data_dir / "queue.json"

    @property
    def job_log_dir(self) -> Path:
        return self.log_dir or self.data_dir / "logs"


_ENV_FIELDS = (
    "data_dir",
    "queue_file",
    "log_dir",
    "ffmpeg_path",
    "ffprobe_path",
    "progress_save_delay",
    "retry_attempts",
    "retry_delay",
    "watchdog_grace",
    "watchdog_interval",
    "watchdog_max",
    "log_level",
)


def load_settings(environ: Optional[Mapping[str, str]] = None, **overrides) -> ServiceSettings:
    """
    Build settings from the environment.

    Keyword overrides win over environment values.

    Raises:
        pydantic.ValidationError: If a value does not parse
    """
    env = os.environ if environ is None else environ
    values = {}
    for name in _ENV_FIELDS:
        raw = env.get(f"{ENV_PREFIX}{name.upper()}")
        if raw:
            values[name] = raw
    for key in ("data_dir", "queue_file", "log_dir"):
        if key in values:
            values[key] = Path(values[key]).expanduser()
    values.update({k: v for k, v in overrides.items() if v is not None})
    return ServiceSettings(**values)


def configure_logging(level: str = "INFO") -> None:
    """Root logging setup for the service and the CLI."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )
