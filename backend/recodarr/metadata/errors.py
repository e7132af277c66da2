"""
Media probing errors.

Probe failures are never fatal to a job: the driver logs them and the
progress estimator falls back to lower-priority signals.
"""


class ProbeError(Exception):
    """Raised when a media file cannot be probed."""

    def __init__(self, filepath: str, reason: str):
        self.filepath = filepath
        self.reason = reason
        super().__init__(f"Failed to probe {filepath}: {reason}")


class FFProbeNotFoundError(ProbeError):
    """Raised when the ffprobe binary is not available."""

    def __init__(self, ffprobe_path: str = "ffprobe"):
        self.ffprobe_path = ffprobe_path
        super().__init__(
            ffprobe_path,
            "ffprobe not found. Install ffmpeg or set RECODARR_FFPROBE_PATH.",
        )
