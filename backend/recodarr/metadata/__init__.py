"""
Media probing for Recodarr.

Read-only inspection of input files (duration, frame rate, streams) used
to calibrate progress before an encode starts.

Usage:
    from recodarr.metadata import probe_media

    probe = probe_media("/media/show/episode.mkv")
    print(probe.duration, probe.fps)
"""

from .errors import FFProbeNotFoundError, ProbeError
from .probe import (
    MediaProbe,
    StreamInfo,
    check_ffprobe_available,
    parse_probe_output,
    probe_media,
)

__all__ = [
    # Errors
    "ProbeError",
    "FFProbeNotFoundError",
    # Probing
    "MediaProbe",
    "StreamInfo",
    "check_ffprobe_available",
    "parse_probe_output",
    "probe_media",
]
