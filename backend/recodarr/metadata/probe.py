"""
Media probing using ffprobe.

Extracts the handful of facts the queue needs before an encode:
duration, frame rate and the stream layout. Probing is read-only.

Missing values are represented as None. The caller decides how to
degrade; nothing here guesses.
"""

import json
import shutil
import subprocess
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .errors import FFProbeNotFoundError, ProbeError


class StreamInfo(BaseModel):
    """One stream as reported by ffprobe."""

    model_config = ConfigDict(extra="forbid")

    index: int
    codec_type: Optional[str] = None
    codec_name: Optional[str] = None
    language: Optional[str] = None
    channels: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None


class MediaProbe(BaseModel):
    """Probe result for one file."""

    model_config = ConfigDict(extra="forbid")

    path: str
    duration: Optional[float] = None
    """Container duration in seconds."""

    fps: Optional[float] = None
    """Frame rate of the first video stream."""

    streams: List[StreamInfo] = Field(default_factory=list)

    @property
    def has_video(self) -> bool:
        return any(s.codec_type == "video" for s in self.streams)


def check_ffprobe_available(ffprobe_path: str = "ffprobe") -> bool:
    """True if the ffprobe binary can be found."""
    return shutil.which(ffprobe_path) is not None


def _parse_rational(value: Optional[str]) -> Optional[float]:
    """Parse ffprobe rationals like '24000/1001'. Returns None for 0/0 and junk."""
    if not value:
        return None
    try:
        if "/" in value:
            num, den = value.split("/", 1)
            if float(den) == 0:
                return None
            result = float(num) / float(den)
        else:
            result = float(value)
    except (ValueError, TypeError):
        return None
    return result if result > 0 else None


def _parse_float(value: Any) -> Optional[float]:
    try:
        result = float(value)
    except (ValueError, TypeError):
        return None
    return result if result > 0 else None


def parse_probe_output(filepath: str, probe_data: Dict[str, Any]) -> MediaProbe:
    """
    Convert ffprobe JSON into a MediaProbe.

    Duration comes from the container, falling back to the first video
    stream. Frame rate prefers avg_frame_rate over r_frame_rate.
    """
    raw_streams = probe_data.get("streams") or []
    format_info = probe_data.get("format") or {}

    streams = []
    video_stream = None
    for position, stream in enumerate(raw_streams):
        tags = stream.get("tags") or {}
        streams.append(
            StreamInfo(
                index=stream.get("index", position),
                codec_type=stream.get("codec_type"),
                codec_name=stream.get("codec_name"),
                language=tags.get("language"),
                channels=stream.get("channels"),
                width=stream.get("width"),
                height=stream.get("height"),
            )
        )
        if video_stream is None and stream.get("codec_type") == "video":
            video_stream = stream

    duration = _parse_float(format_info.get("duration"))
    fps = None
    if video_stream is not None:
        if duration is None:
            duration = _parse_float(video_stream.get("duration"))
        fps = _parse_rational(video_stream.get("avg_frame_rate"))
        if fps is None:
            fps = _parse_rational(video_stream.get("r_frame_rate"))

    return MediaProbe(path=filepath, duration=duration, fps=fps, streams=streams)


def _run_ffprobe(filepath: str, ffprobe_path: str) -> Dict[str, Any]:
    cmd = [
        ffprobe_path,
        "-v", "quiet",
        "-print_format", "json",
        "-show_format",
        "-show_streams",
        filepath,
    ]

    result = subprocess.run(
        cmd,
        capture_output=True,
        text=True,
        check=True,
    )

    return json.loads(result.stdout)


def probe_media(filepath: str, ffprobe_path: str = "ffprobe") -> MediaProbe:
    """
    Probe a media file.

    Args:
        filepath: Path to the media file
        ffprobe_path: ffprobe binary

    Returns:
        MediaProbe with whatever ffprobe could determine

    Raises:
        FFProbeNotFoundError: If ffprobe is not available
        ProbeError: If the file is missing or ffprobe fails
    """
    if not check_ffprobe_available(ffprobe_path):
        raise FFProbeNotFoundError(ffprobe_path)

    if not Path(filepath).is_file():
        raise ProbeError(filepath, "File does not exist")

    try:
        probe_data = _run_ffprobe(filepath, ffprobe_path)
    except subprocess.CalledProcessError as e:
        raise ProbeError(filepath, f"ffprobe failed with exit code {e.returncode}")
    except json.JSONDecodeError as e:
        raise ProbeError(filepath, f"Failed to parse ffprobe output: {e}")
    except OSError as e:
        raise ProbeError(filepath, f"Could not run ffprobe: {e}")

    return parse_probe_output(filepath, probe_data)
