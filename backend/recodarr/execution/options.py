"""
FFmpeg argument construction.

Maps a job's EncodingOptions onto an ffmpeg command line. The mapping is
mechanical: codec and track choices were made upstream by the preset
collaborator. Any stream that is mapped without an explicit codec is
passed through with "copy".

Argument order:
    ffmpeg -nostdin [-hwaccel X] -i INPUT [-t N]
           <maps + dispositions> <video> <audio> <subtitles>
           <metadata> -hide_banner -y TEMP_OUTPUT
"""

from datetime import datetime
from pathlib import Path
from typing import List, Optional

from ..jobs.models import EncodingOptions, HardwareAcceleration


PROCESSED_BY_TAG = "Recodarr"

# Codecs that take -crf as their quality knob
CRF_CODECS = frozenset({"libx264", "libx265"})

# Intel QuickSync encoders use -global_quality
QSV_CODECS = frozenset({"hevc_qsv", "h264_qsv", "av1_qsv"})

COPY = "copy"


def _disposition(stream_type: str, index: int) -> List[str]:
    """First stream of a type is the default track, the rest are not."""
    return [f"-disposition:{stream_type}:{index}", "default" if index == 0 else "none"]


def build_mapping_args(options: EncodingOptions) -> List[str]:
    """Stream selection. Maps are optional ('?') so missing tracks don't abort."""
    args: List[str] = []

    if options.map_video:
        args.extend(["-map", f"{options.map_video}?"])

    for index, audio_map in enumerate(options.audio_maps()):
        args.extend(["-map", f"{audio_map}?"])
        args.extend(_disposition("a", index))

    for index, subtitle_map in enumerate(options.map_subtitle):
        args.extend(["-map", f"{subtitle_map}?"])
        args.extend(_disposition("s", index))

    return args


def build_video_args(options: EncodingOptions) -> List[str]:
    """Video codec, quality, pixel format and scaling."""
    if not options.map_video:
        return []

    codec = options.video_codec or COPY
    args = ["-c:v", codec]
    if codec == COPY:
        return args

    if options.video_preset:
        args.extend(["-preset:v", options.video_preset])

    if options.video_quality:
        if codec in CRF_CODECS:
            args.extend(["-crf", str(options.video_quality)])
        elif codec in QSV_CODECS:
            args.extend(["-global_quality:v", str(options.video_quality)])

    if options.look_ahead is not None:
        args.extend(["-look_ahead", str(options.look_ahead)])

    if options.pixel_format:
        args.extend(["-pix_fmt", options.pixel_format])

    # Explicit resolution first; a filter may still refine the scaling
    if options.resolution:
        args.extend(["-s", options.resolution])

    if options.video_filter:
        args.extend(["-vf", options.video_filter])

    return args


def build_audio_args(options: EncodingOptions) -> List[str]:
    """Audio codec, bitrate, filter and extra codec options (all mapped tracks)."""
    if not options.audio_maps():
        return []

    codec = options.audio_codec or COPY
    args = ["-c:a", codec]
    if codec == COPY:
        return args

    if options.audio_bitrate:
        args.extend(["-b:a", options.audio_bitrate])
    if options.audio_filter:
        args.extend(["-af", options.audio_filter])
    args.extend(options.audio_options)
    return args


def build_subtitle_args(options: EncodingOptions) -> List[str]:
    if not options.map_subtitle:
        return []
    return ["-c:s", options.subtitle_codec or COPY]


def build_metadata_args(
    options: EncodingOptions,
    output_path: str,
    now: Optional[datetime] = None,
) -> List[str]:
    """
    Container metadata, chapters and processed-by tags.

    The tags let the library scanner recognise files this system already
    encoded. Matroska also gets a comment and per-stream tags since many
    players only surface those.
    """
    stamp = (now or datetime.now()).isoformat()

    args = ["-map_metadata", "0", "-map_chapters", "0"]
    args.extend(["-metadata", f"encoded_by={PROCESSED_BY_TAG}"])
    args.extend(["-metadata", f"processed_by={PROCESSED_BY_TAG}"])
    args.extend(["-metadata", f"processed_date={stamp}"])

    if options.video_codec:
        args.extend(["-metadata", f"recodarr_video_codec={options.video_codec}"])
    if options.audio_codec:
        args.extend(["-metadata", f"recodarr_audio_codec={options.audio_codec}"])

    if Path(output_path).suffix.lower() == ".mkv":
        comment = f"Processed by {PROCESSED_BY_TAG} on {stamp}"
        args.extend(["-metadata", f"comment={comment}"])
        if options.map_video:
            args.extend(["-metadata:s:v:0", f"encoded_by={PROCESSED_BY_TAG}"])
            args.extend(["-metadata:s:v:0", f"comment={comment}"])
        if options.audio_maps():
            args.extend(["-metadata:s:a:0", f"encoded_by={PROCESSED_BY_TAG}"])
            args.extend(["-metadata:s:a:0", f"comment={comment}"])

    return args


def build_ffmpeg_args(
    options: EncodingOptions,
    input_path: str,
    output_path: str,
    ffmpeg_path: str = "ffmpeg",
    now: Optional[datetime] = None,
) -> List[str]:
    """
    Build the complete ffmpeg command line for one job.

    Args:
        options: Encoder options from the job
        input_path: Source media file
        output_path: Temporary output file (never the final target)
        ffmpeg_path: ffmpeg binary
        now: Timestamp for processed_date tags (defaults to now)

    Returns:
        Argument list suitable for subprocess.Popen
    """
    cmd = [ffmpeg_path, "-nostdin"]

    hw_accel = options.hw_accel
    if hw_accel is not None and hw_accel != HardwareAcceleration.NONE:
        cmd.extend(["-hwaccel", hw_accel.value])

    cmd.extend(["-i", input_path])

    if options.duration:
        cmd.extend(["-t", str(options.duration)])

    cmd.extend(build_mapping_args(options))
    cmd.extend(build_video_args(options))
    cmd.extend(build_audio_args(options))
    cmd.extend(build_subtitle_args(options))
    cmd.extend(build_metadata_args(options, output_path, now=now))

    cmd.extend(["-hide_banner", "-y"])
    cmd.append(output_path)
    return cmd
