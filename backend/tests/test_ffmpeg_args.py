"""
Tests for ffmpeg argument construction.
"""

from datetime import datetime

import pytest

from recodarr.execution.options import PROCESSED_BY_TAG, build_ffmpeg_args
from recodarr.jobs.models import EncodingOptions, HardwareAcceleration


NOW = datetime(2024, 6, 10, 12, 0, 0)


def _pairs(cmd):
    """(flag, value) pairs for quick membership checks."""
    return list(zip(cmd, cmd[1:]))


class TestCommandShape:

    def test_minimal_command(self):
        cmd = build_ffmpeg_args(EncodingOptions(), "/in/a.mkv", "/out/a_tmp.mkv", now=NOW)

        assert cmd[:4] == ["ffmpeg", "-nostdin", "-i", "/in/a.mkv"]
        assert cmd[-3:] == ["-hide_banner", "-y", "/out/a_tmp.mkv"]
        assert ("-map_metadata", "0") in _pairs(cmd)
        assert ("-map_chapters", "0") in _pairs(cmd)

    def test_custom_ffmpeg_binary(self):
        cmd = build_ffmpeg_args(EncodingOptions(), "/in/a.mkv", "/out/a_tmp.mkv", ffmpeg_path="/opt/ffmpeg", now=NOW)
        assert cmd[0] == "/opt/ffmpeg"

    def test_hwaccel_precedes_input(self):
        options = EncodingOptions(hw_accel=HardwareAcceleration.QSV)

        cmd = build_ffmpeg_args(options, "/in/a.mkv", "/out/a_tmp.mkv", now=NOW)

        assert cmd.index("-hwaccel") < cmd.index("-i")
        assert ("-hwaccel", "qsv") in _pairs(cmd)

    def test_hwaccel_none_is_omitted(self):
        options = EncodingOptions(hw_accel=HardwareAcceleration.NONE)

        cmd = build_ffmpeg_args(options, "/in/a.mkv", "/out/a_tmp.mkv", now=NOW)

        assert "-hwaccel" not in cmd

    def test_duration_limit_follows_input(self):
        cmd = build_ffmpeg_args(EncodingOptions(duration=30.0), "/in/a.mkv", "/out/a_tmp.mkv", now=NOW)

        assert cmd.index("-t") == cmd.index("-i") + 2
        assert ("-t", "30.0") in _pairs(cmd)


class TestStreamMapping:

    def test_maps_are_optional(self):
        options = EncodingOptions(map_video="0:v:0", map_audio="0:a:0", map_subtitle=["0:s:0"])

        cmd = build_ffmpeg_args(options, "/in/a.mkv", "/out/a_tmp.mkv", now=NOW)

        assert ("-map", "0:v:0?") in _pairs(cmd)
        assert ("-map", "0:a:0?") in _pairs(cmd)
        assert ("-map", "0:s:0?") in _pairs(cmd)

    def test_first_audio_track_is_default(self):
        options = EncodingOptions(map_audio="0:a:1;0:a:0")

        cmd = build_ffmpeg_args(options, "/in/a.mkv", "/out/a_tmp.mkv", now=NOW)

        assert ("-disposition:a:0", "default") in _pairs(cmd)
        assert ("-disposition:a:1", "none") in _pairs(cmd)
        assert cmd.index("0:a:1?") < cmd.index("0:a:0?")

    def test_subtitle_dispositions(self):
        options = EncodingOptions(map_subtitle=["0:s:0", "0:s:3"])

        cmd = build_ffmpeg_args(options, "/in/a.mkv", "/out/a_tmp.mkv", now=NOW)

        assert ("-disposition:s:0", "default") in _pairs(cmd)
        assert ("-disposition:s:1", "none") in _pairs(cmd)
        assert ("-c:s", "copy") in _pairs(cmd)

    def test_mapped_streams_without_codec_are_copied(self):
        options = EncodingOptions(map_video="0:v:0", map_audio="0:a:0")

        cmd = build_ffmpeg_args(options, "/in/a.mkv", "/out/a_tmp.mkv", now=NOW)

        assert ("-c:v", "copy") in _pairs(cmd)
        assert ("-c:a", "copy") in _pairs(cmd)
        assert "-crf" not in cmd

    def test_unmapped_streams_get_no_codec(self):
        cmd = build_ffmpeg_args(EncodingOptions(video_codec="libx265"), "/in/a.mkv", "/out/a_tmp.mkv", now=NOW)

        assert "-c:v" not in cmd
        assert "-c:a" not in cmd


class TestVideoOptions:

    @pytest.mark.parametrize("codec", ["libx264", "libx265"])
    def test_software_codecs_use_crf(self, codec):
        options = EncodingOptions(map_video="0:v:0", video_codec=codec, video_preset="slow", video_quality="23")

        cmd = build_ffmpeg_args(options, "/in/a.mkv", "/out/a_tmp.mkv", now=NOW)

        assert ("-c:v", codec) in _pairs(cmd)
        assert ("-preset:v", "slow") in _pairs(cmd)
        assert ("-crf", "23") in _pairs(cmd)

    def test_qsv_uses_global_quality(self):
        options = EncodingOptions(map_video="0:v:0", video_codec="hevc_qsv", video_quality="25", look_ahead=1)

        cmd = build_ffmpeg_args(options, "/in/a.mkv", "/out/a_tmp.mkv", now=NOW)

        assert ("-global_quality:v", "25") in _pairs(cmd)
        assert ("-look_ahead", "1") in _pairs(cmd)
        assert "-crf" not in cmd

    def test_pixel_format_resolution_and_filter(self):
        options = EncodingOptions(
            map_video="0:v:0",
            video_codec="libx265",
            pixel_format="yuv420p10le",
            resolution="1280x720",
            video_filter="scale=1280:-2",
        )

        cmd = build_ffmpeg_args(options, "/in/a.mkv", "/out/a_tmp.mkv", now=NOW)

        assert ("-pix_fmt", "yuv420p10le") in _pairs(cmd)
        assert ("-s", "1280x720") in _pairs(cmd)
        assert ("-vf", "scale=1280:-2") in _pairs(cmd)


class TestAudioOptions:

    def test_audio_codec_bitrate_filter_and_extras(self):
        options = EncodingOptions(
            map_audio="0:a:0",
            audio_codec="libopus",
            audio_bitrate="128k",
            audio_filter="aformat=channel_layouts=stereo",
            audio_options=["-vbr", "on"],
        )

        cmd = build_ffmpeg_args(options, "/in/a.mkv", "/out/a_tmp.mkv", now=NOW)

        assert ("-c:a", "libopus") in _pairs(cmd)
        assert ("-b:a", "128k") in _pairs(cmd)
        assert ("-af", "aformat=channel_layouts=stereo") in _pairs(cmd)
        assert ("-vbr", "on") in _pairs(cmd)


class TestMetadataTags:

    def test_processed_by_tags(self):
        options = EncodingOptions(map_video="0:v:0", video_codec="libx265", map_audio="0:a:0", audio_codec="aac")

        cmd = build_ffmpeg_args(options, "/in/a.mp4", "/out/a_tmp.mp4", now=NOW)

        assert ("-metadata", f"encoded_by={PROCESSED_BY_TAG}") in _pairs(cmd)
        assert ("-metadata", f"processed_by={PROCESSED_BY_TAG}") in _pairs(cmd)
        assert ("-metadata", f"processed_date={NOW.isoformat()}") in _pairs(cmd)
        assert ("-metadata", "recodarr_video_codec=libx265") in _pairs(cmd)
        assert ("-metadata", "recodarr_audio_codec=aac") in _pairs(cmd)
        assert not any(arg.startswith("comment=") for arg in cmd)

    def test_matroska_gets_comment_and_stream_tags(self):
        options = EncodingOptions(map_video="0:v:0", map_audio="0:a:0")

        cmd = build_ffmpeg_args(options, "/in/a.mkv", "/out/a_tmp.mkv", now=NOW)

        comment = f"comment=Processed by {PROCESSED_BY_TAG} on {NOW.isoformat()}"
        assert ("-metadata", comment) in _pairs(cmd)
        assert ("-metadata:s:v:0", f"encoded_by={PROCESSED_BY_TAG}") in _pairs(cmd)
        assert ("-metadata:s:a:0", comment) in _pairs(cmd)
