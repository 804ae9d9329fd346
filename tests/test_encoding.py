"""Encode parameter resolution tests."""

import pytest

from broadcast_engine.encoding import (
    clamp_resolution,
    h264_profile,
    parse_bitrate_kbps,
    parse_frame_rate,
    resolve_encode_settings,
)
from broadcast_engine.models import EncodeOverrides, ProbeResult

NATIVE = ProbeResult(width=1920, height=1080, frame_rate=29.97, bit_rate=6_000_000)


class TestClamp:
    def test_scales_up_to_480_lines(self):
        assert clamp_resolution(640, 360) == (854, 480)

    def test_forces_even_width(self):
        assert clamp_resolution(1279, 720) == (1280, 720)

    def test_leaves_large_sources_alone(self):
        assert clamp_resolution(3840, 2160) == (3840, 2160)


class TestParsing:
    @pytest.mark.parametrize(
        "value, expected",
        [("2500k", 2500), ("2500", 2500), (2500, 2500), ("2.5M", 2500), ("auto", None), (None, None)],
    )
    def test_bitrate(self, value, expected):
        assert parse_bitrate_kbps(value) == expected

    def test_bad_bitrate(self):
        with pytest.raises(ValueError):
            parse_bitrate_kbps("fast")

    def test_frame_rate_fraction(self):
        assert parse_frame_rate("30000/1001") == 29.97
        assert parse_frame_rate("0/0") is None


class TestResolve:
    def test_no_overrides_uses_native(self):
        settings = resolve_encode_settings(NATIVE)

        assert settings.size == "1920x1080"
        assert settings.video_bitrate_kbps == 6000
        assert settings.maxrate_kbps == 9000
        assert settings.bufsize_kbps == 12000
        assert settings.frame_rate == 29.97
        assert settings.gop == 60
        assert (settings.profile, settings.level) == ("high", "4.2")

    def test_unknown_native_values_fall_back(self):
        settings = resolve_encode_settings(ProbeResult())

        assert settings.size == "1280x720"
        assert settings.video_bitrate_kbps == 2500
        assert settings.frame_rate == 30.0

    def test_overrides_win_and_rest_fall_back_to_defaults(self):
        settings = resolve_encode_settings(NATIVE, EncodeOverrides(resolution="720p"))

        assert settings.size == "1280x720"
        # bitrate and frame rate ignore the native values once anything is overridden
        assert settings.video_bitrate_kbps == 2500
        assert settings.frame_rate == 30.0

    def test_bitrate_override_keeps_native_resolution(self):
        settings = resolve_encode_settings(NATIVE, EncodeOverrides(bitrate="4500k", resolution="auto"))

        assert settings.size == "1920x1080"
        assert settings.video_bitrate_kbps == 4500
        assert settings.maxrate_kbps == 6750

    def test_portrait_swaps_tier(self):
        settings = resolve_encode_settings(NATIVE, EncodeOverrides(resolution="1080p", orientation="portrait"))

        assert settings.size == "1080x1920"

    def test_unknown_tier_uses_native(self):
        settings = resolve_encode_settings(NATIVE, EncodeOverrides(resolution="8k", frame_rate=60))

        assert settings.size == "1920x1080"
        assert settings.frame_rate == 60.0
        assert settings.gop == 120

    def test_all_auto_counts_as_no_overrides(self):
        settings = resolve_encode_settings(NATIVE, EncodeOverrides(resolution="auto-detect", bitrate=""))

        assert settings.video_bitrate_kbps == 6000

    def test_small_source_is_clamped(self):
        settings = resolve_encode_settings(ProbeResult(width=480, height=270, frame_rate=25.0, bit_rate=800_000))

        assert settings.size == "854x480"
        assert (settings.profile, settings.level) == ("baseline", "3.0")


class TestProfile:
    @pytest.mark.parametrize(
        "height, expected",
        [
            (480, ("baseline", "3.0")),
            (720, ("main", "4.0")),
            (1080, ("high", "4.2")),
            (1440, ("high", "5.0")),
            (2160, ("high", "5.1")),
        ],
    )
    def test_levels(self, height, expected):
        assert h264_profile(height) == expected
