"""Resolve output encode parameters for a broadcast.

The resolver is a pure function: it takes what ffprobe told us about the
source plus whatever the user picked in the broadcast's advanced settings and
returns a fully-resolved :class:`EncodeSettings` with no "auto" values left.

When the user picked nothing, the source's native bitrate, frame rate and
resolution are used. As soon as any override is present, the overrides win for
the fields they set and the remaining fields fall back to the native
resolution and the configured default bitrate / frame rate.
"""

from __future__ import annotations

import re
from typing import Optional, Tuple, Union

from .models import EncodeOverrides, EncodeSettings, ProbeResult

RESOLUTION_TIERS = {
    "720p": (1280, 720),
    "1080p": (1920, 1080),
    "1440p": (2560, 1440),
    "2160p": (3840, 2160),
}

AUTO_VALUES = {"", "auto", "auto-detect"}
MIN_HEIGHT = 480
FALLBACK_RESOLUTION = (1280, 720)

# (minimum output height, profile, level), highest first
H264_PROFILES = [
    (2160, "high", "5.1"),
    (1440, "high", "5.0"),
    (1080, "high", "4.2"),
    (720, "main", "4.0"),
    (0, "baseline", "3.0"),
]

_BITRATE_RE = re.compile(r"^(\d+(?:\.\d+)?)\s*([km]?)(?:bps|b)?$")


def _is_unset(value) -> bool:
    if value is None:
        return True
    if isinstance(value, str) and value.strip().lower() in AUTO_VALUES:
        return True
    return False


def parse_bitrate_kbps(value: Union[str, int, float, None]) -> Optional[int]:
    """Parse ``"2500k"``, ``"2500"``, ``2500`` or ``"2.5M"`` into kbps."""
    if _is_unset(value):
        return None
    if isinstance(value, (int, float)):
        return int(value) if value > 0 else None
    match = _BITRATE_RE.match(str(value).strip().lower())
    if not match:
        raise ValueError(f"Unrecognised bitrate: {value!r}")
    number = float(match.group(1))
    if match.group(2) == "m":
        number *= 1000
    kbps = int(number + 0.5)
    return kbps or None


def parse_frame_rate(value: Union[str, float, int, None]) -> Optional[float]:
    if _is_unset(value):
        return None
    text = str(value).strip()
    if "/" in text:
        num, _, den = text.partition("/")
        try:
            denominator = float(den)
            rate = float(num) / denominator if denominator else 0.0
        except ValueError:
            return None
    else:
        try:
            rate = float(text)
        except ValueError:
            return None
    return round(rate, 3) if rate > 0 else None


def _even(value: int) -> int:
    return value if value % 2 == 0 else value + 1


def clamp_resolution(width: int, height: int) -> Tuple[int, int]:
    """Scale up to at least 480 lines, keeping aspect, with even dimensions (x264)."""
    if height < MIN_HEIGHT:
        scale = MIN_HEIGHT / height
        width = int(width * scale + 0.5)
        height = MIN_HEIGHT
    return _even(width), _even(height)


def native_resolution(probe: ProbeResult) -> Tuple[int, int]:
    if probe.width and probe.height:
        return clamp_resolution(probe.width, probe.height)
    return FALLBACK_RESOLUTION


def tier_resolution(tier: Optional[str], orientation: Optional[str] = None) -> Optional[Tuple[int, int]]:
    if _is_unset(tier):
        return None
    dims = RESOLUTION_TIERS.get(str(tier).strip().lower())
    if dims is None:
        return None
    width, height = dims
    if orientation and orientation.strip().lower() == "portrait":
        return height, width
    return width, height


def h264_profile(height: int) -> Tuple[str, str]:
    for min_height, profile, level in H264_PROFILES:
        if height >= min_height:
            return profile, level
    return "baseline", "3.0"


def has_overrides(overrides: Optional[EncodeOverrides]) -> bool:
    if overrides is None:
        return False
    return not all(
        _is_unset(value)
        for value in (overrides.resolution, overrides.bitrate, overrides.frame_rate, overrides.orientation)
    )


def resolve_encode_settings(
    probe: ProbeResult,
    overrides: Optional[EncodeOverrides] = None,
    default_bitrate: Union[str, int] = "2500k",
    default_frame_rate: float = 30.0,
) -> EncodeSettings:
    fallback_kbps = parse_bitrate_kbps(default_bitrate) or 2500
    native_kbps = int(probe.bit_rate / 1000 + 0.5) if probe.bit_rate else None

    if not has_overrides(overrides):
        width, height = native_resolution(probe)
        bitrate = native_kbps or fallback_kbps
        frame_rate = probe.frame_rate or default_frame_rate
    else:
        dims = tier_resolution(overrides.resolution, overrides.orientation)
        width, height = dims or native_resolution(probe)
        bitrate = parse_bitrate_kbps(overrides.bitrate) or fallback_kbps
        frame_rate = parse_frame_rate(overrides.frame_rate) or default_frame_rate

    profile, level = h264_profile(height)
    return EncodeSettings(
        width=width,
        height=height,
        video_bitrate_kbps=bitrate,
        maxrate_kbps=int(bitrate * 1.5),
        bufsize_kbps=bitrate * 2,
        frame_rate=frame_rate,
        gop=max(1, int(frame_rate * 2 + 0.5)),
        profile=profile,
        level=level,
    )
