"""Destination-specific behaviour for known ingest platforms."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple


@dataclass(frozen=True)
class PlatformQuirk:
    name: str
    url_patterns: Tuple[str, ...]
    # the ingest keeps the previous connection open for a few seconds
    drains_previous_connection: bool = False
    connection_patterns: Tuple[str, ...] = ()
    exhaustion_hint: Optional[str] = None

    def matches(self, url: str) -> bool:
        return any(pattern in url for pattern in self.url_patterns)


FACEBOOK = PlatformQuirk(
    name="facebook",
    url_patterns=("facebook.com", "live-api-s.facebook.com", "live-api.facebook.com", "rtmps://live-api"),
    drains_previous_connection=True,
    connection_patterns=("already publishing", "stream not found"),
    exhaustion_hint="Facebook may still hold the previous connection. Wait 10-15 seconds before starting again.",
)

YOUTUBE = PlatformQuirk(
    name="youtube",
    url_patterns=("youtube.com", "youtu.be", "rtmp.youtube.com", "rtsps://a.rtmp.youtube.com"),
    exhaustion_hint=(
        "Check: (1) YouTube stream key is valid, (2) Network connection is stable, "
        "(3) YouTube account has streaming enabled"
    ),
)

KNOWN_PLATFORMS = (FACEBOOK, YOUTUBE)


def platform_for(url: str) -> Optional[PlatformQuirk]:
    for platform in KNOWN_PLATFORMS:
        if platform.matches(url or ""):
            return platform
    return None


def preflight_delay(url: str, delay_seconds: float) -> float:
    """Seconds to wait before the first spawn towards ``url``."""
    platform = platform_for(url)
    if platform and platform.drains_previous_connection:
        return delay_seconds
    return 0.0


def connection_patterns(url: Optional[str]) -> Tuple[str, ...]:
    platform = platform_for(url) if url else None
    return platform.connection_patterns if platform else ()


def exhaustion_hint(url: Optional[str]) -> Optional[str]:
    platform = platform_for(url) if url else None
    return platform.exhaustion_hint if platform else None


def build_destination(destination_url: str, stream_key: Optional[str]) -> str:
    base = destination_url[:-1] if destination_url.endswith("/") else destination_url
    return f"{base}/{stream_key}" if stream_key else base
