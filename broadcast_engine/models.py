"""Domain models for broadcasts."""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Union


class BroadcastStatus(str, Enum):
    SCHEDULED = "scheduled"
    OFFLINE = "offline"
    ACTIVE = "active"
    RECONNECTING = "reconnecting"
    COMPLETED = "completed"
    FAILED = "failed"
    STOPPED = "stopped"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({BroadcastStatus.COMPLETED, BroadcastStatus.FAILED, BroadcastStatus.STOPPED})


@dataclass
class MediaAsset:
    """A stored media file as recorded by the content library."""

    stored_path: str
    asset_id: Optional[str] = None
    title: Optional[str] = None


@dataclass
class SingleAssetSource:
    asset: MediaAsset
    loop: bool = True


@dataclass
class PlaylistSource:
    items: List[MediaAsset]
    shuffle: bool = False
    loop: bool = True
    playlist_id: Optional[str] = None


SourceDescriptor = Union[SingleAssetSource, PlaylistSource]


@dataclass
class EncodeOverrides:
    """User-supplied encode settings; ``None`` means derive from the source."""

    resolution: Optional[str] = None
    bitrate: Optional[Union[str, int]] = None
    frame_rate: Optional[float] = None
    orientation: Optional[str] = None


@dataclass(frozen=True)
class EncodeSettings:
    width: int
    height: int
    video_bitrate_kbps: int
    maxrate_kbps: int
    bufsize_kbps: int
    frame_rate: float
    gop: int
    profile: str
    level: str
    audio_bitrate_kbps: int = 128
    audio_sample_rate: int = 44100
    audio_channels: int = 2

    @property
    def size(self) -> str:
        return f"{self.width}x{self.height}"


@dataclass
class ProbeResult:
    width: Optional[int] = None
    height: Optional[int] = None
    frame_rate: Optional[float] = None
    bit_rate: Optional[int] = None
    has_audio: bool = True
    duration: Optional[float] = None


@dataclass
class BroadcastRecord:
    id: str
    destination_url: str
    content: SourceDescriptor
    stream_key: Optional[str] = None
    encode_settings: Optional[EncodeOverrides] = None
    status: BroadcastStatus = BroadcastStatus.OFFLINE
    error_message: Optional[str] = None
    duration_limit: Optional[int] = None
    scheduled_at: Optional[dt.datetime] = None
    started_at: Optional[dt.datetime] = None
    ended_at: Optional[dt.datetime] = None
    history: List[str] = field(default_factory=list)
