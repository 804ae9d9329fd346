"""Configuration helpers for the broadcast engine."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple


NOTIFIED_STATUSES = ("active", "reconnecting", "completed", "failed", "stopped")


@dataclass
class NotifierConfig:
    webhook_url: Optional[str] = None
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_username: Optional[str] = None
    smtp_password: Optional[str] = None
    email_from: Optional[str] = None
    email_to: Optional[str] = None
    # broadcast status values that trigger a notification
    notify_on: Tuple[str, ...] = NOTIFIED_STATUSES


@dataclass
class EngineConfig:
    project_name: str = "Broadcast Engine"
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    ffmpeg_loglevel: str = "warning"
    x264_preset: str = "veryfast"
    storage_dir: Path = Path("storage")
    uploads_dir: Path = Path("storage/uploads")
    media_dir: Path = Path("storage/media")
    temp_dir: Path = Path("storage/temp")
    default_bitrate: str = "2500k"
    default_frame_rate: float = 30.0
    max_reconnect_attempts: int = 4
    backoff_base_seconds: float = 1.0
    backoff_max_seconds: float = 60.0
    stop_grace_seconds: float = 2.0
    stuck_threshold_seconds: float = 30.0
    health_check_interval_seconds: float = 10.0
    bitrate_window: int = 60
    instability_ratio: float = 0.3
    progress_sample_seconds: float = 10.0
    playlist_repeat: int = 1000
    preflight_delay_seconds: float = 3.0
    scheduler_interval_seconds: int = 30
    notifier: NotifierConfig = field(default_factory=NotifierConfig)


def _split_statuses(value: Optional[str]) -> Tuple[str, ...]:
    if not value:
        return NOTIFIED_STATUSES
    return tuple(part.strip().lower() for part in value.split(",") if part.strip())


def load_config() -> EngineConfig:
    """Load configuration from environment variables."""
    notifier = NotifierConfig(
        webhook_url=os.getenv("NOTIFY_WEBHOOK_URL"),
        smtp_host=os.getenv("SMTP_HOST"),
        smtp_port=int(os.getenv("SMTP_PORT", "587")),
        smtp_username=os.getenv("SMTP_USERNAME"),
        smtp_password=os.getenv("SMTP_PASSWORD"),
        email_from=os.getenv("NOTIFY_EMAIL_FROM"),
        email_to=os.getenv("NOTIFY_EMAIL_TO"),
        notify_on=_split_statuses(os.getenv("NOTIFY_ON")),
    )

    storage_dir = Path(os.getenv("STORAGE_DIR", "storage"))
    return EngineConfig(
        project_name=os.getenv("PROJECT_NAME", "Broadcast Engine"),
        ffmpeg_path=os.getenv("FFMPEG_PATH", "ffmpeg"),
        ffprobe_path=os.getenv("FFPROBE_PATH", "ffprobe"),
        ffmpeg_loglevel=os.getenv("FFMPEG_LOGLEVEL", "warning"),
        x264_preset=os.getenv("X264_PRESET", "veryfast"),
        storage_dir=storage_dir,
        uploads_dir=Path(os.getenv("UPLOADS_DIR", str(storage_dir / "uploads"))),
        media_dir=Path(os.getenv("MEDIA_DIR", str(storage_dir / "media"))),
        temp_dir=Path(os.getenv("TEMP_DIR", str(storage_dir / "temp"))),
        default_bitrate=os.getenv("DEFAULT_BITRATE", "2500k"),
        default_frame_rate=float(os.getenv("DEFAULT_FRAME_RATE", "30")),
        max_reconnect_attempts=int(os.getenv("MAX_RECONNECT_ATTEMPTS", "4")),
        backoff_base_seconds=float(os.getenv("BACKOFF_BASE_SECONDS", "1")),
        backoff_max_seconds=float(os.getenv("BACKOFF_MAX_SECONDS", "60")),
        stop_grace_seconds=float(os.getenv("STOP_GRACE_SECONDS", "2")),
        stuck_threshold_seconds=float(os.getenv("STUCK_THRESHOLD_SECONDS", "30")),
        health_check_interval_seconds=float(os.getenv("HEALTH_CHECK_INTERVAL_SECONDS", "10")),
        bitrate_window=int(os.getenv("BITRATE_WINDOW", "60")),
        instability_ratio=float(os.getenv("INSTABILITY_RATIO", "0.3")),
        progress_sample_seconds=float(os.getenv("PROGRESS_SAMPLE_SECONDS", "10")),
        playlist_repeat=int(os.getenv("PLAYLIST_REPEAT", "1000")),
        preflight_delay_seconds=float(os.getenv("PREFLIGHT_DELAY_SECONDS", "3")),
        scheduler_interval_seconds=int(os.getenv("SCHEDULER_INTERVAL_SECONDS", "30")),
        notifier=notifier,
    )
