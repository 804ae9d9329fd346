"""Build the ffmpeg argument list for one broadcast attempt."""

from __future__ import annotations

from typing import List, Optional

from .config import EngineConfig
from .models import EncodeSettings
from .sources import PreparedInput

SILENT_AUDIO_SOURCE = "anullsrc=channel_layout=stereo:sample_rate=44100"


def format_frame_rate(frame_rate: float) -> str:
    if float(frame_rate).is_integer():
        return str(int(frame_rate))
    return f"{frame_rate:.3f}".rstrip("0").rstrip(".")


def input_args(prepared: PreparedInput) -> List[str]:
    args = [
        "-re",
        "-fflags",
        "+genpts+igndts",
        "-avoid_negative_ts",
        "make_zero",
    ]
    if prepared.is_playlist:
        args.extend(["-f", "concat", "-safe", "0"])
    elif prepared.loop:
        args.extend(["-stream_loop", "-1"])
    args.extend(["-i", str(prepared.input_path)])
    return args


def video_filter(settings: EncodeSettings) -> str:
    w, h = settings.width, settings.height
    return (
        f"scale={w}:{h}:force_original_aspect_ratio=decrease,"
        f"pad={w}:{h}:(ow-iw)/2:(oh-ih)/2,setsar=1"
    )


def output_args(settings: EncodeSettings, preset: str, duration_limit: Optional[int] = None) -> List[str]:
    args = [
        "-c:v",
        "libx264",
        "-preset",
        preset,
        "-tune",
        "zerolatency",
        "-profile:v",
        settings.profile,
        "-level",
        settings.level,
        "-b:v",
        f"{settings.video_bitrate_kbps}k",
        "-maxrate",
        f"{settings.maxrate_kbps}k",
        "-bufsize",
        f"{settings.bufsize_kbps}k",
        "-pix_fmt",
        "yuv420p",
        "-g",
        str(settings.gop),
        "-r",
        format_frame_rate(settings.frame_rate),
        "-vf",
        video_filter(settings),
        "-c:a",
        "aac",
        "-b:a",
        f"{settings.audio_bitrate_kbps}k",
        "-ar",
        str(settings.audio_sample_rate),
        "-ac",
        str(settings.audio_channels),
        "-max_muxing_queue_size",
        "1024",
    ]
    if duration_limit and duration_limit > 0:
        args.extend(["-t", str(int(duration_limit))])
    return args


def build_ffmpeg_command(
    prepared: PreparedInput,
    settings: EncodeSettings,
    destination: str,
    config: EngineConfig,
    duration_limit: Optional[int] = None,
) -> List[str]:
    args = [config.ffmpeg_path, "-hide_banner", "-loglevel", config.ffmpeg_loglevel, *input_args(prepared)]

    if prepared.has_audio:
        maps = ["-map", "0:v:0", "-map", "0:a:0"]
    else:
        # video is input 0, the unbounded silent track input 1
        args.extend(["-f", "lavfi", "-i", SILENT_AUDIO_SOURCE])
        maps = ["-map", "0:v:0", "-map", "1:a:0", "-shortest"]

    args.extend(maps)
    args.extend(output_args(settings, config.x264_preset, duration_limit))
    args.extend(["-progress", "pipe:1", "-nostats", "-f", "flv", destination])
    return args
