"""ffprobe wrapper used during source preparation."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

from .encoding import parse_frame_rate
from .errors import SourceInvalid
from .models import ProbeResult

logger = logging.getLogger(__name__)


def _to_int(value: Any) -> Optional[int]:
    try:
        number = int(float(value))
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


def _rotation(stream: Dict[str, Any]) -> int:
    rotate = stream.get("tags", {}).get("rotate")
    if rotate is None:
        for side_data in stream.get("side_data_list", []):
            if "rotation" in side_data:
                rotate = side_data["rotation"]
                break
    try:
        return abs(int(float(rotate))) % 360 if rotate is not None else 0
    except (TypeError, ValueError):
        return 0


def parse_probe_output(data: Dict[str, Any]) -> ProbeResult:
    """Build a :class:`ProbeResult` from ``ffprobe -print_format json`` output."""
    streams = data.get("streams", [])
    fmt = data.get("format", {})
    video = next((s for s in streams if s.get("codec_type") == "video"), None)
    has_audio = any(s.get("codec_type") == "audio" for s in streams)

    result = ProbeResult(has_audio=has_audio)
    if fmt.get("duration") not in (None, "N/A"):
        try:
            result.duration = float(fmt["duration"])
        except (TypeError, ValueError):
            pass
    if video is None:
        result.bit_rate = _to_int(fmt.get("bit_rate"))
        return result

    width, height = _to_int(video.get("width")), _to_int(video.get("height"))
    # phone footage is stored landscape with a rotation flag
    if width and height and _rotation(video) in (90, 270):
        width, height = height, width
    result.width, result.height = width, height
    result.frame_rate = parse_frame_rate(video.get("avg_frame_rate")) or parse_frame_rate(video.get("r_frame_rate"))
    result.bit_rate = _to_int(video.get("bit_rate")) or _to_int(fmt.get("bit_rate"))
    return result


class MediaProbe:
    """Run ffprobe against a local file."""

    def __init__(self, ffprobe_path: str = "ffprobe", timeout: float = 30.0):
        self.ffprobe_path = ffprobe_path
        self.timeout = timeout

    async def probe(self, path: Union[str, Path]) -> ProbeResult:
        args = [
            self.ffprobe_path,
            "-v",
            "error",
            "-print_format",
            "json",
            "-show_format",
            "-show_streams",
            str(path),
        ]
        try:
            process = await asyncio.create_subprocess_exec(
                *args, stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE
            )
        except OSError as exc:
            raise SourceInvalid(f"Could not run ffprobe ({self.ffprobe_path}): {exc}") from exc

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            process.kill()
            await process.wait()
            raise SourceInvalid(f"ffprobe timed out reading {path}") from exc

        if process.returncode != 0:
            detail = stderr.decode(errors="replace").strip() or f"exit code {process.returncode}"
            raise SourceInvalid(f"Could not read media file {path}: {detail}")
        try:
            data = json.loads(stdout.decode(errors="replace") or "{}")
        except json.JSONDecodeError as exc:
            raise SourceInvalid(f"Unexpected ffprobe output for {path}") from exc

        result = parse_probe_output(data)
        logger.debug(
            "Probed %s: %sx%s @ %s fps, %s bps, audio=%s",
            path,
            result.width,
            result.height,
            result.frame_rate,
            result.bit_rate,
            result.has_audio,
        )
        return result
