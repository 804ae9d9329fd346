"""Stream health and network quality telemetry."""

from __future__ import annotations

import asyncio
import logging
import math
import time
from collections import deque
from typing import Awaitable, Callable, Deque, Dict, Optional

from .supervisor import Progress

logger = logging.getLogger(__name__)


class HealthMonitor:
    """Tracks progress events for one attempt and detects stuck streams."""

    def __init__(
        self,
        broadcast_id: str,
        stuck_threshold: float = 30.0,
        check_interval: float = 10.0,
        max_errors: int = 5,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.broadcast_id = broadcast_id
        self.stuck_threshold = stuck_threshold
        self.check_interval = check_interval
        self.max_errors = max_errors
        self._clock = clock
        self.last_progress_time = clock()
        self.last_timemark: Optional[str] = None
        self.bitrate_kbps: Optional[float] = None
        self.fps: Optional[float] = None
        self.error_count = 0
        self.is_healthy = True

    def update_progress(self, progress: Progress) -> None:
        self.last_progress_time = self._clock()
        self.last_timemark = progress.timemark
        self.bitrate_kbps = progress.bitrate_kbps
        self.fps = progress.fps

    def record_error(self) -> None:
        self.error_count += 1
        if self.error_count >= self.max_errors and self.is_healthy:
            self.is_healthy = False
            logger.error("Broadcast %s: connection degraded, %d errors detected", self.broadcast_id, self.error_count)

    def seconds_since_progress(self) -> float:
        return self._clock() - self.last_progress_time

    def is_stuck(self) -> bool:
        return self.seconds_since_progress() > self.stuck_threshold

    async def watch(self, on_stuck: Callable[[], Awaitable[None]]) -> None:
        """Poll until the stream looks stuck, report it once and return."""
        while True:
            await asyncio.sleep(self.check_interval)
            if self.is_stuck():
                logger.warning(
                    "Broadcast %s: no progress for %.0fs, stream appears to be stuck",
                    self.broadcast_id,
                    self.seconds_since_progress(),
                )
                self.record_error()
                await on_stuck()
                return

    def status(self) -> Dict[str, object]:
        return {
            "is_healthy": self.is_healthy,
            "is_stuck": self.is_stuck(),
            "error_count": self.error_count,
            "seconds_since_progress": round(self.seconds_since_progress(), 1),
            "bitrate_kbps": self.bitrate_kbps,
            "fps": self.fps,
            "last_timemark": self.last_timemark,
        }


class NetworkQualityMonitor:
    """Rolling window of outbound bitrate samples."""

    def __init__(self, broadcast_id: str, max_samples: int = 60, instability_ratio: float = 0.3):
        self.broadcast_id = broadcast_id
        self.instability_ratio = instability_ratio
        self.samples: Deque[float] = deque(maxlen=max_samples)
        self.reconnect_attempts = 0

    def record_bitrate(self, bitrate_kbps: Optional[float]) -> None:
        if bitrate_kbps is None or bitrate_kbps <= 0:
            return
        self.samples.append(float(bitrate_kbps))

    def record_reconnect_attempt(self) -> None:
        self.reconnect_attempts += 1

    def average_bitrate(self) -> float:
        if not self.samples:
            return 0.0
        return sum(self.samples) / len(self.samples)

    def bitrate_deviation(self) -> float:
        if len(self.samples) < 2:
            return 0.0
        mean = self.average_bitrate()
        return math.sqrt(sum((sample - mean) ** 2 for sample in self.samples) / len(self.samples))

    def is_unstable(self) -> bool:
        mean = self.average_bitrate()
        if mean <= 0:
            return False
        return self.bitrate_deviation() / mean > self.instability_ratio

    def status(self) -> Dict[str, object]:
        return {
            "average_bitrate": round(self.average_bitrate()),
            "bitrate_deviation": round(self.bitrate_deviation()),
            "is_unstable": self.is_unstable(),
            "reconnect_attempts": self.reconnect_attempts,
            "sample_count": len(self.samples),
        }
