"""Supervise one ffmpeg process for one broadcast attempt.

The supervisor owns the subprocess and turns its output into discrete events
(``Started``, ``Progress``, ``Ended``, ``Errored``) for a listener. Decisions
are made on the single :class:`ProcessOutcome` returned by :meth:`wait`, not on
the events; those are for bookkeeping (status writes, telemetry, logs).

ffmpeg is run with ``-progress pipe:1 -nostats`` so stdout carries
``key=value`` progress blocks terminated by a ``progress=continue|end`` line,
while stderr carries the human-readable log used for failure classification.
"""

from __future__ import annotations

import asyncio
import logging
import signal
from collections import deque
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Deque, Dict, List, Optional, Union

from .errors import EncoderLaunchError

logger = logging.getLogger(__name__)

STOP_SIGNALS = (signal.SIGTERM, signal.SIGKILL)


@dataclass
class Progress:
    timemark: Optional[str] = None
    seconds: Optional[float] = None
    fps: Optional[float] = None
    bitrate_kbps: Optional[float] = None
    frame: Optional[int] = None
    speed: Optional[float] = None
    finished: bool = False


@dataclass
class ProcessOutcome:
    returncode: Optional[int]
    stderr_tail: List[str] = field(default_factory=list)
    stop_requested: bool = False
    stalled: bool = False
    sent_signal: Optional[int] = None

    @property
    def signal(self) -> Optional[int]:
        if self.returncode is not None and self.returncode < 0:
            return -self.returncode
        return None

    @property
    def succeeded(self) -> bool:
        return self.returncode == 0 and not self.stop_requested and not self.stalled

    @property
    def error_text(self) -> str:
        return "\n".join(self.stderr_tail)

    def describe(self) -> str:
        if self.returncode is None:
            return "encoder was not started"
        if self.signal:
            return f"ffmpeg was killed with signal {signal_name(self.signal)}"
        return f"ffmpeg exited with code {self.returncode}"


@dataclass
class Started:
    command: List[str]
    pid: Optional[int]


@dataclass
class Ended:
    outcome: ProcessOutcome


@dataclass
class Errored:
    outcome: ProcessOutcome


Event = Union[Started, Progress, Ended, Errored]
EventListener = Callable[[Event], Awaitable[None]]


def signal_name(signum: int) -> str:
    try:
        return signal.Signals(signum).name
    except ValueError:
        return f"signal {signum}"


def _float(value: Optional[str]) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value.rstrip("x"))
    except ValueError:
        return None


def _parse_timemark(value: str) -> Optional[float]:
    parts = value.split(":")
    if len(parts) != 3 or value.startswith("-"):
        return None
    try:
        hours, minutes, seconds = int(parts[0]), int(parts[1]), float(parts[2])
    except ValueError:
        return None
    return hours * 3600 + minutes * 60 + seconds


def progress_from_block(block: Dict[str, str]) -> Progress:
    seconds: Optional[float] = None
    # out_time_ms is in microseconds as well
    for key in ("out_time_us", "out_time_ms"):
        raw = block.get(key)
        if raw and raw.lstrip("-").isdigit():
            micros = int(raw)
            seconds = micros / 1_000_000 if micros >= 0 else None
            break
    timemark = block.get("out_time")
    if timemark and _parse_timemark(timemark) is None:
        timemark = None
    if seconds is None and timemark:
        seconds = _parse_timemark(timemark)

    bitrate = block.get("bitrate", "")
    bitrate_kbps = _float(bitrate[: -len("kbits/s")]) if bitrate.endswith("kbits/s") else None
    frame = block.get("frame")
    return Progress(
        timemark=timemark,
        seconds=seconds,
        fps=_float(block.get("fps")),
        bitrate_kbps=bitrate_kbps,
        frame=int(frame) if frame and frame.isdigit() else None,
        speed=_float(block.get("speed")),
        finished=block.get("progress") == "end",
    )


class ProgressParser:
    """Accumulates ``-progress`` lines and yields one :class:`Progress` per block."""

    def __init__(self) -> None:
        self._block: Dict[str, str] = {}

    def feed(self, line: str) -> Optional[Progress]:
        key, sep, value = line.strip().partition("=")
        if not sep:
            return None
        self._block[key.strip()] = value.strip()
        if key.strip() != "progress":
            return None
        progress = progress_from_block(self._block)
        self._block = {}
        return progress


class ProcessSupervisor:
    def __init__(
        self,
        broadcast_id: str,
        command: List[str],
        on_event: Optional[EventListener] = None,
        grace_period: float = 2.0,
        stderr_lines: int = 50,
        spawn=asyncio.create_subprocess_exec,
    ):
        self.broadcast_id = broadcast_id
        self.command = command
        self.on_event = on_event
        self.grace_period = grace_period
        self._spawn = spawn
        self._process = None
        self._stderr: Deque[str] = deque(maxlen=stderr_lines)
        self._stop_requested = False
        self._stalled = False
        self._sent_signal: Optional[int] = None

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process else None

    @property
    def is_running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    async def start(self) -> None:
        if self._stop_requested:
            logger.info("Broadcast %s: stop requested before spawn, not starting encoder", self.broadcast_id)
            return
        try:
            self._process = await self._spawn(
                *self.command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise EncoderLaunchError(
                f"Could not start encoder {self.command[0]}: {exc}", self.broadcast_id
            ) from exc
        if self._stop_requested:
            # stop() arrived while the spawn was in flight
            await self._terminate()
            return
        logger.info("Broadcast %s: ffmpeg started (pid %s)", self.broadcast_id, self._process.pid)
        logger.debug("Broadcast %s: ffmpeg command: %s", self.broadcast_id, " ".join(self.command))
        await self._emit(Started(list(self.command), self._process.pid))

    async def wait(self) -> ProcessOutcome:
        if self._process is None:
            return ProcessOutcome(None, stop_requested=self._stop_requested)

        await asyncio.gather(self._read_progress(), self._read_stderr())
        returncode = await self._process.wait()
        outcome = ProcessOutcome(
            returncode=returncode,
            stderr_tail=list(self._stderr),
            stop_requested=self._stop_requested,
            stalled=self._stalled,
            sent_signal=self._sent_signal,
        )
        if outcome.succeeded:
            logger.info("Broadcast %s: ffmpeg ended normally", self.broadcast_id)
            await self._emit(Ended(outcome))
        else:
            logger.info("Broadcast %s: %s", self.broadcast_id, outcome.describe())
            await self._emit(Errored(outcome))
        return outcome

    async def stop(self) -> None:
        """Terminate gracefully, force-kill after the grace period."""
        self._stop_requested = True
        await self._terminate()

    async def abort_stalled(self) -> None:
        self._stalled = True
        await self._terminate()

    async def _terminate(self) -> None:
        process = self._process
        if process is None or process.returncode is not None:
            return
        try:
            process.terminate()
            self._sent_signal = signal.SIGTERM
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(process.wait(), timeout=self.grace_period)
        except asyncio.TimeoutError:
            logger.warning(
                "Broadcast %s: ffmpeg still alive after %.1fs, sending SIGKILL", self.broadcast_id, self.grace_period
            )
            try:
                process.kill()
                self._sent_signal = signal.SIGKILL
            except ProcessLookupError:
                return
            await process.wait()

    async def _emit(self, event: Event) -> None:
        if self.on_event is None:
            return
        try:
            await self.on_event(event)
        except Exception:  # noqa: BLE001
            logger.exception("Broadcast %s: event listener failed on %s", self.broadcast_id, type(event).__name__)

    async def _read_progress(self) -> None:
        stream = self._process.stdout
        if stream is None:
            return
        parser = ProgressParser()
        while True:
            line = await stream.readline()
            if not line:
                break
            progress = parser.feed(line.decode(errors="replace"))
            if progress is not None:
                await self._emit(progress)

    async def _read_stderr(self) -> None:
        stream = self._process.stderr
        if stream is None:
            return
        while True:
            line = await stream.readline()
            if not line:
                break
            text = line.decode(errors="replace").rstrip()
            if not text:
                continue
            self._stderr.append(text)
            lowered = text.lower()
            level = logging.WARNING if "error" in lowered or "fatal" in lowered else logging.DEBUG
            logger.log(level, "ffmpeg:%s %s", self.broadcast_id, text)
