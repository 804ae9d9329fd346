"""Label a failed encoder run with exactly one :class:`ErrorKind`.

Checks run in priority order: user stop, crash, fatal configuration, memory
pressure, connection error, unclassified. A fault signal is never read as a
user stop, and a fatal-config signature wins over a connection signature.
"""

from __future__ import annotations

import signal
from dataclasses import dataclass
from typing import Iterable, List, Optional

from . import platforms
from .errors import ErrorKind
from .monitor import NetworkQualityMonitor
from .supervisor import STOP_SIGNALS, ProcessOutcome, signal_name

FATAL_PATTERNS = (
    "no such file",
    "permission denied",
    "invalid data found",
    "unrecognized option",
    "unknown encoder",
    "encoder not found",
    "option not found",
)

MEMORY_PATTERNS = (
    "cannot allocate memory",
    "out of memory",
)

CONNECTION_PATTERNS = (
    "connection refused",
    "connection reset",
    "reset by peer",
    "broken pipe",
    "stream key rejected",
    "invalid stream key",
    "http error",
    "timeout",
    "timed out",
    "network is unreachable",
    "no route to host",
)

FAULT_SIGNALS = frozenset({signal.SIGSEGV, signal.SIGBUS, signal.SIGILL, signal.SIGFPE, signal.SIGABRT})

# exit codes a wrapping shell reports for a child killed by a fault signal
SHELL_FAULT_CODES = {128 + signal.SIGSEGV: signal.SIGSEGV, 128 + signal.SIGABRT: signal.SIGABRT}

CRASH_HINTS = {
    signal.SIGSEGV: "This usually means insufficient memory, a codec library issue or a corrupt video file. "
    "Try reducing bitrate/resolution or increasing available memory.",
    signal.SIGBUS: "The source file may have been truncated or modified while streaming. Check the video file.",
    signal.SIGABRT: "The encoder aborted on an internal check. Re-encode or replace the video file.",
}
DEFAULT_CRASH_HINT = "Check the video file and the encoder installation."


@dataclass(frozen=True)
class Classification:
    kind: ErrorKind
    message: str
    retryable: bool = False
    detail: Optional[str] = None


def _first_match(lines: List[str], patterns: Iterable[str]) -> Optional[str]:
    """Return the first stderr line containing any of ``patterns``."""
    for line in lines:
        lowered = line.lower()
        if any(pattern in lowered for pattern in patterns):
            return line.strip()
    return None


def fault_signal(outcome: ProcessOutcome) -> Optional[int]:
    if outcome.signal in FAULT_SIGNALS:
        return outcome.signal
    if outcome.returncode in SHELL_FAULT_CODES:
        return SHELL_FAULT_CODES[outcome.returncode]
    return None


def is_user_stop(outcome: ProcessOutcome) -> bool:
    if outcome.stop_requested:
        return True
    return outcome.signal in STOP_SIGNALS and not outcome.stalled


def classify(
    outcome: ProcessOutcome,
    destination_url: Optional[str] = None,
    network: Optional[NetworkQualityMonitor] = None,
) -> Classification:
    classification = _classify(outcome, destination_url)
    if network is not None and network.is_unstable() and classification.kind is not ErrorKind.USER_STOP:
        status = network.status()
        classification = Classification(
            kind=classification.kind,
            message=(
                f"{classification.message} Network was unstable "
                f"(avg {status['average_bitrate']} kbps, deviation {status['bitrate_deviation']} kbps)."
            ),
            retryable=classification.retryable,
            detail=classification.detail,
        )
    return classification


def _classify(outcome: ProcessOutcome, destination_url: Optional[str]) -> Classification:
    detail = outcome.error_text or None
    fault = fault_signal(outcome)

    if fault is None and is_user_stop(outcome):
        return Classification(ErrorKind.USER_STOP, "Broadcast stopped by user")

    if fault is not None:
        name = signal_name(fault)
        hint = CRASH_HINTS.get(fault, DEFAULT_CRASH_HINT)
        return Classification(ErrorKind.CRASH, f"FFmpeg crashed ({name}). {hint}", detail=detail)

    lines = outcome.stderr_tail
    matched = _first_match(lines, FATAL_PATTERNS)
    if matched:
        return Classification(ErrorKind.FATAL_CONFIG, f"Encoder configuration error: {matched}", detail=detail)

    matched = _first_match(lines, MEMORY_PATTERNS)
    if matched:
        return Classification(
            ErrorKind.MEMORY_PRESSURE,
            "Memory error - try reducing bitrate/resolution or restarting",
            detail=detail,
        )

    if outcome.stalled:
        return Classification(
            ErrorKind.CONNECTION_ERROR,
            "Stream stalled: no encoder progress, treating as a lost connection",
            retryable=True,
            detail=detail,
        )

    matched = _first_match(lines, CONNECTION_PATTERNS + platforms.connection_patterns(destination_url))
    if matched:
        return Classification(
            ErrorKind.CONNECTION_ERROR, f"Connection to ingest failed: {matched}", retryable=True, detail=detail
        )

    last_line = lines[-1].strip() if lines else None
    message = outcome.describe() + (f": {last_line}" if last_line else "")
    return Classification(ErrorKind.UNCLASSIFIED, message, detail=detail)
