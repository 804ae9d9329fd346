"""Error taxonomy for the broadcast engine."""

from __future__ import annotations

from enum import Enum
from typing import Iterable, List, Optional


class ErrorKind(str, Enum):
    SOURCE_NOT_FOUND = "source_not_found"
    SOURCE_INVALID = "source_invalid"
    ALREADY_ACTIVE = "already_active"
    NOT_ACTIVE = "not_active"
    FATAL_CONFIG = "fatal_config"
    MEMORY_PRESSURE = "memory_pressure"
    CRASH = "crash"
    CONNECTION_ERROR = "connection_error"
    UNCLASSIFIED = "unclassified"
    USER_STOP = "user_stop"


class BroadcastError(Exception):
    """Base class for errors returned to callers of start/stop."""

    kind = ErrorKind.UNCLASSIFIED

    def __init__(self, message: str, broadcast_id: Optional[str] = None):
        super().__init__(message)
        self.broadcast_id = broadcast_id


class SourceNotFound(BroadcastError):
    kind = ErrorKind.SOURCE_NOT_FOUND

    def __init__(self, missing: Iterable[str], checked_paths: Iterable[str], broadcast_id: Optional[str] = None):
        self.missing: List[str] = list(missing)
        self.checked_paths: List[str] = list(checked_paths)
        message = f"Video file not found: {', '.join(self.missing)}"
        if self.checked_paths:
            message += "\nAlso checked:\n" + "\n".join(self.checked_paths)
        super().__init__(message, broadcast_id)


class SourceInvalid(BroadcastError):
    kind = ErrorKind.SOURCE_INVALID


class AlreadyActive(BroadcastError):
    kind = ErrorKind.ALREADY_ACTIVE

    def __init__(self, broadcast_id: str):
        super().__init__(f"Broadcast {broadcast_id} is already active", broadcast_id)


class NotActive(BroadcastError):
    kind = ErrorKind.NOT_ACTIVE

    def __init__(self, broadcast_id: str):
        super().__init__(f"Broadcast {broadcast_id} is not active", broadcast_id)


class UnknownBroadcast(BroadcastError):
    def __init__(self, broadcast_id: str):
        super().__init__(f"Unknown broadcast {broadcast_id}", broadcast_id)


class EncoderLaunchError(BroadcastError):
    """The encoder binary could not be spawned at all."""

    kind = ErrorKind.FATAL_CONFIG
