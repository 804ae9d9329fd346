"""In-memory registry of running broadcasts."""

from __future__ import annotations

import asyncio
import contextlib
import datetime as dt
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

from dateutil.tz import tzutc

from .errors import AlreadyActive
from .models import EncodeSettings
from .monitor import HealthMonitor, NetworkQualityMonitor
from .recovery import RetryState
from .sources import PreparedInput

logger = logging.getLogger(__name__)

LOG_TAIL = 100


@dataclass
class BroadcastSession:
    """One encoder attempt for a broadcast. Replaced, never mutated, on retry."""

    broadcast_id: str
    destination_url: str
    retry_state: RetryState
    health: HealthMonitor
    network: NetworkQualityMonitor
    prepared: PreparedInput
    settings: EncodeSettings
    handle: Any = None
    started_at: dt.datetime = field(default_factory=lambda: dt.datetime.now(tzutc()))
    attempt: int = 0
    last_sample: Optional[int] = None
    run: Any = field(default=None, repr=False)
    log: List[str] = field(default_factory=list)

    def append_log(self, message: str) -> None:
        timestamp = dt.datetime.now(tzutc()).isoformat()
        self.log.append(f"[{timestamp}] {message}")
        if len(self.log) > LOG_TAIL:
            del self.log[: len(self.log) - LOG_TAIL]


class SessionRegistry:
    """Map of broadcast id to its current session.

    Callers hold :meth:`lock` for the id around check-then-spawn and around
    replace/remove, so two coroutines never race on the same broadcast.
    """

    def __init__(self) -> None:
        self._sessions: Dict[str, BroadcastSession] = {}
        # broadcast id -> (lock, number of coroutines holding or waiting on it)
        self._locks: Dict[str, Tuple[asyncio.Lock, int]] = {}

    @contextlib.asynccontextmanager
    async def lock(self, broadcast_id: str) -> AsyncIterator[None]:
        """Serialise work on one broadcast id; the lock is dropped once nobody uses it."""
        lock, users = self._locks.get(broadcast_id, (None, 0))
        if lock is None:
            lock = asyncio.Lock()
        self._locks[broadcast_id] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            _, users = self._locks[broadcast_id]
            if users == 1:
                del self._locks[broadcast_id]
            else:
                self._locks[broadcast_id] = (lock, users - 1)

    def lock_count(self) -> int:
        return len(self._locks)

    def get(self, broadcast_id: str) -> Optional[BroadcastSession]:
        return self._sessions.get(broadcast_id)

    def is_active(self, broadcast_id: str) -> bool:
        return broadcast_id in self._sessions

    def count(self) -> int:
        return len(self._sessions)

    def ids(self) -> List[str]:
        return list(self._sessions.keys())

    def register(self, session: BroadcastSession) -> None:
        if session.broadcast_id in self._sessions:
            raise AlreadyActive(session.broadcast_id)
        self._sessions[session.broadcast_id] = session
        logger.debug("Registered broadcast %s (%d active)", session.broadcast_id, len(self._sessions))

    def replace(self, session: BroadcastSession) -> None:
        self._sessions[session.broadcast_id] = session

    def remove(self, broadcast_id: str, session: Optional[BroadcastSession] = None) -> bool:
        """Drop the entry; with ``session`` given, only if it is still the current one."""
        current = self._sessions.get(broadcast_id)
        if current is None or (session is not None and current is not session):
            return False
        del self._sessions[broadcast_id]
        logger.debug("Removed broadcast %s (%d active)", broadcast_id, len(self._sessions))
        return True
