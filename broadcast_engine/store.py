"""Broadcast record storage used by the engine for status writes."""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
from typing import Dict, List, Optional, Protocol

from dateutil.tz import tzutc

from .models import BroadcastRecord, BroadcastStatus

logger = logging.getLogger(__name__)


class BroadcastStore(Protocol):
    async def get(self, broadcast_id: str) -> Optional[BroadcastRecord]:
        ...

    async def update_status(
        self, broadcast_id: str, status: BroadcastStatus, error_message: Optional[str] = None
    ) -> None:
        ...


class InMemoryBroadcastStore:
    """Dictionary-backed store, enough to run the engine and the web app."""

    def __init__(self) -> None:
        self._records: Dict[str, BroadcastRecord] = {}
        self._lock = asyncio.Lock()

    async def save(self, record: BroadcastRecord) -> BroadcastRecord:
        async with self._lock:
            self._records[record.id] = record
        return record

    async def get(self, broadcast_id: str) -> Optional[BroadcastRecord]:
        return self._records.get(broadcast_id)

    async def list(self) -> List[BroadcastRecord]:
        return list(self._records.values())

    async def update_status(
        self, broadcast_id: str, status: BroadcastStatus, error_message: Optional[str] = None
    ) -> None:
        async with self._lock:
            record = self._records.get(broadcast_id)
            if record is None:
                logger.warning("Status update for unknown broadcast %s ignored", broadcast_id)
                return
            now = dt.datetime.now(tzutc())
            record.status = status
            if status is BroadcastStatus.ACTIVE:
                if record.started_at is None:
                    record.started_at = now
                record.error_message = None
            elif status.is_terminal:
                record.ended_at = now
            if error_message is not None:
                record.error_message = error_message
            record.history.append(status.value)

    async def schedule(self, broadcast_id: str, run_at: dt.datetime) -> Optional[BroadcastRecord]:
        async with self._lock:
            record = self._records.get(broadcast_id)
            if record is None:
                return None
            record.scheduled_at = run_at
            record.status = BroadcastStatus.SCHEDULED
            record.error_message = None
            record.history.append(BroadcastStatus.SCHEDULED.value)
        return record

    async def due_broadcasts(
        self, now: dt.datetime, window: dt.timedelta = dt.timedelta(seconds=60)
    ) -> List[BroadcastRecord]:
        """Scheduled broadcasts whose start time fell within ``window`` before ``now``."""
        return [
            record
            for record in self._records.values()
            if record.status is BroadcastStatus.SCHEDULED
            and record.scheduled_at is not None
            and now - window <= record.scheduled_at <= now
        ]
