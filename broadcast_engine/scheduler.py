"""Start scheduled broadcasts when their time comes."""

from __future__ import annotations

import datetime as dt
import logging
from typing import List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from dateutil.tz import tzutc

from .engine import BroadcastEngine
from .errors import AlreadyActive, BroadcastError
from .models import BroadcastStatus
from .store import InMemoryBroadcastStore

logger = logging.getLogger(__name__)

DUE_WINDOW = dt.timedelta(seconds=60)


def as_utc(value: dt.datetime) -> dt.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=tzutc())
    return value.astimezone(tzutc())


class BroadcastScheduler:
    def __init__(self, engine: BroadcastEngine, store: InMemoryBroadcastStore, interval_seconds: int = 30):
        self.engine = engine
        self.store = store
        self.interval_seconds = interval_seconds
        self.scheduler = AsyncIOScheduler(timezone=tzutc())

    def start(self) -> None:
        self.scheduler.add_job(
            self.check_due,
            trigger="interval",
            seconds=self.interval_seconds,
            id="check-due-broadcasts",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()
        logger.info("Scheduler started, checking every %ds", self.interval_seconds)

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)

    async def check_due(self, now: Optional[dt.datetime] = None) -> List[str]:
        """Start every scheduled broadcast whose time fell within the last minute."""
        now = now or dt.datetime.now(tzutc())
        started: List[str] = []
        for record in await self.store.due_broadcasts(now, DUE_WINDOW):
            if self.engine.is_active(record.id):
                continue
            logger.info("Starting scheduled broadcast %s", record.id)
            if await self.start_broadcast(record.id):
                started.append(record.id)
        return started

    async def start_broadcast(self, broadcast_id: str) -> bool:
        try:
            await self.engine.start_record(broadcast_id)
        except AlreadyActive:
            logger.info("Scheduled broadcast %s is already running", broadcast_id)
            return False
        except BroadcastError as exc:
            logger.error("Scheduler could not start broadcast %s: %s", broadcast_id, exc)
            await self.store.update_status(broadcast_id, BroadcastStatus.FAILED, f"Scheduler error: {exc}")
            return False
        return True

    def schedule_broadcast(self, broadcast_id: str, run_at: dt.datetime) -> str:
        job = self.scheduler.add_job(
            self.start_broadcast,
            trigger="date",
            run_date=as_utc(run_at),
            args=[broadcast_id],
            id=f"broadcast-{broadcast_id}",
            replace_existing=True,
        )
        return job.id
