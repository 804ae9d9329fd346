"""In-memory record store tests."""

import datetime as dt

import pytest
from dateutil.tz import tzutc

from broadcast_engine.models import BroadcastRecord, BroadcastStatus, MediaAsset, SingleAssetSource


def record(broadcast_id="b1", **kwargs):
    return BroadcastRecord(
        id=broadcast_id,
        destination_url="rtmp://ingest/live",
        content=SingleAssetSource(MediaAsset("video.mp4")),
        **kwargs,
    )


class TestUpdateStatus:
    @pytest.mark.asyncio
    async def test_active_stamps_start_once_and_clears_error(self, store):
        saved = await store.save(record(error_message="old failure"))

        await store.update_status("b1", BroadcastStatus.ACTIVE)
        first_start = saved.started_at
        await store.update_status("b1", BroadcastStatus.RECONNECTING, "Attempting to reconnect (1/4)...")
        await store.update_status("b1", BroadcastStatus.ACTIVE)

        assert saved.started_at == first_start
        assert saved.error_message is None
        assert saved.history == ["active", "reconnecting", "active"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [BroadcastStatus.COMPLETED, BroadcastStatus.FAILED, BroadcastStatus.STOPPED])
    async def test_terminal_statuses_stamp_end(self, store, status):
        saved = await store.save(record())

        await store.update_status("b1", status, "reason" if status is BroadcastStatus.FAILED else None)

        assert saved.status is status
        assert saved.ended_at is not None

    @pytest.mark.asyncio
    async def test_unknown_broadcast_ignored(self, store):
        await store.update_status("missing", BroadcastStatus.ACTIVE)

        assert await store.get("missing") is None


class TestDueBroadcasts:
    @pytest.mark.asyncio
    async def test_window(self, store):
        now = dt.datetime(2026, 3, 1, 12, 0, tzinfo=tzutc())
        await store.save(record("due", status=BroadcastStatus.SCHEDULED, scheduled_at=now - dt.timedelta(seconds=30)))
        await store.save(record("late", status=BroadcastStatus.SCHEDULED, scheduled_at=now - dt.timedelta(minutes=5)))
        await store.save(record("future", status=BroadcastStatus.SCHEDULED, scheduled_at=now + dt.timedelta(minutes=1)))
        await store.save(record("offline", scheduled_at=now - dt.timedelta(seconds=10)))

        due = await store.due_broadcasts(now)

        assert [item.id for item in due] == ["due"]

    @pytest.mark.asyncio
    async def test_schedule_marks_record(self, store):
        await store.save(record())
        run_at = dt.datetime(2026, 3, 1, 12, 0, tzinfo=tzutc())

        scheduled = await store.schedule("b1", run_at)

        assert scheduled.status is BroadcastStatus.SCHEDULED
        assert scheduled.scheduled_at == run_at
