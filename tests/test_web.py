"""HTTP control surface tests."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from broadcast_engine.config import EngineConfig
from broadcast_engine.errors import AlreadyActive, NotActive, SourceNotFound
from broadcast_engine.models import BroadcastStatus, PlaylistSource
from broadcast_engine.web import create_app

START_BODY = {
    "destination_url": "rtmp://a.rtmp.youtube.com/live2",
    "stream_key": "abcd-1234",
    "content": {"items": [{"stored_path": "video.mp4"}]},
    "encode_settings": {"resolution": "1080p", "bitrate": "4500k"},
}


@pytest.fixture
def fake_engine():
    engine = MagicMock()
    engine.is_active.return_value = False
    engine.active_ids.return_value = []
    engine.active_count.return_value = 0
    session = MagicMock()
    session.prepared.has_audio = True
    engine.start_record = AsyncMock(return_value=session)
    engine.stop = AsyncMock()
    engine.restart = AsyncMock()
    return engine


@pytest.fixture
def client(fake_engine, store):
    return TestClient(create_app(engine=fake_engine, store=store, config=EngineConfig()))


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"


class TestStart:
    def test_start_saves_record_and_starts(self, client, fake_engine, store):
        response = client.post("/broadcasts/b1/start", json=START_BODY)

        assert response.status_code == 200
        assert response.json()["broadcast_id"] == "b1"
        fake_engine.start_record.assert_awaited_once_with("b1")
        record = store._records["b1"]
        assert record.stream_key == "abcd-1234"
        assert record.encode_settings.resolution == "1080p"

    def test_playlist_payload(self, client, store):
        items = [{"stored_path": "a.mp4"}, {"stored_path": "b.mp4"}]
        body = dict(START_BODY, content={"items": items, "playlist": True, "shuffle": True})

        assert client.post("/broadcasts/b1/start", json=body).status_code == 200
        content = store._records["b1"].content
        assert isinstance(content, PlaylistSource)
        assert content.shuffle

    def test_single_video_needs_one_item(self, client):
        body = dict(START_BODY, content={"items": []})

        assert client.post("/broadcasts/b1/start", json=body).status_code == 422

    def test_already_active_conflict(self, client, fake_engine):
        fake_engine.start_record.side_effect = AlreadyActive("b1")

        assert client.post("/broadcasts/b1/start").status_code == 409

    def test_missing_source_unprocessable(self, client, fake_engine):
        fake_engine.start_record.side_effect = SourceNotFound(["video.mp4"], ["/storage/uploads/video.mp4"], "b1")

        response = client.post("/broadcasts/b1/start", json=START_BODY)

        assert response.status_code == 422
        assert "Video file not found" in response.json()["detail"]


class TestStop:
    def test_stop(self, client, fake_engine):
        assert client.post("/broadcasts/b1/stop").status_code == 200
        fake_engine.stop.assert_awaited_once_with("b1")

    def test_stop_inactive(self, client, fake_engine):
        fake_engine.stop.side_effect = NotActive("b1")

        assert client.post("/broadcasts/b1/stop").status_code == 404


class TestSchedule:
    def test_schedule(self, client, store):
        body = dict(START_BODY, scheduled_at="2030-01-01T10:00:00Z")

        response = client.post("/broadcasts/b1/schedule", json=body)

        assert response.status_code == 200
        assert response.json()["job_id"] == "broadcast-b1"
        assert store._records["b1"].status is BroadcastStatus.SCHEDULED


class TestStatus:
    def test_unknown_broadcast(self, client):
        assert client.get("/broadcasts/nope").status_code == 404

    def test_status_and_listing(self, client):
        client.post("/broadcasts/b1/start", json=START_BODY)

        status = client.get("/broadcasts/b1").json()
        listing = client.get("/broadcasts").json()

        assert status["id"] == "b1"
        assert status["live"] is None
        assert [item["id"] for item in listing["broadcasts"]] == ["b1"]
