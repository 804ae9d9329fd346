"""FastAPI application exposing broadcast controls."""

from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Dict, NoReturn, Optional, Union

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from .config import EngineConfig, load_config
from .engine import BroadcastEngine
from .errors import AlreadyActive, BroadcastError, NotActive, SourceInvalid, SourceNotFound, UnknownBroadcast
from .models import (
    BroadcastRecord,
    EncodeOverrides,
    MediaAsset,
    PlaylistSource,
    SingleAssetSource,
    SourceDescriptor,
)
from .notifier import Notifier
from .scheduler import BroadcastScheduler, as_utc
from .store import InMemoryBroadcastStore

logger = logging.getLogger(__name__)


class MediaPayload(BaseModel):
    stored_path: str = Field(..., description="Path of the stored video, as saved by the content library.")
    asset_id: Optional[str] = None
    title: Optional[str] = None


class ContentPayload(BaseModel):
    items: list[MediaPayload] = Field(default_factory=list)
    playlist: bool = Field(False, description="Stream the items as a playlist instead of a single video.")
    shuffle: bool = False
    loop: bool = True
    playlist_id: Optional[str] = None


class EncodePayload(BaseModel):
    resolution: Optional[str] = Field(None, description="720p, 1080p, 1440p, 2160p or auto")
    bitrate: Optional[Union[int, str]] = Field(None, description="Video bitrate, e.g. 4500k")
    frame_rate: Optional[float] = None
    orientation: Optional[str] = Field(None, description="landscape|portrait")


class StartBroadcastPayload(BaseModel):
    destination_url: str = Field(..., description="RTMP/RTMPS ingest URL.")
    stream_key: Optional[str] = None
    content: ContentPayload
    encode_settings: Optional[EncodePayload] = None
    duration_limit: Optional[int] = Field(None, gt=0, description="Stop after this many seconds.")


class ScheduleBroadcastPayload(StartBroadcastPayload):
    scheduled_at: dt.datetime


def _to_source(content: ContentPayload) -> SourceDescriptor:
    items = [MediaAsset(**item.model_dump()) for item in content.items]
    if content.playlist:
        return PlaylistSource(items=items, shuffle=content.shuffle, loop=content.loop, playlist_id=content.playlist_id)
    if len(items) != 1:
        raise HTTPException(status_code=422, detail="A single-video broadcast needs exactly one item.")
    return SingleAssetSource(asset=items[0], loop=content.loop)


def _to_record(broadcast_id: str, payload: StartBroadcastPayload) -> BroadcastRecord:
    overrides = EncodeOverrides(**payload.encode_settings.model_dump()) if payload.encode_settings else None
    return BroadcastRecord(
        id=broadcast_id,
        destination_url=payload.destination_url,
        stream_key=payload.stream_key,
        content=_to_source(payload.content),
        encode_settings=overrides,
        duration_limit=payload.duration_limit,
    )


def _isoformat(value: Optional[dt.datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def record_summary(record: BroadcastRecord) -> Dict[str, Any]:
    return {
        "id": record.id,
        "status": record.status.value,
        "error_message": record.error_message,
        "destination_url": record.destination_url,
        "scheduled_at": _isoformat(record.scheduled_at),
        "started_at": _isoformat(record.started_at),
        "ended_at": _isoformat(record.ended_at),
        "history": list(record.history),
    }


def _raise_http(exc: BroadcastError) -> NoReturn:
    if isinstance(exc, AlreadyActive):
        status_code = 409
    elif isinstance(exc, (NotActive, UnknownBroadcast)):
        status_code = 404
    elif isinstance(exc, (SourceNotFound, SourceInvalid)):
        status_code = 422
    else:
        status_code = 500
    raise HTTPException(status_code=status_code, detail=str(exc)) from exc


def create_app(
    engine: Optional[BroadcastEngine] = None,
    store: Optional[InMemoryBroadcastStore] = None,
    config: Optional[EngineConfig] = None,
) -> FastAPI:
    config = config or load_config()
    store = store or InMemoryBroadcastStore()
    if engine is None:
        notifier = Notifier(config.notifier)
        engine = BroadcastEngine(config, store, notifier=notifier if notifier.enabled else None)
    scheduler = BroadcastScheduler(engine, store, config.scheduler_interval_seconds)
    app = FastAPI(title=config.project_name)
    app.state.engine = engine
    app.state.store = store
    app.state.scheduler = scheduler

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        return {"status": "ok", "active_broadcasts": engine.active_count()}

    @app.post("/broadcasts/{broadcast_id}/start")
    async def start_broadcast(broadcast_id: str, payload: Optional[StartBroadcastPayload] = None):
        if payload is not None:
            if engine.is_active(broadcast_id):
                _raise_http(AlreadyActive(broadcast_id))
            await store.save(_to_record(broadcast_id, payload))
        try:
            session = await engine.start_record(broadcast_id)
        except BroadcastError as exc:
            _raise_http(exc)
        return {"broadcast_id": broadcast_id, "status": "active", "silent_audio": not session.prepared.has_audio}

    @app.post("/broadcasts/{broadcast_id}/stop")
    async def stop_broadcast(broadcast_id: str):
        try:
            await engine.stop(broadcast_id)
        except BroadcastError as exc:
            _raise_http(exc)
        return {"broadcast_id": broadcast_id, "status": "stopped"}

    @app.post("/broadcasts/{broadcast_id}/restart")
    async def restart_broadcast(broadcast_id: str):
        try:
            await engine.restart(broadcast_id)
        except BroadcastError as exc:
            _raise_http(exc)
        return {"broadcast_id": broadcast_id, "status": "active"}

    @app.post("/broadcasts/{broadcast_id}/schedule")
    async def schedule_broadcast(broadcast_id: str, payload: ScheduleBroadcastPayload):
        if engine.is_active(broadcast_id):
            _raise_http(AlreadyActive(broadcast_id))
        run_at = as_utc(payload.scheduled_at)
        await store.save(_to_record(broadcast_id, payload))
        await store.schedule(broadcast_id, run_at)
        job_id = scheduler.schedule_broadcast(broadcast_id, run_at)
        return {"broadcast_id": broadcast_id, "job_id": job_id, "scheduled_at": run_at.isoformat()}

    @app.get("/broadcasts/{broadcast_id}")
    async def broadcast_status(broadcast_id: str):
        record = await store.get(broadcast_id)
        if record is None:
            _raise_http(UnknownBroadcast(broadcast_id))
        summary = record_summary(record)
        summary["live"] = engine.get_status(broadcast_id) if engine.is_active(broadcast_id) else None
        return summary

    @app.get("/broadcasts")
    async def list_broadcasts() -> Dict[str, Any]:
        records = await store.list()
        return {
            "active": engine.active_ids(),
            "active_count": engine.active_count(),
            "broadcasts": [record_summary(record) for record in records],
        }

    @app.on_event("startup")
    async def startup_event() -> None:
        scheduler.start()
        logger.info("Broadcast engine started.")

    @app.on_event("shutdown")
    async def shutdown_event() -> None:
        scheduler.shutdown()
        await engine.stop_all()
        logger.info("Broadcast engine stopped, %d broadcasts left running", engine.active_count())

    return app


app = create_app()
