"""Run broadcasts: prepare the source, supervise ffmpeg and recover from drops."""

from __future__ import annotations

import asyncio
import functools
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from . import platforms
from .classifier import classify
from .command import build_ffmpeg_command
from .config import EngineConfig
from .encoding import resolve_encode_settings
from .errors import AlreadyActive, BroadcastError, EncoderLaunchError, NotActive, UnknownBroadcast
from .models import BroadcastStatus, EncodeOverrides, PlaylistSource, SourceDescriptor
from .monitor import HealthMonitor, NetworkQualityMonitor
from .notifier import Notifier
from .probe import MediaProbe
from .recovery import ActionKind, ReconnectionController
from .registry import BroadcastSession, SessionRegistry
from .sources import Prober, SourcePreparer
from .store import BroadcastStore
from .supervisor import Ended, Errored, Event, ProcessSupervisor, Progress, Started

logger = logging.getLogger(__name__)

RESTART_DELAY_SECONDS = 2.0


@dataclass
class BroadcastRun:
    """Everything that lives from one start call to the terminal status."""

    broadcast_id: str
    source: SourceDescriptor
    destination_url: str
    controller: ReconnectionController
    network: NetworkQualityMonitor
    stream_key: Optional[str] = None
    duration_limit: Optional[int] = None
    overrides: Optional[EncodeOverrides] = None
    shuffle_seed: Optional[int] = None
    stop_event: asyncio.Event = field(default_factory=asyncio.Event)
    session: Optional[BroadcastSession] = None
    handle: Any = None
    task: Optional[asyncio.Task] = None
    terminal: bool = False

    @property
    def destination(self) -> str:
        return platforms.build_destination(self.destination_url, self.stream_key)


class BroadcastEngine:
    """Coordinates source preparation, ffmpeg supervision and reconnection."""

    def __init__(
        self,
        config: EngineConfig,
        store: BroadcastStore,
        notifier: Optional[Notifier] = None,
        prober: Optional[Prober] = None,
        supervisor_factory: Callable[..., Any] = ProcessSupervisor,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.config = config
        self.store = store
        self.notifier = notifier
        self.registry = SessionRegistry()
        self._rng = rng or random.Random()
        self.preparer = SourcePreparer(config, prober or MediaProbe(config.ffprobe_path).probe, self._rng)
        self._supervisor_factory = supervisor_factory
        self._sleep = sleep

    def is_active(self, broadcast_id: str) -> bool:
        return self.registry.is_active(broadcast_id)

    def active_count(self) -> int:
        return self.registry.count()

    def active_ids(self) -> List[str]:
        return self.registry.ids()

    async def start(
        self,
        broadcast_id: str,
        source: SourceDescriptor,
        destination_url: str,
        stream_key: Optional[str] = None,
        duration_limit: Optional[int] = None,
        overrides: Optional[EncodeOverrides] = None,
    ) -> BroadcastSession:
        """Spawn ffmpeg for a broadcast and supervise it in the background.

        Raises :class:`AlreadyActive`, :class:`SourceNotFound` or
        :class:`SourceInvalid` before anything is spawned.
        """
        async with self.registry.lock(broadcast_id):
            if self.registry.is_active(broadcast_id):
                raise AlreadyActive(broadcast_id)

            run = BroadcastRun(
                broadcast_id=broadcast_id,
                source=source,
                destination_url=destination_url,
                stream_key=stream_key,
                duration_limit=duration_limit,
                overrides=overrides,
                controller=ReconnectionController(
                    broadcast_id,
                    max_attempts=self.config.max_reconnect_attempts,
                    base_delay=self.config.backoff_base_seconds,
                    max_delay=self.config.backoff_max_seconds,
                ),
                network=NetworkQualityMonitor(
                    broadcast_id,
                    max_samples=self.config.bitrate_window,
                    instability_ratio=self.config.instability_ratio,
                ),
                shuffle_seed=self._rng.getrandbits(64),
            )

            delay = platforms.preflight_delay(destination_url, self.config.preflight_delay_seconds)
            if delay > 0:
                logger.info(
                    "Broadcast %s: waiting %.1fs for the ingest to release the previous connection", broadcast_id, delay
                )
                await self._sleep(delay)

            session = await self._launch_attempt(run, source)
            self.registry.register(session)
            run.task = asyncio.create_task(self._supervise(run))
            logger.info("Broadcast %s: started towards %s", broadcast_id, destination_url)
            return session

    async def start_record(self, broadcast_id: str) -> BroadcastSession:
        """Start a broadcast from its stored record."""
        record = await self.store.get(broadcast_id)
        if record is None:
            raise UnknownBroadcast(broadcast_id)
        return await self.start(
            record.id,
            record.content,
            record.destination_url,
            stream_key=record.stream_key,
            duration_limit=record.duration_limit,
            overrides=record.encode_settings,
        )

    async def stop(self, broadcast_id: str) -> None:
        session = self.registry.get(broadcast_id)
        if session is None:
            raise NotActive(broadcast_id)
        run: BroadcastRun = session.run
        logger.info("Broadcast %s: stop requested", broadcast_id)
        run.stop_event.set()
        run.controller.reset()
        if run.handle is not None:
            await run.handle.stop()
        if run.task is not None and run.task is not asyncio.current_task():
            await asyncio.shield(run.task)

    async def stop_all(self) -> None:
        for broadcast_id in self.registry.ids():
            try:
                await self.stop(broadcast_id)
            except NotActive:
                logger.debug("Broadcast %s ended before it could be stopped", broadcast_id)

    async def restart(self, broadcast_id: str) -> BroadcastSession:
        if self.registry.is_active(broadcast_id):
            await self.stop(broadcast_id)
            await self._sleep(RESTART_DELAY_SECONDS)
        return await self.start_record(broadcast_id)

    def get_status(self, broadcast_id: str) -> Dict[str, Any]:
        session = self.registry.get(broadcast_id)
        if session is None:
            raise NotActive(broadcast_id)
        run: BroadcastRun = session.run
        settings = session.settings
        return {
            "broadcast_id": broadcast_id,
            "pid": getattr(session.handle, "pid", None),
            "started_at": session.started_at.isoformat(),
            "attempt": session.attempt,
            "reconnect_attempts": session.retry_state.attempts,
            "recovery_state": run.controller.state.value,
            "encode_settings": {
                "resolution": settings.size,
                "video_bitrate_kbps": settings.video_bitrate_kbps,
                "frame_rate": settings.frame_rate,
                "profile": settings.profile,
                "level": settings.level,
            },
            "silent_audio": not session.prepared.has_audio,
            "playlist_items": len(session.prepared.paths) if session.prepared.is_playlist else None,
            "health": session.health.status(),
            "network": run.network.status(),
            "log_tail": session.log[-10:],
        }

    async def _launch_attempt(self, run: BroadcastRun, source: SourceDescriptor) -> BroadcastSession:
        prepared = await self.preparer.prepare(run.broadcast_id, source, shuffle_seed=run.shuffle_seed)
        try:
            try:
                settings = resolve_encode_settings(
                    prepared.probe,
                    run.overrides,
                    default_bitrate=self.config.default_bitrate,
                    default_frame_rate=self.config.default_frame_rate,
                )
            except ValueError as exc:
                raise EncoderLaunchError(f"Invalid encode settings: {exc}", run.broadcast_id) from exc
            logger.info(
                "Broadcast %s: encoding %s @ %d kbps, %s fps (%s %s)%s",
                run.broadcast_id,
                settings.size,
                settings.video_bitrate_kbps,
                settings.frame_rate,
                settings.profile,
                settings.level,
                "" if prepared.has_audio else ", silent audio",
            )
            command = build_ffmpeg_command(prepared, settings, run.destination, self.config, run.duration_limit)

            previous = run.session
            session = BroadcastSession(
                broadcast_id=run.broadcast_id,
                destination_url=run.destination_url,
                retry_state=run.controller.retry,
                health=HealthMonitor(
                    run.broadcast_id,
                    stuck_threshold=self.config.stuck_threshold_seconds,
                    check_interval=self.config.health_check_interval_seconds,
                ),
                network=run.network,
                prepared=prepared,
                settings=settings,
                attempt=previous.attempt + 1 if previous else 0,
                run=run,
                log=list(previous.log) if previous else [],
            )
            handle = self._supervisor_factory(
                run.broadcast_id,
                command,
                on_event=functools.partial(self._handle_event, run, session),
                grace_period=self.config.stop_grace_seconds,
            )
            session.handle = handle
            run.handle = handle
            if run.stop_event.is_set():
                await handle.stop()
            run.controller.begin_attempt()
            await handle.start()
        except BaseException:
            prepared.cleanup()
            raise
        run.session = session
        return session

    async def _supervise(self, run: BroadcastRun) -> None:
        try:
            status, message = await self._attempt_loop(run)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Broadcast %s: unexpected error while supervising", run.broadcast_id)
            status, message = BroadcastStatus.FAILED, f"Unexpected engine error: {exc}"

        try:
            await self._persist(run, status, message)
        finally:
            async with self.registry.lock(run.broadcast_id):
                self.registry.remove(run.broadcast_id, run.session)
        logger.info("Broadcast %s: %s%s", run.broadcast_id, status.value, f" ({message})" if message else "")
        await self._notify(run.broadcast_id, status, message)

    async def _attempt_loop(self, run: BroadcastRun) -> Tuple[BroadcastStatus, Optional[str]]:
        while True:
            session = run.session
            handle = session.handle
            watchdog = asyncio.create_task(session.health.watch(handle.abort_stalled))
            try:
                outcome = await handle.wait()
            finally:
                watchdog.cancel()
                session.prepared.cleanup()

            if run.stop_event.is_set() or outcome.stop_requested:
                return BroadcastStatus.STOPPED, None
            if outcome.succeeded:
                run.controller.mark_success()
                return BroadcastStatus.COMPLETED, None

            classification = classify(outcome, run.destination_url, run.network)
            session.append_log(f"{classification.kind.value}: {classification.message}")
            action = run.controller.plan(classification, run.destination_url)
            if action.kind is ActionKind.STOP:
                return BroadcastStatus.STOPPED, None
            if action.kind is ActionKind.FAIL:
                logger.error("Broadcast %s: %s", run.broadcast_id, action.message)
                if classification.detail:
                    logger.debug("Broadcast %s: ffmpeg output:\n%s", run.broadcast_id, classification.detail)
                return BroadcastStatus.FAILED, action.message

            retry = run.controller.retry
            progress = f"Attempting to reconnect ({retry.attempts + 1}/{retry.max_attempts})..."
            logger.warning("Broadcast %s: %s %s", run.broadcast_id, classification.message, progress)
            run.network.record_reconnect_attempt()
            await self._persist(run, BroadcastStatus.RECONNECTING, progress)
            await self._notify(run.broadcast_id, BroadcastStatus.RECONNECTING, progress)

            if not await run.controller.wait_before_retry(run.stop_event):
                return BroadcastStatus.STOPPED, None

            try:
                source = await self._current_source(run)
                new_session = await self._launch_attempt(run, source)
            except BroadcastError as exc:
                if run.stop_event.is_set():
                    logger.info("Broadcast %s: stopped while reconnecting (%s)", run.broadcast_id, exc)
                    return BroadcastStatus.STOPPED, None
                logger.error("Broadcast %s: reconnect failed: %s", run.broadcast_id, exc)
                return BroadcastStatus.FAILED, str(exc)
            async with self.registry.lock(run.broadcast_id):
                self.registry.replace(new_session)

    async def _current_source(self, run: BroadcastRun) -> SourceDescriptor:
        """Playlists are re-read so a retry picks up edits made while streaming."""
        if not isinstance(run.source, PlaylistSource):
            return run.source
        record = await self.store.get(run.broadcast_id)
        if record is None or not isinstance(record.content, PlaylistSource):
            return run.source
        return PlaylistSource(
            items=list(record.content.items),
            shuffle=run.source.shuffle,
            loop=run.source.loop,
            playlist_id=record.content.playlist_id,
        )

    async def _handle_event(self, run: BroadcastRun, session: BroadcastSession, event: Event) -> None:
        if isinstance(event, Started):
            session.append_log(f"ffmpeg started (pid {event.pid})")
            await self._persist(run, BroadcastStatus.ACTIVE)
            if session.attempt == 0:
                await self._notify(run.broadcast_id, BroadcastStatus.ACTIVE, None)
        elif isinstance(event, Progress):
            session.health.update_progress(event)
            # ffmpeg reports bitrate=N/A until the first packets are muxed
            if event.seconds is None or not event.bitrate_kbps or event.bitrate_kbps <= 0:
                return
            bucket = int(event.seconds // self.config.progress_sample_seconds)
            if bucket != session.last_sample:
                session.last_sample = bucket
                run.network.record_bitrate(event.bitrate_kbps)
                logger.info(
                    "Broadcast %s: %s @ %s fps, %s kbps",
                    run.broadcast_id,
                    event.timemark,
                    event.fps,
                    event.bitrate_kbps,
                )
        elif isinstance(event, Ended):
            session.append_log("ffmpeg finished")
        elif isinstance(event, Errored):
            session.append_log(event.outcome.describe())

    async def _persist(self, run: BroadcastRun, status: BroadcastStatus, error_message: Optional[str] = None) -> None:
        if run.terminal:
            logger.debug("Broadcast %s: dropping %s write after terminal status", run.broadcast_id, status.value)
            return
        if status.is_terminal:
            run.terminal = True
        try:
            await self.store.update_status(run.broadcast_id, status, error_message)
        except Exception:  # noqa: BLE001
            logger.exception("Broadcast %s: failed to persist status %s", run.broadcast_id, status.value)

    async def _notify(self, broadcast_id: str, status: BroadcastStatus, message: Optional[str]) -> None:
        if self.notifier is None or not self.notifier.wants(status):
            return
        await asyncio.to_thread(self.notifier.notify_status, broadcast_id, status, message)
