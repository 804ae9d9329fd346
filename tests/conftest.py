"""Shared fixtures: temp storage layout, fake prober and a scripted encoder."""

import asyncio
import random
import signal
from pathlib import Path

import pytest

from broadcast_engine.config import EngineConfig
from broadcast_engine.engine import BroadcastEngine
from broadcast_engine.models import BroadcastRecord, ProbeResult
from broadcast_engine.store import InMemoryBroadcastStore
from broadcast_engine.supervisor import ProcessOutcome, Started


class FakeProber:
    """Returns a canned ProbeResult, per file name when configured."""

    def __init__(self, default=None):
        self.default = default or ProbeResult(width=1280, height=720, frame_rate=30.0, bit_rate=2_500_000)
        self.results = {}
        self.calls = []

    async def __call__(self, path):
        self.calls.append(Path(path))
        return self.results.get(Path(path).name, self.default)


class FakeSupervisor:
    """Stands in for ProcessSupervisor; outcomes come from the shared script.

    A ``None`` outcome means "keep running until stop() or abort_stalled()".
    """

    def __init__(self, script, broadcast_id, command, on_event=None, grace_period=2.0):
        self.script = script
        self.broadcast_id = broadcast_id
        self.command = command
        self.on_event = on_event
        self.grace_period = grace_period
        self.started = False
        self.stop_requested = False
        self.stalled = False
        self._halted = asyncio.Event()

    @property
    def pid(self):
        return 4242 if self.started else None

    async def start(self):
        if self.stop_requested:
            return
        self.started = True
        self.script.spawned.append(self)
        if self.on_event:
            await self.on_event(Started(list(self.command), self.pid))

    async def wait(self):
        if not self.started:
            return ProcessOutcome(None, stop_requested=self.stop_requested)
        planned = self.script.next_outcome()
        if planned is not None:
            return planned
        await self._halted.wait()
        return ProcessOutcome(
            returncode=-signal.SIGTERM,
            stop_requested=self.stop_requested,
            stalled=self.stalled,
            sent_signal=signal.SIGTERM,
        )

    async def stop(self):
        self.stop_requested = True
        self._halted.set()

    async def abort_stalled(self):
        self.stalled = True
        self._halted.set()


class SupervisorScript:
    def __init__(self):
        self.outcomes = []
        self.spawned = []

    def next_outcome(self):
        return self.outcomes.pop(0) if self.outcomes else None

    def factory(self, broadcast_id, command, on_event=None, grace_period=2.0):
        return FakeSupervisor(self, broadcast_id, command, on_event=on_event, grace_period=grace_period)


class SleepRecorder:
    def __init__(self, script):
        self.script = script
        self.calls = []

    async def __call__(self, seconds):
        # spawn count at the moment of the sleep
        self.calls.append((seconds, len(self.script.spawned)))


@pytest.fixture
def config(tmp_path):
    storage = tmp_path / "storage"
    return EngineConfig(
        storage_dir=storage,
        uploads_dir=storage / "uploads",
        media_dir=storage / "media",
        temp_dir=storage / "temp",
        backoff_base_seconds=0.01,
        backoff_max_seconds=0.05,
        stop_grace_seconds=0.1,
        playlist_repeat=4,
    )


@pytest.fixture
def make_video(config):
    def _make(name, directory=None):
        target_dir = directory or config.uploads_dir
        target_dir.mkdir(parents=True, exist_ok=True)
        path = target_dir / name
        path.write_bytes(b"\x00\x00\x00\x18ftypmp42")
        return path

    return _make


@pytest.fixture
def prober():
    return FakeProber()


@pytest.fixture
def script():
    return SupervisorScript()


@pytest.fixture
def sleeper(script):
    return SleepRecorder(script)


@pytest.fixture
def store():
    return InMemoryBroadcastStore()


@pytest.fixture
def engine(config, store, prober, script, sleeper):
    return BroadcastEngine(
        config,
        store,
        prober=prober,
        supervisor_factory=script.factory,
        sleep=sleeper,
        rng=random.Random(7),
    )


@pytest.fixture
def save_record(store):
    async def _save(broadcast_id, content, destination_url="rtmp://ingest.example.com/live", **kwargs):
        record = BroadcastRecord(id=broadcast_id, destination_url=destination_url, content=content, **kwargs)
        await store.save(record)
        return record

    return _save


@pytest.fixture
def eventually():
    async def _eventually(predicate, timeout=2.0):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not reached in time")
            await asyncio.sleep(0.005)

    return _eventually
