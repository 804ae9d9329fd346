"""Turn a single asset or a playlist into one continuous encoder input."""

from __future__ import annotations

import asyncio
import logging
import random
import uuid
from dataclasses import dataclass
from pathlib import Path, PurePath
from typing import Awaitable, Callable, Iterator, List, Optional, Tuple

from .config import EngineConfig
from .errors import SourceInvalid, SourceNotFound
from .models import MediaAsset, PlaylistSource, ProbeResult, SingleAssetSource, SourceDescriptor

logger = logging.getLogger(__name__)

CONVERTED_PREFIX = "stream_"
LEGACY_PREFIXES = ("storage/uploads/", "storage\\uploads\\")

Prober = Callable[[Path], Awaitable[ProbeResult]]


def _escape_concat_path(path: Path) -> str:
    return path.as_posix().replace("'", "'\\''")


@dataclass
class PlaylistManifest:
    """ffmpeg concat-demuxer file for one broadcast attempt."""

    path: Path
    entries: List[Path]
    repeat: int = 1

    def lines(self) -> Iterator[str]:
        for _ in range(self.repeat):
            for entry in self.entries:
                yield f"file '{_escape_concat_path(entry)}'\n"

    def write(self) -> Path:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("w", encoding="utf-8") as handle:
            handle.writelines(self.lines())
        return self.path

    def cleanup(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except OSError as exc:
            logger.error("Error cleaning up manifest %s: %s", self.path, exc)


@dataclass
class PreparedInput:
    paths: List[Path]
    probe: ProbeResult
    loop: bool = True
    manifest: Optional[PlaylistManifest] = None

    @property
    def is_playlist(self) -> bool:
        return self.manifest is not None

    @property
    def has_audio(self) -> bool:
        return self.probe.has_audio

    @property
    def input_path(self) -> Path:
        return self.manifest.path if self.manifest else self.paths[0]

    def cleanup(self) -> None:
        if self.manifest:
            self.manifest.cleanup()


def candidate_paths(stored_path: str, config: EngineConfig) -> List[Path]:
    """Search order: absolute path, converted upload, original upload, legacy prefix, legacy media dir."""
    stored = PurePath(stored_path.replace("\\", "/"))
    name = stored.name
    candidates: List[Path] = []
    if Path(stored).is_absolute():
        candidates.append(Path(stored))
    candidates.append(config.uploads_dir / f"{CONVERTED_PREFIX}{name}")
    candidates.append(config.uploads_dir / stored)
    if stored_path.startswith(LEGACY_PREFIXES):
        candidates.append(config.storage_dir.parent / stored)
    candidates.append(config.media_dir / name)

    unique: List[Path] = []
    for candidate in candidates:
        if candidate not in unique:
            unique.append(candidate)
    return unique


def resolve_asset_path(stored_path: str, config: EngineConfig) -> Tuple[Optional[Path], List[Path]]:
    checked = candidate_paths(stored_path, config)
    for candidate in checked:
        if candidate.is_file():
            return candidate.absolute(), checked
    return None, checked


def shuffle_paths(paths: List[Path], rng: random.Random) -> List[Path]:
    shuffled = list(paths)
    # random.shuffle is a Fisher-Yates shuffle
    rng.shuffle(shuffled)
    return shuffled


class SourcePreparer:
    def __init__(self, config: EngineConfig, prober: Prober, rng: Optional[random.Random] = None):
        self.config = config
        self.prober = prober
        self.rng = rng or random.Random()

    async def prepare(
        self, broadcast_id: str, source: SourceDescriptor, shuffle_seed: Optional[int] = None
    ) -> PreparedInput:
        if isinstance(source, PlaylistSource):
            return await self.prepare_playlist(broadcast_id, source, shuffle_seed)
        return await self.prepare_single(broadcast_id, source)

    async def prepare_single(self, broadcast_id: str, source: SingleAssetSource) -> PreparedInput:
        path, checked = await asyncio.to_thread(resolve_asset_path, source.asset.stored_path, self.config)
        if path is None:
            raise SourceNotFound([source.asset.stored_path], [str(p) for p in checked], broadcast_id)

        probe = await self.prober(path)
        if not probe.has_audio:
            logger.info("Broadcast %s: %s has no audio track, silent audio will be added", broadcast_id, path)
        return PreparedInput(paths=[path], probe=probe, loop=source.loop)

    async def prepare_playlist(
        self, broadcast_id: str, source: PlaylistSource, shuffle_seed: Optional[int] = None
    ) -> PreparedInput:
        if not source.items:
            raise SourceInvalid("Playlist is empty", broadcast_id)

        resolved = await asyncio.to_thread(self._resolve_members, source.items)
        missing = [asset.stored_path for asset, (path, _) in zip(source.items, resolved) if path is None]
        if missing:
            checked = [str(p) for path, tried in resolved if path is None for p in tried]
            raise SourceNotFound(missing, checked, broadcast_id)
        paths = [path for path, _ in resolved]

        if source.shuffle:
            rng = random.Random(shuffle_seed) if shuffle_seed is not None else self.rng
            paths = shuffle_paths(paths, rng)
            logger.info("Broadcast %s: playlist shuffled (%d items)", broadcast_id, len(paths))

        # audio presence is taken from the first member only
        probe = await self.prober(paths[0])

        manifest = PlaylistManifest(
            path=self.config.temp_dir / f"playlist_{broadcast_id}_{uuid.uuid4().hex[:8]}.txt",
            entries=paths,
            repeat=self.config.playlist_repeat if source.loop else 1,
        )
        await asyncio.to_thread(manifest.write)
        logger.info(
            "Broadcast %s: wrote manifest %s (%d items x %d)",
            broadcast_id,
            manifest.path,
            len(paths),
            manifest.repeat,
        )
        return PreparedInput(paths=paths, probe=probe, loop=source.loop, manifest=manifest)

    def _resolve_members(self, items: List[MediaAsset]) -> List[Tuple[Optional[Path], List[Path]]]:
        return [resolve_asset_path(asset.stored_path, self.config) for asset in items]
