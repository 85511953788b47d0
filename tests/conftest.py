"""Test configuration and fixtures"""

import tempfile
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from playlist_archiver.archive.index import ArchiveIndex
from playlist_archiver.archive.models import (
    ContentIdentity,
    FetchedAsset,
    ProbeResult,
    RemotePlaylist,
    SourceDescriptor,
    TrackMetadata,
    TrackRecord,
)
from playlist_archiver.core.config import Config, PathsConfig, SyncConfig, ToolsConfig
from playlist_archiver.core.exceptions import FetchError
from playlist_archiver.core.persistence import PersistenceLayer
from playlist_archiver.platforms.base import SourcePlatform
from playlist_archiver.sync.engine import ReconciliationEngine


class FakeClock:
    """Deterministic clock; advance() moves it forward."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakePlatform(SourcePlatform):
    """
    Scripted platform.

    listings:     url -> RemotePlaylist or exception to raise
    probes:       upstream id -> ProbeResult (default UNKNOWN)
    fetch_errors: upstream id -> exception raised by fetch()
    """

    name = "soundcloud"

    def __init__(self):
        self.listings: dict[str, RemotePlaylist | Exception] = {}
        self.probes: dict[str, ProbeResult] = {}
        self.fetch_errors: dict[str, Exception] = {}
        self.fetch_calls: list[str] = []
        self.probe_calls: list[str] = []
        self.fetch_gate: threading.Event | None = None
        self._lock = threading.Lock()

    def set_listing(self, url: str, ids: list[str], title: str | None = None,
                    restricted: tuple[str, ...] = ()) -> None:
        self.listings[url] = RemotePlaylist(
            tracks=tuple(record(i, restricted=i in restricted) for i in ids),
            title=title,
        )

    def list_tracks(self, source: SourceDescriptor) -> RemotePlaylist:
        listing = self.listings.get(source.url)
        if listing is None:
            raise FetchError(f"No listing scripted for {source.url}")
        if isinstance(listing, Exception):
            raise listing
        return listing

    def probe(self, identity: ContentIdentity, url: str) -> ProbeResult:
        with self._lock:
            self.probe_calls.append(identity.upstream_id)
        return self.probes.get(identity.upstream_id, ProbeResult.UNKNOWN)

    def fetch(self, identity: ContentIdentity, metadata: TrackMetadata, staging_dir: Path) -> FetchedAsset:
        with self._lock:
            self.fetch_calls.append(identity.upstream_id)
        if self.fetch_gate is not None:
            self.fetch_gate.wait(timeout=5)

        error = self.fetch_errors.get(identity.upstream_id)
        if error is not None:
            raise error

        audio = staging_dir / "track.mp3"
        audio.write_bytes(f"audio-{identity.upstream_id}".encode("utf-8"))
        return FetchedAsset(
            audio_path=audio,
            metadata=TrackMetadata(metadata.title, metadata.artist, metadata.url, duration=200.0),
        )


def identity(upstream_id: str, platform: str = "soundcloud") -> ContentIdentity:
    return ContentIdentity(platform, upstream_id)


def record(upstream_id: str, restricted: bool = False) -> TrackRecord:
    return TrackRecord(
        identity=identity(upstream_id),
        metadata=TrackMetadata(
            title=f"Title {upstream_id}",
            artist=f"Artist {upstream_id}",
            url=f"https://soundcloud.com/artist/{upstream_id}",
        ),
        restricted=restricted,
    )


@pytest.fixture
def temp_dir():
    """Create temporary directory for tests"""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def clock():
    """Fixed clock starting at 2024-01-01 12:00 UTC"""
    return FakeClock(datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def paths(temp_dir):
    """Archive layout rooted in the temp dir"""
    return PathsConfig(data_root=temp_dir / "archive")


@pytest.fixture
def make_config(paths):
    """Build a Config for the given sources"""
    def _make(*sources: SourceDescriptor, concurrency: int = 2) -> Config:
        return Config(
            paths=paths,
            sync=SyncConfig(concurrency=concurrency, save_thumbnails=False),
            tools=ToolsConfig(download_timeout=5, retries=0),
            sources=tuple(sources),
        )
    return _make


@pytest.fixture
def persistence(paths):
    """Prepared persistence layer"""
    layer = PersistenceLayer(paths.data_root)
    layer.prepare()
    return layer


@pytest.fixture
def platform():
    """Scripted fake platform"""
    return FakePlatform()


@pytest.fixture
def make_engine(make_config, persistence, platform, clock):
    """
    Build an engine over the given sources.

    The index is reloaded from disk unless one is passed, like a fresh
    process would do.
    """
    def _make(*sources: SourceDescriptor, index: ArchiveIndex | None = None,
              concurrency: int = 2) -> ReconciliationEngine:
        return ReconciliationEngine(
            make_config(*sources, concurrency=concurrency),
            persistence,
            index if index is not None else persistence.load_index(),
            {"soundcloud": platform},
            clock=clock,
        )
    return _make
