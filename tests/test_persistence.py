"""Test atomic JSON persistence"""

import json
import os
from datetime import datetime, timezone

import pytest

from playlist_archiver.archive.index import ArchiveIndex
from playlist_archiver.archive.models import (
    IndexEntry,
    LifecycleStatus,
    MembershipStatus,
    PlaylistMembership,
    SourceDescriptor,
    SourceState,
)
from playlist_archiver.core.exceptions import PersistenceError
from playlist_archiver.core.persistence import PersistenceLayer, atomic_write_text

from conftest import identity, record

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
SOURCE = SourceDescriptor("soundcloud", "https://soundcloud.com/a/sets/x")


def sample_index() -> ArchiveIndex:
    return ArchiveIndex([
        IndexEntry(
            identity=identity("1"),
            audio_path="soundcloud/1/track.mp3",
            status=LifecycleStatus.ACTIVE,
            metadata=record("1").metadata,
            created_at=NOW,
            last_seen=NOW,
        )
    ])


def sample_state() -> SourceState:
    return SourceState(
        source=SOURCE,
        memberships=(PlaylistMembership(identity("1"), MembershipStatus.PRESENT, record("1").metadata),),
        last_synced=NOW,
    )


class TestAtomicWrite:
    """Test atomic_write_text"""

    def test_writes_content(self, temp_dir):
        """Test the target gets the new content"""
        target = temp_dir / "file.json"
        atomic_write_text(target, "new")
        assert target.read_text(encoding="utf-8") == "new"
        assert list(temp_dir.iterdir()) == [target]

    def test_failed_rename_keeps_previous_content(self, temp_dir, monkeypatch):
        """Test a crash before the rename leaves the old file and no temp file"""
        target = temp_dir / "file.json"
        target.write_text("old", encoding="utf-8")

        def failing_replace(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr(os, "replace", failing_replace)

        with pytest.raises(OSError):
            atomic_write_text(target, "new")

        assert target.read_text(encoding="utf-8") == "old"
        assert list(temp_dir.iterdir()) == [target]


class TestPersistenceLayer:
    """Test PersistenceLayer load and commit"""

    def test_empty_archive(self, temp_dir):
        """Test a fresh data root loads an empty index"""
        layer = PersistenceLayer(temp_dir)
        layer.prepare()
        assert len(layer.load_index()) == 0
        assert layer.load_source_state(SOURCE.source_id) is None
        assert layer.load_source_states() == []

    def test_commit_round_trip(self, temp_dir):
        """Test committed state loads back identically"""
        layer = PersistenceLayer(temp_dir)
        layer.prepare()

        layer.commit(sample_index(), [sample_state()])

        assert layer.load_index().entries() == sample_index().entries()
        assert layer.load_source_state(SOURCE.source_id) == sample_state()
        assert layer.load_source_states() == [sample_state()]

    def test_commit_is_deterministic(self, temp_dir):
        """Test committing the same state twice gives identical bytes"""
        layer = PersistenceLayer(temp_dir)
        layer.prepare()

        layer.commit(sample_index(), [sample_state()])
        first = layer.index_path.read_bytes()
        layer.commit(sample_index(), [sample_state()])

        assert layer.index_path.read_bytes() == first

    def test_failed_commit_raises_persistence_error(self, temp_dir, monkeypatch):
        """Test an OSError during commit surfaces as PersistenceError"""
        layer = PersistenceLayer(temp_dir)
        layer.prepare()
        layer.commit(ArchiveIndex(), [])

        def failing_replace(src, dst):
            raise OSError("read-only file system")

        monkeypatch.setattr(os, "replace", failing_replace)

        with pytest.raises(PersistenceError):
            layer.commit(sample_index(), [sample_state()])

        monkeypatch.undo()
        assert len(layer.load_index()) == 0
        assert layer.load_source_state(SOURCE.source_id) is None

    def test_prepare_sweeps_leftovers(self, temp_dir):
        """Test temp files and staging dirs from a crash are removed"""
        layer = PersistenceLayer(temp_dir)
        layer.prepare()
        (temp_dir / "index.json.tmp-1-2").write_text("{", encoding="utf-8")
        (layer.sources_dir / "x.json.tmp-1-2").write_text("{", encoding="utf-8")
        (layer.staging_dir / "soundcloud_abc").mkdir()

        layer.prepare()

        assert not (temp_dir / "index.json.tmp-1-2").exists()
        assert list(layer.sources_dir.iterdir()) == []
        assert list(layer.staging_dir.iterdir()) == []

    def test_corrupted_index(self, temp_dir):
        """Test invalid JSON is reported, not silently replaced"""
        layer = PersistenceLayer(temp_dir)
        layer.prepare()
        layer.index_path.write_text("{not json", encoding="utf-8")

        with pytest.raises(PersistenceError):
            layer.load_index()

    def test_index_file_layout(self, temp_dir):
        """Test index.json is keyed by identity"""
        layer = PersistenceLayer(temp_dir)
        layer.prepare()
        layer.commit(sample_index(), [])

        data = json.loads(layer.index_path.read_text(encoding="utf-8"))
        assert data["version"] == 1
        assert data["entries"]["soundcloud:1"]["audio_path"] == "soundcloud/1/track.mp3"
