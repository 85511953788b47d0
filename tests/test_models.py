"""Test archive data models"""

from datetime import datetime, timezone

import pytest

from playlist_archiver.archive.models import (
    ContentIdentity,
    HistoryRecord,
    IndexEntry,
    LifecycleStatus,
    MembershipStatus,
    PlaylistMembership,
    SourceDescriptor,
    SourceState,
    TrackMetadata,
)

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


class TestContentIdentity:
    """Test identity keys"""

    def test_key_round_trip(self):
        """Test key and from_key agree"""
        ident = ContentIdentity("youtube", "dQw4w9WgXcQ")
        assert ident.key == "youtube:dQw4w9WgXcQ"
        assert ContentIdentity.from_key(ident.key) == ident

    def test_upstream_id_may_contain_colon(self):
        """Test only the first colon separates the platform"""
        ident = ContentIdentity.from_key("soundcloud:tracks:123")
        assert ident.platform == "soundcloud"
        assert ident.upstream_id == "tracks:123"

    def test_invalid_key(self):
        """Test keys without a platform are rejected"""
        with pytest.raises(ValueError):
            ContentIdentity.from_key("no-platform")
        with pytest.raises(ValueError):
            ContentIdentity.from_key(":123")

    def test_same_id_on_different_platforms(self):
        """Test identities are scoped by platform"""
        assert ContentIdentity("youtube", "1") != ContentIdentity("soundcloud", "1")


class TestSourceDescriptor:
    """Test source ids"""

    def test_named_source_id(self):
        """Test a configured name becomes the id"""
        source = SourceDescriptor("youtube", "https://www.youtube.com/playlist?list=PL1", name="Road Trip")
        assert source.source_id == "road-trip"

    def test_derived_source_id_is_stable_and_distinct(self):
        """Test derived ids depend on the full URL"""
        a = SourceDescriptor("soundcloud", "https://soundcloud.com/a/sets/favorites")
        b = SourceDescriptor("soundcloud", "https://soundcloud.com/b/sets/favorites")
        assert a.source_id == SourceDescriptor("soundcloud", "https://soundcloud.com/a/sets/favorites").source_id
        assert a.source_id != b.source_id
        assert a.source_id.startswith("soundcloud-favorites-")


class TestSerialization:
    """Test JSON dictionaries"""

    def test_index_entry_round_trip(self):
        """Test IndexEntry survives to_dict/from_dict"""
        ident = ContentIdentity("soundcloud", "42")
        entry = IndexEntry(
            identity=ident,
            audio_path="soundcloud/42/track.mp3",
            status=LifecycleStatus.RESTRICTED,
            metadata=TrackMetadata("Song", "Artist", "https://soundcloud.com/a/song", 215.0),
            created_at=NOW,
            last_seen=NOW,
            history=(
                HistoryRecord(NOW, None, LifecycleStatus.ACTIVE, "downloaded", "src", "soundcloud/42/track.mp3"),
                HistoryRecord(NOW, LifecycleStatus.ACTIVE, LifecycleStatus.RESTRICTED, "probe: restricted", "src"),
            ),
        )

        data = entry.to_dict()
        assert data["history"][0]["from"] is None
        assert data["history"][1]["to"] == "restricted"
        assert IndexEntry.from_dict(ident.key, data) == entry

    def test_source_state_round_trip(self):
        """Test SourceState keeps membership order and markers"""
        source = SourceDescriptor("soundcloud", "https://soundcloud.com/a/sets/x")
        meta = TrackMetadata("T", "A", "https://soundcloud.com/a/t")
        state = SourceState(
            source=source,
            memberships=(
                PlaylistMembership(ContentIdentity("soundcloud", "2"), MembershipStatus.PRESENT, meta),
                PlaylistMembership(ContentIdentity("soundcloud", "1"), MembershipStatus.PRESENT, meta,
                                   unavailable=LifecycleStatus.RESTRICTED),
                PlaylistMembership(ContentIdentity("soundcloud", "3"), MembershipStatus.REMOVED, meta),
            ),
            last_synced=NOW,
            title="X",
        )

        restored = SourceState.from_dict(state.to_dict())
        assert restored == state
        assert [m.identity.upstream_id for m in restored.present()] == ["2", "1"]
        assert [m.identity.upstream_id for m in restored.removed()] == ["3"]
