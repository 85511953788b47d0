"""Test .m3u generation"""

from datetime import datetime, timezone

from playlist_archiver.archive.index import ArchiveIndex
from playlist_archiver.archive.models import (
    IndexEntry,
    LifecycleStatus,
    MembershipStatus,
    PlaylistMembership,
    SourceDescriptor,
    SourceState,
    TrackMetadata,
)
from playlist_archiver.core.config import PathsConfig
from playlist_archiver.sync.playlist_writer import PlaylistWriter

from conftest import identity, record

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
SOURCE = SourceDescriptor("soundcloud", "https://soundcloud.com/a/sets/x", name="Favorites")


def entry(upstream_id: str, status: LifecycleStatus = LifecycleStatus.ACTIVE,
          duration: float | None = 215.4) -> IndexEntry:
    return IndexEntry(
        identity=identity(upstream_id),
        audio_path=f"soundcloud/{upstream_id}/track.mp3",
        status=status,
        metadata=TrackMetadata(f"Title {upstream_id}", f"Artist {upstream_id}", "u", duration),
        created_at=NOW,
        last_seen=NOW,
    )


def member(upstream_id: str, status: MembershipStatus = MembershipStatus.PRESENT, **kwargs) -> PlaylistMembership:
    return PlaylistMembership(identity(upstream_id), status, record(upstream_id).metadata, **kwargs)


class TestPlaylistWriter:
    """Test PlaylistWriter"""

    def test_render_order_and_format(self, temp_dir):
        """Test PRESENT entries come first and unarchived ones are skipped"""
        writer = PlaylistWriter(PathsConfig(data_root=temp_dir))
        index = ArchiveIndex([
            entry("1"),
            entry("2", status=LifecycleStatus.DELETED),
            entry("3", duration=None),
        ])
        state = SourceState(
            source=SOURCE,
            memberships=(
                member("3"),
                member("4", unavailable=LifecycleStatus.RESTRICTED),
                member("1"),
                member("2", MembershipStatus.REMOVED),
            ),
            title="Favorites",
        )

        assert writer.render(state, index).splitlines() == [
            "#EXTM3U",
            "#PLAYLIST:Favorites",
            "#EXTINF:-1,Artist 3 - Title 3",
            "../audio/soundcloud/3/track.mp3",
            "#EXTINF:215,Artist 1 - Title 1",
            "../audio/soundcloud/1/track.mp3",
            "#EXTINF:215,Artist 2 - Title 2",
            "../audio/soundcloud/2/track.mp3",
        ]

    def test_mpd_relative_paths(self, temp_dir):
        """Test entries are relative to the media server music dir when set"""
        paths = PathsConfig(
            data_root=temp_dir / "data",
            music_dir=temp_dir / "music" / "archive",
            mpd_music_dir=temp_dir / "music",
        )
        writer = PlaylistWriter(paths)

        assert writer.entry_location("soundcloud/1/track.mp3") == "archive/soundcloud/1/track.mp3"

    def test_write(self, temp_dir):
        """Test the file is written under playlists/ named after the source"""
        writer = PlaylistWriter(PathsConfig(data_root=temp_dir))
        state = SourceState(source=SOURCE, memberships=(member("1"),))

        path = writer.write(state, ArchiveIndex([entry("1")]))

        assert path == temp_dir / "playlists" / "favorites.m3u"
        assert path.read_text(encoding="utf-8").startswith("#EXTM3U\n#EXTINF:215,")
