"""
Playlist definition writer.

Regenerates playlists/<source_id>.m3u from the persisted state of a source on
every pass. The file is never edited incrementally: it is rendered from
scratch and atomically swapped in, so it always matches the committed state.

Order:
    PRESENT memberships in their stored order (upstream order first, then
    tracks kept because they became restricted), followed by REMOVED
    memberships in their last-known order.

    Memberships without an archived asset (never downloaded because the
    track was already deleted or restricted) are skipped. Every archived
    track stays in the file forever, whatever its lifecycle status.

Paths:
    Relative to paths.mpd_music_dir when configured (what MPD expects),
    otherwise relative to the playlists directory ("../audio/...").

Format (extended M3U):
    #EXTM3U
    #PLAYLIST:Favorites
    #EXTINF:215,Artist - Title
    ../audio/soundcloud/123456/track.mp3
"""

from pathlib import Path

from playlist_archiver.archive.index import ArchiveIndex
from playlist_archiver.archive.models import SourceState
from playlist_archiver.core.config import PathsConfig
from playlist_archiver.core.logger import get_logger
from playlist_archiver.core.persistence import atomic_write_text
from playlist_archiver.utils import ensure_directory, relative_posix

logger = get_logger(__name__)


class PlaylistWriter:
    """
    Renders and writes one .m3u file per source.

    Attributes:
        paths: Filesystem layout (audio root, playlists dir, mpd_music_dir).
    """

    def __init__(self, paths: PathsConfig) -> None:
        self.paths = paths

    def playlist_path(self, source_id: str) -> Path:
        return self.paths.playlists_dir / f"{source_id}.m3u"

    def entry_location(self, audio_path: str) -> str:
        """Path written to the playlist for an archived audio file."""
        absolute = self.paths.audio_dir / audio_path
        base = self.paths.mpd_music_dir or self.paths.playlists_dir
        return relative_posix(absolute, base)

    def render(self, state: SourceState, index: ArchiveIndex) -> str:
        """
        Render the playlist text for a source.

        Deterministic: the same state and index always give the same text.
        """
        lines = ["#EXTM3U"]
        if state.title:
            lines.append(f"#PLAYLIST:{state.title}")

        for member in state.present() + state.removed():
            entry = index.get(member.identity)
            if entry is None:
                continue

            metadata = entry.metadata
            duration = int(metadata.duration) if metadata.duration is not None else -1
            lines.append(f"#EXTINF:{duration},{metadata.display_name}")
            lines.append(self.entry_location(entry.audio_path))

        return "\n".join(lines) + "\n"

    def write(self, state: SourceState, index: ArchiveIndex) -> Path:
        """
        Regenerate the playlist file of a source.

        Returns:
            Path of the written .m3u file.

        Raises:
            OSError: If the file cannot be written.
        """
        ensure_directory(self.paths.playlists_dir)
        path = self.playlist_path(state.source_id)
        atomic_write_text(path, self.render(state, index))
        logger.debug(f"Wrote playlist {path.name}")
        return path
