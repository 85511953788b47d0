"""
YouTube platform.

Playlists are listed flat: the flat entries already carry title, channel and
duration, and private or deleted videos show up as placeholder entries
("[Private video]", "[Deleted video]") instead of errors.

YouTube answers "Video unavailable" both for videos that are blocked in the
current region and for videos that were taken down, without telling which.
A bare "Video unavailable" is therefore treated as RESTRICTED (recoverable by
a later probe); only explicit removal messages and HTTP 404 mean DELETED.
"""

from playlist_archiver.archive.models import ContentIdentity, LifecycleStatus
from playlist_archiver.platforms.ytdlp import ErrorType, YtDlpPlatform


WATCH_URL = "https://www.youtube.com/watch?v={video_id}"


class YouTubePlatform(YtDlpPlatform):
    """YouTube and YouTube Music playlists, via yt-dlp."""

    name = "youtube"
    flat_listing = True

    def unavailable_status(self, error_type: ErrorType) -> LifecycleStatus | None:
        if error_type == ErrorType.UNAVAILABLE:
            return LifecycleStatus.RESTRICTED
        return super().unavailable_status(error_type)

    def listing_error_tolerated(self, error_line: str) -> bool:
        return "Video unavailable" in error_line or "Private video" in error_line

    def track_url(self, identity: ContentIdentity) -> str | None:
        return WATCH_URL.format(video_id=identity.upstream_id)
