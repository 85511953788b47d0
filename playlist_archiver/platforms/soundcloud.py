"""
SoundCloud platform.

SoundCloud sets are listed with full extraction: flat set entries carry no
uploader, and resolving each track is what surfaces geo restrictions.

yt-dlp reports a geo-restricted track with two lines:

    This video is not available from your location due to geo restriction
    You might want to use a VPN or a proxy server

While listing a set these errors are expected: the affected tracks are left
out of the listing and the engine probes them like any other missing track.
A probe or download that fails with them means RESTRICTED; HTTP 404 means
DELETED.
"""

from playlist_archiver.platforms.ytdlp import YtDlpPlatform


GEO_ERR_LINE_1 = "This video is not available from your location due to geo restriction"
GEO_ERR_LINE_2 = "You might want to use a VPN or a proxy server"


class SoundCloudPlatform(YtDlpPlatform):
    """SoundCloud sets and likes, via yt-dlp."""

    name = "soundcloud"
    flat_listing = False

    def listing_error_tolerated(self, error_line: str) -> bool:
        return GEO_ERR_LINE_1 in error_line or GEO_ERR_LINE_2 in error_line
