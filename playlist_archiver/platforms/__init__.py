"""
Platform implementations for playlist-archiver.

One SourcePlatform per platform tag:
    - soundcloud: SoundCloudPlatform
    - youtube:    YouTubePlatform

Usage:
    from playlist_archiver.platforms import build_platforms

    platforms = build_platforms(config)
    playlist = platforms["soundcloud"].list_tracks(source)
"""

from playlist_archiver.core.config import Config
from playlist_archiver.core.exceptions import PlatformError
from playlist_archiver.platforms.base import SourcePlatform
from playlist_archiver.platforms.soundcloud import SoundCloudPlatform
from playlist_archiver.platforms.youtube import YouTubePlatform
from playlist_archiver.platforms.ytdlp import YtDlpPlatform


PLATFORM_CLASSES: dict[str, type[YtDlpPlatform]] = {
    SoundCloudPlatform.name: SoundCloudPlatform,
    YouTubePlatform.name: YouTubePlatform,
}


def build_platforms(config: Config) -> dict[str, SourcePlatform]:
    """
    Instantiate every platform referenced by the configured sources.

    Raises:
        PlatformError: If a source names a platform with no implementation.
    """
    platforms: dict[str, SourcePlatform] = {}
    for source in config.sources:
        if source.platform in platforms:
            continue
        platform_class = PLATFORM_CLASSES.get(source.platform)
        if platform_class is None:
            raise PlatformError(
                f"Unsupported platform: {source.platform}",
                details={"platform": source.platform, "source_url": source.url}
            )
        platforms[source.platform] = platform_class(
            config.tools, save_thumbnails=config.sync.save_thumbnails
        )
    return platforms


__all__ = [
    "PLATFORM_CLASSES",
    "SourcePlatform",
    "SoundCloudPlatform",
    "YouTubePlatform",
    "YtDlpPlatform",
    "build_platforms",
]
