"""Test yt-dlp backed platforms with a mocked YoutubeDL"""

from unittest.mock import MagicMock, patch

import pytest
from PIL import Image
from yt_dlp.utils import DownloadError as YtDlpDownloadError

from playlist_archiver.archive.models import (
    ContentIdentity,
    LifecycleStatus,
    ProbeResult,
    SourceDescriptor,
    TrackMetadata,
)
from playlist_archiver.core.config import Config, PathsConfig, SyncConfig, ToolsConfig
from playlist_archiver.core.exceptions import (
    DownloadError,
    DownloadErrorKind,
    FetchError,
    FetchErrorKind,
    PlatformError,
)
from playlist_archiver.platforms import build_platforms
from playlist_archiver.platforms.thumbnail import convert_thumbnail
from playlist_archiver.platforms.soundcloud import GEO_ERR_LINE_1, SoundCloudPlatform
from playlist_archiver.platforms.youtube import YouTubePlatform
from playlist_archiver.platforms.ytdlp import ErrorType, calculate_backoff, classify_error, MAX_DELAY


def mock_youtube_dl(extract_info):
    """Patch YoutubeDL so that extract_info(url, download) calls the given function"""
    ydl = MagicMock()
    ydl.extract_info.side_effect = extract_info
    factory = MagicMock()
    factory.return_value.__enter__.return_value = ydl
    return patch("playlist_archiver.platforms.ytdlp.YoutubeDL", factory), ydl


def raising(message):
    def _extract(url, download=False):
        raise YtDlpDownloadError(message)
    return _extract


class TestClassifyError:
    """Test yt-dlp error classification"""

    @pytest.mark.parametrize("message, expected", [
        ("ERROR: HTTP Error 429: Too Many Requests", ErrorType.RATE_LIMITED),
        ("Video unavailable. This content isn't available, rate-limited", ErrorType.RATE_LIMITED),
        (GEO_ERR_LINE_1, ErrorType.GEO_RESTRICTED),
        ("ERROR: [youtube] abc: Private video. Sign in if you've been granted access", ErrorType.PRIVATE),
        ("ERROR: Sign in to confirm your age", ErrorType.AUTH_REQUIRED),
        ("This video has been removed by the uploader", ErrorType.REMOVED),
        ("ERROR: [soundcloud] 123: HTTP Error 404: Not Found", ErrorType.NOT_FOUND),
        ("ERROR: [youtube] abc: Video unavailable", ErrorType.UNAVAILABLE),
        ("HTTP Error 403: Forbidden", ErrorType.FORBIDDEN),
        ("<urlopen error [Errno -3] Temporary failure in name resolution>", ErrorType.NETWORK_ERROR),
        ("The read operation timed out", ErrorType.NETWORK_ERROR),
        ("something else entirely", ErrorType.UNKNOWN),
    ])
    def test_classification(self, message, expected):
        """Test each message maps to its error type"""
        assert classify_error(message) == expected

    def test_backoff_bounds(self):
        """Test backoff grows and is capped"""
        assert 0.5 <= calculate_backoff(0) <= 1.5 * 1.3
        assert calculate_backoff(20) <= MAX_DELAY * 1.3


class TestUnavailableStatus:
    """Test platform specific status mapping"""

    def test_soundcloud(self):
        """Test SoundCloud treats only explicit signals as permanent"""
        platform = SoundCloudPlatform(ToolsConfig())
        assert platform.unavailable_status(ErrorType.GEO_RESTRICTED) == LifecycleStatus.RESTRICTED
        assert platform.unavailable_status(ErrorType.NOT_FOUND) == LifecycleStatus.DELETED
        assert platform.unavailable_status(ErrorType.UNAVAILABLE) is None
        assert platform.unavailable_status(ErrorType.NETWORK_ERROR) is None

    def test_youtube_unavailable_is_restricted(self):
        """Test a bare 'Video unavailable' is recoverable on YouTube"""
        platform = YouTubePlatform(ToolsConfig())
        assert platform.unavailable_status(ErrorType.UNAVAILABLE) == LifecycleStatus.RESTRICTED
        assert platform.unavailable_status(ErrorType.REMOVED) == LifecycleStatus.DELETED


class TestListTracks:
    """Test playlist listing"""

    def test_flat_youtube_listing(self):
        """Test placeholders and empty entries are handled"""
        info = {
            "title": "Road Trip",
            "entries": [
                {"id": "aaa", "title": "Song A", "channel": "Band", "duration": 200,
                 "url": "https://www.youtube.com/watch?v=aaa"},
                None,
                {"id": "bbb", "title": "[Deleted video]"},
                {"id": "ccc", "title": "[Private video]"},
            ],
        }
        patcher, ydl = mock_youtube_dl(lambda url, download=False: info)
        platform = YouTubePlatform(ToolsConfig())

        with patcher as factory:
            playlist = platform.list_tracks(SourceDescriptor("youtube", "https://www.youtube.com/playlist?list=PL1"))
            options = factory.call_args[0][0]

        assert options["extract_flat"] == "in_playlist"
        assert options["ignoreerrors"] is True
        assert playlist.title == "Road Trip"
        assert [t.identity.upstream_id for t in playlist.tracks] == ["aaa", "ccc"]
        first, private = playlist.tracks
        assert first.identity == ContentIdentity("youtube", "aaa")
        assert first.metadata.artist == "Band"
        assert first.metadata.duration == 200.0
        assert not first.restricted
        assert private.restricted
        assert private.metadata.url == "https://www.youtube.com/watch?v=ccc"

    def test_soundcloud_listing_is_not_flat(self):
        """Test SoundCloud sets are fully extracted"""
        info = {"title": "Set", "entries": [
            {"id": 123, "title": "T", "uploader": "U", "webpage_url": "https://soundcloud.com/u/t"}
        ]}
        patcher, _ = mock_youtube_dl(lambda url, download=False: info)

        with patcher as factory:
            playlist = SoundCloudPlatform(ToolsConfig()).list_tracks(
                SourceDescriptor("soundcloud", "https://soundcloud.com/u/sets/s")
            )
            options = factory.call_args[0][0]

        assert "extract_flat" not in options
        assert playlist.tracks[0].identity == ContentIdentity("soundcloud", "123")
        assert playlist.tracks[0].metadata.url == "https://soundcloud.com/u/t"

    @pytest.mark.parametrize("message, kind", [
        ("ERROR: HTTP Error 404: Not Found", FetchErrorKind.NOT_FOUND),
        ("ERROR: Sign in to view this playlist", FetchErrorKind.AUTH_REQUIRED),
        ("<urlopen error timed out>", FetchErrorKind.NETWORK),
    ])
    def test_listing_errors(self, message, kind):
        """Test listing failures become FetchError with a kind"""
        patcher, _ = mock_youtube_dl(raising(message))

        with patcher, pytest.raises(FetchError) as exc_info:
            SoundCloudPlatform(ToolsConfig()).list_tracks(
                SourceDescriptor("soundcloud", "https://soundcloud.com/u/sets/s")
            )

        assert exc_info.value.kind == kind


class TestProbe:
    """Test single track probes"""

    URL = "https://soundcloud.com/u/t"
    IDENTITY = ContentIdentity("soundcloud", "1")

    def test_available(self):
        """Test extracted info means AVAILABLE"""
        patcher, _ = mock_youtube_dl(lambda url, download=False: {"id": "1", "title": "T"})
        with patcher:
            assert SoundCloudPlatform(ToolsConfig()).probe(self.IDENTITY, self.URL) == ProbeResult.AVAILABLE

    @pytest.mark.parametrize("message, expected", [
        (GEO_ERR_LINE_1, ProbeResult.RESTRICTED),
        ("ERROR: HTTP Error 404: Not Found", ProbeResult.DELETED),
        ("The read operation timed out", ProbeResult.UNKNOWN),
        ("HTTP Error 429: Too Many Requests", ProbeResult.UNKNOWN),
    ])
    def test_errors(self, message, expected):
        """Test probe maps only explicit signals to permanent results"""
        patcher, _ = mock_youtube_dl(raising(message))
        with patcher:
            assert SoundCloudPlatform(ToolsConfig()).probe(self.IDENTITY, self.URL) == expected


class TestFetch:
    """Test downloads into a staging directory"""

    IDENTITY = ContentIdentity("soundcloud", "1")
    METADATA = TrackMetadata("Title", "Artist", "https://soundcloud.com/u/t")

    def test_success(self, temp_dir):
        """Test the staged file is returned with extractor metadata"""
        def extract(url, download=False):
            (temp_dir / "track.mp3").write_bytes(b"audio")
            return {"id": "1", "title": "Real Title", "uploader": "Real Artist", "duration": 187}

        patcher, _ = mock_youtube_dl(extract)
        with patcher as factory:
            asset = SoundCloudPlatform(ToolsConfig(), save_thumbnails=False).fetch(
                self.IDENTITY, self.METADATA, temp_dir
            )
            options = factory.call_args[0][0]

        assert asset.audio_path == temp_dir / "track.mp3"
        assert asset.metadata == TrackMetadata("Real Title", "Real Artist", self.METADATA.url, 187.0)
        assert asset.thumbnail_path is None
        assert options["postprocessors"][0]["preferredcodec"] == "mp3"
        assert options["outtmpl"]["default"] == str(temp_dir / "track.%(ext)s")

    def test_permanent_error_not_retried(self, temp_dir):
        """Test a geo restriction fails immediately as RESTRICTED"""
        patcher, ydl = mock_youtube_dl(raising(GEO_ERR_LINE_1))
        sleep = MagicMock()

        with patcher, pytest.raises(DownloadError) as exc_info:
            SoundCloudPlatform(ToolsConfig(retries=2), sleep=sleep).fetch(self.IDENTITY, self.METADATA, temp_dir)

        assert exc_info.value.kind == DownloadErrorKind.RESTRICTED
        assert ydl.extract_info.call_count == 1
        sleep.assert_not_called()

    def test_transient_error_retried(self, temp_dir):
        """Test network errors are retried, then reported as TRANSIENT"""
        patcher, ydl = mock_youtube_dl(raising("Connection reset by peer"))
        sleep = MagicMock()

        with patcher, pytest.raises(DownloadError) as exc_info:
            SoundCloudPlatform(ToolsConfig(retries=2), sleep=sleep).fetch(self.IDENTITY, self.METADATA, temp_dir)

        assert exc_info.value.kind == DownloadErrorKind.TRANSIENT
        assert ydl.extract_info.call_count == 3
        assert sleep.call_count == 2

    def test_rate_limit_stops_retrying(self, temp_dir):
        """Test rate limiting gives up for this pass"""
        patcher, ydl = mock_youtube_dl(raising("HTTP Error 429: Too Many Requests"))

        with patcher, pytest.raises(DownloadError) as exc_info:
            SoundCloudPlatform(ToolsConfig(retries=2), sleep=MagicMock()).fetch(
                self.IDENTITY, self.METADATA, temp_dir
            )

        assert exc_info.value.is_transient
        assert ydl.extract_info.call_count == 1


class TestBuildPlatforms:
    """Test platform construction from config"""

    def test_one_instance_per_platform(self, temp_dir):
        """Test only referenced platforms are built"""
        config = Config(
            paths=PathsConfig(data_root=temp_dir),
            sync=SyncConfig(),
            tools=ToolsConfig(),
            sources=(
                SourceDescriptor("soundcloud", "https://soundcloud.com/a/sets/1"),
                SourceDescriptor("soundcloud", "https://soundcloud.com/a/sets/2"),
            ),
        )
        platforms = build_platforms(config)
        assert list(platforms) == ["soundcloud"]
        assert isinstance(platforms["soundcloud"], SoundCloudPlatform)

    def test_unsupported_platform(self, temp_dir):
        """Test an unknown platform tag raises PlatformError"""
        config = Config(
            paths=PathsConfig(data_root=temp_dir),
            sync=SyncConfig(),
            tools=ToolsConfig(),
            sources=(SourceDescriptor("bandcamp", "https://x.bandcamp.com/album/y"),),
        )
        with pytest.raises(PlatformError):
            build_platforms(config)

    def test_missing_ffmpeg(self):
        """Test check_requirements reports a missing ffmpeg"""
        with patch("playlist_archiver.platforms.ytdlp.shutil.which", return_value=None):
            with pytest.raises(PlatformError):
                SoundCloudPlatform(ToolsConfig()).check_requirements()


class TestThumbnail:
    """Test cover art conversion"""

    def test_png_converted_to_jpg(self, temp_dir):
        """Test a staged PNG becomes cover.jpg"""
        Image.new("RGBA", (8, 8), (255, 0, 0, 128)).save(temp_dir / "cover.png")

        cover = convert_thumbnail(temp_dir)

        assert cover == temp_dir / "cover.jpg"
        assert not (temp_dir / "cover.png").exists()
        with Image.open(cover) as image:
            assert image.format == "JPEG"

    def test_invalid_image_is_skipped(self, temp_dir):
        """Test an unreadable thumbnail doesn't fail the download"""
        (temp_dir / "cover.webp").write_bytes(b"not an image")
        assert convert_thumbnail(temp_dir) is None

    def test_no_thumbnail(self, temp_dir):
        """Test a directory without thumbnail"""
        assert convert_thumbnail(temp_dir) is None
