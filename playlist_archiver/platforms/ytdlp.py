"""
yt-dlp backed platform implementation.

This module implements SourcePlatform on top of the yt_dlp library. The
platform-specific subclasses (soundcloud.py, youtube.py) only change how
listings are extracted and how error messages map to permanent statuses.

Operations:
    list_tracks  extract_info(download=False) on the playlist URL with
                 ignoreerrors, so one broken entry doesn't lose the listing
    probe        extract_info(download=False) on a single track URL
    fetch        extract_info(download=True) into a staging directory,
                 audio extracted with FFmpeg, optional cover art

Error Handling:
    yt-dlp errors are captured by YtDlpCapturingLogger and classified with
    classify_error(). Only explicit signals (geo restriction, private video,
    HTTP 404, removed by uploader) are permanent; everything else, timeouts
    included, is transient and retried with exponential backoff, then again
    on the next pass.

Timeouts:
    Every call uses socket_timeout = tools.fetch_timeout. Downloads also carry
    a wall-clock deadline (tools.download_timeout) enforced by a progress and
    post-processor hook that cancels the download once it expires.

Dependencies:
    - yt-dlp: Extraction and download
    - FFmpeg: Audio extraction (must be installed)
    - mutagen: Duration of the archived file when the extractor reports none
    - Pillow: Thumbnail conversion (see thumbnail.py)
"""

import random
import shutil
import time
from enum import Enum, auto
from pathlib import Path
from typing import Any, Callable

from mutagen import File as MutagenFile
from mutagen import MutagenError
from yt_dlp import YoutubeDL
from yt_dlp.utils import DownloadCancelled, YoutubeDLError

from playlist_archiver.archive.models import (
    ContentIdentity,
    FetchedAsset,
    LifecycleStatus,
    ProbeResult,
    RemotePlaylist,
    SourceDescriptor,
    TrackMetadata,
    TrackRecord,
)
from playlist_archiver.core.config import ToolsConfig
from playlist_archiver.core.exceptions import (
    DownloadError,
    DownloadErrorKind,
    FetchError,
    FetchErrorKind,
    PlatformError,
)
from playlist_archiver.core.logger import get_logger
from playlist_archiver.platforms.base import SourcePlatform
from playlist_archiver.platforms.thumbnail import convert_thumbnail

logger = get_logger(__name__)


# =============================================================================
# Retry Configuration
# =============================================================================

BASE_DELAY = 1.5  # seconds
MAX_DELAY = 15.0  # seconds
JITTER_FACTOR = 0.3  # randomness factor for backoff

# Staged file names (thumbnail.py looks for cover.<ext>)
AUDIO_STEM = "track"
PARTIAL_SUFFIXES = {".part", ".ytdl", ".tmp"}

# Placeholder titles used in flat listings for entries that are gone
DELETED_PLACEHOLDERS = {"[Deleted video]", "[Unavailable video]"}
PRIVATE_PLACEHOLDERS = {"[Private video]"}

# "availability" values that mean the entry can't be fetched anonymously
RESTRICTED_AVAILABILITY = {"private", "premium_only", "subscriber_only", "needs_auth"}


class YtDlpCapturingLogger:
    """
    Logger object handed to yt-dlp.

    yt-dlp ignores quiet=True for certain errors and prints directly to
    stderr. This logger swallows everything and keeps the error lines, which
    carry the signals used for classification.
    """

    def __init__(self, show_errors: bool = False):
        self.show_errors = show_errors
        self.errors: list[str] = []

    @property
    def last_error(self) -> str | None:
        return self.errors[-1] if self.errors else None

    def debug(self, msg: str) -> None:
        pass

    def info(self, msg: str) -> None:
        pass

    def warning(self, msg: str) -> None:
        logger.debug(f"yt-dlp: {msg}")

    def error(self, msg: str) -> None:
        self.errors.append(msg)
        if self.show_errors:
            logger.error(msg)


class DeadlineExceeded(DownloadCancelled):
    """Raised from a yt-dlp hook when a download runs past its deadline."""
    msg = "Download timed out"


class ErrorType(Enum):
    """Classification of yt-dlp error messages."""
    RATE_LIMITED = auto()    # 429 - give up for this pass
    GEO_RESTRICTED = auto()  # Not available from this location
    PRIVATE = auto()         # Private track or video
    AUTH_REQUIRED = auto()   # Sign in / age confirmation / members only
    REMOVED = auto()         # Explicitly removed or terminated upstream
    NOT_FOUND = auto()       # HTTP 404
    UNAVAILABLE = auto()     # Generic "unavailable" without a reason
    FORBIDDEN = auto()       # 403 / no data - usually throttling
    NETWORK_ERROR = auto()   # Connection issues and timeouts
    UNKNOWN = auto()


def classify_error(error_message: str) -> ErrorType:
    """
    Classify a yt-dlp error message.

    Args:
        error_message: One or more error lines from yt-dlp.

    Returns:
        ErrorType of the first matching rule.
    """
    msg = error_message.lower()

    # Rate limiting first: YouTube's rate limit message also contains
    # "video unavailable" which would otherwise match UNAVAILABLE
    if any(x in msg for x in ["rate-limited", "rate limit", "429", "too many requests"]):
        return ErrorType.RATE_LIMITED

    if "geo restriction" in msg or "not available from your location" in msg \
            or "not available in your country" in msg:
        return ErrorType.GEO_RESTRICTED

    if "private video" in msg or "this video is private" in msg or "is private" in msg:
        return ErrorType.PRIVATE

    if any(x in msg for x in ["sign in", "confirm your age", "members-only", "http error 401"]):
        return ErrorType.AUTH_REQUIRED

    if any(x in msg for x in [
        "removed by the uploader",
        "has been removed",
        "account associated with this video has been terminated",
        "deleted",
    ]):
        return ErrorType.REMOVED

    if "http error 404" in msg or "404: not found" in msg:
        return ErrorType.NOT_FOUND

    if "unavailable" in msg:
        return ErrorType.UNAVAILABLE

    if "403" in msg or "forbidden" in msg or "did not get any data" in msg:
        return ErrorType.FORBIDDEN

    if any(x in msg for x in ["connection", "timed out", "timeout", "network",
                              "urlopen error", "name resolution"]):
        return ErrorType.NETWORK_ERROR

    return ErrorType.UNKNOWN


def calculate_backoff(attempt: int, base_delay: float = BASE_DELAY) -> float:
    """
    Calculate exponential backoff delay with jitter.

    Args:
        attempt: Current attempt number (0-indexed).
        base_delay: Base delay in seconds.

    Returns:
        Delay in seconds with jitter applied.
    """
    delay = min(base_delay * (2 ** attempt), MAX_DELAY)
    jitter = delay * JITTER_FACTOR * (2 * random.random() - 1)
    return max(0.5, delay + jitter)


def read_duration(audio_path: Path) -> float | None:
    """Duration of an audio file in seconds according to mutagen, or None."""
    try:
        audio = MutagenFile(audio_path)
    except MutagenError as e:
        logger.debug(f"Cannot read duration of {audio_path.name}: {e}")
        return None

    if audio is None or audio.info is None:
        return None
    return round(float(audio.info.length), 3)


class YtDlpPlatform(SourcePlatform):
    """
    SourcePlatform implemented with the yt_dlp library.

    Attributes:
        tools: Extractor settings (audio format, timeouts, retries, cookies).
        save_thumbnails: Whether fetch() also stores cover art.
        flat_listing: Use extract_flat for listings. Faster, but only useful
                      when the flat entries carry uploader and title.
    """

    name = ""
    flat_listing = False

    def __init__(
        self,
        tools: ToolsConfig,
        save_thumbnails: bool = True,
        sleep: Callable[[float], None] = time.sleep
    ) -> None:
        self.tools = tools
        self.save_thumbnails = save_thumbnails
        self._sleep = sleep

    # =========================================================================
    # Classification (overridden per platform)
    # =========================================================================

    def unavailable_status(self, error_type: ErrorType) -> LifecycleStatus | None:
        """
        Map a classified error to a permanent status.

        Returns:
            DELETED or RESTRICTED for explicit signals, None when the error
            says nothing definitive about the track.
        """
        if error_type in (ErrorType.GEO_RESTRICTED, ErrorType.PRIVATE, ErrorType.AUTH_REQUIRED):
            return LifecycleStatus.RESTRICTED
        if error_type in (ErrorType.REMOVED, ErrorType.NOT_FOUND):
            return LifecycleStatus.DELETED
        return None

    def listing_error_tolerated(self, error_line: str) -> bool:
        """Whether an error for a single entry of a listing is expected noise."""
        return False

    def is_restricted_entry(self, entry: dict[str, Any]) -> bool:
        """Whether an extracted entry is marked private or restricted."""
        if entry.get("title") in PRIVATE_PLACEHOLDERS:
            return True
        return entry.get("availability") in RESTRICTED_AVAILABILITY

    def track_url(self, identity: ContentIdentity) -> str | None:
        """Fallback URL for an identity whose stored URL is empty."""
        return None

    # =========================================================================
    # yt-dlp options
    # =========================================================================

    def _base_options(self, yt_logger: YtDlpCapturingLogger) -> dict[str, Any]:
        options: dict[str, Any] = {
            "quiet": True,
            "no_warnings": True,
            "noprogress": True,
            "encoding": "UTF-8",
            "socket_timeout": self.tools.fetch_timeout,
            "retries": 3,
            "extractor_retries": 2,
            "logger": yt_logger,
        }
        if self.tools.cookie_file is not None:
            options["cookiefile"] = str(self.tools.cookie_file)
        return options

    def _download_options(
        self,
        staging_dir: Path,
        yt_logger: YtDlpCapturingLogger,
        deadline: float
    ) -> dict[str, Any]:
        def enforce_deadline(_status: dict[str, Any]) -> None:
            if time.monotonic() > deadline:
                raise DeadlineExceeded()

        options = self._base_options(yt_logger)
        options.update({
            "format": "bestaudio/best",
            "outtmpl": {
                "default": str(staging_dir / f"{AUDIO_STEM}.%(ext)s"),
                "thumbnail": str(staging_dir / "cover.%(ext)s"),
            },
            "noplaylist": True,
            "writethumbnail": self.save_thumbnails,
            "keepvideo": False,
            "fragment_retries": 3,
            "progress_hooks": [enforce_deadline],
            "postprocessor_hooks": [enforce_deadline],
            "postprocessors": [
                {
                    "key": "FFmpegExtractAudio",
                    "preferredcodec": self.tools.audio_format,
                    "preferredquality": "0",
                },
                {
                    "key": "FFmpegMetadata",
                    "add_metadata": True,
                },
            ],
        })
        return options

    @staticmethod
    def _error_message(error: Exception, yt_logger: YtDlpCapturingLogger) -> str:
        message = str(error)
        # yt-dlp sometimes logs a more precise line than the one it raises
        if yt_logger.last_error and yt_logger.last_error not in message:
            message = f"{message} | {yt_logger.last_error}"
        return message

    # =========================================================================
    # SourcePlatform
    # =========================================================================

    def check_requirements(self) -> None:
        if shutil.which("ffmpeg") is None:
            raise PlatformError(
                "ffmpeg not found in PATH (required for audio extraction)",
                details={"platform": self.name, "tool": "ffmpeg"}
            )

    def list_tracks(self, source: SourceDescriptor) -> RemotePlaylist:
        yt_logger = YtDlpCapturingLogger()
        options = self._base_options(yt_logger)
        options["ignoreerrors"] = True
        if self.flat_listing:
            options["extract_flat"] = "in_playlist"

        logger.debug(f"Listing {source.url}")

        try:
            with YoutubeDL(options) as ydl:
                info = ydl.extract_info(source.url, download=False)
        except YoutubeDLError as e:
            raise self._fetch_error(source, self._error_message(e, yt_logger)) from e

        if not info:
            raise self._fetch_error(source, yt_logger.last_error or "yt-dlp returned no playlist")

        self._report_listing_errors(source, yt_logger.errors)

        raw_entries = info.get("entries")
        if raw_entries is None:
            # A single-track URL lists itself
            raw_entries = [info]

        tracks = []
        for entry in raw_entries:
            if not entry:
                continue
            record = self.track_record(entry)
            if record is not None:
                tracks.append(record)

        logger.debug(f"Listed {len(tracks)} tracks from {source.url}")
        return RemotePlaylist(tracks=tuple(tracks), title=info.get("title"))

    def _fetch_error(self, source: SourceDescriptor, message: str) -> FetchError:
        error_type = classify_error(message)
        if error_type in (ErrorType.NOT_FOUND, ErrorType.REMOVED, ErrorType.UNAVAILABLE):
            kind = FetchErrorKind.NOT_FOUND
        elif error_type in (ErrorType.AUTH_REQUIRED, ErrorType.PRIVATE):
            kind = FetchErrorKind.AUTH_REQUIRED
        else:
            kind = FetchErrorKind.NETWORK
        return FetchError(
            f"Failed to list {source.url}: {message}",
            kind=kind,
            details={"source_url": source.url, "yt_dlp_error": message}
        )

    def _report_listing_errors(self, source: SourceDescriptor, errors: list[str]) -> None:
        if not errors:
            return
        tolerated = [line for line in errors if self.listing_error_tolerated(line)]
        unexpected = len(errors) - len(tolerated)
        if tolerated:
            logger.warning(
                f"{len(tolerated)} tracks of {source.url} were not available "
                "and are left out of this listing"
            )
        if unexpected:
            logger.warning(
                f"yt-dlp reported {unexpected} unexpected errors while listing {source.url}, "
                "using the entries it could read"
            )
            for line in errors:
                if not self.listing_error_tolerated(line):
                    logger.debug(f"yt-dlp listing error: {line}")

    def track_record(self, entry: dict[str, Any]) -> TrackRecord | None:
        """Build a TrackRecord from an extracted entry, None for unusable entries."""
        upstream_id = entry.get("id")
        if not upstream_id:
            return None

        title = entry.get("title") or "Unknown"
        if title in DELETED_PLACEHOLDERS:
            logger.debug(f"Skipping deleted placeholder entry {upstream_id}")
            return None

        identity = ContentIdentity(self.name, str(upstream_id))
        duration = entry.get("duration")
        metadata = TrackMetadata(
            title=title,
            artist=entry.get("artist") or entry.get("uploader") or entry.get("channel") or "Unknown",
            url=entry.get("webpage_url") or entry.get("original_url") or entry.get("url")
            or self.track_url(identity) or "",
            duration=float(duration) if duration is not None else None,
        )
        return TrackRecord(
            identity=identity,
            metadata=metadata,
            restricted=self.is_restricted_entry(entry),
            raw=entry,
        )

    def probe(self, identity: ContentIdentity, url: str) -> ProbeResult:
        target = url or self.track_url(identity)
        if not target:
            return ProbeResult.UNKNOWN

        yt_logger = YtDlpCapturingLogger()
        options = self._base_options(yt_logger)
        options["noplaylist"] = True

        try:
            with YoutubeDL(options) as ydl:
                info = ydl.extract_info(target, download=False)
        except YoutubeDLError as e:
            message = self._error_message(e, yt_logger)
            status = self.unavailable_status(classify_error(message))
            logger.debug(f"Probe {identity}: {message}")
            if status == LifecycleStatus.DELETED:
                return ProbeResult.DELETED
            if status == LifecycleStatus.RESTRICTED:
                return ProbeResult.RESTRICTED
            return ProbeResult.UNKNOWN
        except OSError as e:
            logger.debug(f"Probe {identity} failed: {e}")
            return ProbeResult.UNKNOWN

        if not info:
            return ProbeResult.UNKNOWN
        if self.is_restricted_entry(info):
            return ProbeResult.RESTRICTED
        return ProbeResult.AVAILABLE

    def fetch(
        self,
        identity: ContentIdentity,
        metadata: TrackMetadata,
        staging_dir: Path
    ) -> FetchedAsset:
        url = metadata.url or self.track_url(identity)
        if not url:
            raise DownloadError(
                f"No URL known for {identity}",
                kind=DownloadErrorKind.TRANSIENT,
                details={"identity": identity.key}
            )

        attempts = self.tools.retries + 1
        last_error = "unknown error"

        for attempt in range(attempts):
            is_last_attempt = attempt == attempts - 1
            yt_logger = YtDlpCapturingLogger()
            deadline = time.monotonic() + self.tools.download_timeout

            try:
                options = self._download_options(staging_dir, yt_logger, deadline)
                with YoutubeDL(options) as ydl:
                    info = ydl.extract_info(url, download=True)

                if not info:
                    raise DownloadError("yt-dlp returned no info", details={"url": url})

                return self._collect_asset(staging_dir, info, metadata)

            except DeadlineExceeded:
                last_error = f"timed out after {self.tools.download_timeout}s"
                error_type = ErrorType.NETWORK_ERROR
            except YoutubeDLError as e:
                last_error = self._error_message(e, yt_logger)
                error_type = classify_error(last_error)
            except DownloadError as e:
                if not e.is_transient:
                    raise
                last_error = e.message
                error_type = ErrorType.UNKNOWN

            status = self.unavailable_status(error_type)
            if status is not None:
                kind = (DownloadErrorKind.DELETED if status == LifecycleStatus.DELETED
                        else DownloadErrorKind.RESTRICTED)
                raise DownloadError(
                    f"yt-dlp error: {last_error}",
                    kind=kind,
                    details={"url": url, "identity": identity.key}
                )

            if error_type == ErrorType.RATE_LIMITED:
                logger.warning(
                    f"{self.name} rate limiting detected. Consider reducing concurrency. "
                    "Track will be retried on the next pass."
                )
                break

            if not is_last_attempt:
                delay = calculate_backoff(attempt)
                logger.debug(
                    f"Retry {attempt + 1}/{attempts - 1} for {identity} after {delay:.1f}s "
                    f"({error_type.name})"
                )
                self._cleanup_partial_downloads(staging_dir)
                self._sleep(delay)

        raise DownloadError(
            f"yt-dlp error: {last_error}",
            kind=DownloadErrorKind.TRANSIENT,
            details={"url": url, "identity": identity.key}
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    def _find_audio_file(self, staging_dir: Path) -> Path:
        preferred = staging_dir / f"{AUDIO_STEM}.{self.tools.audio_format}"
        if preferred.exists():
            return preferred

        for candidate in sorted(staging_dir.iterdir()):
            if candidate.is_file() and candidate.stem == AUDIO_STEM \
                    and candidate.suffix not in PARTIAL_SUFFIXES:
                return candidate

        raise DownloadError(f"Downloaded file not found in {staging_dir}")

    def _collect_asset(
        self,
        staging_dir: Path,
        info: dict[str, Any],
        metadata: TrackMetadata
    ) -> FetchedAsset:
        audio_path = self._find_audio_file(staging_dir)
        if audio_path.stat().st_size == 0:
            raise DownloadError(f"Downloaded file is empty: {audio_path.name}")

        thumbnail_path = convert_thumbnail(staging_dir) if self.save_thumbnails else None

        duration = info.get("duration")
        if duration is None:
            duration = read_duration(audio_path)

        fetched_metadata = TrackMetadata(
            title=info.get("title") or metadata.title,
            artist=info.get("artist") or info.get("uploader") or metadata.artist,
            url=metadata.url or info.get("webpage_url") or "",
            duration=float(duration) if duration is not None else None,
        )
        return FetchedAsset(
            audio_path=audio_path,
            metadata=fetched_metadata,
            thumbnail_path=thumbnail_path,
        )

    def _cleanup_partial_downloads(self, staging_dir: Path) -> None:
        """Remove everything left in the staging directory by a failed attempt."""
        for leftover in staging_dir.iterdir():
            if leftover.is_file():
                leftover.unlink(missing_ok=True)
