"""
Platform interface.

Each supported platform (SoundCloud, YouTube) provides one SourcePlatform
implementation. The reconciliation engine only talks to this interface, so it
stays platform-agnostic; the source descriptor's platform tag selects the
implementation (see platforms/__init__.py).

Contract:
    list_tracks(source)              -> RemotePlaylist, raises FetchError
    probe(identity, url)             -> ProbeResult, never raises
    fetch(identity, metadata, dir)   -> FetchedAsset, raises DownloadError

Permanent classifications (deleted, restricted) must come from an explicit
signal in the extractor's error output. Timeouts and unrecognized errors are
always transient (fetch) or UNKNOWN (probe).
"""

from abc import ABC, abstractmethod
from pathlib import Path

from playlist_archiver.archive.models import (
    ContentIdentity,
    FetchedAsset,
    ProbeResult,
    RemotePlaylist,
    SourceDescriptor,
    TrackMetadata,
)


class SourcePlatform(ABC):
    """
    Fetch, probe and download capability for one platform.

    Attributes:
        name: Platform tag matching SourceDescriptor.platform.
    """

    name: str = ""

    @abstractmethod
    def list_tracks(self, source: SourceDescriptor) -> RemotePlaylist:
        """
        List the tracks of a remote playlist in upstream order.

        Raises:
            FetchError: If the playlist cannot be listed at all.
        """

    @abstractmethod
    def probe(self, identity: ContentIdentity, url: str) -> ProbeResult:
        """Check whether a single track still exists and is fetchable."""

    @abstractmethod
    def fetch(
        self,
        identity: ContentIdentity,
        metadata: TrackMetadata,
        staging_dir: Path
    ) -> FetchedAsset:
        """
        Download the audio (and optional cover) of a track into staging_dir.

        Raises:
            DownloadError: With kind TRANSIENT, DELETED or RESTRICTED.
        """

    def check_requirements(self) -> None:
        """
        Verify external tools needed by this platform are available.

        Raises:
            PlatformError: If a required tool is missing.
        """
