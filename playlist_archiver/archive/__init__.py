"""
Archive module for playlist-archiver.

This module holds the domain model and the state that survives between passes:
    - models: Identities, index entries, memberships, source states
    - index: Thread-safe ArchiveIndex with per-identity download claims
    - diff: Pure comparison of a remote listing with persisted state

Usage:
    from playlist_archiver.archive import ArchiveIndex, ContentIdentity, diff
"""

from playlist_archiver.archive.models import (
    ContentIdentity,
    FetchedAsset,
    HistoryRecord,
    IndexEntry,
    LifecycleStatus,
    MembershipStatus,
    PlaylistMembership,
    ProbeResult,
    RemotePlaylist,
    SourceDescriptor,
    SourceState,
    TrackMetadata,
    TrackRecord,
)
from playlist_archiver.archive.index import ArchiveIndex, DownloadClaim, DownloadOutcome
from playlist_archiver.archive.diff import DiffResult, RestrictionChange, diff

__all__ = [
    # Models
    "ContentIdentity",
    "FetchedAsset",
    "HistoryRecord",
    "IndexEntry",
    "LifecycleStatus",
    "MembershipStatus",
    "PlaylistMembership",
    "ProbeResult",
    "RemotePlaylist",
    "SourceDescriptor",
    "SourceState",
    "TrackMetadata",
    "TrackRecord",
    # Index
    "ArchiveIndex",
    "DownloadClaim",
    "DownloadOutcome",
    # Diff
    "DiffResult",
    "RestrictionChange",
    "diff",
]
