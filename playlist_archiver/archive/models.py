"""
Data models for the archive.

This module defines the immutable data structures shared by the index,
the diff logic, the platforms and the reconciliation engine.

Identity:
    Every piece of content is identified by a ContentIdentity, the pair
    (platform, upstream_id). Two sources that list the same identity share a
    single IndexEntry and a single audio file. There is no cross-platform
    deduplication: the same song on SoundCloud and YouTube is two identities.

Persistence Format:
    All models convert to and from plain dictionaries (to_dict/from_dict) so
    they can be stored in index.json and sources/<source_id>.json.
    Timestamps are stored as ISO 8601 strings. Audio paths are stored
    relative to the audio root so the library can be relocated.

Usage:
    from playlist_archiver.archive.models import ContentIdentity, TrackRecord

    identity = ContentIdentity("soundcloud", "123456")
    identity.key  # "soundcloud:123456"
"""

import hashlib
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from playlist_archiver.utils import slugify


class LifecycleStatus(Enum):
    """Upstream availability of an archived identity."""
    ACTIVE = "active"
    DELETED = "deleted"
    RESTRICTED = "restricted"


class MembershipStatus(Enum):
    """Whether an identity is still listed in a source playlist."""
    PRESENT = "present"
    REMOVED = "removed"


class ProbeResult(Enum):
    """Answer of a single-identity availability check."""
    AVAILABLE = "available"
    DELETED = "deleted"
    RESTRICTED = "restricted"
    UNKNOWN = "unknown"


def _parse_time(value: str | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromisoformat(value)


def _format_time(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


@dataclass(frozen=True, order=True)
class ContentIdentity:
    """
    Globally unique identity of a piece of content.

    Attributes:
        platform: Platform tag ("soundcloud", "youtube").
        upstream_id: The platform's own identifier for the track.
    """
    platform: str
    upstream_id: str

    @property
    def key(self) -> str:
        """String form used as a JSON key: "<platform>:<upstream_id>"."""
        return f"{self.platform}:{self.upstream_id}"

    @classmethod
    def from_key(cls, key: str) -> "ContentIdentity":
        """
        Parse the string form produced by `key`.

        Raises:
            ValueError: If the key has no platform prefix.
        """
        platform, sep, upstream_id = key.partition(":")
        if not sep or not platform or not upstream_id:
            raise ValueError(f"Invalid identity key: {key!r}")
        return cls(platform=platform, upstream_id=upstream_id)

    def __str__(self) -> str:
        return self.key


@dataclass(frozen=True)
class TrackMetadata:
    """
    Descriptive metadata of a track, as last seen upstream.

    Attributes:
        title: Track title.
        artist: Uploader or artist name.
        url: Canonical URL of the track page (used for probes and downloads).
        duration: Duration in seconds, None if unknown.
    """
    title: str
    artist: str
    url: str
    duration: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "artist": self.artist,
            "url": self.url,
            "duration": self.duration,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TrackMetadata":
        return cls(
            title=data.get("title", "Unknown"),
            artist=data.get("artist", "Unknown"),
            url=data.get("url", ""),
            duration=data.get("duration"),
        )

    @property
    def display_name(self) -> str:
        """"Artist - Title" form used in logs and #EXTINF lines."""
        return f"{self.artist} - {self.title}"


@dataclass(frozen=True)
class HistoryRecord:
    """
    One lifecycle transition of an IndexEntry.

    The first record of every entry has from_status None and carries the
    audio_path of the archived asset. Later records describe status changes
    and the source whose pass observed them.
    """
    at: datetime
    from_status: LifecycleStatus | None
    to_status: LifecycleStatus
    reason: str
    source_id: str | None = None
    audio_path: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "at": _format_time(self.at),
            "from": self.from_status.value if self.from_status else None,
            "to": self.to_status.value,
            "reason": self.reason,
            "source": self.source_id,
        }
        if self.audio_path is not None:
            data["audio_path"] = self.audio_path
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HistoryRecord":
        from_status = data.get("from")
        return cls(
            at=_parse_time(data["at"]),
            from_status=LifecycleStatus(from_status) if from_status else None,
            to_status=LifecycleStatus(data["to"]),
            reason=data.get("reason", ""),
            source_id=data.get("source"),
            audio_path=data.get("audio_path"),
        )


@dataclass(frozen=True)
class IndexEntry:
    """
    The single archived copy of a ContentIdentity.

    An entry exists only once its audio has been archived. It is never
    removed from the index, and its audio_path never changes after creation.

    Attributes:
        identity: The identity this entry archives.
        audio_path: Path of the audio file, relative to the audio root (POSIX form).
        status: Current upstream lifecycle status.
        metadata: Latest known metadata.
        created_at: When the asset was archived.
        last_seen: Last time any source listed this identity.
        history: Ordered lifecycle transitions, oldest first.
        thumbnail_path: Optional cover image path, relative to the audio root.
    """
    identity: ContentIdentity
    audio_path: str
    status: LifecycleStatus
    metadata: TrackMetadata
    created_at: datetime
    last_seen: datetime
    history: tuple[HistoryRecord, ...] = ()
    thumbnail_path: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "audio_path": self.audio_path,
            "thumbnail_path": self.thumbnail_path,
            "status": self.status.value,
            "metadata": self.metadata.to_dict(),
            "created_at": _format_time(self.created_at),
            "last_seen": _format_time(self.last_seen),
            "history": [record.to_dict() for record in self.history],
        }

    @classmethod
    def from_dict(cls, key: str, data: dict[str, Any]) -> "IndexEntry":
        return cls(
            identity=ContentIdentity.from_key(key),
            audio_path=data["audio_path"],
            thumbnail_path=data.get("thumbnail_path"),
            status=LifecycleStatus(data.get("status", LifecycleStatus.ACTIVE.value)),
            metadata=TrackMetadata.from_dict(data.get("metadata", {})),
            created_at=_parse_time(data["created_at"]),
            last_seen=_parse_time(data.get("last_seen") or data["created_at"]),
            history=tuple(HistoryRecord.from_dict(r) for r in data.get("history", [])),
        )


@dataclass(frozen=True)
class PlaylistMembership:
    """
    Relation between a source playlist and an identity.

    Attributes:
        identity: The member identity.
        status: PRESENT while the playlist lists it, REMOVED afterwards.
        metadata: Snapshot of the metadata seen in this playlist. Needed to
                  probe or retry identities that have no IndexEntry.
        unavailable: Set when the identity was never archived because the
                     download failed permanently (DELETED or RESTRICTED).
                     None for archived identities.
    """
    identity: ContentIdentity
    status: MembershipStatus
    metadata: TrackMetadata
    unavailable: LifecycleStatus | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "identity": self.identity.key,
            "status": self.status.value,
            "metadata": self.metadata.to_dict(),
            "unavailable": self.unavailable.value if self.unavailable else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PlaylistMembership":
        unavailable = data.get("unavailable")
        return cls(
            identity=ContentIdentity.from_key(data["identity"]),
            status=MembershipStatus(data["status"]),
            metadata=TrackMetadata.from_dict(data.get("metadata", {})),
            unavailable=LifecycleStatus(unavailable) if unavailable else None,
        )

    @property
    def is_present(self) -> bool:
        return self.status == MembershipStatus.PRESENT


@dataclass(frozen=True)
class SourceDescriptor:
    """
    A configured remote playlist.

    Attributes:
        platform: Platform tag ("soundcloud", "youtube").
        url: Playlist URL.
        inactive: If True the source is synced once, then skipped.
        name: Optional stable name. When given it becomes the source_id
              (and therefore the .m3u file name).
    """
    platform: str
    url: str
    inactive: bool = False
    name: str | None = None

    @property
    def source_id(self) -> str:
        """
        Stable identifier used for file names.

        Derived from the name when configured, otherwise from the platform,
        the last URL path segment and a short hash of the full URL.
        """
        if self.name:
            return slugify(self.name)
        digest = hashlib.sha1(self.url.encode("utf-8")).hexdigest()[:8]
        tail = self.url.rstrip("/").rsplit("/", 1)[-1]
        return f"{self.platform}-{slugify(tail)}-{digest}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "platform": self.platform,
            "url": self.url,
            "inactive": self.inactive,
            "name": self.name,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SourceDescriptor":
        return cls(
            platform=data["platform"],
            url=data["url"],
            inactive=bool(data.get("inactive", False)),
            name=data.get("name"),
        )


@dataclass(frozen=True)
class SourceState:
    """
    Persisted state of one source playlist.

    Attributes:
        source: The descriptor this state belongs to.
        memberships: Ordered memberships. PRESENT entries come first in
                     upstream order, REMOVED entries follow.
        last_synced: Time of the last successful pass, None before the first.
        title: Playlist title reported upstream, if known.
    """
    source: SourceDescriptor
    memberships: tuple[PlaylistMembership, ...] = ()
    last_synced: datetime | None = None
    title: str | None = None

    @classmethod
    def empty(cls, source: SourceDescriptor) -> "SourceState":
        return cls(source=source)

    @property
    def source_id(self) -> str:
        return self.source.source_id

    def membership(self, identity: ContentIdentity) -> PlaylistMembership | None:
        for member in self.memberships:
            if member.identity == identity:
                return member
        return None

    def present(self) -> list[PlaylistMembership]:
        return [m for m in self.memberships if m.is_present]

    def removed(self) -> list[PlaylistMembership]:
        return [m for m in self.memberships if not m.is_present]

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source.to_dict(),
            "title": self.title,
            "last_synced": _format_time(self.last_synced),
            "memberships": [m.to_dict() for m in self.memberships],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SourceState":
        return cls(
            source=SourceDescriptor.from_dict(data["source"]),
            title=data.get("title"),
            last_synced=_parse_time(data.get("last_synced")),
            memberships=tuple(
                PlaylistMembership.from_dict(m) for m in data.get("memberships", [])
            ),
        )


@dataclass(frozen=True)
class TrackRecord:
    """
    One entry of a remote playlist listing.

    Attributes:
        identity: Identity of the listed track.
        metadata: Metadata reported by the listing.
        restricted: True if the listing itself reported the entry as
                    private or geo-restricted.
        raw: The raw extractor entry, kept for debugging.
    """
    identity: ContentIdentity
    metadata: TrackMetadata
    restricted: bool = False
    raw: dict[str, Any] = field(default_factory=dict, compare=False, hash=False, repr=False)


@dataclass(frozen=True)
class RemotePlaylist:
    """
    A remote playlist listing.

    Attributes:
        tracks: Listed tracks in upstream order. Entries the extractor could
                not resolve at all are not included.
        title: Playlist title reported upstream, if any.
    """
    tracks: tuple[TrackRecord, ...]
    title: str | None = None


@dataclass(frozen=True)
class FetchedAsset:
    """
    Result of a successful download, still in its staging directory.

    Attributes:
        audio_path: Absolute path of the staged audio file.
        metadata: Metadata reported by the extractor during the download.
        thumbnail_path: Absolute path of the staged cover image, if any.
    """
    audio_path: Path
    metadata: TrackMetadata
    thumbnail_path: Path | None = None
