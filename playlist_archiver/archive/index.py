"""
Thread-safe global index of archived content.

The ArchiveIndex is a registry keyed by ContentIdentity: each archived track
is stored once, no matter how many sources list it. Sources refer to entries
by identity through their memberships.

Guarantees:
    - Entries are never removed.
    - An entry's audio_path is set on creation and never replaced.
    - Every status change appends a HistoryRecord.
    - At most one download per identity is in flight at any time (claims).

Claims:
    A source that wants to download an identity first calls claim(). The
    first caller becomes the owner and downloads; later callers receive the
    same DownloadClaim and wait() for the owner's DownloadOutcome instead of
    downloading again. The index lock is only held while the claim table
    changes, never during the download itself.

Usage:
    index = ArchiveIndex()

    claim, owner = index.claim(identity)
    if owner:
        try:
            entry = download_and_build_entry(...)
            index.upsert(entry)
            outcome = DownloadOutcome(entry=entry)
        except DownloadError as e:
            outcome = DownloadOutcome(error=e)
        finally:
            index.release(claim, outcome)
    else:
        outcome = claim.wait(timeout=900)
"""

import threading
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Iterable

from playlist_archiver.archive.models import (
    ContentIdentity,
    HistoryRecord,
    IndexEntry,
    LifecycleStatus,
    TrackMetadata,
)
from playlist_archiver.core.exceptions import DownloadError, DownloadErrorKind
from playlist_archiver.core.logger import get_logger

logger = get_logger(__name__)


INDEX_VERSION = 1


@dataclass(frozen=True)
class DownloadOutcome:
    """
    Result of a claimed download, shared with every waiter.

    Exactly one of entry/error is set.
    """
    entry: IndexEntry | None = None
    error: DownloadError | None = None

    @property
    def succeeded(self) -> bool:
        return self.entry is not None


class DownloadClaim:
    """
    In-flight download of one identity.

    Created by ArchiveIndex.claim(); completed by ArchiveIndex.release().
    """

    def __init__(self, identity: ContentIdentity) -> None:
        self.identity = identity
        self.outcome: DownloadOutcome | None = None
        self._done = threading.Event()

    def wait(self, timeout: float | None = None) -> DownloadOutcome:
        """
        Block until the owner releases the claim.

        A timeout is reported as a transient failure so the caller simply
        retries on the next pass.
        """
        if not self._done.wait(timeout) or self.outcome is None:
            return DownloadOutcome(
                error=DownloadError(
                    f"Timed out waiting for concurrent download of {self.identity}",
                    kind=DownloadErrorKind.TRANSIENT,
                    details={"identity": self.identity.key}
                )
            )
        return self.outcome

    def _complete(self, outcome: DownloadOutcome) -> None:
        self.outcome = outcome
        self._done.set()


class ArchiveIndex:
    """
    Global registry of IndexEntry objects.

    All public methods acquire self._lock. Returned entries are immutable
    (frozen dataclasses), so callers can hold on to them safely.
    """

    def __init__(self, entries: Iterable[IndexEntry] = ()) -> None:
        self._lock = threading.Lock()
        self._entries: dict[ContentIdentity, IndexEntry] = {
            entry.identity: entry for entry in entries
        }
        self._claims: dict[ContentIdentity, DownloadClaim] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, identity: ContentIdentity) -> bool:
        with self._lock:
            return identity in self._entries

    # =========================================================================
    # Lookup
    # =========================================================================

    def get(self, identity: ContentIdentity) -> IndexEntry | None:
        with self._lock:
            return self._entries.get(identity)

    def entries(self) -> list[IndexEntry]:
        """All entries, ordered by identity key."""
        with self._lock:
            return sorted(self._entries.values(), key=lambda e: e.identity.key)

    def statuses(self, identities: Iterable[ContentIdentity]) -> dict[ContentIdentity, LifecycleStatus]:
        """Current status of every given identity that has an entry."""
        with self._lock:
            return {
                identity: self._entries[identity].status
                for identity in identities
                if identity in self._entries
            }

    # =========================================================================
    # Mutation
    # =========================================================================

    def upsert(self, entry: IndexEntry) -> IndexEntry:
        """
        Insert a new entry or update an existing one.

        For an existing identity only status, metadata, last_seen, history
        and an unset thumbnail_path are taken from `entry`. The stored
        audio_path and created_at are kept.

        Returns:
            The entry as stored.
        """
        with self._lock:
            existing = self._entries.get(entry.identity)
            if existing is None:
                self._entries[entry.identity] = entry
                return entry

            if entry.audio_path != existing.audio_path:
                logger.warning(
                    f"Ignoring new audio path for {entry.identity}: "
                    f"keeping {existing.audio_path}"
                )

            merged = replace(
                existing,
                status=entry.status,
                metadata=entry.metadata,
                last_seen=max(existing.last_seen, entry.last_seen),
                history=entry.history if len(entry.history) >= len(existing.history) else existing.history,
                thumbnail_path=existing.thumbnail_path or entry.thumbnail_path,
            )
            self._entries[entry.identity] = merged
            return merged

    def mark_status(
        self,
        identity: ContentIdentity,
        status: LifecycleStatus,
        at: datetime,
        reason: str,
        source_id: str | None = None
    ) -> bool:
        """
        Change the lifecycle status of an entry and record the transition.

        Returns:
            True if the status changed, False if it already had `status`.

        Raises:
            KeyError: If the identity has no entry.
        """
        with self._lock:
            existing = self._entries[identity]
            if existing.status == status:
                return False

            record = HistoryRecord(
                at=at,
                from_status=existing.status,
                to_status=status,
                reason=reason,
                source_id=source_id,
            )
            self._entries[identity] = replace(
                existing,
                status=status,
                history=existing.history + (record,),
            )
            return True

    def touch(
        self,
        identity: ContentIdentity,
        at: datetime,
        metadata: TrackMetadata | None = None
    ) -> bool:
        """
        Refresh last_seen and, if given, the metadata of an entry.

        Returns:
            False if the identity has no entry.
        """
        with self._lock:
            existing = self._entries.get(identity)
            if existing is None:
                return False

            updated = replace(existing, last_seen=max(existing.last_seen, at))
            if metadata is not None:
                # Keep a known duration when the listing doesn't report one
                if metadata.duration is None and existing.metadata.duration is not None:
                    metadata = replace(metadata, duration=existing.metadata.duration)
                updated = replace(updated, metadata=metadata)
            self._entries[identity] = updated
            return True

    # =========================================================================
    # Download claims
    # =========================================================================

    def claim(self, identity: ContentIdentity) -> tuple[DownloadClaim, bool]:
        """
        Claim the right to download an identity.

        Returns:
            (claim, owner). owner is True for the caller that must perform
            the download and release the claim; False for callers that
            should wait() on the returned claim.
        """
        with self._lock:
            existing = self._claims.get(identity)
            if existing is not None:
                return existing, False

            claim = DownloadClaim(identity)
            self._claims[identity] = claim
            return claim, True

    def release(self, claim: DownloadClaim, outcome: DownloadOutcome) -> None:
        """Publish the owner's outcome to all waiters and drop the claim."""
        with self._lock:
            if self._claims.get(claim.identity) is claim:
                del self._claims[claim.identity]
        claim._complete(outcome)

    def in_flight(self) -> list[ContentIdentity]:
        with self._lock:
            return list(self._claims)

    # =========================================================================
    # Serialization
    # =========================================================================

    def snapshot(self) -> dict[str, Any]:
        """
        Consistent serializable copy of the whole index.

        Taken under the lock, so it never contains a half-applied update.
        """
        with self._lock:
            entries = sorted(self._entries.values(), key=lambda e: e.identity.key)
            return {
                "version": INDEX_VERSION,
                "entries": {entry.identity.key: entry.to_dict() for entry in entries},
            }

    @classmethod
    def from_snapshot(cls, data: dict[str, Any]) -> "ArchiveIndex":
        """
        Rebuild an index from snapshot().

        Raises:
            KeyError, ValueError: If the snapshot is malformed.
        """
        raw_entries = data.get("entries", {})
        if not isinstance(raw_entries, dict):
            raise ValueError("'entries' must be an object")
        return cls(IndexEntry.from_dict(key, value) for key, value in raw_entries.items())

    def stats(self) -> dict[str, int]:
        """Entry counts: total plus one key per lifecycle status."""
        with self._lock:
            counts = {status.value: 0 for status in LifecycleStatus}
            for entry in self._entries.values():
                counts[entry.status.value] += 1
            counts["total"] = len(self._entries)
            return counts
