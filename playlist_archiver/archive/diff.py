"""
Playlist diff logic.

diff() compares the persisted state of a source with a fresh remote listing
and classifies every identity. It is a pure function: it reads nothing from
disk or network and mutates nothing. The ReconciliationEngine applies the
result.

Classification:
    added               listed remotely, not PRESENT in the previous state
                        (brand new, or re-added after a removal)
    still_present       listed remotely and PRESENT in the previous state
    missing             PRESENT in the previous state, not listed remotely
    restriction_changes listed remotely and indexed, where the listing's
                        restricted flag disagrees with the indexed status

Example:
    prev   = [A, B, C]  (all PRESENT)
    remote = [A, C, D]

    result = diff(prev, remote)
    result.added          # [D]
    result.still_present  # [A, C]
    result.missing        # [B]
"""

from dataclasses import dataclass, field
from typing import Mapping, Sequence

from playlist_archiver.archive.models import (
    ContentIdentity,
    LifecycleStatus,
    PlaylistMembership,
    SourceState,
    TrackRecord,
)


@dataclass(frozen=True)
class RestrictionChange:
    """A listed, indexed identity whose status should flip."""
    record: TrackRecord
    new_status: LifecycleStatus

    @property
    def identity(self) -> ContentIdentity:
        return self.record.identity


@dataclass(frozen=True)
class DiffResult:
    """
    Outcome of diff().

    Attributes:
        remote: The remote listing with duplicate identities collapsed,
                in upstream order.
        added: Records of `remote` not PRESENT before, in upstream order.
        still_present: Records of `remote` PRESENT before, in upstream order.
        missing: Previously PRESENT memberships not listed anymore, in their
                 previous order.
        restriction_changes: Status flips signalled by the listing.
    """
    remote: tuple[TrackRecord, ...] = ()
    added: tuple[TrackRecord, ...] = ()
    still_present: tuple[TrackRecord, ...] = ()
    missing: tuple[PlaylistMembership, ...] = ()
    restriction_changes: tuple[RestrictionChange, ...] = field(default=())

    @property
    def is_empty(self) -> bool:
        """True when nothing was added, lost or flipped."""
        return not (self.added or self.missing or self.restriction_changes)


def dedupe_records(remote: Sequence[TrackRecord]) -> list[TrackRecord]:
    """Collapse repeated identities, keeping the first occurrence."""
    seen: set[ContentIdentity] = set()
    unique: list[TrackRecord] = []
    for record in remote:
        if record.identity in seen:
            continue
        seen.add(record.identity)
        unique.append(record)
    return unique


def diff(
    prev: SourceState | None,
    remote: Sequence[TrackRecord],
    statuses: Mapping[ContentIdentity, LifecycleStatus] | None = None
) -> DiffResult:
    """
    Classify a remote listing against the previous state of its source.

    Args:
        prev: Persisted state, or None on the first encounter of the source.
        remote: Ordered listing from the platform.
        statuses: Current index status of the identities involved
                  (typically ArchiveIndex.statuses()). Identities missing
                  from the mapping are treated as not indexed and never
                  produce restriction changes.

    Returns:
        DiffResult with every listed identity in exactly one of added or
        still_present.
    """
    statuses = statuses or {}
    unique = dedupe_records(remote)

    previous_present = [] if prev is None else prev.present()
    present_ids = {member.identity for member in previous_present}
    remote_ids = {record.identity for record in unique}

    added = tuple(r for r in unique if r.identity not in present_ids)
    still_present = tuple(r for r in unique if r.identity in present_ids)
    missing = tuple(m for m in previous_present if m.identity not in remote_ids)

    changes: list[RestrictionChange] = []
    for record in unique:
        status = statuses.get(record.identity)
        if status is None:
            continue
        if record.restricted and status != LifecycleStatus.RESTRICTED:
            changes.append(RestrictionChange(record, LifecycleStatus.RESTRICTED))
        elif not record.restricted and status == LifecycleStatus.RESTRICTED:
            changes.append(RestrictionChange(record, LifecycleStatus.ACTIVE))

    return DiffResult(
        remote=tuple(unique),
        added=added,
        still_present=still_present,
        missing=missing,
        restriction_changes=tuple(changes),
    )
