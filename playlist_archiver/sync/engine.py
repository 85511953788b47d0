"""
Reconciliation engine.

The engine runs one reconciliation pass: for every configured source it lists
the remote playlist, diffs it against the persisted SourceState, converges
local state, commits it and regenerates the playlist file.

Per-source workflow:
    1. list_tracks(). A FetchError leaves the source untouched.
    2. diff() against the previous state.
    3. Listed identities:
         - archived             membership PRESENT, metadata refreshed,
                                restriction flag of the listing applied,
                                DELETED entries re-validated by probe
         - not archived         downloaded under a per-identity claim
                                (at most one download across all sources)
    4. Missing identities are probed:
         - DELETED              membership REMOVED, status DELETED
         - AVAILABLE            membership REMOVED, status back to ACTIVE
         - UNKNOWN              membership REMOVED, status unchanged
         - RESTRICTED           membership REMOVED, status RESTRICTED
    5. Memberships are ordered: listed PRESENT tracks in upstream order,
       then REMOVED tracks in last-known order with newly removed ones
       appended.
    6. The index and the new SourceState are committed, then the .m3u file
       is regenerated.

Failure Handling:
    - Transient download failures change nothing for the identity; it is
      retried on the next pass.
    - Permanent download failures (DELETED / RESTRICTED) create no IndexEntry;
      the membership carries an `unavailable` marker instead.
    - Per-identity failures are collected in the SourceReport and never stop
      the other identities.
    - PersistenceError stops the pass: sources that haven't started are
      cancelled and the error is re-raised from run_pass().

Archive Layout:
    {audio_dir}/{platform}/{upstream_id}/track.{ext}
    {audio_dir}/{platform}/{upstream_id}/cover.jpg

    Files are staged in {data_root}/staging, moved next to their final name
    under a temp suffix and renamed into place before the commit, so a
    final-named file is always complete even when the move is a copy across
    filesystems. If a crash happens in between, the next pass finds the file and
    adopts it instead of downloading it again. No file is ever deleted.

Usage:
    engine = ReconciliationEngine(config, persistence, index, platforms)
    report = engine.run_pass()
    for source_report in report.sources:
        print(source_report.summary())
"""

import os
import shutil
import tempfile
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, Mapping

from playlist_archiver.archive.diff import diff
from playlist_archiver.archive.index import ArchiveIndex, DownloadOutcome
from playlist_archiver.archive.models import (
    ContentIdentity,
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
from playlist_archiver.core.config import Config
from playlist_archiver.core.exceptions import (
    DownloadError,
    DownloadErrorKind,
    FetchError,
    PersistenceError,
)
from playlist_archiver.core.logger import (
    format_transition_message,
    get_logger,
    log_archive_failure,
)
from playlist_archiver.core.persistence import TEMP_MARKER, PersistenceLayer
from playlist_archiver.core.progress import PassProgressBar
from playlist_archiver.platforms.base import SourcePlatform
from playlist_archiver.sync.playlist_writer import PlaylistWriter
from playlist_archiver.utils import ensure_directory, relative_posix, sanitize_filename

logger = get_logger(__name__)


AUDIO_STEM = "track"
PARTIAL_SUFFIXES = {".part", ".ytdl", ".tmp"}

# Extra seconds a waiting source gives the claim owner beyond its own timeouts
CLAIM_WAIT_MARGIN = 60


def utc_now() -> datetime:
    """Default clock: current UTC time, second precision."""
    return datetime.now(timezone.utc).replace(microsecond=0)


def _move_into_place(src: Path, dest: Path) -> None:
    # A move interrupted halfway leaves only the temp name behind
    tmp = dest.with_name(f"{dest.name}{TEMP_MARKER}{os.getpid()}")
    shutil.move(str(src), str(tmp))
    os.replace(tmp, dest)


# =============================================================================
# Reports
# =============================================================================

class SourceOutcome(Enum):
    """How the pass ended for one source."""
    SYNCED = "synced"
    SKIPPED = "skipped"        # inactive source already synced once
    FAILED = "failed"          # listing failed, state untouched
    CANCELLED = "cancelled"    # stop requested before the source started


@dataclass
class IdentityError:
    """A failure for one identity, collected instead of raised."""
    identity: ContentIdentity
    kind: str
    message: str


@dataclass
class SourceReport:
    """
    Result of reconciling one source.

    Attributes:
        source_id: Source identifier.
        url: Playlist URL.
        outcome: SourceOutcome of the pass.
        listed: Number of distinct identities in the listing.
        added: Identities that became PRESENT (new or re-added).
        removed: Identities that became REMOVED.
        downloaded: Identities downloaded by this source.
        adopted: Identities archived from files found on disk.
        reused: Identities archived by another source during this pass.
        status_changes: Lifecycle transitions recorded by this source.
        errors: Per-identity failures.
        message: Failure message when outcome is FAILED.
        transient: Whether a FAILED outcome is expected to clear by itself.
    """
    source_id: str
    url: str
    outcome: SourceOutcome = SourceOutcome.SYNCED
    listed: int = 0
    added: int = 0
    removed: int = 0
    downloaded: int = 0
    adopted: int = 0
    reused: int = 0
    status_changes: int = 0
    errors: list[IdentityError] = field(default_factory=list)
    message: str | None = None
    transient: bool = False

    def summary(self) -> str:
        if self.outcome != SourceOutcome.SYNCED:
            suffix = f": {self.message}" if self.message else ""
            return f"{self.source_id} {self.outcome.value}{suffix}"
        return (
            f"{self.source_id}: {self.listed} listed, +{self.added} added, "
            f"-{self.removed} removed, {self.downloaded} downloaded, "
            f"{self.status_changes} status changes, {len(self.errors)} errors"
        )


@dataclass
class PassReport:
    """Aggregate result of run_pass(), sources in configuration order."""
    started_at: datetime
    finished_at: datetime | None = None
    sources: list[SourceReport] = field(default_factory=list)

    @property
    def failed(self) -> list[SourceReport]:
        return [r for r in self.sources if r.outcome == SourceOutcome.FAILED]

    @property
    def has_failures(self) -> bool:
        return bool(self.failed)

    @property
    def downloaded(self) -> int:
        return sum(r.downloaded for r in self.sources)

    @property
    def errors(self) -> list[IdentityError]:
        return [error for r in self.sources for error in r.errors]


# =============================================================================
# Engine
# =============================================================================

class ReconciliationEngine:
    """
    Converges local archive state with remote playlists.

    Attributes:
        config: Application configuration (paths, concurrency, sources).
        persistence: PersistenceLayer used to load and commit state.
        index: Shared ArchiveIndex.
        platforms: Platform implementations keyed by platform tag.
        clock: Returns the timestamp used for every change of a source pass.
        show_progress: Display a Rich progress bar during run_pass().

    Thread Safety:
        run_pass() reconciles sources in a thread pool. Each source is
        handled by one thread; the ArchiveIndex and PersistenceLayer are
        the only shared state and both are internally locked.
    """

    def __init__(
        self,
        config: Config,
        persistence: PersistenceLayer,
        index: ArchiveIndex,
        platforms: Mapping[str, SourcePlatform],
        clock: Callable[[], datetime] | None = None,
        stop_event: threading.Event | None = None,
        show_progress: bool = False
    ) -> None:
        self.config = config
        self.persistence = persistence
        self.index = index
        self.platforms = platforms
        self.clock = clock or utc_now
        self.show_progress = show_progress
        self.writer = PlaylistWriter(config.paths)
        self._stop = stop_event or threading.Event()

    # =========================================================================
    # Pass control
    # =========================================================================

    def request_stop(self) -> None:
        """Ask the running pass to stop before starting further sources."""
        self._stop.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop.is_set()

    def wait_for_stop(self, timeout: float) -> bool:
        """Sleep between watch passes. Returns True if a stop was requested."""
        return self._stop.wait(timeout)

    def run_pass(self, sources: Iterable[SourceDescriptor] | None = None) -> PassReport:
        """
        Reconcile every given source (all configured sources by default).

        Returns:
            PassReport with one SourceReport per source.

        Raises:
            PersistenceError: If state could not be read or committed.
                              Sources already committed stay committed.
        """
        source_list = list(self.config.sources if sources is None else sources)
        report = PassReport(started_at=self.clock())

        if not source_list:
            logger.info("No sources to reconcile")
            report.finished_at = self.clock()
            return report

        ensure_directory(self.persistence.staging_dir)
        threads = min(self.config.sync.concurrency, len(source_list))
        logger.info(f"Reconciling {len(source_list)} sources with {threads} threads")

        results: dict[str, SourceReport] = {}
        persistence_error: PersistenceError | None = None
        progress = PassProgressBar(total=len(source_list)) if self.show_progress else None

        if progress is not None:
            progress.start()
        try:
            with ThreadPoolExecutor(max_workers=threads, thread_name_prefix="source") as executor:
                future_to_source = {
                    executor.submit(self._run_source, source): source
                    for source in source_list
                }

                for future in as_completed(future_to_source):
                    source = future_to_source[future]
                    try:
                        source_report = future.result()
                    except PersistenceError as e:
                        logger.critical(f"Persistence failure while syncing {source.url}: {e}")
                        self._stop.set()
                        persistence_error = persistence_error or e
                        source_report = SourceReport(
                            source_id=source.source_id,
                            url=source.url,
                            outcome=SourceOutcome.FAILED,
                            message=str(e),
                        )
                    except Exception as e:
                        logger.exception(f"Unexpected error while syncing {source.url}: {e}")
                        source_report = SourceReport(
                            source_id=source.source_id,
                            url=source.url,
                            outcome=SourceOutcome.FAILED,
                            message=f"Unexpected error: {e}",
                        )

                    results[source.source_id] = source_report
                    if progress is not None:
                        progress.advance(source_report.outcome.value)
        finally:
            if progress is not None:
                progress.stop()

        report.sources = [results[source.source_id] for source in source_list]
        report.finished_at = self.clock()

        if persistence_error is not None:
            raise persistence_error

        logger.info(
            f"Pass complete: {len(report.sources) - len(report.failed)}/{len(report.sources)} "
            f"sources ok, {report.downloaded} downloaded, {len(report.errors)} track errors"
        )
        return report

    # =========================================================================
    # Single source
    # =========================================================================

    def _run_source(self, source: SourceDescriptor) -> SourceReport:
        report = SourceReport(source_id=source.source_id, url=source.url)

        if self._stop.is_set():
            report.outcome = SourceOutcome.CANCELLED
            return report

        prev = self.persistence.load_source_state(source.source_id)

        if source.inactive and prev is not None and prev.last_synced is not None:
            logger.debug(f"Skipping inactive source {source.source_id}")
            report.outcome = SourceOutcome.SKIPPED
            return report

        platform = self.platforms.get(source.platform)
        if platform is None:
            report.outcome = SourceOutcome.FAILED
            report.message = f"No platform available for '{source.platform}'"
            logger.error(f"{source.url}: {report.message}")
            return report

        logger.info(f"Syncing {source.url}")

        try:
            listing = platform.list_tracks(source)
        except FetchError as e:
            report.outcome = SourceOutcome.FAILED
            report.message = e.message
            report.transient = e.is_transient
            if e.is_transient:
                logger.warning(f"Listing failed, will retry next pass: {e.message}")
            else:
                logger.error(f"Listing failed ({e.kind.value}): {e.message}")
            return report

        now = self.clock()
        state = self._reconcile(source, prev, listing, platform, now, report)

        self.persistence.commit(self.index, [state])
        try:
            self.writer.write(state, self.index)
        except OSError as e:
            raise PersistenceError(
                f"Failed to write playlist for {source.source_id}: {e}",
                details={"source_id": source.source_id, "original_error": str(e)}
            ) from e

        logger.info(report.summary())
        return report

    def _reconcile(
        self,
        source: SourceDescriptor,
        prev: SourceState | None,
        listing: RemotePlaylist,
        platform: SourcePlatform,
        now: datetime,
        report: SourceReport
    ) -> SourceState:
        prev_state = prev or SourceState.empty(source)
        involved = [r.identity for r in listing.tracks] + [m.identity for m in prev_state.memberships]
        result = diff(prev, listing.tracks, self.index.statuses(involved))
        report.listed = len(result.remote)

        restriction_updates = {c.identity: c.new_status for c in result.restriction_changes}

        listed: list[PlaylistMembership] = []
        for record in result.remote:
            member = self._reconcile_listed(
                source, prev_state, record, restriction_updates.get(record.identity),
                platform, now, report
            )
            if member is not None and member.is_present:
                listed.append(member)

        newly_removed = [
            self._reconcile_missing(source, member, platform, now, report)
            for member in result.missing
        ]
        report.removed += len(newly_removed)

        placed = {m.identity for m in listed + newly_removed}
        still_removed = [m for m in prev_state.removed() if m.identity not in placed]

        return SourceState(
            source=source,
            memberships=tuple(listed + still_removed + newly_removed),
            last_synced=now,
            title=listing.title or prev_state.title,
        )

    # =========================================================================
    # Listed identities
    # =========================================================================

    def _reconcile_listed(
        self,
        source: SourceDescriptor,
        prev_state: SourceState,
        record: TrackRecord,
        restriction_update: LifecycleStatus | None,
        platform: SourcePlatform,
        now: datetime,
        report: SourceReport
    ) -> PlaylistMembership | None:
        """
        Converge one listed identity.

        Returns:
            The new membership, the previous one when a transient failure
            leaves it as it was, or None for a new identity whose download
            failed transiently (it isn't recorded at all).
        """
        identity = record.identity
        prev_member = prev_state.membership(identity)
        was_present = prev_member is not None and prev_member.is_present
        entry = self.index.get(identity)

        if entry is not None:
            self.index.touch(identity, now, record.metadata)

            if entry.status == LifecycleStatus.DELETED:
                # Listed again after being seen as deleted: only a fresh
                # probe decides whether it is really back
                probe = platform.probe(identity, record.metadata.url)
                if probe == ProbeResult.AVAILABLE:
                    self._mark(identity, LifecycleStatus.ACTIVE, "revalidated: available", source, now, report)
                elif probe == ProbeResult.RESTRICTED:
                    self._mark(identity, LifecycleStatus.RESTRICTED, "revalidated: restricted", source, now, report)
            elif restriction_update is not None:
                reason = ("listing: restricted" if restriction_update == LifecycleStatus.RESTRICTED
                          else "listing: available")
                self._mark(identity, restriction_update, reason, source, now, report)

            if not was_present:
                report.added += 1
                logger.debug(f"{source.source_id}: re-added {record.metadata.display_name}")
            return PlaylistMembership(identity, MembershipStatus.PRESENT, record.metadata)

        if record.restricted:
            if prev_member is None or prev_member.unavailable != LifecycleStatus.RESTRICTED:
                log_archive_failure(
                    logger,
                    identity=identity.key,
                    display_name=record.metadata.display_name,
                    url=record.metadata.url,
                    kind="restricted",
                    source_id=source.source_id,
                    error_message="listed as private or restricted",
                )
            if not was_present:
                report.added += 1
            return PlaylistMembership(
                identity, MembershipStatus.PRESENT, record.metadata,
                unavailable=LifecycleStatus.RESTRICTED
            )

        if prev_member is not None and prev_member.unavailable is not None:
            probe = platform.probe(identity, record.metadata.url)
            if probe in (ProbeResult.DELETED, ProbeResult.RESTRICTED, ProbeResult.UNKNOWN):
                unavailable = prev_member.unavailable
                if probe == ProbeResult.DELETED:
                    unavailable = LifecycleStatus.DELETED
                elif probe == ProbeResult.RESTRICTED:
                    unavailable = LifecycleStatus.RESTRICTED
                if not was_present:
                    report.added += 1
                return PlaylistMembership(
                    identity, MembershipStatus.PRESENT, record.metadata, unavailable=unavailable
                )
            logger.info(f"{record.metadata.display_name} is available again, archiving")

        outcome = self._acquire(identity, record.metadata, source, platform, now, report)

        if outcome.succeeded:
            if not was_present:
                report.added += 1
            return PlaylistMembership(identity, MembershipStatus.PRESENT, record.metadata)

        error = outcome.error
        report.errors.append(IdentityError(identity, error.kind.value, error.message))
        log_archive_failure(
            logger,
            identity=identity.key,
            display_name=record.metadata.display_name,
            url=record.metadata.url,
            kind=error.kind.value,
            source_id=source.source_id,
            error_message=error.message,
        )

        if error.is_transient:
            return prev_member

        if not was_present:
            report.added += 1
        unavailable = (LifecycleStatus.DELETED if error.kind == DownloadErrorKind.DELETED
                       else LifecycleStatus.RESTRICTED)
        return PlaylistMembership(
            identity, MembershipStatus.PRESENT, record.metadata, unavailable=unavailable
        )

    # =========================================================================
    # Missing identities
    # =========================================================================

    def _reconcile_missing(
        self,
        source: SourceDescriptor,
        member: PlaylistMembership,
        platform: SourcePlatform,
        now: datetime,
        report: SourceReport
    ) -> PlaylistMembership:
        """
        Tell "deleted upstream" from "removed from this playlist".

        The membership always becomes REMOVED; only the lifecycle status
        (or the marker, for a track that was never archived) follows the
        probe.
        """
        identity = member.identity
        entry = self.index.get(identity)
        probe = platform.probe(identity, member.metadata.url)
        logger.debug(f"{source.source_id}: {member.metadata.display_name} missing, probe={probe.value}")

        removed = replace(member, status=MembershipStatus.REMOVED)

        if probe == ProbeResult.RESTRICTED:
            if entry is not None:
                self._mark(identity, LifecycleStatus.RESTRICTED, "probe: restricted", source, now, report)
                return removed
            return replace(removed, unavailable=LifecycleStatus.RESTRICTED)

        if probe == ProbeResult.DELETED:
            if entry is not None:
                self._mark(identity, LifecycleStatus.DELETED, "probe: deleted", source, now, report)
                return removed
            return replace(removed, unavailable=LifecycleStatus.DELETED)

        if probe == ProbeResult.AVAILABLE and entry is not None and entry.status != LifecycleStatus.ACTIVE:
            self._mark(identity, LifecycleStatus.ACTIVE, "probe: available", source, now, report)

        return removed

    def _mark(
        self,
        identity: ContentIdentity,
        status: LifecycleStatus,
        reason: str,
        source: SourceDescriptor,
        now: datetime,
        report: SourceReport
    ) -> None:
        entry = self.index.get(identity)
        old_status = entry.status if entry is not None else None
        if self.index.mark_status(identity, status, now, reason, source.source_id):
            report.status_changes += 1
            name = entry.metadata.display_name if entry is not None else identity.key
            logger.info(format_transition_message(
                name, old_status.value if old_status else None, status.value
            ))

    # =========================================================================
    # Downloads
    # =========================================================================

    def _acquire(
        self,
        identity: ContentIdentity,
        metadata: TrackMetadata,
        source: SourceDescriptor,
        platform: SourcePlatform,
        now: datetime,
        report: SourceReport
    ) -> DownloadOutcome:
        """
        Get an IndexEntry for an identity, downloading it at most once.

        The claim is released (and waiters woken) whatever happens.
        """
        claim, owner = self.index.claim(identity)

        if not owner:
            logger.debug(f"{source.source_id}: waiting for concurrent download of {identity}")
            tools = self.config.tools
            timeout = tools.download_timeout * (tools.retries + 1) + CLAIM_WAIT_MARGIN
            outcome = claim.wait(timeout=timeout)
            if outcome.succeeded:
                report.reused += 1
            return outcome

        outcome = DownloadOutcome(
            error=DownloadError("Download did not complete", kind=DownloadErrorKind.TRANSIENT)
        )
        try:
            existing = self.index.get(identity)
            if existing is not None:
                # Archived by another source between our lookup and the claim
                report.reused += 1
                outcome = DownloadOutcome(entry=existing)
            else:
                outcome = DownloadOutcome(
                    entry=self._archive(identity, metadata, source, platform, now, report)
                )
        except DownloadError as e:
            outcome = DownloadOutcome(error=e)
        except OSError as e:
            logger.error(f"Failed to store {identity}: {e}")
            outcome = DownloadOutcome(
                error=DownloadError(
                    f"Failed to store downloaded file: {e}",
                    kind=DownloadErrorKind.TRANSIENT,
                    details={"identity": identity.key, "original_error": str(e)}
                )
            )
        except Exception as e:
            logger.exception(f"Unexpected error archiving {identity}")
            outcome = DownloadOutcome(
                error=DownloadError(
                    f"Unexpected error: {e}",
                    kind=DownloadErrorKind.TRANSIENT,
                    details={"identity": identity.key, "original_error": str(e)}
                )
            )
        finally:
            self.index.release(claim, outcome)

        return outcome

    def asset_dir(self, identity: ContentIdentity) -> Path:
        return (
            self.config.paths.audio_dir
            / sanitize_filename(identity.platform, restricted=True)
            / sanitize_filename(identity.upstream_id, restricted=True)
        )

    @staticmethod
    def _find_existing_audio(asset_dir: Path) -> Path | None:
        if not asset_dir.is_dir():
            return None
        for candidate in sorted(asset_dir.iterdir()):
            if candidate.is_file() and candidate.stem == AUDIO_STEM \
                    and candidate.suffix not in PARTIAL_SUFFIXES \
                    and candidate.stat().st_size > 0:
                return candidate
        return None

    def _archive(
        self,
        identity: ContentIdentity,
        metadata: TrackMetadata,
        source: SourceDescriptor,
        platform: SourcePlatform,
        now: datetime,
        report: SourceReport
    ) -> IndexEntry:
        """
        Download (or adopt) the asset of an identity and create its IndexEntry.

        Raises:
            DownloadError: From the platform.
            OSError: If the staged files cannot be moved into place.
        """
        audio_root = self.config.paths.audio_dir
        asset_dir = self.asset_dir(identity)
        audio_path = self._find_existing_audio(asset_dir)
        thumbnail_path: Path | None = None

        if audio_path is not None:
            logger.info(f"Adopting existing file for {metadata.display_name}: {audio_path}")
            reason = "adopted"
            report.adopted += 1
            cover = asset_dir / "cover.jpg"
            if cover.exists():
                thumbnail_path = cover
        else:
            logger.info(f"Downloading {metadata.display_name}")
            staging = Path(tempfile.mkdtemp(
                prefix=f"{identity.platform}_", dir=self.persistence.staging_dir
            ))
            try:
                asset = platform.fetch(identity, metadata, staging)
                ensure_directory(asset_dir)
                if asset.thumbnail_path is not None:
                    thumbnail_path = asset_dir / asset.thumbnail_path.name
                    _move_into_place(asset.thumbnail_path, thumbnail_path)
                # Audio goes last: its presence marks a complete asset directory
                audio_path = asset_dir / f"{AUDIO_STEM}{asset.audio_path.suffix}"
                _move_into_place(asset.audio_path, audio_path)
                metadata = replace(asset.metadata, url=metadata.url or asset.metadata.url)
            finally:
                shutil.rmtree(staging, ignore_errors=True)
            reason = "downloaded"
            report.downloaded += 1

        relative_audio = relative_posix(audio_path, audio_root)
        entry = IndexEntry(
            identity=identity,
            audio_path=relative_audio,
            status=LifecycleStatus.ACTIVE,
            metadata=metadata,
            created_at=now,
            last_seen=now,
            history=(
                HistoryRecord(
                    at=now,
                    from_status=None,
                    to_status=LifecycleStatus.ACTIVE,
                    reason=reason,
                    source_id=source.source_id,
                    audio_path=relative_audio,
                ),
            ),
            thumbnail_path=relative_posix(thumbnail_path, audio_root) if thumbnail_path else None,
        )
        return self.index.upsert(entry)
