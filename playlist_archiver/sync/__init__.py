"""
Reconciliation for playlist-archiver.

    - engine: ReconciliationEngine, one pass over the configured sources
    - playlist_writer: .m3u generation from SourceState + ArchiveIndex
"""

from playlist_archiver.sync.engine import (
    IdentityError,
    PassReport,
    ReconciliationEngine,
    SourceOutcome,
    SourceReport,
)
from playlist_archiver.sync.playlist_writer import PlaylistWriter

__all__ = [
    "IdentityError",
    "PassReport",
    "PlaylistWriter",
    "ReconciliationEngine",
    "SourceOutcome",
    "SourceReport",
]
