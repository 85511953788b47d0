"""
playlist-archiver: Archive remote playlists into a permanent local library.

This package keeps a deduplicated, append-only archive of the tracks that
appear in SoundCloud and YouTube playlists. Every reconciliation pass compares
each remote playlist with the locally persisted state, downloads what is new,
records what vanished, and regenerates an .m3u playlist for a media server.

An archived audio file is never deleted. Tracks that leave a playlist, get
deleted upstream, or become restricted only change membership and lifecycle
markers in the index.

Architecture:
    A pass runs in these steps for each configured source:

    FETCH (platforms/): List the remote playlist
        - Extract the playlist manifest with yt-dlp
        - Produce an ordered list of TrackRecords

    DIFF (archive/diff.py): Compare with the persisted SourceState
        - Classify identities as added, still present, missing
        - Detect restriction changes reported by the listing

    CONVERGE (sync/engine.py): Apply the diff
        - Download new identities at most once across all sources
        - Probe missing identities to tell deletion from removal
        - Record lifecycle transitions in the ArchiveIndex

    COMMIT (core/persistence.py, sync/playlist_writer.py)
        - Atomically write index.json and sources/<id>.json
        - Regenerate playlists/<id>.m3u

Modules:
    core/       - Configuration, persistence, logging, exceptions, progress
    archive/    - Data model, ArchiveIndex, diff logic
    platforms/  - yt-dlp backed fetch, probe and download per platform
    sync/       - Reconciliation engine and playlist writer
    utils/      - Filename and path helpers
    cli.py      - Command-line interface

Usage:
    Command Line:
        plarchive
        plarchive --watch
        plarchive --source "https://soundcloud.com/user/sets/likes"
        plarchive --status

    Python API:
        from playlist_archiver.core import load_config, setup_logging
        from playlist_archiver.core.persistence import PersistenceLayer
        from playlist_archiver.platforms import build_platforms
        from playlist_archiver.sync import ReconciliationEngine

        config = load_config()
        setup_logging(config.paths.data_root)
        persistence = PersistenceLayer(config.paths.data_root)
        engine = ReconciliationEngine(
            config, persistence, persistence.load_index(), build_platforms(config)
        )
        report = engine.run_pass()
"""

__version__ = "1.0.0"
__author__ = "playlist-archiver"
