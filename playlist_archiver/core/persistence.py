"""
JSON persistence for the archive state.

This module stores the ArchiveIndex and every SourceState as JSON files under
the data root and guarantees that a crash never leaves a truncated or mixed
file behind.

Layout:
    <data_root>/
        index.json                  # ArchiveIndex snapshot
        sources/<source_id>.json    # One SourceState per source

Atomic Writes:
    Each file is written to a sibling temp file ("<name>.tmp-<pid>-<n>"),
    flushed and fsynced, then renamed over the target with os.replace().
    A crash before the rename leaves the previous file untouched; the stray
    temp file is ignored on load and swept by prepare().

Commit Order:
    commit() writes index.json first, then the changed source files. Index
    entries are append-only, so an index that is newer than a source file is
    always consistent: the next pass simply re-derives the source. Commits
    from concurrent sources are serialized by a lock.

Usage:
    persistence = PersistenceLayer(config.paths.data_root)
    persistence.prepare()
    index = persistence.load_index()
    state = persistence.load_source_state(source.source_id)
    ...
    persistence.commit(index, [new_state])
"""

import json
import os
import shutil
import threading
import time
from pathlib import Path
from typing import Any, Iterable

from playlist_archiver.archive.index import ArchiveIndex
from playlist_archiver.archive.models import SourceState
from playlist_archiver.core.exceptions import PersistenceError
from playlist_archiver.core.logger import get_logger

logger = get_logger(__name__)


INDEX_FILENAME = "index.json"
SOURCES_DIRNAME = "sources"
STAGING_DIRNAME = "staging"
TEMP_MARKER = ".tmp-"


def atomic_write_text(path: Path, content: str) -> None:
    """
    Atomically replace `path` with `content`.

    Raises:
        OSError: If writing, syncing or renaming fails. The target is
                 left untouched and the temp file removed.
    """
    tmp_path = path.with_name(f"{path.name}{TEMP_MARKER}{os.getpid()}-{time.monotonic_ns()}")
    try:
        with open(tmp_path, "w", encoding="utf-8") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        try:
            tmp_path.unlink()
        except FileNotFoundError:
            pass
        raise


class PersistenceLayer:
    """
    Reads and atomically writes index.json and sources/*.json.

    Attributes:
        data_root: Archive root directory.
        index_path: Path of index.json.
        sources_dir: Directory holding one JSON file per source.
        staging_dir: Directory for per-download temp dirs. It may sit on
                     another filesystem than the audio library.
    """

    def __init__(self, data_root: Path) -> None:
        self.data_root = data_root
        self.index_path = data_root / INDEX_FILENAME
        self.sources_dir = data_root / SOURCES_DIRNAME
        self.staging_dir = data_root / STAGING_DIRNAME
        self._commit_lock = threading.Lock()

    def prepare(self) -> None:
        """
        Create the directory layout and clean up after an interrupted run.

        Removes stray temp files left by a crash between write and rename,
        and empties the staging directory.

        Raises:
            PersistenceError: If the directories cannot be created.
        """
        try:
            self.sources_dir.mkdir(parents=True, exist_ok=True)
            self.staging_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PersistenceError(
                f"Cannot create data directories under {self.data_root}: {e}",
                details={"data_root": str(self.data_root), "original_error": str(e)}
            ) from e

        for directory in (self.data_root, self.sources_dir):
            for stray in directory.glob(f"*{TEMP_MARKER}*"):
                logger.debug(f"Removing leftover temp file: {stray}")
                stray.unlink(missing_ok=True)

        for leftover in self.staging_dir.iterdir():
            logger.debug(f"Removing leftover staging entry: {leftover}")
            if leftover.is_dir():
                shutil.rmtree(leftover, ignore_errors=True)
            else:
                leftover.unlink(missing_ok=True)

    # =========================================================================
    # Loading
    # =========================================================================

    def _read_json(self, path: Path) -> dict[str, Any] | None:
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as handle:
                data = json.load(handle)
        except json.JSONDecodeError as e:
            raise PersistenceError(
                f"Corrupted state file: {path}",
                details={"file_path": str(path), "line": e.lineno, "original_error": str(e)}
            ) from e
        except OSError as e:
            raise PersistenceError(
                f"Cannot read state file {path}: {e}",
                details={"file_path": str(path), "original_error": str(e)}
            ) from e

        if not isinstance(data, dict):
            raise PersistenceError(
                f"State file must contain a JSON object: {path}",
                details={"file_path": str(path)}
            )
        return data

    def load_index(self) -> ArchiveIndex:
        """
        Load index.json, or return an empty index if it doesn't exist yet.

        Raises:
            PersistenceError: If the file is unreadable or malformed.
        """
        data = self._read_json(self.index_path)
        if data is None:
            logger.debug(f"No index at {self.index_path}, starting empty")
            return ArchiveIndex()

        try:
            index = ArchiveIndex.from_snapshot(data)
        except (KeyError, ValueError, TypeError) as e:
            raise PersistenceError(
                f"Invalid index structure in {self.index_path}: {e}",
                details={"file_path": str(self.index_path), "original_error": str(e)}
            ) from e

        logger.debug(f"Loaded index with {len(index)} entries")
        return index

    def source_path(self, source_id: str) -> Path:
        return self.sources_dir / f"{source_id}.json"

    def load_source_state(self, source_id: str) -> SourceState | None:
        """
        Load one source state, or None if the source was never synced.

        Raises:
            PersistenceError: If the file is unreadable or malformed.
        """
        path = self.source_path(source_id)
        data = self._read_json(path)
        if data is None:
            return None

        try:
            return SourceState.from_dict(data)
        except (KeyError, ValueError, TypeError) as e:
            raise PersistenceError(
                f"Invalid source state in {path}: {e}",
                details={"file_path": str(path), "original_error": str(e)}
            ) from e

    def load_source_states(self) -> list[SourceState]:
        """All persisted source states, ordered by source id."""
        if not self.sources_dir.exists():
            return []

        states = []
        for path in sorted(self.sources_dir.glob("*.json")):
            state = self.load_source_state(path.stem)
            if state is not None:
                states.append(state)
        return states

    # =========================================================================
    # Committing
    # =========================================================================

    def commit(self, index: ArchiveIndex, changed_sources: Iterable[SourceState]) -> None:
        """
        Persist the index and the given source states.

        Each file is replaced atomically. The index is written before the
        sources, under a lock shared by all commits.

        Raises:
            PersistenceError: If any file cannot be written. Files already
                              replaced by this commit stay replaced; the file
                              that failed keeps its previous content.
        """
        changed = list(changed_sources)

        with self._commit_lock:
            try:
                self.sources_dir.mkdir(parents=True, exist_ok=True)
                atomic_write_text(self.index_path, _dump(index.snapshot()))
                for state in changed:
                    atomic_write_text(self.source_path(state.source_id), _dump(state.to_dict()))
            except OSError as e:
                raise PersistenceError(
                    f"Failed to commit archive state: {e}",
                    details={
                        "data_root": str(self.data_root),
                        "sources": [state.source_id for state in changed],
                        "original_error": str(e),
                    }
                ) from e

        logger.debug(
            f"Committed index ({len(index)} entries) and {len(changed)} source state(s)"
        )


def _dump(data: dict[str, Any]) -> str:
    # sort_keys keeps unchanged state byte-identical between passes
    return json.dumps(data, indent=2, ensure_ascii=False, sort_keys=True) + "\n"
