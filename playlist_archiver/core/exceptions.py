"""
Exception classes for playlist-archiver.

This module defines all custom exceptions used throughout the application.
Each exception carries a human-readable message plus a details dictionary,
and distinguishes between the failure modes the reconciliation engine
handles differently.

Exception Hierarchy:
    ArchiverError (base)
        ConfigError - Configuration file issues
        PersistenceError - index.json / sources/*.json issues
        PlatformError - Unknown platform or missing external tool
        FetchError - Remote playlist listing failed
        DownloadError - Single-track download failed

Error Taxonomy:
    transient         FetchError(NETWORK), DownloadError(TRANSIENT)
                      Retried on the next pass, no state mutation.
    permanent-content DownloadError(DELETED / RESTRICTED)
                      Recorded as a lifecycle marker, re-evaluated by probe.
    fatal-source      FetchError(AUTH_REQUIRED / NOT_FOUND)
                      The source is skipped, other sources continue.
    persistence       PersistenceError
                      The pass aborts and the error propagates.
"""

from enum import Enum


class ArchiverError(Exception):
    """
    Base exception for all playlist-archiver errors.

    Attributes:
        message: Human-readable error description.
        details: Optional dictionary with additional context (e.g., source URL, identity).

    Example:
        try:
            engine.run_pass()
        except ArchiverError as e:
            logger.error(f"Pass failed: {e.message}")
            if e.details:
                logger.debug(f"Details: {e.details}")
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        """
        Initialize the base exception.

        Args:
            message: Human-readable error description that will be shown to the user.
            details: Optional dictionary containing additional context about the error.
                     Common keys include:
                     - 'source_url': URL of the playlist involved
                     - 'identity': "<platform>:<upstream_id>" key of the track
                     - 'original_error': The underlying exception if wrapping another error
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return the error message for display."""
        return self.message


class ConfigError(ArchiverError):
    """
    Raised when there's an issue with the configuration file.

    This is a CRITICAL error that should stop program execution.

    Common causes:
        - config.yaml not found
        - config.yaml has invalid YAML syntax
        - Required fields missing (paths.data_root, sources)
        - Invalid field values (e.g., unknown platform, negative concurrency)

    Example:
        raise ConfigError(
            "'sources[0].platform' must be one of: soundcloud, youtube",
            details={'field': 'sources[0].platform', 'value': 'bandcamp'}
        )
    """
    pass


class PersistenceError(ArchiverError):
    """
    Raised when the persisted state cannot be read or written.

    This is a CRITICAL error: the reconciliation pass aborts and the
    exception propagates to the caller.

    Common causes:
        - index.json or a source state file is corrupted (invalid JSON)
        - Permission denied when reading/writing
        - Disk full while writing a temp file
    """
    pass


class PlatformError(ArchiverError):
    """
    Raised when a platform cannot be used at all.

    Common causes:
        - A source references a platform tag with no implementation
        - ffmpeg is not installed (required for audio extraction)
    """
    pass


class FetchErrorKind(Enum):
    """Why listing a remote playlist failed."""
    NETWORK = "network"
    AUTH_REQUIRED = "auth_required"
    NOT_FOUND = "not_found"


class FetchError(ArchiverError):
    """
    Raised when a remote playlist cannot be listed.

    NETWORK is transient (the source is retried on the next pass);
    AUTH_REQUIRED and NOT_FOUND are fatal for the source in this pass.
    In all cases the source state is left untouched.

    Attributes:
        kind: FetchErrorKind classification.

    Example:
        raise FetchError(
            "Playlist not found",
            kind=FetchErrorKind.NOT_FOUND,
            details={'source_url': url, 'yt_dlp_error': 'HTTP Error 404'}
        )
    """

    def __init__(
        self,
        message: str,
        kind: FetchErrorKind = FetchErrorKind.NETWORK,
        details: dict | None = None
    ) -> None:
        super().__init__(message, details)
        self.kind = kind

    @property
    def is_transient(self) -> bool:
        """True if the failure may go away on a later pass."""
        return self.kind == FetchErrorKind.NETWORK


class DownloadErrorKind(Enum):
    """Why downloading a single track failed."""
    TRANSIENT = "transient"
    DELETED = "deleted"
    RESTRICTED = "restricted"


class DownloadError(ArchiverError):
    """
    Raised when audio for a single track cannot be downloaded.

    This is a NON-CRITICAL error: the engine records it for the identity
    and continues with the other tracks of the source.

    Attributes:
        kind: DownloadErrorKind classification. TRANSIENT failures leave no
              trace in the persisted state; DELETED and RESTRICTED are
              recorded as an unavailable marker on the membership.

    Example:
        raise DownloadError(
            "Video unavailable",
            kind=DownloadErrorKind.DELETED,
            details={'url': 'https://youtube.com/watch?v=xxx'}
        )
    """

    def __init__(
        self,
        message: str,
        kind: DownloadErrorKind = DownloadErrorKind.TRANSIENT,
        details: dict | None = None
    ) -> None:
        super().__init__(message, details)
        self.kind = kind

    @property
    def is_transient(self) -> bool:
        """True if the download should simply be attempted again next pass."""
        return self.kind == DownloadErrorKind.TRANSIENT
