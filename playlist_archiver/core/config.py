"""
Configuration management for playlist-archiver.

This module handles loading, validating, and providing access to the
application configuration stored in config.yaml.

The configuration file contains:
    - The data root where the archive lives, plus optional path overrides
    - Sync behavior (concurrency, watch interval, thumbnails)
    - Extractor settings (audio format, timeouts, retries, cookies)
    - The list of sources to archive

Configuration File Location:
    By default config.yaml is read from the current working directory.
    A different file can be passed with --config.

Environment Overrides:
    These variables override the matching YAML fields. They are read after
    python-dotenv has loaded a .env file (see cli.py).

        PLARCHIVE_DATA_ROOT      -> paths.data_root
        PLARCHIVE_MUSIC_DIR      -> paths.music_dir
        PLARCHIVE_MPD_MUSIC_DIR  -> paths.mpd_music_dir
        PLARCHIVE_CONCURRENCY    -> sync.concurrency

Example config.yaml:
    paths:
      data_root: "~/archive"
      music_dir: null          # audio/ lives under data_root when null
      mpd_music_dir: null      # playlist entries relative to this dir

    sync:
      concurrency: 2
      interval_minutes: 60
      save_thumbnails: true

    tools:
      audio_format: mp3
      fetch_timeout: 300
      download_timeout: 900
      retries: 2
      cookie_file: null

    sources:
      - platform: soundcloud
        url: "https://soundcloud.com/someone/sets/favorites"
      - platform: youtube
        url: "https://www.youtube.com/playlist?list=PL..."
        inactive: true
"""

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

import yaml

from playlist_archiver.archive.models import SourceDescriptor
from playlist_archiver.core.exceptions import ConfigError


# Default configuration file name (in current working directory)
CONFIG_FILENAME = "config.yaml"

# Platform tags accepted in the sources list
SUPPORTED_PLATFORMS = ("soundcloud", "youtube")

# Environment variable prefix for overrides
ENV_PREFIX = "PLARCHIVE_"


@dataclass(frozen=True)
class PathsConfig:
    """
    Filesystem layout of the archive.

    Attributes:
        data_root: Root directory holding index.json, sources/, playlists/,
                   staging/ and logs/.
        music_dir: Optional directory for the audio library. Defaults to
                   {data_root}/audio. Must be on the same filesystem as
                   data_root so staged files can be renamed into place.
        mpd_music_dir: Optional media server music directory. When set,
                       playlist entries are written relative to it instead of
                       relative to the playlists directory.
    """
    data_root: Path
    music_dir: Path | None = None
    mpd_music_dir: Path | None = None

    @property
    def audio_dir(self) -> Path:
        return self.music_dir if self.music_dir is not None else self.data_root / "audio"

    @property
    def playlists_dir(self) -> Path:
        return self.data_root / "playlists"

    @property
    def sources_dir(self) -> Path:
        return self.data_root / "sources"

    @property
    def staging_dir(self) -> Path:
        return self.data_root / "staging"

    @property
    def logs_dir(self) -> Path:
        return self.data_root / "logs"

    @property
    def index_path(self) -> Path:
        return self.data_root / "index.json"


@dataclass(frozen=True)
class SyncConfig:
    """
    Reconciliation behavior.

    Attributes:
        concurrency: Number of sources reconciled in parallel. Default: 2.
        interval_minutes: Delay between passes in --watch mode. Default: 60.
        save_thumbnails: Download cover art next to each track. Default: True.
    """
    concurrency: int = 2
    interval_minutes: int = 60
    save_thumbnails: bool = True


@dataclass(frozen=True)
class ToolsConfig:
    """
    Extractor settings.

    Attributes:
        audio_format: Target audio codec passed to FFmpegExtractAudio. Default: mp3.
        fetch_timeout: Socket timeout in seconds for listings and probes. Default: 300.
        download_timeout: Wall-clock limit in seconds for one download. Default: 900.
        retries: Extra in-pass attempts for transient download failures. Default: 2.
        cookie_file: Optional cookies.txt passed to yt-dlp.
    """
    audio_format: str = "mp3"
    fetch_timeout: int = 300
    download_timeout: int = 900
    retries: int = 2
    cookie_file: Path | None = None


@dataclass(frozen=True)
class Config:
    """
    Complete application configuration.

    Created by load_config() and treated as immutable. The CLI re-reads the
    file before every --watch pass, so edits to sources take effect without
    a restart.

    Attributes:
        paths: Filesystem layout.
        sync: Reconciliation behavior.
        tools: Extractor settings.
        sources: Configured sources, in file order.

    Example:
        config = load_config()
        print(f"Archiving {len(config.sources)} sources into {config.paths.audio_dir}")
    """
    paths: PathsConfig
    sync: SyncConfig
    tools: ToolsConfig
    sources: tuple[SourceDescriptor, ...]

    def with_concurrency(self, concurrency: int) -> "Config":
        """Return a copy with sync.concurrency replaced (used by --concurrency)."""
        if concurrency < 1:
            raise ConfigError(
                "Concurrency must be a positive integer",
                details={"field": "sync.concurrency", "value": concurrency}
            )
        return replace(self, sync=replace(self.sync, concurrency=concurrency))


def load_config(config_path: Path | None = None) -> Config:
    """
    Load and validate configuration from config.yaml.

    Args:
        config_path: Optional explicit path to config file.
                     If None, looks for config.yaml in current working directory.

    Returns:
        Config: A frozen dataclass containing all configuration values.

    Raises:
        ConfigError: If the config file is not found, has invalid YAML syntax,
                     is missing required fields, or contains invalid values.

    Behavior:
        1. Locate config file (explicit path or CWD/config.yaml)
        2. Read and parse YAML content
        3. Apply PLARCHIVE_* environment overrides
        4. Validate structure (required sections exist)
        5. Parse each section, applying defaults
        6. Create and return frozen Config object
    """
    if config_path is None:
        config_path = Path.cwd() / CONFIG_FILENAME

    if not config_path.exists():
        raise ConfigError(
            f"Configuration file not found: {config_path}",
            details={"file_path": str(config_path)}
        )

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            content = f.read()
    except IOError as e:
        raise ConfigError(
            f"Failed to read configuration file: {e}",
            details={"file_path": str(config_path), "original_error": str(e)}
        ) from e

    try:
        raw_config = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigError(
            f"Invalid YAML syntax in configuration file: {e}",
            details={"file_path": str(config_path), "original_error": str(e)}
        ) from e

    if not isinstance(raw_config, dict):
        raise ConfigError(
            "Configuration file must contain a YAML dictionary",
            details={"file_path": str(config_path)}
        )

    _apply_env_overrides(raw_config)
    _validate_config(raw_config)

    paths_config = _parse_paths_config(raw_config["paths"])
    sync_config = _parse_sync_config(raw_config.get("sync"))
    tools_config = _parse_tools_config(raw_config.get("tools"))
    sources = _parse_sources(raw_config["sources"])

    return Config(
        paths=paths_config,
        sync=sync_config,
        tools=tools_config,
        sources=sources
    )


def _apply_env_overrides(raw_config: dict[str, Any]) -> None:
    """Copy PLARCHIVE_* environment variables into the raw config in place."""
    overrides = {
        "DATA_ROOT": ("paths", "data_root"),
        "MUSIC_DIR": ("paths", "music_dir"),
        "MPD_MUSIC_DIR": ("paths", "mpd_music_dir"),
        "CONCURRENCY": ("sync", "concurrency"),
    }

    for suffix, (section, field_name) in overrides.items():
        value = os.environ.get(ENV_PREFIX + suffix)
        if value is None or value == "":
            continue

        target = raw_config.get(section)
        if target is None:
            target = raw_config[section] = {}
        elif not isinstance(target, dict):
            # Left for _validate_config to report
            continue

        if field_name == "concurrency":
            try:
                target[field_name] = int(value)
            except ValueError as e:
                raise ConfigError(
                    f"{ENV_PREFIX + suffix} must be an integer",
                    details={"variable": ENV_PREFIX + suffix, "value": value}
                ) from e
        else:
            target[field_name] = value


def _validate_config(raw_config: dict[str, Any]) -> None:
    """
    Validate the raw configuration dictionary structure.

    Raises:
        ConfigError: If a required section is missing or has the wrong type.
    """
    if "paths" not in raw_config:
        raise ConfigError(
            "Missing required section: 'paths'",
            details={"missing_section": "paths"}
        )

    for section in ("paths", "sync", "tools"):
        value = raw_config.get(section)
        if value is not None and not isinstance(value, dict):
            raise ConfigError(
                f"Section '{section}' must be a dictionary",
                details={"section": section}
            )

    if "sources" not in raw_config:
        raise ConfigError(
            "Missing required section: 'sources'",
            details={"missing_section": "sources"}
        )

    if not isinstance(raw_config["sources"], list):
        raise ConfigError(
            "Section 'sources' must be a list",
            details={"section": "sources"}
        )


def _parse_optional_dir(section: dict[str, Any], field_name: str) -> Path | None:
    raw = section.get(field_name)
    if raw is None:
        return None
    if not isinstance(raw, str) or not raw.strip():
        raise ConfigError(
            f"'paths.{field_name}' must be a non-empty string or null",
            details={"field": f"paths.{field_name}"}
        )
    return Path(raw.strip()).expanduser().resolve()


def _parse_paths_config(paths_section: dict[str, Any]) -> PathsConfig:
    """
    Parse and validate the paths section.

    Expands ~ and converts to absolute paths. Does NOT create directories
    (that happens when the persistence layer starts).

    Raises:
        ConfigError: If data_root is missing or empty.
    """
    data_root = paths_section.get("data_root", "")

    if not isinstance(data_root, str) or not data_root.strip():
        raise ConfigError(
            "'paths.data_root' must be a non-empty string",
            details={"field": "paths.data_root"}
        )

    return PathsConfig(
        data_root=Path(data_root.strip()).expanduser().resolve(),
        music_dir=_parse_optional_dir(paths_section, "music_dir"),
        mpd_music_dir=_parse_optional_dir(paths_section, "mpd_music_dir"),
    )


def _parse_positive_int(section: dict[str, Any], section_name: str, field_name: str, default: int) -> int:
    raw = section.get(field_name)
    if raw is None:
        return default
    # bool is a subclass of int
    if isinstance(raw, bool) or not isinstance(raw, int) or raw < 1:
        raise ConfigError(
            f"'{section_name}.{field_name}' must be a positive integer",
            details={"field": f"{section_name}.{field_name}", "value": raw}
        )
    return raw


def _parse_sync_config(sync_section: dict[str, Any] | None) -> SyncConfig:
    """
    Parse and validate the sync section, applying defaults.

    Raises:
        ConfigError: If a numeric field is not a positive integer.
    """
    defaults = SyncConfig()
    if sync_section is None:
        return defaults

    save_thumbnails = sync_section.get("save_thumbnails", defaults.save_thumbnails)
    if not isinstance(save_thumbnails, bool):
        raise ConfigError(
            "'sync.save_thumbnails' must be true or false",
            details={"field": "sync.save_thumbnails", "value": save_thumbnails}
        )

    return SyncConfig(
        concurrency=_parse_positive_int(sync_section, "sync", "concurrency", defaults.concurrency),
        interval_minutes=_parse_positive_int(
            sync_section, "sync", "interval_minutes", defaults.interval_minutes
        ),
        save_thumbnails=save_thumbnails,
    )


def _parse_tools_config(tools_section: dict[str, Any] | None) -> ToolsConfig:
    """
    Parse and validate the tools section, applying defaults.

    Raises:
        ConfigError: If a value has the wrong type, or if cookie_file
                     doesn't exist when specified.
    """
    defaults = ToolsConfig()
    if tools_section is None:
        return defaults

    audio_format = tools_section.get("audio_format", defaults.audio_format)
    if not isinstance(audio_format, str) or not audio_format.strip():
        raise ConfigError(
            "'tools.audio_format' must be a non-empty string",
            details={"field": "tools.audio_format"}
        )

    retries = tools_section.get("retries", defaults.retries)
    if isinstance(retries, bool) or not isinstance(retries, int) or retries < 0:
        raise ConfigError(
            "'tools.retries' must be a non-negative integer",
            details={"field": "tools.retries", "value": retries}
        )

    cookie_file = None
    raw_cookie = tools_section.get("cookie_file")
    if raw_cookie is not None:
        if not isinstance(raw_cookie, str):
            raise ConfigError(
                "'tools.cookie_file' must be a string path or null",
                details={"field": "tools.cookie_file"}
            )
        cookie_path = Path(raw_cookie).expanduser().resolve()
        if not cookie_path.exists():
            raise ConfigError(
                f"Cookie file not found: {cookie_path}",
                details={"field": "tools.cookie_file", "path": str(cookie_path)}
            )
        cookie_file = cookie_path

    return ToolsConfig(
        audio_format=audio_format.strip().lower(),
        fetch_timeout=_parse_positive_int(tools_section, "tools", "fetch_timeout", defaults.fetch_timeout),
        download_timeout=_parse_positive_int(
            tools_section, "tools", "download_timeout", defaults.download_timeout
        ),
        retries=retries,
        cookie_file=cookie_file,
    )


def _parse_sources(sources_section: list[Any]) -> tuple[SourceDescriptor, ...]:
    """
    Parse and validate the sources list.

    Raises:
        ConfigError: If an entry is malformed, names an unsupported platform,
                     or two entries resolve to the same source id.
    """
    sources: list[SourceDescriptor] = []
    seen_ids: dict[str, str] = {}

    for position, entry in enumerate(sources_section):
        field_prefix = f"sources[{position}]"

        if not isinstance(entry, dict):
            raise ConfigError(
                f"'{field_prefix}' must be a dictionary",
                details={"field": field_prefix}
            )

        platform = entry.get("platform") or entry.get("type")
        if platform not in SUPPORTED_PLATFORMS:
            raise ConfigError(
                f"'{field_prefix}.platform' must be one of: {', '.join(SUPPORTED_PLATFORMS)}",
                details={"field": f"{field_prefix}.platform", "value": platform}
            )

        url = entry.get("url", "")
        if not isinstance(url, str) or not url.strip():
            raise ConfigError(
                f"'{field_prefix}.url' must be a non-empty string",
                details={"field": f"{field_prefix}.url"}
            )

        inactive = entry.get("inactive", False)
        if not isinstance(inactive, bool):
            raise ConfigError(
                f"'{field_prefix}.inactive' must be true or false",
                details={"field": f"{field_prefix}.inactive", "value": inactive}
            )

        name = entry.get("name")
        if name is not None and (not isinstance(name, str) or not name.strip()):
            raise ConfigError(
                f"'{field_prefix}.name' must be a non-empty string or null",
                details={"field": f"{field_prefix}.name"}
            )

        source = SourceDescriptor(
            platform=platform,
            url=url.strip(),
            inactive=inactive,
            name=name.strip() if name else None,
        )

        if source.source_id in seen_ids:
            raise ConfigError(
                f"Duplicate source: {source.url}",
                details={
                    "field": field_prefix,
                    "source_id": source.source_id,
                    "first_url": seen_ids[source.source_id],
                }
            )
        seen_ids[source.source_id] = source.url
        sources.append(source)

    return tuple(sources)
