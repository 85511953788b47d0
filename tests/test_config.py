"""Test configuration loading"""

from pathlib import Path

import pytest

from playlist_archiver.core.config import load_config
from playlist_archiver.core.exceptions import ConfigError

VALID_CONFIG = """
paths:
  data_root: "{root}"

sync:
  concurrency: 3

sources:
  - platform: soundcloud
    url: "https://soundcloud.com/someone/sets/favorites"
  - type: youtube
    name: Road Trip
    url: "https://www.youtube.com/playlist?list=PL123"
    inactive: true
"""


def write_config(temp_dir: Path, content: str) -> Path:
    path = temp_dir / "config.yaml"
    path.write_text(content, encoding="utf-8")
    return path


class TestLoadConfig:
    """Test load_config()"""

    def test_valid(self, temp_dir):
        """Test a valid file with defaults applied"""
        config = load_config(write_config(temp_dir, VALID_CONFIG.format(root=temp_dir / "data")))

        assert config.paths.data_root == (temp_dir / "data").resolve()
        assert config.paths.audio_dir == config.paths.data_root / "audio"
        assert config.sync.concurrency == 3
        assert config.sync.interval_minutes == 60
        assert config.tools.audio_format == "mp3"
        assert [s.platform for s in config.sources] == ["soundcloud", "youtube"]
        assert config.sources[1].inactive
        assert config.sources[1].source_id == "road-trip"

    def test_missing_file(self, temp_dir):
        """Test a missing file raises ConfigError"""
        with pytest.raises(ConfigError):
            load_config(temp_dir / "nope.yaml")

    def test_invalid_yaml(self, temp_dir):
        """Test broken YAML raises ConfigError"""
        with pytest.raises(ConfigError):
            load_config(write_config(temp_dir, "paths: [unclosed"))

    @pytest.mark.parametrize("content", [
        "sources: []",
        "paths:\n  data_root: /tmp/x\n",
        "paths:\n  data_root: /tmp/x\nsources:\n  - platform: bandcamp\n    url: https://x\n",
        "paths:\n  data_root: /tmp/x\nsync:\n  concurrency: 0\nsources: []\n",
        "paths:\n  data_root: /tmp/x\nsources:\n  - platform: soundcloud\n    url: https://a/s\n"
        "  - platform: soundcloud\n    url: https://a/s\n",
    ])
    def test_invalid_values(self, temp_dir, content):
        """Test structural and value errors are reported"""
        with pytest.raises(ConfigError):
            load_config(write_config(temp_dir, content))

    def test_environment_overrides(self, temp_dir, monkeypatch):
        """Test PLARCHIVE_* variables win over the file"""
        monkeypatch.setenv("PLARCHIVE_DATA_ROOT", str(temp_dir / "env-root"))
        monkeypatch.setenv("PLARCHIVE_CONCURRENCY", "5")

        config = load_config(write_config(temp_dir, VALID_CONFIG.format(root=temp_dir / "data")))

        assert config.paths.data_root == (temp_dir / "env-root").resolve()
        assert config.sync.concurrency == 5

    def test_with_concurrency(self, temp_dir):
        """Test the command-line override"""
        config = load_config(write_config(temp_dir, VALID_CONFIG.format(root=temp_dir / "data")))
        assert config.with_concurrency(1).sync.concurrency == 1
        with pytest.raises(ConfigError):
            config.with_concurrency(0)
