"""Test utility functions"""

from pathlib import Path

from playlist_archiver.utils import ensure_directory, relative_posix, sanitize_filename, slugify


class TestSanitizeFilename:
    """Test filename sanitization"""

    def test_removes_path_separator(self):
        assert "/" not in sanitize_filename("AC/DC")

    def test_keeps_plain_names(self):
        assert sanitize_filename("track") == "track"


class TestSlugify:
    """Test slugs used in source identifiers"""

    def test_basic(self):
        assert slugify("My Likes (2024)") == "my-likes-2024"

    def test_only_lowercase_alphanumerics_and_dashes(self):
        slug = slugify("Deep House -- Summer Mix!!")
        assert slug == slug.lower()
        assert all(c.isalnum() or c == "-" for c in slug)
        assert not slug.startswith("-") and not slug.endswith("-")

    def test_truncated(self):
        assert len(slugify("a" * 100, max_length=10)) == 10

    def test_empty_falls_back(self):
        assert slugify("!!!") == "source"


class TestPaths:
    """Test path helpers"""

    def test_ensure_directory_creates_nested(self, temp_dir):
        target = temp_dir / "a" / "b"
        assert ensure_directory(target) == target
        assert target.is_dir()

    def test_relative_posix_walks_up(self):
        rel = relative_posix(Path("/data/audio/a/track.mp3"), Path("/data/playlists"))
        assert rel == "../audio/a/track.mp3"
