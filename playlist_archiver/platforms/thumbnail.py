"""
Cover art conversion.

yt-dlp writes thumbnails in whatever format the platform serves (webp, png,
jpg). Media servers expect cover.jpg, so the staged thumbnail is converted
with Pillow. Conversion failures are never fatal: the track is archived
without cover art.
"""

from pathlib import Path

from PIL import Image

from playlist_archiver.core.logger import get_logger

logger = get_logger(__name__)


COVER_STEM = "cover"
COVER_FILENAME = "cover.jpg"


def find_thumbnail(directory: Path) -> Path | None:
    """Return the first file named cover.<ext> in directory."""
    for candidate in sorted(directory.iterdir()):
        if candidate.is_file() and candidate.stem == COVER_STEM:
            return candidate
    return None


def convert_thumbnail(directory: Path) -> Path | None:
    """
    Convert the staged thumbnail in `directory` to cover.jpg.

    Returns:
        Path of cover.jpg, or None if there is no thumbnail or it could
        not be converted.
    """
    thumbnail = find_thumbnail(directory)
    if thumbnail is None:
        logger.debug(f"No thumbnail found in {directory}")
        return None

    target = directory / COVER_FILENAME
    if thumbnail == target:
        return target

    try:
        with Image.open(thumbnail) as image:
            image.convert("RGB").save(target, "JPEG", quality=92)
    except OSError as e:
        # Pillow raises UnidentifiedImageError (an OSError) for unknown formats
        logger.warning(f"Failed to convert thumbnail {thumbnail.name} to JPG: {e}")
        return None

    thumbnail.unlink(missing_ok=True)
    return target
