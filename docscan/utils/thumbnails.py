"""
Page thumbnails.

A thumbnail sits next to its source image as ``<stem>_thumb<suffix>``.
"""

import logging
from pathlib import Path

from PIL import Image

logger = logging.getLogger(__name__)

THUMBNAIL_SIZE = (200, 300)


def thumbnail_path_for(image_path: str | Path) -> Path:
    path = Path(image_path)
    return path.with_name(f"{path.stem}_thumb{path.suffix}")


def create_thumbnail(image_path: str | Path, size: tuple[int, int] = THUMBNAIL_SIZE) -> Path | None:
    """
    Write a thumbnail that fits inside ``size``, keeping the aspect ratio.

    Smaller images are copied at their own size, never enlarged.

    Returns:
        Path of the thumbnail, or None if the image could not be read or written.
    """
    target = thumbnail_path_for(image_path)
    try:
        with Image.open(image_path) as img:
            img.thumbnail(size)
            img.save(target)
    except (OSError, ValueError) as e:
        logger.warning(f"Failed to create thumbnail for {image_path}: {e}")
        return None

    logger.debug(f"Thumbnail written to {target}")
    return target
