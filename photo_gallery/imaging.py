import logging
from dataclasses import dataclass
from pathlib import Path

from PIL import Image

logger = logging.getLogger(__name__)

_heif_registered = False


@dataclass
class ImageInfo:
    width: int = 0
    height: int = 0
    size: int = 0


def register_heif() -> None:
    """Register HEIF/HEIC opener with Pillow (idempotent)."""
    global _heif_registered
    if _heif_registered:
        return
    try:
        from pillow_heif import register_heif_opener

        register_heif_opener()
        _heif_registered = True
        logger.info("HEIF support registered")
    except ImportError:
        logger.warning("pillow-heif not installed; HEIF/HEIC captures report no dimensions")


def read_image_info(uri: str) -> ImageInfo:
    """Dimensions and byte size of a local image. Unknown values are 0."""
    path = Path(uri.removeprefix("file://"))
    if not path.is_file():
        return ImageInfo()

    info = ImageInfo(size=path.stat().st_size)
    if path.suffix.lower() in (".heic", ".heif"):
        register_heif()
    try:
        with Image.open(path) as img:
            info.width, info.height = img.size
    except Exception:
        logger.debug("Could not read dimensions of %s", path, exc_info=True)
    return info
