# ABOUTME: Cover image post-processing: MIME sniffing, resizing, JPEG re-encoding, and saving.
# ABOUTME: Covers are written as <covers_path>/<book_id>.<ext> after a book's row is committed.

import io
import logging
from dataclasses import dataclass
from pathlib import Path

from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

JPEG_MIME = "image/jpeg"

_MAGIC = (
    (b"\xff\xd8\xff", JPEG_MIME),
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
    (b"BM", "image/bmp"),
)

_EXTENSIONS = {
    JPEG_MIME: "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/bmp": "bmp",
    "image/webp": "webp",
}


def sniff_image_mime(data: bytes) -> str | None:
    """Guess an image MIME type from its magic bytes."""
    for magic, mime in _MAGIC:
        if data.startswith(magic):
            return mime
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return None


def extension_for(mime: str) -> str:
    return _EXTENSIONS.get(mime.lower(), "img")


def prepare_cover(data: bytes, max_dimension: int, quality: int) -> tuple[bytes, str]:
    """Resize a cover to fit ``max_dimension`` and re-encode it as JPEG.

    Images Pillow cannot decode, or refuses to decode because of their
    pixel count, are returned unchanged with their sniffed MIME type, so
    the caller can still store them.

    Returns:
        (image bytes, MIME type)
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            if img.width > max_dimension or img.height > max_dimension:
                img.thumbnail((max_dimension, max_dimension), Image.Resampling.LANCZOS)
            if img.mode != "RGB":
                img = img.convert("RGB")
            out = io.BytesIO()
            img.save(out, "JPEG", quality=quality, optimize=True)
            return out.getvalue(), JPEG_MIME
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
        logger.debug("Cover not decodable, keeping raw bytes: %s", exc)
        return data, sniff_image_mime(data) or "application/octet-stream"


@dataclass(frozen=True)
class CoverStore:
    """Writes processed covers into a directory keyed by book ID."""

    directory: Path
    max_dimension: int = 600
    quality: int = 85

    def path_for(self, book_id: int, mime: str = JPEG_MIME) -> Path:
        return self.directory / f"{book_id}.{extension_for(mime)}"

    def save(self, book_id: int, data: bytes) -> tuple[Path, str]:
        """Process and write a cover, replacing any earlier cover of the book.

        Returns:
            (written path, stored MIME type)

        Raises:
            OSError: If the covers directory cannot be written.
        """
        processed, mime = prepare_cover(data, self.max_dimension, self.quality)
        self.directory.mkdir(parents=True, exist_ok=True)
        for stale in self.directory.glob(f"{book_id}.*"):
            stale.unlink()
        target = self.path_for(book_id, mime)
        target.write_bytes(processed)
        logger.debug("Saved cover for book %d to %s", book_id, target)
        return target, mime
