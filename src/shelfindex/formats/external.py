# ABOUTME: PDF and DjVu support through external tools (pdfinfo, pdftoppm, ddjvu).
# ABOUTME: Missing or failing tools degrade to filename metadata without a cover.

import logging
import shutil
import subprocess
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path

from shelfindex.config import ToolsConfig
from shelfindex.errors import ExternalToolError
from shelfindex.formats.covers import sniff_image_mime
from shelfindex.metadata.normalizer import metadata_from_filename, strip_meta
from shelfindex.metadata.types import BookMetadata

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PdfInfo:
    title: str | None = None
    author: str | None = None


def _info_value(value: str) -> str | None:
    value = value.strip()
    if not value or value.lower() == "(null)":
        return None
    return value


def parse_pdfinfo_output(stdout: str) -> PdfInfo:
    """Pick Title and Author out of pdfinfo's ``Key: value`` listing."""
    title = author = None
    for line in stdout.splitlines():
        key, sep, value = line.partition(":")
        if not sep:
            continue
        key = key.strip().lower()
        if key == "title":
            title = _info_value(value)
        elif key == "author":
            author = _info_value(value)
    return PdfInfo(title=title, author=author)


class ExternalTools:
    """Runs the configured external tools with a timeout.

    A tool that is missing from PATH is reported with a WARNING once and at
    DEBUG level afterwards.
    """

    def __init__(self, config: ToolsConfig, cover_max_dimension: int = 600) -> None:
        self.config = config
        self.cover_max_dimension = cover_max_dimension
        self._reported: set[str] = set()
        self._lock = threading.Lock()

    def report(self, tool: str, filename: str, exc: ExternalToolError) -> None:
        with self._lock:
            first = tool not in self._reported
            self._reported.add(tool)
        level = logging.WARNING if first else logging.DEBUG
        logger.log(level, "%s unavailable for %s: %s", tool, filename, exc)

    def _run(self, args: list[str]) -> subprocess.CompletedProcess:
        tool = args[0]
        if shutil.which(tool) is None:
            raise ExternalToolError(f"{tool} not found on PATH")
        try:
            result = subprocess.run(
                args, capture_output=True, timeout=self.config.timeout, check=False
            )
        except subprocess.TimeoutExpired as exc:
            raise ExternalToolError(f"{tool} timed out after {self.config.timeout:g}s") from exc
        except OSError as exc:
            raise ExternalToolError(f"Cannot run {tool}: {exc}") from exc
        if result.returncode != 0:
            stderr = result.stderr.decode("utf-8", "replace").strip()
            raise ExternalToolError(f"{tool} exited with status {result.returncode}: {stderr}")
        return result

    def pdf_info(self, input_path: Path) -> PdfInfo:
        result = self._run([self.config.pdf_info, str(input_path)])
        return parse_pdfinfo_output(result.stdout.decode("utf-8", "replace"))

    def render_pdf_cover(self, input_path: Path, output_prefix: Path) -> bytes:
        """Render page one of a PDF to a raster image and return its bytes."""
        self._run(
            [self.config.pdf_render, str(input_path), "-f", "1", "-l", "1", str(output_prefix)]
        )
        outputs = sorted(output_prefix.parent.glob(f"{output_prefix.name}*"))
        if not outputs:
            raise ExternalToolError(f"{self.config.pdf_render} produced no image")
        return outputs[0].read_bytes()

    def render_djvu_cover(self, input_path: Path, output_path: Path) -> bytes:
        """Render page one of a DjVu document to a PPM image and return its bytes."""
        size = self.cover_max_dimension
        self._run(
            [
                self.config.djvu_render,
                "-page=1",
                f"-size={size}x{size}",
                "-format=ppm",
                str(input_path),
                str(output_path),
            ]
        )
        if not output_path.exists():
            raise ExternalToolError(f"{self.config.djvu_render} produced no image")
        return output_path.read_bytes()


def _apply_cover(metadata: BookMetadata, image: bytes) -> None:
    if image:
        metadata.cover_image = image
        metadata.cover_type = sniff_image_mime(image) or "image/x-portable-pixmap"


def parse_pdf(data: bytes, filename: str, tools: ExternalTools | None) -> BookMetadata:
    """Filename metadata, enriched by pdfinfo and a pdftoppm cover when available."""
    metadata = metadata_from_filename(filename)
    if tools is None:
        return metadata

    with tempfile.TemporaryDirectory(prefix="shelfindex-pdf-") as tmp:
        input_path = Path(tmp) / "input.pdf"
        input_path.write_bytes(data)

        try:
            info = tools.pdf_info(input_path)
        except ExternalToolError as exc:
            tools.report(tools.config.pdf_info, filename, exc)
        else:
            if info.title and strip_meta(info.title):
                metadata.title = strip_meta(info.title)
            if info.author and strip_meta(info.author):
                metadata.authors = [strip_meta(info.author)]

        if tools.config.pdf_covers:
            try:
                _apply_cover(metadata, tools.render_pdf_cover(input_path, Path(tmp) / "page"))
            except ExternalToolError as exc:
                tools.report(tools.config.pdf_render, filename, exc)
    return metadata


def parse_djvu(data: bytes, filename: str, tools: ExternalTools | None) -> BookMetadata:
    """Filename metadata, plus a ddjvu-rendered cover when available."""
    metadata = metadata_from_filename(filename)
    if tools is None or not tools.config.djvu_covers:
        return metadata

    with tempfile.TemporaryDirectory(prefix="shelfindex-djvu-") as tmp:
        input_path = Path(tmp) / "input.djvu"
        input_path.write_bytes(data)
        try:
            _apply_cover(metadata, tools.render_djvu_cover(input_path, Path(tmp) / "page.ppm"))
        except ExternalToolError as exc:
            tools.report(tools.config.djvu_render, filename, exc)
    return metadata
