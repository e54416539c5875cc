# ABOUTME: EPUB metadata extraction from the OPF package document using zipfile and lxml.
# ABOUTME: Picks the first usable rootfile in container.xml order and finds the cover.

import io
import logging
import posixpath
import re
import zipfile
import zlib
from dataclasses import dataclass
from urllib.parse import unquote

from ebooklib.epub import NAMESPACES
from lxml import etree

from shelfindex.errors import ParseError
from shelfindex.formats.covers import sniff_image_mime
from shelfindex.metadata.normalizer import clean_annotation, metadata_from_filename, strip_meta
from shelfindex.metadata.types import BookMetadata

logger = logging.getLogger(__name__)

CONTAINER_PATH = "META-INF/container.xml"
OPF_MEDIA_TYPE = "application/oebps-package+xml"

_OPF_ROLE = f"{{{NAMESPACES['OPF']}}}role"
_TAG_RE = re.compile(r"<[^>]+>")


@dataclass(frozen=True)
class ManifestItem:
    id: str
    href: str
    media_type: str
    properties: str


def _local(element: etree._Element) -> str:
    tag = element.tag
    if not isinstance(tag, str):
        return ""
    return etree.QName(tag).localname


def _parse_xml(data: bytes, what: str) -> etree._Element:
    parser = etree.XMLParser(resolve_entities=False, no_network=True, recover=False)
    try:
        return etree.fromstring(data, parser)
    except etree.XMLSyntaxError as exc:
        raise ParseError(f"Malformed {what}: {exc}") from exc


def _text(element: etree._Element) -> str:
    return " ".join("".join(element.itertext()).split())


def find_rootfile(archive: zipfile.ZipFile) -> str:
    """Locate the package document inside an EPUB archive.

    The first ``rootfile`` in container.xml document order that names an
    existing entry (and is not declared as some other media type) wins.
    Without a container, a single ``*.opf`` entry is accepted.

    Raises:
        ParseError: If no usable package document can be found.
    """
    names = set(archive.namelist())
    if CONTAINER_PATH in names:
        container = _parse_xml(archive.read(CONTAINER_PATH), CONTAINER_PATH)
        for rootfile in container.iter():
            if _local(rootfile) != "rootfile":
                continue
            full_path = rootfile.get("full-path", "")
            media_type = rootfile.get("media-type", OPF_MEDIA_TYPE)
            if full_path in names and media_type == OPF_MEDIA_TYPE:
                return full_path
            logger.debug("Skipping unusable rootfile %r (%s)", full_path, media_type)

    opf_files = [name for name in archive.namelist() if name.lower().endswith(".opf")]
    if len(opf_files) == 1:
        return opf_files[0]
    if not opf_files:
        raise ParseError("EPUB has no package document")
    raise ParseError(f"EPUB has no usable rootfile and {len(opf_files)} package documents")


def _manifest(package: etree._Element) -> list[ManifestItem]:
    items = []
    for element in package.iter():
        parent = element.getparent()
        if _local(element) == "item" and parent is not None and _local(parent) == "manifest":
            items.append(
                ManifestItem(
                    id=element.get("id", ""),
                    href=element.get("href", ""),
                    media_type=element.get("media-type", ""),
                    properties=element.get("properties", ""),
                )
            )
    return items


def _metadata_element(package: etree._Element) -> etree._Element:
    for element in package:
        if _local(element) == "metadata":
            return element
    raise ParseError("OPF package has no <metadata> section")


def _creators(metadata: etree._Element) -> list[str]:
    """Creators with the ``aut`` role, or every creator if none carry it."""
    refined_roles = {}
    for meta in metadata:
        if _local(meta) == "meta" and meta.get("property") == "role":
            refined_roles[meta.get("refines", "").lstrip("#")] = _text(meta)

    authors: list[str] = []
    everyone: list[str] = []
    for element in metadata:
        if _local(element) != "creator":
            continue
        name = strip_meta(_text(element))
        if not name:
            continue
        role = (
            element.get(_OPF_ROLE)
            or element.get("role")
            or refined_roles.get(element.get("id", ""))
        )
        if role == "aut":
            authors.append(name)
        everyone.append(name)
    return authors or everyone


def _resolve(opf_path: str, href: str) -> str:
    return posixpath.normpath(posixpath.join(posixpath.dirname(opf_path), unquote(href)))


def _find_cover(
    archive: zipfile.ZipFile, opf_path: str, manifest: list[ManifestItem], cover_id: str | None
) -> tuple[bytes | None, str]:
    def candidates():
        for item in manifest:
            if "cover-image" in item.properties.split():
                yield item
        if cover_id:
            yield from (item for item in manifest if item.id == cover_id)
        yield from (item for item in manifest if item.id.lower() == "cover")

    for item in candidates():
        if not item.media_type.startswith("image/"):
            continue
        try:
            data = archive.read(_resolve(opf_path, item.href))
        except KeyError:
            logger.debug("Cover item %r points at missing entry %r", item.id, item.href)
            continue
        return data, sniff_image_mime(data) or item.media_type
    return None, ""


def _parse_index(value: str) -> int:
    try:
        return int(float(value))
    except (ValueError, OverflowError):
        return 0


def parse_epub(data: bytes, filename: str) -> BookMetadata:
    """Extract metadata from EPUB bytes.

    Args:
        data: Raw EPUB (ZIP) content.
        filename: Used for the title when the package has none.

    Raises:
        ParseError: If the archive or its package document is malformed.
    """
    try:
        archive = zipfile.ZipFile(io.BytesIO(data))
    except (zipfile.BadZipFile, OSError) as exc:
        raise ParseError(f"{filename} is not a valid EPUB archive: {exc}") from exc

    with archive:
        try:
            opf_path = find_rootfile(archive)
            package = _parse_xml(archive.read(opf_path), opf_path)
            metadata = _metadata_element(package)

            fields: dict[str, str] = {}
            genres: list[str] = []
            meta_values: dict[str, str] = {}
            for element in metadata:
                name = _local(element)
                if name == "subject":
                    genre = strip_meta(_text(element)).lower()
                    if genre:
                        genres.append(genre)
                elif name == "meta" and element.get("name"):
                    meta_values.setdefault(element.get("name"), element.get("content", ""))
                elif name in ("title", "language", "date", "description"):
                    fields.setdefault(name, _text(element))

            cover, cover_type = _find_cover(
                archive, opf_path, _manifest(package), meta_values.get("cover")
            )
        except (zipfile.BadZipFile, zlib.error, OSError, EOFError) as exc:
            raise ParseError(f"Truncated EPUB archive {filename}: {exc}") from exc

    title = strip_meta(fields.get("title", "")) or metadata_from_filename(filename).title
    series = strip_meta(meta_values.get("calibre:series", "")) or None
    description = _TAG_RE.sub(" ", fields.get("description", ""))

    return BookMetadata(
        title=title,
        authors=_creators(metadata),
        genres=genres,
        series=series,
        series_index=_parse_index(meta_values.get("calibre:series_index", "0")) if series else 0,
        annotation=clean_annotation(" ".join(description.split())),
        language=strip_meta(fields.get("language", "")).lower(),
        docdate=strip_meta(fields.get("date", "")),
        cover_image=cover,
        cover_type=cover_type,
    )
