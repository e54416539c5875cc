# ABOUTME: FB2 (FictionBook XML) metadata extraction using lxml.
# ABOUTME: Reads title-info fields and the cover binary; malformed XML raises ParseError.

import base64
import binascii
import logging

from lxml import etree

from shelfindex.errors import ParseError
from shelfindex.formats.covers import sniff_image_mime
from shelfindex.metadata.normalizer import clean_annotation, metadata_from_filename, strip_meta
from shelfindex.metadata.types import BookMetadata

logger = logging.getLogger(__name__)


def _local(element: etree._Element) -> str:
    tag = element.tag
    if not isinstance(tag, str):
        return ""
    return etree.QName(tag).localname


def _child(parent: etree._Element | None, name: str) -> etree._Element | None:
    if parent is None:
        return None
    for child in parent:
        if _local(child) == name:
            return child
    return None


def _children(parent: etree._Element | None, name: str) -> list[etree._Element]:
    if parent is None:
        return []
    return [child for child in parent if _local(child) == name]


def _text(element: etree._Element | None) -> str:
    if element is None:
        return ""
    return " ".join("".join(element.itertext()).split())


def _href(element: etree._Element) -> str:
    """Return an element's href, whatever namespace prefix the file used for it."""
    for key, value in element.attrib.items():
        if etree.QName(key).localname == "href":
            return value
    return ""


def _author_name(author: etree._Element) -> str:
    parts = [_text(_child(author, tag)) for tag in ("first-name", "middle-name", "last-name")]
    name = " ".join(p for p in parts if p)
    return name or _text(_child(author, "nickname"))


def _annotation(element: etree._Element | None) -> str:
    if element is None:
        return ""
    paragraphs = [_text(p) for p in element.iter() if _local(p) == "p"]
    text = "\n".join(p for p in paragraphs if p) or _text(element)
    return clean_annotation(text)


def _parse_int(value: str | None) -> int:
    try:
        return int(value.strip()) if value else 0
    except ValueError:
        return 0


def _find_cover(
    root: etree._Element, title_info: etree._Element | None
) -> tuple[bytes | None, str]:
    binaries = {b.get("id", ""): b for b in _children(root, "binary")}
    coverpage = _child(title_info, "coverpage")
    image = _child(coverpage, "image")
    wanted = _href(image).lstrip("#") if image is not None else ""

    binary = binaries.get(wanted) if wanted else None
    if binary is None:
        binary = next(
            (b for b in binaries.values() if b.get("content-type", "").startswith("image/")),
            None,
        )
    if binary is None:
        return None, ""

    try:
        data = base64.b64decode("".join((binary.text or "").split()), validate=False)
    except (binascii.Error, ValueError) as exc:
        logger.debug("Undecodable FB2 cover binary %r: %s", binary.get("id"), exc)
        return None, ""
    if not data:
        return None, ""
    return data, sniff_image_mime(data) or binary.get("content-type", "")


def parse_fb2(data: bytes, filename: str) -> BookMetadata:
    """Extract metadata from FB2 document bytes.

    Args:
        data: Raw FB2 XML. The XML declaration decides the encoding.
        filename: Used for the title when the document has none.

    Raises:
        ParseError: If the bytes are not well-formed XML or not a FictionBook.
    """
    parser = etree.XMLParser(resolve_entities=False, no_network=True, huge_tree=True)
    try:
        root = etree.fromstring(data, parser)
    except etree.XMLSyntaxError as exc:
        raise ParseError(f"Malformed FB2 XML in {filename}: {exc}") from exc

    if _local(root) != "FictionBook":
        raise ParseError(f"{filename} is not a FictionBook document (root <{_local(root)}>)")

    description = _child(root, "description")
    title_info = _child(description, "title-info")
    document_info = _child(description, "document-info")

    title = strip_meta(_text(_child(title_info, "book-title")))
    if not title:
        title = metadata_from_filename(filename).title

    authors = [name for name in (_author_name(a) for a in _children(title_info, "author")) if name]
    genres = [g for g in (_text(e).lower() for e in _children(title_info, "genre")) if g]

    series = None
    series_index = 0
    sequence = _child(title_info, "sequence")
    if sequence is not None:
        series = strip_meta(sequence.get("name", "")) or None
        series_index = _parse_int(sequence.get("number"))

    date_element = _child(document_info, "date")
    docdate = _text(date_element)
    if not docdate and date_element is not None:
        docdate = date_element.get("value", "")

    cover, cover_type = _find_cover(root, title_info)

    return BookMetadata(
        title=title,
        authors=authors,
        genres=genres,
        series=series,
        series_index=series_index,
        annotation=_annotation(_child(title_info, "annotation")),
        language=_text(_child(title_info, "lang")).lower(),
        docdate=docdate,
        cover_image=cover,
        cover_type=cover_type,
    )
