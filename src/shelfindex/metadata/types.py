# ABOUTME: BookMetadata, the record produced by every format extractor and the INPX parser.
# ABOUTME: The reconciler consumes it without caring which format or index it came from.

from dataclasses import dataclass, field


@dataclass
class BookMetadata:
    """What could be learned about one book without touching the catalog.

    Only ``title`` is required: a book that fails to parse still has a
    filename to show. ``extract_error`` is set when the fields were derived
    from that filename after a parse failure.
    """

    title: str
    authors: list[str] = field(default_factory=list)
    genres: list[str] = field(default_factory=list)
    series: str | None = None
    series_index: int = 0
    annotation: str = ""
    language: str = ""
    docdate: str = ""
    cover_image: bytes | None = None
    cover_type: str = ""
    extract_error: str | None = None

    @property
    def has_cover(self) -> bool:
        return bool(self.cover_image)
