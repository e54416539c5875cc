# ABOUTME: Converts between repository record types and SQLite row dictionaries.
# ABOUTME: Keeps column naming (avail, cat_type, lang) out of the rest of the code.

from typing import Any

from shelfindex.db.repository import (
    Availability,
    BookFields,
    BookRecord,
    CatalogKind,
    CatalogRecord,
)


def fields_to_row(fields: BookFields) -> dict[str, Any]:
    """Convert BookFields to a dict suitable for INSERT ... ON CONFLICT."""
    return {
        "catalog_id": fields.catalog_id,
        "filename": fields.filename,
        "path": fields.path,
        "format": fields.format,
        "title": fields.title,
        "search_title": fields.search_title,
        "annotation": fields.annotation,
        "docdate": fields.docdate,
        "lang": fields.language or "un",
        "lang_class": fields.lang_class,
        "size": fields.size,
        "mtime": fields.mtime,
        "avail": fields.availability.value,
        "cat_type": fields.container_kind.value,
        "cover": 1 if fields.has_cover else 0,
        "cover_type": fields.cover_type,
        "extract_error": fields.extract_error,
    }


def row_to_book(row: Any) -> BookRecord:
    """Convert a books row (dict-like) to a BookRecord."""
    return BookRecord(
        id=row["id"],
        catalog_id=row["catalog_id"],
        filename=row["filename"],
        path=row["path"],
        format=row["format"],
        title=row["title"],
        search_title=row["search_title"],
        annotation=row["annotation"],
        docdate=row["docdate"],
        language=row["lang"],
        lang_class=row["lang_class"],
        size=row["size"],
        mtime=row["mtime"],
        availability=Availability(row["avail"]),
        container_kind=CatalogKind(row["cat_type"]),
        has_cover=bool(row["cover"]),
        cover_type=row["cover_type"],
        author_key=row["author_key"],
        extract_error=row["extract_error"],
        registered_at=row["reg_date"],
    )


def row_to_catalog(row: Any) -> CatalogRecord:
    """Convert a catalogs row (dict-like) to a CatalogRecord."""
    return CatalogRecord(
        id=row["id"],
        parent_id=row["parent_id"],
        path=row["path"],
        name=row["cat_name"],
        kind=CatalogKind(row["cat_type"]),
        size=row["cat_size"],
        mtime=row["cat_mtime"],
    )
