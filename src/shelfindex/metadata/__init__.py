# ABOUTME: Metadata package: the BookMetadata shape and text normalization helpers.
# ABOUTME: Exports the core types used by extractors, the INPX parser, and the reconciler.

from shelfindex.metadata.normalizer import (
    UNKNOWN_AUTHOR,
    LanguageClass,
    detect_language_class,
    metadata_from_filename,
    normalize_author_name,
    search_key,
    strip_meta,
)
from shelfindex.metadata.types import BookMetadata

__all__ = [
    "UNKNOWN_AUTHOR",
    "BookMetadata",
    "LanguageClass",
    "detect_language_class",
    "metadata_from_filename",
    "normalize_author_name",
    "search_key",
    "strip_meta",
]
