# ABOUTME: Text normalization for extracted metadata: names, search keys, language classes.
# ABOUTME: Also derives fallback metadata from mangled filenames like "SteveBerry-Legacy.fb2".

import re
from enum import StrEnum
from pathlib import PurePosixPath

import wordninja

from shelfindex.metadata.types import BookMetadata

# Spaceless stems at least this long are treated as run-together words.
_MIN_CONCAT_LENGTH = 8

_CAMEL_CASE_RE = re.compile(r"[a-z][A-Z]")
# Acronym, capitalized or lowercase word, or digit run.
_WORD_TOKEN_RE = re.compile(r"[A-Z]+(?![a-z])|[A-Z]?[a-z]+|\d+")
_SEPARATOR_RE = re.compile(r"[-_]")

# "Author - Title" in a filename stem
_AUTHOR_DASH_TITLE_RE = re.compile(r"^(?P<author>.+?)\s+-\s+(?P<title>.+)$")

# Characters trimmed from both ends of every metadata string.
_META_STRIP_CHARS = "»«'\"&-.#\\`;"

# Words that mark "X - Y" as a title rather than an author name.
_TITLE_STOP_WORDS = frozenset(
    "the a an of and in on at to for by with from is was are were be been".split()
)

UNKNOWN_AUTHOR = "Unknown"


class LanguageClass(StrEnum):
    """Coarse script class of a string, decided by its first character."""

    CYRILLIC = "cyrillic"
    LATIN = "latin"
    DIGIT = "digit"
    OTHER = "other"


def strip_meta(text: str) -> str:
    """Trim whitespace and stray punctuation from both ends of a metadata string."""
    result = text
    while True:
        trimmed = result.strip().strip(_META_STRIP_CHARS)
        if trimmed == result:
            return result
        result = trimmed


def _collapse_spaces(text: str) -> str:
    return " ".join(text.split())


def normalize_author_name(name: str) -> str:
    """Normalize an author name to the catalog's "Last First Middle" form.

    "First Middle Last" is reordered so the last word leads. Names already
    written as "Last, First" only have their commas replaced by spaces.
    Returns an empty string when nothing meaningful remains.
    """
    cleaned = strip_meta(_collapse_spaces(name))
    if not cleaned:
        return ""

    if "," in cleaned:
        return _collapse_spaces(cleaned.replace(",", " "))

    parts = cleaned.split()
    if len(parts) == 1:
        return cleaned
    return " ".join([parts[-1], *parts[:-1]])


def detect_language_class(text: str) -> LanguageClass:
    """Classify a string by the script of its first character."""
    if not text:
        return LanguageClass.OTHER
    first = text[0]
    if first.isascii() and first.isalpha():
        return LanguageClass.LATIN
    if first.isascii() and first.isdigit():
        return LanguageClass.DIGIT
    if "\u0400" <= first <= "\u052f":
        return LanguageClass.CYRILLIC
    return LanguageClass.OTHER


def search_key(text: str) -> str:
    """Lowercased, whitespace-collapsed form used for substring/prefix search."""
    return _collapse_spaces(text).lower()


def clean_annotation(text: str) -> str:
    """Drop characters outside the Basic Multilingual Plane and trim."""
    return "".join(ch for ch in text if ord(ch) < 0x10000).strip()


def _needs_normalization(text: str) -> bool:
    """Whether a stem looks run-together: underscores, CamelCase, or long unspaced runs."""
    text = text.strip()
    if "_" in text or _CAMEL_CASE_RE.search(text):
        return True
    return any(" " not in run and len(run) >= _MIN_CONCAT_LENGTH for run in text.split("-"))


def _split_words(segment: str) -> list[str]:
    """Break one separator-free segment into words.

    CamelCase, acronym and digit boundaries split first ("HTMLParser2" gives
    HTML, Parser, 2); long all-lowercase ASCII runs are then handed to
    wordninja. Segments with non-ASCII or punctuation are kept whole.
    """
    if not (segment.isascii() and segment.isalnum()):
        return [segment]
    words = []
    for token in _WORD_TOKEN_RE.findall(segment):
        if token.islower() and len(token) >= _MIN_CONCAT_LENGTH:
            words.extend(wordninja.split(token) or [token])
        else:
            words.append(token)
    return words or [segment]


def split_concatenated(text: str) -> str:
    """Turn a mangled stem like "The_TemplarLegacy" into "The Templar Legacy"."""
    if not _needs_normalization(text):
        return text
    words = [
        word
        for segment in _SEPARATOR_RE.split(text)
        if segment.strip()
        for word in _split_words(segment.strip())
    ]
    return " ".join(words) or text


def _is_likely_person_name(text: str) -> bool:
    """Two or three capitalized words, none of them a title stop word."""
    words = text.split()
    return (
        2 <= len(words) <= 3
        and all(word[0].isupper() for word in words)
        and not any(word.lower() in _TITLE_STOP_WORDS for word in words)
    )


def metadata_from_filename(filename: str) -> BookMetadata:
    """Build minimal metadata from a book's filename.

    Recognizes "Author Name - Title" stems; otherwise the stem is used as the
    title, with mangled CamelCase or underscore-joined words split apart.
    """
    stem = PurePosixPath(filename.replace("\\", "/")).stem
    stem = _collapse_spaces(stem) or filename

    match = _AUTHOR_DASH_TITLE_RE.match(stem)
    if match and _is_likely_person_name(match.group("author")):
        return BookMetadata(
            title=match.group("title").strip(),
            authors=[match.group("author").strip()],
        )

    return BookMetadata(title=split_concatenated(stem))
