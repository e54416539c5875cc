# ABOUTME: Unit tests for metadata text normalization.
# ABOUTME: Covers meta stripping, author ordering, language classes, search keys, filenames.

from shelfindex.metadata.normalizer import (
    LanguageClass,
    _needs_normalization,
    clean_annotation,
    detect_language_class,
    metadata_from_filename,
    normalize_author_name,
    search_key,
    split_concatenated,
    strip_meta,
)


class TestStripMeta:
    """Tests for trimming stray punctuation from metadata strings."""

    def test_strips_quotes_and_guillemets(self) -> None:
        assert strip_meta("«Dune»") == "Dune"
        assert strip_meta('"Dune"') == "Dune"

    def test_strips_repeatedly_through_whitespace(self) -> None:
        """Punctuation hidden behind whitespace is removed too."""
        assert strip_meta(" - Dune ; ") == "Dune"

    def test_keeps_inner_punctuation(self) -> None:
        assert strip_meta("Catch-22") == "Catch-22"

    def test_only_punctuation_becomes_empty(self) -> None:
        assert strip_meta("#.;") == ""


class TestNormalizeAuthorName:
    """Tests for the "Last First Middle" author form."""

    def test_first_last_is_reordered(self) -> None:
        assert normalize_author_name("Jane Doe") == "Doe Jane"

    def test_middle_names_follow_first(self) -> None:
        assert normalize_author_name("John Ronald Tolkien") == "Tolkien John Ronald"

    def test_comma_form_only_replaces_commas(self) -> None:
        assert normalize_author_name("Doe, Jane") == "Doe Jane"

    def test_single_word_kept(self) -> None:
        assert normalize_author_name("Homer") == "Homer"

    def test_whitespace_collapsed(self) -> None:
        assert normalize_author_name("  Jane   Doe ") == "Doe Jane"

    def test_initial_keeps_its_dot(self) -> None:
        assert normalize_author_name("A. Author") == "Author A."

    def test_empty_after_stripping(self) -> None:
        assert normalize_author_name(" -- ") == ""


class TestDetectLanguageClass:
    """Tests for first-character script classification."""

    def test_latin(self) -> None:
        assert detect_language_class("Dune") == LanguageClass.LATIN

    def test_digit(self) -> None:
        assert detect_language_class("1984") == LanguageClass.DIGIT

    def test_cyrillic(self) -> None:
        assert detect_language_class("Мастер и Маргарита") == LanguageClass.CYRILLIC

    def test_other_script(self) -> None:
        assert detect_language_class("東京") == LanguageClass.OTHER

    def test_empty(self) -> None:
        assert detect_language_class("") == LanguageClass.OTHER


class TestSearchKey:
    def test_lowercases_and_collapses(self) -> None:
        assert search_key("  The   Name of the ROSE ") == "the name of the rose"

    def test_cyrillic_lowercased(self) -> None:
        assert search_key("Мастер") == "мастер"


class TestCleanAnnotation:
    def test_drops_characters_outside_bmp(self) -> None:
        assert clean_annotation("Great book \U0001f600!") == "Great book !"

    def test_keeps_bmp_text(self) -> None:
        assert clean_annotation(" Проза ") == "Проза"


class TestSplitConcatenated:
    """Tests for splitting mangled filename stems."""

    def test_clean_title_untouched(self) -> None:
        assert split_concatenated("The Name of the Rose") == "The Name of the Rose"

    def test_camel_case_split(self) -> None:
        assert split_concatenated("TheTemplarLegacy") == "The Templar Legacy"

    def test_underscores_split(self) -> None:
        assert split_concatenated("The_Templar_Legacy") == "The Templar Legacy"

    def test_short_word_not_normalized(self) -> None:
        assert _needs_normalization("Dune") is False

    def test_acronym_and_digits_split(self) -> None:
        assert split_concatenated("HTMLParser2") == "HTML Parser 2"

    def test_non_ascii_segments_kept_whole(self) -> None:
        assert split_concatenated("Мастер_и_Маргарита") == "Мастер и Маргарита"


class TestMetadataFromFilename:
    """Tests for fallback metadata derived from filenames."""

    def test_plain_stem_becomes_title(self) -> None:
        metadata = metadata_from_filename("Broken Title.fb2")
        assert metadata.title == "Broken Title"
        assert metadata.authors == []

    def test_author_dash_title(self) -> None:
        metadata = metadata_from_filename("Umberto Eco - The Name of the Rose.pdf")
        assert metadata.title == "The Name of the Rose"
        assert metadata.authors == ["Umberto Eco"]

    def test_dash_without_person_name_is_title(self) -> None:
        metadata = metadata_from_filename("The Book - Part Two of the Saga.pdf")
        assert metadata.title == "The Book - Part Two of the Saga"
        assert metadata.authors == []

    def test_directory_components_ignored(self) -> None:
        assert metadata_from_filename("nested/dir/Dune.txt").title == "Dune"
