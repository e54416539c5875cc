# ABOUTME: SQL DDL statements for the shelfindex catalog schema.
# ABOUTME: Catalog, book, author, series and genre tables, junctions, counters, genre seed.

SCHEMA_V1 = """
-- Catalog tree: directories, ZIP archives, INPX indexes and their .inp parts
CREATE TABLE catalogs (
    id        INTEGER PRIMARY KEY AUTOINCREMENT,
    parent_id INTEGER REFERENCES catalogs(id) ON DELETE CASCADE,
    path      TEXT    NOT NULL,
    cat_name  TEXT    NOT NULL DEFAULT '',
    cat_type  TEXT    NOT NULL DEFAULT 'normal'
              CHECK (cat_type IN ('normal', 'zip', 'inpx', 'inp')),
    cat_size  INTEGER NOT NULL DEFAULT 0,
    cat_mtime REAL    NOT NULL DEFAULT 0
);

CREATE UNIQUE INDEX idx_catalogs_path ON catalogs(path);
CREATE INDEX idx_catalogs_parent ON catalogs(parent_id);

-- One row per indexed book file
CREATE TABLE books (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    catalog_id    INTEGER NOT NULL REFERENCES catalogs(id) ON DELETE CASCADE,
    filename      TEXT    NOT NULL,
    path          TEXT    NOT NULL DEFAULT '',
    format        TEXT    NOT NULL DEFAULT '',
    title         TEXT    NOT NULL DEFAULT '',
    search_title  TEXT    NOT NULL DEFAULT '',
    annotation    TEXT    NOT NULL DEFAULT '',
    docdate       TEXT    NOT NULL DEFAULT '',
    lang          TEXT    NOT NULL DEFAULT 'un',
    lang_class    TEXT    NOT NULL DEFAULT 'other'
                  CHECK (lang_class IN ('cyrillic', 'latin', 'digit', 'other')),
    size          INTEGER NOT NULL DEFAULT 0,
    mtime         REAL    NOT NULL DEFAULT 0,
    avail         TEXT    NOT NULL DEFAULT 'unverified'
                  CHECK (avail IN ('unverified', 'confirmed', 'deleted')),
    cat_type      TEXT    NOT NULL DEFAULT 'normal'
                  CHECK (cat_type IN ('normal', 'zip', 'inpx')),
    cover         INTEGER NOT NULL DEFAULT 0,
    cover_type    TEXT    NOT NULL DEFAULT '',
    author_key    TEXT    NOT NULL DEFAULT '',
    extract_error TEXT,
    reg_date      TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%S', 'now'))
);

CREATE UNIQUE INDEX idx_books_location ON books(catalog_id, path, filename);
CREATE INDEX idx_books_search ON books(search_title);
CREATE INDEX idx_books_avail ON books(avail);
CREATE INDEX idx_books_author_key ON books(search_title, author_key);

-- Authors and series, deduplicated by normalized name
CREATE TABLE authors (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    full_name        TEXT    NOT NULL,
    search_full_name TEXT    NOT NULL DEFAULT '',
    lang_class       TEXT    NOT NULL DEFAULT 'other'
);

CREATE UNIQUE INDEX idx_authors_name_unique ON authors(full_name);
CREATE INDEX idx_authors_search ON authors(search_full_name);

CREATE TABLE series (
    id         INTEGER PRIMARY KEY AUTOINCREMENT,
    ser_name   TEXT    NOT NULL,
    search_ser TEXT    NOT NULL DEFAULT '',
    lang_class TEXT    NOT NULL DEFAULT 'other'
);

CREATE UNIQUE INDEX idx_series_name_unique ON series(ser_name);
CREATE INDEX idx_series_search ON series(search_ser);

-- Fixed genre taxonomy: sections -> genres, with per-language names
CREATE TABLE genre_sections (
    id   INTEGER PRIMARY KEY AUTOINCREMENT,
    code TEXT    NOT NULL UNIQUE
);

CREATE TABLE genre_section_translations (
    id         INTEGER PRIMARY KEY AUTOINCREMENT,
    section_id INTEGER NOT NULL REFERENCES genre_sections(id) ON DELETE CASCADE,
    lang       TEXT    NOT NULL,
    name       TEXT    NOT NULL,
    UNIQUE (section_id, lang)
);

CREATE TABLE genres (
    id         INTEGER PRIMARY KEY AUTOINCREMENT,
    code       TEXT    NOT NULL UNIQUE,
    section_id INTEGER NOT NULL REFERENCES genre_sections(id) ON DELETE CASCADE
);

CREATE TABLE genre_translations (
    id       INTEGER PRIMARY KEY AUTOINCREMENT,
    genre_id INTEGER NOT NULL REFERENCES genres(id) ON DELETE CASCADE,
    lang     TEXT    NOT NULL,
    name     TEXT    NOT NULL,
    UNIQUE (genre_id, lang)
);

-- Junctions
CREATE TABLE book_authors (
    id        INTEGER PRIMARY KEY AUTOINCREMENT,
    book_id   INTEGER NOT NULL REFERENCES books(id) ON DELETE CASCADE,
    author_id INTEGER NOT NULL REFERENCES authors(id) ON DELETE CASCADE,
    UNIQUE (book_id, author_id)
);

CREATE INDEX idx_book_authors_author ON book_authors(author_id);

CREATE TABLE book_genres (
    id       INTEGER PRIMARY KEY AUTOINCREMENT,
    book_id  INTEGER NOT NULL REFERENCES books(id) ON DELETE CASCADE,
    genre_id INTEGER NOT NULL REFERENCES genres(id) ON DELETE CASCADE,
    UNIQUE (book_id, genre_id)
);

CREATE INDEX idx_book_genres_genre ON book_genres(genre_id);

CREATE TABLE book_series (
    id        INTEGER PRIMARY KEY AUTOINCREMENT,
    book_id   INTEGER NOT NULL REFERENCES books(id) ON DELETE CASCADE,
    series_id INTEGER NOT NULL REFERENCES series(id) ON DELETE CASCADE,
    ser_no    INTEGER NOT NULL DEFAULT 0,
    UNIQUE (book_id, series_id)
);

CREATE INDEX idx_book_series_series ON book_series(series_id);

-- Running aggregates read by the serving layer
CREATE TABLE counters (
    name       TEXT    PRIMARY KEY,
    value      INTEGER NOT NULL DEFAULT 0,
    updated_at TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%S', 'now'))
);

INSERT INTO counters (name) VALUES ('allbooks');
INSERT INTO counters (name) VALUES ('allcatalogs');
INSERT INTO counters (name) VALUES ('allauthors');
INSERT INTO counters (name) VALUES ('allgenres');
INSERT INTO counters (name) VALUES ('allseries');

-- Schema versioning for future migrations
CREATE TABLE schema_version (
    version    INTEGER NOT NULL,
    applied_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%S', 'now'))
);

INSERT INTO schema_version (version) VALUES (1);
"""

# section code -> ((en, ru), [(genre code, en, ru), ...])
GENRE_TAXONOMY: dict[str, tuple[tuple[str, str], list[tuple[str, str, str]]]] = {
    "sf": (
        ("Science Fiction & Fantasy", "Фантастика"),
        [
            ("sf", "Science Fiction", "Научная фантастика"),
            ("sf_fantasy", "Fantasy", "Фэнтези"),
            ("sf_history", "Alternative History", "Альтернативная история"),
            ("sf_action", "Action Science Fiction", "Боевая фантастика"),
            ("sf_heroic", "Heroic Fantasy", "Героическая фантастика"),
            ("sf_detective", "Science Fiction Detective", "Детективная фантастика"),
            ("sf_cyberpunk", "Cyberpunk", "Киберпанк"),
            ("sf_space", "Space Opera", "Космическая фантастика"),
            ("sf_social", "Social Science Fiction", "Социальная фантастика"),
            ("sf_horror", "Horror & Mystic", "Ужасы и мистика"),
            ("sf_humor", "Humorous Science Fiction", "Юмористическая фантастика"),
        ],
    ),
    "detective": (
        ("Detectives & Thrillers", "Детективы и триллеры"),
        [
            ("detective", "Detective", "Детективы"),
            ("det_classic", "Classic Detective", "Классический детектив"),
            ("det_police", "Police Stories", "Полицейский детектив"),
            ("det_action", "Action", "Боевик"),
            ("det_irony", "Ironical Detective", "Иронический детектив"),
            ("det_history", "Historical Detective", "Исторический детектив"),
            ("det_espionage", "Espionage Detective", "Шпионский детектив"),
            ("det_crime", "Crime Detective", "Криминальный детектив"),
            ("det_political", "Political Detective", "Политический детектив"),
            ("det_maniac", "Maniacs", "Маньяки"),
            ("det_hard", "Hard-boiled", "Крутой детектив"),
            ("thriller", "Thriller", "Триллер"),
        ],
    ),
    "prose": (
        ("Prose", "Проза"),
        [
            ("prose_classic", "Classics Prose", "Классическая проза"),
            ("prose_history", "Historical Prose", "Историческая проза"),
            ("prose_contemporary", "Contemporary Prose", "Современная проза"),
            ("prose_counter", "Counterculture", "Контркультура"),
            ("prose_rus_classic", "Russian Classics", "Русская классическая проза"),
            ("prose_su_classics", "Soviet Classics", "Советская классическая проза"),
        ],
    ),
    "love": (
        ("Romance", "Любовные романы"),
        [
            ("love_contemporary", "Contemporary Romance", "Современные любовные романы"),
            ("love_history", "Historical Romance", "Исторические любовные романы"),
            ("love_detective", "Detective Romance", "Остросюжетные любовные романы"),
            ("love_short", "Short Romance", "Короткие любовные романы"),
            ("love_erotica", "Erotica", "Эротика"),
        ],
    ),
    "adventure": (
        ("Adventure", "Приключения"),
        [
            ("adventure", "Adventure", "Приключения"),
            ("adv_western", "Western", "Вестерн"),
            ("adv_history", "History Adventure", "Исторические приключения"),
            ("adv_indian", "Indians", "Приключения про индейцев"),
            ("adv_maritime", "Maritime Fiction", "Морские приключения"),
            ("adv_geo", "Travel & Geography", "Путешествия и география"),
            ("adv_animal", "Nature & Animals", "Природа и животные"),
        ],
    ),
    "children": (
        ("Children's", "Детская литература"),
        [
            ("children", "Children's", "Детская литература"),
            ("child_tale", "Fairy Tales", "Сказка"),
            ("child_verse", "Children's Verses", "Детские стихи"),
            ("child_prose", "Children's Prose", "Детская проза"),
            ("child_sf", "Children's Science Fiction", "Детская фантастика"),
            ("child_det", "Children's Action", "Детские остросюжетные"),
            ("child_adv", "Children's Adventures", "Детские приключения"),
            ("child_education", "Children's Education", "Детская образовательная литература"),
        ],
    ),
    "poetry": (
        ("Poetry & Dramaturgy", "Поэзия и драматургия"),
        [
            ("poetry", "Poetry", "Поэзия"),
            ("dramaturgy", "Dramaturgy", "Драматургия"),
        ],
    ),
    "antique": (
        ("Antique Literature", "Старинная литература"),
        [
            ("antique", "Other Antique", "Старинная литература"),
            ("antique_ant", "Antique", "Античная литература"),
            ("antique_european", "European", "Европейская старинная литература"),
            ("antique_russian", "Old Russian", "Древнерусская литература"),
            ("antique_east", "Old East", "Древневосточная литература"),
            ("antique_myths", "Myths & Legends", "Мифы. Легенды. Эпос"),
        ],
    ),
    "science": (
        ("Science & Education", "Наука и образование"),
        [
            ("science", "Science", "Научная литература"),
            ("sci_history", "History", "История"),
            ("sci_psychology", "Psychology", "Психология"),
            ("sci_culture", "Cultural Science", "Культурология"),
            ("sci_religion", "Religious Studies", "Религиоведение"),
            ("sci_philosophy", "Philosophy", "Философия"),
            ("sci_politics", "Politics", "Политика"),
            ("sci_business", "Business Literature", "Деловая литература"),
            ("sci_juris", "Jurisprudence", "Юриспруденция"),
            ("sci_linguistic", "Linguistics", "Языкознание"),
            ("sci_medicine", "Medicine", "Медицина"),
            ("sci_phys", "Physics", "Физика"),
            ("sci_math", "Mathematics", "Математика"),
            ("sci_chem", "Chemistry", "Химия"),
            ("sci_biology", "Biology", "Биология"),
            ("sci_tech", "Technical", "Технические науки"),
        ],
    ),
    "computers": (
        ("Computers & Internet", "Компьютеры и интернет"),
        [
            ("computers", "Computers", "Компьютеры"),
            ("comp_www", "Internet", "Интернет"),
            ("comp_programming", "Programming", "Программирование"),
            ("comp_hard", "Hardware", "Компьютерное железо"),
            ("comp_soft", "Software", "Программы"),
            ("comp_db", "Databases", "Базы данных"),
            ("comp_osnet", "OS & Networking", "ОС и сети"),
        ],
    ),
    "reference": (
        ("Reference", "Справочная литература"),
        [
            ("reference", "Reference", "Справочная литература"),
            ("ref_encyc", "Encyclopedias", "Энциклопедии"),
            ("ref_dict", "Dictionaries", "Словари"),
            ("ref_ref", "Reference Books", "Справочники"),
            ("ref_guide", "Guidebooks", "Руководства"),
        ],
    ),
    "nonfiction": (
        ("Nonfiction", "Документальная литература"),
        [
            ("nonfiction", "Nonfiction", "Документальная литература"),
            ("nonf_biography", "Biography & Memoirs", "Биографии и мемуары"),
            ("nonf_publicism", "Publicism", "Публицистика"),
            ("nonf_criticism", "Criticism", "Критика"),
            ("design", "Art & Design", "Искусство и дизайн"),
        ],
    ),
    "religion": (
        ("Religion & Spirituality", "Религия и духовность"),
        [
            ("religion", "Religion", "Религия"),
            ("religion_rel", "Religion Studies", "Религиозная литература"),
            ("religion_esoterics", "Esoterics", "Эзотерика"),
            ("religion_self", "Self-perfection", "Самосовершенствование"),
        ],
    ),
    "humor": (
        ("Humor", "Юмор"),
        [
            ("humor", "Other Humor", "Юмор"),
            ("humor_anecdote", "Anecdote", "Анекдоты"),
            ("humor_prose", "Humor Prose", "Юмористическая проза"),
            ("humor_verse", "Humor Verses", "Юмористические стихи"),
        ],
    ),
    "home": (
        ("Home & Family", "Дом и семья"),
        [
            ("home", "Home & Family", "Домоводство"),
            ("home_cooking", "Cooking", "Кулинария"),
            ("home_pets", "Pets", "Домашние животные"),
            ("home_crafts", "Hobbies & Crafts", "Хобби и ремесла"),
            ("home_entertain", "Entertaining", "Развлечения"),
            ("home_health", "Health", "Здоровье"),
            ("home_garden", "Garden", "Сад и огород"),
            ("home_diy", "Do It Yourself", "Сделай сам"),
            ("home_sport", "Sports", "Спорт"),
        ],
    ),
}


def _quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def _genre_seed_sql() -> str:
    """Build the INSERT statements that seed the genre taxonomy."""
    lines = ["-- Seed the fixed genre taxonomy (sections, genres, en/ru names)"]
    for section_code, ((section_en, section_ru), genres) in GENRE_TAXONOMY.items():
        section = _quote(section_code)
        lines.append(f"INSERT INTO genre_sections (code) VALUES ({section});")
        for lang, name in (("en", section_en), ("ru", section_ru)):
            lines.append(
                "INSERT INTO genre_section_translations (section_id, lang, name) "
                f"SELECT id, '{lang}', {_quote(name)} FROM genre_sections WHERE code = {section};"
            )
        for code, name_en, name_ru in genres:
            genre = _quote(code)
            lines.append(
                "INSERT INTO genres (code, section_id) "
                f"SELECT {genre}, id FROM genre_sections WHERE code = {section};"
            )
            for lang, name in (("en", name_en), ("ru", name_ru)):
                lines.append(
                    "INSERT INTO genre_translations (genre_id, lang, name) "
                    f"SELECT id, '{lang}', {_quote(name)} FROM genres WHERE code = {genre};"
                )
    lines.append("INSERT INTO schema_version (version) VALUES (2);")
    return "\n".join(lines) + "\n"


# Ordered (version, sql) pairs applied on top of SCHEMA_V1.
MIGRATIONS: list[tuple[int, str]] = [
    (2, _genre_seed_sql()),
]
