# ABOUTME: Catalog tree walker: lazily yields catalogs, book candidates, and failures under a root.
# ABOUTME: Treats directories, ZIP archives, and INPX indexes uniformly; never aborts on a bad item.

import logging
import os
import threading
import zipfile
import zlib
from collections.abc import Callable, Iterator
from dataclasses import dataclass, replace
from datetime import datetime
from functools import partial
from pathlib import Path

from shelfindex.core.inpx import read_inpx
from shelfindex.db.repository import BookKey, CatalogKind
from shelfindex.errors import IoError, ShelfIndexError
from shelfindex.formats import file_extension
from shelfindex.metadata.types import BookMetadata

logger = logging.getLogger(__name__)

# ZIP general-purpose flag bit: member name is UTF-8.
_UTF8_FLAG = 0x800


@dataclass(frozen=True)
class CatalogEntry:
    """A directory, archive, or index discovered during the walk.

    ``skipped`` marks an archive whose stored size and mtime matched, so it
    was not reopened and yields no book candidates.
    """

    path: str
    name: str
    kind: CatalogKind
    parent_path: str | None
    rel_path: str
    size: int = 0
    mtime: float = 0.0
    skipped: bool = False


@dataclass(frozen=True)
class BookCandidate:
    """A book file found in a catalog, with lazy access to its bytes.

    ``metadata`` is already filled in for INPX-listed books.
    """

    catalog_path: str
    rel_path: str
    filename: str
    container_kind: CatalogKind
    size: int
    mtime: float
    read_bytes: Callable[[], bytes]
    metadata: BookMetadata | None = None

    @property
    def key(self) -> BookKey:
        return (self.rel_path, self.filename)

    @property
    def display_path(self) -> str:
        return f"{self.rel_path}/{self.filename}" if self.rel_path else self.filename


@dataclass(frozen=True)
class WalkFailure:
    """Something under the root could not be read.

    ``catalog_path`` names a container whose already-indexed books must be
    kept; ``book_key`` does the same for a single unreadable book file.
    """

    path: str
    error: ShelfIndexError
    catalog_path: str | None = None
    book_key: BookKey | None = None


WalkItem = CatalogEntry | BookCandidate | WalkFailure


def decode_member_name(info: zipfile.ZipInfo, codepage: str) -> str:
    """Member name, re-decoded with ``codepage`` when the UTF-8 flag is absent."""
    if info.flag_bits & _UTF8_FLAG:
        return info.filename
    try:
        return info.filename.encode("cp437").decode(codepage)
    except (UnicodeEncodeError, UnicodeDecodeError):
        return info.filename


def _member_mtime(info: zipfile.ZipInfo) -> float:
    try:
        return datetime(*info.date_time).timestamp()
    except (ValueError, OverflowError):
        return 0.0


class ZipSource:
    """Reads members of one ZIP archive, keeping it open while the walker is inside it.

    Reads that arrive after ``close()`` (workers lagging behind the walker)
    reopen the archive for that single read.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._archive: zipfile.ZipFile | None = None
        self._lock = threading.Lock()

    def open(self) -> list[zipfile.ZipInfo]:
        with self._lock:
            try:
                self._archive = zipfile.ZipFile(self.path)
                return self._archive.infolist()
            except (zipfile.BadZipFile, OSError, EOFError) as exc:
                self._archive = None
                raise IoError(f"Cannot open archive {self.path}: {exc}") from exc

    def read(self, member: str) -> bytes:
        try:
            with self._lock:
                if self._archive is not None:
                    return self._archive.read(member)
            with zipfile.ZipFile(self.path) as archive:
                return archive.read(member)
        except KeyError as exc:
            raise IoError(f"{member} is missing from {self.path}") from exc
        except (zipfile.BadZipFile, zlib.error, RuntimeError, OSError, EOFError) as exc:
            raise IoError(f"Cannot read {member} from {self.path}: {exc}") from exc

    def close(self) -> None:
        with self._lock:
            if self._archive is not None:
                self._archive.close()
                self._archive = None


def _read_file(path: Path) -> bytes:
    try:
        return path.read_bytes()
    except OSError as exc:
        raise IoError(f"Cannot read {path}: {exc}") from exc


class CatalogWalker:
    """Produces the catalog tree under a root as a lazy sequence of WalkItems.

    Each call to ``walk()`` starts a fresh traversal. Directories are visited
    depth-first with their catalog entry before their contents. Directory
    symlinks are followed; a directory whose real path was already visited
    is reported as a failure instead of being entered again.
    """

    def __init__(
        self,
        extensions: frozenset[str],
        *,
        scan_zip: bool = True,
        inpx_enable: bool = True,
        zip_codepage: str = "cp866",
        is_unchanged: Callable[[CatalogEntry], bool] | None = None,
        stop_event: threading.Event | None = None,
    ) -> None:
        self.extensions = frozenset(e.lower() for e in extensions)
        self.scan_zip = scan_zip
        self.inpx_enable = inpx_enable
        self.zip_codepage = zip_codepage
        self._is_unchanged = is_unchanged
        self._stop = stop_event

    def _stopped(self) -> bool:
        return self._stop is not None and self._stop.is_set()

    def _unchanged(self, entry: CatalogEntry) -> bool:
        return self._is_unchanged is not None and self._is_unchanged(entry)

    def walk(self, root: Path) -> Iterator[WalkItem]:
        root = root.absolute()
        visited: set[str] = set()
        stack: list[tuple[Path, str | None]] = [(root, None)]

        while stack:
            if self._stopped():
                return
            directory, parent_path = stack.pop()

            real = os.path.realpath(directory)
            if real in visited:
                yield WalkFailure(
                    path=str(directory),
                    error=IoError(f"{directory} resolves to already visited {real}"),
                    catalog_path=str(directory),
                )
                continue
            visited.add(real)

            try:
                stat = directory.stat()
                with os.scandir(directory) as it:
                    entries = sorted(it, key=lambda e: e.name)
            except OSError as exc:
                yield WalkFailure(
                    path=str(directory),
                    error=IoError(f"Cannot list {directory}: {exc}"),
                    catalog_path=str(directory),
                )
                continue

            rel_dir = self._relative(directory, root)
            yield CatalogEntry(
                path=str(directory),
                name=directory.name or str(directory),
                kind=CatalogKind.NORMAL,
                parent_path=parent_path,
                rel_path=rel_dir,
                mtime=stat.st_mtime,
            )

            inpx_files = []
            if self.inpx_enable:
                inpx_files = [e for e in entries if file_extension(e.name) == "inpx"]

            subdirs = []
            for entry in entries:
                if self._stopped():
                    return
                path = Path(entry.path)
                try:
                    is_dir = entry.is_dir()
                except OSError as exc:
                    yield WalkFailure(path=entry.path, error=IoError(str(exc)))
                    continue
                if is_dir:
                    subdirs.append(path)
                    continue
                # Books next to an INPX index are reached through the index.
                if inpx_files:
                    continue
                ext = file_extension(entry.name)
                if ext == "zip" and self.scan_zip:
                    yield from self._walk_zip(path, str(directory), root)
                elif ext in self.extensions:
                    yield self._file_candidate(path, str(directory), rel_dir)

            for inpx in inpx_files:
                if self._stopped():
                    return
                yield from self._walk_inpx(Path(inpx.path), directory, root)

            stack.extend((subdir, str(directory)) for subdir in reversed(subdirs))

    @staticmethod
    def _relative(path: Path, root: Path) -> str:
        if path == root:
            return ""
        return path.relative_to(root).as_posix()

    def _file_candidate(self, path: Path, catalog_path: str, rel_dir: str) -> WalkItem:
        try:
            stat = path.stat()
        except OSError as exc:
            return WalkFailure(
                path=str(path),
                error=IoError(f"Cannot stat {path}: {exc}"),
                book_key=(rel_dir, path.name),
            )
        return BookCandidate(
            catalog_path=catalog_path,
            rel_path=rel_dir,
            filename=path.name,
            container_kind=CatalogKind.NORMAL,
            size=stat.st_size,
            mtime=stat.st_mtime,
            read_bytes=partial(_read_file, path),
        )

    def _walk_zip(self, path: Path, parent_path: str, root: Path) -> Iterator[WalkItem]:
        try:
            stat = path.stat()
        except OSError as exc:
            yield WalkFailure(str(path), IoError(f"Cannot stat {path}: {exc}"), str(path))
            return

        entry = CatalogEntry(
            path=str(path),
            name=path.name,
            kind=CatalogKind.ZIP,
            parent_path=parent_path,
            rel_path=self._relative(path, root),
            size=stat.st_size,
            mtime=stat.st_mtime,
        )
        if self._unchanged(entry):
            logger.debug("Archive %s unchanged, not reopening", path)
            yield replace(entry, skipped=True)
            return
        yield entry

        source = ZipSource(path)
        try:
            members = source.open()
        except IoError as exc:
            yield WalkFailure(str(path), exc, catalog_path=str(path))
            return

        try:
            for info in members:
                if self._stopped():
                    return
                if info.is_dir():
                    continue
                name = decode_member_name(info, self.zip_codepage)
                ext = file_extension(name)
                if ext == "zip" or ext not in self.extensions:
                    continue
                yield BookCandidate(
                    catalog_path=entry.path,
                    rel_path=entry.rel_path,
                    filename=name,
                    container_kind=CatalogKind.ZIP,
                    size=info.file_size,
                    mtime=_member_mtime(info),
                    read_bytes=partial(source.read, info.filename),
                )
        finally:
            source.close()

    def _walk_inpx(self, path: Path, directory: Path, root: Path) -> Iterator[WalkItem]:
        try:
            stat = path.stat()
        except OSError as exc:
            yield WalkFailure(str(path), IoError(f"Cannot stat {path}: {exc}"), str(path))
            return

        entry = CatalogEntry(
            path=str(path),
            name=path.name,
            kind=CatalogKind.INPX,
            parent_path=str(directory),
            rel_path=self._relative(path, root),
            size=stat.st_size,
            mtime=stat.st_mtime,
        )
        if self._unchanged(entry):
            logger.debug("Index %s unchanged, not reparsing", path)
            yield replace(entry, skipped=True)
            return
        yield entry

        try:
            parts = read_inpx(_read_file(path))
        except IoError as exc:
            yield WalkFailure(str(path), exc, catalog_path=str(path))
            return

        sources: dict[str, ZipSource] = {}
        for inp_name, records in parts:
            inp_path = f"{path}/{inp_name}"
            yield CatalogEntry(
                path=inp_path,
                name=inp_name,
                kind=CatalogKind.INP,
                parent_path=entry.path,
                rel_path=f"{entry.rel_path}/{inp_name}",
            )
            try:
                for record in records:
                    if self._stopped():
                        return
                    if record.format not in self.extensions:
                        continue
                    folder = directory / record.folder
                    source = sources.setdefault(record.folder, ZipSource(folder))
                    yield BookCandidate(
                        catalog_path=inp_path,
                        rel_path=self._relative(folder, root),
                        filename=record.filename,
                        container_kind=CatalogKind.INPX,
                        size=record.size,
                        mtime=0.0,
                        read_bytes=partial(source.read, record.filename),
                        metadata=record.metadata,
                    )
            except IoError as exc:
                yield WalkFailure(inp_path, exc, catalog_path=inp_path)
