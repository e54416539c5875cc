# ABOUTME: One-time catalog repair: merges duplicate authors and series onto the lowest ID.
# ABOUTME: Invoked explicitly (repair-duplicates command), never as part of a normal scan.

import logging
from dataclasses import dataclass

from shelfindex.db.repository import CatalogRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RepairResult:
    authors_removed: int
    series_removed: int
    counters: dict[str, int]

    @property
    def total_removed(self) -> int:
        return self.authors_removed + self.series_removed


def repair_duplicates(repository: CatalogRepository) -> RepairResult:
    """Collapse authors and series that share a name, then refresh counters.

    Book links are moved to the surviving (lowest ID) row before the
    duplicates are deleted, and every author_key is rebuilt.
    """
    authors = repository.merge_duplicate_authors()
    series = repository.merge_duplicate_series()
    counters = repository.refresh_counters()
    logger.info("Removed %d duplicate authors and %d duplicate series", authors, series)
    return RepairResult(authors_removed=authors, series_removed=series, counters=counters)
