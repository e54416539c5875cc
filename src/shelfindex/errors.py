# ABOUTME: Exception taxonomy shared by the scanner, extractors, and repository.
# ABOUTME: Per-item errors are recoverable; ConfigurationError aborts a scan before it starts.


class ShelfIndexError(Exception):
    """Base class for all shelfindex errors."""


class IoError(ShelfIndexError):
    """Raised when a book file or archive cannot be read."""


class ParseError(ShelfIndexError):
    """Raised when a book's content is malformed for its format."""


class ExternalToolError(ShelfIndexError):
    """Raised when an external PDF/DjVu tool is missing or fails."""


class DuplicateKeyConflict(ShelfIndexError):
    """Raised when an insert loses a race on a unique name or path."""


class PersistenceError(ShelfIndexError):
    """Raised when a repository transaction fails against the backend."""


class ConfigurationError(ShelfIndexError):
    """Raised for invalid configuration or unreadable library roots."""


class ScanAlreadyRunning(ShelfIndexError):
    """Raised when a scan is requested while another one holds the scheduler."""
