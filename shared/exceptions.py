"""Exception types raised by the import pipeline."""
from typing import List, Optional


class ImporterError(Exception):
    """Base class for import pipeline errors."""


class FetchError(ImporterError):
    """A feed could not be retrieved (network error, timeout or HTTP status)."""

    def __init__(self, url: str, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.status = status


class ParseError(ImporterError):
    """A feed document could not be parsed by any strategy."""


class ValidationError(ImporterError):
    """A job candidate is missing or has malformed required fields."""

    def __init__(self, errors: List[str]):
        super().__init__("; ".join(errors) or "Job data validation failed")
        self.errors = errors


class PersistenceError(ImporterError):
    """A single job could not be written to the store."""


class TaskExecutionError(ImporterError):
    """An import task failed at the fetch/parse stage and should be retried."""

    def __init__(self, source_url: str, message: str):
        super().__init__(message)
        self.source_url = source_url
