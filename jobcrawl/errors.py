"""Exceptions raised across the crawl subsystem.

Per-source and per-item failures (``SourceFetchError``,
``PersistenceItemError``) are isolated and aggregated into run metadata.
Run-level and definition errors are surfaced to the caller.
"""


class CrawlError(Exception):
    """Base class for every error raised by jobcrawl."""


class SourceFetchError(CrawlError):
    def __init__(self, source: str, cause: BaseException):
        self.source = source
        self.cause = cause
        super().__init__(f"{source}: {cause}")


class AllSourcesFailedError(CrawlError):
    def __init__(self, failures: list[SourceFetchError]):
        self.failures = failures
        if len(failures) == 1:
            msg = f"Failed to fetch jobs from {failures[0]}"
        elif failures:
            detail = "; ".join(str(f) for f in failures)
            msg = f"All job sources failed ({detail})"
        else:
            msg = "No configured job sources"
        super().__init__(msg)


class PersistenceItemError(CrawlError):
    def __init__(self, index: int, cause: BaseException):
        self.index = index
        self.cause = cause
        super().__init__(f"item {index}: {cause}")


class UnknownSourceError(CrawlError, ValueError):
    pass


class CrawlNotFoundError(CrawlError, LookupError):
    pass


class ScheduleNotFoundError(CrawlError, LookupError):
    pass


class InvalidScheduleDefinitionError(CrawlError, ValueError):
    pass


class DuplicateJobError(CrawlError):
    """A job insert violated one of the identity unique constraints."""
