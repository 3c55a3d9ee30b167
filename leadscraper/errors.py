"""
Error taxonomy for the scrape pipeline.
- Submission-time problems surface to the caller (4xx/5xx)
- Per-URL fetch problems are recorded on the job and never fail it
- Job-level problems end up in ScrapeJob.error via mark_failed
"""

from typing import Optional


class LeadScraperError(Exception):
    """Base class for everything the pipeline raises on purpose."""


class ValidationError(LeadScraperError):
    pass


class StorageError(LeadScraperError):
    pass


class EnqueueError(LeadScraperError):
    pass


class FetchError(LeadScraperError):
    def __init__(self, url: str, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.status = status

    def as_record(self) -> dict:
        return {"url": self.url, "message": str(self)}


class WorkerError(LeadScraperError):
    pass


class NotFoundError(LeadScraperError):
    pass


class InvalidTransitionError(LeadScraperError):
    pass


class ScrapeTimeoutError(LeadScraperError, TimeoutError):
    pass
