"""
Error taxonomy shared by every stage of the pipeline.
"""

from typing import Iterable, Optional


class TrackerError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationError(TrackerError):
    """Invalid or missing configuration. Fatal before any network activity."""


class ResourceGoneError(TrackerError):
    """
    The target vanished between discovery and fetch (404/410).
    Benign: never retried, never counted as a failure.
    """

    def __init__(self, url: str, status: Optional[int] = None):
        super().__init__(f"Resource no longer exists: {url}")
        self.url = url
        self.status = status


class FetchError(TrackerError):
    """A single request failed. Transient failures are eligible for retry."""

    def __init__(self, url: str, status: Optional[int] = None, transient: bool = True, reason: str = ""):
        detail = reason or (f"http error: {status}" if status else "request failed")
        super().__init__(f"{detail} ({url})")
        self.url = url
        self.status = status
        self.transient = transient


class ReconciliationError(TrackerError):
    """Versions of a page were left without an archive entry at end of stream."""

    def __init__(self, page_id: str, unmatched_ids: Iterable[str]):
        self.page_id = page_id
        self.unmatched_ids = sorted(unmatched_ids)
        super().__init__(
            f"Page {page_id}: {len(self.unmatched_ids)} version(s) left unmatched: "
            + ", ".join(self.unmatched_ids)
        )


class MetadataError(TrackerError):
    """A metadata stream line could not be decoded into a Version."""

    def __init__(self, line_number: int, reason: str):
        super().__init__(f"Invalid metadata on line {line_number}: {reason}")
        self.line_number = line_number
