from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Generic, List, Optional, TypeVar

from tracker.models import DiffKind, Page, Site, Version

T = TypeVar("T")


@dataclass(frozen=True)
class Listing(Generic[T]):
    """One page of results from a list endpoint, plus the link to the next."""
    items: List[T] = field(default_factory=list)
    next_url: Optional[str] = None


class ChangeSource(ABC):
    """
    Abstract interface to the remote change-tracking source.
    List methods take the URL of the result page to load; None means the
    first page. Fetch methods raise ResourceGoneError when the target no
    longer exists and FetchError for any other failure.
    """

    @abstractmethod
    def sites_listing(self, url: Optional[str] = None) -> Listing[Site]:
        pass

    @abstractmethod
    def pages_listing(self, site: Site, url: Optional[str] = None) -> Listing[Page]:
        pass

    @abstractmethod
    def versions_listing(self, page: Page, url: Optional[str] = None) -> Listing[Version]:
        pass

    @abstractmethod
    def fetch(self, url: str) -> bytes:
        """Raw body at `url`."""
        pass

    @abstractmethod
    def fetch_diff(self, url: str, kind: DiffKind = DiffKind.FULL) -> bytes:
        """Diff body at `url`, full markup or text only."""
        pass
