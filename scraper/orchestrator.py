import time
from dataclasses import dataclass, field
from typing import Callable, Iterator, List, Optional

from scraper.source import ChangeSource, Listing
from tracker.dates import DateRange, DatedEntity, LastChangeEntity
from tracker.errors import ResourceGoneError
from tracker.logger import logger
from tracker.models import Page, Site, Version


@dataclass
class VersionSelection:
    """
    In-scope versions of one page, oldest first.
    `error_versions` is only populated in skip-error-versions mode.
    """
    versions: List[Version] = field(default_factory=list)
    error_versions: List[Version] = field(default_factory=list)
    undated: int = 0


class ScrapeOrchestrator:
    """
    FLOW: Walks sites -> pages -> versions on the remote source, following
    `next` links until exhausted -> applies the date-range, emptiness and
    error/safe filters -> returns the in-scope hierarchy.
    """

    def __init__(
        self,
        source: ChangeSource,
        date_range: Optional[DateRange] = None,
        skip_error_versions: bool = False,
        latest_version_only: bool = False,
        page_delay: float = 0.0,
        governor=None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._source = source
        self.date_range = date_range or DateRange()
        self.skip_error_versions = skip_error_versions
        self.latest_version_only = latest_version_only
        self.page_delay = page_delay
        self._governor = governor
        self._sleep = sleep

    # --------------------------------------------------
    # Pagination
    # --------------------------------------------------
    def _load(self, fetch_listing: Callable[[Optional[str]], Listing], url: Optional[str]) -> Listing:
        if self._governor is not None:
            return self._governor.call(fetch_listing, url)
        return fetch_listing(url)

    def _paginate(self, fetch_listing: Callable[[Optional[str]], Listing]) -> Iterator:
        url = None
        seen = set()
        while True:
            listing = self._load(fetch_listing, url)
            yield from listing.items
            url = listing.next_url
            if not url:
                return
            if url in seen:
                logger.warning(f"[SCRAPE] Pagination loop detected at {url}; stopping")
                return
            seen.add(url)
            if self.page_delay:
                self._sleep(self.page_delay)

    # --------------------------------------------------
    # Levels
    # --------------------------------------------------
    def list_sites(self) -> List[Site]:
        sites = []
        for site in self._paginate(self._source.sites_listing):
            if not self.date_range.accepts(LastChangeEntity(site.last_change)):
                logger.debug(f"[SCRAPE] Site {site.id} last changed outside {self.date_range.describe()}")
                continue
            sites.append(site)
        logger.info(f"[SCRAPE] {len(sites)} site(s) in range")
        return sites

    def list_pages(self, site: Site) -> List[Page]:
        pages = []
        for page in self._paginate(lambda url: self._source.pages_listing(site, url)):
            if not self.date_range.accepts(LastChangeEntity(page.last_change)):
                continue
            # Unknown counts may still have versions
            if page.total_versions == 0:
                logger.debug(f"[SCRAPE] Page {page.id} has no versions; skipping")
                continue
            pages.append(page)
        return pages

    def list_versions(self, page: Page) -> VersionSelection:
        selection = VersionSelection()
        dated = []
        for version in self._paginate(lambda url: self._source.versions_listing(page, url)):
            if version.date is None:
                selection.undated += 1
                logger.warning(
                    f"[SCRAPE] Version {version.id} of page {page.id} has no resolvable date; excluded"
                )
                continue
            if self.date_range.accepts(DatedEntity(version.date)):
                dated.append(version)

        dated.sort(key=lambda v: (v.date, v.id))

        if self.skip_error_versions:
            # Errors are taken before the safe set is narrowed to its newest entry
            candidates = dated[-1:] if self.latest_version_only else dated
            selection.error_versions = [v for v in candidates if v.is_error]
            dated = [v for v in dated if not v.is_error]

        if self.latest_version_only:
            dated = dated[-1:]
        selection.versions = dated
        return selection

    # --------------------------------------------------
    # Walk
    # --------------------------------------------------
    def scrape(self) -> List[Site]:
        """Walk the whole hierarchy. Pages with nothing in scope are dropped."""
        sites = []
        for site in self.list_sites():
            site.pages = []
            try:
                pages = self.list_pages(site)
            except ResourceGoneError as e:
                logger.debug(f"[SCRAPE] Site {site.id} is gone ({e.url}); skipping")
                continue
            for page in pages:
                try:
                    selection = self.list_versions(page)
                except ResourceGoneError as e:
                    logger.debug(f"[SCRAPE] Page {page.id} is gone ({e.url}); skipping")
                    continue
                if not selection.versions and not selection.error_versions:
                    continue
                page.versions = selection.versions
                page.error_versions = selection.error_versions
                site.pages.append(page)
            logger.info(f"[SCRAPE] Site {site.id} ({site.name}): {len(site.pages)} page(s) with versions in scope")
            if site.pages:
                sites.append(site)
        return sites


def iter_versions(sites: List[Site]) -> Iterator[Version]:
    """Every selected version (safe and error) across the hierarchy."""
    for site in sites:
        for page in site.pages:
            yield from page.versions
            yield from page.error_versions
