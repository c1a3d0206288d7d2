"""
HTTP implementation of the ChangeSource contract.

The remote source exposes JSON list endpoints shaped as
    {"results": [...], "next": "<url>" | null}
and serves raw version content and diff pages as plain HTTP bodies.
"""

from typing import Any, Dict, Optional
from urllib.parse import parse_qsl, urlencode, urljoin, urlparse, urlunparse

import requests

from scraper.source import ChangeSource, Listing
from tracker.config import REQUEST_TIMEOUT, USER_AGENT
from tracker.dates import parse_timestamp
from tracker.errors import ConfigurationError, FetchError, ResourceGoneError
from tracker.logger import logger
from tracker.models import DiffKind, Page, Site, Version

GONE_STATUSES = (404, 410)
TRANSIENT_STATUSES = (408, 429, 500, 502, 503, 504)


def _as_int(value) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def with_query(url: str, **params) -> str:
    parsed = urlparse(url)
    query = dict(parse_qsl(parsed.query))
    query.update({k: v for k, v in params.items() if v is not None})
    return urlunparse(parsed._replace(query=urlencode(query)))


class HttpChangeSource(ChangeSource):
    def __init__(self, base_url: str, email: str = "", password: str = "",
                 session: Optional[requests.Session] = None, timeout: int = REQUEST_TIMEOUT):
        if not base_url:
            raise ConfigurationError("A base URL is required for the remote source")
        self.base_url = base_url.rstrip("/") + "/"
        self.email = email
        self.password = password
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "User-Agent": USER_AGENT,
            "Accept": "application/json, text/html;q=0.9, */*;q=0.8",
        })
        self._logged_in = False

    # --------------------------------------------------
    # Session
    # --------------------------------------------------
    def login(self) -> None:
        if self._logged_in:
            return
        if not self.email or not self.password:
            raise ConfigurationError("Credentials are required to log in to the remote source")
        url = urljoin(self.base_url, "login")
        try:
            r = self.session.post(
                url,
                data={"email": self.email, "password": self.password},
                timeout=self.timeout,
                allow_redirects=True,
            )
        except requests.exceptions.RequestException as e:
            raise FetchError(url, transient=True, reason=str(e)) from e
        if r.status_code in (401, 403):
            raise ConfigurationError(f"Login rejected by {self.base_url} (status {r.status_code})")
        if r.status_code >= 400:
            raise FetchError(url, status=r.status_code, transient=r.status_code >= 500)
        self._logged_in = True
        logger.info(f"[SCRAPE] Logged in to {self.base_url} as {self.email}")

    def _get(self, url: str) -> requests.Response:
        self.login()
        try:
            r = self.session.get(url, timeout=self.timeout, allow_redirects=True)
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
            raise FetchError(url, transient=True, reason=type(e).__name__) from e
        except requests.exceptions.RequestException as e:
            raise FetchError(url, transient=False, reason=str(e)) from e

        if r.status_code in GONE_STATUSES:
            raise ResourceGoneError(url, r.status_code)
        if r.status_code in TRANSIENT_STATUSES or r.status_code >= 500:
            raise FetchError(url, status=r.status_code, transient=True)
        if r.status_code >= 400:
            raise FetchError(url, status=r.status_code, transient=False)
        return r

    def _listing(self, url: str, parse) -> Listing:
        r = self._get(url)
        try:
            payload = r.json()
        except ValueError as e:
            raise FetchError(url, status=r.status_code, transient=False, reason="invalid JSON listing") from e
        records = payload.get("results") or []
        next_url = payload.get("next")
        if next_url:
            next_url = urljoin(url, next_url)
        return Listing(items=[parse(record) for record in records], next_url=next_url or None)

    # --------------------------------------------------
    # Listings
    # --------------------------------------------------
    def sites_listing(self, url: Optional[str] = None) -> Listing[Site]:
        return self._listing(url or urljoin(self.base_url, "api/sites"), self._parse_site)

    def pages_listing(self, site: Site, url: Optional[str] = None) -> Listing[Page]:
        first = urljoin(self.base_url, f"api/sites/{site.id}/pages")
        return self._listing(url or first, lambda record: self._parse_page(record, site))

    def versions_listing(self, page: Page, url: Optional[str] = None) -> Listing[Version]:
        first = urljoin(self.base_url, f"api/pages/{page.id}/versions")
        return self._listing(url or first, lambda record: self._parse_version(record, page))

    # --------------------------------------------------
    # Bodies
    # --------------------------------------------------
    def fetch(self, url: str) -> bytes:
        return self._get(urljoin(self.base_url, url)).content

    def fetch_diff(self, url: str, kind: DiffKind = DiffKind.FULL) -> bytes:
        target = urljoin(self.base_url, url)
        if kind == DiffKind.TEXT:
            target = with_query(target, mode="text")
        return self._get(target).content

    # --------------------------------------------------
    # Record parsing
    # --------------------------------------------------
    def _link(self, record: Dict[str, Any], key: str) -> Optional[str]:
        value = record.get(key)
        return urljoin(self.base_url, value) if value else None

    def _parse_site(self, record: Dict[str, Any]) -> Site:
        return Site(
            id=str(record["id"]),
            name=record.get("name") or "",
            url=record.get("url") or "",
            last_change=parse_timestamp(record.get("lastChange")),
        )

    def _parse_page(self, record: Dict[str, Any], site: Site) -> Page:
        return Page(
            id=str(record["id"]),
            site_id=site.id,
            url=record.get("url") or "",
            title=record.get("title") or "",
            site_name=site.name,
            view_url=self._link(record, "viewUrl") or "",
            total_versions=_as_int(record.get("totalVersions")),
            last_change=parse_timestamp(record.get("lastChange")),
            tags=list(record.get("tags") or []),
            maintainers=list(record.get("maintainers") or []),
        )

    def _parse_version(self, record: Dict[str, Any], page: Page) -> Version:
        return Version(
            id=str(record["id"]),
            page_id=page.id,
            site_id=page.site_id,
            date=parse_timestamp(record.get("date")),
            has_content=bool(record.get("hasContent", True)),
            error_code=_as_int(record.get("errorCode")),
            url=self._link(record, "url") or "",
            content_url=self._link(record, "contentUrl"),
            diff_url=self._link(record, "diffUrl"),
            diff_safe_url=self._link(record, "diffSafeUrl"),
            diff_with_first_url=self._link(record, "diffWithFirstUrl"),
        )
