"""
Persisted metadata stream: newline-delimited JSON, one Version per line,
dates as ISO-8601 strings. Written by the live pipeline, read back by the
Archive Reconciler.
"""

import json
from typing import Dict, Iterable, Iterator, List, TextIO

from tracker.errors import MetadataError
from tracker.grouping import group_by
from tracker.logger import logger
from tracker.models import Page, Site, Version


def write_versions(versions: Iterable[Version], stream: TextIO) -> int:
    count = 0
    for version in versions:
        stream.write(json.dumps(version.to_dict(), sort_keys=True))
        stream.write("\n")
        count += 1
    return count


def write_sites(sites: Iterable[Site], stream: TextIO) -> int:
    """Every version of every scraped page, grouped by page."""
    def _versions():
        for site in sites:
            for page in site.pages:
                yield from page.all_versions()
    return write_versions(_versions(), stream)


def read_versions(stream: TextIO) -> Iterator[Version]:
    for line_number, line in enumerate(stream, start=1):
        line = line.strip()
        if not line:
            continue
        try:
            data = json.loads(line)
        except json.JSONDecodeError as e:
            raise MetadataError(line_number, str(e)) from e
        if not isinstance(data, dict) or "id" not in data or "pageId" not in data:
            raise MetadataError(line_number, "expected an object with 'id' and 'pageId'")
        try:
            version = Version.from_dict(data)
        except (TypeError, ValueError) as e:
            raise MetadataError(line_number, str(e)) from e
        if version.date is None:
            logger.warning(f"[METADATA] Version {version.id} on line {line_number} has no resolvable date")
        yield version


def group_by_page(versions: Iterable[Version]) -> Dict[str, List[Version]]:
    return group_by(versions, key=lambda v: v.page_id)


def pages_from_versions(versions: Iterable[Version]) -> List[Page]:
    """Rebuild bare Page records from a metadata stream."""
    pages = []
    for page_id, members in group_by_page(versions).items():
        page = Page(id=page_id, site_id=members[0].site_id, url="")
        page.versions = [v for v in members if not v.is_error]
        page.error_versions = [v for v in members if v.is_error]
        pages.append(page)
    return pages
