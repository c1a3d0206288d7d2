from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from tracker.models import Page, Version

# Column schema of the change report, in output order
COLUMNS = [
    "Index",
    "Version ID",
    "Output Date/Time",
    "Maintainers",
    "Group",
    "Title",
    "URL",
    "Page View URL",
    "Last Two - Side by Side",
    "Latest to Base - Side by Side",
    "Date Found - Latest",
    "Date Found - Base",
    "Diff Length",
    "Diff Hash",
    "Text Diff Length",
    "Text Diff Hash",
    "Priority",
]


@dataclass(frozen=True)
class PageState:
    """
    A page as reported: the page plus the version treated as its latest.
    One page can produce two states (an error latest and a safe latest).
    """
    page: Page
    latest: Version
    earliest: Version
    group: str


@dataclass
class ReportRow:
    index: int
    version_id: str
    output_date: datetime
    maintainers: str
    group: str
    title: str
    url: str
    page_view_url: str
    diff_url: str
    diff_with_first_url: str
    capture_time: Optional[datetime]
    earliest_capture_time: Optional[datetime]
    diff_length: Optional[int]
    diff_hash: str
    text_diff_length: Optional[int]
    text_diff_hash: str
    priority: float

    def as_list(self) -> List:
        def _iso(moment):
            return moment.isoformat() if moment else ""

        def _num(value):
            return "" if value is None else value

        return [
            self.index,
            self.version_id,
            _iso(self.output_date),
            self.maintainers,
            self.group,
            self.title,
            self.url,
            self.page_view_url,
            self.diff_url,
            self.diff_with_first_url,
            _iso(self.capture_time),
            _iso(self.earliest_capture_time),
            _num(self.diff_length),
            self.diff_hash,
            _num(self.text_diff_length),
            self.text_diff_hash,
            f"{self.priority:.3f}",
        ]


@dataclass
class ChangeGroup:
    """Report rows sharing one diff-content fingerprint."""
    key: str
    members: List[PageState] = field(default_factory=list)
    max_priority: float = 0.0
