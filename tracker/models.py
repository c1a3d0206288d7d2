from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, BinaryIO, Dict, List, Optional

from tracker.dates import parse_timestamp


class DiffKind(Enum):
    FULL = "full"
    TEXT = "text"


@dataclass
class Version:
    """
    One captured snapshot of a monitored page.
    Identity is `id`; the capture fields are filled in place by the
    Capture Engine or the Archive Reconciler.
    """
    id: str
    page_id: str
    site_id: str
    date: Optional[datetime]
    has_content: bool = True
    error_code: Optional[int] = None

    # Links on the remote source
    url: str = ""
    content_url: Optional[str] = None
    diff_url: Optional[str] = None
    diff_safe_url: Optional[str] = None
    diff_with_first_url: Optional[str] = None

    # Capture results
    content_hash: Optional[str] = None
    content_length: Optional[int] = None
    diff_hash: Optional[str] = None
    diff_length: Optional[int] = None
    text_diff_hash: Optional[str] = None
    text_diff_length: Optional[int] = None
    file_path: Optional[str] = None
    priority: Optional[float] = None
    captured_at: Optional[datetime] = None

    @property
    def is_error(self) -> bool:
        return self.error_code is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "pageId": self.page_id,
            "siteId": self.site_id,
            "date": self.date.isoformat() if self.date else None,
            "hasContent": self.has_content,
            "errorCode": self.error_code,
            "url": self.url,
            "contentUrl": self.content_url,
            "diffUrl": self.diff_url,
            "diffSafeUrl": self.diff_safe_url,
            "diffWithFirstUrl": self.diff_with_first_url,
            "contentHash": self.content_hash,
            "contentLength": self.content_length,
            "diffHash": self.diff_hash,
            "diffLength": self.diff_length,
            "textDiffHash": self.text_diff_hash,
            "textDiffLength": self.text_diff_length,
            "filePath": self.file_path,
            "priority": self.priority,
            "capturedAt": self.captured_at.isoformat() if self.captured_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Version":
        error_code = data.get("errorCode")
        return cls(
            id=str(data["id"]),
            page_id=str(data["pageId"]),
            site_id=str(data.get("siteId") or ""),
            date=parse_timestamp(data.get("date")),
            has_content=bool(data.get("hasContent", True)),
            error_code=int(error_code) if error_code is not None else None,
            url=data.get("url") or "",
            content_url=data.get("contentUrl"),
            diff_url=data.get("diffUrl"),
            diff_safe_url=data.get("diffSafeUrl"),
            diff_with_first_url=data.get("diffWithFirstUrl"),
            content_hash=data.get("contentHash"),
            content_length=data.get("contentLength"),
            diff_hash=data.get("diffHash"),
            diff_length=data.get("diffLength"),
            text_diff_hash=data.get("textDiffHash"),
            text_diff_length=data.get("textDiffLength"),
            file_path=data.get("filePath"),
            priority=data.get("priority"),
            captured_at=parse_timestamp(data.get("capturedAt")),
        )


@dataclass
class Page:
    id: str
    site_id: str
    url: str
    title: str = ""
    site_name: str = ""
    view_url: str = ""
    total_versions: Optional[int] = None
    last_change: Optional[datetime] = None
    tags: List[str] = field(default_factory=list)
    maintainers: List[str] = field(default_factory=list)
    versions: List[Version] = field(default_factory=list)
    error_versions: List[Version] = field(default_factory=list)

    def all_versions(self) -> List[Version]:
        """Every known version of the page, oldest first, each id once."""
        seen = {}
        for version in self.versions + self.error_versions:
            seen.setdefault(version.id, version)
        return sorted(
            (v for v in seen.values() if v.date is not None),
            key=lambda v: (v.date, v.id),
        )


@dataclass
class Site:
    id: str
    name: str
    url: str
    last_change: Optional[datetime] = None
    pages: List[Page] = field(default_factory=list)


@dataclass
class ArchiveEntry:
    """
    One file of a bulk archive. Transient: `stream` is only readable until
    the archive iterator advances.
    """
    path: str
    extension: str
    timestamp: datetime
    stream: BinaryIO


@dataclass(frozen=True)
class CaptureResult:
    version_id: str
    kind: str
    url: str
    hash: str
    length: int
    file_path: Optional[str] = None
