from abc import ABC, abstractmethod
from pathlib import Path, PurePosixPath
import re
from typing import BinaryIO

from tracker.models import ArchiveEntry, Version

SAFE_NAME_RE = re.compile(r"[^A-Za-z0-9._-]+")


def safe_name(text: str) -> str:
    return SAFE_NAME_RE.sub("_", text).strip("._") or "unnamed"


class OutputSink(ABC):
    """
    Destination for captured content and recovered archive entries.
    Targets are opaque strings recorded as `Version.file_path`.
    """

    @abstractmethod
    def version_target(self, version: Version, extension: str = "html") -> str:
        """Target name for the content of a version."""
        pass

    @abstractmethod
    def unmatched_target(self, page_id: str, entry: ArchiveEntry) -> str:
        """Target name for an archive entry bound to no version."""
        pass

    @abstractmethod
    def open(self, target: str) -> BinaryIO:
        """Open a target for binary writing."""
        pass

    def discard(self, target: str) -> None:
        """Remove a target written during a failed unit of work."""
        pass


class DirectorySink(OutputSink):
    """Writes targets below a root directory on the local filesystem."""

    def __init__(self, root):
        self.root = Path(root)

    def version_target(self, version: Version, extension: str = "html") -> str:
        extension = extension or "html"
        return str(PurePosixPath(
            safe_name(version.site_id or "site"),
            safe_name(version.page_id),
            f"{safe_name(version.id)}.{extension}",
        ))

    def unmatched_target(self, page_id: str, entry: ArchiveEntry) -> str:
        return str(PurePosixPath(
            "unmatched",
            safe_name(page_id),
            safe_name(PurePosixPath(entry.path).name),
        ))

    def _path(self, target: str) -> Path:
        return self.root / Path(*PurePosixPath(target).parts)

    def open(self, target: str) -> BinaryIO:
        path = self._path(target)
        path.parent.mkdir(parents=True, exist_ok=True)
        return open(path, "wb")

    def discard(self, target: str) -> None:
        path = self._path(target)
        if path.exists():
            path.unlink()
