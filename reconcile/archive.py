"""
Bulk archive reader. A bulk archive is a zip bundle holding raw content for
many versions of one page; each entry carries the archive's own timestamp,
which is close to, but not equal to, the version date.
"""

import zipfile
from datetime import datetime, timezone, tzinfo
from pathlib import PurePosixPath
from typing import Iterator

from tracker.logger import logger
from tracker.models import ArchiveEntry


class BulkArchive:
    """
    Restartable, finite, lazy sequence of ArchiveEntry. Each iteration
    reopens the archive and yields entries in directory order; an entry's
    stream is valid until the iterator advances.
    """

    def __init__(self, source, tz: tzinfo = timezone.utc):
        # `source` is a path or a seekable binary file object
        self.source = source
        self.tz = tz

    def __iter__(self) -> Iterator[ArchiveEntry]:
        if hasattr(self.source, "seek"):
            self.source.seek(0)
        with zipfile.ZipFile(self.source) as archive:
            for info in archive.infolist():
                if info.is_dir():
                    continue
                try:
                    timestamp = datetime(*info.date_time, tzinfo=self.tz).astimezone(timezone.utc)
                except ValueError:
                    logger.warning(f"[RECONCILE] Archive entry {info.filename} has an invalid timestamp; skipped")
                    continue
                path = PurePosixPath(info.filename)
                with archive.open(info) as stream:
                    yield ArchiveEntry(
                        path=info.filename,
                        extension=path.suffix.lstrip(".").lower(),
                        timestamp=timestamp,
                        stream=stream,
                    )

    def __repr__(self):
        return f"BulkArchive({self.source!r})"
