"""
Archive Reconciler: restores version -> file bindings from a persisted
metadata stream and a re-downloaded bulk archive when live capture was
interrupted.

Matching is greedy and online. Each archive entry, in arrival order, is
bound to the still-unmatched candidate version of its page whose date is
nearest the entry timestamp, provided the distance is strictly below the
match window. It does not backtrack, so it is not a minimum-cost
assignment. Candidates are scanned by version id ascending and only a
strictly smaller distance replaces the current best, so ties go to the
lowest id.
"""

import hashlib
import zipfile
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from capture.summary import RunSummary
from tracker.errors import ReconciliationError
from tracker.logger import logger
from tracker.metadata import group_by_page
from tracker.models import ArchiveEntry, Version
from tracker.storage import OutputSink

DEFAULT_MATCH_WINDOW = timedelta(minutes=30)
CHUNK_SIZE = 64 * 1024


@dataclass
class Binding:
    version_id: str
    entry_path: str
    target: str
    hash: str
    length: int
    delta: timedelta


@dataclass
class PageReconciliation:
    page_id: str
    bindings: Dict[str, Binding] = field(default_factory=dict)
    unmatched_entries: List[str] = field(default_factory=list)
    written_unmatched: List[str] = field(default_factory=list)


@dataclass
class ReconcileReport:
    pages: Dict[str, PageReconciliation] = field(default_factory=dict)
    failures: Dict[str, ReconciliationError] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failures


class ArchiveReconciler:
    def __init__(
        self,
        sink: OutputSink,
        match_window: timedelta = DEFAULT_MATCH_WINDOW,
        include_unmatched: bool = False,
        summary: Optional[RunSummary] = None,
    ):
        self._sink = sink
        self.match_window = match_window
        self.include_unmatched = include_unmatched
        self.summary = summary

    @classmethod
    def from_config(cls, config, sink: OutputSink, summary: Optional[RunSummary] = None) -> "ArchiveReconciler":
        return cls(
            sink,
            match_window=timedelta(minutes=config.match_window_minutes),
            include_unmatched=config.include_unmatched,
            summary=summary,
        )

    # --------------------------------------------------
    # Matching
    # --------------------------------------------------
    @staticmethod
    def candidates(versions: Iterable[Version]) -> List[Version]:
        """
        Every dated version with content, in tie-break order (id ascending).
        Versions already saved by live capture are included.
        """
        return sorted(
            (v for v in versions if v.has_content and v.date is not None),
            key=lambda v: v.id,
        )

    def nearest(self, entry: ArchiveEntry, unmatched: List[Version]) -> Optional[Tuple[Version, timedelta]]:
        best = None
        best_delta = None
        for version in unmatched:
            delta = abs(entry.timestamp - version.date)
            if delta >= self.match_window:
                continue
            if best_delta is None or delta < best_delta:
                best, best_delta = version, delta
        if best is None:
            return None
        return best, best_delta

    def _copy(self, entry: ArchiveEntry, target: str) -> Tuple[str, int]:
        sha = hashlib.sha256()
        length = 0
        with self._sink.open(target) as handle:
            for chunk in iter(lambda: entry.stream.read(CHUNK_SIZE), b""):
                sha.update(chunk)
                handle.write(chunk)
                length += len(chunk)
        return sha.hexdigest(), length

    # --------------------------------------------------
    # Page level
    # --------------------------------------------------
    def reconcile_page(self, page_id: str, versions: Iterable[Version],
                       entries: Iterable[ArchiveEntry]) -> PageReconciliation:
        """
        Bind archive entries to the versions of one page.

        The page is applied atomically: if any candidate is still unmatched
        when the archive ends, everything written for the page is discarded,
        no version is modified and ReconciliationError is raised.
        """
        versions = list(versions)
        unmatched = self.candidates(versions)
        by_id = {v.id: v for v in unmatched}
        result = PageReconciliation(page_id=page_id)
        written = []

        try:
            for entry in entries:
                match = self.nearest(entry, unmatched)
                if match is None:
                    result.unmatched_entries.append(entry.path)
                    if self.include_unmatched:
                        target = self._sink.unmatched_target(page_id, entry)
                        written.append(target)
                        self._copy(entry, target)
                        result.written_unmatched.append(target)
                        logger.info(f"[RECONCILE] Page {page_id}: kept unmatched entry {entry.path} as {target}")
                    else:
                        logger.debug(f"[RECONCILE] Page {page_id}: discarded unmatched entry {entry.path}")
                    continue

                version, delta = match
                unmatched.remove(version)
                target = self._sink.version_target(version, entry.extension)
                written.append(target)
                digest, length = self._copy(entry, target)
                result.bindings[version.id] = Binding(
                    version_id=version.id,
                    entry_path=entry.path,
                    target=target,
                    hash=digest,
                    length=length,
                    delta=delta,
                )
                logger.debug(
                    f"[RECONCILE] Page {page_id}: {entry.path} -> version {version.id} "
                    f"(delta {delta.total_seconds():.0f}s)"
                )
        except Exception:
            self._discard(written)
            raise

        if unmatched:
            self._discard(written)
            raise ReconciliationError(page_id, [v.id for v in unmatched])

        for version_id, binding in result.bindings.items():
            version = by_id[version_id]
            version.file_path = binding.target
            version.content_hash = binding.hash
            version.content_length = binding.length
        logger.info(
            f"[RECONCILE] Page {page_id}: bound {len(result.bindings)} version(s), "
            f"{len(result.unmatched_entries)} unmatched entr(ies)"
        )
        return result

    def _discard(self, targets: List[str]) -> None:
        for target in targets:
            try:
                self._sink.discard(target)
            except OSError as e:
                logger.warning(f"[RECONCILE] Could not discard {target}: {e}")

    # --------------------------------------------------
    # Run level
    # --------------------------------------------------
    def reconcile(
        self,
        versions: Iterable[Version],
        archive_for: Callable[[str], Optional[Iterable[ArchiveEntry]]],
    ) -> ReconcileReport:
        """
        Reconcile every page of a metadata stream. `archive_for(page_id)`
        returns the page's archive entries, or None when no archive exists.
        A failed page is recorded and the run moves on.
        """
        report = ReconcileReport()
        for page_id, members in group_by_page(versions).items():
            if not self.candidates(members):
                logger.debug(f"[RECONCILE] Page {page_id}: nothing to recover")
                continue

            entries = archive_for(page_id)
            if entries is None:
                logger.warning(f"[RECONCILE] Page {page_id}: no bulk archive available")
                entries = ()

            try:
                report.pages[page_id] = self.reconcile_page(page_id, members, entries)
            except ReconciliationError as e:
                logger.error(f"[RECONCILE] {e}")
                report.failures[page_id] = e
                if self.summary is not None:
                    self.summary.record_page_failure(page_id, e.unmatched_ids, e)
                continue
            except (OSError, zipfile.BadZipFile) as e:
                error = ReconciliationError(page_id, [v.id for v in self.candidates(members)])
                logger.error(f"[RECONCILE] Page {page_id}: archive unreadable ({e}). {error}")
                report.failures[page_id] = error
                if self.summary is not None:
                    self.summary.record_page_failure(page_id, error.unmatched_ids, e)
                continue
            if self.summary is not None:
                self.summary.record_page_reconciled(page_id)
        return report
