"""
End-of-run summary: per-item failures and page-level reconciliation
failures are accumulated here instead of stopping the pipeline.
"""

import os
import time
from collections import Counter
from dataclasses import dataclass
from threading import Lock
from typing import List, Optional

import psutil
from tabulate import tabulate

from tracker.logger import logger


@dataclass(frozen=True)
class ItemFailure:
    version_id: str
    kind: str
    url: str
    error: str


@dataclass(frozen=True)
class PageFailure:
    page_id: str
    unmatched_ids: List[str]
    error: str


class RunSummary:
    """Thread-safe accumulator for one run."""

    def __init__(self):
        self.lock = Lock()
        self.start_time = time.time()
        self.successes = Counter()
        self.gone = 0
        self.failures: List[ItemFailure] = []
        self.page_failures: List[PageFailure] = []
        self.pages_reconciled = 0
        self.process = psutil.Process(os.getpid())
        self.peak_memory_mb = self._memory_mb()

    def _memory_mb(self) -> float:
        try:
            return self.process.memory_info().rss / 1024 / 1024
        except psutil.Error:
            return 0.0

    def _sample_memory(self):
        self.peak_memory_mb = max(self.peak_memory_mb, self._memory_mb())

    def record_success(self, kind: str):
        with self.lock:
            self.successes[kind] += 1
            self._sample_memory()

    def record_gone(self, version_id: str, kind: str, url: str):
        with self.lock:
            self.gone += 1

    def record_failure(self, version_id: str, kind: str, url: Optional[str], error):
        with self.lock:
            self.failures.append(ItemFailure(version_id, kind, url or "", str(error)))

    def record_page_reconciled(self, page_id: str):
        with self.lock:
            self.pages_reconciled += 1
            self._sample_memory()

    def record_page_failure(self, page_id: str, unmatched_ids, error):
        with self.lock:
            self.page_failures.append(PageFailure(page_id, list(unmatched_ids), str(error)))

    @property
    def failure_count(self) -> int:
        return len(self.failures) + len(self.page_failures)

    @property
    def has_failures(self) -> bool:
        return self.failure_count > 0

    def render(self) -> str:
        with self.lock:
            elapsed = time.time() - self.start_time
            overview = [
                ["Elapsed", f"{elapsed:.1f}s"],
                ["Captured", ", ".join(f"{k}={v}" for k, v in sorted(self.successes.items())) or "0"],
                ["Gone (ignored)", self.gone],
                ["Item failures", len(self.failures)],
                ["Pages reconciled", self.pages_reconciled],
                ["Page failures", len(self.page_failures)],
                ["Peak memory", f"{self.peak_memory_mb:.1f} MB"],
            ]
            lines = [tabulate(overview, tablefmt="simple")]
            if self.failures:
                rows = [[f.version_id, f.kind, f.url, f.error] for f in self.failures]
                lines.append(tabulate(rows, headers=["Version", "Kind", "URL", "Error"], tablefmt="simple"))
            if self.page_failures:
                rows = [[f.page_id, ", ".join(f.unmatched_ids), f.error] for f in self.page_failures]
                lines.append(tabulate(rows, headers=["Page", "Unmatched versions", "Error"], tablefmt="simple"))
        return "\n\n".join(lines)

    def log(self):
        logger.info("[SUMMARY] Run finished\n" + self.render())
