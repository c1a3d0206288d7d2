"""
Capture Engine: fetches raw content and diffs for in-scope versions
through the Governor and writes the results back onto each Version.
"""

import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from typing import Dict, Iterable, Optional, Sequence

from capture.governor import RequestGovernor
from capture.summary import RunSummary
from scraper.source import ChangeSource
from tracker.errors import ResourceGoneError
from tracker.hasher import diff_fingerprint, hash_content
from tracker.logger import logger
from tracker.models import CaptureResult, DiffKind, Version
from tracker.storage import OutputSink

CONTENT = "content"
ALL_KINDS = (CONTENT, DiffKind.FULL, DiffKind.TEXT)


def _kind_name(kind) -> str:
    return kind.value if isinstance(kind, DiffKind) else str(kind)


class CaptureEngine:
    def __init__(
        self,
        source: ChangeSource,
        governor: RequestGovernor,
        summary: Optional[RunSummary] = None,
        skip_error_versions: bool = False,
        sink: Optional[OutputSink] = None,
    ):
        self._source = source
        self._governor = governor
        self.summary = summary or RunSummary()
        self.skip_error_versions = skip_error_versions
        self._sink = sink
        # Serializes writes to a single Version from concurrent operations
        self._record_lock = threading.Lock()

    # --------------------------------------------------
    # Single operations
    # --------------------------------------------------
    def _request(self, version: Version, kind: str, url: str, fetch, *args) -> Optional[bytes]:
        try:
            return self._governor.call(fetch, url, *args, description=f"{kind} of version {version.id}")
        except ResourceGoneError:
            logger.debug(f"[CAPTURE] {kind} of version {version.id} is gone ({url})")
            self.summary.record_gone(version.id, kind, url)
            return None
        except Exception as e:
            logger.error(f"[CAPTURE] Failed {kind} for version {version.id} ({url}): {e}")
            self.summary.record_failure(version.id, kind, url, e)
            return None

    def capture_content(self, version: Version) -> Optional[CaptureResult]:
        if not version.has_content or not version.content_url:
            return None
        body = self._request(version, CONTENT, version.content_url, self._source.fetch)
        if body is None:
            return None

        file_path = None
        if self._sink is not None:
            target = self._sink.version_target(version)
            with self._sink.open(target) as handle:
                handle.write(body)
            file_path = target

        result = CaptureResult(
            version_id=version.id,
            kind=CONTENT,
            url=version.content_url,
            hash=hash_content(body),
            length=len(body),
            file_path=file_path,
        )
        with self._record_lock:
            version.content_hash = result.hash
            version.content_length = result.length
            if file_path:
                version.file_path = file_path
            version.captured_at = datetime.now(timezone.utc)
        self.summary.record_success(CONTENT)
        return result

    def diff_url(self, version: Version) -> Optional[str]:
        """Prefer the diff that skips error versions when that mode is on."""
        if self.skip_error_versions and version.diff_safe_url:
            return version.diff_safe_url
        return version.diff_url

    def capture_diff(self, version: Version, kind: DiffKind = DiffKind.FULL) -> Optional[CaptureResult]:
        url = self.diff_url(version)
        if not url:
            return None
        name = f"{kind.value} diff"
        body = self._request(version, name, url, self._source.fetch_diff, kind)
        if body is None:
            return None

        digest, length = diff_fingerprint(body, text_only=(kind == DiffKind.TEXT))
        result = CaptureResult(version_id=version.id, kind=kind.value, url=url, hash=digest, length=length)
        with self._record_lock:
            if kind == DiffKind.TEXT:
                version.text_diff_hash = digest
                version.text_diff_length = length
            else:
                version.diff_hash = digest
                version.diff_length = length
            version.captured_at = datetime.now(timezone.utc)
        self.summary.record_success(name)
        return result

    def capture(self, version: Version, kind) -> Optional[CaptureResult]:
        if kind == CONTENT:
            return self.capture_content(version)
        return self.capture_diff(version, kind)

    # --------------------------------------------------
    # Batch
    # --------------------------------------------------
    def capture_versions(
        self,
        versions: Iterable[Version],
        kinds: Sequence = ALL_KINDS,
    ) -> Dict[str, Dict[str, CaptureResult]]:
        """
        Run every (version, kind) operation in parallel up to the
        concurrency ceiling. Results are keyed by version id, then kind;
        failed or skipped operations are absent.
        """
        unique = {}
        for version in versions:
            unique.setdefault(version.id, version)
        results: Dict[str, Dict[str, CaptureResult]] = {version_id: {} for version_id in unique}
        if not unique:
            return results

        logger.info(
            f"[CAPTURE] Capturing {len(unique)} version(s) x {len(kinds)} kind(s) "
            f"with {self._governor.max_concurrency} worker(s)"
        )
        with ThreadPoolExecutor(
            max_workers=self._governor.max_concurrency,
            thread_name_prefix="Capture",
        ) as executor:
            future_to_job = {}
            for version in unique.values():
                for kind in kinds:
                    future = executor.submit(self.capture, version, kind)
                    future_to_job[future] = (version.id, _kind_name(kind))

            for future in as_completed(future_to_job):
                version_id, kind = future_to_job[future]
                try:
                    result = future.result()
                except Exception as e:
                    # Sink or parsing errors surface here; the batch goes on
                    logger.exception(f"[CAPTURE] Worker exception for version {version_id} ({kind})")
                    self.summary.record_failure(version_id, kind, None, e)
                    continue
                if result is not None:
                    results[version_id][kind] = result

        logger.info(
            f"[CAPTURE] Done | requests={self._governor.state.issued} "
            f"retries={self._governor.state.retries} failures={len(self.summary.failures)}"
        )
        return results
