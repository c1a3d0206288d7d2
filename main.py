"""
Entry point for the change tracker.

Modes:
  scrape     walk the remote source, capture content and diffs, write the
             metadata stream and the change report
  reconcile  rebuild version -> file bindings from a metadata stream and a
             directory of per-page bulk archives (<page id>.zip)
  report     build the change report from a metadata stream
"""

import argparse
import sys
from datetime import datetime, timezone
from pathlib import Path

from capture.engine import CaptureEngine
from capture.governor import RequestGovernor
from capture.summary import RunSummary
from reconcile.archive import BulkArchive
from reconcile.engine import ArchiveReconciler
from report.aggregator import ReportAggregator
from report.writer import write_csv
from scraper.http_source import HttpChangeSource
from scraper.orchestrator import ScrapeOrchestrator, iter_versions
from tracker.config import RunConfig
from tracker.errors import ConfigurationError, MetadataError
from tracker.logger import add_file_handler, logger
from tracker.metadata import pages_from_versions, read_versions, write_sites, write_versions
from tracker.storage import DirectorySink

EXIT_OK = 0
EXIT_FAILURES = 1
EXIT_CONFIG = 2


class TrackerSession:
    """Wires the pipeline stages together for one run."""

    def __init__(self, config: RunConfig):
        self.config = config
        self.summary = RunSummary()
        self.started_at = datetime.now(timezone.utc)
        self.run_dir = Path(config.output_dir) / self.started_at.strftime("%Y-%m-%d_%H%M%S")

    def _aggregator(self) -> ReportAggregator:
        return ReportAggregator(tag_prefix=self.config.group_tag_prefix, now=self.started_at)

    def _write_report(self, pages) -> Path:
        rows = self._aggregator().build_report(pages)
        self.run_dir.mkdir(parents=True, exist_ok=True)
        path = self.run_dir / "changes.csv"
        with open(path, "w", newline="", encoding="utf-8") as f:
            count = write_csv(rows, f)
        logger.info(f"[REPORT] Wrote {count} row(s) to {path}")
        return path

    # --------------------------------------------------
    # Modes
    # --------------------------------------------------
    def scrape(self, save_content: bool = False) -> int:
        config = self.config
        source = HttpChangeSource(config.base_url, config.email, config.password)
        governor = RequestGovernor.from_config(config)
        orchestrator = ScrapeOrchestrator(
            source,
            date_range=config.date_range,
            skip_error_versions=config.skip_error_versions,
            latest_version_only=config.latest_version_only,
            page_delay=config.page_delay,
            governor=governor,
        )
        logger.info(f"[SCRAPE] Scraping {config.base_url} for versions in {config.date_range.describe()}")
        sites = orchestrator.scrape()

        sink = DirectorySink(self.run_dir / "content") if save_content else None
        engine = CaptureEngine(
            source,
            governor,
            summary=self.summary,
            skip_error_versions=config.skip_error_versions,
            sink=sink,
        )
        engine.capture_versions(iter_versions(sites))

        self.run_dir.mkdir(parents=True, exist_ok=True)
        metadata_path = self.run_dir / "versions.jsonl"
        with open(metadata_path, "w", encoding="utf-8") as f:
            count = write_sites(sites, f)
        logger.info(f"[SCRAPE] Wrote {count} version record(s) to {metadata_path}")

        self._write_report([page for site in sites for page in site.pages])
        return self._finish()

    def reconcile(self, metadata_path: Path, archive_dir: Path) -> int:
        with open(metadata_path, encoding="utf-8") as f:
            versions = list(read_versions(f))
        logger.info(f"[RECONCILE] Loaded {len(versions)} version record(s) from {metadata_path}")

        def archive_for(page_id):
            path = Path(archive_dir) / f"{page_id}.zip"
            return BulkArchive(path) if path.exists() else None

        reconciler = ArchiveReconciler.from_config(
            self.config, DirectorySink(self.run_dir / "content"), summary=self.summary
        )
        reconciler.reconcile(versions, archive_for)

        self.run_dir.mkdir(parents=True, exist_ok=True)
        out_path = self.run_dir / "versions.jsonl"
        with open(out_path, "w", encoding="utf-8") as f:
            write_versions(versions, f)
        logger.info(f"[RECONCILE] Wrote updated metadata to {out_path}")
        return self._finish()

    def report(self, metadata_path: Path) -> int:
        with open(metadata_path, encoding="utf-8") as f:
            pages = pages_from_versions(read_versions(f))
        self._write_report(pages)
        return self._finish()

    def _finish(self) -> int:
        self.summary.log()
        return EXIT_FAILURES if self.summary.has_failures else EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Change tracker CLI")
    parser.add_argument("--mode", choices=["scrape", "reconcile", "report"], default="scrape")
    parser.add_argument("--after", help="ISO-8601 timestamp or hours ago")
    parser.add_argument("--before", help="ISO-8601 timestamp or hours ago")
    parser.add_argument("--max-concurrency", type=int)
    parser.add_argument("--rate-limit", type=int, help="Requests per minute (0 = unlimited)")
    parser.add_argument("--skip-error-versions", action="store_true", default=None)
    parser.add_argument("--latest-version-only", action="store_true", default=None)
    parser.add_argument("--group-tag-prefix")
    parser.add_argument("--match-window-minutes", type=float)
    parser.add_argument("--include-unmatched", action="store_true", default=None)
    parser.add_argument("--output-dir")
    parser.add_argument("--save-content", action="store_true", help="Keep raw version content (scrape mode)")
    parser.add_argument("--metadata", help="Metadata stream (reconcile/report modes)")
    parser.add_argument("--archives", help="Directory of <page id>.zip bulk archives (reconcile mode)")
    parser.add_argument("--log-file")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    if args.log_file:
        add_file_handler(args.log_file)

    try:
        config = RunConfig.from_env(
            after=args.after,
            before=args.before,
            max_concurrency=args.max_concurrency,
            rate_limit=args.rate_limit,
            skip_error_versions=args.skip_error_versions,
            latest_version_only=args.latest_version_only,
            group_tag_prefix=args.group_tag_prefix,
            match_window_minutes=args.match_window_minutes,
            include_unmatched=args.include_unmatched,
            output_dir=args.output_dir,
        ).validate(require_credentials=(args.mode == "scrape"))
        if args.mode != "scrape" and not args.metadata:
            raise ConfigurationError(f"--metadata is required in {args.mode} mode")
        if args.mode == "reconcile" and not args.archives:
            raise ConfigurationError("--archives is required in reconcile mode")
    except ConfigurationError as e:
        logger.error(f"[CONFIG] {e}")
        return EXIT_CONFIG

    session = TrackerSession(config)
    try:
        if args.mode == "scrape":
            return session.scrape(save_content=args.save_content)
        if args.mode == "reconcile":
            return session.reconcile(Path(args.metadata), Path(args.archives))
        return session.report(Path(args.metadata))
    except ConfigurationError as e:
        logger.error(f"[CONFIG] {e}")
        return EXIT_CONFIG
    except MetadataError as e:
        logger.error(f"[METADATA] {e}")
        return EXIT_FAILURES


if __name__ == "__main__":
    sys.exit(main())
