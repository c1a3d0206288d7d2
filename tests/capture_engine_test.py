import unittest

from capture.engine import CONTENT, CaptureEngine
from capture.governor import RequestGovernor
from capture.summary import RunSummary
from tracker.errors import FetchError, ResourceGoneError
from tracker.hasher import EMPTY_HASHES, hash_content
from tracker.models import DiffKind
from tests.fakes import FakeSource, MemorySink, make_version, utc

DIFF_BODY = b"<html><body><p>Intro</p><ins>Added</ins> text <del>Removed</del></body></html>"


def make_engine(bodies, **kwargs):
    source = FakeSource(bodies=bodies)
    governor = RequestGovernor(max_concurrency=2, rate_limit=0, retries=1)
    summary = RunSummary()
    engine = CaptureEngine(source, governor, summary=summary, **kwargs)
    return engine, source, summary


def linked_version(version_id, **fields):
    return make_version(
        version_id,
        utc(2020, 1, 1),
        content_url=f"https://raw/{version_id}",
        diff_url=f"https://diff/{version_id}",
        **fields,
    )


class TestCaptureContent(unittest.TestCase):
    def test_content_hash_length_and_file_written(self):
        sink = MemorySink()
        engine, _, summary = make_engine({"https://raw/v1": b"<html>hello</html>"}, sink=sink)
        version = linked_version("v1")

        result = engine.capture_content(version)

        self.assertEqual(result.hash, hash_content(b"<html>hello</html>"))
        self.assertEqual(version.content_hash, result.hash)
        self.assertEqual(version.content_length, 18)
        self.assertEqual(version.file_path, "p1/v1.html")
        self.assertEqual(sink.files["p1/v1.html"], b"<html>hello</html>")
        self.assertIsNotNone(version.captured_at)
        self.assertEqual(summary.successes[CONTENT], 1)

    def test_version_without_content_is_skipped(self):
        engine, source, _ = make_engine({})
        version = linked_version("v1", has_content=False)
        self.assertIsNone(engine.capture_content(version))
        self.assertEqual(source.fetched, [])

    def test_gone_is_ignored_and_not_a_failure(self):
        engine, _, summary = make_engine({"https://raw/v1": ResourceGoneError("https://raw/v1", 404)})
        version = linked_version("v1")
        self.assertIsNone(engine.capture_content(version))
        self.assertIsNone(version.content_hash)
        self.assertEqual(summary.gone, 1)
        self.assertFalse(summary.has_failures)


class TestCaptureDiff(unittest.TestCase):
    def test_full_and_text_fingerprints(self):
        engine, _, _ = make_engine({
            ("https://diff/v1", "full"): DIFF_BODY,
            ("https://diff/v1", "text"): DIFF_BODY,
        })
        version = linked_version("v1")

        full = engine.capture_diff(version, DiffKind.FULL)
        text = engine.capture_diff(version, DiffKind.TEXT)

        self.assertEqual(version.diff_hash, full.hash)
        self.assertEqual(version.text_diff_hash, text.hash)
        self.assertNotEqual(full.hash, text.hash)
        self.assertEqual(version.text_diff_length, len("ins:Added\ndel:Removed"))

    def test_unchanged_context_does_not_affect_fingerprint(self):
        other = b"<html><body><p>Different intro</p><ins>Added</ins><del>Removed</del></body></html>"
        engine, _, _ = make_engine({"https://diff/a": DIFF_BODY, "https://diff/b": other})
        a = make_version("a", utc(2020, 1, 1), diff_url="https://diff/a")
        b = make_version("b", utc(2020, 1, 1), diff_url="https://diff/b")
        engine.capture_diff(a)
        engine.capture_diff(b)
        self.assertEqual(a.diff_hash, b.diff_hash)

    def test_empty_diff_hashes_to_sentinel_value(self):
        engine, _, _ = make_engine({"https://diff/v1": b""})
        version = linked_version("v1")
        engine.capture_diff(version, DiffKind.TEXT)
        self.assertIn(version.text_diff_hash, EMPTY_HASHES)

    def test_safe_diff_preferred_when_skipping_errors(self):
        engine, source, _ = make_engine(
            {"https://diff-safe/v1": DIFF_BODY, "https://diff/v1": DIFF_BODY},
            skip_error_versions=True,
        )
        version = linked_version("v1", diff_safe_url="https://diff-safe/v1")
        engine.capture_diff(version)
        self.assertEqual(source.fetched, ["https://diff-safe/v1"])

    def test_no_diff_url_returns_none(self):
        engine, source, _ = make_engine({})
        version = make_version("v1", utc(2020, 1, 1))
        self.assertIsNone(engine.capture_diff(version))
        self.assertEqual(source.fetched, [])


class TestCaptureBatch(unittest.TestCase):
    def test_failure_is_recorded_and_batch_continues(self):
        bodies = {
            "https://raw/v1": b"one",
            "https://diff/v1": DIFF_BODY,
            "https://raw/v2": FetchError("https://raw/v2", status=400, transient=False),
            "https://diff/v2": DIFF_BODY,
        }
        engine, _, summary = make_engine(bodies)
        versions = [linked_version("v1"), linked_version("v2")]

        with self.assertLogs("tracker", level="ERROR") as logs:
            results = engine.capture_versions(versions, kinds=(CONTENT, DiffKind.FULL))

        self.assertEqual(set(results), {"v1", "v2"})
        self.assertEqual(set(results["v1"]), {"content", "full"})
        self.assertEqual(set(results["v2"]), {"full"})
        self.assertEqual(summary.failure_count, 1)
        self.assertEqual(summary.failures[0].version_id, "v2")
        self.assertTrue(any("v2" in line for line in logs.output))

    def test_duplicate_versions_captured_once(self):
        engine, source, _ = make_engine({"https://raw/v1": b"one"})
        version = linked_version("v1")
        results = engine.capture_versions([version, version], kinds=(CONTENT,))
        self.assertEqual(list(results), ["v1"])
        self.assertEqual(source.fetched, ["https://raw/v1"])

    def test_empty_batch(self):
        engine, _, _ = make_engine({})
        self.assertEqual(engine.capture_versions([]), {})


if __name__ == "__main__":
    unittest.main()
