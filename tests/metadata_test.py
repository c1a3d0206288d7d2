import io
import unittest

from tracker.errors import MetadataError
from tracker.metadata import group_by_page, pages_from_versions, read_versions, write_sites, write_versions
from tracker.models import Page, Site
from tests.fakes import make_version, utc


class TestMetadataStream(unittest.TestCase):
    def test_written_record_reads_back(self):
        version = make_version(
            "v1", utc(2020, 1, 1, 10, 30), error_code=503,
            diff_url="https://diff/v1", diff_hash="abc", text_diff_length=12, priority=0.5,
        )
        stream = io.StringIO()
        self.assertEqual(write_versions([version], stream), 1)

        stream.seek(0)
        (restored,) = list(read_versions(stream))
        self.assertEqual(restored, version)

    def test_write_sites_includes_error_versions_once(self):
        page = Page(id="p1", site_id="s1", url="u")
        safe = make_version("v1", utc(2020, 1, 1))
        error = make_version("v2", utc(2020, 1, 2), error_code=500)
        page.versions = [safe]
        page.error_versions = [error]
        site = Site(id="s1", name="Site", url="u", pages=[page])

        stream = io.StringIO()
        self.assertEqual(write_sites([site], stream), 2)

    def test_blank_lines_skipped_and_bad_lines_rejected(self):
        stream = io.StringIO('\n{"id": "v1", "pageId": "p1", "date": "2020-01-01T00:00:00Z"}\n\nnot json\n')
        reader = read_versions(stream)
        self.assertEqual(next(reader).id, "v1")
        with self.assertRaises(MetadataError) as ctx:
            next(reader)
        self.assertEqual(ctx.exception.line_number, 4)

    def test_record_without_page_id_rejected(self):
        with self.assertRaises(MetadataError):
            list(read_versions(io.StringIO('{"id": "v1"}\n')))

    def test_undated_record_warns(self):
        with self.assertLogs("tracker", level="WARNING"):
            (version,) = list(read_versions(io.StringIO('{"id": "v1", "pageId": "p1"}\n')))
        self.assertIsNone(version.date)


class TestGrouping(unittest.TestCase):
    def test_group_by_page_keeps_stream_order(self):
        versions = [
            make_version("v1", utc(2020, 1, 1), page_id="b"),
            make_version("v2", utc(2020, 1, 1), page_id="a"),
            make_version("v3", utc(2020, 1, 2), page_id="b"),
        ]
        grouped = group_by_page(versions)
        self.assertEqual(list(grouped), ["b", "a"])
        self.assertEqual([v.id for v in grouped["b"]], ["v1", "v3"])

    def test_pages_from_versions_splits_errors(self):
        versions = [
            make_version("v1", utc(2020, 1, 1)),
            make_version("v2", utc(2020, 1, 2), error_code=500),
        ]
        (page,) = pages_from_versions(versions)
        self.assertEqual([v.id for v in page.versions], ["v1"])
        self.assertEqual([v.id for v in page.error_versions], ["v2"])


if __name__ == "__main__":
    unittest.main()
