import unittest
from unittest.mock import MagicMock

from scraper.orchestrator import ScrapeOrchestrator, iter_versions
from tracker.dates import DateRange
from tracker.errors import ResourceGoneError
from tracker.models import Page, Site
from tests.fakes import FakeSource, make_version, utc


def make_source(versions, **kwargs):
    site = Site(id="s1", name="EPA - www.epa.gov", url="https://www.epa.gov")
    page = Page(id="p1", site_id="s1", url="https://www.epa.gov/climate")
    return FakeSource(sites=[site], pages={"s1": [page]}, versions={"p1": versions}, **kwargs), site, page


class TestPagination(unittest.TestCase):
    def test_follows_next_links_until_exhausted(self):
        versions = [make_version(f"v{i}", utc(2020, 1, i + 1)) for i in range(5)]
        source, _, page = make_source(versions, page_size=2)
        selection = ScrapeOrchestrator(source).list_versions(page)
        self.assertEqual([v.id for v in selection.versions], ["v0", "v1", "v2", "v3", "v4"])
        self.assertEqual(
            source.listing_urls,
            [None, "pages/p1/versions?page=1", "pages/p1/versions?page=2"],
        )

    def test_delay_between_result_pages(self):
        versions = [make_version(f"v{i}", utc(2020, 1, i + 1)) for i in range(5)]
        source, _, page = make_source(versions, page_size=2)
        sleep = MagicMock()
        ScrapeOrchestrator(source, page_delay=0.5, sleep=sleep).list_versions(page)
        # Three result pages, two gaps
        self.assertEqual(sleep.call_count, 2)
        sleep.assert_called_with(0.5)

    def test_listing_requests_go_through_the_governor(self):
        source, _, page = make_source([make_version("v1", utc(2020, 1, 1))])
        governor = MagicMock()
        governor.call.side_effect = lambda func, *args, **kwargs: func(*args, **kwargs)
        ScrapeOrchestrator(source, governor=governor).list_versions(page)
        self.assertEqual(governor.call.call_count, 1)


class TestFilters(unittest.TestCase):
    def test_undated_versions_are_excluded_with_one_warning_each(self):
        versions = [
            make_version("v1", utc(2020, 1, 1)),
            make_version("v2", None),
            make_version("v3", None),
        ]
        source, _, page = make_source(versions, page_size=10)
        with self.assertLogs("tracker", level="WARNING") as logs:
            selection = ScrapeOrchestrator(source).list_versions(page)
        self.assertEqual([v.id for v in selection.versions], ["v1"])
        self.assertEqual(selection.undated, 2)
        self.assertEqual(len(logs.records), 2)
        self.assertIn("v2", logs.records[0].getMessage())
        self.assertIn("v3", logs.records[1].getMessage())

    def test_version_date_range_boundaries(self):
        versions = [
            make_version("at-after", utc(2020, 1, 1)),
            make_version("inside", utc(2020, 1, 5)),
            make_version("at-before", utc(2020, 1, 10)),
        ]
        source, _, page = make_source(versions, page_size=10)
        orchestrator = ScrapeOrchestrator(source, date_range=DateRange(utc(2020, 1, 1), utc(2020, 1, 10)))
        selection = orchestrator.list_versions(page)
        self.assertEqual([v.id for v in selection.versions], ["at-after", "inside"])

    def test_versions_are_ordered_oldest_first(self):
        versions = [make_version("new", utc(2020, 1, 9)), make_version("old", utc(2020, 1, 1))]
        source, _, page = make_source(versions, page_size=10)
        selection = ScrapeOrchestrator(source).list_versions(page)
        self.assertEqual([v.id for v in selection.versions], ["old", "new"])

    def test_pages_with_zero_versions_are_skipped_but_unknown_counts_kept(self):
        site = Site(id="s1", name="Site", url="https://example.gov")
        pages = [
            Page(id="empty", site_id="s1", url="a", total_versions=0),
            Page(id="unknown", site_id="s1", url="b", total_versions=None),
            Page(id="some", site_id="s1", url="c", total_versions=3),
        ]
        source = FakeSource(sites=[site], pages={"s1": pages}, page_size=10)
        listed = ScrapeOrchestrator(source).list_pages(site)
        self.assertEqual([p.id for p in listed], ["unknown", "some"])

    def test_sites_and_pages_filtered_by_last_change(self):
        sites = [
            Site(id="old", name="Old", url="a", last_change=utc(2019, 6, 1)),
            Site(id="recent", name="Recent", url="b", last_change=utc(2020, 1, 3)),
            Site(id="undated", name="Undated", url="c"),
        ]
        source = FakeSource(sites=sites, page_size=10)
        listed = ScrapeOrchestrator(source, date_range=DateRange(after=utc(2020, 1, 1))).list_sites()
        self.assertEqual([s.id for s in listed], ["recent", "undated"])


class TestErrorSplit(unittest.TestCase):
    def test_latest_error_goes_to_error_versions_and_newest_safe_is_kept(self):
        """Scenario: v1 safe, v2 newer and errored; skip errors + latest only."""
        versions = [
            make_version("v1", utc(2020, 1, 1)),
            make_version("v2", utc(2020, 1, 5), error_code=500),
        ]
        source, _, page = make_source(versions, page_size=10)
        orchestrator = ScrapeOrchestrator(source, skip_error_versions=True, latest_version_only=True)
        selection = orchestrator.list_versions(page)
        self.assertEqual([v.id for v in selection.versions], ["v1"])
        self.assertEqual([v.id for v in selection.error_versions], ["v2"])

    def test_older_error_is_not_reported_when_latest_is_safe(self):
        versions = [
            make_version("v1", utc(2020, 1, 1), error_code=404),
            make_version("v2", utc(2020, 1, 5)),
        ]
        source, _, page = make_source(versions, page_size=10)
        orchestrator = ScrapeOrchestrator(source, skip_error_versions=True, latest_version_only=True)
        selection = orchestrator.list_versions(page)
        self.assertEqual([v.id for v in selection.versions], ["v2"])
        self.assertEqual(selection.error_versions, [])

    def test_all_errors_kept_without_latest_only(self):
        versions = [
            make_version("v1", utc(2020, 1, 1), error_code=500),
            make_version("v2", utc(2020, 1, 2)),
            make_version("v3", utc(2020, 1, 3), error_code=503),
        ]
        source, _, page = make_source(versions, page_size=10)
        selection = ScrapeOrchestrator(source, skip_error_versions=True).list_versions(page)
        self.assertEqual([v.id for v in selection.versions], ["v2"])
        self.assertEqual([v.id for v in selection.error_versions], ["v1", "v3"])

    def test_errors_stay_in_main_set_when_not_skipping(self):
        versions = [
            make_version("v1", utc(2020, 1, 1)),
            make_version("v2", utc(2020, 1, 5), error_code=500),
        ]
        source, _, page = make_source(versions, page_size=10)
        selection = ScrapeOrchestrator(source, latest_version_only=True).list_versions(page)
        self.assertEqual([v.id for v in selection.versions], ["v2"])
        self.assertEqual(selection.error_versions, [])


class TestScrape(unittest.TestCase):
    def test_scrape_walks_the_hierarchy_and_drops_empty_pages(self):
        site = Site(id="s1", name="Site", url="https://example.gov")
        pages = [
            Page(id="p1", site_id="s1", url="a"),
            Page(id="p2", site_id="s1", url="b"),
        ]
        versions = {
            "p1": [make_version("v1", utc(2020, 1, 2), page_id="p1")],
            "p2": [make_version("v2", utc(2019, 1, 2), page_id="p2")],
        }
        source = FakeSource(sites=[site], pages={"s1": pages}, versions=versions, page_size=10)
        sites = ScrapeOrchestrator(source, date_range=DateRange(after=utc(2020, 1, 1))).scrape()
        self.assertEqual([s.id for s in sites], ["s1"])
        self.assertEqual([p.id for p in sites[0].pages], ["p1"])
        self.assertEqual([v.id for v in iter_versions(sites)], ["v1"])

    def test_page_deleted_after_discovery_is_skipped(self):
        site = Site(id="s1", name="Site", url="https://example.gov")
        pages = [Page(id="gone", site_id="s1", url="a"), Page(id="ok", site_id="s1", url="b")]
        versions = {"ok": [make_version("v1", utc(2020, 1, 2), page_id="ok")]}

        class VanishingSource(FakeSource):
            def versions_listing(self, page, url=None):
                if page.id == "gone":
                    raise ResourceGoneError("pages/gone/versions", 404)
                return super().versions_listing(page, url)

        source = VanishingSource(sites=[site], pages={"s1": pages}, versions=versions, page_size=10)
        sites = ScrapeOrchestrator(source).scrape()
        self.assertEqual([p.id for p in sites[0].pages], ["ok"])

    def test_site_deleted_after_discovery_is_skipped(self):
        sites = [Site(id="gone", name="Gone", url="a"), Site(id="s1", name="Site", url="b")]
        pages = {"s1": [Page(id="p1", site_id="s1", url="c")]}
        versions = {"p1": [make_version("v1", utc(2020, 1, 2))]}

        class VanishingSource(FakeSource):
            def pages_listing(self, site, url=None):
                if site.id == "gone":
                    raise ResourceGoneError("sites/gone/pages", 410)
                return super().pages_listing(site, url)

        source = VanishingSource(sites=sites, pages=pages, versions=versions, page_size=10)
        self.assertEqual([s.id for s in ScrapeOrchestrator(source).scrape()], ["s1"])


if __name__ == "__main__":
    unittest.main()
