"""
PlanPace - Upstream Sources Tests.

Unit tests for the concurrent fan-out loader. Tests ensure failed and
timed-out sources degrade to empty results, the require-any guard, and
request-scoped caching.
"""

import logging
import threading
import time
from datetime import date
from decimal import Decimal
from typing import List

import pytest

from planpace.exceptions import UpstreamUnavailableError
from planpace.schema import ActualDay, Burst, CampaignMaster, LineItem, PlanVersion
from planpace.sources import (
    AccrualDataLoader,
    RequestCache,
    fetch_concurrently,
    load_actuals,
)


def failing():
    raise RuntimeError("connection reset")


class CountingFetcher:
    """Returns a fixed result and counts calls."""

    def __init__(self, value):
        self.value = value
        self.calls = 0

    def __call__(self):
        self.calls += 1
        return self.value


class FakeStore:
    """In-memory plan data store."""

    def __init__(self, masters, versions, line_items, broken_tables=()):
        self.masters = masters
        self.versions = versions
        self.line_items = line_items
        self.broken_tables = set(broken_tables)

    def fetch_masters(self) -> List[CampaignMaster]:
        return self.masters

    def fetch_versions(self) -> List[PlanVersion]:
        return self.versions

    def line_item_tables(self):
        return ["search_line_items", "social_line_items"]

    def fetch_line_items(self, table, version):
        if table in self.broken_tables:
            raise RuntimeError(f"{table} unavailable")
        return self.line_items.get((table, version.id), [])


class FakeActuals:
    """Actuals source keyed by line item id."""

    def __init__(self, days_by_line_item):
        self.days_by_line_item = days_by_line_item

    def fetch_actuals(self, campaign_id, line_item_id, start, end):
        if line_item_id == "broken":
            raise RuntimeError("query failed")
        return self.days_by_line_item.get(line_item_id, [])


class TestFetchConcurrently:
    """Unit tests for fetch_concurrently."""

    def test_results_keyed_in_input_order(self) -> None:
        """Verify results come back per source name in input order."""
        results = fetch_concurrently({"b": lambda: [2], "a": lambda: [1]})

        assert list(results) == ["b", "a"]
        assert results == {"b": [2], "a": [1]}

    def test_failed_source_becomes_empty(self, caplog) -> None:
        """Verify a raising source yields [] and a WARNING log."""
        failed = []
        with caplog.at_level(logging.WARNING, logger="planpace.sources"):
            results = fetch_concurrently({"ok": lambda: [1], "bad": failing}, failed=failed)

        assert results == {"ok": [1], "bad": []}
        assert failed == ["bad"]
        assert "Upstream source bad failed" in caplog.text

    def test_timed_out_source_becomes_empty(self, caplog) -> None:
        """Verify a source still running at the deadline yields []."""
        release = threading.Event()

        def slow():
            release.wait(5)
            return ["late"]

        try:
            with caplog.at_level(logging.WARNING, logger="planpace.sources"):
                results = fetch_concurrently({"fast": lambda: ["x"], "slow": slow}, timeout=0.2)
        finally:
            release.set()

        assert results == {"fast": ["x"], "slow": []}
        assert "timed out" in caplog.text

    def test_require_any_raises_when_all_fail(self) -> None:
        """Verify UpstreamUnavailableError when every source failed."""
        with pytest.raises(UpstreamUnavailableError) as exc_info:
            fetch_concurrently({"a": failing, "b": failing}, require_any=True)

        assert sorted(exc_info.value.failed_sources) == ["a", "b"]

    def test_require_any_tolerates_partial_failure(self) -> None:
        """Verify one success is enough."""
        results = fetch_concurrently({"a": failing, "b": lambda: [1]}, require_any=True)
        assert results["b"] == [1]

    def test_empty_fetchers(self) -> None:
        """Verify no fetchers gives no results and no error."""
        assert fetch_concurrently({}, require_any=True) == {}

    def test_cache_prevents_refetch(self) -> None:
        """Verify a cached source is not fetched again within the request."""
        cache = RequestCache()
        fetcher = CountingFetcher([1, 2])

        fetch_concurrently({"masters": fetcher}, cache=cache)
        results = fetch_concurrently({"masters": fetcher}, cache=cache)

        assert fetcher.calls == 1
        assert results["masters"] == [1, 2]
        assert "masters" in cache
        assert len(cache) == 1

    def test_failures_are_not_cached(self) -> None:
        """Verify a failed source is retried on the next call."""
        cache = RequestCache()
        fetch_concurrently({"bad": failing}, cache=cache)

        assert "bad" not in cache
        assert cache.get("bad") is None


class TestLoadActuals:
    """Unit tests for load_actuals."""

    def test_merges_line_items_and_skips_failures(self) -> None:
        """Verify actuals from every line item are merged by date."""
        source = FakeActuals({
            "li-1": [ActualDay(date(2025, 6, 2), spend=Decimal("20"))],
            "li-2": [ActualDay(date(2025, 6, 1), spend=Decimal("10"))],
        })

        days = load_actuals(
            source, "MBA1", ["li-1", "li-2", "broken"], date(2025, 6, 1), date(2025, 6, 30)
        )

        assert [day.date for day in days] == [date(2025, 6, 1), date(2025, 6, 2)]


class TestAccrualDataLoader:
    """Unit tests for the accrual orchestration."""

    def make_store(self, **kwargs) -> FakeStore:
        burst = Burst(
            start_date=date(2025, 6, 1),
            end_date=date(2025, 6, 14),
            budget_amount=Decimal("20000"),
            fee_percentage=Decimal("20"),
        )
        versions = [
            PlanVersion(id=1, campaign_id="MBA1", master_id=7, version_number=1,
                        client_name="Acme", campaign_name="Winter",
                        line_items=[LineItem("LI-1", bursts=[burst])]),
            PlanVersion(id=2, campaign_id="MBA1", master_id=7, version_number=2,
                        client_name="Acme", campaign_name="Winter",
                        line_items=[LineItem("LI-1", bursts=[burst])]),
        ]
        masters = [CampaignMaster(id=7, campaign_id="MBA1", version_number=2)]
        line_items = {
            ("search_line_items", 2): [{"line_item_id": "LI-1", "client_pays_for_media": True}],
        }
        return FakeStore(masters, versions, line_items, **kwargs)

    def test_load_builds_rows_for_latest_version(self) -> None:
        """Verify the chosen version and payment flags drive the rows."""
        report = AccrualDataLoader(self.make_store()).load(["2025-06", "July 2025"])

        assert report.months == ["2025-06", "2025-07"]
        assert report.versions_count == 2
        assert report.chosen_versions_count == 1
        assert report.payment_flags_count == 1
        assert report.failed_sources == []
        june = report.rows[0]
        assert june.version_number == 2
        assert june.media_amount == Decimal("0.00")
        assert june.fee_amount == Decimal("5000.00")

    def test_failed_table_is_reported_not_raised(self) -> None:
        """Verify a broken line-item table degrades to no flags."""
        store = self.make_store(broken_tables=["search_line_items"])

        report = AccrualDataLoader(store).load(["2025-06"])

        assert report.payment_flags_count == 0
        assert report.rows[0].media_amount == Decimal("20000.00")
        assert report.failed_sources == ["line_items:search_line_items:MBA1:2:2"]

    def test_no_readable_months_skips_upstream(self) -> None:
        """Verify nothing is fetched when no month is readable."""
        store = self.make_store()
        store.fetch_versions = failing

        report = AccrualDataLoader(store).load(["soon"])

        assert report.rows == []

    def test_require_any_raises_when_store_down(self) -> None:
        """Verify a fully failed store raises when required."""
        store = self.make_store()
        store.fetch_masters = failing
        store.fetch_versions = failing

        with pytest.raises(UpstreamUnavailableError):
            AccrualDataLoader(store, require_any=True).load(["2025-06"])

    def test_store_down_gives_empty_report(self) -> None:
        """Verify a fully failed store yields zero rows by default."""
        store = self.make_store()
        store.fetch_masters = failing
        store.fetch_versions = failing

        report = AccrualDataLoader(store).load(["2025-06"])

        assert report.rows == []
        assert sorted(report.failed_sources) == ["masters", "versions"]

    def test_table_catalogue_failure_degrades(self, caplog) -> None:
        """Verify an unavailable table catalogue is reported and rows still computed."""
        store = self.make_store()

        def catalogue_down():
            raise ConnectionError("table catalogue unavailable")

        store.line_item_tables = catalogue_down

        with caplog.at_level(logging.WARNING, logger="planpace.sources"):
            report = AccrualDataLoader(store).load(["2025-06"])

        assert len(report.rows) == 1
        assert report.rows[0].media_amount == Decimal("20000.00")
        assert report.payment_flags_count == 0
        assert report.failed_sources == ["line_item_tables"]
        assert "line_item_tables failed" in caplog.text

    def test_table_catalogue_read_once(self) -> None:
        """Verify the table catalogue is read once for all chosen versions."""
        store = self.make_store()
        store.versions.append(PlanVersion(id=3, campaign_id="MBA2", version_number=1,
                                          client_name="Beta", campaign_name="Spring"))
        catalogue = CountingFetcher(["search_line_items"])
        store.line_item_tables = catalogue

        report = AccrualDataLoader(store).load(["2025-06"])

        assert report.chosen_versions_count == 2
        assert catalogue.calls == 1

    def test_timeout_covers_whole_load(self) -> None:
        """Verify the line-item stage only gets the time left after the first stage."""
        store = self.make_store()
        release = threading.Event()
        original_versions = store.fetch_versions

        def slow_versions():
            time.sleep(0.4)
            return original_versions()

        def stuck_line_items(table, version):
            release.wait(5)
            return []

        store.fetch_versions = slow_versions
        store.fetch_line_items = stuck_line_items

        started = time.monotonic()
        try:
            report = AccrualDataLoader(store, timeout=0.6).load(["2025-06"])
        finally:
            release.set()
        elapsed = time.monotonic() - started

        assert elapsed < 0.9
        assert report.chosen_versions_count == 1
        assert "line_items:search_line_items:MBA1:2:2" in report.failed_sources
