"""
PlanPace - Upstream Sources Module.

Loads plan versions, line-item payment flags and actual delivery from
external collaborators. The engine itself never does I/O; this module
issues the upstream queries concurrently with a bounded overall timeout
and tolerates partial failure: a source that raises or times out is
logged and replaced by an empty result.

Classes:
    PlanDataStore: Protocol for the campaign plan data store.
    ActualsSource: Protocol for the delivery analytics source.
    RequestCache: Request-scoped memoisation of upstream results.
    AccrualReport: Accrual rows plus load metadata.
    AccrualDataLoader: Orchestrates an accrual load end to end.

Functions:
    fetch_concurrently: Runs named fetchers in parallel.
    load_actuals: Fetches actuals for several line items in parallel.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Dict, Hashable, List, Optional, Protocol, Sequence

from planpace.accrual import AccrualAggregator, merge_payment_responsibility
from planpace.exceptions import UpstreamUnavailableError
from planpace.schema import AccrualRow, ActualDay, CampaignMaster, PlanVersion
from planpace.versions import VersionSelector


logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 20
DEFAULT_MAX_WORKERS = 8

Fetcher = Callable[[], Sequence[Any]]


class PlanDataStore(Protocol):
    """Campaign plan data store (masters, versions, line-item tables)."""

    def fetch_masters(self) -> List[CampaignMaster]:
        """Returns every campaign master record."""

    def fetch_versions(self) -> List[PlanVersion]:
        """Returns every campaign version."""

    def line_item_tables(self) -> Sequence[str]:
        """Names the per-channel line-item tables."""

    def fetch_line_items(self, table: str, version: PlanVersion) -> List[dict]:
        """Returns the raw rows of one line-item table for one version."""


class ActualsSource(Protocol):
    """Delivery analytics source."""

    def fetch_actuals(
        self,
        campaign_id: str,
        line_item_id: str,
        start: date,
        end: date
    ) -> List[ActualDay]:
        """Returns daily actuals for one line item between two dates."""


class RequestCache:
    """
    Memoises upstream results for the lifetime of one request.

    A new cache is created per request and passed in explicitly; nothing
    is shared between requests. Safe to use from the fan-out threads.
    """

    def __init__(self):
        self._values: Dict[Hashable, List[Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: Hashable) -> Optional[List[Any]]:
        """Returns a cached result, or None when absent."""
        with self._lock:
            return self._values.get(key)

    def put(self, key: Hashable, value: List[Any]) -> None:
        """Stores a result."""
        with self._lock:
            self._values[key] = value

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._values

    def __len__(self) -> int:
        with self._lock:
            return len(self._values)


def fetch_concurrently(
    fetchers: Dict[Hashable, Fetcher],
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    require_any: bool = False,
    cache: Optional[RequestCache] = None,
    max_workers: int = DEFAULT_MAX_WORKERS,
    failed: Optional[List[Hashable]] = None
) -> Dict[Hashable, List[Any]]:
    """
    Runs named fetchers in parallel with one overall timeout.

    A fetcher that raises or is still running at the deadline yields an
    empty list and is logged at WARNING. Results already in ``cache`` are
    not fetched again; successful results are added to it.

    Args:
        fetchers: Zero-argument callables keyed by source name.
        timeout: Overall deadline in seconds for the whole fan-out.
        require_any: Raise when every source failed.
        cache: Request-scoped cache keyed by source name.
        max_workers: Upper bound on worker threads.
        failed: When given, receives the names of failed sources.

    Returns:
        Result per source name, in the order of ``fetchers``.

    Raises:
        UpstreamUnavailableError: If ``require_any`` is set and no source
            succeeded.
    """
    results: Dict[Hashable, List[Any]] = {}
    failures: List[Hashable] = []
    pending: Dict[Hashable, Fetcher] = {}

    for name, fetcher in fetchers.items():
        cached = cache.get(name) if cache is not None else None
        if cached is not None:
            results[name] = cached
        else:
            pending[name] = fetcher

    if pending:
        executor = ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(pending))))
        try:
            futures = {executor.submit(fetcher): name for name, fetcher in pending.items()}
            done, not_done = wait(futures, timeout=timeout)

            for future in not_done:
                name = futures[future]
                future.cancel()
                logger.warning("Upstream source %s timed out after %ss", name, timeout)
                results[name] = []
                failures.append(name)

            for future in done:
                name = futures[future]
                try:
                    value = list(future.result() or [])
                except Exception as e:
                    logger.warning("Upstream source %s failed: %s", name, e)
                    results[name] = []
                    failures.append(name)
                    continue
                results[name] = value
                if cache is not None:
                    cache.put(name, value)
        finally:
            # Timed-out fetchers keep their thread; do not wait for them
            executor.shutdown(wait=False, cancel_futures=True)

    if failed is not None:
        failed.extend(failures)

    if require_any and fetchers and len(failures) == len(fetchers):
        raise UpstreamUnavailableError([str(name) for name in failures])

    return {name: results[name] for name in fetchers}


def load_actuals(
    source: ActualsSource,
    campaign_id: str,
    line_item_ids: Sequence[str],
    start: date,
    end: date,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    cache: Optional[RequestCache] = None
) -> List[ActualDay]:
    """
    Fetches actuals for several line items in parallel.

    Line items whose query fails contribute nothing.

    Returns:
        All actual days, sorted by date.
    """
    fetchers = {
        ("actuals", campaign_id, line_item_id, start, end):
            (lambda line_item_id=line_item_id: source.fetch_actuals(campaign_id, line_item_id, start, end))
        for line_item_id in line_item_ids
    }
    results = fetch_concurrently(fetchers, timeout=timeout, cache=cache)
    days = [day for value in results.values() for day in value]
    return sorted(days, key=lambda day: day.date)


@dataclass
class AccrualReport:
    """
    Accrual rows plus metadata about the upstream load.

    Attributes:
        months: Normalised months the rows cover.
        rows: Accrual rows.
        masters_count: Master records loaded.
        versions_count: Versions loaded.
        chosen_versions_count: Versions chosen as authoritative.
        payment_flags_count: Line items with a payment flag.
        failed_sources: Upstream sources that failed or timed out.
    """

    months: List[str] = field(default_factory=list)
    rows: List[AccrualRow] = field(default_factory=list)
    masters_count: int = 0
    versions_count: int = 0
    chosen_versions_count: int = 0
    payment_flags_count: int = 0
    failed_sources: List[str] = field(default_factory=list)


class AccrualDataLoader:
    """
    Loads everything an accrual report needs and computes the rows.

    Steps:
        1. Fetch masters and versions concurrently
        2. Pick the authoritative version per campaign
        3. Fetch every line-item table for every chosen version concurrently
        4. Merge the client-pays-for-media flags
        5. Compute the accrual rows

    Both fan-outs share one deadline of ``timeout`` seconds.

    Example:
        >>> loader = AccrualDataLoader(store)
        >>> report = loader.load(["2025-06", "2025-07"])
    """

    def __init__(
        self,
        store: PlanDataStore,
        selector: Optional[VersionSelector] = None,
        aggregator: Optional[AccrualAggregator] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        require_any: bool = False
    ):
        """
        Initialises the AccrualDataLoader.

        Args:
            store: Plan data store.
            selector: VersionSelector for picking versions.
            aggregator: AccrualAggregator for computing rows.
            timeout: Overall deadline in seconds for one load.
            require_any: Fail when masters and versions both fail to load.
        """
        self._store = store
        self._selector = selector or VersionSelector()
        self._aggregator = aggregator or AccrualAggregator()
        self._timeout = timeout
        self._require_any = require_any

    def load(self, months: Sequence[Any], cache: Optional[RequestCache] = None) -> AccrualReport:
        """
        Builds the accrual report for the requested months.

        Args:
            months: Requested months in any readable format.
            cache: Request-scoped cache; a fresh one is used when omitted.

        Returns:
            AccrualReport, possibly with zero rows when sources failed.

        Raises:
            UpstreamUnavailableError: If ``require_any`` was set and both
                masters and versions failed.
        """
        cache = cache if cache is not None else RequestCache()
        deadline = time.monotonic() + self._timeout
        failed: List[Hashable] = []
        report = AccrualReport(months=self._aggregator.normalize_months(months))
        if not report.months:
            return report

        base = fetch_concurrently(
            {"masters": self._store.fetch_masters, "versions": self._store.fetch_versions},
            timeout=self._remaining(deadline),
            require_any=self._require_any,
            cache=cache,
            failed=failed,
        )
        masters = base["masters"]
        versions = base["versions"]
        chosen = self._selector.pick_latest_versions(versions, masters)

        tables = self._line_item_tables(failed) if chosen else []
        line_item_fetchers: Dict[Hashable, Fetcher] = {}
        for version in chosen:
            for table in tables:
                key = ("line_items", table, version.campaign_id, version.id, version.version_number)
                line_item_fetchers[key] = (
                    lambda table=table, version=version: self._store.fetch_line_items(table, version)
                )

        line_item_results = fetch_concurrently(
            line_item_fetchers, timeout=self._remaining(deadline), cache=cache, failed=failed
        )
        flags = merge_payment_responsibility(
            row for rows in line_item_results.values() for row in rows
        )

        report.rows = self._aggregator.compute_accrual_rows(report.months, chosen, flags)
        report.masters_count = len(masters)
        report.versions_count = len(versions)
        report.chosen_versions_count = len(chosen)
        report.payment_flags_count = len(flags)
        report.failed_sources = [self._source_label(name) for name in failed]

        logger.debug(
            "Accrual load: %d versions, %d chosen, %d rows",
            report.versions_count, report.chosen_versions_count, len(report.rows)
        )
        return report

    def _line_item_tables(self, failed: List[Hashable]) -> Sequence[str]:
        """Names the line-item tables; an unavailable catalogue yields none."""
        try:
            return list(self._store.line_item_tables())
        except Exception as e:
            logger.warning("Upstream source line_item_tables failed: %s", e)
            failed.append("line_item_tables")
            return []

    def _remaining(self, deadline: float) -> float:
        return max(0.0, deadline - time.monotonic())

    def _source_label(self, name: Hashable) -> str:
        if isinstance(name, tuple):
            return ":".join(str(part) for part in name)
        return str(name)
