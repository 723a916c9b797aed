"""Discovery cycle runner.

A cycle:

1. Re-hands-off items left CLASSIFIED by an interrupted cycle.
2. Selects due endpoints, CRITICAL first, setting aside open circuits.
3. Processes each endpoint in a worker thread: block-list check, rate
   limited fetch, then either the document itself (DOCUMENT endpoints) or
   link discovery (pagination pages and the child sitemaps of a sitemap
   index included) plus fetching of the endpoint's PENDING items (listing
   endpoints). Every fetch is audited. Every fetched body is hashed,
   stored, classified, persisted and handed off.
4. Resets endpoints whose circuit expired long ago without a retry.

A failing endpoint or item never stops the cycle. A :class:`StoreError`
cancels the remaining work and propagates.
"""

from __future__ import annotations

import itertools
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field, fields
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable, List

from regwatch import paths
from regwatch.parsing.classifier import ContentClassifier
from regwatch.parsing.fetcher import Fetcher, FetchResponse
from regwatch.parsing.link_extractor import ExtractedLink, extract_links, filter_links_by_pattern
from regwatch.parsing.sitemap import parse_sitemap
from regwatch.parsing.url_scope import (
    canonicalize_url,
    extract_domain,
    find_blocked_pattern,
    pagination_url,
)

from .audit import AuditLog, JsonlAuditLog, LoggingAuditLog, SafeAuditLog
from .config import DiscoveryConfig
from .content_store import ContentStore, FileContentStore
from .dedup import Deduplicator
from .errors import (
    BlockedDomainError,
    CircuitOpenError,
    CycleCancelled,
    DuplicateDetected,
    DuplicateItemError,
    EmptyContentError,
    FetchError,
    InvalidTransitionError,
    ParseError,
    StoreError,
)
from .handoff import QueueRouter
from .lifecycle import (
    FetchOutcome,
    apply_fetch_outcome,
    apply_revision,
    fail_classification,
    mark_classified,
    mark_handed_off,
)
from .models import DiscoveredItem, Endpoint, ItemStatus, ListingStrategy, utcnow
from .rate_limiter import DomainRateLimiter, ReleaseOutcome
from .scheduler import ScheduledEndpoint, select_due_endpoints
from .store import DiscoveryStore, JsonDiscoveryStore

logger = logging.getLogger(__name__)


@dataclass
class RunSummary:
    """Counters for one discovery cycle.

    Attributes:
        endpoints_selected: Due endpoints handed to workers.
        endpoints_failed: Endpoint fetches that failed.
        fetched: Successful fetches (endpoint pages and items).
        discovered: New items registered.
        duplicates: Known URLs and unchanged content skipped.
        classified: Items classified.
        handed_off: Items handed to a downstream queue.
        failed: Items that reached FAILED this cycle.
        retried: Items returned to PENDING after a retryable failure.
        circuit_skipped: Endpoints or items skipped because of an open circuit.
        blocked: Endpoints or links skipped because of the block-list.
        redelivered: CLASSIFIED items re-handed-off at cycle start.
        stale_circuits_reset: Endpoints whose stale circuit was cleared.
        cancelled: The cycle was cancelled before it finished.
    """

    started_at: datetime = field(default_factory=utcnow)
    completed_at: datetime | None = None
    dry_run: bool = False
    cancelled: bool = False
    endpoints_selected: int = 0
    endpoints_failed: int = 0
    fetched: int = 0
    discovered: int = 0
    duplicates: int = 0
    classified: int = 0
    handed_off: int = 0
    failed: int = 0
    retried: int = 0
    circuit_skipped: int = 0
    blocked: int = 0
    redelivered: int = 0
    stale_circuits_reset: int = 0
    planned: List[str] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def increment(self, counter: str, amount: int = 1) -> None:
        with self._lock:
            setattr(self, counter, getattr(self, counter) + amount)

    @property
    def duration_seconds(self) -> float:
        if self.completed_at is None:
            return 0.0
        return (self.completed_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for logging/reporting."""
        data: dict[str, Any] = {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if not f.name.startswith("_")
        }
        data["started_at"] = self.started_at.isoformat()
        data["completed_at"] = self.completed_at.isoformat() if self.completed_at else None
        data["duration_seconds"] = self.duration_seconds
        return data

    def summary(self) -> str:
        """Generate a human-readable summary."""
        header = f"Discovery cycle completed in {self.duration_seconds:.1f}s"
        if self.dry_run:
            header += " (dry run)"
        if self.cancelled:
            header += " (cancelled)"
        lines = [
            header,
            f"  Endpoints: {self.endpoints_selected} selected, {self.endpoints_failed} failed",
            f"    - Circuit skipped: {self.circuit_skipped}",
            f"    - Blocked: {self.blocked}",
            f"  Items: {self.discovered} discovered, {self.fetched} fetched",
            f"    - Duplicates: {self.duplicates}",
            f"    - Classified: {self.classified}",
            f"    - Handed off: {self.handed_off} (redelivered {self.redelivered})",
            f"    - Retried: {self.retried}",
            f"    - Failed: {self.failed}",
        ]
        if self.stale_circuits_reset:
            lines.append(f"  Stale circuits reset: {self.stale_circuits_reset}")
        if self.planned:
            lines.append("  Planned:")
            lines.extend(f"    - {url}" for url in self.planned)
        return "\n".join(lines)


class Sentinel:
    """Runs discovery cycles over the endpoints in a store.

    All collaborators are injected; :meth:`from_data_root` wires the
    file-backed defaults.
    """

    def __init__(
        self,
        store: DiscoveryStore,
        fetcher: Fetcher,
        classifier: ContentClassifier,
        router: QueueRouter,
        content_store: ContentStore,
        audit: AuditLog | None = None,
        config: DiscoveryConfig | None = None,
        limiter: DomainRateLimiter | None = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config or DiscoveryConfig()
        self.store = store
        self.fetcher = fetcher
        self.classifier = classifier
        self.router = router
        self.content_store = content_store
        self.audit = audit if isinstance(audit, SafeAuditLog) else SafeAuditLog(audit or LoggingAuditLog())
        self.limiter = limiter or DomainRateLimiter(
            self.config.rate_limit, store=store, clock=clock, sleep=sleep
        )
        self._clock = clock
        self._cancel = threading.Event()

    @classmethod
    def from_data_root(
        cls,
        data_root: Path | None = None,
        config: DiscoveryConfig | None = None,
    ) -> "Sentinel":
        """Build a sentinel persisting everything under ``data_root``."""
        config = config or DiscoveryConfig()
        root = Path(data_root or config.data_root or paths.get_data_root())
        return cls(
            store=JsonDiscoveryStore(paths.get_store_file(root)),
            fetcher=Fetcher(
                user_agent=config.user_agent,
                timeout=config.rate_limit.request_timeout_seconds,
            ),
            classifier=ContentClassifier(config.classifier),
            router=QueueRouter.jsonl(paths.get_queue_root(root)),
            content_store=FileContentStore(paths.get_content_root(root)),
            audit=JsonlAuditLog(paths.get_audit_file(root)),
            config=config,
        )

    @property
    def max_attempts(self) -> int:
        return self.config.politeness.max_fetch_attempts

    def cancel(self) -> None:
        """Stop the running cycle.

        Endpoints not yet started are skipped; a fetch in flight completes
        but its result is discarded.
        """
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    def run_discovery_cycle(self) -> RunSummary:
        """Run one discovery cycle over all due endpoints.

        Raises:
            StoreError: the store failed; remaining work was cancelled
        """
        self._cancel.clear()
        summary = RunSummary(started_at=self._clock(), dry_run=self.config.dry_run)
        logger.info("Starting discovery cycle (dry_run=%s)", self.config.dry_run)

        if not self.config.dry_run:
            self._redeliver_classified(summary)

        schedule = select_due_endpoints(self.store.active_endpoints(), now=self._clock())
        summary.endpoints_selected = len(schedule)
        for endpoint in schedule.circuit_skipped:
            summary.increment("circuit_skipped")
            self.audit.emit(
                endpoint.id,
                endpoint.url,
                "circuit_open",
                open_until=endpoint.circuit_open_until.isoformat() if endpoint.circuit_open_until else None,
            )
        logger.info(
            "Selected %d due endpoints (%d not due, %d circuit open)",
            len(schedule), schedule.not_due, len(schedule.circuit_skipped),
        )

        if self.config.dry_run:
            summary.planned = [scheduled.endpoint.url for scheduled in schedule]
            summary.completed_at = self._clock()
            return summary

        self._run_endpoints(list(schedule), summary)

        reset = self.limiter.sweep_stale_circuits(
            self.config.politeness.stale_circuit_window, now=self._clock()
        )
        for endpoint in reset:
            self.audit.emit(endpoint.id, endpoint.url, "stale_circuit_reset")
        summary.stale_circuits_reset = len(reset)

        summary.cancelled = self.cancelled
        summary.completed_at = self._clock()
        logger.info(
            "Discovery cycle finished: %d fetched, %d discovered, %d handed off, %d failed",
            summary.fetched, summary.discovered, summary.handed_off, summary.failed,
        )
        return summary

    def _run_endpoints(self, scheduled: List[ScheduledEndpoint], summary: RunSummary) -> None:
        dedup = Deduplicator(self.store)
        workers = min(self.config.politeness.max_workers, max(len(scheduled), 1))

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="sentinel") as executor:
            # Submitted in priority order; the pool starts them in that order
            futures = {
                executor.submit(self._process_endpoint, entry, dedup, summary): entry
                for entry in scheduled
            }
            for future in as_completed(futures):
                entry = futures[future]
                try:
                    future.result()
                except Exception:
                    logger.error("Fatal error while processing %s; cancelling cycle", entry.endpoint.url)
                    self._cancel.set()
                    raise

    def _redeliver_classified(self, summary: RunSummary) -> None:
        """Hand off items persisted as CLASSIFIED but never handed off."""
        for item in self.store.list_items(status=ItemStatus.CLASSIFIED):
            logger.info("Redelivering classified item %s (%s)", item.id, item.url)
            self._hand_off(item, summary)
            summary.increment("redelivered")

        # Items fetched but never classified go back to PENDING for a new attempt
        for item in self.store.list_items(status=ItemStatus.FETCHED):
            fail_classification(
                item, "interrupted before classification", retryable=True, max_attempts=self.max_attempts
            )
            self.store.save_item(item)
            self._count_failure_outcome(item, summary, "interrupted")

    # ------------------------------------------------------------------
    # Endpoint processing
    # ------------------------------------------------------------------

    def _process_endpoint(
        self,
        scheduled: ScheduledEndpoint,
        dedup: Deduplicator,
        summary: RunSummary,
    ) -> None:
        endpoint = scheduled.endpoint
        if self.cancelled:
            logger.debug("Cycle cancelled, skipping %s", endpoint.url)
            return

        pattern = find_blocked_pattern(endpoint.url, self.config.blocked_domains)
        if pattern is not None:
            logger.info("Skipping blocked endpoint %s (matches %r)", endpoint.url, pattern)
            summary.increment("blocked")
            self.audit.emit(endpoint.id, endpoint.url, "blocked", pattern=pattern)
            return

        try:
            response = self._guarded_fetch(scheduled.domain, endpoint, endpoint.url)
        except CircuitOpenError as exc:
            logger.info("Skipping %s: %s", endpoint.url, exc)
            summary.increment("circuit_skipped")
            self.audit.emit(endpoint.id, endpoint.url, "circuit_open", detail=str(exc))
            return
        except FetchError as exc:
            logger.warning("Failed to fetch endpoint %s: %s", endpoint.url, exc)
            summary.increment("endpoints_failed")
            self.audit.emit(
                endpoint.id,
                endpoint.url,
                "fetch_failed",
                error=str(exc),
                consecutive_errors=endpoint.consecutive_errors,
            )
            return
        except CycleCancelled:
            logger.info("Discarded in-flight fetch of %s after cancellation", endpoint.url)
            self.audit.emit(endpoint.id, endpoint.url, "abandoned")
            return

        summary.increment("fetched")
        endpoint.last_checked_at = self._clock()
        self.store.upsert_endpoint(endpoint)
        self.audit.emit(endpoint.id, endpoint.url, "fetched", status_code=response.status_code)

        try:
            if endpoint.listing_strategy is ListingStrategy.DOCUMENT:
                self._process_document(endpoint, response, dedup, summary)
            else:
                self._discover_links(scheduled, response, dedup, summary)
                self._fetch_pending_items(endpoint, dedup, summary)
        except (StoreError, InvalidTransitionError):
            raise
        except CycleCancelled:
            logger.info("Cycle cancelled while processing %s", endpoint.url)
        except Exception as exc:
            logger.error("Error processing endpoint %s: %s", endpoint.url, exc, exc_info=True)
            summary.increment("endpoints_failed")
            self.audit.emit(endpoint.id, endpoint.url, "endpoint_error", error=str(exc))

    def _guarded_fetch(self, domain: str, endpoint: Endpoint | None, url: str) -> FetchResponse:
        """Fetch ``url`` holding a rate-limiter permit for ``domain``.

        Raises:
            CircuitOpenError: the domain's circuit rejected the request
            FetchError: the fetch failed (recorded as a limiter failure)
            CycleCancelled: the cycle was cancelled while the fetch ran
        """
        permit = self.limiter.acquire(domain, endpoint)
        try:
            response = self.fetcher.fetch(url)
        except FetchError as exc:
            self.limiter.release(permit, ReleaseOutcome.FAILURE, str(exc))
            raise
        except BaseException:
            self.limiter.release(permit, ReleaseOutcome.ABANDONED)
            raise

        if self.cancelled:
            self.limiter.release(permit, ReleaseOutcome.ABANDONED)
            raise CycleCancelled(f"Cancelled while fetching {url}")

        self.limiter.release(permit, ReleaseOutcome.SUCCESS)
        return response

    def _fetch_listing_page(
        self,
        scheduled: ScheduledEndpoint,
        url: str,
        summary: RunSummary,
        **detail: Any,
    ) -> FetchResponse | None:
        """Fetch a further listing page or child sitemap of an endpoint.

        Returns None if the fetch failed.

        Raises:
            CircuitOpenError: the domain's circuit rejected the request
        """
        endpoint = scheduled.endpoint
        try:
            response = self._guarded_fetch(scheduled.domain, endpoint, url)
        except FetchError as exc:
            logger.warning("Failed to fetch listing page %s: %s", url, exc)
            self.audit.emit(endpoint.id, url, "fetch_failed", error=str(exc), **detail)
            return None
        summary.increment("fetched")
        self.audit.emit(endpoint.id, url, "fetched", status_code=response.status_code, **detail)
        return response

    def _listing_pages(
        self,
        scheduled: ScheduledEndpoint,
        first: FetchResponse,
        summary: RunSummary,
    ) -> Iterable[FetchResponse]:
        """Yield the first listing page, then any pagination pages."""
        endpoint = scheduled.endpoint
        yield first

        if not endpoint.pagination_pattern or endpoint.max_pages <= 1:
            return

        for page in range(2, endpoint.max_pages + 1):
            if self.cancelled:
                return
            url = pagination_url(endpoint.url, endpoint.pagination_pattern, page)
            try:
                response = self._fetch_listing_page(scheduled, url, summary, page=page)
            except CircuitOpenError as exc:
                logger.info("Stopping pagination of %s: %s", endpoint.url, exc)
                return
            if response is None:
                return
            yield response

    def _child_sitemaps(
        self,
        scheduled: ScheduledEndpoint,
        queue: List[str],
        summary: RunSummary,
    ) -> Iterable[FetchResponse]:
        """Yield the child sitemaps named by a sitemap index.

        ``queue`` is filled by the caller while it parses the pages yielded
        so far, so nested indexes are followed too.
        """
        endpoint = scheduled.endpoint
        limit = self.config.politeness.max_child_sitemaps
        visited = {canonicalize_url(endpoint.url)}
        fetched = 0

        while queue:
            url = queue.pop(0)
            if url in visited:
                continue
            visited.add(url)
            if self.cancelled:
                return
            if fetched >= limit:
                logger.warning(
                    "Not following %d more child sitemap(s) of %s", len(queue) + 1, endpoint.url
                )
                return
            if extract_domain(url) != scheduled.domain:
                logger.info("Ignoring child sitemap on another domain: %s", url)
                continue
            if find_blocked_pattern(url, self.config.blocked_domains) is not None:
                logger.debug("Ignoring blocked child sitemap %s", url)
                summary.increment("blocked")
                continue

            fetched += 1
            try:
                response = self._fetch_listing_page(scheduled, url, summary, child_sitemap=True)
            except CircuitOpenError as exc:
                logger.info("Stopping sitemap walk of %s: %s", endpoint.url, exc)
                return
            if response is not None:
                yield response

    def _extract_candidates(
        self,
        endpoint: Endpoint,
        response: FetchResponse,
    ) -> tuple[List[ExtractedLink], List[str]]:
        """Return the document links of a listing page and any child sitemaps."""
        children: List[str] = []
        if endpoint.listing_strategy is ListingStrategy.SITEMAP_XML:
            links = []
            for entry in parse_sitemap(response.text):
                if entry.is_index:
                    children.append(entry.url)
                else:
                    links.append(ExtractedLink(url=entry.url, tag="loc"))
        else:
            links = extract_links(response.text, response.final_url)
        return filter_links_by_pattern(links, endpoint.url_pattern), children

    def _discover_links(
        self,
        scheduled: ScheduledEndpoint,
        first: FetchResponse,
        dedup: Deduplicator,
        summary: RunSummary,
    ) -> None:
        """Register every new link on the listing pages as a PENDING item."""
        endpoint = scheduled.endpoint
        listing_url = canonicalize_url(endpoint.url)
        child_sitemaps: List[str] = []
        page_count = 0

        pages = itertools.chain(
            self._listing_pages(scheduled, first, summary),
            self._child_sitemaps(scheduled, child_sitemaps, summary),
        )
        for response in pages:
            page_count += 1
            links, children = self._extract_candidates(endpoint, response)
            child_sitemaps.extend(children)
            for link in links:
                if link.url == listing_url:
                    continue
                pattern = find_blocked_pattern(link.url, self.config.blocked_domains)
                if pattern is not None:
                    logger.debug("Ignoring blocked link %s", link.url)
                    summary.increment("blocked")
                    continue
                item = dedup.register(endpoint.id, link.url, title=link.anchor_text)
                if item is None:
                    summary.increment("duplicates")
                    continue
                summary.increment("discovered")
                self.audit.emit(endpoint.id, item.url, "discovered", item_id=item.id)

        logger.debug("Scanned %d listing page(s) of %s", page_count, endpoint.url)

    def _fetch_pending_items(
        self,
        endpoint: Endpoint,
        dedup: Deduplicator,
        summary: RunSummary,
    ) -> None:
        limit = self.config.politeness.max_items_per_endpoint
        pending = self.store.list_items(endpoint_id=endpoint.id, status=ItemStatus.PENDING)
        if len(pending) > limit:
            logger.info(
                "%d pending items for %s; fetching %d this cycle",
                len(pending), endpoint.url, limit,
            )
        for item in pending[:limit]:
            if self.cancelled:
                return
            if not self._process_item(endpoint, item, summary):
                return

    def _process_item(self, endpoint: Endpoint, item: DiscoveredItem, summary: RunSummary) -> bool:
        """Fetch, classify and hand off one PENDING item.

        Returns:
            False if the item's domain circuit is open and the remaining
            items of the endpoint should wait for the next cycle.
        """
        pattern = find_blocked_pattern(item.url, self.config.blocked_domains)
        if pattern is not None:
            apply_fetch_outcome(item, FetchOutcome.terminal(f"Blocked domain ({pattern})"), self.max_attempts)
            self.store.save_item(item)
            summary.increment("blocked")
            summary.increment("failed")
            self.audit.emit(endpoint.id, item.url, "blocked", item_id=item.id, pattern=pattern)
            return True

        domain = extract_domain(item.url)
        owner = endpoint if domain == extract_domain(endpoint.url) else None
        try:
            response = self._guarded_fetch(domain, owner, item.url)
        except CircuitOpenError as exc:
            logger.info("Deferring remaining items of %s: %s", endpoint.url, exc)
            summary.increment("circuit_skipped")
            return False
        except FetchError as exc:
            logger.warning("Failed to fetch %s: %s", item.url, exc)
            apply_fetch_outcome(item, FetchOutcome.retryable(str(exc), at=self._clock()), self.max_attempts)
            self.store.save_item(item)
            self.audit.emit(
                endpoint.id, item.url, "fetch_failed",
                item_id=item.id, error=str(exc), retry_count=item.retry_count,
            )
            self._count_failure_outcome(item, summary, str(exc))
            return True

        summary.increment("fetched")
        self.audit.emit(
            endpoint.id, item.url, "fetched",
            item_id=item.id, status_code=response.status_code, attempt=item.retry_count + 1,
        )
        ref = self.content_store.put(response.body)
        apply_fetch_outcome(
            item,
            FetchOutcome.success(response.content_hash, ref, at=self._clock()),
            self.max_attempts,
        )
        self.store.save_item(item)
        self._classify_and_hand_off(endpoint, item, response, summary)
        return True

    def _process_document(
        self,
        endpoint: Endpoint,
        response: FetchResponse,
        dedup: Deduplicator,
        summary: RunSummary,
    ) -> None:
        """Treat the endpoint URL itself as the item."""
        url = canonicalize_url(endpoint.url)
        if not dedup.claim(url):
            summary.increment("duplicates")
            return

        content_hash = response.content_hash
        item = dedup.known_item(endpoint.id, url)
        if item is None:
            try:
                item = self.store.insert_item(DiscoveredItem(endpoint_id=endpoint.id, url=url))
            except DuplicateItemError:
                item = self.store.find_item(endpoint.id, url)
            else:
                summary.increment("discovered")
                self.audit.emit(endpoint.id, url, "discovered", item_id=item.id)

        if item.status is ItemStatus.FAILED:
            logger.debug("Item %s is FAILED; ignoring fetched content", url)
            return

        if item.status is ItemStatus.HANDED_OFF:
            try:
                dedup.check_content(item, content_hash)
            except DuplicateDetected:
                logger.debug("Unchanged content at %s", url)
                summary.increment("duplicates")
                return
            ref = self.content_store.put(response.body)
            apply_revision(item, content_hash, ref, now=self._clock())
            self.audit.emit(endpoint.id, url, "content_changed", item_id=item.id, version=item.version)
        else:
            ref = self.content_store.put(response.body)
            apply_fetch_outcome(
                item,
                FetchOutcome.success(content_hash, ref, at=self._clock()),
                self.max_attempts,
            )
        self.store.save_item(item)
        self._classify_and_hand_off(endpoint, item, response, summary)

    # ------------------------------------------------------------------
    # Classification and handoff
    # ------------------------------------------------------------------

    def _classify_and_hand_off(
        self,
        endpoint: Endpoint,
        item: DiscoveredItem,
        response: FetchResponse,
        summary: RunSummary,
    ) -> None:
        try:
            result = self.classifier.classify(item.url, response.content_type, response.body)
        except BlockedDomainError as exc:
            fail_classification(item, str(exc), max_attempts=self.max_attempts)
            self.store.save_item(item)
            summary.increment("blocked")
            summary.increment("failed")
            self.audit.emit(endpoint.id, item.url, "blocked", item_id=item.id, pattern=exc.pattern)
            return
        except (ParseError, EmptyContentError) as exc:
            outcome = "empty_content" if isinstance(exc, EmptyContentError) else "parse_failed"
            logger.warning("Cannot classify %s: %s", item.url, exc)
            fail_classification(item, str(exc), max_attempts=self.max_attempts)
            self.store.save_item(item)
            summary.increment("failed")
            self.audit.emit(endpoint.id, item.url, outcome, item_id=item.id, error=str(exc))
            return

        mark_classified(item, result.kind, now=self._clock())
        # Persisted before handoff so an interrupted cycle redelivers it
        self.store.save_item(item)
        summary.increment("classified")
        self.audit.emit(endpoint.id, item.url, "classified", item_id=item.id, **result.to_dict())

        self._hand_off(item, summary)

    def _hand_off(self, item: DiscoveredItem, summary: RunSummary) -> None:
        queue = self.router.hand_off(item.id, item.kind)
        mark_handed_off(item, now=self._clock())
        self.store.save_item(item)
        summary.increment("handed_off")
        self.audit.emit(item.endpoint_id, item.url, "handed_off", item_id=item.id, queue=queue, version=item.version)

    def _count_failure_outcome(self, item: DiscoveredItem, summary: RunSummary, error: str) -> None:
        if item.status is ItemStatus.FAILED:
            summary.increment("failed")
            logger.warning("Item %s failed after %d attempts", item.url, item.retry_count)
            self.audit.emit(
                item.endpoint_id, item.url, "retries_exhausted",
                item_id=item.id, retry_count=item.retry_count, error=error,
            )
        else:
            summary.increment("retried")


def run_discovery_cycle(
    config: DiscoveryConfig | None = None,
    data_root: Path | None = None,
) -> RunSummary:
    """Run one discovery cycle against the file-backed store.

    This is the main entry point for programmatic execution.
    """
    sentinel = Sentinel.from_data_root(data_root, config)
    try:
        return sentinel.run_discovery_cycle()
    finally:
        sentinel.fetcher.close()
