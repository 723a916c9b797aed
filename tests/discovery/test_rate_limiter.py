"""Tests for per-domain rate limiting and circuit breaking."""

from __future__ import annotations

import threading
from datetime import timedelta

import pytest

from regwatch.discovery.config import RateLimitConfig
from regwatch.discovery.errors import CircuitOpenError
from regwatch.discovery.models import Endpoint, Frequency
from regwatch.discovery.rate_limiter import CircuitState, DomainRateLimiter, ReleaseOutcome
from regwatch.discovery.store import InMemoryDiscoveryStore

DOMAIN = "tax.example.gov"


@pytest.fixture
def limiter(clock):
    return DomainRateLimiter(RateLimitConfig(), clock=clock, sleep=clock.sleep)


def fail_times(limiter: DomainRateLimiter, count: int, domain: str = DOMAIN, endpoint=None) -> None:
    for _ in range(count):
        permit = limiter.acquire(domain, endpoint)
        limiter.release(permit, ReleaseOutcome.FAILURE, "HTTP 500")


# =============================================================================
# Pacing
# =============================================================================


class TestPacing:
    """Tests for delay and window limits."""

    def test_first_request_not_delayed(self, limiter, clock) -> None:
        permit = limiter.acquire(DOMAIN)
        limiter.release(permit, ReleaseOutcome.SUCCESS)

        assert clock.sleeps == []

    def test_minimum_delay_between_requests(self, limiter, clock) -> None:
        first = limiter.acquire(DOMAIN)
        limiter.release(first, ReleaseOutcome.SUCCESS)
        second = limiter.acquire(DOMAIN)
        limiter.release(second, ReleaseOutcome.SUCCESS)

        assert clock.sleeps == [pytest.approx(2.0)]
        assert second.acquired_at - first.acquired_at >= timedelta(milliseconds=2000)

    def test_elapsed_time_counts_toward_delay(self, limiter, clock) -> None:
        limiter.release(limiter.acquire(DOMAIN), ReleaseOutcome.SUCCESS)
        clock.advance(seconds=1.5)
        limiter.release(limiter.acquire(DOMAIN), ReleaseOutcome.SUCCESS)

        assert clock.sleeps == [pytest.approx(0.5)]

    def test_domains_paced_independently(self, limiter, clock) -> None:
        limiter.release(limiter.acquire("a.example.gov"), ReleaseOutcome.SUCCESS)
        limiter.release(limiter.acquire("b.example.gov"), ReleaseOutcome.SUCCESS)

        assert clock.sleeps == []

    def test_window_cap_delays_not_drops(self, clock) -> None:
        config = RateLimitConfig(request_delay=timedelta(0), max_requests_per_minute=3)
        limiter = DomainRateLimiter(config, clock=clock, sleep=clock.sleep)
        start = clock.now

        permits = []
        for _ in range(4):
            permit = limiter.acquire(DOMAIN)
            limiter.release(permit, ReleaseOutcome.SUCCESS)
            permits.append(permit)

        assert len(permits) == 4
        assert permits[3].acquired_at - start >= timedelta(seconds=60)

    def test_twenty_per_minute_default(self, limiter, clock) -> None:
        """With a 2 s delay the 21st request still waits for the window."""
        permits = []
        for _ in range(21):
            permit = limiter.acquire(DOMAIN)
            limiter.release(permit, ReleaseOutcome.SUCCESS)
            permits.append(permit)

        window_start = permits[0].acquired_at
        in_first_minute = [p for p in permits if p.acquired_at - window_start < timedelta(seconds=60)]
        assert len(in_first_minute) == 20
        assert permits[20].acquired_at - window_start >= timedelta(seconds=60)

    def test_one_in_flight_per_domain(self, clock) -> None:
        config = RateLimitConfig(request_delay=timedelta(0))
        limiter = DomainRateLimiter(config, clock=clock, sleep=clock.sleep)
        first = limiter.acquire(DOMAIN)
        acquired = threading.Event()

        def second_request() -> None:
            permit = limiter.acquire(DOMAIN)
            acquired.set()
            limiter.release(permit, ReleaseOutcome.SUCCESS)

        worker = threading.Thread(target=second_request)
        worker.start()
        assert not acquired.wait(0.2)

        limiter.release(first, ReleaseOutcome.SUCCESS)
        worker.join(timeout=5)
        assert acquired.is_set()

    def test_double_release(self, limiter) -> None:
        permit = limiter.acquire(DOMAIN)
        limiter.release(permit, ReleaseOutcome.SUCCESS)

        with pytest.raises(RuntimeError):
            limiter.release(permit, ReleaseOutcome.SUCCESS)


# =============================================================================
# Circuit breaker
# =============================================================================


class TestCircuitBreaker:
    """Tests for open, half-open and closed transitions."""

    def test_opens_after_threshold(self, limiter) -> None:
        fail_times(limiter, 4)
        assert limiter.circuit_state(DOMAIN) is CircuitState.CLOSED

        fail_times(limiter, 1)

        assert limiter.circuit_state(DOMAIN) is CircuitState.OPEN
        assert limiter.consecutive_errors(DOMAIN) == 5

    def test_open_circuit_fails_fast(self, limiter, clock) -> None:
        fail_times(limiter, 5)
        sleeps_before = list(clock.sleeps)

        with pytest.raises(CircuitOpenError) as exc_info:
            limiter.acquire(DOMAIN)

        assert exc_info.value.domain == DOMAIN
        assert clock.sleeps == sleeps_before

    def test_success_resets_count(self, limiter) -> None:
        fail_times(limiter, 4)
        limiter.release(limiter.acquire(DOMAIN), ReleaseOutcome.SUCCESS)
        fail_times(limiter, 4)

        assert limiter.circuit_state(DOMAIN) is CircuitState.CLOSED

    def test_half_open_admits_single_probe(self, limiter, clock) -> None:
        fail_times(limiter, 5)
        clock.advance(hours=1)
        assert limiter.circuit_state(DOMAIN) is CircuitState.HALF_OPEN

        probe = limiter.acquire(DOMAIN)
        assert probe.is_probe

        with pytest.raises(CircuitOpenError):
            limiter.acquire(DOMAIN)

        limiter.release(probe, ReleaseOutcome.SUCCESS)

    def test_probe_success_closes(self, limiter, clock) -> None:
        fail_times(limiter, 5)
        clock.advance(hours=1)

        limiter.release(limiter.acquire(DOMAIN), ReleaseOutcome.SUCCESS)

        assert limiter.circuit_state(DOMAIN) is CircuitState.CLOSED
        assert limiter.consecutive_errors(DOMAIN) == 0
        assert not limiter.acquire(DOMAIN).is_probe

    def test_probe_failure_reopens(self, limiter, clock) -> None:
        fail_times(limiter, 5)
        clock.advance(hours=1)

        limiter.release(limiter.acquire(DOMAIN), ReleaseOutcome.FAILURE, "HTTP 500")

        assert limiter.circuit_state(DOMAIN) is CircuitState.OPEN
        with pytest.raises(CircuitOpenError):
            limiter.acquire(DOMAIN)
        clock.advance(minutes=59)
        assert limiter.circuit_state(DOMAIN) is CircuitState.OPEN

    def test_abandoned_probe_frees_slot(self, limiter, clock) -> None:
        fail_times(limiter, 5)
        clock.advance(hours=1)

        limiter.release(limiter.acquire(DOMAIN), ReleaseOutcome.ABANDONED)

        assert limiter.circuit_state(DOMAIN) is CircuitState.HALF_OPEN
        assert limiter.consecutive_errors(DOMAIN) == 5
        assert limiter.acquire(DOMAIN).is_probe

    def test_abandoned_leaves_counts(self, limiter) -> None:
        fail_times(limiter, 2)
        limiter.release(limiter.acquire(DOMAIN), ReleaseOutcome.ABANDONED)

        assert limiter.consecutive_errors(DOMAIN) == 2

    def test_other_domains_unaffected(self, limiter) -> None:
        fail_times(limiter, 5)

        permit = limiter.acquire("other.example.gov")
        limiter.release(permit, ReleaseOutcome.SUCCESS)

        assert limiter.circuit_state("other.example.gov") is CircuitState.CLOSED


# =============================================================================
# Endpoint health write-back
# =============================================================================


def make_endpoint(**kwargs) -> Endpoint:
    defaults = dict(id="e1", source_id="s1", url=f"https://{DOMAIN}/notices", frequency=Frequency.DAILY)
    defaults.update(kwargs)
    return Endpoint(**defaults)


class TestEndpointHealth:
    """The limiter writes endpoint health fields on release."""

    def test_failure_written_to_store(self, clock) -> None:
        store = InMemoryDiscoveryStore()
        limiter = DomainRateLimiter(RateLimitConfig(), store=store, clock=clock, sleep=clock.sleep)
        endpoint = make_endpoint()

        fail_times(limiter, 5, endpoint=endpoint)

        stored = store.get_endpoint("e1")
        assert stored.consecutive_errors == 5
        assert stored.last_error == "HTTP 500"
        assert stored.circuit_open_until == clock.now + timedelta(hours=1)
        assert stored.last_attempt_at is not None

    def test_success_clears_health(self, clock) -> None:
        store = InMemoryDiscoveryStore()
        limiter = DomainRateLimiter(RateLimitConfig(), store=store, clock=clock, sleep=clock.sleep)
        endpoint = make_endpoint()
        fail_times(limiter, 2, endpoint=endpoint)

        limiter.release(limiter.acquire(DOMAIN, endpoint), ReleaseOutcome.SUCCESS)

        stored = store.get_endpoint("e1")
        assert stored.consecutive_errors == 0
        assert stored.last_error is None
        assert stored.last_success_at == clock.now

    def test_hydrate_restores_open_circuit(self, clock) -> None:
        store = InMemoryDiscoveryStore()
        store.upsert_endpoint(make_endpoint(
            consecutive_errors=5,
            circuit_open_until=clock.now + timedelta(minutes=30),
        ))

        limiter = DomainRateLimiter(RateLimitConfig(), store=store, clock=clock, sleep=clock.sleep)

        assert limiter.circuit_state(DOMAIN) is CircuitState.OPEN
        with pytest.raises(CircuitOpenError):
            limiter.acquire(DOMAIN)

    def test_health_status(self, limiter) -> None:
        limiter.release(limiter.acquire("ok.example.gov"), ReleaseOutcome.SUCCESS)
        fail_times(limiter, 3, domain="slow.example.gov")

        status = limiter.health_status()

        assert status["domains"]["ok.example.gov"]["is_healthy"]
        assert status["domains"]["ok.example.gov"]["success_rate"] == 1.0
        slow = status["domains"]["slow.example.gov"]
        assert not slow["is_healthy"]
        assert slow["circuit_state"] == "closed"
        assert slow["consecutive_errors"] == 3
        assert not status["overall_healthy"]


class TestStaleCircuitSweep:
    """Tests for sweep_stale_circuits."""

    def test_resets_stale_endpoint(self, clock) -> None:
        store = InMemoryDiscoveryStore()
        open_until = clock.now - timedelta(hours=30)
        store.upsert_endpoint(make_endpoint(
            consecutive_errors=5,
            circuit_open_until=open_until,
            last_attempt_at=open_until - timedelta(hours=1),
        ))
        limiter = DomainRateLimiter(RateLimitConfig(), store=store, clock=clock, sleep=clock.sleep)

        reset = limiter.sweep_stale_circuits(timedelta(hours=24))

        assert [endpoint.id for endpoint in reset] == ["e1"]
        stored = store.get_endpoint("e1")
        assert stored.consecutive_errors == 0
        assert stored.circuit_open_until is None
        assert limiter.consecutive_errors(DOMAIN) == 0

    def test_recent_circuit_kept(self, clock) -> None:
        store = InMemoryDiscoveryStore()
        store.upsert_endpoint(make_endpoint(
            consecutive_errors=5,
            circuit_open_until=clock.now - timedelta(hours=2),
        ))
        limiter = DomainRateLimiter(RateLimitConfig(), store=store, clock=clock, sleep=clock.sleep)

        assert limiter.sweep_stale_circuits(timedelta(hours=24)) == []
        assert store.get_endpoint("e1").consecutive_errors == 5

    def test_retried_endpoint_kept(self, clock) -> None:
        store = InMemoryDiscoveryStore()
        open_until = clock.now - timedelta(hours=30)
        store.upsert_endpoint(make_endpoint(
            consecutive_errors=6,
            circuit_open_until=open_until,
            last_attempt_at=open_until + timedelta(minutes=5),
        ))
        limiter = DomainRateLimiter(RateLimitConfig(), store=store, clock=clock, sleep=clock.sleep)

        assert limiter.sweep_stale_circuits(timedelta(hours=24)) == []
