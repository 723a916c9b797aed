"""Per-domain rate limiting with circuit breaking.

Every outbound request goes through :meth:`DomainRateLimiter.acquire` and
is paired with exactly one :meth:`DomainRateLimiter.release`. Per domain
the limiter guarantees:

- at most one request in flight (a lock held from acquire to release);
- at least ``request_delay`` between consecutive requests;
- at most ``max_requests_per_minute`` requests in any 60 s window.

Requests over a limit wait; they are never dropped.

Circuit breaker: ``circuit_breaker_threshold`` consecutive failures open
the circuit and ``acquire`` fails fast with :class:`CircuitOpenError` for
``circuit_breaker_cooldown``. After the cooldown the circuit is half-open
and exactly one probe is admitted. A successful probe closes the circuit;
a failed probe reopens it for another cooldown.

The limiter is the only writer of endpoint health fields
(``consecutive_errors``, ``last_error``, ``circuit_open_until``,
``last_attempt_at``, ``last_success_at``). On release it updates the
endpoint carried by the permit and saves it through the store.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Deque, Iterable, List

from regwatch.parsing.url_scope import extract_domain

from .config import RateLimitConfig
from .errors import CircuitOpenError
from .models import Endpoint, new_id, utcnow
from .store import DiscoveryStore

logger = logging.getLogger(__name__)

_WINDOW = timedelta(seconds=60)

# Domains with at least this many consecutive errors report unhealthy
UNHEALTHY_ERROR_COUNT = 3


class ReleaseOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    # Cancelled before the result was used: no health change
    ABANDONED = "abandoned"


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class Permit:
    """Proof that a request to ``domain`` may proceed.

    Must be passed back to :meth:`DomainRateLimiter.release` exactly once.
    """

    domain: str
    endpoint: Endpoint | None
    acquired_at: datetime
    is_probe: bool = False
    id: str = field(default_factory=new_id)
    released: bool = False


@dataclass
class _DomainState:
    lock: threading.Lock = field(default_factory=threading.Lock)
    request_times: Deque[datetime] = field(default_factory=deque)
    last_request_at: datetime | None = None
    consecutive_errors: int = 0
    circuit_open_until: datetime | None = None
    probe_in_flight: bool = False
    total_requests: int = 0
    successes: int = 0
    failures: int = 0
    last_success_at: datetime | None = None
    last_error: str | None = None
    last_error_at: datetime | None = None

    def circuit_state(self, now: datetime) -> CircuitState:
        if self.circuit_open_until is None:
            return CircuitState.CLOSED
        if now < self.circuit_open_until:
            return CircuitState.OPEN
        return CircuitState.HALF_OPEN


class DomainRateLimiter:
    """Gate requests per domain.

    Args:
        config: Pacing and breaker settings.
        store: Where endpoint health is persisted. Also used to restore
            open circuits and error counts on construction.
        clock: Returns the current aware UTC time.
        sleep: Blocks for the given number of seconds.
    """

    def __init__(
        self,
        config: RateLimitConfig | None = None,
        store: DiscoveryStore | None = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config or RateLimitConfig()
        self._store = store
        self._clock = clock
        self._sleep = sleep
        self._guard = threading.Lock()
        self._domains: dict[str, _DomainState] = {}
        if store is not None:
            self.hydrate(store.list_endpoints())

    def _state(self, domain: str) -> _DomainState:
        # Caller holds self._guard
        state = self._domains.get(domain)
        if state is None:
            state = _DomainState()
            self._domains[domain] = state
        return state

    def hydrate(self, endpoints: Iterable[Endpoint]) -> None:
        """Restore per-domain breaker state from persisted endpoints."""
        with self._guard:
            for endpoint in endpoints:
                state = self._state(extract_domain(endpoint.url))
                state.consecutive_errors = max(state.consecutive_errors, endpoint.consecutive_errors)
                if endpoint.circuit_open_until is not None and (
                    state.circuit_open_until is None
                    or endpoint.circuit_open_until > state.circuit_open_until
                ):
                    state.circuit_open_until = endpoint.circuit_open_until
                if endpoint.last_error and state.last_error is None:
                    state.last_error = endpoint.last_error
                if endpoint.last_success_at is not None and (
                    state.last_success_at is None or endpoint.last_success_at > state.last_success_at
                ):
                    state.last_success_at = endpoint.last_success_at

    def _check_circuit(self, domain: str, state: _DomainState, now: datetime) -> bool:
        """Raise if the circuit rejects a request; return True for a probe.

        Caller holds self._guard.
        """
        circuit = state.circuit_state(now)
        if circuit is CircuitState.OPEN:
            raise CircuitOpenError(domain, state.circuit_open_until)
        if circuit is CircuitState.HALF_OPEN:
            if state.probe_in_flight:
                raise CircuitOpenError(domain)
            state.probe_in_flight = True
            logger.info("Circuit half-open for %s, admitting one probe", domain)
            return True
        return False

    def acquire(self, domain: str, endpoint: Endpoint | None = None) -> Permit:
        """Block until a request to ``domain`` may proceed.

        Raises:
            CircuitOpenError: the domain's circuit is open, or half-open
                with its probe already in flight
        """
        with self._guard:
            state = self._state(domain)
            is_probe = self._check_circuit(domain, state, self._clock())

        state.lock.acquire()
        try:
            if not is_probe:
                # The circuit may have opened while we waited for the lock
                with self._guard:
                    is_probe = self._check_circuit(domain, state, self._clock())
            self._wait_for_slot(state)
        except BaseException:
            if is_probe:
                with self._guard:
                    state.probe_in_flight = False
            state.lock.release()
            raise

        now = self._clock()
        with self._guard:
            state.request_times.append(now)
            state.last_request_at = now
            state.total_requests += 1

        if endpoint is not None:
            endpoint.last_attempt_at = now
        return Permit(domain=domain, endpoint=endpoint, acquired_at=now, is_probe=is_probe)

    def _wait_for_slot(self, state: _DomainState) -> None:
        """Sleep until both the minimum delay and the window cap allow a request."""
        while True:
            now = self._clock()
            with self._guard:
                while state.request_times and now - state.request_times[0] >= _WINDOW:
                    state.request_times.popleft()

                wait = timedelta(0)
                if state.last_request_at is not None:
                    wait = max(wait, state.last_request_at + self.config.request_delay - now)
                if len(state.request_times) >= self.config.max_requests_per_minute:
                    wait = max(wait, state.request_times[0] + _WINDOW - now)

            seconds = wait.total_seconds()
            if seconds <= 0:
                return
            logger.debug("Pacing: sleeping %.2fs", seconds)
            self._sleep(seconds)

    def release(
        self,
        permit: Permit,
        outcome: ReleaseOutcome,
        error: str | None = None,
    ) -> None:
        """Record the outcome of a request and free the domain."""
        if permit.released:
            raise RuntimeError(f"Permit {permit.id} for {permit.domain} released twice")
        permit.released = True

        now = self._clock()
        endpoint = permit.endpoint
        with self._guard:
            state = self._state(permit.domain)
        try:
            with self._guard:
                if permit.is_probe:
                    state.probe_in_flight = False

                if outcome is ReleaseOutcome.SUCCESS:
                    if state.circuit_open_until is not None:
                        logger.info("Circuit closed for %s", permit.domain)
                    state.consecutive_errors = 0
                    state.circuit_open_until = None
                    state.successes += 1
                    state.last_success_at = now
                elif outcome is ReleaseOutcome.FAILURE:
                    state.consecutive_errors += 1
                    state.failures += 1
                    state.last_error = error
                    state.last_error_at = now
                    if permit.is_probe or state.consecutive_errors >= self.config.circuit_breaker_threshold:
                        state.circuit_open_until = now + self.config.circuit_breaker_cooldown
                        logger.warning(
                            "Circuit opened for %s until %s after %d consecutive errors",
                            permit.domain,
                            state.circuit_open_until.isoformat(),
                            state.consecutive_errors,
                        )
                circuit_open_until = state.circuit_open_until
        finally:
            state.lock.release()

        if endpoint is None or outcome is ReleaseOutcome.ABANDONED:
            return

        if outcome is ReleaseOutcome.SUCCESS:
            endpoint.consecutive_errors = 0
            endpoint.last_error = None
            endpoint.circuit_open_until = None
            endpoint.last_success_at = now
        else:
            endpoint.consecutive_errors += 1
            endpoint.last_error = error
            endpoint.circuit_open_until = circuit_open_until

        if self._store is not None:
            self._store.upsert_endpoint(endpoint)

    def circuit_state(self, domain: str) -> CircuitState:
        with self._guard:
            state = self._domains.get(domain)
            if state is None:
                return CircuitState.CLOSED
            return state.circuit_state(self._clock())

    def consecutive_errors(self, domain: str) -> int:
        with self._guard:
            state = self._domains.get(domain)
            return state.consecutive_errors if state else 0

    def health_status(self) -> dict[str, Any]:
        """Per-domain health report.

        A domain is healthy when its circuit is not open and it has fewer
        than three consecutive errors.
        """
        now = self._clock()
        domains: dict[str, dict[str, Any]] = {}
        with self._guard:
            for domain, state in sorted(self._domains.items()):
                circuit = state.circuit_state(now)
                completed = state.successes + state.failures
                domains[domain] = {
                    "total_requests": state.total_requests,
                    "successes": state.successes,
                    "failures": state.failures,
                    "success_rate": (state.successes / completed) if completed else None,
                    "consecutive_errors": state.consecutive_errors,
                    "circuit_state": circuit.value,
                    "circuit_open_until": (
                        state.circuit_open_until.isoformat() if state.circuit_open_until else None
                    ),
                    "last_success_at": (
                        state.last_success_at.isoformat() if state.last_success_at else None
                    ),
                    "last_error": state.last_error,
                    "is_healthy": (
                        circuit is not CircuitState.OPEN
                        and state.consecutive_errors < UNHEALTHY_ERROR_COUNT
                    ),
                }
        return {
            "checked_at": now.isoformat(),
            "overall_healthy": all(entry["is_healthy"] for entry in domains.values()),
            "domains": domains,
        }

    def sweep_stale_circuits(
        self,
        window: timedelta,
        now: datetime | None = None,
        endpoints: Iterable[Endpoint] | None = None,
    ) -> List[Endpoint]:
        """Reset endpoints whose circuit expired long ago without a retry.

        An endpoint qualifies when ``circuit_open_until`` is more than
        ``window`` in the past and no attempt was made after it. Its error
        count and circuit are cleared, and so is the domain's in-memory
        breaker state if it is equally stale.

        Returns:
            The endpoints that were reset.
        """
        now = now or self._clock()
        if endpoints is None:
            endpoints = self._store.list_endpoints() if self._store is not None else []

        reset: List[Endpoint] = []
        for endpoint in endpoints:
            open_until = endpoint.circuit_open_until
            if open_until is None or now - open_until <= window:
                continue
            if endpoint.last_attempt_at is not None and endpoint.last_attempt_at > open_until:
                continue

            endpoint.consecutive_errors = 0
            endpoint.circuit_open_until = None
            reset.append(endpoint)

            domain = extract_domain(endpoint.url)
            with self._guard:
                state = self._domains.get(domain)
                if (
                    state is not None
                    and not state.probe_in_flight
                    and (state.circuit_open_until is None or now - state.circuit_open_until > window)
                ):
                    state.consecutive_errors = 0
                    state.circuit_open_until = None

            if self._store is not None:
                self._store.upsert_endpoint(endpoint)
            logger.info("Reset stale circuit for endpoint %s (%s)", endpoint.id, endpoint.url)

        return reset
