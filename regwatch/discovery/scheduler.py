"""Due-endpoint selection for discovery cycles.

An endpoint is due when ``last_checked_at + frequency interval`` has
passed; an endpoint never checked is always due. Due endpoints are
ordered by priority (CRITICAL first), then by how long they have been
waiting. Endpoints with an open circuit are set aside and reported as
skipped, never returned for processing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List

from regwatch.parsing.url_scope import extract_domain

from .models import Endpoint, utcnow


@dataclass
class ScheduledEndpoint:
    """An endpoint selected for this cycle.

    Attributes:
        endpoint: The endpoint to poll.
        domain: Host used for rate limiting.
        overdue_seconds: Time past its due moment (never-checked endpoints
            sort as most overdue).
    """

    endpoint: Endpoint
    domain: str
    overdue_seconds: float

    @property
    def sort_key(self) -> tuple[int, float]:
        return (self.endpoint.priority.rank, -self.overdue_seconds)


@dataclass
class Schedule:
    """Result of due selection."""

    due: List[ScheduledEndpoint] = field(default_factory=list)
    circuit_skipped: List[Endpoint] = field(default_factory=list)
    not_due: int = 0

    def __iter__(self):
        return iter(self.due)

    def __len__(self) -> int:
        return len(self.due)


def overdue_seconds(endpoint: Endpoint, now: datetime) -> float:
    if endpoint.last_checked_at is None:
        return float("inf")
    due_at = endpoint.last_checked_at + endpoint.frequency.interval
    return (now - due_at).total_seconds()


def select_due_endpoints(
    endpoints: Iterable[Endpoint],
    now: datetime | None = None,
) -> Schedule:
    """Select and order the endpoints to poll.

    Args:
        endpoints: Candidate endpoints; inactive ones are ignored.
        now: Reference time (defaults to the current UTC time).

    Returns:
        Schedule with due endpoints in processing order.
    """
    now = now or utcnow()
    schedule = Schedule()

    for endpoint in endpoints:
        if not endpoint.is_active:
            continue
        if not endpoint.is_due(now):
            schedule.not_due += 1
            continue
        if endpoint.is_circuit_open(now):
            schedule.circuit_skipped.append(endpoint)
            continue
        schedule.due.append(ScheduledEndpoint(
            endpoint=endpoint,
            domain=extract_domain(endpoint.url),
            overdue_seconds=overdue_seconds(endpoint, now),
        ))

    schedule.due.sort(key=lambda scheduled: scheduled.sort_key)
    return schedule
