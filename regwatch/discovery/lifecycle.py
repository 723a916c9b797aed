"""Item lifecycle state machine.

States::

    PENDING -> FETCHED -> CLASSIFIED -> HANDED_OFF
        \\          \\
         +-> FAILED  +-> FAILED

A retryable failure increments ``retry_count`` and returns the item to
PENDING until it has used :data:`MAX_FETCH_ATTEMPTS` attempts, after which
it is FAILED. Parse and empty-content failures are FAILED immediately.
A HANDED_OFF item whose content changed goes back to FETCHED as a new
version.

Every mutation goes through :func:`transition`, which rejects anything not
listed in :data:`ALLOWED_TRANSITIONS`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from .config import MAX_FETCH_ATTEMPTS
from .errors import InvalidTransitionError
from .models import ClassificationKind, DiscoveredItem, ItemStatus, new_id, utcnow

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[ItemStatus, frozenset[ItemStatus]] = {
    ItemStatus.PENDING: frozenset({ItemStatus.FETCHED, ItemStatus.PENDING, ItemStatus.FAILED}),
    ItemStatus.FETCHED: frozenset({ItemStatus.CLASSIFIED, ItemStatus.FAILED, ItemStatus.PENDING}),
    ItemStatus.CLASSIFIED: frozenset({ItemStatus.HANDED_OFF}),
    # Only as a content revision, see apply_revision()
    ItemStatus.HANDED_OFF: frozenset({ItemStatus.FETCHED}),
    ItemStatus.FAILED: frozenset(),
}


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    RETRYABLE = "retryable"
    TERMINAL = "terminal"


@dataclass(frozen=True)
class FetchOutcome:
    """Result of one fetch attempt for an item.

    ``attempt_id`` identifies the attempt; applying the same outcome twice
    has no further effect.
    """

    kind: OutcomeKind
    attempt_id: str = field(default_factory=new_id)
    content_hash: str | None = None
    raw_content_ref: str | None = None
    error: str | None = None
    at: datetime = field(default_factory=utcnow)

    @classmethod
    def success(cls, content_hash: str, raw_content_ref: str | None = None, **kwargs) -> "FetchOutcome":
        return cls(OutcomeKind.SUCCESS, content_hash=content_hash, raw_content_ref=raw_content_ref, **kwargs)

    @classmethod
    def retryable(cls, error: str, **kwargs) -> "FetchOutcome":
        return cls(OutcomeKind.RETRYABLE, error=error, **kwargs)

    @classmethod
    def terminal(cls, error: str, **kwargs) -> "FetchOutcome":
        return cls(OutcomeKind.TERMINAL, error=error, **kwargs)


def can_transition(current: ItemStatus, target: ItemStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def transition(item: DiscoveredItem, target: ItemStatus) -> None:
    """Move ``item`` to ``target`` or raise :class:`InvalidTransitionError`."""
    if not can_transition(item.status, target):
        raise InvalidTransitionError(
            f"Item {item.id} ({item.url}): {item.status.value} -> {target.value} is not allowed"
        )
    item.status = target


def _record_failure(
    item: DiscoveredItem,
    error: str,
    retryable: bool,
    max_attempts: int,
) -> None:
    item.last_error = error
    if not retryable:
        transition(item, ItemStatus.FAILED)
        return

    item.retry_count += 1
    if item.retry_count >= max_attempts:
        transition(item, ItemStatus.FAILED)
        logger.info(
            "Item %s exhausted %d attempts: %s", item.url, item.retry_count, error
        )
    else:
        transition(item, ItemStatus.PENDING)


def apply_fetch_outcome(
    item: DiscoveredItem,
    outcome: FetchOutcome,
    max_attempts: int = MAX_FETCH_ATTEMPTS,
) -> bool:
    """Apply the result of a fetch attempt to a PENDING item.

    Returns:
        True if the outcome changed the item, False if this attempt was
        already applied.

    Raises:
        InvalidTransitionError: the item is not in a state that accepts a
            fetch outcome
    """
    if outcome.attempt_id == item.last_attempt_id:
        logger.debug("Attempt %s already applied to %s", outcome.attempt_id, item.url)
        return False

    if item.status is not ItemStatus.PENDING:
        raise InvalidTransitionError(
            f"Item {item.id} ({item.url}): fetch outcome in state {item.status.value}"
        )

    if outcome.kind is OutcomeKind.SUCCESS:
        transition(item, ItemStatus.FETCHED)
        item.content_hash = outcome.content_hash
        item.raw_content_ref = outcome.raw_content_ref
        item.fetched_at = outcome.at
        item.last_error = None
    else:
        _record_failure(
            item,
            outcome.error or "fetch failed",
            retryable=outcome.kind is OutcomeKind.RETRYABLE,
            max_attempts=max_attempts,
        )

    item.last_attempt_id = outcome.attempt_id
    return True


def apply_revision(
    item: DiscoveredItem,
    content_hash: str,
    raw_content_ref: str | None,
    now: datetime | None = None,
) -> None:
    """Record changed content for a HANDED_OFF item as a new version."""
    if item.status is not ItemStatus.HANDED_OFF:
        raise InvalidTransitionError(
            f"Item {item.id} ({item.url}): revision requires HANDED_OFF, not {item.status.value}"
        )
    transition(item, ItemStatus.FETCHED)
    item.version += 1
    item.content_hash = content_hash
    item.raw_content_ref = raw_content_ref
    item.fetched_at = now or utcnow()
    item.kind = None
    item.classified_at = None
    item.handed_off_at = None
    item.last_error = None


def mark_classified(
    item: DiscoveredItem,
    kind: ClassificationKind,
    now: datetime | None = None,
) -> None:
    transition(item, ItemStatus.CLASSIFIED)
    item.kind = kind
    item.classified_at = now or utcnow()


def mark_handed_off(item: DiscoveredItem, now: datetime | None = None) -> None:
    transition(item, ItemStatus.HANDED_OFF)
    item.handed_off_at = now or utcnow()


def fail_classification(
    item: DiscoveredItem,
    error: str,
    retryable: bool = False,
    max_attempts: int = MAX_FETCH_ATTEMPTS,
) -> None:
    """Record a classification failure for a FETCHED item.

    Parse and empty-content failures are terminal. A retryable failure
    counts as an attempt like a fetch failure does.
    """
    if item.status is not ItemStatus.FETCHED:
        raise InvalidTransitionError(
            f"Item {item.id} ({item.url}): classification failure in state {item.status.value}"
        )
    _record_failure(item, error, retryable=retryable, max_attempts=max_attempts)
