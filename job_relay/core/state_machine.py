"""
Lifecycle states and transition tables.

Item:        submitted -> scraped -> asset_created -> categorized
             failed is reachable from every non-terminal state.
Generation:  pending -> assembling_context -> submitted -> (polling ->)
             completed | failed
Batch:       in_progress -> completed | completed_with_errors

Terminal states have no outgoing transitions; callers use that as the
idempotency boundary.
"""

from __future__ import annotations

from enum import StrEnum

from job_relay.core.exceptions import InvalidTransitionError


class ItemStatus(StrEnum):
    submitted = "submitted"
    scraped = "scraped"
    asset_created = "asset_created"
    categorized = "categorized"
    failed = "failed"


class BatchStatus(StrEnum):
    in_progress = "in_progress"
    completed = "completed"
    completed_with_errors = "completed_with_errors"


class GenerationStatus(StrEnum):
    pending = "pending"
    assembling_context = "assembling_context"
    submitted = "submitted"
    polling = "polling"
    completed = "completed"
    failed = "failed"


class WorkerOutcome(StrEnum):
    """Classification of a status reported by the worker."""

    completed = "completed"
    failed = "failed"
    running = "running"
    unknown = "unknown"


ITEM_TRANSITIONS: dict[ItemStatus, frozenset[ItemStatus]] = {
    ItemStatus.submitted: frozenset({ItemStatus.scraped, ItemStatus.failed}),
    ItemStatus.scraped: frozenset({ItemStatus.asset_created, ItemStatus.failed}),
    ItemStatus.asset_created: frozenset({ItemStatus.categorized, ItemStatus.failed}),
    ItemStatus.categorized: frozenset(),
    ItemStatus.failed: frozenset(),
}

GENERATION_TRANSITIONS: dict[GenerationStatus, frozenset[GenerationStatus]] = {
    GenerationStatus.pending: frozenset(
        {GenerationStatus.assembling_context, GenerationStatus.failed}
    ),
    GenerationStatus.assembling_context: frozenset(
        {GenerationStatus.submitted, GenerationStatus.failed}
    ),
    GenerationStatus.submitted: frozenset(
        {GenerationStatus.polling, GenerationStatus.completed, GenerationStatus.failed}
    ),
    GenerationStatus.polling: frozenset(
        {GenerationStatus.polling, GenerationStatus.completed, GenerationStatus.failed}
    ),
    GenerationStatus.completed: frozenset(),
    GenerationStatus.failed: frozenset(),
}

# Generations that must not be restarted.
GENERATION_ACTIVE = frozenset(
    {
        GenerationStatus.pending,
        GenerationStatus.assembling_context,
        GenerationStatus.submitted,
        GenerationStatus.polling,
    }
)

_COMPLETED_ALIASES = {"completed", "complete"}
_FAILED_ALIASES = {"failed", "fail"}
_RUNNING_ALIASES = {"queued", "pending", "processing", "running", "executing"}


def is_item_terminal(status: str | ItemStatus) -> bool:
    return not ITEM_TRANSITIONS[ItemStatus(status)]


def is_generation_terminal(status: str | GenerationStatus | None) -> bool:
    if status is None:
        return False
    return not GENERATION_TRANSITIONS[GenerationStatus(status)]


def ensure_item_transition(current: str | ItemStatus, target: ItemStatus) -> None:
    if ItemStatus(target) not in ITEM_TRANSITIONS[ItemStatus(current)]:
        raise InvalidTransitionError(str(current), str(target))


def ensure_generation_transition(
    current: str | GenerationStatus, target: GenerationStatus
) -> None:
    if GenerationStatus(target) not in GENERATION_TRANSITIONS[GenerationStatus(current)]:
        raise InvalidTransitionError(str(current), str(target))


def item_sources_for(target: ItemStatus) -> list[ItemStatus]:
    """States from which *target* may be entered."""
    return [src for src, targets in ITEM_TRANSITIONS.items() if target in targets]


def classify_worker_status(raw: str | None) -> WorkerOutcome:
    """Map a worker-reported status string onto a WorkerOutcome.

    The worker is not consistent about spelling ("complete" vs
    "completed"), so matching is case-insensitive over known aliases.
    """
    normalized = (raw or "").strip().lower()
    if normalized in _COMPLETED_ALIASES:
        return WorkerOutcome.completed
    if normalized in _FAILED_ALIASES:
        return WorkerOutcome.failed
    if normalized in _RUNNING_ALIASES:
        return WorkerOutcome.running
    return WorkerOutcome.unknown
