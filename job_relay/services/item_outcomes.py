"""
Terminal writes for ingestion items.

Settling an item is one transaction: a compare-and-set move to the
terminal status, the matching counter increment, and the batch completion
check. Only the caller whose CAS affected a row touches the counters, so a
duplicate delivery can never count an item twice.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from job_relay.core.state_machine import ItemStatus
from job_relay.repositories.ingestion_batch_repo import IngestionBatchRepository
from job_relay.repositories.ingestion_item_repo import IngestionItemRepository

logger = logging.getLogger(__name__)


def settle_item(
    session: Session,
    item_id: str,
    batch_id: str,
    target: ItemStatus,
    *,
    expected: Iterable[ItemStatus] | None = None,
    **fields: Any,
) -> bool:
    """
    Move an item to ``categorized`` or ``failed`` and count it.

    Args:
        session: Session to run the transaction on
        item_id: Item to settle
        batch_id: Parent batch whose counters are updated
        target: ``ItemStatus.categorized`` or ``ItemStatus.failed``
        expected: Allowed current statuses (defaults to every legal source)
        **fields: Extra columns written with the status (e.g. error)

    Returns:
        True if this call settled the item; False if it was already settled.

    Raises:
        SQLAlchemyError: after rolling back, when the store is unavailable
    """
    counter = "completed" if target == ItemStatus.categorized else "failed"
    items = IngestionItemRepository(session)
    batches = IngestionBatchRepository(session)
    try:
        won = items.transition(item_id, target, expected=expected, commit=False, **fields)
        if won:
            batches.increment_counter(batch_id, counter, commit=False)
            batches.complete_if_finished(batch_id, commit=False)
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        raise

    if won:
        logger.info("Item %s -> %s", item_id, target)
    else:
        logger.info("Item %s already settled; %s not applied", item_id, target)
    return won


def fail_item(session: Session, item_id: str, batch_id: str, error: str) -> bool:
    """Record a terminal failure with its error text."""
    return settle_item(session, item_id, batch_id, ItemStatus.failed, error=error)
