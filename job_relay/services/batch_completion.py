"""
Batch completion rule, shared by the callback handler, the submitter and
the reconciliation agent.
"""

from __future__ import annotations

from typing import Optional

from job_relay.core.state_machine import BatchStatus


def evaluate_batch_completion(
    total: int, completed: int, failed: int, status: str
) -> Optional[BatchStatus]:
    """
    Decide whether a batch moves to a terminal status.

    Args:
        total: Items in the batch
        completed: Items that finished successfully
        failed: Items that failed
        status: Current batch status

    Returns:
        ``completed`` when every item succeeded, ``completed_with_errors``
        when at least one failed, or None when the batch is still running
        or already terminal.
    """
    if status != BatchStatus.in_progress:
        return None
    if completed + failed < total:
        return None
    return BatchStatus.completed if failed == 0 else BatchStatus.completed_with_errors
