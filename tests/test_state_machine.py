"""
Unit tests for lifecycle transition tables and worker status classification.
"""

import pytest

from job_relay.core.exceptions import InvalidTransitionError
from job_relay.core.state_machine import (
    GenerationStatus,
    ItemStatus,
    WorkerOutcome,
    classify_worker_status,
    ensure_generation_transition,
    ensure_item_transition,
    is_generation_terminal,
    is_item_terminal,
    item_sources_for,
)


class TestItemTransitions:
    def test_happy_path_is_allowed(self):
        ensure_item_transition(ItemStatus.submitted, ItemStatus.scraped)
        ensure_item_transition(ItemStatus.scraped, ItemStatus.asset_created)
        ensure_item_transition(ItemStatus.asset_created, ItemStatus.categorized)

    @pytest.mark.parametrize(
        "source", [ItemStatus.submitted, ItemStatus.scraped, ItemStatus.asset_created]
    )
    def test_failed_reachable_from_every_non_terminal_state(self, source):
        ensure_item_transition(source, ItemStatus.failed)

    @pytest.mark.parametrize("terminal", [ItemStatus.categorized, ItemStatus.failed])
    def test_terminal_states_have_no_exits(self, terminal):
        assert is_item_terminal(terminal)
        for target in ItemStatus:
            with pytest.raises(InvalidTransitionError):
                ensure_item_transition(terminal, target)

    def test_skipping_a_step_is_rejected(self):
        with pytest.raises(InvalidTransitionError) as exc:
            ensure_item_transition(ItemStatus.submitted, ItemStatus.categorized)
        assert exc.value.current == "submitted"
        assert exc.value.target == "categorized"

    def test_sources_for_failed(self):
        assert set(item_sources_for(ItemStatus.failed)) == {
            ItemStatus.submitted,
            ItemStatus.scraped,
            ItemStatus.asset_created,
        }

    def test_accepts_plain_strings(self):
        assert is_item_terminal("failed")
        assert not is_item_terminal("submitted")


class TestGenerationTransitions:
    def test_polling_may_repeat(self):
        ensure_generation_transition(GenerationStatus.submitted, GenerationStatus.polling)
        ensure_generation_transition(GenerationStatus.polling, GenerationStatus.polling)
        ensure_generation_transition(GenerationStatus.polling, GenerationStatus.completed)

    def test_completed_is_terminal(self):
        assert is_generation_terminal("completed")
        assert is_generation_terminal(GenerationStatus.failed)
        with pytest.raises(InvalidTransitionError):
            ensure_generation_transition(GenerationStatus.completed, GenerationStatus.failed)

    def test_missing_status_is_not_terminal(self):
        assert not is_generation_terminal(None)

    def test_pending_cannot_complete_directly(self):
        with pytest.raises(InvalidTransitionError):
            ensure_generation_transition(GenerationStatus.pending, GenerationStatus.completed)


class TestClassifyWorkerStatus:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("completed", WorkerOutcome.completed),
            ("COMPLETE", WorkerOutcome.completed),
            ("failed", WorkerOutcome.failed),
            (" Fail ", WorkerOutcome.failed),
            ("running", WorkerOutcome.running),
            ("QUEUED", WorkerOutcome.running),
            ("executing", WorkerOutcome.running),
            ("exploded", WorkerOutcome.unknown),
            ("", WorkerOutcome.unknown),
            (None, WorkerOutcome.unknown),
        ],
    )
    def test_classification(self, raw, expected):
        assert classify_worker_status(raw) == expected
