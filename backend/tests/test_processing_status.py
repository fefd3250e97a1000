"""
Test suite for the Processing Status Tracker

Run tests with: pytest backend/tests/test_processing_status.py -v
"""

import asyncio
import threading
import time
from datetime import timedelta

import pytest

from services.errors import StatusTransitionError
from services.processing_status import (
    FIRST_STAGE,
    ProcessingStatusTracker,
    Stage,
    get_processing_tracker,
    reset_processing_tracker,
)


@pytest.fixture
def tracker():
    return ProcessingStatusTracker(ttl_seconds=60)


# ============================================================================
# TEST CASES - lifecycle
# ============================================================================

class TestLifecycle:

    def test_unknown_key_reads_idle(self, tracker):
        status = tracker.get("job-1")

        assert status.stage == Stage.IDLE
        assert status.startedAt is None

    def test_start_run_enters_first_stage(self, tracker):
        status = tracker.start_run("job-1", "Uploading 2 resume(s)")

        assert status.stage == FIRST_STAGE == Stage.UPLOADING
        assert status.startedAt is not None
        assert tracker.get("job-1").message == "Uploading 2 resume(s)"

    def test_forward_updates_with_progress(self, tracker):
        tracker.start_run("job-1")
        tracker.update("job-1", Stage.PARSING_RESUMES, "Parsing a.pdf", 0, 2)
        status = tracker.update("job-1", Stage.PARSING_RESUMES, "Parsing b.pdf", 1, 2)

        assert status.stage == Stage.PARSING_RESUMES
        assert status.progress.current == 1
        assert status.progress.total == 2

    def test_backwards_transition_rejected(self, tracker):
        tracker.start_run("job-1")
        tracker.update("job-1", Stage.SEMANTIC_MATCHING, "Ranking")

        with pytest.raises(StatusTransitionError):
            tracker.update("job-1", Stage.PARSING_RESUMES, "Parsing again")

    def test_update_without_run_rejected(self, tracker):
        with pytest.raises(StatusTransitionError, match="start_run"):
            tracker.update("job-1", Stage.PARSING_RESUMES, "Parsing")

    def test_complete_is_terminal(self, tracker):
        tracker.start_run("job-1")
        status = tracker.complete("job-1", "Done")

        assert status.stage == Stage.COMPLETE
        assert status.completedAt is not None
        with pytest.raises(StatusTransitionError, match="already ended"):
            tracker.update("job-1", Stage.SEMANTIC_MATCHING, "More work")

    def test_error_reachable_from_any_stage(self, tracker):
        tracker.start_run("job-1")
        tracker.update("job-1", Stage.GENERATING_EMBEDDINGS, "Embedding")

        status = tracker.update("job-1", Stage.ERROR, "Embedding provider unavailable")

        assert status.stage == Stage.ERROR
        assert status.error == "Embedding provider unavailable"
        assert tracker.get("job-1").stage == Stage.ERROR

    def test_fail_after_complete_rejected(self, tracker):
        tracker.start_run("job-1")
        tracker.complete("job-1")

        with pytest.raises(StatusTransitionError, match="already ended"):
            tracker.fail("job-1", "late failure")

        assert tracker.get("job-1").stage == Stage.COMPLETE

    def test_new_run_after_complete_resets(self, tracker):
        """A fresh run starts at the first stage with a strictly later startedAt."""
        first = tracker.start_run("job-1")
        tracker.update("job-1", Stage.SEMANTIC_MATCHING, "Ranking")
        tracker.complete("job-1")

        second = tracker.start_run("job-1")

        assert second.stage == FIRST_STAGE
        assert second.startedAt > first.startedAt
        assert second.completedAt is None
        assert second.progress is None

    def test_back_to_back_runs_have_increasing_start_times(self, tracker):
        starts = []
        for _ in range(50):
            starts.append(tracker.start_run("job-1").startedAt)
            tracker.complete("job-1")

        assert all(a < b for a, b in zip(starts, starts[1:]))

    def test_keys_are_independent(self, tracker):
        tracker.start_run("job-1")
        tracker.update("job-1", Stage.SEMANTIC_MATCHING, "Ranking")
        tracker.start_run("job-2")

        assert tracker.get("job-1").stage == Stage.SEMANTIC_MATCHING
        assert tracker.get("job-2").stage == Stage.UPLOADING

    def test_returned_status_is_a_copy(self, tracker):
        status = tracker.start_run("job-1")
        status.message = "changed by caller"

        assert tracker.get("job-1").message != "changed by caller"


# ============================================================================
# TEST CASES - eviction
# ============================================================================

class TestEviction:

    def test_finished_entries_evicted_after_ttl(self, tracker):
        tracker.start_run("job-1")
        done = tracker.complete("job-1")

        assert tracker.evict_expired(now=done.completedAt + timedelta(seconds=30)) == 0
        assert tracker.evict_expired(now=done.completedAt + timedelta(seconds=61)) == 1
        assert tracker.get("job-1").stage == Stage.IDLE

    def test_active_runs_never_evicted(self, tracker):
        status = tracker.start_run("job-1")

        assert tracker.evict_expired(now=status.startedAt + timedelta(days=1)) == 0
        assert tracker.get("job-1").stage == Stage.UPLOADING

    def test_clear(self, tracker):
        tracker.start_run("job-1")
        tracker.clear("job-1")

        assert tracker.get("job-1").stage == Stage.IDLE


# ============================================================================
# TEST CASES - exclusive runs
# ============================================================================

class TestExclusive:

    def test_exclusive_serializes_same_key(self, tracker):
        order = []

        def worker(name):
            with tracker.exclusive("job-1"):
                order.append(f"{name}-start")
                time.sleep(0.05)
                order.append(f"{name}-end")

        threads = [threading.Thread(target=worker, args=(n,)) for n in ("a", "b")]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        # no interleaving: each start is immediately followed by its own end
        assert order[0].split("-")[0] == order[1].split("-")[0]
        assert order[2].split("-")[0] == order[3].split("-")[0]

    def test_exclusive_locks_dropped_when_idle(self, tracker):
        with tracker.exclusive("job-1"):
            assert tracker.lock_count() == 1

        assert tracker.lock_count() == 0

    def test_exclusive_async_serializes_same_key(self, tracker):
        order = []

        async def worker(name):
            async with tracker.exclusive_async("job-1"):
                order.append(f"{name}-start")
                await asyncio.sleep(0.01)
                order.append(f"{name}-end")

        async def main():
            await asyncio.gather(worker("a"), worker("b"), worker("c"))

        asyncio.run(main())

        for i in range(0, len(order), 2):
            assert order[i].split("-")[0] == order[i + 1].split("-")[0]
        assert tracker.lock_count() == 0

    def test_exclusive_async_usable_from_separate_event_loops(self, tracker):
        async def hold():
            async with tracker.exclusive_async("job-1"):
                await asyncio.sleep(0)

        asyncio.run(hold())
        asyncio.run(hold())

        assert tracker.lock_count() == 0


class TestSingleton:

    def test_singleton_and_reset(self):
        first = get_processing_tracker()
        assert get_processing_tracker() is first

        reset_processing_tracker()
        assert get_processing_tracker() is not first
