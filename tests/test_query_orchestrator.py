"""
Tests for the query orchestrator.

Tests:
- Batch key set and Pending skeleton
- Per-name transition ordering
- all_finished predicate
- Concurrency bound
- Failure isolation
- Superseded runs and cancellation
- Update stream
"""

import threading
import time
from collections import defaultdict

import pytest

from conftest import make_label
from src.label_lookup.exceptions import NoMatchesError, QueryCancelledError, ResolutionError
from src.label_lookup.models import (
    QueryBatch,
    QueryOutcome,
    QueryStatus,
    ResolvedLabel,
    SearchField,
)
from src.label_lookup.processors.query_orchestrator import QueryOrchestrator

WAIT = 10


class StubResolver:
    """Resolver stand-in that records concurrency and returns canned labels."""

    def __init__(self, delay=0.0, failures=None):
        self.delay = delay
        self.failures = failures or {}
        self.active = 0
        self.max_active = 0
        self.calls = []
        self._lock = threading.Lock()

    def resolve(self, name, api_key=None, cancel_event=None):
        with self._lock:
            self.calls.append((name, api_key))
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                time.sleep(self.delay)
            if name in self.failures:
                raise self.failures[name]
            return ResolvedLabel.single(make_label([name.upper()], set_id=f"{name}-{api_key}"))
        finally:
            with self._lock:
                self.active -= 1


class GatedResolver:
    """Resolver whose 'slow' lookups block until released."""

    def __init__(self):
        self.gate = threading.Event()
        self.slow_started = threading.Semaphore(0)
        self.saw_cancel = []

    def resolve(self, name, api_key=None, cancel_event=None):
        if api_key == "slow":
            self.slow_started.release()
            self.gate.wait(WAIT)
            if cancel_event is not None and cancel_event.is_set():
                self.saw_cancel.append(name)
                raise QueryCancelledError(f"query for '{name}' was cancelled")
        return ResolvedLabel.single(make_label([name.upper()], set_id=f"{name}-{api_key}"))


def record_updates(orchestrator):
    updates = []
    lock = threading.Lock()

    def _listener(update):
        with lock:
            updates.append(update)

    orchestrator.subscribe(_listener)
    return updates


NAMES = [f"drug{i}" for i in range(10)]


class TestRun:
    """Tests for complete runs."""

    def test_key_set_matches_input(self):
        orchestrator = QueryOrchestrator(resolver=StubResolver(), max_concurrent_queries=4)

        batch = orchestrator.run(NAMES)

        assert list(batch.outcomes.keys()) == NAMES
        assert batch.all_finished
        assert all(o.status == QueryStatus.SUCCESS for o in batch.outcomes.values())
        assert batch["drug3"].label.record["set_id"] == "drug3-None"

    def test_duplicates_share_one_slot(self):
        resolver = StubResolver()
        orchestrator = QueryOrchestrator(resolver=resolver, max_concurrent_queries=4)

        batch = orchestrator.run(["a", "b", "a"])

        assert list(batch.outcomes.keys()) == ["a", "b"]
        assert sorted(name for name, _ in resolver.calls) == ["a", "b"]

    def test_api_key_passed_to_resolver(self):
        resolver = StubResolver()
        orchestrator = QueryOrchestrator(resolver=resolver, max_concurrent_queries=2)

        orchestrator.run(["a", "b"], api_key="secret")

        assert {key for _, key in resolver.calls} == {"secret"}

    def test_empty_input_is_noop(self):
        resolver = StubResolver()
        orchestrator = QueryOrchestrator(resolver=resolver, max_concurrent_queries=4)

        run = orchestrator.start([])

        assert run.done
        assert resolver.calls == []
        assert len(orchestrator.results) == 0

    def test_single_failure_does_not_affect_others(self):
        resolver = StubResolver(failures={
            "drug2": ResolutionError("no matching label found with exactly 2 substance(s)"),
            "drug5": NoMatchesError("No matches found!"),
            "drug7": RuntimeError("unexpected"),
        })
        orchestrator = QueryOrchestrator(resolver=resolver, max_concurrent_queries=4)

        batch = orchestrator.run(NAMES)

        assert batch.all_finished
        assert batch.failed() == {
            "drug2": "no matching label found with exactly 2 substance(s)",
            "drug5": "No matches found!",
            "drug7": "unexpected",
        }
        assert len(batch.successful()) == 7

    def test_transitions_are_ordered_per_name(self):
        orchestrator = QueryOrchestrator(resolver=StubResolver(delay=0.01), max_concurrent_queries=4)
        updates = record_updates(orchestrator)

        orchestrator.run(NAMES)

        per_name = defaultdict(list)
        for update in updates:
            per_name[update.name].append(update.outcome.status)
        for name in NAMES:
            assert per_name[name] == [QueryStatus.PENDING, QueryStatus.IN_PROGRESS, QueryStatus.SUCCESS]

    def test_pending_skeleton_published_before_work(self):
        orchestrator = QueryOrchestrator(resolver=StubResolver(), max_concurrent_queries=4)
        updates = record_updates(orchestrator)

        orchestrator.run(NAMES)

        head = updates[:len(NAMES)]
        assert [u.name for u in head] == NAMES
        assert all(u.outcome.status == QueryStatus.PENDING for u in head)

    def test_concurrency_bound(self):
        resolver = StubResolver(delay=0.05)
        orchestrator = QueryOrchestrator(resolver=resolver, max_concurrent_queries=4)
        in_progress = set()
        max_in_progress = [0]

        def _listener(update):
            if update.outcome.status == QueryStatus.IN_PROGRESS:
                in_progress.add(update.name)
            elif update.outcome.is_terminal:
                in_progress.discard(update.name)
            max_in_progress[0] = max(max_in_progress[0], len(in_progress))

        orchestrator.subscribe(_listener)
        orchestrator.run(NAMES)

        assert max_in_progress[0] <= 4
        assert resolver.max_active <= 4

    def test_concurrency_parameter_overrides_default(self):
        resolver = StubResolver(delay=0.02)
        orchestrator = QueryOrchestrator(resolver=resolver, max_concurrent_queries=4)

        orchestrator.run(NAMES, concurrency=1)

        assert resolver.max_active == 1
        assert [name for name, _ in resolver.calls] == NAMES

    def test_invalid_concurrency_leaves_batch_untouched(self):
        orchestrator = QueryOrchestrator(resolver=StubResolver(), max_concurrent_queries=4)
        previous = orchestrator.run(["a"])
        updates = record_updates(orchestrator)

        with pytest.raises(ValueError):
            orchestrator.start(["b", "c"], concurrency=-1)

        batch = orchestrator.results
        assert batch.generation == previous.generation
        assert list(batch.outcomes.keys()) == ["a"]
        assert batch.all_finished
        assert not orchestrator.is_querying
        assert updates == []

    def test_listener_errors_are_contained(self):
        orchestrator = QueryOrchestrator(resolver=StubResolver(), max_concurrent_queries=2)

        def _broken(update):
            raise ValueError("listener bug")

        orchestrator.subscribe(_broken)
        batch = orchestrator.run(["a", "b"])

        assert batch.all_finished


class TestAllFinished:
    """Tests for the all_finished predicate."""

    def test_false_while_pending_or_in_progress(self):
        batch = QueryBatch.snapshot(1, {
            "a": QueryOutcome.success(ResolvedLabel.single({})),
            "b": QueryOutcome.in_progress(),
        })
        assert not batch.all_finished

        batch = QueryBatch.snapshot(1, {"a": QueryOutcome.pending()})
        assert not batch.all_finished

    def test_true_when_all_terminal(self):
        batch = QueryBatch.snapshot(1, {
            "a": QueryOutcome.success(ResolvedLabel.single({})),
            "b": QueryOutcome.failure("boom"),
        })
        assert batch.all_finished

    def test_snapshot_is_read_only(self):
        batch = QueryBatch.snapshot(1, {"a": QueryOutcome.pending()})
        with pytest.raises(TypeError):
            batch.outcomes["b"] = QueryOutcome.pending()

    def test_orchestrator_reports_progress(self):
        resolver = GatedResolver()
        orchestrator = QueryOrchestrator(resolver=resolver, max_concurrent_queries=2)

        run = orchestrator.start(["a", "b"], api_key="slow")
        assert resolver.slow_started.acquire(timeout=WAIT)

        assert orchestrator.is_querying
        assert not orchestrator.all_finished

        resolver.gate.set()
        assert run.wait(WAIT)
        assert orchestrator.all_finished
        assert not orchestrator.is_querying


class TestSupersededRun:
    """Tests for starting a new run while one is in flight."""

    def test_late_writes_from_stale_run_are_discarded(self):
        resolver = GatedResolver()
        orchestrator = QueryOrchestrator(resolver=resolver, max_concurrent_queries=4)
        names = ["a", "b", "c"]

        first = orchestrator.start(names, api_key="slow")
        for _ in names:
            assert resolver.slow_started.acquire(timeout=WAIT)

        second = orchestrator.start(names, api_key="fast")
        assert second.wait(WAIT)

        assert first.cancelled
        resolver.gate.set()
        assert first.wait(WAIT)

        batch = orchestrator.results
        assert batch.generation == second.generation
        assert batch.all_finished
        for name in names:
            assert batch[name].label.record["set_id"] == f"{name}-fast"
        assert sorted(resolver.saw_cancel) == names

    def test_stale_completion_without_cancel_check_is_ignored(self):
        """A stale worker that finishes anyway must not overwrite the new run."""
        gate = threading.Event()
        started = threading.Event()

        class IgnoresCancel:
            def resolve(self, name, api_key=None, cancel_event=None):
                if api_key == "slow":
                    started.set()
                    gate.wait(WAIT)
                return ResolvedLabel.single({"set_id": f"{name}-{api_key}"})

        orchestrator = QueryOrchestrator(resolver=IgnoresCancel(), max_concurrent_queries=1)
        first = orchestrator.start(["a"], api_key="slow")
        assert started.wait(WAIT)

        second = orchestrator.start(["a"], api_key="fast")
        assert second.wait(WAIT)
        gate.set()
        assert first.wait(WAIT)

        assert orchestrator.results["a"].label.record["set_id"] == "a-fast"

    def test_cancelled_run_stops_taking_names(self):
        resolver = GatedResolver()
        orchestrator = QueryOrchestrator(resolver=resolver, max_concurrent_queries=1)

        first = orchestrator.start(["a", "b", "c"], api_key="slow")
        assert resolver.slow_started.acquire(timeout=WAIT)

        orchestrator.reset()
        resolver.gate.set()
        assert first.wait(WAIT)

        assert resolver.saw_cancel == ["a"]
        assert len(orchestrator.results) == 0

    def test_cancelling_current_run_settles_unfinished_names(self):
        resolver = GatedResolver()
        orchestrator = QueryOrchestrator(resolver=resolver, max_concurrent_queries=1)
        updates = record_updates(orchestrator)

        run = orchestrator.start(["a", "b", "c"], api_key="slow")
        assert resolver.slow_started.acquire(timeout=WAIT)

        run.cancel()
        resolver.gate.set()
        assert run.wait(WAIT)

        batch = orchestrator.results
        assert resolver.saw_cancel == ["a"]
        assert batch.generation == run.generation
        assert batch.all_finished
        assert not orchestrator.is_querying
        assert batch.failed() == {name: "Query cancelled" for name in ["a", "b", "c"]}
        assert run.batch.failed() == batch.failed()
        terminal = [u.name for u in updates if u.outcome.is_terminal]
        assert sorted(terminal) == ["a", "b", "c"]

    def test_blocking_run_returns_its_own_batch(self):
        resolver = GatedResolver()
        orchestrator = QueryOrchestrator(resolver=resolver, max_concurrent_queries=2)
        returned = []

        caller = threading.Thread(
            target=lambda: returned.append(orchestrator.run(["a", "b"], api_key="slow"))
        )
        caller.start()
        for _ in range(2):
            assert resolver.slow_started.acquire(timeout=WAIT)

        newer = orchestrator.run(["c"], api_key="fast")
        resolver.gate.set()
        caller.join(WAIT)

        assert list(newer.outcomes.keys()) == ["c"]
        assert len(returned) == 1
        assert returned[0].generation == newer.generation - 1
        assert list(returned[0].outcomes.keys()) == ["a", "b"]
        assert orchestrator.results.generation == newer.generation


class TestStream:
    """Tests for the update stream."""

    def test_stream_yields_all_transitions_then_ends(self):
        orchestrator = QueryOrchestrator(resolver=StubResolver(), max_concurrent_queries=3)

        updates = list(orchestrator.stream(["a", "b", "c"]))

        assert len(updates) == 9
        assert [u.outcome.status for u in updates[:3]] == [QueryStatus.PENDING] * 3
        assert {u.name for u in updates if u.outcome.is_terminal} == {"a", "b", "c"}
        assert len({u.generation for u in updates}) == 1
        assert orchestrator.all_finished


class TestWithRealResolver:
    """End-to-end through SubstanceResolver with the in-memory label index."""

    def test_mixed_batch(self, resolver, fake_client):
        fake_client.add(SearchField.SUBSTANCE_NAME, "ibuprofen", [make_label(["IBUPROFEN"])])
        fake_client.add(SearchField.SUBSTANCE_NAME, ["aspirin", "caffeine"],
                        [make_label(["ASPIRIN", "CAFFEINE"])])
        orchestrator = QueryOrchestrator(resolver=resolver, max_concurrent_queries=4)

        batch = orchestrator.run(["ibuprofen", "aspirin; caffeine", "unobtainium", " ; "])

        assert batch.all_finished
        assert set(batch.successful()) == {"ibuprofen", "aspirin; caffeine"}
        assert batch.failed() == {"unobtainium": "No matches found!", " ; ": "empty name"}
