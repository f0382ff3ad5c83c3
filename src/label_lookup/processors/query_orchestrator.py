"""
Query Orchestrator

Runs the substance resolver for a list of names on a fixed-size worker pool
and publishes every per-name status transition.
"""

import logging
import queue
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Callable, Dict, Iterator, List, Optional, Sequence

from src.label_lookup.config import get_config
from src.label_lookup.exceptions import LabelLookupError, QueryCancelledError
from src.label_lookup.models import QueryBatch, QueryOutcome, QueryStatus, QueryUpdate
from src.label_lookup.resolvers.substance_resolver import SubstanceResolver
from src.label_lookup.utils.logger import log_batch_end, log_batch_start, log_query_outcome

logger = logging.getLogger(__name__)

QueryListener = Callable[[QueryUpdate], None]

CANCELLED_MESSAGE = "Query cancelled"
WORKER_STOPPED_MESSAGE = "Query worker stopped before resolving this name"


class QueryRun:
    """Handle on one started query run."""

    def __init__(self, generation: int, names: List[str]):
        self.generation = generation
        self.names = names
        self.cancel_event = threading.Event()
        self.batch: Optional[QueryBatch] = None
        self._finished = threading.Event()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until every worker of this run has exited and the batch is settled."""
        return self._finished.wait(timeout)

    def cancel(self):
        """Ask the workers to stop taking names and abandon in-flight lookups."""
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    @property
    def done(self) -> bool:
        return self._finished.is_set()

    def _settle(self, batch: Optional[QueryBatch] = None):
        # First snapshot wins; a superseded run keeps the batch it was replaced with
        if self.batch is None:
            self.batch = batch
        self._finished.set()

    def __repr__(self) -> str:
        return (f"QueryRun(generation={self.generation}, names={len(self.names)}, "
                f"done={self.done}, cancelled={self.cancelled})")


class QueryOrchestrator:
    """
    Resolves batches of substance names concurrently.

    Features:
    - Fixed worker pool pulling names FIFO from one shared queue
    - Pending skeleton published before any network activity
    - Lock-serialized writes with per-name ordering
      PENDING -> IN_PROGRESS -> SUCCESS/FAILURE
    - A new run cancels the previous one; late writes from stale runs are
      discarded by generation
    """

    def __init__(
        self,
        resolver: Optional[SubstanceResolver] = None,
        max_concurrent_queries: Optional[int] = None
    ):
        """
        Initialize orchestrator.

        Args:
            resolver: Substance resolver (created if not provided)
            max_concurrent_queries: Default worker pool size
        """
        self.resolver = resolver or SubstanceResolver()
        self.max_concurrent_queries = (
            max_concurrent_queries or get_config().processing.max_concurrent_queries
        )

        self._lock = threading.RLock()
        self._generation = 0
        self._outcomes: Dict[str, QueryOutcome] = {}
        self._current_run: Optional[QueryRun] = None
        self._listeners: List[QueryListener] = []

    # Observation

    def subscribe(self, listener: QueryListener):
        """Register a callback invoked with every accepted update."""
        with self._lock:
            self._listeners.append(listener)

    def unsubscribe(self, listener: QueryListener):
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    @property
    def results(self) -> QueryBatch:
        """Read-only snapshot of the current batch."""
        with self._lock:
            return QueryBatch.snapshot(self._generation, self._outcomes)

    @property
    def all_finished(self) -> bool:
        return self.results.all_finished

    @property
    def is_querying(self) -> bool:
        with self._lock:
            return self._current_run is not None and not self._current_run.done

    # Running

    def start(
        self,
        names: Sequence[str],
        api_key: Optional[str] = None,
        concurrency: Optional[int] = None
    ) -> QueryRun:
        """
        Start resolving names in the background.

        Any run still in flight is cancelled and its remaining writes are
        discarded.

        Args:
            names: Names in input order (duplicates share one slot)
            api_key: openFDA API key
            concurrency: Worker pool size (defaults to max_concurrent_queries)

        Returns:
            QueryRun handle

        Raises:
            ValueError: If concurrency is less than 1
        """
        if concurrency is not None and concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {concurrency}")

        unique_names = list(dict.fromkeys(names))
        pool_size = min(concurrency or self.max_concurrent_queries, len(unique_names))

        with self._lock:
            if not unique_names:
                return self._empty_run()

            if self._current_run is not None and not self._current_run.done:
                logger.info(f"Superseding query run {self._current_run.generation}")
            self._retire_current_run()

            self._generation += 1
            run = QueryRun(self._generation, unique_names)
            self._current_run = run

            self._outcomes = {name: QueryOutcome.pending() for name in unique_names}
            for name in unique_names:
                self._notify(QueryUpdate(run.generation, name, self._outcomes[name]))

        log_batch_start(run.generation, len(unique_names), pool_size)

        work: "queue.Queue[str]" = queue.Queue()
        for name in unique_names:
            work.put(name)

        executor = ThreadPoolExecutor(
            max_workers=pool_size,
            thread_name_prefix=f"label-query-{run.generation}"
        )
        futures = [
            executor.submit(self._worker, run, work, api_key)
            for _ in range(pool_size)
        ]
        executor.shutdown(wait=False)

        threading.Thread(
            target=self._finish_run, args=(run, futures), daemon=True
        ).start()
        return run

    def run(
        self,
        names: Sequence[str],
        api_key: Optional[str] = None,
        concurrency: Optional[int] = None
    ) -> QueryBatch:
        """
        Resolve names and block until the run completes.

        Returns the batch of this run, even if another caller has started a
        newer run in the meantime (a superseded run returns the partial batch
        it was replaced with).
        """
        run = self.start(names, api_key=api_key, concurrency=concurrency)
        run.wait()
        return run.batch

    def stream(
        self,
        names: Sequence[str],
        api_key: Optional[str] = None,
        concurrency: Optional[int] = None
    ) -> Iterator[QueryUpdate]:
        """
        Resolve names and yield every transition of the run.

        The Pending skeleton comes first. The iterator ends when the run
        completes.
        """
        updates: "queue.Queue[Optional[QueryUpdate]]" = queue.Queue()
        generation: List[int] = []

        def _listener(update: QueryUpdate):
            if not generation or update.generation == generation[0]:
                updates.put(update)

        self.subscribe(_listener)
        try:
            run = self.start(names, api_key=api_key, concurrency=concurrency)
            generation.append(run.generation)
            threading.Thread(
                target=lambda: (run.wait(), updates.put(None)), daemon=True
            ).start()

            while True:
                update = updates.get()
                if update is None:
                    break
                if update.generation == run.generation:
                    yield update
        finally:
            self.unsubscribe(_listener)

    def reset(self):
        """Cancel any run in flight and clear the batch."""
        with self._lock:
            self._retire_current_run()
            self._generation += 1
            self._current_run = None
            self._outcomes = {}

    # Workers

    def _worker(self, run: QueryRun, work: "queue.Queue[str]", api_key: Optional[str]):
        while not run.cancelled:
            try:
                name = work.get_nowait()
            except queue.Empty:
                return

            if not self._publish(run, name, QueryOutcome.in_progress()):
                return

            try:
                label = self.resolver.resolve(name, api_key=api_key, cancel_event=run.cancel_event)
                outcome = QueryOutcome.success(label)
            except QueryCancelledError:
                logger.debug(f"Abandoned '{name}' from cancelled run {run.generation}")
                return
            except LabelLookupError as e:
                outcome = QueryOutcome.failure(str(e))
            except Exception as e:
                logger.exception(f"Unexpected error resolving '{name}': {e}")
                outcome = QueryOutcome.failure(str(e) or e.__class__.__name__)

            if self._publish(run, name, outcome):
                log_query_outcome(name, outcome.status.value, outcome.error)

    def _publish(self, run: QueryRun, name: str, outcome: QueryOutcome) -> bool:
        """
        Apply one transition to the shared batch.

        Returns False if the write was discarded (stale run or a transition
        out of a terminal state).
        """
        with self._lock:
            if run.generation != self._generation:
                logger.debug(f"Discarding {outcome.status.value} for '{name}' from stale run {run.generation}")
                return False

            current = self._outcomes.get(name)
            if current is None or current.is_terminal:
                return False

            self._outcomes[name] = outcome
            self._notify(QueryUpdate(run.generation, name, outcome))
            return True

    def _notify(self, update: QueryUpdate):
        # Called with the lock held so per-name ordering is preserved
        for listener in list(self._listeners):
            try:
                listener(update)
            except Exception as e:
                logger.warning(f"Query listener failed for '{update.name}': {e}")

    def _finish_run(self, run: QueryRun, futures: List[Future]):
        batch = None
        try:
            wait(futures)
            for future in futures:
                if future.exception() is not None:
                    logger.error(f"Query worker for run {run.generation} crashed: {future.exception()}")

            with self._lock:
                if run.generation != self._generation:
                    return
                reason = CANCELLED_MESSAGE if run.cancelled else WORKER_STOPPED_MESSAGE
                self._fail_unfinished(run, reason)
                batch = QueryBatch.snapshot(self._generation, self._outcomes)

            counts = batch.counts()
            log_batch_end(run.generation, {
                "total": len(batch),
                "successful": counts[QueryStatus.SUCCESS],
                "failed": counts[QueryStatus.FAILURE],
            })
        finally:
            run._settle(batch)

    def _fail_unfinished(self, run: QueryRun, reason: str):
        # Lock held; every name of a settled current run ends terminal
        for name, outcome in list(self._outcomes.items()):
            if not outcome.is_terminal:
                failure = QueryOutcome.failure(reason)
                self._outcomes[name] = failure
                self._notify(QueryUpdate(run.generation, name, failure))
                log_query_outcome(name, failure.status.value, reason)

    def _retire_current_run(self):
        # Lock held
        run = self._current_run
        if run is None:
            return
        run.cancel()
        if not run.done and run.batch is None:
            run.batch = QueryBatch.snapshot(run.generation, self._outcomes)

    def _empty_run(self) -> QueryRun:
        run = QueryRun(self._generation, [])
        run._settle(QueryBatch.snapshot(self._generation, self._outcomes))
        return run
