"""Bounded lane queues and the worker pools that drain them.

A lane owns one LaneQueue and a fixed pool of worker threads. The
coordinating thread submits items; when the queue is at capacity submit()
blocks (or raises LaneFullError under the reject policy), which is how a
slow model backend slows down fetching instead of letting memory grow.

Ordering: items are dequeued in the order they were enqueued, but workers
run independently, so results complete in no particular order.

Shutdown: close() stops new submissions; workers keep draining whatever is
queued and exit once the queue is empty.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import TYPE_CHECKING

from loguru import logger

from .errors import LaneClosedError, LaneFullError, categorize_error
from .models import (
    TERMINAL_STATE,
    ContentClass,
    EnqueuePolicy,
    FetchedItem,
    ItemState,
    ProcessingResult,
)

if TYPE_CHECKING:
    from .progress_db import ProgressStore

log = logger.bind(stage="lane")

LaneHandler = Callable[[FetchedItem], ProcessingResult]


class LaneQueue:
    """Bounded multi-producer/multi-consumer FIFO of FetchedItem.

    Invariant: 0 <= len(queue) <= capacity. An item (by remote path) is
    accepted at most once over the queue's lifetime.
    """

    def __init__(self, capacity: int, policy: EnqueuePolicy = EnqueuePolicy.BLOCK) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self.policy = policy
        self._items: deque[FetchedItem] = deque()
        self._seen: set[str] = set()
        self._closed = False
        self._cond = threading.Condition()
        self.high_water = 0

    def __len__(self) -> int:
        with self._cond:
            return len(self._items)

    @property
    def closed(self) -> bool:
        return self._closed

    def put(self, item: FetchedItem, timeout: float | None = None) -> bool:
        """Enqueue item. Returns False if it was already accepted before.

        Blocks while full under the block policy (up to timeout, then
        LaneFullError); raises LaneFullError at once under the reject
        policy. Raises LaneClosedError if the queue is or becomes closed.
        """
        with self._cond:
            if self._closed:
                raise LaneClosedError("lane queue is closed")
            if item.remote_path in self._seen:
                log.warning(f"Refusing duplicate enqueue of {item.remote_path}")
                return False
            deadline = None if timeout is None else time.monotonic() + timeout
            while len(self._items) >= self.capacity:
                if self.policy == EnqueuePolicy.REJECT:
                    raise LaneFullError(f"lane queue full ({self.capacity})")
                if deadline is None:
                    self._cond.wait()
                else:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        raise LaneFullError(f"lane queue still full after {timeout}s")
                    self._cond.wait(remaining)
                if self._closed:
                    raise LaneClosedError("lane queue closed while waiting")
            self._items.append(item)
            self._seen.add(item.remote_path)
            self.high_water = max(self.high_water, len(self._items))
            self._cond.notify_all()
            return True

    def get(self, timeout: float | None = None) -> FetchedItem | None:
        """Dequeue the oldest item. Returns None once closed and drained.

        Raises TimeoutError if timeout elapses with nothing to return.
        """
        with self._cond:
            deadline = None if timeout is None else time.monotonic() + timeout
            while not self._items:
                if self._closed:
                    return None
                if deadline is None:
                    self._cond.wait()
                else:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        raise TimeoutError("no item within timeout")
                    self._cond.wait(remaining)
            item = self._items.popleft()
            self._cond.notify_all()
            return item

    def close(self) -> None:
        """Refuse further puts and wake every waiter."""
        with self._cond:
            self._closed = True
            self._cond.notify_all()


class Lane:
    """One content class: a bounded queue plus the worker pool draining it."""

    def __init__(
        self,
        content_class: ContentClass,
        handler: LaneHandler,
        workers: int = 1,
        capacity: int = 50,
        policy: EnqueuePolicy = EnqueuePolicy.BLOCK,
        progress: ProgressStore | None = None,
        source_id: str = "",
        on_result: Callable[[FetchedItem, ProcessingResult], None] | None = None,
    ) -> None:
        self.content_class = content_class
        self.name = str(content_class)
        self.handler = handler
        self.workers = workers
        self.queue = LaneQueue(capacity, policy)
        self.progress = progress
        self.source_id = source_id
        self.on_result = on_result
        self.states: dict[str, ItemState] = {}
        self._results: list[ProcessingResult] = []
        self._lock = threading.Lock()
        self._executor: ThreadPoolExecutor | None = None
        self._futures: list[Future] = []

    @property
    def results(self) -> list[ProcessingResult]:
        """Results recorded so far, in completion order."""
        with self._lock:
            return list(self._results)

    def start(self) -> None:
        if self._executor is not None:
            return
        self._executor = ThreadPoolExecutor(
            max_workers=self.workers,
            thread_name_prefix=f"{self.name}-lane",
        )
        self._futures = [self._executor.submit(self._work) for _ in range(self.workers)]
        log.info(f"{self.name} lane started: workers={self.workers} capacity={self.queue.capacity}")

    def submit(self, item: FetchedItem, timeout: float | None = None) -> bool:
        """Enqueue item (state queued). Blocks while the queue is full."""
        with self._lock:
            if item.remote_path in self.states:
                log.warning(f"{item.remote_path} already submitted to {self.name} lane")
                return False
            self.states[item.remote_path] = ItemState.QUEUED
        try:
            accepted = self.queue.put(item, timeout=timeout)
        except (LaneClosedError, LaneFullError):
            with self._lock:
                del self.states[item.remote_path]
            raise
        return accepted

    def close(self) -> None:
        self.queue.close()

    def join(self, timeout: float | None = None) -> bool:
        """Wait for workers to drain the queue and exit.

        Returns False if timeout elapsed with workers still busy; in-flight
        collaborator calls are never interrupted.
        """
        if self._executor is None:
            return True
        done, not_done = wait(self._futures, timeout=timeout)
        for future in done:
            exc = future.exception()
            if exc is not None:
                log.error(f"{self.name} lane worker died: {exc}")
        if not_done:
            log.warning(f"{self.name} lane: {len(not_done)} workers still busy after {timeout}s")
            self._executor.shutdown(wait=False)
            return False
        self._executor.shutdown(wait=True)
        self._executor = None
        log.info(f"{self.name} lane drained: {len(self._results)} results")
        return True

    def _work(self) -> None:
        while True:
            item = self.queue.get()
            if item is None:
                return
            self._set_state(item, ItemState.IN_PROGRESS)
            result = self._process(item)
            self._record(item, result)

    def _process(self, item: FetchedItem) -> ProcessingResult:
        try:
            return self.handler(item)
        except Exception as e:
            log.exception(f"{self.name} handler crashed on {item.remote_path}")
            return ProcessingResult.failed(item.remote_path, str(e), categorize_error(e))

    def _record(self, item: FetchedItem, result: ProcessingResult) -> None:
        if self.progress is not None:
            try:
                if result.is_final:
                    self.progress.mark_done(item.remote_path, result, item, self.source_id)
                else:
                    self.progress.record_failure(item.remote_path, result, item, self.source_id)
            except Exception as e:
                log.error(f"Could not record progress for {item.remote_path}: {e}")

        self._set_state(item, TERMINAL_STATE[result.status])
        with self._lock:
            self._results.append(result)

        if result.error:
            log.error(f"[{self.name}] {item.remote_path}: failed ({result.category}): {result.error}")
        elif result.reason:
            log.info(f"[{self.name}] {item.remote_path}: skipped ({result.reason})")
        else:
            log.info(f"[{self.name}] {item.remote_path}: completed")

        if self.on_result is not None:
            try:
                self.on_result(item, result)
            except Exception as e:
                log.error(f"on_result callback failed for {item.remote_path}: {e}")

    def _set_state(self, item: FetchedItem, state: ItemState) -> None:
        with self._lock:
            self.states[item.remote_path] = state
