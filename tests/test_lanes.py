"""Tests for lanes.py -- bounded LaneQueue and Lane worker pools."""

import threading
import time
from pathlib import Path

import pytest

from library_digest.errors import LaneClosedError, LaneFullError
from library_digest.lanes import Lane, LaneQueue
from library_digest.models import (
    ContentClass,
    EnqueuePolicy,
    ErrorCategory,
    FetchedItem,
    ItemState,
    ProcessingResult,
    ResultStatus,
)

from conftest import MODIFIED


def _item(path):
    return FetchedItem(
        remote_path=path,
        local_path=Path("/local") / path,
        modified_at=MODIFIED,
        content_class=ContentClass.DOCUMENT,
    )


class TestLaneQueue:
    def test_fifo(self):
        q = LaneQueue(3)
        for name in ("a", "b", "c"):
            q.put(_item(name))
        assert [q.get().remote_path for _ in range(3)] == ["a", "b", "c"]

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            LaneQueue(0)

    def test_duplicate_refused(self):
        q = LaneQueue(3)
        assert q.put(_item("a")) is True
        assert q.put(_item("a")) is False
        assert len(q) == 1

    def test_duplicate_refused_after_dequeue(self):
        q = LaneQueue(3)
        q.put(_item("a"))
        q.get()
        assert q.put(_item("a")) is False

    def test_reject_policy_when_full(self):
        q = LaneQueue(2, EnqueuePolicy.REJECT)
        q.put(_item("a"))
        q.put(_item("b"))
        with pytest.raises(LaneFullError):
            q.put(_item("c"))
        assert len(q) == 2

    def test_block_policy_times_out(self):
        q = LaneQueue(1)
        q.put(_item("a"))
        with pytest.raises(LaneFullError, match="still full"):
            q.put(_item("b"), timeout=0.05)

    def test_block_policy_waits_for_space(self):
        q = LaneQueue(1)
        q.put(_item("a"))
        done = threading.Event()

        def producer():
            q.put(_item("b"))
            done.set()

        t = threading.Thread(target=producer)
        t.start()
        assert not done.wait(0.1)
        assert q.get().remote_path == "a"
        t.join(2)
        assert done.is_set()
        assert q.high_water == 1

    def test_put_after_close(self):
        q = LaneQueue(1)
        q.close()
        with pytest.raises(LaneClosedError):
            q.put(_item("a"))

    def test_close_wakes_blocked_producer(self):
        q = LaneQueue(1)
        q.put(_item("a"))
        errors = []

        def producer():
            try:
                q.put(_item("b"))
            except LaneClosedError as e:
                errors.append(e)

        t = threading.Thread(target=producer)
        t.start()
        time.sleep(0.05)
        q.close()
        t.join(2)
        assert len(errors) == 1

    def test_get_drains_after_close(self):
        q = LaneQueue(2)
        q.put(_item("a"))
        q.close()
        assert q.get().remote_path == "a"
        assert q.get() is None

    def test_get_timeout(self):
        with pytest.raises(TimeoutError):
            LaneQueue(1).get(timeout=0.01)

    def test_put_timeout_survives_spurious_wakeups(self):
        q = LaneQueue(1)
        q.put(_item("a"))
        stop = _keep_waking(q)
        try:
            started = time.monotonic()
            with pytest.raises(LaneFullError, match="still full"):
                q.put(_item("b"), timeout=0.2)
            assert time.monotonic() - started < 1.5
        finally:
            stop.set()

    def test_get_timeout_survives_spurious_wakeups(self):
        q = LaneQueue(1)
        stop = _keep_waking(q)
        try:
            started = time.monotonic()
            with pytest.raises(TimeoutError):
                q.get(timeout=0.2)
            assert time.monotonic() - started < 1.5
        finally:
            stop.set()


def _keep_waking(q):
    """Notify q's waiters every 20ms, as activity on other items would."""
    stop = threading.Event()

    def notifier():
        while not stop.wait(0.02):
            with q._cond:
                q._cond.notify_all()

    threading.Thread(target=notifier, daemon=True).start()
    return stop


class TestLane:
    def test_processes_all_items(self):
        lane = Lane(
            ContentClass.DOCUMENT,
            lambda item: ProcessingResult.ok(item.remote_path, "done"),
            workers=3,
            capacity=2,
        )
        lane.start()
        for i in range(10):
            lane.submit(_item(f"f{i}"))
        lane.close()
        assert lane.join(timeout=5) is True

        assert sorted(r.source_path for r in lane.results) == sorted(f"f{i}" for i in range(10))
        assert set(lane.states.values()) == {ItemState.COMPLETED}

    def test_terminal_states(self):
        def handler(item):
            if item.remote_path == "blank":
                return ProcessingResult.skipped(item.remote_path, "blank document")
            if item.remote_path == "bad":
                return ProcessingResult.failed(item.remote_path, "unreadable")
            return ProcessingResult.ok(item.remote_path, "s")

        lane = Lane(ContentClass.DOCUMENT, handler)
        lane.start()
        for name in ("good", "blank", "bad"):
            lane.submit(_item(name))
        lane.close()
        lane.join(timeout=5)

        assert lane.states == {
            "good": ItemState.COMPLETED,
            "blank": ItemState.SKIPPED,
            "bad": ItemState.FAILED,
        }

    def test_handler_exception_becomes_failed_result(self):
        def handler(item):
            raise RuntimeError("kaboom")

        lane = Lane(ContentClass.IMAGE, handler)
        lane.start()
        lane.submit(_item("x"))
        lane.close()
        lane.join(timeout=5)

        [result] = lane.results
        assert result.status == ResultStatus.FAILED
        assert result.category == ErrorCategory.PERMANENT
        assert "kaboom" in result.error

    def test_duplicate_submit(self):
        lane = Lane(ContentClass.DOCUMENT, lambda item: ProcessingResult.ok(item.remote_path, ""))
        assert lane.submit(_item("a")) is True
        assert lane.submit(_item("a")) is False

    def test_submit_after_close(self):
        lane = Lane(ContentClass.DOCUMENT, lambda item: None)
        lane.close()
        with pytest.raises(LaneClosedError):
            lane.submit(_item("a"))
        assert lane.states == {}

    def test_records_progress(self, progress):
        def handler(item):
            if item.remote_path == "retry":
                return ProcessingResult.failed(item.remote_path, "503", ErrorCategory.TRANSIENT)
            return ProcessingResult.ok(item.remote_path, "s")

        lane = Lane(ContentClass.DOCUMENT, handler, progress=progress, source_id="ftp://h:21/")
        lane.start()
        lane.submit(_item("ok"))
        lane.submit(_item("retry"))
        lane.close()
        lane.join(timeout=5)

        assert progress.is_done("ok") is True
        assert progress.is_done("retry") is False
        assert progress.get("retry")["attempts"] == 1
        assert progress.get_marker("ftp://h:21/")["last_path"] == "ok"

    def test_on_result_callback(self):
        seen = []
        lane = Lane(
            ContentClass.DOCUMENT,
            lambda item: ProcessingResult.ok(item.remote_path, "s"),
            on_result=lambda item, result: seen.append((item.remote_path, result.status)),
        )
        lane.start()
        lane.submit(_item("a"))
        lane.close()
        lane.join(timeout=5)
        assert seen == [("a", ResultStatus.OK)]

    def test_join_timeout_with_busy_worker(self):
        gate = threading.Event()

        def handler(item):
            gate.wait(5)
            return ProcessingResult.ok(item.remote_path, "s")

        lane = Lane(ContentClass.DOCUMENT, handler)
        lane.start()
        lane.submit(_item("slow"))
        lane.close()
        assert lane.join(timeout=0.05) is False
        gate.set()

    def test_worker_threads_named_after_lane(self):
        names = []

        def handler(item):
            names.append(threading.current_thread().name)
            return ProcessingResult.ok(item.remote_path, "s")

        lane = Lane(ContentClass.IMAGE, handler)
        lane.start()
        lane.submit(_item("a"))
        lane.close()
        lane.join(timeout=5)
        assert names[0].startswith("image-lane")
