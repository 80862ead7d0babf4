"""Worker pool that hands results back in submission order."""

from __future__ import annotations

import threading
from collections import deque
from collections.abc import Callable
from typing import Any, Generic, TypeVar

In = TypeVar("In")
Out = TypeVar("Out")

_EMPTY: Any = object()


class _Slot:
    __slots__ = ("output", "error", "ready")

    def __init__(self) -> None:
        self.output: Any = None
        self.error: BaseException | None = None
        self.ready = False


class OrderedThreadPool(Generic[In, Out]):
    """Runs ``function`` on submitted items in worker threads.

    ``submit`` blocks until a worker has taken the previous item. Results are
    popped in the order the items were submitted.
    """

    def __init__(self, function: Callable[[In], Out], thread_count: int) -> None:
        if thread_count < 1:
            raise ValueError("thread_count must be at least 1")
        self._function = function
        self._input_cond = threading.Condition()
        self._output_cond = threading.Condition()
        self._current: Any = _EMPTY
        self._queue: deque[_Slot] = deque()
        self._finished = False
        self._threads = [
            threading.Thread(target=self._work, daemon=True) for _ in range(thread_count)
        ]
        for thread in self._threads:
            thread.start()

    def __enter__(self) -> OrderedThreadPool[In, Out]:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def submit(self, item: In) -> None:
        """Hand ``item`` to the next free worker, waiting for one if needed."""
        with self._input_cond:
            while self._current is not _EMPTY and not self._finished:
                self._input_cond.wait()
            if self._finished:
                raise RuntimeError("pool is closed")
            slot = _Slot()
            with self._output_cond:
                self._queue.append(slot)
            self._current = (item, slot)
            self._input_cond.notify_all()

    def output_available(self) -> bool:
        """Return True if the oldest pending result is ready."""
        with self._output_cond:
            return bool(self._queue) and self._queue[0].ready

    def pop_output(self) -> Out:
        """Wait for and return the oldest result; re-raise its exception if it failed."""
        with self._output_cond:
            if not self._queue:
                raise LookupError("waiting for output when no output queued")
            while not self._queue[0].ready and not self._finished:
                self._output_cond.wait()
            if not self._queue[0].ready:
                raise RuntimeError("pool closed before the output was produced")
            slot = self._queue.popleft()
        if slot.error is not None:
            raise slot.error
        return slot.output

    def running(self) -> bool:
        """Return True while any submitted item has not been popped."""
        with self._output_cond:
            return bool(self._queue)

    def close(self) -> None:
        """Stop the workers and wait for them to exit."""
        with self._input_cond:
            self._finished = True
            self._input_cond.notify_all()
        with self._output_cond:
            self._output_cond.notify_all()
        for thread in self._threads:
            thread.join()

    def _work(self) -> None:
        while True:
            with self._input_cond:
                while not self._finished and self._current is _EMPTY:
                    self._input_cond.wait()
                if self._finished:
                    return
                item, slot = self._current
                self._current = _EMPTY
                self._input_cond.notify_all()
            try:
                slot.output = self._function(item)
            except BaseException as exc:  # handed to the caller of pop_output
                slot.error = exc
            with self._output_cond:
                slot.ready = True
                self._output_cond.notify_all()