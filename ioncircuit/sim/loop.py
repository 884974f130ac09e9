"""Single-writer command queue that owns the simulation world.

All world mutation happens on one dedicated thread. Network tasks submit a
closure and get a concurrent.futures.Future back; asyncio callers await it via
asyncio.wrap_future.

Usage:
    loop = SimulationLoop()
    loop.start()
    result = loop.submit(controller.step, action).result()
    loop.stop()

    # Or as a context manager:
    with SimulationLoop() as loop:
        ...
"""

from __future__ import annotations

import logging
import queue
import threading
from concurrent.futures import Future
from typing import Any, Callable, TypeVar

T = TypeVar("T")

logger = logging.getLogger("ioncircuit.sim")


class SimulationLoop:
    def __init__(self, name: str = "ioncircuit-sim"):
        self.name = name
        self._queue: queue.Queue[tuple[Future[Any], Callable[..., Any], tuple[Any, ...]] | None] = queue.Queue()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self.commands_run = 0

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def in_loop_thread(self) -> bool:
        return self._thread is not None and threading.current_thread() is self._thread

    def start(self) -> None:
        with self._lock:
            if self.is_running:
                return
            self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
            self._thread.start()
        logger.debug(f"Simulation loop {self.name} started")

    def submit(self, fn: Callable[..., T], *args: Any) -> Future[T]:
        if not self.is_running:
            raise RuntimeError(f"simulation loop {self.name} is not running")
        if self.in_loop_thread():
            # Would deadlock if the caller then waited on the future.
            raise RuntimeError("submit() called from the simulation thread itself")
        fut: Future[T] = Future()
        self._queue.put((fut, fn, args))
        return fut

    def call(self, fn: Callable[..., T], *args: Any, timeout: float | None = None) -> T:
        """Blocking submit-and-wait, for synchronous hosts and tests."""
        return self.submit(fn, *args).result(timeout=timeout)

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            if item is None:
                break
            fut, fn, args = item
            # Skip commands whose caller already gave up (e.g. step timeout).
            if not fut.set_running_or_notify_cancel():
                continue
            try:
                result = fn(*args)
            except Exception as exc:
                fut.set_exception(exc)
            else:
                fut.set_result(result)
            finally:
                self.commands_run += 1

    def stop(self, timeout: float | None = 5.0) -> None:
        with self._lock:
            thread = self._thread
            if thread is None:
                return
            self._queue.put(None)
        thread.join(timeout=timeout)
        if thread.is_alive():
            logger.warning(f"Simulation loop {self.name} did not stop within {timeout}s")
        else:
            self._thread = None
            logger.debug(f"Simulation loop {self.name} stopped")

    def __enter__(self) -> SimulationLoop:
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()
