from __future__ import annotations

import threading
from concurrent.futures import Future
from typing import Any, Callable, Hashable


class SingleFlight:
    """Collapse concurrent calls sharing a key into one execution.

    The first caller for a key runs ``fn``; callers arriving while it is in
    flight block on the same future and get the same result or exception.
    The key is released before the outcome is published, so the next call
    after completion always starts a fresh run.
    """

    def __init__(self) -> None:
        self._inflight: dict[Hashable, Future] = {}
        self._lock = threading.Lock()

    def run(self, key: Hashable, fn: Callable[[], Any]) -> Any:
        with self._lock:
            future = self._inflight.get(key)
            leader = future is None
            if leader:
                future = Future()
                self._inflight[key] = future

        if not leader:
            return future.result()

        try:
            result = fn()
        except BaseException as exc:
            self._release(key)
            future.set_exception(exc)
            raise
        self._release(key)
        future.set_result(result)
        return result

    def in_flight(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._inflight

    def _release(self, key: Hashable) -> None:
        with self._lock:
            self._inflight.pop(key, None)


sync_guard = SingleFlight()
