"""One-time initialisation for expensive model handles."""

import threading
from concurrent.futures import Future
from typing import Callable, Generic, TypeVar

T = TypeVar("T")


class LazyHandle(Generic[T]):
    """Load a value once, on first use, and share it across threads.

    The first caller runs the loader; callers arriving while it runs block
    on the same future and see the same result or exception. After a failed
    attempt the next call starts a fresh one.
    """

    def __init__(self, loader: Callable[[], T]):
        self._loader = loader
        self._lock = threading.Lock()
        self._future: Future | None = None

    def get(self) -> T:
        with self._lock:
            future = self._future
            owner = future is None or (future.done() and future.exception() is not None)
            if owner:
                future = self._future = Future()

        if owner:
            try:
                future.set_result(self._loader())
            except BaseException as e:
                future.set_exception(e)
        return future.result()

    @property
    def ready(self) -> bool:
        future = self._future
        return future is not None and future.done() and future.exception() is None

    def reset(self) -> None:
        with self._lock:
            self._future = None
