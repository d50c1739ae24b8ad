"""Tests for the once-initialised model handle."""

import threading
import time

import pytest

from docseek.embeddings.lazy import LazyHandle


def test_loads_once_and_caches():
    calls = []
    handle = LazyHandle(lambda: calls.append(1) or "model")
    assert not handle.ready
    assert handle.get() == "model"
    assert handle.get() == "model"
    assert calls == [1]
    assert handle.ready


def test_concurrent_callers_share_one_load():
    calls = []
    started = threading.Event()

    def slow_loader():
        calls.append(1)
        started.set()
        time.sleep(0.2)
        return object()

    handle = LazyHandle(slow_loader)
    results = []
    threads = [threading.Thread(target=lambda: results.append(handle.get())) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(calls) == 1
    assert len(results) == 8
    assert all(r is results[0] for r in results)


def test_failure_reaches_every_waiter_then_retries():
    attempts = []
    release = threading.Event()

    def flaky_loader():
        attempts.append(1)
        if len(attempts) == 1:
            release.wait(1)
            raise RuntimeError("download failed")
        return "ok"

    handle = LazyHandle(flaky_loader)
    errors = []

    def worker():
        try:
            handle.get()
        except RuntimeError as e:
            errors.append(str(e))

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    time.sleep(0.1)
    release.set()
    for t in threads:
        t.join()

    assert errors == ["download failed"] * 4
    assert not handle.ready

    assert handle.get() == "ok"
    assert len(attempts) == 2


def test_reset_forces_reload():
    calls = []
    handle = LazyHandle(lambda: calls.append(1) or len(calls))
    assert handle.get() == 1
    handle.reset()
    assert handle.get() == 2


def test_loader_exception_type_preserved():
    handle = LazyHandle(lambda: (_ for _ in ()).throw(ValueError("bad")))
    with pytest.raises(ValueError):
        handle.get()
