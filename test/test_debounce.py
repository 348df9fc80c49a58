import os
import sys
import threading
import time

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from layerflow.debounce import Debouncer


def test_burst_delivers_only_the_last_result():
    debouncer = Debouncer(0.05)
    results = []
    done = threading.Event()

    def deliver(value):
        results.append(value)
        done.set()

    for i in range(1, 4):
        debouncer.schedule(lambda i=i: i, deliver)
    assert done.wait(2)
    time.sleep(0.1)
    assert results == [3]
    assert not debouncer.pending


def test_superseded_run_is_dropped_after_computing():
    debouncer = Debouncer(0.01)
    started = threading.Event()
    release = threading.Event()
    finished = threading.Event()
    results = []
    delivered = threading.Event()

    def slow():
        started.set()
        release.wait(2)
        finished.set()
        return "old"

    def deliver(value):
        results.append(value)
        delivered.set()

    debouncer.schedule(slow, deliver)
    assert started.wait(2)
    debouncer.schedule(lambda: "new", deliver)
    assert delivered.wait(2)
    release.set()
    assert finished.wait(2)
    time.sleep(0.05)
    assert results == ["new"]


def test_cancel_drops_pending_run():
    debouncer = Debouncer(0.05)
    results = []
    debouncer.schedule(lambda: 1, results.append)
    assert debouncer.pending
    debouncer.cancel()
    assert not debouncer.pending
    time.sleep(0.15)
    assert results == []


def test_failed_computation_delivers_nothing():
    debouncer = Debouncer(0.01)
    results = []

    def broken():
        raise RuntimeError("bad graph")

    debouncer.schedule(broken, results.append)
    time.sleep(0.15)
    assert results == []
