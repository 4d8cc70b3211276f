import threading
import time

from sloop.sleeper import SleepWithCancel


def _timed_sleep(sleeper, seconds):
    start = time.monotonic()
    sleeper.sleep(seconds)
    return time.monotonic() - start


def test_sleeps_after_cancel_return_immediately():
    s = SleepWithCancel()
    s.cancel()
    elapsed = [_timed_sleep(s, 60), _timed_sleep(s, 60), _timed_sleep(s, 3600)]
    assert sum(elapsed) < 100


def test_sleep_waits_without_cancel():
    s = SleepWithCancel()
    elapsed = _timed_sleep(s, 0.05)
    assert elapsed >= 0.04


def test_cancel_wakes_a_sleeping_thread():
    s = SleepWithCancel()
    timer = threading.Timer(0.05, s.cancel)
    timer.start()
    try:
        elapsed = _timed_sleep(s, 3600)
    finally:
        timer.cancel()
        timer.join(timeout=5)
    assert 0.04 <= elapsed < 5
    assert _timed_sleep(s, 3600) < 5