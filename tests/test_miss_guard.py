import threading
import time

from mealy.services.miss_guard import BucketLocked, Unlocked, create_miss_guard


def test_unlocked_never_asks_for_recheck():
    with Unlocked().hold("k") as recheck:
        assert recheck is False


def test_bucket_locked_asks_for_recheck_and_cleans_up():
    guard = BucketLocked()
    with guard.hold("k") as recheck:
        assert recheck is True
        assert guard.active_buckets() == 1
    assert guard.active_buckets() == 0


def test_bucket_locked_releases_on_error():
    guard = BucketLocked()
    try:
        with guard.hold("k"):
            raise RuntimeError("boom")
    except RuntimeError:
        pass
    assert guard.active_buckets() == 0
    with guard.hold("k") as recheck:
        assert recheck


def test_different_buckets_do_not_block_each_other():
    guard = BucketLocked()
    with guard.hold("a"):
        with guard.hold("b"):
            assert guard.active_buckets() == 2


def test_same_bucket_is_serialized():
    guard = BucketLocked()
    lock = threading.Lock()
    state = {"inside": 0, "peak": 0}

    def worker():
        with guard.hold("k"):
            with lock:
                state["inside"] += 1
                state["peak"] = max(state["peak"], state["inside"])
            time.sleep(0.02)
            with lock:
                state["inside"] -= 1

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert state["peak"] == 1
    assert guard.active_buckets() == 0


def test_factory():
    assert create_miss_guard(True).kind == "bucket_locked"
    assert create_miss_guard(False).kind == "unlocked"
