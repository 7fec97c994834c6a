import threading
import time

from nodrake_vault.utils.keyed_lock import KeyedLock


def test_same_key_is_mutually_exclusive():
    locks = KeyedLock()
    inside = []
    overlaps = []

    def worker():
        with locks.hold(("user-1", "spotify")):
            inside.append(1)
            if len(inside) > 1:
                overlaps.append(True)
            time.sleep(0.01)
            inside.pop()

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert overlaps == []


def test_different_keys_do_not_block_each_other():
    locks = KeyedLock()
    with locks.hold("a"):
        with locks.hold("b", timeout=0.1) as acquired:
            assert acquired is True


def test_timeout_yields_false():
    locks = KeyedLock()
    with locks.hold("a"):
        result = {}

        def contender():
            with locks.hold("a", timeout=0.05) as acquired:
                result["acquired"] = acquired

        t = threading.Thread(target=contender)
        t.start()
        t.join()

    assert result["acquired"] is False


def test_locks_are_dropped_after_release():
    locks = KeyedLock()
    with locks.hold("a"):
        assert locks.active_keys() == 1
    assert locks.active_keys() == 0
