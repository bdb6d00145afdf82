import threading
import time

from passkey_mapper.utils.locks import KeyedLock


def test_entries_are_released():
    locks = KeyedLock()

    with locks.hold("a"):
        with locks.hold("b"):
            assert len(locks) == 2
    assert len(locks) == 0


def test_same_key_is_exclusive():
    locks = KeyedLock()
    active = []
    overlaps = []

    def worker():
        with locks.hold("cred-A"):
            active.append(1)
            if len(active) > 1:
                overlaps.append(True)
            time.sleep(0.01)
            active.pop()

    threads = [threading.Thread(target=worker) for _ in range(5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert overlaps == []
    assert len(locks) == 0


def test_distinct_keys_do_not_block():
    locks = KeyedLock()
    entered = threading.Event()

    def other():
        with locks.hold("b"):
            entered.set()

    with locks.hold("a"):
        t = threading.Thread(target=other)
        t.start()
        assert entered.wait(timeout=1)
        t.join()


def test_released_on_exception():
    locks = KeyedLock()
    try:
        with locks.hold("a"):
            raise RuntimeError("boom")
    except RuntimeError:
        pass

    assert len(locks) == 0
    with locks.hold("a"):
        pass
