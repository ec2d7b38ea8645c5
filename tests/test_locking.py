import threading
import time

from geoprox.core.locking import ReadWriteLock


def test_readers_share_the_lock():
    lock = ReadWriteLock()
    both_inside = threading.Barrier(2, timeout=2)
    errors: list[BaseException] = []

    def reader():
        try:
            with lock.read():
                # Both readers must be inside at the same time to pass the barrier.
                both_inside.wait()
        except BaseException as e:  # pragma: no cover - surfaced by the assert below
            errors.append(e)

    threads = [threading.Thread(target=reader) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=5)
    assert errors == []


def test_writer_waits_for_readers_to_drain():
    lock = ReadWriteLock()
    events: list[str] = []
    writer_started = threading.Event()

    def writer():
        writer_started.set()
        with lock.write():
            events.append("write")

    lock.acquire_read()
    t = threading.Thread(target=writer)
    t.start()
    writer_started.wait(timeout=2)
    time.sleep(0.05)
    events.append("read-done")
    lock.release_read()
    t.join(timeout=5)

    assert events == ["read-done", "write"]


def test_waiting_writer_blocks_new_readers():
    lock = ReadWriteLock()
    events: list[str] = []

    lock.acquire_read()

    def writer():
        with lock.write():
            events.append("write")

    def late_reader():
        with lock.read():
            events.append("late-read")

    w = threading.Thread(target=writer)
    w.start()
    # Give the writer time to register itself as waiting.
    time.sleep(0.05)
    r = threading.Thread(target=late_reader)
    r.start()
    time.sleep(0.05)
    assert events == []

    lock.release_read()
    w.join(timeout=5)
    r.join(timeout=5)
    assert events == ["write", "late-read"]


def test_writer_that_gives_up_wakes_blocked_readers():
    lock = ReadWriteLock()
    real_wait = lock._cond.wait
    events: list[str] = []

    def wait(timeout=None):
        if threading.current_thread().name == "writer":
            real_wait(0.2)
            raise RuntimeError("interrupted")
        return real_wait(timeout)

    lock._cond.wait = wait  # type: ignore[method-assign]
    lock.acquire_read()

    def writer():
        try:
            lock.acquire_write()
        except RuntimeError:
            events.append("writer-gave-up")

    def late_reader():
        with lock.read():
            events.append("late-read")

    w = threading.Thread(target=writer, name="writer")
    w.start()
    time.sleep(0.05)
    r = threading.Thread(target=late_reader)
    r.start()
    w.join(timeout=5)
    r.join(timeout=5)
    lock.release_read()

    assert sorted(events) == ["late-read", "writer-gave-up"]
