import threading
import time

from plagiarism_detection.locks import ReadWriteLock


class TestReadWriteLock:
    def test_readers_share_the_lock(self):
        lock = ReadWriteLock()
        inside = threading.Barrier(3, timeout=2)

        def reader():
            with lock.read_locked():
                inside.wait()

        threads = [threading.Thread(target=reader) for _ in range(3)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=2)
        assert not any(thread.is_alive() for thread in threads)

    def test_writer_waits_for_readers(self):
        lock = ReadWriteLock()
        events = []
        lock.acquire_read()

        def writer():
            with lock.write_locked():
                events.append("write")

        thread = threading.Thread(target=writer)
        thread.start()
        time.sleep(0.05)
        events.append("read-done")
        lock.release_read()
        thread.join(timeout=2)

        assert events == ["read-done", "write"]

    def test_waiting_writer_blocks_new_readers(self):
        lock = ReadWriteLock()
        events = []
        lock.acquire_read()

        def writer():
            with lock.write_locked():
                events.append("write")

        def late_reader():
            with lock.read_locked():
                events.append("late-read")

        writer_thread = threading.Thread(target=writer)
        writer_thread.start()
        time.sleep(0.05)
        reader_thread = threading.Thread(target=late_reader)
        reader_thread.start()
        time.sleep(0.05)
        lock.release_read()
        writer_thread.join(timeout=2)
        reader_thread.join(timeout=2)

        assert events == ["write", "late-read"]
