import tempfile
import threading
import time
import unittest
from pathlib import Path

from cardstore.persistence import DebouncedSaver, SnapshotFile


def wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class SnapshotFileTests(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.dir = Path(self.tmp.name)

    def test_read_missing_file(self):
        snapshot = SnapshotFile(self.dir / "missing.db")
        self.assertFalse(snapshot.exists())
        self.assertIsNone(snapshot.read())
        self.assertIsNone(snapshot.mtime())

    def test_write_creates_parent_and_replaces_content(self):
        snapshot = SnapshotFile(self.dir / "nested" / "store.db")
        snapshot.write(b"first image")
        snapshot.write(b"second")
        self.assertEqual(snapshot.read(), b"second")
        leftovers = [p.name for p in snapshot.path.parent.iterdir()]
        self.assertEqual(leftovers, ["store.db"])


class DebouncedSaverTests(unittest.TestCase):
    def test_burst_of_schedules_saves_once(self):
        calls = []
        saved = threading.Event()

        def save():
            calls.append(time.monotonic())
            saved.set()

        saver = DebouncedSaver(save, delay=0.05)
        for _ in range(5):
            saver.schedule()
        self.assertTrue(saver.pending)
        self.assertTrue(saved.wait(2.0))
        time.sleep(0.2)
        self.assertEqual(len(calls), 1)
        self.assertFalse(saver.pending)

    def test_pending_until_write_finishes(self):
        observed = []

        def save():
            observed.append(saver.pending)

        saver = DebouncedSaver(save, delay=0.02)
        saver.schedule()
        self.assertTrue(wait_for(lambda: observed and not saver.pending))
        self.assertEqual(observed, [True])

    def test_schedule_during_write_keeps_new_timer(self):
        calls = []

        def save():
            calls.append(1)
            if len(calls) == 1:
                saver.schedule()

        saver = DebouncedSaver(save, delay=0.02)
        saver.schedule()
        self.assertTrue(wait_for(lambda: len(calls) == 2 and not saver.pending))

    def test_spaced_schedules_save_each_time(self):
        calls = []
        saver = DebouncedSaver(lambda: calls.append(1), delay=0.02)
        for expected in (1, 2, 3):
            saver.schedule()
            self.assertTrue(wait_for(lambda: len(calls) == expected))
        self.assertEqual(len(calls), 3)

    def test_flush_cancels_pending_timer(self):
        calls = []
        saver = DebouncedSaver(lambda: calls.append(1), delay=30)
        saver.schedule()
        self.assertTrue(saver.flush())
        self.assertFalse(saver.pending)
        self.assertEqual(calls, [1])

    def test_cancel_discards_pending_save(self):
        calls = []
        saver = DebouncedSaver(lambda: calls.append(1), delay=0.02)
        saver.schedule()
        saver.cancel()
        time.sleep(0.1)
        self.assertEqual(calls, [])

    def test_failed_flush_is_logged_and_reported(self):
        def save():
            raise OSError("disk full")

        saver = DebouncedSaver(save, delay=30)
        with self.assertLogs("cardstore.persistence", level="ERROR"):
            self.assertFalse(saver.flush())

    def test_failed_timer_save_clears_slot_for_retry(self):
        attempts = []

        def save():
            attempts.append(1)
            if len(attempts) == 1:
                raise OSError("disk full")

        saver = DebouncedSaver(save, delay=0.02)
        with self.assertLogs("cardstore.persistence", level="ERROR"):
            saver.schedule()
            self.assertTrue(wait_for(lambda: attempts and not saver.pending))
            time.sleep(0.05)

        saver.schedule()
        self.assertTrue(wait_for(lambda: len(attempts) == 2 and not saver.pending))


if __name__ == "__main__":
    unittest.main()
