import asyncio
import sqlite3
import tempfile
import time
import unittest
from pathlib import Path

from sqlalchemy.exc import DBAPIError, IntegrityError

from cardstore.config import Settings
from cardstore.db import RunResult, Store, open_store, open_store_sync
from cardstore.errors import StoreClosedError


def wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def make_settings(directory: Path, **overrides) -> Settings:
    values = {
        "db_path": str(directory / "cards.db"),
        "db_save_debounce_seconds": 0.05,
        "db_install_signal_handlers": False,
    }
    values.update(overrides)
    return Settings(**values)


class StoreTests(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.settings = make_settings(Path(self.tmp.name))
        self.store = open_store_sync(self.settings)
        self.addCleanup(self.store.close)

    def add_user(self, username):
        return self.store.prepare(
            "INSERT INTO users (username, email) VALUES (?, ?)"
        ).run(username, f"{username}@example.com")

    def test_run_reports_rowid_and_changes(self):
        first = self.add_user("ada")
        second = self.add_user("grace")
        self.assertEqual(first, RunResult(last_insert_rowid=1, changes=1))
        self.assertEqual(second.last_insert_rowid, 2)

        result = self.store.prepare("UPDATE users SET role = ?").run("admin")
        self.assertEqual(result.changes, 2)

    def test_get_and_all_return_plain_dicts(self):
        self.add_user("ada")
        self.add_user("grace")

        row = self.store.prepare(
            "SELECT username, role FROM users WHERE username = ?"
        ).get("ada")
        self.assertEqual(row, {"username": "ada", "role": "user"})

        rows = self.store.prepare("SELECT username FROM users ORDER BY id").all()
        self.assertEqual(rows, [{"username": "ada"}, {"username": "grace"}])

        self.assertIsNone(
            self.store.prepare("SELECT * FROM users WHERE username = ?").get("nobody")
        )

    def test_read_failures_are_logged_not_raised(self):
        with self.assertLogs("cardstore.db", level="ERROR"):
            self.assertIsNone(self.store.prepare("SELECT * FROM nope").get())
        with self.assertLogs("cardstore.db", level="ERROR"):
            self.assertEqual(self.store.prepare("SELECT * FROM nope").all(), [])

    def test_run_failures_are_raised(self):
        self.add_user("ada")
        with self.assertLogs("cardstore.db", level="ERROR"):
            with self.assertRaises(IntegrityError):
                self.add_user("ada")

    def test_foreign_keys_are_enforced(self):
        with self.assertLogs("cardstore.db", level="ERROR"):
            with self.assertRaises(IntegrityError):
                self.store.prepare(
                    "INSERT INTO profiles (user_id, username, display_name) VALUES (?, ?, ?)"
                ).run(999, "ghost", "Ghost")

    def test_reads_do_not_schedule_saves(self):
        self.assertFalse(self.store.save_pending)
        self.store.prepare("SELECT COUNT(*) AS n FROM users").get()
        self.store.prepare("SELECT * FROM users").all()
        self.assertFalse(self.store.save_pending)

    def test_mutation_is_flushed_after_debounce(self):
        self.add_user("ada")
        self.assertTrue(self.store.save_pending)
        self.assertTrue(wait_for(lambda: not self.store.save_pending))

        copy = Store.load(self.settings.db_path)
        try:
            row = copy.prepare("SELECT username FROM users").get()
        finally:
            copy.close()
        self.assertEqual(row, {"username": "ada"})

    def test_unflushed_mutation_is_lost_on_crash(self):
        self.add_user("ada")
        self.assertTrue(wait_for(lambda: not self.store.save_pending))
        self.add_user("grace")
        # Killed inside the debounce window: the timer never fires.
        self.store._saver.cancel()

        copy = Store.load(self.settings.db_path)
        try:
            rows = copy.prepare("SELECT username FROM users ORDER BY id").all()
        finally:
            copy.close()
        self.assertEqual([row["username"] for row in rows], ["ada"])

    def test_first_insert_is_visible_and_reaches_disk(self):
        snapshot = self.store.snapshot
        inserted_at = time.time()
        result = self.add_user("ada")
        self.assertEqual((result.last_insert_rowid, result.changes), (1, 1))
        self.assertEqual(
            self.store.prepare("SELECT id, username FROM users WHERE id = ?").get(1),
            {"id": 1, "username": "ada"},
        )
        self.assertTrue(wait_for(lambda: snapshot.mtime() > inserted_at))

    def test_close_flushes_pending_changes(self):
        self.add_user("ada")
        self.store.close()

        reopened = Store.load(self.settings.db_path)
        try:
            self.assertEqual(
                reopened.prepare("SELECT COUNT(*) AS n FROM users").get(), {"n": 1}
            )
        finally:
            reopened.close()

    def test_exec_runs_script_atomically(self):
        self.store.exec(
            """
            INSERT INTO users (username) VALUES ('ada');
            INSERT INTO users (username) VALUES ('grace');
            """
        )
        self.assertEqual(len(self.store.prepare("SELECT id FROM users").all()), 2)

        with self.assertLogs("cardstore.db", level="ERROR"):
            with self.assertRaises(DBAPIError):
                self.store.exec(
                    """
                    INSERT INTO users (username) VALUES ('linus');
                    INSERT INTO missing_table (x) VALUES (1);
                    """
                )
        self.assertIsNone(
            self.store.prepare("SELECT id FROM users WHERE username = 'linus'").get()
        )

    def test_transaction_rolls_back_on_error(self):
        with self.assertRaises(RuntimeError):
            with self.store.transaction() as conn:
                conn.exec_driver_sql("INSERT INTO users (username) VALUES ('ada')")
                raise RuntimeError("boom")
        self.assertEqual(self.store.prepare("SELECT id FROM users").all(), [])

    def test_transaction_can_lift_foreign_keys(self):
        with self.store.transaction(foreign_keys=False) as conn:
            conn.exec_driver_sql(
                "INSERT INTO profiles (user_id, username, display_name) VALUES (42, 'x', 'X')"
            )
        self.assertEqual(
            self.store.prepare("PRAGMA foreign_keys").get(), {"foreign_keys": 1}
        )

    def test_introspection(self):
        self.assertIn("users", self.store.table_names())
        self.assertIn("subscription_status", self.store.column_names("users"))
        self.assertEqual(self.store.column_names("nope"), [])

    def test_closed_store_rejects_queries(self):
        self.store.close()
        self.store.close()
        self.assertTrue(self.store.closed)
        with self.assertLogs("cardstore.db", level="ERROR") as logs:
            self.assertIsNone(self.store.prepare("SELECT 1").get())
            self.assertEqual(self.store.prepare("SELECT 1").all(), [])
        self.assertIn("store is closed", logs.output[0])
        with self.assertRaises(StoreClosedError):
            self.store.prepare("DELETE FROM users").run()


class StoreLoadTests(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.dir = Path(self.tmp.name)

    def test_load_without_bootstrap_never_writes(self):
        path = self.dir / "cards.db"
        store = Store.load(path)
        store.prepare("CREATE TABLE scratch (id INTEGER)").run()
        store.close()
        self.assertFalse(path.exists())

    def test_damaged_snapshot_fails_to_load(self):
        path = self.dir / "cards.db"
        path.write_bytes(b"definitely not sqlite " * 50)
        with self.assertRaises(sqlite3.DatabaseError):
            Store.load(path)

    def test_open_store_is_awaitable(self):
        settings = make_settings(self.dir)
        store = asyncio.run(open_store(settings))
        try:
            self.assertTrue(store.ready)
            self.assertTrue(Path(settings.db_path).stat().st_size > 0)
            self.assertIn("visitors", store.table_names())
        finally:
            store.close()


if __name__ == "__main__":
    unittest.main()
