import signal
import tempfile
import threading
import unittest
from pathlib import Path
from unittest.mock import Mock

from cardstore.config import Settings
from cardstore.db import Store, open_store_sync
from cardstore.lifecycle import ShutdownHooks


class ShutdownHooksTests(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.settings = Settings(
            db_path=str(Path(self.tmp.name) / "cards.db"),
            db_save_debounce_seconds=60,
            db_install_signal_handlers=False,
        )
        self.store = open_store_sync(self.settings)
        self.addCleanup(self.store.close)
        self.hooks = ShutdownHooks(self.store)
        self.addCleanup(self.hooks.uninstall)

    def add_user(self, username):
        self.store.prepare("INSERT INTO users (username) VALUES (?)").run(username)

    def saved_usernames(self):
        copy = Store.load(self.settings.db_path)
        try:
            return [row["username"] for row in copy.prepare("SELECT username FROM users").all()]
        finally:
            copy.close()

    def test_sigint_flushes_then_interrupts(self):
        self.hooks.previous[signal.SIGINT] = signal.default_int_handler
        self.add_user("ada")
        self.assertTrue(self.store.save_pending)

        with self.assertRaises(KeyboardInterrupt):
            self.hooks.handle(signal.SIGINT, None)

        self.assertFalse(self.store.save_pending)
        self.assertEqual(self.saved_usernames(), ["ada"])

    def test_sigterm_without_handler_exits(self):
        self.hooks.previous[signal.SIGTERM] = signal.SIG_DFL
        self.add_user("grace")

        with self.assertRaises(SystemExit) as ctx:
            self.hooks.handle(signal.SIGTERM, None)

        self.assertEqual(ctx.exception.code, 128 + signal.SIGTERM)
        self.assertEqual(self.saved_usernames(), ["grace"])

    def test_previous_handler_is_chained(self):
        previous = Mock()
        self.hooks.previous[signal.SIGTERM] = previous
        self.hooks.handle(signal.SIGTERM, None)
        previous.assert_called_once_with(signal.SIGTERM, None)

    def test_ignored_signal_stays_ignored(self):
        self.hooks.previous[signal.SIGTERM] = signal.SIG_IGN
        self.hooks.handle(signal.SIGTERM, None)
        self.assertFalse(self.store.closed)

    def test_install_is_idempotent_and_uninstall_restores(self):
        before = signal.getsignal(signal.SIGTERM)
        self.hooks.install()
        self.hooks.install()
        self.assertEqual(signal.getsignal(signal.SIGTERM), self.hooks.handle)
        self.assertEqual(self.hooks.previous[signal.SIGTERM], before)

        self.hooks.uninstall()
        self.assertEqual(signal.getsignal(signal.SIGTERM), before)
        self.assertFalse(self.hooks.installed)

    def test_install_off_main_thread_skips_signals(self):
        before = signal.getsignal(signal.SIGTERM)
        worker = threading.Thread(target=self.hooks.install)
        worker.start()
        worker.join()
        self.assertTrue(self.hooks.installed)
        self.assertEqual(self.hooks.previous, {})
        self.assertEqual(signal.getsignal(signal.SIGTERM), before)

    def test_at_exit_closes_store_once(self):
        self.add_user("linus")
        self.hooks.at_exit()
        self.hooks.at_exit()
        self.assertTrue(self.store.closed)
        self.assertFalse(self.hooks.flush())
        self.assertEqual(self.saved_usernames(), ["linus"])


if __name__ == "__main__":
    unittest.main()
