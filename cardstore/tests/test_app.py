import tempfile
import unittest
from pathlib import Path

from fastapi.testclient import TestClient

from cardstore.app import create_app
from cardstore.config import Settings
from cardstore.db import Store, open_store_sync


class CardStoreApiTests(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.settings = Settings(
            db_path=str(Path(self.tmp.name) / "cards.db"),
            db_save_debounce_seconds=0.05,
            db_install_signal_handlers=False,
        )

    def test_health_reports_database(self):
        with TestClient(create_app(self.settings)) as client:
            response = client.get("/api/health")
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["status"], "ok")
        self.assertTrue(payload["database"])
        self.assertGreaterEqual(payload["tables"], 35)

    def test_visitor_count_increments_and_persists(self):
        with TestClient(create_app(self.settings)) as client:
            self.assertEqual(client.get("/api/visitors").json(), {"count": 0})
            self.assertEqual(client.post("/api/visitors/increment").json(), {"count": 1})
            self.assertEqual(client.post("/api/visitors/increment").json(), {"count": 2})

        # Shutdown closes the store, which flushes the pending save.
        store = Store.load(self.settings.db_path)
        try:
            row = store.prepare("SELECT count FROM visitors WHERE id = 1").get()
        finally:
            store.close()
        self.assertEqual(row, {"count": 2})

    def test_injected_store_is_left_open(self):
        store = open_store_sync(self.settings)
        self.addCleanup(store.close)
        with TestClient(create_app(self.settings, store=store)) as client:
            self.assertEqual(client.get("/api/health").status_code, 200)
        self.assertFalse(store.closed)

    def test_increment_failure_returns_500(self):
        store = open_store_sync(self.settings)
        self.addCleanup(store.close)
        store.exec("DROP TABLE visitors")

        with TestClient(create_app(self.settings, store=store)) as client:
            with self.assertLogs("cardstore", level="ERROR"):
                response = client.post("/api/visitors/increment")
                missing = client.get("/api/visitors")
        self.assertEqual(response.status_code, 500)
        self.assertEqual(missing.json(), {"count": 0})


if __name__ == "__main__":
    unittest.main()
