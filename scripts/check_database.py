"""
Check that a database snapshot boots and carries the key tables.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from cardstore.app import configure_logging
from cardstore.config import get_settings
from cardstore.db import open_store_sync
from cardstore.schema import KEY_TABLES

logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Check the card store database")
    parser.add_argument("--db-path", help="Snapshot file (defaults to DB_PATH)")
    args = parser.parse_args()

    overrides = {"db_path": args.db_path} if args.db_path else {}
    settings = get_settings().model_copy(update=overrides)
    configure_logging(settings)

    store = open_store_sync(settings)
    try:
        tables = set(store.table_names())
        logger.info("Database has %d tables", len(tables))

        missing = [name for name in KEY_TABLES if name not in tables]
        for name in KEY_TABLES:
            if name in missing:
                logger.error("Missing table: %s", name)
                continue
            row = store.prepare(f"SELECT COUNT(*) AS count FROM {name}").get()
            logger.info("%s: %d rows", name, row["count"] if row else 0)

        if "visitors" in tables:
            store.prepare(
                "INSERT OR IGNORE INTO visitors (id, count) VALUES (1, 0)"
            ).run()
            row = store.prepare("SELECT count FROM visitors WHERE id = 1").get()
            logger.info("Visitor count: %d", row["count"] if row else 0)
    finally:
        store.close()

    if missing:
        logger.error("%d key tables missing", len(missing))
        return 1
    logger.info("Database check passed")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
