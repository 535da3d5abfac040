"""
Apply pending schema migrations to a database snapshot.

With --dry-run the snapshot is loaded and the pending work is listed without
writing anything back.
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
from cardstore.db import Store
from cardstore.errors import MigrationError
from cardstore.migrations import bootstrap, plan, verify_scripts

logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Migrate the card store database")
    parser.add_argument("--db-path", help="Snapshot file (defaults to DB_PATH)")
    parser.add_argument("--migrations-dir", help="Directory of .sql migrations")
    parser.add_argument("--dry-run", action="store_true")
    args = parser.parse_args()

    overrides = {}
    if args.db_path:
        overrides["db_path"] = args.db_path
    if args.migrations_dir:
        overrides["db_migrations_dir"] = args.migrations_dir
    settings = get_settings().model_copy(update=overrides)
    configure_logging(settings)

    store = Store.load(settings.db_path)
    try:
        if args.dry_run:
            pending = plan(store, settings)
            if pending.empty and not pending.modified_scripts:
                logger.info("Database is up to date")
            for line in pending.describe():
                logger.info("Would %s", line)
            return 0

        try:
            verify_scripts(store, settings.db_migrations_dir)
        except MigrationError as exc:
            logger.error("%s", exc)
            return 1

        report = bootstrap(store, settings)
        if not store.save_now():
            return 1
        logger.info(
            "Migrated %s: %d columns added, %d rebuilt, %d scripts applied",
            settings.db_path,
            len(report.columns_added),
            len(report.rebuilt),
            len(report.scripts_applied),
        )
        return 0 if report.ok else 1
    finally:
        store.close()


if __name__ == "__main__":
    raise SystemExit(main())
