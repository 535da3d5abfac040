"""
Bring an existing database image up to the current schema.

Three kinds of migration run at every boot, after the ``CREATE TABLE IF NOT
EXISTS`` pass in ``cardstore.schema``:

* script migrations: ``.sql`` files applied once and tracked by checksum
* column migrations: ``ALTER TABLE ... ADD COLUMN`` for columns that are
  missing, with an optional backfill
* structural migrations: table rebuilds for changes SQLite cannot express
  with ``ALTER TABLE``

Each step is isolated; one failure is logged and never stops the others.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Optional

from sqlalchemy.engine import Connection

from cardstore.config import Settings
from cardstore.errors import MigrationError
from cardstore.schema import (
    ANALYTICS_SUMMARY_TABLE,
    THEMES_TABLE,
    apply_indexes,
    apply_schema,
    expected_tables,
    split_statements,
)

if TYPE_CHECKING:
    from cardstore.db import Store

logger = logging.getLogger(__name__)


def trial_expiry(days: int, now: Optional[datetime] = None) -> str:
    """ISO-8601 UTC timestamp ``days`` from ``now``, millisecond precision."""
    now = now or datetime.now(timezone.utc)
    expires = now.astimezone(timezone.utc) + timedelta(days=days)
    return expires.isoformat(timespec="milliseconds").replace("+00:00", "Z")


# ---------------------------------------------------------------------------
# Column migrations
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ColumnMigration:
    name: str
    table: str
    columns: tuple[tuple[str, str], ...]
    backfill: Optional[Callable[[Connection, Settings], int]] = None


def _backfill_subscriptions(conn: Connection, settings: Settings) -> int:
    result = conn.exec_driver_sql(
        """
        UPDATE users
        SET subscription_status = COALESCE(subscription_status, 'free'),
            subscription_end_date = COALESCE(subscription_end_date, ?)
        WHERE subscription_status IS NULL OR subscription_end_date IS NULL
        """,
        (trial_expiry(settings.free_trial_days),),
    )
    return result.rowcount


COLUMN_MIGRATIONS: tuple[ColumnMigration, ...] = (
    ColumnMigration("song covers", "songs", (("cover_path", "TEXT"),)),
    ColumnMigration("user roles", "users", (("role", "TEXT DEFAULT 'user'"),)),
    ColumnMigration(
        "google sign-in",
        "users",
        (("google_id", "TEXT"), ("email_verified", "INTEGER DEFAULT 0")),
    ),
    ColumnMigration("ai keys", "users", (("gemini_api_key", "TEXT"),)),
    ColumnMigration("invite quota", "users", (("invites_used", "INTEGER DEFAULT 0"),)),
    ColumnMigration(
        "subscriptions",
        "users",
        (
            ("subscription_status", "TEXT DEFAULT 'free'"),
            ("subscription_end_date", "DATETIME"),
            ("stripe_customer_id", "TEXT"),
            ("stripe_subscription_id", "TEXT"),
        ),
        backfill=_backfill_subscriptions,
    ),
    ColumnMigration(
        "profile branding",
        "profiles",
        (("logo_url", "TEXT"), ("background_image_url", "TEXT")),
    ),
    ColumnMigration(
        "profile themes",
        "profiles",
        (("active_theme_id", "INTEGER REFERENCES themes(id) ON DELETE SET NULL"),),
    ),
    ColumnMigration(
        "profile directory",
        "profiles",
        (("profile_tags", "TEXT"), ("is_featured", "INTEGER DEFAULT 0")),
    ),
    ColumnMigration(
        "link scheduling",
        "link_items",
        (
            ("schedule_enabled", "INTEGER DEFAULT 0"),
            ("schedule_start_time", "TEXT"),
            ("schedule_end_time", "TEXT"),
        ),
    ),
    ColumnMigration(
        "link layout",
        "link_items",
        (("platform", "TEXT"), ("layout", "TEXT"), ("metadata", "TEXT")),
    ),
    # Must precede the themes rebuild, which copies these columns.
    ColumnMigration(
        "theme visuals",
        "themes",
        (("wallpaper", "TEXT"), ("header_background", "TEXT")),
    ),
    ColumnMigration(
        "view attribution",
        "profile_views",
        (("referrer", "TEXT"), ("device_type", "TEXT")),
    ),
    ColumnMigration(
        "generated templates",
        "vcard_templates",
        (
            ("is_ai_generated", "INTEGER DEFAULT 0"),
            ("tags", "TEXT"),
            ("popularity", "INTEGER DEFAULT 0"),
        ),
    ),
)


def run_column_migrations(
    store: "Store", settings: Settings, report: "BootstrapReport"
) -> None:
    for migration in COLUMN_MIGRATIONS:
        existing = set(store.column_names(migration.table))
        if not existing:
            logger.warning(
                "Table %s does not exist; skipping %s",
                migration.table,
                migration.name,
            )
            continue

        added = []
        for column, declaration in migration.columns:
            if column in existing:
                continue
            try:
                with store.transaction() as conn:
                    conn.exec_driver_sql(
                        f"ALTER TABLE {migration.table} ADD COLUMN {column} {declaration}"
                    )
            except Exception as exc:
                logger.error(
                    "Failed to add %s column to %s table: %s",
                    column,
                    migration.table,
                    exc,
                )
                report.failures.append(f"{migration.table}.{column}")
                continue
            logger.info("Added %s column to %s table", column, migration.table)
            added.append(column)
            report.columns_added.append(f"{migration.table}.{column}")

        if added and migration.backfill is not None:
            try:
                with store.transaction() as conn:
                    count = migration.backfill(conn, settings)
            except Exception:
                logger.exception("Backfill for %s failed", migration.name)
                report.failures.append(f"{migration.name} backfill")
                continue
            logger.info("Backfilled %d rows for %s", count, migration.name)
            report.backfilled[migration.name] = count


# ---------------------------------------------------------------------------
# Structural migrations
# ---------------------------------------------------------------------------

_THEME_COPY_COLUMNS = (
    "name",
    "category",
    "colors",
    "typography",
    "layout",
    "avatar",
    "wallpaper",
    "header_background",
    "is_system",
    "created_at",
    "updated_at",
)

_THEME_COPY_FALLBACKS = {
    "category": "'custom'",
    "colors": "'{}'",
    "is_system": "0",
    "created_at": "CURRENT_TIMESTAMP",
    "updated_at": "CURRENT_TIMESTAMP",
}


def _theme_copy_expression(column: str, existing: set[str]) -> str:
    fallback = _THEME_COPY_FALLBACKS.get(column)
    if column not in existing:
        return fallback or "NULL"
    if fallback:
        return f"COALESCE(t.{column}, {fallback})"
    return f"t.{column}"


def _themes_owned_by_users(columns: set[str]) -> bool:
    return "user_id" in columns and "profile_id" not in columns


def _rebuild_themes(conn: Connection, columns: set[str]) -> None:
    selected = ", ".join(
        _theme_copy_expression(column, columns) for column in _THEME_COPY_COLUMNS
    )
    conn.exec_driver_sql("DROP TABLE IF EXISTS themes_rebuild")
    conn.exec_driver_sql(THEMES_TABLE.format(name="themes_rebuild"))
    conn.exec_driver_sql(
        f"""
        INSERT INTO themes_rebuild (id, profile_id, {", ".join(_THEME_COPY_COLUMNS)})
        SELECT t.id,
               (SELECT MIN(p.id) FROM profiles p WHERE p.user_id = t.user_id),
               {selected}
        FROM themes t
        """
    )
    conn.exec_driver_sql("DROP TABLE themes")
    conn.exec_driver_sql("ALTER TABLE themes_rebuild RENAME TO themes")
    dangling = conn.exec_driver_sql("PRAGMA foreign_key_check(themes)").fetchall()
    if dangling:
        logger.warning("%d themes reference missing profiles", len(dangling))


def _summary_uses_old_names(columns: set[str]) -> bool:
    return "summary_date" in columns


def _recreate_summary(conn: Connection, columns: set[str]) -> None:
    # Summary rows are derived from profile_views and can be regenerated.
    conn.exec_driver_sql("DROP TABLE analytics_summary")
    conn.exec_driver_sql(ANALYTICS_SUMMARY_TABLE)


@dataclass(frozen=True)
class StructuralMigration:
    name: str
    table: str
    detect: Callable[[set[str]], bool]
    apply: Callable[[Connection, set[str]], None]


STRUCTURAL_MIGRATIONS: tuple[StructuralMigration, ...] = (
    StructuralMigration(
        "themes ownership", "themes", _themes_owned_by_users, _rebuild_themes
    ),
    StructuralMigration(
        "analytics summary naming",
        "analytics_summary",
        _summary_uses_old_names,
        _recreate_summary,
    ),
)


def run_structural_migrations(store: "Store", report: "BootstrapReport") -> None:
    for migration in STRUCTURAL_MIGRATIONS:
        columns = set(store.column_names(migration.table))
        if not columns or not migration.detect(columns):
            continue
        logger.info("Running %s migration on %s", migration.name, migration.table)
        try:
            with store.transaction(foreign_keys=False) as conn:
                migration.apply(conn, columns)
        except Exception:
            logger.exception(
                "%s migration failed; %s keeps its previous shape",
                migration.name,
                migration.table,
            )
            report.failures.append(migration.name)
            continue
        logger.info("Completed %s migration", migration.name)
        report.rebuilt.append(migration.name)


# ---------------------------------------------------------------------------
# Script migrations
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ScriptMigration:
    name: str
    sql: str

    @property
    def checksum(self) -> str:
        return hashlib.sha256(self.sql.encode("utf-8")).hexdigest()


def discover_scripts(directory: Path | str) -> list[ScriptMigration]:
    directory = Path(directory)
    if not directory.is_dir():
        return []
    return [
        ScriptMigration(name=path.name, sql=path.read_text(encoding="utf-8"))
        for path in sorted(directory.glob("*.sql"))
    ]


def applied_scripts(store: "Store") -> dict[str, str]:
    rows = store.prepare(
        "SELECT migration_name, checksum FROM migration_tracker"
    ).all()
    return {row["migration_name"]: row["checksum"] for row in rows}


def modified_scripts(store: "Store", directory: Path | str) -> list[str]:
    if "migration_tracker" not in store.table_names():
        return []
    applied = applied_scripts(store)
    return [
        script.name
        for script in discover_scripts(directory)
        if script.name in applied and applied[script.name] != script.checksum
    ]


def verify_scripts(store: "Store", directory: Path | str) -> None:
    """Raise ``MigrationError`` when an applied script was edited afterwards."""
    modified = modified_scripts(store, directory)
    if modified:
        raise MigrationError(
            "migration scripts changed after being applied: " + ", ".join(modified)
        )


def run_script_migrations(
    store: "Store", directory: Path | str, report: "BootstrapReport"
) -> None:
    if "migration_tracker" not in store.table_names():
        logger.error("migration_tracker is missing; skipping script migrations")
        return

    applied = applied_scripts(store)
    for script in discover_scripts(directory):
        recorded = applied.get(script.name)
        if recorded == script.checksum:
            continue
        if recorded is not None:
            logger.error(
                "Migration %s was modified after it was applied; skipping",
                script.name,
            )
            report.failures.append(script.name)
            continue
        try:
            with store.transaction() as conn:
                for statement in split_statements(script.sql):
                    conn.exec_driver_sql(statement)
                conn.exec_driver_sql(
                    "INSERT INTO migration_tracker (migration_name, checksum) VALUES (?, ?)",
                    (script.name, script.checksum),
                )
        except Exception:
            logger.exception("Migration %s failed", script.name)
            report.failures.append(script.name)
            continue
        logger.info("Applied migration %s", script.name)
        report.scripts_applied.append(script.name)


# ---------------------------------------------------------------------------
# Bootstrap and planning
# ---------------------------------------------------------------------------


@dataclass
class BootstrapReport:
    failed_groups: list[str] = field(default_factory=list)
    scripts_applied: list[str] = field(default_factory=list)
    columns_added: list[str] = field(default_factory=list)
    backfilled: dict[str, int] = field(default_factory=dict)
    rebuilt: list[str] = field(default_factory=list)
    index_failures: list[str] = field(default_factory=list)
    failures: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not (self.failed_groups or self.index_failures or self.failures)


def bootstrap(store: "Store", settings: Settings) -> BootstrapReport:
    """Create missing tables and run every pending migration."""
    report = BootstrapReport()
    report.failed_groups = apply_schema(store)
    run_script_migrations(store, settings.db_migrations_dir, report)
    run_column_migrations(store, settings, report)
    run_structural_migrations(store, report)
    report.index_failures = apply_indexes(store)

    if report.ok:
        logger.info(
            "Schema ready: %d columns added, %d tables rebuilt, %d scripts applied",
            len(report.columns_added),
            len(report.rebuilt),
            len(report.scripts_applied),
        )
    else:
        logger.warning(
            "Schema bootstrap finished with failures: groups=%s indexes=%d other=%s",
            report.failed_groups,
            len(report.index_failures),
            report.failures,
        )
    return report


@dataclass
class MigrationPlan:
    missing_tables: list[str] = field(default_factory=list)
    missing_columns: list[str] = field(default_factory=list)
    structural: list[str] = field(default_factory=list)
    pending_scripts: list[str] = field(default_factory=list)
    modified_scripts: list[str] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not (
            self.missing_tables
            or self.missing_columns
            or self.structural
            or self.pending_scripts
        )

    def describe(self) -> list[str]:
        lines = [f"create table {name}" for name in self.missing_tables]
        lines += [f"add column {name}" for name in self.missing_columns]
        lines += [f"rebuild: {name}" for name in self.structural]
        lines += [f"apply script {name}" for name in self.pending_scripts]
        lines += [f"modified script {name} (will be skipped)" for name in self.modified_scripts]
        return lines


def plan(store: "Store", settings: Settings) -> MigrationPlan:
    """Work out what ``bootstrap`` would change without touching the image."""
    result = MigrationPlan()
    existing_tables = set(store.table_names())
    result.missing_tables = [
        name for name in expected_tables() if name not in existing_tables
    ]

    for migration in COLUMN_MIGRATIONS:
        columns = set(store.column_names(migration.table))
        if not columns:
            continue
        result.missing_columns += [
            f"{migration.table}.{column}"
            for column, _ in migration.columns
            if column not in columns
        ]

    for migration in STRUCTURAL_MIGRATIONS:
        columns = set(store.column_names(migration.table))
        if columns and migration.detect(columns):
            result.structural.append(migration.name)

    applied = (
        applied_scripts(store) if "migration_tracker" in existing_tables else {}
    )
    for script in discover_scripts(settings.db_migrations_dir):
        recorded = applied.get(script.name)
        if recorded is None:
            result.pending_scripts.append(script.name)
        elif recorded != script.checksum:
            result.modified_scripts.append(script.name)
    return result
