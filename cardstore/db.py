"""
In-memory SQLite store with a synchronous prepare/run/get/all interface.

The whole database lives in a single in-memory ``sqlite3`` connection. The
image is loaded from the snapshot file at open time and written back in full
(debounced) after every mutation. SQLAlchemy sits on top of the connection for
transaction handling and schema introspection.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator, Optional

from sqlalchemy import create_engine, event, inspect
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.pool import StaticPool

from cardstore.config import Settings, get_settings
from cardstore.errors import StoreClosedError, StoreError
from cardstore.migrations import BootstrapReport, bootstrap
from cardstore.persistence import DebouncedSaver, SnapshotFile
from cardstore.schema import split_statements

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunResult:
    last_insert_rowid: int
    changes: int


def _connect_image(image: Optional[bytes]) -> sqlite3.Connection:
    connection = sqlite3.connect(
        ":memory:", check_same_thread=False, isolation_level=None
    )
    try:
        if image:
            connection.deserialize(image)
            # Fails fast with "file is not a database" on a damaged snapshot.
            connection.execute("PRAGMA schema_version").fetchone()
        connection.execute("PRAGMA foreign_keys = ON")
    except sqlite3.DatabaseError:
        connection.close()
        raise
    return connection


def _build_engine(connection: sqlite3.Connection) -> Engine:
    engine = create_engine(
        "sqlite://", creator=lambda: connection, poolclass=StaticPool
    )

    # pysqlite's implicit transaction handling skips DDL; take it over so a
    # transaction covers every statement inside it.
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


class Statement:
    """A statement prepared against a store. Re-prepared on every call."""

    def __init__(self, store: "Store", sql: str):
        self._store = store
        self.sql = sql

    def run(self, *params: Any) -> RunResult:
        store = self._store
        store._check_open()
        try:
            with store._lock, store.engine.begin() as conn:
                conn.exec_driver_sql(self.sql, params)
                rowid, changes = conn.exec_driver_sql(
                    "SELECT last_insert_rowid(), changes()"
                ).one()
        except Exception:
            logger.error(
                "Statement failed: %s params=%r", self.sql, params, exc_info=True
            )
            raise
        store.save()
        return RunResult(last_insert_rowid=rowid, changes=changes)

    def get(self, *params: Any) -> Optional[dict]:
        store = self._store
        try:
            store._check_open()
            with store._lock, store.engine.connect() as conn:
                row = conn.exec_driver_sql(self.sql, params).mappings().first()
        except Exception as exc:
            logger.error("Query failed: %s params=%r: %s", self.sql, params, exc)
            return None
        return dict(row) if row is not None else None

    def all(self, *params: Any) -> list[dict]:
        store = self._store
        try:
            store._check_open()
            with store._lock, store.engine.connect() as conn:
                rows = conn.exec_driver_sql(self.sql, params).mappings().all()
        except Exception as exc:
            logger.error("Query failed: %s params=%r: %s", self.sql, params, exc)
            return []
        return [dict(row) for row in rows]


class Store:
    """
    Owner of the database image and its snapshot file.

    Statements from any thread are serialised through one re-entrant lock, so
    no statement ever observes another half-way through. Flushes are only
    scheduled after ``mark_ready()``; before that (during bootstrap) the image
    is written only by an explicit ``save_now()``.
    """

    def __init__(
        self,
        connection: sqlite3.Connection,
        snapshot: SnapshotFile,
        *,
        debounce_seconds: float = 1.0,
    ):
        self._raw = connection
        self._lock = threading.RLock()
        self.snapshot = snapshot
        self.engine = _build_engine(connection)
        self._saver = DebouncedSaver(self._write_snapshot, delay=debounce_seconds)
        self._ready = False
        self._closed = False
        self.report: Optional[BootstrapReport] = None

    @classmethod
    def load(cls, path: Path | str, *, debounce_seconds: float = 1.0) -> "Store":
        """Load the image from ``path`` (or start empty). Does not bootstrap."""
        snapshot = SnapshotFile(path)
        image = snapshot.read()
        connection = _connect_image(image)
        if image:
            logger.info("Loaded existing database from %s", snapshot.path)
        else:
            logger.info("Created new database for %s", snapshot.path)
        return cls(connection, snapshot, debounce_seconds=debounce_seconds)

    @property
    def ready(self) -> bool:
        return self._ready

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def save_pending(self) -> bool:
        return self._saver.pending

    def mark_ready(self) -> None:
        self._ready = True

    def _check_open(self) -> None:
        if self._closed:
            raise StoreClosedError("store is closed")

    def prepare(self, sql: str) -> Statement:
        return Statement(self, sql)

    def exec(self, sql: str) -> None:
        """Run one or more statements in a single transaction."""
        try:
            with self.transaction() as conn:
                for statement in split_statements(sql):
                    conn.exec_driver_sql(statement)
        except Exception:
            logger.error("Script failed: %s", sql, exc_info=True)
            raise

    @contextmanager
    def transaction(self, *, foreign_keys: bool = True) -> Iterator[Connection]:
        """
        Yield a connection inside BEGIN/COMMIT; roll back on error.

        ``foreign_keys=False`` lifts enforcement for the duration, which table
        rebuilds need. Transactions do not nest, so statements prepared on the
        store must not be run while one is open on the same thread.
        """
        self._check_open()
        with self._lock:
            if not foreign_keys:
                self._raw.execute("PRAGMA foreign_keys = OFF")
            try:
                with self.engine.begin() as conn:
                    yield conn
            finally:
                if not foreign_keys:
                    self._raw.execute("PRAGMA foreign_keys = ON")
        self.save()

    def save(self, immediate: bool = False) -> bool:
        """Schedule a debounced flush, or flush now with ``immediate=True``."""
        if immediate:
            return self.save_now()
        if self._ready and not self._closed:
            self._saver.schedule()
        return True

    def save_now(self) -> bool:
        """Cancel any pending flush and write the image synchronously."""
        if self._closed:
            return False
        return self._saver.flush()

    def image(self) -> bytes:
        with self._lock:
            self._check_open()
            if self._raw.in_transaction:
                raise StoreError("cannot serialise the image inside a transaction")
            return self._raw.serialize()

    def _write_snapshot(self) -> None:
        with self._lock:
            if self._closed:
                # close() already wrote the final image.
                return
            self.snapshot.write(self.image())
        logger.debug("Saved database snapshot to %s", self.snapshot.path)

    def table_names(self) -> list[str]:
        self._check_open()
        with self._lock, self.engine.connect() as conn:
            return inspect(conn).get_table_names()

    def column_names(self, table: str) -> list[str]:
        """Columns of ``table`` in order, or an empty list when it does not exist."""
        self._check_open()
        with self._lock, self.engine.connect() as conn:
            inspector = inspect(conn)
            if not inspector.has_table(table):
                return []
            return [column["name"] for column in inspector.get_columns(table)]

    def close(self) -> None:
        """Flush (once ready) and release the image. Safe to call repeatedly."""
        with self._lock:
            if self._closed:
                return
            if self._ready:
                self._saver.flush()
            else:
                self._saver.cancel()
            self._closed = True
            self.engine.dispose()
            self._raw.close()
        logger.info("Database closed")


def open_store_sync(settings: Optional[Settings] = None) -> Store:
    """Load, bootstrap and save; the returned store is ready for queries."""
    settings = settings or get_settings()
    store = Store.load(
        settings.db_path, debounce_seconds=settings.db_save_debounce_seconds
    )
    store.report = bootstrap(store, settings)
    if store.save_now():
        logger.info("Database initialized successfully")
    else:
        logger.error("Database initialized but the initial save failed")
    store.mark_ready()
    return store


async def open_store(settings: Optional[Settings] = None) -> Store:
    """Async entry point: resolves only once the store is fully bootstrapped."""
    return await asyncio.to_thread(open_store_sync, settings)
