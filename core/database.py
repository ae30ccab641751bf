"""
Store session management with SQLAlchemy

A StoreSession owns the single store connection used by one run. It is
acquired in __enter__ and released in __exit__; every component receives the
session explicitly instead of reaching for a module-level connection.
"""

from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple
import logging

import pandas as pd
from sqlalchemy import create_engine, func, inspect, select, table, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.sql.expression import Selectable
from sqlalchemy.types import TypeEngine

from core.config import settings
from core.exceptions import StoreConnectionError, StoreWriteError

logger = logging.getLogger(__name__)

WRITE_CHUNK_SIZE = 10_000


def _ensure_parent_dir(database_url: str):
    """Create the directory of a file-backed DuckDB/SQLite store."""
    for scheme in ("duckdb:///", "sqlite:///"):
        if database_url.startswith(scheme):
            path = database_url[len(scheme):].split("?", 1)[0]
            if path and path != ":memory:":
                Path(path).parent.mkdir(parents=True, exist_ok=True)


class StoreSession:
    """
    Single-writer handle on the relational store.

    Supports the operations the pipeline needs:
    - list tables / views and the columns of a table
    - create-or-replace a table from a DataFrame (one transaction)
    - create-or-replace a view from a SQLAlchemy selectable
    - arbitrary queries

    Usage:
        with StoreSession(settings.DATABASE_URL) as store:
            store.list_tables()
    """

    def __init__(self, database_url: Optional[str] = None, echo: bool = False):
        self.database_url = database_url or settings.DATABASE_URL
        self.echo = echo
        self.engine: Optional[Engine] = None
        self._connection: Optional[Connection] = None

    # ------------------------------------------------------------------
    # Lifetime
    # ------------------------------------------------------------------

    def open(self) -> "StoreSession":
        if self._connection is not None:
            return self
        try:
            _ensure_parent_dir(self.database_url)
            self.engine = create_engine(self.database_url, echo=self.echo)
            self._connection = self.engine.connect()
        except Exception as e:
            if self.engine is not None:
                self.engine.dispose()
                self.engine = None
            raise StoreConnectionError(
                "Failed to open store connection",
                context={"database_url": self.database_url},
                original_exception=e
            )
        logger.debug(f"Opened store {self.database_url}")
        return self

    def close(self):
        if self._connection is not None:
            if self._connection.in_transaction():
                self._connection.commit()
            self._connection.close()
            self._connection = None
        if self.engine is not None:
            self.engine.dispose()
            self.engine = None

    def __enter__(self) -> "StoreSession":
        return self.open()

    def __exit__(self, exc_type, exc, tb):
        self.close()

    @property
    def connection(self) -> Connection:
        if self._connection is None or self._connection.closed:
            raise StoreConnectionError(
                "Store connection is not open",
                context={"database_url": self.database_url}
            )
        return self._connection

    @property
    def dialect_name(self) -> str:
        return self.connection.dialect.name

    @contextmanager
    def begin(self) -> Iterator[Connection]:
        """Run a block in its own transaction on the shared connection."""
        conn = self.connection
        # Reflection and reads autobegin; close that implicit transaction first
        if conn.in_transaction():
            conn.commit()
        with conn.begin():
            yield conn

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    def list_tables(self) -> List[str]:
        return sorted(inspect(self.connection).get_table_names())

    def list_views(self) -> List[str]:
        return sorted(inspect(self.connection).get_view_names())

    def has_table(self, name: str) -> bool:
        return name in self.list_tables()

    def has_relation(self, name: str) -> bool:
        return name in self.list_tables() or name in self.list_views()

    def list_columns(self, name: str) -> List[Tuple[str, TypeEngine]]:
        """Live (name, declared type) pairs of a table or view, in order."""
        return [(col["name"], col["type"]) for col in inspect(self.connection).get_columns(name)]

    def quote(self, name: str) -> str:
        return self.connection.dialect.identifier_preparer.quote(name)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def row_count(self, name: str) -> int:
        result = self.connection.execute(select(func.count()).select_from(table(name)))
        return int(result.scalar() or 0)

    def execute(self, query: Any, params: Optional[Dict[str, Any]] = None) -> List[Any]:
        """Execute an arbitrary query and return all rows."""
        if isinstance(query, str):
            query = text(query)
        result = self.connection.execute(query, params or {})
        return list(result.fetchall()) if result.returns_rows else []

    def read_frame(self, query: Any) -> pd.DataFrame:
        if isinstance(query, str):
            query = text(query)
        return pd.read_sql(query, self.connection)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def replace_table(
        self,
        name: str,
        frame: pd.DataFrame,
        dtype: Optional[Dict[str, Any]] = None
    ) -> int:
        """
        Create-or-replace a table from a DataFrame.

        Drop, create and insert run in one transaction, so a failed write
        never leaves a half-written table behind.

        Returns:
            Number of rows written
        """
        try:
            with self.begin() as conn:
                frame.to_sql(
                    name,
                    conn,
                    if_exists="replace",
                    index=False,
                    dtype=dtype,
                    chunksize=WRITE_CHUNK_SIZE
                )
        except (SQLAlchemyError, UnicodeError, ValueError) as e:
            raise StoreWriteError(
                f"Failed to write table {name}",
                context={"operation": "replace_table", "relation": name},
                original_exception=e
            )
        logger.debug(f"Wrote {len(frame)} rows to {name}")
        return len(frame)

    def create_view(self, name: str, selectable: Selectable):
        """
        Create-or-replace a view from a SQLAlchemy selectable.

        Any table or view already holding the name is dropped first, inside
        the same transaction as the CREATE VIEW.
        """
        compiled = selectable.compile(
            dialect=self.connection.dialect,
            compile_kwargs={"literal_binds": True}
        )
        quoted = self.quote(name)
        existing_tables = self.list_tables()
        existing_views = self.list_views()
        try:
            with self.begin() as conn:
                if name in existing_tables:
                    conn.exec_driver_sql(f"DROP TABLE {quoted}")
                if name in existing_views:
                    conn.exec_driver_sql(f"DROP VIEW {quoted}")
                conn.exec_driver_sql(f"CREATE VIEW {quoted} AS {compiled}")
        except SQLAlchemyError as e:
            raise StoreWriteError(
                f"Failed to create view {name}",
                context={"operation": "create_view", "relation": name},
                original_exception=e
            )

    def drop_relation(self, name: str):
        quoted = self.quote(name)
        existing_views = self.list_views()
        existing_tables = self.list_tables()
        try:
            with self.begin() as conn:
                if name in existing_views:
                    conn.exec_driver_sql(f"DROP VIEW {quoted}")
                elif name in existing_tables:
                    conn.exec_driver_sql(f"DROP TABLE {quoted}")
        except SQLAlchemyError as e:
            raise StoreWriteError(
                f"Failed to drop {name}",
                context={"operation": "drop_relation", "relation": name},
                original_exception=e
            )

    def ensure_bookkeeping(self):
        """Create the import log and update run tables if missing."""
        from models.base import Base
        # Import models so they register on the metadata
        from models import import_log, update_run  # noqa: F401

        with self.begin() as conn:
            Base.metadata.create_all(conn)
