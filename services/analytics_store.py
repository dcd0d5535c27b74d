"""Embedded DuckDB store holding uploaded procurement tables.

The store is the SQL execution collaborator and the schema provider of the
catalogue: uploaded spreadsheets are registered as DuckDB tables with
slugified column names while the original human header labels are kept in an
in-process schema catalogue so that header-based role detection can still
match on them.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence

import duckdb
import pandas as pd

from config.settings import settings
from utils.db import execute, fetch_dicts, quote_identifier, read_sql_compat
from utils.normalization import as_text, slugify_header

logger = logging.getLogger(__name__)

RESERVED_TABLE_PREFIX = "catalog_"

@dataclass(frozen=True)
class ColumnInfo:
    """Schema entry for one column of a loaded table."""

    name: str
    type: str
    original_label: str

    def as_dict(self) -> Dict[str, str]:
        return {"name": self.name, "type": self.type, "original": self.original_label}


class AnalyticsStore:
    """Thin, lock-guarded wrapper around a single DuckDB connection."""

    def __init__(self, database: Optional[str] = None) -> None:
        self.database = database or getattr(settings, "duckdb_path", ":memory:")
        self._conn = duckdb.connect(self.database)
        self._lock = threading.RLock()
        self._tables: Dict[str, List[ColumnInfo]] = {}
        logger.info("AnalyticsStore initialised with DuckDB at %s", self.database)

    # ------------------------------------------------------------------
    # SQL execution
    # ------------------------------------------------------------------
    def run(self, sql: str, params: Optional[Any] = None) -> List[Dict[str, Any]]:
        """Execute ``sql`` and return the result rows as dictionaries."""

        with self._lock:
            return fetch_dicts(sql, self._conn, params)

    def fetch_frame(self, sql: str, params: Optional[Any] = None) -> pd.DataFrame:
        with self._lock:
            return read_sql_compat(sql, self._conn, params)

    def executemany(self, sql: str, rows: Iterable[Sequence[Any]]) -> int:
        batch = [list(row) for row in rows]
        if not batch:
            return 0
        with self._lock:
            self._conn.executemany(sql, batch)
        return len(batch)

    # ------------------------------------------------------------------
    # Schema provider
    # ------------------------------------------------------------------
    def get_schema(self) -> Dict[str, List[ColumnInfo]]:
        """Return the loaded tables, introspecting DuckDB when none were registered."""

        with self._lock:
            if self._tables:
                return {table: list(columns) for table, columns in self._tables.items()}
        return self._introspect_schema()

    def _introspect_schema(self) -> Dict[str, List[ColumnInfo]]:
        tables = self.run(
            """
            SELECT table_name
            FROM information_schema.tables
            WHERE table_schema = 'main' AND table_type = 'BASE TABLE'
            ORDER BY table_name
            """
        )
        schema: Dict[str, List[ColumnInfo]] = {}
        for row in tables:
            name = row["table_name"]
            if name.startswith(RESERVED_TABLE_PREFIX):
                continue
            schema[name] = self._describe(name)
        return schema

    def _describe(self, table: str) -> List[ColumnInfo]:
        columns = self.run(
            """
            SELECT column_name, data_type
            FROM information_schema.columns
            WHERE table_schema = 'main' AND table_name = ?
            ORDER BY ordinal_position
            """,
            [table],
        )
        return [
            ColumnInfo(name=col["column_name"], type=col["data_type"], original_label=col["column_name"])
            for col in columns
        ]

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------
    def ingest_frame(self, frame: pd.DataFrame, table_hint: str) -> Dict[str, Any]:
        """Create or replace a table from ``frame`` and record its header labels."""

        if frame is None or frame.empty:
            raise ValueError("Uploaded sheet is empty.")

        table = slugify_header(table_hint or "table")
        if table.startswith(RESERVED_TABLE_PREFIX):
            raise ValueError(f"Table name '{table}' is reserved for the catalogue working tables.")
        headers = [str(column) for column in frame.columns]
        names = _unique_slugs(headers)

        prepared = frame.copy()
        prepared.columns = names
        for column in names:
            if prepared[column].dtype == object:
                prepared[column] = _homogenise(prepared[column])

        view = f"_ingest_{table}"
        with self._lock:
            self._conn.register(view, prepared)
            try:
                execute(
                    self._conn,
                    f"CREATE OR REPLACE TABLE {quote_identifier(table)} AS SELECT * FROM {quote_identifier(view)}",
                )
            finally:
                self._conn.unregister(view)
            described = {col.name: col.type for col in self._describe(table)}
            columns = [
                ColumnInfo(name=name, type=described.get(name, "VARCHAR"), original_label=header)
                for name, header in zip(names, headers)
            ]
            self._tables[table] = columns

        logger.info("Loaded table %s (%d rows, %d columns)", table, len(prepared), len(columns))
        return {
            "table": table,
            "rows": int(len(prepared)),
            "columns": [col.as_dict() for col in columns],
        }

    def close(self) -> None:
        with self._lock:
            self._conn.close()


def _unique_slugs(headers: Sequence[str]) -> List[str]:
    names: List[str] = []
    seen: Dict[str, int] = {}
    for header in headers:
        slug = slugify_header(header)
        count = seen.get(slug, 0)
        seen[slug] = count + 1
        names.append(slug if count == 0 else f"{slug}_{count + 1}")
    return names


def _homogenise(series: pd.Series) -> pd.Series:
    """Render mixed-type object columns as text so DuckDB can infer one type.

    Missing cells become ``None`` so they load as SQL ``NULL``.
    """

    kinds = {type(value) for value in series.dropna()}
    if len(kinds) <= 1:
        return series.astype(object).where(series.notna(), None)
    return series.map(as_text)


__all__ = ["AnalyticsStore", "ColumnInfo", "RESERVED_TABLE_PREFIX"]
