"""Database utility helpers shared by the analytic store and its callers."""
from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, Dict, List, Optional

import pandas as pd


def quote_identifier(name: Any) -> str:
    """Return ``name`` as a double-quoted SQL identifier.

    DuckDB does not parameterise identifiers, so every dynamic table or column
    name goes through this helper before being embedded in a statement.
    """

    text = str(name)
    if not text:
        raise ValueError("SQL identifiers must not be empty")
    return '"' + text.replace('"', '""') + '"'


def _normalize_params(params: Any) -> Any:
    """Normalize parameters to the shapes accepted by ``duckdb.execute``.

    DuckDB binds ``?`` placeholders from a list and ``$name`` placeholders
    from a dict.  Callers pass tuples, lists or mappings interchangeably; any
    non-string sequence is converted to a ``list`` and mappings are copied
    into a plain ``dict``.
    """

    if params is None:
        return None

    if isinstance(params, Mapping):
        return dict(params)

    if isinstance(params, Sequence) and not isinstance(
        params, (str, bytes, bytearray)
    ):
        return list(params)

    return [params]


def execute(conn: Any, sql: str, params: Optional[Any] = None) -> Any:
    normalized_params = _normalize_params(params)
    if normalized_params is not None:
        return conn.execute(sql, normalized_params)
    return conn.execute(sql)


def read_sql_compat(sql: str, conn: Any, params: Optional[Any] = None) -> pd.DataFrame:
    """Execute ``sql`` on a DuckDB connection and return a ``DataFrame``.

    The frame is built from ``fetchall`` and the cursor description so column
    names survive even when the result set is empty.
    """

    cursor = execute(conn, sql, params)
    description = cursor.description or []
    rows = cursor.fetchall() if description else []
    columns = [col[0] for col in description]
    return pd.DataFrame(rows, columns=columns)


def fetch_dicts(sql: str, conn: Any, params: Optional[Any] = None) -> List[Dict[str, Any]]:
    cursor = execute(conn, sql, params)
    description = cursor.description or []
    if not description:
        return []
    columns = [col[0] for col in description]
    return [dict(zip(columns, row)) for row in cursor.fetchall()]


__all__ = ["execute", "fetch_dicts", "quote_identifier", "read_sql_compat"]
