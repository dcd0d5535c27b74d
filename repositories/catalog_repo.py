from __future__ import annotations

from typing import Any, Dict, Iterable, List, Tuple

from models.catalog import LineClassification, PaymentRecord

LINE_MAP_TABLE = "catalog_line_map"
PAYMENTS_TABLE = "catalog_payments"

DDL_SQL = f"""
CREATE TABLE IF NOT EXISTS {LINE_MAP_TABLE} (
    order_no VARCHAR,
    line_no VARCHAR,
    category VARCHAR,
    subcategory VARCHAR,
    supplier VARCHAR
);

CREATE TABLE IF NOT EXISTS {PAYMENTS_TABLE} (
    category VARCHAR,
    subcategory VARCHAR,
    supplier VARCHAR,
    order_no VARCHAR,
    line_no VARCHAR,
    order_date DATE,
    payment_date DATE,
    amount DOUBLE,
    delay_days INTEGER
);
"""

_LINE_COLUMNS = ("order_no", "line_no", "category", "subcategory", "supplier")
_PAYMENT_COLUMNS = (
    "category",
    "subcategory",
    "supplier",
    "order_no",
    "line_no",
    "order_date",
    "payment_date",
    "amount",
    "delay_days",
)


class CatalogRepository:
    """Data access helpers for the catalogue working tables."""

    def __init__(self, store: Any) -> None:
        self.store = store

    def init_schema(self) -> None:
        for statement in filter(None, (stmt.strip() for stmt in DDL_SQL.split(";"))):
            self.store.run(statement)

    def recreate_schema(self) -> None:
        self.store.run(f"DROP TABLE IF EXISTS {PAYMENTS_TABLE}")
        self.store.run(f"DROP TABLE IF EXISTS {LINE_MAP_TABLE}")
        self.init_schema()

    # ------------------------------------------------------------------
    # Line classifications
    # ------------------------------------------------------------------
    def clear_line_map(self) -> None:
        self.store.run(f"DELETE FROM {LINE_MAP_TABLE}")

    def insert_line_classifications(self, records: Iterable[LineClassification]) -> int:
        return self.store.executemany(
            f"INSERT INTO {LINE_MAP_TABLE} ({', '.join(_LINE_COLUMNS)}) VALUES (?, ?, ?, ?, ?)",
            [
                (record.order_no, record.line_no, record.category, record.subcategory, record.supplier)
                for record in records
            ],
        )

    def rename_pair(self, source: Tuple[str, str], target: Tuple[str, str]) -> None:
        self.store.run(
            f"UPDATE {LINE_MAP_TABLE} SET category = ?, subcategory = ? WHERE category = ? AND subcategory = ?",
            [target[0], target[1], source[0], source[1]],
        )

    def fetch_line_classifications(self) -> List[Dict[str, Any]]:
        return self.store.run(
            f"SELECT {', '.join(_LINE_COLUMNS)} FROM {LINE_MAP_TABLE} ORDER BY order_no, line_no"
        )

    def distinct_pairs(self) -> List[Tuple[str, str]]:
        rows = self.store.run(
            f"SELECT DISTINCT category, subcategory FROM {LINE_MAP_TABLE} ORDER BY 1, 2"
        )
        return [(row["category"], row["subcategory"]) for row in rows]

    def subcategory_counts(self) -> List[Dict[str, Any]]:
        return self.store.run(
            f"""
            SELECT subcategory, CAST(COUNT(*) AS INTEGER) AS n
            FROM {LINE_MAP_TABLE}
            GROUP BY 1
            ORDER BY n DESC, subcategory
            """
        )

    def subcategory_suppliers(self) -> List[Dict[str, Any]]:
        return self.store.run(
            f"""
            SELECT DISTINCT subcategory, supplier
            FROM {LINE_MAP_TABLE}
            WHERE supplier IS NOT NULL AND supplier <> ''
            ORDER BY 1, 2
            """
        )

    def suppliers(self) -> List[str]:
        rows = self.store.run(
            f"""
            SELECT DISTINCT supplier
            FROM {LINE_MAP_TABLE}
            WHERE supplier IS NOT NULL AND supplier <> ''
            ORDER BY 1
            """
        )
        return [row["supplier"] for row in rows]

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------
    def clear_payments(self) -> None:
        self.store.run(f"DELETE FROM {PAYMENTS_TABLE}")

    def insert_payments(self, records: Iterable[PaymentRecord]) -> int:
        placeholders = ", ".join("?" for _ in _PAYMENT_COLUMNS)
        return self.store.executemany(
            f"INSERT INTO {PAYMENTS_TABLE} ({', '.join(_PAYMENT_COLUMNS)}) VALUES ({placeholders})",
            [tuple(record.to_record()[column] for column in _PAYMENT_COLUMNS) for record in records],
        )

    def fetch_payments(self) -> List[Dict[str, Any]]:
        return self.store.run(
            f"""
            SELECT {', '.join(_PAYMENT_COLUMNS)}
            FROM {PAYMENTS_TABLE}
            ORDER BY order_no, line_no, payment_date, amount
            """
        )

    def delay_series(self, subcategory: str, supplier: str) -> List[Dict[str, Any]]:
        return self.store.run(
            f"""
            SELECT delay_days, SUM(amount) AS amount
            FROM {PAYMENTS_TABLE}
            WHERE subcategory = ? AND supplier = ? AND delay_days IS NOT NULL
            GROUP BY 1
            ORDER BY 1
            """,
            [subcategory, supplier],
        )

    def payment_points(self, subcategory: str, supplier: str) -> List[Dict[str, Any]]:
        return self.store.run(
            f"""
            SELECT delay_days, amount, payment_date, order_no, line_no
            FROM {PAYMENTS_TABLE}
            WHERE subcategory = ? AND supplier = ?
            ORDER BY payment_date, order_no, line_no
            """,
            [subcategory, supplier],
        )

    def delay_stats(self, subcategory: str, supplier: str) -> Dict[str, Any]:
        rows = self.store.run(
            f"""
            SELECT
                CAST(COUNT(*) AS INTEGER) AS n_payments,
                COALESCE(SUM(amount), 0) AS total,
                quantile_cont(delay_days, 0.5) AS median_delay,
                quantile_cont(delay_days, 0.25) AS p25,
                quantile_cont(delay_days, 0.75) AS p75
            FROM {PAYMENTS_TABLE}
            WHERE subcategory = ? AND supplier = ? AND delay_days IS NOT NULL
            """,
            [subcategory, supplier],
        )
        return rows[0] if rows else {}


__all__ = ["CatalogRepository", "LINE_MAP_TABLE", "PAYMENTS_TABLE"]
