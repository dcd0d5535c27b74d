"""Catalogue service owning the spend taxonomy, line map and payment profiles."""
from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional

import pandas as pd
from pydantic import BaseModel, ValidationError, field_validator

from config.settings import settings
from models.catalog import LineClassification, PurchaseOrderLine
from repositories.catalog_repo import CatalogRepository
from services.catalog_errors import (
    CatalogBuildError,
    CatalogBuildInProgressError,
    CatalogValidationError,
)
from services.classification import ClassificationLoop
from services.payment_linkage import LinkageResult, PaymentLinker
from services.table_roles import RoleAssignment, assign_roles
from services.taxonomy import CanonicalTaxonomy
from utils.db import quote_identifier
from utils.normalization import as_text
from utils.procurement_schema import (
    CLASSIFICATION_TEXT_FIELDS,
    DISBURSEMENTS,
    LINE_DETAILS,
    PURCHASE_ORDERS,
)

logger = logging.getLogger(__name__)

QUARTILE_THRESHOLDS = (0.25, 0.5, 0.75, 1.0)

_PO_FIELDS = ("order_no", "line_no", "line_type", "order_description", "line_description", "supplier")


@dataclass
class CatalogState:
    """Published catalogue state, reset by every build and overwritten by import."""

    taxonomy: CanonicalTaxonomy = field(default_factory=lambda: CanonicalTaxonomy().finalize())
    tables: Dict[str, Optional[str]] = field(default_factory=dict)
    columns: Dict[str, Dict[str, str]] = field(default_factory=dict)
    built_at: Optional[datetime] = None

    def built_at_iso(self) -> Optional[str]:
        return self.built_at.isoformat() if self.built_at else None


class ImportedMapping(BaseModel):
    order_no: str
    line_no: str
    category: str
    subcategory: str
    supplier: str = ""

    @field_validator("order_no", "line_no", "category", "subcategory", "supplier", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        return as_text(value) or ""


class ImportedTaxonomyEntry(BaseModel):
    category: str
    subcategories: List[str] = []

    @field_validator("category", mode="before")
    @classmethod
    def _coerce_category(cls, value: Any) -> str:
        return as_text(value) or ""

    @field_validator("subcategories", mode="before")
    @classmethod
    def _coerce_subcategories(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            value = [value]
        if not isinstance(value, (list, tuple)):
            raise ValueError("subcategories must be a list")
        return [text for text in (as_text(item) for item in value) if text]


class CatalogService:
    """Build, query, export and import the spend category catalogue.

    A single instance is meant to live for the whole process. Builds and
    imports are serialised through a non-blocking lock so an overlapping call
    is rejected instead of interleaving with a running build.
    """

    def __init__(
        self,
        store: Any,
        llm: Any,
        *,
        linker: Optional[PaymentLinker] = None,
        batch_size: Optional[int] = None,
    ) -> None:
        self.store = store
        self.llm = llm
        self.repository = CatalogRepository(store)
        self.linker = linker or PaymentLinker()
        self.batch_size = batch_size or settings.catalog_batch_size
        self.state = CatalogState()
        self._build_lock = threading.Lock()
        self.repository.init_schema()

    @contextmanager
    def _exclusive(self, action: str) -> Iterator[None]:
        if not self._build_lock.acquire(blocking=False):
            raise CatalogBuildInProgressError(f"A catalogue {action} is already in progress.")
        try:
            yield
        finally:
            self._build_lock.release()

    def _ensure_idle(self) -> None:
        if self._build_lock.locked():
            raise CatalogBuildInProgressError(
                "A catalogue build is in progress; try again once it completes."
            )

    # ------------------------------------------------------------------
    # Build
    # ------------------------------------------------------------------
    def build(self) -> Dict[str, Any]:
        with self._exclusive("build"):
            return self._build()

    def _build(self) -> Dict[str, Any]:
        roles = assign_roles(self.store.get_schema())
        purchase_orders = roles[PURCHASE_ORDERS]
        if not any(purchase_orders.column(name) for name in CLASSIFICATION_TEXT_FIELDS):
            raise CatalogBuildError(
                "No descriptive column (line type, order description or line description) "
                f"found in '{purchase_orders.table}'."
            )

        self.repository.init_schema()
        self.repository.clear_line_map()
        self.repository.clear_payments()

        lines = self._load_lines(purchase_orders)
        logger.info("Classifying %d purchase-order lines from %s", len(lines), purchase_orders.table)
        loop = ClassificationLoop(self.llm, self.repository, batch_size=self.batch_size)
        outcome = loop.run(lines)

        linkage = self._link(roles)
        self.repository.insert_payments(linkage.records)

        self.state = CatalogState(
            taxonomy=CanonicalTaxonomy.from_pairs(self.repository.distinct_pairs()).finalize(),
            tables={role: (assignment.table if assignment else None) for role, assignment in roles.items()},
            columns={role: dict(assignment.columns) for role, assignment in roles.items() if assignment},
            built_at=datetime.now(timezone.utc),
        )
        logger.info(
            "Catalogue built: %d pairs, %d lines classified, %d payments linked",
            len(self.state.taxonomy),
            outcome.classified,
            len(linkage.records),
        )
        return {
            "taxonomy": self.state.taxonomy.as_list(),
            "tables": dict(self.state.tables),
            "columns": dict(self.state.columns),
            "counts": self._counts(),
            "built_at": self.state.built_at_iso(),
            "diagnostics": {
                "classification": outcome.as_dict(),
                "linkage": linkage.diagnostics,
            },
        }

    def _select(self, assignment: RoleAssignment, fields) -> pd.DataFrame:
        projections = [
            f"{quote_identifier(assignment.column(name))} AS {quote_identifier(name)}"
            for name in fields
            if assignment.column(name)
        ]
        return self.store.fetch_frame(
            f"SELECT {', '.join(projections)} FROM {quote_identifier(assignment.table)}"
        )

    def _load_lines(self, assignment: RoleAssignment) -> List[PurchaseOrderLine]:
        frame = self._select(assignment, _PO_FIELDS)
        lines: List[PurchaseOrderLine] = []
        for record in frame.to_dict("records"):
            order_no = as_text(record.get("order_no"))
            line_no = as_text(record.get("line_no"))
            if not order_no or not line_no:
                continue
            lines.append(
                PurchaseOrderLine(
                    order_no=order_no,
                    line_no=line_no,
                    line_type=as_text(record.get("line_type")) or "",
                    order_description=as_text(record.get("order_description")) or "",
                    line_description=as_text(record.get("line_description")) or "",
                    supplier=as_text(record.get("supplier")) or "",
                )
            )
        return lines

    def _link(self, roles: Dict[str, Optional[RoleAssignment]]) -> LinkageResult:
        classifications = [
            LineClassification(
                order_no=row["order_no"],
                line_no=row["line_no"],
                category=row["category"],
                subcategory=row["subcategory"],
                supplier=row.get("supplier") or "",
            )
            for row in self.repository.fetch_line_classifications()
        ]
        purchase_orders = self._select(roles[PURCHASE_ORDERS], ("order_no", "line_no", "order_date"))
        disbursements = self._select(roles[DISBURSEMENTS], ("order_no", "line_no", "payment_date", "amount"))

        details = None
        detail_role = roles.get(LINE_DETAILS)
        if detail_role is not None and all(
            detail_role.column(name) for name in ("order_no", "line_no", "order_date")
        ):
            details = self._select(detail_role, ("order_no", "line_no", "order_date"))

        return self.linker.link(classifications, purchase_orders, disbursements, details)

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------
    def _counts(self) -> Dict[str, int]:
        return {row["subcategory"]: int(row["n"]) for row in self.repository.subcategory_counts()}

    def summary(self) -> Dict[str, Any]:
        self._ensure_idle()
        taxonomy = self.state.taxonomy
        suppliers_by_subcategory: Dict[str, List[str]] = {}
        for row in self.repository.subcategory_suppliers():
            suppliers_by_subcategory.setdefault(row["subcategory"], []).append(row["supplier"])
        return {
            "taxonomy": taxonomy.as_list(),
            "suppliers": self.repository.suppliers(),
            "categories": taxonomy.by_category(),
            "subcategory_suppliers": suppliers_by_subcategory,
            "counts": self._counts(),
            "built_at": self.state.built_at_iso(),
        }

    def profile(self, subcategory: Optional[str], supplier: Optional[str]) -> Dict[str, Any]:
        """Delay histogram, cumulative curve and statistics for one pair."""

        self._ensure_idle()
        missing = [
            name
            for name, value in (("subcategory", subcategory), ("supplier", supplier))
            if not (value or "").strip()
        ]
        if missing:
            raise CatalogValidationError(f"missing parameter: {', '.join(missing)}")
        subcategory, supplier = subcategory.strip(), supplier.strip()

        series = [
            {"delay_days": int(row["delay_days"]), "amount": float(row["amount"] or 0)}
            for row in self.repository.delay_series(subcategory, supplier)
        ]
        points = [
            {
                "delay_days": None if row["delay_days"] is None else int(row["delay_days"]),
                "amount": float(row["amount"] or 0),
                "payment_date": row["payment_date"],
                "order_no": row["order_no"],
                "line_no": row["line_no"],
            }
            for row in self.repository.payment_points(subcategory, supplier)
        ]

        total = sum(entry["amount"] for entry in series)
        cumulative: List[Dict[str, Any]] = []
        running = 0.0
        for entry in series:
            running += entry["amount"]
            cumulative.append(
                {
                    "delay_days": entry["delay_days"],
                    "cum_amount": running,
                    "share": running / total if total else 0.0,
                }
            )

        quartiles: Dict[str, Dict[str, Any]] = {}
        for threshold in QUARTILE_THRESHOLDS:
            hit = next((point for point in cumulative if point["share"] >= threshold), None)
            if hit is not None:
                quartiles[str(threshold)] = {"delay_days": hit["delay_days"], "cum_amount": hit["cum_amount"]}

        raw_stats = self.repository.delay_stats(subcategory, supplier)
        stats = {
            "n_payments": int(raw_stats.get("n_payments") or 0),
            "total": float(raw_stats.get("total") or 0),
            "median_delay": float(raw_stats.get("median_delay") or 0),
            "p25": float(raw_stats.get("p25") or 0),
            "p75": float(raw_stats.get("p75") or 0),
        }
        return {
            "subcategory": subcategory,
            "supplier": supplier,
            "series": series,
            "points": points,
            "cumulative": cumulative,
            "stats": stats,
            "quartiles": quartiles,
        }

    # ------------------------------------------------------------------
    # Export / import
    # ------------------------------------------------------------------
    def export(self) -> Dict[str, Any]:
        self._ensure_idle()
        return {
            "taxonomy": self.state.taxonomy.as_list(),
            "mappings": self.repository.fetch_line_classifications(),
            "built_at": self.state.built_at_iso(),
        }

    def import_catalog(self, payload: Any) -> Dict[str, Any]:
        if not isinstance(payload, dict) or not isinstance(payload.get("taxonomy"), list):
            raise CatalogValidationError("Invalid catalogue: 'taxonomy' must be a list.")
        raw_mappings = payload.get("mappings", [])
        if raw_mappings is None:
            raw_mappings = []
        if not isinstance(raw_mappings, list):
            raise CatalogValidationError("Invalid catalogue: 'mappings' must be a list.")

        try:
            entries = [ImportedTaxonomyEntry.model_validate(item) for item in payload["taxonomy"]]
            taxonomy = CanonicalTaxonomy(entry.model_dump() for entry in entries)
            mappings = [ImportedMapping.model_validate(item) for item in raw_mappings]
        except (ValidationError, TypeError, AttributeError) as exc:
            raise CatalogValidationError(f"Invalid catalogue: {exc}") from exc

        with self._exclusive("import"):
            self.repository.recreate_schema()
            self.repository.insert_line_classifications(
                LineClassification(**mapping.model_dump()) for mapping in mappings
            )

            tables: Dict[str, Optional[str]] = {}
            columns: Dict[str, Dict[str, str]] = {}
            payments = 0
            try:
                roles = assign_roles(self.store.get_schema())
            except CatalogBuildError as exc:
                logger.warning("Imported catalogue not linked to payments: %s", exc)
            else:
                linkage = self._link(roles)
                payments = self.repository.insert_payments(linkage.records)
                tables = {role: (a.table if a else None) for role, a in roles.items()}
                columns = {role: dict(a.columns) for role, a in roles.items() if a}

            self.state = CatalogState(
                taxonomy=taxonomy.finalize(),
                tables=tables,
                columns=columns,
                built_at=datetime.now(timezone.utc),
            )
        logger.info("Imported catalogue with %d mappings and %d payments", len(mappings), payments)
        return {"ok": True, "mappings": len(mappings), "payments": payments}


__all__ = ["CatalogService", "CatalogState", "ImportedMapping", "QUARTILE_THRESHOLDS"]
