"""Header-driven detection of which uploaded table plays which catalogue role.

Spreadsheet exports reach the catalogue with arbitrary table names, so the
purchase-order, disbursement and line-detail tables are recognised from their
column headers alone.  Each logical field has an ordered list of known header
variants (see :mod:`utils.procurement_schema`); a table is scored against every
role and the best unused table is claimed role by role.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from services.catalog_errors import CatalogBuildError
from utils.normalization import fold_label
from utils.procurement_schema import (
    DESCRIPTIVE_FIELDS,
    DISBURSEMENTS,
    LINE_DETAILS,
    PURCHASE_ORDERS,
    ROLE_ORDER,
    ROLE_SCHEMAS,
    RoleSchema,
)

logger = logging.getLogger(__name__)


@dataclass
class RoleScore:
    score: int
    columns: Dict[str, str] = field(default_factory=dict)


@dataclass
class RoleAssignment:
    """A table claimed for a role together with its resolved columns."""

    role: str
    table: str
    columns: Dict[str, str]
    score: int

    def column(self, name: str) -> Optional[str]:
        return self.columns.get(name)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "role": self.role,
            "table": self.table,
            "columns": dict(self.columns),
            "score": self.score,
        }


def _column_forms(column: Any) -> Tuple[str, str, str]:
    if isinstance(column, Mapping):
        name = str(column.get("name") or "")
        original = column.get("original_label", column.get("original")) or ""
    else:
        name = str(getattr(column, "name", "") or "")
        original = getattr(column, "original_label", "") or ""
    return name, fold_label(name), fold_label(original)


def resolve_column(columns: Sequence[Any], aliases: Sequence[str]) -> Optional[str]:
    """Return the physical column best matching ``aliases`` or ``None``.

    Aliases are tried in priority order.  For each alias the columns are
    checked for, in turn, an exact match on the original header label, an
    exact match on the normalised name, the alias contained in the label and
    the alias contained in the normalised name.  The first alias yielding any
    hit wins, so an early alias matched by containment beats a later alias
    matched exactly.
    """

    if not columns or not aliases:
        return None
    forms = [_column_forms(column) for column in columns]
    for alias in aliases:
        wanted = fold_label(alias)
        if not wanted:
            continue
        for matches in (
            lambda norm, orig: orig == wanted,
            lambda norm, orig: norm == wanted,
            lambda norm, orig: wanted in orig,
            lambda norm, orig: wanted in norm,
        ):
            for name, norm, orig in forms:
                if matches(norm, orig):
                    return name
    return None


def score_table(columns: Sequence[Any], role_schema: RoleSchema) -> RoleScore:
    """Score how well ``columns`` fit ``role_schema``."""

    resolved: Dict[str, str] = {}
    score = 0
    for name, spec in role_schema.fields.items():
        column = resolve_column(columns, spec.aliases)
        if column is None:
            continue
        resolved[name] = column
        if spec.scored:
            score += 2
    if "amount" in resolved:
        score += 2
    if "payment_date" in resolved:
        score += 1
    if any(name in resolved for name in DESCRIPTIVE_FIELDS):
        score += 1
    return RoleScore(score=score, columns=resolved)


def assign_roles(
    schema: Mapping[str, Sequence[Any]],
    role_schemas: Mapping[str, RoleSchema] = ROLE_SCHEMAS,
) -> Dict[str, Optional[RoleAssignment]]:
    """Greedily assign the best scoring unused table to each role.

    Purchase orders are claimed first, then disbursements, then line details.
    Raises :class:`CatalogBuildError` when the mandatory roles cannot be
    satisfied; line details are optional.
    """

    tables = list(schema or {})
    if not tables:
        raise CatalogBuildError("No tables are loaded.")

    scored: Dict[str, Dict[str, RoleScore]] = {
        table: {role: score_table(schema[table], role_schemas[role]) for role in ROLE_ORDER}
        for table in tables
    }

    used: set = set()
    picked: Dict[str, Optional[RoleAssignment]] = {}
    for role in ROLE_ORDER:
        ranked = sorted(tables, key=lambda table: scored[table][role].score, reverse=True)
        best = next(
            (table for table in ranked if table not in used and scored[table][role].score > 0),
            None,
        )
        if best is None:
            picked[role] = None
            continue
        used.add(best)
        result = scored[best][role]
        picked[role] = RoleAssignment(role=role, table=best, columns=dict(result.columns), score=result.score)
        logger.info("Table %s assigned to %s (score %d)", best, role, result.score)

    _require(picked.get(PURCHASE_ORDERS), role_schemas[PURCHASE_ORDERS],
             "Unable to identify the purchase orders table (order number + line number columns).")
    _require(picked.get(DISBURSEMENTS), role_schemas[DISBURSEMENTS],
             "Unable to identify the disbursements table (order/line + amount + payment date columns).")
    picked.setdefault(LINE_DETAILS, None)
    return picked


def _require(assignment: Optional[RoleAssignment], role_schema: RoleSchema, message: str) -> None:
    if assignment is None:
        raise CatalogBuildError(message)
    missing: List[str] = [name for name in role_schema.required if not assignment.column(name)]
    if missing:
        raise CatalogBuildError(f"{message} Missing in '{assignment.table}': {', '.join(missing)}.")


__all__ = ["RoleAssignment", "RoleScore", "assign_roles", "resolve_column", "score_table"]
