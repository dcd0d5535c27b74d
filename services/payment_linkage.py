"""Link classified purchase-order lines to disbursements and compute payment delays.

Order and line identifiers are compared through several normalised keys (see
:mod:`utils.normalization`) with OR semantics:

* order: alnum key, numeric key or numeric suffix containment either way,
  raw text, integer key;
* line: alnum key, numeric key, raw text, integer key, or the disbursement
  carries no line key at all (it then matches every line of the order).

Matching runs on hash indexes built once per disbursement table so large
exports are never compared as a cross product.
"""
from __future__ import annotations

import logging
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

import pandas as pd

from config.settings import settings
from models.catalog import LineClassification, PaymentRecord
from utils.normalization import (
    alnum_key,
    as_text,
    integer_key,
    normalize_date,
    numeric_key,
    parse_amount,
)

logger = logging.getLogger(__name__)

ORDER_DATE_SOURCES = ("purchase_orders", "line_details", "first_payment", "missing")


@dataclass(frozen=True)
class IdentifierKeys:
    raw: Optional[str]
    alnum: Optional[str]
    numeric: Optional[str]
    integer: Optional[int]

    @classmethod
    def from_value(cls, value: Any) -> "IdentifierKeys":
        return cls(
            raw=as_text(value),
            alnum=alnum_key(value),
            numeric=numeric_key(value),
            integer=integer_key(value),
        )

    @property
    def absent(self) -> bool:
        return self.alnum is None and self.numeric is None

    def matches(self, other: "IdentifierKeys") -> bool:
        return any(
            mine is not None and mine == theirs
            for mine, theirs in (
                (self.alnum, other.alnum),
                (self.numeric, other.numeric),
                (self.raw, other.raw),
                (self.integer, other.integer),
            )
        )


@dataclass(frozen=True)
class Disbursement:
    position: int
    order: IdentifierKeys
    line: IdentifierKeys
    payment_date: date
    amount: float


@dataclass
class LinkageResult:
    records: List[PaymentRecord] = field(default_factory=list)
    diagnostics: Dict[str, Any] = field(default_factory=dict)


class DisbursementIndex:
    """Hash indexes over eligible disbursements keyed by normalised order keys."""

    def __init__(self, rows: Iterable[Disbursement], min_suffix_length: int = 1) -> None:
        self.rows: List[Disbursement] = list(rows)
        self.min_suffix_length = max(1, int(min_suffix_length))
        self._alnum: Dict[str, List[int]] = defaultdict(list)
        self._numeric: Dict[str, List[int]] = defaultdict(list)
        self._numeric_suffix: Dict[str, List[int]] = defaultdict(list)
        self._raw: Dict[str, List[int]] = defaultdict(list)
        self._integer: Dict[int, List[int]] = defaultdict(list)
        for idx, row in enumerate(self.rows):
            keys = row.order
            if keys.alnum is not None:
                self._alnum[keys.alnum].append(idx)
            if keys.raw is not None:
                self._raw[keys.raw].append(idx)
            if keys.integer is not None:
                self._integer[keys.integer].append(idx)
            if keys.numeric is not None:
                self._numeric[keys.numeric].append(idx)
                for suffix in self._proper_suffixes(keys.numeric):
                    self._numeric_suffix[suffix].append(idx)

    def _proper_suffixes(self, value: str) -> Iterable[str]:
        for start in range(1, len(value)):
            suffix = value[start:]
            if len(suffix) < self.min_suffix_length:
                break
            yield suffix

    def order_candidates(self, keys: IdentifierKeys) -> Set[int]:
        found: Set[int] = set()
        if keys.alnum is not None:
            found.update(self._alnum.get(keys.alnum, ()))
        if keys.raw is not None:
            found.update(self._raw.get(keys.raw, ()))
        if keys.integer is not None:
            found.update(self._integer.get(keys.integer, ()))
        if keys.numeric is not None:
            found.update(self._numeric.get(keys.numeric, ()))
            if len(keys.numeric) >= self.min_suffix_length:
                # disbursement key ends with ours
                found.update(self._numeric_suffix.get(keys.numeric, ()))
            # our key ends with the disbursement key
            for suffix in self._proper_suffixes(keys.numeric):
                found.update(self._numeric.get(suffix, ()))
        return found

    def match(self, order: IdentifierKeys, line: IdentifierKeys) -> List[Disbursement]:
        matched = [
            self.rows[idx]
            for idx in self.order_candidates(order)
            if self.rows[idx].line.absent or self.rows[idx].line.matches(line)
        ]
        matched.sort(key=lambda row: (row.payment_date, row.position))
        return matched


class PaymentLinker:
    """Produce :class:`PaymentRecord` rows for classified purchase-order lines."""

    def __init__(self, min_suffix_length: Optional[int] = None) -> None:
        if min_suffix_length is None:
            min_suffix_length = getattr(settings, "catalog_min_suffix_match_length", 1)
        self.min_suffix_length = max(1, int(min_suffix_length))

    def link(
        self,
        classifications: Iterable[LineClassification],
        purchase_orders: pd.DataFrame,
        disbursements: pd.DataFrame,
        details: Optional[pd.DataFrame] = None,
    ) -> LinkageResult:
        """Join ``classifications`` to ``disbursements``.

        ``purchase_orders`` exposes ``order_no``, ``line_no`` and optionally
        ``order_date``; ``disbursements`` exposes ``order_no``, ``line_no``,
        ``payment_date`` and ``amount``; ``details`` exposes ``order_no``,
        ``line_no`` and ``order_date``.
        """

        eligible, skipped = self._eligible_disbursements(disbursements)
        index = DisbursementIndex(eligible, self.min_suffix_length)
        direct_dates = self._direct_order_dates(purchase_orders)
        detail_dates = self._detail_order_dates(details)

        records: List[PaymentRecord] = []
        matched_rows: Set[int] = set()
        sources: Counter = Counter()
        linked_lines = 0

        for item in classifications:
            order = IdentifierKeys.from_value(item.order_no)
            line = IdentifierKeys.from_value(item.line_no)
            payments = index.match(order, line)

            order_date, source = self._resolve_order_date(
                direct_dates.get((as_text(item.order_no), as_text(item.line_no))),
                detail_dates.get((order.alnum, line.alnum)),
                payments,
            )
            sources[source] += 1
            if payments:
                linked_lines += 1
            for payment in payments:
                matched_rows.add(payment.position)
                delay = (payment.payment_date - order_date).days if order_date else None
                records.append(
                    PaymentRecord(
                        category=item.category,
                        subcategory=item.subcategory,
                        supplier=item.supplier or "",
                        order_no=item.order_no,
                        line_no=item.line_no,
                        order_date=order_date,
                        payment_date=payment.payment_date,
                        amount=payment.amount,
                        delay_days=delay,
                    )
                )

        unmatched = len(eligible) - len(matched_rows)
        diagnostics = {
            "disbursement_rows": int(len(disbursements)) if disbursements is not None else 0,
            "eligible_disbursements": len(eligible),
            "skipped_unparsable_amount": skipped["amount"],
            "skipped_unparsable_date": skipped["date"],
            "matched_disbursements": len(matched_rows),
            "unmatched_disbursements": unmatched,
            "linked_lines": linked_lines,
            "payments": len(records),
            "order_date_sources": {name: sources.get(name, 0) for name in ORDER_DATE_SOURCES},
        }
        if unmatched:
            logger.info("%d eligible disbursements matched no classified purchase-order line", unmatched)
        if skipped["amount"] or skipped["date"]:
            logger.info(
                "Skipped disbursements: %d unparsable amounts, %d unparsable dates",
                skipped["amount"],
                skipped["date"],
            )
        return LinkageResult(records=records, diagnostics=diagnostics)

    @staticmethod
    def _resolve_order_date(
        direct: Optional[date],
        detail: Optional[date],
        payments: List[Disbursement],
    ) -> Tuple[Optional[date], str]:
        if direct is not None:
            return direct, "purchase_orders"
        if detail is not None:
            return detail, "line_details"
        if payments:
            return min(payment.payment_date for payment in payments), "first_payment"
        return None, "missing"

    @staticmethod
    def _eligible_disbursements(frame: Optional[pd.DataFrame]) -> Tuple[List[Disbursement], Counter]:
        skipped: Counter = Counter()
        rows: List[Disbursement] = []
        if frame is None or frame.empty:
            return rows, skipped
        for position, record in enumerate(frame.to_dict("records")):
            payment_date = normalize_date(record.get("payment_date"))
            amount = parse_amount(record.get("amount"))
            if payment_date is None:
                skipped["date"] += 1
                continue
            if amount is None:
                skipped["amount"] += 1
                continue
            rows.append(
                Disbursement(
                    position=position,
                    order=IdentifierKeys.from_value(record.get("order_no")),
                    line=IdentifierKeys.from_value(record.get("line_no")),
                    payment_date=payment_date,
                    amount=amount,
                )
            )
        return rows, skipped

    @staticmethod
    def _direct_order_dates(frame: Optional[pd.DataFrame]) -> Dict[Tuple[Optional[str], Optional[str]], date]:
        dates: Dict[Tuple[Optional[str], Optional[str]], date] = {}
        if frame is None or frame.empty or "order_date" not in frame.columns:
            return dates
        for record in frame.to_dict("records"):
            value = normalize_date(record.get("order_date"))
            if value is None:
                continue
            key = (as_text(record.get("order_no")), as_text(record.get("line_no")))
            if key not in dates or value < dates[key]:
                dates[key] = value
        return dates

    @staticmethod
    def _detail_order_dates(frame: Optional[pd.DataFrame]) -> Dict[Tuple[Optional[str], Optional[str]], date]:
        dates: Dict[Tuple[Optional[str], Optional[str]], date] = {}
        if frame is None or frame.empty or "order_date" not in frame.columns:
            return dates
        for record in frame.to_dict("records"):
            value = normalize_date(record.get("order_date"))
            if value is None:
                continue
            key = (alnum_key(record.get("order_no")), alnum_key(record.get("line_no")))
            if key[0] is None or key[1] is None:
                continue
            if key not in dates or value < dates[key]:
                dates[key] = value
        return dates


__all__ = [
    "Disbursement",
    "DisbursementIndex",
    "IdentifierKeys",
    "LinkageResult",
    "ORDER_DATE_SOURCES",
    "PaymentLinker",
]
