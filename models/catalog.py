from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Optional

KEY_SEPARATOR = "|||"


def line_key(order_no: str, line_no: str) -> str:
    """Key identifying a purchase-order line inside a classification batch."""

    return f"{order_no}{KEY_SEPARATOR}{line_no}"


def split_line_key(key: Any) -> tuple:
    text = "" if key is None else str(key)
    order_no, _, line_no = text.partition(KEY_SEPARATOR)
    return order_no.strip(), line_no.strip()


@dataclass(frozen=True)
class PurchaseOrderLine:
    """A purchase-order line as read from the purchase orders table."""

    order_no: str
    line_no: str
    line_type: str = ""
    order_description: str = ""
    line_description: str = ""
    supplier: str = ""

    @property
    def key(self) -> str:
        return line_key(self.order_no, self.line_no)

    def prompt_item(self) -> Dict[str, str]:
        return {
            "key": self.key,
            "line_type": self.line_type,
            "order_description": self.order_description,
            "line_description": self.line_description,
            "supplier": self.supplier,
        }


@dataclass(frozen=True)
class LineClassification:
    order_no: str
    line_no: str
    category: str
    subcategory: str
    supplier: str = ""

    def to_record(self) -> Dict[str, Any]:
        return {
            "order_no": self.order_no,
            "line_no": self.line_no,
            "category": self.category,
            "subcategory": self.subcategory,
            "supplier": self.supplier,
        }


@dataclass(frozen=True)
class PaymentRecord:
    """One disbursement linked to a classified purchase-order line."""

    category: str
    subcategory: str
    supplier: str
    order_no: str
    line_no: str
    order_date: Optional[date]
    payment_date: date
    amount: float
    delay_days: Optional[int]

    def to_record(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "subcategory": self.subcategory,
            "supplier": self.supplier,
            "order_no": self.order_no,
            "line_no": self.line_no,
            "order_date": self.order_date,
            "payment_date": self.payment_date,
            "amount": float(self.amount),
            "delay_days": self.delay_days,
        }
