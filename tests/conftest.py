import json
import os
import re
import sys
from typing import Any, Callable, Dict, List, Optional

import pandas as pd
import pytest

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from services.analytics_store import AnalyticsStore

_KEY_PATTERN = re.compile(r'"key": "([^"<]+)"')

Responder = Callable[[List[str], int], Any]


def assign_all(category: str, subcategory: str) -> Responder:
    def responder(keys, _call):
        return {
            "assignments": [
                {"key": key, "category": category, "subcategory": subcategory} for key in keys
            ],
            "aliases": [],
            "new_categories": [],
        }

    return responder


def assign_by_order(mapping: Dict[str, tuple], default: tuple = ("Misc", "Misc")) -> Responder:
    def responder(keys, _call):
        assignments = []
        for key in keys:
            category, subcategory = mapping.get(key.split("|||")[0], default)
            assignments.append({"key": key, "category": category, "subcategory": subcategory})
        return {"assignments": assignments, "aliases": [], "new_categories": []}

    return responder


class StubLLMClient:
    """Records prompts and answers with whatever ``responder`` returns.

    ``responder(keys, call_number)`` receives the keys found in the prompt. It
    may return a dict (serialised to JSON), a raw string, or an exception
    instance which is raised instead of answering.
    """

    def __init__(self, responder: Optional[Responder] = None) -> None:
        self.responder = responder or assign_all("Services", "Consulting")
        self.calls: List[Dict[str, Any]] = []

    def complete(self, messages, *, model=None, temperature=None, options=None):
        messages = list(messages)
        keys = _KEY_PATTERN.findall(messages[-1]["content"])
        self.calls.append({"messages": messages, "keys": keys, "model": model})
        reply = self.responder(keys, len(self.calls))
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, str):
            return reply
        return json.dumps(reply)


def purchase_orders_frame() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "PO Number": ["PO-6903033", "PO-6903033", "PO-7000001", "PO-7000002"],
            "PO Line Number": [10, 20, 1, 1],
            "Line Type": ["Service", "Service", "Goods", "Goods"],
            "Order Description": ["IT consulting", "IT consulting", "Office chairs", "Laptops"],
            "Line Description": ["Architecture review", "Security audit", "Ergonomic chair", "14 inch laptop"],
            "Supplier Name": ["Acme", "Acme", "Chairly", "Lapco"],
            "Order Date": ["2024-01-01", "2024-01-01", None, "2024-03-01"],
        }
    )


def disbursements_frame() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "PO Number": [6903033.0, 6903033.0, 6903033.0, 7000001.0, 9999999.0, 7000002.0],
            "PO Line Number": [10.0, 10.0, 20.0, 1.0, 1.0, 1.0],
            "Payment Date": ["2024-01-06", "2024-01-06", "2024-01-11", "2024-02-15", "2024-02-01", "not a date"],
            "Payment Amount": [100.0, 200.0, 300.0, 50.0, 75.0, 20.0],
        }
    )


CATEGORY_BY_ORDER = {
    "PO-6903033": ("IT", "Consulting"),
    "PO-7000001": ("Furniture", "Chairs"),
    "PO-7000002": ("IT", "Hardware"),
}


@pytest.fixture
def store():
    store = AnalyticsStore(":memory:")
    yield store
    store.close()


@pytest.fixture
def loaded_store(store):
    store.ingest_frame(purchase_orders_frame(), "purchase_orders_export")
    store.ingest_frame(disbursements_frame(), "reglements")
    return store


@pytest.fixture
def stub_llm():
    return StubLLMClient(assign_by_order(CATEGORY_BY_ORDER))
