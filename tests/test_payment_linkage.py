import os
import sys
from datetime import date

import pandas as pd

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from models.catalog import LineClassification
from services.payment_linkage import IdentifierKeys, PaymentLinker


def _classified(order_no, line_no, subcategory="Consulting", supplier="Acme"):
    return LineClassification(
        order_no=order_no, line_no=line_no, category="IT", subcategory=subcategory, supplier=supplier
    )


def _po(rows):
    return pd.DataFrame(rows, columns=["order_no", "line_no", "order_date"])


def _disbursements(rows):
    return pd.DataFrame(rows, columns=["order_no", "line_no", "payment_date", "amount"])


def test_prefixed_order_matches_float_artefact():
    result = PaymentLinker().link(
        [_classified("PO-6903033", "10")],
        _po([("PO-6903033", 10, "2024-01-01")]),
        _disbursements([(6903033.0, 10.0, "2024-01-06", 100.0)]),
    )
    assert len(result.records) == 1
    record = result.records[0]
    assert record.delay_days == 5
    assert record.order_date == date(2024, 1, 1)
    assert record.amount == 100.0


def test_suffix_containment_links_both_directions():
    disbursements = _disbursements(
        [
            ("2024006903033", "1", "2024-01-10", 10.0),
            ("3033", "1", "2024-01-11", 20.0),
        ]
    )
    result = PaymentLinker(min_suffix_length=1).link(
        [_classified("6903033", "1")], _po([("6903033", "1", "2024-01-01")]), disbursements
    )
    assert sorted(record.amount for record in result.records) == [10.0, 20.0]

    strict = PaymentLinker(min_suffix_length=5).link(
        [_classified("6903033", "1")], _po([("6903033", "1", "2024-01-01")]), disbursements
    )
    assert [record.amount for record in strict.records] == [10.0]


def test_disbursement_without_line_matches_every_line():
    result = PaymentLinker().link(
        [_classified("PO-1", "1"), _classified("PO-1", "2")],
        _po([("PO-1", "1", "2024-01-01"), ("PO-1", "2", "2024-01-01")]),
        _disbursements([("PO-1", None, "2024-01-31", 50.0), ("PO-1", "2", "2024-02-01", 5.0)]),
    )
    by_line = sorted((record.line_no, record.amount) for record in result.records)
    assert by_line == [("1", 50.0), ("2", 5.0), ("2", 50.0)]


def test_order_date_fallback_chain():
    classifications = [_classified("A-1", "1"), _classified("A-2", "1"), _classified("A-3", "1")]
    purchase_orders = _po([("A-1", "1", "2024-01-01"), ("A-2", "1", None), ("A-3", "1", None)])
    details = pd.DataFrame(
        [("A2", "01", "2024-01-05"), ("A-2", "1", "2024-01-03")],
        columns=["order_no", "line_no", "order_date"],
    )
    disbursements = _disbursements(
        [
            ("A-1", "1", "2024-01-11", 1.0),
            ("A-2", "1", "2024-01-13", 2.0),
            ("A-3", "1", "2024-01-20", 3.0),
            ("A-3", "1", "2024-01-15", 4.0),
        ]
    )
    result = PaymentLinker().link(classifications, purchase_orders, disbursements, details)

    delays = {(record.order_no, record.amount): record.delay_days for record in result.records}
    assert delays[("A-1", 1.0)] == 10
    # details are keyed on alnum keys: "A2|1" only matches the second detail row
    assert delays[("A-2", 2.0)] == 10
    # no direct or detail date: earliest matched payment date
    assert delays[("A-3", 3.0)] == 5
    assert delays[("A-3", 4.0)] == 0
    assert result.diagnostics["order_date_sources"] == {
        "purchase_orders": 1,
        "line_details": 1,
        "first_payment": 1,
        "missing": 0,
    }


def test_unparsable_rows_are_skipped_and_counted():
    result = PaymentLinker().link(
        [_classified("PO-1", "1")],
        _po([("PO-1", "1", "2024-01-01")]),
        _disbursements(
            [
                ("PO-1", "1", "garbage", 10.0),
                ("PO-1", "1", "2024-01-02", "n/a"),
                ("PO-1", "1", "2024-01-03", "1 000,50"),
                ("PO-1", "1", "2024-01-05", "1,234.50"),
                ("PO-9", "1", "2024-01-04", 7.0),
            ]
        ),
    )
    assert [record.amount for record in result.records] == [1000.5]
    diagnostics = result.diagnostics
    assert diagnostics["skipped_unparsable_date"] == 1
    assert diagnostics["skipped_unparsable_amount"] == 2
    assert diagnostics["eligible_disbursements"] == 2
    assert diagnostics["matched_disbursements"] == 1
    assert diagnostics["unmatched_disbursements"] == 1


def test_first_payment_fallback_and_missing_order_date():
    result = PaymentLinker().link(
        [_classified("PO-1", "1"), _classified("PO-2", "1")],
        _po([("PO-1", "1", None), ("PO-2", "1", None)]),
        _disbursements([("PO-1", "1", "2024-01-02", 10.0)]),
    )
    assert [record.delay_days for record in result.records] == [0]
    assert result.diagnostics["order_date_sources"]["missing"] == 1


def test_identifier_keys_line_predicate():
    assert IdentifierKeys.from_value("0010").matches(IdentifierKeys.from_value(10))
    assert not IdentifierKeys.from_value("20").matches(IdentifierKeys.from_value("10"))
    assert IdentifierKeys.from_value(None).absent
    assert IdentifierKeys.from_value("-").absent
