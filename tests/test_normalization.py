import os
import sys
from datetime import date, datetime

import pandas as pd
import pytest

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from utils.normalization import (
    alnum_key,
    as_text,
    fold_label,
    integer_key,
    normalize_date,
    numeric_key,
    parse_amount,
    slugify_header,
)


def test_keys_for_prefixed_order_number():
    assert alnum_key("PO-6903033") == "PO6903033"
    assert numeric_key("PO-6903033") == "6903033"
    assert integer_key("PO-6903033") == 6903033


def test_float_artefact_renders_like_integer_text():
    assert as_text(6903033.0) == "6903033"
    assert numeric_key(6903033.0) == "6903033"
    assert alnum_key(6903033.0) == "6903033"
    assert integer_key(6903033.0) == 6903033


def test_zero_padding_is_stripped_from_numeric_key():
    assert numeric_key("0010") == "10"
    assert alnum_key("0010") == "0010"
    assert integer_key("0010") == 10


def test_empty_and_placeholder_values_yield_no_key():
    for value in (None, "", "   ", float("nan"), pd.NA):
        assert alnum_key(value) is None
        assert numeric_key(value) is None
        assert integer_key(value) is None
    assert alnum_key("-") is None
    assert numeric_key("ABC") is None
    assert numeric_key("000") is None


def test_keys_are_idempotent():
    for value in ("PO-6903033", " l-0010 ", 42.0):
        assert alnum_key(alnum_key(value)) == alnum_key(value)
        assert numeric_key(numeric_key(value)) == numeric_key(value)


@pytest.mark.parametrize(
    "value, expected",
    [
        ("2024-05-31", date(2024, 5, 31)),
        ("2024-05-31T14:20:00", date(2024, 5, 31)),
        ("31/05/2024", date(2024, 5, 31)),
        ("31-05-2024", date(2024, 5, 31)),
        (45443, date(2024, 5, 31)),
        ("45443", date(2024, 5, 31)),
        (datetime(2024, 5, 31, 8, 0), date(2024, 5, 31)),
        (pd.Timestamp("2024-05-31 10:00"), date(2024, 5, 31)),
        (date(2024, 5, 31), date(2024, 5, 31)),
    ],
)
def test_normalize_date_encodings(value, expected):
    assert normalize_date(value) == expected


def test_normalize_date_rejects_garbage():
    assert normalize_date("not a date") is None
    assert normalize_date(None) is None
    assert normalize_date("") is None


def test_parse_amount_variants():
    assert parse_amount("1 234,50 €") == pytest.approx(1234.5)
    assert parse_amount(300) == 300.0
    assert parse_amount("-12.5") == -12.5
    assert parse_amount("n/a") is None
    assert parse_amount(float("nan")) is None
    assert parse_amount(None) is None


def test_parse_amount_rejects_thousands_comma_with_decimal_point():
    assert parse_amount("1,234.50") is None
    assert parse_amount("1234.50") == pytest.approx(1234.5)


def test_header_helpers():
    assert fold_label("  Numéro de Commande ") == "numero de commande"
    assert slugify_header("N° Ligne Commande") == "n_ligne_commande"
    assert slugify_header("2024 budget") == "c_2024_budget"
    assert slugify_header("???") == "column"
