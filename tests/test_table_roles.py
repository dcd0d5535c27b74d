import os
import sys

import pytest

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from services.analytics_store import ColumnInfo
from services.catalog_errors import CatalogBuildError
from services.table_roles import assign_roles, resolve_column, score_table
from utils.normalization import slugify_header
from utils.procurement_schema import (
    DISBURSEMENTS,
    LINE_DETAILS,
    PURCHASE_ORDERS,
    ROLE_SCHEMAS,
)


def _columns(*labels):
    return [ColumnInfo(name=slugify_header(label), type="VARCHAR", original_label=label) for label in labels]


PO_COLUMNS = _columns(
    "N° Commande",
    "N° Ligne Commande",
    "Type de ligne",
    "Description de la commande",
    "Description de la ligne",
    "Fournisseur",
    "Date commande",
)
DISBURSEMENT_COLUMNS = _columns("N° Commande", "N° Ligne Commande", "Date règlement", "Montant règlement")
DETAIL_COLUMNS = _columns("N° Commande", "N° Ligne Commande", "Date engagement")


def test_resolve_column_prefers_exact_label():
    columns = _columns("Montant", "Montant règlement")
    assert resolve_column(columns, ["Montant règlement", "Montant"]) == "montant_reglement"


def test_resolve_column_matches_normalized_name_and_accents():
    columns = [ColumnInfo(name="date_reglement", type="DATE", original_label="")]
    assert resolve_column(columns, ["date reglement", "date_reglement"]) == "date_reglement"
    assert resolve_column(_columns("DATE DE RÈGLEMENT"), ["Date de reglement"]) == "date_de_reglement"


def test_resolve_column_alias_order_beats_match_tier():
    # "Numero de commande" is contained in the first column; it is tried before
    # "Commande", which would match the second column exactly.
    columns = _columns("Numéro de commande fournisseur", "Commande")
    aliases = ROLE_SCHEMAS[PURCHASE_ORDERS].aliases("order_no")
    assert resolve_column(columns, aliases) == "numero_de_commande_fournisseur"


def test_resolve_column_returns_none_without_match():
    assert resolve_column(_columns("Foo", "Bar"), ["Montant"]) is None
    assert resolve_column([], ["Montant"]) is None


def test_score_table_purchase_orders():
    result = score_table(PO_COLUMNS, ROLE_SCHEMAS[PURCHASE_ORDERS])
    # six scored fields plus the descriptive bonus; supplier is not scored
    assert result.score == 13
    assert result.columns["supplier"] == "fournisseur"
    assert result.columns["order_description"] == "description_de_la_commande"


def test_score_table_disbursements_bonus():
    result = score_table(DISBURSEMENT_COLUMNS, ROLE_SCHEMAS[DISBURSEMENTS])
    assert result.score == 4 * 2 + 2 + 1
    assert result.columns["amount"] == "montant_reglement"
    assert result.columns["payment_date"] == "date_reglement"


def test_assign_roles_claims_each_table_once():
    roles = assign_roles(
        {
            "detail": DETAIL_COLUMNS,
            "reglements": DISBURSEMENT_COLUMNS,
            "commandes": PO_COLUMNS,
        }
    )
    assert roles[PURCHASE_ORDERS].table == "commandes"
    assert roles[DISBURSEMENTS].table == "reglements"
    assert roles[LINE_DETAILS].table == "detail"
    assert roles[LINE_DETAILS].column("order_date") == "date_engagement"


def test_descriptive_columns_break_ties_for_purchase_orders():
    plain = _columns("N° Commande", "N° Ligne Commande", "Type de ligne")
    described = _columns("N° Commande", "N° Ligne Commande", "Description de la ligne")
    roles = assign_roles(
        {
            "a_plain": plain,
            "b_described": described,
            "reglements": DISBURSEMENT_COLUMNS,
        }
    )
    assert roles[PURCHASE_ORDERS].table == "b_described"


def test_assign_roles_without_tables():
    with pytest.raises(CatalogBuildError, match="No tables are loaded"):
        assign_roles({})


def test_assign_roles_requires_disbursements():
    with pytest.raises(CatalogBuildError, match="disbursements"):
        assign_roles({"commandes": PO_COLUMNS})


def test_assign_roles_reports_missing_disbursement_columns():
    partial = _columns("N° Commande", "N° Ligne Commande", "Montant règlement")
    with pytest.raises(CatalogBuildError, match="payment_date"):
        assign_roles({"commandes": PO_COLUMNS, "reglements": partial})


def test_line_details_are_optional():
    roles = assign_roles({"commandes": PO_COLUMNS, "reglements": DISBURSEMENT_COLUMNS})
    assert roles[LINE_DETAILS] is None
