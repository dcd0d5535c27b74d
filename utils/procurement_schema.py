from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Tuple

PURCHASE_ORDERS = "purchase_orders"
DISBURSEMENTS = "disbursements"
LINE_DETAILS = "line_details"

ROLE_ORDER: Tuple[str, ...] = (PURCHASE_ORDERS, DISBURSEMENTS, LINE_DETAILS)

# Logical fields whose presence marks a table as carrying descriptive text.
DESCRIPTIVE_FIELDS: Tuple[str, ...] = ("order_description", "line_description")
# Fields the classification prompt can use as signal.
CLASSIFICATION_TEXT_FIELDS: Tuple[str, ...] = (
    "line_type",
    "order_description",
    "line_description",
)


@dataclass(frozen=True)
class FieldSpec:
    """Header label variants for one logical field, in priority order."""

    aliases: Tuple[str, ...]
    scored: bool = True


@dataclass(frozen=True)
class RoleSchema:
    role: str
    fields: Dict[str, FieldSpec]
    required: Tuple[str, ...] = ()
    label: str = ""
    optional: bool = False

    def aliases(self, name: str) -> Tuple[str, ...]:
        spec = self.fields.get(name)
        return spec.aliases if spec else ()


ROLE_SCHEMAS: Dict[str, RoleSchema] = {
    PURCHASE_ORDERS: RoleSchema(
        role=PURCHASE_ORDERS,
        label="purchase orders",
        required=("order_no", "line_no"),
        fields={
            "order_no": FieldSpec((
                "Nº de commande",
                "N° de commande",
                "N° Commande",
                "No Commande",
                "Numero de commande",
                "Numéro de commande",
                "N° commande",
                "Purchase Order Number",
                "PO Number",
                "Order Number",
                "PO No",
                "Order No",
                "Commande",
            )),
            "line_no": FieldSpec((
                "Nº de ligne de commande",
                "N° ligne commande",
                "N° Ligne Commande",
                "No Ligne Commande",
                "N° ligne de commande",
                "PO Line Number",
                "Line Number",
                "Line No",
                "Ligne",
                "N° ligne",
                "N° Ligne",
                "Line",
            )),
            "line_type": FieldSpec((
                "Type de la ligne de commande",
                "Type ligne",
                "Type de ligne",
                "Nature de ligne",
                "Line Type",
            )),
            "order_description": FieldSpec((
                "Description de la commande",
                "Description commande",
                "Order Description",
                "Description",
                "Objet",
                "Objet de la commande",
                "Intitulé",
                "Intitulé de la commande",
            )),
            "line_description": FieldSpec((
                "Description de la ligne",
                "Description Ligne",
                "Détail de ligne",
                "Libellé de ligne",
                "Line Description",
                "Item Description",
            )),
            "supplier": FieldSpec(
                (
                    "Nom du fournisseur",
                    "Fournisseur",
                    "Nom fournisseur",
                    "Raison sociale fournisseur",
                    "Supplier Name",
                    "Vendor Name",
                    "Supplier",
                    "Vendor",
                    "N° du fournisseur",
                    "Code fournisseur",
                ),
                scored=False,
            ),
            "order_date": FieldSpec((
                "Date d'approbation",
                "Date de validation",
                "Date de création",
                "Date promise",
                "Date commande",
                "Date d'engagement",
                "Approval Date",
                "Order Date",
            )),
        },
    ),
    DISBURSEMENTS: RoleSchema(
        role=DISBURSEMENTS,
        label="disbursements",
        required=("order_no", "line_no", "amount", "payment_date"),
        fields={
            "order_no": FieldSpec((
                "N° Commande",
                "N° commande",
                "No Commande",
                "Commande",
                "Numero de commande",
                "PO Number",
                "Order Number",
            )),
            "line_no": FieldSpec((
                "N° Ligne Commande",
                "N° ligne commande",
                "No Ligne Commande",
                "Ligne",
                "N° ligne",
                "PO Line Number",
                "Line Number",
                "Line No",
            )),
            "payment_date": FieldSpec((
                "Date règlement",
                "Date reglement",
                "Date de règlement",
                "Date de reglement",
                "Date paiement",
                "Date de paiement",
                "Payment Date",
                "Paid Date",
            )),
            "amount": FieldSpec((
                "Montant règlement",
                "Montant reglement",
                "Montant réglé",
                "Montant payé",
                "Montant paiement",
                "Payment Amount",
                "Paid Amount",
                "Montant",
                "Amount",
            )),
        },
    ),
    LINE_DETAILS: RoleSchema(
        role=LINE_DETAILS,
        label="line details",
        optional=True,
        fields={
            "order_no": FieldSpec((
                "N° Commande",
                "N° commande",
                "No Commande",
                "PO Number",
                "Order Number",
                "Commande",
            )),
            "line_no": FieldSpec((
                "N° Ligne Commande",
                "N° ligne commande",
                "No Ligne Commande",
                "PO Line Number",
                "Line Number",
                "Ligne",
            )),
            "order_date": FieldSpec(
                (
                    "Date engagement",
                    "Date promesse",
                    "Date estimée règlement",
                    "Date estimée reglement",
                    "Date prévue règlement",
                    "Date prévue reglement",
                    "Date commande",
                    "Date de commande",
                    "Commitment Date",
                    "Order Date",
                ),
                scored=False,
            ),
            "line_description": FieldSpec((
                "Description Ligne",
                "Description de la ligne",
                "Libellé de ligne",
                "Détail de ligne",
                "Line Description",
            )),
        },
    ),
}


__all__ = [
    "CLASSIFICATION_TEXT_FIELDS",
    "DESCRIPTIVE_FIELDS",
    "DISBURSEMENTS",
    "FieldSpec",
    "LINE_DETAILS",
    "PURCHASE_ORDERS",
    "ROLE_ORDER",
    "ROLE_SCHEMAS",
    "RoleSchema",
]
