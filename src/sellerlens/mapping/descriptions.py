"""Canonical labels for free-text fee and adjustment descriptions.

Descriptions vary by seller locale even inside one marketplace, so every rule
carries synonyms for all supported languages. Rules are ordered: narrower
labels (e.g. long-term storage) must be checked before broader ones (storage).
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Optional, Tuple


PARTNERED_CARRIER_FEE = "Partnered Carrier Fee"
LONG_TERM_STORAGE_FEE = "Long-Term Storage Fee"
STORAGE_FEE = "Storage Fee"
DISPOSAL_FEE = "Disposal Fee"
INBOUND_PLACEMENT_FEE = "Inbound/Placement Fee"
RETURN_FEE = "Return Fee"
CAPACITY_RESERVATION_FEE = "Capacity Reservation Fee"
FBA_INVENTORY_FEE_OTHER = "FBA Inventory Fee (Other)"
OTHER = "Other"

FAILED_DISBURSEMENT = "Failed disbursement"
BUYER_RECHARGE = "Buyer Recharge"
ATOZ_GUARANTEE_RECOVERY = "A-to-z Guarantee Recovery"
REIMBURSEMENT = "FBA Inventory Reimbursement"
REIMBURSEMENT_LOST_OUTBOUND = "FBA Inventory Reimbursement - Lost:Outbound"
REIMBURSEMENT_LOST_WAREHOUSE = "FBA Inventory Reimbursement - Lost:Warehouse"
REIMBURSEMENT_DAMAGED_WAREHOUSE = "FBA Inventory Reimbursement - Damaged:Warehouse"
REIMBURSEMENT_CUSTOMER_RETURN = "FBA Inventory Reimbursement - Customer Return"
REIMBURSEMENT_CUSTOMER_SERVICE = "FBA Inventory Reimbursement - Customer Service Issue"
REIMBURSEMENT_GENERAL = "FBA Inventory Reimbursement - General Adjustment"

FBA_SHIPMENT_ID = re.compile(r"^FBA[0-9A-Z]+$", re.IGNORECASE)


def _any(*tokens: str) -> Callable[[str], bool]:
    return lambda text: any(t in text for t in tokens)


def _all(*tokens: str) -> Callable[[str], bool]:
    return lambda text: all(t in text for t in tokens)


def _either(*preds: Callable[[str], bool]) -> Callable[[str], bool]:
    return lambda text: any(p(text) for p in preds)


@dataclass(frozen=True)
class DescriptionRule:
    label: str
    test: Callable[[str], bool]


INVENTORY_FEE_RULES: Tuple[DescriptionRule, ...] = (
    DescriptionRule(PARTNERED_CARRIER_FEE, _any(
        "partnered carrier",
        "amazon-partnered carrier",
        "carrier shipment fee",
        "corriere convenzionato",
        "transporteur partenaire",
        "amazon-partnerversand",
        "transportista asociado",
        "partnertransporteur",
        "frachtkosten für den transport",
        "transportpartner-programm",
    )),
    DescriptionRule(LONG_TERM_STORAGE_FEE, _any(
        "long-term storage",
        "long term storage",
        "fba long-term storage",
        "stoccaggio a lungo termine",
        "langzeitlagergebühr",
        "stockage à long terme",
        "stockage de longue durée",
        "almacenamiento a largo plazo",
        "almacenamiento prolongado",
    )),
    DescriptionRule(STORAGE_FEE, _either(
        _any("storage fee", "tariffa di stoccaggio", "lagergebühr", "frais de stockage",
             "tarifa de almacenamiento", "tarifa por almacenamiento"),
        _all("storage", "fee"),
    )),
    DescriptionRule(DISPOSAL_FEE, _any("disposal", "entsorgung", "élimination", "smaltimento", "eliminación",
                                       "frais de disposition")),
    DescriptionRule(INBOUND_PLACEMENT_FEE, _any("inbound", "mettere l'inventario a disposizione",
                                                "inventory placement")),
    DescriptionRule(RETURN_FEE, _any("return fee", "removal order: return", "restituzione", "retour",
                                     "rückgabe", "devolución")),
    DescriptionRule(CAPACITY_RESERVATION_FEE, _either(
        _any("capacity reservation"),
        _all("capacità", "prenotazione"),
    )),
)


def normalize_inventory_fee_description(description: Optional[str], order_id: Optional[str] = None) -> str:
    """Collapse an FBA Inventory Fee description onto a canonical label.

    Amazon leaves some partnered-carrier lines blank but stamps the inbound
    shipment id (``FBA...``) into the order id column.

    Returns:
        The canonical label, ``"Other"`` for blank descriptions without a
        shipment id, or the original description when no rule matches.
    """
    text = (description or "").strip()
    if not text:
        oid = (order_id or "").strip()
        if oid and FBA_SHIPMENT_ID.match(oid):
            return PARTNERED_CARRIER_FEE
        return OTHER

    lower = text.lower()
    for rule in INVENTORY_FEE_RULES:
        if rule.test(lower):
            return rule.label
    if "fba inventory fee" in lower and not any(t in lower for t in ("storage", "disposal", "return")):
        return FBA_INVENTORY_FEE_OTHER
    return description


_REIMBURSEMENT_PHRASES = (
    "fba inventory reimbursement",
    "versand durch amazon erstattung für lagerbestand",
    "erstattung für lagerbestand",
    "remboursement de stock expédié par amazon",
    "remboursement stock expédié par amazon",
    "rimborso inventario logistica di amazon",
    "reembolso de inventario de logística de amazon",
)
_LOST = ("lost", "verloren", "perdu", "perso", "perdido")
_DAMAGED = ("damaged", "beschädigt", "endommagé", "danneggiato", "dañado")
_OUTBOUND = ("outbound", "ausgehend", "sortant", "in uscita", "saliente")
_WAREHOUSE = ("warehouse", "lager", "entrepôt", "magazzino", "almacén")
_CUSTOMER_RETURN = ("customer return", "kundenrücksendung", "retour client", "reso cliente", "devolución de cliente")
_CUSTOMER_SERVICE = ("customer service issue", "kundenservice", "service client", "servizio clienti",
                     "atención al cliente")
_GENERAL = ("general adjustment", "allgemeine anpassung", "ajustement général", "rettifica generale",
            "ajuste general")


def _reimbursement_subtype(lower: str) -> str:
    # sub-type keywords are read from the text after the reimbursement phrase
    for phrase in _REIMBURSEMENT_PHRASES:
        lower = lower.replace(phrase, " ")

    def has(tokens: Tuple[str, ...]) -> bool:
        return any(t in lower for t in tokens)

    if has(_LOST) and has(_OUTBOUND):
        return REIMBURSEMENT_LOST_OUTBOUND
    if has(_LOST) and has(_WAREHOUSE):
        return REIMBURSEMENT_LOST_WAREHOUSE
    if has(_DAMAGED) and has(_WAREHOUSE):
        return REIMBURSEMENT_DAMAGED_WAREHOUSE
    if has(_CUSTOMER_RETURN):
        return REIMBURSEMENT_CUSTOMER_RETURN
    if has(_CUSTOMER_SERVICE):
        return REIMBURSEMENT_CUSTOMER_SERVICE
    if has(_GENERAL):
        return REIMBURSEMENT_GENERAL
    return REIMBURSEMENT


ADJUSTMENT_RULES: Tuple[DescriptionRule, ...] = (
    DescriptionRule(FAILED_DISBURSEMENT, _any("failed disbursement", "fehlgeschlagene auszahlung",
                                              "échec du versement", "pagamento non riuscito",
                                              "desembolso fallido")),
    DescriptionRule(BUYER_RECHARGE, _any("buyer recharge", "käufer-rückbelastung", "nouvelle facturation de l'acheteur",
                                         "riaddebito acquirente", "recargo al comprador")),
    DescriptionRule(ATOZ_GUARANTEE_RECOVERY, _any("a-to-z guarantee recovery", "a-z guarantee recovery",
                                                  "a-bis-z-garantie", "garantie a à z",
                                                  "garanzia dalla a alla z", "garantía de la a a la z")),
    DescriptionRule(OTHER, lambda text: text == "other"),
)


def normalize_adjustment_description(description: Optional[str]) -> str:
    """Collapse an Adjustment description onto a canonical label.

    Inventory reimbursements (in any language) are split into sub-types by
    keyword combinations, e.g. lost + outbound.
    """
    text = (description or "").strip()
    if not text:
        return OTHER
    lower = text.lower()
    for rule in ADJUSTMENT_RULES:
        if rule.test(lower):
            return rule.label
    if any(p in lower for p in _REIMBURSEMENT_PHRASES):
        return _reimbursement_subtype(lower)
    return text
