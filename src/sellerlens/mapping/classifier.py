"""Transaction-type classification.

``classify`` maps a raw (possibly localized) settlement "type" value onto the
closed category tag set, walking an ordered rule list; first match wins.
Unknown types return None and the row is discarded by the record builder.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

from ..standards import schemas as S


@dataclass(frozen=True)
class TypeRule:
    tag: str
    any_of: Tuple[str, ...]
    none_of: Tuple[str, ...] = ()

    def matches(self, text: str) -> bool:
        if not any(token in text for token in self.any_of):
            return False
        return not any(token in text for token in self.none_of)


TYPE_RULES: Tuple[TypeRule, ...] = (
    TypeRule(S.DISBURSEMENT, ("transfer", "übertrag", "transfert", "trasferimento", "transferir"), ("retrocharge",)),
    TypeRule(S.ORDER, ("order", "bestellung", "commande", "ordine", "pedido"), ("removal",)),
    TypeRule(S.REFUND, ("refund", "erstattung", "remboursement", "rimborso", "reembolso"), ("chargeback",)),
    # "fee adjustment" and liquidation adjustments have their own tags further down
    TypeRule(S.ADJUSTMENT, ("adjustment", "anpassung", "ajustement", "rettifica", "ajuste"),
             ("fee adjustment", "liquidation")),
    TypeRule(S.AMAZON_FEES, ("amazon fees",)),
    TypeRule(S.CHARGEBACK_REFUND, ("chargeback",)),
    TypeRule(S.FBA_INVENTORY_FEE, (
        "fba inventory fee",
        "fulfilment by amazon inventory fee",
        "versand durch amazon lagergebühr",
        "frais de stock expédié par amazon",
        "costo di stoccaggio logistica di amazon",
        "tarifas de inventario de logística de amazon",
    )),
    TypeRule(S.FBA_CUSTOMER_RETURN_FEE, ("fba customer return fee",)),
    TypeRule(S.FBA_TRANSACTION_FEE, ("fba transaction fee",)),
    TypeRule(S.FEE_ADJUSTMENT, ("fee adjustment",)),
    TypeRule(S.SAFET_REIMBURSEMENT, ("safe-t", "safet")),
    TypeRule(S.SHIPPING_SERVICES, ("shipping services",)),
    TypeRule(S.DELIVERY_SERVICES, ("delivery services", "lieferdienste")),
    TypeRule(S.LIQUIDATIONS, ("liquidations", "liquidationen", "liquidationsanpassungen")),
    TypeRule(S.COMMINGLING_VAT, ("commingling vat",)),
    TypeRule(S.SERVICE_FEE, (
        "service fee",
        "servicegebühr",
        "frais de service",
        "commissione di servizio",
        "tarifa de prestación de servicio",
    )),
    TypeRule(S.OTHERS, ("others",)),
)


def classify(raw_type: object) -> Optional[str]:
    """Return the category tag for a raw type value, or None when unrecognized."""
    if raw_type is None:
        return None
    text = str(raw_type).strip().lower()
    if not text:
        return None
    for rule in TYPE_RULES:
        if rule.matches(text):
            return rule.tag
    return None
