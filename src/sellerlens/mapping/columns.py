"""Header-row discovery and column alias resolution.

Capabilities:
- Ordered alias lists per canonical field (English first, then DE/FR/IT/ES)
- Name normalization (lower-case, strip, drop ``_``, whitespace and ``-``)
- Two-pass resolution: exact normalized match, then substring containment
- Header-row scan over the first rows of a raw sheet grid
"""
from __future__ import annotations

import re
from typing import Dict, List, Optional, Sequence

from ..parsing import cell_text


COLUMN_ALIASES: Dict[str, List[str]] = {
    "date": ["date/time", "date", "datetime", "posted date", "datum/uhrzeit", "date/heure", "data/ora:", "fecha y hora"],
    "type": ["type", "transaction type", "typ", "tipo"],
    "order_id": ["order id", "orderid", "amazon order id", "bestellnummer", "numéro de la commande",
                 "numero ordine", "número de pedido"],
    "sku": ["sku", "seller sku"],
    "description": ["description", "desc", "beschreibung", "descrizione", "descripción"],
    "marketplace": ["marketplace", "market", "web de amazon"],
    "fulfillment": ["fulfillment", "fulfillment channel", "fulfilment", "versand", "traitement", "gestione",
                    "gestión logística"],
    "order_postal": ["order postal", "postal code", "zip", "postleitzahl", "code postal de la commande",
                     "cap dell'ordine", "código postal de procedencia del pedido"],
    "quantity": ["quantity", "qty", "menge", "quantité", "quantità", "cantidad"],
    "product_sales_tax": ["product sales tax", "productsalestax", "sales tax collection", "produktumsatzsteuer",
                          "taxes sur la vente des produits", "imposta sulle vendite dei prodotti",
                          "impuesto de ventas de productos"],
    "product_sales": ["product sales", "productsales", "principal", "umsätze", "ventes de produits", "vendite",
                      "ventas de productos"],
    "promotional_rebates": ["promotional rebates", "promotions", "promo", "rabatte aus werbeaktionen",
                            "rabais promotionnels", "sconti promozionali", "devoluciones promocionales"],
    "selling_fees": ["selling fees", "sellingfees", "commission", "verkaufsgebühren", "frais de vente",
                     "commissioni di vendita", "tarifas de venta"],
    "fba_fees": ["fba fees", "fbafees", "fulfillment fee", "fulfilment by amazon fees",
                 "gebühren zu versand durch amazon", "frais expédié par amazon",
                 "costi del servizio logistica di amazon", "tarifas de logística de amazon"],
    "other_transaction_fees": ["other transaction fees", "otherfees", "other fees", "andere transaktionsgebühren",
                               "autres frais de transaction", "altri costi relativi alle transazioni",
                               "tarifas de otras transacciones"],
    "other": ["other", "andere", "autre", "altro", "otro"],
    "marketplace_withheld_tax": ["marketplace withheld tax", "tax withheld", "vat withheld",
                                 "einbehaltene steuer auf marketplace", "taxes retenues sur le site de vente",
                                 "trattenuta iva del marketplace", "impuesto retenido en el sitio web"],
    "total": ["total", "net proceeds", "net amount", "gesamt", "totale"],
}

HEADER_TOKENS = ("date", "type", "sku", "datum", "typ", "tipo", "fecha", "data/ora")
MARKETPLACE_HEADER_TOKENS = ("marketplace", "web de amazon", "market")

_NORMALIZE = re.compile(r"[_\s-]+")


def normalize_header(name: object) -> str:
    return _NORMALIZE.sub("", cell_text(name).lower())


def find_column(headers: Sequence[object], field: str) -> Optional[str]:
    """Return the header matching ``field``'s aliases, or None.

    Pass 1 walks the aliases in rank order looking for an exact normalized
    match; pass 2 repeats the walk accepting headers that contain the alias.

    A header contained in an alias is not a match: a bare "product sales"
    header would otherwise resolve as product sales tax, and "other" as
    other transaction fees.
    """
    idx = find_column_index(headers, field)
    return None if idx is None else cell_text(headers[idx])


def find_column_index(headers: Sequence[object], field: str) -> Optional[int]:
    aliases = COLUMN_ALIASES.get(field)
    if aliases is None:
        raise ValueError(f"Unknown canonical field: {field!r}")
    normalized = [normalize_header(h) for h in headers]

    for alias in aliases:
        key = normalize_header(alias)
        for i, name in enumerate(normalized):
            if name and name == key:
                return i
    for alias in aliases:
        key = normalize_header(alias)
        for i, name in enumerate(normalized):
            if name and key in name:
                return i
    return None


def build_column_map(headers: Sequence[object]) -> Dict[str, int]:
    """Resolve every canonical field independently; unresolved fields are omitted."""
    mapping: Dict[str, int] = {}
    for field in COLUMN_ALIASES:
        idx = find_column_index(headers, field)
        if idx is not None:
            mapping[field] = idx
    return mapping


def is_header_row(row: Sequence[object]) -> bool:
    cells = [cell_text(c).lower() for c in row]
    cells = [c for c in cells if c]
    if len(cells) <= 5:
        return False
    return any(
        any(token in c for token in HEADER_TOKENS + MARKETPLACE_HEADER_TOKENS)
        for c in cells
    )


def locate_header_row(rows: Sequence[Sequence[object]], scan_limit: int = 20) -> Optional[int]:
    """Index of the first header-like row within ``scan_limit`` rows, else None."""
    for i, row in enumerate(rows[:scan_limit]):
        if is_header_row(row):
            return i
    return None
