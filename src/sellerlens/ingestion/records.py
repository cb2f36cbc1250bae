"""Build canonical transaction records from raw sheet rows."""
from __future__ import annotations

import logging
import re
from typing import Dict, Optional, Sequence

from ..common.config_validator import MarketplaceConfig
from ..mapping.classifier import classify
from ..parsing import cell_text, detect_fulfillment, detect_marketplace, parse_date, parse_number
from ..standards.schemas import LIQUIDATIONS, CanonicalTransaction


LOGGER_NAME = "sellerlens.ingestion.records"
logger = logging.getLogger(LOGGER_NAME)

_KEY_UNSAFE = re.compile(r"[^A-Za-z0-9._-]")

# Why build_record returned None; counted by the file loader.
DROP_INVALID_DATE = "invalid_date"
DROP_UNKNOWN_TYPE = "unknown_type"


def make_unique_key(date_iso: str, order_id: str, sku: str, raw_type: str, total: float) -> str:
    """Dedup key from date, order id, sku, type and total in an identifier-safe charset.

    The total keeps full float precision: amounts that differ in any digit are
    different transactions.
    """
    return _KEY_UNSAFE.sub("_", f"{date_iso}-{order_id}-{sku}-{raw_type}-{float(total)!r}")


def _cell(row: Sequence[object], column_map: Dict[str, int], field: str) -> object:
    idx = column_map.get(field)
    if idx is None or idx >= len(row):
        return None
    return row[idx]


def drop_reason(row: Sequence[object], column_map: Dict[str, int]) -> Optional[str]:
    """Reason the row would be dropped, or None when it builds."""
    if classify(cell_text(_cell(row, column_map, "type"))) is None:
        return DROP_UNKNOWN_TYPE
    if parse_date(_cell(row, column_map, "date")) is None:
        return DROP_INVALID_DATE
    return None


def build_record(
    row: Sequence[object],
    column_map: Dict[str, int],
    config: MarketplaceConfig,
    detected_code: Optional[str],
    file_name: str = "",
    row_index: int = 0,
) -> Optional[CanonicalTransaction]:
    """Build one canonical record, or None when the row must be dropped.

    Missing columns and blank numeric cells default to '' / 0.0. A row is
    dropped when its type is not a known category or its date does not parse.
    """
    def text(field: str) -> str:
        return cell_text(_cell(row, column_map, field))

    def number(field: str) -> float:
        return parse_number(_cell(row, column_map, field))

    raw_type = text("type")
    category = classify(raw_type)
    if category is None:
        logger.debug("Dropping %s row %s: unknown type %r", file_name, row_index, raw_type)
        return None

    parsed = parse_date(_cell(row, column_map, "date"))
    if parsed is None:
        logger.debug("Dropping %s row %s: unparseable date", file_name, row_index)
        return None

    description = text("description")
    order_id = text("order_id")
    sku = text("sku")
    total = number("total")
    sales = number("product_sales")
    tax = number("product_sales_tax")

    marketplace_cell = text("marketplace")
    row_code = detect_marketplace(marketplace_cell) if marketplace_cell else None
    code = row_code or (detected_code or "")
    if marketplace_cell:
        display = marketplace_cell
    elif detected_code:
        display = f"Amazon.{detected_code.lower()}"
    else:
        display = "Unknown"

    return CanonicalTransaction(
        id=f"{file_name}-{row_index}",
        unique_key=make_unique_key(parsed.isoformat(), order_id, sku, raw_type, total),
        file_name=file_name,
        date=parsed,
        date_only=parsed.strftime("%Y-%m-%d"),
        time_only=parsed.strftime("%H:%M:%S"),
        type=raw_type,
        category_type=category,
        order_id=order_id,
        sku=sku,
        description=description,
        description_lower=description.lower(),
        marketplace=display,
        marketplace_code=code,
        fulfillment=detect_fulfillment(text("fulfillment")),
        order_postal=text("order_postal"),
        quantity=number("quantity"),
        product_sales=config.gross_sales(sales, tax),
        promotional_rebates=number("promotional_rebates"),
        selling_fees=number("selling_fees"),
        fba_fees=number("fba_fees"),
        other_transaction_fees=number("other_transaction_fees"),
        other=number("other"),
        vat=tax if config.has_vat else 0.0,
        liquidations=total if (config.has_liquidations and category == LIQUIDATIONS) else 0.0,
        total=total,
    )
