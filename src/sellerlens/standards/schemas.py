"""Canonical transaction record, category tags and frame schema."""
from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from datetime import datetime
from typing import Iterable, List, Optional

import pandas as pd


# Category tags (closed set). Rows whose type maps to none of these are dropped.
ORDER = "Order"
REFUND = "Refund"
ADJUSTMENT = "Adjustment"
FBA_INVENTORY_FEE = "FBA Inventory Fee"
CHARGEBACK_REFUND = "Chargeback Refund"
SERVICE_FEE = "Service Fee"
FBA_TRANSACTION_FEE = "FBA Transaction Fee"
FEE_ADJUSTMENT = "Fee Adjustment"
SAFET_REIMBURSEMENT = "SAFE-T Reimbursement"
LIQUIDATIONS = "Liquidations"
SHIPPING_SERVICES = "Shipping Services"
DISBURSEMENT = "Disbursement"
AMAZON_FEES = "Amazon Fees"
FBA_CUSTOMER_RETURN_FEE = "FBA Customer Return Fee"
DELIVERY_SERVICES = "Delivery Services"
COMMINGLING_VAT = "Commingling VAT"
OTHERS = "Others"

CATEGORY_TAGS = frozenset({
    ORDER, REFUND, ADJUSTMENT, FBA_INVENTORY_FEE, CHARGEBACK_REFUND, SERVICE_FEE,
    FBA_TRANSACTION_FEE, FEE_ADJUSTMENT, SAFET_REIMBURSEMENT, LIQUIDATIONS,
    SHIPPING_SERVICES, DISBURSEMENT, AMAZON_FEES, FBA_CUSTOMER_RETURN_FEE,
    DELIVERY_SERVICES, COMMINGLING_VAT, OTHERS,
})

FBA = "FBA"
FBM = "FBM"
MIXED = "Mixed"
UNKNOWN_FULFILLMENT = "Unknown"


@dataclass(frozen=True)
class CanonicalTransaction:
    """One normalized, classified settlement row.

    Financial fields are in the marketplace's local currency. ``total`` is the
    net settlement impact and is the field loss/cost calculations use.
    Enrichment fields stay ``None`` until a product match is found.
    """

    id: str
    unique_key: str
    file_name: str
    date: datetime
    date_only: str
    time_only: str
    type: str
    category_type: str
    order_id: str = ""
    sku: str = ""
    description: str = ""
    description_lower: str = ""
    marketplace: str = ""
    marketplace_code: str = ""
    fulfillment: str = UNKNOWN_FULFILLMENT
    order_postal: str = ""
    quantity: float = 0.0
    product_sales: float = 0.0
    promotional_rebates: float = 0.0
    selling_fees: float = 0.0
    fba_fees: float = 0.0
    other_transaction_fees: float = 0.0
    other: float = 0.0
    vat: float = 0.0
    liquidations: float = 0.0
    total: float = 0.0
    # enrichment
    asin: Optional[str] = None
    name: Optional[str] = None
    parent: Optional[str] = None
    product_category: Optional[str] = None
    product_cost: Optional[float] = None
    product_size: Optional[float] = None
    product_custom_shipping: Optional[float] = None
    product_fbm_source: Optional[str] = None


@dataclass(frozen=True)
class Schema:
    required: List[str]
    numeric: List[str]


TRANSACTION_COLUMNS = [f.name for f in fields(CanonicalTransaction)]

TRANSACTIONS = Schema(
    required=[
        "id", "unique_key", "date_only", "type", "category_type", "order_id", "sku",
        "description_lower", "marketplace_code", "fulfillment", "total",
    ],
    numeric=[
        "quantity", "product_sales", "promotional_rebates", "selling_fees", "fba_fees",
        "other_transaction_fees", "other", "vat", "liquidations", "total",
    ],
)


def _ensure_columns(df: pd.DataFrame, cols: List[str], name: str) -> None:
    missing = [c for c in cols if c not in df.columns]
    if missing:
        raise ValueError(f"{name} missing required columns: {missing}")


def _ensure_numeric(df: pd.DataFrame, cols: List[str], name: str) -> None:
    for c in cols:
        if c in df.columns and not pd.api.types.is_numeric_dtype(df[c]):
            raise ValueError(f"{name} column '{c}' must be numeric, got {df[c].dtype}")


def validate_transactions_frame(df: pd.DataFrame, name: str = "transactions") -> None:
    _ensure_columns(df, TRANSACTIONS.required, name)
    _ensure_numeric(df, TRANSACTIONS.numeric, name)


def records_to_frame(records: Iterable[CanonicalTransaction]) -> pd.DataFrame:
    """Convert records to a DataFrame with the canonical column set and dtypes."""
    rows = [asdict(r) for r in records]
    df = pd.DataFrame(rows, columns=TRANSACTION_COLUMNS)
    for col in TRANSACTIONS.numeric:
        df[col] = pd.to_numeric(df[col], errors="coerce").fillna(0.0).astype(float)
    for col in ("order_id", "sku", "description", "description_lower", "marketplace",
                "marketplace_code", "fulfillment", "order_postal", "date_only", "type",
                "category_type"):
        df[col] = df[col].fillna("").astype(str)
    validate_transactions_frame(df)
    return df
