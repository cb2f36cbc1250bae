"""Cost, refund and breakdown calculations over canonical transaction frames.

All functions are pure. Frames follow ``standards.schemas.TRANSACTIONS``.
Money columns are summed as-is; callers convert to USD first when mixing
marketplaces (see :func:`convert_frame_to_usd`).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Union

import numpy as np
import pandas as pd

from ..common.config_validator import UNKNOWN_RECOVERY_RATE, MarketplaceConfig
from ..currency import RateProvider, convert, currency_for_marketplace
from ..logging_utils import log_warning
from ..parsing import is_advertising
from ..standards import schemas as S


LOGGER_NAME = "sellerlens.analytics.costs"
logger = logging.getLogger(LOGGER_NAME)

MONEY_COLUMNS = [
    "product_sales", "promotional_rebates", "selling_fees", "fba_fees",
    "other_transaction_fees", "other", "vat", "liquidations", "total",
]
DIGIT_ZONE_MARKETPLACES = {"US", "DE", "FR", "IT", "ES"}
LETTER_ZONE_MARKETPLACES = {"UK", "CA"}
INTERNATIONAL_ZONE = "INT"
UNKNOWN_MARKETPLACE = "UNKNOWN"

GroupData = Dict[str, Dict[str, float]]


@dataclass(frozen=True)
class RefundLoss:
    total_refund_amount: float
    recovered_refunds: float
    actual_refund_loss: float


def convert_frame_to_usd(df: pd.DataFrame, provider: Optional[RateProvider] = None) -> pd.DataFrame:
    """Copy of ``df`` with money columns in USD, using each row's marketplace currency.

    Rows without a marketplace code are left unconverted. A currency pair the
    rate matrix lacks converts to 0.
    """
    out = df.copy()
    if out.empty:
        return out
    codes = out["marketplace_code"].fillna("").astype(str)
    unconverted = int((codes == "").sum())
    if unconverted:
        log_warning(logger, f"{unconverted:,} transaction(s) without a marketplace code summed unconverted in USD")
    factors = {
        code: 1.0 if not code else convert(1.0, currency_for_marketplace(code), "USD", provider)
        for code in codes.unique()
    }
    factor = codes.map(factors).astype(float)
    for col in MONEY_COLUMNS:
        out[col] = out[col].astype(float) * factor
    return out


def by_category(df: pd.DataFrame, *categories: str) -> pd.DataFrame:
    return df[df["category_type"].isin(categories)]


def advertising_mask(df: pd.DataFrame) -> pd.Series:
    if df.empty:
        return pd.Series(False, index=df.index, dtype=bool)
    is_ads = df["description_lower"].fillna("").map(is_advertising).astype(bool)
    return (df["category_type"] == S.SERVICE_FEE) & is_ads


def description_or(df: pd.DataFrame, default: str, column: str = "description") -> pd.Series:
    values = df[column].fillna("").astype(str)
    return values.where(values != "", default)


def group_transactions(df: pd.DataFrame, key: Union[str, pd.Series]) -> GroupData:
    """Map each key to ``{'count': n, 'total': sum(total)}``; insertion order follows first appearance."""
    if df.empty:
        return {}
    keys = df[key] if isinstance(key, str) else key
    agg = df["total"].groupby(keys.to_numpy(), sort=False).agg(["count", "sum"])
    return {str(k): {"count": int(row["count"]), "total": float(row["sum"])} for k, row in agg.iterrows()}


def calculate_refund_loss(
    refunds: pd.DataFrame,
    marketplace_code: Optional[str],
    config: MarketplaceConfig,
    marketplace_configs: Optional[Mapping[str, MarketplaceConfig]] = None,
) -> RefundLoss:
    """Split refund value into recovered and lost portions.

    The amount is ``|sum(total)|``: the net settlement already reflects fee
    refunds. With a single marketplace its recovery rate applies. Across
    marketplaces each marketplace's refunds use that marketplace's own rate
    (0.30 when the marketplace is unknown); a blended rate is never used.
    """
    if refunds.empty:
        return RefundLoss(0.0, 0.0, 0.0)

    if marketplace_code:
        amount = abs(float(refunds["total"].sum()))
        recovered = amount * config.refund_recovery_rate
        return RefundLoss(amount, recovered, amount - recovered)

    configs = marketplace_configs or {}
    codes = refunds["marketplace_code"].fillna("").replace("", UNKNOWN_MARKETPLACE)
    per_marketplace = refunds["total"].groupby(codes.to_numpy(), sort=True).sum().abs()
    amount = recovered = loss = 0.0
    for code, mp_amount in per_marketplace.items():
        mp_config = configs.get(code)
        rate = mp_config.refund_recovery_rate if mp_config else UNKNOWN_RECOVERY_RATE
        mp_recovered = float(mp_amount) * rate
        amount += float(mp_amount)
        recovered += mp_recovered
        loss += float(mp_amount) - mp_recovered
    return RefundLoss(amount, recovered, loss)


def calculate_advertising_cost(total_advertising: float, fba_order_sales: float, fbm_order_sales: float,
                               fulfillment: str) -> float:
    """Prorate advertising by channel share of order sales when a channel filter is active."""
    if fulfillment == "all":
        return total_advertising
    total_sales = fba_order_sales + fbm_order_sales
    if total_sales == 0:
        return 0.0
    share = fba_order_sales if fulfillment == S.FBA else fbm_order_sales
    return total_advertising * (share / total_sales)


def calculate_fba_cost(df: pd.DataFrame, config: MarketplaceConfig) -> float:
    """Absolute value of the signed sum of FBA-specific cost categories.

    Adjustment, FBA Inventory Fee, Chargeback Refund, non-advertising Service
    Fee, FBA Transaction Fee, Fee Adjustment and SAFE-T Reimbursement, plus
    Liquidations when the marketplace enables them.
    """
    if df.empty:
        return 0.0
    categories = [
        S.ADJUSTMENT, S.FBA_INVENTORY_FEE, S.CHARGEBACK_REFUND,
        S.FBA_TRANSACTION_FEE, S.FEE_ADJUSTMENT, S.SAFET_REIMBURSEMENT,
    ]
    if config.has_liquidations:
        categories.append(S.LIQUIDATIONS)
    mask = df["category_type"].isin(categories)
    mask |= (df["category_type"] == S.SERVICE_FEE) & ~advertising_mask(df)
    return abs(float(df.loc[mask, "total"].sum()))


def calculate_fbm_cost(df: pd.DataFrame, config: MarketplaceConfig) -> float:
    """Absolute sum of the configured source field over the FBM shipping category."""
    if df.empty:
        return 0.0
    rows = df[df["category_type"] == config.fbm_shipping_category]
    return abs(float(rows[config.fbm_shipping_source].sum()))


def calculate_postal_zones(orders: pd.DataFrame) -> Dict[str, Dict[str, float]]:
    """Order count and sales per postal zone (first character of the postal code).

    Digit zones apply to US/DE/FR/IT/ES and letter zones to UK/CA; a code of
    the wrong kind is bucketed as ``INT``.
    """
    if orders.empty:
        return {}
    postal = orders["order_postal"].fillna("").astype(str).str.strip()
    rows = orders[postal != ""]
    if rows.empty:
        return {}
    zone = postal[postal != ""].str[0].str.upper()
    codes = rows["marketplace_code"]
    digit_bad = codes.isin(DIGIT_ZONE_MARKETPLACES) & ~zone.str.match(r"^[0-9]$")
    letter_bad = codes.isin(LETTER_ZONE_MARKETPLACES) & ~zone.str.match(r"^[A-Z]$")
    zone = zone.where(~(digit_bad | letter_bad), INTERNATIONAL_ZONE)
    agg = rows["product_sales"].groupby(zone.to_numpy(), sort=True).agg(["count", "sum"])
    return {str(z): {"count": int(r["count"]), "sales": float(r["sum"])} for z, r in agg.iterrows()}


def calculate_marketplace_sales_distribution(orders_usd: pd.DataFrame) -> Dict[str, Dict[str, float]]:
    """Orders and sales per marketplace; ``orders_usd`` must already be in USD."""
    if orders_usd.empty:
        return {}
    codes = orders_usd["marketplace_code"].fillna("").replace("", UNKNOWN_MARKETPLACE)
    agg = orders_usd["product_sales"].groupby(codes.to_numpy(), sort=True).agg(["count", "sum"])
    return {str(c): {"orders": int(r["count"]), "sales": float(r["sum"])} for c, r in agg.iterrows()}


def build_pie_chart(
    fulfillment: str,
    selling_fees: float,
    fba_fees: float,
    fba_cost: float,
    fbm_cost: float,
    advertising: float,
    refund_loss: float,
    vat: Optional[float],
    sales: float,
) -> Dict[str, List]:
    """Cost composition of ``sales`` with a trailing non-negative ``Net`` slice.

    ``vat`` of None omits the VAT slice.
    """
    if fulfillment == S.FBA:
        pairs = [("Selling Fees", selling_fees), ("FBA Fees", fba_fees), ("FBA Cost", fba_cost),
                 ("Advertising", advertising), ("Refund Loss", refund_loss)]
    elif fulfillment == S.FBM:
        pairs = [("Selling Fees", selling_fees), ("FBM Cost", fbm_cost),
                 ("Advertising", advertising), ("Refund Loss", refund_loss)]
    else:
        pairs = [("Selling Fees", selling_fees), ("FBA Fees", fba_fees), ("FBA Cost", fba_cost),
                 ("FBM Cost", fbm_cost), ("Advertising", advertising), ("Refund Loss", refund_loss)]
    if vat is not None:
        pairs.append(("VAT", abs(vat)))
    net = max(0.0, sales - float(np.sum([v for _, v in pairs])))
    pairs.append(("Net", net))
    return {"labels": [label for label, _ in pairs], "values": [float(v) for _, v in pairs]}
