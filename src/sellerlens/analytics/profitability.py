"""Profitability rollups by SKU, product, parent ASIN, category and marketplace.

Every level is aggregated from one line-item table keyed by
(marketplace_code, sku) and then re-derives its ratios:
  - Amazon fees = selling fees + FBA fees + refund loss + VAT
  - gross profit = revenue - Amazon fees
  - advertising / FBA cost / FBM cost are allocated with global cost
    percentages (advertising per sales, FBA cost per FBA sales, FBM cost per
    FBM sales)
  - shipping cost per SKU: FBA units pay size x the marketplace's
    ``shipping_per_desi``; FBM units pay the product's custom shipping when
    set (unless its FBM source is ``TR``), else the same per-desi rate
  - total costs = product cost + shipping + advertising + FBA cost + FBM cost
  - net profit, margin and ROI (net profit over total costs) are only derived
    where product cost is known for every SKU in the group; otherwise they
    are None

Every percentage, ROI included, is 0 when revenue is 0.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence

import numpy as np
import pandas as pd

from ..common.config_validator import UNKNOWN_RECOVERY_RATE, MarketplaceConfig
from ..standards import schemas as S


SUM_COLUMNS = [
    "revenue", "orders", "fba_orders", "fbm_orders", "quantity", "refunded_quantity",
    "selling_fees", "fba_fees", "vat", "refund_total", "refund_loss",
    "fba_revenue", "fbm_revenue", "fba_quantity", "fbm_quantity",
    "total_product_cost", "shipping_cost",
]
# derived per line item after grouping, then summed by the rollups
DERIVED_COLUMNS = ("total_product_cost", "shipping_cost")
IMPORT_FBM_SOURCE = "TR"
GRADE_AND_RESELL = "Grade and Resell"
UNCATEGORIZED = "Uncategorized"
UNKNOWN_PARENT = "Unknown"

LEVEL_KEYS = {
    "sku": ["sku"],
    "product": ["name"],
    "parent": ["parent"],
    "category": ["category"],
    "marketplace": ["marketplace_code"],
}


@dataclass(frozen=True)
class GlobalCostRates:
    """Shares used to allocate costs that carry no SKU."""

    advertising_pct: float = 0.0
    fba_cost_pct: float = 0.0
    fbm_cost_pct: float = 0.0

    @classmethod
    def from_totals(cls, advertising: float, fba_cost: float, fbm_cost: float,
                    total_sales: float, fba_sales: float, fbm_sales: float) -> "GlobalCostRates":
        return cls(
            advertising_pct=advertising / total_sales if total_sales > 0 else 0.0,
            fba_cost_pct=fba_cost / fba_sales if fba_sales > 0 else 0.0,
            fbm_cost_pct=fbm_cost / fbm_sales if fbm_sales > 0 else 0.0,
        )


def default_category(sku: str) -> str:
    upper = (sku or "").upper()
    if upper.startswith("AMZN.GR") or upper.startswith("AMZN,GR"):
        return GRADE_AND_RESELL
    return UNCATEGORIZED


def _loss_rates(refunds: pd.DataFrame, marketplace_code: Optional[str], config: MarketplaceConfig,
                marketplace_configs: Mapping[str, MarketplaceConfig]) -> pd.Series:
    if marketplace_code:
        return pd.Series(1.0 - config.refund_recovery_rate, index=refunds.index)
    rates = {
        code: (marketplace_configs[code].refund_recovery_rate if code in marketplace_configs else UNKNOWN_RECOVERY_RATE)
        for code in refunds["marketplace_code"].unique()
    }
    return 1.0 - refunds["marketplace_code"].map(rates).astype(float)


def _shipping_cost(items: pd.DataFrame, marketplace_code: Optional[str], config: MarketplaceConfig,
                   marketplace_configs: Mapping[str, MarketplaceConfig]) -> pd.Series:
    if marketplace_code:
        per_desi = pd.Series(config.shipping_per_desi, index=items.index)
    else:
        rates = {code: mp.shipping_per_desi for code, mp in marketplace_configs.items()}
        per_desi = items["marketplace_code"].map(rates).fillna(0.0).astype(float)
    size = pd.to_numeric(items["size"], errors="coerce").fillna(0.0)
    custom = pd.to_numeric(items["custom_shipping"], errors="coerce")
    source = items["fbm_source"].fillna("").astype(str).str.strip().str.upper()
    desi_cost = size * per_desi
    use_custom = custom.notna() & (source != IMPORT_FBM_SOURCE)
    fbm_unit = custom.where(use_custom, desi_cost)
    return items["fba_quantity"] * desi_cost + items["fbm_quantity"] * fbm_unit


def build_line_items(
    df: pd.DataFrame,
    fulfillment: str,
    marketplace_code: Optional[str],
    config: MarketplaceConfig,
    marketplace_configs: Mapping[str, MarketplaceConfig],
) -> pd.DataFrame:
    """One row per (marketplace_code, sku) with summed order/refund measures and product attributes."""
    orders = df[df["category_type"] == S.ORDER]
    refunds = df[df["category_type"] == S.REFUND]
    if fulfillment != "all":
        orders = orders[orders["fulfillment"] == fulfillment]
        refunds = refunds[refunds["fulfillment"] == fulfillment]
    orders = orders[orders["sku"] != ""]
    refunds = refunds[refunds["sku"] != ""]

    is_fba = orders["fulfillment"] == S.FBA
    is_fbm = orders["fulfillment"] == S.FBM
    order_lines = orders.assign(
        revenue=orders["product_sales"],
        orders=1,
        fba_orders=is_fba.astype(int),
        fbm_orders=is_fbm.astype(int),
        selling_fees=orders["selling_fees"].abs(),
        fba_fees=orders["fba_fees"].abs(),
        vat=orders["vat"].abs(),
        fba_revenue=orders["product_sales"].where(is_fba, 0.0),
        fbm_revenue=orders["product_sales"].where(is_fbm, 0.0),
        fba_quantity=orders["quantity"].where(is_fba, 0.0),
        fbm_quantity=orders["quantity"].where(is_fbm, 0.0),
    )
    refund_lines = refunds.assign(
        refunded_quantity=refunds["quantity"].abs(),
        refund_total=refunds["total"].abs(),
        refund_loss=refunds["total"].abs() * _loss_rates(refunds, marketplace_code, config, marketplace_configs),
        quantity=0.0,
    )
    attrs = ["marketplace_code", "sku", "name", "parent", "asin", "product_cost",
             "size", "custom_shipping", "fbm_source"]
    lines = pd.concat([order_lines, refund_lines], ignore_index=True, sort=False)
    if lines.empty:
        return pd.DataFrame(columns=attrs + SUM_COLUMNS + ["category", "has_cost_data"])
    for col in SUM_COLUMNS:
        if col not in lines.columns:
            lines[col] = 0.0
        lines[col] = pd.to_numeric(lines[col], errors="coerce").fillna(0.0)

    grouped = lines.groupby(["marketplace_code", "sku"], sort=True)
    sums = grouped[[c for c in SUM_COLUMNS if c not in DERIVED_COLUMNS]].sum()
    firsts = grouped[["name", "parent", "asin", "product_category", "product_cost", "product_size",
                      "product_custom_shipping", "product_fbm_source"]].first()
    items = sums.join(firsts).reset_index().rename(columns={
        "product_size": "size", "product_custom_shipping": "custom_shipping", "product_fbm_source": "fbm_source",
    })

    items["product_cost"] = pd.to_numeric(items["product_cost"], errors="coerce")
    items["has_cost_data"] = items["product_cost"].notna()
    items["total_product_cost"] = items["product_cost"] * items["quantity"]
    items["shipping_cost"] = _shipping_cost(items, marketplace_code, config, marketplace_configs)
    items["name"] = items["name"].where(items["name"].notna() & (items["name"] != ""), items["sku"])
    asin = items["asin"].fillna("")
    items["asin"] = asin
    items["parent"] = items["parent"].where(items["parent"].notna() & (items["parent"] != ""),
                                            asin.where(asin != "", UNKNOWN_PARENT))
    fallback = items["sku"].map(default_category)
    items["category"] = items["product_category"].where(
        items["product_category"].notna() & (items["product_category"] != ""), fallback)
    return items.drop(columns=["product_category"])


def _pct(num: pd.Series, revenue: pd.Series) -> np.ndarray:
    safe = revenue.where(revenue > 0, 1.0)
    return np.where(revenue > 0, num / safe * 100.0, 0.0)


def _finalize(roll: pd.DataFrame, rates: GlobalCostRates) -> pd.DataFrame:
    out = roll.copy()
    revenue = out["revenue"].astype(float)
    out["fulfillment"] = np.select(
        [(out["fba_orders"] > 0) & (out["fbm_orders"] > 0), out["fba_orders"] > 0, out["fbm_orders"] > 0],
        [S.MIXED, S.FBA, S.FBM],
        default=S.UNKNOWN_FULFILLMENT,
    )
    out["avg_sale_price"] = np.where(out["quantity"] > 0, revenue / out["quantity"].where(out["quantity"] > 0, 1.0), 0.0)
    out["total_amazon_fees"] = out["selling_fees"] + out["fba_fees"] + out["refund_loss"] + out["vat"]
    out["gross_profit"] = revenue - out["total_amazon_fees"]
    out["advertising_cost"] = revenue * rates.advertising_pct
    out["fba_cost"] = out["fba_revenue"] * rates.fba_cost_pct
    out["fbm_cost"] = out["fbm_revenue"] * rates.fbm_cost_pct

    known = out["has_cost_data"].astype(bool)
    out.loc[~known, "total_product_cost"] = np.nan
    cost = out["total_product_cost"]
    total_costs = cost + out["shipping_cost"] + out["advertising_cost"] + out["fba_cost"] + out["fbm_cost"]
    out["total_costs"] = total_costs.where(known, np.nan)
    out["net_profit"] = (out["gross_profit"] - total_costs).where(known, np.nan)
    unknown_ratio = np.where(revenue > 0, np.nan, 0.0)
    out["profit_margin"] = np.where(known, _pct(out["net_profit"].fillna(0.0), revenue), unknown_ratio)
    has_base = known & (revenue > 0) & (total_costs > 0)
    out["roi"] = np.where(has_base, out["net_profit"] / total_costs.where(has_base, 1.0) * 100.0,
                          np.where(known, 0.0, unknown_ratio))

    out["selling_fee_percent"] = _pct(out["selling_fees"], revenue)
    out["fba_fee_percent"] = _pct(out["fba_fees"], revenue)
    out["refund_loss_percent"] = _pct(out["refund_loss"], revenue)
    out["vat_percent"] = _pct(out["vat"], revenue)
    out["advertising_percent"] = _pct(out["advertising_cost"], revenue)
    out["fba_cost_percent"] = _pct(out["fba_cost"], revenue)
    out["fbm_cost_percent"] = _pct(out["fbm_cost"], revenue)
    out["shipping_cost_percent"] = _pct(out["shipping_cost"], revenue)
    out["product_cost_percent"] = np.where(known, _pct(cost.fillna(0.0), revenue), unknown_ratio)
    return out


def rollup(items: pd.DataFrame, level: str, rates: GlobalCostRates) -> pd.DataFrame:
    """Aggregate line items to ``level`` (sku, product, parent, category, marketplace)."""
    keys = LEVEL_KEYS.get(level)
    if keys is None:
        raise ValueError(f"Unknown rollup level: {level!r}")
    if items.empty:
        return pd.DataFrame(columns=keys + SUM_COLUMNS)

    agg = {c: "sum" for c in SUM_COLUMNS}
    agg["has_cost_data"] = "all"
    grouped = items.groupby(keys, sort=True)
    roll = grouped.agg(agg)
    if level == "sku":
        roll = roll.join(grouped[["name", "parent", "asin", "category", "product_cost", "size",
                                  "custom_shipping", "fbm_source"]].first())
        roll["marketplaces"] = grouped["marketplace_code"].nunique()
    elif level == "product":
        roll = roll.join(grouped[["parent", "asin", "category"]].first())
        roll["sku_count"] = grouped["sku"].nunique()
    elif level == "parent":
        roll = roll.join(grouped[["category"]].first())
        roll["product_count"] = grouped["name"].nunique()
    elif level == "category":
        roll["parent_count"] = grouped["parent"].nunique()
        roll["product_count"] = grouped["name"].nunique()
    else:
        roll["sku_count"] = grouped["sku"].nunique()
    roll = _finalize(roll.reset_index(), rates)
    return roll.sort_values(["revenue"] + keys, ascending=[False] + [True] * len(keys), kind="mergesort").reset_index(drop=True)


def frame_to_records(df: pd.DataFrame) -> List[Dict[str, object]]:
    """Plain-Python records with NaN mapped to None."""
    if df.empty:
        return []
    clean = df.astype(object).where(pd.notna(df), None)
    records = clean.to_dict(orient="records")
    for rec in records:
        for key, value in rec.items():
            if isinstance(value, np.generic):
                rec[key] = value.item()
    return records


def summarize(sku_rollup: pd.DataFrame) -> Dict[str, float]:
    """Counts of profitable / unprofitable / unknown SKUs and headline totals."""
    if sku_rollup.empty:
        return {
            "total_products": 0, "profitable": 0, "unprofitable": 0, "unknown": 0,
            "total_revenue": 0.0, "total_net_profit": 0.0, "overall_margin": 0.0,
        }
    known = sku_rollup["has_cost_data"].astype(bool)
    net = sku_rollup["net_profit"]
    known_revenue = float(sku_rollup.loc[known, "revenue"].sum())
    total_net = float(net[known].sum())
    return {
        "total_products": int(len(sku_rollup)),
        "profitable": int((known & (net > 0)).sum()),
        "unprofitable": int((known & (net <= 0)).sum()),
        "unknown": int((~known).sum()),
        "total_revenue": float(sku_rollup["revenue"].sum()),
        "total_net_profit": total_net,
        "overall_margin": total_net / known_revenue * 100.0 if known_revenue > 0 else 0.0,
    }


def build_rollups(
    df: pd.DataFrame,
    fulfillment: str,
    marketplace_code: Optional[str],
    config: MarketplaceConfig,
    marketplace_configs: Mapping[str, MarketplaceConfig],
    rates: GlobalCostRates,
    levels: Sequence[str] = tuple(LEVEL_KEYS),
) -> Dict[str, pd.DataFrame]:
    items = build_line_items(df, fulfillment, marketplace_code, config, marketplace_configs)
    return {level: rollup(items, level, rates) for level in levels}
