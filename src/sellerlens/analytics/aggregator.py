"""Analytics aggregation over canonical transactions.

``calculate_analytics`` is a stateless function of (records, filters): every
call recomputes everything from the filtered frame, so two calls on the same
input produce equal results.

Steps:
  1) filter by date range (``date_only`` strings), marketplace, fulfillment
  2) in cross-marketplace mode convert money columns to USD per row
  3) totals, refund loss, fee groups, advertising proration, FBA/FBM cost
  4) profitability rollups (SKU, product, parent, category, marketplace)
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import pandas as pd

from ..common.config_validator import (
    ALL_MARKETPLACES,
    MarketplaceConfig,
    SellerLensConfig,
    load_and_validate_config,
)
from ..currency import RateProvider
from ..logging_utils import log_warning
from ..mapping.descriptions import normalize_adjustment_description, normalize_inventory_fee_description
from ..standards import schemas as S
from ..standards.schemas import CanonicalTransaction, records_to_frame, validate_transactions_frame
from . import costs as C
from .consolidation import consolidate_groups
from .filters import AnalyticsFilters, filter_by_date_range, filter_by_fulfillment, filter_by_marketplace
from .profitability import GlobalCostRates, build_rollups, frame_to_records, summarize


LOGGER_NAME = "sellerlens.analytics"
logger = logging.getLogger(LOGGER_NAME)

GROUP_FIELDS = (
    "adjustment_groups",
    "inventory_groups",
    "service_groups",
    "others_groups",
    "fba_customer_return_groups",
    "fba_transaction_groups",
    "amazon_fees_groups",
    "chargeback_groups",
)


@dataclass
class DetailedAnalytics:
    """Flat bag of totals, breakdown maps and derived percentages."""

    marketplace_code: Optional[str]
    fulfillment: str
    currency: str
    start: Optional[str] = None
    end: Optional[str] = None
    label: Optional[str] = None

    # orders and sales
    total_orders: int = 0
    fba_orders: int = 0
    fbm_orders: int = 0
    total_refunds: int = 0
    total_sales: float = 0.0
    fba_order_sales: float = 0.0
    fbm_order_sales: float = 0.0
    total_all_sales: float = 0.0
    total_net: float = 0.0
    fba_order_net: float = 0.0
    fbm_order_net: float = 0.0
    total_disbursement: float = 0.0
    disbursement_count: int = 0

    # refunds
    refund_rate: float = 0.0
    total_refund_amount: float = 0.0
    recovered_refunds: float = 0.0
    actual_refund_loss: float = 0.0

    # fees
    total_fba_fees: float = 0.0
    fba_selling_fees: float = 0.0
    fbm_selling_fees: float = 0.0
    fba_order_fees: float = 0.0
    total_selling_fees: float = 0.0

    # category totals
    adjustment_total: float = 0.0
    inventory_total: float = 0.0
    service_total: float = 0.0
    chargeback_total: float = 0.0
    liquidations_total: float = 0.0
    fba_transaction_total: float = 0.0
    fba_customer_return_total: float = 0.0
    fee_adjustments: float = 0.0
    safet_reimbursements: float = 0.0
    total_vat: float = 0.0
    total_fba_cost: float = 0.0
    total_fbm_cost: float = 0.0

    # advertising
    advertising_cost_total: float = 0.0
    fba_advertising_cost: float = 0.0
    fbm_advertising_cost: float = 0.0
    display_advertising_cost: float = 0.0

    # profit
    gross_sales: float = 0.0
    total_fees: float = 0.0
    net_profit: float = 0.0
    profit_margin: float = 0.0
    fba_percentage: float = 0.0
    fbm_percentage: float = 0.0

    # breakdowns
    adjustment_groups: Dict[str, Dict[str, float]] = field(default_factory=dict)
    inventory_groups: Dict[str, Dict[str, float]] = field(default_factory=dict)
    service_groups: Dict[str, Dict[str, float]] = field(default_factory=dict)
    others_groups: Dict[str, Dict[str, float]] = field(default_factory=dict)
    fba_customer_return_groups: Dict[str, Dict[str, float]] = field(default_factory=dict)
    fba_transaction_groups: Dict[str, Dict[str, float]] = field(default_factory=dict)
    amazon_fees_groups: Dict[str, Dict[str, float]] = field(default_factory=dict)
    chargeback_groups: Dict[str, Dict[str, float]] = field(default_factory=dict)
    postal_zones: Dict[str, Dict[str, float]] = field(default_factory=dict)
    marketplace_sales_distribution: Optional[Dict[str, Dict[str, float]]] = None
    marketplace_pie_charts: Optional[Dict[str, Dict[str, Any]]] = None
    pie_chart: Dict[str, List] = field(default_factory=dict)

    # rollups
    rollups: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)
    profitability_summary: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def consolidated_groups(self, threshold: float) -> Dict[str, Dict[str, Dict[str, float]]]:
        """Every breakdown map with sub-threshold groups merged into Miscellaneous."""
        return {name: consolidate_groups(getattr(self, name), threshold) for name in GROUP_FIELDS}


def _as_frame(data: Union[pd.DataFrame, Sequence[CanonicalTransaction]]) -> pd.DataFrame:
    if isinstance(data, pd.DataFrame):
        validate_transactions_frame(data)
        return data
    return records_to_frame(data)


def _sum(df: pd.DataFrame, column: str = "total") -> float:
    return float(df[column].sum()) if not df.empty else 0.0


def _abs_sum(df: pd.DataFrame, column: str) -> float:
    return float(df[column].abs().sum()) if not df.empty else 0.0


def _per_marketplace(df: pd.DataFrame, configs: Mapping[str, MarketplaceConfig], fn) -> float:
    """Sum ``fn(subset, config)`` per marketplace, using each marketplace's own config."""
    total = 0.0
    for code, subset in df.groupby(df["marketplace_code"].fillna(""), sort=True):
        total += fn(subset, configs.get(code, ALL_MARKETPLACES))
    return total


def _liquidations(df: pd.DataFrame, config: MarketplaceConfig, configs: Mapping[str, MarketplaceConfig],
                  all_mode: bool) -> float:
    rows = C.by_category(df, S.LIQUIDATIONS)
    if all_mode:
        enabled = [code for code, mp in configs.items() if mp.has_liquidations]
        return _sum(rows[rows["marketplace_code"].isin(enabled)])
    return _sum(rows) if config.has_liquidations else 0.0


def _marketplace_pie_charts(scoped: pd.DataFrame, fulfillment: str,
                            configs: Mapping[str, MarketplaceConfig]) -> Optional[Dict[str, Dict[str, Any]]]:
    charts: Dict[str, Dict[str, Any]] = {}
    for code, mp_data in scoped.groupby(scoped["marketplace_code"].fillna(""), sort=True):
        mp_config = configs.get(code)
        if mp_config is None:
            continue
        all_orders = C.by_category(mp_data, S.ORDER)
        orders = filter_by_fulfillment(all_orders, fulfillment)
        refunds = filter_by_fulfillment(C.by_category(mp_data, S.REFUND), fulfillment)
        fba_sales = _sum(all_orders[all_orders["fulfillment"] == S.FBA], "product_sales")
        fbm_sales = _sum(all_orders[all_orders["fulfillment"] == S.FBM], "product_sales")
        sales = _sum(orders, "product_sales")
        ads_total = _abs_sum(mp_data[C.advertising_mask(mp_data)], "total")
        chart = C.build_pie_chart(
            fulfillment,
            selling_fees=_abs_sum(orders, "selling_fees"),
            fba_fees=_abs_sum(orders, "fba_fees"),
            fba_cost=0.0 if fulfillment == S.FBM else C.calculate_fba_cost(mp_data, mp_config),
            fbm_cost=0.0 if fulfillment == S.FBA else C.calculate_fbm_cost(mp_data, mp_config),
            advertising=C.calculate_advertising_cost(ads_total, fba_sales, fbm_sales, fulfillment),
            refund_loss=C.calculate_refund_loss(refunds, code, mp_config).actual_refund_loss,
            vat=_sum(orders, "vat") if mp_config.has_vat else None,
            sales=sales,
        )
        chart.update({"total_sales": sales, "total_orders": int(len(orders))})
        charts[code] = chart
    return charts or None


def calculate_analytics(
    data: Union[pd.DataFrame, Sequence[CanonicalTransaction]],
    filters: Optional[AnalyticsFilters] = None,
    config: Optional[SellerLensConfig] = None,
    rate_provider: Optional[RateProvider] = None,
) -> Optional[DetailedAnalytics]:
    """Compute :class:`DetailedAnalytics` for ``data`` under ``filters``.

    Args:
        data: canonical records or a frame from ``records_to_frame``
        filters: date range, marketplace (None = all, converted to USD), fulfillment
        config: run configuration (marketplace configs and limits)
        rate_provider: exchange rates for cross-marketplace mode; the fixed
            fallback matrix is used when omitted

    Returns:
        The analytics, or None when the dataset is empty or larger than
        ``limits.max_total_rows``.
    """
    cfg = config or load_and_validate_config()
    flt = filters or AnalyticsFilters()
    df = _as_frame(data)

    if len(df) > cfg.limits.max_total_rows:
        log_warning(logger, f"Dataset too large ({len(df):,} transactions > {cfg.limits.max_total_rows:,}); "
                            "narrow the marketplace or date range")
        return None
    if df.empty:
        return None

    all_mode = flt.all_marketplaces
    configs = cfg.marketplaces
    if all_mode:
        mp_config = ALL_MARKETPLACES
    else:
        mp_config = cfg.marketplace(flt.marketplace_code)
        if mp_config is None:
            raise ValueError(f"Unknown marketplace code: {flt.marketplace_code!r}")
    fulfillment = flt.fulfillment

    scoped = filter_by_marketplace(filter_by_date_range(df, flt.start, flt.end), flt.marketplace_code)
    if all_mode:
        scoped = C.convert_frame_to_usd(scoped, rate_provider)

    all_orders = C.by_category(scoped, S.ORDER)
    orders = filter_by_fulfillment(all_orders, fulfillment)
    refunds = filter_by_fulfillment(C.by_category(scoped, S.REFUND), fulfillment)
    disbursements = C.by_category(scoped, S.DISBURSEMENT)

    fba_orders = orders[orders["fulfillment"] == S.FBA]
    fbm_orders = orders[orders["fulfillment"] == S.FBM]
    total_sales = _sum(orders, "product_sales")
    fba_order_sales = _sum(fba_orders, "product_sales")
    fbm_order_sales = _sum(fbm_orders, "product_sales")

    refund = C.calculate_refund_loss(refunds, flt.marketplace_code, mp_config, configs)

    # fee groups
    adjustments = C.by_category(scoped, S.ADJUSTMENT)
    inventory = C.by_category(scoped, S.FBA_INVENTORY_FEE)
    service = C.by_category(scoped, S.SERVICE_FEE)
    ads_mask = C.advertising_mask(service)
    ads = service[ads_mask]
    non_ads = service[~ads_mask]
    others = C.by_category(scoped, S.OTHERS)
    customer_returns = C.by_category(scoped, S.FBA_CUSTOMER_RETURN_FEE)
    fba_transactions = C.by_category(scoped, S.FBA_TRANSACTION_FEE)
    amazon_fees = C.by_category(scoped, S.AMAZON_FEES)
    chargebacks = C.by_category(scoped, S.CHARGEBACK_REFUND)

    inventory_keys = pd.Series(
        [normalize_inventory_fee_description(d, o) for d, o in zip(inventory["description"], inventory["order_id"])],
        index=inventory.index, dtype=object,
    )
    adjustment_keys = adjustments["description"].map(normalize_adjustment_description)

    # advertising: one untagged total prorated by channel share of all orders in scope
    advertising_total = _abs_sum(ads, "total")
    all_fba_sales = _sum(all_orders[all_orders["fulfillment"] == S.FBA], "product_sales")
    all_fbm_sales = _sum(all_orders[all_orders["fulfillment"] == S.FBM], "product_sales")
    fba_ads = C.calculate_advertising_cost(advertising_total, all_fba_sales, all_fbm_sales, S.FBA)
    fbm_ads = C.calculate_advertising_cost(advertising_total, all_fba_sales, all_fbm_sales, S.FBM)
    display_ads = C.calculate_advertising_cost(advertising_total, all_fba_sales, all_fbm_sales, fulfillment)

    if all_mode:
        raw_fba_cost = _per_marketplace(scoped, configs, C.calculate_fba_cost)
        raw_fbm_cost = _per_marketplace(scoped, configs, C.calculate_fbm_cost)
    else:
        raw_fba_cost = C.calculate_fba_cost(scoped, mp_config)
        raw_fbm_cost = C.calculate_fbm_cost(scoped, mp_config)
    total_fba_cost = 0.0 if fulfillment == S.FBM else raw_fba_cost
    total_fbm_cost = 0.0 if fulfillment == S.FBA else raw_fbm_cost

    total_vat = _sum(orders, "vat") if mp_config.has_vat else 0.0
    fba_selling_fees = _abs_sum(fba_orders, "selling_fees")
    fbm_selling_fees = _abs_sum(fbm_orders, "selling_fees")
    total_selling_fees = fba_selling_fees + fbm_selling_fees
    total_fba_fees = _abs_sum(orders, "fba_fees")

    # product_sales already carries the marketplace's gross-sales formula
    gross_sales = total_sales
    total_fees = total_selling_fees + total_fba_fees + total_fba_cost + total_fbm_cost
    net_profit = gross_sales - total_fees - display_ads - refund.actual_refund_loss

    if fulfillment == S.FBA:
        pie_sales, pie_selling = fba_order_sales, fba_selling_fees
    elif fulfillment == S.FBM:
        pie_sales, pie_selling = fbm_order_sales, fbm_selling_fees
    else:
        pie_sales, pie_selling = total_sales, total_selling_fees
    if fulfillment == "all":
        pie_vat = total_vat if mp_config.has_vat else None
    else:
        pie_vat = total_vat if mp_config.vat_included_in_price else None
    pie_chart = C.build_pie_chart(
        fulfillment, pie_selling, total_fba_fees, total_fba_cost, total_fbm_cost,
        display_ads, refund.actual_refund_loss, pie_vat, pie_sales,
    )

    rates = GlobalCostRates.from_totals(
        advertising_total, raw_fba_cost, raw_fbm_cost,
        all_fba_sales + all_fbm_sales, all_fba_sales, all_fbm_sales,
    )
    rollup_frames = build_rollups(scoped, fulfillment, flt.marketplace_code, mp_config, configs, rates)

    analytics = DetailedAnalytics(
        marketplace_code=flt.marketplace_code,
        fulfillment=fulfillment,
        currency="USD" if all_mode else mp_config.currency,
        start=flt.start,
        end=flt.end,
        total_orders=int(len(orders)),
        fba_orders=int(len(fba_orders)),
        fbm_orders=int(len(fbm_orders)),
        total_refunds=int(len(refunds)),
        total_sales=total_sales,
        fba_order_sales=fba_order_sales,
        fbm_order_sales=fbm_order_sales,
        total_all_sales=all_fba_sales + all_fbm_sales,
        total_net=_sum(scoped[scoped["category_type"] != S.DISBURSEMENT]),
        fba_order_net=_sum(fba_orders),
        fbm_order_net=_sum(fbm_orders),
        total_disbursement=_abs_sum(disbursements, "total"),
        disbursement_count=int(len(disbursements)),
        refund_rate=len(refunds) / len(orders) * 100.0 if len(orders) else 0.0,
        total_refund_amount=refund.total_refund_amount,
        recovered_refunds=refund.recovered_refunds,
        actual_refund_loss=refund.actual_refund_loss,
        total_fba_fees=total_fba_fees,
        fba_selling_fees=fba_selling_fees,
        fbm_selling_fees=fbm_selling_fees,
        fba_order_fees=_abs_sum(fba_orders, "fba_fees"),
        total_selling_fees=total_selling_fees,
        adjustment_total=_sum(adjustments),
        inventory_total=_sum(inventory),
        service_total=_sum(non_ads),
        chargeback_total=_sum(chargebacks),
        liquidations_total=_liquidations(scoped, mp_config, configs, all_mode),
        fba_transaction_total=abs(_sum(fba_transactions)),
        fba_customer_return_total=abs(_sum(customer_returns)),
        fee_adjustments=abs(_sum(C.by_category(scoped, S.FEE_ADJUSTMENT))),
        safet_reimbursements=abs(_sum(C.by_category(scoped, S.SAFET_REIMBURSEMENT))),
        total_vat=total_vat,
        total_fba_cost=total_fba_cost,
        total_fbm_cost=total_fbm_cost,
        advertising_cost_total=advertising_total,
        fba_advertising_cost=fba_ads,
        fbm_advertising_cost=fbm_ads,
        display_advertising_cost=display_ads,
        gross_sales=gross_sales,
        total_fees=total_fees,
        net_profit=net_profit,
        profit_margin=net_profit / gross_sales * 100.0 if gross_sales > 0 else 0.0,
        fba_percentage=fba_order_sales / total_sales * 100.0 if total_sales > 0 else 0.0,
        fbm_percentage=fbm_order_sales / total_sales * 100.0 if total_sales > 0 else 0.0,
        adjustment_groups=C.group_transactions(adjustments, adjustment_keys),
        inventory_groups=C.group_transactions(inventory, inventory_keys),
        service_groups=C.group_transactions(non_ads, C.description_or(non_ads, "Other")),
        others_groups=C.group_transactions(others, C.description_or(others, "Other")),
        fba_customer_return_groups=C.group_transactions(
            customer_returns, C.description_or(customer_returns, "Customer Return Fee")),
        fba_transaction_groups=C.group_transactions(
            fba_transactions, C.description_or(fba_transactions, "Transaction Fee")),
        amazon_fees_groups=C.group_transactions(amazon_fees, C.description_or(amazon_fees, "Other")),
        chargeback_groups=C.group_transactions(chargebacks, C.description_or(chargebacks, "Unknown SKU", "sku")),
        postal_zones=C.calculate_postal_zones(orders) if (not all_mode and mp_config.has_postal_zones) else {},
        marketplace_sales_distribution=C.calculate_marketplace_sales_distribution(orders) if all_mode else None,
        marketplace_pie_charts=_marketplace_pie_charts(scoped, fulfillment, configs) if all_mode else None,
        pie_chart=pie_chart,
        rollups={level: frame_to_records(frame) for level, frame in rollup_frames.items()},
        profitability_summary=summarize(rollup_frames["sku"]),
    )
    logger.debug(
        "Analytics [%s/%s %s..%s]: %d orders, sales %.2f, net profit %.2f",
        flt.marketplace_code or "ALL", fulfillment, flt.start, flt.end,
        analytics.total_orders, total_sales, net_profit,
    )
    return analytics
