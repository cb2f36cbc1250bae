"""Unit tests for refund loss, cost, grouping and chart helpers."""
import logging

import numpy as np
import pytest

from sellerlens.analytics import costs as C
from sellerlens.analytics.consolidation import MISCELLANEOUS, consolidate_groups, sort_groups
from sellerlens.currency import FALLBACK_RATES
from sellerlens.standards import schemas as S
from sellerlens.standards.schemas import records_to_frame

from conftest import make_txn


def test_refund_loss_single_marketplace(config):
    refunds = records_to_frame([make_txn(S.REFUND, -100.0, marketplace_code="DE")])
    loss = C.calculate_refund_loss(refunds, "DE", config.marketplace("DE"))
    assert loss.total_refund_amount == pytest.approx(100.0)
    assert loss.recovered_refunds == pytest.approx(20.0)
    assert loss.actual_refund_loss == pytest.approx(80.0)


def test_refund_loss_all_mode_uses_each_marketplace_rate(config):
    refunds = records_to_frame([
        make_txn(S.REFUND, -100.0, marketplace_code="US"),
        make_txn(S.REFUND, -50.0, marketplace_code="DE"),
        make_txn(S.REFUND, -10.0, marketplace_code=""),
    ])
    loss = C.calculate_refund_loss(refunds, None, config.marketplace("ALL"), config.marketplaces)
    assert loss.total_refund_amount == pytest.approx(160.0)
    assert loss.recovered_refunds == pytest.approx(100 * 0.5 + 50 * 0.2 + 10 * 0.3)
    assert loss.recovered_refunds + loss.actual_refund_loss == pytest.approx(loss.total_refund_amount)


def test_refund_loss_empty(config):
    empty = records_to_frame([])
    assert C.calculate_refund_loss(empty, "US", config.marketplace("US")) == C.RefundLoss(0.0, 0.0, 0.0)


def test_advertising_proration():
    assert C.calculate_advertising_cost(100.0, 300.0, 100.0, "all") == 100.0
    assert C.calculate_advertising_cost(100.0, 300.0, 100.0, "FBA") == pytest.approx(75.0)
    assert C.calculate_advertising_cost(100.0, 300.0, 100.0, "FBM") == pytest.approx(25.0)
    assert C.calculate_advertising_cost(100.0, 0.0, 0.0, "FBA") == 0.0


def test_fba_cost_is_abs_of_signed_sum_without_advertising(config):
    df = records_to_frame([
        make_txn(S.ADJUSTMENT, 30.0),
        make_txn(S.FBA_INVENTORY_FEE, -50.0),
        make_txn(S.SERVICE_FEE, -20.0, description="Subscription"),
        make_txn(S.SERVICE_FEE, -999.0, description="Cost of Advertising"),
        make_txn(S.FBA_TRANSACTION_FEE, -5.0),
        make_txn(S.LIQUIDATIONS, 7.0),
        make_txn(S.ORDER, 500.0),
    ])
    assert C.calculate_fba_cost(df, config.marketplace("US")) == pytest.approx(45.0)
    assert C.calculate_fba_cost(df, config.marketplace("UK")) == pytest.approx(38.0)


def test_fbm_cost_uses_configured_category_and_source(config):
    df = records_to_frame([
        make_txn(S.SHIPPING_SERVICES, -12.0),
        make_txn(S.DELIVERY_SERVICES, -7.0),
        make_txn(S.ORDER, -3.0, other=-4.0),
    ])
    assert C.calculate_fbm_cost(df, config.marketplace("US")) == pytest.approx(12.0)
    assert C.calculate_fbm_cost(df, config.marketplace("UK")) == pytest.approx(7.0)
    assert C.calculate_fbm_cost(df, config.marketplace("AE")) == pytest.approx(4.0)


def test_group_transactions_counts_and_totals():
    df = records_to_frame([
        make_txn(S.SERVICE_FEE, -1.0, description="A"),
        make_txn(S.SERVICE_FEE, -2.0, description="B"),
        make_txn(S.SERVICE_FEE, -3.0, description="A"),
    ])
    groups = C.group_transactions(df, "description")
    assert groups == {"A": {"count": 2, "total": -4.0}, "B": {"count": 1, "total": -2.0}}


def test_postal_zones_digit_letter_and_international():
    orders = records_to_frame([
        make_txn(S.ORDER, 0.0, product_sales=10.0, order_postal="90210"),
        make_txn(S.ORDER, 0.0, product_sales=5.0, order_postal="9xx"),
        make_txn(S.ORDER, 0.0, product_sales=7.0, order_postal="SW1A", marketplace_code="UK"),
        make_txn(S.ORDER, 0.0, product_sales=2.0, order_postal="K1A", marketplace_code="US"),
        make_txn(S.ORDER, 0.0, product_sales=3.0, order_postal=""),
    ])
    zones = C.calculate_postal_zones(orders)
    assert zones["9"] == {"count": 2, "sales": 15.0}
    assert zones["S"] == {"count": 1, "sales": 7.0}
    assert zones[C.INTERNATIONAL_ZONE] == {"count": 1, "sales": 2.0}
    assert sum(z["count"] for z in zones.values()) == 4


def test_convert_frame_to_usd_per_row_currency():
    df = records_to_frame([
        make_txn(S.ORDER, 100.0, marketplace_code="DE", product_sales=100.0),
        make_txn(S.ORDER, 100.0, marketplace_code="US", product_sales=100.0),
    ])
    usd = C.convert_frame_to_usd(df)
    assert usd["total"].tolist() == pytest.approx([100.0 * FALLBACK_RATES["EUR"]["USD"], 100.0])
    assert df["total"].tolist() == [100.0, 100.0]


def test_convert_frame_to_usd_reports_rows_without_marketplace(caplog):
    df = records_to_frame([
        make_txn(S.ORDER, 100.0, marketplace_code="DE"),
        make_txn(S.ORDER, 7.0, marketplace_code=""),
    ])
    with caplog.at_level(logging.WARNING, logger="sellerlens.analytics.costs"):
        usd = C.convert_frame_to_usd(df)
    assert usd["total"].tolist()[1] == 7.0
    assert "1 transaction(s) without a marketplace code" in caplog.text


def test_marketplace_sales_distribution():
    orders = records_to_frame([
        make_txn(S.ORDER, 0.0, product_sales=10.0, marketplace_code="US"),
        make_txn(S.ORDER, 0.0, product_sales=5.0, marketplace_code="US"),
        make_txn(S.ORDER, 0.0, product_sales=8.0, marketplace_code="DE"),
    ])
    dist = C.calculate_marketplace_sales_distribution(orders)
    assert dist == {"DE": {"orders": 1, "sales": 8.0}, "US": {"orders": 2, "sales": 15.0}}


def test_pie_chart_net_slice_never_negative():
    chart = C.build_pie_chart("FBA", 10.0, 10.0, 10.0, 99.0, 10.0, 10.0, None, 100.0)
    assert chart["labels"] == ["Selling Fees", "FBA Fees", "FBA Cost", "Advertising", "Refund Loss", "Net"]
    assert chart["values"][-1] == pytest.approx(50.0)
    over = C.build_pie_chart("all", 50.0, 50.0, 50.0, 0.0, 0.0, 0.0, -5.0, 100.0)
    assert over["labels"][-2:] == ["VAT", "Net"]
    assert over["values"][-2] == 5.0
    assert over["values"][-1] == 0.0


def test_consolidation_merges_small_groups_last():
    groups = {
        "Big": {"count": 1, "total": -50.0},
        "Tiny": {"count": 2, "total": -3.0},
        "Small": {"count": 1, "total": 9.99},
        "Medium": {"count": 4, "total": 12.0},
    }
    out = consolidate_groups(groups, threshold=10.0)
    assert list(out) == ["Big", "Medium", MISCELLANEOUS]
    assert out[MISCELLANEOUS]["count"] == 3
    assert np.isclose(out[MISCELLANEOUS]["total"], 6.99)
    assert "Tiny" in groups


def test_consolidation_without_small_groups_and_sorting():
    groups = {"A": {"count": 1, "total": 20.0}, "B": {"count": 1, "total": -30.0}}
    assert list(consolidate_groups(groups)) == ["B", "A"]
    assert list(sort_groups({MISCELLANEOUS: {"count": 1, "total": 500.0}, "A": {"count": 1, "total": 1.0}})) == ["A", MISCELLANEOUS]
