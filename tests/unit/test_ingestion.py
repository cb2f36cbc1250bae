"""Unit tests for record building and grid ingestion."""
from datetime import datetime

import pytest

from sellerlens.common.config_validator import load_and_validate_config
from sellerlens.errors import IngestionError
from sellerlens.ingestion.loader import detect_file_marketplace, ingest_rows
from sellerlens.ingestion.records import build_record, make_unique_key
from sellerlens.mapping.columns import build_column_map
from sellerlens.standards import schemas as S
from sellerlens.store import TransactionStore


HEADERS = [
    "date/time", "type", "order id", "sku", "description", "quantity", "marketplace", "fulfillment",
    "order postal", "product sales", "product sales tax", "selling fees", "fba fees", "other", "total",
]


def _row(date="Mar 15, 2024 10:00:00 AM PST", type_="Order", order_id="111-1", sku="SKU-1", desc="Widget",
         qty="1", marketplace="amazon.com", fulfillment="Amazon", postal="90210", sales="20.00", tax="1.50",
         selling="-3.00", fba="-4.00", other="0", total="13.00"):
    return [date, type_, order_id, sku, desc, qty, marketplace, fulfillment, postal, sales, tax, selling, fba, other, total]


def _grid(*rows):
    return [["Settlement report"], HEADERS, *rows]


def test_build_record_maps_all_fields(config):
    cmap = build_column_map(HEADERS)
    rec = build_record(_row(), cmap, config.marketplace("US"), "US", file_name="f.csv", row_index=0)
    assert rec is not None
    assert rec.category_type == S.ORDER
    assert rec.date == datetime(2024, 3, 15, 10, 0, 0)
    assert rec.date_only == "2024-03-15"
    assert rec.time_only == "10:00:00"
    assert rec.marketplace_code == "US"
    assert rec.fulfillment == S.FBA
    assert rec.product_sales == pytest.approx(20.0)
    assert rec.vat == 0.0
    assert rec.total == pytest.approx(13.0)
    assert rec.asin is None and rec.product_cost is None


def test_build_record_drops_unknown_type_and_bad_date(config):
    cmap = build_column_map(HEADERS)
    mp = config.marketplace("US")
    assert build_record(_row(type_="Removal Order"), cmap, mp, "US") is None
    assert build_record(_row(date="yesterday-ish"), cmap, mp, "US") is None


def test_build_record_missing_columns_default(config):
    headers = ["date/time", "type", "sku", "description", "marketplace", "total"]
    cmap = build_column_map(headers)
    row = ["2024-03-01", "Refund", "SKU-9", "", "", "-5,50"]
    rec = build_record(row, cmap, config.marketplace("DE"), "DE")
    assert rec.category_type == S.REFUND
    assert rec.quantity == 0.0 and rec.order_id == ""
    assert rec.marketplace_code == "DE"
    assert rec.marketplace == "Amazon.de"
    assert rec.total == pytest.approx(-5.5)


def test_build_record_row_marketplace_beats_file_code(config):
    cmap = build_column_map(HEADERS)
    rec = build_record(_row(marketplace="amazon.ca"), cmap, config.marketplace("US"), "US")
    assert rec.marketplace_code == "CA"
    assert rec.marketplace == "amazon.ca"


def test_build_record_vat_and_gross_formula(config):
    cmap = build_column_map(HEADERS)
    uk = build_record(_row(marketplace="amazon.co.uk"), cmap, config.marketplace("UK"), "UK")
    assert uk.vat == pytest.approx(1.5)
    assert uk.product_sales == pytest.approx(20.0)
    ae = build_record(_row(marketplace="amazon.ae"), cmap, config.marketplace("AE"), "AE")
    assert ae.product_sales == pytest.approx(21.5)


def test_build_record_liquidations_only_where_enabled(config):
    cmap = build_column_map(HEADERS)
    row = _row(type_="Liquidations", total="8.00")
    uk = build_record(row, cmap, config.marketplace("UK"), "UK")
    de = build_record(row, cmap, config.marketplace("DE"), "DE")
    assert uk.liquidations == pytest.approx(8.0)
    assert de.liquidations == 0.0


def test_make_unique_key_is_identifier_safe():
    key = make_unique_key("2024-03-15T10:00:00", "111-1", "SKU 1/A", "Order", 13.0)
    assert key == "2024-03-15T10_00_00-111-1-SKU_1_A-Order-13.0"


def test_unique_key_keeps_full_amount_precision(config):
    column_map = build_column_map(HEADERS)
    us = config.marketplace("US")
    first = build_record(_row(total="12345.67"), column_map, us, "US", file_name="a.csv", row_index=0)
    second = build_record(_row(total="12345.74"), column_map, us, "US", file_name="a.csv", row_index=1)
    assert first.unique_key != second.unique_key

    store = TransactionStore()
    written = store.put_many([first, second], file_name="a.csv")
    assert (written.added, written.duplicates) == (2, 0)
    assert len(store) == 2


def test_ingest_rows_counts_drops_and_blanks(config):
    rows = _grid(
        _row(),
        [],
        ["", "", ""],
        _row(type_="Removal Order", order_id="111-2"),
        _row(date="garbage", order_id="111-3"),
        _row(type_="Refund", order_id="111-4", total="-13.00"),
    )
    result = ingest_rows(rows, "report.csv", config)
    assert result.marketplace_code == "US"
    assert len(result.records) == 2
    assert result.skipped_blank == 2
    assert result.dropped_unknown_type == 1
    assert result.dropped_invalid_date == 1
    assert result.dropped == 2
    assert all(r.category_type is not None for r in result.records)


def test_ingest_rows_no_header(config):
    with pytest.raises(IngestionError) as err:
        ingest_rows([["just", "a", "note"]] * 3, "bad.csv", config)
    assert err.value.reason == "no_header"
    assert "bad.csv" in str(err.value)


def test_ingest_rows_no_marketplace(config):
    rows = _grid(_row(marketplace="ebay.com"))
    with pytest.raises(IngestionError) as err:
        ingest_rows(rows, "nomp.csv", config)
    assert err.value.reason == "no_marketplace"


def test_ingest_rows_over_ceiling_commits_nothing(config):
    rows = _grid(*([_row()] * 150_001))
    store = TransactionStore()
    with pytest.raises(IngestionError) as err:
        result = ingest_rows(rows, "huge.csv", config)
        store.put_many(result.records)
    assert err.value.reason == "too_many_rows"
    assert len(store) == 0


def test_ingest_rows_ceiling_is_configurable():
    cfg = load_and_validate_config({"limits": {"max_rows_per_file": 2}})
    rows = _grid(_row(), _row(order_id="2"), _row(order_id="3"))
    with pytest.raises(IngestionError):
        ingest_rows(rows, "three.csv", cfg)


def test_detect_file_marketplace_uses_first_rows():
    rows = [_row(marketplace="")] * 3 + [_row(marketplace="amazon.de")]
    assert detect_file_marketplace(HEADERS, rows, scan_rows=10) == "DE"
    assert detect_file_marketplace(HEADERS, rows, scan_rows=2) is None
    assert detect_file_marketplace(["date", "type"], rows) is None
