"""Integration: spreadsheet files -> ingestion -> store -> enrichment -> analytics."""
from pathlib import Path

import pytest
from openpyxl import Workbook

from sellerlens.analytics.aggregator import calculate_analytics
from sellerlens.analytics.filters import AnalyticsFilters
from sellerlens.enrichment.products import create_product_map, enrich_records, parse_product_rows
from sellerlens.errors import IngestionError
from sellerlens.ingestion.loader import ingest_file, ingest_files
from sellerlens.store import TransactionStore


US_HEADER = [
    "date/time", "settlement id", "type", "order id", "sku", "description", "quantity", "marketplace",
    "fulfillment", "order city", "order state", "order postal", "tax collection model", "product sales",
    "product sales tax", "shipping credits", "promotional rebates", "selling fees", "fba fees",
    "other transaction fees", "other", "total",
]

DE_HEADER = [
    "Datum/Uhrzeit", "Abrechnungsnummer", "Typ", "Bestellnummer", "SKU", "Beschreibung", "Menge", "Marketplace",
    "Versand", "Ort der Bestellung", "Bundesland", "Postleitzahl", "Steuererhebungsmodell", "Umsätze",
    "Produktumsatzsteuer", "Gutschrift für Versandkosten", "Rabatte aus Werbeaktionen", "Verkaufsgebühren",
    "Gebühren zu Versand durch Amazon", "Andere Transaktionsgebühren", "Andere", "Gesamt",
]


def _us_row(date, type_, order_id, sku, desc, qty, fulfillment, postal, sales, selling, fba, total):
    return [date, "123", type_, order_id, sku, desc, qty, "amazon.com", fulfillment, "City", "ST", postal,
            "", sales, "0", "0", "0", selling, fba, "0", "0", total]


def _write_xlsx(path: Path, rows) -> Path:
    wb = Workbook()
    ws = wb.active
    for row in rows:
        ws.append(row)
    wb.save(path)
    return path


@pytest.fixture
def us_file(tmp_path):
    rows = [
        ["Includes Amazon Marketplace, Fulfillment by Amazon (FBA), and Amazon Webstore transactions"],
        ["All amounts in USD, unless specified"],
        US_HEADER,
        _us_row("Mar 2, 2024 9:15:00 AM PST", "Order", "111-1", "SKU-1", "Widget", "2", "Amazon", "10001",
                "40.00", "-6.00", "-8.00", "26.00"),
        _us_row("Mar 3, 2024 9:15:00 AM PST", "Order", "111-2", "SKU-2", "Gadget", "1", "Seller", "94105",
                "25.00", "-3.75", "0", "21.25"),
        _us_row("Mar 5, 2024 1:00:00 PM PST", "Refund", "111-1", "SKU-1", "Widget", "1", "Amazon", "10001",
                "-20.00", "3.00", "0", "-17.00"),
        _us_row("Mar 6, 2024 1:00:00 PM PST", "Service Fee", "", "", "Cost of Advertising", "", "", "",
                "0", "0", "0", "-12.00"),
        _us_row("Mar 7, 2024 1:00:00 PM PST", "FBA Inventory Fee", "FBA194PTBZ6H", "", "", "", "", "",
                "0", "0", "0", "-4.00"),
        _us_row("Mar 8, 2024 1:00:00 PM PST", "Removal Order", "", "SKU-1", "", "", "", "",
                "0", "0", "0", "-1.00"),
        _us_row("not a date", "Order", "111-9", "SKU-1", "Widget", "1", "Amazon", "", "1", "0", "0", "1"),
        [],
    ]
    return _write_xlsx(tmp_path / "us_march.xlsx", rows)


@pytest.fixture
def de_file(tmp_path):
    rows = [
        ["Alle Beträge in Euro"],
        DE_HEADER,
        ["02.03.2024 10:00:00 UTC", "9", "Bestellung", "302-1", "SKU-1", "Widget", "1", "amazon.de", "Amazon",
         "Berlin", "", "10115", "", "50,00", "9,50", "0", "0", "-7,50", "-4,00", "0", "0", "38,50"],
        ["04.03.2024 10:00:00 UTC", "9", "Erstattung", "302-1", "SKU-1", "Widget", "1", "amazon.de", "Amazon",
         "Berlin", "", "10115", "", "-50,00", "-9,50", "0", "0", "7,50", "0", "0", "0", "-100,00"],
    ]
    return _write_xlsx(tmp_path / "de_march.xlsx", rows)


def test_ingest_us_file_counts(us_file, config):
    result = ingest_file(us_file, config)
    assert result.marketplace_code == "US"
    assert len(result.records) == 5
    assert result.dropped_unknown_type == 1
    assert result.dropped_invalid_date == 1
    assert all(r.category_type for r in result.records)
    carrier = [r for r in result.records if r.category_type == "FBA Inventory Fee"][0]
    assert carrier.order_id == "FBA194PTBZ6H"


def test_ingest_de_file_localized(de_file, config):
    result = ingest_file(de_file, config)
    assert result.marketplace_code == "DE"
    order, refund = result.records
    assert order.category_type == "Order" and refund.category_type == "Refund"
    assert order.date_only == "2024-03-02"
    assert order.product_sales == pytest.approx(50.0)
    assert order.vat == pytest.approx(9.5)
    assert refund.total == pytest.approx(-100.0)


def test_reingest_is_deduplicated(us_file, config):
    store = TransactionStore()
    results, errors = ingest_files([us_file, us_file], store, config)
    assert not errors
    assert results[0].written.added == 5
    assert results[1].written.duplicates == 5
    assert len(store) == 5
    assert store.metadata("US").date_range == ("2024-03-02", "2024-03-07")


def test_rejected_file_does_not_block_others(us_file, tmp_path, config):
    bad = _write_xlsx(tmp_path / "notes.xlsx", [["hello"], ["world"]])
    store = TransactionStore()
    results, errors = ingest_files([bad, us_file], store, config)
    assert list(errors) == ["notes.xlsx"]
    assert errors["notes.xlsx"].reason == "no_header"
    assert len(results) == 1 and len(store) == 5


def test_unreadable_file(tmp_path, config):
    path = tmp_path / "broken.xlsx"
    path.write_bytes(b"not a zip")
    with pytest.raises(IngestionError) as err:
        ingest_file(path, config)
    assert err.value.reason == "unreadable"


def test_end_to_end_analytics(us_file, de_file, config):
    store = TransactionStore()
    ingest_files([us_file, de_file], store, config)
    products = parse_product_rows([{"sku": "SKU-1", "name": "Widget", "category": "Tools", "cost": 5}])
    records = enrich_records(store.get_all(), create_product_map(products))

    us = calculate_analytics(records, AnalyticsFilters("2024-03-01", "2024-03-31", "US"), config)
    assert us.total_orders == 2
    assert us.total_sales == pytest.approx(65.0)
    assert us.total_refund_amount == pytest.approx(17.0)
    assert us.actual_refund_loss == pytest.approx(8.5)
    assert us.advertising_cost_total == pytest.approx(12.0)
    assert us.inventory_groups == {"Partnered Carrier Fee": {"count": 1, "total": -4.0}}
    assert set(us.postal_zones) == {"1", "9"}
    sku1 = [r for r in us.rollups["sku"] if r["sku"] == "SKU-1"][0]
    assert sku1["has_cost_data"] is True
    assert sku1["total_product_cost"] == pytest.approx(10.0)
    assert sku1["category"] == "Tools"

    de = calculate_analytics(records, AnalyticsFilters("2024-03-01", "2024-03-31", "DE"), config)
    assert de.currency == "EUR"
    assert de.recovered_refunds == pytest.approx(20.0)
    assert de.actual_refund_loss == pytest.approx(80.0)

    everything = calculate_analytics(records, AnalyticsFilters("2024-03-01", "2024-03-31"), config)
    assert everything.total_orders == 3
    assert everything.recovered_refunds + everything.actual_refund_loss == pytest.approx(everything.total_refund_amount)
