"""Unit tests for the in-memory transaction store."""
from datetime import datetime

from sellerlens.standards import schemas as S
from sellerlens.store import TransactionStore

from conftest import make_txn


def _fixed_clock():
    return datetime(2024, 6, 1, 9, 0, 0)


def test_put_many_dedups_by_unique_key():
    store = TransactionStore(clock=_fixed_clock)
    a = make_txn(S.ORDER, 10.0)
    b = make_txn(S.REFUND, -5.0, marketplace_code="DE", date="2024-02-01")
    first = store.put_many([a, b], file_name="one.xlsx")
    second = store.put_many([a], file_name="one-again.xlsx")
    assert (first.added, first.duplicates) == (2, 0)
    assert (second.added, second.duplicates) == (0, 1)
    assert len(store) == 2
    assert a.unique_key in store
    assert store.get(b.unique_key) == b


def test_secondary_lookups():
    store = TransactionStore()
    us_order = make_txn(S.ORDER, 10.0)
    de_order = make_txn(S.ORDER, 12.0, marketplace_code="DE")
    de_fee = make_txn(S.SERVICE_FEE, -2.0, marketplace_code="DE")
    store.put_many([us_order, de_order, de_fee])
    assert {r.unique_key for r in store.get_by_marketplace("DE")} == {de_order.unique_key, de_fee.unique_key}
    assert {r.unique_key for r in store.get_by_category(S.ORDER)} == {us_order.unique_key, de_order.unique_key}
    assert store.marketplaces() == ["DE", "US"]
    assert store.get_by_marketplace("FR") == []


def test_metadata_tracks_count_range_and_history():
    store = TransactionStore(clock=_fixed_clock)
    store.put_many([make_txn(S.ORDER, 1.0, date="2024-01-05"), make_txn(S.ORDER, 2.0, date="2024-03-09")],
                   file_name="jan-mar.xlsx")
    meta = store.metadata("US")
    assert meta.transaction_count == 2
    assert meta.date_range == ("2024-01-05", "2024-03-09")
    assert len(meta.upload_history) == 1
    upload = meta.upload_history[0]
    assert upload.file_name == "jan-mar.xlsx"
    assert upload.uploaded_at == _fixed_clock()
    assert (upload.added, upload.duplicates) == (2, 0)


def test_delete_by_marketplace_and_clear():
    store = TransactionStore()
    store.put_many([make_txn(S.ORDER, 1.0), make_txn(S.ORDER, 1.0, marketplace_code="UK")])
    assert store.delete_by_marketplace("UK") == 1
    assert store.metadata("UK") is None
    assert store.get_by_category(S.ORDER)[0].marketplace_code == "US"
    store.clear()
    assert len(store) == 0
    assert store.get_all() == []
