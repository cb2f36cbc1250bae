"""Unit tests for currency conversion and the rate provider fallback chain."""
from datetime import datetime

import pytest
import requests

from sellerlens.common.config_validator import CurrencyConfig
from sellerlens.currency import (
    FALLBACK_RATES,
    SOURCE_API,
    SOURCE_CACHED,
    SOURCE_FALLBACK,
    RateProvider,
    build_rate_matrix,
    convert,
    currency_for_marketplace,
)


class _Response:
    def __init__(self, payload, status=200):
        self.payload = payload
        self.status_code = status

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(str(self.status_code))

    def json(self):
        return self.payload


class _Session:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def get(self, url, params=None, timeout=None):
        self.requests.append((url, params, timeout))
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


LIVE = {"amount": 1.0, "base": "USD", "rates": {"EUR": 0.9, "GBP": 0.8, "CAD": 1.35, "AUD": 1.5, "TRY": 32.0}}


def test_same_currency_is_noop():
    assert convert(100, "EUR", "EUR") == 100
    assert convert(100, "eur", "EUR") == 100


def test_missing_pair_converts_to_zero():
    assert convert(100, "GBP", "XYZ") == 0
    assert convert(100, "XYZ", "USD") == 0


def test_fallback_matrix_used_without_provider():
    assert convert(100, "EUR", "USD") == pytest.approx(100 * FALLBACK_RATES["EUR"]["USD"])


def test_currency_for_marketplace():
    assert currency_for_marketplace("de") == "EUR"
    assert currency_for_marketplace("SA") == "SAR"
    assert currency_for_marketplace(None) == "USD"


def test_build_rate_matrix_cross_rates():
    matrix = build_rate_matrix({"EUR": 0.5, "GBP": 0.25})
    assert matrix["USD"]["EUR"] == pytest.approx(0.5)
    assert matrix["EUR"]["USD"] == pytest.approx(2.0)
    assert matrix["GBP"]["EUR"] == pytest.approx(2.0)


def test_refresh_live_then_cached_then_fallback():
    now = [0.0]
    session = _Session(_Response(LIVE), requests.ConnectionError("down"))
    provider = RateProvider(ttl_seconds=60, clock=lambda: now[0], now=lambda: datetime(2024, 1, 1), session=session)

    status = provider.refresh()
    assert status.source == SOURCE_API
    assert status.last_update == datetime(2024, 1, 1)
    assert provider.convert(90, "EUR", "USD") == pytest.approx(100.0)
    assert provider.convert(3.75, "SAR", "USD") == pytest.approx(1.0)

    now[0] = 120.0
    status = provider.refresh()
    assert status.source == SOURCE_CACHED
    assert "down" in status.error
    assert provider.convert(90, "EUR", "USD") == pytest.approx(100.0)


def test_refresh_within_ttl_skips_network():
    session = _Session(_Response(LIVE))
    provider = RateProvider(ttl_seconds=3600, clock=lambda: 0.0, session=session)
    provider.refresh()
    provider.refresh()
    assert len(session.requests) == 1
    url, params, timeout = session.requests[0]
    assert params["from"] == "USD"
    assert timeout == 5.0


@pytest.mark.parametrize("failure", [requests.Timeout("slow"), _Response({}, status=500), _Response({"rates": {}})])
def test_refresh_without_cache_falls_back(failure):
    provider = RateProvider(session=_Session(failure))
    status = provider.refresh()
    assert status.source == SOURCE_FALLBACK
    assert provider.matrix is FALLBACK_RATES


def test_fetch_disabled_uses_fallback():
    provider = RateProvider.from_config(CurrencyConfig(fetch_live=False))
    assert provider.refresh().source == SOURCE_FALLBACK
    assert provider.to_usd(100, "UK") == pytest.approx(100 * FALLBACK_RATES["GBP"]["USD"])
