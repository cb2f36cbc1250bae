"""Currency conversion for cross-marketplace aggregation.

Rates are sourced with fallback priority:
  1) live fetch from a Frankfurter-style endpoint (short timeout)
  2) the last matrix fetched successfully, while younger than the TTL
  3) fixed fallback constants

A missing currency pair converts to 0, never to the unconverted amount:
summing a foreign amount as if it were USD would silently inflate totals.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Mapping, Optional

import requests

from .logging_utils import log_error, log_warning


LOGGER_NAME = "sellerlens.currency"
logger = logging.getLogger(LOGGER_NAME)

RateMatrix = Dict[str, Dict[str, float]]

SOURCE_API = "api"
SOURCE_CACHED = "cached"
SOURCE_FALLBACK = "fallback"

MARKETPLACE_CURRENCIES: Dict[str, str] = {
    "US": "USD",
    "UK": "GBP",
    "DE": "EUR",
    "FR": "EUR",
    "IT": "EUR",
    "ES": "EUR",
    "CA": "CAD",
    "AU": "AUD",
    "AE": "AED",
    "SA": "SAR",
}

# Gulf currencies are pegged to USD and not served by the ECB feed.
USD_PEGS: Dict[str, float] = {"AED": 3.6725, "SAR": 3.75}

FALLBACK_RATES: RateMatrix = {
    "USD": {"USD": 1.0, "EUR": 0.95, "GBP": 0.79, "CAD": 1.40, "AUD": 1.55, "AED": 3.67, "SAR": 3.75, "TRY": 34.5},
    "EUR": {"USD": 1.05, "EUR": 1.0, "GBP": 0.83, "CAD": 1.47, "AUD": 1.63, "AED": 3.86, "SAR": 3.95, "TRY": 36.3},
    "GBP": {"USD": 1.27, "EUR": 1.20, "GBP": 1.0, "CAD": 1.77, "AUD": 1.96, "AED": 4.65, "SAR": 4.75, "TRY": 43.7},
    "CAD": {"USD": 0.71, "EUR": 0.68, "GBP": 0.56, "CAD": 1.0, "AUD": 1.11, "AED": 2.62, "SAR": 2.68, "TRY": 24.6},
    "AUD": {"USD": 0.65, "EUR": 0.61, "GBP": 0.51, "CAD": 0.90, "AUD": 1.0, "AED": 2.37, "SAR": 2.42, "TRY": 22.3},
    "AED": {"USD": 0.27, "EUR": 0.26, "GBP": 0.22, "CAD": 0.38, "AUD": 0.42, "AED": 1.0, "SAR": 1.02, "TRY": 9.4},
    "SAR": {"USD": 0.27, "EUR": 0.25, "GBP": 0.21, "CAD": 0.37, "AUD": 0.41, "AED": 0.98, "SAR": 1.0, "TRY": 9.2},
    "TRY": {"USD": 0.029, "EUR": 0.028, "GBP": 0.023, "CAD": 0.041, "AUD": 0.045, "AED": 0.106, "SAR": 0.109, "TRY": 1.0},
}


def currency_for_marketplace(code: Optional[str]) -> str:
    return MARKETPLACE_CURRENCIES.get((code or "").upper(), "USD")


def build_rate_matrix(usd_rates: Mapping[str, float]) -> RateMatrix:
    """Cross rates from units-per-USD: ``matrix[f][t] = usd[t] / usd[f]``."""
    usd = {"USD": 1.0, **{k.upper(): float(v) for k, v in usd_rates.items() if v}}
    return {f: {t: usd[t] / usd[f] for t in usd} for f in usd}


def convert_with(matrix: Mapping[str, Mapping[str, float]], amount: float, from_currency: str, to_currency: str) -> float:
    """Convert using ``matrix``; a missing pair returns 0 and logs an error."""
    src = (from_currency or "").upper()
    dst = (to_currency or "").upper()
    if src == dst:
        return amount
    rate = matrix.get(src, {}).get(dst)
    if rate is None:
        log_error(logger, f"No exchange rate for {src}->{dst}; converting {amount} to 0")
        return 0.0
    return amount * rate


@dataclass(frozen=True)
class ExchangeRateStatus:
    source: str
    last_update: Optional[datetime]
    error: Optional[str] = None


class RateProvider:
    """Owns the rate matrix and its cache; inject ``clock``/``session`` in tests."""

    def __init__(
        self,
        api_url: str = "https://api.frankfurter.app/latest",
        base: str = "USD",
        symbols: tuple[str, ...] | list[str] = ("EUR", "GBP", "CAD", "AUD", "TRY"),
        timeout_seconds: float = 5.0,
        ttl_seconds: float = 3600.0,
        fetch_live: bool = True,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = datetime.now,
        session: Optional[requests.Session] = None,
    ):
        self.api_url = api_url
        self.base = base.upper()
        self.symbols = [s.upper() for s in symbols]
        self.timeout_seconds = timeout_seconds
        self.ttl_seconds = ttl_seconds
        self.fetch_live = fetch_live
        self._clock = clock
        self._now = now
        self._session = session
        self._cached: Optional[RateMatrix] = None
        self._cached_at: float = 0.0
        self._matrix: RateMatrix = FALLBACK_RATES
        self.status = ExchangeRateStatus(source=SOURCE_FALLBACK, last_update=None)

    @classmethod
    def from_config(cls, currency_config, **kwargs) -> "RateProvider":
        return cls(
            api_url=currency_config.api_url,
            base=currency_config.base,
            symbols=currency_config.symbols,
            timeout_seconds=currency_config.timeout_seconds,
            ttl_seconds=currency_config.ttl_seconds,
            fetch_live=currency_config.fetch_live,
            **kwargs,
        )

    @property
    def matrix(self) -> RateMatrix:
        return self._matrix

    def _fetch(self) -> RateMatrix:
        session = self._session or requests
        resp = session.get(
            self.api_url,
            params={"from": self.base, "to": ",".join(self.symbols)},
            timeout=self.timeout_seconds,
        )
        resp.raise_for_status()
        payload = resp.json()
        rates = payload.get("rates") if isinstance(payload, dict) else None
        if not isinstance(rates, dict) or not rates:
            raise ValueError("rate payload has no 'rates' table")
        usd_rates = {k: float(v) for k, v in rates.items()}
        usd_rates.update(USD_PEGS)
        return build_rate_matrix(usd_rates)

    def refresh(self, force: bool = False) -> ExchangeRateStatus:
        """Resolve the active matrix: live, then cached, then fallback."""
        fresh_cache = self._cached is not None and (self._clock() - self._cached_at) < self.ttl_seconds
        if fresh_cache and not force:
            self._matrix = self._cached
            return self.status

        error: Optional[str] = None
        if self.fetch_live:
            try:
                matrix = self._fetch()
            except (requests.RequestException, ValueError, TypeError) as exc:
                error = str(exc)
                log_warning(logger, f"Exchange rate fetch failed: {exc}")
            else:
                self._cached = matrix
                self._cached_at = self._clock()
                self._matrix = matrix
                self.status = ExchangeRateStatus(source=SOURCE_API, last_update=self._now())
                return self.status

        if self._cached is not None:
            self._matrix = self._cached
            self.status = ExchangeRateStatus(source=SOURCE_CACHED, last_update=self.status.last_update, error=error)
        else:
            self._matrix = FALLBACK_RATES
            self.status = ExchangeRateStatus(source=SOURCE_FALLBACK, last_update=None, error=error)
        return self.status

    def convert(self, amount: float, from_currency: str, to_currency: str) -> float:
        return convert_with(self._matrix, amount, from_currency, to_currency)

    def to_usd(self, amount: float, marketplace_code: Optional[str]) -> float:
        return self.convert(amount, currency_for_marketplace(marketplace_code), "USD")


def convert(amount: float, from_currency: str, to_currency: str, provider: Optional[RateProvider] = None) -> float:
    """Convert with ``provider`` (or the fixed fallback matrix when none is given)."""
    if provider is not None:
        return provider.convert(amount, from_currency, to_currency)
    return convert_with(FALLBACK_RATES, amount, from_currency, to_currency)
