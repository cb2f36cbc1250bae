"""Cell-level parsers for localized settlement reports.

All functions are pure and never raise on malformed input:
- ``parse_number``: US (1,234.56) and European (1.234,56) number formats
- ``parse_date``: ISO, US, European and FR/IT/DE month-name timestamps
- ``detect_marketplace``: storefront domain -> two-letter code
- ``detect_fulfillment``: fulfillment channel text -> FBA / FBM / Unknown
- ``is_advertising``: localized "cost of advertising" descriptions
"""
from __future__ import annotations

import math
import re
from datetime import date, datetime
from typing import Optional

import pandas as pd

from .standards.schemas import FBA, FBM, UNKNOWN_FULFILLMENT


_NUMBER_JUNK = re.compile(r"[^\d.,\-+]")

_FRENCH_MONTHS = {
    "janv": "Jan", "févr": "Feb", "fevr": "Feb", "mars": "Mar", "avr": "Apr",
    "mai": "May", "juin": "Jun", "juil": "Jul", "août": "Aug", "aout": "Aug",
    "sept": "Sep", "oct": "Oct", "nov": "Nov", "déc": "Dec", "dec": "Dec",
}
_ITALIAN_MONTHS = {
    "gen": "Jan", "feb": "Feb", "mar": "Mar", "apr": "Apr", "mag": "May", "giu": "Jun",
    "lug": "Jul", "ago": "Aug", "set": "Sep", "ott": "Oct", "nov": "Nov", "dic": "Dec",
}
_GERMAN_MONTHS = {"mär": "Mar", "okt": "Oct", "dez": "Dec"}

_EUROPEAN_DATE = re.compile(r"^(\d{1,2})[./](\d{1,2})[./](\d{4})")
_TIME = re.compile(r"(\d{1,2}):(\d{1,2})(?::(\d{1,2}))?")
_TZ_SUFFIX = re.compile(r"\s+(?:[A-Z]{3,4}|GMT[+-]\d{1,2}(?::?\d{2})?|UTC[+-]?\d{0,2}(?::?\d{2})?)$")

# Ordered: more specific domains before amazon.com
_MARKETPLACE_DOMAINS = [
    ("amazon.com.au", "AU"),
    ("amazon.co.uk", "UK"),
    ("amazon.de", "DE"),
    ("amazon.fr", "FR"),
    ("amazon.it", "IT"),
    ("amazon.es", "ES"),
    ("amazon.ca", "CA"),
    ("amazon.ae", "AE"),
    ("amazon.sa", "SA"),
    ("amazon.com", "US"),
]

_FBM_TOKENS = ("seller", "merchant", "mfn", "verkäufer", "vendeur", "venditore", "vendedor")

ADVERTISING_PHRASES = (
    "cost of advertising",
    "werbekosten",
    "prix de la publicité",
    "pubblicità",
    "gastos de publicidad",
)


def _is_blank(value: object) -> bool:
    if value is None or value is pd.NaT:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return isinstance(value, str) and not value.strip()


def cell_text(value: object) -> str:
    """Return a stripped string for a raw cell; blanks become ''."""
    if _is_blank(value):
        return ""
    return str(value).strip()


def parse_number(value: object) -> float:
    """Parse a localized number; blank or unparseable input gives 0.0.

    A comma is the decimal separator when there is no dot, or when the last
    comma comes after the last dot (``1.234,56``). Otherwise commas are
    thousands separators (``1,234.56``).
    """
    if _is_blank(value):
        return 0.0
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)

    text = _NUMBER_JUNK.sub("", str(value).strip())
    last_dot = text.rfind(".")
    last_comma = text.rfind(",")
    if last_comma >= 0 and (last_dot < 0 or last_comma > last_dot):
        text = text.replace(".", "").replace(",", ".", 1).replace(",", "")
    else:
        text = text.replace(",", "")
    try:
        result = float(text)
    except ValueError:
        return 0.0
    return result if math.isfinite(result) else 0.0


def _translate_months(text: str) -> str:
    for table, optional_dot in ((_FRENCH_MONTHS, True), (_ITALIAN_MONTHS, False), (_GERMAN_MONTHS, True)):
        for local, english in table.items():
            pattern = rf"\b{re.escape(local)}\b\.?" if optional_dot else rf"\b{re.escape(local)}\b"
            text = re.sub(pattern, english, text, flags=re.IGNORECASE)
    return text


def parse_date(value: object) -> Optional[datetime]:
    """Parse a report timestamp into a naive datetime, or None."""
    if _is_blank(value):
        return None
    if isinstance(value, pd.Timestamp):
        if pd.isna(value):
            return None
        if value.tzinfo is not None:
            value = value.tz_localize(None)
        return value.to_pydatetime()
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)

    text = str(value).strip()
    text = _translate_months(text)
    text = re.sub(r"a[.,]\s?m[.,]?", "AM", text, flags=re.IGNORECASE)
    text = re.sub(r"p[.,]\s?m[.,]?", "PM", text, flags=re.IGNORECASE)
    text = re.sub(r"\b([A-Z][a-z]{2})\.\s+", r"\1 ", text)

    european = _EUROPEAN_DATE.match(text)
    if european:
        day, month, year = (int(g) for g in european.groups())
        hour = minute = second = 0
        tm = _TIME.search(text, european.end())
        if tm:
            hour, minute = int(tm.group(1)), int(tm.group(2))
            second = int(tm.group(3) or 0)
        try:
            return datetime(year, month, day, hour, minute, second)
        except ValueError:
            return None

    text = _TZ_SUFFIX.sub("", text)
    parsed = pd.to_datetime(text, errors="coerce")
    if pd.isna(parsed):
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.tz_localize(None)
    return parsed.to_pydatetime()


def detect_marketplace(value: object) -> Optional[str]:
    """Map a marketplace cell (``amazon.de``, ``Amazon,co,uk``) to its code."""
    text = cell_text(value).lower().replace(",", ".")
    if not text:
        return None
    for domain, code in _MARKETPLACE_DOMAINS:
        if domain in text:
            return code
    return None


def detect_fulfillment(value: object) -> str:
    text = cell_text(value).lower()
    if not text:
        return UNKNOWN_FULFILLMENT
    if "amazon" in text or "afn" in text:
        return FBA
    if any(token in text for token in _FBM_TOKENS):
        return FBM
    return UNKNOWN_FULFILLMENT


def is_advertising(description_lower: str) -> bool:
    text = (description_lower or "").lower()
    return any(phrase in text for phrase in ADVERTISING_PHRASES)
