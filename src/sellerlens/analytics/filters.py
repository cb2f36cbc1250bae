"""Record filters for analytics.

Date filtering compares ``date_only`` strings (``YYYY-MM-DD``), never
datetimes, so timezone offsets cannot move a row across a day boundary.
Rows without a ``date_only`` are always kept.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Literal, Optional

import pandas as pd

from ..common.config_validator import ALL_CODE


Fulfillment = Literal["all", "FBA", "FBM"]


def to_date_only(value: object) -> Optional[str]:
    """Coerce a date/datetime/ISO string to ``YYYY-MM-DD``; None/'' stays None."""
    if value is None or value == "":
        return None
    if isinstance(value, (datetime, date)):
        return value.strftime("%Y-%m-%d")
    parsed = pd.to_datetime(str(value), errors="coerce")
    if pd.isna(parsed):
        raise ValueError(f"Invalid date filter value: {value!r}")
    return parsed.strftime("%Y-%m-%d")


@dataclass(frozen=True)
class AnalyticsFilters:
    start: Optional[str] = None
    end: Optional[str] = None
    marketplace_code: Optional[str] = None
    fulfillment: Fulfillment = "all"

    def __post_init__(self):
        object.__setattr__(self, "start", to_date_only(self.start))
        object.__setattr__(self, "end", to_date_only(self.end))
        code = (self.marketplace_code or "").upper() or None
        object.__setattr__(self, "marketplace_code", None if code == ALL_CODE else code)
        if self.fulfillment not in ("all", "FBA", "FBM"):
            raise ValueError(f"fulfillment must be 'all', 'FBA' or 'FBM', got {self.fulfillment!r}")

    @property
    def all_marketplaces(self) -> bool:
        return self.marketplace_code is None


def is_date_in_range(date_only: str, start: Optional[str], end: Optional[str]) -> bool:
    if not date_only:
        return True
    if start and date_only < start:
        return False
    if end and date_only > end:
        return False
    return True


def filter_by_date_range(df: pd.DataFrame, start: Optional[str], end: Optional[str]) -> pd.DataFrame:
    d = df["date_only"].fillna("").astype(str)
    mask = pd.Series(True, index=df.index)
    if start:
        mask &= (d == "") | (d >= start)
    if end:
        mask &= (d == "") | (d <= end)
    return df[mask]


def filter_by_marketplace(df: pd.DataFrame, marketplace_code: Optional[str]) -> pd.DataFrame:
    if not marketplace_code:
        return df
    return df[df["marketplace_code"] == marketplace_code]


def filter_by_fulfillment(df: pd.DataFrame, fulfillment: str) -> pd.DataFrame:
    if fulfillment == "all":
        return df
    return df[df["fulfillment"] == fulfillment]
