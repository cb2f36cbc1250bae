"""Shared fixtures: canonical transaction factory and config."""
from __future__ import annotations

import sys
from datetime import datetime
from itertools import count
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from sellerlens.common.config_validator import load_and_validate_config
from sellerlens.standards.schemas import CanonicalTransaction


_ids = count()


def make_txn(category_type: str, total: float = 0.0, date: str = "2024-03-15", **fields) -> CanonicalTransaction:
    """Build a canonical record with sensible defaults for analytics tests."""
    n = next(_ids)
    parsed = datetime.fromisoformat(date)
    fields.setdefault("marketplace_code", "US")
    fields.setdefault("type", category_type)
    return CanonicalTransaction(
        id=f"t-{n}",
        unique_key=f"k-{n}",
        file_name="test.xlsx",
        date=parsed,
        date_only=parsed.strftime("%Y-%m-%d"),
        time_only=parsed.strftime("%H:%M:%S"),
        category_type=category_type,
        description_lower=fields.get("description", "").lower(),
        total=total,
        **fields,
    )


@pytest.fixture
def txn():
    return make_txn


@pytest.fixture
def config():
    return load_and_validate_config({"paths": {"logs_dir": "logs"}})
