"""In-memory transaction store.

Key-value semantics the analytics core relies on:
  - records keyed by ``unique_key``; writes skip keys already present
  - secondary lookups by marketplace code and by category tag
  - per-marketplace metadata (transaction count, date range, upload history)
"""
from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from .standards.schemas import CanonicalTransaction


LOGGER_NAME = "sellerlens.store"
logger = logging.getLogger(LOGGER_NAME)


@dataclass(frozen=True)
class UploadRecord:
    file_name: str
    uploaded_at: datetime
    added: int
    duplicates: int


@dataclass
class MarketplaceMetadata:
    marketplace_code: str
    transaction_count: int = 0
    date_range: Optional[Tuple[str, str]] = None
    upload_history: List[UploadRecord] = field(default_factory=list)


@dataclass(frozen=True)
class WriteResult:
    added: int
    duplicates: int


class TransactionStore:
    """Dict-backed store with marketplace and category indexes."""

    def __init__(self, clock: Callable[[], datetime] = datetime.now):
        self._clock = clock
        self._records: Dict[str, CanonicalTransaction] = {}
        self._by_marketplace: Dict[str, Set[str]] = defaultdict(set)
        self._by_category: Dict[str, Set[str]] = defaultdict(set)
        self._metadata: Dict[str, MarketplaceMetadata] = {}

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, unique_key: str) -> bool:
        return unique_key in self._records

    def get(self, unique_key: str) -> Optional[CanonicalTransaction]:
        return self._records.get(unique_key)

    def put_many(self, records: Iterable[CanonicalTransaction], file_name: Optional[str] = None) -> WriteResult:
        """Insert records, skipping unique keys already stored."""
        added = duplicates = 0
        touched: Dict[str, Tuple[int, int]] = {}
        for rec in records:
            code = rec.marketplace_code
            add_n, dup_n = touched.get(code, (0, 0))
            if rec.unique_key in self._records:
                duplicates += 1
                touched[code] = (add_n, dup_n + 1)
                continue
            self._records[rec.unique_key] = rec
            self._by_marketplace[code].add(rec.unique_key)
            self._by_category[rec.category_type].add(rec.unique_key)
            added += 1
            touched[code] = (add_n + 1, dup_n)

        now = self._clock()
        for code, (add_n, dup_n) in touched.items():
            self._refresh_metadata(code)
            if file_name:
                self._metadata[code].upload_history.append(UploadRecord(file_name, now, add_n, dup_n))
        if duplicates:
            logger.info("Skipped %d duplicate transactions%s", duplicates, f" from {file_name}" if file_name else "")
        return WriteResult(added=added, duplicates=duplicates)

    def _select(self, keys: Iterable[str]) -> List[CanonicalTransaction]:
        keys = set(keys)
        return [rec for key, rec in self._records.items() if key in keys]

    def get_all(self) -> List[CanonicalTransaction]:
        return list(self._records.values())

    def get_by_marketplace(self, code: str) -> List[CanonicalTransaction]:
        return self._select(self._by_marketplace.get(code, ()))

    def get_by_category(self, category: str) -> List[CanonicalTransaction]:
        return self._select(self._by_category.get(category, ()))

    def marketplaces(self) -> List[str]:
        return sorted(code for code, keys in self._by_marketplace.items() if keys)

    def delete_by_marketplace(self, code: str) -> int:
        keys = self._by_marketplace.pop(code, set())
        for key in keys:
            rec = self._records.pop(key)
            self._by_category[rec.category_type].discard(key)
        self._metadata.pop(code, None)
        return len(keys)

    def clear(self) -> None:
        self._records.clear()
        self._by_marketplace.clear()
        self._by_category.clear()
        self._metadata.clear()

    def metadata(self, code: str) -> Optional[MarketplaceMetadata]:
        return self._metadata.get(code)

    def _refresh_metadata(self, code: str) -> None:
        meta = self._metadata.setdefault(code, MarketplaceMetadata(marketplace_code=code))
        dates = [self._records[k].date_only for k in self._by_marketplace.get(code, ()) if self._records[k].date_only]
        meta.transaction_count = len(self._by_marketplace.get(code, ()))
        meta.date_range = (min(dates), max(dates)) if dates else None
