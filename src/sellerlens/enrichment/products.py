"""Product master data: fetching, caching, keyed lookup and record enrichment.

Capabilities:
- Parse product rows from the HTTP mapping service (JSON array) or a local
  CSV/XLSX product sheet
- Build a lookup map keyed ``"{MARKETPLACE}:{sku}"`` with a bare-SKU fallback
  where a row carrying a cost beats one without
- Marketplace-aware lookup with alias codes (AE/UAE, SA/KSA, UK/GB)
- Explicit TTL cache with single-flight fetching
"""
from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, Optional

import pandas as pd
import requests

from ..errors import ProductMappingError
from ..logging_utils import log_warning
from ..parsing import cell_text
from ..standards.schemas import CanonicalTransaction


LOGGER_NAME = "sellerlens.enrichment"
logger = logging.getLogger(LOGGER_NAME)

MARKETPLACE_ALIASES: Dict[str, str] = {
    "AE": "UAE", "UAE": "AE",
    "SA": "KSA", "KSA": "SA",
    "UK": "GB", "GB": "UK",
}

_COLUMN_ALIASES = {
    "sku": ("sku",),
    "marketplace": ("marketplace", "country"),
    "asin": ("asin",),
    "name": ("name",),
    "parent": ("parent",),
    "category": ("category",),
    "cost": ("cost", "maliyet"),
    "size": ("size", "desi"),
    "custom_shipping": ("customshipping", "custom_shipping", "custom shipping"),
    "fbm_source": ("fbmsource", "fbm_source", "fbm source"),
}


@dataclass(frozen=True)
class ProductInfo:
    sku: str
    marketplace: Optional[str] = None
    asin: str = ""
    name: str = ""
    parent: str = ""
    category: str = ""
    cost: Optional[float] = None
    size: Optional[float] = None
    custom_shipping: Optional[float] = None
    fbm_source: Optional[str] = None


def _optional_float(value: object) -> Optional[float]:
    text = cell_text(value).replace(",", ".")
    if not text:
        return None
    try:
        return float(text)
    except ValueError:
        return None


def _pick(row: Mapping[str, object], field: str) -> object:
    for alias in _COLUMN_ALIASES[field]:
        if alias in row:
            return row[alias]
    return None


def parse_product_rows(rows: object) -> List[ProductInfo]:
    """Validate and convert raw product dicts; rows without a SKU are skipped.

    Raises:
        ProductMappingError: payload is not a list of objects
    """
    if not isinstance(rows, list):
        raise ProductMappingError(f"expected a JSON array of products, got {type(rows).__name__}")
    products: List[ProductInfo] = []
    for raw in rows:
        if not isinstance(raw, Mapping):
            raise ProductMappingError(f"product entries must be objects, got {type(raw).__name__}")
        row = {str(k).strip().lower(): v for k, v in raw.items()}
        sku = cell_text(_pick(row, "sku"))
        if not sku:
            continue
        marketplace = cell_text(_pick(row, "marketplace")).upper() or None
        products.append(ProductInfo(
            sku=sku,
            marketplace=marketplace,
            asin=cell_text(_pick(row, "asin")),
            name=cell_text(_pick(row, "name")),
            parent=cell_text(_pick(row, "parent")),
            category=cell_text(_pick(row, "category")),
            cost=_optional_float(_pick(row, "cost")),
            size=_optional_float(_pick(row, "size")),
            custom_shipping=_optional_float(_pick(row, "custom_shipping")),
            fbm_source=cell_text(_pick(row, "fbm_source")) or None,
        ))
    return products


def load_product_file(path: str | Path) -> List[ProductInfo]:
    """Read a local product sheet (CSV/TSV/XLSX). Requires sku, name and category columns."""
    p = Path(path)
    suffix = p.suffix.lower()
    if suffix in {".xlsx", ".xlsm", ".xls"}:
        df = pd.read_excel(p, dtype=str)
    else:
        df = pd.read_csv(p, dtype=str, sep="\t" if suffix == ".tsv" else ",", keep_default_na=False)
    df.columns = [str(c).strip().lower() for c in df.columns]
    missing = [c for c in ("sku", "name", "category") if c not in df.columns]
    if missing:
        raise ProductMappingError(f"{p.name} missing required columns: {missing}")
    df = df.astype(object).where(pd.notna(df), None)
    return parse_product_rows(df.to_dict(orient="records"))


def create_product_map(products: Iterable[ProductInfo]) -> Dict[str, ProductInfo]:
    """Key products by ``MP:sku`` and by bare sku.

    For a shared bare SKU the first product carrying a cost wins; later rows
    without a cost never overwrite it.
    """
    mapping: Dict[str, ProductInfo] = {}
    for product in products:
        if product.marketplace:
            mapping[f"{product.marketplace}:{product.sku}"] = product
        current = mapping.get(product.sku)
        if current is None or (current.cost is None and product.cost is not None):
            mapping[product.sku] = product
    return mapping


def lookup_product(product_map: Mapping[str, ProductInfo], sku: str, marketplace_code: Optional[str]) -> Optional[ProductInfo]:
    if not sku:
        return None
    code = (marketplace_code or "").upper()
    if code:
        hit = product_map.get(f"{code}:{sku}")
        if hit is not None:
            return hit
        alias = MARKETPLACE_ALIASES.get(code)
        if alias:
            hit = product_map.get(f"{alias}:{sku}")
            if hit is not None:
                return hit
    return product_map.get(sku)


def enrich(record: CanonicalTransaction, product_map: Mapping[str, ProductInfo]) -> CanonicalTransaction:
    """Return a copy of ``record`` with product fields joined; unmatched stays None."""
    product = lookup_product(product_map, record.sku, record.marketplace_code)
    if product is None:
        return record
    return replace(
        record,
        asin=product.asin or None,
        name=product.name or None,
        parent=product.parent or None,
        product_category=product.category or None,
        product_cost=product.cost,
        product_size=product.size,
        product_custom_shipping=product.custom_shipping,
        product_fbm_source=product.fbm_source,
    )


def enrich_records(records: Iterable[CanonicalTransaction], product_map: Mapping[str, ProductInfo]) -> List[CanonicalTransaction]:
    return [enrich(r, product_map) for r in records]


class ProductMappingClient:
    """Fetch product rows over HTTP with a TTL cache.

    Concurrent callers during a fetch share the one in-flight request.
    Non-2xx responses, timeouts and malformed payloads yield an empty list
    (no enrichment) and a warning.
    """

    def __init__(
        self,
        url: str,
        timeout_seconds: float = 10.0,
        ttl_seconds: float = 1800.0,
        clock: Callable[[], float] = time.monotonic,
        session: Optional[requests.Session] = None,
    ):
        self.url = url
        self.timeout_seconds = timeout_seconds
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._session = session or requests.Session()
        self._lock = threading.Lock()
        self._cached: Optional[List[ProductInfo]] = None
        self._cached_at: float = 0.0
        self._inflight: Optional[Future] = None

    def _fresh(self) -> bool:
        return self._cached is not None and (self._clock() - self._cached_at) < self.ttl_seconds

    def _download(self) -> List[ProductInfo]:
        try:
            resp = self._session.get(self.url, timeout=self.timeout_seconds)
            resp.raise_for_status()
            return parse_product_rows(resp.json())
        except (requests.RequestException, ValueError) as exc:
            # ProductMappingError and JSON decode errors are ValueErrors
            log_warning(logger, f"Product mapping unavailable from {self.url}: {exc}")
            return []

    def fetch(self, force_refresh: bool = False) -> List[ProductInfo]:
        with self._lock:
            if not force_refresh and self._fresh():
                return list(self._cached)
            future = self._inflight
            owner = future is None
            if owner:
                future = Future()
                self._inflight = future
        if not owner:
            return list(future.result())

        try:
            products = self._download()
            with self._lock:
                if products:
                    self._cached = products
                    self._cached_at = self._clock()
            future.set_result(products)
            return list(products)
        except BaseException as exc:
            future.set_exception(exc)
            raise
        finally:
            with self._lock:
                self._inflight = None

    def product_map(self, force_refresh: bool = False) -> Dict[str, ProductInfo]:
        return create_product_map(self.fetch(force_refresh=force_refresh))

    def invalidate(self) -> None:
        with self._lock:
            self._cached = None
            self._cached_at = 0.0
