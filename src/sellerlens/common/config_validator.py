"""Configuration models and loaders using Pydantic.

Two layers of configuration exist:
  - per-marketplace reference data (currency, VAT handling, refund recovery
    rate, gross-sales formula, FBM shipping source) shipped as package data in
    ``sellerlens/config/marketplaces.yaml``
  - the run configuration (paths, limits, currency/product services) loaded
    from a user YAML file
"""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Literal, Mapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


MARKETPLACES_YAML = Path(__file__).resolve().parents[1] / "config" / "marketplaces.yaml"
MARKETPLACE_CODES = ("US", "UK", "DE", "FR", "IT", "ES", "CA", "AU", "AE", "SA")
ALL_CODE = "ALL"
UNKNOWN_RECOVERY_RATE = 0.30

GrossSalesFormula = Literal["sales", "sales_plus_tax"]


def gross_sales(formula: str, sales: float, tax: float) -> float:
    """Apply a gross-sales formula tag to (sales, tax)."""
    if formula == "sales":
        return float(sales)
    if formula == "sales_plus_tax":
        return float(sales) + float(tax)
    raise ValueError(f"Unknown gross sales formula: {formula!r}")


class MarketplaceConfig(BaseModel):
    """Immutable reference configuration for one storefront."""

    model_config = ConfigDict(frozen=True)

    code: str = Field(..., description="Two-letter marketplace code (e.g. 'DE')")
    name: str = Field(..., description="Display name (e.g. 'Amazon.de')")
    currency: str = Field(..., min_length=3, max_length=3)
    currency_symbol: str = ""
    has_vat: bool = False
    vat_included_in_price: bool = False
    refund_recovery_rate: float = Field(..., ge=0, le=1)
    gross_sales_formula: GrossSalesFormula = "sales"
    has_liquidations: bool = False
    fbm_shipping_category: str = "Shipping Services"
    fbm_shipping_source: Literal["total", "other"] = "total"
    has_postal_zones: bool = False
    shipping_per_desi: float = Field(0.0, ge=0, description="Inbound shipping per desi (volumetric size unit), local currency")

    @field_validator("code", "currency")
    @classmethod
    def upper_codes(cls, v: str) -> str:
        return v.strip().upper()

    def gross_sales(self, sales: float, tax: float) -> float:
        return gross_sales(self.gross_sales_formula, sales, tax)


ALL_MARKETPLACES = MarketplaceConfig(
    code=ALL_CODE,
    name="All Marketplaces",
    currency="USD",
    currency_symbol="$",
    has_vat=True,
    vat_included_in_price=True,
    refund_recovery_rate=0.20,
    gross_sales_formula="sales",
    has_liquidations=False,
    fbm_shipping_category="Shipping Services",
    fbm_shipping_source="total",
    has_postal_zones=False,
)


class PathsConfig(BaseModel):
    logs_dir: str = "logs"
    output_dir: str = "output"


class LimitsConfig(BaseModel):
    """Size ceilings and presentation thresholds."""

    max_rows_per_file: int = Field(150_000, ge=1, description="Files above this are rejected")
    max_total_rows: int = Field(200_000, ge=1, description="Aggregation refuses datasets above this")
    misc_threshold: float = Field(10.0, ge=0, description="Groups under this |total| merge into Miscellaneous")
    header_scan_rows: int = Field(20, ge=1)
    marketplace_scan_rows: int = Field(10, ge=1)


class CurrencyConfig(BaseModel):
    api_url: str = "https://api.frankfurter.app/latest"
    base: str = "USD"
    symbols: list[str] = Field(default_factory=lambda: ["EUR", "GBP", "CAD", "AUD", "TRY"])
    timeout_seconds: float = Field(5.0, gt=0)
    ttl_seconds: float = Field(3600.0, ge=0)
    fetch_live: bool = True


class ProductsConfig(BaseModel):
    url: Optional[str] = None
    timeout_seconds: float = Field(10.0, gt=0)
    ttl_seconds: float = Field(1800.0, ge=0)


class SellerLensConfig(BaseModel):
    """Complete run configuration."""

    paths: PathsConfig = Field(default_factory=PathsConfig)
    limits: LimitsConfig = Field(default_factory=LimitsConfig)
    currency: CurrencyConfig = Field(default_factory=CurrencyConfig)
    products: ProductsConfig = Field(default_factory=ProductsConfig)
    marketplaces: Dict[str, MarketplaceConfig] = Field(default_factory=dict)

    @model_validator(mode="after")
    def validate_marketplaces(self):
        """Ensure every marketplace entry is keyed by its own code."""
        for key, mp in self.marketplaces.items():
            if key.upper() != mp.code:
                raise ValueError(f"Marketplace key {key!r} does not match code {mp.code!r}")
        return self

    def marketplace(self, code: Optional[str]) -> Optional[MarketplaceConfig]:
        if not code:
            return None
        code = code.upper()
        if code == ALL_CODE:
            return ALL_MARKETPLACES
        return self.marketplaces.get(code)


def load_config(path: str | Path) -> Dict:
    """Load a YAML configuration file."""

    with open(path, "r", encoding="utf-8") as stream:
        return yaml.safe_load(stream) or {}


@lru_cache(maxsize=1)
def _default_marketplace_dicts() -> Dict[str, Dict[str, Any]]:
    raw = load_config(MARKETPLACES_YAML)
    return {code.upper(): dict(values) for code, values in (raw.get("marketplaces") or {}).items()}


def default_marketplace_configs() -> Dict[str, MarketplaceConfig]:
    """Return validated default configs for all supported marketplaces."""
    return {
        code: MarketplaceConfig(code=code, **values)
        for code, values in _default_marketplace_dicts().items()
    }


def load_and_validate_config(config_dict: Optional[Mapping[str, Any]] = None) -> SellerLensConfig:
    """
    Load and validate a SellerLens run configuration.

    Marketplace entries in ``config_dict['marketplaces']`` are partial
    overrides merged onto the packaged defaults, so a config only needs to
    name the fields it changes (e.g. ``{'DE': {'refund_recovery_rate': 0.25}}``).

    Args:
        config_dict: Parsed YAML mapping (may be None or empty)

    Returns:
        Validated SellerLensConfig object

    Raises:
        ValidationError: If configuration is invalid
    """
    data = dict(config_dict or {})
    merged = {code: dict(values) for code, values in _default_marketplace_dicts().items()}
    for code, overrides in (data.get("marketplaces") or {}).items():
        key = str(code).upper()
        merged.setdefault(key, {}).update(overrides or {})
    data["marketplaces"] = {code: {"code": code, **values} for code, values in merged.items()}
    return SellerLensConfig(**data)
