"""SellerLens end-to-end run.

Orchestrates one analytics run from the command line:
  1) load and validate the YAML run config
  2) ingest transaction reports into a fresh store (rejected files are
     reported and skipped)
  3) optionally enrich records with product data (HTTP service or local file)
  4) resolve exchange rates (live, cached or fallback)
  5) compute analytics for the requested filters, plus an optional
     comparison window
  6) print a summary and optionally write the analytics as JSON
"""
from __future__ import annotations

import argparse
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .analytics.aggregator import DetailedAnalytics, calculate_analytics
from .analytics.comparison import COMPARISON_MODES, percent_change, run_comparison
from .analytics.filters import AnalyticsFilters
from .common.config_validator import SellerLensConfig, load_and_validate_config, load_config
from .currency import RateProvider
from .enrichment.products import ProductMappingClient, create_product_map, enrich_records, load_product_file
from .errors import IngestionError
from .ingestion.loader import IngestionResult, ingest_files
from .logging_utils import get_logger, get_user_logger, log_system_event, log_warning
from .store import TransactionStore


LOGGER_NAME = "sellerlens.pipeline"

SUMMARY_FIELDS = (
    ("total_orders", "Orders"),
    ("total_sales", "Sales"),
    ("total_refund_amount", "Refunds"),
    ("actual_refund_loss", "Refund loss"),
    ("total_selling_fees", "Selling fees"),
    ("total_fba_fees", "FBA fees"),
    ("total_fba_cost", "FBA cost"),
    ("total_fbm_cost", "FBM cost"),
    ("display_advertising_cost", "Advertising"),
    ("net_profit", "Net profit"),
    ("profit_margin", "Margin %"),
)


@dataclass
class RunResult:
    """Everything a run produced, for callers that embed the pipeline."""

    config: SellerLensConfig
    ingested: List[IngestionResult] = field(default_factory=list)
    rejected: Dict[str, IngestionError] = field(default_factory=dict)
    rate_source: str = ""
    analytics: Optional[DetailedAnalytics] = None
    comparison: Optional[DetailedAnalytics] = None
    comparison_label: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "files": [
                {
                    "file_name": r.file_name,
                    "marketplace_code": r.marketplace_code,
                    "records": len(r.records),
                    "dropped": r.dropped,
                    "added": r.written.added if r.written else 0,
                    "duplicates": r.written.duplicates if r.written else 0,
                }
                for r in self.ingested
            ],
            "rejected": {name: {"reason": exc.reason, "message": str(exc)} for name, exc in self.rejected.items()},
            "rate_source": self.rate_source,
            "analytics": self.analytics.to_dict() if self.analytics else None,
            "comparison": self.comparison.to_dict() if self.comparison else None,
            "comparison_label": self.comparison_label,
        }


def run(
    inputs: Sequence[str | Path],
    config: SellerLensConfig,
    filters: AnalyticsFilters,
    compare: Optional[str] = None,
    products_path: Optional[str | Path] = None,
    store: Optional[TransactionStore] = None,
    rate_provider: Optional[RateProvider] = None,
    product_client: Optional[ProductMappingClient] = None,
) -> RunResult:
    """Execute one run; collaborators can be injected for tests."""
    logger = logging.getLogger(LOGGER_NAME)
    store = store if store is not None else TransactionStore()
    result = RunResult(config=config)

    result.ingested, result.rejected = ingest_files(inputs, store, config)
    log_system_event(logger, f"Ingested {len(result.ingested)} file(s), {len(store):,} transactions in store")
    records = store.get_all()

    products = None
    if products_path:
        products = load_product_file(products_path)
    elif product_client is not None or config.products.url:
        client = product_client or ProductMappingClient(
            config.products.url,
            timeout_seconds=config.products.timeout_seconds,
            ttl_seconds=config.products.ttl_seconds,
        )
        products = client.fetch()
    if products:
        records = enrich_records(records, create_product_map(products))
        log_system_event(logger, f"Enriched with {len(products):,} product rows")
    elif products is not None:
        log_warning(logger, "No product data available; profitability runs without product cost")

    provider = rate_provider or RateProvider.from_config(config.currency)
    status = provider.refresh()
    result.rate_source = status.source
    if status.error:
        log_warning(logger, f"Exchange rates from {status.source}: {status.error}")

    result.analytics = calculate_analytics(records, filters, config, provider)
    if compare and filters.start and filters.end:
        result.comparison, result.comparison_label = run_comparison(records, compare, filters, config, provider)
    elif compare:
        log_warning(logger, f"Skipping {compare} comparison: it needs both a start and an end date")
    return result


def format_summary(result: RunResult) -> str:
    analytics = result.analytics
    if analytics is None:
        return "No analytics: dataset is empty or too large for the selected scope."
    scope = analytics.marketplace_code or "ALL"
    lines = [
        f"SellerLens [{scope} / {analytics.fulfillment}] {analytics.start or '...'} to {analytics.end or '...'} "
        f"({analytics.currency}, rates: {result.rate_source})"
    ]
    previous = result.comparison
    for attr, label in SUMMARY_FIELDS:
        value = getattr(analytics, attr)
        line = f"  {label:<14} {value:>14,.2f}"
        if previous is not None:
            line += f"  ({percent_change(value, getattr(previous, attr)):+.1f}% vs {result.comparison_label})"
        lines.append(line)
    for name, exc in result.rejected.items():
        lines.append(f"  rejected {name}: {exc.reason}")
    return "\n".join(lines)


def build_arg_parser() -> argparse.ArgumentParser:
    """Create an argument parser for the SellerLens CLI."""

    parser = argparse.ArgumentParser(description="Amazon seller transaction analytics")
    parser.add_argument("--config", help="Path to a YAML run configuration")
    parser.add_argument("--input", nargs="+", required=True, help="Transaction report files (.xlsx/.xls/.csv)")
    parser.add_argument("--start", help="Start date (YYYY-MM-DD, inclusive)")
    parser.add_argument("--end", help="End date (YYYY-MM-DD, inclusive)")
    parser.add_argument("--marketplace", default="ALL", help="Marketplace code (US, UK, DE, ...) or ALL")
    parser.add_argument("--fulfillment", choices=["all", "FBA", "FBM"], default="all")
    parser.add_argument("--compare", choices=COMPARISON_MODES, help="Also compute a comparison window")
    parser.add_argument("--products", help="Local product mapping file (.xlsx/.csv) instead of the HTTP service")
    parser.add_argument("--json", dest="json_path", help="Write the run result as JSON to this path")
    parser.add_argument("--verbose", action="store_true", help="Log at DEBUG level")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """CLI entry point."""

    args = build_arg_parser().parse_args(argv)
    raw_config = load_config(args.config) if args.config else {}
    config = load_and_validate_config(raw_config)
    log_config = config.model_dump()
    get_logger("sellerlens", log_config, level=logging.DEBUG if args.verbose else logging.INFO)
    user_logger = get_user_logger(log_config)

    filters = AnalyticsFilters(
        start=args.start, end=args.end, marketplace_code=args.marketplace, fulfillment=args.fulfillment,
    )
    result = run(args.input, config, filters, compare=args.compare, products_path=args.products)
    user_logger.info(format_summary(result))

    if args.json_path:
        out = Path(args.json_path)
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(json.dumps(result.to_dict(), indent=2, default=str), encoding="utf-8")
        log_system_event(logging.getLogger(LOGGER_NAME), f"Wrote {out}")
    return 0 if result.analytics is not None else 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
