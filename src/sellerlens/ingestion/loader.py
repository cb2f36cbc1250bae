"""Settlement spreadsheet ingestion.

Steps per file:
  1) Read the first sheet as a grid of text cells (``header=None``)
  2) Locate the header row in the first rows and resolve column aliases
  3) Detect the file's marketplace from the marketplace column
  4) Enforce the per-file row ceiling before anything is built
  5) Build canonical records, counting rows dropped for bad dates/types

File-level problems raise :class:`IngestionError` and nothing is committed.
"""
from __future__ import annotations

import csv
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

import pandas as pd

from ..common.config_validator import SellerLensConfig, load_and_validate_config
from ..errors import IngestionError
from ..logging_utils import log_warning
from ..mapping.columns import MARKETPLACE_HEADER_TOKENS, build_column_map, locate_header_row
from ..parsing import cell_text, detect_marketplace
from ..standards.schemas import CanonicalTransaction
from ..store import TransactionStore, WriteResult
from .records import DROP_INVALID_DATE, DROP_UNKNOWN_TYPE, build_record, drop_reason


LOGGER_NAME = "sellerlens.ingestion"
logger = logging.getLogger(LOGGER_NAME)

EXCEL_SUFFIXES = {".xlsx", ".xlsm", ".xls"}


@dataclass
class IngestionResult:
    """Outcome of ingesting one file."""

    file_name: str
    marketplace_code: str
    records: List[CanonicalTransaction] = field(default_factory=list)
    dropped_invalid_date: int = 0
    dropped_unknown_type: int = 0
    skipped_blank: int = 0
    written: Optional[WriteResult] = None

    @property
    def dropped(self) -> int:
        return self.dropped_invalid_date + self.dropped_unknown_type


def read_sheet_rows(path: str | Path) -> List[List[object]]:
    """Return the first sheet of an Excel/CSV file as a list of text rows.

    CSV exports carry ragged preamble lines above the header, so they are
    read row by row rather than as a rectangular frame.
    """
    p = Path(path)
    try:
        if p.suffix.lower() not in EXCEL_SUFFIXES:
            with open(p, "r", encoding="utf-8-sig", newline="") as fh:
                return [list(row) for row in csv.reader(fh)]
        df = pd.read_excel(p, sheet_name=0, header=None, dtype=str)
    except (OSError, ValueError, ImportError, csv.Error) as exc:
        raise IngestionError(p.name, "unreadable", f"cannot read spreadsheet ({exc})") from exc
    df = df.astype(object).where(pd.notna(df), None)
    return df.values.tolist()


def _is_blank_row(row: Sequence[object]) -> bool:
    return not any(cell_text(c) for c in row)


def _marketplace_column(headers: Sequence[object]) -> Optional[int]:
    for i, h in enumerate(headers):
        name = cell_text(h).lower()
        if name and any(token in name for token in MARKETPLACE_HEADER_TOKENS):
            return i
    return None


def detect_file_marketplace(headers: Sequence[object], data_rows: Sequence[Sequence[object]], scan_rows: int = 10) -> Optional[str]:
    """Marketplace code from the first rows of the marketplace column, or None."""
    col = _marketplace_column(headers)
    if col is None:
        return None
    for row in list(data_rows)[:scan_rows]:
        if col < len(row):
            code = detect_marketplace(row[col])
            if code:
                return code
    return None


def ingest_rows(
    rows: Sequence[Sequence[object]],
    file_name: str,
    config: Optional[SellerLensConfig] = None,
) -> IngestionResult:
    """Ingest an already-read grid of rows; see module docstring for the steps."""
    cfg = config or load_and_validate_config()
    limits = cfg.limits

    header_idx = locate_header_row(rows, scan_limit=limits.header_scan_rows)
    if header_idx is None:
        raise IngestionError(file_name, "no_header",
                             f"no header row found in the first {limits.header_scan_rows} rows")
    headers = list(rows[header_idx])
    column_map = build_column_map(headers)

    data_rows: List[Sequence[object]] = []
    skipped_blank = 0
    for row in rows[header_idx + 1:]:
        if _is_blank_row(row):
            skipped_blank += 1
            continue
        data_rows.append(row)

    if len(data_rows) > limits.max_rows_per_file:
        raise IngestionError(
            file_name, "too_many_rows",
            f"{len(data_rows):,} rows exceeds the per-file limit of {limits.max_rows_per_file:,}",
        )

    code = detect_file_marketplace(headers, data_rows, scan_rows=limits.marketplace_scan_rows)
    mp_config = cfg.marketplace(code)
    if code is None or mp_config is None:
        raise IngestionError(file_name, "no_marketplace", "could not detect the marketplace of this file")

    result = IngestionResult(file_name=file_name, marketplace_code=code, skipped_blank=skipped_blank)
    for offset, row in enumerate(data_rows):
        record = build_record(row, column_map, mp_config, code, file_name=file_name, row_index=offset)
        if record is not None:
            result.records.append(record)
            continue
        if drop_reason(row, column_map) == DROP_INVALID_DATE:
            result.dropped_invalid_date += 1
        else:
            result.dropped_unknown_type += 1

    logger.info(
        "Ingested %s [%s]: %d records, %d dropped (%d bad date, %d unknown type), %d blank",
        file_name, code, len(result.records), result.dropped,
        result.dropped_invalid_date, result.dropped_unknown_type, skipped_blank,
    )
    return result


def ingest_file(path: str | Path, config: Optional[SellerLensConfig] = None) -> IngestionResult:
    p = Path(path)
    return ingest_rows(read_sheet_rows(p), p.name, config)


def ingest_files(
    paths: Iterable[str | Path],
    store: TransactionStore,
    config: Optional[SellerLensConfig] = None,
) -> tuple[List[IngestionResult], Dict[str, IngestionError]]:
    """Ingest several files into ``store``.

    A rejected file is reported and skipped; other files still load.

    Returns:
        (results for committed files, errors keyed by file name)
    """
    cfg = config or load_and_validate_config()
    results: List[IngestionResult] = []
    errors: Dict[str, IngestionError] = {}
    for path in paths:
        try:
            result = ingest_file(path, cfg)
        except IngestionError as exc:
            log_warning(logger, f"Rejected {exc.file_name} ({exc.reason}): {exc}")
            errors[exc.file_name] = exc
            continue
        result.written = store.put_many(result.records, file_name=result.file_name)
        results.append(result)
    return results, errors
