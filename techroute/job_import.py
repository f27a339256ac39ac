# techroute/job_import.py
from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Tuple
import logging

import pandas as pd

from .timeparse import extract_timeframe, normalize_time, to_minutes
from .plan.models import ErrorKind, ImportResult, Issue, ManualTimeframeResult
from .plan.validation import validate_jobs

log = logging.getLogger(__name__)

DEFAULT_WINDOW = ("08:00", "17:00")
TWO_TECH_MARKER = "DT(true)"

@dataclass
class ImportColumns:
    job_id: str = "text"
    title: str = "route_title"
    address: str = "customer_address"
    zone: str = "Zone"
    duration: str = "duration"
    workers: str = "workers"
    description: str = "route_description"
    phone: str = "customer_phone"

def _colmap(overrides: Dict[str, str] | None) -> ImportColumns:
    m = ImportColumns()
    for k, v in (overrides or {}).items():
        if hasattr(m, k):
            setattr(m, k, v)
    return m

def read_import_csv(path_or_buffer) -> List[Dict[str, Any]]:
    """Daily export CSV -> list of row dicts; every cell is a string, blanks are ''."""
    df = pd.read_csv(path_or_buffer, dtype=str, keep_default_na=False)
    df.columns = [str(c).strip() for c in df.columns]
    return df.to_dict(orient="records")

def _split_title(title: str) -> Tuple[str, str, str, str]:
    """'Customer | Job# | Job Type | Zone' -> parts, missing parts are ''."""
    parts = [p.strip() for p in str(title or "").split("|")]
    parts += [""] * (4 - len(parts))
    return parts[0], parts[1], parts[2], parts[3]

def row_to_record(row: Dict[str, Any], index: int, cols: ImportColumns,
                  default_window: Tuple[str, str] = DEFAULT_WINDOW) -> Dict[str, Any]:
    customer, job_no, job_type, title_zone = _split_title(row.get(cols.title, ""))
    description = str(row.get(cols.description) or "")
    start, end, original = extract_timeframe(description)

    rec: Dict[str, Any] = {
        "id": str(row.get(cols.job_id) or "").strip() or job_no or f"row_{index + 1}",
        "customerName": customer,
        "address": str(row.get(cols.address) or "").strip(),
        "zone": title_zone or str(row.get(cols.zone) or "").strip() or "Other",
        "jobType": job_type or "Other",
        "duration": row.get(cols.duration, ""),
        "requiresTwoTechs": TWO_TECH_MARKER in description,
        "description": description,
        "phone": str(row.get(cols.phone) or "").replace("\t", "").strip(),
        "status": "unassigned",
        "workers": row.get(cols.workers, ""),
    }
    if original and not (start and end):
        rec["originalTimeframe"] = original
        rec["needsManualTimeframe"] = True
        rec["timeframeStart"], rec["timeframeEnd"] = None, None
    else:
        rec["timeframeStart"] = start or default_window[0]
        rec["timeframeEnd"] = end or default_window[1]
    return rec

def jobs_from_import_rows(
    rows: Iterable[Dict[str, Any]],
    default_window: Tuple[str, str] = DEFAULT_WINDOW,
    column_map: Dict[str, str] | None = None,
) -> ImportResult:
    """
    Map raw export rows to loose job records and validate them.
    Rows whose TF marker is present but unreadable are held back for a
    manual timeframe instead of silently getting the default window.
    """
    cols = _colmap(column_map)
    ready: List[Dict[str, Any]] = []
    manual: List[Dict[str, Any]] = []
    for i, row in enumerate(rows):
        rec = row_to_record(row, i, cols, default_window)
        (manual if rec.get("needsManualTimeframe") else ready).append(rec)
    log.info("import: %d rows -> %d ready, %d need a manual timeframe", len(ready) + len(manual), len(ready), len(manual))
    return ImportResult(records=ready, needs_manual_timeframe=manual, validation=validate_jobs(ready))

def apply_manual_timeframe(record: Dict[str, Any], start: str, end: str) -> ManualTimeframeResult:
    errors: List[Issue] = []
    s, e = normalize_time(start), normalize_time(end)
    if s is None:
        errors.append(Issue(kind=ErrorKind.VALIDATION, field="timeframe_start",
                            message=f'Invalid start time format: "{start}" (expected HH:MM)'))
    if e is None:
        errors.append(Issue(kind=ErrorKind.VALIDATION, field="timeframe_end",
                            message=f'Invalid end time format: "{end}" (expected HH:MM)'))
    if s and e and to_minutes(s) >= to_minutes(e):
        errors.append(Issue(kind=ErrorKind.TIME_WINDOW_CONFLICT, field="timeframe_start",
                            message=f"Start time ({s}) must be before end time ({e})"))
    if errors:
        return ManualTimeframeResult(is_valid=False, errors=errors, record=dict(record))

    fixed = dict(record, timeframeStart=s, timeframeEnd=e, needsManualTimeframe=False)
    fixed.pop("originalTimeframe", None)
    for k in ("timeframe_start", "timeframe_end"):
        fixed.pop(k, None)
    return ManualTimeframeResult(is_valid=True, record=fixed)
