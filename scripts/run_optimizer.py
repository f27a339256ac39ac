#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import os
from pathlib import Path

from techroute.job_import import jobs_from_import_rows, read_import_csv
from techroute.plan.config import load_optimizer_config
from techroute.plan.drive_time import HeuristicDriveTimes
from techroute.plan.models import CapabilityOverride
from techroute.plan.optimizer import optimize_day
from techroute.plan.validation import format_validation_errors
from techroute.runtime import configure_logging


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Assign and sequence one day of field jobs")
    parser.add_argument("--csv", required=True, help="Daily export CSV (route_title, route_description, ...)")
    parser.add_argument("--staff", required=True, help="JSON file: list of technicians, or a Storm Mode document")
    parser.add_argument("--storm-filter", default=None, help="Storm Mode filter (all, subCrewsAndDemos, ...)")
    parser.add_argument("--overrides", default=None, help="JSON file with approved capability overrides")
    parser.add_argument("--out", default="-", help="Output JSON path ('-' for stdout)")
    parser.add_argument(
        "--heuristic",
        action="store_true",
        help="Skip Mapbox and use estimated drive times",
    )
    parser.add_argument("--log-level", default=os.getenv("LOG_LEVEL", "INFO"))
    return parser.parse_args()


def load_staff(path: Path):
    """A plain list is the regular roster; a dict is a Storm Mode document with 'regularTechs'."""
    doc = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(doc, list):
        return doc, None
    return doc.get("regularTechs") or [], doc


def main() -> None:
    args = parse_args()
    logger = configure_logging("optimizer", args.log_level)

    csv_path = Path(args.csv).expanduser().resolve()
    staff_path = Path(args.staff).expanduser().resolve()
    if not csv_path.exists():
        raise SystemExit(f"Input CSV not found: {csv_path}")
    if not staff_path.exists():
        raise SystemExit(f"Staff file not found: {staff_path}")

    imported = jobs_from_import_rows(read_import_csv(csv_path))
    if imported.needs_manual_timeframe:
        ids = ", ".join(r["id"] for r in imported.needs_manual_timeframe)
        logger.warning("%d job(s) need a manual timeframe and were skipped: %s",
                       len(imported.needs_manual_timeframe), ids)
    if imported.validation.invalid_jobs:
        logger.warning(format_validation_errors(imported.validation.invalid_jobs))

    staff, storm_data = load_staff(staff_path)
    overrides = []
    if args.overrides:
        raw = json.loads(Path(args.overrides).read_text(encoding="utf-8"))
        overrides = [CapabilityOverride(**o) for o in raw]

    cfg = load_optimizer_config()
    provider = HeuristicDriveTimes(cfg) if args.heuristic else None
    result = optimize_day(
        imported.records,
        staff,
        storm_data=storm_data,
        storm_filter=args.storm_filter,
        overrides=overrides,
        config=cfg,
        provider=provider,
    )

    payload = result.model_dump_json(by_alias=True, indent=2)
    if args.out == "-":
        print(payload)
    else:
        out = Path(args.out).expanduser().resolve()
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(payload, encoding="utf-8")
        logger.info("wrote %s (%d routes, %d unassigned)", out, len(result.routes),
                    len(result.exceptions.unassigned_jobs))


if __name__ == "__main__":
    main()
