import argparse
import logging
import sys
from typing import Optional

import pandas as pd

from rides_config import Config, load_config
from rides_etl.core.errors import PipelineError
from rides_etl.core.logging_setup import setup_logging
from rides_etl.core.warehouse import Warehouse, make_warehouse
from rides_etl.pipeline import run_pipeline
from rides_etl.reports.engine import ReportingEngine

logger = logging.getLogger("rides_etl")


def print_frame(title: str, df: pd.DataFrame) -> None:
    print(f"\n== {title} ==")
    print(df.to_string(index=False) if not df.empty else "(no rows)")


def cmd_load(warehouse: Warehouse, cfg: Config, args: argparse.Namespace) -> int:
    result = run_pipeline(
        warehouse,
        max_workers=cfg["pipeline"]["max_workers"],
        batch_size=cfg["pipeline"]["batch_size"],
    )
    for name, dim in result.dimensions.items():
        print(f"{name:<16} {dim.inserted:>8} new / {len(dim.lookup):>8} total")
    facts = result.facts
    print(
        f"fact_bookings    {facts.inserted:>8} inserted, {facts.already_present} already present, "
        f"{facts.duplicates_in_staging} duplicate in staging, {facts.failed_rows} failed"
    )
    if not facts.failures.empty:
        print_frame(
            "Rows not loaded (sample)",
            facts.failures.head(cfg["reports"]["failure_sample_limit"]),
        )
    return 0


def cmd_report(warehouse: Warehouse, cfg: Config, args: argparse.Namespace) -> int:
    engine = ReportingEngine(
        warehouse, cfg["reports"]["top_n"], cfg["reports"]["failure_sample_limit"]
    )
    known = engine.available_reports() + engine.available_diagnostics()
    if args.name and args.name not in known:
        logger.error("Unknown report %r; choose from: %s", args.name, ", ".join(known))
        return 2
    names = engine.available_reports() if args.all or not args.name else [args.name]
    for name in names:
        params = {}
        if args.top_n and name in ("top_pickup_locations", "top_customers"):
            params["n"] = args.top_n
        print_frame(name, engine.run(name, **params))
    return 0


def cmd_diagnostics(warehouse: Warehouse, cfg: Config, args: argparse.Namespace) -> int:
    engine = ReportingEngine(
        warehouse, cfg["reports"]["top_n"], cfg["reports"]["failure_sample_limit"]
    )
    for name in engine.available_diagnostics():
        print_frame(name, engine.run(name))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Ride bookings star-schema ETL")
    parser.add_argument("--config", type=str, help="Path to a settings.toml file")
    parser.add_argument(
        "--backend",
        choices=["duckdb", "bigquery"],
        help="Override the configured warehouse backend",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("load", help="Build dimensions and load fact_bookings from staging")

    report = sub.add_parser("report", help="Run business reports")
    report.add_argument("name", nargs="?", help="Report name (default: all)")
    report.add_argument("--all", action="store_true", help="Run every report")
    report.add_argument("--top-n", type=int, help="Row limit for top-N reports")

    sub.add_parser("diagnostics", help="Run data-quality checks")
    return parser


COMMANDS = {
    "load": cmd_load,
    "report": cmd_report,
    "diagnostics": cmd_diagnostics,
}


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        cfg = load_config(args.config)
        if args.backend:
            cfg["warehouse"]["backend"] = args.backend
        setup_logging(cfg["logging"]["level"])

        warehouse = make_warehouse(cfg)
        try:
            return COMMANDS[args.command](warehouse, cfg, args)
        finally:
            warehouse.close()
    except PipelineError as e:
        logger.error("%s %s", e.message, e.details or "")
        return 1


if __name__ == "__main__":
    sys.exit(main())
