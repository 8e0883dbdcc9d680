"""
Main entry point for the batchline command-line tool.

Commands:
    init-db                        Create the database schema
    stats                          Batch overview (optionally date-bounded)
    efficiency WORKER              Recalculate and show a worker's efficiency
    low-stock                      Materials at or below their threshold
    export-report WORKER YEAR MONTH --format excel|json -o FILE
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from .services import batch_service, report_service, stock_ledger_service, worker_efficiency_service
from .services.database import initialize_app_database
from .services.exceptions import ServiceError
from .utils.config import get_config
from .utils.constants import APP_NAME, APP_VERSION


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


def cmd_init_db(args) -> int:
    initialize_app_database()
    print(f"Database initialized at {get_config().database_url}")
    return 0


def cmd_stats(args) -> int:
    stats = batch_service.get_batch_stats_overview(start_date=args.start, end_date=args.end)
    _print_json(stats)
    return 0


def cmd_efficiency(args) -> int:
    record = worker_efficiency_service.get_worker_efficiency(args.worker)
    _print_json(record.to_dict())
    return 0


def cmd_low_stock(args) -> int:
    alerts = stock_ledger_service.get_low_stock_alerts()
    if not alerts:
        print("No materials below threshold")
        return 0
    for alert in alerts:
        print(
            f"[{alert.severity}] {alert.material_name}: "
            f"{alert.current_qty} {alert.unit} (threshold {alert.min_threshold})"
        )
    return 0


def cmd_export_report(args) -> int:
    document = report_service.export_monthly_report(
        args.worker, args.year, args.month, fmt=args.format
    )
    output = Path(args.output)
    output.write_bytes(document)
    print(f"Report written to: {output}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        description="Batch production tracking: stock, batches and worker efficiency",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {APP_VERSION}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    init_db = subparsers.add_parser("init-db", help="Create the database schema")
    init_db.set_defaults(func=cmd_init_db)

    stats = subparsers.add_parser("stats", help="Show the batch overview")
    stats.add_argument("--start", help="Only batches started on/after this ISO date")
    stats.add_argument("--end", help="Only batches started on/before this ISO date")
    stats.set_defaults(func=cmd_stats)

    efficiency = subparsers.add_parser("efficiency", help="Show a worker's efficiency")
    efficiency.add_argument("worker", help="Worker id")
    efficiency.set_defaults(func=cmd_efficiency)

    low_stock = subparsers.add_parser("low-stock", help="List low-stock alerts")
    low_stock.set_defaults(func=cmd_low_stock)

    export = subparsers.add_parser("export-report", help="Export a monthly worker report")
    export.add_argument("worker", help="Worker id")
    export.add_argument("year", type=int)
    export.add_argument("month", type=int)
    export.add_argument(
        "--format",
        default=report_service.FORMAT_EXCEL,
        help="excel (default) or json",
    )
    export.add_argument("-o", "--output", required=True, help="Output file")
    export.set_defaults(func=cmd_export_report)

    return parser


def main(argv=None) -> int:
    """
    Command-line entry point.

    Returns:
        Process exit code (0 on success, 1 on a service error)
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    config = get_config()
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        if args.command != "init-db":
            initialize_app_database()
        return args.func(args)
    except ServiceError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
