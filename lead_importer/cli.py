"""Command line interface for importing lead spreadsheets."""
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from .config import ConfigurationError, StoreSettings, load_configuration
from .errors import LeadImportError
from .factory import build_orchestrator, build_store
from .ingestion import export_error_details, write_template
from .models import ImportOptions
from .orchestrator import new_upload_id
from .progress import ProgressSnapshot

LOGGER = logging.getLogger(__name__)


def build_parser(prog: str | None = None) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=prog, description="Import lead spreadsheets into the lead store")
    parser.add_argument("files", nargs="*", help="CSV or Excel files to import as one job")
    parser.add_argument(
        "--template",
        metavar="PATH",
        help="Write a blank import template (CSV or XLSX) to PATH and exit",
    )
    parser.add_argument("--config", help="Path to the importer configuration file (YAML or JSON)")
    parser.add_argument("--require-email", action="store_true", help="Reject rows without a contact email")
    parser.add_argument("--require-phone", action="store_true", help="Reject rows without a contact phone")
    parser.add_argument("--group-id", help="Group identifier recorded on every imported lead")
    parser.add_argument("--owner", help="User recorded as owner and importer of new leads")
    parser.add_argument(
        "--database-url",
        help="SQLAlchemy database URL to persist leads into (overrides the configured store)",
    )
    parser.add_argument(
        "--errors-output",
        help="Write a report of rows that were not ingested to this CSV or XLSX file",
    )
    parser.add_argument(
        "--mode",
        choices=["sequential", "concurrent"],
        default=None,
        help="Whether to validate rows sequentially or on a thread pool",
    )
    parser.add_argument(
        "--max-workers",
        type=int,
        default=None,
        help="Maximum number of workers to use in concurrent mode",
    )
    parser.add_argument(
        "--raise-on-error",
        action="store_true",
        help="Propagate row processing exceptions instead of skipping the row",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Logging level (e.g. DEBUG, INFO, WARNING)",
    )
    return parser


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.template and not args.files:
        parser.error("at least one input file or --template is required")
    return args


def _log_snapshot(snapshot: ProgressSnapshot) -> None:
    LOGGER.info(
        "Import %s: %s%% (%s/%s rows, stage %s)",
        snapshot.job_id,
        snapshot.percentage,
        snapshot.processed,
        snapshot.total,
        snapshot.stage.value,
    )


def main(argv: list[str] | None = None) -> int:
    try:
        args = parse_args(argv)
    except SystemExit as exc:
        return int(exc.code or 0)
    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.INFO))

    if args.template:
        try:
            path = write_template(args.template)
        except ValueError as exc:
            logging.error("%s", exc)
            return 2
        logging.info("Import template written to %s", Path(path).resolve())
        return 0

    try:
        config = load_configuration(args.config) if args.config else {}
        store = build_store(StoreSettings(database_url=args.database_url)) if args.database_url else None
        orchestrator = build_orchestrator(
            config,
            store=store,
            concurrent=None if args.mode is None else args.mode == "concurrent",
            max_workers=args.max_workers,
            raise_on_error=True if args.raise_on_error else None,
        )
    except ConfigurationError as exc:
        logging.error("%s", exc)
        return 2

    options = ImportOptions(
        group_id=args.group_id,
        require_email=args.require_email,
        require_phone=args.require_phone,
        owner=args.owner,
    )
    upload_id = new_upload_id()
    try:
        with orchestrator.registry.subscribe(upload_id, callback=_log_snapshot, wait_for_create=True):
            outcome = orchestrator.import_files(args.files, options, upload_id=upload_id)
    except (LeadImportError, FileNotFoundError) as exc:
        logging.error("Could not import %s: %s", ", ".join(args.files), exc)
        print(json.dumps({"success": False, "message": str(exc)}, indent=2))
        return 1

    print(json.dumps(outcome.to_dict(), indent=2, default=str))

    results = getattr(outcome, "results", None)
    if args.errors_output and results is not None:
        report_path = export_error_details(results.error_details or [], args.errors_output)
        logging.info("Error report written to %s", Path(report_path).resolve())

    return 0 if outcome.success else 1


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    sys.exit(main())
