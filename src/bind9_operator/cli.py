"""Command-line entry point for bind9-operator."""

from __future__ import annotations

import argparse
import dataclasses
import sys

from .config import AppConfig, load_config, parse_reconcilers
from .controller import Operator, build_operator, configure_logging
from .models import Bind9OperatorError


def _build_parser() -> argparse.ArgumentParser:
    """Create the CLI parser."""
    parser = argparse.ArgumentParser(description="Reconcile DNSSEC zones and DNS updates with BIND9.")
    parser.add_argument("--log-level", help="Override log level (default from config).")
    parser.add_argument("--dryrun", action="store_true", help="Use placeholder keys and do not send DNS updates.")
    parser.add_argument("--reconcilers", help="Comma-separated reconcilers to run (zone,update).")

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("run", help="Watch resources and reconcile until stopped.")
    subparsers.add_parser("once", help="Run a single reconciliation pass and exit.")
    return parser


def _apply_overrides(config: AppConfig, args: argparse.Namespace) -> AppConfig:
    """Return the configuration with command-line overrides applied."""
    overrides = {}
    if args.log_level:
        overrides["log_level"] = args.log_level
    if args.dryrun:
        overrides["dryrun"] = True
    if args.reconcilers:
        overrides["run_reconcilers"] = parse_reconcilers(args.reconcilers)
    return dataclasses.replace(config, **overrides) if overrides else config


def _run(operator: Operator, args: argparse.Namespace) -> None:
    """Execute the selected command."""
    if args.command == "once":
        operator.run_once()
    else:
        operator.run_forever()


def main() -> None:
    """CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args()
    try:
        config = _apply_overrides(load_config(), args)
        configure_logging(config.log_level)
        operator = build_operator(config)
        _run(operator, args)
    except (Bind9OperatorError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(2)
    except Exception as exc:  # noqa: BLE001
        print(f"Unexpected error: {exc}", file=sys.stderr)
        sys.exit(3)


if __name__ == "__main__":
    main()
