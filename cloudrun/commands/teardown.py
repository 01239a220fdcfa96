"""Destroy command: tear down every resource recorded in a state file."""

import logging
import os
import sys
from pathlib import Path

from cloudrun.commands.create import build_run, persist_ledger
from cloudrun.errors import CloudRunError
from cloudrun.provisioning.orchestrator import destroy_resources
from cloudrun.provisioning.state import load_ledger

logger = logging.getLogger(__name__)


def handle_destroy(args):
    """CLI handler for 'destroy'."""
    state_path = Path(args.state_file)
    if not state_path.exists():
        logger.error(f"No state file found at {state_path}")
        sys.exit(1)

    try:
        ledger = load_ledger(state_path)
        _, provider = build_run(
            ledger.provider,
            args.config,
            args.property,
            os.path.dirname(os.path.abspath(state_path)),
            environment=ledger.environment,
            dry_run=args.dry_run,
        )
    except (CloudRunError, ValueError) as e:
        logger.error(f"Error: {e}")
        sys.exit(1)

    if ledger.is_empty:
        logger.info(f"{state_path} records no resources, nothing to tear down.")
    else:
        logger.info(f"Tearing down {len(ledger.resources)} resource(s) from {state_path}")

    try:
        destroy_resources(provider, ledger, dry_run=args.dry_run)
    except CloudRunError as e:
        logger.error(f"Error: {e}")
        persist_ledger(ledger, str(state_path), dry_run=args.dry_run)
        logger.error(f"{len(ledger.resources)} resource(s) remain. Re-run 'cloudrun destroy {state_path}' to retry.")
        sys.exit(1)

    persist_ledger(ledger, str(state_path), dry_run=args.dry_run)
    logger.info("All resources cleaned up.")


def register_destroy_command(subparsers):
    """Register the 'destroy' subcommand."""
    parser = subparsers.add_parser("destroy", help="Tear down resources recorded by 'create'")
    parser.add_argument("state_file", help="State file written by 'create'")
    parser.add_argument("--config", default=None, help="YAML file with a 'properties' mapping")
    parser.add_argument(
        "-P",
        "--property",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Set a property (values saved in the state file take precedence)",
    )
    parser.add_argument("--dry-run", action="store_true", help="Print provider requests without executing")
    parser.set_defaults(func=handle_destroy)
