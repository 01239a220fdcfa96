"""Create command: provision and bootstrap an ephemeral instance."""

import logging
import os
import shutil
import sys
import tempfile

from cloudrun.errors import CloudRunError
from cloudrun.provisioning.config import (
    PropertySources,
    load_project_properties,
    parse_properties,
    resolve_config,
)
from cloudrun.provisioning.orchestrator import create_resources, destroy_resources
from cloudrun.provisioning.provider import PROVIDERS, make_provider
from cloudrun.provisioning.state import default_state_path, remove_ledger, save_ledger
from cloudrun.provisioning.types import ResourceLedger

logger = logging.getLogger(__name__)


def build_run(provider_name, config_path, property_entries, output_dir, environment=None, dry_run=False):
    """Resolve configuration from all property sources and build the provider.

    Returns:
        (config, provider) tuple.
    """
    sources = PropertySources(
        environment=environment or {},
        task=parse_properties(property_entries),
        project=load_project_properties(config_path),
        output_dir=output_dir,
    )
    config = resolve_config(sources)
    provider = make_provider(provider_name, config, dry_run=dry_run)
    return config, provider


def persist_ledger(ledger, state_path, dry_run=False):
    """Save the ledger, or remove the state file once nothing is left in it."""
    if dry_run:
        logger.info(f"[dry-run] write state to {state_path}")
        return
    if ledger.is_empty:
        if os.path.exists(state_path):
            remove_ledger(state_path)
        return
    save_ledger(ledger, state_path)
    logger.info(f"State saved to {state_path}")


def _scratch_dir(args):
    """Return (output_dir, created) for this run.

    Only a real run without ``--output-dir`` creates a temp directory.
    """
    if args.output_dir:
        return os.path.abspath(args.output_dir), False
    if args.dry_run:
        return os.path.join(tempfile.gettempdir(), "cloudrun-dry-run"), False
    return tempfile.mkdtemp(prefix="cloudrun-"), True


def handle_create(args):
    """CLI handler for 'create'."""
    output_dir, created = _scratch_dir(args)
    try:
        config, provider = build_run(args.provider, args.config, args.property, output_dir, dry_run=args.dry_run)
    except (CloudRunError, ValueError) as e:
        logger.error(f"Error: {e}")
        if created:
            shutil.rmtree(output_dir, ignore_errors=True)
        sys.exit(1)

    state_path = args.state_file or default_state_path(output_dir)
    ledger = ResourceLedger(provider=provider.name)
    failed = True
    try:
        create_resources(provider, config, ledger=ledger, dry_run=args.dry_run)
        failed = False
    except CloudRunError as e:
        logger.error(f"Error: {e}")
        if args.no_teardown:
            logger.info(f"Leaving created resources in place. Run 'cloudrun destroy {state_path}' to remove them.")
        elif not ledger.is_empty:
            logger.info("Tearing down created resources...")
            try:
                destroy_resources(provider, ledger, dry_run=args.dry_run)
            except CloudRunError as te:
                logger.error(f"Teardown failed: {te}")
                logger.error(f"Retry with 'cloudrun destroy {state_path}'.")
    finally:
        persist_ledger(ledger, state_path, dry_run=args.dry_run)

    if failed:
        if created and ledger.is_empty:
            shutil.rmtree(output_dir, ignore_errors=True)
        sys.exit(1)

    logger.info("")
    logger.info(f"Host:     {ledger.host}")
    logger.info(f"User:     {ledger.username}")
    logger.info(f"Connect:  ssh -i {ledger.key_file} {ledger.address}")
    logger.info(f"Destroy:  cloudrun destroy {state_path}")


def register_create_command(subparsers):
    """Register the 'create' subcommand."""
    parser = subparsers.add_parser("create", help="Provision and bootstrap an ephemeral instance")
    parser.add_argument(
        "--provider",
        default="aws",
        choices=sorted(PROVIDERS),
        help="Cloud provider (default: aws)",
    )
    parser.add_argument("--config", default=None, help="YAML file with a 'properties' mapping (default: cloudrun.yaml if present)")
    parser.add_argument(
        "-P",
        "--property",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Set a property, e.g. -P instanceType=t3.small -P spotPrice=0.01",
    )
    parser.add_argument("--output-dir", default=None, help="Scratch directory for the key file and state (default: new temp dir)")
    parser.add_argument("--state-file", default=None, help="Where to write the state file (default: <output-dir>/instance.json)")
    parser.add_argument("--no-teardown", action="store_true", help="Keep created resources when provisioning fails")
    parser.add_argument("--dry-run", action="store_true", help="Print provider requests without executing")
    parser.set_defaults(func=handle_create)
