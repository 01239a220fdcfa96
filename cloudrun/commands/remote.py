"""Exec and upload commands: use the SSH channel of a provisioned instance."""

import argparse
import logging
import shlex
import sys

from cloudrun.errors import CloudRunError, RemoteExecutionError
from cloudrun.provisioning.orchestrator import open_session
from cloudrun.provisioning.state import load_ledger

logger = logging.getLogger(__name__)


def _load(state_file):
    try:
        return load_ledger(state_file)
    except FileNotFoundError:
        logger.error(f"No state file found at {state_file}")
        sys.exit(1)
    except ValueError as e:
        logger.error(f"Invalid state file {state_file}: {e}")
        sys.exit(1)


def handle_exec(args):
    """CLI handler for 'exec'."""
    ledger = _load(args.state_file)
    if not args.remote_command:
        logger.error("Error: no command given")
        sys.exit(2)
    parts = args.remote_command
    command = parts[0] if len(parts) == 1 else shlex.join(parts)
    try:
        with open_session(ledger) as session:
            session.execute(command)
    except RemoteExecutionError as e:
        logger.error(f"Error: {e}")
        sys.exit(e.exit_status)
    except CloudRunError as e:
        logger.error(f"Error: {e}")
        sys.exit(1)


def handle_upload(args):
    """CLI handler for 'upload'."""
    ledger = _load(args.state_file)
    try:
        with open_session(ledger) as session:
            session.upload_file(args.local_path, args.remote_path)
    except (CloudRunError, OSError) as e:
        logger.error(f"Error: {e}")
        sys.exit(1)
    logger.info("Upload complete.")


def register_remote_commands(subparsers):
    """Register the 'exec' and 'upload' subcommands."""
    exec_parser = subparsers.add_parser("exec", help="Run a command on a provisioned instance")
    exec_parser.add_argument("state_file", help="State file written by 'create'")
    exec_parser.add_argument(
        "remote_command",
        nargs=argparse.REMAINDER,
        metavar="COMMAND",
        help="Command to run remotely",
    )
    exec_parser.set_defaults(func=handle_exec)

    upload_parser = subparsers.add_parser("upload", help="Copy a file to a provisioned instance")
    upload_parser.add_argument("state_file", help="State file written by 'create'")
    upload_parser.add_argument("local_path", help="Local file to upload")
    upload_parser.add_argument("remote_path", help="Destination path on the instance")
    upload_parser.set_defaults(func=handle_upload)
