#!/usr/bin/env python3
"""Ephemeral cloud instance tools: CLI entrypoint."""

import argparse

from cloudrun.commands.create import register_create_command
from cloudrun.commands.remote import register_remote_commands
from cloudrun.commands.teardown import register_destroy_command
from cloudrun.logging_setup import setup_cli_logging


def main():
    parser = argparse.ArgumentParser(description="Provision, use and tear down ephemeral cloud instances")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log state transitions and remote commands")
    subparsers = parser.add_subparsers(dest="command", required=True)

    register_create_command(subparsers)
    register_destroy_command(subparsers)
    register_remote_commands(subparsers)

    args = parser.parse_args()
    setup_cli_logging(verbose=args.verbose)
    args.func(args)


if __name__ == "__main__":
    main()
