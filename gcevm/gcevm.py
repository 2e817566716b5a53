#!/usr/bin/env python3
"""gcevm: provision Compute Engine instances reachable over SSH (CLI entrypoint)."""

import argparse

from gcevm.commands.command import register_command_command
from gcevm.commands.create import register_create_command
from gcevm.commands.delete import register_delete_command
from gcevm.commands.lifecycle import register_lifecycle_commands
from gcevm.commands.status import register_status_command
from gcevm.logging_setup import setup_cli_logging


def main():
    parser = argparse.ArgumentParser(description="Provision Compute Engine instances reachable over SSH or IAP")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    register_lifecycle_commands(subparsers)
    register_create_command(subparsers)
    register_command_command(subparsers)
    register_delete_command(subparsers)
    register_status_command(subparsers)

    args = parser.parse_args()
    setup_cli_logging(verbose=args.verbose)
    args.func(args)


if __name__ == "__main__":
    main()
