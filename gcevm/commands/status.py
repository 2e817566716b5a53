"""status: print the instance's normalized status on stdout."""

from gcevm.commands import run_flow
from gcevm.provisioning.cloud import instance_status


async def _status(client, options, cancel):
    return await instance_status(client, options)


def handle_status(args):
    status = run_flow(_status)
    print(status.value)


def register_status_command(subparsers):
    parser = subparsers.add_parser("status", help="Print the instance status")
    parser.set_defaults(func=handle_status)
