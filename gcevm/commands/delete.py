"""delete: remove the instance and its SSH config."""

from gcevm.commands import run_flow
from gcevm.provisioning.cloud import delete_instance


async def _delete(client, options, cancel):
    await delete_instance(client, options)


def handle_delete(args):
    run_flow(_delete)


def register_delete_command(subparsers):
    parser = subparsers.add_parser("delete", help="Delete the instance")
    parser.set_defaults(func=handle_delete)
