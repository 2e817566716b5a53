"""create: preflight, create the instance, wait for it and write its SSH config."""

from gcevm.commands import run_flow
from gcevm.provisioning.cloud import provision_instance


async def _create(client, options, cancel):
    return await provision_instance(client, options, cancel=cancel)


def handle_create(args):
    run_flow(_create)


def register_create_command(subparsers):
    parser = subparsers.add_parser("create", help="Create an instance and wait until SSH is usable")
    parser.set_defaults(func=handle_create)
