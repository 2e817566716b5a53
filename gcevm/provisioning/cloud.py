"""Instance lifecycle flows: create, command, delete, status, start, stop.

Bridge between the CLI handlers and the provisioning components. Every flow
takes a ResourceClient so tests can run it against an in-memory fake.
"""

import dataclasses
import logging
import os

from gcevm.errors import InstanceNotFoundError, MissingExternalAddressError
from gcevm.provisioning.gcp import external_ip
from gcevm.provisioning.instance_spec import build_instance
from gcevm.provisioning.keys import ensure_key_pair
from gcevm.provisioning.preflight import NetworkPreflight
from gcevm.provisioning.readiness import ReadinessWaiter
from gcevm.provisioning.runner import CommandRunner
from gcevm.provisioning.ssh_config import configure, descriptor_path, load_descriptor
from gcevm.provisioning.ssh_transport import transport_for

logger = logging.getLogger(__name__)


def make_waiter(client, options, direct=False):
    """ReadinessWaiter for the options' policies.

    Direct-mode instances get no startup script, so the probe phase skips the
    initial settling delay.
    """
    probe_policy = options.probe_policy
    if direct:
        probe_policy = dataclasses.replace(probe_policy, initial_delay=0)
    return ReadinessWaiter(
        client,
        status_policy=options.status_policy,
        probe_policy=probe_policy,
        fail_fast_on_stop=options.fail_fast_on_stop,
    )


async def current_address(client, name, zone):
    """External IP of a running instance."""
    instance = await client.get(name)
    if instance is None:
        raise InstanceNotFoundError(name, zone)
    address = external_ip(instance)
    if not address:
        raise MissingExternalAddressError(name)
    return address


async def provision_instance(client, options, cancel=None):
    """Create an instance and bring its command channel up.

    Steps:
        1. Network preflight (private IP only); aborts before any mutation
        2. Build the instance resource and create it
        3. Wait for RUNNING
        4. Write the ssh_config descriptor
        5. Probe SSH (best effort)

    Returns:
        The ConnectivityDescriptor written for the instance.
    """
    request = options.to_request()

    if not request.public_ip:
        await NetworkPreflight(client).enforce(request)

    _, public_key = await ensure_key_pair(request.machine_folder)
    instance = build_instance(request, public_key)

    logger.info(f"Creating instance '{request.name}' in zone '{request.zone}' ({request.machine_type})...")
    await client.create(instance)

    config_path = descriptor_path(request.machine_folder)

    async def write_descriptor():
        address = None
        if request.public_ip:
            address = await current_address(client, request.name, request.zone)
            logger.info(f"External IP: {address}")
        descriptor = configure(request, address=address)
        logger.info(f"Wrote {descriptor.mode.value} SSH configuration to {config_path}")

    waiter = make_waiter(client, options, direct=request.public_ip)
    return await waiter.await_ready(request.name, config_path, cancel=cancel, configure=write_descriptor)


async def run_command(client, options, command, stdin=None, stdout=None, stderr=None, cancel=None):
    """Run one command on the instance and return its exit status."""
    config_path = descriptor_path(options.machine_folder)

    address = None
    if options.public_ip:
        # Ephemeral external IPs change across stop/start; look it up every time.
        address = await current_address(client, options.machine_id, options.zone)
    elif await client.get(options.machine_id) is None:
        raise InstanceNotFoundError(options.machine_id, options.zone)

    descriptor = load_descriptor(config_path)
    transport = transport_for(descriptor, config_path, address=address)
    runner = CommandRunner(policy=options.command_policy)
    return await runner.execute(transport, command, stdin=stdin, stdout=stdout, stderr=stderr, cancel=cancel)


async def delete_instance(client, options):
    """Delete the instance and forget its descriptor."""
    logger.info(f"Deleting instance '{options.machine_id}' in zone '{options.zone}'...")
    await client.delete(options.machine_id)

    config_path = descriptor_path(options.machine_folder)
    if os.path.exists(config_path):
        os.remove(config_path)
    logger.info("Instance deleted.")


async def instance_status(client, options):
    return await client.status(options.machine_id)


async def start_instance(client, options, cancel=None):
    logger.info(f"Starting instance '{options.machine_id}'...")
    await client.start(options.machine_id)
    await make_waiter(client, options).wait_for_running(options.machine_id, cancel=cancel)


async def stop_instance(client, options, wait=True):
    logger.info(f"Stopping instance '{options.machine_id}'...")
    await client.stop(options.machine_id, wait=wait)
    logger.info("Instance stopped." if wait else "Stop requested.")
