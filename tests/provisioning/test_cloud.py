"""Unit tests for the lifecycle flows in provisioning/cloud.py, against a fake control plane."""

import os

import pytest
from google.cloud import compute_v1

import gcevm.provisioning.cloud as cloud_module
from gcevm.errors import InstanceNotFoundError, MissingExternalAddressError, PreflightError, StatusTimeoutError
from gcevm.provisioning.cloud import (
    delete_instance,
    instance_status,
    make_waiter,
    provision_instance,
    run_command,
    start_instance,
    stop_instance,
)
from gcevm.provisioning.readiness import ReadinessWaiter
from gcevm.provisioning.ssh_config import configure, descriptor_path
from gcevm.provisioning.types import ResourceStatus, RetryPolicy, TransportMode

R = ResourceStatus
PUBLIC_KEY = "ssh-rsa AAAAB3NzaC1yc2EAAAADAQABAAABAQC gcevm"
NO_WAIT = RetryPolicy(attempts=4, interval=0)


def _nat_router():
    nat = compute_v1.RouterNat(name="nat-1", source_subnetwork_ip_ranges_to_nat="ALL_SUBNETWORKS_ALL_IP_RANGES")
    return compute_v1.Router(name="router-1", nats=[nat])


def _iap_rule():
    return compute_v1.Firewall(
        name="allow-iap",
        network="projects/my-project/global/networks/default",
        direction="INGRESS",
        source_ranges=["35.235.240.0/20"],
        allowed=[compute_v1.Allowed(I_p_protocol="tcp", ports=["22"])],
    )


def _public_instance(address="203.0.113.7"):
    access = compute_v1.AccessConfig(name="External NAT")
    if address:
        access.nat_i_p = address
    return compute_v1.Instance(
        name="gcevm-test",
        status="RUNNING",
        network_interfaces=[compute_v1.NetworkInterface(access_configs=[access])],
    )


@pytest.fixture
def key_pair(tmp_path):
    """Pre-existing key pair so ssh-keygen is never invoked."""
    folder = tmp_path / "machine"
    folder.mkdir()
    (folder / "id_gcevm_rsa").write_text("private")
    (folder / "id_gcevm_rsa.pub").write_text(PUBLIC_KEY + "\n")
    return str(folder)


@pytest.fixture
def probes(monkeypatch):
    """Replace the channel probe; records the transports it was given."""
    seen = []

    async def _probe(self, transport, cancel=None):
        seen.append(transport)
        return True

    monkeypatch.setattr(ReadinessWaiter, "probe_channel", _probe)
    return seen


@pytest.fixture
def transports(monkeypatch, fake_transport):
    """Replace transport_for in the command flow; records (descriptor, address)."""
    seen = []

    def _transport_for(descriptor, config_path, address=None):
        seen.append((descriptor, address))
        return fake_transport([0], proxied=descriptor.proxied)

    monkeypatch.setattr(cloud_module, "transport_for", _transport_for)
    return seen


# ── provision_instance ─────────────────────────────────────────────


async def test_proxied_provisioning(fake_client, make_options, key_pair, probes):
    """Private IP with a NAT-backed subnet ends with a proxied descriptor."""
    client = fake_client(statuses=[R.PROVISIONING, R.RUNNING], routers=[_nat_router()], firewalls=[_iap_rule()])
    options = make_options(status_policy=NO_WAIT)

    descriptor = await provision_instance(client, options)

    assert client.count("create") == 1
    metadata = {item.key: item.value for item in client.created.metadata.items}
    assert "startup-script" in metadata
    assert metadata["ssh-keys"] == f"gcevm:{PUBLIC_KEY}"

    assert descriptor.mode is TransportMode.PROXIED
    assert descriptor.host == "gcevm-test"
    assert "--project=my-project" in descriptor.proxy_command
    assert "--zone=us-central1-a" in descriptor.proxy_command
    assert os.path.exists(descriptor_path(key_pair))
    assert probes[0].proxied


async def test_missing_nat_aborts_before_create(fake_client, make_options, key_pair, probes):
    client = fake_client(statuses=[R.RUNNING], firewalls=[_iap_rule()])

    with pytest.raises(PreflightError):
        await provision_instance(client, make_options())

    assert client.count("create") == 0
    assert client.count("status") == 0
    assert not os.path.exists(descriptor_path(key_pair))


async def test_private_ip_without_subnetwork_aborts(fake_client, make_options, key_pair):
    client = fake_client(routers=[_nat_router()])
    with pytest.raises(PreflightError, match="subnetwork must be specified"):
        await provision_instance(client, make_options(subnetwork=""))
    assert client.count("create") == 0


async def test_public_provisioning(fake_client, make_options, key_pair, probes):
    """Public IP skips preflight and writes a direct descriptor for the NAT address."""
    client = fake_client(statuses=[R.RUNNING], instance=_public_instance())
    options = make_options(public_ip=True, subnetwork="", network="default", status_policy=NO_WAIT)

    descriptor = await provision_instance(client, options)

    assert client.count("list_routers") == 0
    assert client.count("list_firewalls") == 0
    nic = client.created.network_interfaces[0]
    assert nic.access_configs[0].name == "External NAT"
    assert "startup-script" not in {item.key for item in client.created.metadata.items}
    assert descriptor.mode is TransportMode.DIRECT
    assert descriptor.hostname == "203.0.113.7"


async def test_status_timeout_leaves_no_descriptor(fake_client, make_options, key_pair, probes):
    client = fake_client(statuses=[R.PROVISIONING], routers=[_nat_router()], firewalls=[_iap_rule()])

    with pytest.raises(StatusTimeoutError):
        await provision_instance(client, make_options(status_policy=NO_WAIT))

    assert client.count("create") == 1
    assert not os.path.exists(descriptor_path(key_pair))
    assert probes == []


def test_direct_waiter_skips_initial_delay(fake_client, make_options):
    options = make_options()
    assert make_waiter(fake_client(), options, direct=True).probe_policy.initial_delay == 0
    assert make_waiter(fake_client(), options).probe_policy.initial_delay == options.probe_policy.initial_delay


# ── run_command ────────────────────────────────────────────────────


async def test_run_command_proxied(fake_client, make_options, make_request, transports):
    request = make_request()
    configure(request)
    client = fake_client(instance=compute_v1.Instance(name="gcevm-test", status="RUNNING"))

    rc = await run_command(client, make_options(), "echo hi")

    assert rc == 0
    descriptor, address = transports[0]
    assert descriptor.proxied
    assert address is None


async def test_run_command_direct_looks_up_current_address(fake_client, make_options, make_request, transports):
    request = make_request(public_ip=True)
    configure(request, address="203.0.113.7")
    client = fake_client(instance=_public_instance("198.51.100.9"))

    await run_command(client, make_options(public_ip=True), "echo hi")

    _, address = transports[0]
    assert address == "198.51.100.9"


async def test_run_command_missing_instance(fake_client, make_options, transports):
    with pytest.raises(InstanceNotFoundError, match="doesn't exist"):
        await run_command(fake_client(), make_options(), "echo hi")
    assert transports == []


async def test_run_command_without_external_address(fake_client, make_options, transports):
    client = fake_client(instance=_public_instance(address=""))
    with pytest.raises(MissingExternalAddressError):
        await run_command(client, make_options(public_ip=True), "echo hi")


# ── delete / status / start / stop ─────────────────────────────────


async def test_delete_removes_descriptor(fake_client, make_options, make_request):
    request = make_request()
    configure(request)
    client = fake_client()

    await delete_instance(client, make_options())

    assert ("delete", "gcevm-test") in client.calls
    assert not os.path.exists(descriptor_path(request.machine_folder))


async def test_delete_without_descriptor(fake_client, make_options):
    client = fake_client()
    await delete_instance(client, make_options())
    assert client.count("delete") == 1


async def test_instance_status(fake_client, make_options):
    client = fake_client(statuses=[R.STOPPED])
    assert await instance_status(client, make_options()) is R.STOPPED


async def test_start_waits_for_running(fake_client, make_options):
    client = fake_client(statuses=[R.PROVISIONING, R.RUNNING])
    await start_instance(client, make_options(status_policy=NO_WAIT))

    assert client.calls[0] == ("start", "gcevm-test")
    assert client.count("status") == 2


@pytest.mark.parametrize("wait", [True, False])
async def test_stop(fake_client, make_options, wait):
    client = fake_client()
    await stop_instance(client, make_options(), wait=wait)
    assert client.calls == [("stop", "gcevm-test", wait)]
