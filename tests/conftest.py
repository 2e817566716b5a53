"""Shared pytest fixtures: in-memory control plane, scripted SSH transport, fake clock."""

import dataclasses
import os
import subprocess
import sys

import pytest

from gcevm.errors import OperationCancelled
from gcevm.options import ENV_VARS, Options
from gcevm.provisioning.types import ProvisionRequest, ResourceStatus, RetryPolicy

PROJECT_ROOT = os.path.normpath(os.path.join(os.path.dirname(__file__), ".."))

PROJECT = "my-project"
ZONE = "us-central1-a"


class FakeResourceClient:
    """Records every call; statuses are consumed in order, the last one repeats."""

    def __init__(self, statuses=None, instance=None, routers=None, firewalls=None):
        self.project = PROJECT
        self.zone = ZONE
        self.statuses = list(statuses or [])
        self.instance = instance
        self.routers = list(routers or [])
        self.firewalls = list(firewalls or [])
        self.created = None
        self.calls = []

    def count(self, name):
        return sum(1 for call in self.calls if call[0] == name)

    async def init(self):
        self.calls.append(("init",))

    async def create(self, instance):
        self.calls.append(("create", instance.name))
        self.created = instance

    async def get(self, name):
        self.calls.append(("get", name))
        return self.instance

    async def status(self, name):
        self.calls.append(("status", name))
        if not self.statuses:
            return ResourceStatus.NOT_FOUND
        if len(self.statuses) > 1:
            return self.statuses.pop(0)
        return self.statuses[0]

    async def start(self, name):
        self.calls.append(("start", name))

    async def stop(self, name, wait=True):
        self.calls.append(("stop", name, wait))

    async def delete(self, name):
        self.calls.append(("delete", name))

    async def list_routers(self, region):
        self.calls.append(("list_routers", region))
        return self.routers

    async def list_firewalls(self):
        self.calls.append(("list_firewalls",))
        return self.firewalls


class FakeTransport:
    """Returns scripted exit codes (or raises scripted exceptions) per run."""

    def __init__(self, results, proxied=True):
        self.results = list(results)
        self.proxied = proxied
        self.runs = []

    async def run(self, command, stdin=None, stdout=None, stderr=None, timeout=None):
        self.runs.append((command, timeout))
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        return result


class SleepRecorder:
    """Stands in for backoff.pause: records delays and honours cancellation."""

    def __init__(self, cancel_after=None):
        self.delays = []
        self.cancel_after = cancel_after

    async def __call__(self, delay, cancel=None):
        self.delays.append(delay)
        if cancel is not None:
            if self.cancel_after is not None and len(self.delays) >= self.cancel_after:
                cancel.set()
            if cancel.is_set():
                raise OperationCancelled("cancelled")


# ── Fixtures ────────────────────────────────────────────────────────


@pytest.fixture
def fake_client():
    """Factory for FakeResourceClient."""
    return FakeResourceClient


@pytest.fixture
def fake_transport():
    """Factory for FakeTransport."""
    return FakeTransport


@pytest.fixture
def sleeps():
    return SleepRecorder()


@pytest.fixture
def make_request(tmp_path):
    """Factory for ProvisionRequest with test defaults; keyword overrides apply."""

    def _make(**overrides):
        request = ProvisionRequest(
            name="gcevm-test",
            project=PROJECT,
            zone=ZONE,
            machine_type="c2-standard-4",
            disk_size="40",
            disk_image="projects/debian-cloud/global/images/family/debian-12",
            subnetwork="private-a",
            machine_folder=str(tmp_path / "machine"),
        )
        return dataclasses.replace(request, **overrides)

    return _make


@pytest.fixture
def fast_policies():
    """Retry policies with real shapes but second-scale delays."""
    return {
        "status": RetryPolicy(attempts=4, interval=1),
        "probe": RetryPolicy(attempts=3, interval=1, attempt_timeout=1, initial_delay=2),
        "command": RetryPolicy(attempts=3, interval=2, backoff="linear", max_interval=10),
    }


@pytest.fixture
def make_options(tmp_path, fast_policies):
    """Factory for Options with test defaults and fast policies."""

    def _make(**overrides):
        options = Options(
            project=PROJECT,
            zone=ZONE,
            subnetwork="private-a",
            machine_id="gcevm-test",
            machine_folder=str(tmp_path / "machine"),
            status_policy=fast_policies["status"],
            probe_policy=fast_policies["probe"],
            command_policy=fast_policies["command"],
        )
        return dataclasses.replace(options, **overrides)

    return _make


@pytest.fixture
def make_sleeps():
    """Factory for SleepRecorder (e.g. with cancel_after=N)."""
    return SleepRecorder


@pytest.fixture(scope="session")
def project_root():
    """Absolute path to the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def run_cli(project_root):
    """Return a callable that invokes the gcevm CLI as a subprocess.

    Provider variables from the calling environment are dropped; pass the ones
    a test needs as keyword arguments.
    """

    def _run(*args, **env):
        clean = {k: v for k, v in os.environ.items() if k not in ENV_VARS.values() and k not in ("COMMAND", "GCEVM_CONFIG")}
        clean.update(env)
        result = subprocess.run(
            [sys.executable, "-m", "gcevm.gcevm", *args],
            capture_output=True,
            text=True,
            cwd=project_root,
            env=clean,
        )
        return result.returncode, result.stdout, result.stderr

    return _run
