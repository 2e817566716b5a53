"""GCP provider: thin async facade over the Compute Engine API.

Every call runs the synchronous google-cloud-compute client in a worker thread
and, for mutating calls, blocks on the returned long-running operation. The
only error translated here is a 404 on get, which becomes ``None``; every
other API failure is wrapped in ControlPlaneError with the operation name.
"""

import asyncio
import logging

from google.api_core import exceptions as api_exceptions
from google.auth import exceptions as auth_exceptions
from google.cloud import compute_v1

from gcevm.auth import setup_env_json
from gcevm.errors import ControlPlaneError
from gcevm.provisioning.types import ResourceStatus

logger = logging.getLogger(__name__)

OPERATION_TIMEOUT = 600


class ResourceClient:
    """Instances, routers and firewalls of one project/zone."""

    def __init__(self, project, zone, instances_client, routers_client, firewalls_client):
        self.project = project
        self.zone = zone
        self.instances = instances_client
        self.routers = routers_client
        self.firewalls = firewalls_client

    @classmethod
    def connect(cls, project, zone):
        """Build a client from application default credentials."""
        setup_env_json()
        try:
            return cls(
                project,
                zone,
                compute_v1.InstancesClient(),
                compute_v1.RoutersClient(),
                compute_v1.FirewallsClient(),
            )
        except auth_exceptions.GoogleAuthError as e:
            raise ControlPlaneError("connect", project, zone, e) from e

    async def _call(self, operation, resource, fn, *args, **kwargs):
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except (api_exceptions.GoogleAPIError, auth_exceptions.GoogleAuthError) as e:
            raise ControlPlaneError(operation, resource, self.zone, e) from e

    async def _mutate(self, operation, resource, fn, wait=True, **kwargs):
        def _run():
            op = fn(project=self.project, zone=self.zone, **kwargs)
            if wait:
                op.result(timeout=OPERATION_TIMEOUT)
            return op

        logger.debug(f"{operation} {resource} (project={self.project}, zone={self.zone})")
        return await self._call(operation, resource, _run)

    # ── Instances ───────────────────────────────────────────────────

    async def init(self):
        """Fail early if the project/zone cannot be listed with current credentials."""

        def _first_page():
            request = compute_v1.ListInstancesRequest(project=self.project, zone=self.zone, max_results=1)
            pager = self.instances.list(request=request)
            return next(iter(pager), None)

        await self._call("list instances", self.project, _first_page)

    async def create(self, instance):
        await self._mutate("create instance", instance.name, self.instances.insert, instance_resource=instance)

    async def get(self, name):
        """Return the instance, or None if it does not exist."""
        try:
            return await asyncio.to_thread(self.instances.get, project=self.project, zone=self.zone, instance=name)
        except api_exceptions.NotFound:
            return None
        except (api_exceptions.GoogleAPIError, auth_exceptions.GoogleAuthError) as e:
            raise ControlPlaneError("get instance", name, self.zone, e) from e

    async def status(self, name):
        instance = await self.get(name)
        if instance is None:
            return ResourceStatus.NOT_FOUND
        status = ResourceStatus.from_raw(instance.status)
        if status is ResourceStatus.UNKNOWN:
            logger.debug(f"Unrecognized status for {name}: '{instance.status}'")
        return status

    async def list_instances(self):
        return await self._call(
            "list instances", self.project, lambda: list(self.instances.list(project=self.project, zone=self.zone))
        )

    async def start(self, name):
        await self._mutate("start instance", name, self.instances.start, instance=name)

    async def stop(self, name, wait=True):
        await self._mutate("stop instance", name, self.instances.stop, wait=wait, instance=name)

    async def delete(self, name):
        await self._mutate("delete instance", name, self.instances.delete, instance=name)

    # ── Network ─────────────────────────────────────────────────────

    async def list_routers(self, region):
        return await self._call(
            "list routers", region, lambda: list(self.routers.list(project=self.project, region=region))
        )

    async def list_firewalls(self):
        return await self._call("list firewall rules", self.project, lambda: list(self.firewalls.list(project=self.project)))

    def close(self):
        for client in (self.instances, self.routers, self.firewalls):
            transport = getattr(client, "transport", None)
            if transport is not None:
                transport.close()


def external_ip(instance):
    """Return the first external NAT IP of an instance, or "" if it has none."""
    for nic in instance.network_interfaces:
        for access in nic.access_configs:
            if access.nat_i_p:
                return access.nat_i_p
    return ""
