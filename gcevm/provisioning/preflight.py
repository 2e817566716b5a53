"""Network preflight for instances without a public IP.

Instances reached through IAP have no external address, so two things must be
true before creating one: Cloud NAT must cover its subnet (outbound access for
setup), and an ingress rule must admit IAP's forwarding range on port 22.
Both checks are read-only. A missing NAT blocks provisioning; a missing
firewall rule is reported with the fix and provisioning continues, since the
rule may be managed elsewhere.
"""

import ipaddress
import logging

from gcevm.errors import PreflightError
from gcevm.provisioning.instance_spec import parse_network, parse_subnetwork
from gcevm.provisioning.types import FindingState, PreflightFinding

logger = logging.getLogger(__name__)

IAP_SOURCE_RANGE = "35.235.240.0/20"
SSH_PORT = 22

NAT_ALL_SUBNETS = ("ALL_SUBNETWORKS_ALL_IP_RANGES", "ALL_SUBNETWORKS_ALL_PRIMARY_IP_RANGES")
NAT_SUBNET_LIST = "LIST_OF_SUBNETWORKS"

DEFAULT_ROUTER_NAME = "gcevm-nat-router"
DEFAULT_NAT_NAME = "gcevm-nat-config"
DEFAULT_RULE_NAME = "gcevm-allow-iap"


def normalize_subnet_name(reference, project="", region=""):
    """Reduce any accepted subnetwork reference to its bare name."""
    _, _, name = parse_subnetwork(reference.strip(), project, region)
    return name


def _network_name(request):
    if not request.network.strip():
        return ""
    _, name = parse_network(request.network.strip(), request.project)
    return name


# ── Matching ───────────────────────────────────────────────────────


def _bare_name(reference):
    return (reference or "").rstrip("/").rsplit("/", 1)[-1]


def nat_covers_subnet(nat, subnet_name):
    """True if a router NAT config applies to the subnet.

    LIST_OF_SUBNETWORKS entries hold subnetwork URLs; each is reduced to its
    bare name and the subnet name is matched as a case-sensitive substring.
    """
    source = nat.source_subnetwork_ip_ranges_to_nat
    if source in NAT_ALL_SUBNETS:
        return True
    if source == NAT_SUBNET_LIST:
        return any(subnet_name in _bare_name(entry.name) for entry in nat.subnetworks)
    return False


def _port_spec_covers(spec, port):
    if "-" in spec:
        low, high = spec.split("-", 1)
        return int(low) <= port <= int(high)
    return int(spec) == port


def allows_tcp_port(rule, port=SSH_PORT):
    for allowed in rule.allowed:
        protocol = allowed.I_p_protocol.lower()
        if protocol == "all":
            return True
        if protocol != "tcp":
            continue
        if not allowed.ports or any(_port_spec_covers(spec, port) for spec in allowed.ports):
            return True
    return False


def applies_to(rule, tag=""):
    """True if the rule targets every instance, or the instance's tag."""
    if rule.target_service_accounts:
        return False
    if rule.target_tags:
        return bool(tag) and tag in rule.target_tags
    return True


def admits_iap(rule, network_name="", tag=""):
    """True if an enabled ingress rule lets IAP's range reach SSH on the instance."""
    if rule.disabled or (rule.direction or "INGRESS") != "INGRESS":
        return False
    if not applies_to(rule, tag):
        return False
    if network_name and not rule.network.endswith(f"/networks/{network_name}"):
        return False
    iap = ipaddress.ip_network(IAP_SOURCE_RANGE)
    for source in rule.source_ranges:
        try:
            if iap.subnet_of(ipaddress.ip_network(source, strict=False)):
                break
        except (ValueError, TypeError):
            continue
    else:
        return False
    return allows_tcp_port(rule)


# ── Remediation text ───────────────────────────────────────────────


def nat_remediation(finding):
    """Copy-pasteable commands that create Cloud NAT for the finding's region."""
    network = finding.network or "default"
    return f"""Cloud NAT is not configured for subnet '{finding.subnet}' in region '{finding.region}'.

Instances without public IPs need Cloud NAT for outbound internet access
during setup.

To enable Cloud NAT, run the following commands:

  # Create a Cloud Router (if one doesn't exist)
  gcloud compute routers create {finding.router_name} \\
    --project={finding.project} \\
    --region={finding.region} \\
    --network={network}

  # Create Cloud NAT configuration
  gcloud compute routers nats create {finding.nat_name} \\
    --router={finding.router_name} \\
    --region={finding.region} \\
    --nat-all-subnet-ip-ranges \\
    --auto-allocate-nat-external-ips \\
    --project={finding.project}

Alternatively, to configure Cloud NAT for this subnet only:

  gcloud compute routers nats create {finding.nat_name} \\
    --router={finding.router_name} \\
    --region={finding.region} \\
    --nat-custom-subnet-ip-ranges={finding.subnet} \\
    --auto-allocate-nat-external-ips \\
    --project={finding.project}
"""


def firewall_remediation(finding):
    """Copy-pasteable commands that create the IAP ingress rule."""
    network = finding.network or "default"
    base = f"""  gcloud compute firewall-rules create {finding.rule_name} \\
    --project={finding.project} \\
    --direction=INGRESS \\
    --priority=1000 \\
    --network={network} \\
    --action=ALLOW \\
    --rules=tcp:{SSH_PORT} \\
    --source-ranges={IAP_SOURCE_RANGE}"""

    text = f"IAP firewall rule not found. SSH through IAP needs ingress from {IAP_SOURCE_RANGE} on tcp:{SSH_PORT}.\n\n"
    if finding.tag:
        text += f"To create the firewall rule, run:\n\n{base} \\\n    --target-tags={finding.tag}\n\n"
        text += f"Or if not using tags:\n\n{base}\n"
    else:
        text += f"To create the firewall rule, run:\n\n{base}\n"
    text += f"\nThe source range {IAP_SOURCE_RANGE} is Google's IAP forwarding range.\n"
    return text


# ── Checks ─────────────────────────────────────────────────────────


class NetworkPreflight:
    """Read-only validation of the IAP connectivity path."""

    def __init__(self, client):
        self.client = client

    async def check_cloud_nat(self, request):
        subnet = normalize_subnet_name(request.subnetwork, request.project, request.region)
        finding = dict(
            check="cloud-nat",
            project=request.project,
            region=request.region,
            network=_network_name(request),
            subnet=subnet,
            router_name=DEFAULT_ROUTER_NAME,
            nat_name=DEFAULT_NAT_NAME,
        )

        for router in await self.client.list_routers(request.region):
            for nat in router.nats:
                if nat_covers_subnet(nat, subnet):
                    logger.debug(f"Cloud NAT '{nat.name}' on router '{router.name}' covers subnet '{subnet}'")
                    return PreflightFinding(state=FindingState.SATISFIED, matched=f"{router.name}/{nat.name}", **finding)

        return PreflightFinding(state=FindingState.MISSING, **finding)

    async def check_iap_firewall(self, request):
        network = _network_name(request)
        finding = dict(
            check="iap-firewall",
            project=request.project,
            region=request.region,
            network=network,
            rule_name=DEFAULT_RULE_NAME,
            tag=request.tag,
        )

        for rule in await self.client.list_firewalls():
            if admits_iap(rule, network, request.tag):
                logger.debug(f"Firewall rule '{rule.name}' admits IAP on tcp:{SSH_PORT}")
                return PreflightFinding(state=FindingState.SATISFIED, matched=rule.name, **finding)

        return PreflightFinding(state=FindingState.MISSING, **finding)

    async def validate(self, request):
        """Run both checks. Returns (nat_finding, firewall_finding)."""
        nat = await self.check_cloud_nat(request)
        firewall = await self.check_iap_firewall(request)
        return nat, firewall

    async def enforce(self, request):
        """Gate provisioning on the preflight findings.

        Raises:
            PreflightError: no subnetwork given, or Cloud NAT missing.
        """
        if not request.subnetwork.strip():
            raise PreflightError("subnetwork must be specified when using private IP (PUBLIC_IP=false)")

        logger.info("Checking Cloud NAT and IAP firewall configuration...")
        nat, firewall = await self.validate(request)

        if not nat.satisfied:
            raise PreflightError(nat_remediation(nat), finding=nat)
        logger.info(f"Cloud NAT is configured ({nat.matched})")

        if firewall.satisfied:
            logger.info(f"IAP firewall rule is configured ({firewall.matched})")
        else:
            logger.warning(firewall_remediation(firewall))
            logger.warning("Continuing anyway - configure the IAP firewall rule manually if the connection fails")
        return nat, firewall
