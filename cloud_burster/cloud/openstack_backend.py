"""
OpenStack Backend

Talks to Keystone v3, Glance, Nova and Neutron over their REST APIs.
Machines boot from their image with a blank data volume attached and a
Neutron port carrying the host's fixed address.
"""

import base64
import ipaddress
import re
from typing import Any, Dict, List, Optional

import requests

from ..configs import Cloud, Host, OpenstackCloud
from ..errors import BackendOperationError, PollExhausted, ResourceNotFound
from ..utils.context import RunContext
from ..utils.retry import NotReady, RetryPolicy, try_do
from .base import CloudBackend
from .cloud_config import render_openstack_cloud_config
from .http import DEFAULT_TIMEOUT, JsonClient, new_session

PROVIDER = "openstack"

# Server statuses during which a delete request may be refused
TRANSITIONAL_STATUSES = {"BUILD", "REBUILD", "REBOOT", "HARD_REBOOT", "RESIZE", "MIGRATING", "PASSWORD"}


def _identity_url(endpoint: str) -> str:
    endpoint = endpoint.rstrip("/")
    if not endpoint.endswith("/v3"):
        endpoint += "/v3"
    return endpoint


def find_public_endpoint(catalog: List[Dict[str, Any]], service_type: str, region: str) -> str:
    """Public URL of a service in a Keystone v3 catalog"""
    for service in catalog:
        if service.get("type") != service_type:
            continue
        for endpoint in service.get("endpoints", []):
            if endpoint.get("interface") != "public":
                continue
            if region and region not in (endpoint.get("region_id"), endpoint.get("region")):
                continue
            return endpoint["url"]
    raise BackendOperationError(f"no public {service_type} endpoint in region {region!r}", provider=PROVIDER)


def _first_named(items: List[Dict[str, Any]], name: str, kind: str) -> Dict[str, Any]:
    for item in items:
        if item.get("name") == name:
            return item
    raise ResourceNotFound(f"didn't find {kind} {name!r}", provider=PROVIDER)


class OpenstackBackend(CloudBackend):
    """
    OpenStack implementation of CloudBackend.

    Args:
        cloud: cloud holding the credentials
        session: requests session, tests inject fakes here
        find_server_policy: locating a server before deleting it
        stable_policy: waiting for a server to leave transitional states
        find_port_policy: locating the ports of a server being deleted
        active_policy: waiting for a new server to become ACTIVE
    """

    def __init__(
        self,
        cloud: OpenstackCloud,
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT,
        find_server_policy: RetryPolicy = RetryPolicy(tries=3, delay=5),
        stable_policy: RetryPolicy = RetryPolicy(tries=10, delay=5),
        find_port_policy: RetryPolicy = RetryPolicy(tries=10, delay=5),
        active_policy: RetryPolicy = RetryPolicy(tries=60, delay=10),
    ):
        super().__init__(cloud)
        self.credentials = cloud.openstack
        self.session = session if session is not None else new_session()
        self.timeout = timeout
        self.find_server_policy = find_server_policy
        self.stable_policy = stable_policy
        self.find_port_policy = find_port_policy
        self.active_policy = active_policy
        self._compute: Optional[JsonClient] = None
        self._image: Optional[JsonClient] = None
        self._network: Optional[JsonClient] = None

    def initialize_client(self) -> None:
        """Authenticate against Keystone and locate the service endpoints"""
        creds = self.credentials
        identity = JsonClient(PROVIDER, _identity_url(creds.identity_endpoint), self.session, self.timeout)

        auth: Dict[str, Any] = {
            "identity": {
                "methods": ["password"],
                "password": {
                    "user": {
                        "name": creds.user,
                        "domain": {"id": creds.domain_id},
                        "password": creds.password,
                    }
                },
            }
        }
        if creds.tenant_id:
            auth["scope"] = {"project": {"id": creds.tenant_id}}
        elif creds.tenant_name:
            auth["scope"] = {"project": {"name": creds.tenant_name, "domain": {"id": creds.domain_id}}}

        response = identity.send("POST", "auth/tokens", json={"auth": auth})
        token = response.headers.get("X-Subject-Token")
        if not token:
            raise BackendOperationError("keystone returned no token", provider=PROVIDER)
        catalog = response.json().get("token", {}).get("catalog", [])

        headers = {"X-Auth-Token": token}
        self._compute = JsonClient(
            PROVIDER, find_public_endpoint(catalog, "compute", creds.region), self.session, self.timeout, headers
        )
        self._image = JsonClient(
            PROVIDER, find_public_endpoint(catalog, "image", creds.region), self.session, self.timeout, headers
        )
        self._network = JsonClient(
            PROVIDER, find_public_endpoint(catalog, "network", creds.region), self.session, self.timeout, headers
        )
        self._client = self._compute

    # ==================== Lookups ====================

    def find_image_id(self, name: str) -> str:
        images = self._image.get("v2/images", params={"name": name}).get("images", [])
        return _first_named(images, name, "image")["id"]

    def find_flavor_id(self, name: str) -> str:
        flavors = self._compute.get("flavors/detail").get("flavors", [])
        return _first_named(flavors, name, "flavor")["id"]

    def find_network_id(self, name: str) -> str:
        networks = self._network.get("v2.0/networks", params={"name": name}).get("networks", [])
        return _first_named(networks, name, "network")["id"]

    def find_subnet_id(self, cidr: str, network_id: str) -> str:
        cidr = str(ipaddress.ip_network(cidr, strict=False))
        subnets = self._network.get(
            "v2.0/subnets", params={"network_id": network_id, "cidr": cidr}
        ).get("subnets", [])
        for subnet in subnets:
            if subnet.get("cidr") == cidr:
                return subnet["id"]
        raise ResourceNotFound(f"didn't find a subnet {cidr} in network {network_id}", provider=PROVIDER)

    def find_server(self, name: str) -> Dict[str, Any]:
        # Nova filters names as regular expressions
        servers = self._compute.get("servers", params={"name": f"^{re.escape(name)}$"}).get("servers", [])
        return _first_named(servers, name, "server")

    def get_server(self, server_id: str) -> Dict[str, Any]:
        return self._compute.get(f"servers/{server_id}")["server"]

    def find_port_ids(self, device_id: str) -> List[str]:
        ports = self._network.get("v2.0/ports", params={"device_id": device_id}).get("ports", [])
        return [port["id"] for port in ports if port.get("device_id") == device_id]

    # ==================== Mutations ====================

    def create_port(self, name: str, ip: str, network_id: str, subnet_id: str) -> str:
        body = {
            "port": {
                "name": name,
                "network_id": network_id,
                "admin_state_up": True,
                "security_groups": [],
                "port_security_enabled": False,
                "fixed_ips": [{"ip_address": ip, "subnet_id": subnet_id}],
            }
        }
        return self._network.post("v2.0/ports", json=body)["port"]["id"]

    def delete_port(self, port_id: str) -> None:
        try:
            self._network.delete(f"v2.0/ports/{port_id}")
        except ResourceNotFound:
            pass

    def create(self, ctx: RunContext, host: Host, cloud: Cloud) -> None:
        log = ctx.log
        if not host.ip:
            raise BackendOperationError(f"host {host.name} has no IP address", provider=PROVIDER)

        image_id = self.find_image_id(host.image_name)
        flavor_id = self.find_flavor_id(host.flavor_name)
        network_id = self.find_network_id(cloud.network.name)
        subnet_id = self.find_subnet_id(cloud.network.subnet_cidr, network_id)
        user_data = render_openstack_cloud_config(cloud)

        ctx.check()
        port_id = self.create_port(host.name, host.ip, network_id, subnet_id)
        log.debug(f"created port {port_id} with address {host.ip}")

        server_body = {
            "server": {
                "name": host.name,
                "imageRef": image_id,
                "flavorRef": flavor_id,
                "user_data": base64.b64encode(user_data.encode()).decode(),
                "networks": [{"port": port_id}],
                "config_drive": True,
                "block_device_mapping_v2": [
                    {
                        "uuid": image_id,
                        "source_type": "image",
                        "destination_type": "local",
                        "boot_index": 0,
                        "delete_on_termination": True,
                    },
                    {
                        "source_type": "blank",
                        "destination_type": "volume",
                        "boot_index": 1,
                        "volume_size": host.disk_size,
                        "delete_on_termination": True,
                    },
                ],
            }
        }
        try:
            server_id = self._compute.post("servers", json=server_body)["server"]["id"]
        except BackendOperationError:
            log.error(f"failed to boot server, deleting port {port_id}")
            self.delete_port(port_id)
            raise

        log.info(f"spawned server {server_id}, waiting for it to become ACTIVE")

        def is_active() -> Dict[str, Any]:
            server = self.get_server(server_id)
            status = server.get("status")
            if status == "ERROR":
                fault = server.get("fault", {}).get("message", "unknown fault")
                raise BackendOperationError(f"server {host.name} went to ERROR: {fault}", provider=PROVIDER)
            if status != "ACTIVE":
                raise NotReady(f"server status is {status}", value=server)
            return server

        try_do(
            is_active,
            self.active_policy.tries,
            self.active_policy.delay,
            ctx=ctx,
            retry_on=(NotReady,),
        )
        log.info(f"server {host.name} is ACTIVE")

    def delete(self, ctx: RunContext, name: str) -> None:
        log = ctx.log
        log.warning(f"deleting server {name}")

        try:
            server = try_do(
                lambda: self.find_server(name),
                self.find_server_policy.tries,
                self.find_server_policy.delay,
                ctx=ctx,
                retry_on=(ResourceNotFound,),
            )
        except PollExhausted as e:
            if isinstance(e.last_error, ResourceNotFound):
                log.warning(f"server {name} does not exist, nothing to delete")
                return
            raise
        server_id = server["id"]

        def is_stable() -> Dict[str, Any]:
            current = self.get_server(server_id)
            if current.get("status") in TRANSITIONAL_STATUSES:
                raise NotReady(f"server status is {current.get('status')}", value=current)
            return current

        try:
            try_do(is_stable, self.stable_policy.tries, self.stable_policy.delay, ctx=ctx, retry_on=(NotReady,))
        except ResourceNotFound:
            log.warning(f"server {name} disappeared while waiting, nothing to delete")
            return

        def ports_of_server() -> List[str]:
            port_ids = self.find_port_ids(server_id)
            if not port_ids:
                raise NotReady(f"no port attached to {server_id} yet")
            return port_ids

        try:
            port_ids = try_do(
                ports_of_server,
                self.find_port_policy.tries,
                self.find_port_policy.delay,
                ctx=ctx,
                retry_on=(NotReady,),
            )
        except PollExhausted as e:
            log.warning(f"couldn't find the ports of server {server_id}: {e}")
            port_ids = []

        for port_id in port_ids:
            self.delete_port(port_id)

        try:
            self._compute.delete(f"servers/{server_id}")
        except ResourceNotFound:
            pass

        log.warning(f"deleted server {name} ({server_id})")
