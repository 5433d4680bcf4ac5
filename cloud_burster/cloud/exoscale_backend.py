"""
Exoscale Backend

Talks to the Exoscale API v2. Requests are signed with EXO2-HMAC-SHA256 and
every mutation returns an asynchronous operation that is polled until it
settles.
"""

import base64
import hashlib
import hmac
import time
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urlsplit

import requests
from requests.auth import AuthBase

from ..configs import Cloud, ExoscaleCloud, Host
from ..errors import BackendOperationError, PollExhausted, ResourceNotFound
from ..utils.context import RunContext
from ..utils.retry import NotReady, RetryPolicy, try_do
from .base import CloudBackend
from .cloud_config import render_exoscale_cloud_config
from .http import DEFAULT_TIMEOUT, JsonClient, new_session

PROVIDER = "exoscale"

STABLE_STATES = {"running", "stopped"}
GONE_STATES = {"destroying", "destroyed", "expunging"}


class ExoscaleV2Auth(AuthBase):
    """Signs requests for the Exoscale API v2"""

    def __init__(self, key: str, secret: str, expiration: int = 600):
        self.key = key
        self.secret = secret
        self.expiration = expiration

    def signature_header(self, method: str, url: str, body: Any, expires: int) -> str:
        parts = urlsplit(url)
        header = f"EXO2-HMAC-SHA256 credential={self.key}"

        if body is None:
            body = b""
        elif isinstance(body, str):
            body = body.encode()

        message: List[bytes] = [f"{method} {parts.path}".encode(), body]

        params = parse_qs(parts.query)
        if params:
            signed = sorted(params)
            header += ",signed-query-args=" + ";".join(signed)
            message.append("".join(params[p][0] for p in signed).encode())
        else:
            message.append(b"")

        # Signed headers are not used
        message.append(b"")
        message.append(str(expires).encode())
        header += f",expires={expires}"

        digest = hmac.new(self.secret.encode(), msg=b"\n".join(message), digestmod=hashlib.sha256).digest()
        return header + ",signature=" + base64.standard_b64encode(digest).decode()

    def __call__(self, request):
        expires = int(time.time() + self.expiration)
        request.headers["Authorization"] = self.signature_header(request.method, request.url, request.body, expires)
        return request


def split_instance_type(flavor_name: str) -> Dict[str, str]:
    """`standard.medium` -> family standard, size medium; the family defaults to standard"""
    family, _, size = flavor_name.lower().rpartition(".")
    return {"family": family or "standard", "size": size}


def _first_named(items: List[Dict[str, Any]], name: str, kind: str) -> Dict[str, Any]:
    for item in items:
        if item.get("name") == name:
            return item
    raise ResourceNotFound(f"didn't find {kind} {name!r}", provider=PROVIDER)


class ExoscaleBackend(CloudBackend):
    """
    Exoscale implementation of CloudBackend.

    Args:
        cloud: cloud holding the credentials
        session: requests session, tests inject fakes here
        find_server_policy: locating an instance before deleting it
        stable_policy: waiting for an instance to reach a stable state
        operation_policy: waiting for an asynchronous operation
    """

    def __init__(
        self,
        cloud: ExoscaleCloud,
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT,
        find_server_policy: RetryPolicy = RetryPolicy(tries=3, delay=5),
        stable_policy: RetryPolicy = RetryPolicy(tries=10, delay=5),
        operation_policy: RetryPolicy = RetryPolicy(tries=60, delay=5),
    ):
        super().__init__(cloud)
        self.credentials = cloud.exoscale
        self.session = session if session is not None else new_session()
        self.timeout = timeout
        self.find_server_policy = find_server_policy
        self.stable_policy = stable_policy
        self.operation_policy = operation_policy

    @property
    def endpoint(self) -> str:
        creds = self.credentials
        return creds.compute_endpoint or f"https://api-{creds.zone}.exoscale.com/v2"

    def initialize_client(self) -> None:
        """Configure request signing and check that the zone exists"""
        self.session.auth = ExoscaleV2Auth(self.credentials.api_key, self.credentials.api_secret)
        self._client = JsonClient(PROVIDER, self.endpoint, self.session, self.timeout)

        zones = self._client.get("zone").get("zones", [])
        if not any(zone.get("name") == self.credentials.zone for zone in zones):
            raise BackendOperationError(f"zone {self.credentials.zone!r} not found", provider=PROVIDER)

    # ==================== Lookups ====================

    def find_template_id(self, name: str) -> str:
        for visibility in ("private", "public"):
            templates = self._client.get("template", params={"visibility": visibility}).get("templates", [])
            for template in templates:
                if template.get("name") == name:
                    return template["id"]
        raise ResourceNotFound(f"didn't find template {name!r}", provider=PROVIDER)

    def find_instance_type_id(self, flavor_name: str) -> str:
        wanted = split_instance_type(flavor_name)
        for instance_type in self._client.get("instance-type").get("instance-types", []):
            if instance_type.get("family") == wanted["family"] and instance_type.get("size") == wanted["size"]:
                return instance_type["id"]
        raise ResourceNotFound(f"didn't find instance type {flavor_name!r}", provider=PROVIDER)

    def find_private_network_id(self, name: str) -> str:
        networks = self._client.get("private-network").get("private-networks", [])
        return _first_named(networks, name, "private network")["id"]

    def find_instance(self, name: str) -> Dict[str, Any]:
        instances = self._client.get("instance").get("instances", [])
        return _first_named(instances, name, "instance")

    def wait_operation(self, ctx: RunContext, operation: Dict[str, Any]) -> Optional[str]:
        """
        Poll an asynchronous operation until it settles.

        Returns:
            id of the resource the operation refers to
        """
        operation_id = operation["id"]

        def settled() -> Dict[str, Any]:
            current = self._client.get(f"operation/{operation_id}")
            state = current.get("state")
            if state == "pending":
                raise NotReady(f"operation {operation_id} is pending", value=current)
            if state != "success":
                reason = current.get("message") or current.get("reason") or state
                raise BackendOperationError(f"operation {operation_id} ended with {state}: {reason}", provider=PROVIDER)
            return current

        if operation.get("state") == "success":
            done = operation
        else:
            done = try_do(
                settled,
                self.operation_policy.tries,
                self.operation_policy.delay,
                ctx=ctx,
                retry_on=(NotReady,),
            )
        return (done.get("reference") or {}).get("id")

    # ==================== Mutations ====================

    def create(self, ctx: RunContext, host: Host, cloud: Cloud) -> None:
        log = ctx.log
        template_id = self.find_template_id(host.image_name)
        instance_type_id = self.find_instance_type_id(host.flavor_name)
        network_id = self.find_private_network_id(cloud.network.name)
        user_data = render_exoscale_cloud_config(host, cloud)

        ctx.check()
        body = {
            "name": host.name,
            "instance-type": {"id": instance_type_id},
            "template": {"id": template_id},
            "disk-size": host.disk_size,
            "user-data": base64.b64encode(user_data.encode()).decode(),
            "public-ip-assignment": "inet4",
            "auto-start": True,
        }
        instance_id = self.wait_operation(ctx, self._client.post("instance", json=body))
        if not instance_id:
            raise BackendOperationError(f"creating {host.name} returned no instance", provider=PROVIDER)
        log.info(f"spawned instance {instance_id}")

        attach = self._client.put(
            f"private-network/{network_id}:attach",
            json={"instance": {"id": instance_id}},
        )
        self.wait_operation(ctx, attach)
        log.info(f"instance {host.name} attached to {cloud.network.name}")

    def delete(self, ctx: RunContext, name: str) -> None:
        log = ctx.log
        log.warning(f"deleting instance {name}")

        try:
            instance = try_do(
                lambda: self.find_instance(name),
                self.find_server_policy.tries,
                self.find_server_policy.delay,
                ctx=ctx,
                retry_on=(ResourceNotFound,),
            )
        except PollExhausted as e:
            if isinstance(e.last_error, ResourceNotFound):
                log.warning(f"instance {name} does not exist, nothing to delete")
                return
            raise
        instance_id = instance["id"]

        def stable_state() -> str:
            state = self._client.get(f"instance/{instance_id}").get("state")
            if state in GONE_STATES or state in STABLE_STATES:
                return state
            raise NotReady(f"instance state is {state}", value=state)

        try:
            state = try_do(
                stable_state,
                self.stable_policy.tries,
                self.stable_policy.delay,
                ctx=ctx,
                retry_on=(NotReady,),
            )
        except ResourceNotFound:
            state = "destroyed"
        if state in GONE_STATES:
            log.warning(f"instance {name} is already {state}")
            return

        try:
            operation = self._client.delete(f"instance/{instance_id}")
        except ResourceNotFound:
            return
        self.wait_operation(ctx, operation)
        log.warning(f"deleted instance {name} ({instance_id})")
