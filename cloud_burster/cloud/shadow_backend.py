"""
Shadow Backend

Talks to the Shadow REST API. A machine is a block device plus a VM
attached to it; once the VM has a public address the bootstrap script is
run over SSH.

Shadow has no machine names, so every VM is requested with a launch script
carrying a hostname marker and is located through it on delete.
"""

from typing import Any, Dict, List, Optional

import requests

from ..configs import Cloud, Host, ShadowCloud
from ..errors import BackendOperationError, PollExhausted, ResourceNotFound
from ..utils.context import RunContext
from ..utils.remote import RemoteExecutor
from ..utils.retry import NotReady, RetryPolicy, try_do
from .base import CloudBackend
from .cloud_config import hostname_from_script, render_shadow_bootstrap, render_shadow_launch_script
from .http import DEFAULT_TIMEOUT, JsonClient, new_session

PROVIDER = "shadow"
API_URL = "https://api.shdw-ws.fr/api"

DEFAULT_RAM = 112
DEFAULT_GPU = 1


class ShadowBackend(CloudBackend):
    """
    Shadow implementation of CloudBackend.

    Args:
        cloud: cloud holding the credentials
        session: requests session, tests inject fakes here
        executor: runs the bootstrap script, built from the configured key by default
        block_device_policy: waiting for a requested block device to be listed
        public_ip_policy: waiting for a VM to get its public address
        ssh_policy: connecting to a VM whose SSH server may not be up yet
        find_server_policy: locating a VM before deleting it
        started_policy: waiting for a VM to be started before killing it
        release_policy: releasing the block devices of a killed VM
    """

    def __init__(
        self,
        cloud: ShadowCloud,
        session: Optional[requests.Session] = None,
        executor: Optional[RemoteExecutor] = None,
        timeout: float = DEFAULT_TIMEOUT,
        api_url: str = API_URL,
        block_device_policy: RetryPolicy = RetryPolicy(tries=10, delay=5),
        public_ip_policy: RetryPolicy = RetryPolicy(tries=10, delay=10),
        ssh_policy: RetryPolicy = RetryPolicy(tries=10, delay=10),
        find_server_policy: RetryPolicy = RetryPolicy(tries=3, delay=5),
        started_policy: RetryPolicy = RetryPolicy(tries=10, delay=10),
        release_policy: RetryPolicy = RetryPolicy(tries=10, delay=10),
    ):
        super().__init__(cloud)
        self.credentials = cloud.shadow
        self.session = session if session is not None else new_session()
        self.executor = executor
        self.timeout = timeout
        self.api_url = api_url
        self.block_device_policy = block_device_policy
        self.public_ip_policy = public_ip_policy
        self.ssh_policy = ssh_policy
        self.find_server_policy = find_server_policy
        self.started_policy = started_policy
        self.release_policy = release_policy

    def initialize_client(self) -> None:
        self.session.auth = (self.credentials.username, self.credentials.password)
        self._client = JsonClient(PROVIDER, self.api_url, self.session, self.timeout)
        if self.executor is None:
            self.executor = RemoteExecutor(self.credentials.ssh_key, ssh_user="root")

    # ==================== API calls ====================

    def request_block_device(self, size_gib: int) -> str:
        body = {
            "dry_run": False,
            "block_device": {"datacenter_label": self.credentials.zone, "size_gib": size_gib},
        }
        return self._client.post("block_device/request", json=body)["block_device"]["uuid"]

    def list_block_devices(self, uuid: str) -> List[Dict[str, Any]]:
        return self._client.post("block_device/list", json={"filters": {"uuid": uuid}}).get("block_devices") or []

    def release_block_device(self, uuid: str) -> None:
        try:
            self._client.post("block_device/release", json={"dry_run": False, "block_device": {"uuid": uuid}})
        except ResourceNotFound:
            pass

    def request_vm(self, host: Host, block_device_uuid: str) -> str:
        body = {
            "dry_run": False,
            "vm": {
                "sku": host.flavor_name,
                "ram": host.ram if host.ram is not None else DEFAULT_RAM,
                "gpu": host.gpu if host.gpu is not None else DEFAULT_GPU,
                "image": host.image_name,
                "block_devices": [{"uuid": block_device_uuid}],
                "launch_bash_script": render_shadow_launch_script(host.name),
            },
        }
        return self._client.post("vm/request", json=body)["vm"]["uuid"]

    def list_vms(self, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        return self._client.post("vm/list", json={"filters": filters or {}}).get("vms") or []

    def get_vm(self, uuid: str) -> Dict[str, Any]:
        vms = self.list_vms({"uuid": uuid})
        if not vms:
            raise ResourceNotFound(f"didn't find vm {uuid}", provider=PROVIDER)
        return vms[0]

    def find_vm(self, name: str) -> Dict[str, Any]:
        """VM tagged with hostname `name` (or whose uuid is `name`), live ones first"""
        matches = [
            vm for vm in self.list_vms()
            if hostname_from_script(vm.get("launch_bash_script")) == name or vm.get("uuid") == name
        ]
        if not matches:
            raise ResourceNotFound(f"didn't find vm {name!r}", provider=PROVIDER)
        live = [vm for vm in matches if not vm.get("kill_requested_on")]
        return (live or matches)[0]

    def kill_vm(self, uuid: str) -> None:
        self._client.post("vm/kill", json={"dry_run": False, "vm": {"uuid": uuid}})

    # ==================== Lifecycle ====================

    def create(self, ctx: RunContext, host: Host, cloud: Cloud) -> None:
        log = ctx.log
        script = render_shadow_bootstrap(host, cloud)

        block_device_uuid = self.request_block_device(host.disk_size)
        log.debug(f"requested block device {block_device_uuid}")

        def block_device_listed() -> Dict[str, Any]:
            devices = self.list_block_devices(block_device_uuid)
            if not devices:
                raise NotReady(f"block device {block_device_uuid} is not listed yet")
            return devices[0]

        try_do(
            block_device_listed,
            self.block_device_policy.tries,
            self.block_device_policy.delay,
            ctx=ctx,
            retry_on=(NotReady,),
        )

        try:
            vm_uuid = self.request_vm(host, block_device_uuid)
        except BackendOperationError:
            log.error(f"failed to request a vm, releasing block device {block_device_uuid}")
            self.release_block_device(block_device_uuid)
            raise
        log.info(f"requested vm {vm_uuid}, waiting for its public address")

        def has_public_address() -> Dict[str, Any]:
            vm = self.get_vm(vm_uuid)
            if not vm.get("vm_public_ipv4") or not vm.get("vm_public_sshport"):
                raise NotReady("vm has not been assigned an address yet", value=vm)
            return vm

        vm = try_do(
            has_public_address,
            self.public_ip_policy.tries,
            self.public_ip_policy.delay,
            ctx=ctx,
            retry_on=(NotReady, ResourceNotFound),
        )
        address = vm["vm_public_ipv4"]
        port = int(vm["vm_public_sshport"])
        log.info(f"vm {vm_uuid} reachable at {address}:{port}, running bootstrap")

        result = try_do(
            lambda: self.executor.run_script(address, script, port=port, args=["compute"], ctx=ctx),
            self.ssh_policy.tries,
            self.ssh_policy.delay,
            ctx=ctx,
            retry_on=(ConnectionError,),
        )
        if not result.success:
            log.error(f"bootstrap failed with code {result.return_code}: {result.stderr[-2000:]}")
            raise BackendOperationError(
                f"bootstrap of {host.name} exited with code {result.return_code}", provider=PROVIDER
            )

        log.info(f"spawned vm {vm_uuid} for {host.name}")

    def delete(self, ctx: RunContext, name: str) -> None:
        log = ctx.log
        log.warning(f"deleting vm {name}")

        try:
            vm = try_do(
                lambda: self.find_vm(name),
                self.find_server_policy.tries,
                self.find_server_policy.delay,
                ctx=ctx,
                retry_on=(ResourceNotFound,),
            )
        except PollExhausted as e:
            if isinstance(e.last_error, ResourceNotFound):
                log.warning(f"vm {name} does not exist, nothing to delete")
                return
            raise
        vm_uuid = vm["uuid"]

        def started() -> Dict[str, Any]:
            current = self.get_vm(vm_uuid)
            if current.get("kill_requested_on") or current.get("started_on"):
                return current
            raise NotReady(f"vm {vm_uuid} is not started yet ({current.get('status_str')})", value=current)

        vm = try_do(
            started,
            self.started_policy.tries,
            self.started_policy.delay,
            ctx=ctx,
            retry_on=(NotReady,),
        )
        if vm.get("kill_requested_on"):
            log.warning(f"vm {vm_uuid} is already being killed")
            return

        self.kill_vm(vm_uuid)
        log.info(f"killed vm {vm_uuid}, releasing its block devices")

        for device in vm.get("block_devices") or []:
            try_do(
                lambda uuid=device["uuid"]: self.release_block_device(uuid),
                self.release_policy.tries,
                self.release_policy.delay,
                ctx=ctx,
                retry_on=(BackendOperationError,),
            )

        log.warning(f"deleted vm {name} ({vm_uuid})")
