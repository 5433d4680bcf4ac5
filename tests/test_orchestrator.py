import threading
import time
from typing import List

import pytest

from cloud_burster.cloud import BackendFactory, CloudBackend
from cloud_burster.configs import CloudType
from cloud_burster.errors import BackendDispatchError, BackendOperationError, HostNotFound, ProvisioningFailed
from cloud_burster.orchestrator import Operation, ProvisioningOrchestrator, TaskState
from cloud_burster.utils.context import RunContext


class _FakeBackend(CloudBackend):
    def __init__(self, cloud, fail_on=(), started=None, release=None):
        super().__init__(cloud)
        self.fail_on = set(fail_on)
        self.created: List[str] = []
        self.deleted: List[str] = []
        self.initialized = 0
        self._lock = threading.Lock()
        self._started = started
        self._release = release

    def initialize_client(self):
        self.initialized += 1

    def create(self, ctx, host, cloud):
        if self._started is not None:
            self._started.set()
        if self._release is not None:
            while not ctx.wait(0.01):
                if self._release.is_set():
                    break
            ctx.check()
        if host.name in self.fail_on:
            raise BackendOperationError(f"quota exceeded for {host.name}", provider="fake")
        with self._lock:
            self.created.append(host.name)

    def delete(self, ctx, name):
        # Absent machines count as deleted
        with self._lock:
            self.deleted.append(name)


def _factory(backends: dict, **kwargs):
    def build(cloud):
        backend = _FakeBackend(cloud, **kwargs)
        backends[cloud.type] = backend
        return backend

    return BackendFactory({t.value: build for t in CloudType})


def test_create_all_succeed(config):
    backends = {}
    orchestrator = ProvisioningOrchestrator(config, factory=_factory(backends))

    hostnames = ["cn1", "cn2", "gpu1", "login1"]
    result = orchestrator.create(hostnames, RunContext.background())

    assert result.ok
    assert result.operation is Operation.CREATE
    assert [o.hostname for o in result.outcomes] == hostnames
    assert all(o.state is TaskState.READY for o in result.outcomes)
    assert sorted(backends["openstack"].created) == ["cn1.example.com", "cn2.example.com", "login1.example.com"]
    assert backends["exoscale"].created == ["gpu1.example.com"]
    result.raise_for_failures()


def test_backend_is_built_once_per_credential_set(config):
    backends = {}
    orchestrator = ProvisioningOrchestrator(config, factory=_factory(backends))
    orchestrator.create([f"cn{i}" for i in range(1, 6)], RunContext.background())
    assert backends["openstack"].initialized == 1


def test_one_failure_does_not_stop_the_others(config):
    backends = {}
    factory = _factory(backends, fail_on={"cn3.example.com"})
    orchestrator = ProvisioningOrchestrator(config, factory=factory)

    hostnames = [f"cn{i}" for i in range(1, 6)]
    result = orchestrator.create(hostnames, RunContext.background())

    assert not result.ok
    assert len(result.outcomes) == 5
    assert len(backends["openstack"].created) == 4
    assert [o.hostname for o in result.failures] == ["cn3"]
    failure = result.failures[0]
    assert failure.state is TaskState.FAILED
    assert isinstance(failure.error, BackendOperationError)
    assert all(o.state in (TaskState.READY, TaskState.FAILED) for o in result.outcomes)

    with pytest.raises(ProvisioningFailed) as exc_info:
        result.raise_for_failures()
    assert "cn3" in str(exc_info.value)


def test_unknown_hostname_fails_only_its_task(config):
    orchestrator = ProvisioningOrchestrator(config, factory=_factory({}))
    result = orchestrator.create(["cn1", "nope"], RunContext.background())

    assert result.outcomes[0].ok
    assert result.outcomes[1].state is TaskState.FAILED
    assert isinstance(result.outcomes[1].error, HostNotFound)


def test_unregistered_cloud_type_fails_dispatch(config):
    orchestrator = ProvisioningOrchestrator(config, factory=BackendFactory({}))
    result = orchestrator.create(["cn1"], RunContext.background())
    assert isinstance(result.outcomes[0].error, BackendDispatchError)


def test_delete_twice_succeeds_twice(config):
    backends = {}
    orchestrator = ProvisioningOrchestrator(config, factory=_factory(backends))
    ctx = RunContext.background()

    assert orchestrator.delete(["cn1"], ctx).ok
    second = orchestrator.delete(["cn1"], ctx)
    assert second.ok
    assert second.outcomes[0].state is TaskState.DELETED
    assert backends["openstack"].deleted == ["cn1.example.com", "cn1.example.com"]


def test_search_resolves_without_backends(config):
    orchestrator = ProvisioningOrchestrator(config, factory=BackendFactory({}))
    result = orchestrator.search(["cn4", "gpu2"], RunContext.background())

    assert result.ok
    assert [o.state for o in result.outcomes] == [TaskState.FOUND, TaskState.FOUND]
    assert result.outcomes[0].host.ip == "172.20.1.4"
    assert result.outcomes[1].cloud.type == "exoscale"


def test_empty_request(config):
    result = ProvisioningOrchestrator(config, factory=_factory({})).create([], RunContext.background())
    assert result.ok
    assert result.outcomes == []


def test_cancelled_before_dispatch(config):
    ctx = RunContext.background()
    ctx.cancel()
    result = ProvisioningOrchestrator(config, factory=_factory({})).create(["cn1", "cn2"], ctx)

    assert not result.ok
    assert all(o.state is TaskState.CANCELLED for o in result.outcomes)


def test_cancel_reaches_in_flight_tasks(config):
    started = threading.Event()
    release = threading.Event()
    orchestrator = ProvisioningOrchestrator(config, factory=_factory({}, started=started, release=release))
    ctx = RunContext.background()

    def cancel_when_started():
        started.wait(5)
        ctx.cancel()

    threading.Thread(target=cancel_when_started).start()
    result = orchestrator.create(["cn1", "cn2", "cn3"], ctx)

    assert not result.ok
    assert all(o.state is TaskState.CANCELLED for o in result.outcomes)


def test_slow_failing_backend_does_not_delay_other_clouds(config):
    def broken_openstack(cloud):
        time.sleep(0.3)
        raise BackendOperationError("identity endpoint unreachable", provider="openstack")

    backends = {}
    factory = _factory(backends)
    factory.register("openstack", broken_openstack)
    orchestrator = ProvisioningOrchestrator(config, factory=factory)

    result = orchestrator.create(["cn1", "cn2", "cn3", "gpu1"], RunContext.background())

    outcomes = {o.hostname: o for o in result.outcomes}
    assert outcomes["gpu1"].state is TaskState.READY
    assert outcomes["gpu1"].elapsed < 0.25
    assert backends["exoscale"].created == ["gpu1.example.com"]
    for name in ("cn1", "cn2", "cn3"):
        assert outcomes[name].state is TaskState.FAILED
        assert isinstance(outcomes[name].error, BackendOperationError)
        assert outcomes[name].elapsed < 1.5
