"""
Provisioning Orchestrator

Fans a create, delete or search request out over its hostnames, one worker
thread per hostname. A failing hostname never stops the others: every
outcome is collected and reported once all tasks are done.
"""

import time
import traceback
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence

from loguru import logger

from .cloud import BackendFactory
from .configs import Cloud, Config, Host
from .errors import CloudBursterError, OperationCancelled, ProvisioningFailed
from .inventory.resolver import InventoryResolver
from .utils.context import RunContext


class Operation(str, Enum):
    CREATE = "create"
    DELETE = "delete"
    SEARCH = "search"


class TaskState(str, Enum):
    """Lifecycle of one hostname inside a request"""
    REQUESTED = "requested"
    RESOLVING = "resolving"
    DISPATCHED = "dispatched"
    READY = "ready"
    DELETED = "deleted"
    FOUND = "found"
    FAILED = "failed"
    CANCELLED = "cancelled"


SUCCESS_STATES = {TaskState.READY, TaskState.DELETED, TaskState.FOUND}


@dataclass
class HostOutcome:
    """Final state of one hostname"""
    hostname: str
    operation: Operation
    state: TaskState = TaskState.REQUESTED
    host: Optional[Host] = None
    cloud: Optional[Cloud] = None
    error: Optional[BaseException] = None
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return self.state in SUCCESS_STATES


@dataclass
class OrchestrationResult:
    """Outcomes of a request, in the order the hostnames were given"""
    operation: Operation
    outcomes: List[HostOutcome] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(o.ok for o in self.outcomes)

    @property
    def failures(self) -> List[HostOutcome]:
        return [o for o in self.outcomes if not o.ok]

    @property
    def succeeded(self) -> List[HostOutcome]:
        return [o for o in self.outcomes if o.ok]

    def raise_for_failures(self) -> None:
        if not self.ok:
            raise ProvisioningFailed(self)


class ProvisioningOrchestrator:
    """
    Runs create/delete/search requests concurrently.

    Args:
        config: parsed configuration, shared read-only by all tasks
        factory: backend factory, a default one is built when omitted
        resolver: inventory resolver, built from the config when omitted
    """

    def __init__(
        self,
        config: Config,
        factory: Optional[BackendFactory] = None,
        resolver: Optional[InventoryResolver] = None,
    ):
        self.config = config
        self.factory = factory if factory is not None else BackendFactory()
        self.resolver = resolver if resolver is not None else InventoryResolver(config)

    def create(self, hostnames: Sequence[str], ctx: RunContext) -> OrchestrationResult:
        return self._run(Operation.CREATE, hostnames, ctx)

    def delete(self, hostnames: Sequence[str], ctx: RunContext) -> OrchestrationResult:
        return self._run(Operation.DELETE, hostnames, ctx)

    def search(self, hostnames: Sequence[str], ctx: RunContext) -> OrchestrationResult:
        return self._run(Operation.SEARCH, hostnames, ctx)

    def _run(self, operation: Operation, hostnames: Sequence[str], ctx: RunContext) -> OrchestrationResult:
        result = OrchestrationResult(operation=operation)
        if not hostnames:
            return result

        outcomes: Dict[int, HostOutcome] = {}
        ctx.log.info(f"{operation.value} requested for {len(hostnames)} hosts")

        with ThreadPoolExecutor(max_workers=len(hostnames), thread_name_prefix=operation.value) as executor:
            futures = {
                executor.submit(self._run_task, operation, hostname, ctx): (i, hostname)
                for i, hostname in enumerate(hostnames)
            }
            for future in as_completed(futures):
                i, hostname = futures[future]
                try:
                    outcome = future.result()
                except Exception as exc:
                    logger.error(f"{hostname} task crashed: {exc}")
                    logger.error(traceback.format_exc())
                    outcome = HostOutcome(hostname=hostname, operation=operation, state=TaskState.FAILED, error=exc)

                outcomes[i] = outcome
                if outcome.ok:
                    ctx.log.info(f"{hostname}: {outcome.state.value} in {outcome.elapsed:.1f}s")
                else:
                    ctx.log.error(f"{hostname}: {operation.value} {outcome.state.value}: {outcome.error}")

        result.outcomes = [outcomes[i] for i in range(len(hostnames))]
        ctx.log.info(
            f"{operation.value} finished: {len(result.succeeded)} succeeded, {len(result.failures)} failed"
        )
        return result

    def _run_task(self, operation: Operation, hostname: str, ctx: RunContext) -> HostOutcome:
        task_ctx = ctx.bind(hostname=hostname)
        outcome = HostOutcome(hostname=hostname, operation=operation)
        start = time.monotonic()

        try:
            task_ctx.check()
            outcome.state = TaskState.RESOLVING
            host, cloud = self.resolver.resolve_with_suffixes(hostname)
            outcome.host, outcome.cloud = host, cloud
            task_ctx.log.debug(f"resolved to {host.name} ({host.ip}) in a {cloud.type} cloud")

            if operation is Operation.SEARCH:
                outcome.state = TaskState.FOUND
            else:
                backend = self.factory.get_backend(cloud, task_ctx)
                task_ctx.check()
                outcome.state = TaskState.DISPATCHED
                if operation is Operation.CREATE:
                    backend.create(task_ctx, host, cloud)
                    outcome.state = TaskState.READY
                else:
                    backend.delete(task_ctx, host.name)
                    outcome.state = TaskState.DELETED
        except OperationCancelled as e:
            outcome.state = TaskState.CANCELLED
            outcome.error = e
        except CloudBursterError as e:
            outcome.state = TaskState.FAILED
            outcome.error = e
        except Exception as e:
            outcome.state = TaskState.FAILED
            outcome.error = e
            task_ctx.log.error(traceback.format_exc())
        finally:
            outcome.elapsed = time.monotonic() - start

        return outcome
