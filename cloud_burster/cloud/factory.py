"""
Cloud Backend Factory

Creates and manages cloud backend instances.
"""

import threading
from concurrent.futures import Future, wait
from typing import Callable, Dict, Optional

from loguru import logger

from ..configs import Cloud, CloudType
from ..errors import BackendDispatchError
from ..utils.context import RunContext
from .base import CloudBackend

BackendBuilder = Callable[[Cloud], CloudBackend]


def _default_builders() -> Dict[str, BackendBuilder]:
    from .exoscale_backend import ExoscaleBackend
    from .openstack_backend import OpenstackBackend
    from .shadow_backend import ShadowBackend

    return {
        CloudType.OPENSTACK.value: OpenstackBackend,
        CloudType.EXOSCALE.value: ExoscaleBackend,
        CloudType.SHADOW.value: ShadowBackend,
    }


class BackendFactory:
    """
    Factory for creating cloud backend instances.

    Maintains a cache of backends, one per credential set, to avoid repeated
    authentication. Safe to call from the orchestrator worker threads.
    """

    def __init__(self, builders: Optional[Dict[str, BackendBuilder]] = None):
        self._builders: Dict[str, BackendBuilder] = _default_builders() if builders is None else dict(builders)
        self._backends: Dict[str, Future] = {}
        self._lock = threading.Lock()

    def register(self, cloud_type: str, builder: BackendBuilder) -> None:
        """Register (or replace) the implementation used for a cloud type"""
        with self._lock:
            self._builders[cloud_type] = builder

    def get_backend(self, cloud: Cloud, ctx: Optional[RunContext] = None) -> CloudBackend:
        """
        Get or create the backend serving a cloud.

        The first caller for a credential set builds and initializes the
        backend outside the factory lock, later callers for the same set
        wait for it. Callers for other credential sets are never blocked.

        Args:
            cloud: cloud definition from the configuration
            ctx: cancels the wait for a backend being built by another task

        Returns:
            CloudBackend instance, initialized

        Raises:
            BackendDispatchError: no implementation registered for the cloud type
            OperationCancelled: the context was cancelled while waiting
        """
        cache_key = cloud.backend_key

        with self._lock:
            pending = self._backends.get(cache_key)
            if pending is None:
                builder = self._builders.get(cloud.type)
                if builder is None:
                    raise BackendDispatchError(cloud.type)
                pending = Future()
                self._backends[cache_key] = pending
                owner = True
            else:
                owner = False

        if owner:
            return self._build(cache_key, builder, cloud, pending)

        while not pending.done():
            if ctx is not None:
                ctx.check()
            wait([pending], timeout=0.1)
        return pending.result()

    def _build(self, cache_key: str, builder: BackendBuilder, cloud: Cloud, pending: Future) -> CloudBackend:
        try:
            backend = builder(cloud)
            backend.initialize_client()
        except Exception as e:
            # Forget the failed attempt, the next task retries the build
            with self._lock:
                del self._backends[cache_key]
            pending.set_exception(e)
            raise
        logger.debug(f"initialized {cloud.type} backend")
        pending.set_result(backend)
        return backend
