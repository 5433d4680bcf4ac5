"""
Cloud Backend Abstract Base Class

Defines the interface that all cloud backends must implement.
This keeps provider-specific logic separate from the orchestration.
"""

from abc import ABC, abstractmethod
from typing import Any

from ..configs import Cloud, Host
from ..utils.context import RunContext


class CloudBackend(ABC):
    """
    Abstract base class for cloud backends.

    One backend instance exists per credential set and is shared by every
    task targeting it, so implementations must be safe to call from several
    threads at once.
    """

    def __init__(self, cloud: Cloud):
        self.cloud = cloud
        self._client: Any = None

    @abstractmethod
    def initialize_client(self) -> None:
        """Initialize the provider client, called once by the factory"""
        pass

    @abstractmethod
    def create(self, ctx: RunContext, host: Host, cloud: Cloud) -> None:
        """
        Create the machine for `host` and block until it is usable.

        Args:
            ctx: cancellation context, also carries the task logger
            host: resolved host definition
            cloud: the cloud the host was resolved in (network, keys, scripts)

        Raises:
            BackendOperationError: the provider reported an error
            PollExhausted: the machine did not become ready in time
            OperationCancelled: the context was cancelled
        """
        pass

    @abstractmethod
    def delete(self, ctx: RunContext, name: str) -> None:
        """
        Delete the machine called `name`.

        A machine that does not exist counts as deleted, so calling this
        twice succeeds twice.
        """
        pass
