"""
Error Types

Every error raised by cloud-burster derives from CloudBursterError so the CLI
can report them uniformly.
"""

from dataclasses import dataclass
from typing import Any, List, Optional


class CloudBursterError(Exception):
    """Base class for all cloud-burster errors"""


@dataclass(frozen=True)
class Violation:
    """A single field-level configuration problem"""
    location: str
    message: str

    def __str__(self) -> str:
        return f"{self.location}: {self.message}"


class ConfigError(CloudBursterError):
    """The configuration file could not be loaded or is invalid"""

    def __init__(self, message: str, violations: Optional[List[Violation]] = None):
        self.violations = list(violations or [])
        if self.violations:
            details = "; ".join(str(v) for v in self.violations)
            message = f"{message}: {details}"
        super().__init__(message)


class InsufficientAddressSpace(CloudBursterError):
    """Not enough usable addresses in a CIDR block for the requested names"""

    def __init__(self, cidr: str, requested: int, offset: int, available: int):
        self.cidr = cidr
        self.requested = requested
        self.offset = offset
        self.available = available
        super().__init__(
            f"not enough IP addresses in CIDR {cidr}: "
            f"{requested} names with offset {offset}, {available} usable addresses"
        )


class HostNotFound(CloudBursterError):
    """No literal or generated host matches the hostname"""

    def __init__(self, hostname: str):
        self.hostname = hostname
        super().__init__(f"host not found: {hostname}")


class BackendDispatchError(CloudBursterError):
    """No backend implementation is registered for a cloud type"""

    def __init__(self, cloud_type: str):
        self.cloud_type = cloud_type
        super().__init__(f"no cloud backend associated with type {cloud_type!r}")


class BackendOperationError(CloudBursterError):
    """A cloud provider reported an error"""

    def __init__(self, message: str, provider: str = "", status_code: Optional[int] = None):
        self.provider = provider
        self.status_code = status_code
        prefix = f"[{provider}] " if provider else ""
        super().__init__(f"{prefix}{message}")


class ResourceNotFound(BackendOperationError):
    """The provider does not know the requested resource"""


class PollExhausted(CloudBursterError):
    """A bounded retry loop ran out of attempts"""

    def __init__(self, attempts: int, last_error: Optional[BaseException], last_result: Any = None):
        self.attempts = attempts
        self.last_error = last_error
        self.last_result = last_result
        super().__init__(f"gave up after {attempts} attempts: {last_error}")


class OperationCancelled(CloudBursterError):
    """The run context was cancelled or its deadline passed"""


class ProvisioningFailed(CloudBursterError):
    """At least one hostname of a command failed"""

    def __init__(self, result: Any):
        self.result = result
        failures = result.failures
        details = ", ".join(f"{o.hostname}: {o.error}" for o in failures)
        super().__init__(
            f"{result.operation.value} failed for {len(failures)}/{len(result.outcomes)} hosts ({details})"
        )
