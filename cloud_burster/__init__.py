"""
cloud-burster

Burst compute capacity into OpenStack, Exoscale and Shadow clouds from a
declarative YAML inventory.

Modules:
- configs: Configuration types, loading and validation
- inventory: Hostname patterns, address materialization and resolution
- cloud: Cloud backend abstraction and implementations
- orchestrator: Concurrent create/delete/search over many hostnames
- utils: Retry, run context, logging and SSH helpers
"""

from .configs import Config, ConfigLoader, ConfigValidator
from .inventory.resolver import InventoryResolver
from .cloud import BackendFactory, CloudBackend
from .orchestrator import (
    HostOutcome,
    Operation,
    OrchestrationResult,
    ProvisioningOrchestrator,
    TaskState,
)
from .utils.context import RunContext

__version__ = "0.1.0"

__all__ = [
    "Config",
    "ConfigLoader",
    "ConfigValidator",
    "InventoryResolver",
    "BackendFactory",
    "CloudBackend",
    "HostOutcome",
    "Operation",
    "OrchestrationResult",
    "ProvisioningOrchestrator",
    "TaskState",
    "RunContext",
]
