"""
Cloud Module

Provides the cloud backend abstraction and its implementations.
"""

from .base import CloudBackend
from .factory import BackendFactory, BackendBuilder
from .openstack_backend import OpenstackBackend
from .exoscale_backend import ExoscaleBackend
from .shadow_backend import ShadowBackend

__all__ = [
    # Base classes
    "CloudBackend",
    # Implementations
    "OpenstackBackend",
    "ExoscaleBackend",
    "ShadowBackend",
    # Factory
    "BackendFactory",
    "BackendBuilder",
]
