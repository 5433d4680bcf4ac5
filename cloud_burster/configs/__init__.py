"""
Configuration Module

Typed configuration models, YAML loading and validation.
"""

from .types import (
    API_VERSION,
    CloudType,
    HostTemplate,
    Host,
    GroupHost,
    Network,
    GitOpts,
    PostScriptsOpts,
    OpenstackCredentials,
    ExoscaleCredentials,
    ShadowCredentials,
    CloudBase,
    OpenstackCloud,
    ExoscaleCloud,
    ShadowCloud,
    Cloud,
    Config,
)
from .validation import ConfigValidator
from .loader import ConfigLoader, DEFAULT_CONFIG_PATH

__all__ = [
    "API_VERSION",
    "CloudType",
    "HostTemplate",
    "Host",
    "GroupHost",
    "Network",
    "GitOpts",
    "PostScriptsOpts",
    "OpenstackCredentials",
    "ExoscaleCredentials",
    "ShadowCredentials",
    "CloudBase",
    "OpenstackCloud",
    "ExoscaleCloud",
    "ShadowCloud",
    "Cloud",
    "Config",
    "ConfigValidator",
    "ConfigLoader",
    "DEFAULT_CONFIG_PATH",
]
