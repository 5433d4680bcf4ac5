"""
Configuration Type Definitions

All configuration classes, parsed from the camelCase YAML file into
immutable pydantic models.
"""

import ipaddress
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from ..inventory.addresses import materialize
from ..inventory.patterns import expand_hostnames

API_VERSION = "cloud-burster.squarefactory.io/v1alpha1"


class CloudType(str, Enum):
    """Supported cloud backends"""
    OPENSTACK = "openstack"
    EXOSCALE = "exoscale"
    SHADOW = "shadow"


def _check_ip(value: str) -> str:
    ipaddress.ip_address(value)
    return value


def _check_cidr(value: str) -> str:
    ipaddress.ip_network(value, strict=False)
    return value


class _Model(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )


class HostTemplate(_Model):
    """Everything a host needs except its name and address"""
    disk_size: int = Field(gt=0)
    flavor_name: str = Field(min_length=1)
    image_name: str = Field(min_length=1)
    ram: Optional[int] = Field(default=None, ge=0)
    gpu: Optional[int] = Field(default=None, ge=0)


class Host(HostTemplate):
    """A single machine of the inventory"""
    name: str = Field(min_length=1)
    ip: Optional[str] = None

    @field_validator("ip")
    @classmethod
    def _valid_ip(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        return _check_ip(value)


class GroupHost(_Model):
    """Template generating many hosts from a name pattern and an address block"""
    name_pattern: str = Field(min_length=1)
    ip_cidr: str = Field(alias="ipCIDR")
    ip_offset: int = Field(default=0, ge=0)
    template: HostTemplate

    @field_validator("ip_cidr")
    @classmethod
    def _valid_cidr(cls, value: str) -> str:
        return _check_cidr(value)

    def generate_hosts(self) -> List[Host]:
        """
        Materialize the hosts of the group.

        Raises:
            InsufficientAddressSpace: the CIDR cannot hold every generated name
        """
        names = expand_hostnames(self.name_pattern)
        pairs = materialize(names, self.ip_cidr, self.ip_offset)
        template = self.template.model_dump()
        return [Host(name=name, ip=ip, **template) for name, ip in pairs]


class Network(_Model):
    """Network the hosts of a cloud are attached to"""
    name: str = Field(min_length=1)
    subnet_cidr: str = Field(alias="subnetCIDR")
    dns: str
    gateway: str
    search: Optional[str] = None

    @field_validator("subnet_cidr")
    @classmethod
    def _valid_cidr(cls, value: str) -> str:
        return _check_cidr(value)

    @field_validator("dns", "gateway")
    @classmethod
    def _valid_ip(cls, value: str) -> str:
        return _check_ip(value)

    @property
    def prefix_length(self) -> int:
        return ipaddress.ip_network(self.subnet_cidr, strict=False).prefixlen


class GitOpts(_Model):
    # Base64 encoded private deploy key
    key: Optional[str] = None
    url: Optional[str] = None
    ref: Optional[str] = None


class PostScriptsOpts(_Model):
    git: GitOpts = Field(default_factory=GitOpts)


# ==================== Cloud credentials ====================

class OpenstackCredentials(_Model):
    identity_endpoint: str = Field(min_length=1)
    user: str = ""
    password: str = ""
    tenant_id: str = Field(default="", alias="tenantID")
    tenant_name: str = ""
    domain_id: str = Field(default="default", alias="domainID")
    region: str = ""


class ExoscaleCredentials(_Model):
    api_key: str = Field(min_length=1)
    api_secret: str = Field(min_length=1)
    zone: str = Field(min_length=1)
    # Defaults to https://api-<zone>.exoscale.com/v2
    compute_endpoint: Optional[str] = None


class ShadowCredentials(_Model):
    username: str = Field(min_length=1)
    password: str
    zone: str = Field(min_length=1)
    # Base64 encoded private key used to run the post scripts over SSH
    ssh_key: str = Field(alias="sshkey")


# ==================== Clouds ====================

class CloudBase(_Model):
    """Fields shared by every cloud type"""
    network: Network
    hosts: List[Host] = Field(default_factory=list)
    groups_host: List[GroupHost] = Field(default_factory=list)
    authorized_keys: List[str] = Field(default_factory=list)
    post_scripts: PostScriptsOpts = Field(default_factory=PostScriptsOpts)
    custom_config: Dict[str, Any] = Field(default_factory=dict)


class OpenstackCloud(CloudBase):
    type: Literal["openstack"]
    openstack: OpenstackCredentials

    @property
    def backend_key(self) -> str:
        creds = self.openstack
        return f"openstack:{creds.identity_endpoint}:{creds.region}:{creds.user}:{creds.tenant_id or creds.tenant_name}"


class ExoscaleCloud(CloudBase):
    type: Literal["exoscale"]
    exoscale: ExoscaleCredentials

    @property
    def backend_key(self) -> str:
        return f"exoscale:{self.exoscale.zone}:{self.exoscale.api_key}"


class ShadowCloud(CloudBase):
    type: Literal["shadow"]
    shadow: ShadowCredentials

    @property
    def backend_key(self) -> str:
        return f"shadow:{self.shadow.zone}:{self.shadow.username}"


Cloud = Annotated[
    Union[OpenstackCloud, ExoscaleCloud, ShadowCloud],
    Field(discriminator="type"),
]


class Config(_Model):
    """Root of the configuration file"""
    api_version: str
    clouds: List[Cloud] = Field(default_factory=list)
    # Suffixes tried, in order, before the bare hostname when resolving
    suffix_search: List[str] = Field(default_factory=list)

    @field_validator("api_version")
    @classmethod
    def _equal_api_version(cls, value: str) -> str:
        if value != API_VERSION:
            raise ValueError(f"apiVersion must be {API_VERSION!r}")
        return value
