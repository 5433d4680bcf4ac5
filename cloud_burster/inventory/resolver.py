"""
Inventory Resolution

Maps a hostname back to its declared host definition and owning cloud.
"""

from typing import Iterator, Optional, Sequence, Tuple

from loguru import logger

from ..configs.types import Cloud, Config, Host
from ..errors import HostNotFound, InsufficientAddressSpace


class InventoryResolver:
    """
    Resolves hostnames against a configuration.

    Clouds are searched in declaration order. Inside a cloud the literal
    hosts are searched before the group hosts, and the first match wins.
    Group hosts are materialized again on every call.
    """

    def __init__(self, config: Config, suffixes: Optional[Sequence[str]] = None):
        self.config = config
        self.suffixes = list(config.suffix_search if suffixes is None else suffixes)

    def resolve(self, hostname: str) -> Tuple[Host, Cloud]:
        """
        Find the host named `hostname`.

        Raises:
            HostNotFound: no literal or generated host has this name
            InsufficientAddressSpace: a group host scanned on the way is invalid
        """
        for cloud in self.config.clouds:
            for host in cloud.hosts:
                if host.name == hostname:
                    return host, cloud

            for group in cloud.groups_host:
                try:
                    hosts = group.generate_hosts()
                except InsufficientAddressSpace as e:
                    logger.error(f"group {group.name_pattern} cannot be materialized: {e}")
                    raise
                for host in hosts:
                    if host.name == hostname:
                        return host, cloud

        raise HostNotFound(hostname)

    def resolve_with_suffixes(self, hostname: str) -> Tuple[Host, Cloud]:
        """
        Try `hostname + suffix` for every configured suffix, then the bare
        hostname.
        """
        for suffix in self.suffixes:
            try:
                return self.resolve(hostname + suffix)
            except HostNotFound:
                continue
        return self.resolve(hostname)

    def iter_hosts(self) -> Iterator[Tuple[Host, Cloud]]:
        """Every literal and generated host, in resolution order"""
        for cloud in self.config.clouds:
            for host in cloud.hosts:
                yield host, cloud
            for group in cloud.groups_host:
                for host in group.generate_hosts():
                    yield host, cloud

    def render_hosts_file(self) -> str:
        """Hosts file ("<ip> <name>" per line) for a DNS server"""
        lines = [f"{host.ip} {host.name}" for host, _ in self.iter_hosts() if host.ip]
        return "".join(f"{line}\n" for line in lines)
