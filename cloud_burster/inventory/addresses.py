import ipaddress
from itertools import islice
from typing import List, Sequence, Tuple

from ..errors import InsufficientAddressSpace


def _network(cidr: str):
    return ipaddress.ip_network(cidr, strict=False)


def usable_address_count(cidr: str) -> int:
    """Number of host addresses in a block, network and broadcast excluded"""
    network = _network(cidr)
    if network.num_addresses <= 2:
        # /31, /32 (and IPv6 equivalents) have no network/broadcast address
        return sum(1 for _ in network.hosts())
    if network.version == 4:
        return network.num_addresses - 2
    # IPv6 has no broadcast; hosts() only skips the subnet-router anycast address
    return network.num_addresses - 1


def cidr_hosts(cidr: str) -> List[str]:
    """All usable addresses of a CIDR block in ascending order"""
    return [str(ip) for ip in _network(cidr).hosts()]


def materialize(names: Sequence[str], cidr: str, offset: int = 0) -> List[Tuple[str, str]]:
    """
    Pair each name with an address of the block, positionally.

    The i-th name receives the (offset + i)-th usable address.

    Raises:
        InsufficientAddressSpace: the block cannot hold all the names
    """
    available = usable_address_count(cidr)
    if len(names) + offset > available:
        raise InsufficientAddressSpace(cidr, len(names), offset, available)

    addresses = islice(_network(cidr).hosts(), offset, offset + len(names))
    return [(name, str(ip)) for name, ip in zip(names, addresses)]
