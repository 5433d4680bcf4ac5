"""
Inventory Module

Hostname pattern expansion and address materialization. The resolver lives
in `cloud_burster.inventory.resolver` since it depends on the config types.
"""

from .patterns import (
    split_comma_outside_of_brackets,
    expand_brackets,
    expand_hostnames,
    parse_range_list,
)
from .addresses import cidr_hosts, materialize, usable_address_count

__all__ = [
    "split_comma_outside_of_brackets",
    "expand_brackets",
    "expand_hostnames",
    "parse_range_list",
    "cidr_hosts",
    "materialize",
    "usable_address_count",
]
