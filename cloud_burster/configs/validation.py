"""
Cross-entity configuration checks that a single field validator cannot do.
"""

from typing import Dict, List, Tuple

from pydantic import ValidationError

from ..errors import InsufficientAddressSpace, Violation
from .types import Config, Host


def violations_from_pydantic(error: ValidationError) -> List[Violation]:
    """Flatten a pydantic error into field-level violations"""
    violations = []
    for item in error.errors():
        location = ""
        for part in item["loc"]:
            if isinstance(part, int):
                location += f"[{part}]"
            else:
                location += f".{part}" if location else str(part)
        violations.append(Violation(location=location or "<root>", message=item["msg"]))
    return violations


class ConfigValidator:
    """
    Checks a parsed configuration as a whole.

    - every group host fits in its address block
    - hostnames are unique across all clouds and groups
    """

    def validate(self, config: Config) -> List[Violation]:
        groups, violations = self._generate_groups(config)
        if violations:
            # Duplicates cannot be computed while a group does not materialize
            return violations
        return self._check_duplicates(config, groups)

    def _generate_groups(self, config: Config) -> Tuple[Dict[Tuple[int, int], List[Host]], List[Violation]]:
        groups: Dict[Tuple[int, int], List[Host]] = {}
        violations = []
        for i, cloud in enumerate(config.clouds):
            for j, group in enumerate(cloud.groups_host):
                try:
                    groups[(i, j)] = group.generate_hosts()
                except InsufficientAddressSpace as e:
                    violations.append(Violation(f"clouds[{i}].groupsHost[{j}]", str(e)))
        return groups, violations

    def _check_duplicates(self, config: Config, groups: Dict[Tuple[int, int], List[Host]]) -> List[Violation]:
        locations: Dict[str, List[str]] = {}
        for i, cloud in enumerate(config.clouds):
            for j, host in enumerate(cloud.hosts):
                locations.setdefault(host.name, []).append(f"clouds[{i}].hosts[{j}]")
            for j in range(len(cloud.groups_host)):
                for host in groups[(i, j)]:
                    locations.setdefault(host.name, []).append(f"clouds[{i}].groupsHost[{j}]")

        return [
            Violation(" and ".join(places), f"duplicate hostname {name!r}")
            for name, places in sorted(locations.items())
            if len(places) > 1
        ]
