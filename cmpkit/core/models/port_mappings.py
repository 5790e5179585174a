"""Name-to-name port mapping tables.

A mapping translates the port names of a service into the port names of the
model that provides it. Tables are plain dicts; every helper returns new
dicts and never mutates its inputs.
"""

from __future__ import annotations

from typing import Dict, Hashable, Iterable, Mapping, Optional

from cmpkit.core.errors import PortMappingConflict

PortMapping = Dict[str, str]


def merge(a: Mapping[str, str], b: Mapping[str, str]) -> PortMapping:
    result = dict(a)
    for key, value in b.items():
        existing = result.get(key)
        if existing is not None and existing != value:
            raise PortMappingConflict(key, existing, value)
        result[key] = value
    return result


def rebase(
    old_mappings: Mapping[Hashable, Mapping[str, str]],
    new_mappings: Mapping[str, str],
    result: Optional[Dict[Hashable, PortMapping]] = None,
) -> Dict[Hashable, PortMapping]:
    """Push every table of `old_mappings` through one more layer of renaming.

    Targets found in `new_mappings` are replaced, others are kept as-is. The
    rebased tables are merged into `result` (a fresh dict when omitted).
    """
    if result is None:
        result = {}
    for service, mapping in old_mappings.items():
        rebased = {src: new_mappings.get(dst, dst) for src, dst in mapping.items()}
        if service in result:
            result[service] = merge(result[service], rebased)
        else:
            result[service] = rebased
    return result


def identity(port_names: Iterable[str]) -> PortMapping:
    return {name: name for name in port_names}


def apply(mapping: Mapping[str, str], port_name: str) -> str:
    return mapping.get(port_name, port_name)
