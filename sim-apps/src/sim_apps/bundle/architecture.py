from __future__ import annotations

from typing import AbstractSet, FrozenSet, Iterable, Mapping, Optional, Union

from sim_apps.bundle.descriptor import ApplicationDescriptor
from sim_apps.errors import IncompatibleArchitectureError

# Device variant (simulator base architecture) -> architectures it can execute.
BASE_ARCH_TO_COMPATIBLE_ARCH: Mapping[str, FrozenSet[str]] = {
    "i386": frozenset({"i386"}),
    "x86_64": frozenset({"x86_64", "i386"}),
    "arm64": frozenset({"arm64", "armv7s", "armv7"}),
    "armv7s": frozenset({"armv7s", "armv7"}),
    "armv7": frozenset({"armv7"}),
}


def _one_line(values: AbstractSet[str]) -> str:
    return "[" + ", ".join(sorted(values)) + "]"


def merge_architecture_table(
    overrides: Optional[Mapping[str, Union[str, Iterable[str]]]] = None,
) -> dict[str, FrozenSet[str]]:
    table = dict(BASE_ARCH_TO_COMPATIBLE_ARCH)
    for variant, archs in (overrides or {}).items():
        values = [archs] if isinstance(archs, str) else list(archs)
        table[str(variant)] = frozenset(str(a) for a in values)
    return table


def supported_architectures(
    device_variant: str,
    *,
    table: Optional[Mapping[str, AbstractSet[str]]] = None,
) -> FrozenSet[str]:
    lookup = BASE_ARCH_TO_COMPATIBLE_ARCH if table is None else table
    return frozenset(lookup.get(str(device_variant), frozenset()))


def validate_architectures(
    application: ApplicationDescriptor,
    device_variant: str,
    *,
    table: Optional[Mapping[str, AbstractSet[str]]] = None,
) -> None:
    """Raise IncompatibleArchitectureError unless the binary runs on `device_variant`."""

    binary_archs = frozenset(application.binary.architectures)
    supported = supported_architectures(device_variant, table=table)
    if binary_archs & supported:
        return
    raise IncompatibleArchitectureError(
        f"Simulator does not support any of the architectures {_one_line(binary_archs)} "
        f"of the executable at {application.binary.path}. "
        f"Simulator archs ({device_variant}): {_one_line(supported)}"
    )
