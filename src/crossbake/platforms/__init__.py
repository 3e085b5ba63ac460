"""Platform descriptor resolution into canonical target identifiers.

A target identifier is always the four descriptor fields joined with ``-``
(``{cpu}-{vendor}-{kernel}-{abi}``). Fields may not themselves contain ``-``,
which keeps :func:`resolve_target` and :func:`parse_target` exact inverses.
"""

from __future__ import annotations

import platform
import sys
from dataclasses import replace

from crossbake.errors import ConfigurationError
from crossbake.models import Linkage, PlatformDescriptor, TargetId

DESCRIPTOR_FIELDS = ("cpu", "vendor", "kernel", "abi")

# Host systems the project is built on, keyed by nix-style system name.
KNOWN_SYSTEMS: dict[str, PlatformDescriptor] = {
    "x86_64-linux": PlatformDescriptor("x86_64", "unknown", "linux", "gnu", static_capable=True),
    "aarch64-linux": PlatformDescriptor("aarch64", "unknown", "linux", "gnu", static_capable=True),
    "x86_64-darwin": PlatformDescriptor("x86_64", "apple", "darwin", "unknown"),
    "aarch64-darwin": PlatformDescriptor("aarch64", "apple", "darwin", "unknown"),
}

# Linux ABIs and their fully static (musl) counterparts.
STATIC_LINUX_ABIS = {
    "gnu": "musl",
    "gnueabi": "musleabi",
    "gnueabihf": "musleabihf",
    "musl": "musl",
    "musleabi": "musleabi",
    "musleabihf": "musleabihf",
}

_MACHINE_ALIASES = {"amd64": "x86_64", "arm64": "aarch64"}


def resolve_target(descriptor: PlatformDescriptor) -> TargetId:
    """Return the canonical target identifier for *descriptor*."""
    for name in DESCRIPTOR_FIELDS:
        value = getattr(descriptor, name)
        if not isinstance(value, str) or not value:
            raise ConfigurationError(
                f"Platform descriptor is missing `{name}`.",
                hint="Provide cpu, vendor, kernel, and abi for every platform.",
                context={"operation": "resolve", "descriptor": repr(descriptor)},
            )
        if "-" in value or any(char.isspace() for char in value):
            raise ConfigurationError(
                f"Platform descriptor field `{name}` must not contain '-' or whitespace.",
                context={"operation": "resolve", name: value},
            )
    return TargetId("-".join(descriptor.identity))


def parse_target(target: str, *, static_capable: bool = False) -> PlatformDescriptor:
    parts = target.split("-")
    if len(parts) != len(DESCRIPTOR_FIELDS) or not all(parts):
        raise ConfigurationError(
            "Target identifier must have exactly four non-empty fields.",
            hint="Use the form cpu-vendor-kernel-abi, e.g. x86_64-unknown-linux-gnu.",
            context={"operation": "parse_target", "target": target},
        )
    cpu, vendor, kernel, abi = parts
    return PlatformDescriptor(cpu, vendor, kernel, abi, static_capable=static_capable)


def platform_for_system(system: str) -> PlatformDescriptor:
    try:
        return KNOWN_SYSTEMS[system]
    except KeyError:
        raise ConfigurationError(
            f"Unknown system `{system}`.",
            hint=f"Use one of: {', '.join(sorted(KNOWN_SYSTEMS))}, or a full target identifier.",
            context={"operation": "platform_for_system"},
        ) from None


def platform_for(descriptor: PlatformDescriptor, linkage: Linkage) -> PlatformDescriptor:
    """Return the descriptor actually compiled for *linkage*.

    Static Linux builds move from glibc to the matching musl ABI.
    """
    if linkage == "native":
        return descriptor
    if not descriptor.static_capable:
        raise ConfigurationError(
            "Platform does not support static linkage.",
            hint="Drop `static` from the linkages for this platform.",
            context={"operation": "resolve", "platform": resolve_target(descriptor)},
        )
    if descriptor.kernel == "linux":
        static_abi = STATIC_LINUX_ABIS.get(descriptor.abi)
        if static_abi is None:
            raise ConfigurationError(
                f"No static ABI is known for `{descriptor.abi}`.",
                context={"operation": "resolve", "platform": resolve_target(descriptor)},
            )
        return replace(descriptor, abi=static_abi)
    return descriptor


def cargo_triple(target: TargetId) -> str:
    """Map a canonical target identifier to the triple cargo expects.

    Targets without an ABI (`unknown`), such as Darwin, use a 3-part triple.
    """
    cpu, vendor, kernel, abi = target.split("-")
    if abi == "unknown":
        return f"{cpu}-{vendor}-{kernel}"
    return target


def host_target() -> TargetId:
    """Best-effort target identifier of the machine running the orchestrator."""
    machine = platform.machine().lower() or "x86_64"
    cpu = _MACHINE_ALIASES.get(machine, machine)
    if sys.platform.startswith("linux"):
        return resolve_target(PlatformDescriptor(cpu, "unknown", "linux", "gnu"))
    if sys.platform == "darwin":
        return resolve_target(PlatformDescriptor(cpu, "apple", "darwin", "unknown"))
    return resolve_target(PlatformDescriptor(cpu, "pc", sys.platform, "unknown"))


__all__ = [
    "DESCRIPTOR_FIELDS",
    "KNOWN_SYSTEMS",
    "STATIC_LINUX_ABIS",
    "cargo_triple",
    "host_target",
    "parse_target",
    "platform_for",
    "platform_for_system",
    "resolve_target",
]
