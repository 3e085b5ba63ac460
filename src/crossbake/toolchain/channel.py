"""Toolchain channel identifiers."""

from __future__ import annotations

import re
from dataclasses import dataclass

from crossbake.errors import ConfigurationError

RELEASE_CHANNELS = ("stable", "beta", "nightly")

_DATED = re.compile(r"^(stable|beta|nightly)-(\d{4}-\d{2}-\d{2})$")
_VERSION = re.compile(r"^\d+\.\d+(\.\d+)?$")


@dataclass(frozen=True, slots=True)
class Channel:
    name: str
    date: str | None = None

    def __str__(self) -> str:
        return f"{self.name}-{self.date}" if self.date else self.name


def parse_channel(value: str) -> Channel:
    """Parse ``stable``, ``nightly-2024-05-01``, or an explicit ``1.78.0``."""
    if value in RELEASE_CHANNELS or _VERSION.fullmatch(value):
        return Channel(name=value)
    dated = _DATED.fullmatch(value)
    if dated is not None:
        return Channel(name=dated.group(1), date=dated.group(2))
    raise ConfigurationError(
        f"Malformed toolchain channel `{value}`.",
        hint="Use stable, beta, nightly, a dated channel, or a version like 1.78.0.",
        context={"operation": "provision"},
    )
