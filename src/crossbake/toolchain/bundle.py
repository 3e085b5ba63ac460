"""Assemble compiler, build driver, and target standard library into a bundle."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import Self

from crossbake.errors import ToolchainUnavailable
from crossbake.models import TargetId, ToolchainBundle, ToolchainComponent

COMPILER = "rustc"
DRIVER = "cargo"
STD = "rust-std"


@dataclass(slots=True)
class BundleBuilder:
    """Collects toolchain components and validates them before combining.

    Components must all come from the same channel and release, and the
    standard library must be built for the requested target.
    """

    channel: str
    target: TargetId
    _components: dict[str, ToolchainComponent] = field(default_factory=dict, init=False)

    def add(self, component: ToolchainComponent) -> Self:
        if component.name not in (COMPILER, DRIVER, STD):
            raise ToolchainUnavailable(
                f"Unknown toolchain component `{component.name}`.",
                context={"operation": "combine", "channel": self.channel},
            )
        self._components[component.name] = component
        return self

    def build(self) -> ToolchainBundle:
        context = {"operation": "combine", "channel": self.channel, "target": self.target}
        missing = [name for name in (COMPILER, DRIVER, STD) if name not in self._components]
        if missing:
            raise ToolchainUnavailable(
                f"Toolchain is missing components: {', '.join(missing)}.",
                hint="A compiler without the target standard library cannot cross-compile.",
                context=context,
            )
        compiler = self._components[COMPILER]
        driver = self._components[DRIVER]
        std = self._components[STD]

        if std.target != self.target:
            raise ToolchainUnavailable(
                "Standard library does not match the requested target.",
                hint="Install the rust-std component for this target.",
                context={**context, "std_target": std.target or ""},
            )
        for component in (compiler, driver, std):
            if component.channel != self.channel or component.version != compiler.version:
                raise ToolchainUnavailable(
                    "Toolchain components come from different releases.",
                    hint="Provision every component from a single channel.",
                    context={
                        **context,
                        "component": component.name,
                        "component_channel": component.channel,
                        "component_version": component.version,
                        "compiler_version": compiler.version,
                    },
                )

        return ToolchainBundle(
            channel=self.channel,
            target=self.target,
            compiler=compiler,
            driver=driver,
            std=std,
            identity=bundle_identity(compiler, driver, std),
        )


def combine(
    *components: ToolchainComponent,
    channel: str,
    target: TargetId,
) -> ToolchainBundle:
    builder = BundleBuilder(channel=channel, target=target)
    for component in components:
        builder.add(component)
    return builder.build()


def bundle_identity(*components: ToolchainComponent) -> str:
    digest = hashlib.sha256()
    for component in sorted(components, key=lambda item: item.name):
        digest.update(f"{component.name}:{component.version}:{component.digest}\n".encode())
    return digest.hexdigest()
