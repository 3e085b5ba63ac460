"""Toolchain component fetchers.

``RustupFetcher`` installs components through ``rustup``. ``InProcessFetcher``
produces deterministic placeholder components without invoking external tools,
for tests and for dry runs of the matrix.
"""

from __future__ import annotations

import hashlib
import os
import shutil
import threading
from collections.abc import Collection
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from crossbake.builders.process import run_cancellable
from crossbake.errors import ToolchainUnavailable
from crossbake.models import TargetId, ToolchainComponent
from crossbake.platforms import cargo_triple
from crossbake.toolchain.bundle import COMPILER, DRIVER, STD
from crossbake.toolchain.channel import Channel


class ComponentFetcher(Protocol):
    name: str

    def fetch(
        self,
        channel: Channel,
        target: TargetId,
        dest: Path,
        *,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> tuple[ToolchainComponent, ...]:
        """Fetch compiler, build driver, and the target standard library."""


@dataclass(slots=True)
class RustupFetcher:
    name: str = "rustup"
    tool: str = "rustup"

    def fetch(
        self,
        channel: Channel,
        target: TargetId,
        dest: Path,
        *,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> tuple[ToolchainComponent, ...]:
        if shutil.which(self.tool) is None:
            raise ToolchainUnavailable(
                f"`{self.tool}` is not available in PATH.",
                hint="Install rustup: https://rustup.rs",
                context={"fetcher": self.name, "operation": "provision"},
            )
        toolchain = str(channel)
        triple = cargo_triple(target)

        def run(*argv: str) -> str:
            return self._run(list(argv), cwd=dest, timeout=timeout, cancel=cancel, target=target)

        install = ("toolchain", "install", toolchain, "--profile", "minimal", "--no-self-update")
        run(self.tool, *install)
        run(self.tool, "target", "add", "--toolchain", toolchain, triple)
        rustc = (self.tool, "run", toolchain, "rustc")
        sysroot = Path(run(*rustc, "--print", "sysroot"))
        version = run(*rustc, "--version")
        std_path = sysroot / "lib" / "rustlib" / triple
        if not std_path.is_dir():
            raise ToolchainUnavailable(
                "Standard library for target is missing after install.",
                hint="Check that the channel ships rust-std for this target.",
                context={"fetcher": self.name, "target": target, "path": str(std_path)},
            )

        def component(
            name: str, path: Path, component_target: TargetId | None
        ) -> ToolchainComponent:
            digest = hashlib.sha256(f"{name}\0{version}\0{path}".encode()).hexdigest()
            return ToolchainComponent(
                name=name,
                channel=toolchain,
                version=version,
                path=path,
                digest=digest,
                target=component_target,
            )

        return (
            component(COMPILER, sysroot / "bin" / "rustc", None),
            component(DRIVER, sysroot / "bin" / "cargo", None),
            component(STD, std_path, target),
        )

    def _run(
        self,
        argv: list[str],
        *,
        cwd: Path,
        timeout: float | None,
        cancel: threading.Event | None,
        target: TargetId,
    ) -> str:
        try:
            result = run_cancellable(
                argv,
                cwd=cwd,
                env=os.environ,
                timeout=timeout,
                cancel=cancel,
            )
        except OSError as exc:
            raise ToolchainUnavailable(
                "Toolchain provisioning could not start.",
                context={"fetcher": self.name, "target": target, "error": str(exc)},
            ) from exc
        if result.terminated:
            outcome = "was cancelled" if result.reason == "cancelled" else "timed out"
            raise ToolchainUnavailable(
                f"Toolchain provisioning {outcome}.",
                hint="Retry, or raise provision_timeout.",
                context={"fetcher": self.name, "target": target, "command": " ".join(argv)},
            )
        if result.returncode != 0:
            raise ToolchainUnavailable(
                "Toolchain provisioning failed.",
                hint="Check network access and that the target is supported by the channel.",
                context={
                    "fetcher": self.name,
                    "target": target,
                    "command": " ".join(argv),
                    "returncode": str(result.returncode),
                    "stderr": result.stderr[-2000:] if result.stderr else "",
                },
            )
        return result.stdout.strip()


@dataclass(slots=True)
class InProcessFetcher:
    """Writes deterministic placeholder components under the staging directory."""

    name: str = "inprocess"
    version: str = "1.0.0"
    unavailable: Collection[TargetId] = field(default_factory=frozenset)

    def fetch(
        self,
        channel: Channel,
        target: TargetId,
        dest: Path,
        *,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> tuple[ToolchainComponent, ...]:
        if target in self.unavailable:
            raise ToolchainUnavailable(
                "Target is not available from this fetcher.",
                context={"fetcher": self.name, "target": target, "channel": str(channel)},
            )
        version = f"rustc {self.version} ({channel})"
        components: list[ToolchainComponent] = []
        for name, component_target in ((COMPILER, None), (DRIVER, None), (STD, target)):
            path = dest / name
            path.mkdir(parents=True, exist_ok=True)
            content = f"crossbake-component: {name} {version} {component_target or 'host'}\n"
            (path / "COMPONENT").write_text(content, encoding="utf-8")
            components.append(
                ToolchainComponent(
                    name=name,
                    channel=str(channel),
                    version=version,
                    path=path,
                    digest=hashlib.sha256(content.encode("utf-8")).hexdigest(),
                    target=component_target,
                ),
            )
        return tuple(components)
