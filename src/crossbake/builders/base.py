"""Typed interfaces for build executors."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from crossbake.errors import ToolchainMismatch
from crossbake.models import Artifact, BuildConfig, ManifestInfo, SourceTree, ToolchainBundle


@dataclass(frozen=True, slots=True)
class BuildRequest:
    source: SourceTree
    toolchain: ToolchainBundle
    config: BuildConfig
    manifest: ManifestInfo
    output_dir: Path
    cancel: threading.Event = field(default_factory=threading.Event, compare=False)


class BuildExecutor(Protocol):
    name: str

    def build(self, request: BuildRequest) -> Artifact:
        """Compile the source tree for the request's target and return the artifact."""


def ensure_toolchain_matches(request: BuildRequest) -> None:
    if request.toolchain.target != request.config.target:
        raise ToolchainMismatch(
            "Toolchain bundle was provisioned for a different target.",
            hint="Provision the toolchain for the build config's target.",
            context={
                "operation": "build",
                "toolchain_target": request.toolchain.target,
                "config_target": request.config.target,
            },
        )
