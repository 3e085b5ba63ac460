"""In-process build executor for testing and development.

Produces deterministic placeholder binaries without invoking cargo. The output
depends only on the source content hash, toolchain identity, and build config,
which makes it suitable for:
- Unit tests that verify the matrix pipeline
- Development environments without a Rust toolchain
- Dry runs that check naming and packaging of the full matrix
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field

from crossbake.builders.base import BuildRequest, ensure_toolchain_matches
from crossbake.builders.config import cargo_env, cargo_profile
from crossbake.builders.materialize import materialize_artifact
from crossbake.errors import BuildTimeout, CompileError
from crossbake.models import Artifact, TargetId


@dataclass(slots=True)
class InProcessExecutor:
    name: str = "inprocess"
    # Targets that fail to compile, mapped to the diagnostic text to report.
    failures: Mapping[TargetId, str] = field(default_factory=dict)

    def build(self, request: BuildRequest) -> Artifact:
        ensure_toolchain_matches(request)
        config = request.config
        if request.cancel.is_set():
            raise BuildTimeout(
                "Compilation was cancelled.",
                context={"executor": self.name, "target": config.target},
            )
        diagnostics = self.failures.get(config.target)
        if diagnostics is not None:
            raise CompileError(
                "cargo build failed.",
                diagnostics=diagnostics,
                context={"executor": self.name, "target": config.target},
            )

        env = cargo_env(config)
        profile, _ = cargo_profile(config)
        command = ["cargo", "build", "--profile", profile, "--locked"]
        payload = {
            "name": request.manifest.name,
            "version": request.manifest.version,
            "source": request.source.content_hash,
            "toolchain": request.toolchain.identity,
            "env": env,
            "command": command,
        }
        scratch = request.output_dir / "target"
        scratch.mkdir(parents=True, exist_ok=True)
        binary = scratch / request.manifest.name
        binary.write_text(
            "#!/bin/sh\n# crossbake-artifact\n"
            + f"# {json.dumps(payload, sort_keys=True)}\n"
            + f"echo {request.manifest.name} {request.manifest.version}\n",
            encoding="utf-8",
        )
        return materialize_artifact(
            executor_name=self.name,
            binary=binary,
            request=request,
            command=command,
            env=env,
        )
