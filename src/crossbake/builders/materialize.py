"""Shared artifact materialization helpers for build executors."""

from __future__ import annotations

import hashlib
import json
import shutil
from collections.abc import Sequence
from pathlib import Path

from crossbake.builders.base import BuildRequest
from crossbake.models import Artifact


def materialize_artifact(
    *,
    executor_name: str,
    binary: Path,
    request: BuildRequest,
    command: Sequence[str],
    env: dict[str, str],
    runtime_closure: tuple[Path, ...] | None = (),
) -> Artifact:
    """Install *binary* as ``bin/<name>`` under the output dir and record metadata.

    A *runtime_closure* of None marks the closure as unresolved.
    """
    bin_dir = request.output_dir / "bin"
    bin_dir.mkdir(parents=True, exist_ok=True)
    output_path = bin_dir / request.manifest.name
    if binary.resolve() != output_path.resolve():
        shutil.copy2(binary, output_path)
    output_path.chmod(0o755)
    digest = hashlib.sha256(output_path.read_bytes()).hexdigest()

    config = request.config
    metadata_path = request.output_dir / "artifact.json"
    metadata = {
        "executor": executor_name,
        "name": request.manifest.name,
        "version": request.manifest.version,
        "target": config.target,
        "profile": config.profile,
        "linkage": config.linkage,
        "rustflags": config.rustflags,
        "build_deps": [f"{dep.name}@{dep.host}" for dep in config.build_deps],
        "native_build_deps": list(config.native_build_deps),
        "runtime_deps": list(config.runtime_deps),
        "source_hash": request.source.content_hash,
        "toolchain": request.toolchain.identity,
        "command": list(command),
        "env": dict(sorted(env.items())),
        "sha256": digest,
        "runtime_closure": (
            None if runtime_closure is None else [str(path) for path in runtime_closure]
        ),
    }
    metadata_path.write_text(
        json.dumps(metadata, indent=2, sort_keys=True) + "\n",
        encoding="utf-8",
    )

    return Artifact(
        path=output_path,
        target=config.target,
        profile=config.profile,
        linkage=config.linkage,
        name=request.manifest.name,
        version=request.manifest.version,
        sha256=digest,
        runtime_closure=runtime_closure or (),
        closure_resolved=runtime_closure is not None,
        metadata_path=metadata_path,
    )
