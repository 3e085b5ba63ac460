"""Cargo build executor."""

from __future__ import annotations

import os
import shutil
import subprocess
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from crossbake.builders.base import BuildRequest, ensure_toolchain_matches
from crossbake.builders.closure import runtime_closure
from crossbake.builders.config import HOST_CC, PKG_CONFIG, cargo_env, cargo_profile
from crossbake.builders.materialize import materialize_artifact
from crossbake.builders.process import run_cancellable
from crossbake.errors import BuildTimeout, CompileError, ToolchainUnavailable
from crossbake.models import Artifact
from crossbake.platforms import cargo_triple, host_target

INHERITED_ENV = (
    "PATH",
    "HOME",
    "CARGO_HOME",
    "RUSTUP_HOME",
    "TMPDIR",
    "SSL_CERT_FILE",
    "PKG_CONFIG_PATH",
)


@dataclass(slots=True)
class CargoExecutor:
    name: str = "cargo"
    timeout: float | None = None
    locked: bool = True

    def build(self, request: BuildRequest) -> Artifact:
        ensure_toolchain_matches(request)
        config = request.config
        self._ensure_build_deps(request)

        profile, profile_dir = cargo_profile(config)
        triple = cargo_triple(config.target)
        target_dir = request.output_dir / "target"
        command = [
            str(request.toolchain.driver.path),
            "build",
            "--profile",
            profile,
            "--target",
            triple,
            "--manifest-path",
            str(request.source.manifest_path),
            "--target-dir",
            str(target_dir),
        ]
        if self.locked:
            command.append("--locked")

        env = cargo_env(config)
        process_env = {key: os.environ[key] for key in INHERITED_ENV if key in os.environ}
        process_env.update(env)
        process_env["RUSTC"] = str(request.toolchain.compiler.path)
        self._ensure_runtime_deps(request, process_env)
        context = {"executor": self.name, "target": config.target, "profile": config.profile}

        try:
            result = run_cancellable(
                command,
                cwd=request.source.root,
                env=process_env,
                timeout=self.timeout,
                cancel=request.cancel,
            )
        except OSError as exc:
            raise CompileError(
                "Could not start the build driver.",
                diagnostics=str(exc),
                context=context,
            ) from exc

        if result.terminated:
            raise BuildTimeout(
                f"Compilation was {'cancelled' if result.reason == 'cancelled' else 'timed out'}.",
                diagnostics=result.stderr,
                hint="Raise compile_timeout if the build is legitimately slow.",
                context=context,
            )
        if result.returncode != 0:
            raise CompileError(
                "cargo build failed.",
                diagnostics=result.stderr,
                context={**context, "returncode": str(result.returncode)},
            )

        binary = target_dir / triple / profile_dir / request.manifest.name
        if not binary.is_file():
            raise CompileError(
                "Build finished without producing the expected binary.",
                diagnostics=result.stderr,
                hint="The binary name must match the manifest package name.",
                context={**context, "path": str(binary)},
            )

        closure: tuple[Path, ...] | None = ()
        if config.linkage == "native":
            # ldd only resolves libraries for binaries the host can load.
            closure = runtime_closure(binary) if config.target == host_target() else None
        return materialize_artifact(
            executor_name=self.name,
            binary=binary,
            request=request,
            command=command,
            env=env,
            runtime_closure=closure,
        )

    def _ensure_build_deps(self, request: BuildRequest) -> None:
        for dep in request.config.build_deps:
            if shutil.which(dep.name) is None:
                hint = "Install it on the build host; build scripts run there."
                if dep.name == HOST_CC:
                    hint = "Static builds need a host C toolchain for build scripts."
                raise ToolchainUnavailable(
                    f"Host build dependency `{dep.name}` is not available.",
                    hint=hint,
                    context={"operation": "build", "dependency": dep.name, "host": dep.host},
                )

    def _ensure_runtime_deps(self, request: BuildRequest, env: Mapping[str, str]) -> None:
        """Fail early when pkg-config cannot locate a library the binary links against."""
        config = request.config
        for dep in config.runtime_deps:
            argv = [PKG_CONFIG, "--exists"]
            if config.linkage == "static":
                argv.append("--static")
            try:
                result = subprocess.run(
                    [*argv, dep],
                    capture_output=True,
                    text=True,
                    check=False,
                    env=dict(env),
                )
            except OSError as exc:
                raise ToolchainUnavailable(
                    f"Could not run `{PKG_CONFIG}`.",
                    context={"operation": "build", "dependency": dep, "error": str(exc)},
                ) from exc
            if result.returncode != 0:
                raise ToolchainUnavailable(
                    f"Runtime dependency `{dep}` was not found.",
                    hint="Install its development files or extend PKG_CONFIG_PATH.",
                    context={
                        "operation": "build",
                        "dependency": dep,
                        "target": config.target,
                        "stderr": result.stderr[-2000:] if result.stderr else "",
                    },
                )
