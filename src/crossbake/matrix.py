"""Variant matrix enumeration and the driver that runs every combination.

The matrix is first expanded into an explicit list of :class:`VariantPlan`
values, one per (platform, linkage, profile) combination. Each plan is then run
as an independent pipeline: provision, build, and optionally package. A
failing combination is recorded in the catalog and never aborts its siblings.
"""

from __future__ import annotations

import os
import threading
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path

from crossbake.builders.base import BuildExecutor, BuildRequest
from crossbake.builders.config import build_config
from crossbake.errors import (
    ConfigurationError,
    CrossbakeError,
    FilesystemError,
    PackagingError,
)
from crossbake.manifest import read_manifest
from crossbake.models import (
    LINKAGES,
    PROFILES,
    BuildConfig,
    Linkage,
    ManifestInfo,
    OutputCatalog,
    PlatformDescriptor,
    Profile,
    SourceTree,
    VariantKey,
    VariantOutcome,
)
from crossbake.observability import StructuredLogger
from crossbake.packaging import DockerArchiveWriter, RootfsWriter, package_artifact
from crossbake.platforms import platform_for, resolve_target
from crossbake.source import filter_source, stage_source
from crossbake.toolchain import ToolchainProvisioner, parse_channel


@dataclass(frozen=True, slots=True)
class MatrixRequest:
    platforms: tuple[PlatformDescriptor, ...]
    linkages: tuple[Linkage, ...] = LINKAGES
    profiles: tuple[Profile, ...] = ("release",)
    package: bool = False


@dataclass(frozen=True, slots=True)
class VariantPlan:
    key: VariantKey
    platform: PlatformDescriptor
    config: BuildConfig | None = None
    error: ConfigurationError | None = None


def enumerate_variants(
    request: MatrixRequest,
    *,
    runtime_deps: Sequence[str] = (),
    native_build_deps: Sequence[str] = (),
) -> list[VariantPlan]:
    """Expand *request* into one plan per combination.

    Malformed platforms and unknown linkages or profiles fail the whole run.
    A platform that cannot be built with a given linkage yields a plan that
    carries its error instead of a config.
    """
    _ensure_members("linkage", request.linkages, LINKAGES)
    _ensure_members("profile", request.profiles, PROFILES)
    if not request.platforms:
        raise ConfigurationError(
            "The matrix needs at least one platform.",
            context={"operation": "enumerate"},
        )

    plans: list[VariantPlan] = []
    seen: set[str] = set()
    for descriptor in request.platforms:
        platform_id = resolve_target(descriptor)
        if platform_id in seen:
            raise ConfigurationError(
                "Platform listed more than once.",
                context={"operation": "enumerate", "platform": platform_id},
            )
        seen.add(platform_id)
        for linkage in request.linkages:
            try:
                target = resolve_target(platform_for(descriptor, linkage))
            except ConfigurationError as exc:
                target, error = None, exc
            else:
                error = None
            for profile in request.profiles:
                key = VariantKey(
                    platform=platform_id,
                    linkage=linkage,
                    profile=profile,
                    packaged=request.package,
                )
                if target is None:
                    plans.append(VariantPlan(key=key, platform=descriptor, error=error))
                    continue
                config = build_config(
                    target,
                    linkage,
                    profile,
                    runtime_deps=runtime_deps,
                    native_build_deps=native_build_deps,
                )
                plans.append(VariantPlan(key=key, platform=descriptor, config=config))
    return plans


def open_project(
    root: str | Path,
    *,
    excludes: Sequence[str] | None = None,
    manifest: str = "Cargo.toml",
    honor_gitignore: bool = True,
) -> tuple[SourceTree, ManifestInfo]:
    """Filter the source tree and read the manifest; both run once per run."""
    source = filter_source(root, excludes, manifest=manifest, honor_gitignore=honor_gitignore)
    return source, read_manifest(source)


@dataclass(slots=True)
class MatrixDriver:
    source: SourceTree
    manifest: ManifestInfo
    provisioner: ToolchainProvisioner
    executor: BuildExecutor
    out_dir: Path
    channel: str = "stable"
    writer: RootfsWriter | None = field(default_factory=DockerArchiveWriter)
    jobs: int = field(default_factory=lambda: os.cpu_count() or 1)
    runtime_deps: tuple[str, ...] = ()
    native_build_deps: tuple[str, ...] = ()
    logger: StructuredLogger = field(default_factory=StructuredLogger)
    cancel: threading.Event = field(default_factory=threading.Event)
    _staged: SourceTree | None = field(default=None, init=False, repr=False)

    def plan(self, request: MatrixRequest) -> list[VariantPlan]:
        parse_channel(self.channel)
        return enumerate_variants(
            request,
            runtime_deps=self.runtime_deps,
            native_build_deps=self.native_build_deps,
        )

    def run(self, request: MatrixRequest) -> OutputCatalog:
        """Run every combination and collect the outcomes, failures included."""
        plans = self.plan(request)
        source = self._stage()
        catalog = OutputCatalog(manifest=self.manifest)
        self.logger.log(
            operation="matrix",
            target=None,
            linkage=None,
            profile=None,
            phase="plan",
            message=f"Running {len(plans)} combinations.",
            extra={"jobs": self.jobs},
        )

        with ThreadPoolExecutor(max_workers=max(1, self.jobs)) as pool:
            futures = [pool.submit(self._run_variant, plan, source) for plan in plans]
            try:
                for future in as_completed(futures):
                    catalog.add(future.result())
            except BaseException:
                self.cancel.set()
                for future in futures:
                    future.cancel()
                raise

        self.logger.log(
            operation="matrix",
            target=None,
            linkage=None,
            profile=None,
            phase="summary",
            message=f"Matrix finished with status {catalog.status}.",
            level="info" if catalog.status == "success" else "error",
            extra=catalog.summary(),
        )
        return catalog

    def run_one(
        self,
        platform: PlatformDescriptor,
        linkage: Linkage,
        profile: Profile,
        *,
        package: bool = False,
    ) -> VariantOutcome:
        """Run a single combination; its failure is raised, not recorded."""
        request = MatrixRequest(
            platforms=(platform,),
            linkages=(linkage,),
            profiles=(profile,),
            package=package,
        )
        (plan,) = self.plan(request)
        outcome = self._run_variant(plan, self._stage())
        if outcome.error is not None:
            raise outcome.error
        if outcome.packaging_error is not None:
            raise outcome.packaging_error
        return outcome

    def variant_dir(self, key: VariantKey) -> Path:
        return self.out_dir / key.platform / f"{key.linkage}-{key.profile}"

    def _stage(self) -> SourceTree:
        if self._staged is None:
            self._staged = stage_source(self.source, self.out_dir / "source")
        return self._staged

    def _run_variant(self, plan: VariantPlan, source: SourceTree) -> VariantOutcome:
        key = plan.key
        if plan.error is not None or plan.config is None:
            self.logger.log_variant(
                key, phase="resolve", message="Combination is not buildable.", level="error"
            )
            return VariantOutcome(key=key, error=plan.error)

        config = plan.config
        try:
            self.logger.log_variant(key, phase="provision", message="Provisioning toolchain.")
            bundle = self.provisioner.provision(self.channel, config.target, cancel=self.cancel)
            self.logger.log_variant(
                key,
                phase="build",
                message="Building.",
                extra={"target": config.target, "toolchain": bundle.identity},
            )
            artifact = self.executor.build(
                BuildRequest(
                    source=source,
                    toolchain=bundle,
                    config=config,
                    manifest=self.manifest,
                    output_dir=self.variant_dir(key),
                    cancel=self.cancel,
                ),
            )
        except OSError as exc:
            error = FilesystemError(
                "Combination failed with an I/O error.",
                hint="Check that the output directory is writable.",
                context={
                    "operation": "build",
                    "target": config.target,
                    "path": str(self.variant_dir(key)),
                    "error": str(exc),
                },
            )
            return self._failed(key, error)
        except CrossbakeError as exc:
            return self._failed(key, exc)
        self.logger.log_variant(
            key, phase="build", message="Built.", extra={"sha256": artifact.sha256}
        )

        if not key.packaged:
            return VariantOutcome(key=key, artifact=artifact)
        try:
            image = package_artifact(
                artifact,
                self.manifest,
                writer=self.writer,
                output_dir=self.variant_dir(key),
            )
        except PackagingError as exc:
            self.logger.log_variant(
                key,
                phase="package",
                message="Packaging failed.",
                level="error",
                extra=exc.to_dict(),
            )
            return VariantOutcome(key=key, artifact=artifact, packaging_error=exc)
        self.logger.log_variant(key, phase="package", message=f"Packaged {image.reference}.")
        return VariantOutcome(key=key, artifact=artifact, image=image)

    def _failed(self, key: VariantKey, error: CrossbakeError) -> VariantOutcome:
        self.logger.log_variant(
            key,
            phase="build",
            message="Combination failed.",
            level="error",
            extra=error.to_dict(),
        )
        return VariantOutcome(key=key, error=error)


def _ensure_members(kind: str, values: Sequence[str], allowed: Sequence[str]) -> None:
    if not values:
        raise ConfigurationError(
            f"The matrix needs at least one {kind}.",
            context={"operation": "enumerate"},
        )
    for value in values:
        if value not in allowed:
            raise ConfigurationError(
                f"Unknown {kind} `{value}`.",
                hint=f"Use one of: {', '.join(allowed)}.",
                context={"operation": "enumerate"},
            )
    if len(set(values)) != len(values):
        raise ConfigurationError(
            f"Duplicate {kind} in the matrix.",
            context={"operation": "enumerate"},
        )
