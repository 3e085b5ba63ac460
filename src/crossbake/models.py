"""Core typed dataclasses for platforms, build configs, artifacts, and catalogs."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal, NewType

from crossbake.errors import ConfigurationError, CrossbakeError

Profile = Literal["release", "debug"]
Linkage = Literal["native", "static"]
RunStatus = Literal["success", "partial_failure", "failure"]

PROFILES: tuple[Profile, ...] = ("release", "debug")
LINKAGES: tuple[Linkage, ...] = ("native", "static")

TargetId = NewType("TargetId", str)


@dataclass(frozen=True, slots=True)
class PlatformDescriptor:
    cpu: str
    vendor: str
    kernel: str
    abi: str
    static_capable: bool = False

    @property
    def identity(self) -> tuple[str, str, str, str]:
        return (self.cpu, self.vendor, self.kernel, self.abi)


@dataclass(frozen=True, slots=True)
class HostDependency:
    """A tool that runs on the build host while compiling, never shipped."""

    name: str
    host: TargetId


@dataclass(frozen=True, slots=True)
class BuildConfig:
    target: TargetId
    profile: Profile
    linkage: Linkage
    rustflags: str | None = None
    build_deps: tuple[HostDependency, ...] = ()
    native_build_deps: tuple[str, ...] = ()
    runtime_deps: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ToolchainComponent:
    name: str
    channel: str
    version: str
    path: Path
    digest: str
    target: TargetId | None = None


@dataclass(frozen=True, slots=True)
class ToolchainBundle:
    channel: str
    target: TargetId
    compiler: ToolchainComponent
    driver: ToolchainComponent
    std: ToolchainComponent
    identity: str

    @property
    def components(self) -> tuple[ToolchainComponent, ...]:
        return (self.compiler, self.driver, self.std)


@dataclass(frozen=True, slots=True)
class SourceTree:
    root: Path
    files: tuple[str, ...]
    content_hash: str
    manifest: str = "Cargo.toml"

    @property
    def manifest_path(self) -> Path:
        return self.root / self.manifest

    def __contains__(self, relpath: object) -> bool:
        return relpath in self.files


@dataclass(frozen=True, slots=True)
class ManifestInfo:
    name: str
    version: str


@dataclass(frozen=True, slots=True)
class Artifact:
    path: Path
    target: TargetId
    profile: Profile
    linkage: Linkage
    name: str
    version: str
    sha256: str
    runtime_closure: tuple[Path, ...] = ()
    # False when the shared libraries a native binary loads could not be determined.
    closure_resolved: bool = True
    metadata_path: Path | None = None


@dataclass(frozen=True, slots=True)
class Image:
    artifact: Artifact
    name: str
    tag: str
    command: tuple[str, ...]
    env: Mapping[str, str] = field(default_factory=dict)
    files: tuple[str, ...] = ()
    archive_path: Path | None = None

    @property
    def reference(self) -> str:
        return f"{self.name}:{self.tag}"


@dataclass(frozen=True, slots=True, order=True)
class VariantKey:
    platform: TargetId
    linkage: Linkage
    profile: Profile
    packaged: bool = False

    def attribute_name(self, name: str, *, qualify_platform: bool = False) -> str:
        """Return the package attribute name, e.g. ``benefice-debug-static-oci``."""
        parts = [name]
        if self.profile == "debug":
            parts.append("debug")
        if self.linkage == "static":
            parts.append("static")
        if self.packaged:
            parts.append("oci")
        if qualify_platform:
            parts.append(self.platform)
        return "-".join(parts)


@dataclass(frozen=True, slots=True)
class VariantOutcome:
    key: VariantKey
    artifact: Artifact | None = None
    image: Image | None = None
    error: CrossbakeError | None = None
    packaging_error: CrossbakeError | None = None

    @property
    def ok(self) -> bool:
        if self.error is not None or self.artifact is None:
            return False
        return not self.key.packaged or self.image is not None

    @property
    def output(self) -> Artifact | Image | None:
        return self.image if self.key.packaged else self.artifact


@dataclass(slots=True)
class OutputCatalog:
    manifest: ManifestInfo
    outcomes: dict[VariantKey, VariantOutcome] = field(default_factory=dict)

    def add(self, outcome: VariantOutcome) -> None:
        if outcome.key in self.outcomes:
            raise ConfigurationError(
                "Duplicate variant key in output catalog.",
                context={"variant": self.attribute_name(outcome.key)},
            )
        self.outcomes[outcome.key] = outcome

    def __len__(self) -> int:
        return len(self.outcomes)

    def __iter__(self) -> Iterator[VariantKey]:
        return iter(sorted(self.outcomes))

    def __getitem__(self, key: VariantKey) -> VariantOutcome:
        return self.outcomes[key]

    @property
    def successes(self) -> list[VariantOutcome]:
        return [self.outcomes[key] for key in self if self.outcomes[key].ok]

    @property
    def failures(self) -> list[VariantOutcome]:
        return [self.outcomes[key] for key in self if not self.outcomes[key].ok]

    @property
    def images(self) -> list[Image]:
        return [outcome.image for outcome in self.successes if outcome.image is not None]

    @property
    def status(self) -> RunStatus:
        if not self.failures:
            return "success"
        if not self.successes:
            return "failure"
        return "partial_failure"

    @property
    def default(self) -> Artifact | None:
        """Native release artifact of the first platform in key order, if built."""
        for key in self:
            if key.linkage == "native" and key.profile == "release":
                return self.outcomes[key].artifact
        return None

    def attribute_name(self, key: VariantKey) -> str:
        platforms = {k.platform for k in self.outcomes} | {key.platform}
        return key.attribute_name(self.manifest.name, qualify_platform=len(platforms) > 1)

    def by_attribute(self) -> dict[str, VariantOutcome]:
        return {self.attribute_name(key): self.outcomes[key] for key in self}

    def summary(self) -> dict[str, object]:
        return {
            "status": self.status,
            "total": len(self.outcomes),
            "succeeded": len(self.successes),
            "failed": len(self.failures),
            "failures": {
                self.attribute_name(outcome.key): (outcome.error or outcome.packaging_error).code
                for outcome in self.failures
                if (outcome.error or outcome.packaging_error) is not None
            },
        }


__all__ = [
    "Artifact",
    "BuildConfig",
    "HostDependency",
    "Image",
    "LINKAGES",
    "Linkage",
    "ManifestInfo",
    "OutputCatalog",
    "PROFILES",
    "PlatformDescriptor",
    "Profile",
    "RunStatus",
    "SourceTree",
    "TargetId",
    "ToolchainBundle",
    "ToolchainComponent",
    "VariantKey",
    "VariantOutcome",
]
