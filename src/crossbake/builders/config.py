"""BuildConfig construction, one function per linkage mode."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence

from crossbake.errors import ConfigurationError
from crossbake.models import BuildConfig, HostDependency, Linkage, Profile, TargetId
from crossbake.platforms import cargo_triple, host_target

STATIC_RUSTFLAGS = "-C target-feature=+crt-static"
HOST_CC = "cc"
PKG_CONFIG = "pkg-config"


def native_config(
    target: TargetId,
    profile: Profile,
    *,
    runtime_deps: Sequence[str] = (),
    native_build_deps: Sequence[str] = (),
    host: TargetId | None = None,
) -> BuildConfig:
    return BuildConfig(
        target=target,
        profile=profile,
        linkage="native",
        build_deps=_host_deps(_build_tools(native_build_deps, runtime_deps), host),
        native_build_deps=tuple(native_build_deps),
        runtime_deps=tuple(runtime_deps),
    )


def static_config(
    target: TargetId,
    profile: Profile,
    *,
    runtime_deps: Sequence[str] = (),
    native_build_deps: Sequence[str] = (),
    host: TargetId | None = None,
) -> BuildConfig:
    """Static builds link the C runtime in and need a host C compiler.

    Build scripts and proc-macros run on the build machine, so the C toolchain
    is a host dependency even when target and host are the same.
    """
    tools = [HOST_CC, *_build_tools(native_build_deps, runtime_deps)]
    return BuildConfig(
        target=target,
        profile=profile,
        linkage="static",
        rustflags=STATIC_RUSTFLAGS,
        build_deps=_host_deps(tools, host),
        native_build_deps=tuple(native_build_deps),
        runtime_deps=tuple(runtime_deps),
    )


def _build_tools(native_build_deps: Sequence[str], runtime_deps: Sequence[str]) -> list[str]:
    # Runtime libraries are located through pkg-config by the crates' build scripts.
    tools = list(native_build_deps)
    if runtime_deps:
        tools.append(PKG_CONFIG)
    return tools


def _host_deps(names: Iterable[str], host: TargetId | None) -> tuple[HostDependency, ...]:
    resolved = host or host_target()
    return tuple(HostDependency(name=name, host=resolved) for name in dict.fromkeys(names))


CONFIG_FACTORIES: dict[Linkage, Callable[..., BuildConfig]] = {
    "native": native_config,
    "static": static_config,
}


def build_config(
    target: TargetId,
    linkage: Linkage,
    profile: Profile,
    *,
    runtime_deps: Sequence[str] = (),
    native_build_deps: Sequence[str] = (),
    host: TargetId | None = None,
) -> BuildConfig:
    if profile not in ("release", "debug"):
        raise ConfigurationError(
            f"Unknown build profile `{profile}`.",
            hint="Use `release` or `debug`.",
            context={"operation": "build_config"},
        )
    factory = CONFIG_FACTORIES.get(linkage)
    if factory is None:
        raise ConfigurationError(
            f"Unknown linkage `{linkage}`.",
            hint="Use `native` or `static`.",
            context={"operation": "build_config"},
        )
    return factory(
        target,
        profile,
        runtime_deps=runtime_deps,
        native_build_deps=native_build_deps,
        host=host,
    )


def cargo_env(config: BuildConfig) -> dict[str, str]:
    """Environment for a cargo invocation; a pure function of *config*."""
    env = {
        "CARGO_BUILD_TARGET": cargo_triple(config.target),
        "CARGO_INCREMENTAL": "0",
    }
    if config.rustflags:
        env["CARGO_BUILD_RUSTFLAGS"] = config.rustflags
    for dep in config.build_deps:
        if dep.name == HOST_CC:
            env["HOST_CC"] = dep.name
    if config.runtime_deps and config.linkage == "static":
        env["PKG_CONFIG_ALL_STATIC"] = "1"
    return env


def cargo_profile(config: BuildConfig) -> tuple[str, str]:
    """Return (cargo ``--profile`` value, output directory name)."""
    if config.profile == "release":
        return ("release", "release")
    return ("dev", "debug")
