"""Build configuration and build executors."""

from .base import BuildExecutor, BuildRequest, ensure_toolchain_matches
from .cargo import CargoExecutor
from .config import (
    HOST_CC,
    PKG_CONFIG,
    STATIC_RUSTFLAGS,
    build_config,
    cargo_env,
    cargo_profile,
    native_config,
    static_config,
)
from .inprocess import InProcessExecutor

__all__ = [
    "BuildExecutor",
    "BuildRequest",
    "CargoExecutor",
    "HOST_CC",
    "InProcessExecutor",
    "PKG_CONFIG",
    "STATIC_RUSTFLAGS",
    "build_config",
    "cargo_env",
    "cargo_profile",
    "ensure_toolchain_matches",
    "native_config",
    "static_config",
]
