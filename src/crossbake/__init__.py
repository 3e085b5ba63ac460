"""Public package entrypoint for the crossbake build matrix orchestrator."""

from .errors import (
    BuildTimeout,
    CompileError,
    ConfigurationError,
    CrossbakeError,
    ErrorCode,
    FilesystemError,
    ManifestInvalid,
    PackagingError,
    ToolchainMismatch,
    ToolchainUnavailable,
)
from .matrix import MatrixDriver, MatrixRequest, enumerate_variants, open_project
from .models import (
    Artifact,
    BuildConfig,
    Image,
    ManifestInfo,
    OutputCatalog,
    PlatformDescriptor,
    SourceTree,
    ToolchainBundle,
    VariantKey,
    VariantOutcome,
)
from .observability import StructuredLogger
from .platforms import KNOWN_SYSTEMS, parse_target, resolve_target
from .report import CatalogReport
from .settings import Settings, load_settings

__all__ = [
    "Artifact",
    "BuildConfig",
    "BuildTimeout",
    "CatalogReport",
    "CompileError",
    "ConfigurationError",
    "CrossbakeError",
    "ErrorCode",
    "FilesystemError",
    "Image",
    "KNOWN_SYSTEMS",
    "ManifestInfo",
    "ManifestInvalid",
    "MatrixDriver",
    "MatrixRequest",
    "OutputCatalog",
    "PackagingError",
    "PlatformDescriptor",
    "Settings",
    "SourceTree",
    "StructuredLogger",
    "ToolchainBundle",
    "ToolchainMismatch",
    "ToolchainUnavailable",
    "VariantKey",
    "VariantOutcome",
    "enumerate_variants",
    "load_settings",
    "open_project",
    "parse_target",
    "resolve_target",
]
