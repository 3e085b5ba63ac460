"""Typed orchestrator error model with stable, machine-readable error codes."""

from __future__ import annotations

from collections.abc import Mapping
from enum import StrEnum


class ErrorCode(StrEnum):
    """Stable error identifiers used across API and CLI surfaces."""

    CONFIGURATION = "E_CONFIGURATION"
    FILESYSTEM = "E_FILESYSTEM"
    MANIFEST = "E_MANIFEST"
    TOOLCHAIN_UNAVAILABLE = "E_TOOLCHAIN_UNAVAILABLE"
    TOOLCHAIN_MISMATCH = "E_TOOLCHAIN_MISMATCH"
    COMPILE = "E_COMPILE"
    PACKAGING = "E_PACKAGING"


class CrossbakeError(Exception):
    """Base error class that carries code, optional hint, and context."""

    code: str
    hint: str | None
    context: Mapping[str, str]

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code.value
        self.hint = hint
        self.context = dict(context or {})

    @property
    def message(self) -> str:
        return super().__str__()

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.hint:
            parts.append(f"Hint: {self.hint}")
        if self.context:
            for k, v in self.context.items():
                if v:
                    parts.append(f"  {k}: {v}")
        return "\n".join(parts)

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "code": self.code,
            "message": self.message,
            "context": dict(self.context),
        }
        if self.hint is not None:
            payload["hint"] = self.hint
        return payload


class ConfigurationError(CrossbakeError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.CONFIGURATION, hint=hint, context=context)


class FilesystemError(CrossbakeError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.FILESYSTEM, hint=hint, context=context)


class ManifestInvalid(CrossbakeError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.MANIFEST, hint=hint, context=context)


class ToolchainUnavailable(CrossbakeError):
    """Provisioning failed; safe for the caller to retry."""

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(
            message, code=ErrorCode.TOOLCHAIN_UNAVAILABLE, hint=hint, context=context
        )


class ToolchainMismatch(CrossbakeError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.TOOLCHAIN_MISMATCH, hint=hint, context=context)


class CompileError(CrossbakeError):
    """Compiler reported failure. ``diagnostics`` holds its stderr verbatim."""

    diagnostics: str

    def __init__(
        self,
        message: str,
        *,
        diagnostics: str = "",
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.COMPILE, hint=hint, context=context)
        self.diagnostics = diagnostics

    def to_dict(self) -> dict[str, object]:
        payload = super().to_dict()
        payload["diagnostics"] = self.diagnostics
        return payload


class BuildTimeout(CompileError):
    """Compilation was terminated by timeout or cancellation."""


class PackagingError(CrossbakeError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.PACKAGING, hint=hint, context=context)


# Errors that abort the whole run before any build is attempted.
RUN_LEVEL_ERRORS: tuple[type[CrossbakeError], ...] = (
    ConfigurationError,
    FilesystemError,
    ManifestInvalid,
)


__all__ = [
    "BuildTimeout",
    "CompileError",
    "ConfigurationError",
    "CrossbakeError",
    "ErrorCode",
    "FilesystemError",
    "ManifestInvalid",
    "PackagingError",
    "RUN_LEVEL_ERRORS",
    "ToolchainMismatch",
    "ToolchainUnavailable",
]
