"""Project configuration loaded from ``crossbake.toml``.

Example::

    [crossbake]
    channel = "stable"
    platforms = ["x86_64-linux", "aarch64-linux"]
    linkages = ["native", "static"]
    profiles = ["release", "debug"]
    package = true
    runtime_deps = ["openssl"]
    native_build_deps = ["pkg-config"]
"""

from __future__ import annotations

import os
import tomllib
from collections.abc import Sequence
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Self

from crossbake.errors import ConfigurationError
from crossbake.models import LINKAGES, PROFILES, Linkage, PlatformDescriptor, Profile
from crossbake.platforms import (
    DESCRIPTOR_FIELDS,
    KNOWN_SYSTEMS,
    parse_target,
    platform_for_system,
    resolve_target,
)
from crossbake.source import default_excludes

CONFIG_FILE = "crossbake.toml"
TABLE = "crossbake"


@dataclass(frozen=True, slots=True)
class Settings:
    project_dir: Path = field(default_factory=Path.cwd)
    channel: str = "stable"
    platforms: tuple[PlatformDescriptor, ...] = (KNOWN_SYSTEMS["x86_64-linux"],)
    linkages: tuple[Linkage, ...] = LINKAGES
    profiles: tuple[Profile, ...] = PROFILES
    package: bool = True
    manifest: str = "Cargo.toml"
    excludes: tuple[str, ...] | None = None
    honor_gitignore: bool = True
    runtime_deps: tuple[str, ...] = ()
    native_build_deps: tuple[str, ...] = ()
    cache_dir: Path = Path(".crossbake/toolchains")
    out_dir: Path = Path(".crossbake/out")
    jobs: int = field(default_factory=lambda: os.cpu_count() or 1)
    provision_timeout: float | None = 1800.0
    compile_timeout: float | None = 3600.0

    @property
    def cache_path(self) -> Path:
        return self.project_dir / self.cache_dir

    @property
    def out_path(self) -> Path:
        return self.project_dir / self.out_dir

    def source_excludes(self) -> tuple[str, ...]:
        """Exclusion rules plus the store and output directories inside the project."""
        rules = list(default_excludes(self.manifest) if self.excludes is None else self.excludes)
        for directory in (self.cache_dir, self.out_dir):
            relative = directory.as_posix().strip("/")
            if not directory.is_absolute() and relative not in ("", "."):
                rules.append(f"/{relative}/")
        return tuple(rules)

    def with_overrides(self, **changes: Any) -> Self:
        """Return a copy with every non-None value in *changes* applied."""
        applied = {key: value for key, value in changes.items() if value is not None}
        return replace(self, **applied)


def load_settings(project_dir: str | Path, config_path: str | Path | None = None) -> Settings:
    project = Path(project_dir)
    path = Path(config_path) if config_path is not None else project / CONFIG_FILE
    if not path.exists():
        if config_path is not None:
            raise ConfigurationError(
                "Configuration file does not exist.",
                context={"operation": "load_settings", "path": str(path)},
            )
        return Settings(project_dir=project)
    try:
        payload = tomllib.loads(path.read_text(encoding="utf-8"))
    except (OSError, tomllib.TOMLDecodeError) as exc:
        raise ConfigurationError(
            "Configuration file is not readable TOML.",
            hint=str(exc),
            context={"operation": "load_settings", "path": str(path)},
        ) from exc
    table = payload.get(TABLE, {})
    if not isinstance(table, dict):
        raise ConfigurationError(
            f"`[{TABLE}]` must be a table.",
            context={"operation": "load_settings", "path": str(path)},
        )
    return parse_settings(table, project_dir=project)


def parse_settings(table: dict[str, Any], *, project_dir: Path) -> Settings:
    known = {item.name for item in fields(Settings)} - {"project_dir"}
    unknown = sorted(set(table) - known)
    if unknown:
        raise ConfigurationError(
            f"Unknown configuration keys: {', '.join(unknown)}.",
            context={"operation": "load_settings"},
        )

    values: dict[str, Any] = {"project_dir": project_dir}
    for key, value in table.items():
        if key == "platforms":
            values[key] = tuple(parse_platform(item) for item in _list_of(key, value, object))
        elif key == "linkages":
            values[key] = _members(key, value, LINKAGES)
        elif key == "profiles":
            values[key] = _members(key, value, PROFILES)
        elif key in ("excludes", "runtime_deps", "native_build_deps"):
            values[key] = tuple(_list_of(key, value, str))
        elif key in ("channel", "manifest"):
            values[key] = _typed(key, value, str)
        elif key in ("cache_dir", "out_dir"):
            values[key] = Path(_typed(key, value, str))
        elif key in ("package", "honor_gitignore"):
            values[key] = _typed(key, value, bool)
        elif key == "jobs":
            jobs = _typed(key, value, int)
            if jobs < 1:
                raise ConfigurationError("`jobs` must be at least 1.")
            values[key] = jobs
        else:
            timeout = _typed(key, value, (int, float))
            values[key] = float(timeout) if timeout > 0 else None
    return Settings(**values)


def parse_platform(value: object) -> PlatformDescriptor:
    """Accept a known system name, a target identifier, or a descriptor table."""
    if isinstance(value, str):
        if value in KNOWN_SYSTEMS:
            return platform_for_system(value)
        if value.count("-") == 3:
            descriptor = parse_target(value, static_capable="-linux-" in value)
            resolve_target(descriptor)
            return descriptor
        return platform_for_system(value)
    if isinstance(value, dict):
        missing = [name for name in DESCRIPTOR_FIELDS if name not in value]
        if missing:
            raise ConfigurationError(
                f"Platform table is missing: {', '.join(missing)}.",
                context={"operation": "load_settings"},
            )
        descriptor = PlatformDescriptor(
            cpu=value["cpu"],
            vendor=value["vendor"],
            kernel=value["kernel"],
            abi=value["abi"],
            static_capable=bool(value.get("static", False)),
        )
        resolve_target(descriptor)
        return descriptor
    raise ConfigurationError(
        "Platforms must be strings or tables.",
        context={"operation": "load_settings", "value": repr(value)},
    )


def _typed(key: str, value: Any, kind: type | tuple[type, ...]) -> Any:
    # bool is an int subclass; never accept it where a number is expected.
    if not isinstance(value, kind) or (kind is not bool and isinstance(value, bool)):
        raise ConfigurationError(
            f"Configuration key `{key}` has the wrong type.",
            context={"operation": "load_settings", "value": repr(value)},
        )
    return value


def _list_of(key: str, value: Any, kind: type) -> list[Any]:
    if not isinstance(value, list):
        raise ConfigurationError(
            f"Configuration key `{key}` must be a list.",
            context={"operation": "load_settings"},
        )
    return [_typed(key, item, kind) for item in value]


def _members(key: str, value: Any, allowed: Sequence[str]) -> tuple[str, ...]:
    items = _list_of(key, value, str)
    for item in items:
        if item not in allowed:
            raise ConfigurationError(
                f"Unknown value `{item}` in `{key}`.",
                hint=f"Use any of: {', '.join(allowed)}.",
                context={"operation": "load_settings"},
            )
    return tuple(items)
