"""Project manifest reader."""

from __future__ import annotations

import re
import tomllib
from typing import Any

from crossbake.errors import ManifestInvalid
from crossbake.models import ManifestInfo, SourceTree

# Names double as binary, image, and command names.
NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]*$")


def read_manifest(source: SourceTree) -> ManifestInfo:
    """Return the package name and version declared by the primary manifest."""
    path = source.manifest_path
    context = {"operation": "read_manifest", "path": str(path)}
    if source.manifest not in source:
        raise ManifestInvalid(
            "Primary manifest is not part of the filtered source tree.",
            hint="Make sure the exclusion rules re-include the primary manifest.",
            context=context,
        )
    try:
        raw = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ManifestInvalid("Manifest is not readable.", hint=str(exc), context=context) from exc
    return parse_manifest(raw, path=str(path))


def parse_manifest(raw: str, *, path: str = "<memory>") -> ManifestInfo:
    context = {"operation": "read_manifest", "path": path}
    try:
        payload = tomllib.loads(raw)
    except tomllib.TOMLDecodeError as exc:
        raise ManifestInvalid(
            "Manifest is not valid TOML.", hint=str(exc), context=context
        ) from exc

    package = payload.get("package")
    if not isinstance(package, dict):
        raise ManifestInvalid("Manifest has no [package] table.", context=context)

    name = package.get("name")
    if not isinstance(name, str) or not NAME_PATTERN.fullmatch(name):
        raise ManifestInvalid(
            "Manifest `package.name` is missing or invalid.",
            hint="Use letters, digits, '-' and '_' only.",
            context=context,
        )
    version = _resolve_version(package.get("version"), payload)
    if version is None:
        raise ManifestInvalid(
            "Manifest `package.version` is missing or invalid.",
            context={**context, "package": name},
        )
    return ManifestInfo(name=name, version=version)


def _resolve_version(value: Any, payload: dict[str, Any]) -> str | None:
    if isinstance(value, dict) and value.get("workspace") is True:
        workspace = payload.get("workspace")
        shared = workspace.get("package") if isinstance(workspace, dict) else None
        value = shared.get("version") if isinstance(shared, dict) else None
    if not isinstance(value, str) or not value or any(c.isspace() or c in ":/@" for c in value):
        return None
    return value
