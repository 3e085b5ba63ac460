"""Content-addressed toolchain bundle store keyed by (channel, target).

Entries are staged in a temporary directory and moved into place with a
single rename, so an interrupted or failed provisioning never leaves a
partial entry behind. Deleting the whole store only forces re-provisioning.
"""

from __future__ import annotations

import hashlib
import json
import os
import shutil
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from crossbake.errors import FilesystemError
from crossbake.models import TargetId, ToolchainBundle, ToolchainComponent
from crossbake.toolchain.bundle import bundle_identity

MANIFEST = "manifest.json"
SCHEMA_VERSION = 1


def store_key(channel: str, target: TargetId) -> str:
    canonical = json.dumps({"channel": channel, "target": target}, sort_keys=True)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class ToolchainStore:
    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise FilesystemError(
                "Cannot create toolchain store directory.",
                context={"operation": "store_init", "path": str(self.root), "error": str(exc)},
            ) from exc

    def entry_path(self, channel: str, target: TargetId) -> Path:
        return self.root / store_key(channel, target)

    def load(self, channel: str, target: TargetId) -> ToolchainBundle | None:
        """Return the stored bundle, or None when absent or no longer valid."""
        entry = self.entry_path(channel, target)
        manifest_path = entry / MANIFEST
        if not manifest_path.exists():
            return None
        try:
            payload = json.loads(manifest_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            return None
        bundle = _bundle_from_payload(payload, entry=entry)
        if bundle is None or bundle.channel != channel or bundle.target != target:
            return None
        if not all(component.path.exists() for component in bundle.components):
            return None
        if bundle.identity != bundle_identity(*bundle.components):
            return None
        return bundle

    @contextmanager
    def staging(self, channel: str, target: TargetId) -> Iterator[Path]:
        """Yield a scratch directory that is removed unless committed."""
        prefix = f".staging-{store_key(channel, target)[:16]}-"
        staged = Path(tempfile.mkdtemp(prefix=prefix, dir=str(self.root)))
        try:
            yield staged
        finally:
            if staged.exists():
                shutil.rmtree(staged, ignore_errors=True)

    def commit(self, staged: Path, bundle: ToolchainBundle) -> ToolchainBundle:
        entry = self.entry_path(bundle.channel, bundle.target)
        payload = _bundle_to_payload(bundle, entry=staged)
        (staged / MANIFEST).write_text(
            json.dumps(payload, indent=2, sort_keys=True) + "\n",
            encoding="utf-8",
        )
        if entry.exists():
            shutil.rmtree(entry)
        os.replace(staged, entry)
        committed = _bundle_from_payload(payload, entry=entry)
        if committed is None:
            raise FilesystemError(
                "Committed toolchain entry cannot be read back.",
                context={"operation": "store_commit", "path": str(entry)},
            )
        return committed

    def clear(self) -> None:
        for child in self.root.iterdir():
            if child.is_dir():
                shutil.rmtree(child, ignore_errors=True)
            else:
                child.unlink(missing_ok=True)


def _bundle_to_payload(bundle: ToolchainBundle, *, entry: Path) -> dict[str, Any]:
    return {
        "schema_version": SCHEMA_VERSION,
        "channel": bundle.channel,
        "target": bundle.target,
        "identity": bundle.identity,
        "components": {
            role: _component_to_payload(component, entry=entry)
            for role, component in (
                ("compiler", bundle.compiler),
                ("driver", bundle.driver),
                ("std", bundle.std),
            )
        },
    }


def _component_to_payload(component: ToolchainComponent, *, entry: Path) -> dict[str, Any]:
    path = component.path
    relative = path.is_relative_to(entry)
    return {
        "name": component.name,
        "channel": component.channel,
        "version": component.version,
        "digest": component.digest,
        "target": component.target,
        "path": path.relative_to(entry).as_posix() if relative else str(path),
        "relative": relative,
    }


def _bundle_from_payload(payload: Any, *, entry: Path) -> ToolchainBundle | None:
    if not isinstance(payload, dict) or payload.get("schema_version") != SCHEMA_VERSION:
        return None
    components = payload.get("components")
    if not isinstance(components, dict):
        return None
    try:
        parsed = {
            role: _component_from_payload(components[role], entry=entry)
            for role in ("compiler", "driver", "std")
        }
        return ToolchainBundle(
            channel=str(payload["channel"]),
            target=TargetId(str(payload["target"])),
            compiler=parsed["compiler"],
            driver=parsed["driver"],
            std=parsed["std"],
            identity=str(payload["identity"]),
        )
    except (KeyError, TypeError):
        return None


def _component_from_payload(payload: dict[str, Any], *, entry: Path) -> ToolchainComponent:
    path = entry / payload["path"] if payload["relative"] else Path(payload["path"])
    target = payload.get("target")
    return ToolchainComponent(
        name=str(payload["name"]),
        channel=str(payload["channel"]),
        version=str(payload["version"]),
        path=path,
        digest=str(payload["digest"]),
        target=TargetId(target) if target else None,
    )
