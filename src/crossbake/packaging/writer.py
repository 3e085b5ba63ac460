"""Root filesystem writers that turn a flat file list into a loadable image."""

from __future__ import annotations

import hashlib
import io
import json
import os
import tarfile
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Protocol

_ARCHITECTURES = {"x86_64": "amd64", "aarch64": "arm64", "i686": "386", "armv7": "arm"}


@dataclass(frozen=True, slots=True)
class RootfsEntry:
    path: str
    source: Path
    mode: int = 0o644


@dataclass(frozen=True, slots=True)
class ImageConfig:
    name: str
    tag: str
    command: tuple[str, ...]
    env: Mapping[str, str] = field(default_factory=dict)
    architecture: str = "amd64"
    os: str = "linux"

    @classmethod
    def for_target(
        cls,
        target: str,
        *,
        name: str,
        tag: str,
        command: tuple[str, ...],
        env: Mapping[str, str],
    ) -> ImageConfig:
        cpu, _, kernel, _ = target.split("-")
        return cls(
            name=name,
            tag=tag,
            command=command,
            env=env,
            architecture=_ARCHITECTURES.get(cpu, cpu),
            os=kernel,
        )


class RootfsWriter(Protocol):
    name: str

    def write(self, entries: Sequence[RootfsEntry], config: ImageConfig, dest: Path) -> Path:
        """Write an image containing exactly *entries* and return its path."""


@dataclass(slots=True)
class DockerArchiveWriter:
    """Writes a single-layer ``docker load`` archive with fixed timestamps."""

    name: str = "docker-archive"

    def write(self, entries: Sequence[RootfsEntry], config: ImageConfig, dest: Path) -> Path:
        layer = _layer_tar(entries)
        layer_digest = hashlib.sha256(layer).hexdigest()
        image_config = json.dumps(
            {
                "architecture": config.architecture,
                "os": config.os,
                "config": {
                    "Cmd": list(config.command),
                    "Env": [f"{key}={value}" for key, value in sorted(config.env.items())],
                },
                "rootfs": {"type": "layers", "diff_ids": [f"sha256:{layer_digest}"]},
                "history": [{"created_by": "crossbake"}],
            },
            sort_keys=True,
            separators=(",", ":"),
        ).encode("utf-8")
        config_digest = hashlib.sha256(image_config).hexdigest()
        reference = f"{config.name}:{config.tag}"
        manifest = json.dumps(
            [
                {
                    "Config": f"{config_digest}.json",
                    "RepoTags": [reference],
                    "Layers": [f"{layer_digest}/layer.tar"],
                },
            ],
            sort_keys=True,
        ).encode("utf-8")
        repositories = json.dumps({config.name: {config.tag: layer_digest}}).encode("utf-8")

        dest.parent.mkdir(parents=True, exist_ok=True)
        temp_path = dest.with_suffix(dest.suffix + ".tmp")
        with tarfile.open(temp_path, mode="w", format=tarfile.PAX_FORMAT) as archive:
            _add_bytes(archive, f"{layer_digest}/layer.tar", layer)
            _add_bytes(archive, f"{config_digest}.json", image_config)
            _add_bytes(archive, "manifest.json", manifest)
            _add_bytes(archive, "repositories", repositories)
        os.replace(temp_path, dest)
        return dest


def _layer_tar(entries: Sequence[RootfsEntry]) -> bytes:
    buffer = io.BytesIO()
    directories: set[str] = set()
    for entry in entries:
        for parent in PurePosixPath(entry.path.lstrip("/")).parents:
            if str(parent) != ".":
                directories.add(str(parent))

    with tarfile.open(fileobj=buffer, mode="w", format=tarfile.PAX_FORMAT) as layer:
        for directory in sorted(directories):
            info = _tarinfo(directory, mode=0o755)
            info.type = tarfile.DIRTYPE
            layer.addfile(info)
        for entry in sorted(entries, key=lambda item: item.path):
            payload = entry.source.read_bytes()
            info = _tarinfo(entry.path.lstrip("/"), mode=entry.mode)
            info.size = len(payload)
            layer.addfile(info, io.BytesIO(payload))
    return buffer.getvalue()


def _add_bytes(archive: tarfile.TarFile, name: str, payload: bytes) -> None:
    info = _tarinfo(name, mode=0o644)
    info.size = len(payload)
    archive.addfile(info, io.BytesIO(payload))


def _tarinfo(name: str, *, mode: int) -> tarfile.TarInfo:
    info = tarfile.TarInfo(name)
    info.mode = mode
    info.mtime = 0
    info.uid = 0
    info.gid = 0
    info.uname = ""
    info.gname = ""
    return info
