"""Wrap a built artifact and its runtime closure into a minimal container image."""

from __future__ import annotations

import os
from pathlib import Path

from crossbake.errors import PackagingError
from crossbake.models import Artifact, Image, ManifestInfo
from crossbake.packaging.writer import ImageConfig, RootfsEntry, RootfsWriter

INSTALL_DIR = "/bin"


def rootfs_entries(artifact: Artifact, manifest: ManifestInfo) -> tuple[RootfsEntry, ...]:
    """Binary plus runtime closure; build-time inputs never enter the image."""
    binary = RootfsEntry(path=f"{INSTALL_DIR}/{manifest.name}", source=artifact.path, mode=0o755)
    entries = [binary]
    for library in artifact.runtime_closure:
        if not library.is_file():
            raise PackagingError(
                "Runtime library from the artifact closure is missing.",
                context={"operation": "package", "path": str(library)},
            )
        entries.append(RootfsEntry(path=library.as_posix(), source=library, mode=0o755))
    return tuple(entries)


def package_artifact(
    artifact: Artifact | None,
    manifest: ManifestInfo,
    *,
    writer: RootfsWriter | None = None,
    output_dir: Path | None = None,
) -> Image:
    """Build the image description and, given a writer, the image archive.

    Name and tag always come from the manifest; variants are told apart by the
    catalog key, never by renaming the image.
    """
    if artifact is None:
        raise PackagingError(
            "No artifact to package.",
            context={"operation": "package", "name": manifest.name},
        )
    if not artifact.path.is_file() or not os.access(artifact.path, os.R_OK):
        raise PackagingError(
            "Artifact binary is missing or unreadable.",
            hint="Rebuild the artifact before packaging.",
            context={"operation": "package", "path": str(artifact.path)},
        )
    if not artifact.closure_resolved:
        raise PackagingError(
            "Runtime libraries of the dynamically linked binary are unknown.",
            hint="Package the static variant, or build the native variant on its own platform.",
            context={
                "operation": "package",
                "target": artifact.target,
                "linkage": artifact.linkage,
            },
        )

    entries = rootfs_entries(artifact, manifest)
    command = (manifest.name,)
    env = {"PATH": INSTALL_DIR}
    archive_path: Path | None = None
    if writer is not None:
        if output_dir is None:
            raise PackagingError(
                "An output directory is required to write the image.",
                context={"operation": "package", "writer": writer.name},
            )
        config = ImageConfig.for_target(
            artifact.target,
            name=manifest.name,
            tag=manifest.version,
            command=command,
            env=env,
        )
        try:
            archive_path = writer.write(entries, config, output_dir / "image.tar")
        except OSError as exc:
            raise PackagingError(
                "Writing the image archive failed.",
                context={"operation": "package", "writer": writer.name, "error": str(exc)},
            ) from exc

    return Image(
        artifact=artifact,
        name=manifest.name,
        tag=manifest.version,
        command=command,
        env=env,
        files=tuple(entry.path for entry in entries),
        archive_path=archive_path,
    )
