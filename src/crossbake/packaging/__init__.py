"""Container image packaging for built artifacts."""

from .image import INSTALL_DIR, package_artifact, rootfs_entries
from .writer import DockerArchiveWriter, ImageConfig, RootfsEntry, RootfsWriter

__all__ = [
    "DockerArchiveWriter",
    "INSTALL_DIR",
    "ImageConfig",
    "RootfsEntry",
    "RootfsWriter",
    "package_artifact",
    "rootfs_entries",
]
