"""Toolchain channels, bundles, storage, and provisioning."""

from .bundle import BundleBuilder, bundle_identity, combine
from .channel import Channel, parse_channel
from .fetch import ComponentFetcher, InProcessFetcher, RustupFetcher
from .provisioner import ToolchainProvisioner
from .store import ToolchainStore, store_key

__all__ = [
    "BundleBuilder",
    "Channel",
    "ComponentFetcher",
    "InProcessFetcher",
    "RustupFetcher",
    "ToolchainProvisioner",
    "ToolchainStore",
    "bundle_identity",
    "combine",
    "parse_channel",
    "store_key",
]
