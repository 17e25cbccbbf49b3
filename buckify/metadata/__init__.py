"""Cargo metadata loading."""

from buckify.metadata.loader import (
    MetadataLoader,
    WorkspaceMetadata,
    build_workspace_metadata,
    load_checksums,
    parse_metadata,
)
from buckify.metadata.schema import CargoMetadata, Package, Target

__all__ = [
    "CargoMetadata",
    "MetadataLoader",
    "Package",
    "Target",
    "WorkspaceMetadata",
    "build_workspace_metadata",
    "load_checksums",
    "parse_metadata",
]
