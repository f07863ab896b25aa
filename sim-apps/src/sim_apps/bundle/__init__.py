"""Bundle inspection helpers: source resolution, metadata parsing, arch checks."""

from __future__ import annotations

from sim_apps.bundle.architecture import (
    BASE_ARCH_TO_COMPATIBLE_ARCH,
    merge_architecture_table,
    supported_architectures,
    validate_architectures,
)
from sim_apps.bundle.descriptor import (
    ApplicationDescriptor,
    BinaryDescriptor,
    InstallType,
    parse_application,
    read_binary_architectures,
)
from sim_apps.bundle.resolver import (
    ExtractionHandle,
    delete_directory,
    is_application_at_path,
    resolve_application_path,
)

__all__ = [
    "ApplicationDescriptor",
    "BASE_ARCH_TO_COMPATIBLE_ARCH",
    "BinaryDescriptor",
    "ExtractionHandle",
    "InstallType",
    "delete_directory",
    "is_application_at_path",
    "merge_architecture_table",
    "parse_application",
    "read_binary_architectures",
    "resolve_application_path",
    "supported_architectures",
    "validate_architectures",
]
