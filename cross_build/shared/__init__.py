"""Shared utilities for cross builds."""

from .errors import (
    BuildCancelledError,
    CrossBuildError,
    DuplicateTargetError,
    ProcessSpawnError,
    RegistryFrozenError,
    TargetConfigError,
    ToolchainNotFoundError,
    UnknownTargetError,
)
from .target_loader import (
    DEFAULT_TARGETS_FILE,
    load_target_file,
    validate_target_entry,
)

__all__ = [
    # Target file loading
    "DEFAULT_TARGETS_FILE",
    "load_target_file",
    "validate_target_entry",
    # Errors
    "BuildCancelledError",
    "CrossBuildError",
    "DuplicateTargetError",
    "ProcessSpawnError",
    "RegistryFrozenError",
    "TargetConfigError",
    "ToolchainNotFoundError",
    "UnknownTargetError",
]
