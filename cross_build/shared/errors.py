"""Custom exceptions for cross builds."""

from __future__ import annotations

from typing import Iterable


class CrossBuildError(Exception):
    """Base exception for target resolution and build invocation errors."""

    def __init__(self, message: str, target: str | None = None) -> None:
        self.target = target
        full_message = f"{message}" if not target else f"[{target}] {message}"
        super().__init__(full_message)


class TargetConfigError(CrossBuildError):
    """Raised when a target definition or target file is invalid."""

    def __init__(
        self,
        message: str,
        path: str | None = None,
        target: str | None = None,
    ) -> None:
        self.path = path
        if path:
            message = f"{path}: {message}"
        super().__init__(message, target)


class UnknownTargetError(CrossBuildError):
    """Raised when no target is registered under the requested name."""

    def __init__(self, name: str, known: Iterable[str] = ()) -> None:
        self.name = name
        self.known = tuple(known)
        message = f"Unknown target '{name}'"
        if self.known:
            message += f" (known targets: {', '.join(self.known)})"
        super().__init__(message)


class DuplicateTargetError(CrossBuildError):
    """Raised when a target conflicts with one already registered."""

    def __init__(self, name: str, reason: str = "already registered") -> None:
        self.name = name
        super().__init__(f"Duplicate target '{name}': {reason}")


class RegistryFrozenError(CrossBuildError):
    """Raised when registering a target after initialization."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Cannot register '{name}': registry is read-only")


class ToolchainNotFoundError(CrossBuildError):
    """Raised when a target's linker is not on the search path."""

    def __init__(self, target: str, binary: str, env_var: str | None = None) -> None:
        self.binary = binary
        self.env_var = env_var
        message = f"Linker '{binary}' not found on PATH"
        if env_var:
            message += f" (required for {env_var})"
        super().__init__(message, target)


class ProcessSpawnError(CrossBuildError):
    """Raised when the compiler driver cannot be started."""

    def __init__(self, target: str, driver: str, reason: str) -> None:
        self.driver = driver
        self.reason = reason
        super().__init__(f"Failed to start '{driver}': {reason}", target)


class BuildCancelledError(CrossBuildError):
    """Raised when a running build is cancelled and its child terminated."""

    def __init__(self, target: str) -> None:
        super().__init__("Build cancelled", target)
