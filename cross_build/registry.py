"""
Target registry.

Maps logical target names (``linux-gnu``, ``linux-musl``) to the platform
triple, linker and linker environment variable the compiler driver needs.
Registries are populated once at startup and frozen before use.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Iterator

from cross_build.shared.errors import (
    DuplicateTargetError,
    RegistryFrozenError,
    TargetConfigError,
    UnknownTargetError,
)
from cross_build.shared.target_loader import DEFAULT_TARGETS_FILE, load_target_file


class LinkMode(Enum):
    """How the final binary links against the C runtime."""

    DYNAMIC = "dynamic"
    STATIC = "static"

    @property
    def rustflags(self) -> tuple[str, ...]:
        if self is LinkMode.STATIC:
            return ("-C", "target-feature=+crt-static")
        return ()


@dataclass(frozen=True, slots=True)
class TargetSpec:
    """One buildable configuration."""

    name: str
    platform_triple: str
    linker_binary: str
    linker_env_var: str
    link_mode: LinkMode = LinkMode.DYNAMIC
    extra_args: tuple[str, ...] = ()
    command: str | None = None
    description: str = ""

    def __post_init__(self) -> None:
        for field_name in ("name", "platform_triple", "linker_binary", "linker_env_var"):
            value = getattr(self, field_name)
            if not isinstance(value, str) or not value.strip():
                raise TargetConfigError(
                    f"'{field_name}' must be a non-empty string",
                    target=self.name if isinstance(self.name, str) else None,
                )
        if not isinstance(self.link_mode, LinkMode):
            raise TargetConfigError(
                f"Invalid link mode: {self.link_mode!r}", target=self.name
            )
        # Lists from target files become tuples to keep TargetSpec hashable
        object.__setattr__(self, "extra_args", tuple(self.extra_args))

    @classmethod
    def from_mapping(
        cls, name: str, data: dict[str, Any], path: str | None = None
    ) -> TargetSpec:
        """Create a spec from a loaded target file entry."""
        try:
            link_mode = LinkMode(data.get("link", LinkMode.DYNAMIC.value))
        except ValueError:
            choices = ", ".join(m.value for m in LinkMode)
            raise TargetConfigError(
                f"Invalid link mode '{data.get('link')}' (expected one of: {choices})",
                path,
                name,
            ) from None
        return cls(
            name=name,
            platform_triple=data["triple"],
            linker_binary=data["linker"],
            linker_env_var=data["linker_env"],
            link_mode=link_mode,
            extra_args=tuple(str(a) for a in data.get("extra_args", ())),
            command=data.get("command"),
            description=data.get("description", ""),
        )

    def driver_args(self) -> list[str]:
        """Target-specific compiler driver arguments."""
        args = ["--target", self.platform_triple]
        flags = self.link_mode.rustflags
        if flags:
            quoted = ", ".join(f'"{flag}"' for flag in flags)
            args.extend(["--config", f"target.{self.platform_triple}.rustflags=[{quoted}]"])
        args.extend(self.extra_args)
        return args


class TargetRegistry:
    """Ordered, read-only-after-init mapping of target names to specs."""

    __slots__ = ("_targets", "_commands", "_toolchains", "_frozen")

    def __init__(self) -> None:
        self._targets: dict[str, TargetSpec] = {}
        self._commands: dict[str, str] = {}
        self._toolchains: dict[tuple[str, str], str] = {}
        self._frozen = False

    @classmethod
    def from_specs(cls, specs: Iterable[TargetSpec]) -> TargetRegistry:
        """Register all specs and freeze the registry."""
        registry = cls()
        for spec in specs:
            registry.register(spec)
        registry.freeze()
        return registry

    def register(self, spec: TargetSpec) -> None:
        """Add a target during initialization.

        Raises:
            RegistryFrozenError: If the registry has been frozen.
            DuplicateTargetError: If the name, the (triple, linker env var)
                pair or the bound command is already taken.
        """
        if self._frozen:
            raise RegistryFrozenError(spec.name)
        if spec.name in self._targets:
            raise DuplicateTargetError(spec.name)

        toolchain_key = (spec.platform_triple, spec.linker_env_var)
        owner = self._toolchains.get(toolchain_key)
        if owner is not None:
            raise DuplicateTargetError(
                spec.name,
                f"triple '{spec.platform_triple}' with {spec.linker_env_var} "
                f"is already used by '{owner}'",
            )

        if spec.command is not None and spec.command in self._commands:
            raise DuplicateTargetError(
                spec.name,
                f"command '{spec.command}' is already bound to "
                f"'{self._commands[spec.command]}'",
            )

        self._targets[spec.name] = spec
        self._toolchains[toolchain_key] = spec.name
        if spec.command is not None:
            self._commands[spec.command] = spec.name

    def freeze(self) -> None:
        """End initialization; further registration fails."""
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def resolve(self, name: str) -> TargetSpec:
        """Look up a target by logical name."""
        try:
            return self._targets[name]
        except KeyError:
            raise UnknownTargetError(name, self._targets) from None

    def resolve_command(self, command: str) -> TargetSpec:
        """Look up the target bound to a CLI command."""
        try:
            return self._targets[self._commands[command]]
        except KeyError:
            raise UnknownTargetError(command, self._commands) from None

    def names(self) -> list[str]:
        return list(self._targets)

    def commands(self) -> dict[str, TargetSpec]:
        """Bound CLI commands in registration order."""
        return {cmd: self._targets[name] for cmd, name in self._commands.items()}

    def __iter__(self) -> Iterator[TargetSpec]:
        return iter(list(self._targets.values()))

    def __len__(self) -> int:
        return len(self._targets)

    def __contains__(self, name: object) -> bool:
        return name in self._targets


def load_registry(path: Path | None = None) -> TargetRegistry:
    """Load target definitions from YAML and return a frozen registry.

    Args:
        path: Target file to load. Defaults to the packaged targets.yaml.

    Raises:
        TargetConfigError: If the file is unreadable or malformed.
        DuplicateTargetError: If two entries conflict.
    """
    target_path = path or DEFAULT_TARGETS_FILE
    entries = load_target_file(target_path)
    return TargetRegistry.from_specs(
        TargetSpec.from_mapping(name, data, str(target_path))
        for name, data in entries.items()
    )
