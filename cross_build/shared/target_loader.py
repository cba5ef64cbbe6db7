"""Target file loading utilities."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Final

import yaml

from .errors import DuplicateTargetError, TargetConfigError

DEFAULT_TARGETS_FILE: Final[Path] = Path(__file__).resolve().parents[1] / "targets.yaml"

REQUIRED_FIELDS: Final[tuple[str, ...]] = ("triple", "linker", "linker_env")
OPTIONAL_FIELDS: Final[tuple[str, ...]] = ("link", "command", "description", "extra_args")


class UniqueKeyLoader(yaml.SafeLoader):
    """SafeLoader that rejects repeated mapping keys instead of keeping the last."""

    path: str | None = None
    targets_node: yaml.Node | None = None

    def construct_document(self, node: yaml.Node) -> Any:
        if isinstance(node, yaml.MappingNode):
            for key_node, value_node in node.value:
                if isinstance(key_node, yaml.ScalarNode) and key_node.value == "targets":
                    self.targets_node = value_node
        return super().construct_document(node)

    def construct_mapping(self, node: yaml.Node, deep: bool = False) -> dict[Any, Any]:
        if isinstance(node, yaml.MappingNode):
            seen: set[str] = set()
            for key_node, _ in node.value:
                if not isinstance(key_node, yaml.ScalarNode):
                    continue
                key = key_node.value
                if key in seen:
                    if node is self.targets_node:
                        raise DuplicateTargetError(key, f"defined more than once in {self.path}")
                    raise TargetConfigError(f"Duplicate key '{key}'", self.path)
                seen.add(key)
        return super().construct_mapping(node, deep=deep)


def load_target_file(path: Path) -> dict[str, dict[str, Any]]:
    """Load and validate target definitions from a YAML file.

    The file holds a ``targets`` mapping of logical name to fields::

        targets:
          linux-gnu:
            triple: x86_64-unknown-linux-gnu
            linker: x86_64-unknown-linux-gnu-gcc
            linker_env: CARGO_TARGET_X86_64_UNKNOWN_LINUX_GNU_LINKER

    Args:
        path: Path to the target file.

    Returns:
        Target entries keyed by name, in file order.

    Raises:
        TargetConfigError: If the file cannot be read, parsed or validated.
        DuplicateTargetError: If a target name appears more than once.
    """
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise TargetConfigError(f"Failed to read target file: {e}", str(path)) from e

    loader = UniqueKeyLoader(content)
    loader.path = str(path)
    try:
        data = loader.get_single_data()
    except yaml.YAMLError as e:
        raise TargetConfigError(f"Invalid YAML: {e}", str(path)) from e
    finally:
        loader.dispose()

    if not isinstance(data, dict):
        raise TargetConfigError("Target file root must be a mapping", str(path))

    targets = data.get("targets")
    if not isinstance(targets, dict) or not targets:
        raise TargetConfigError("'targets' must be a non-empty mapping", str(path))

    return {
        str(name): validate_target_entry(str(name), entry, str(path))
        for name, entry in targets.items()
    }


def validate_target_entry(
    name: str, entry: Any, path: str | None = None
) -> dict[str, Any]:
    """Check a single target entry's fields and value types."""
    if not isinstance(entry, dict):
        raise TargetConfigError("Target entry must be a mapping", path, name)

    unknown = sorted(set(entry) - set(REQUIRED_FIELDS) - set(OPTIONAL_FIELDS))
    if unknown:
        raise TargetConfigError(f"Unknown field(s): {', '.join(unknown)}", path, name)

    for field in REQUIRED_FIELDS:
        value = entry.get(field)
        if not isinstance(value, str) or not value.strip():
            raise TargetConfigError(
                f"Field '{field}' is required and must be a non-empty string",
                path,
                name,
            )

    for field in ("link", "command", "description"):
        if field in entry and not isinstance(entry[field], str):
            raise TargetConfigError(f"Field '{field}' must be a string", path, name)

    extra_args = entry.get("extra_args", [])
    if not isinstance(extra_args, list) or not all(
        isinstance(a, str) for a in extra_args
    ):
        raise TargetConfigError("Field 'extra_args' must be a list of strings", path, name)

    return dict(entry)
