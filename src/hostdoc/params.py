"""Hierarchical preference store.

Groups are addressed with the familiar ``"<root>:<Group>/<SubGroup>"`` form,
for example ``"User parameter:BaseApp/Preferences/Mod/Part/STEP"``. Each group
keeps separate maps per value type so that a boolean and a string stored under
the same key never shadow each other. The store serialises to deterministic
JSON so that preference files diff cleanly.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Union

import orjson
import structlog

logger = structlog.get_logger(__name__)

USER_ROOT = "User parameter"
SYSTEM_ROOT = "System parameter"
CONFIG_ENV_VAR = "SHAPEPORT_USER_CONFIG"

_VALUE_KINDS = ("bool", "int", "float", "string")


class ParameterError(Exception):
    """Raised for malformed group paths or preference files."""

    pass


class ParameterGroup:
    """A node of the preference tree."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._values: Dict[str, Dict[str, Any]] = {kind: {} for kind in _VALUE_KINDS}
        self._groups: Dict[str, ParameterGroup] = {}

    def get_group(self, path: str) -> ParameterGroup:
        """Return (creating as needed) the sub-group at a ``/``-separated path."""
        group = self
        for part in path.split("/"):
            if not part:
                continue
            child = group._groups.get(part)
            if child is None:
                child = ParameterGroup(part)
                group._groups[part] = child
            group = child
        return group

    def has_group(self, name: str) -> bool:
        return name in self._groups

    def groups(self) -> Iterator[ParameterGroup]:
        return iter(self._groups.values())

    def get_bool(self, key: str, default: bool = False) -> bool:
        return self._values["bool"].get(key, default)

    def get_int(self, key: str, default: int = 0) -> int:
        return self._values["int"].get(key, default)

    def get_float(self, key: str, default: float = 0.0) -> float:
        return self._values["float"].get(key, default)

    def get_string(self, key: str, default: str = "") -> str:
        return self._values["string"].get(key, default)

    def set_bool(self, key: str, value: bool) -> None:
        self._values["bool"][key] = bool(value)

    def set_int(self, key: str, value: int) -> None:
        self._values["int"][key] = int(value)

    def set_float(self, key: str, value: float) -> None:
        self._values["float"][key] = float(value)

    def set_string(self, key: str, value: str) -> None:
        self._values["string"][key] = str(value)

    def remove(self, key: str) -> None:
        for values in self._values.values():
            values.pop(key, None)

    def lookup(self, key: str) -> Optional[tuple[str, Any]]:
        """Find ``key`` in any value map, returning ``(kind, value)``."""
        for kind in _VALUE_KINDS:
            if key in self._values[kind]:
                return kind, self._values[kind][key]
        return None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {kind: dict(values) for kind, values in self._values.items() if values}
        if self._groups:
            data["groups"] = {name: group.to_dict() for name, group in self._groups.items()}
        return data

    @classmethod
    def from_dict(cls, name: str, data: Dict[str, Any]) -> ParameterGroup:
        group = cls(name)
        for kind in _VALUE_KINDS:
            values = data.get(kind, {})
            if not isinstance(values, dict):
                raise ParameterError(f"Group {name!r}: {kind} values must be a mapping")
            group._values[kind].update(values)
        for child_name, child_data in data.get("groups", {}).items():
            group._groups[child_name] = cls.from_dict(child_name, child_data)
        return group


class ParameterStore:
    """Root of the preference tree with user and system roots."""

    def __init__(self, path: Optional[Union[str, Path]] = None) -> None:
        self.path = Path(path) if path else None
        self._roots: Dict[str, ParameterGroup] = {
            USER_ROOT: ParameterGroup(USER_ROOT),
            SYSTEM_ROOT: ParameterGroup(SYSTEM_ROOT),
        }

    @classmethod
    def from_environment(cls) -> ParameterStore:
        """Load the store named by ``SHAPEPORT_USER_CONFIG`` if it is set."""
        path = os.environ.get(CONFIG_ENV_VAR)
        if not path:
            return cls()
        return cls.load(path)

    @classmethod
    def load(cls, path: Union[str, Path]) -> ParameterStore:
        """Load a store from ``path``; a missing file gives an empty store bound to it."""
        store = cls(path)
        file_path = Path(path)
        if not file_path.exists():
            logger.debug("Preference file not found, using defaults", path=str(file_path))
            return store
        try:
            data = orjson.loads(file_path.read_bytes())
        except orjson.JSONDecodeError as e:
            raise ParameterError(f"Invalid preference file {file_path}: {e}") from e
        if not isinstance(data, dict):
            raise ParameterError(f"Invalid preference file {file_path}: top level must be an object")
        for root_name, root_data in data.items():
            store._roots[root_name] = ParameterGroup.from_dict(root_name, root_data)
        logger.info("Preferences loaded", path=str(file_path))
        return store

    def save(self, path: Optional[Union[str, Path]] = None) -> Path:
        target = Path(path) if path else self.path
        if target is None:
            raise ParameterError("No path given for saving preferences")
        target.parent.mkdir(parents=True, exist_ok=True)
        payload = {name: root.to_dict() for name, root in self._roots.items()}
        target.write_bytes(orjson.dumps(payload, option=orjson.OPT_SORT_KEYS | orjson.OPT_INDENT_2))
        logger.info("Preferences saved", path=str(target))
        return target

    def get_group(self, address: str) -> ParameterGroup:
        """Resolve ``"<root>:<path>"`` to a group.

        Raises:
            ParameterError: If the address has no known root
        """
        root_name, sep, path = address.partition(":")
        if not sep:
            raise ParameterError(f"Parameter path must look like '<root>:<group>/...': {address!r}")
        root = self._roots.get(root_name)
        if root is None:
            raise ParameterError(f"Unknown parameter root: {root_name!r}")
        return root.get_group(path)

    @property
    def user(self) -> ParameterGroup:
        return self._roots[USER_ROOT]

    @property
    def system(self) -> ParameterGroup:
        return self._roots[SYSTEM_ROOT]
