"""File format detection by extension."""

from __future__ import annotations

from enum import Enum
from pathlib import PurePath
from typing import Union

_EXTENSIONS = {
    ".stp": "STEP",
    ".step": "STEP",
    ".igs": "IGES",
    ".iges": "IGES",
    ".glb": "GLTF",
    ".gltf": "GLTF",
    ".dxf": "DXF",
}


class FileFormat(str, Enum):
    STEP = "STEP"
    IGES = "IGES"
    GLTF = "GLTF"
    DXF = "DXF"
    UNSUPPORTED = "UNSUPPORTED"

    @property
    def readable(self) -> bool:
        """Whether ``open``/``insert`` can import this format."""
        return self in (FileFormat.STEP, FileFormat.IGES)

    @property
    def writable(self) -> bool:
        """Whether ``export`` can write this format."""
        return self in (FileFormat.STEP, FileFormat.IGES, FileFormat.GLTF)


def _suffix(path: Union[str, PurePath]) -> str:
    return PurePath(path).suffix.lower()


def detect_format(path: Union[str, PurePath]) -> FileFormat:
    """Format named by the extension of ``path``; the content is never sniffed."""
    return FileFormat(_EXTENSIONS.get(_suffix(path), "UNSUPPORTED"))


def has_extension(path: Union[str, PurePath], *extensions: str) -> bool:
    return _suffix(path) in {ext.lower() for ext in extensions}


def is_binary_gltf(path: Union[str, PurePath]) -> bool:
    return has_extension(path, ".glb")
