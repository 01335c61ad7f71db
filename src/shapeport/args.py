"""Argument decoding for the caller-facing operations.

Every operation validates its arguments here, before any kernel resource is
allocated. Optional flags are tri-state: ``None`` means "use the preference".
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence

from hostdoc.document import DocumentObject
from kernel.ocaf_import import ImportMode
from kernel.occt_io import is_shape

SHAPE_LIST_ERROR = "expected ([Shape],path"
OBJECT_LIST_ERROR = "expected ([DocObject],path"

DXF_VERSION_CHOICES = (12, 14)


def decode_path(value: Any, argument: str = "name") -> str:
    """Return ``value`` as a ``str`` path.

    Raises:
        TypeError: If ``value`` is not ``str``, ``bytes`` or path-like
        ValueError: If bytes are not UTF-8 or the path is empty
    """
    if isinstance(value, os.PathLike):
        value = os.fspath(value)
    if isinstance(value, bytes):
        try:
            value = value.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ValueError(f"{argument} is not valid UTF-8: {e}") from e
    if not isinstance(value, str):
        raise TypeError(f"{argument} must be a path string, not {type(value).__name__}")
    if not value:
        raise ValueError(f"{argument} must not be empty")
    return value


def optional_flag(value: Any, argument: str) -> Optional[bool]:
    if value is None or isinstance(value, bool):
        return value
    raise TypeError(f"{argument} must be a bool or None, not {type(value).__name__}")


def optional_int(value: Any, argument: str) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{argument} must be an int, not {type(value).__name__}")
    return value


def optional_str(value: Any, argument: str) -> Optional[str]:
    if value is None or isinstance(value, str):
        return value
    raise TypeError(f"{argument} must be a str or None, not {type(value).__name__}")


def import_mode(value: Any) -> Optional[ImportMode]:
    """Decode ``mode``; negative values mean unset."""
    mode = optional_int(value, "mode")
    if mode is None or mode < 0:
        return None
    try:
        return ImportMode(mode)
    except ValueError as e:
        raise ValueError(f"mode must be between 0 and {max(ImportMode)}, got {mode}") from e


def entity_sequence(value: Any, predicate: Callable[[Any], bool], message: str) -> tuple[Any, ...]:
    """Normalise a list of entities or a single entity to a tuple.

    List entries are not checked here; callers skip the ones they cannot use.

    Raises:
        TypeError: With ``message`` if ``value`` is neither
    """
    if isinstance(value, (list, tuple)):
        return tuple(value)
    if predicate(value):
        return (value,)
    raise TypeError(message)


def is_document_object(value: Any) -> bool:
    return isinstance(value, DocumentObject)


@dataclass(frozen=True)
class ImportRequest:
    path: str
    doc_name: Optional[str] = None
    import_hidden: Optional[bool] = None
    merge: Optional[bool] = None
    use_link_group: Optional[bool] = None
    mode: Optional[ImportMode] = None

    @classmethod
    def parse(
        cls,
        name: Any,
        doc_name: Any = None,
        import_hidden: Any = None,
        merge: Any = None,
        use_link_group: Any = None,
        mode: Any = -1,
    ) -> ImportRequest:
        return cls(
            path=decode_path(name),
            doc_name=optional_str(doc_name, "doc_name"),
            import_hidden=optional_flag(import_hidden, "import_hidden"),
            merge=optional_flag(merge, "merge"),
            use_link_group=optional_flag(use_link_group, "use_link_group"),
            mode=import_mode(mode),
        )


@dataclass(frozen=True)
class ExportRequest:
    objects: tuple[DocumentObject, ...]
    path: str
    export_hidden: Optional[bool] = None
    legacy: Optional[bool] = None
    keep_placement: Optional[bool] = None

    @classmethod
    def parse(
        cls,
        objects: Any,
        name: Any,
        export_hidden: Any = None,
        legacy: Any = None,
        keep_placement: Any = None,
    ) -> ExportRequest:
        if isinstance(objects, (str, bytes)) or not isinstance(objects, Sequence):
            raise TypeError(f"objects must be a sequence, not {type(objects).__name__}")
        return cls(
            objects=tuple(obj for obj in objects if is_document_object(obj)),
            path=decode_path(name),
            export_hidden=optional_flag(export_hidden, "export_hidden"),
            legacy=optional_flag(legacy, "legacy"),
            keep_placement=optional_flag(keep_placement, "keep_placement"),
        )


@dataclass(frozen=True)
class DxfReadRequest:
    path: str
    doc_name: Optional[str] = None
    ignore_errors: bool = True
    option_source: Optional[str] = None

    @classmethod
    def parse(
        cls,
        name: Any,
        doc_name: Any = None,
        ignore_errors: Any = True,
        option_source: Any = None,
    ) -> DxfReadRequest:
        if not isinstance(ignore_errors, bool):
            raise TypeError(f"ignore_errors must be a bool, not {type(ignore_errors).__name__}")
        return cls(
            path=decode_path(name),
            doc_name=optional_str(doc_name, "doc_name"),
            ignore_errors=ignore_errors,
            option_source=optional_str(option_source, "option_source"),
        )


@dataclass(frozen=True)
class DxfWriteRequest:
    entities: tuple[Any, ...]
    path: str
    version: Optional[int] = None
    use_polyline: bool = False
    option_source: Optional[str] = None

    @classmethod
    def parse(
        cls,
        entities: Any,
        name: Any,
        version: Any = -1,
        use_polyline: Any = False,
        option_source: Any = None,
        objects: bool = False,
    ) -> DxfWriteRequest:
        """Build a request for shapes, or document objects with ``objects``."""
        if objects:
            items = entity_sequence(entities, is_document_object, OBJECT_LIST_ERROR)
        else:
            items = entity_sequence(entities, is_shape, SHAPE_LIST_ERROR)
        if not isinstance(use_polyline, bool):
            raise TypeError(f"use_polyline must be a bool, not {type(use_polyline).__name__}")
        requested = optional_int(version, "version")
        return cls(
            entities=items,
            path=decode_path(name),
            version=requested if requested in DXF_VERSION_CHOICES else None,
            use_polyline=use_polyline,
            option_source=optional_str(option_source, "option_source"),
        )
