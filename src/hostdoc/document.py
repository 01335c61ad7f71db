"""Host document and object model.

Documents own an ordered set of named objects. Part features carry an OCCT
shape together with the visual attributes (colours, layer) that import and
export carry across file formats. Groups nest objects and give each child a
placement relative to the group.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional

import structlog

from .params import ParameterStore

logger = structlog.get_logger(__name__)


class DocumentError(Exception):
    """Raised when a document or object operation is invalid."""

    pass


@dataclass(frozen=True)
class Color:
    """RGBA colour with float channels in [0, 1]."""

    r: float
    g: float
    b: float
    a: float = 1.0

    def __post_init__(self) -> None:
        for channel in (self.r, self.g, self.b, self.a):
            if not 0.0 <= channel <= 1.0:
                raise ValueError(f"Color channel out of range: {channel}")

    @classmethod
    def from_rgb255(cls, r: int, g: int, b: int) -> Color:
        return cls(r / 255.0, g / 255.0, b / 255.0)

    def to_hex(self) -> str:
        return "#{:02X}{:02X}{:02X}".format(
            *(max(0, min(255, round(c * 255))) for c in (self.r, self.g, self.b))
        )


DEFAULT_SHAPE_COLOR = Color(0.8, 0.8, 0.8)


@dataclass(frozen=True)
class Placement:
    """Rigid placement: translation plus unit quaternion rotation (x, y, z, w)."""

    position: tuple[float, float, float] = (0.0, 0.0, 0.0)
    rotation: tuple[float, float, float, float] = (0.0, 0.0, 0.0, 1.0)

    @classmethod
    def identity(cls) -> Placement:
        return cls()

    @classmethod
    def from_axis_angle(
        cls,
        position: tuple[float, float, float],
        axis: tuple[float, float, float],
        angle: float,
    ) -> Placement:
        """Build a placement from a rotation axis and an angle in radians."""
        norm = math.sqrt(sum(c * c for c in axis))
        if norm == 0.0:
            raise ValueError("Rotation axis must not be zero")
        s = math.sin(angle / 2.0) / norm
        return cls(
            position=tuple(float(c) for c in position),
            rotation=(axis[0] * s, axis[1] * s, axis[2] * s, math.cos(angle / 2.0)),
        )

    @property
    def is_identity(self) -> bool:
        x, y, z, w = self.rotation
        return (
            all(abs(c) < 1e-12 for c in self.position)
            and abs(x) < 1e-12
            and abs(y) < 1e-12
            and abs(z) < 1e-12
            and abs(abs(w) - 1.0) < 1e-12
        )

    def multiply(self, other: Placement) -> Placement:
        """Return ``self * other`` (apply ``other`` first, then ``self``)."""
        x1, y1, z1, w1 = self.rotation
        x2, y2, z2, w2 = other.rotation
        rotation = (
            w1 * x2 + x1 * w2 + y1 * z2 - z1 * y2,
            w1 * y2 - x1 * z2 + y1 * w2 + z1 * x2,
            w1 * z2 + x1 * y2 - y1 * x2 + z1 * w2,
            w1 * w2 - x1 * x2 - y1 * y2 - z1 * z2,
        )
        moved = self._rotate(other.position)
        position = tuple(m + p for m, p in zip(moved, self.position))
        return Placement(position=position, rotation=rotation)

    def _rotate(self, v: tuple[float, float, float]) -> tuple[float, float, float]:
        x, y, z, w = self.rotation
        # v' = v + 2w(q x v) + 2 q x (q x v)
        cx = y * v[2] - z * v[1]
        cy = z * v[0] - x * v[2]
        cz = x * v[1] - y * v[0]
        ccx = y * cz - z * cy
        ccy = z * cx - x * cz
        ccz = x * cy - y * cx
        return (
            v[0] + 2.0 * (w * cx + ccx),
            v[1] + 2.0 * (w * cy + ccy),
            v[2] + 2.0 * (w * cz + ccz),
        )


class DocumentObject:
    """Base class for anything stored in a document."""

    type_name = "App::DocumentObject"

    def __init__(self, label: str) -> None:
        self.name: Optional[str] = None
        self.label = label
        self.document: Optional[Document] = None
        self.visible = True
        self.placement = Placement.identity()
        self.touched = True
        self.parent: Optional[GroupObject] = None

    @property
    def is_attached(self) -> bool:
        return self.document is not None and self.name is not None

    @property
    def global_placement(self) -> Placement:
        """Placement in document space, composed through every parent group."""
        placement = self.placement
        parent = self.parent
        while parent is not None:
            placement = parent.placement.multiply(placement)
            parent = parent.parent
        return placement

    def execute(self) -> None:
        """Recompute hook; plain objects have nothing to do."""
        return None

    def __repr__(self) -> str:
        return f"<{self.type_name} {self.name or '?'} ({self.label!r})>"


class PartFeature(DocumentObject):
    """Object holding a kernel shape and its visual attributes."""

    type_name = "Part::Feature"

    def __init__(self, label: str, shape: Any = None) -> None:
        super().__init__(label)
        self.shape = shape
        self.shape_color: Optional[Color] = None
        self.face_colors: List[Color] = []
        self.layer: Optional[str] = None

    def execute(self) -> None:
        if self.shape is not None and self.shape.IsNull():
            raise DocumentError(f"Shape of {self.name} is null")


class GroupObject(DocumentObject):
    """Container of other objects.

    A group created from an assembly keeps the assembly structure; with
    ``link_group`` set it stands for a link group, which the simplified
    exporter cannot represent.
    """

    type_name = "App::Part"

    def __init__(self, label: str, link_group: bool = False) -> None:
        super().__init__(label)
        self.link_group = link_group
        self.children: List[DocumentObject] = []
        if link_group:
            self.type_name = "App::LinkGroup"

    def add(self, obj: DocumentObject) -> None:
        if obj is self:
            raise DocumentError("A group cannot contain itself")
        if obj.parent is not None:
            obj.parent.children.remove(obj)
        obj.parent = self
        self.children.append(obj)

    def walk(self) -> Iterator[DocumentObject]:
        """Yield all descendants depth first."""
        for child in self.children:
            yield child
            if isinstance(child, GroupObject):
                yield from child.walk()


class Document:
    """Named container of uniquely named objects."""

    def __init__(self, name: str, label: Optional[str] = None, application: Optional[Application] = None):
        self.name = name
        self.label = label or name
        self.application = application
        self._objects: Dict[str, DocumentObject] = {}
        self.recompute_count = 0

    @property
    def objects(self) -> List[DocumentObject]:
        return list(self._objects.values())

    def get_object(self, name: str) -> Optional[DocumentObject]:
        return self._objects.get(name)

    def add_object(self, obj: DocumentObject, name: Optional[str] = None) -> DocumentObject:
        """Register ``obj`` under a unique name derived from ``name`` or its label."""
        if obj.document is not None:
            raise DocumentError(f"Object {obj.name} already belongs to document {obj.document.name}")
        obj.name = _unique_name(name or obj.label or "Unnamed", self._objects)
        obj.document = self
        self._objects[obj.name] = obj
        logger.debug("Object added", document=self.name, object=obj.name, type=obj.type_name)
        return obj

    def add_part(self, label: str, shape: Any, name: Optional[str] = None) -> PartFeature:
        return self.add_object(PartFeature(label, shape), name)

    def add_group(self, label: str, link_group: bool = False, name: Optional[str] = None) -> GroupObject:
        return self.add_object(GroupObject(label, link_group), name)

    def remove_object(self, name: str) -> None:
        obj = self._objects.pop(name, None)
        if obj is None:
            raise DocumentError(f"No object named {name!r} in document {self.name}")
        if obj.parent is not None:
            obj.parent.children.remove(obj)
            obj.parent = None
        obj.document = None

    def root_objects(self) -> List[DocumentObject]:
        return [obj for obj in self._objects.values() if obj.parent is None]

    def recompute(self) -> int:
        """Run ``execute`` on touched objects and return how many ran."""
        count = 0
        for obj in self._objects.values():
            if obj.touched:
                obj.execute()
                obj.touched = False
                count += 1
        self.recompute_count += 1
        logger.debug("Document recomputed", document=self.name, objects=count)
        return count

    def __repr__(self) -> str:
        return f"<Document {self.name} objects={len(self._objects)}>"


class Application:
    """Registry of open documents plus the user preference store."""

    def __init__(self, params: Optional[ParameterStore] = None, name: str = "ShapePort"):
        self.name = name
        self.params = params or ParameterStore()
        self._documents: Dict[str, Document] = {}
        self._active: Optional[str] = None
        self._observers: List[Callable[[Document], None]] = []

    @property
    def documents(self) -> List[Document]:
        return list(self._documents.values())

    @property
    def active_document(self) -> Optional[Document]:
        return self._documents.get(self._active) if self._active else None

    def set_active_document(self, name: str) -> None:
        if name not in self._documents:
            raise DocumentError(f"No document named {name!r}")
        self._active = name

    def get_document(self, name: str) -> Optional[Document]:
        return self._documents.get(name)

    def new_document(self, name: Optional[str] = None, label: Optional[str] = None) -> Document:
        doc_name = _unique_name(_sanitize(name or "Unnamed"), self._documents)
        doc = Document(doc_name, label or name or doc_name, application=self)
        self._documents[doc_name] = doc
        self._active = doc_name
        for observer in self._observers:
            observer(doc)
        logger.info("Document created", document=doc_name)
        return doc

    def close_document(self, name: str) -> None:
        if self._documents.pop(name, None) is None:
            raise DocumentError(f"No document named {name!r}")
        if self._active == name:
            self._active = next(reversed(self._documents), None) if self._documents else None
        logger.info("Document closed", document=name)

    def on_new_document(self, callback: Callable[[Document], None]) -> None:
        self._observers.append(callback)


def _sanitize(name: str) -> str:
    cleaned = re.sub(r"[^0-9A-Za-z_]", "_", name)
    if not cleaned or cleaned[0].isdigit():
        cleaned = f"_{cleaned}"
    return cleaned


def _unique_name(base: str, taken: Dict[str, Any]) -> str:
    base = _sanitize(base)
    if base not in taken:
        return base
    stem = re.sub(r"\d+$", "", base) or base
    index = 1
    while f"{stem}{index:03d}" in taken:
        index += 1
    return f"{stem}{index:03d}"


_application: Optional[Application] = None


def get_application() -> Application:
    """Return the process-wide application, creating it on first use."""
    global _application
    if _application is None:
        _application = Application(ParameterStore.from_environment())
    return _application


def set_application(app: Optional[Application]) -> None:
    """Replace the process-wide application (``None`` resets it)."""
    global _application
    _application = app
