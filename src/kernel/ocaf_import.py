"""STEP/IGES import through the XCAF document framework.

The coloured transfer keeps names, colours and layers in a kernel document;
``OcafImporter`` then walks that document and creates host objects. When the
coloured transfer fails, ``import_bare_parts`` reads plain geometry straight
into the host document instead.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Callable, List, Optional

import structlog

from hostdoc.document import (
    DEFAULT_SHAPE_COLOR,
    Color,
    Document,
    DocumentObject,
    GroupObject,
    PartFeature,
    Placement,
)
from hostdoc.settings import ImportExportSettings

from .occt_io import (
    KernelDocument,
    KernelReadError,
    KernelTransferError,
    occ,
    read_bare_shapes,
    static,
)
from .shapes import (
    iter_subshapes,
    label_name,
    location_to_placement,
    make_compound,
    placement_to_location,
)

logger = structlog.get_logger(__name__)

ColorCallback = Callable[[PartFeature, List[Color]], None]


class ImportMode(IntEnum):
    """Where imported objects are placed."""

    SINGLE_DOC = 0
    GROUP_PER_DOC = 1
    GROUP_PER_DIR = 2
    OBJECT_PER_DOC = 3
    OBJECT_PER_DIR = 4


@dataclass
class ImportOptions:
    merge: bool = False
    import_hidden: bool = True
    use_link_group: bool = False
    mode: ImportMode = ImportMode.SINGLE_DOC

    @classmethod
    def from_settings(cls, settings: ImportExportSettings) -> ImportOptions:
        try:
            mode = ImportMode(settings.import_mode)
        except ValueError:
            logger.warning("Ignoring invalid import mode preference", mode=settings.import_mode)
            mode = ImportMode.SINGLE_DOC
        return cls(
            merge=settings.merge,
            import_hidden=settings.import_hidden,
            use_link_group=settings.use_link_group,
            mode=mode,
        )


def transfer_colored(kind: str, path: str, kdoc: KernelDocument, read_visible: bool = True) -> None:
    """Read ``path`` into ``kdoc`` keeping colours, names and layers.

    Args:
        kind: ``"STEP"`` or ``"IGES"``
        path: Input file path
        kdoc: Kernel document receiving the transfer
        read_visible: IGES only; skip blank entities

    Raises:
        KernelReadError: If the file cannot be read
        KernelTransferError: If the reader reports a failed transfer
    """
    if kind == "STEP":
        reader = occ("STEPCAFControl").STEPCAFControl_Reader()
    elif kind == "IGES":
        static(occ("IGESControl").IGESControl_Controller, "Init")()
        reader = occ("IGESCAFControl").IGESCAFControl_Reader()
        reader.SetReadVisible(read_visible)
    else:
        raise ValueError(f"Unsupported kind for XCAF import: {kind}")

    reader.SetColorMode(True)
    reader.SetNameMode(True)
    reader.SetLayerMode(True)

    if reader.ReadFile(path) != occ("IFSelect").IFSelect_RetDone:
        raise KernelReadError(f"cannot read {kind} file")

    logger.debug("Transferring file into kernel document", kind=kind, path=path)
    if not reader.Transfer(kdoc.doc):
        raise KernelTransferError(f"{kind} transfer into kernel document failed")


def import_bare_parts(
    kind: str, path: str, doc: Document, name: str, read_visible: bool = True
) -> list[PartFeature]:
    """Add one part per solid (or per root shape without solids) to ``doc``."""
    features = []
    for shape in read_bare_shapes(kind, path, read_visible):
        solids = list(iter_subshapes(shape, "SOLID"))
        for piece in solids or [shape]:
            features.append(doc.add_part(name, piece))
    logger.info("Imported bare geometry", kind=kind, path=path, parts=len(features))
    return features


def _to_color(qc: Any) -> Color:
    return Color(*(min(1.0, max(0.0, float(c))) for c in (qc.Red(), qc.Green(), qc.Blue())))


class OcafImporter:
    """Create host objects from the free shapes of a kernel document."""

    def __init__(
        self,
        kdoc: KernelDocument,
        doc: Document,
        name: str,
        options: Optional[ImportOptions] = None,
        on_face_colors: Optional[ColorCallback] = None,
    ) -> None:
        self._kdoc = kdoc
        self._doc = doc
        self._name = name
        self.options = options or ImportOptions()
        self._on_face_colors = on_face_colors
        self._created: list[DocumentObject] = []
        self._colored: list[PartFeature] = []

    def load_shapes(self) -> list[DocumentObject]:
        """Walk the free shapes and build host objects.

        Returns:
            Root objects created (groups or parts)
        """
        roots: list[DocumentObject] = []
        per_doc = not self.options.merge and self.options.mode in (
            ImportMode.OBJECT_PER_DOC,
            ImportMode.OBJECT_PER_DIR,
        )

        for index, label in enumerate(self._kdoc.free_labels()):
            target = self._doc
            if per_doc and index > 0 and self._doc.application is not None:
                target = self._doc.application.new_document(f"{self._name}_{index}")
            obj = self._load(label, target)
            if obj is not None:
                roots.append(obj)

        if self.options.merge and roots:
            roots = [self._merge(roots)]

        if self.options.mode in (ImportMode.GROUP_PER_DOC, ImportMode.GROUP_PER_DIR) and roots:
            group = self._add(self._doc, GroupObject(self._name, self.options.use_link_group))
            for root in roots:
                group.add(root)
            roots = [group]

        for part in self._colored:
            if part.document is not None and self._on_face_colors is not None:
                self._on_face_colors(part, list(part.face_colors))

        logger.info(
            "Loaded shapes from kernel document",
            name=self._name,
            roots=len(roots),
            objects=len(self._created),
            colored_parts=len(self._colored),
        )
        return roots

    def _add(self, doc: Document, obj: DocumentObject) -> DocumentObject:
        doc.add_object(obj)
        self._created.append(obj)
        return obj

    def _load(self, label: Any, doc: Document) -> Optional[DocumentObject]:
        shape_tool = occ("XCAFDoc").XCAFDoc_ShapeTool
        name = label_name(label) or self._name

        if not self.options.import_hidden and not static(self._kdoc.color_tool, "IsVisible")(label):
            logger.debug("Skipping hidden label", name=name)
            return None

        if static(shape_tool, "IsAssembly")(label):
            group = self._add(doc, GroupObject(name, self.options.use_link_group))
            components = occ("TDF").TDF_LabelSequence()
            static(shape_tool, "GetComponents")(label, components, False)
            for i in range(1, components.Length() + 1):
                component = components.Value(i)
                referred = occ("TDF").TDF_Label()
                if not static(shape_tool, "GetReferredShape")(component, referred):
                    continue
                child = self._load(referred, doc)
                if child is None:
                    continue
                child.placement = location_to_placement(static(shape_tool, "GetLocation")(component))
                instance_name = label_name(component)
                if instance_name:
                    child.label = instance_name
                group.add(child)
            return group

        shape = static(shape_tool, "GetShape")(label)
        if shape.IsNull():
            logger.debug("Skipping empty label", name=name)
            return None

        part = self._add(doc, PartFeature(name, shape))
        self._apply_colors(label, part)
        return part

    def _apply_colors(self, label: Any, part: PartFeature) -> None:
        xcafdoc = occ("XCAFDoc")
        quantity = occ("Quantity")
        color_tool = self._kdoc.color_tool
        # Label lookups are static in OCCT; the instance overload takes a shape
        label_color = static(xcafdoc.XCAFDoc_ColorTool, "GetColor")
        color_types = (xcafdoc.XCAFDoc_ColorSurf, xcafdoc.XCAFDoc_ColorGen)

        qc = quantity.Quantity_Color()
        if any(label_color(label, ctype, qc) for ctype in color_types):
            part.shape_color = _to_color(qc)

        face_colors: list[Color] = []
        explicit = False
        for face in iter_subshapes(part.shape, "FACE"):
            face_qc = quantity.Quantity_Color()
            if any(color_tool.GetColor(face, ctype, face_qc) for ctype in color_types):
                face_colors.append(_to_color(face_qc))
                explicit = True
            else:
                face_colors.append(part.shape_color or DEFAULT_SHAPE_COLOR)

        if explicit:
            part.face_colors = face_colors
            self._colored.append(part)

    def _merge(self, roots: list[DocumentObject]) -> PartFeature:
        parts: list[tuple[PartFeature, Placement]] = []

        def collect(obj: DocumentObject, parent: Placement) -> None:
            world = parent.multiply(obj.placement)
            if isinstance(obj, GroupObject):
                for child in obj.children:
                    collect(child, world)
            elif isinstance(obj, PartFeature):
                parts.append((obj, world))

        for root in roots:
            collect(root, Placement.identity())

        shapes = []
        colors: list[Color] = []
        explicit = False
        for part, world in parts:
            shape = part.shape if world.is_identity else part.shape.Moved(placement_to_location(world))
            shapes.append(shape)
            if part.face_colors:
                colors.extend(part.face_colors)
                explicit = True
            else:
                faces = sum(1 for _ in iter_subshapes(part.shape, "FACE"))
                colors.extend([part.shape_color or DEFAULT_SHAPE_COLOR] * faces)

        for obj in self._created:
            if obj.document is not None:
                obj.document.remove_object(obj.name)
        self._created = []

        merged = self._add(self._doc, PartFeature(self._name, make_compound(shapes)))
        self._colored = []
        if explicit:
            merged.face_colors = colors
            self._colored.append(merged)
        logger.debug("Merged imported parts", parts=len(parts))
        return merged
