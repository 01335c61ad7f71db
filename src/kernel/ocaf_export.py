"""Build an XCAF document from host objects for export.

``OcafExporter`` keeps the object hierarchy (groups become assemblies) and
honours hidden objects and top-level placements. ``LegacyOcafExporter`` is the
older, simpler strategy: parts are added as they come, free parts receive
their absolute placement and nested parts keep explicit component locations.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Iterator, Optional, Sequence

import structlog

from hostdoc.document import Color, DocumentObject, GroupObject, PartFeature, Placement
from hostdoc.settings import ImportExportSettings

from .occt_io import KernelDocument, occ, static
from .shapes import iter_subshapes, placement_to_location, set_label_name

logger = structlog.get_logger(__name__)


@dataclass
class ExportOptions:
    export_hidden: bool = True
    keep_placement: bool = False

    @classmethod
    def from_settings(cls, settings: ImportExportSettings) -> ExportOptions:
        return cls(export_hidden=settings.export_hidden, keep_placement=settings.keep_placement)


def _walk(objs: Iterable[DocumentObject]) -> Iterator[DocumentObject]:
    for obj in objs:
        yield obj
        if isinstance(obj, GroupObject):
            yield from obj.walk()


def _to_quantity(color: Color) -> Any:
    quantity = occ("Quantity")
    return quantity.Quantity_Color(color.r, color.g, color.b, quantity.Quantity_TOC_RGB)


def _export_colors(kdoc: KernelDocument, label: Any, part: PartFeature, shape: Any) -> None:
    xcafdoc = occ("XCAFDoc")
    if part.face_colors:
        faces = list(iter_subshapes(shape, "FACE"))
        if len(faces) == len(part.face_colors):
            for face, color in zip(faces, part.face_colors):
                sub_label = kdoc.shape_tool.AddSubShape(label, face)
                if sub_label.IsNull():
                    continue
                kdoc.color_tool.SetColor(sub_label, _to_quantity(color), xcafdoc.XCAFDoc_ColorSurf)
            return
        logger.warning(
            "Face colour count does not match the shape, using a single colour",
            part=part.name,
            faces=len(faces),
            colors=len(part.face_colors),
        )

    color = part.shape_color or (part.face_colors[0] if part.face_colors else None)
    if color is not None:
        kdoc.color_tool.SetColor(label, _to_quantity(color), xcafdoc.XCAFDoc_ColorGen)


def _has_shape(part: PartFeature) -> bool:
    if part.shape is None or part.shape.IsNull():
        logger.warning("Skipping part without shape", part=part.name)
        return False
    return True


class OcafExporter:
    """Hierarchical exporter."""

    def __init__(self, kdoc: KernelDocument, options: Optional[ExportOptions] = None) -> None:
        self._kdoc = kdoc
        self.options = options or ExportOptions()

    @staticmethod
    def can_fallback(objs: Sequence[DocumentObject]) -> bool:
        """Whether the legacy exporter can represent ``objs``.

        Link groups have no counterpart in the legacy path; any link group
        among the objects or their descendants rules it out.
        """
        for obj in _walk(objs):
            if not obj.is_attached:
                continue
            if isinstance(obj, GroupObject) and obj.link_group:
                return False
        return True

    def export_objects(self, objs: Sequence[DocumentObject]) -> list[Any]:
        """Add ``objs`` as free shapes and return their labels.

        A lone object is written at the origin unless ``keep_placement`` is
        set. With several objects each keeps its placement.
        """
        keep = self.options.keep_placement or len(objs) > 1
        labels = []
        for obj in objs:
            prefix = obj.placement if keep else Placement.identity()
            label = self._export(obj, prefix)
            if label is not None:
                labels.append(label)
        self._kdoc.shape_tool.UpdateAssemblies()
        logger.info("Exported objects to kernel document", objects=len(objs), free_shapes=len(labels))
        return labels

    def _export(self, obj: DocumentObject, prefix: Placement) -> Optional[Any]:
        if not obj.visible and not self.options.export_hidden:
            logger.debug("Skipping hidden object", object=obj.name)
            return None

        shape_tool = self._kdoc.shape_tool
        if isinstance(obj, GroupObject):
            label = shape_tool.NewShape()
            set_label_name(label, obj.label)
            for child in obj.children:
                child_label = self._export(child, Placement.identity())
                if child_label is None:
                    continue
                location = placement_to_location(prefix.multiply(child.placement))
                shape_tool.AddComponent(label, child_label, location)
            return label

        if not isinstance(obj, PartFeature) or not _has_shape(obj):
            return None

        shape = obj.shape
        if not prefix.is_identity:
            shape = shape.Moved(placement_to_location(prefix))
        label = shape_tool.AddShape(shape, False)
        set_label_name(label, obj.label)
        _export_colors(self._kdoc, label, obj, shape)
        if not obj.visible:
            self._kdoc.color_tool.SetVisibility(label, False)
        return label


class LegacyOcafExporter:
    """Flat exporter kept for backward compatibility."""

    def __init__(self, kdoc: KernelDocument, keep_explicit_placement: bool = True) -> None:
        self._kdoc = kdoc
        self.keep_explicit_placement = keep_explicit_placement

    def export_object(
        self,
        obj: DocumentObject,
        labels: list[Any],
        locations: list[Any],
        parts: list[PartFeature],
        prefix: Optional[Placement] = None,
    ) -> Optional[Any]:
        """Export ``obj`` recording each part's label, location and object.

        ``prefix`` is the placement of a group exported as a free assembly; it
        is folded into the locations of the group's components.
        """
        shape_tool = self._kdoc.shape_tool
        if isinstance(obj, GroupObject):
            label = shape_tool.NewShape()
            set_label_name(label, obj.label)
            for child in obj.children:
                child_label = self.export_object(child, labels, locations, parts)
                if child_label is None:
                    continue
                placement = child.placement if self.keep_explicit_placement else Placement.identity()
                if prefix is not None:
                    placement = prefix.multiply(placement)
                shape_tool.AddComponent(label, child_label, placement_to_location(placement))
            return label

        if not isinstance(obj, PartFeature) or not _has_shape(obj):
            return None

        label = shape_tool.AddShape(obj.shape, False)
        set_label_name(label, obj.label)
        _export_colors(self._kdoc, label, obj, obj.shape)
        labels.append(label)
        locations.append(placement_to_location(obj.placement))
        parts.append(obj)
        return label

    def free_labels(self, labels: list[Any]) -> tuple[list[Any], list[int]]:
        """Split out labels that are not nested under another exported part."""
        is_free = static(occ("XCAFDoc").XCAFDoc_ShapeTool, "IsFree")
        free = []
        part_ids = []
        for index, label in enumerate(labels):
            if is_free(label):
                free.append(label)
                part_ids.append(index)
        return free, part_ids

    def reallocate_free_shapes(
        self,
        free: list[Any],
        part_ids: list[int],
        locations: list[Any],
        parts: list[PartFeature],
    ) -> None:
        """Give free shapes their absolute placement."""
        for label, index in zip(free, part_ids):
            if parts[index].placement.is_identity:
                continue
            self._kdoc.shape_tool.SetShape(label, parts[index].shape.Located(locations[index]))

    def export_objects(self, objs: Sequence[DocumentObject]) -> list[Any]:
        labels: list[Any] = []
        locations: list[Any] = []
        parts: list[PartFeature] = []
        for obj in objs:
            self.export_object(obj, labels, locations, parts, prefix=obj.placement)

        free, part_ids = self.free_labels(labels)
        self.reallocate_free_shapes(free, part_ids, locations, parts)
        self._kdoc.shape_tool.UpdateAssemblies()
        logger.info("Legacy export to kernel document", parts=len(parts), free_shapes=len(free))
        return free
