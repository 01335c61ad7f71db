"""Shape helpers shared by the import, export and DXF bridges.

Explores and counts topology, builds compounds and converts between host
placements and kernel locations.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterator

import structlog

from hostdoc.document import Placement

from .occt_io import occ, static

logger = structlog.get_logger(__name__)

_KINDS = ("SOLID", "SHELL", "FACE", "WIRE", "EDGE", "VERTEX")


@dataclass
class TopologyCounts:
    """Counts of topological entities in a shape."""

    solids: int = 0
    shells: int = 0
    faces: int = 0
    edges: int = 0
    vertices: int = 0


def iter_subshapes(shape: Any, kind: str) -> Iterator[Any]:
    """Yield sub-shapes of ``kind`` (``"FACE"``, ``"EDGE"``...) in explorer order."""
    if kind not in _KINDS:
        raise ValueError(f"Unknown shape kind: {kind}")
    topabs = getattr(occ("TopAbs"), f"TopAbs_{kind}")
    explorer = occ("TopExp").TopExp_Explorer(shape, topabs)
    while explorer.More():
        yield explorer.Current()
        explorer.Next()


def unique_subshapes(shape: Any, kind: str) -> list[Any]:
    """Distinct sub-shapes of ``kind``; edges shared by two faces appear once."""
    shape_map = occ("TopTools").TopTools_IndexedMapOfShape()
    for sub in iter_subshapes(shape, kind):
        shape_map.Add(sub)
    return [shape_map.FindKey(i) for i in range(1, shape_map.Extent() + 1)]


def vertex_point(vertex: Any) -> tuple[float, float, float]:
    pnt = static(occ("BRep").BRep_Tool, "Pnt")(vertex)
    return (float(pnt.X()), float(pnt.Y()), float(pnt.Z()))


def count_topology(shape: Any) -> TopologyCounts:
    return TopologyCounts(
        solids=sum(1 for _ in iter_subshapes(shape, "SOLID")),
        shells=sum(1 for _ in iter_subshapes(shape, "SHELL")),
        faces=sum(1 for _ in iter_subshapes(shape, "FACE")),
        edges=sum(1 for _ in iter_subshapes(shape, "EDGE")),
        vertices=sum(1 for _ in iter_subshapes(shape, "VERTEX")),
    )


def downcast(shape: Any, kind: str) -> Any:
    """Down-cast a ``TopoDS_Shape`` to ``TopoDS_<kind>`` (``"Edge"``, ``"Face"``...)."""
    topods = occ("TopoDS")
    holder = getattr(topods, "TopoDS", None)
    if holder is not None and hasattr(holder, f"{kind}_s"):
        return getattr(holder, f"{kind}_s")(shape)
    helper = getattr(topods, "topods", None)
    if helper is not None and hasattr(helper, kind):
        return getattr(helper, kind)(shape)
    return getattr(topods, f"topods_{kind}")(shape)


def make_compound(shapes: list[Any]) -> Any:
    builder = occ("BRep").BRep_Builder()
    compound = occ("TopoDS").TopoDS_Compound()
    builder.MakeCompound(compound)
    for shape in shapes:
        builder.Add(compound, shape)
    return compound


def placement_to_location(placement: Placement) -> Any:
    gp = occ("gp")
    trsf = gp.gp_Trsf()
    if not placement.is_identity:
        trsf.SetRotation(gp.gp_Quaternion(*placement.rotation))
        trsf.SetTranslationPart(gp.gp_Vec(*placement.position))
    return occ("TopLoc").TopLoc_Location(trsf)


def location_to_placement(location: Any) -> Placement:
    if location.IsIdentity():
        return Placement.identity()
    trsf = location.Transformation()
    quat = trsf.GetRotation()
    vec = trsf.TranslationPart()
    return Placement(
        position=(vec.X(), vec.Y(), vec.Z()),
        rotation=(quat.X(), quat.Y(), quat.Z(), quat.W()),
    )


def label_name(label: Any) -> str | None:
    """``TDataStd_Name`` of an XCAF label, or ``None`` when unnamed."""
    tdatastd = occ("TDataStd")
    attr = tdatastd.TDataStd_Name()
    if not label.FindAttribute(static(tdatastd.TDataStd_Name, "GetID")(), attr):
        return None
    raw = attr.Get().ToExtString()
    name = str(raw).strip()
    if not name or name.upper() == "NONE":
        return None
    return name


def set_label_name(label: Any, name: str) -> None:
    ext = occ("TCollection").TCollection_ExtendedString(name)
    static(occ("TDataStd").TDataStd_Name, "Set")(label, ext)
