"""DXF import and export.

Both directions go through a small set of drafting primitives (segments,
arcs, circles, ellipses, polylines, splines, points). ezdxf owns the DXF side
of each primitive; the kernel builds or explores the matching edges.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Optional, Union

import ezdxf
import structlog
from ezdxf import recover

from hostdoc.document import Document, PartFeature
from hostdoc.params import ParameterStore
from hostdoc.settings import DXF_READ_OPTION_SOURCE, DXF_WRITE_OPTION_SOURCE

from .occt_io import is_kernel_failure, occ
from .shapes import downcast, make_compound, unique_subshapes, vertex_point

logger = structlog.get_logger(__name__)

Vec3 = tuple[float, float, float]

# ezdxf writes R12 and R2000 or later; R14 requests get R2000
DXF_VERSIONS = {12: "R12", 14: "R2000"}
DEFAULT_DXF_VERSION = 14
DEFAULT_LAYER = "none"

_ANGLE_TOL = 1e-9


@dataclass(frozen=True)
class Segment:
    start: Vec3
    end: Vec3


@dataclass(frozen=True)
class Circle:
    center: Vec3
    radius: float


@dataclass(frozen=True)
class Arc:
    """Counter-clockwise arc in the XY plane, angles in degrees."""

    center: Vec3
    radius: float
    start_angle: float
    end_angle: float


@dataclass(frozen=True)
class Ellipse:
    """Ellipse in the XY plane; params in radians along the major axis."""

    center: Vec3
    major_axis: Vec3
    ratio: float
    start_param: float = 0.0
    end_param: float = math.tau


@dataclass(frozen=True)
class Polyline:
    points: tuple[Vec3, ...]
    closed: bool = False


@dataclass(frozen=True)
class Spline:
    """Free-form curve through fit points."""

    points: tuple[Vec3, ...]


@dataclass(frozen=True)
class Point:
    location: Vec3


Primitive = Union[Segment, Circle, Arc, Ellipse, Polyline, Spline, Point]


def _vec(value: Iterable[float]) -> Vec3:
    coords = [float(c) for c in value]
    while len(coords) < 3:
        coords.append(0.0)
    return (coords[0], coords[1], coords[2])


def _is_world_z(extrusion: Any) -> bool:
    x, y, z = _vec(extrusion)
    return abs(x) < 1e-12 and abs(y) < 1e-12 and z > 0


# DXF entities -> primitives


def entity_primitives(entity: Any, flatten_distance: float = 0.01) -> list[Primitive]:
    """Translate a DXF entity into primitives (empty for unsupported types)."""
    kind = entity.dxftype()

    if kind == "LINE":
        return [Segment(_vec(entity.dxf.start), _vec(entity.dxf.end))]

    if kind in ("CIRCLE", "ARC"):
        if not _is_world_z(entity.dxf.extrusion):
            points = tuple(_vec(p) for p in entity.flattening(flatten_distance))
            return [Polyline(points, closed=kind == "CIRCLE")]
        center = _vec(entity.dxf.center)
        if kind == "CIRCLE":
            return [Circle(center, float(entity.dxf.radius))]
        return [
            Arc(center, float(entity.dxf.radius), float(entity.dxf.start_angle), float(entity.dxf.end_angle))
        ]

    if kind == "ELLIPSE":
        if not _is_world_z(entity.dxf.extrusion):
            return [Polyline(tuple(_vec(p) for p in entity.flattening(flatten_distance)))]
        return [
            Ellipse(
                _vec(entity.dxf.center),
                _vec(entity.dxf.major_axis),
                float(entity.dxf.ratio),
                float(entity.dxf.start_param),
                float(entity.dxf.end_param),
            )
        ]

    if kind == "SPLINE":
        return [Spline(tuple(_vec(p) for p in entity.flattening(flatten_distance)))]

    if kind == "POLYLINE" and entity.is_3d_polyline:
        points = tuple(_vec(v.dxf.location) for v in entity.vertices)
        return [Polyline(points, closed=entity.is_closed)]

    if kind == "POLYLINE" and (entity.is_poly_face_mesh or entity.is_polygon_mesh):
        logger.debug("Skipping mesh polyline", handle=entity.dxf.handle)
        return []

    if kind in ("LWPOLYLINE", "POLYLINE", "INSERT"):
        primitives: list[Primitive] = []
        for sub in entity.virtual_entities():
            primitives.extend(entity_primitives(sub, flatten_distance))
        return primitives

    if kind == "POINT":
        return [Point(_vec(entity.dxf.location))]

    logger.debug("Unsupported DXF entity", type=kind)
    return []


# primitives -> kernel shapes


def build_shape(primitive: Primitive, scale: float = 1.0) -> Any:
    """Create the kernel edge, wire or vertex for a primitive."""
    gp = occ("gp")
    api = occ("BRepBuilderAPI")

    def pnt(p: Vec3) -> Any:
        return gp.gp_Pnt(p[0] * scale, p[1] * scale, p[2] * scale)

    z_dir = gp.gp_Dir(0.0, 0.0, 1.0)

    if isinstance(primitive, Segment):
        return api.BRepBuilderAPI_MakeEdge(pnt(primitive.start), pnt(primitive.end)).Edge()

    if isinstance(primitive, Circle):
        circ = gp.gp_Circ(gp.gp_Ax2(pnt(primitive.center), z_dir), primitive.radius * scale)
        return api.BRepBuilderAPI_MakeEdge(circ).Edge()

    if isinstance(primitive, Arc):
        circ = gp.gp_Circ(gp.gp_Ax2(pnt(primitive.center), z_dir), primitive.radius * scale)
        start = math.radians(primitive.start_angle)
        end = math.radians(primitive.end_angle)
        if end <= start:
            end += math.tau
        return api.BRepBuilderAPI_MakeEdge(circ, start, end).Edge()

    if isinstance(primitive, Ellipse):
        major = math.sqrt(sum(c * c for c in primitive.major_axis))
        x_dir = gp.gp_Dir(*primitive.major_axis)
        elips = gp.gp_Elips(gp.gp_Ax2(pnt(primitive.center), z_dir, x_dir), major * scale, major * primitive.ratio * scale)
        start, end = primitive.start_param, primitive.end_param
        if end <= start:
            end += math.tau
        return api.BRepBuilderAPI_MakeEdge(elips, start, end).Edge()

    if isinstance(primitive, Polyline):
        polygon = api.BRepBuilderAPI_MakePolygon()
        for p in primitive.points:
            polygon.Add(pnt(p))
        if primitive.closed:
            polygon.Close()
        return polygon.Wire()

    if isinstance(primitive, Spline):
        points = occ("TColgp").TColgp_Array1OfPnt(1, len(primitive.points))
        for i, p in enumerate(primitive.points, start=1):
            points.SetValue(i, pnt(p))
        curve = occ("GeomAPI").GeomAPI_PointsToBSpline(points).Curve()
        return api.BRepBuilderAPI_MakeEdge(curve).Edge()

    if isinstance(primitive, Point):
        return api.BRepBuilderAPI_MakeVertex(pnt(primitive.location)).Vertex()

    raise TypeError(f"Unknown primitive: {primitive!r}")


# kernel shapes -> primitives


def _pnt(p: Any) -> Vec3:
    return (float(p.X()), float(p.Y()), float(p.Z()))


def _discretize(adaptor: Any, deflection: float) -> tuple[Vec3, ...]:
    first, last = adaptor.FirstParameter(), adaptor.LastParameter()
    sampler = occ("GCPnts").GCPnts_QuasiUniformDeflection(adaptor, deflection, first, last)
    if not sampler.IsDone() or sampler.NbPoints() < 2:
        return (_pnt(adaptor.Value(first)), _pnt(adaptor.Value(last)))
    return tuple(_pnt(sampler.Value(i)) for i in range(1, sampler.NbPoints() + 1))


def _angle(center: Vec3, p: Vec3) -> float:
    return math.degrees(math.atan2(p[1] - center[1], p[0] - center[0])) % 360.0


def edge_primitive(
    edge: Any,
    deflection: float,
    polylines: bool = False,
    allow_ellipse: bool = True,
    allow_spline: bool = True,
) -> Primitive:
    """Classify one kernel edge as a drafting primitive."""
    geomabs = occ("GeomAbs")
    adaptor = occ("BRepAdaptor").BRepAdaptor_Curve(edge)
    curve_type = adaptor.GetType()
    first, last = adaptor.FirstParameter(), adaptor.LastParameter()

    if curve_type == geomabs.GeomAbs_Line:
        return Segment(_pnt(adaptor.Value(first)), _pnt(adaptor.Value(last)))

    if curve_type == geomabs.GeomAbs_Circle and not polylines:
        circ = adaptor.Circle()
        normal_z = circ.Axis().Direction().Z()
        if abs(abs(normal_z) - 1.0) < _ANGLE_TOL:
            center = _pnt(circ.Location())
            if abs((last - first) - math.tau) < _ANGLE_TOL:
                return Circle(center, float(circ.Radius()))
            a1 = _angle(center, _pnt(adaptor.Value(first)))
            a2 = _angle(center, _pnt(adaptor.Value(last)))
            # parameters run clockwise when the circle faces -Z
            if normal_z < 0:
                a1, a2 = a2, a1
            return Arc(center, float(circ.Radius()), a1, a2)

    if curve_type == geomabs.GeomAbs_Ellipse and allow_ellipse and not polylines:
        elips = adaptor.Ellipse()
        if elips.Axis().Direction().Z() > 1.0 - _ANGLE_TOL:
            x_dir = elips.XAxis().Direction()
            major = float(elips.MajorRadius())
            return Ellipse(
                _pnt(elips.Location()),
                (x_dir.X() * major, x_dir.Y() * major, x_dir.Z() * major),
                float(elips.MinorRadius()) / major,
                float(first),
                float(last),
            )

    points = _discretize(adaptor, deflection)
    if polylines or not allow_spline or curve_type in (geomabs.GeomAbs_Circle, geomabs.GeomAbs_Ellipse):
        return Polyline(points)
    return Spline(points)


def shape_primitives(
    shape: Any,
    deflection: float,
    polylines: bool = False,
    allow_ellipse: bool = True,
    allow_spline: bool = True,
) -> list[Primitive]:
    """Primitives for every distinct edge and free vertex of ``shape``."""
    if shape.ShapeType() == occ("TopAbs").TopAbs_VERTEX:
        return [Point(vertex_point(downcast(shape, "Vertex")))]
    return [
        edge_primitive(downcast(edge, "Edge"), deflection, polylines, allow_ellipse, allow_spline)
        for edge in unique_subshapes(shape, "EDGE")
    ]


class DxfWriter:
    """Stream shapes into a DXF file."""

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = str(path)
        self.option_source = DXF_WRITE_OPTION_SOURCE
        self.version = DEFAULT_DXF_VERSION
        self.use_polyline = False
        self.poly_override = False
        self.deflection = 0.1
        self.layer_name = DEFAULT_LAYER
        self.entity_count = 0
        self._doc: Any = None
        self._msp: Any = None

    def set_option_source(self, source: str) -> None:
        self.option_source = source

    def set_options(self, params: ParameterStore) -> None:
        group = params.get_group(self.option_source)
        version = group.get_int("DxfVersionOut", DEFAULT_DXF_VERSION)
        if version not in DXF_VERSIONS:
            logger.warning("Unsupported DXF version preference", version=version)
            version = DEFAULT_DXF_VERSION
        self.version = version
        self.use_polyline = group.get_bool("DxfUsePolyline", False)
        self.deflection = group.get_float("DxfDiscretizeDeflection", 0.1)

    def set_version(self, version: int) -> None:
        if version not in DXF_VERSIONS:
            raise ValueError(f"DXF version must be one of {sorted(DXF_VERSIONS)}, got {version}")
        self.version = version

    def set_poly_override(self, flag: bool) -> None:
        self.poly_override = flag

    def set_layer_name(self, name: str) -> None:
        self.layer_name = name

    @property
    def dxfversion(self) -> str:
        return DXF_VERSIONS[self.version]

    def init(self) -> None:
        self._doc = ezdxf.new(dxfversion=self.dxfversion)
        self._msp = self._doc.modelspace()
        logger.debug("DXF writer initialised", path=self.path, dxfversion=self.dxfversion)

    def export_shape(self, shape: Any) -> None:
        r12 = self.dxfversion == "R12"
        primitives = shape_primitives(
            shape,
            self.deflection,
            polylines=self.poly_override or self.use_polyline,
            allow_ellipse=not r12,
            allow_spline=not r12,
        )
        for primitive in primitives:
            self.add_primitive(primitive)

    def add_primitive(self, primitive: Primitive) -> None:
        if self._msp is None:
            raise RuntimeError("DxfWriter.init() must be called before adding entities")
        if self.layer_name not in self._doc.layers:
            self._doc.layers.add(self.layer_name)
        attribs = {"layer": self.layer_name}
        msp = self._msp

        if isinstance(primitive, Segment):
            msp.add_line(primitive.start, primitive.end, dxfattribs=attribs)
        elif isinstance(primitive, Circle):
            msp.add_circle(primitive.center, primitive.radius, dxfattribs=attribs)
        elif isinstance(primitive, Arc):
            msp.add_arc(primitive.center, primitive.radius, primitive.start_angle, primitive.end_angle, dxfattribs=attribs)
        elif isinstance(primitive, Ellipse):
            msp.add_ellipse(
                primitive.center,
                primitive.major_axis,
                primitive.ratio,
                primitive.start_param,
                primitive.end_param,
                dxfattribs=attribs,
            )
        elif isinstance(primitive, Spline):
            msp.add_spline(fit_points=primitive.points, dxfattribs=attribs)
        elif isinstance(primitive, Polyline):
            self._add_polyline(primitive, attribs)
        elif isinstance(primitive, Point):
            msp.add_point(primitive.location, dxfattribs=attribs)
        else:
            raise TypeError(f"Unknown primitive: {primitive!r}")
        self.entity_count += 1

    def _add_polyline(self, polyline: Polyline, attribs: dict[str, Any]) -> None:
        flat = all(abs(p[2]) < 1e-12 for p in polyline.points)
        if self.dxfversion != "R12" and flat:
            self._msp.add_lwpolyline([p[:2] for p in polyline.points], close=polyline.closed, dxfattribs=attribs)
        else:
            self._msp.add_polyline3d(polyline.points, close=polyline.closed, dxfattribs=attribs)

    def end_run(self) -> None:
        if self._doc is None:
            raise RuntimeError("DxfWriter.init() must be called before end_run()")
        self._doc.saveas(self.path)
        logger.info("DXF file written", path=self.path, entities=self.entity_count, dxfversion=self.dxfversion)


class DxfReader:
    """Read DXF entities into part features of a host document."""

    def __init__(self, path: Union[str, Path], doc: Document) -> None:
        self.path = str(path)
        self.doc = doc
        self.option_source = DXF_READ_OPTION_SOURCE
        self.scaling = 1.0
        self.group_layers = False
        self.import_paper_space = False
        self.skipped = 0

    def set_option_source(self, source: str) -> None:
        self.option_source = source

    def set_options(self, params: ParameterStore) -> None:
        group = params.get_group(self.option_source)
        self.scaling = group.get_float("dxfScaling", 1.0)
        self.group_layers = group.get_bool("groupLayers", False)
        self.import_paper_space = group.get_bool("dxfImportPaperSpace", False)

    def _open(self, ignore_errors: bool) -> Any:
        try:
            return ezdxf.readfile(self.path)
        except ezdxf.DXFStructureError:
            if not ignore_errors:
                raise
            logger.warning("DXF structure errors, recovering file", path=self.path)
            drawing, auditor = recover.readfile(self.path)
            if auditor.has_errors:
                logger.warning("DXF recovery left errors", path=self.path, errors=len(auditor.errors))
            return drawing

    def _layouts(self, drawing: Any) -> list[Any]:
        layouts = [drawing.modelspace()]
        if self.import_paper_space:
            layouts.extend(
                drawing.paperspace(name) for name in drawing.layout_names_in_taborder() if name != "Model"
            )
        return layouts

    def _entity_shape(self, entity: Any) -> Optional[Any]:
        shapes = [build_shape(p, self.scaling) for p in entity_primitives(entity)]
        if not shapes:
            return None
        return shapes[0] if len(shapes) == 1 else make_compound(shapes)

    def do_read(self, ignore_errors: bool = True) -> list[PartFeature]:
        """Read the file; with ``ignore_errors`` failing entities are skipped.

        Returns:
            Part features added to the document
        """
        drawing = self._open(ignore_errors)
        features: list[PartFeature] = []
        by_layer: dict[str, list[Any]] = {}

        for layout in self._layouts(drawing):
            for entity in layout:
                try:
                    shape = self._entity_shape(entity)
                except Exception as exc:
                    if not ignore_errors or not (
                        is_kernel_failure(exc) or isinstance(exc, (ezdxf.DXFError, ValueError, ArithmeticError))
                    ):
                        raise
                    self.skipped += 1
                    logger.warning(
                        "Skipping malformed DXF entity",
                        type=entity.dxftype(),
                        handle=entity.dxf.get("handle"),
                        error=str(exc),
                    )
                    continue
                if shape is None:
                    continue

                layer = entity.dxf.get("layer", "0")
                if self.group_layers:
                    by_layer.setdefault(layer, []).append(shape)
                    continue
                feature = self.doc.add_part(entity.dxftype().capitalize(), shape)
                feature.layer = layer
                features.append(feature)

        for layer, shapes in by_layer.items():
            feature = self.doc.add_part(layer, make_compound(shapes))
            feature.layer = layer
            features.append(feature)

        logger.info(
            "DXF file read",
            path=self.path,
            objects=len(features),
            skipped=self.skipped,
            document=self.doc.name,
        )
        return features
