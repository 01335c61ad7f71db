"""End-to-end tests against a real OCCT binding.

Skipped unless cadquery-ocp or pythonocc-core is installed.
"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import ezdxf
import pytest

import shapeport
from hostdoc.document import Application, Color, Document, PartFeature, Placement
from kernel.occt_io import KernelReadError, KernelTransferError, gltf_supported, kernel_document, occ
from kernel.shapes import (
    count_topology,
    iter_subshapes,
    make_compound,
    placement_to_location,
    unique_subshapes,
    vertex_point,
)

pytestmark = pytest.mark.occt

RED = Color(1.0, 0.0, 0.0)
GREEN = Color(0.0, 1.0, 0.0)


def make_box(dx: float = 10.0, dy: float = 20.0, dz: float = 30.0):
    return occ("BRepPrimAPI").BRepPrimAPI_MakeBox(dx, dy, dz).Shape()


def make_circle_edge(radius: float = 5.0):
    gp = occ("gp")
    circle = gp.gp_Circ(gp.gp_Ax2(), radius)
    return occ("BRepBuilderAPI").BRepBuilderAPI_MakeEdge(circle).Edge()


def parts_of(doc: Document) -> list[PartFeature]:
    return [obj for obj in doc.objects if isinstance(obj, PartFeature)]


def world_xmin(part: PartFeature) -> float:
    shape = part.shape
    placement = part.global_placement
    if not placement.is_identity:
        shape = shape.Moved(placement_to_location(placement))
    return min(vertex_point(vertex)[0] for vertex in iter_subshapes(shape, "VERTEX"))


@pytest.fixture
def box_doc(app: Application) -> Document:
    doc = app.new_document("Source")
    doc.add_part("Box", make_box())
    return doc


class TestStepRoundTrip:
    """Test cases for STEP export followed by import."""

    def test_box(self, app: Application, box_doc: Document, temp_dir: Path):
        """Test that a box survives a STEP round trip."""
        path = temp_dir / "box.step"
        shapeport.export(box_doc.objects, str(path), app=app)
        assert path.stat().st_size > 0

        colors = shapeport.open(str(path), app=app)

        assert colors == {}
        imported = parts_of(app.get_document("box"))
        assert len(imported) == 1
        assert imported[0].label == "Box"
        assert count_topology(imported[0].shape).faces == 6

    def test_face_colors(self, app: Application, box_doc: Document, temp_dir: Path):
        """Test that per-face colours are reported after import."""
        part = box_doc.get_object("Box")
        part.face_colors = [RED, RED, RED, GREEN, GREEN, GREEN]
        path = temp_dir / "colored.step"
        shapeport.export([part], str(path), app=app)

        seen = []
        colors = shapeport.open(str(path), app=app, on_part_colors=lambda p, c: seen.append(p))

        assert len(colors) == 1
        (imported, face_colors), = colors.items()
        assert seen == [imported]
        assert [c.to_hex() for c in face_colors] == ["#FF0000"] * 3 + ["#00FF00"] * 3

    def test_merge(self, app: Application, box_doc: Document, temp_dir: Path):
        """Test that merge collapses all parts into one compound."""
        box_doc.add_part("Cube", make_box(5.0, 5.0, 5.0))
        path = temp_dir / "two.step"
        shapeport.export(box_doc.objects, str(path), app=app)

        shapeport.open(str(path), merge=True, app=app)

        imported = parts_of(app.get_document("two"))
        assert len(imported) == 1
        assert count_topology(imported[0].shape).solids == 2

    def test_legacy_export(self, app: Application, box_doc: Document, temp_dir: Path):
        """Test that the legacy exporter writes a readable file."""
        box_doc.add_part("Cube", make_box(5.0, 5.0, 5.0))
        path = temp_dir / "legacy.step"
        shapeport.export(box_doc.objects, str(path), legacy=True, app=app)

        shapeport.insert(str(path), "Target", app=app)
        assert len(parts_of(app.get_document("Target"))) == 2

    def test_group_becomes_assembly(self, app: Application, temp_dir: Path):
        """Test that groups are written as assemblies and read back as groups."""
        doc = app.new_document("Source")
        group = doc.add_group("Asm")
        group.add(doc.add_part("Box", make_box()))
        path = temp_dir / "asm.step"
        shapeport.export([group], str(path), app=app)

        shapeport.open(str(path), app=app)
        imported = app.get_document("asm")
        roots = imported.root_objects()
        assert [obj.type_name for obj in roots] == ["App::Part"]
        assert len(parts_of(imported)) == 1

    def test_unreadable_file(self, app: Application, temp_dir: Path):
        """Test that garbage input raises a read error."""
        path = temp_dir / "broken.step"
        path.write_text("not a step file")
        with pytest.raises(KernelReadError, match="cannot read STEP file"):
            shapeport.open(str(path), app=app)


class TestOtherFormats:
    """Test cases for IGES and glTF output."""

    def test_iges(self, app: Application, box_doc: Document, temp_dir: Path):
        """Test an IGES round trip keeps the faces."""
        path = temp_dir / "box.igs"
        shapeport.export(box_doc.objects, str(path), app=app)
        shapeport.open(str(path), app=app)
        faces = sum(count_topology(p.shape).faces for p in parts_of(app.get_document("box")))
        assert faces == 6

    def test_glb(self, app: Application, box_doc: Document, temp_dir: Path):
        """Test that GLB output is a binary glTF container."""
        if not gltf_supported():
            pytest.skip("glTF writer not available in this OCCT build")
        path = temp_dir / "box.glb"
        shapeport.export(box_doc.objects, str(path), app=app)
        assert path.read_bytes()[:4] == b"glTF"


class TestDxfRoundTrip:
    """Test cases for DXF output from real shapes."""

    def test_box_edges(self, app: Application, temp_dir: Path):
        """Test that each distinct box edge becomes one line."""
        box = make_box()
        assert len(unique_subshapes(box, "EDGE")) == 12
        path = temp_dir / "box.dxf"
        shapeport.write_dxf_shape(box, str(path), app=app)

        entities = list(ezdxf.readfile(path).modelspace())
        assert len(entities) == 12
        assert {e.dxftype() for e in entities} == {"LINE"}
        assert {e.dxf.layer for e in entities} == {"none"}

    def test_circle(self, app: Application, temp_dir: Path):
        """Test that a full circle edge becomes a circle entity."""
        path = temp_dir / "circle.dxf"
        shapeport.write_dxf_shape([make_circle_edge(5.0)], str(path), app=app)
        (circle,) = list(ezdxf.readfile(path).modelspace())
        assert circle.dxftype() == "CIRCLE"
        assert circle.dxf.radius == pytest.approx(5.0)

    def test_polyline_override(self, app: Application, temp_dir: Path):
        """Test that curves are discretised when polylines are requested."""
        path = temp_dir / "poly.dxf"
        shapeport.write_dxf_shape(make_circle_edge(5.0), str(path), use_polyline=True, app=app)
        (polyline,) = list(ezdxf.readfile(path).modelspace())
        assert polyline.dxftype() == "LWPOLYLINE"
        assert len(polyline) > 4

    def test_objects_on_layers(self, app: Application, temp_dir: Path):
        """Test one layer per written object."""
        doc = app.new_document("Drawing")
        first = doc.add_part("Outer", make_box())
        second = doc.add_part("Ring", make_compound([make_circle_edge(2.0)]))
        path = temp_dir / "layers.dxf"
        shapeport.write_dxf_object([first, second], str(path), version=12, app=app)

        drawing = ezdxf.readfile(path)
        assert drawing.dxfversion == "AC1009"
        layers = [e.dxf.layer for e in drawing.modelspace()]
        assert layers.count("Outer") == 12
        assert layers.count("Ring") == 1

    def test_read_dxf(self, app: Application, sample_dxf_file: Path):
        """Test reading lines, circles and arcs into part features."""
        features = shapeport.read_dxf(str(sample_dxf_file), "Plate", app=app)

        assert [f.label for f in features] == ["Line", "Line", "Circle", "Arc"]
        circle = features[2]
        assert count_topology(circle.shape).edges == 1
        assert app.get_document("Plate").recompute_count == 1

    def test_dxf_write_then_read(self, app: Application, temp_dir: Path):
        """Test that written edges read back as the same number of objects."""
        path = temp_dir / "box.dxf"
        shapeport.write_dxf_shape(make_box(), str(path), app=app)
        features = shapeport.read_dxf(str(path), app=app)
        assert len(features) == 12
        assert {f.layer for f in features} == {"none"}


class TestKernelDocumentLifecycle:
    """Test cases for the scoped XCAF document on a real binding."""

    def test_open_and_close(self):
        """Test that an unused document opens and closes cleanly."""
        with kernel_document() as kdoc:
            assert kdoc.free_labels() == []
        assert kdoc.closed

    def test_error_in_body_surfaces(self):
        """Test that errors raised while the document is open are not replaced."""
        with pytest.raises(KernelReadError, match="cannot read STEP file"):
            with kernel_document():
                raise KernelReadError("cannot read STEP file")


class TestPlacements:
    """Test cases for object placements surviving export."""

    def test_several_parts_keep_positions(self, app: Application, temp_dir: Path):
        """Test that placed parts are not collapsed onto the origin."""
        doc = app.new_document("Source")
        doc.add_part("A", make_box())
        moved = doc.add_part("B", make_box())
        moved.placement = Placement((100.0, 0.0, 0.0))
        path = temp_dir / "placed.step"
        shapeport.export(doc.objects, str(path), app=app)

        shapeport.open(str(path), app=app)

        xmins = sorted(world_xmin(part) for part in parts_of(app.get_document("placed")))
        assert xmins == pytest.approx([0.0, 100.0], abs=1e-6)

    @pytest.mark.parametrize("keep_placement, expected", [(False, 0.0), (True, 100.0)])
    def test_lone_part(self, keep_placement, expected, app: Application, temp_dir: Path):
        """Test that a single part keeps its placement only when asked."""
        part = app.new_document("Source").add_part("A", make_box())
        part.placement = Placement((100.0, 0.0, 0.0))
        path = temp_dir / "lone.step"
        shapeport.export([part], str(path), keep_placement=keep_placement, app=app)

        shapeport.open(str(path), app=app)

        (imported,) = parts_of(app.get_document("lone"))
        assert world_xmin(imported) == pytest.approx(expected, abs=1e-6)

    def test_legacy_group_placement(self, app: Application, temp_dir: Path):
        """Test that the legacy exporter keeps a placed top-level group in place."""
        doc = app.new_document("Source")
        group = doc.add_group("Asm")
        group.placement = Placement((50.0, 0.0, 0.0))
        group.add(doc.add_part("Box", make_box()))
        path = temp_dir / "legacy_group.step"
        shapeport.export([group], str(path), legacy=True, app=app)

        shapeport.open(str(path), app=app)

        (imported,) = parts_of(app.get_document("legacy_group"))
        assert world_xmin(imported) == pytest.approx(50.0, abs=1e-6)

    def test_dxf_object_placement(self, app: Application, temp_dir: Path):
        """Test that DXF output puts placed objects at their document position."""
        doc = app.new_document("Drawing")
        group = doc.add_group("Frame")
        group.placement = Placement((0.0, 20.0, 0.0))
        part = doc.add_part("Box", make_box())
        part.placement = Placement((100.0, 0.0, 0.0))
        group.add(part)
        path = temp_dir / "placed.dxf"
        shapeport.write_dxf_object([part], str(path), app=app)

        lines = list(ezdxf.readfile(path).modelspace().query("LINE"))
        assert min(min(line.dxf.start.x, line.dxf.end.x) for line in lines) == pytest.approx(100.0)
        assert min(min(line.dxf.start.y, line.dxf.end.y) for line in lines) == pytest.approx(20.0)


class TestImportBehaviour:
    """Test cases for import options against real files."""

    def test_import_hidden(self, app: Application, temp_dir: Path):
        """Test that hidden parts are skipped only when asked."""
        doc = app.new_document("Source")
        shown = doc.add_part("Shown", make_box())
        hidden = doc.add_part("Hidden", make_box(5.0, 5.0, 5.0))
        hidden.visible = False
        for part in (shown, hidden):
            part.shape_color = RED
        path = temp_dir / "hidden.step"
        shapeport.export([shown, hidden], str(path), export_hidden=True, app=app)

        shapeport.open(str(path), import_hidden=False, app=app)
        assert [part.label for part in parts_of(app.get_document("hidden"))] == ["Shown"]

        shapeport.insert(str(path), "All", import_hidden=True, app=app)
        assert sorted(part.label for part in parts_of(app.get_document("All"))) == ["Hidden", "Shown"]

    def test_fallback_reads_geometry(self, app: Application, box_doc: Document, temp_dir: Path):
        """Test that a failed coloured transfer still loads the file's solids."""
        path = temp_dir / "fallback.step"
        shapeport.export(box_doc.objects, str(path), app=app)

        with patch('kernel.ocaf_import.transfer_colored', side_effect=KernelTransferError("transfer failed")):
            colors = shapeport.open(str(path), app=app)

        assert colors == {}
        (imported,) = parts_of(app.get_document("fallback"))
        assert count_topology(imported.shape).faces == 6

    def test_glb_export_is_repeatable(self, app: Application, box_doc: Document, temp_dir: Path):
        """Test that exporting the same objects twice gives identical GLB files."""
        if not gltf_supported():
            pytest.skip("glTF writer not available in this OCCT build")
        first, second = temp_dir / "first.glb", temp_dir / "second.glb"
        shapeport.export(box_doc.objects, str(first), app=app)
        shapeport.export(box_doc.objects, str(second), app=app)
        assert first.read_bytes() == second.read_bytes()
