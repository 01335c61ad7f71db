"""Tests for the DXF operations with the kernel geometry patched out."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock, patch

import ezdxf
import pytest

import shapeport
from hostdoc.document import Application, Placement
from hostdoc.settings import DRAFT_GROUP, IMPORT_GROUP
from kernel.dxf import Circle, Segment
from shapeport.args import OBJECT_LIST_ERROR, SHAPE_LIST_ERROR
from shapeport.errors import DxfError

from conftest import MockShape

PRIMITIVES = [Segment((0.0, 0.0, 0.0), (10.0, 0.0, 0.0)), Circle((5.0, 5.0, 0.0), 2.5)]


class Standard_Failure(Exception):
    pass


def entities(path: Path) -> list[tuple[str, str]]:
    drawing = ezdxf.readfile(path)
    return [(entity.dxftype(), entity.dxf.layer) for entity in drawing.modelspace()]


def acad_version(path: Path) -> str:
    return ezdxf.readfile(path).header["$ACADVER"]


@patch('kernel.dxf.make_compound', side_effect=lambda shapes: MockShape(name="compound"))
@patch('kernel.dxf.build_shape', side_effect=lambda primitive, scale=1.0: MockShape(name=type(primitive).__name__))
class TestReadDxf:
    """Test cases for ``read_dxf``."""

    def test_missing_file(self, mock_build, mock_compound, app: Application, temp_dir: Path):
        """Test that a missing file is reported without creating documents."""
        with pytest.raises(DxfError, match="File doesn't exist"):
            shapeport.read_dxf(str(temp_dir / "missing.dxf"), app=app)
        assert app.documents == []

    def test_into_active_document(self, mock_build, mock_compound, app: Application, sample_dxf_file: Path):
        """Test that entities land in the active document."""
        doc = app.new_document("Sketch")
        features = shapeport.read_dxf(str(sample_dxf_file), app=app)

        assert [f.label for f in features] == ["Line", "Line", "Circle", "Arc"]
        assert [f.layer for f in features] == ["Outline", "Outline", "Holes", "Holes"]
        assert all(f.document is doc for f in features)
        assert doc.recompute_count == 1

    def test_into_named_document(self, mock_build, mock_compound, app: Application, sample_dxf_file: Path):
        """Test that a named document is created when missing."""
        app.new_document("Other")
        shapeport.read_dxf(str(sample_dxf_file), "Plate", app=app)
        assert len(app.get_document("Plate").objects) == 4
        assert app.get_document("Other").objects == []

    def test_new_document_without_active(self, mock_build, mock_compound, app: Application, sample_dxf_file: Path):
        """Test that a document is created when none is open."""
        shapeport.read_dxf(str(sample_dxf_file), app=app)
        assert len(app.documents) == 1

    def test_option_source(self, mock_build, mock_compound, app: Application, sample_dxf_file: Path):
        """Test that reader options come from the given group."""
        app.params.get_group(DRAFT_GROUP).set_bool("groupLayers", True)
        features = shapeport.read_dxf(str(sample_dxf_file), app=app)
        assert sorted(f.label for f in features) == ["Holes", "Outline"]

        custom = "User parameter:BaseApp/Preferences/Mod/Custom"
        other = app.new_document("Custom")
        features = shapeport.read_dxf(str(sample_dxf_file), "Custom", option_source=custom, app=app)
        assert len(features) == 4
        assert len(other.objects) == 4

    def test_kernel_failure_without_ignore(self, mock_build, mock_compound, app: Application, sample_dxf_file: Path):
        """Test that kernel failures become DxfError when not ignored."""
        mock_build.side_effect = Standard_Failure("degenerate")
        with pytest.raises(DxfError, match="degenerate"):
            shapeport.read_dxf(str(sample_dxf_file), ignore_errors=False, app=app)

    def test_kernel_failure_ignored(self, mock_build, mock_compound, app: Application, sample_dxf_file: Path):
        """Test that failing entities are skipped by default."""
        mock_build.side_effect = Standard_Failure("degenerate")
        assert shapeport.read_dxf(str(sample_dxf_file), app=app) == []

    def test_not_a_dxf_file(self, mock_build, mock_compound, app: Application, temp_dir: Path):
        """Test that unreadable content without recovery is a DxfError."""
        path = temp_dir / "broken.dxf"
        path.write_text("this is not a drawing\n")
        with pytest.raises(DxfError):
            shapeport.read_dxf(str(path), ignore_errors=False, app=app)

    def test_argument_types(self, mock_build, mock_compound, app: Application):
        """Test that argument errors are raised as TypeError."""
        with pytest.raises(TypeError):
            shapeport.read_dxf(None, app=app)
        with pytest.raises(TypeError):
            shapeport.read_dxf("a.dxf", ignore_errors="yes", app=app)


@patch('kernel.dxf.shape_primitives', return_value=PRIMITIVES)
class TestWriteDxfShape:
    """Test cases for ``write_dxf_shape``."""

    def test_single_shape(self, mock_primitives, app: Application, temp_dir: Path):
        """Test a single shape is written on layer ``none``."""
        path = temp_dir / "shape.dxf"
        shapeport.write_dxf_shape(MockShape(), str(path), app=app)
        assert entities(path) == [("LINE", "none"), ("CIRCLE", "none")]
        assert acad_version(path) == "AC1015"

    def test_single_shape_matches_list(self, mock_primitives, app: Application, temp_dir: Path):
        """Test that a shape and a one-element list give the same drawing."""
        single, listed = temp_dir / "single.dxf", temp_dir / "listed.dxf"
        shape = MockShape()
        shapeport.write_dxf_shape(shape, str(single), app=app)
        shapeport.write_dxf_shape([shape], str(listed), app=app)
        assert entities(single) == entities(listed)

    def test_non_shapes_skipped(self, mock_primitives, app: Application, temp_dir: Path):
        """Test that list entries that are not shapes are ignored."""
        path = temp_dir / "mixed.dxf"
        shapeport.write_dxf_shape([MockShape(), "text", 3, MockShape()], str(path), app=app)
        assert mock_primitives.call_count == 2
        assert len(entities(path)) == 4

    @pytest.mark.parametrize("version, expected", [(12, "AC1009"), (14, "AC1015"), (13, "AC1015"), (-1, "AC1015")])
    def test_version(self, mock_primitives, version, expected, app: Application, temp_dir: Path):
        """Test explicit versions and the fallback for other values."""
        path = temp_dir / "version.dxf"
        shapeport.write_dxf_shape(MockShape(), str(path), version=version, app=app)
        assert acad_version(path) == expected

    def test_version_preference(self, mock_primitives, app: Application, temp_dir: Path):
        """Test the preference applies unless a version is given."""
        app.params.get_group(IMPORT_GROUP).set_int("DxfVersionOut", 12)
        path = temp_dir / "pref.dxf"
        shapeport.write_dxf_shape(MockShape(), str(path), app=app)
        assert acad_version(path) == "AC1009"
        shapeport.write_dxf_shape(MockShape(), str(path), version=14, app=app)
        assert acad_version(path) == "AC1015"

    def test_r12_disables_curves(self, mock_primitives, app: Application, temp_dir: Path):
        """Test that R12 output asks for no ellipses or splines."""
        shapeport.write_dxf_shape(MockShape(), str(temp_dir / "r12.dxf"), version=12, app=app)
        kwargs = mock_primitives.call_args.kwargs
        assert kwargs["allow_ellipse"] is False
        assert kwargs["allow_spline"] is False

    @pytest.mark.parametrize("use_polyline, preference, expected", [(True, False, True), (False, True, True), (False, False, False)])
    def test_polyline_override(
        self, mock_primitives, use_polyline, preference, expected, app: Application, temp_dir: Path
    ):
        """Test that either the argument or the preference requests polylines."""
        app.params.get_group(IMPORT_GROUP).set_bool("DxfUsePolyline", preference)
        shapeport.write_dxf_shape(MockShape(), str(temp_dir / "poly.dxf"), use_polyline=use_polyline, app=app)
        assert mock_primitives.call_args.kwargs["polylines"] is expected

    def test_deflection_preference(self, mock_primitives, app: Application, temp_dir: Path):
        """Test that the discretisation deflection comes from the preferences."""
        app.params.get_group(IMPORT_GROUP).set_float("DxfDiscretizeDeflection", 0.05)
        shapeport.write_dxf_shape(MockShape(), str(temp_dir / "defl.dxf"), app=app)
        assert mock_primitives.call_args.args[1] == 0.05

    def test_wrong_type(self, mock_primitives, app: Application, temp_dir: Path):
        """Test the message for a value that is neither shape nor list."""
        with pytest.raises(TypeError, match=r"expected \(\[Shape\],path"):
            shapeport.write_dxf_shape(42, str(temp_dir / "bad.dxf"), app=app)
        assert SHAPE_LIST_ERROR == "expected ([Shape],path"

    def test_missing_directory(self, mock_primitives, app: Application, temp_dir: Path):
        """Test that write failures are reported as DxfError."""
        with pytest.raises(DxfError):
            shapeport.write_dxf_shape(MockShape(), str(temp_dir / "no" / "such" / "dir.dxf"), app=app)

    def test_kernel_failure(self, mock_primitives, app: Application, temp_dir: Path):
        """Test that kernel failures during conversion become DxfError."""
        mock_primitives.side_effect = Standard_Failure("no curve")
        with pytest.raises(DxfError, match="no curve"):
            shapeport.write_dxf_shape(MockShape(), str(temp_dir / "fail.dxf"), app=app)

    def test_legacy_alias(self, mock_primitives, app: Application, temp_dir: Path):
        """Test the camel case name used by existing macros."""
        path = temp_dir / "alias.dxf"
        shapeport.writeDXFShape([MockShape()], str(path), app=app)
        assert len(entities(path)) == 2


@patch('kernel.dxf.shape_primitives', return_value=PRIMITIVES)
class TestWriteDxfObject:
    """Test cases for ``write_dxf_object``."""

    def test_layer_per_object(self, mock_primitives, app: Application, temp_dir: Path):
        """Test that each object gets a layer named after it."""
        doc = app.new_document("Drawing")
        first = doc.add_part("Frame", MockShape())
        second = doc.add_part("Frame", MockShape())
        path = temp_dir / "objects.dxf"
        shapeport.write_dxf_object([first, second], str(path), app=app)

        assert (first.name, second.name) == ("Frame", "Frame001")
        assert [layer for _, layer in entities(path)] == ["Frame", "Frame", "Frame001", "Frame001"]
        assert {"Frame", "Frame001"} <= {layer.dxf.name for layer in ezdxf.readfile(path).layers}

    def test_single_object(self, mock_primitives, app: Application, temp_dir: Path):
        """Test that a single object is accepted."""
        part = app.new_document("Drawing").add_part("Plate", MockShape())
        path = temp_dir / "single.dxf"
        shapeport.write_dxf_object(part, str(path), app=app)
        assert entities(path) == [("LINE", "Plate"), ("CIRCLE", "Plate")]

    def test_objects_without_shape_skipped(self, mock_primitives, app: Application, temp_dir: Path):
        """Test that groups and empty parts write nothing."""
        doc = app.new_document("Drawing")
        group = doc.add_group("Assembly")
        empty = doc.add_part("Empty", None)
        path = temp_dir / "empty.dxf"
        shapeport.write_dxf_object([group, empty, "junk"], str(path), app=app)
        mock_primitives.assert_not_called()
        assert entities(path) == []

    @patch('shapeport.api.placement_to_location', side_effect=lambda placement: ("loc", placement))
    def test_placement_applied(self, mock_location, mock_primitives, app: Application, temp_dir: Path):
        """Test that objects are written where their placements and parent groups put them."""
        doc = app.new_document("Drawing")
        still = doc.add_part("Still", MockShape())
        shape = MagicMock()
        shape.IsNull.return_value = False
        moved = doc.add_part("Moved", shape)
        moved.placement = Placement((100.0, 0.0, 0.0))
        group = doc.add_group("Frame")
        group.placement = Placement((0.0, 20.0, 0.0))
        group.add(moved)

        shapeport.write_dxf_object([still, moved], str(temp_dir / "placed.dxf"), app=app)

        mock_location.assert_called_once_with(Placement((100.0, 20.0, 0.0)))
        shape.Moved.assert_called_once_with(("loc", Placement((100.0, 20.0, 0.0))))
        written = [c.args[0] for c in mock_primitives.call_args_list]
        assert written[0] is still.shape
        assert written[1] is shape.Moved.return_value

    def test_wrong_type(self, mock_primitives, app: Application, temp_dir: Path):
        """Test the message for a value that is neither object nor list."""
        with pytest.raises(TypeError) as excinfo:
            shapeport.write_dxf_object(MockShape(), str(temp_dir / "bad.dxf"), app=app)
        assert str(excinfo.value) == OBJECT_LIST_ERROR
