"""Pytest configuration and shared fixtures.

Provides common test fixtures and configuration for the ShapePort test suite.
"""

from __future__ import annotations

import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generator, Iterator, List
from unittest.mock import MagicMock, patch

import ezdxf
import pytest
import structlog

from hostdoc.document import Application, set_application
from hostdoc.params import ParameterStore
from kernel.occt_io import get_occt_info


# Configure test logging
structlog.configure(
    processors=[
        structlog.testing.LogCapture(),
    ],
    logger_factory=structlog.testing.CapturingLoggerFactory(),
    cache_logger_on_first_use=True,
)


def _occt_available() -> bool:
    return get_occt_info()["recommended_binding"] is not None


def pytest_collection_modifyitems(config: pytest.Config, items: List[pytest.Item]) -> None:
    if _occt_available():
        return
    skip_occt = pytest.mark.skip(reason="No OCCT binding available (cadquery-ocp or pythonocc-core required)")
    for item in items:
        if "occt" in item.keywords:
            item.add_marker(skip_occt)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def params() -> ParameterStore:
    """Provide an empty preference store (all defaults)."""
    return ParameterStore()


@pytest.fixture
def app(params: ParameterStore) -> Application:
    """Provide a fresh application, not the process-wide one."""
    return Application(params)


@pytest.fixture(autouse=True)
def reset_application() -> Generator[None, None, None]:
    """Make sure no test leaks the process-wide application."""
    yield
    set_application(None)


class MockShape:
    """Mock OCCT shape for testing."""

    def __init__(self, is_null: bool = False, name: str = "shape"):
        self._is_null = is_null
        self.name = name

    def IsNull(self) -> bool:
        return self._is_null

    def ShapeType(self) -> int:
        return 0

    def Moved(self, location: Any) -> MockShape:
        return self

    def __repr__(self) -> str:
        return f"<MockShape {self.name}>"


@pytest.fixture
def mock_occt_shape() -> MockShape:
    """Provide a mock OCCT shape for testing."""
    return MockShape(is_null=False)


@pytest.fixture
def mock_null_shape() -> MockShape:
    """Provide a mock null OCCT shape for testing."""
    return MockShape(is_null=True)


class FakeKernelDocument:
    """Stand-in for ``KernelDocument`` recording its lifecycle."""

    def __init__(self) -> None:
        self.application = MagicMock(name="XCAFApp_Application")
        self.doc = MagicMock(name="TDocStd_Document")
        self.shape_tool = MagicMock(name="XCAFDoc_ShapeTool")
        self.color_tool = MagicMock(name="XCAFDoc_ColorTool")
        self.closed = False
        self.labels: List[Any] = []

    def free_labels(self) -> List[Any]:
        return list(self.labels)

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_kernel() -> Generator[List[FakeKernelDocument], None, None]:
    """Patch the kernel document factory; yields the documents it opened."""
    opened: List[FakeKernelDocument] = []

    @contextmanager
    def factory() -> Iterator[FakeKernelDocument]:
        kdoc = FakeKernelDocument()
        opened.append(kdoc)
        try:
            yield kdoc
        finally:
            kdoc.close()

    with patch("kernel.occt_io.kernel_document", side_effect=factory):
        yield opened


@pytest.fixture
def sample_dxf_file(temp_dir: Path) -> Path:
    """Create a DXF drawing with a few entities on two layers."""
    drawing = ezdxf.new("R2000")
    drawing.layers.add("Outline")
    drawing.layers.add("Holes")
    msp = drawing.modelspace()
    msp.add_line((0, 0), (100, 0), dxfattribs={"layer": "Outline"})
    msp.add_line((100, 0), (100, 50), dxfattribs={"layer": "Outline"})
    msp.add_circle((20, 20), 5, dxfattribs={"layer": "Holes"})
    msp.add_arc((50, 25), 10, 0, 90, dxfattribs={"layer": "Holes"})
    msp.add_text("not geometry", dxfattribs={"layer": "Outline"})
    path = temp_dir / "plate.dxf"
    drawing.saveas(path)
    return path
