"""Open CASCADE binding resolution and kernel document lifecycle.

This module finds a usable OCCT Python binding (OCP, pythonocc-core or
pyOCCT), gives the rest of the kernel package binding-neutral access to the
toolkit modules, and owns the XCAF document that stages geometry during a
single import or export.
"""

from __future__ import annotations

import importlib
import re
from contextlib import contextmanager
from dataclasses import dataclass, field
from functools import cached_property
from types import ModuleType
from typing import Any, Callable, Iterator

import structlog

logger = structlog.get_logger(__name__)

# (binding name, module prefix) in order of preference
BINDINGS: tuple[tuple[str, str], ...] = (
    ("OCP", "OCP"),
    ("pythonOCC", "OCC.Core"),
    ("pyOCCT", "OCCT"),
)

XCAF_FORMAT = "MDTV-XCAF"

_KERNEL_EXCEPTION_PREFIXES = (
    "Standard_",
    "OSD_",
    "StdFail_",
    "Interface_",
    "Transfer_",
    "gp_",
    "Geom_",
)
_KERNEL_MESSAGE_RE = re.compile(r"\s*((?:Standard|OSD|StdFail)_\w+)")

_binding: tuple[str, str] | None = None


class OCCTNotAvailableError(Exception):
    """Raised when no OCCT binding is available."""

    pass


class KernelReadError(OSError):
    """Raised when the kernel cannot read an input file."""

    pass


class KernelTransferError(Exception):
    """Raised when a reader reports that the transfer into a document failed."""

    pass


def _probe(prefix: str) -> bool:
    try:
        importlib.import_module(f"{prefix}.Standard")
    except ImportError:
        return False
    return True


def get_occt_info() -> dict[str, Any]:
    """Get information about available OCCT bindings.

    Returns:
        Dictionary with per-binding availability, the binding that will be
        used, the OCCT version when the binding reports one and whether the
        glTF writer is present
    """
    info: dict[str, Any] = {
        "OCP_available": False,
        "pythonOCC_available": False,
        "pyOCCT_available": False,
        "recommended_binding": None,
        "occt_version": None,
        "gltf_supported": False,
    }

    for name, prefix in BINDINGS:
        if not _probe(prefix):
            logger.debug("OCCT binding not available", binding=name)
            continue
        info[f"{name}_available"] = True
        logger.info("OCCT binding detected", binding=name)
        if info["recommended_binding"] is None:
            info["recommended_binding"] = name
            root = importlib.import_module(prefix.split(".")[0])
            info["occt_version"] = getattr(root, "__version__", None) or getattr(root, "VERSION", None)

    if info["recommended_binding"] is not None:
        info["gltf_supported"] = gltf_supported()

    return info


def binding() -> tuple[str, str]:
    """Return ``(name, module_prefix)`` of the binding in use.

    Raises:
        OCCTNotAvailableError: If no binding can be imported
    """
    global _binding
    if _binding is not None:
        return _binding

    for name, prefix in BINDINGS:
        if _probe(prefix):
            _binding = (name, prefix)
            logger.debug("Using OCCT binding", binding=name, prefix=prefix)
            return _binding

    raise OCCTNotAvailableError(
        "No OCCT Python binding available. "
        "Please install cadquery-ocp (recommended) or pythonocc-core:\n"
        "  pip install cadquery-ocp\n"
        "  OR\n"
        "  conda install -c conda-forge pythonocc-core"
    )


def reset_binding() -> None:
    """Forget the cached binding choice."""
    global _binding
    _binding = None


def occ(module: str) -> ModuleType:
    """Import an OCCT toolkit module (``"STEPControl"``, ``"XCAFDoc"``...)."""
    return importlib.import_module(f"{binding()[1]}.{module}")


def static(cls: Any, name: str) -> Callable[..., Any]:
    """Resolve a static method, accounting for OCP's ``_s`` suffix."""
    for attr in (f"{name}_s", name):
        method = getattr(cls, attr, None)
        if method is not None:
            return method
    raise AttributeError(f"{getattr(cls, '__name__', cls)!r} has no static method {name!r}")


def gltf_supported() -> bool:
    """Whether the binding ships ``RWGltf_CafWriter`` (OCCT 7.5.0 or later)."""
    try:
        module = occ("RWGltf")
    except (ImportError, OCCTNotAvailableError):
        return False
    return hasattr(module, "RWGltf_CafWriter")


def kernel_exception_name(exc: BaseException) -> str | None:
    """Name of the OCCT exception behind ``exc``, if it came from the kernel.

    OCP registers OCCT exception classes with their own names; pythonocc
    raises ``RuntimeError`` whose message starts with the OCCT class name.
    """
    for cls in type(exc).__mro__:
        if cls.__name__.startswith(_KERNEL_EXCEPTION_PREFIXES):
            return cls.__name__
    if isinstance(exc, RuntimeError):
        match = _KERNEL_MESSAGE_RE.match(str(exc))
        if match:
            return match.group(1)
    return None


def is_kernel_failure(exc: BaseException) -> bool:
    return kernel_exception_name(exc) is not None


def is_transfer_failure(exc: BaseException) -> bool:
    """Failures that make the coloured import fall back to bare geometry."""
    return isinstance(exc, KernelTransferError) or is_kernel_failure(exc)


def failure_message(exc: BaseException) -> str:
    message = str(exc).strip()
    if message:
        return message
    return kernel_exception_name(exc) or type(exc).__name__


def is_shape(obj: Any) -> bool:
    """Duck-typed check for a ``TopoDS_Shape``."""
    return callable(getattr(obj, "ShapeType", None)) and callable(getattr(obj, "IsNull", None))


@dataclass
class KernelDocument:
    """XCAF document staging transferred geometry for one call."""

    application: Any
    doc: Any
    closed: bool = field(default=False, init=False)

    @property
    def main(self) -> Any:
        return self.doc.Main()

    @cached_property
    def shape_tool(self) -> Any:
        return static(occ("XCAFDoc").XCAFDoc_DocumentTool, "ShapeTool")(self.main)

    @cached_property
    def color_tool(self) -> Any:
        return static(occ("XCAFDoc").XCAFDoc_DocumentTool, "ColorTool")(self.main)

    def free_labels(self) -> list[Any]:
        labels = occ("TDF").TDF_LabelSequence()
        self.shape_tool.GetFreeShapes(labels)
        return [labels.Value(i) for i in range(1, labels.Length() + 1)]

    def close(self) -> None:
        """Release the document.

        OCP does not rebind the Python handle passed to ``NewDocument``, so
        the document may never have been opened by the application; only an
        opened document is handed back to ``Close``.
        """
        if self.closed:
            return
        self.closed = True
        if self.doc.IsOpened():
            self.application.Close(self.doc)


@contextmanager
def kernel_document() -> Iterator[KernelDocument]:
    """Open an XCAF document and close it on every exit path."""
    app = static(occ("XCAFApp").XCAFApp_Application, "GetApplication")()
    ext = occ("TCollection").TCollection_ExtendedString
    doc = occ("TDocStd").TDocStd_Document(ext(XCAF_FORMAT))
    app.NewDocument(ext(XCAF_FORMAT), doc)
    handle = KernelDocument(app, doc)
    logger.debug("Kernel document opened")
    try:
        yield handle
    finally:
        handle.close()
        logger.debug("Kernel document closed")


def read_bare_shapes(kind: str, path: str, read_visible: bool = True) -> list[Any]:
    """Read a STEP or IGES file without colour, name or layer information.

    Args:
        kind: ``"STEP"`` or ``"IGES"``
        path: File system path of the input file
        read_visible: IGES only; skip blank (invisible) entities

    Returns:
        Non-null root shapes transferred from the file

    Raises:
        KernelReadError: If the kernel cannot read the file
    """
    if kind == "STEP":
        reader = occ("STEPControl").STEPControl_Reader()
    elif kind == "IGES":
        igescontrol = occ("IGESControl")
        static(igescontrol.IGESControl_Controller, "Init")()
        reader = igescontrol.IGESControl_Reader()
        reader.SetReadVisible(read_visible)
    else:
        raise ValueError(f"Unsupported kind for bare import: {kind}")

    status = reader.ReadFile(path)
    if status != occ("IFSelect").IFSelect_RetDone:
        raise KernelReadError(f"cannot read {kind} file")

    reader.TransferRoots()
    shapes = [reader.Shape(i) for i in range(1, reader.NbShapes() + 1)]
    logger.debug("Bare transfer finished", kind=kind, shapes=len(shapes))
    return [shape for shape in shapes if not shape.IsNull()]
