"""Kernel package for CAD exchange through Open CASCADE Technology.

This package reads and writes STEP, IGES and glTF through XCAF documents and
DXF through ezdxf, translating between kernel data and host document objects.
"""

from .occt_io import (
    KernelDocument,
    KernelReadError,
    KernelTransferError,
    OCCTNotAvailableError,
    get_occt_info,
    kernel_document,
)
from .ocaf_export import ExportOptions, LegacyOcafExporter, OcafExporter
from .ocaf_import import ImportMode, ImportOptions, OcafImporter
from .writers import FeatureUnavailableError, KernelWriteError

__version__ = "0.1.0"
__all__ = [
    "KernelDocument", "KernelReadError", "KernelTransferError", "OCCTNotAvailableError",
    "get_occt_info", "kernel_document",
    "ExportOptions", "LegacyOcafExporter", "OcafExporter",
    "ImportMode", "ImportOptions", "OcafImporter",
    "FeatureUnavailableError", "KernelWriteError",
]
