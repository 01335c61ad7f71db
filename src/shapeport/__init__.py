"""ShapePort: CAD import and export for scripts.

Reads STEP and IGES into host documents, writes STEP, IGES and glTF, and
exchanges 2D geometry with DXF files.
"""

from .api import (
    export,
    insert,
    open,
    read_dxf,
    write_dxf_object,
    write_dxf_shape,
)
from .errors import (
    DxfError,
    FeatureUnavailableError,
    GeneralError,
    KernelReadError,
    KernelWriteError,
    ShapePortError,
    UnsupportedFormatError,
)
from .formats import FileFormat, detect_format

# Names used by existing macros
readDXF = read_dxf
writeDXFShape = write_dxf_shape
writeDXFObject = write_dxf_object

__version__ = "0.1.0"
__all__ = [
    "open", "insert", "export", "read_dxf", "write_dxf_shape", "write_dxf_object",
    "readDXF", "writeDXFShape", "writeDXFObject",
    "ShapePortError", "GeneralError", "UnsupportedFormatError", "DxfError",
    "KernelReadError", "KernelWriteError", "FeatureUnavailableError",
    "FileFormat", "detect_format",
]
