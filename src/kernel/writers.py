"""Format-specific writers for a populated kernel document."""

from __future__ import annotations

from typing import Any

import structlog

from hostdoc.settings import IgesHeader, StepHeader

from .occt_io import KernelDocument, gltf_supported, occ, static

logger = structlog.get_logger(__name__)

# glTF is defined in metres with Y up; kernel models are millimetres, Z up
GLTF_INPUT_LENGTH_UNIT = 0.001


class KernelWriteError(OSError):
    """Raised when the kernel fails to write an output file."""

    pass


class FeatureUnavailableError(RuntimeError):
    """Raised when the OCCT build lacks a feature an operation needs."""

    pass


def _set_static(kind: str, key: str, value: Any) -> None:
    interface_static = occ("Interface").Interface_Static
    setter = {"c": "SetCVal", "i": "SetIVal", "r": "SetRVal"}[kind]
    if not static(interface_static, setter)(key, value):
        logger.warning("Kernel rejected static parameter", key=key, value=value)


def write_step(kdoc: KernelDocument, path: str, header: StepHeader) -> None:
    """Write ``kdoc`` as STEP with header metadata.

    Raises:
        KernelWriteError: If the writer returns an error, fail or stop status
    """
    ifselect = occ("IFSelect")
    tcollection = occ("TCollection")

    _set_static("c", "write.step.schema", header.schema)
    _set_static("c", "write.step.unit", header.unit)
    _set_static("i", "write.step.assembly", 1)

    writer = occ("STEPCAFControl").STEPCAFControl_Writer()
    writer.Transfer(kdoc.doc, occ("STEPControl").STEPControl_AsIs)

    make_header = occ("APIHeaderSection").APIHeaderSection_MakeHeader(writer.ChangeWriter().Model())
    # The name field stays unset; STEP headers are ASCII only
    make_header.SetAuthorValue(1, tcollection.TCollection_HAsciiString(header.author))
    make_header.SetOrganizationValue(1, tcollection.TCollection_HAsciiString(header.company))
    make_header.SetOriginatingSystem(tcollection.TCollection_HAsciiString(header.originating_system))
    make_header.SetDescriptionValue(1, tcollection.TCollection_HAsciiString(header.description))

    status = writer.Write(path)
    if status in (ifselect.IFSelect_RetError, ifselect.IFSelect_RetFail, ifselect.IFSelect_RetStop):
        raise KernelWriteError(f"Cannot open file '{path}'")
    logger.info("STEP file written", path=path, schema=header.schema)


def write_iges(kdoc: KernelDocument, path: str, header: IgesHeader) -> None:
    """Write ``kdoc`` as IGES with global section metadata.

    Raises:
        KernelWriteError: If the writer reports failure
    """
    tcollection = occ("TCollection")
    static(occ("IGESControl").IGESControl_Controller, "Init")()
    _set_static("c", "write.iges.unit", header.unit)

    writer = occ("IGESCAFControl").IGESCAFControl_Writer()
    model = writer.Model()
    section = model.GlobalSection()
    section.SetAuthorName(tcollection.TCollection_HAsciiString(header.author))
    section.SetCompanyName(tcollection.TCollection_HAsciiString(header.company))
    section.SetSendName(tcollection.TCollection_HAsciiString(header.product))
    model.SetGlobalSection(section)

    writer.Transfer(kdoc.doc)
    if not writer.Write(path):
        raise KernelWriteError(f"Cannot open file '{path}'")
    logger.info("IGES file written", path=path)


def mesh_free_shapes(kdoc: KernelDocument, linear_deflection: float, angular_deflection: float) -> int:
    """Tessellate every free shape; glTF carries triangles, not B-rep."""
    shape_tool_cls = occ("XCAFDoc").XCAFDoc_ShapeTool
    incremental_mesh = occ("BRepMesh").BRepMesh_IncrementalMesh
    count = 0
    for label in kdoc.free_labels():
        shape = static(shape_tool_cls, "GetShape")(label)
        if shape.IsNull():
            continue
        incremental_mesh(shape, linear_deflection, False, angular_deflection, True)
        count += 1
    return count


def write_gltf(
    kdoc: KernelDocument,
    path: str,
    binary: bool,
    linear_deflection: float = 0.1,
    angular_deflection: float = 0.5,
) -> None:
    """Write ``kdoc`` as glTF (``binary`` selects GLB).

    Raises:
        FeatureUnavailableError: If the OCCT build has no glTF writer
        KernelWriteError: If the writer reports failure
    """
    if not gltf_supported():
        raise FeatureUnavailableError("glTF support requires OCCT 7.5.0 or later")

    rwgltf = occ("RWGltf")
    meshed = mesh_free_shapes(kdoc, linear_deflection, angular_deflection)
    logger.debug("Tessellated shapes for glTF", shapes=meshed, deflection=linear_deflection)

    writer = rwgltf.RWGltf_CafWriter(occ("TCollection").TCollection_AsciiString(path), binary)
    writer.SetTransformationFormat(rwgltf.RWGltf_WriterTrsfFormat_Compact)
    converter = writer.ChangeCoordinateSystemConverter()
    converter.SetInputLengthUnit(GLTF_INPUT_LENGTH_UNIT)
    converter.SetInputCoordinateSystem(occ("RWMesh").RWMesh_CoordinateSystem_Zup)
    if hasattr(writer, "SetParallel"):
        writer.SetParallel(True)

    metadata = occ("TColStd").TColStd_IndexedDataMapOfStringString()
    if not writer.Perform(kdoc.doc, metadata, occ("Message").Message_ProgressRange()):
        raise KernelWriteError(f"Cannot save to file '{path}'")
    logger.info("glTF file written", path=path, binary=binary)
