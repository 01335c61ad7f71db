"""Import and export operations exposed to scripts.

Each operation decodes its arguments, picks the format from the file
extension and runs the kernel bridge inside one scoped kernel document.

Example:
    >>> import hostdoc, shapeport
    >>> colors = shapeport.open("bracket.step")
    >>> doc = hostdoc.get_application().active_document
    >>> shapeport.export(doc.root_objects(), "bracket.glb")
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import structlog

from hostdoc.document import Application, Color, Document, PartFeature, get_application
from hostdoc.settings import ImportExportSettings
from kernel import dxf, ocaf_export, ocaf_import, occt_io, writers
from kernel.shapes import placement_to_location

from .args import DxfReadRequest, DxfWriteRequest, ExportRequest, ImportRequest
from .errors import (
    DxfError,
    FeatureUnavailableError,
    UnsupportedFormatError,
    translate_dxf_errors,
    translate_kernel_errors,
)
from .formats import FileFormat, detect_format, is_binary_gltf

logger = structlog.get_logger(__name__)

ColorAssociations = Dict[PartFeature, List[Color]]
PartColorCallback = Callable[[PartFeature, List[Color]], None]


def _application(app: Optional[Application]) -> Application:
    return app if app is not None else get_application()


def _import_document(app: Application, doc_name: Optional[str], stem: str) -> Document:
    if doc_name is not None:
        return app.get_document(doc_name) or app.new_document(doc_name)
    return app.new_document(stem)


def _import(
    request: ImportRequest,
    app: Application,
    on_part_colors: Optional[PartColorCallback],
) -> ColorAssociations:
    file_format = detect_format(request.path)
    if not file_format.readable:
        raise UnsupportedFormatError()

    settings = ImportExportSettings(app.params, app.name)
    options = ocaf_import.ImportOptions.from_settings(settings)
    if request.merge is not None:
        options.merge = request.merge
    if request.import_hidden is not None:
        options.import_hidden = request.import_hidden
    if request.use_link_group is not None:
        options.use_link_group = request.use_link_group
    if request.mode is not None:
        options.mode = request.mode

    kind = file_format.value
    stem = Path(request.path).stem
    existing = set(app.documents)
    doc = _import_document(app, request.doc_name, stem)
    read_visible = settings.skip_blank_entities
    associations: ColorAssociations = {}

    def collect(part: PartFeature, colors: List[Color]) -> None:
        associations[part] = colors
        if on_part_colors is not None:
            on_part_colors(part, colors)

    logger.info("Importing file", path=request.path, format=kind, document=doc.name)

    with translate_kernel_errors(), occt_io.kernel_document() as kdoc:
        try:
            ocaf_import.transfer_colored(kind, request.path, kdoc, read_visible)
        except Exception as exc:
            if not occt_io.is_transfer_failure(exc):
                raise
            logger.error("Colored transfer failed", path=request.path, error=occt_io.failure_message(exc))
            logger.warning(f"Try to load {kind} file without colors...", path=request.path)
            ocaf_import.import_bare_parts(kind, request.path, doc, stem, read_visible)
            doc.recompute()
            return {}

        importer = ocaf_import.OcafImporter(kdoc, doc, stem, options, on_face_colors=collect)
        importer.load_shapes()

        for target in app.documents:
            if target is doc or target not in existing:
                target.recompute()

    logger.info("Import finished", path=request.path, document=doc.name, colored_parts=len(associations))
    return associations


def open(
    name: Any,
    doc_name: Any = None,
    import_hidden: Any = None,
    merge: Any = None,
    use_link_group: Any = None,
    mode: Any = -1,
    *,
    app: Optional[Application] = None,
    on_part_colors: Optional[PartColorCallback] = None,
) -> ColorAssociations:
    """Import a STEP or IGES file into a new (or the named) document.

    Args:
        name: Path of the file to read
        doc_name: Existing document to import into; created when missing
        import_hidden: Keep objects hidden in the file (``None``: preference)
        merge: Collapse everything into one compound part
        use_link_group: Build link groups instead of parts for assemblies
        mode: ``ImportMode`` value; negative means use the preference
        app: Application to use instead of the process-wide one
        on_part_colors: Called once per part that has explicit face colours

    Returns:
        Mapping of parts to their per-face colours; empty after the
        colourless fallback

    Raises:
        UnsupportedFormatError: If the extension is not STEP or IGES
        KernelReadError: If the kernel cannot read the file
        GeneralError: If the kernel fails during import
    """
    request = ImportRequest.parse(name, doc_name, import_hidden, merge, use_link_group, mode)
    return _import(request, _application(app), on_part_colors)


def insert(
    name: Any,
    doc_name: Any,
    import_hidden: Any = None,
    merge: Any = None,
    use_link_group: Any = None,
    mode: Any = -1,
    *,
    app: Optional[Application] = None,
    on_part_colors: Optional[PartColorCallback] = None,
) -> ColorAssociations:
    """Import a STEP or IGES file into the document ``doc_name``."""
    if doc_name is None:
        raise TypeError("insert() requires a document name")
    request = ImportRequest.parse(name, doc_name, import_hidden, merge, use_link_group, mode)
    return _import(request, _application(app), on_part_colors)


def export(
    objects: Any,
    name: Any,
    export_hidden: Any = None,
    legacy: Any = None,
    keep_placement: Any = None,
    *,
    app: Optional[Application] = None,
) -> None:
    """Write document objects to a STEP, IGES or glTF/GLB file.

    Entries of ``objects`` that are not document objects are ignored. An
    unsupported extension writes nothing.

    Raises:
        TypeError: If ``objects`` is not a sequence
        KernelWriteError: If the kernel cannot write the file
        FeatureUnavailableError: For glTF without kernel support
        GeneralError: If the kernel fails during export
    """
    request = ExportRequest.parse(objects, name, export_hidden, legacy, keep_placement)
    app = _application(app)

    file_format = detect_format(request.path)
    if not file_format.writable:
        logger.warning("Unsupported export format, nothing written", path=request.path)
        return
    if file_format is FileFormat.GLTF and not occt_io.gltf_supported():
        raise FeatureUnavailableError("glTF support requires OCCT 7.5.0 or later")

    settings = ImportExportSettings(app.params, app.name)
    use_legacy = request.legacy if request.legacy is not None else settings.export_legacy
    options = ocaf_export.ExportOptions.from_settings(settings)
    if request.export_hidden is not None:
        options.export_hidden = request.export_hidden
    if request.keep_placement is not None:
        options.keep_placement = request.keep_placement

    objs = list(request.objects)
    logger.info("Exporting objects", path=request.path, format=file_format.value, objects=len(objs))

    with translate_kernel_errors(), occt_io.kernel_document() as kdoc:
        if use_legacy and ocaf_export.OcafExporter.can_fallback(objs):
            strategy = "legacy"
            ocaf_export.LegacyOcafExporter(kdoc).export_objects(objs)
        else:
            strategy = "hierarchical"
            ocaf_export.OcafExporter(kdoc, options).export_objects(objs)

        if file_format is FileFormat.STEP:
            writers.write_step(kdoc, request.path, settings.step_header())
        elif file_format is FileFormat.IGES:
            writers.write_iges(kdoc, request.path, settings.iges_header())
        else:
            writers.write_gltf(
                kdoc,
                request.path,
                is_binary_gltf(request.path),
                settings.mesh_linear_deflection,
                settings.mesh_angular_deflection,
            )

    logger.info("Export finished", path=request.path, strategy=strategy)


def _dxf_document(app: Application, doc_name: Optional[str]) -> Document:
    if doc_name is not None:
        return app.get_document(doc_name) or app.new_document(doc_name)
    return app.active_document or app.new_document()


def read_dxf(
    name: Any,
    doc_name: Any = None,
    ignore_errors: Any = True,
    option_source: Any = None,
    *,
    app: Optional[Application] = None,
) -> List[PartFeature]:
    """Read a DXF file into the named, active or a new document.

    Returns:
        Part features created from the file

    Raises:
        DxfError: If the file is missing or cannot be read
    """
    request = DxfReadRequest.parse(name, doc_name, ignore_errors, option_source)
    app = _application(app)

    if not Path(request.path).is_file():
        raise DxfError("File doesn't exist")

    with translate_dxf_errors():
        doc = _dxf_document(app, request.doc_name)
        reader = dxf.DxfReader(request.path, doc)
        if request.option_source is not None:
            reader.set_option_source(request.option_source)
        reader.set_options(app.params)
        features = reader.do_read(request.ignore_errors)
        doc.recompute()
    return features


def _dxf_writer(request: DxfWriteRequest, app: Application) -> dxf.DxfWriter:
    writer = dxf.DxfWriter(request.path)
    if request.option_source is not None:
        writer.set_option_source(request.option_source)
    writer.set_options(app.params)
    if request.version is not None:
        writer.set_version(request.version)
    writer.set_poly_override(request.use_polyline)
    writer.init()
    return writer


def write_dxf_shape(
    shapes: Any,
    name: Any,
    version: Any = -1,
    use_polyline: Any = False,
    option_source: Any = None,
    *,
    app: Optional[Application] = None,
) -> None:
    """Write one shape or a list of shapes to DXF on layer ``none``.

    Raises:
        TypeError: If ``shapes`` is neither a shape nor a list
        DxfError: If the kernel or the file write fails
    """
    request = DxfWriteRequest.parse(shapes, name, version, use_polyline, option_source)
    app = _application(app)

    with translate_dxf_errors():
        writer = _dxf_writer(request, app)
        writer.set_layer_name(dxf.DEFAULT_LAYER)
        for shape in request.entities:
            if not occt_io.is_shape(shape):
                logger.debug("Skipping non-shape entry", type=type(shape).__name__)
                continue
            writer.export_shape(shape)
        writer.end_run()


def write_dxf_object(
    objects: Any,
    name: Any,
    version: Any = -1,
    use_polyline: Any = False,
    option_source: Any = None,
    *,
    app: Optional[Application] = None,
) -> None:
    """Write the shapes of part features to DXF, one layer per object name.

    Raises:
        TypeError: If ``objects`` is neither a document object nor a list
        DxfError: If the kernel or the file write fails
    """
    request = DxfWriteRequest.parse(objects, name, version, use_polyline, option_source, objects=True)
    app = _application(app)

    with translate_dxf_errors():
        writer = _dxf_writer(request, app)
        for obj in request.entities:
            if not isinstance(obj, PartFeature) or obj.shape is None:
                logger.debug("Skipping object without shape", object=getattr(obj, "name", None))
                continue
            shape = obj.shape
            placement = obj.global_placement
            if not placement.is_identity:
                shape = shape.Moved(placement_to_location(placement))
            writer.set_layer_name(obj.name or obj.label)
            writer.export_shape(shape)
        writer.end_run()
