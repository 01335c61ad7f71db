"""MCP tools implementation with session management.

This module provides the tools of the ShapePort MCP server. A session owns
one host application; imported files become documents in it and exports
read objects back out of those documents.
"""

from __future__ import annotations

import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import structlog

import shapeport
from hostdoc.document import Application, Document, DocumentObject, PartFeature
from hostdoc.params import ParameterStore
from kernel.occt_io import OCCTNotAvailableError
from shapeport.errors import ShapePortError
from shapeport.formats import FileFormat, detect_format

logger = structlog.get_logger(__name__)

# Failures reported to the client instead of aborting the tool call
_OPERATION_ERRORS = (ShapePortError, OSError, TypeError, ValueError, RuntimeError, OCCTNotAvailableError)


class SessionError(Exception):
    """Raised when session operations fail."""
    pass


def describe_document(doc: Document) -> Dict[str, Any]:
    objects = []
    for obj in doc.objects:
        entry: Dict[str, Any] = {
            "name": obj.name,
            "type": obj.type_name,
            "label": obj.label,
            "parent": obj.parent.name if obj.parent is not None else None,
            "visible": obj.visible,
        }
        if isinstance(obj, PartFeature):
            entry["layer"] = obj.layer
            entry["face_colors"] = len(obj.face_colors)
            entry["shape_color"] = obj.shape_color.to_hex() if obj.shape_color else None
        objects.append(entry)
    return {"document": doc.name, "label": doc.label, "object_count": len(objects), "objects": objects}


class ShapePortSession:
    """Session holding the documents created by tool calls."""

    def __init__(self, max_documents: int = 10, app: Optional[Application] = None):
        """Initialize session.

        Args:
            max_documents: Maximum number of documents to keep open
            app: Application to use; a new one with the user's preferences
                by default
        """
        self.app = app or Application(ParameterStore.from_environment())
        self._max_documents = max_documents
        self._load_times: Dict[str, float] = {}

        logger.info("ShapePort session initialized", max_documents=max_documents)

    def _track_new_documents(self, before: Sequence[Document]) -> List[Document]:
        created = [doc for doc in self.app.documents if doc not in before]
        now = time.time()
        for doc in created:
            self._load_times[doc.name] = now
        return created

    def cleanup_old_documents(self) -> None:
        """Close the oldest documents if we exceed the limit."""
        if len(self._load_times) <= self._max_documents:
            return

        sorted_docs = sorted(self._load_times.items(), key=lambda x: x[1])
        for doc_name, _ in sorted_docs[:-self._max_documents]:
            self.close_document(doc_name)

    def close_document(self, doc_name: str) -> None:
        if self.app.get_document(doc_name) is not None:
            self.app.close_document(doc_name)
            logger.debug("Closed session document", document=doc_name)
        self._load_times.pop(doc_name, None)

    def has_document(self, doc_name: str) -> bool:
        return self.app.get_document(doc_name) is not None

    def get_document(self, doc_name: str) -> Document:
        doc = self.app.get_document(doc_name)
        if doc is None:
            raise SessionError(f"Document not found in session: {doc_name}")
        return doc

    def list_documents(self) -> List[str]:
        return [doc.name for doc in self.app.documents]

    def get_session_stats(self) -> Dict[str, Any]:
        return {
            "open_documents": len(self.app.documents),
            "max_documents": self._max_documents,
            "document_names": self.list_documents(),
        }

    def import_file(
        self, file_path: str, merge: Optional[bool] = None, mode: int = -1
    ) -> tuple[List[Document], Dict[PartFeature, list]]:
        """Import a STEP or IGES file into a new document.

        Returns:
            Documents created by the import (the first is the target) and
            the colour associations

        Raises:
            SessionError: If the import fails
        """
        before = self.app.documents
        doc = self.app.new_document(Path(file_path).stem)
        try:
            logger.info("Importing file into session", file_path=file_path, document=doc.name)
            colors = shapeport.insert(file_path, doc.name, merge=merge, mode=mode, app=self.app)
        except _OPERATION_ERRORS as e:
            logger.error("Failed to import file", file_path=file_path, error=str(e))
            self.app.close_document(doc.name)
            raise SessionError(f"Failed to import {file_path}: {e}") from e

        created = self._track_new_documents(before)
        self.cleanup_old_documents()
        return created, colors

    def read_dxf(self, file_path: str, ignore_errors: bool = True) -> Document:
        before = self.app.documents
        doc = self.app.new_document(Path(file_path).stem)
        try:
            shapeport.read_dxf(file_path, doc.name, ignore_errors, app=self.app)
        except _OPERATION_ERRORS as e:
            logger.error("Failed to read DXF", file_path=file_path, error=str(e))
            self.app.close_document(doc.name)
            raise SessionError(f"Failed to read DXF file {file_path}: {e}") from e

        self._track_new_documents(before)
        self.cleanup_old_documents()
        return doc

    def _select(self, doc: Document, object_names: Optional[Sequence[str]]) -> List[DocumentObject]:
        if not object_names:
            return doc.root_objects()
        selected = []
        for name in object_names:
            obj = doc.get_object(name)
            if obj is None:
                raise SessionError(f"Object {name!r} not found in document {doc.name}")
            selected.append(obj)
        return selected

    def export_objects(
        self,
        doc_name: str,
        out_path: str,
        object_names: Optional[Sequence[str]] = None,
        legacy: Optional[bool] = None,
    ) -> List[DocumentObject]:
        doc = self.get_document(doc_name)
        objects = self._select(doc, object_names)
        try:
            shapeport.export(objects, out_path, legacy=legacy, app=self.app)
        except _OPERATION_ERRORS as e:
            logger.error("Failed to export objects", document=doc_name, out_path=out_path, error=str(e))
            raise SessionError(f"Failed to export to {out_path}: {e}") from e
        return objects

    def write_dxf(
        self,
        doc_name: str,
        out_path: str,
        object_names: Optional[Sequence[str]] = None,
        version: int = -1,
        use_polyline: bool = False,
    ) -> List[PartFeature]:
        doc = self.get_document(doc_name)
        if object_names:
            parts = [obj for obj in self._select(doc, object_names) if isinstance(obj, PartFeature)]
        else:
            parts = [obj for obj in doc.objects if isinstance(obj, PartFeature)]
        try:
            shapeport.write_dxf_object(parts, out_path, version, use_polyline, app=self.app)
        except _OPERATION_ERRORS as e:
            logger.error("Failed to write DXF", document=doc_name, out_path=out_path, error=str(e))
            raise SessionError(f"Failed to write DXF file {out_path}: {e}") from e
        return parts


# Global session instance for MCP tools
_session = ShapePortSession()


def _require(params: Dict[str, Any], key: str) -> Any:
    if key not in params:
        raise ValueError(f"Missing required parameter: {key}")
    value = params[key]
    if not value:
        raise ValueError(f"Parameter '{key}' cannot be empty")
    return value


def _require_file(params: Dict[str, Any]) -> str:
    file_path = _require(params, "path")
    if not Path(file_path).exists():
        raise ValueError(f"File not found: {file_path}")
    return file_path


def tool_import_file(params: Dict[str, Any]) -> Dict[str, Any]:
    """MCP tool: Import a STEP or IGES file into a new session document.

    Args:
        params: Tool parameters containing 'path' and optional 'merge', 'mode'

    Returns:
        Dictionary with the created documents and colour information

    Raises:
        ValueError: If parameters are invalid
    """
    file_path = _require_file(params)
    if not detect_format(file_path).readable:
        raise ValueError(f"Unsupported import format: {file_path}. Use STEP or IGES")

    try:
        documents, colors = _session.import_file(
            file_path, merge=params.get("merge"), mode=params.get("mode", -1)
        )
    except SessionError as e:
        logger.error("import_file tool failed", file_path=file_path, error=str(e))
        return {"success": False, "error": str(e), "file_path": file_path, "documents": []}

    return {
        "success": True,
        "file_path": file_path,
        "documents": [describe_document(doc) for doc in documents],
        "colored_parts": sorted(part.name for part in colors),
        "session_stats": _session.get_session_stats(),
    }


def tool_read_dxf(params: Dict[str, Any]) -> Dict[str, Any]:
    """MCP tool: Read a DXF file into a new session document."""
    file_path = _require_file(params)
    ignore_errors = params.get("ignore_errors", True)

    try:
        doc = _session.read_dxf(file_path, ignore_errors=ignore_errors)
    except SessionError as e:
        logger.error("read_dxf tool failed", file_path=file_path, error=str(e))
        return {"success": False, "error": str(e), "file_path": file_path, "document": None}

    return {
        "success": True,
        "file_path": file_path,
        "document": describe_document(doc),
        "session_stats": _session.get_session_stats(),
    }


def tool_export_objects(params: Dict[str, Any]) -> Dict[str, Any]:
    """MCP tool: Export objects of a session document to STEP, IGES or glTF.

    Args:
        params: Tool parameters containing 'document', 'out_path' and
            optional 'objects' (names) and 'legacy'

    Returns:
        Dictionary with export results

    Raises:
        ValueError: If parameters are invalid
    """
    doc_name = _require(params, "document")
    out_path = _require(params, "out_path")
    file_format = detect_format(out_path)
    if not file_format.writable:
        raise ValueError(f"Unsupported export format: {out_path}. Use .step, .iges, .glb or .gltf")

    try:
        exported = _session.export_objects(doc_name, out_path, params.get("objects"), params.get("legacy"))
    except SessionError as e:
        logger.error("export_objects tool failed", document=doc_name, out_path=out_path, error=str(e))
        return {"success": False, "error": str(e), "document": doc_name, "out_path": None}

    return {
        "success": True,
        "document": doc_name,
        "format": file_format.value,
        "out_path": out_path,
        "objects": [obj.name for obj in exported],
    }


def tool_write_dxf(params: Dict[str, Any]) -> Dict[str, Any]:
    """MCP tool: Write the part features of a session document to DXF."""
    doc_name = _require(params, "document")
    out_path = _require(params, "out_path")
    if detect_format(out_path) is not FileFormat.DXF:
        raise ValueError(f"Output must be a .dxf file: {out_path}")

    try:
        parts = _session.write_dxf(
            doc_name,
            out_path,
            params.get("objects"),
            params.get("version", -1),
            params.get("use_polyline", False),
        )
    except SessionError as e:
        logger.error("write_dxf tool failed", document=doc_name, out_path=out_path, error=str(e))
        return {"success": False, "error": str(e), "document": doc_name, "out_path": None}

    return {
        "success": True,
        "document": doc_name,
        "out_path": out_path,
        "layers": [part.name for part in parts],
    }


def tool_session_info(params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """MCP tool: Get session information and open documents.

    Args:
        params: Optional parameters (unused)

    Returns:
        Dictionary with session information
    """
    stats = _session.get_session_stats()
    documents = [describe_document(_session.get_document(name)) for name in stats["document_names"]]

    return {
        "success": True,
        "session_stats": stats,
        "documents": documents,
        "available_tools": [
            "import_file",
            "read_dxf",
            "export_objects",
            "write_dxf",
            "session_info",
        ],
    }
