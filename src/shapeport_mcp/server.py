"""ShapePort MCP Server implementation.

Provides a stdio-based MCP server exposing CAD import and export with
robust error handling and logging.
"""

from __future__ import annotations

import sys
from typing import Any, Dict, List, Optional

import structlog
from mcp.server.fastmcp import FastMCP

from shapeport.logging_setup import configure_logging

from .tools import (
    tool_export_objects,
    tool_import_file,
    tool_read_dxf,
    tool_session_info,
    tool_write_dxf,
)

logger = structlog.get_logger(__name__)

# Create FastMCP app
app = FastMCP("shapeport")


def _failure(error: Exception, **fields: Any) -> Dict[str, Any]:
    return {"success": False, "error": f"Tool execution failed: {error}", **fields}


@app.tool()
def import_file(path: str, merge: Optional[bool] = None, mode: int = -1) -> Dict[str, Any]:
    """Import a STEP or IGES file into a new session document.

    Args:
        path: Absolute path to the STEP or IGES file
        merge: Merge all parts into a single compound (default: preference)
        mode: Import mode 0-4 (single document, group, object per document);
            negative uses the preference

    Returns:
        Dictionary containing created documents, their objects and the
        parts that carry per-face colours

    Example:
        >>> import_file("/path/to/assembly.step")
        {
            "success": True,
            "file_path": "/path/to/assembly.step",
            "documents": [{"document": "assembly", "object_count": 3, ...}],
            "colored_parts": ["Bracket"]
        }
    """
    try:
        logger.info("MCP tool: import_file", path=path)
        result = tool_import_file({"path": path, "merge": merge, "mode": mode})
        logger.info("MCP tool: import_file completed", success=result.get("success", False))
        return result
    except Exception as e:
        logger.error("MCP tool: import_file failed", path=path, error=str(e))
        return _failure(e, file_path=path, documents=[])


@app.tool()
def read_dxf(path: str, ignore_errors: bool = True) -> Dict[str, Any]:
    """Read a DXF drawing into a new session document.

    Args:
        path: Absolute path to the DXF file
        ignore_errors: Skip malformed entities instead of failing

    Returns:
        Dictionary describing the created document
    """
    try:
        logger.info("MCP tool: read_dxf", path=path)
        result = tool_read_dxf({"path": path, "ignore_errors": ignore_errors})
        logger.info("MCP tool: read_dxf completed", success=result.get("success", False))
        return result
    except Exception as e:
        logger.error("MCP tool: read_dxf failed", path=path, error=str(e))
        return _failure(e, file_path=path, document=None)


@app.tool()
def export_objects(
    document: str,
    out_path: str,
    objects: Optional[List[str]] = None,
    legacy: Optional[bool] = None,
) -> Dict[str, Any]:
    """Export objects of a session document to STEP, IGES, glTF or GLB.

    Args:
        document: Session document name (from import_file or session_info)
        out_path: Output path; the extension selects the format
        objects: Object names to export (default: all root objects)
        legacy: Use the legacy flat exporter (default: preference)

    Returns:
        Dictionary containing export results
    """
    try:
        logger.info("MCP tool: export_objects", document=document, out_path=out_path)
        result = tool_export_objects(
            {"document": document, "out_path": out_path, "objects": objects, "legacy": legacy}
        )
        logger.info("MCP tool: export_objects completed", success=result.get("success", False))
        return result
    except Exception as e:
        logger.error("MCP tool: export_objects failed", document=document, error=str(e))
        return _failure(e, document=document, out_path=None)


@app.tool()
def write_dxf(
    document: str,
    out_path: str,
    objects: Optional[List[str]] = None,
    version: int = -1,
    use_polyline: bool = False,
) -> Dict[str, Any]:
    """Write the parts of a session document to a DXF file.

    Args:
        document: Session document name
        out_path: Output .dxf path
        objects: Object names to write (default: all parts)
        version: 12 or 14; other values use the preference
        use_polyline: Write curves as polylines

    Returns:
        Dictionary containing the written layers
    """
    try:
        logger.info("MCP tool: write_dxf", document=document, out_path=out_path)
        result = tool_write_dxf(
            {
                "document": document,
                "out_path": out_path,
                "objects": objects,
                "version": version,
                "use_polyline": use_polyline,
            }
        )
        logger.info("MCP tool: write_dxf completed", success=result.get("success", False))
        return result
    except Exception as e:
        logger.error("MCP tool: write_dxf failed", document=document, error=str(e))
        return _failure(e, document=document, out_path=None)


@app.tool()
def session_info() -> Dict[str, Any]:
    """Get information about the current session and open documents.

    Returns:
        Dictionary containing session statistics and document contents
    """
    try:
        logger.info("MCP tool: session_info")
        result = tool_session_info()
        logger.info("MCP tool: session_info completed", documents=len(result.get("documents", [])))
        return result
    except Exception as e:
        logger.error("MCP tool: session_info failed", error=str(e))
        return _failure(e, session_stats={}, documents=[])


def main() -> None:
    """Main entry point for the MCP server.

    Runs the server in stdio mode; logs go to stderr.
    """
    configure_logging(level="INFO", enable_colors=False, stream=sys.stderr)
    try:
        logger.info("Starting ShapePort MCP server")

        from kernel.occt_io import get_occt_info
        occt_info = get_occt_info()
        logger.info("OCCT binding status", **occt_info)

        if occt_info["recommended_binding"] is None:
            logger.warning(
                "No OCCT binding available - imports and exports will fail. "
                "Install cadquery-ocp or pythonocc-core to enable geometry processing."
            )
        else:
            logger.info("OCCT binding available", recommended=occt_info["recommended_binding"])

        logger.info("ShapePort MCP server ready")
        app.run()

    except KeyboardInterrupt:
        logger.info("MCP server shutting down (keyboard interrupt)")
        sys.exit(0)
    except Exception as e:
        logger.error("MCP server startup failed", error=str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
