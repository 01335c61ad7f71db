"""ShapePort MCP Server package.

Provides an MCP (Model Context Protocol) server that imports and exports
CAD files through a session of host documents.
"""

from .server import main as server_main
from .tools import ShapePortSession

__version__ = "0.1.0"
__all__ = ["server_main", "ShapePortSession"]
