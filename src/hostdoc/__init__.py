"""Host document framework.

This package provides the document/object registry, visual attributes and
the hierarchical preference store that import and export operations work
against.
"""

from .document import (
    DEFAULT_SHAPE_COLOR,
    Application,
    Color,
    Document,
    DocumentError,
    DocumentObject,
    GroupObject,
    PartFeature,
    Placement,
    get_application,
    set_application,
)
from .params import ParameterError, ParameterGroup, ParameterStore
from .settings import ImportExportSettings

__version__ = "0.1.0"
__all__ = [
    "Application", "Document", "DocumentError", "DocumentObject",
    "GroupObject", "PartFeature", "Color", "Placement", "DEFAULT_SHAPE_COLOR",
    "get_application", "set_application",
    "ParameterError", "ParameterGroup", "ParameterStore",
    "ImportExportSettings",
]
