"""Typed access to the import/export preferences."""

from __future__ import annotations

from dataclasses import dataclass

from .params import ParameterGroup, ParameterStore

IMPORT_GROUP = "User parameter:BaseApp/Preferences/Mod/Import"
STEP_GROUP = "User parameter:BaseApp/Preferences/Mod/Part/STEP"
IGES_GROUP = "User parameter:BaseApp/Preferences/Mod/Part/IGES"
DRAFT_GROUP = "User parameter:BaseApp/Preferences/Mod/Draft"

DXF_READ_OPTION_SOURCE = DRAFT_GROUP
DXF_WRITE_OPTION_SOURCE = IMPORT_GROUP


@dataclass(frozen=True)
class StepHeader:
    author: str
    company: str
    originating_system: str
    description: str
    schema: str
    unit: str


@dataclass(frozen=True)
class IgesHeader:
    author: str
    company: str
    product: str
    unit: str


class ImportExportSettings:
    """Preference view used by the import and export pipelines."""

    def __init__(self, params: ParameterStore, application_name: str = "ShapePort") -> None:
        self._params = params
        self.application_name = application_name

    @property
    def _import(self) -> ParameterGroup:
        return self._params.get_group(IMPORT_GROUP)

    @property
    def _step(self) -> ParameterGroup:
        return self._params.get_group(STEP_GROUP)

    @property
    def _iges(self) -> ParameterGroup:
        return self._params.get_group(IGES_GROUP)

    # Import options

    @property
    def import_hidden(self) -> bool:
        return self._import.get_bool("ImportHiddenObject", True)

    @property
    def merge(self) -> bool:
        return self._import.get_bool("ReadShapeCompoundMode", False)

    @property
    def use_link_group(self) -> bool:
        return self._import.get_bool("UseLinkGroup", False)

    @property
    def import_mode(self) -> int:
        return self._import.get_int("ImportMode", 0)

    @property
    def skip_blank_entities(self) -> bool:
        return self._iges.get_bool("SkipBlankEntities", True)

    # Export options

    @property
    def export_legacy(self) -> bool:
        return self._import.get_bool("ExportLegacy", False)

    @property
    def export_hidden(self) -> bool:
        return self._import.get_bool("ExportHiddenObject", True)

    @property
    def keep_placement(self) -> bool:
        return self._import.get_bool("ExportKeepPlacement", False)

    @property
    def mesh_linear_deflection(self) -> float:
        return self._import.get_float("MeshLinearDeflection", 0.1)

    @property
    def mesh_angular_deflection(self) -> float:
        return self._import.get_float("MeshAngularDeflection", 0.5)

    def step_header(self) -> StepHeader:
        group = self._step
        return StepHeader(
            author=group.get_string("Author", "Author"),
            company=group.get_string("Company", ""),
            originating_system=self.application_name,
            description=f"{self.application_name} Model",
            schema=group.get_string("Scheme", "AP214IS"),
            unit=group.get_string("Unit", "MM"),
        )

    def iges_header(self) -> IgesHeader:
        group = self._iges
        return IgesHeader(
            author=group.get_string("Author", "Author"),
            company=group.get_string("Company", ""),
            product=group.get_string("Product", self.application_name),
            unit=group.get_string("Unit", "MM"),
        )
