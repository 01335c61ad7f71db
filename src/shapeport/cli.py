"""ShapePort CLI for local conversion and inspection.

Provides a command-line interface over the import/export operations plus
access to the preference store they read.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import List, Optional

import structlog
import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from hostdoc.document import Application, Document, GroupObject, PartFeature
from hostdoc.params import CONFIG_ENV_VAR, ParameterError, ParameterStore
from kernel.occt_io import OCCTNotAvailableError, get_occt_info
from kernel.shapes import count_topology

from . import api
from .errors import DxfError, FeatureUnavailableError, ShapePortError
from .formats import FileFormat, detect_format
from .logging_setup import configure_logging

logger = structlog.get_logger(__name__)

app = typer.Typer(
    name="shapeport",
    help="ShapePort CLI for CAD file conversion (STEP, IGES, glTF, DXF)",
    add_completion=False,
)
pref_app = typer.Typer(help="Read and write import/export preferences", add_completion=False)
app.add_typer(pref_app, name="pref")

console = Console()

PREFERENCE_PREFIX = "User parameter:BaseApp/Preferences/"
VALUE_TYPES = ("bool", "int", "float", "string")

# Errors reported as a failed command rather than a traceback
_COMMAND_ERRORS = (ShapePortError, OSError, TypeError, ValueError, OCCTNotAvailableError, ParameterError)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose output"),
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit logs as JSON"),
) -> None:
    configure_logging(level="DEBUG" if verbose else "WARNING", enable_json=json_logs)


def _display_error(message: str, error: Optional[Exception] = None) -> None:
    """Display error message with styling."""
    error_text = Text(f"❌ {message}", style="bold red")
    if error:
        error_text.append(f"\n   {error}", style="red")
    console.print(Panel(error_text, title="Error", border_style="red"))


def _display_success(message: str) -> None:
    """Display success message with styling."""
    success_text = Text(f"✅ {message}", style="bold green")
    console.print(Panel(success_text, title="Success", border_style="green"))


def _display_warning(message: str) -> None:
    warning_text = Text(f"⚠️  {message}", style="bold yellow")
    console.print(Panel(warning_text, title="Warning", border_style="yellow"))


def _load_params(config: Optional[Path]) -> ParameterStore:
    if config is not None:
        return ParameterStore.load(config)
    return ParameterStore.from_environment()


def _import_into(application: Application, source: Path) -> Document:
    """Import ``source`` into a fresh document and return it."""
    source_format = detect_format(source)
    if source_format is FileFormat.DXF:
        doc = application.new_document(source.stem)
        api.read_dxf(str(source), doc.name, app=application)
        return doc
    api.open(str(source), app=application)
    doc = application.active_document
    if doc is None:
        raise ShapePortError(f"Import of {source} produced no document")
    return doc


def _object_rows(doc: Document) -> List[tuple[str, ...]]:
    rows = []
    for obj in doc.objects:
        faces = "-"
        color = "-"
        layer = ""
        if isinstance(obj, PartFeature) and obj.shape is not None:
            faces = str(count_topology(obj.shape).faces)
            layer = obj.layer or ""
            if obj.face_colors:
                color = f"{len(obj.face_colors)} face colours"
            elif obj.shape_color is not None:
                color = obj.shape_color.to_hex()
        elif isinstance(obj, GroupObject):
            faces = f"{len(obj.children)} children"
        parent = obj.parent.name if obj.parent is not None else ""
        rows.append((obj.name or "?", obj.type_name, obj.label, parent, faces, color, layer))
    return rows


@app.command()
def info() -> None:
    """Display ShapePort information and OCCT binding status."""
    console.print(Panel(
        "ShapePort\n"
        "STEP, IGES, glTF and DXF exchange through Open CASCADE",
        title="ShapePort",
        border_style="blue"
    ))

    occt_info = get_occt_info()

    table = Table(title="OCCT Binding Status")
    table.add_column("Binding", style="cyan")
    table.add_column("Available", style="green")

    for name in ("OCP", "pythonOCC", "pyOCCT"):
        table.add_row(name, "✅" if occt_info[f"{name}_available"] else "❌")

    console.print(table)

    if occt_info["recommended_binding"]:
        _display_success(
            f"Using binding: {occt_info['recommended_binding']} "
            f"(OCCT {occt_info['occt_version'] or 'unknown'})"
        )
        if not occt_info["gltf_supported"]:
            _display_warning("glTF export unavailable: requires OCCT 7.5.0 or later")
    else:
        _display_error(
            "No OCCT binding available",
            Exception("Install cadquery-ocp or pythonocc-core to enable geometry processing"),
        )


@app.command()
def convert(
    source: Path = typer.Argument(..., help="Input file (STEP, IGES or DXF)"),
    target: Path = typer.Argument(..., help="Output file (STEP, IGES, glTF/GLB or DXF)"),
    legacy: Optional[bool] = typer.Option(None, "--legacy/--no-legacy", help="Use the legacy exporter"),
    keep_placement: Optional[bool] = typer.Option(
        None, "--keep-placement/--no-keep-placement", help="Keep top-level placements"
    ),
    dxf_version: int = typer.Option(-1, "--dxf-version", help="DXF version to write (12 or 14)"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Preference file"),
) -> None:
    """Convert a CAD file to another format."""
    try:
        application = Application(_load_params(config))
        console.print(f"🔄 Importing: {source}")
        doc = _import_into(application, source)
        roots = doc.root_objects()
        console.print(f"✅ Imported {len(doc.objects)} objects into {doc.name}")

        console.print(f"🔄 Writing: {target}")
        if detect_format(target) is FileFormat.DXF:
            parts = [obj for obj in doc.objects if isinstance(obj, PartFeature)]
            api.write_dxf_object(parts, str(target), dxf_version, app=application)
        elif detect_format(target).writable:
            api.export(roots, str(target), legacy=legacy, keep_placement=keep_placement, app=application)
        else:
            _display_error(f"Unsupported output format: {target.suffix or target.name}")
            raise typer.Exit(1)

        _display_success(f"Converted {source} -> {target}")

    except FeatureUnavailableError as e:
        _display_error("Output format not available", e)
        raise typer.Exit(1)
    except DxfError as e:
        _display_error("DXF conversion failed", e)
        raise typer.Exit(1)
    except _COMMAND_ERRORS as e:
        _display_error("Conversion failed", e)
        raise typer.Exit(1)


@app.command()
def inspect(
    source: Path = typer.Argument(..., help="Input file (STEP, IGES or DXF)"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Preference file"),
) -> None:
    """Import a file and list the objects it produces."""
    try:
        application = Application(_load_params(config))
        doc = _import_into(application, source)
    except _COMMAND_ERRORS as e:
        _display_error(f"Failed to import {source}", e)
        raise typer.Exit(1)

    table = Table(title=f"Objects in {doc.name}")
    for column, style in (
        ("Name", "cyan"),
        ("Type", "magenta"),
        ("Label", "white"),
        ("Parent", "white"),
        ("Faces", "yellow"),
        ("Colour", "green"),
        ("Layer", "blue"),
    ):
        table.add_column(column, style=style)
    for row in _object_rows(doc):
        table.add_row(*row)
    console.print(table)

    for other in application.documents:
        if other is not doc:
            console.print(f"Also created document {other.name} ({len(other.objects)} objects)")


def _group_path(group: str) -> str:
    return group if ":" in group else PREFERENCE_PREFIX + group.strip("/")


def _parse_value(value: str, value_type: str) -> object:
    if value_type == "bool":
        lowered = value.lower()
        if lowered not in ("true", "false", "1", "0", "yes", "no"):
            raise ValueError(f"Not a boolean: {value!r}")
        return lowered in ("true", "1", "yes")
    if value_type == "int":
        return int(value)
    if value_type == "float":
        return float(value)
    return value


@pref_app.command("get")
def pref_get(
    group: str = typer.Argument(..., help="Group, e.g. Mod/Part/STEP"),
    key: Optional[str] = typer.Argument(None, help="Key; omit to list the group"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Preference file"),
) -> None:
    """Show one preference or a whole group."""
    try:
        params_group = _load_params(config).get_group(_group_path(group))
    except ParameterError as e:
        _display_error("Cannot read preferences", e)
        raise typer.Exit(1)

    if key is not None:
        found = params_group.lookup(key)
        if found is None:
            _display_warning(f"{key} is not set in {group}; the built-in default applies")
            return
        console.print(f"{key} ({found[0]}) = {found[1]!r}")
        return

    table = Table(title=_group_path(group))
    table.add_column("Key", style="cyan")
    table.add_column("Type", style="magenta")
    table.add_column("Value", style="white")
    for kind, values in params_group.to_dict().items():
        if kind == "groups":
            continue
        for name, value in sorted(values.items()):
            table.add_row(name, kind, repr(value))
    console.print(table)


@pref_app.command("set")
def pref_set(
    group: str = typer.Argument(..., help="Group, e.g. Mod/Part/STEP"),
    key: str = typer.Argument(..., help="Key"),
    value: str = typer.Argument(..., help="Value"),
    value_type: str = typer.Option("string", "--type", "-t", help="bool, int, float or string"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Preference file"),
) -> None:
    """Store a preference and save the preference file."""
    if value_type not in VALUE_TYPES:
        _display_error(f"Unknown value type {value_type!r}; use one of {', '.join(VALUE_TYPES)}")
        raise typer.Exit(1)
    if config is None and not os.environ.get(CONFIG_ENV_VAR):
        _display_error(f"No preference file: pass --config or set {CONFIG_ENV_VAR}")
        raise typer.Exit(1)

    try:
        store = _load_params(config)
        params_group = store.get_group(_group_path(group))
        parsed = _parse_value(value, value_type)
        params_group.remove(key)
        getattr(params_group, f"set_{value_type}")(key, parsed)
        saved = store.save()
    except (ParameterError, ValueError, OSError) as e:
        _display_error("Cannot store preference", e)
        raise typer.Exit(1)

    logger.debug("Preference stored", group=group, key=key, type=value_type)
    _display_success(f"{key} = {parsed!r} saved to {saved}")


if __name__ == "__main__":
    app()
