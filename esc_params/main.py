"""
esc-params command line entry point.

Inspects and edits the parameter page of an ESC flash image.
"""

import logging
from dataclasses import asdict
from pathlib import Path
from typing import Optional
from xml.etree.ElementTree import ParseError

import typer
from rich.console import Console
from rich.table import Table

from .configuration import ParameterStore, ParamStatus
from .protocol.param_table import PARAM_DESCRIPTIONS, params_to_xml, xml_to_params
from .settings import load_settings
from .storage.flash import FileFlash, FlashError

log = logging.getLogger(__name__)

app = typer.Typer(
    name="esc-params",
    help="Inspect and edit ESC parameter flash images",
    rich_markup_mode="rich",
    no_args_is_help=True,
)
console = Console()


def setup_logging(level: int = logging.INFO) -> None:
    logging.basicConfig(
        level=level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


@app.callback()
def main(
    ctx: typer.Context,
    image: Optional[Path] = typer.Option(
        None, "--image", "-i", help="Flash image file (default: $ESC_PARAMS_IMAGE)"
    ),
    env_file: Optional[Path] = typer.Option(
        None, "--env-file", help="Load settings from this .env file"
    ),
    log_level: Optional[str] = typer.Option(
        None, "--log-level", help="DEBUG, INFO, WARNING or ERROR", case_sensitive=False
    ),
) -> None:
    """Open the flash image and load its parameter table."""
    settings = load_settings(env_file)
    level_name = (log_level or settings.log_level).upper()
    level = getattr(logging, level_name, None)
    if not isinstance(level, int):
        console.print(f"[red]Invalid log level: {level_name}[/red]")
        raise typer.Exit(1)
    setup_logging(level)

    flash = FileFlash(image or settings.image_path)
    ctx.obj = ParameterStore.from_storage(
        flash, region=settings.region, erase_size=settings.erase_size)


def _resolve_index(store: ParameterStore, key: str) -> int:
    """Accept either a parameter index or a parameter name."""
    if key.isdigit():
        rec = store.get_param_by_index(int(key))
    else:
        rec = store.get_param_by_name(key)
    if rec is None:
        console.print(f"[red]Unknown parameter: {key}[/red]")
        raise typer.Exit(1)
    return rec.index


def _persist(store: ParameterStore) -> None:
    try:
        store.write_params()
    except FlashError as e:
        console.print(f"[red]Flash write failed: {e}[/red]")
        raise typer.Exit(2)


@app.command("list")
def list_params(ctx: typer.Context) -> None:
    """Show every parameter with its bounds."""
    store: ParameterStore = ctx.obj
    table = Table(title="ESC parameters")
    for col in ("#", "Name", "Value", "Default", "Min", "Max", "Description"):
        table.add_column(col)
    for rec in store.records():
        table.add_row(
            str(rec.index), rec.name, f"{rec.value:g}", f"{rec.default_value:g}",
            f"{rec.min_value:g}", f"{rec.max_value:g}",
            PARAM_DESCRIPTIONS.get(rec.name, ""),
        )
    console.print(table)


@app.command("get")
def get_param(ctx: typer.Context,
              key: str = typer.Argument(..., help="Parameter name or index")) -> None:
    """Print one parameter value."""
    store: ParameterStore = ctx.obj
    rec = store.get_param_by_index(_resolve_index(store, key))
    console.print(f"{rec.name} = {rec.value:g}  [dim]({rec.min_value:g} .. {rec.max_value:g})[/dim]")


@app.command("set")
def set_param(ctx: typer.Context,
              key: str = typer.Argument(..., help="Parameter name or index"),
              value: float = typer.Argument(..., help="New value")) -> None:
    """Set one parameter and write the table back to flash."""
    store: ParameterStore = ctx.obj
    index = _resolve_index(store, key)
    status = store.set_param_value_by_index(index, value)
    rec = store.get_param_by_index(index)
    if status is ParamStatus.INVALID_VALUE:
        console.print(f"[red]{value:g} is outside {rec.name} bounds "
                      f"({rec.min_value:g} .. {rec.max_value:g})[/red]")
        raise typer.Exit(1)
    _persist(store)
    console.print(f"{rec.name} = {rec.value:g}")


@app.command("reset")
def reset_params(ctx: typer.Context) -> None:
    """Restore factory defaults and write them to flash."""
    store: ParameterStore = ctx.obj
    store.reset_params()
    _persist(store)
    console.print(f"Restored {store.num_params} parameters to defaults")


@app.command("groups")
def show_groups(ctx: typer.Context) -> None:
    """Show the typed parameter groups handed to each subsystem."""
    store: ParameterStore = ctx.obj
    for title, group in (("Motor", store.read_motor_params()),
                         ("Control", store.read_control_params()),
                         ("PWM", store.read_pwm_params()),
                         ("UAVCAN", store.read_uavcan_params())):
        table = Table(title=title, show_header=False)
        for name, val in asdict(group).items():
            table.add_row(name, getattr(val, "name", None) or str(val))
        console.print(table)


@app.command("export-xml")
def export_xml(ctx: typer.Context,
               path: Path = typer.Argument(..., help="Destination XML file")) -> None:
    """Save the parameter table as XML."""
    store: ParameterStore = ctx.obj
    path.write_text(params_to_xml(store.table()), encoding="utf-8")
    console.print(f"Saved {store.num_params} parameters to {path}")


@app.command("import-xml")
def import_xml(ctx: typer.Context,
               path: Path = typer.Argument(..., exists=True, dir_okay=False,
                                           help="XML file to load")) -> None:
    """Load parameter values from XML, then write the table to flash."""
    store: ParameterStore = ctx.obj
    try:
        values = xml_to_params(str(path))
    except (ValueError, ParseError) as e:
        console.print(f"[red]Cannot load {path}: {e}[/red]")
        raise typer.Exit(1)

    rejected = store.apply_values(values)
    for name in rejected:
        console.print(f"[yellow]Rejected {name}={values[name]:g}[/yellow]")
    _persist(store)
    console.print(f"Applied {len(values) - len(rejected)} of {len(values)} values from {path}")


if __name__ == "__main__":
    app()
