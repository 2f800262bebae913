from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional

import pandas as pd
import typer
from dateutil import parser
from rich.table import Table

from datasource.completions import register_language
from datasource.core import (
    DataSourceError,
    QueryRequest,
    QueryTarget,
    RepeatBinding,
    TimeRange,
    VariableBinding,
)
from datasource.dispatcher import Dispatcher
from datasource.header import compile_header
from datasource.health import probe_sync
from datasource.settings import ConfigurationError, DataSourceSettings, load_settings
from datasource.variables import find_variable_values_sync

from .common import configure_logging, console, ensure_dir, group_pairs, parse_pairs

app = typer.Typer(help="Script datasource command line interface")

CONFIG_OPTION = typer.Option(None, "--config", "-c", help="Datasource config (YAML or JSON)")
ACCESS_OPTION = typer.Option(None, "--access", help="direct or proxy")
FROM_OPTION = typer.Option(None, "--from", help="ISO-8601 start; defaults to one hour ago")
TO_OPTION = typer.Option(None, "--to", help="ISO-8601 end; defaults to now")
VAR_OPTION = typer.Option([], "--var", help="Dashboard variable as name=value; repeat for multi-select")
REPEAT_OPTION = typer.Option([], "--repeat", help="Repeat-scope value as name=value")


@app.callback()
def main() -> None:
    configure_logging("cli")


def _settings(config: Optional[Path], access: Optional[str] = None) -> DataSourceSettings:
    try:
        return load_settings(config, access=access)
    except ConfigurationError as exc:
        console().print(f"[red]{exc}[/]")
        raise typer.Exit(code=2) from exc


def _time_range(start: Optional[str], end: Optional[str], max_data_points: int) -> TimeRange:
    end_dt = parser.isoparse(end) if end else datetime.now(timezone.utc)
    start_dt = parser.isoparse(start) if start else end_dt - timedelta(hours=1)
    try:
        return TimeRange(pd.Timestamp(start_dt), pd.Timestamp(end_dt), max_data_points)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--from/--to") from exc


def _variables(raw: List[str]) -> List[VariableBinding]:
    grouped = group_pairs(parse_pairs(raw, "--var"))
    return [
        VariableBinding(name=name, current_value=values if len(values) > 1 else values[0], multi=len(values) > 1)
        for name, values in grouped.items()
    ]


def _repeat_scope(raw: List[str]) -> dict:
    grouped = group_pairs(parse_pairs(raw, "--repeat"))
    return {
        name: RepeatBinding(name=name, value=values if len(values) > 1 else values[0])
        for name, values in grouped.items()
    }


@app.command("header")
def header(
    config: Optional[Path] = CONFIG_OPTION,
    start: Optional[str] = FROM_OPTION,
    end: Optional[str] = TO_OPTION,
    max_data_points: int = typer.Option(1000, "--max-data-points", min=1),
    var: List[str] = VAR_OPTION,
    repeat: List[str] = REPEAT_OPTION,
) -> None:
    """Print the preamble prepended to every target script."""
    settings = _settings(config)
    text = compile_header(
        _time_range(start, end, max_data_points),
        settings.constants,
        settings.macros,
        _variables(var),
        _repeat_scope(repeat),
    )
    typer.echo(text, nl=False)


@app.command("query")
def query(
    script: str = typer.Argument(..., help="Script text, or @path to read it from a file"),
    config: Optional[Path] = CONFIG_OPTION,
    access: Optional[str] = ACCESS_OPTION,
    start: Optional[str] = FROM_OPTION,
    end: Optional[str] = TO_OPTION,
    max_data_points: int = typer.Option(1000, "--max-data-points", min=1),
    var: List[str] = VAR_OPTION,
    repeat: List[str] = REPEAT_OPTION,
    ref_id: str = typer.Option("A", "--ref-id"),
    hide_labels: bool = typer.Option(False, "--hide-labels"),
    out: Optional[Path] = typer.Option(None, help="Write frames to .csv or .parquet"),
) -> None:
    """Run one target and show the resulting frames."""
    expr = Path(script[1:]).read_text(encoding="utf-8") if script.startswith("@") else script
    dispatcher = Dispatcher(_settings(config, access))
    request = QueryRequest(
        targets=[QueryTarget(ref_id=ref_id, expr=expr, hide_labels=hide_labels)],
        time_range=_time_range(start, end, max_data_points),
        variables=_variables(var),
        repeat_scope=_repeat_scope(repeat),
    )
    result = dispatcher.execute_sync(request).results[ref_id]
    if not result.ok:
        console().print(f"[red]{ref_id}: {result.error}[/] (status {result.status})")
        raise typer.Exit(code=1)

    for frame in result.frames:
        table = Table(title=f"{frame.name} ({frame.length} rows)")
        for item in frame.fields:
            table.add_column(f"{item.name} [{item.type}]")
        for row in zip(*(item.values for item in frame.fields)):
            table.add_row(*(str(value) for value in row))
        console().print(table)

    if out is not None:
        frames = [frame.to_pandas().add_prefix(f"{frame.name}.") for frame in result.frames]
        combined = pd.concat(frames, axis=1) if frames else pd.DataFrame()
        ensure_dir(out)
        if out.suffix.lower() == ".parquet":
            combined.to_parquet(out)
        else:
            combined.to_csv(out)
        console().print(f"[green]{out}[/] ready with {len(combined)} rows")


@app.command("health")
def health(
    config: Optional[Path] = CONFIG_OPTION,
    access: Optional[str] = ACCESS_OPTION,
) -> None:
    """Check that the configured engine answers."""
    result = probe_sync(Dispatcher(_settings(config, access)))
    colour = "green" if result.ok else "red"
    console().print(f"[{colour}]{result.status.value}[/]: {result.message}")
    if result.details:
        console().print(f"  {result.details}")
    if not result.ok:
        raise typer.Exit(code=1)


@app.command("variables")
def variables(
    script: str = typer.Argument(..., help="Variable query script"),
    config: Optional[Path] = CONFIG_OPTION,
    as_json: bool = typer.Option(False, "--json"),
) -> None:
    """List the values a query-type variable would offer."""
    dispatcher = Dispatcher(_settings(config))
    try:
        values = find_variable_values_sync(dispatcher, script)
    except DataSourceError as exc:
        console().print(f"[red]{exc}[/]")
        raise typer.Exit(code=1) from exc
    if as_json:
        typer.echo(json.dumps([{"text": item.text, "value": item.value} for item in values]))
        return
    table = Table(title="Variable values")
    table.add_column("text")
    table.add_column("value")
    for item in values:
        table.add_row(item.text, item.value)
    console().print(table)


@app.command("completions")
def completions(config: Optional[Path] = CONFIG_OPTION) -> None:
    """Show editor completions for the configured constants and macros."""
    settings = _settings(config)
    for item in register_language(settings.constants, settings.macros):
        console().print(f"[cyan]{item.label}[/] {item.kind}")


@app.command("serve")
def serve(
    host: str = typer.Option("127.0.0.1"),
    port: int = typer.Option(8000),
) -> None:
    """Run the host backend used by proxy access mode."""
    from backend.server import start_backend

    start_backend(host, port)


if __name__ == "__main__":
    app()
