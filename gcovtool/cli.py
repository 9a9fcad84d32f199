"""command line interface for gcovtool"""

import logging
import os
from pathlib import Path
from typing import List, Optional, Tuple

import typer
from rich.console import Console
from rich.logging import RichHandler

from .analysis import (
    load_source_lines,
    print_function_table,
    print_graph_structure,
    print_unit_json,
    print_unit_lines,
    print_unit_summary,
)
from .core import CoverageUnit, artifact_paths
from .errors import GcovError
from .gcov import read_graph


app = typer.Typer(
    help="decode gcc coverage notes/data files into line coverage",
    no_args_is_help=True,
    context_settings=dict(help_option_names=["-h", "--help"]),
    pretty_exceptions_short=True,
    pretty_exceptions_show_locals=False,
    add_completion=False,
)

# global state for verbose option
verbose_enabled = False


def _configure_logging(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


@app.callback()
def main_callback(
    verbose: bool = typer.Option(
        False, "-v", "--verbose", help="enable verbose output for all operations"
    ),
):
    """global options for gcovtool"""
    global verbose_enabled
    verbose_enabled = verbose
    _configure_logging(verbose)


def _load_unit(
    source: Path,
    graph: Optional[Path],
    data: List[Path],
    object_dir: Optional[Path],
    jobs: int,
) -> Tuple[CoverageUnit, str, List[str], Optional[List[str]]]:
    """decode the artifacts of a source file, deriving their paths when not given"""
    default_graph, default_data = artifact_paths(source, object_dir)
    graph_path = str(graph) if graph else default_graph
    if data:
        data_paths = [str(p) for p in data]
    elif os.path.exists(default_data):
        data_paths = [default_data]
    else:
        data_paths = []

    source_lines = load_source_lines(str(source)) if source.is_file() else None

    if verbose_enabled:
        typer.echo(f"graph: {graph_path}", err=True)
        for path in data_paths:
            typer.echo(f"data:  {path}", err=True)

    unit = CoverageUnit.from_files(
        graph_path,
        data_paths,
        source=str(source),
        line_count=len(source_lines) if source_lines is not None else None,
        workers=jobs,
    )
    return unit, graph_path, data_paths, source_lines


def _fail(what: str, error: Exception):
    typer.echo(f"error {what}: {error}", err=True)
    raise typer.Exit(1)


SOURCE_ARG = typer.Argument(..., help="source file the coverage belongs to")
GRAPH_OPT = typer.Option(None, "--graph", "-g", help="notes file (default: <stem>.gcno)")
DATA_OPT = typer.Option(
    [], "--data", "-d", help="data file, repeatable (default: <stem>.gcda)"
)
OBJECT_DIR_OPT = typer.Option(
    None, "--object-dir", "-o", help="directory holding the .gcno/.gcda files"
)
JOBS_OPT = typer.Option(1, "--jobs", "-j", min=1, help="worker processes for data files")


@app.command()
def show(
    source: Path = SOURCE_ARG,
    graph: Optional[Path] = GRAPH_OPT,
    data: List[Path] = DATA_OPT,
    object_dir: Optional[Path] = OBJECT_DIR_OPT,
    jobs: int = JOBS_OPT,
):
    """display per-line execution counts next to the source"""
    try:
        unit, _, _, source_lines = _load_unit(source, graph, data, object_dir, jobs)
    except (GcovError, OSError) as e:
        _fail(f"loading coverage for {source}", e)

    print_unit_lines(unit, source.name, source_lines)


@app.command()
def summary(
    source: Path = SOURCE_ARG,
    graph: Optional[Path] = GRAPH_OPT,
    data: List[Path] = DATA_OPT,
    object_dir: Optional[Path] = OBJECT_DIR_OPT,
    jobs: int = JOBS_OPT,
):
    """display run counts and line coverage totals"""
    try:
        unit, _, _, _ = _load_unit(source, graph, data, object_dir, jobs)
    except (GcovError, OSError) as e:
        _fail(f"loading coverage for {source}", e)

    print_unit_summary(unit, source.name)


@app.command()
def functions(
    source: Path = SOURCE_ARG,
    graph: Optional[Path] = GRAPH_OPT,
    data: List[Path] = DATA_OPT,
    object_dir: Optional[Path] = OBJECT_DIR_OPT,
    jobs: int = JOBS_OPT,
    limit: int = typer.Option(25, "--limit", "-n", help="number of functions to show"),
):
    """display functions by execution count"""
    try:
        unit, _, _, _ = _load_unit(source, graph, data, object_dir, jobs)
    except (GcovError, OSError) as e:
        _fail(f"loading coverage for {source}", e)

    print_function_table(unit, limit)


@app.command("json")
def json_command(
    source: Path = SOURCE_ARG,
    graph: Optional[Path] = GRAPH_OPT,
    data: List[Path] = DATA_OPT,
    object_dir: Optional[Path] = OBJECT_DIR_OPT,
    jobs: int = JOBS_OPT,
):
    """output line coverage and file metadata as JSON"""
    try:
        unit, graph_path, data_paths, source_lines = _load_unit(
            source, graph, data, object_dir, jobs
        )
    except (GcovError, OSError) as e:
        _fail(f"loading coverage for {source}", e)

    print_unit_json(
        unit,
        name=source.name,
        source_path=str(source),
        graph_path=graph_path,
        data_paths=data_paths,
        source_lines=source_lines,
    )


@app.command("graph")
def graph_command(
    file: Path = typer.Argument(..., help="notes (.gcno) file to dump"),
):
    """display the functions, blocks and arcs of a notes file"""
    try:
        decoded = read_graph(str(file))
    except (GcovError, OSError) as e:
        _fail(f"reading {file}", e)

    print_graph_structure(decoded, file.name)
