"""rendering of coverage units: dictionaries, json and rich console output"""

import json
import os
from typing import Any, Dict, List, Optional, Sequence

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from rich.tree import Tree

from .core import CoverageUnit
from .gcov import GraphFile

# Constants
NOT_EXECUTABLE_MARK = "-"
NEVER_EXECUTED_MARK = "#####"
DEFAULT_BAR_WIDTH = 20
DEFAULT_TOP_FUNCTIONS = 25


def load_source_lines(path: str) -> List[str]:
    """read a source file as a list of lines without line terminators"""
    with open(path, "r", encoding="utf-8", errors="replace") as f:
        return f.read().splitlines()


def format_hits(executable: bool, hit_count: Optional[int]) -> str:
    """gcov style hit column"""
    if not executable:
        return NOT_EXECUTABLE_MARK
    if not hit_count:
        return NEVER_EXECUTED_MARK
    return str(hit_count)


def unit_to_dict(
    unit: CoverageUnit,
    name: Optional[str] = None,
    source_path: Optional[str] = None,
    graph_path: Optional[str] = None,
    data_paths: Sequence[str] = (),
    source_lines: Optional[Sequence[str]] = None,
) -> Dict[str, Any]:
    """dictionary representation of a coverage unit and its file metadata"""
    source_path = source_path or unit.source
    if name is None and source_path:
        name = os.path.basename(source_path)

    lines = []
    for record in unit.lines:
        entry: Dict[str, Any] = {
            "line": record.number,
            "executable": record.executable,
            "hits": record.hit_count,
        }
        if source_lines is not None:
            index = record.number - 1
            entry["code"] = source_lines[index] if index < len(source_lines) else ""
        lines.append(entry)

    return {
        "name": name,
        "source": source_path,
        "graph": graph_path,
        "data": list(data_paths),
        "runs": unit.runs,
        "programs": unit.programs,
        "summary": {
            "lines": len(unit.lines),
            "executable_lines": len(unit.executable_lines),
            "covered_lines": len(unit.covered_lines),
            "line_rate": round(unit.line_rate, 4),
        },
        "functions": [
            {
                "name": fn.name,
                "source": fn.source,
                "start_line": fn.start_line,
                "execution_count": fn.execution_count,
                "blocks_executed": fn.blocks_executed,
                "block_count": fn.block_count,
            }
            for fn in unit.functions
        ],
        "lines": lines,
    }


def unit_to_json(unit: CoverageUnit, indent: Optional[int] = 2, **metadata) -> str:
    """json representation, see unit_to_dict for the metadata keywords"""
    return json.dumps(unit_to_dict(unit, **metadata), indent=indent)


def print_unit_json(unit: CoverageUnit, **metadata):
    """output a coverage unit as JSON"""
    print(unit_to_json(unit, **metadata))


def print_unit_lines(
    unit: CoverageUnit,
    name: str,
    source_lines: Optional[Sequence[str]] = None,
    console: Optional[Console] = None,
):
    """display per-line hit counts next to the source, gcov style"""
    console = console or Console()
    console.print(
        Panel(
            f"[bold cyan]{escape(name)}[/bold cyan]\n"
            f"[dim]runs: {unit.runs}  programs: {unit.programs}[/dim]",
            expand=False,
        )
    )

    table = Table(box=None, show_header=True, pad_edge=False)
    table.add_column("Hits", justify="right", style="green", no_wrap=True)
    table.add_column("Line", justify="right", style="dim", no_wrap=True)
    table.add_column("Code", overflow="fold")

    for record in unit.lines:
        hits = format_hits(record.executable, record.hit_count)
        if hits == NEVER_EXECUTED_MARK:
            hits = f"[bold red]{hits}[/bold red]"
        elif hits == NOT_EXECUTABLE_MARK:
            hits = f"[dim]{hits}[/dim]"
        code = ""
        if source_lines is not None and record.number <= len(source_lines):
            code = source_lines[record.number - 1]
        table.add_row(hits, str(record.number), Text(code))

    console.print(table)


def print_unit_summary(unit: CoverageUnit, name: str, console: Optional[Console] = None):
    """display run counts and line coverage totals"""
    console = console or Console()

    summary_table = Table(
        title=f"[bold]Coverage Summary[/bold] [dim]{escape(name)}[/dim]",
        show_header=False,
        box=None,
    )
    summary_table.add_column("Metric", style="bold")
    summary_table.add_column("Value", style="cyan")

    executable = len(unit.executable_lines)
    covered = len(unit.covered_lines)
    filled = int(unit.line_rate * DEFAULT_BAR_WIDTH)
    bar = "█" * filled + "░" * (DEFAULT_BAR_WIDTH - filled)

    summary_table.add_row("Source", Text(unit.source or "?"))
    summary_table.add_row("Runs", f"{unit.runs:,}")
    summary_table.add_row("Programs", f"{unit.programs:,}")
    summary_table.add_row("Lines", f"{len(unit.lines):,}")
    summary_table.add_row("Executable Lines", f"{executable:,}")
    summary_table.add_row("Covered Lines", f"{covered:,}")
    summary_table.add_row("Line Coverage", f"{unit.line_rate:.1%} [blue]{bar}[/blue]")
    summary_table.add_row("Functions", f"{len(unit.functions):,}")
    summary_table.add_row(
        "Functions Called",
        f"{sum(1 for fn in unit.functions if fn.execution_count):,}",
    )

    console.print(summary_table)


def print_function_table(
    unit: CoverageUnit,
    limit: int = DEFAULT_TOP_FUNCTIONS,
    console: Optional[Console] = None,
):
    """display functions sorted by execution count"""
    console = console or Console()
    if not unit.functions:
        console.print("[yellow]no functions in notes file[/yellow]")
        return

    table = Table(title="[bold]Functions[/bold]")
    table.add_column("Function", style="cyan")
    table.add_column("Line", justify="right", style="dim")
    table.add_column("Calls", justify="right", style="yellow")
    table.add_column("Blocks", justify="right", style="green")
    table.add_column("Source", style="dim", max_width=50)

    ordered = sorted(unit.functions, key=lambda fn: (-fn.execution_count, fn.start_line))
    for fn in ordered[:limit]:
        table.add_row(
            Text(fn.name),
            str(fn.start_line),
            f"{fn.execution_count:,}",
            f"{fn.blocks_executed}/{fn.block_count}",
            Text(fn.source),
        )

    console.print(table)
    if len(ordered) > limit:
        console.print(f"[dim]... {len(ordered) - limit} more[/dim]")


def print_graph_structure(
    graph: GraphFile, name: str, console: Optional[Console] = None
):
    """display functions, blocks, arcs and lines of a notes file as a tree"""
    console = console or Console()
    root = Tree(
        f"[bold cyan]{escape(name)}[/bold cyan] [dim]gcov {graph.version}, "
        f"stamp {graph.stamp:#x}, {len(graph)} functions[/dim]"
    )

    for fn in graph.functions:
        fn_node = root.add(
            f"[cyan]{escape(fn.name)}[/cyan] [dim]{escape(fn.source)}:{fn.start_line} "
            f"ident={fn.ident} blocks={len(fn.blocks)} arcs={len(fn.arcs)} "
            f"counted={fn.instrumented_arc_count}[/dim]"
        )
        for block in fn.blocks:
            lines = ",".join(str(n) for n in block.line_numbers) or NOT_EXECUTABLE_MARK
            block_node = fn_node.add(f"block {block.index} [dim]lines {lines}[/dim]")
            for arc_index in block.successors:
                arc = fn.arcs[arc_index]
                flags = [
                    label
                    for label, present in (
                        ("tree", arc.on_tree),
                        ("fake", arc.fake),
                        ("fallthrough", arc.fallthrough),
                    )
                    if present
                ]
                suffix = f" [dim]({', '.join(flags)})[/dim]" if flags else ""
                block_node.add(f"→ {arc.destination}{suffix}")

    console.print(root)
