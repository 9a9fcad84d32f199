"""line level coverage model built from reduced gcov samples"""

import dataclasses
import functools
import logging
import os
from collections import Counter
from concurrent.futures import ProcessPoolExecutor
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple, Union

from . import flow
from .flow import ReducedSample
from .gcov import GraphFile, GraphsLike, decode_data, decode_graph

LOGGER = logging.getLogger(__name__)

PathLike = Union[str, os.PathLike]


@dataclasses.dataclass(frozen=True)
class LineRecord:
    """One physical source line; hit_count is None when not executable."""

    number: int
    executable: bool = False
    hit_count: Optional[int] = None

    @property
    def covered(self) -> bool:
        return bool(self.hit_count)


@dataclasses.dataclass(frozen=True)
class FunctionSummary:
    """Accumulated entry count and block coverage of one function."""

    name: str
    source: str
    start_line: int
    execution_count: int
    blocks_executed: int
    block_count: int


@dataclasses.dataclass(frozen=True)
class CoverageUnit:
    """
    Coverage of one source file of one translation unit.

    ``lines`` holds one record per line, numbered from 1. ``runs`` and
    ``programs`` are summed over every data file that contributed.
    """

    lines: Tuple[LineRecord, ...]
    runs: int = 0
    programs: int = 0
    source: Optional[str] = None
    functions: Tuple[FunctionSummary, ...] = ()

    @classmethod
    def from_files(
        cls,
        graph_path: PathLike,
        data_paths: Sequence[PathLike],
        source: Optional[str] = None,
        line_count: Optional[int] = None,
        workers: int = 1,
    ) -> "CoverageUnit":
        """create a coverage unit from a notes file and its data files"""
        with open(graph_path, "rb") as f:
            graph_data = f.read()
        blobs = []
        for path in data_paths:
            with open(path, "rb") as f:
                blobs.append(f.read())
        return build_unit(graph_data, blobs, source, line_count, workers)

    def __len__(self) -> int:
        return len(self.lines)

    def line(self, number: int) -> LineRecord:
        """record of a 1-based line number"""
        if not 1 <= number <= len(self.lines):
            raise IndexError(f"line {number} outside 1..{len(self.lines)}")
        return self.lines[number - 1]

    @property
    def executable_lines(self) -> List[LineRecord]:
        return [line for line in self.lines if line.executable]

    @property
    def covered_lines(self) -> List[LineRecord]:
        return [line for line in self.lines if line.covered]

    @property
    def line_rate(self) -> float:
        executable = len(self.executable_lines)
        return len(self.covered_lines) / executable if executable else 0.0


@dataclasses.dataclass(frozen=True)
class _FunctionTally:
    execution_count: int
    executed_blocks: frozenset


class LineAccumulator:
    """
    Partial coverage totals.

    Accumulators are built independently per sample and merged with ``+``;
    merging only sums counts and unions sets, so the order in which samples
    are folded does not matter.
    """

    def __init__(
        self,
        source: Optional[str] = None,
        hits: Optional[Counter] = None,
        executable: Optional[Set[int]] = None,
        runs: int = 0,
        programs: int = 0,
        functions: Optional[Dict[int, _FunctionTally]] = None,
    ):
        self.source = source
        self.hits = hits if hits is not None else Counter()
        self.executable = executable if executable is not None else set()
        self.runs = runs
        self.programs = programs
        self.functions = functions if functions is not None else {}

    @classmethod
    def from_graphs(cls, graphs: GraphsLike, source: str) -> "LineAccumulator":
        """lines the graphs mark executable, with no counts"""
        acc = cls(source)
        for graph in graphs:
            for block in graph.blocks:
                for loc in block.lines:
                    if loc.source == source:
                        acc.executable.add(loc.line)
        return acc

    @classmethod
    def from_reduced(
        cls, graphs: GraphsLike, reduced: ReducedSample, source: str
    ) -> "LineAccumulator":
        """tally one reduced sample: block counts go to every line of the block"""
        acc = cls.from_graphs(graphs, source)
        acc.runs = reduced.runs
        acc.programs = reduced.programs

        for position, result in enumerate(reduced.flows):
            graph = result.graph
            for block in graph.blocks:
                count = result.block_counts[block.index]
                # a block may name the same line again after a source switch
                for line in {loc.line for loc in block.lines if loc.source == source}:
                    acc.hits[line] += count
            acc.functions[position] = _FunctionTally(
                execution_count=result.entry_count,
                executed_blocks=frozenset(
                    block.index
                    for block in graph.blocks
                    if block.lines and result.block_counts[block.index]
                ),
            )
        return acc

    def __add__(self, other: "LineAccumulator") -> "LineAccumulator":
        if self.source != other.source:
            raise ValueError(
                f"cannot merge coverage of '{self.source}' with '{other.source}'"
            )
        functions = dict(self.functions)
        for position, tally in other.functions.items():
            mine = functions.get(position)
            if mine is None:
                functions[position] = tally
            else:
                functions[position] = _FunctionTally(
                    execution_count=mine.execution_count + tally.execution_count,
                    executed_blocks=mine.executed_blocks | tally.executed_blocks,
                )
        return LineAccumulator(
            source=self.source,
            hits=self.hits + other.hits,
            executable=self.executable | other.executable,
            runs=self.runs + other.runs,
            programs=self.programs + other.programs,
            functions=functions,
        )

    def to_unit(
        self, graphs: GraphsLike, line_count: Optional[int] = None
    ) -> CoverageUnit:
        """freeze the totals into a CoverageUnit of max(line_count, last line) lines"""
        last_line = max(self.executable, default=0)
        total = max(line_count or 0, last_line)

        lines = tuple(
            LineRecord(number, True, self.hits.get(number, 0))
            if number in self.executable
            else LineRecord(number)
            for number in range(1, total + 1)
        )

        summaries = []
        for position, graph in enumerate(graphs):
            tally = self.functions.get(position)
            summaries.append(
                FunctionSummary(
                    name=graph.name,
                    source=graph.source,
                    start_line=graph.start_line,
                    execution_count=tally.execution_count if tally else 0,
                    blocks_executed=len(tally.executed_blocks) if tally else 0,
                    block_count=sum(1 for block in graph.blocks if block.lines),
                )
            )

        return CoverageUnit(
            lines=lines,
            runs=self.runs,
            programs=self.programs,
            source=self.source,
            functions=tuple(summaries),
        )


def resolve_source(graphs: GraphsLike, source: Optional[str] = None) -> Optional[str]:
    """
    Picks the source file whose lines make up the unit.

    An explicit source is matched against the sources named in the graphs,
    first exactly, then by normalized path, then by a unique file name.
    Without one, the source named by most functions is used.
    """
    functions = list(graphs)
    known: List[str] = []
    for graph in functions:
        for name in [graph.source] + [loc.source for b in graph.blocks for loc in b.lines]:
            if name not in known:
                known.append(name)

    if source is None:
        if isinstance(graphs, GraphFile):
            return graphs.primary_source
        counts = Counter(graph.source for graph in functions)
        return counts.most_common(1)[0][0] if counts else None

    if source in known:
        return source
    wanted = os.path.normpath(source)
    for name in known:
        if os.path.normpath(name) == wanted:
            return name
    same_name = [n for n in known if os.path.basename(n) == os.path.basename(wanted)]
    if len(same_name) == 1:
        return same_name[0]
    LOGGER.warning("source '%s' is not named in the notes file", source)
    return source


def aggregate(
    graphs: GraphsLike,
    reduced_samples: Iterable[ReducedSample],
    source: Optional[str] = None,
    line_count: Optional[int] = None,
) -> CoverageUnit:
    """
    Folds reduced samples into a CoverageUnit.

    Every block count is added to each line of the block that belongs to
    the unit's source; runs and programs are summed. Lines associated with
    some block are executable even when never hit; other lines carry no
    count.
    """
    source = resolve_source(graphs, source)
    partials = [LineAccumulator.from_reduced(graphs, r, source) for r in reduced_samples]
    total = functools.reduce(
        lambda a, b: a + b, partials, LineAccumulator.from_graphs(graphs, source)
    )
    return total.to_unit(graphs, line_count)


def _accumulate_blob(graph: GraphFile, blob: bytes, source: str) -> LineAccumulator:
    sample = decode_data(blob, graph)
    reduced = flow.reduce_sample(graph, sample)
    return LineAccumulator.from_reduced(graph, reduced, source)


def build_unit(
    graph_data: bytes,
    data_blobs: Sequence[bytes],
    source: Optional[str] = None,
    line_count: Optional[int] = None,
    workers: int = 1,
) -> CoverageUnit:
    """
    Decodes a notes file once and folds every data file into a CoverageUnit.

    Data files are decoded and reduced independently, in worker processes
    when ``workers > 1``. Partial totals are merged afterwards. The first
    failing data file raises; no sample is dropped.
    """
    graph = decode_graph(graph_data)
    source = resolve_source(graph, source)

    if workers > 1 and len(data_blobs) > 1:
        with ProcessPoolExecutor(max_workers=workers) as pool:
            partials = list(
                pool.map(
                    _accumulate_blob,
                    [graph] * len(data_blobs),
                    data_blobs,
                    [source] * len(data_blobs),
                )
            )
    else:
        partials = [_accumulate_blob(graph, blob, source) for blob in data_blobs]

    LOGGER.debug("merging %d samples for '%s'", len(partials), source)
    total = functools.reduce(
        lambda a, b: a + b, partials, LineAccumulator.from_graphs(graph, source)
    )
    return total.to_unit(graph, line_count)


def artifact_paths(
    source_path: PathLike, object_dir: Optional[PathLike] = None
) -> Tuple[str, str]:
    """
    Derives the notes and data file paths GCC uses for a source file.

    The artifacts share the source's stem and live in ``object_dir`` when
    given, next to the source otherwise.
    """
    source_path = os.fspath(source_path)
    stem = os.path.splitext(os.path.basename(source_path))[0]
    directory = os.fspath(object_dir) if object_dir is not None else os.path.dirname(source_path)
    base = os.path.join(directory, stem)
    return base + ".gcno", base + ".gcda"
