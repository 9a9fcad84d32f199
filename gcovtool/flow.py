"""derive block execution counts from partially measured arc counts"""

import dataclasses
import logging
from collections import deque
from typing import List, Optional, Sequence, Tuple

from .errors import StructuralMismatch, UnresolvedFlow
from .gcov import ENTRY_BLOCK, DataSample, FunctionGraph, GraphsLike

LOGGER = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class FlowResult:
    """Resolved counts of one function for one data sample."""

    graph: FunctionGraph
    block_counts: Tuple[int, ...]
    arc_counts: Tuple[int, ...]

    @property
    def entry_count(self) -> int:
        """Number of times the function was entered."""
        return self.block_counts[ENTRY_BLOCK] if self.block_counts else 0

    def counters(self) -> List[int]:
        """Counter values of the instrumented arcs, as a data file stores them."""
        return [self.arc_counts[arc.index] for arc in self.graph.instrumented_arcs]


@dataclasses.dataclass(frozen=True)
class ReducedSample:
    """All functions of one data sample after reduction."""

    runs: int
    programs: int
    flows: Tuple[FlowResult, ...]


def reduce(graph: FunctionGraph, arc_counts: Sequence[Optional[int]]) -> FlowResult:
    """
    Computes every block and arc count of a function.

    ``arc_counts`` is parallel to ``graph.arcs``; None marks an arc whose
    count is unknown. Unknown arcs are inferred from flow conservation: the
    total count entering a block equals the total leaving it. A worklist of
    blocks is processed until no more arcs can be inferred.

    Raises:
        StructuralMismatch: arc_counts does not have one entry per arc.
        UnresolvedFlow: counts remain unknown, an inferred count is
            negative, a block's inflow and outflow differ, or the entry and
            exit totals disagree.
    """
    if len(arc_counts) != len(graph.arcs):
        raise StructuralMismatch(
            f"function '{graph.name}' has {len(graph.arcs)} arcs, "
            f"got {len(arc_counts)} arc counts"
        )

    arcs: List[Optional[int]] = list(arc_counts)
    blocks: List[Optional[int]] = [None] * len(graph.blocks)
    unknown_in = [
        sum(1 for a in block.predecessors if arcs[a] is None) for block in graph.blocks
    ]
    unknown_out = [
        sum(1 for a in block.successors if arcs[a] is None) for block in graph.blocks
    ]

    worklist = deque(range(len(graph.blocks)))
    queued = [True] * len(graph.blocks)

    def resolve(arc_index: int, value: int) -> None:
        arc = graph.arcs[arc_index]
        if value < 0:
            raise UnresolvedFlow(
                f"function '{graph.name}': arc {arc.source}->{arc.destination} "
                f"would need a negative count ({value})"
            )
        arcs[arc_index] = value
        unknown_out[arc.source] -= 1
        unknown_in[arc.destination] -= 1
        for block_index in (arc.source, arc.destination):
            if not queued[block_index]:
                queued[block_index] = True
                worklist.append(block_index)

    while worklist:
        index = worklist.popleft()
        queued[index] = False
        block = graph.blocks[index]

        if blocks[index] is None:
            if block.predecessors and unknown_in[index] == 0:
                blocks[index] = sum(arcs[a] for a in block.predecessors)
            elif block.successors and unknown_out[index] == 0:
                blocks[index] = sum(arcs[a] for a in block.successors)
            elif not block.predecessors and not block.successors:
                blocks[index] = 0
            else:
                continue

        count = blocks[index]
        for side, unknown in ((block.predecessors, unknown_in), (block.successors, unknown_out)):
            if unknown[index] != 1:
                continue
            missing = next(a for a in side if arcs[a] is None)
            known = sum(arcs[a] for a in side if arcs[a] is not None)
            resolve(missing, count - known)

    unresolved = [arc for arc in graph.arcs if arcs[arc.index] is None]
    if unresolved or any(count is None for count in blocks):
        raise UnresolvedFlow(
            f"function '{graph.name}': flow did not converge, "
            f"{len(unresolved)} arcs and "
            f"{sum(1 for count in blocks if count is None)} blocks remain unknown"
        )

    result = FlowResult(graph=graph, block_counts=tuple(blocks), arc_counts=tuple(arcs))
    _check_conservation(graph, result)
    return result


def _check_conservation(graph: FunctionGraph, result: FlowResult) -> None:
    entry = graph.entry_block
    if entry is None:
        return

    inflow = sum(result.arc_counts[a] for a in entry.predecessors)
    if inflow:
        raise UnresolvedFlow(
            f"function '{graph.name}': entry block has an inflow of {inflow}"
        )

    for block in graph.blocks:
        if block.index == ENTRY_BLOCK or not (block.predecessors and block.successors):
            continue
        total_in = sum(result.arc_counts[a] for a in block.predecessors)
        total_out = sum(result.arc_counts[a] for a in block.successors)
        if total_in != total_out:
            raise UnresolvedFlow(
                f"function '{graph.name}': block {block.index} takes in {total_in} "
                f"but sends out {total_out}"
            )

    exits = graph.exit_blocks
    if not exits:
        return
    outflow = sum(result.block_counts[b.index] for b in exits)
    if outflow != result.entry_count:
        raise UnresolvedFlow(
            f"function '{graph.name}': entered {result.entry_count} times "
            f"but exit blocks total {outflow}"
        )


def reduce_sample(graphs: GraphsLike, sample: DataSample) -> ReducedSample:
    """Reduces every function of a data sample against its graphs."""
    functions = list(graphs)
    if len(functions) != len(sample.functions):
        raise StructuralMismatch(
            f"sample has {len(sample.functions)} functions, graph has {len(functions)}"
        )

    flows = []
    for graph, counts in zip(functions, sample.functions):
        if counts.ident != graph.ident:
            raise StructuralMismatch(
                f"sample function ident {counts.ident} paired with '{graph.name}' "
                f"(ident {graph.ident})"
            )
        flows.append(reduce(graph, counts.arc_counts))

    LOGGER.debug(
        "reduced %d functions (runs=%d, programs=%d)",
        len(flows),
        sample.runs,
        sample.programs,
    )
    return ReducedSample(runs=sample.runs, programs=sample.programs, flows=tuple(flows))
