"""
A pure-Python library for decoding and encoding GCC coverage artifacts.

Two artifacts describe one compiled translation unit:

  - the notes (graph) file, ``.gcno``, written by the compiler. It holds one
    record group per function: the function announcement, its basic blocks,
    the arcs between blocks and the source lines each block belongs to.
  - the data file, ``.gcda``, written by the instrumented program at exit.
    It holds run summaries, which libgcov writes ahead of the functions,
    and per function one 64-bit counter for every arc that is not on the
    compiler's spanning tree.

Both files are sequences of 32-bit words in the byte order of the producing
machine, self-described by the magic number. Records are ``tag, length,
body``. Layout details changed over GCC releases; the differences are keyed
off the version word in the header (see GcovVersion).

References:
 - gcc/gcov-io.h in the GCC sources
 - llvm/lib/ProfileData/GCOV.cpp

Example Usage:
    # Decoding artifacts
    graph = gcov.read_graph("foo.gcno")
    sample = gcov.read_data("foo.gcda", graph)

    # Creating artifacts
    b = gcov.builder()
    b.add_function("main", source="foo.c", start_line=3)
    b.add_blocks(3)
    b.add_arc(0, 1, fallthrough=True)
    b.add_arc(1, 2, on_tree=True)
    b.add_lines(1, [4, 5])
    data = gcov.encode_graph(b.build())
"""

import dataclasses
import logging
import os
import struct
from collections import Counter
from typing import (
    BinaryIO,
    Iterable,
    Iterator,
    List,
    Optional,
    Sequence,
    Tuple,
    Union,
)

from .errors import MalformedRecord, StructuralMismatch, TruncatedInput, UnsupportedVersion
from .reader import BinaryReader

LOGGER = logging.getLogger(__name__)

# --- Constants ---
GCNO_MAGIC = b"gcno"
GCDA_MAGIC = b"gcda"

TAG_FUNCTION = 0x01000000
TAG_BLOCKS = 0x01410000
TAG_ARCS = 0x01430000
TAG_LINES = 0x01450000
TAG_COUNTER_BASE = 0x01A10000
TAG_COUNTER_ARCS = TAG_COUNTER_BASE
TAG_OBJECT_SUMMARY = 0xA1000000
TAG_PROGRAM_SUMMARY = 0xA3000000

FLAG_ON_TREE = 1
FLAG_FAKE = 2
FLAG_FALLTHROUGH = 4

ENTRY_BLOCK = 0

_WORD_SIZE = 4
_COUNTER_SIZE = 8
_MIN_VERSION = (4, 7)
_MAX_MAJOR = 16
_LEGACY_HISTOGRAM_WORDS = 8  # empty histogram bit vector of GCC 4.8 - 8
_TAG_NAMES = {
    TAG_FUNCTION: "function",
    TAG_BLOCKS: "blocks",
    TAG_ARCS: "arcs",
    TAG_LINES: "lines",
    TAG_COUNTER_ARCS: "arc counters",
    TAG_OBJECT_SUMMARY: "object summary",
    TAG_PROGRAM_SUMMARY: "program summary",
}


def tag_name(tag: int) -> str:
    """Human readable name of a record tag."""
    return _TAG_NAMES.get(tag, f"tag {tag:#010x}")


def _is_counter_tag(tag: int) -> bool:
    # one tag per counter kind: TAG_COUNTER_BASE + (kind << 17)
    return tag & 0xFFFF == 0 and TAG_COUNTER_BASE <= tag < TAG_COUNTER_BASE + (32 << 17)


# --- Public API ---


@dataclasses.dataclass(frozen=True, order=True)
class GcovVersion:
    """
    Format version carried in the second header word.

    The word spells four characters: major (a digit, or A for 10, B for 11
    and so on), two digits of minor, and a status character.
    """

    major: int
    minor: int
    status: str = dataclasses.field(default="*", compare=False)

    @classmethod
    def from_word(cls, word: int) -> "GcovVersion":
        raw = word.to_bytes(_WORD_SIZE, "big")
        try:
            text = raw.decode("ascii")
        except UnicodeDecodeError:
            raise UnsupportedVersion(f"unrecognized version word {word:#010x}")

        lead, tens, units, status = text
        if lead.isdigit():
            major = int(lead)
        elif "A" <= lead <= "Z":
            major = ord(lead) - ord("A") + 10
        else:
            raise UnsupportedVersion(f"unrecognized version {text!r}")
        if not (tens.isdigit() and units.isdigit()):
            raise UnsupportedVersion(f"unrecognized version {text!r}")

        version = cls(major, int(tens + units), status)
        if (major, version.minor) < _MIN_VERSION or major > _MAX_MAJOR:
            raise UnsupportedVersion(f"unsupported gcov version {version} ({text!r})")
        return version

    def to_word(self) -> int:
        lead = str(self.major) if self.major < 10 else chr(ord("A") + self.major - 10)
        text = f"{lead}{self.minor:02d}{self.status}"
        return int.from_bytes(text.encode("ascii"), "big")

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}"

    @property
    def byte_lengths(self) -> bool:
        """GCC 13 measures record and string lengths in bytes, not words."""
        return self.major >= 13

    @property
    def has_header_checksum(self) -> bool:
        return self.major >= 12

    @property
    def has_cwd(self) -> bool:
        """GCC 8 added the compilation directory to the notes header."""
        return self.major >= 8

    @property
    def counts_blocks(self) -> bool:
        """GCC 8 replaced per-block flags with a single block count."""
        return self.major >= 8

    @property
    def has_artificial(self) -> bool:
        return self.major >= 8

    @property
    def has_end_column(self) -> bool:
        return self.major >= 10

    @property
    def modern_summary(self) -> bool:
        """GCC 9 reduced summaries to a single object summary of runs."""
        return self.major >= 9

    @property
    def zero_counter_shorthand(self) -> bool:
        """GCC 12 writes all-zero counter records with a negative length."""
        return self.major >= 12


DEFAULT_VERSION = GcovVersion(11, 4)


@dataclasses.dataclass(frozen=True)
class LineLocation:
    """A source line a block belongs to."""

    source: str
    line: int


@dataclasses.dataclass(frozen=True)
class Block:
    """A basic block; predecessors and successors hold arc indexes."""

    index: int
    flags: int = 0
    lines: Tuple[LineLocation, ...] = ()
    predecessors: Tuple[int, ...] = ()
    successors: Tuple[int, ...] = ()

    @property
    def line_numbers(self) -> List[int]:
        return [loc.line for loc in self.lines]


@dataclasses.dataclass(frozen=True)
class Arc:
    """A control flow edge between two blocks of the same function."""

    index: int
    source: int
    destination: int
    flags: int = 0

    @property
    def on_tree(self) -> bool:
        return bool(self.flags & FLAG_ON_TREE)

    @property
    def fake(self) -> bool:
        return bool(self.flags & FLAG_FAKE)

    @property
    def fallthrough(self) -> bool:
        return bool(self.flags & FLAG_FALLTHROUGH)

    @property
    def instrumented(self) -> bool:
        """True when the data file carries a counter for this arc."""
        return not self.on_tree


@dataclasses.dataclass(frozen=True)
class FunctionGraph:
    """
    Control flow graph of one function.

    Arcs are ordered by source block, then by declaration order within the
    block. Data file counters follow the same order, skipping arcs that are
    on the spanning tree.
    """

    ident: int
    lineno_checksum: int
    cfg_checksum: int
    name: str
    source: str
    start_line: int
    blocks: Tuple[Block, ...] = ()
    arcs: Tuple[Arc, ...] = ()
    artificial: bool = False

    @property
    def entry_block(self) -> Optional[Block]:
        return self.blocks[ENTRY_BLOCK] if self.blocks else None

    @property
    def exit_blocks(self) -> List[Block]:
        """Blocks without successors, other than the entry block."""
        return [b for b in self.blocks if not b.successors and b.index != ENTRY_BLOCK]

    @property
    def instrumented_arcs(self) -> List[Arc]:
        return [arc for arc in self.arcs if arc.instrumented]

    @property
    def instrumented_arc_count(self) -> int:
        return sum(1 for arc in self.arcs if arc.instrumented)

    def lines(self, source: Optional[str] = None) -> List[int]:
        """Sorted line numbers this function's blocks map to."""
        found = set()
        for block in self.blocks:
            for loc in block.lines:
                if source is None or loc.source == source:
                    found.add(loc.line)
        return sorted(found)


@dataclasses.dataclass(frozen=True)
class GraphFile:
    """Decoded notes file: header fields and the functions in file order."""

    version: GcovVersion
    stamp: int
    functions: Tuple[FunctionGraph, ...] = ()
    checksum: int = 0
    cwd: Optional[str] = None

    def __iter__(self) -> Iterator[FunctionGraph]:
        return iter(self.functions)

    def __len__(self) -> int:
        return len(self.functions)

    @property
    def primary_source(self) -> Optional[str]:
        """The source named by most functions (first seen wins ties)."""
        counts = Counter(fn.source for fn in self.functions)
        if not counts:
            return None
        return counts.most_common(1)[0][0]

    def find_function(self, name: str) -> Optional[FunctionGraph]:
        return next((fn for fn in self.functions if fn.name == name), None)


@dataclasses.dataclass(frozen=True)
class FunctionCounts:
    """
    Counters of one function from a data file.

    ``counters`` holds the raw values in file order. ``arc_counts`` is
    parallel to the graph function's arcs, with None for spanning tree arcs
    whose count must be inferred.
    """

    ident: int
    lineno_checksum: int
    cfg_checksum: int
    counters: Tuple[int, ...] = ()
    arc_counts: Tuple[Optional[int], ...] = ()
    placeholder: bool = False


@dataclasses.dataclass(frozen=True)
class DataSample:
    """Decoded data file."""

    version: GcovVersion
    stamp: int
    runs: int
    programs: int
    functions: Tuple[FunctionCounts, ...] = ()
    checksum: int = 0

    def __len__(self) -> int:
        return len(self.functions)


GraphsLike = Union[GraphFile, Sequence[FunctionGraph]]


class _FunctionAssembler:
    """Collects the records of one function and freezes them into a FunctionGraph."""

    def __init__(
        self,
        ident: int,
        lineno_checksum: int,
        cfg_checksum: int,
        name: str,
        source: str,
        start_line: int,
        artificial: bool = False,
    ):
        self.ident = ident
        self.lineno_checksum = lineno_checksum
        self.cfg_checksum = cfg_checksum
        self.name = name
        self.source = source
        self.start_line = start_line
        self.artificial = artificial
        self.current_source = source
        self.block_flags: Optional[List[int]] = None
        self.block_lines: List[List[LineLocation]] = []
        self.arc_specs: List[Tuple[int, int, int]] = []

    def set_blocks(self, flags: List[int]) -> None:
        if self.block_flags is not None:
            raise MalformedRecord(f"function '{self.name}' declares its blocks twice")
        self.block_flags = flags
        self.block_lines = [[] for _ in flags]

    def _check_block(self, index: int, what: str) -> None:
        if self.block_flags is None:
            raise MalformedRecord(
                f"{what} record for function '{self.name}' before its blocks record"
            )
        if not 0 <= index < len(self.block_flags):
            raise MalformedRecord(
                f"{what} record for function '{self.name}' references block {index}, "
                f"function has {len(self.block_flags)} blocks"
            )

    def add_arcs(self, source: int, targets: Iterable[Tuple[int, int]]) -> None:
        self._check_block(source, "arcs")
        for destination, flags in targets:
            self._check_block(destination, "arcs")
            self.arc_specs.append((source, destination, flags))

    def add_lines(self, block: int, locations: Iterable[LineLocation]) -> None:
        self._check_block(block, "lines")
        self.block_lines[block].extend(locations)

    def missing_records(self) -> Optional[str]:
        """Describes what a decoded function still lacks, None when complete."""
        if self.block_flags is None:
            return "no blocks record"
        if not self.block_flags:
            return None
        sources = {src for src, _, _ in self.arc_specs}
        if ENTRY_BLOCK not in sources:
            return "no arcs leave the entry block"
        # only the exit block has no successors
        sinks = [i for i in range(len(self.block_flags)) if i not in sources]
        if len(sinks) > 1:
            return f"no arcs leave blocks {', '.join(map(str, sinks))}"
        return None

    def build(self) -> FunctionGraph:
        flags = self.block_flags or []
        # counters follow blocks in index order, so sort arcs by source block
        order = sorted(range(len(self.arc_specs)), key=lambda i: self.arc_specs[i][0])
        arcs = tuple(
            Arc(index=n, source=src, destination=dst, flags=arc_flags)
            for n, (src, dst, arc_flags) in enumerate(self.arc_specs[i] for i in order)
        )

        predecessors: List[List[int]] = [[] for _ in flags]
        successors: List[List[int]] = [[] for _ in flags]
        for arc in arcs:
            successors[arc.source].append(arc.index)
            predecessors[arc.destination].append(arc.index)

        blocks = tuple(
            Block(
                index=i,
                flags=flags[i],
                lines=tuple(self.block_lines[i]),
                predecessors=tuple(predecessors[i]),
                successors=tuple(successors[i]),
            )
            for i in range(len(flags))
        )
        return FunctionGraph(
            ident=self.ident,
            lineno_checksum=self.lineno_checksum,
            cfg_checksum=self.cfg_checksum,
            name=self.name,
            source=self.source,
            start_line=self.start_line,
            blocks=blocks,
            arcs=arcs,
            artificial=self.artificial,
        )


class GraphBuilder:
    """Builder pattern for fluently creating GraphFile objects."""

    def __init__(self):
        self._version = DEFAULT_VERSION
        self._stamp = 0
        self._checksum = 0
        self._cwd: Optional[str] = None
        self._functions: List[_FunctionAssembler] = []

    def set_version(self, version: GcovVersion) -> "GraphBuilder":
        self._version = version
        return self

    def set_stamp(self, stamp: int) -> "GraphBuilder":
        self._stamp = stamp
        return self

    def set_checksum(self, checksum: int) -> "GraphBuilder":
        self._checksum = checksum
        return self

    def set_cwd(self, cwd: str) -> "GraphBuilder":
        self._cwd = cwd
        return self

    def add_function(
        self,
        name: str,
        source: str,
        start_line: int = 1,
        ident: Optional[int] = None,
        lineno_checksum: int = 0,
        cfg_checksum: int = 0,
        artificial: bool = False,
    ) -> "GraphBuilder":
        """Starts a new function; following block/arc/line calls apply to it."""
        if ident is None:
            ident = len(self._functions) + 1
        self._functions.append(
            _FunctionAssembler(
                ident, lineno_checksum, cfg_checksum, name, source, start_line, artificial
            )
        )
        return self

    def _current(self) -> _FunctionAssembler:
        if not self._functions:
            raise ValueError("add_function must be called first")
        return self._functions[-1]

    def add_blocks(self, count: int, flags: int = 0) -> "GraphBuilder":
        self._current().set_blocks([flags] * count)
        return self

    def add_arc(
        self,
        source: int,
        destination: int,
        on_tree: bool = False,
        fake: bool = False,
        fallthrough: bool = False,
    ) -> "GraphBuilder":
        flags = (
            (FLAG_ON_TREE if on_tree else 0)
            | (FLAG_FAKE if fake else 0)
            | (FLAG_FALLTHROUGH if fallthrough else 0)
        )
        self._current().add_arcs(source, [(destination, flags)])
        return self

    def add_lines(
        self, block: int, lines: Iterable[int], source: Optional[str] = None
    ) -> "GraphBuilder":
        current = self._current()
        where = source or current.source
        current.add_lines(block, [LineLocation(where, line) for line in lines])
        return self

    def build(self) -> GraphFile:
        return GraphFile(
            version=self._version,
            stamp=self._stamp,
            functions=tuple(fn.build() for fn in self._functions),
            checksum=self._checksum,
            cwd=self._cwd,
        )


# --- Parser Implementation ---


def _iter_records(
    reader: BinaryReader, version: GcovVersion
) -> Iterator[Tuple[int, int, BinaryReader]]:
    """Yields (tag, raw length, body reader) until the buffer is consumed."""
    while not reader.at_end():
        tag = reader.read_u32()
        length = reader.read_u32()

        if version.zero_counter_shorthand and _is_counter_tag(tag) and length & 0x80000000:
            # negative length: that many zero counters and no body
            yield tag, length, reader.sub_reader(0)
            continue

        # GCC 13 strings are unpadded, so byte lengths need not be word multiples
        size = length if version.byte_lengths else length * _WORD_SIZE
        yield tag, length, reader.sub_reader(size)


class _GraphParser:
    @staticmethod
    def parse(data: bytes) -> GraphFile:
        reader = BinaryReader.probe(data, GCNO_MAGIC)
        version = GcovVersion.from_word(reader.read_u32())
        stamp = reader.read_u32()
        checksum = reader.read_u32() if version.has_header_checksum else 0
        cwd = None
        if version.has_cwd:
            cwd = reader.read_string(version.byte_lengths)
            reader.read_u32()  # has_unexecuted_blocks
        LOGGER.debug(
            "notes file: gcov %s, %s-endian, stamp %#x",
            version,
            "little" if reader.little_endian else "big",
            stamp,
        )

        functions: List[FunctionGraph] = []
        current: Optional[_FunctionAssembler] = None

        for tag, length, body in _iter_records(reader, version):
            try:
                if tag == TAG_FUNCTION:
                    if current is not None:
                        functions.append(_GraphParser._close(current, at_end=False))
                    current = _GraphParser._parse_function(body, version)
                elif tag in (TAG_BLOCKS, TAG_ARCS, TAG_LINES):
                    if current is None:
                        raise MalformedRecord(
                            f"{tag_name(tag)} record before any function record"
                        )
                    if tag == TAG_BLOCKS:
                        _GraphParser._parse_blocks(body, version, current)
                    elif tag == TAG_ARCS:
                        _GraphParser._parse_arcs(body, current)
                    else:
                        _GraphParser._parse_lines(body, version, current)
                else:
                    LOGGER.debug("skipping %s (%d bytes)", tag_name(tag), body.remaining())
            except TruncatedInput as e:
                raise MalformedRecord(
                    f"{tag_name(tag)} record ends before its fields: {e}"
                ) from e

        if current is not None:
            functions.append(_GraphParser._close(current, at_end=True))

        return GraphFile(
            version=version,
            stamp=stamp,
            functions=tuple(functions),
            checksum=checksum,
            cwd=cwd,
        )

    @staticmethod
    def _close(current: _FunctionAssembler, at_end: bool) -> FunctionGraph:
        """
        Freezes a function once its records are over.

        The compiler always writes a blocks record and one arcs record for
        every block except the exit block, so a function missing any of them
        was cut short. At the end of the file that is a truncation, between
        two function records the file is malformed.
        """
        missing = current.missing_records()
        if missing:
            message = f"function '{current.name}' is incomplete: {missing}"
            if at_end:
                raise TruncatedInput(f"notes file ended early, {message}")
            raise MalformedRecord(message)
        return current.build()

    @staticmethod
    def _parse_function(body: BinaryReader, version: GcovVersion) -> _FunctionAssembler:
        ident = body.read_u32()
        lineno_checksum = body.read_u32()
        cfg_checksum = body.read_u32()
        name = body.read_string(version.byte_lengths)
        artificial = bool(body.read_u32()) if version.has_artificial else False
        source = body.read_string(version.byte_lengths)
        start_line = body.read_u32()
        # start column, end line and end column are not needed
        return _FunctionAssembler(
            ident, lineno_checksum, cfg_checksum, name, source, start_line, artificial
        )

    @staticmethod
    def _parse_blocks(
        body: BinaryReader, version: GcovVersion, current: _FunctionAssembler
    ) -> None:
        if version.counts_blocks:
            count = body.read_u32()
            current.set_blocks([0] * count)
        else:
            flags = []
            while not body.at_end():
                flags.append(body.read_u32())
            current.set_blocks(flags)

    @staticmethod
    def _parse_arcs(body: BinaryReader, current: _FunctionAssembler) -> None:
        source = body.read_u32()
        if body.remaining() % (2 * _WORD_SIZE):
            raise MalformedRecord(
                f"arcs record for block {source} of '{current.name}' has a partial arc"
            )
        targets = []
        while not body.at_end():
            destination = body.read_u32()
            flags = body.read_u32()
            targets.append((destination, flags))
        current.add_arcs(source, targets)

    @staticmethod
    def _parse_lines(
        body: BinaryReader, version: GcovVersion, current: _FunctionAssembler
    ) -> None:
        block = body.read_u32()
        locations = []
        while True:
            line = body.read_u32()
            if line:
                locations.append(LineLocation(current.current_source, line))
                continue
            filename = body.read_string(version.byte_lengths)
            if not filename:
                break
            current.current_source = filename
        current.add_lines(block, locations)


def _align_counters(graph: FunctionGraph, counters: Sequence[int]) -> Tuple[Optional[int], ...]:
    values = iter(counters)
    return tuple(next(values) if arc.instrumented else None for arc in graph.arcs)


class _PendingFunction:
    def __init__(self, graph: FunctionGraph, placeholder: bool = False):
        self.graph = graph
        self.placeholder = placeholder
        self.counters: Optional[List[int]] = None


class _DataParser:
    @staticmethod
    def parse(data: bytes, graphs: GraphsLike) -> DataSample:
        functions = list(graphs)
        reader = BinaryReader.probe(data, GCDA_MAGIC)
        version = GcovVersion.from_word(reader.read_u32())
        stamp = reader.read_u32()
        checksum = reader.read_u32() if version.has_header_checksum else 0

        if isinstance(graphs, GraphFile) and graphs.stamp != stamp:
            LOGGER.warning(
                "data stamp %#x does not match notes stamp %#x", stamp, graphs.stamp
            )

        results: List[FunctionCounts] = []
        pending: Optional[_PendingFunction] = None
        runs = programs = summaries = 0
        legacy_object_runs = legacy_program_runs = 0
        # summaries written after the function records close a complete file
        trailing_summary = False

        def close(at_end: bool = False) -> None:
            nonlocal pending
            if pending is not None:
                results.append(_DataParser._finish(pending, at_end))
                pending = None

        for tag, length, body in _iter_records(reader, version):
            try:
                if tag == TAG_FUNCTION:
                    close()
                    trailing_summary = False
                    position = len(results)
                    if position >= len(functions):
                        raise StructuralMismatch(
                            f"data file has more than the {len(functions)} functions "
                            f"of the notes file"
                        )
                    graph = functions[position]
                    if length == 0:
                        LOGGER.debug("function '%s' has no data in this object", graph.name)
                        pending = _PendingFunction(graph, placeholder=True)
                    else:
                        pending = _PendingFunction(graph)
                        _DataParser._check_identity(body, graph, position)
                elif tag == TAG_COUNTER_ARCS:
                    trailing_summary = False
                    if pending is None:
                        raise MalformedRecord("arc counters record before any function record")
                    if pending.placeholder:
                        LOGGER.debug("ignoring counters of placeholder '%s'", pending.graph.name)
                        continue
                    if pending.counters is not None:
                        raise MalformedRecord(
                            f"function '{pending.graph.name}' has two arc counter records"
                        )
                    pending.counters = _DataParser._parse_counters(
                        body, length, version, pending.graph
                    )
                elif tag == TAG_OBJECT_SUMMARY:
                    close()
                    summaries += 1
                    trailing_summary = bool(results)
                    if version.modern_summary:
                        runs += body.read_u32()
                        programs += 1
                    else:
                        legacy_object_runs += _DataParser._legacy_summary_runs(body)
                elif tag == TAG_PROGRAM_SUMMARY and not version.modern_summary:
                    close()
                    summaries += 1
                    trailing_summary = bool(results)
                    programs += 1
                    legacy_program_runs += _DataParser._legacy_summary_runs(body)
                else:
                    LOGGER.debug("skipping %s (%d bytes)", tag_name(tag), body.remaining())
            except TruncatedInput as e:
                raise MalformedRecord(
                    f"{tag_name(tag)} record ends before its fields: {e}"
                ) from e

        close(at_end=True)

        if len(results) < len(functions):
            if trailing_summary:
                raise StructuralMismatch(
                    f"data file has {len(results)} functions, "
                    f"the notes file has {len(functions)}"
                )
            raise TruncatedInput(
                f"data file ended after {len(results)} of {len(functions)} functions"
            )
        if summaries == 0:
            raise TruncatedInput("data file ended before its summary record")

        if not version.modern_summary:
            runs = legacy_object_runs or legacy_program_runs

        return DataSample(
            version=version,
            stamp=stamp,
            runs=runs,
            programs=programs,
            functions=tuple(results),
            checksum=checksum,
        )

    @staticmethod
    def _check_identity(body: BinaryReader, graph: FunctionGraph, position: int) -> None:
        ident = body.read_u32()
        lineno_checksum = body.read_u32()
        cfg_checksum = body.read_u32()
        if (ident, lineno_checksum, cfg_checksum) != (
            graph.ident,
            graph.lineno_checksum,
            graph.cfg_checksum,
        ):
            raise StructuralMismatch(
                f"function #{position} of the data file (ident {ident}, checksums "
                f"{lineno_checksum:#x}/{cfg_checksum:#x}) does not match '{graph.name}' "
                f"(ident {graph.ident}, checksums "
                f"{graph.lineno_checksum:#x}/{graph.cfg_checksum:#x})"
            )

    @staticmethod
    def _parse_counters(
        body: BinaryReader, length: int, version: GcovVersion, graph: FunctionGraph
    ) -> List[int]:
        unit = _COUNTER_SIZE if version.byte_lengths else _COUNTER_SIZE // _WORD_SIZE
        zeros = version.zero_counter_shorthand and bool(length & 0x80000000)
        units = (1 << 32) - length if zeros else length
        if units % unit:
            raise MalformedRecord(
                f"arc counters record of '{graph.name}' has a partial counter"
            )
        count = units // unit

        expected = graph.instrumented_arc_count
        if count != expected:
            raise StructuralMismatch(
                f"function '{graph.name}' has {count} arc counters, "
                f"the notes file declares {expected} instrumented arcs"
            )
        if zeros:
            return [0] * count
        return [body.read_u64() for _ in range(count)]

    @staticmethod
    def _legacy_summary_runs(body: BinaryReader) -> int:
        body.read_u32()  # checksum
        body.read_u32()  # number of arc counters
        return body.read_u32()

    @staticmethod
    def _finish(pending: _PendingFunction, at_end: bool) -> FunctionCounts:
        graph = pending.graph
        if pending.placeholder:
            return FunctionCounts(
                ident=graph.ident,
                lineno_checksum=graph.lineno_checksum,
                cfg_checksum=graph.cfg_checksum,
                counters=(0,) * graph.instrumented_arc_count,
                arc_counts=(0,) * len(graph.arcs),
                placeholder=True,
            )

        counters = pending.counters
        if counters is None:
            if graph.instrumented_arc_count:
                message = f"function '{graph.name}' has no arc counters record"
                if at_end:
                    raise TruncatedInput(f"data file ended early: {message}")
                raise StructuralMismatch(message)
            counters = []

        return FunctionCounts(
            ident=graph.ident,
            lineno_checksum=graph.lineno_checksum,
            cfg_checksum=graph.cfg_checksum,
            counters=tuple(counters),
            arc_counts=_align_counters(graph, counters),
        )


# --- Writer Implementation ---


class _Writer:
    def __init__(self, version: GcovVersion, little_endian: bool = True):
        self.version = version
        self._u32 = struct.Struct("<I" if little_endian else ">I")
        self._chunks: List[bytes] = []

    def __len__(self) -> int:
        return sum(len(chunk) for chunk in self._chunks)

    def getvalue(self) -> bytes:
        return b"".join(self._chunks)

    def child(self) -> "_Writer":
        writer = _Writer(self.version)
        writer._u32 = self._u32
        return writer

    def u32(self, value: int) -> "_Writer":
        self._chunks.append(self._u32.pack(value & 0xFFFFFFFF))
        return self

    def u64(self, value: int) -> "_Writer":
        return self.u32(value & 0xFFFFFFFF).u32(value >> 32)

    def magic(self, magic: bytes) -> "_Writer":
        return self.u32(int.from_bytes(magic, "big"))

    def string(self, text: Optional[str]) -> "_Writer":
        if not text:
            return self.u32(0)
        raw = text.encode("utf-8") + b"\0"
        if self.version.byte_lengths:
            self.u32(len(raw))
        else:
            words = (len(raw) + _WORD_SIZE - 1) // _WORD_SIZE
            self.u32(words)
            raw = raw.ljust(words * _WORD_SIZE, b"\0")
        self._chunks.append(raw)
        return self

    def record(self, tag: int, body: "_Writer") -> "_Writer":
        size = len(body)
        self.u32(tag)
        self.u32(size if self.version.byte_lengths else size // _WORD_SIZE)
        self._chunks.append(body.getvalue())
        return self

    def raw_record(self, tag: int, length: int) -> "_Writer":
        """Record header only, with a caller computed length word."""
        return self.u32(tag).u32(length)


class _GraphWriter:
    @staticmethod
    def write(graph: GraphFile, little_endian: bool) -> bytes:
        version = graph.version
        w = _Writer(version, little_endian)
        w.magic(GCNO_MAGIC).u32(version.to_word()).u32(graph.stamp)
        if version.has_header_checksum:
            w.u32(graph.checksum)
        if version.has_cwd:
            w.string(graph.cwd).u32(1)

        for fn in graph.functions:
            w.record(TAG_FUNCTION, _GraphWriter._function_body(w.child(), fn))

            blocks = w.child()
            if version.counts_blocks:
                blocks.u32(len(fn.blocks))
            else:
                for block in fn.blocks:
                    blocks.u32(block.flags)
            w.record(TAG_BLOCKS, blocks)

            for block in fn.blocks:
                if not block.successors:
                    continue
                arcs = w.child().u32(block.index)
                for arc_index in block.successors:
                    arc = fn.arcs[arc_index]
                    arcs.u32(arc.destination).u32(arc.flags)
                w.record(TAG_ARCS, arcs)

            current_source = fn.source
            for block in fn.blocks:
                if not block.lines:
                    continue
                lines = w.child().u32(block.index)
                for loc in block.lines:
                    if loc.source != current_source:
                        lines.u32(0).string(loc.source)
                        current_source = loc.source
                    lines.u32(loc.line)
                lines.u32(0).string(None)
                w.record(TAG_LINES, lines)

        return w.getvalue()

    @staticmethod
    def _function_body(body: _Writer, fn: FunctionGraph) -> _Writer:
        version = body.version
        body.u32(fn.ident).u32(fn.lineno_checksum).u32(fn.cfg_checksum)
        body.string(fn.name)
        if version.has_artificial:
            body.u32(1 if fn.artificial else 0)
        body.string(fn.source).u32(fn.start_line)
        if version.has_artificial:
            end_line = max([fn.start_line] + [ln for b in fn.blocks for ln in b.line_numbers])
            body.u32(0).u32(end_line)  # start column, end line
            if version.has_end_column:
                body.u32(0)
        return body


class _DataWriter:
    @staticmethod
    def write(sample: DataSample, little_endian: bool) -> bytes:
        version = sample.version
        w = _Writer(version, little_endian)
        w.magic(GCDA_MAGIC).u32(version.to_word()).u32(sample.stamp)
        if version.has_header_checksum:
            w.u32(sample.checksum)

        for fn in sample.functions:
            if fn.placeholder:
                w.record(TAG_FUNCTION, w.child())
                continue
            w.record(
                TAG_FUNCTION,
                w.child().u32(fn.ident).u32(fn.lineno_checksum).u32(fn.cfg_checksum),
            )
            if version.zero_counter_shorthand and fn.counters and not any(fn.counters):
                unit = _COUNTER_SIZE if version.byte_lengths else _COUNTER_SIZE // _WORD_SIZE
                w.raw_record(TAG_COUNTER_ARCS, -len(fn.counters) * unit)
                continue
            counters = w.child()
            for value in fn.counters:
                counters.u64(value)
            w.record(TAG_COUNTER_ARCS, counters)

        _DataWriter._write_summaries(w, sample)
        return w.getvalue()

    @staticmethod
    def _write_summaries(w: _Writer, sample: DataSample) -> None:
        all_counters = [value for fn in sample.functions for value in fn.counters]
        sum_all = sum(all_counters)
        run_max = max(all_counters, default=0)

        if sample.version.modern_summary:
            if sample.programs == 0 and sample.runs:
                raise ValueError("runs cannot be recorded without at least one program")
            # every object summary counts one program; the first carries the runs
            for i in range(sample.programs):
                runs = sample.runs if i == 0 else 0
                w.record(TAG_OBJECT_SUMMARY, w.child().u32(runs).u32(run_max))
            return

        def legacy_summary(runs: int) -> _Writer:
            body = w.child().u32(0).u32(len(all_counters)).u32(runs)
            body.u64(sum_all).u64(run_max).u64(sum_all)
            if sample.version >= GcovVersion(4, 8):
                for _ in range(_LEGACY_HISTOGRAM_WORDS):
                    body.u32(0)
            return body

        w.record(TAG_OBJECT_SUMMARY, legacy_summary(sample.runs))
        for _ in range(sample.programs):
            w.record(TAG_PROGRAM_SUMMARY, legacy_summary(sample.runs))


# --- Public API Functions ---


def decode_graph(data: bytes) -> GraphFile:
    """
    Decodes a notes (.gcno) file.

    Raises:
        TruncatedInput: the buffer ends inside the header or a record.
        UnsupportedVersion: bad magic or an unsupported version word.
        MalformedRecord: a record is inconsistent with its length or context.
    """
    return _GraphParser.parse(data)


def decode_data(data: bytes, graphs: GraphsLike) -> DataSample:
    """
    Decodes a data (.gcda) file against the functions of its notes file.

    Functions are paired by position; identity and counter counts must match.

    Raises:
        TruncatedInput, UnsupportedVersion, MalformedRecord: as decode_graph.
        StructuralMismatch: the data does not belong to these graphs.
    """
    return _DataParser.parse(data, graphs)


def encode_graph(graph: GraphFile, little_endian: bool = True) -> bytes:
    """Encodes a GraphFile in the layout of its version."""
    return _GraphWriter.write(graph, little_endian)


def encode_data(sample: DataSample, little_endian: bool = True) -> bytes:
    """Encodes a DataSample in the layout of its version."""
    return _DataWriter.write(sample, little_endian)


def make_sample(
    graphs: GraphsLike,
    counters: Sequence[Sequence[int]],
    runs: int = 1,
    programs: int = 1,
    version: Optional[GcovVersion] = None,
    stamp: Optional[int] = None,
) -> DataSample:
    """
    Creates a DataSample for the given graphs from per-function counter lists.

    Each counter list holds the values of that function's instrumented arcs,
    in arc order.
    """
    functions = list(graphs)
    if len(counters) != len(functions):
        raise ValueError(
            f"got counters for {len(counters)} functions, graph has {len(functions)}"
        )
    if isinstance(graphs, GraphFile):
        version = version or graphs.version
        stamp = graphs.stamp if stamp is None else stamp

    entries = []
    for graph, values in zip(functions, counters):
        if len(values) != graph.instrumented_arc_count:
            raise ValueError(
                f"function '{graph.name}' needs {graph.instrumented_arc_count} "
                f"counters, got {len(values)}"
            )
        entries.append(
            FunctionCounts(
                ident=graph.ident,
                lineno_checksum=graph.lineno_checksum,
                cfg_checksum=graph.cfg_checksum,
                counters=tuple(values),
                arc_counts=_align_counters(graph, values),
            )
        )

    return DataSample(
        version=version or DEFAULT_VERSION,
        stamp=stamp or 0,
        runs=runs,
        programs=programs,
        functions=tuple(entries),
    )


def builder() -> GraphBuilder:
    """Returns a new GraphBuilder instance for creating GraphFile objects."""
    return GraphBuilder()


def _read_bytes(filepath_or_stream: Union[str, os.PathLike, BinaryIO]) -> bytes:
    if isinstance(filepath_or_stream, (str, os.PathLike)):
        with open(filepath_or_stream, "rb") as f:
            return f.read()
    return filepath_or_stream.read()


def read_graph(filepath_or_stream: Union[str, os.PathLike, BinaryIO]) -> GraphFile:
    """
    Reads and decodes a notes file from a path or a binary stream.

    Raises:
        GcovError: If decoding fails.
        FileNotFoundError: If the file path does not exist.
    """
    return decode_graph(_read_bytes(filepath_or_stream))


def read_data(
    filepath_or_stream: Union[str, os.PathLike, BinaryIO], graphs: GraphsLike
) -> DataSample:
    """Reads and decodes a data file from a path or a binary stream."""
    return decode_data(_read_bytes(filepath_or_stream), graphs)
