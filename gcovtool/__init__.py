"""gcovtool - decode gcc coverage notes/data files into line coverage"""

from .errors import (
    GcovError,
    TruncatedInput,
    UnsupportedVersion,
    MalformedRecord,
    StructuralMismatch,
    UnresolvedFlow,
)
from .reader import BinaryReader
from .gcov import (
    decode_graph,
    decode_data,
    encode_graph,
    encode_data,
    read_graph,
    read_data,
    make_sample,
    builder,
    GcovVersion,
    GraphFile,
    FunctionGraph,
    Block,
    Arc,
    LineLocation,
    DataSample,
    FunctionCounts,
    GraphBuilder,
)
from .flow import reduce, reduce_sample, FlowResult, ReducedSample
from .core import (
    CoverageUnit,
    LineRecord,
    FunctionSummary,
    LineAccumulator,
    aggregate,
    build_unit,
    artifact_paths,
)

__all__ = [
    "GcovError",
    "TruncatedInput",
    "UnsupportedVersion",
    "MalformedRecord",
    "StructuralMismatch",
    "UnresolvedFlow",
    "BinaryReader",
    "decode_graph",
    "decode_data",
    "encode_graph",
    "encode_data",
    "read_graph",
    "read_data",
    "make_sample",
    "builder",
    "GcovVersion",
    "GraphFile",
    "FunctionGraph",
    "Block",
    "Arc",
    "LineLocation",
    "DataSample",
    "FunctionCounts",
    "GraphBuilder",
    "reduce",
    "reduce_sample",
    "FlowResult",
    "ReducedSample",
    "CoverageUnit",
    "LineRecord",
    "FunctionSummary",
    "LineAccumulator",
    "aggregate",
    "build_unit",
    "artifact_paths",
]
